from fastapi import Header, HTTPException, Request

from wastelink.core.config import Settings
from wastelink.core.events import EventBus
from wastelink.core.policy import Role
from wastelink.models.pickup import Actor
from wastelink.services.contamination import ContaminationPipeline
from wastelink.services.notifications import NotificationStore, NotificationSubscriber
from wastelink.services.pickups import PickupService
from wastelink.services.providers import ScoringProvider, build_provider

def build_notification_store(cfg: Settings) -> NotificationStore:
    if cfg.use_mongo:
        from wastelink.core.db import get_db
        from wastelink.repos.mongo import MongoNotificationStore
        return MongoNotificationStore(get_db())
    from wastelink.repos.inmemory import InMemoryNotificationStore
    return InMemoryNotificationStore()

def build_pickup_service(cfg: Settings, provider: ScoringProvider = None,
                         store: NotificationStore = None) -> PickupService:
    """Wire repo, scoring pipeline and event bus. USE_MONGO=1 selects MongoDB, otherwise in-memory."""
    if cfg.use_mongo:
        from wastelink.core.db import get_db
        from wastelink.repos.mongo import MongoPickupRepo
        repo = MongoPickupRepo(get_db())
    else:
        from wastelink.repos.inmemory import InMemoryPickupRepo
        repo = InMemoryPickupRepo()

    bus = EventBus()
    bus.subscribe(NotificationSubscriber(store or build_notification_store(cfg)))
    pipeline = ContaminationPipeline(
        provider or build_provider(cfg), bus,
        alert_threshold=cfg.contamination_alert_threshold,
        timeout_s=cfg.scoring_timeout_s,
    )
    return PickupService(repo, pipeline, bus)

def get_pickup_service(request: Request) -> PickupService:
    return request.app.state.pickups

def get_notification_store(request: Request) -> NotificationStore:
    return request.app.state.notifications

# Authentication is handled upstream; the gateway forwards the caller's identity.
def get_actor(x_user_id: str = Header(...), x_user_role: str = Header(...)) -> Actor:
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=401, detail="Unknown role")
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user id")
    return Actor(user_id=x_user_id, role=role)
