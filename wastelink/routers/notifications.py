from fastapi import APIRouter, Depends, Query

from wastelink.core.policy import OVERSIGHT_ROLES
from wastelink.deps import get_actor, get_notification_store
from wastelink.models.pickup import Actor
from wastelink.services.notifications import NotificationStore

router = APIRouter(prefix="/notifications", tags=["notifications"])

# Council and admin users also see council-wide alerts
@router.get("")
async def my_notifications(limit: int = Query(100, ge=1, le=500),
                           actor: Actor = Depends(get_actor),
                           store: NotificationStore = Depends(get_notification_store)):
    audience = "council" if actor.role in OVERSIGHT_ROLES else None
    return await store.list_for(actor.user_id, audience, limit)
