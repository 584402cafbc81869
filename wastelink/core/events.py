# wastelink/core/events.py
from typing import Any, Awaitable, Callable, Dict, List, Protocol

import structlog

logger = structlog.get_logger(__name__)

PICKUP_CREATED = "pickup.created"
PICKUP_ASSIGNED = "pickup.assigned"
PICKUP_PICKED_UP = "pickup.picked_up"
PICKUP_COMPLETED = "pickup.completed"
PICKUP_PROCESSED = "pickup.processed"
PICKUP_REJECTED = "pickup.rejected"
PICKUP_CANCELLED = "pickup.cancelled"
FACILITY_ASSIGNED = "facility.assigned"
CONTAMINATION_ALERT = "contamination.alert"

Subscriber = Callable[[str, Dict[str, Any]], Awaitable[None]]


class Publisher(Protocol):
    async def emit(self, kind: str, payload: Dict[str, Any]) -> None: ...


class EventBus:
    """In-process publisher. Each subscriber sees every event; one failing
    subscriber never blocks the others or the caller."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, fn: Subscriber) -> None:
        self._subscribers.append(fn)

    async def emit(self, kind: str, payload: Dict[str, Any]) -> None:
        for fn in self._subscribers:
            try:
                await fn(kind, payload)
            except Exception:
                logger.exception("subscriber failed", event_kind=kind, pickup_id=payload.get("pickup_id"))


async def publish_safely(publisher: Publisher, kind: str, payload: Dict[str, Any]) -> None:
    """Emit after a committed write; a broken sink must not undo the write."""
    try:
        await publisher.emit(kind, payload)
    except Exception:
        logger.exception("event emission failed", event_kind=kind, pickup_id=payload.get("pickup_id"))
