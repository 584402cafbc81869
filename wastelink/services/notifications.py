# wastelink/services/notifications.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import structlog
from bson import ObjectId

from wastelink.core import events

logger = structlog.get_logger(__name__)

class NotificationType(str, Enum):
    # requester
    PICKUP_CREATED = "PICKUP_CREATED"
    PICKUP_ASSIGNED = "PICKUP_ASSIGNED"
    PICKUP_PICKED_UP = "PICKUP_PICKED_UP"
    PICKUP_COMPLETED = "PICKUP_COMPLETED"
    PICKUP_PROCESSED = "PICKUP_PROCESSED"
    PICKUP_REJECTED = "PICKUP_REJECTED"
    PICKUP_CANCELLED = "PICKUP_CANCELLED"
    # driver
    PICKUP_ASSIGNED_TO_YOU = "PICKUP_ASSIGNED_TO_YOU"
    FACILITY_ASSIGNED = "FACILITY_ASSIGNED"
    PICKUP_REASSIGNED = "PICKUP_REASSIGNED"
    # council
    HIGH_CONTAMINATION_WARNING = "HIGH_CONTAMINATION_WARNING"

class NotificationStore(Protocol):
    async def add(self, record: dict) -> None: ...
    async def list_for(self, recipient_id: str, audience: Optional[str] = None, limit: int = 100) -> List[dict]: ...

def _record(type_: NotificationType, title: str, message: str, *, recipient_id: Optional[str] = None,
            audience: Optional[str] = None, pickup_id: Optional[str] = None, **metadata) -> dict:
    return {
        "_id": str(ObjectId()),
        "recipient_id": recipient_id,
        "audience": audience,
        "pickup_id": pickup_id,
        "type": type_.value,
        "title": title,
        "message": message,
        "metadata": metadata,
        "is_read": False,
        "created_at": datetime.now(timezone.utc),
    }

def build_notifications(kind: str, p: Dict[str, Any]) -> List[dict]:
    """Translate one lifecycle event into the notification records it produces."""
    pid = p.get("pickup_id")
    waste = p.get("waste_type")

    if kind == events.PICKUP_CREATED:
        return [_record(NotificationType.PICKUP_CREATED, "Pickup Request Created",
                        f"Your {waste} waste pickup request has been created successfully.",
                        recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste)]

    if kind == events.PICKUP_ASSIGNED:
        out = [
            _record(NotificationType.PICKUP_ASSIGNED, "Driver Assigned",
                    f"A driver has been assigned to collect your {waste} waste.",
                    recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste, driver_id=p["driver_id"]),
            _record(NotificationType.PICKUP_ASSIGNED_TO_YOU, "New Pickup Assigned",
                    f"You have been assigned a {waste} waste pickup.",
                    recipient_id=p["driver_id"], pickup_id=pid, waste_type=waste),
        ]
        previous = p.get("previous_driver_id")
        if previous and previous != p["driver_id"]:
            out.append(_record(NotificationType.PICKUP_REASSIGNED, "Pickup Reassigned",
                               f"The {waste} waste pickup has been reassigned to another driver.",
                               recipient_id=previous, pickup_id=pid, waste_type=waste))
        return out

    if kind == events.PICKUP_PICKED_UP:
        return [_record(NotificationType.PICKUP_PICKED_UP, "Waste Picked Up",
                        f"Your driver has picked up your {waste} waste.",
                        recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste, driver_id=p["driver_id"])]

    if kind == events.PICKUP_COMPLETED:
        return [_record(NotificationType.PICKUP_COMPLETED, "Pickup Completed",
                        f"Your {waste} waste ({p['actual_weight']}kg) has been delivered to the recycling facility.",
                        recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste, actual_weight=p["actual_weight"])]

    if kind == events.PICKUP_PROCESSED:
        return [_record(NotificationType.PICKUP_PROCESSED, "Waste Processed",
                        f"Your {waste} waste ({p['received_weight']}kg) has been successfully processed at the recycling facility.",
                        recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste, received_weight=p["received_weight"])]

    if kind == events.PICKUP_REJECTED:
        return [_record(NotificationType.PICKUP_REJECTED, "Pickup Rejected",
                        f"Your {waste} waste pickup was rejected. Reason: {p['reason']}",
                        recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste, reason=p["reason"])]

    if kind == events.PICKUP_CANCELLED:
        out = [_record(NotificationType.PICKUP_CANCELLED, "Pickup Cancelled",
                       f"Your {waste} waste pickup has been cancelled.",
                       recipient_id=p["requester_id"], pickup_id=pid, waste_type=waste, reason=p.get("reason"))]
        if p.get("driver_id"):
            out.append(_record(NotificationType.PICKUP_CANCELLED, "Pickup Cancelled",
                               f"The {waste} waste pickup assigned to you has been cancelled.",
                               recipient_id=p["driver_id"], pickup_id=pid, waste_type=waste))
        return out

    if kind == events.FACILITY_ASSIGNED:
        if not p.get("driver_id"):
            return []
        return [_record(NotificationType.FACILITY_ASSIGNED, "Delivery Facility Assigned",
                        "A delivery facility has been assigned to your pickup. See map for location.",
                        recipient_id=p["driver_id"], pickup_id=pid, facility_id=p["facility_id"])]

    if kind == events.CONTAMINATION_ALERT:
        return [_record(NotificationType.HIGH_CONTAMINATION_WARNING, "High Contamination Alert",
                        f"{p['label']} contamination ({p['score']}/10) detected in {waste} waste at {p['location']}.",
                        audience="council", waste_type=waste, score=p["score"], label=p["label"],
                        location=p["location"], image_url=p.get("image_url"))]

    return []

class NotificationSubscriber:
    """EventBus subscriber that stores the notification records for each event."""

    def __init__(self, store: NotificationStore):
        self.store = store

    async def __call__(self, kind: str, payload: Dict[str, Any]) -> None:
        records = build_notifications(kind, payload)
        for rec in records:
            await self.store.add(rec)
        if records:
            logger.info("notifications stored", event_kind=kind, count=len(records), pickup_id=payload.get("pickup_id"))
