# wastelink/services/pickups.py
"""Pickup lifecycle operations.

Every operation checks the caller's role, validates the move against the
transition table, writes with a conditional update and only then publishes
its event. A failed check never writes anything.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId

from wastelink.core.errors import InvalidTransition, NotFound, ValidationError
from wastelink.core.events import (
    FACILITY_ASSIGNED, PICKUP_ASSIGNED, PICKUP_CANCELLED, PICKUP_COMPLETED,
    PICKUP_CREATED, PICKUP_PICKED_UP, PICKUP_PROCESSED, PICKUP_REJECTED,
    Publisher, publish_safely,
)
from wastelink.core.guards import ensure_assignee, ensure_requester
from wastelink.core.policy import ensure_role
from wastelink.core.states import (
    FACILITY_ASSIGNABLE_STATES, REASSIGNABLE_STATES, PickupStatus, can_transition,
)
from wastelink.models.pickup import (
    Actor, AssignDriver, AssignFacility, CancelPickup, GeoPoint, ImageRef,
    MarkCompleted, MarkPickedUp, Pickup, PickupCreate, RecyclerReceive,
    RecyclerReject, StatusEvent,
)
from wastelink.services.contamination import ContaminationPipeline, describe_location
from wastelink.services.scoring import to_canonical

logger = structlog.get_logger(__name__)

def oid() -> str:
    return str(ObjectId())

def _utcnow():
    return datetime.now(timezone.utc)

def _history(actor: Actor, src: Optional[PickupStatus], dst: PickupStatus, note: Optional[str] = None) -> dict:
    return StatusEvent(at=_utcnow(), by_user=actor.user_id, from_status=src, to_status=dst, note=note).model_dump()

def _version_match(version: int):
    # records written before versioning have no version field
    return [version, None] if version == 1 else version

def _has_coords(lat, lng) -> bool:
    if (lat is None) != (lng is None):
        raise ValidationError("lat and lng must be provided together")
    return lat is not None

class PickupService:
    def __init__(self, repo, pipeline: ContaminationPipeline, publisher: Publisher):
        self.repo = repo
        self.pipeline = pipeline
        self.publisher = publisher

    # ---------- reads ----------

    async def get(self, pickup_id: str) -> Pickup:
        doc = await self.repo.get(pickup_id)
        if not doc:
            raise NotFound("Pickup not found")
        return Pickup.model_validate(doc)

    async def list_all(self, limit: int = 100) -> List[Pickup]:
        return [Pickup.model_validate(d) for d in await self.repo.list_all(limit)]

    async def list_available(self, lng: Optional[float] = None, lat: Optional[float] = None,
                             radius_m: float = 5000, limit: int = 50) -> List[Pickup]:
        docs = await self.repo.list_available(lng, lat, radius_m, limit)
        return [Pickup.model_validate(d) for d in docs]

    # ---------- helpers ----------

    async def _emit(self, kind: str, payload: Dict[str, Any]) -> None:
        await publish_safely(self.publisher, kind, payload)

    async def _transition(self, pickup: Pickup, actor: Actor, target: PickupStatus,
                          changes: Dict[str, Any], note: Optional[str] = None) -> Pickup:
        src = PickupStatus(pickup.status)
        if not can_transition(src, target):
            raise InvalidTransition(src.value, target.value)

        doc = await self.repo.update_where(
            pickup.id,
            {"version": _version_match(pickup.version), "status": src},
            {**changes, "status": target.value},
            _history(actor, src, target, note),
        )
        if doc is None:
            raise NotFound("Pickup not found or modified concurrently")
        logger.info("pickup transitioned", pickup_id=pickup.id, from_status=src.value,
                    to_status=target.value, by_user=actor.user_id)
        return Pickup.model_validate(doc)

    # ---------- create ----------

    async def create(self, req: PickupCreate, image: Optional[ImageRef], actor: Actor) -> Pickup:
        ensure_role(actor.role, "create")
        if image is None or image.is_empty:
            raise ValidationError("Image file is required")
        has_coords = _has_coords(req.lat, req.lng)
        waste_type = req.waste_type.value

        location = describe_location(req.address, req.lat, req.lng)
        raw = await self.pipeline.evaluate(image, waste_type, location)

        now = _utcnow()
        pickup = Pickup(
            id=oid(),
            waste_type=req.waste_type,
            estimated_weight_kg=req.estimated_weight_kg,
            description=req.description,
            image_public_id=image.public_id,
            image_secure_url=image.secure_url,
            contamination_score=to_canonical(raw.score),
            contamination_label=raw.label,
            evaluated_at=now,
            status=PickupStatus.PENDING,
            requested_by=actor.user_id,
            address=req.address,
            geom=GeoPoint.from_lat_lng(req.lat, req.lng) if has_coords else None,
            history=[StatusEvent(at=now, by_user=actor.user_id, to_status=PickupStatus.PENDING, note="created")],
            created_at=now,
            updated_at=now,
        )
        await self.repo.insert(pickup.to_doc())
        logger.info("pickup created", pickup_id=pickup.id, waste_type=waste_type,
                    raw_score=raw.score, contamination_score=pickup.contamination_score)

        await self._emit(PICKUP_CREATED, {
            "pickup_id": pickup.id,
            "requester_id": actor.user_id,
            "waste_type": waste_type,
            "estimated_weight": req.estimated_weight_kg,
        })
        return pickup

    # ---------- driver assignment ----------

    async def claim(self, pickup_id: str, actor: Actor) -> Pickup:
        ensure_role(actor.role, "claim")
        # single conditional write: two racing drivers cannot both match
        doc = await self.repo.update_where(
            pickup_id,
            {"status": PickupStatus.PENDING, "assigned_to": None},
            {"status": PickupStatus.ASSIGNED.value, "assigned_to": actor.user_id, "assigned_at": _utcnow()},
            _history(actor, PickupStatus.PENDING, PickupStatus.ASSIGNED, "claimed"),
        )
        if doc is None:
            raise NotFound("Pickup not found or already assigned")
        pickup = Pickup.model_validate(doc)
        logger.info("pickup claimed", pickup_id=pickup_id, driver_id=actor.user_id)

        await self._emit(PICKUP_ASSIGNED, {
            "pickup_id": pickup.id,
            "requester_id": pickup.requested_by,
            "driver_id": actor.user_id,
            "waste_type": pickup.waste_type,
        })
        return pickup

    async def assign(self, pickup_id: str, req: AssignDriver, actor: Actor) -> Pickup:
        ensure_role(actor.role, "assign")
        if not req.driver_id.strip():
            raise ValidationError("driver_id is required")

        # the write is conditioned on what was read, so a claim landing in between
        # forces one re-read and previous_driver_id names the driver actually replaced
        for _ in range(2):
            pickup = await self.get(pickup_id)
            src = PickupStatus(pickup.status)
            if src not in REASSIGNABLE_STATES:
                raise InvalidTransition(src.value, PickupStatus.ASSIGNED.value)

            doc = await self.repo.update_where(
                pickup_id,
                {"status": src, "assigned_to": pickup.assigned_to},
                {"status": PickupStatus.ASSIGNED.value, "assigned_to": req.driver_id, "assigned_at": _utcnow()},
                _history(actor, src, PickupStatus.ASSIGNED, "assigned"),
            )
            if doc is not None:
                break
        else:
            raise NotFound("Pickup not found or modified concurrently")
        updated = Pickup.model_validate(doc)
        logger.info("pickup assigned", pickup_id=pickup_id, driver_id=req.driver_id,
                    previous_driver_id=pickup.assigned_to, by_user=actor.user_id)

        await self._emit(PICKUP_ASSIGNED, {
            "pickup_id": updated.id,
            "requester_id": updated.requested_by,
            "driver_id": req.driver_id,
            "previous_driver_id": pickup.assigned_to,
            "waste_type": updated.waste_type,
        })
        return updated

    # ---------- driver progress ----------

    async def mark_picked_up(self, pickup_id: str, req: MarkPickedUp, actor: Actor) -> Pickup:
        ensure_role(actor.role, "mark_picked_up")
        pickup = await self.get(pickup_id)
        if not can_transition(pickup.status, PickupStatus.PICKED_UP):
            raise InvalidTransition(pickup.status, PickupStatus.PICKED_UP.value)
        ensure_assignee(pickup, actor)

        changes: Dict[str, Any] = {"picked_up_at": _utcnow()}
        if req.notes is not None:
            changes["driver_notes"] = req.notes
        if req.photo is not None:
            changes["pickup_proof_public_id"] = req.photo.public_id
            changes["pickup_proof_url"] = req.photo.secure_url

        updated = await self._transition(pickup, actor, PickupStatus.PICKED_UP, changes, req.notes)
        await self._emit(PICKUP_PICKED_UP, {
            "pickup_id": updated.id,
            "requester_id": updated.requested_by,
            "driver_id": actor.user_id,
            "waste_type": updated.waste_type,
        })
        return updated

    async def mark_completed(self, pickup_id: str, req: MarkCompleted, actor: Actor) -> Pickup:
        ensure_role(actor.role, "mark_completed")
        if req.actual_weight_kg is None:
            raise ValidationError("actual_weight_kg is required")
        has_coords = _has_coords(req.lat, req.lng)

        pickup = await self.get(pickup_id)
        if not can_transition(pickup.status, PickupStatus.COMPLETED):
            raise InvalidTransition(pickup.status, PickupStatus.COMPLETED.value)
        ensure_assignee(pickup, actor)

        changes: Dict[str, Any] = {
            "actual_weight_kg": req.actual_weight_kg,
            "completed_at": _utcnow(),
        }
        if req.delivered_address is not None:
            changes["delivered_address"] = req.delivered_address
        if has_coords:
            changes["delivered_geom"] = GeoPoint.from_lat_lng(req.lat, req.lng).model_dump()
        if req.photo is not None:
            changes["completion_proof_public_id"] = req.photo.public_id
            changes["completion_proof_url"] = req.photo.secure_url

        updated = await self._transition(pickup, actor, PickupStatus.COMPLETED, changes)
        await self._emit(PICKUP_COMPLETED, {
            "pickup_id": updated.id,
            "requester_id": updated.requested_by,
            "driver_id": actor.user_id,
            "waste_type": updated.waste_type,
            "actual_weight": req.actual_weight_kg,
            "facility_id": updated.facility_id,
            "contamination_score": updated.contamination_score,
        })
        return updated

    async def assign_facility(self, pickup_id: str, req: AssignFacility, actor: Actor) -> Pickup:
        ensure_role(actor.role, "assign_facility")
        if not req.facility_id.strip():
            raise ValidationError("facility_id is required")

        pickup = await self.get(pickup_id)
        if PickupStatus(pickup.status) not in FACILITY_ASSIGNABLE_STATES:
            raise ValidationError(f"Cannot assign facility while pickup is {pickup.status}")

        # status is left alone; the version check keeps the write atomic
        doc = await self.repo.update_where(
            pickup_id,
            {"version": _version_match(pickup.version), "status": FACILITY_ASSIGNABLE_STATES},
            {"facility_id": req.facility_id},
        )
        if doc is None:
            raise NotFound("Pickup not found or modified concurrently")
        updated = Pickup.model_validate(doc)
        logger.info("facility assigned", pickup_id=pickup_id, facility_id=req.facility_id)

        await self._emit(FACILITY_ASSIGNED, {
            "pickup_id": updated.id,
            "driver_id": updated.assigned_to,
            "facility_id": req.facility_id,
            "waste_type": updated.waste_type,
        })
        return updated

    # ---------- recycler intake ----------

    async def recycler_receive(self, pickup_id: str, req: RecyclerReceive, actor: Actor) -> Pickup:
        ensure_role(actor.role, "recycler_receive")
        if req.received_weight_kg is None:
            raise ValidationError("received_weight_kg is required")

        pickup = await self.get(pickup_id)
        changes: Dict[str, Any] = {
            "received_weight_kg": req.received_weight_kg,
            "recycler_notes": req.notes,
            "received_at": _utcnow(),
        }
        if req.proof is not None:
            changes["recycler_proof_public_id"] = req.proof.public_id
            changes["recycler_proof_url"] = req.proof.secure_url

        updated = await self._transition(pickup, actor, PickupStatus.PROCESSED, changes, req.notes)
        await self._emit(PICKUP_PROCESSED, {
            "pickup_id": updated.id,
            "requester_id": updated.requested_by,
            "recycler_user_id": actor.user_id,
            "waste_type": updated.waste_type,
            "received_weight": req.received_weight_kg,
        })
        return updated

    async def recycler_reject(self, pickup_id: str, req: RecyclerReject, actor: Actor) -> Pickup:
        ensure_role(actor.role, "recycler_reject")
        reason = (req.reason or "").strip()
        if not reason:
            raise ValidationError("A rejection reason is required")

        pickup = await self.get(pickup_id)
        updated = await self._transition(pickup, actor, PickupStatus.REJECTED, {"rejection_reason": reason}, reason)
        await self._emit(PICKUP_REJECTED, {
            "pickup_id": updated.id,
            "requester_id": updated.requested_by,
            "recycler_user_id": actor.user_id,
            "waste_type": updated.waste_type,
            "reason": reason,
        })
        return updated

    # ---------- cancellation ----------

    async def cancel(self, pickup_id: str, req: CancelPickup, actor: Actor) -> Pickup:
        ensure_role(actor.role, "cancel")
        pickup = await self.get(pickup_id)
        ensure_requester(pickup, actor)

        reason = (req.reason or "").strip() or None
        updated = await self._transition(pickup, actor, PickupStatus.CANCELLED,
                                         {"cancelled_at": _utcnow(), "cancellation_reason": reason}, reason)
        await self._emit(PICKUP_CANCELLED, {
            "pickup_id": updated.id,
            "requester_id": updated.requested_by,
            "driver_id": updated.assigned_to,
            "cancelled_by": actor.user_id,
            "waste_type": updated.waste_type,
            "reason": reason,
        })
        return updated
