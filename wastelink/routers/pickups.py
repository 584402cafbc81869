from fastapi import APIRouter, Depends, Query
from pydantic import Base64Bytes, BaseModel
from typing import Optional

from wastelink.deps import get_actor, get_pickup_service
from wastelink.models.pickup import (
    Actor, AssignDriver, AssignFacility, CancelPickup, ImageRef, MarkCompleted,
    MarkPickedUp, PickupCreate, RecyclerReceive, RecyclerReject,
)
from wastelink.services.pickups import PickupService

router = APIRouter(prefix="/pickups", tags=["pickups"])

# ---------- Request bodies ----------
class ImageIn(BaseModel):
    public_id: Optional[str] = None
    secure_url: Optional[str] = None
    content_b64: Optional[Base64Bytes] = None
    filename: Optional[str] = None

    def to_ref(self) -> ImageRef:
        return ImageRef(public_id=self.public_id, secure_url=self.secure_url,
                        content=self.content_b64, filename=self.filename)

class PickupCreateIn(PickupCreate):
    image: Optional[ImageIn] = None

def _out(pickup) -> dict:
    return {"ok": True, "pickup": pickup.model_dump(mode="json")}

# ---------- Routes ----------
@router.post("", status_code=201)
async def create_pickup(body: PickupCreateIn, actor: Actor = Depends(get_actor),
                        svc: PickupService = Depends(get_pickup_service)):
    image = body.image.to_ref() if body.image else None
    req = PickupCreate(**body.model_dump(exclude={"image"}))
    return _out(await svc.create(req, image, actor))

@router.get("")
async def list_pickups(limit: int = Query(100, ge=1, le=500),
                       svc: PickupService = Depends(get_pickup_service)):
    return [p.model_dump(mode="json") for p in await svc.list_all(limit)]

# Available queue (open to all identified callers)
@router.get("/available")
async def available_pickups(
    lng: Optional[float] = Query(None),
    lat: Optional[float] = Query(None),
    radius_m: float = Query(5000, gt=0),
    limit: int = Query(50, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    svc: PickupService = Depends(get_pickup_service),
):
    return [p.model_dump(mode="json") for p in await svc.list_available(lng, lat, radius_m, limit)]

@router.get("/{pickup_id}")
async def get_pickup(pickup_id: str, svc: PickupService = Depends(get_pickup_service)):
    return (await svc.get(pickup_id)).model_dump(mode="json")

@router.patch("/{pickup_id}/claim")
async def claim_pickup(pickup_id: str, actor: Actor = Depends(get_actor),
                       svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.claim(pickup_id, actor))

@router.patch("/{pickup_id}/assign")
async def assign_pickup(pickup_id: str, body: AssignDriver, actor: Actor = Depends(get_actor),
                        svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.assign(pickup_id, body, actor))

@router.patch("/{pickup_id}/picked-up")
async def mark_picked_up(pickup_id: str, body: Optional[MarkPickedUp] = None,
                         actor: Actor = Depends(get_actor),
                         svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.mark_picked_up(pickup_id, body or MarkPickedUp(), actor))

@router.patch("/{pickup_id}/completed")
async def mark_completed(pickup_id: str, body: MarkCompleted, actor: Actor = Depends(get_actor),
                         svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.mark_completed(pickup_id, body, actor))

@router.patch("/{pickup_id}/assign-facility")
async def assign_facility(pickup_id: str, body: AssignFacility, actor: Actor = Depends(get_actor),
                          svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.assign_facility(pickup_id, body, actor))

@router.patch("/{pickup_id}/receive")
async def recycler_receive(pickup_id: str, body: RecyclerReceive, actor: Actor = Depends(get_actor),
                           svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.recycler_receive(pickup_id, body, actor))

@router.patch("/{pickup_id}/reject")
async def recycler_reject(pickup_id: str, body: RecyclerReject, actor: Actor = Depends(get_actor),
                          svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.recycler_reject(pickup_id, body, actor))

@router.patch("/{pickup_id}/cancel")
async def cancel_pickup(pickup_id: str, body: Optional[CancelPickup] = None,
                        actor: Actor = Depends(get_actor),
                        svc: PickupService = Depends(get_pickup_service)):
    return _out(await svc.cancel(pickup_id, body or CancelPickup(), actor))
