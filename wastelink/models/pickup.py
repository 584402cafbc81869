from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Literal
from datetime import datetime
from enum import Enum

from wastelink.core.policy import Role
from wastelink.core.states import PickupStatus
from wastelink.services.scoring import repair_stored_score

class WasteType(str, Enum):
    ORGANIC = "organic"
    PLASTIC = "plastic"
    METAL = "metal"
    PAPER = "paper"
    GLASS = "glass"
    E_WASTE = "e_waste"
    OTHER = "other"

# --------------------------
# Shared Submodels
# --------------------------
class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]  # [lng, lat]

    @classmethod
    def from_lat_lng(cls, lat: float, lng: float) -> "GeoPoint":
        return cls(coordinates=[float(lng), float(lat)])

class ImageRef(BaseModel):
    """An image already held by the external image store, optionally with its raw bytes."""
    public_id: Optional[str] = None
    secure_url: Optional[str] = None
    content: Optional[bytes] = None
    filename: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.secure_url and not self.content

class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    role: Role

class StatusEvent(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    at: datetime
    by_user: str
    from_status: Optional[PickupStatus] = None
    to_status: PickupStatus
    note: Optional[str] = None

# --------------------------
# Pickup document
# --------------------------
class Pickup(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    id: str = Field(alias="_id")
    waste_type: WasteType
    estimated_weight_kg: float = Field(ge=0)
    description: Optional[str] = None

    image_public_id: Optional[str] = None
    image_secure_url: Optional[str] = None

    contamination_score: float = Field(ge=0, le=1)  # canonical 0..1
    contamination_label: Optional[str] = None       # from the raw 1..10 score
    evaluated_at: Optional[datetime] = None

    status: PickupStatus = PickupStatus.PENDING
    requested_by: str
    address: Optional[str] = None
    geom: Optional[GeoPoint] = None
    facility_id: Optional[str] = None

    # driver
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    driver_notes: Optional[str] = None
    pickup_proof_public_id: Optional[str] = None
    pickup_proof_url: Optional[str] = None

    completed_at: Optional[datetime] = None
    actual_weight_kg: Optional[float] = Field(None, ge=0)
    completion_proof_public_id: Optional[str] = None
    completion_proof_url: Optional[str] = None
    delivered_address: Optional[str] = None
    delivered_geom: Optional[GeoPoint] = None

    # recycler intake
    received_at: Optional[datetime] = None
    received_weight_kg: Optional[float] = Field(None, ge=0)
    recycler_notes: Optional[str] = None
    recycler_proof_public_id: Optional[str] = None
    recycler_proof_url: Optional[str] = None
    rejection_reason: Optional[str] = None

    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    version: int = 1
    history: List[StatusEvent] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("contamination_score", mode="before")
    @classmethod
    def _repair_legacy_scale(cls, v):
        # rows not yet fixed by the migration may still hold a 1..10 or 0..100 value
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v > 1:
            return repair_stored_score(v)
        return v

    def to_doc(self) -> dict:
        return self.model_dump(by_alias=True)

# --------------------------
# Operation requests
# --------------------------
class PickupCreate(BaseModel):
    waste_type: WasteType
    estimated_weight_kg: float = Field(ge=0)
    description: Optional[str] = None
    address: Optional[str] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

class AssignDriver(BaseModel):
    driver_id: str

class MarkPickedUp(BaseModel):
    notes: Optional[str] = None
    photo: Optional[ImageRef] = None

class MarkCompleted(BaseModel):
    actual_weight_kg: Optional[float] = Field(None, ge=0)
    delivered_address: Optional[str] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    photo: Optional[ImageRef] = None

class AssignFacility(BaseModel):
    facility_id: str

class RecyclerReceive(BaseModel):
    received_weight_kg: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    proof: Optional[ImageRef] = None

class RecyclerReject(BaseModel):
    reason: Optional[str] = None

class CancelPickup(BaseModel):
    reason: Optional[str] = None
