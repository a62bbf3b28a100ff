"""
Garage domain records held by the in-process memory store
Typed pydantic models with exhaustive enums for type/status fields
"""

import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator
from uuid_utils import uuid7

from .enums import (
    PaymentMethod,
    RateType,
    SpotFeature,
    SpotStatus,
    SpotType,
    VehicleStatus,
    VehicleType,
)

SPOT_ID_PATTERN = re.compile(r"^F(\d+)-B(\d+)-S(\d{3,})$")


def generate_uuid7() -> str:
    """Generate UUIDv7 for time-ordered unique identifiers using uuid-utils"""
    return str(uuid7())


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def generate_spot_id(floor: int, bay: int, spot_number: int) -> str:
    """
    Build a spot id from its location.

    Format: F{floor}-B{bay}-S{spot_number:03d}, e.g. F1-B2-S007
    """
    if floor < 1:
        raise ValueError("Floor must be a positive number")
    if bay < 1:
        raise ValueError("Bay must be a positive number")
    if spot_number < 1:
        raise ValueError("Spot number must be a positive number")
    return f"F{floor}-B{bay}-S{spot_number:03d}"


def parse_spot_id(spot_id: str) -> Tuple[int, int, int]:
    """Split a spot id back into (floor, bay, spot_number)"""
    match = SPOT_ID_PATTERN.match(spot_id or "")
    if not match:
        raise ValueError(f"Invalid spot id: {spot_id!r}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def normalize_license_plate(plate: Optional[str]) -> str:
    """Trim and uppercase a license plate"""
    return (plate or "").strip().upper()


def is_valid_license_plate(plate: Optional[str]) -> bool:
    """Basic plate check: 2-10 characters once normalized"""
    normalized = normalize_license_plate(plate)
    return 2 <= len(normalized) <= 10


def floor_bay_key(floor: int, bay: int) -> str:
    """Key of the floor/bay index container"""
    return f"{floor}-{bay}"


class FloorConfig(BaseModel):
    """Floor layout declared by a garage configuration"""

    number: int = Field(..., ge=1, description="Floor number (1-based)")
    name: Optional[str] = Field(default=None, description="Display name")
    bays: int = Field(1, ge=1, description="Number of bays on the floor")
    spots_per_bay: int = Field(1, ge=1, description="Spots in each bay")

    @property
    def total_spots(self) -> int:
        return self.bays * self.spots_per_bay


class GarageConfig(BaseModel):
    """Structural and descriptive garage settings"""

    name: str = Field("Main Garage", min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    floors: List[FloorConfig] = Field(default_factory=list)
    total_spots: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True
    rates: Dict[str, float] = Field(default_factory=dict, description="Rate amount per rate type")

    @field_validator("floors")
    @classmethod
    def validate_unique_floors(cls, v):
        numbers = [floor.number for floor in v]
        if len(numbers) != len(set(numbers)):
            raise ValueError("Floor numbers must be unique within a garage")
        return v

    def get_total_spots(self) -> int:
        """Declared total, or the sum of the floor layouts"""
        if self.total_spots is not None:
            return self.total_spots
        return sum(floor.total_spots for floor in self.floors)


class Spot(BaseModel):
    """
    A parking spot identified by (floor, bay, spot_number).

    status=occupied holds exactly when current_vehicle is set.
    """

    id: str
    floor: int = Field(..., ge=1)
    bay: int = Field(..., ge=1)
    spot_number: int = Field(..., ge=1)
    type: SpotType = SpotType.STANDARD
    status: SpotStatus = SpotStatus.AVAILABLE
    features: List[SpotFeature] = Field(default_factory=list)
    current_vehicle: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="before")
    @classmethod
    def derive_id(cls, data):
        if isinstance(data, dict) and not data.get("id"):
            data = dict(data)
            data["id"] = generate_spot_id(
                int(data.get("floor", 0)), int(data.get("bay", 0)), int(data.get("spot_number", 0))
            )
        return data

    @field_validator("current_vehicle")
    @classmethod
    def normalize_occupant(cls, v):
        if v is None:
            return None
        return normalize_license_plate(v) or None

    @field_validator("features")
    @classmethod
    def dedupe_features(cls, v):
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def validate_occupancy(self):
        if self.id != generate_spot_id(self.floor, self.bay, self.spot_number):
            raise ValueError(f"Spot id {self.id} does not match its location")
        occupied = self.status == SpotStatus.OCCUPIED
        if occupied and not self.current_vehicle:
            raise ValueError(f"Spot {self.id} is occupied without an occupant")
        if not occupied and self.current_vehicle:
            raise ValueError(f"Spot {self.id} has an occupant but status {self.status.value}")
        return self

    @property
    def natural_key(self) -> Tuple[int, int, int]:
        return (self.floor, self.bay, self.spot_number)

    @property
    def is_occupied(self) -> bool:
        return self.current_vehicle is not None


class Vehicle(BaseModel):
    """
    Parked-vehicle record.

    Besides describing the vehicle, the record carries its parking session
    (check-in/out, rate, amount, payment) the way the live application keeps it.
    The plate is normalized but not rejected here; emptiness is a migration
    validation concern.
    """

    license_plate: str
    spot_id: Optional[str] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    vehicle_type: VehicleType = VehicleType.STANDARD
    rate_type: RateType = RateType.HOURLY
    status: VehicleStatus = VehicleStatus.PARKED
    total_amount: float = Field(0.0, ge=0.0)
    is_paid: bool = False
    payment_method: Optional[PaymentMethod] = None
    refund_amount: float = Field(0.0, ge=0.0)

    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1900, le=2100)
    owner_name: Optional[str] = None
    owner_email: Optional[str] = None
    owner_phone: Optional[str] = None
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("license_plate", mode="before")
    @classmethod
    def normalize_plate(cls, v):
        return normalize_license_plate(v)

    @property
    def is_parked(self) -> bool:
        return self.status == VehicleStatus.PARKED and self.check_out_time is None
