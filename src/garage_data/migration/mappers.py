"""
Memory -> relational mapping
Enum mapping, natural keys and row builders shared by migration and validation
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from ..models.domain import GarageConfig, FloorConfig, Spot, Vehicle, is_valid_license_plate
from ..models.enums import (
    PaymentMethod,
    PaymentStatus,
    RateType,
    SessionStatus,
    SpotStatus,
    SpotType,
    VehicleStatus,
    VehicleType,
)
from .errors import ConstraintViolationError, RecordValidationError

# Relational status of every migrated vehicle record
VEHICLE_ROW_STATUS = "ACTIVE"


# ============= Enum Mapping =============

def map_spot_type(value: SpotType) -> str:
    return SpotType(value).value.upper()


def map_spot_status(value: SpotStatus) -> str:
    return SpotStatus(value).value.upper()


def map_vehicle_type(value: VehicleType) -> str:
    return VehicleType(value).value.upper()


def map_rate_type(value: RateType) -> str:
    return RateType(value).value.upper()


def map_payment_method(value: Optional[PaymentMethod]) -> Optional[str]:
    if value is None:
        return None
    return PaymentMethod(value).value.upper()


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC, the form stored by the relational store"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ============= Natural Keys =============

def spot_garage_name(garage_configs: Dict[str, GarageConfig], default_name: str) -> str:
    """Garage that spots attach to: the first configured one by key, else the default garage"""
    for key in sorted(garage_configs):
        return garage_configs[key].name
    return default_name


def spot_natural_key(spot: Spot) -> Tuple[int, int, int]:
    return (spot.floor, spot.bay, spot.spot_number)


def session_key(license_plate: str, check_in_time: datetime) -> str:
    """Natural key of a parking session: {PLATE}@{check-in ISO, UTC}"""
    return f"{license_plate}@{to_utc_naive(check_in_time).isoformat()}"


def payment_number(key: str) -> str:
    """Deterministic payment number derived from its session key"""
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16].upper()
    return f"PAY-{digest}"


def has_session(vehicle: Vehicle) -> bool:
    """A vehicle record describes a session once it was checked in to a spot"""
    return vehicle.check_in_time is not None and vehicle.spot_id is not None


def is_settled(vehicle: Vehicle) -> bool:
    """A paid vehicle record yields exactly one payment"""
    return vehicle.is_paid or vehicle.status == VehicleStatus.COMPLETED


def has_payment(vehicle: Vehicle) -> bool:
    """Settled sessions that have ended carry one payment"""
    return has_session(vehicle) and vehicle.status != VehicleStatus.PARKED and is_settled(vehicle)


def session_statuses(vehicle: Vehicle) -> Tuple[SessionStatus, PaymentStatus]:
    """
    Session and payment status carried by a vehicle record.

    parked -> ACTIVE/PENDING, checked_out_unpaid -> COMPLETED/PENDING,
    completed -> COMPLETED/COMPLETED (REFUNDED once a refund was issued).
    """
    if vehicle.status == VehicleStatus.PARKED:
        return SessionStatus.ACTIVE, PaymentStatus.PENDING
    if not is_settled(vehicle):
        return SessionStatus.COMPLETED, PaymentStatus.PENDING
    if vehicle.refund_amount > 0:
        return SessionStatus.COMPLETED, PaymentStatus.REFUNDED
    return SessionStatus.COMPLETED, PaymentStatus.COMPLETED


# ============= Record Validation =============

def validate_garage(key: str, config: GarageConfig) -> None:
    if not key:
        raise RecordValidationError("Garage config stored under an empty key", table="garages")
    if not (config.name or "").strip():
        raise RecordValidationError(f"Garage config {key} has an empty name", table="garages", record_id=key)


def validate_spot(key: str, spot: Spot) -> None:
    if key != spot.id:
        raise ConstraintViolationError(
            f"Spot stored under {key} has id {spot.id}",
            table="spots", field="id", record_id=key,
        )
    if (spot.status == SpotStatus.OCCUPIED) != (spot.current_vehicle is not None):
        raise RecordValidationError(
            f"Spot {spot.id} status {spot.status.value} disagrees with its occupant",
            table="spots", record_id=spot.id,
        )
    if spot.current_vehicle is not None and not is_valid_license_plate(spot.current_vehicle):
        raise RecordValidationError(
            f"Spot {spot.id} holds an invalid license plate {spot.current_vehicle!r}",
            table="spots", record_id=spot.id,
        )


def validate_vehicle(key: str, vehicle: Vehicle) -> None:
    if not vehicle.license_plate:
        raise RecordValidationError(
            "Vehicle record has an empty license plate", table="vehicles", record_id=key,
        )
    if not is_valid_license_plate(vehicle.license_plate):
        raise RecordValidationError(
            f"Vehicle license plate {vehicle.license_plate!r} must be 2-10 characters",
            table="vehicles", record_id=vehicle.license_plate,
        )
    if key and key != vehicle.license_plate:
        raise ConstraintViolationError(
            f"Vehicle stored under {key} has plate {vehicle.license_plate}",
            table="vehicles", field="license_plate", record_id=key,
        )


def validate_session(vehicle: Vehicle, spot_ids) -> None:
    """Checks a vehicle's session data; spot_ids is the set of known spot ids"""
    plate = vehicle.license_plate
    if vehicle.spot_id not in spot_ids:
        raise ConstraintViolationError(
            f"Session of {plate} references unknown spot {vehicle.spot_id}",
            table="parking_sessions", field="spot_id", record_id=plate,
        )
    if vehicle.status == VehicleStatus.PARKED and vehicle.check_out_time is not None:
        raise RecordValidationError(
            f"Parked vehicle {plate} has a check-out time", table="parking_sessions", record_id=plate,
        )
    if vehicle.status != VehicleStatus.PARKED and vehicle.check_out_time is None:
        raise RecordValidationError(
            f"Checked-out vehicle {plate} has no check-out time", table="parking_sessions", record_id=plate,
        )
    if vehicle.check_out_time is not None and \
            to_utc_naive(vehicle.check_out_time) < to_utc_naive(vehicle.check_in_time):
        raise RecordValidationError(
            f"Session of {plate} ends before it starts", table="parking_sessions", record_id=plate,
        )


def validate_payment(vehicle: Vehicle) -> None:
    if vehicle.refund_amount > vehicle.total_amount:
        raise RecordValidationError(
            f"Refund of {vehicle.license_plate} exceeds the paid amount",
            table="payments", record_id=vehicle.license_plate,
        )


# ============= Row Builders =============

def garage_record(config: GarageConfig) -> Dict[str, Any]:
    return {
        "name": config.name,
        "description": config.description,
        "total_floors": len(config.floors),
        "total_spots": config.get_total_spots(),
        "is_active": config.is_active,
        "rates": dict(config.rates),
    }


def floor_record(garage_id: int, number: int, floor: Optional[FloorConfig] = None) -> Dict[str, Any]:
    return {
        "garage_id": garage_id,
        "floor_number": number,
        "name": floor.name if floor else f"Floor {number}",
        "bays": floor.bays if floor else 1,
        "spots_per_bay": floor.spots_per_bay if floor else 1,
    }


def spot_record(spot: Spot, garage_id: int, floor_id: Optional[int]) -> Dict[str, Any]:
    return {
        "garage_id": garage_id,
        "floor_id": floor_id,
        "floor": spot.floor,
        "bay": spot.bay,
        "spot_number": spot.spot_number,
        "spot_code": spot.id,
        "type": map_spot_type(spot.type),
        "status": map_spot_status(spot.status),
        "features": [feature.value for feature in spot.features],
        "current_license_plate": spot.current_vehicle,
    }


def vehicle_record(vehicle: Vehicle, current_spot_id: Optional[int]) -> Dict[str, Any]:
    return {
        "license_plate": vehicle.license_plate,
        "vehicle_type": map_vehicle_type(vehicle.vehicle_type),
        "status": VEHICLE_ROW_STATUS,
        "make": vehicle.make,
        "model": vehicle.model,
        "color": vehicle.color,
        "year": vehicle.year,
        "owner_name": vehicle.owner_name,
        "owner_email": vehicle.owner_email,
        "owner_phone": vehicle.owner_phone,
        "notes": vehicle.notes,
        "current_spot_id": current_spot_id,
    }


def session_record(vehicle: Vehicle, garage_id: int, spot_id: int, vehicle_id: int) -> Dict[str, Any]:
    status, payment_status = session_statuses(vehicle)
    check_in = to_utc_naive(vehicle.check_in_time)
    check_out = to_utc_naive(vehicle.check_out_time)
    duration = None
    if check_out is not None:
        duration = int((check_out - check_in).total_seconds() // 60)

    return {
        "session_key": session_key(vehicle.license_plate, vehicle.check_in_time),
        "garage_id": garage_id,
        "spot_id": spot_id,
        "vehicle_id": vehicle_id,
        "status": status.value,
        "rate_type": map_rate_type(vehicle.rate_type),
        "check_in_time": check_in,
        "check_out_time": check_out,
        "duration_minutes": duration,
        # Active sessions have no amount yet
        "total_amount": None if status == SessionStatus.ACTIVE else vehicle.total_amount,
        "payment_status": payment_status.value,
    }


def payment_record(vehicle: Vehicle, session_id: int) -> Dict[str, Any]:
    key = session_key(vehicle.license_plate, vehicle.check_in_time)
    _, payment_status = session_statuses(vehicle)
    return {
        "payment_number": payment_number(key),
        "session_id": session_id,
        "amount": vehicle.total_amount,
        "method": map_payment_method(vehicle.payment_method),
        "status": payment_status.value,
        "refund_amount": vehicle.refund_amount,
        "paid_at": to_utc_naive(vehicle.check_out_time),
    }
