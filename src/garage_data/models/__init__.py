"""
Shared models for garage data
Typed domain records and enumerations used across storage, data and migration layers
"""

from .enums import (
    SpotType,
    SpotStatus,
    SpotFeature,
    VehicleType,
    VehicleStatus,
    RateType,
    PaymentMethod,
    SessionStatus,
    PaymentStatus,
    MigrationState,
    LogLevel,
)
from .domain import (
    FloorConfig,
    GarageConfig,
    Spot,
    Vehicle,
    floor_bay_key,
    generate_spot_id,
    generate_uuid7,
    is_valid_license_plate,
    normalize_license_plate,
    parse_spot_id,
    utc_now,
)

__all__ = [
    # Enums
    "SpotType",
    "SpotStatus",
    "SpotFeature",
    "VehicleType",
    "VehicleStatus",
    "RateType",
    "PaymentMethod",
    "SessionStatus",
    "PaymentStatus",
    "MigrationState",
    "LogLevel",

    # Records
    "FloorConfig",
    "GarageConfig",
    "Spot",
    "Vehicle",

    # Helpers
    "floor_bay_key",
    "generate_spot_id",
    "generate_uuid7",
    "is_valid_license_plate",
    "normalize_license_plate",
    "parse_spot_id",
    "utc_now",
]
