"""
Data persistence layer for garage data
SQLAlchemy async models, engine wrapper and repository
"""

from .models import (
    Base,
    GarageRow,
    FloorRow,
    SpotRow,
    VehicleRow,
    ParkingSessionRow,
    PaymentRow,
    TABLES_IN_DEPENDENCY_ORDER,
)
from .database import RelationalStore
from .repository import GarageRepository, NATURAL_KEYS

__all__ = [
    "Base",
    "GarageRow",
    "FloorRow",
    "SpotRow",
    "VehicleRow",
    "ParkingSessionRow",
    "PaymentRow",
    "TABLES_IN_DEPENDENCY_ORDER",
    "RelationalStore",
    "GarageRepository",
    "NATURAL_KEYS",
]
