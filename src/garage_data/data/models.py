"""
Database Models for Garage Data
SQLAlchemy models for the durable relational store
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime,
    ForeignKey, JSON, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

# Base model
Base = declarative_base()


def utc_naive_now() -> datetime:
    """Current UTC time without tzinfo (SQLite stores naive datetimes)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MigrationMarkerMixin:
    """Origin marker and audit timestamps carried by every table"""

    migration_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=utc_naive_now, nullable=False)
    updated_at = Column(DateTime, default=utc_naive_now, onupdate=utc_naive_now, nullable=False, index=True)


class GarageRow(MigrationMarkerMixin, Base):
    """Garage with its descriptive settings"""
    __tablename__ = "garages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text, nullable=True)
    total_floors = Column(Integer, default=0)
    total_spots = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    rates = Column(JSON, nullable=True)


class FloorRow(MigrationMarkerMixin, Base):
    """Floor of a garage"""
    __tablename__ = "floors"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id"), nullable=False, index=True)
    floor_number = Column(Integer, nullable=False)
    name = Column(String, nullable=True)
    bays = Column(Integer, default=1)
    spots_per_bay = Column(Integer, default=1)

    __table_args__ = (
        UniqueConstraint('garage_id', 'floor_number', name='uq_floor_garage_number'),
    )


class SpotRow(MigrationMarkerMixin, Base):
    """Parking spot, unique by garage and location"""
    __tablename__ = "spots"

    id = Column(Integer, primary_key=True, index=True)
    garage_id = Column(Integer, ForeignKey("garages.id"), nullable=False, index=True)
    floor_id = Column(Integer, ForeignKey("floors.id"), nullable=True, index=True)
    floor = Column(Integer, nullable=False)
    bay = Column(Integer, nullable=False)
    spot_number = Column(Integer, nullable=False)
    spot_code = Column(String, nullable=False, index=True)

    type = Column(String, default="STANDARD")
    status = Column(String, default="AVAILABLE")
    features = Column(JSON, nullable=True)
    current_license_plate = Column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint('garage_id', 'floor', 'bay', 'spot_number', name='uq_spot_location'),
        Index('idx_spot_floor_bay', 'floor', 'bay'),
    )


class VehicleRow(MigrationMarkerMixin, Base):
    """Registered vehicle, unique by license plate"""
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    license_plate = Column(String, unique=True, nullable=False)
    vehicle_type = Column(String, default="STANDARD")
    status = Column(String, default="ACTIVE")

    make = Column(String, nullable=True)
    model = Column(String, nullable=True)
    color = Column(String, nullable=True)
    year = Column(Integer, nullable=True)
    owner_name = Column(String, nullable=True)
    owner_email = Column(String, nullable=True)
    owner_phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    current_spot_id = Column(Integer, ForeignKey("spots.id"), nullable=True, index=True)


class ParkingSessionRow(MigrationMarkerMixin, Base):
    """Parking session of a vehicle in a spot"""
    __tablename__ = "parking_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_key = Column(String, unique=True, nullable=False)
    garage_id = Column(Integer, ForeignKey("garages.id"), nullable=False, index=True)
    spot_id = Column(Integer, ForeignKey("spots.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)

    status = Column(String, default="ACTIVE")
    rate_type = Column(String, default="HOURLY")
    check_in_time = Column(DateTime, nullable=False)
    check_out_time = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    total_amount = Column(Float, nullable=True)
    payment_status = Column(String, default="PENDING")

    __table_args__ = (
        Index('idx_session_vehicle_status', 'vehicle_id', 'status'),
        Index('idx_session_spot_status', 'spot_id', 'status'),
    )


class PaymentRow(MigrationMarkerMixin, Base):
    """Payment made for a parking session"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    payment_number = Column(String, unique=True, nullable=False)
    session_id = Column(Integer, ForeignKey("parking_sessions.id"), nullable=False, index=True)

    amount = Column(Float, nullable=False, default=0.0)
    method = Column(String, nullable=True)
    status = Column(String, default="PENDING")
    refund_amount = Column(Float, default=0.0)
    paid_at = Column(DateTime, nullable=True)


# Parent tables first; delete in reverse
TABLES_IN_DEPENDENCY_ORDER = [
    GarageRow,
    FloorRow,
    SpotRow,
    VehicleRow,
    ParkingSessionRow,
    PaymentRow,
]

__all__ = [
    "Base",
    "GarageRow",
    "FloorRow",
    "SpotRow",
    "VehicleRow",
    "ParkingSessionRow",
    "PaymentRow",
    "TABLES_IN_DEPENDENCY_ORDER",
    "utc_naive_now",
]
