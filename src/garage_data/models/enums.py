"""
Model Enumerations
Common enum types used throughout the garage data system
"""

from enum import Enum


class SpotType(str, Enum):
    """Parking spot types"""
    STANDARD = "standard"
    COMPACT = "compact"
    OVERSIZED = "oversized"
    HANDICAP = "handicap"
    MOTORCYCLE = "motorcycle"
    ELECTRIC = "electric"


class SpotStatus(str, Enum):
    """Parking spot status values"""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    RESERVED = "reserved"


class SpotFeature(str, Enum):
    """Optional spot features"""
    EV_CHARGING = "ev_charging"
    HANDICAP_ACCESSIBLE = "handicap_accessible"
    COVERED = "covered"
    WIDE = "wide"


class VehicleType(str, Enum):
    """Vehicle size classes"""
    COMPACT = "compact"
    STANDARD = "standard"
    OVERSIZED = "oversized"
    MOTORCYCLE = "motorcycle"
    TRUCK = "truck"


class VehicleStatus(str, Enum):
    """Lifecycle of a parked-vehicle record"""
    PARKED = "parked"
    CHECKED_OUT_UNPAID = "checked_out_unpaid"
    COMPLETED = "completed"


class RateType(str, Enum):
    """Billing rate types"""
    HOURLY = "hourly"
    DAILY = "daily"
    MONTHLY = "monthly"


class PaymentMethod(str, Enum):
    """Payment methods accepted at the garage"""
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    MOBILE = "mobile"


class SessionStatus(str, Enum):
    """Relational parking session status"""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, Enum):
    """Relational payment status"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class MigrationState(str, Enum):
    """Migration run state machine"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationState.COMPLETED, MigrationState.FAILED)


class LogLevel(str, Enum):
    """Enumeration for logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
