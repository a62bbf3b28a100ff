"""
Migration engine
Memory store -> relational store migration with checkpoints, backups,
validation and rollback
"""

from .errors import (
    MigrationError,
    RecordValidationError,
    ConstraintViolationError,
    TransientStoreError,
    BackupMissingError,
    MigrationStateError,
    IntegrityCheckError,
    RollbackNotConfirmedError,
)
from .status import Checkpoint, CheckpointData, MigrationStatus, MigrationStatusTracker
from .backup import (
    BackupSerializer,
    JsonBackupSerializer,
    BackupManifest,
    BackupResult,
    RestoreResult,
    BackupInfo,
    DataBackupUtility,
)
from .validator import (
    IssueType,
    ValidationIssue,
    TableResult,
    ValidationStatistics,
    ValidationResult,
    DataValidator,
)
from .migrate import (
    MIGRATION_STEPS,
    MigrationOptions,
    MigrationResult,
    StepResult,
    DataMigration,
)
from .rollback import RollbackOptions, RollbackResult, MigrationRollback

__all__ = [
    "MigrationError",
    "RecordValidationError",
    "ConstraintViolationError",
    "TransientStoreError",
    "BackupMissingError",
    "MigrationStateError",
    "IntegrityCheckError",
    "RollbackNotConfirmedError",
    "Checkpoint",
    "CheckpointData",
    "MigrationStatus",
    "MigrationStatusTracker",
    "BackupSerializer",
    "JsonBackupSerializer",
    "BackupManifest",
    "BackupResult",
    "RestoreResult",
    "BackupInfo",
    "DataBackupUtility",
    "IssueType",
    "ValidationIssue",
    "TableResult",
    "ValidationStatistics",
    "ValidationResult",
    "DataValidator",
    "MIGRATION_STEPS",
    "MigrationOptions",
    "MigrationResult",
    "StepResult",
    "DataMigration",
    "RollbackOptions",
    "RollbackResult",
    "MigrationRollback",
]
