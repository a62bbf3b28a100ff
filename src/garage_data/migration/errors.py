"""
Migration error taxonomy
Mutating operations raise these; validation-only calls return results instead
"""

from typing import Any, Optional


class MigrationError(Exception):
    """Base class of every migration, backup and rollback failure"""


class RecordValidationError(MigrationError, ValueError):
    """A memory record is malformed or misses a required field"""

    def __init__(self, message: str, table: Optional[str] = None, record_id: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.record_id = record_id


class ConstraintViolationError(MigrationError):
    """Duplicate natural key, dangling reference or double occupancy"""

    def __init__(self,
                 message: str,
                 table: Optional[str] = None,
                 field: Optional[str] = None,
                 record_id: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.field = field
        self.record_id = record_id


class TransientStoreError(MigrationError):
    """I/O failure while writing a backup or the relational store"""


class BackupMissingError(MigrationError):
    """No backup can be located for the requested migration"""


class MigrationStateError(MigrationError):
    """Illegal status transition or a run already in progress"""


class IntegrityCheckError(MigrationError):
    """Post-migration validation found inconsistencies"""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class RollbackNotConfirmedError(MigrationError):
    """Rollback invoked without explicit confirmation"""
