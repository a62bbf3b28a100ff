"""
Migration Rollback
Undoes a migration's relational writes and restores the memory store from
the backup taken before it ran.
"""

from pathlib import Path
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..config.models import GarageDataConfig
from ..data.database import RelationalStore
from ..data.repository import GarageRepository
from ..models.enums import MigrationState
from ..storage.memory_store import KeyedMemoryStore
from ..utils.paths import DataPaths
from .backup import MEMORY_PREFIX, DataBackupUtility
from .errors import (
    BackupMissingError,
    ConstraintViolationError,
    IntegrityCheckError,
    MigrationError,
    MigrationStateError,
    RollbackNotConfirmedError,
    TransientStoreError,
)
from .mappers import to_utc_naive
from .status import MigrationStatus, MigrationStatusTracker

logger = structlog.get_logger("migration.rollback")

ROLLBACK_STEPS = ("clear-database", "restore-backup", "validate-rollback")


class RollbackOptions(BaseModel):
    confirm: bool = False
    preserve_new_data: bool = False
    validate_after: bool = True
    backup_id: Optional[str] = None


class RollbackResult(BaseModel):
    success: bool = False
    backup_restored: Optional[str] = None
    memory_store_restored: bool = False
    database_cleared: bool = False
    rows_deleted: Dict[str, int] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class MigrationRollback:
    """
    Reverses one migration id

    - Requires explicit confirmation
    - Never guesses: a backup must be discoverable for the id
    - Deletes only rows carrying the migration's origin marker
    """

    def __init__(self,
                 migration_id: str,
                 memory_store: KeyedMemoryStore,
                 relational_store: RelationalStore,
                 backup_utility: Optional[DataBackupUtility] = None,
                 config: Optional[GarageDataConfig] = None,
                 paths: Optional[DataPaths] = None):
        if not migration_id:
            raise ValueError("migration_id is required")
        self.config = config or GarageDataConfig()
        self.migration_id = migration_id
        self.memory_store = memory_store
        self.relational_store = relational_store

        paths = paths or DataPaths(
            self.config.storage.base_data_dir,
            backup_dir=self.config.backup.backup_dir,
            status_dir=self.config.migration.status_dir,
        )
        self.backup_utility = backup_utility or DataBackupUtility(
            memory_store, paths.backups_dir, relational_store
        )
        self.migration_tracker = MigrationStatusTracker(migration_id, paths.status_dir)
        self.tracker = MigrationStatusTracker(f"rollback-{migration_id}", paths.status_dir)

    async def rollback(self, options: Optional[RollbackOptions] = None) -> RollbackResult:
        """
        Roll the migration back.

        Raises:
            RollbackNotConfirmedError: Without options.confirm
            MigrationStateError: While the migration is still running
            BackupMissingError: When no backup can be located
            MigrationError: Any failure while clearing, restoring or validating
        """
        options = options or RollbackOptions()
        log = logger.bind(migration_id=self.migration_id)

        if not options.confirm:
            raise RollbackNotConfirmedError(
                f"Rollback of {self.migration_id} requires explicit confirmation"
            )

        migration_status = None
        if self.migration_tracker.exists():
            migration_status = await self.migration_tracker.get_status()
            if not migration_status.is_terminal:
                raise MigrationStateError(
                    f"Migration {self.migration_id} is {migration_status.status.value}; "
                    f"wait for it to finish before rolling back"
                )

        backup_path = await self._locate_backup(options.backup_id, migration_status)
        problem = await self.backup_utility.verify_backup(backup_path)
        if problem:
            raise BackupMissingError(f"Backup {Path(backup_path).name} is unusable: {problem}")

        log.info("Rollback started", backup=Path(backup_path).name,
                 preserve_new_data=options.preserve_new_data)
        await self.tracker.initialize_migration(total_steps=len(ROLLBACK_STEPS), backup_path=backup_path)
        await self.tracker.update_status(status=MigrationState.IN_PROGRESS)

        result = RollbackResult()
        try:
            await self._clear_database(options, migration_status, result)
            await self.tracker.update_status(completed_steps=1)

            await self._restore_memory(backup_path, result)
            await self.tracker.update_status(completed_steps=2)

            if options.validate_after:
                await self._validate(backup_path, options, result)
            await self.tracker.update_status(completed_steps=3)

        except MigrationError as e:
            await self._fail(str(e))
            raise
        except IntegrityError as e:
            await self._fail(f"Constraint violation: {e.orig}")
            raise ConstraintViolationError(str(e.orig)) from e
        except (SQLAlchemyError, OSError) as e:
            await self._fail(f"Store failure: {e}")
            raise TransientStoreError(str(e)) from e

        await self.tracker.update_status(status=MigrationState.COMPLETED)
        result.success = True
        log.info("Rollback completed", rows_deleted=result.rows_deleted,
                 warnings=len(result.warnings))
        return result

    async def _locate_backup(self,
                             backup_id: Optional[str],
                             migration_status: Optional[MigrationStatus]) -> str:
        """Explicit id, then the run's recorded backup, then earlier attempts, then the newest manifest naming the id"""
        if backup_id:
            path = self.backup_utility.backup_dir / backup_id
            if not path.is_dir():
                raise BackupMissingError(f"Backup with id {backup_id} not found")
            return str(path)

        candidates = []
        if migration_status is not None:
            candidates.append(migration_status.backup_path)
            attempts = await self.migration_tracker.list_attempts()
            candidates.extend(attempt.backup_path for attempt in reversed(attempts))
        for candidate in candidates:
            if candidate and Path(candidate).is_dir():
                return candidate

        backup = await self.backup_utility.find_backup(self.migration_id)
        if backup is None:
            raise BackupMissingError(f"No backup found for migration {self.migration_id}")
        return backup.path

    async def _clear_database(self,
                              options: RollbackOptions,
                              migration_status: Optional[MigrationStatus],
                              result: RollbackResult) -> None:
        cutoff = None
        if options.preserve_new_data:
            end_time = migration_status.end_time if migration_status else None
            if end_time is None:
                result.warnings.append(
                    "preserve_new_data: migration end time unknown, no relational rows were deleted"
                )
                return
            cutoff = to_utc_naive(end_time)
            result.warnings.append(
                f"preserve_new_data: rows of {self.migration_id} updated after "
                f"{cutoff.isoformat()} were kept"
            )

        async with self.relational_store.session() as session:
            deleted = await GarageRepository(session).delete_by_migration(self.migration_id, cutoff)

        result.rows_deleted = deleted
        result.database_cleared = True
        total = sum(deleted.values())
        await self.tracker.create_checkpoint(
            "clear-database",
            {"total_records": total, "processed_records": total, "current_table": "database"},
        )

    async def _restore_memory(self, backup_path: str, result: RollbackResult) -> None:
        restore = await self.backup_utility.restore_from_backup(backup_path)
        if not restore.success:
            raise TransientStoreError(f"Backup restore failed: {restore.error}")

        result.backup_restored = Path(backup_path).name
        result.memory_store_restored = any(
            name.startswith(MEMORY_PREFIX) for name in restore.restored_files
        )
        await self.tracker.create_checkpoint(
            "restore-backup",
            {
                "total_records": len(restore.restored_files),
                "processed_records": len(restore.restored_files),
                "current_table": "memory_store",
            },
        )

    async def _validate(self, backup_path: str, options: RollbackOptions, result: RollbackResult) -> None:
        problems = []

        async with self.relational_store.session() as session:
            remaining = await GarageRepository(session).count_by_migration(self.migration_id)
        leftover = {table: count for table, count in remaining.items() if count}
        if leftover:
            message = f"rows still marked with {self.migration_id}: {leftover}"
            if options.preserve_new_data:
                result.warnings.append(f"preserve_new_data kept {message}")
            else:
                problems.append(message)

        expected_stats = self.backup_utility.read_stats(backup_path)
        if expected_stats is not None:
            actual_stats = self.memory_store.get_stats()
            if actual_stats != expected_stats:
                problems.append(f"memory stats {actual_stats} differ from backup stats {expected_stats}")

        if problems:
            raise IntegrityCheckError(f"Rollback validation failed: {'; '.join(problems)}", result=problems)

        await self.tracker.create_checkpoint(
            "validate-rollback",
            {"total_records": 1, "processed_records": 1, "current_table": "validation"},
        )

    async def _fail(self, error: str) -> None:
        try:
            await self.tracker.update_status(status=MigrationState.FAILED, error=error)
        except MigrationStateError as e:
            logger.warning("Could not mark rollback failed", migration_id=self.migration_id,
                           error=str(e))
        logger.error("Rollback failed", migration_id=self.migration_id, error=error)
