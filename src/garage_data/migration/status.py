"""
Migration Status Tracking
Persists one JSON status document per migration id with an append-only
checkpoint list, so interrupted runs can be resumed and rolled back.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from ..models.domain import generate_uuid7, utc_now
from ..models.enums import MigrationState
from .errors import MigrationStateError

logger = structlog.get_logger("migration.status")

# Allowed status transitions; terminal states have none
TRANSITIONS = {
    MigrationState.PENDING: {MigrationState.IN_PROGRESS, MigrationState.FAILED},
    MigrationState.IN_PROGRESS: {MigrationState.COMPLETED, MigrationState.FAILED},
    MigrationState.COMPLETED: set(),
    MigrationState.FAILED: set(),
}


class CheckpointData(BaseModel):
    """Progress of one step at a batch boundary"""

    total_records: int = Field(..., ge=0)
    processed_records: int = Field(..., ge=0)
    current_table: str
    last_processed_key: Optional[str] = None


class Checkpoint(BaseModel):
    """Immutable progress marker"""

    id: str = Field(default_factory=generate_uuid7)
    step: str
    timestamp: datetime = Field(default_factory=utc_now)
    data: CheckpointData
    metadata: Optional[Dict[str, Any]] = None

    class Config:
        frozen = True


class MigrationStatus(BaseModel):
    """Status document of one migration attempt"""

    id: str
    status: MigrationState = MigrationState.PENDING
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    total_steps: int = Field(0, ge=0)
    completed_steps: int = Field(0, ge=0)
    backup_path: Optional[str] = None
    attempt: int = Field(1, ge=1)
    checkpoints: List[Checkpoint] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class MigrationStatusTracker:
    """
    File-backed tracker of one migration id.

    The current attempt lives in ``status-{id}.json``; when a terminal record
    is re-initialized it is archived as ``status-{id}.attempt-{n}.json`` and
    never touched again.
    """

    def __init__(self, migration_id: str, status_dir: Path):
        if not migration_id:
            raise ValueError("migration_id is required")
        self.migration_id = migration_id
        self.status_dir = Path(status_dir)
        self.status_dir.mkdir(parents=True, exist_ok=True)
        self.status_file = self.status_dir / f"status-{migration_id}.json"

    def _attempt_file(self, attempt: int) -> Path:
        return self.status_dir / f"status-{self.migration_id}.attempt-{attempt}.json"

    # ============= Persistence =============

    def _read(self, path: Path) -> MigrationStatus:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return MigrationStatus.model_validate(json.load(f))
        except FileNotFoundError:
            raise MigrationStateError(f"No status recorded for migration {self.migration_id}")
        except (json.JSONDecodeError, ValueError) as e:
            raise MigrationStateError(f"Failed to read migration status {path.name}: {e}") from e

    def _save(self, status: MigrationStatus) -> None:
        tmp_path = self.status_file.with_suffix(".json.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(status.model_dump(mode="json"), f, indent=2)
        tmp_path.replace(self.status_file)

    # ============= Lifecycle =============

    def exists(self) -> bool:
        return self.status_file.exists()

    async def initialize_migration(self,
                                   total_steps: int,
                                   backup_path: Optional[str] = None) -> MigrationStatus:
        """
        Create the pending record of a new attempt.

        A terminal predecessor is archived first; a non-terminal one means a
        run is still in flight and is refused.
        """
        attempt = 1
        if self.exists():
            previous = self._read(self.status_file)
            if not previous.is_terminal:
                raise MigrationStateError(
                    f"Migration {self.migration_id} is {previous.status.value}; "
                    f"resume or wait for it instead of re-initializing"
                )
            self.status_file.replace(self._attempt_file(previous.attempt))
            attempt = previous.attempt + 1
            logger.info("Archived previous attempt",
                        migration_id=self.migration_id, attempt=previous.attempt,
                        status=previous.status.value)

        status = MigrationStatus(
            id=self.migration_id,
            total_steps=total_steps,
            backup_path=backup_path,
            attempt=attempt,
        )
        self._save(status)
        logger.info("Migration initialized", migration_id=self.migration_id,
                    total_steps=total_steps, attempt=attempt)
        return status

    async def update_status(self, **fields) -> MigrationStatus:
        """
        Merge fields into the current record.

        Raises:
            MigrationStateError: If the record is terminal or the transition is illegal
        """
        current = self._read(self.status_file)
        if current.is_terminal:
            raise MigrationStateError(
                f"Migration {self.migration_id} is {current.status.value} and can no longer change"
            )

        new_state = MigrationState(fields.get("status", current.status))
        if new_state != current.status and new_state not in TRANSITIONS[current.status]:
            raise MigrationStateError(
                f"Illegal transition {current.status.value} -> {new_state.value} "
                f"for migration {self.migration_id}"
            )
        if "checkpoints" in fields:
            raise MigrationStateError("Checkpoints are append-only; use create_checkpoint()")

        data = current.model_dump()
        data.update(fields)
        data["status"] = new_state
        if new_state.is_terminal:
            data["end_time"] = utc_now()

        updated = MigrationStatus.model_validate(data)
        self._save(updated)
        if new_state != current.status:
            logger.info("Migration status changed", migration_id=self.migration_id,
                        previous=current.status.value, status=new_state.value,
                        error=updated.error)
        return updated

    async def create_checkpoint(self,
                                step: str,
                                data: Dict[str, Any],
                                metadata: Optional[Dict[str, Any]] = None) -> Checkpoint:
        """Append a checkpoint without changing the top-level status"""
        current = self._read(self.status_file)
        if current.is_terminal:
            raise MigrationStateError(
                f"Migration {self.migration_id} is {current.status.value}; checkpoints are closed"
            )

        checkpoint = Checkpoint(step=step, data=CheckpointData(**data), metadata=metadata)
        updated = current.model_copy(update={"checkpoints": [*current.checkpoints, checkpoint]})
        self._save(updated)
        logger.debug("Checkpoint created", migration_id=self.migration_id, step=step,
                     processed=checkpoint.data.processed_records,
                     total=checkpoint.data.total_records)
        return checkpoint

    # ============= Queries =============

    async def get_status(self) -> MigrationStatus:
        return self._read(self.status_file)

    async def get_last_checkpoint(self) -> Optional[Checkpoint]:
        status = self._read(self.status_file)
        return status.checkpoints[-1] if status.checkpoints else None

    async def get_step_checkpoints(self, step: str) -> List[Checkpoint]:
        status = self._read(self.status_file)
        return [checkpoint for checkpoint in status.checkpoints if checkpoint.step == step]

    async def can_resume(self) -> bool:
        """An interrupted run (still in_progress) can be resumed"""
        if not self.exists():
            return False
        try:
            status = self._read(self.status_file)
        except MigrationStateError:
            return False
        return status.status == MigrationState.IN_PROGRESS

    async def list_attempts(self) -> List[MigrationStatus]:
        """Archived attempts, oldest first"""
        attempts = []
        for path in self.status_dir.glob(f"status-{self.migration_id}.attempt-*.json"):
            attempts.append(self._read(path))
        return sorted(attempts, key=lambda status: status.attempt)

    async def get_progress(self) -> Dict[str, Any]:
        """Progress derived purely from the stored record"""
        status = self._read(self.status_file)
        percentage = 0
        if status.total_steps > 0:
            percentage = int(round(status.completed_steps / status.total_steps * 100))

        last = status.checkpoints[-1] if status.checkpoints else None
        current_step = last.step if last else "Not started"

        details = f"{status.completed_steps}/{status.total_steps} steps completed"
        if last and last.data.total_records > 0:
            record_progress = int(round(last.data.processed_records / last.data.total_records * 100))
            details += f" | Current table: {last.data.current_table} ({record_progress}%)"

        return {
            "percentage": percentage,
            "current_step": current_step,
            "details": details,
        }

    async def cleanup(self) -> None:
        """Remove the status document and every archived attempt"""
        paths = [self.status_file, *self.status_dir.glob(f"status-{self.migration_id}.attempt-*.json")]
        for path in paths:
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Failed to remove status file", path=str(path), error=str(e))
