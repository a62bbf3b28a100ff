"""
Data Backup Utility
Backup bundles of the memory store (and optionally the SQLite file) taken
before a migration, and restore of those bundles for rollback.
"""

import json
import logging
import shutil
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..data.database import RelationalStore
from ..models.domain import utc_now
from ..storage.memory_store import COLLECTIONS, KeyedMemoryStore

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "backup-metadata.json"
STATS_FILENAME = "memorystore-stats.json"
MEMORY_PREFIX = "memorystore-"
SQLITE_PREFIX = "sqlite-"
BACKUP_FORMAT_VERSION = "1.0.0"


class BackupSerializer(ABC):
    """Encoding of backup artifacts"""

    extension: str = ""

    @abstractmethod
    def dumps(self, data: Any) -> bytes:
        """Encode one artifact"""

    @abstractmethod
    def loads(self, raw: bytes) -> Any:
        """Decode one artifact"""


class JsonBackupSerializer(BackupSerializer):
    """UTF-8, indented JSON artifacts"""

    extension = ".json"

    def __init__(self, indent: int = 2):
        self.indent = indent

    def dumps(self, data: Any) -> bytes:
        return json.dumps(data, indent=self.indent, ensure_ascii=False, default=str).encode("utf-8")

    def loads(self, raw: bytes) -> Any:
        return json.loads(raw.decode("utf-8"))


class BackupManifest(BaseModel):
    """Contents of backup-metadata.json"""

    id: str
    migration_id: str = Field(..., alias="migrationId")
    timestamp: datetime
    files: List[str] = Field(default_factory=list)
    total_size: int = Field(0, alias="totalSize")
    version: str = BACKUP_FORMAT_VERSION
    options: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class BackupResult(BaseModel):
    success: bool
    backup_id: Optional[str] = None
    backup_path: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    size: int = 0
    files: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class RestoreResult(BaseModel):
    success: bool
    restored_files: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class BackupInfo(BaseModel):
    """Listing entry of an existing backup"""

    id: str
    path: str
    timestamp: datetime
    size: int
    migration_id: str
    files: List[str] = Field(default_factory=list)


class DataBackupUtility:
    """
    Creates, lists, restores and expires backup bundles

    - One directory per bundle: {backup_dir}/{migration_id}-{epoch_ms}/
    - One artifact per memory container plus stats and manifest
    - Restore validates every artifact before touching live state
    """

    def __init__(self,
                 memory_store: KeyedMemoryStore,
                 backup_dir: Path,
                 relational_store: Optional[RelationalStore] = None,
                 serializer: Optional[BackupSerializer] = None):
        self.memory_store = memory_store
        self.relational_store = relational_store
        self.serializer = serializer or JsonBackupSerializer()
        self.backup_dir = Path(backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def _artifact_name(self, collection: str) -> str:
        return f"{MEMORY_PREFIX}{collection}{self.serializer.extension}"

    # ============= Create =============

    async def create_backup(self,
                            migration_id: str,
                            include_memory_store: bool = True,
                            include_database: bool = True,
                            retention_days: Optional[int] = None) -> BackupResult:
        """
        Write a complete backup bundle.

        Failures are reported in the result and leave no partial bundle.
        """
        timestamp = utc_now()
        backup_path = self._create_bundle_dir(migration_id)
        backup_id = backup_path.name

        try:
            files: List[str] = []
            total_size = 0

            if include_memory_store:
                snapshot, stats = self.memory_store.export_state()
                for collection in COLLECTIONS:
                    name = self._artifact_name(collection)
                    total_size += self._write_artifact(backup_path / name, snapshot[collection])
                    files.append(name)
                total_size += self._write_artifact(backup_path / STATS_FILENAME, stats)
                files.append(STATS_FILENAME)

            if include_database:
                db_files, db_size = await self._copy_database(backup_path)
                files.extend(db_files)
                total_size += db_size

            manifest = BackupManifest(
                id=backup_id,
                migration_id=migration_id,
                timestamp=timestamp,
                files=files,
                total_size=total_size,
                options={
                    "includeMemoryStore": include_memory_store,
                    "includeDatabase": include_database,
                    "retentionDays": retention_days,
                },
            )
            self._write_artifact(backup_path / MANIFEST_FILENAME, manifest.model_dump(mode="json", by_alias=True))
            files.append(MANIFEST_FILENAME)

            logger.info(f"Backup {backup_id} created: {len(files)} files, {total_size} bytes")

        except (OSError, TypeError, ValueError) as e:
            shutil.rmtree(backup_path, ignore_errors=True)
            logger.error(f"Backup for migration {migration_id} failed: {e}")
            return BackupResult(
                success=False,
                backup_id=backup_id,
                backup_path=str(backup_path),
                timestamp=timestamp,
                error=str(e),
            )

        if retention_days:
            await self.cleanup_old_backups(retention_days, keep=[backup_id])

        return BackupResult(
            success=True,
            backup_id=backup_id,
            backup_path=str(backup_path),
            timestamp=timestamp,
            size=total_size,
            files=files,
        )

    def _create_bundle_dir(self, migration_id: str) -> Path:
        epoch_ms = int(time.time() * 1000)
        while True:
            path = self.backup_dir / f"{migration_id}-{epoch_ms}"
            try:
                path.mkdir(parents=True)
                return path
            except FileExistsError:
                epoch_ms += 1

    def _write_artifact(self, path: Path, data: Any) -> int:
        raw = self.serializer.dumps(data)
        path.write_bytes(raw)
        return len(raw)

    async def _copy_database(self, backup_path: Path):
        """Copy the SQLite file and its -wal/-shm companions"""
        db_file = self.relational_store.database_file if self.relational_store else None
        if db_file is None or not db_file.exists():
            logger.debug("No SQLite database file to back up")
            return [], 0

        # Close pooled connections so no write lands mid-copy; the store reopens on next use
        await self.relational_store.dispose()

        files = []
        size = 0
        for source in (db_file, Path(f"{db_file}-wal"), Path(f"{db_file}-shm")):
            if not source.exists():
                continue
            target = backup_path / f"{SQLITE_PREFIX}{source.name}"
            shutil.copy2(source, target)
            files.append(target.name)
            size += target.stat().st_size
        return files, size

    # ============= Restore =============

    async def restore_from_backup(self,
                                  backup_path: str,
                                  restore_database: bool = False) -> RestoreResult:
        """
        Restore the memory store (and optionally the database file) from a bundle.

        Every artifact listed in the manifest must be present and parse before
        any live state is replaced.
        """
        path = Path(backup_path)
        try:
            memory_files, sqlite_files, snapshot = self._load_bundle(path)

            restored: List[str] = []
            if restore_database and sqlite_files:
                await self._restore_database(path, sqlite_files)
                restored.extend(sqlite_files)

            if memory_files:
                self.memory_store.load_snapshot(snapshot)
                restored.extend(memory_files)

            logger.info(f"Restored backup {path.name}: {len(restored)} files")
            return RestoreResult(success=True, restored_files=restored)

        except (OSError, ValueError) as e:
            logger.error(f"Restore from {path} failed: {e}")
            return RestoreResult(success=False, error=str(e))

    async def verify_backup(self, backup_path: str) -> Optional[str]:
        """Check a bundle without restoring it; returns the problem, or None when usable"""
        try:
            self._load_bundle(Path(backup_path))
        except (OSError, ValueError) as e:
            return str(e)
        return None

    def _load_bundle(self, path: Path) -> Tuple[List[str], List[str], Dict[str, Any]]:
        """
        Read and validate every artifact of a bundle.

        Returns:
            (memory artifact names, sqlite artifact names, parsed memory snapshot)
        """
        manifest = self.read_manifest(path)

        memory_files = [
            name for name in manifest.files
            if name.startswith(MEMORY_PREFIX) and name != STATS_FILENAME
        ]
        sqlite_files = [name for name in manifest.files if name.startswith(SQLITE_PREFIX)]

        missing = [name for name in memory_files + sqlite_files if not (path / name).exists()]
        if missing:
            raise FileNotFoundError(f"Backup {path.name} is missing artifacts: {', '.join(missing)}")

        snapshot = {}
        for name in memory_files:
            collection = name[len(MEMORY_PREFIX):-len(self.serializer.extension) or None]
            if collection not in COLLECTIONS:
                logger.warning(f"Ignoring unknown backup artifact {name}")
                continue
            snapshot[collection] = self.serializer.loads((path / name).read_bytes())

        KeyedMemoryStore.validate_snapshot(snapshot)
        return memory_files, sqlite_files, snapshot

    async def _restore_database(self, path: Path, sqlite_files: List[str]) -> None:
        db_file = self.relational_store.database_file if self.relational_store else None
        if db_file is None:
            raise ValueError("No SQLite relational store configured for database restore")

        # Release pooled connections before replacing the file
        await self.relational_store.dispose()

        for suffix in ("-wal", "-shm"):
            companion = Path(f"{db_file}{suffix}")
            if f"{SQLITE_PREFIX}{companion.name}" not in sqlite_files and companion.exists():
                companion.unlink()

        for name in sqlite_files:
            target = db_file.parent / name[len(SQLITE_PREFIX):]
            shutil.copy2(path / name, target)

    # ============= Queries =============

    def read_manifest(self, backup_path: Path) -> BackupManifest:
        path = Path(backup_path)
        if not path.is_dir():
            raise FileNotFoundError(f"Backup path does not exist: {path}")
        manifest_path = path / MANIFEST_FILENAME
        if not manifest_path.exists():
            raise FileNotFoundError(f"Invalid backup {path.name}: metadata file not found")
        return BackupManifest.model_validate(self.serializer.loads(manifest_path.read_bytes()))

    def read_stats(self, backup_path: Path) -> Optional[Dict[str, int]]:
        """Memory store stats recorded in a bundle, if any"""
        stats_path = Path(backup_path) / STATS_FILENAME
        if not stats_path.exists():
            return None
        return self.serializer.loads(stats_path.read_bytes())

    async def list_backups(self, migration_id: Optional[str] = None) -> List[BackupInfo]:
        """Backups with a readable manifest, newest first"""
        backups = []
        for entry in self.backup_dir.iterdir():
            if not entry.is_dir() or not (entry / MANIFEST_FILENAME).exists():
                continue
            try:
                manifest = self.read_manifest(entry)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable backup {entry.name}: {e}")
                continue
            if migration_id is not None and manifest.migration_id != migration_id:
                continue
            backups.append(BackupInfo(
                id=entry.name,
                path=str(entry),
                timestamp=manifest.timestamp,
                size=manifest.total_size,
                migration_id=manifest.migration_id,
                files=manifest.files,
            ))

        return sorted(backups, key=lambda backup: backup.timestamp, reverse=True)

    async def find_backup(self, migration_id: str) -> Optional[BackupInfo]:
        """Newest backup taken for a migration id"""
        backups = await self.list_backups(migration_id)
        return backups[0] if backups else None

    async def cleanup_old_backups(self, retention_days: int, keep: Optional[List[str]] = None) -> int:
        """Delete backups older than the retention period; returns how many were removed"""
        cutoff = utc_now() - timedelta(days=retention_days)
        keep = set(keep or [])
        removed = 0

        for backup in await self.list_backups():
            if backup.id in keep or backup.timestamp >= cutoff:
                continue
            try:
                shutil.rmtree(backup.path)
                removed += 1
                logger.info(f"Cleaned up old backup: {backup.id}")
            except OSError as e:
                logger.warning(f"Failed to remove old backup {backup.id}: {e}")

        return removed
