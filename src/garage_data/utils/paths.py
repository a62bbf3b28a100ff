"""
Centralized path management for garage data storage.

Single source of truth for the data, database, backup and migration-status
directories. Everything lives under one base directory so tests can point the
whole tree at a temporary location.
"""

from pathlib import Path
from typing import Optional
import logging

logger = logging.getLogger(__name__)

DATABASE_FILENAME = "parking-garage.db"


class DataPaths:
    """Centralized path management for garage data storage"""

    def __init__(self,
                 base_data_dir: Optional[str] = None,
                 backup_dir: Optional[str] = None,
                 status_dir: Optional[str] = None):
        """
        Initialize data paths.

        Args:
            base_data_dir: Override default base directory (for testing)
            backup_dir: Override the backup bundle directory
            status_dir: Override the migration status directory
        """
        if base_data_dir:
            self.base_data_dir = Path(base_data_dir)
        else:
            # Default: ~/garage_data/ (outside project directory)
            self.base_data_dir = Path.home() / "garage_data"

        self.database_dir = self.base_data_dir / "database"
        self.migration_dir = self.base_data_dir / ".migration"
        self.backups_dir = Path(backup_dir) if backup_dir else self.migration_dir / "backups"
        self.status_dir = Path(status_dir) if status_dir else self.migration_dir / "status"

        self._ensure_directories()

    def _ensure_directories(self):
        """Create all required directories"""
        directories = [
            self.base_data_dir,
            self.database_dir,
            self.backups_dir,
            self.status_dir,
        ]

        for directory in directories:
            try:
                directory.mkdir(parents=True, exist_ok=True)
                logger.debug(f"Ensured directory exists: {directory}")
            except OSError as e:
                logger.error(f"Failed to create directory {directory}: {e}")
                raise

    @property
    def database_path(self) -> Path:
        """SQLite database file path"""
        return self.database_dir / DATABASE_FILENAME

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL of the default SQLite database"""
        return f"sqlite+aiosqlite:///{self.database_path}"

    def get_status_path(self, migration_id: str) -> Path:
        """Status document of a migration run"""
        return self.status_dir / f"status-{migration_id}.json"

    def get_attempt_path(self, migration_id: str, attempt: int) -> Path:
        """Archived status document of an earlier attempt"""
        return self.status_dir / f"status-{migration_id}.attempt-{attempt}.json"

    def get_backup_path(self, backup_id: str) -> Path:
        """Directory of a backup bundle"""
        return self.backups_dir / backup_id


def get_data_paths(base_data_dir: Optional[str] = None) -> DataPaths:
    """Build DataPaths for the given base directory (default home location)"""
    return DataPaths(base_data_dir)
