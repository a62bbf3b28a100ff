"""
Core Configuration Models
Pydantic models for garage data configuration with validation
"""

from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.enums import LogLevel


class StorageSettings(BaseModel):
    """Relational store and data directory settings"""

    base_data_dir: Optional[str] = Field(default=None, description="Root data directory (default: ~/garage_data)")
    database_url: Optional[str] = Field(default=None, description="SQLAlchemy async URL (default: SQLite file under base_data_dir)")
    enforce_foreign_keys: bool = Field(True, description="Enable PRAGMA foreign_keys for SQLite")
    echo_sql: bool = Field(False, description="Echo SQL statements")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        if v is None:
            return v
        if "://" not in v:
            raise ValueError("database_url must be a SQLAlchemy URL (e.g. sqlite+aiosqlite:///path.db)")
        return v


class MigrationSettings(BaseModel):
    """Defaults for migration runs"""

    batch_size: int = Field(50, ge=1, le=10000, description="Records per batch")
    skip_backup: bool = Field(False, description="Skip the pre-migration backup")
    validate_after: bool = Field(True, description="Run integrity validation after migrating")
    status_dir: Optional[str] = Field(default=None, description="Directory for migration status files")
    default_garage_name: str = Field("Main Garage", min_length=1, description="Garage created when none is configured")


class BackupSettings(BaseModel):
    """Backup bundle settings"""

    backup_dir: Optional[str] = Field(default=None, description="Directory holding backup bundles")
    include_database: bool = Field(True, description="Copy the SQLite database file into backups")
    retention_days: Optional[int] = Field(30, ge=1, description="Delete backups older than this many days")


class ValidationSettings(BaseModel):
    """Security and validation configuration"""

    max_config_size: int = Field(1024 * 1024, description="Maximum config file size (bytes)")
    allowed_extensions: List[str] = Field([".yaml", ".yml"], description="Allowed config file extensions")


class GarageDataConfig(BaseModel):
    """
    Complete garage data configuration with automatic YAML loading

    Features:
    - Direct YAML to Pydantic mapping
    - Validation of every section
    - Extra fields rejected
    """

    storage: StorageSettings = Field(default_factory=StorageSettings)
    migration: MigrationSettings = Field(default_factory=MigrationSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)

    log_level: LogLevel = Field(LogLevel.INFO, description="Logging level")
    json_logs: bool = Field(False, description="Render logs as JSON")
    debug: bool = Field(False, description="Enable debug mode")

    security: ValidationSettings = Field(default_factory=ValidationSettings, exclude=True)

    # Runtime state (not serialized)
    config_loaded_from: Optional[str] = Field(default=None, exclude=True)

    class Config:
        """Pydantic model configuration"""
        validate_assignment = True
        extra = "forbid"

    @model_validator(mode="after")
    def validate_configuration(self):
        """Cross-field validation for configuration consistency"""
        if self.storage.database_url and self.storage.database_url.startswith("sqlite") \
                and not self.storage.database_url.startswith("sqlite+aiosqlite"):
            raise ValueError("SQLite URLs must use the async driver: sqlite+aiosqlite://")
        return self
