"""
garage_data Configuration Package
Pydantic models with automatic YAML mapping and environment overrides

Public API:
    from .config import GarageDataConfig, ConfigManager
    from .config import StorageSettings, MigrationSettings, BackupSettings
"""

from .models import (
    GarageDataConfig,
    StorageSettings,
    MigrationSettings,
    BackupSettings,
    ValidationSettings,
)

from .manager import ConfigManager

from .validation import ConfigLoader, ConfigSaver, ConfigValidator

__all__ = [
    "GarageDataConfig",
    "ConfigManager",
    "StorageSettings",
    "MigrationSettings",
    "BackupSettings",
    "ValidationSettings",

    # Validation utilities (advanced usage)
    "ConfigLoader",
    "ConfigSaver",
    "ConfigValidator",
]
