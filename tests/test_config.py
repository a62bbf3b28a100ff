"""
Unit tests for configuration loading
Tests defaults, YAML mapping and environment overrides
"""

import pytest
from pydantic import ValidationError

from garage_data.config import ConfigLoader, ConfigManager, ConfigSaver, GarageDataConfig
from garage_data.models import LogLevel


class TestGarageDataConfig:
    """Test configuration model validation"""

    def test_defaults(self):
        config = GarageDataConfig()
        assert config.migration.batch_size == 50
        assert config.migration.default_garage_name == "Main Garage"
        assert config.backup.retention_days == 30
        assert config.storage.enforce_foreign_keys
        assert config.log_level == LogLevel.INFO

    def test_extra_fields_rejected(self):
        with pytest.raises(ValidationError):
            GarageDataConfig.model_validate({"unknown": 1})

    def test_batch_size_bounds(self):
        with pytest.raises(ValidationError):
            GarageDataConfig.model_validate({"migration": {"batch_size": 0}})

    def test_sqlite_requires_async_driver(self):
        with pytest.raises(ValidationError):
            GarageDataConfig.model_validate({"storage": {"database_url": "sqlite:///garage.db"}})

        config = GarageDataConfig.model_validate({"storage": {"database_url": "sqlite+aiosqlite:///garage.db"}})
        assert config.storage.database_url == "sqlite+aiosqlite:///garage.db"

    def test_database_url_must_be_url(self):
        with pytest.raises(ValidationError):
            GarageDataConfig.model_validate({"storage": {"database_url": "garage.db"}})


class TestConfigFiles:
    """Test YAML loading and saving"""

    def test_load_from_yaml(self, data_dir):
        path = data_dir / "garage.yaml"
        path.write_text("migration:\n  batch_size: 25\nlog_level: DEBUG\n", encoding="utf-8")

        config = ConfigLoader.load_from_yaml_file(path)

        assert config.migration.batch_size == 25
        assert config.log_level == LogLevel.DEBUG
        assert config.config_loaded_from == str(path)

    def test_empty_yaml_uses_defaults(self, data_dir):
        path = data_dir / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert ConfigLoader.load_from_yaml_file(path).migration.batch_size == 50

    def test_invalid_extension_rejected(self, data_dir):
        path = data_dir / "garage.json"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(ValueError):
            ConfigLoader.load_from_yaml_file(path)

    def test_missing_file(self, data_dir):
        with pytest.raises(FileNotFoundError):
            ConfigLoader.load_from_yaml_file(data_dir / "missing.yaml")

    def test_invalid_values_rejected(self, data_dir):
        path = data_dir / "bad.yaml"
        path.write_text("backup:\n  retention_days: 0\n", encoding="utf-8")
        with pytest.raises(ValueError):
            ConfigLoader.load_from_yaml_file(path)

    def test_saved_config_loads_back(self, data_dir):
        config = GarageDataConfig()
        config.migration.batch_size = 75
        path = data_dir / "saved.yaml"

        ConfigSaver.save_to_yaml_file(config, path)

        assert ConfigLoader.load_from_yaml_file(path).migration.batch_size == 75


class TestConfigManager:
    """Test environment overrides"""

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for name in ("GARAGE_DATA_DATABASE_URL", "GARAGE_DATA_HOME", "GARAGE_DATA_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

    def test_environment_overrides(self, data_dir, monkeypatch):
        path = data_dir / "garage.yaml"
        path.write_text("log_level: INFO\n", encoding="utf-8")
        monkeypatch.setenv("GARAGE_DATA_DATABASE_URL", "sqlite+aiosqlite:///other.db")
        monkeypatch.setenv("GARAGE_DATA_HOME", str(data_dir))
        monkeypatch.setenv("GARAGE_DATA_LOG_LEVEL", "warning")

        config = ConfigManager(str(path), env_file=str(data_dir / "missing.env")).config

        assert config.storage.database_url == "sqlite+aiosqlite:///other.db"
        assert config.storage.base_data_dir == str(data_dir)
        assert config.log_level == LogLevel.WARNING

    def test_explicit_file_errors_propagate(self, data_dir):
        with pytest.raises(FileNotFoundError):
            ConfigManager(str(data_dir / "missing.yaml")).config

    def test_save_and_reset(self, data_dir):
        path = data_dir / "garage.yaml"
        path.write_text("migration:\n  batch_size: 10\n", encoding="utf-8")
        manager = ConfigManager(str(path), env_file=str(data_dir / "missing.env"))
        assert manager.config.migration.batch_size == 10

        target = data_dir / "copy.yaml"
        assert manager.save_config(str(target))
        assert target.exists()

        manager.reset_to_defaults()
        assert manager.config.migration.batch_size == 50
