"""
Configuration Manager
Loads configuration from YAML with environment overrides
"""

from typing import Optional
from pathlib import Path
import logging
import os

from dotenv import load_dotenv

from .models import GarageDataConfig
from .validation import ConfigLoader, ConfigSaver

ENV_DATABASE_URL = "GARAGE_DATA_DATABASE_URL"
ENV_HOME = "GARAGE_DATA_HOME"
ENV_LOG_LEVEL = "GARAGE_DATA_LOG_LEVEL"


class ConfigManager:
    """
    Configuration manager using the Pydantic system

    Provides:
    - Automatic loading with fallback to defaults
    - .env and environment variable overrides
    - Configuration caching
    """

    def __init__(self, config_file: Optional[str] = None, env_file: Optional[str] = None):
        self.config_file = config_file
        self.env_file = env_file
        self._config: Optional[GarageDataConfig] = None

    @property
    def config(self) -> GarageDataConfig:
        """Get current configuration, loading if needed"""
        if self._config is None:
            self.load_config(self.config_file)
        return self._config

    def load_config(self, config_file: Optional[str] = None) -> GarageDataConfig:
        """Load configuration from file or use defaults"""
        if config_file:
            # An explicit file must load; errors propagate to the operator
            self._config = ConfigLoader.load_from_yaml_file(config_file)
        else:
            default_path = Path(__file__).parent.parent.parent.parent / "config" / "garage_data.yaml"
            if default_path.exists():
                self._config = ConfigLoader.load_from_yaml_file(default_path)
                logging.info(f"Loaded default configuration from {default_path}")
            else:
                self._config = GarageDataConfig()
                logging.warning("No configuration file found, using defaults")

        self._apply_environment_overrides(self._config)
        return self._config

    def _apply_environment_overrides(self, config: GarageDataConfig) -> None:
        """Apply .env / environment overrides on top of file values"""
        if self.env_file:
            load_dotenv(self.env_file, override=False)
        else:
            load_dotenv(override=False)

        database_url = os.environ.get(ENV_DATABASE_URL)
        if database_url:
            config.storage.database_url = database_url
            logging.info(f"Database URL overridden by {ENV_DATABASE_URL}")

        home = os.environ.get(ENV_HOME)
        if home:
            config.storage.base_data_dir = home

        log_level = os.environ.get(ENV_LOG_LEVEL)
        if log_level:
            config.log_level = log_level.upper()

    def save_config(self, config_file: Optional[str] = None) -> bool:
        """Save current configuration to file"""
        if not config_file:
            config_file = self.config_file

        if not config_file:
            logging.error("No config file specified for saving")
            return False

        try:
            ConfigSaver.save_to_yaml_file(self.config, config_file)
            return True
        except OSError as e:
            logging.error(f"Failed to save configuration: {e}")
            return False

    def reset_to_defaults(self):
        """Reset configuration to defaults"""
        self._config = GarageDataConfig()
        logging.info("Configuration reset to defaults")
