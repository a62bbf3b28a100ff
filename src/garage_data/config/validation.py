"""
Configuration Validation and Loading Logic
Handles YAML loading, saving, and validation for garage data configuration
"""

from typing import Union
from pathlib import Path
import logging
import yaml

from .models import GarageDataConfig

MAX_CONFIG_SIZE = 1024 * 1024


class ConfigValidator:
    """Handles configuration file validation and security checks"""

    @staticmethod
    def validate_file_security(config_path: Path) -> None:
        """Validate configuration file meets security requirements"""
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix.lower() not in ['.yaml', '.yml']:
            raise ValueError(f"Invalid config file extension: {config_path.suffix}")

        if config_path.stat().st_size > MAX_CONFIG_SIZE:
            raise ValueError("Configuration file too large (max 1MB)")


class ConfigLoader:
    """Handles configuration loading from YAML files using native Pydantic validation"""

    @staticmethod
    def load_from_yaml_file(config_path: Union[str, Path]) -> GarageDataConfig:
        """
        Load configuration from YAML file with security validation

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is invalid YAML or fails validation
        """
        config_path = Path(config_path)

        ConfigValidator.validate_file_security(config_path)

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                yaml_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML syntax in {config_path}: {e}")

        if yaml_data is None:
            yaml_data = {}
        if not isinstance(yaml_data, dict):
            raise ValueError("Configuration file must contain a YAML dictionary")

        try:
            config = GarageDataConfig.model_validate(yaml_data)
        except Exception as e:
            raise ValueError(f"Failed to load configuration from {config_path}: {e}")

        config.config_loaded_from = str(config_path)
        logging.info(f"Loaded configuration from {config_path}")
        return config

    @staticmethod
    def load_from_yaml_data(yaml_data: dict) -> GarageDataConfig:
        """Create configuration from YAML dictionary using native Pydantic validation"""
        return GarageDataConfig.model_validate(yaml_data)


class ConfigSaver:
    """Handles configuration saving to YAML files"""

    @staticmethod
    def save_to_yaml_file(config: GarageDataConfig, config_path: Union[str, Path]) -> None:
        """Save configuration to YAML file"""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)

        logging.info(f"Saved configuration to {config_path}")
