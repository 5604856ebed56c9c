"""
Configuration Management System

This module provides centralized configuration management using YAML and JSON files.
Supports dot-notation access, per-component sections and hot reloading.
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Manage engine configuration from YAML and JSON files

    Provides:
    - Load all config files on startup
    - Dot notation access: config.get('validator.maxSpeedKmh')
    - Hot reload capability
    - Default values for missing keys

    A config file named ``corridor.yaml`` with top-level keys ``validator``,
    ``predictor`` ... is merged into the root, so ``validator.maxSpeedKmh``
    resolves whether the section lives in its own file or in a shared one.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_dir: Path to config directory
                (default: $CORRIDOR_CONFIG_DIR or backend/config)
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        elif os.getenv("CORRIDOR_CONFIG_DIR"):
            self.config_dir = Path(os.environ["CORRIDOR_CONFIG_DIR"])
        else:
            self.config_dir = Path(__file__).parent.parent / "config"

        self.configs: Dict[str, Any] = {}
        self._load_all_configs()

    def _load_all_configs(self):
        """Load all configuration files from config directory"""
        if not self.config_dir.exists():
            logger.warning("[CONFIG] Config directory missing, using defaults: %s", self.config_dir)
            return

        for yaml_file in sorted(self.config_dir.glob("*.yaml")):
            try:
                with open(yaml_file, 'r') as f:
                    self._merge(yaml_file.stem, yaml.safe_load(f) or {})
                logger.info("[CONFIG] Loaded: %s", yaml_file.name)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("[CONFIG] Failed to load %s: %s", yaml_file.name, e)

        for json_file in sorted(self.config_dir.glob("*.json")):
            try:
                with open(json_file, 'r') as f:
                    self._merge(json_file.stem, json.load(f))
                logger.info("[CONFIG] Loaded: %s", json_file.name)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("[CONFIG] Failed to load %s: %s", json_file.name, e)

    def _merge(self, name: str, data: Any):
        """Store a file under its stem and lift its sections to the root"""
        self.configs[name] = data
        if isinstance(data, dict):
            for section, values in data.items():
                if isinstance(values, dict):
                    self.configs.setdefault(section, {}).update(values)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot notation key

        Examples:
            config.get('validator.maxSpeedKmh')
            config.get('targeting.lateralBufferMeters', 500)

        Args:
            key: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.configs
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def section(self, name: str) -> Dict[str, Any]:
        """Get a top-level section as a (copied) dict"""
        return dict(self.configs.get(name, {}) or {})

    def get_system_config(self) -> Dict[str, Any]:
        """Get system configuration section"""
        return self.section('system')

    def get_validator_config(self) -> Dict[str, Any]:
        """Get telemetry validator configuration section"""
        return self.section('validator')

    def get_predictor_config(self) -> Dict[str, Any]:
        """Get route predictor configuration section"""
        return self.section('predictor')

    def get_traffic_config(self) -> Dict[str, Any]:
        """Get traffic provider configuration section"""
        return self.section('traffic')

    def get_corridor_config(self) -> Dict[str, Any]:
        """Get corridor state machine configuration section"""
        return self.section('corridor')

    def get_targeting_config(self) -> Dict[str, Any]:
        """Get alert targeting configuration section"""
        return self.section('targeting')

    def get_registry_config(self) -> Dict[str, Any]:
        """Get orchestration registry configuration section"""
        return self.section('registry')

    def reload(self):
        """Reload all configuration files"""
        logger.info("[CONFIG] Reloading configuration...")
        self.configs.clear()
        self._load_all_configs()

    def set(self, key: str, value: Any):
        """
        Set a configuration value (runtime only, not persisted)

        Args:
            key: Dot-separated key path
            value: Value to set
        """
        keys = key.split('.')
        config = self.configs

        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value


def configure_logging(level: Optional[str] = None):
    """Configure root logging once for the application process"""
    level_name = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Global configuration instance
_config: Optional[ConfigManager] = None


def get_config() -> ConfigManager:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = ConfigManager()
    return _config


def init_config(config_dir: Optional[str] = None) -> ConfigManager:
    """(Re)initialize the global configuration from a directory"""
    global _config
    _config = ConfigManager(config_dir)
    return _config
