"""
Configuration management for nuc2not.

This module handles loading and accessing configuration values from config.yaml.
It provides a centralized way to tune pacing, retry limits and paths without
changing code. API credentials are never read from the YAML file; they come
from the environment.
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
import logging


DEFAULT_CONFIG: Dict[str, Any] = {
    "source": {
        "base_url": "https://api.nuclino.com/v0",
        "wait_ms": 750,
        "max_retries": 3,
        "timeout": 30.0,
        "page_size": 100
    },
    "destination": {
        "base_url": "https://api.notion.com/v1",
        "notion_version": "2022-06-28",
        "wait_ms": 350,
        "max_retries": 5,
        "backoff_initial": 1.0,
        "backoff_multiplier": 2.0,
        "backoff_max": 60.0,
        "batch_size": 100,
        "max_depth": 4,
        "timeout": 60.0
    },
    "paths": {
        "cache_dir": ".cache",
        "log_file": "nuc2not.log"
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    }
}


class ConfigManager:
    """
    Manages configuration loading and access for nuc2not.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file, layered over the defaults."""
        merged = self._get_default_config()
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}

            if not isinstance(loaded, dict):
                raise ValueError(f"Configuration root must be a mapping: {self.config_path}")

            self._merge(merged, loaded)
            logging.info(f"Configuration loaded from {self.config_path}")

        except FileNotFoundError as e:
            logging.debug(f"{e}; using defaults")
        except (yaml.YAMLError, ValueError, OSError) as e:
            logging.error(f"Failed to load configuration: {e}")

        self._config = merged

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return copy.deepcopy(DEFAULT_CONFIG)

    @classmethod
    def _merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                cls._merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "source.wait_ms")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("source.wait_ms")          # Returns 750
            config.get("destination.max_depth")   # Returns 4
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Override a value in memory, e.g. from a command line flag."""
        keys = key_path.split('.')
        section = self._config
        for key in keys[:-1]:
            section = section.setdefault(key, {})
        section[keys[-1]] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def source_wait_seconds(self) -> float:
        """Pacing interval before every source API call."""
        return float(self.get("source.wait_ms", 750)) / 1000.0

    @property
    def destination_wait_seconds(self) -> float:
        """Pacing interval before every destination API call."""
        return float(self.get("destination.wait_ms", 350)) / 1000.0

    @property
    def max_depth(self) -> int:
        """Deepest list nesting the translator emits before flattening."""
        return int(self.get("destination.max_depth", 4))

    @property
    def cache_directory(self) -> str:
        """Get the root directory holding per-workspace caches."""
        return self.get("paths.cache_dir", ".cache")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "nuc2not.log")

    @property
    def source_api_key(self) -> Optional[str]:
        """Nuclino API key from the environment."""
        return os.environ.get("NUCLINO_API_KEY")

    @property
    def destination_api_key(self) -> Optional[str]:
        """Notion integration token from the environment."""
        return os.environ.get("NOTION_API_KEY")


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
