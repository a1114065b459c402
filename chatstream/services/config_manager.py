"""
Configuration Manager - Handle server settings persistence
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "CHATSTREAM_CONFIG_DIR"


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Manage configuration persistence"""

    _instance = None
    _config_file = None

    def __init__(self, config_dir: str | os.PathLike | None = None):
        # Precedence: explicit argument, environment, home directory
        config_dir = config_dir or os.environ.get(CONFIG_DIR_ENV)
        if not config_dir:
            config_dir = os.path.expanduser("~/.chatstream")

        config_path = Path(config_dir)
        try:
            config_path.mkdir(parents=True, exist_ok=True)
            self._config_file = config_path / "config.json"
        except OSError as e:
            logger.warning("Cannot write to %s: %s", config_dir, e)
            tmp_dir = Path(tempfile.gettempdir()) / "chatstream"
            tmp_dir.mkdir(parents=True, exist_ok=True)
            self._config_file = tmp_dir / "config.json"
            logger.warning("Using temporary config path: %s", self._config_file)

        self._config = self._load_config()

    @classmethod
    def get_instance(cls) -> "ConfigManager":
        """Get singleton instance"""
        if cls._instance is None:
            cls._instance = ConfigManager()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        cls._instance = None

    def _load_config(self) -> dict[str, Any]:
        """Load configuration from file, layered over the defaults"""
        if not self._config_file.exists():
            return self._default_config()

        try:
            with open(self._config_file) as f:
                return _deep_merge(self._default_config(), json.load(f))
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Error loading config: %s", e)
            return self._default_config()

    def _default_config(self) -> dict[str, Any]:
        """Get default configuration"""
        return {
            "ollama": {
                "host": "http://127.0.0.1:11434",
                "timeout": 300,
                "connectTimeout": 5,
                "pullTimeout": 3600,
            },
            "stream": {
                "persistInterval": 0.25,
                "maxToolRounds": 25,
            },
            "server": {"host": "127.0.0.1", "port": 8000},
            "logging": {"level": "INFO"},
        }

    def get_config(self) -> dict[str, Any]:
        """Get current configuration"""
        # Reload config from file to ensure we have the latest
        self._config = self._load_config()
        return copy.deepcopy(self._config)

    def save_config(self, config: dict[str, Any]):
        """Save configuration to file"""
        self._config = _deep_merge(self._config, config)

        self._config_file.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(self._config_file, "w") as f:
                json.dump(self._config, f, indent=2)
        except OSError as e:
            raise RuntimeError(f"Failed to save config: {e}")

    def get(self, key: str, default=None):
        """Get specific config value"""
        return self._config.get(key, default)

    def set(self, key: str, value: Any):
        """Set specific config value"""
        self._config[key] = value
        self.save_config(self._config)
