"""Configuration loader for the BounceBack trainer.

A small singleton around a single JSON file (default: ./config.json) that:
- Provides dot-notation access (e.g., config.get("vision.tracker.cooldown_frames", 15))
- Lets callers override values at runtime (tests, calibration tools)
- Persists overrides only when a config file was explicitly selected
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class Config:
    """Dot-notation configuration singleton.

    Example:
        config = Config()
        interval = config.get("vision.calibration.interval_frames", 30)
        config.set("vision.session.max_processing_fps", 15.0)
    """

    _instance: Optional["Config"] = None
    _config_data: dict[str, Any] = {}
    _config_file: Optional[Path] = None
    _explicit_file: bool = False

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    def set_config_file(cls, config_path: str | Path) -> None:
        """Select the configuration file and load it.

        Args:
            config_path: Path to a JSON configuration file
        """
        if cls._instance is None:
            cls._instance = cls()

        cls._config_file = Path(config_path).resolve()
        cls._explicit_file = True
        cls._instance._load_config()

    def _load_config(self) -> None:
        if self._config_file is None:
            type(self)._config_file = Path(os.getcwd()) / "config.json"

        try:
            if self._config_file.exists():
                with open(self._config_file, encoding="utf-8") as f:
                    data = json.load(f)
                if not isinstance(data, dict):
                    raise ValueError("top-level JSON value must be an object")
                type(self)._config_data = data
                logger.info(f"Loaded configuration from {self._config_file}")
            else:
                logger.warning(
                    f"Config file not found: {self._config_file}, using empty config"
                )
                type(self)._config_data = {}
        except Exception as e:
            logger.error(f"Error loading config from {self._config_file}: {e}")
            type(self)._config_data = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Dot-separated key path (e.g., "vision.targets.hough.param2")
            default: Value returned when any part of the path is missing

        Returns:
            Configuration value or default if not found
        """
        if not self._config_data and self._config_file is None:
            self._load_config()

        value: Any = self._config_data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation.

        The in-memory value changes immediately. When a file was selected with
        ``set_config_file`` the whole configuration is written back in a
        background thread.

        Args:
            key: Dot-separated key path
            value: Value to set
        """
        keys = key.split(".")
        data = self._config_data

        for k in keys[:-1]:
            if k not in data or not isinstance(data[k], dict):
                data[k] = {}
            data = data[k]

        data[keys[-1]] = value

        if self._explicit_file:
            self._save_config_async()

    def _save_config_async(self) -> None:
        thread = threading.Thread(target=self._save_config, daemon=True)
        thread.start()

    def _save_config(self) -> None:
        if self._config_file is None:
            return

        try:
            data_to_save = json.loads(json.dumps(self._config_data))
            with open(self._config_file, "w", encoding="utf-8") as f:
                json.dump(data_to_save, f, indent=2, ensure_ascii=False)
            logger.debug(f"Saved configuration to {self._config_file}")
        except Exception as e:
            logger.error(f"Error saving config to {self._config_file}: {e}")

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def clear(self) -> None:
        """Drop all in-memory values and forget the selected file."""
        type(self)._config_data = {}
        type(self)._config_file = None
        type(self)._explicit_file = False

    def get_all(self) -> dict[str, Any]:
        """Get entire configuration as dictionary."""
        return json.loads(json.dumps(self._config_data))


# Singleton instance for easy import
config = Config()
