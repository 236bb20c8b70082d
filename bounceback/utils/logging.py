"""Logging configuration utilities for the BounceBack trainer."""

import logging
import logging.config
import logging.handlers
import os
from pathlib import Path
from typing import Any, Optional

import yaml


def _get_config_value(key: str, default: Any = None) -> Any:
    from bounceback.config import config

    return config.get(key, default)


def setup_logging(
    config_path: Optional[str] = None,
    default_level: int = logging.INFO,
    env_key: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """Configure logging from a YAML dictConfig file, or fall back to defaults.

    Args:
        config_path: Path to the YAML logging configuration
        default_level: Console level used when no configuration file is found
        env_key: Environment variable that may override ``config_path``
        log_dir: Directory for rotating log files
    """
    if env_key is None:
        env_key = _get_config_value("system.logging.env_key", "BOUNCEBACK_LOG_CFG")

    default_config_path = _get_config_value(
        "system.logging.default_config_path", "config/logging.yaml"
    )
    if log_dir is None:
        log_dir = Path(
            os.getenv("BOUNCEBACK_LOG_DIR")
            or _get_config_value("system.logging.default_log_dir", "logs")
        )
    logs_dir = Path(log_dir)

    if config_path is None:
        config_path = os.getenv(env_key, default_config_path)
    config_path = Path(config_path)

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as config_file:
                logging_config = yaml.safe_load(config_file)
            logging.config.dictConfig(logging_config)
            return
        except Exception as e:
            logging.basicConfig(level=default_level)
            logging.getLogger(__name__).error(
                f"Error loading logging configuration from {config_path}: {e}"
            )
            return

    _setup_default_logging(default_level, logs_dir)


def _setup_default_logging(level: int, logs_dir: Path) -> None:
    """Console handler plus a rotating file for everything at DEBUG."""
    logs_dir.mkdir(exist_ok=True, parents=True)

    detailed_formatter = logging.Formatter(
        _get_config_value(
            "system.logging.formatters.detailed.format",
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        ),
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    simple_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(simple_formatter)

    file_handler = logging.handlers.RotatingFileHandler(
        logs_dir / _get_config_value("system.logging.filename", "bounceback.log"),
        maxBytes=_get_config_value("system.logging.max_bytes", 10 * 1024 * 1024),
        backupCount=_get_config_value("system.logging.backup_count", 5),
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # handlers filter
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
