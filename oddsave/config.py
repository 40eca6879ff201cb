# config.py

import os
import sys
import json
import logging
import threading
from dataclasses import dataclass, asdict, fields, replace
from typing import Optional

CONFIG_FILE_NAME = "odd_save_manager.config.json"
DEFAULT_MAX_BACKUPS = 100


@dataclass
class AppConfig:
    """Settings persisted between runs. 0 for max_backups_per_game means unlimited."""
    save_path: Optional[str] = None
    auto_launch_game: bool = False
    auto_close: bool = False
    max_backups_per_game: int = DEFAULT_MAX_BACKUPS

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        """Merges a loaded dict over the defaults so older config files keep working."""
        known = {f.name for f in fields(cls)}
        merged = {**asdict(cls()), **{k: v for k, v in data.items() if k in known}}
        config = cls(**merged)
        if not config.save_path:
            config.save_path = None
        config.auto_launch_game = bool(config.auto_launch_game)
        config.auto_close = bool(config.auto_close)
        try:
            config.max_backups_per_game = max(0, int(config.max_backups_per_game))
        except (TypeError, ValueError):
            logging.warning(f"Invalid max_backups_per_game {config.max_backups_per_game!r}, using {DEFAULT_MAX_BACKUPS}.")
            config.max_backups_per_game = DEFAULT_MAX_BACKUPS
        return config


def default_config_path():
    """The config file sits next to the program, named after it."""
    program_dir = os.path.dirname(os.path.abspath(sys.argv[0] or "."))
    return os.path.join(program_dir, CONFIG_FILE_NAME)


def load_config(config_path) -> AppConfig:
    """Loads configuration from the JSON file. Missing or broken files give the defaults."""
    logging.info(f"Loading configuration from: {config_path}")
    if not os.path.exists(config_path):
        logging.info("Config file not found, using defaults.")
        return AppConfig()
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            loaded_config = json.load(f)
        if not isinstance(loaded_config, dict):
            raise ValueError("top level is not an object")
    except (IOError, ValueError) as e:
        logging.error(f"Error processing config file: {e}")
        return AppConfig()
    logging.info("Configuration loaded successfully.")
    return AppConfig.from_dict(loaded_config)


def save_config(config: AppConfig, config_path):
    """Writes the configuration to disk. Raises OSError if the file cannot be written."""
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(config.to_dict(), f, indent=2)
    except OSError as e:
        logging.error(f"Failed to save configuration: {e}")
        raise
    logging.info(f"Configuration saved to {config_path}")


class ConfigStore:
    """Holds the live configuration; every change is persisted before it becomes visible."""

    def __init__(self, config_path, config: Optional[AppConfig] = None):
        self.config_path = config_path
        self._config = config if config is not None else load_config(config_path)
        self._lock = threading.Lock()

    def get(self) -> AppConfig:
        with self._lock:
            return replace(self._config)

    @property
    def max_backups_per_game(self) -> int:
        with self._lock:
            return self._config.max_backups_per_game

    def update(self, **changes) -> AppConfig:
        """Copies the config, applies the changes, saves it, then swaps it in."""
        with self._lock:
            new_config = replace(self._config, **changes)
            save_config(new_config, self.config_path)
            self._config = new_config
            return replace(new_config)
