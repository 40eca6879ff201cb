# commands.py

"""
Request/response commands used by the window and the console mode. Every
command either returns a value or raises a SaveManagerError subclass.
"""

import os
import logging
import threading

from . import paths
from .config import ConfigStore
from .errors import ValidationError, WatcherDeferredError, WatcherError
from .events import BACKUPS_UPDATED, BackupEvents, BackupListing
from .filenames import normalize_to_directory
from .game import launch_game as _launch_game
from .restore import check_cloud_path, restore_backup
from .retention import delete_backup, delete_backups_batch
from .store import BackupStore, next_sequence, set_backup_lock, set_backup_note
from .watcher import SaveWatcher


class CommandService:
    def __init__(self, config_store: ConfigStore, watcher=None, events=None, launcher=_launch_game):
        self.config_store = config_store
        self.events = events or BackupEvents()
        self.watcher = watcher or SaveWatcher(lambda: self.config_store.max_backups_per_game)
        self.launcher = launcher
        # Set by the window once it is shown; watcher start is deferred until then
        self.window_ready = threading.Event()

    # --- Window lifecycle ---

    def mark_window_visible(self):
        self.window_ready.set()

    def _notify_backups_updated(self):
        self.events.publish(BACKUPS_UPDATED)

    def _store(self) -> BackupStore:
        save_path = self.config_store.get().save_path
        if not save_path:
            raise ValidationError("Save path not configured")
        return BackupStore(save_path)

    # --- Configuration ---

    def get_config(self):
        logging.debug("Retrieving configuration")
        return self.config_store.get()

    def validate_path(self, path) -> bool:
        is_valid = paths.is_valid_path(path)
        logging.info(f"Validating path '{path}': {is_valid}")
        return is_valid

    def detect_save_paths(self):
        return paths.detect_save_paths()

    def is_auto_detection_supported(self) -> bool:
        return paths.is_auto_detection_supported()

    def set_save_path(self, path) -> str:
        """
        Validates and normalizes the path to a directory, restarts the watcher on
        it if the window is ready, then persists it. Returns the normalized path.
        """
        logging.info(f"Attempting to set save path to: {path}")
        if not paths.is_valid_path(path):
            logging.warning("Validation failed: path (or its parent) does not exist.")
            raise ValidationError("The provided path must exist, or be a new file path within an existing directory.")

        final_path = normalize_to_directory(path)
        logging.info(f"Normalized save path to: {final_path}")

        if self.window_ready.is_set():
            try:
                self.watcher.start(final_path, on_backup=self._notify_backups_updated)
            except WatcherError as e:
                logging.error(f"Failed to start watcher: {e}")
                # Disable auto-backup on failure
                self.config_store.update(save_path=None)
                raise WatcherError(
                    "Configuration path accepted, but failed to start monitoring. "
                    f"Auto-backup has been disabled. Error: {e}"
                ) from e

        self.config_store.update(save_path=final_path)
        return final_path

    def set_game_settings(self, auto_launch_game: bool, auto_close: bool, max_backups_per_game: int):
        """Persists game settings. The new limit applies from the next backup on."""
        try:
            max_backups_per_game = int(max_backups_per_game)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid backup limit: {max_backups_per_game!r}")
        if max_backups_per_game < 0:
            raise ValidationError("The backup limit cannot be negative.")
        logging.info(
            f"Setting game settings: auto_launch={auto_launch_game}, "
            f"auto_close={auto_close}, max_backups={max_backups_per_game}"
        )
        return self.config_store.update(
            auto_launch_game=bool(auto_launch_game),
            auto_close=bool(auto_close),
            max_backups_per_game=max_backups_per_game,
        )

    # --- Backups ---

    def get_backups(self) -> BackupListing:
        """All backups newest first, tagged with a sequence drawn after the scan."""
        save_path = self.config_store.get().save_path
        backups = BackupStore(save_path).list_backups(include_hash=True) if save_path else []
        return BackupListing(next_sequence(), backups)

    def toggle_backup_lock(self, backup_path, locked: bool):
        set_backup_lock(self._store(), backup_path, locked)

    def set_backup_note(self, backup_filename, note):
        set_backup_note(self._store(), backup_filename, note)

    def delete_backup(self, backup_path):
        delete_backup(self._store(), backup_path)

    def batch_delete_backups(self, game_numbers, keep_latest: bool, delete_locked: bool) -> int:
        return delete_backups_batch(self._store(), game_numbers, keep_latest, delete_locked)

    def restore_backup(self, backup_path, target_path):
        if not target_path:
            raise ValidationError("No restore target given.")
        restore_backup(backup_path, target_path)

    def check_cloud_path(self, path) -> bool:
        return check_cloud_path(path)

    def launch_game(self):
        self.launcher()

    # --- Watcher ---

    def init_watcher(self):
        """Starts the watcher on the configured path once the window is visible."""
        if not self.window_ready.is_set():
            raise WatcherDeferredError()
        save_path = self.config_store.get().save_path
        if save_path and os.path.exists(save_path):
            self.watcher.start(save_path, on_backup=self._notify_backups_updated)
        elif save_path:
            logging.warning(f"Configured save path does not exist: {save_path}")

    def shutdown(self):
        self.watcher.stop()


def bootstrap_config(config_store: ConfigStore):
    """Adopts the first detected save folder when none is configured yet."""
    config = config_store.get()
    if config.save_path or not paths.is_auto_detection_supported():
        return config
    candidates = paths.detect_save_paths()
    if not candidates:
        return config
    logging.info(f"Auto-detected save path: {candidates[0]}")
    try:
        return config_store.update(save_path=candidates[0])
    except OSError as e:
        logging.error(f"Failed to save auto-detected config: {e}")
        return config
