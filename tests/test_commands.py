import json
import os

import pytest

from conftest import FakeObserver, make_backup, write_save
from oddsave import paths
from oddsave.commands import CommandService, bootstrap_config
from oddsave.config import AppConfig, ConfigStore
from oddsave.errors import (
    BackupNotFoundError, ValidationError, WatcherDeferredError, WatcherError,
)
from oddsave.events import BACKUPS_UPDATED, BackupsView
from oddsave.startup import initialize_watcher
from oddsave.watcher import SaveWatcher


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / "odd_save_manager.config.json")


def make_service(config_path, config=None, observer_factory=FakeObserver, **kwargs):
    config_store = ConfigStore(config_path, config or AppConfig())
    watcher = SaveWatcher(lambda: config_store.max_backups_per_game,
                          initial_scan_delay=None, observer_factory=observer_factory)
    return CommandService(config_store, watcher=watcher, **kwargs)


def test_init_watcher_is_deferred_until_window_is_visible(config_path, save_dir):
    service = make_service(config_path, AppConfig(save_path=str(save_dir)))

    with pytest.raises(WatcherDeferredError):
        service.init_watcher()
    assert not service.watcher.is_active

    service.mark_window_visible()
    service.init_watcher()
    assert service.watcher.watched_path == os.path.abspath(save_dir)


def test_startup_retries_until_window_shows(config_path, save_dir):
    service = make_service(config_path, AppConfig(save_path=str(save_dir)))
    delays = []

    def sleep(seconds):
        delays.append(seconds)
        if len(delays) == 3:
            service.mark_window_visible()

    assert initialize_watcher(service.init_watcher, sleep=sleep)
    assert delays == [0.05, 0.1, 0.15]
    assert service.watcher.is_active
    service.shutdown()
    assert not service.watcher.is_active


def test_init_watcher_without_save_path_does_nothing(config_path):
    service = make_service(config_path)
    service.mark_window_visible()

    service.init_watcher()

    assert not service.watcher.is_active


def test_set_save_path_normalizes_and_persists(config_path, save_dir):
    service = make_service(config_path)
    service.mark_window_visible()

    result = service.set_save_path(str(save_dir / "gamesave_0.sav"))

    assert result == os.path.abspath(save_dir)
    assert service.get_config().save_path == result
    assert service.watcher.watched_path == result
    with open(config_path) as f:
        assert json.load(f)["save_path"] == result


def test_set_save_path_before_window_is_visible(config_path, save_dir):
    service = make_service(config_path)

    service.set_save_path(str(save_dir))

    assert service.get_config().save_path == os.path.abspath(save_dir)
    assert not service.watcher.is_active


def test_set_save_path_rejects_missing_parent(config_path, tmp_path):
    service = make_service(config_path)

    with pytest.raises(ValidationError):
        service.set_save_path(str(tmp_path / "no" / "such" / "folder"))
    assert service.get_config().save_path is None


def test_watcher_failure_clears_save_path(config_path, save_dir):
    class BrokenObserver(FakeObserver):
        def start(self):
            raise OSError("inotify watch limit reached")

    service = make_service(config_path, AppConfig(save_path="previous"), observer_factory=BrokenObserver)
    service.mark_window_visible()

    with pytest.raises(WatcherError):
        service.set_save_path(str(save_dir))
    assert service.get_config().save_path is None


def test_set_game_settings(config_path):
    service = make_service(config_path)

    config = service.set_game_settings(True, True, "25")

    assert config.max_backups_per_game == 25
    assert service.config_store.max_backups_per_game == 25
    assert config.auto_launch_game and config.auto_close


@pytest.mark.parametrize("limit", [-1, "many", None])
def test_set_game_settings_rejects_bad_limit(config_path, limit):
    service = make_service(config_path)

    with pytest.raises(ValidationError):
        service.set_game_settings(False, False, limit)
    assert service.get_config().max_backups_per_game == 100


def test_backup_commands_need_a_save_path(config_path):
    service = make_service(config_path)

    assert service.get_backups().backups == []
    with pytest.raises(ValidationError):
        service.delete_backup("anything")
    with pytest.raises(ValidationError):
        service.batch_delete_backups([0], True, False)


def test_lock_note_and_delete(config_path, save_dir, store):
    service = make_service(config_path, AppConfig(save_path=str(save_dir)))
    path = make_backup(store, 0, 1)
    folder_name = os.path.basename(path)

    service.toggle_backup_lock(path, True)
    service.set_backup_note(folder_name, "  safe room  ")

    backup = service.get_backups().backups[0]
    assert backup.locked
    assert backup.note == "safe room"

    service.toggle_backup_lock(path, False)
    service.set_backup_note(folder_name, "   ")
    backup = service.get_backups().backups[0]
    assert not backup.locked
    assert backup.note is None

    service.delete_backup(path)
    assert service.get_backups().backups == []
    with pytest.raises(BackupNotFoundError):
        service.toggle_backup_lock(path, True)


def test_restore_requires_target(config_path, save_dir, store):
    service = make_service(config_path, AppConfig(save_path=str(save_dir)))
    path = make_backup(store, 0, 1)

    with pytest.raises(ValidationError):
        service.restore_backup(path, "")


def test_backup_notifies_subscribers(config_path, save_dir):
    service = make_service(config_path)
    service.mark_window_visible()
    service.set_save_path(str(save_dir))
    received = []
    service.events.subscribe(lambda name, sequence: received.append((name, sequence)))
    view = BackupsView()
    view.apply(service.get_backups())

    write_save(save_dir, 0, b"new run")
    service.watcher._backup_slots(service.watcher.session, [0])

    assert [name for name, _ in received] == [BACKUPS_UPDATED]
    listing = service.get_backups()
    assert listing.sequence > received[0][1] > view.sequence
    assert view.apply(listing)
    assert len(view.backups) == 1
    service.shutdown()


def test_launch_game_uses_launcher(config_path):
    launched = []
    service = make_service(config_path, launcher=lambda: launched.append(True))

    service.launch_game()

    assert launched == [True]


def test_bootstrap_adopts_detected_path(config_path, save_dir, monkeypatch):
    monkeypatch.setattr(paths, "is_auto_detection_supported", lambda: True)
    monkeypatch.setattr(paths, "detect_save_paths", lambda: [str(save_dir)])
    config_store = ConfigStore(config_path, AppConfig())

    config = bootstrap_config(config_store)

    assert config.save_path == str(save_dir)
    assert config_store.get().save_path == str(save_dir)


def test_bootstrap_keeps_configured_path(config_path, monkeypatch):
    monkeypatch.setattr(paths, "is_auto_detection_supported", lambda: True)
    monkeypatch.setattr(paths, "detect_save_paths", lambda: ["elsewhere"])
    config_store = ConfigStore(config_path, AppConfig(save_path="mine"))

    assert bootstrap_config(config_store).save_path == "mine"
