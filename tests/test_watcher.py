import logging
import os
import threading

import pytest
from watchdog.events import DirModifiedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from conftest import FakeObserver, write_save
from oddsave.errors import WatcherError
from oddsave.watcher import SaveEventHandler, SaveWatcher, SlotCoalescer


class RecordingCoalescer:
    def __init__(self):
        self.added = []

    def add(self, game_number):
        self.added.append(game_number)


def test_coalescer_merges_a_burst():
    settled = []
    done = threading.Event()

    def on_settled(slots):
        settled.append(slots)
        done.set()

    coalescer = SlotCoalescer(on_settled, settle_seconds=0.05)
    coalescer.add(1)
    coalescer.add(0)
    coalescer.add(1)

    assert done.wait(5)
    assert settled == [[0, 1]]


def test_coalescer_flush_and_cancel():
    settled = []
    coalescer = SlotCoalescer(settled.append, settle_seconds=60)
    coalescer.add(2)
    coalescer.flush()
    assert settled == [[2]]

    coalescer.add(3)
    coalescer.cancel()
    coalescer.add(4)
    coalescer.flush()
    assert settled == [[2]]


def test_handler_filters_events(save_dir):
    coalescer = RecordingCoalescer()
    handler = SaveEventHandler(str(save_dir), coalescer)
    backups = os.path.join(save_dir, ".backups", "Game 1 - x")

    handler.dispatch(FileModifiedEvent(os.path.join(save_dir, "gamesave_0.sav")))
    handler.dispatch(FileModifiedEvent(os.path.join(save_dir, "gamesave_0.sav.bak")))
    handler.dispatch(FileCreatedEvent(os.path.join(save_dir, "settings.cfg")))
    handler.dispatch(FileCreatedEvent(os.path.join(backups, "gamesave_5.sav")))
    handler.dispatch(DirModifiedEvent(str(save_dir)))
    handler.dispatch(FileMovedEvent(os.path.join(save_dir, "gamesave_2.tmp"), os.path.join(save_dir, "gamesave_2.sav")))

    assert coalescer.added == [0, 2]


def test_initial_scan_backs_up_existing_saves(save_dir):
    write_save(save_dir, 0, b"first")
    write_save(save_dir, 1, b"second")
    backed_up = threading.Event()

    watcher = SaveWatcher(lambda: 100, on_backup=backed_up.set, initial_scan_delay=0)
    try:
        assert watcher.start(str(save_dir)) == os.path.abspath(save_dir)
        assert watcher.is_active
        assert backed_up.wait(10)
    finally:
        watcher.stop()

    names = os.listdir(os.path.join(save_dir, ".backups"))
    assert any(name.startswith("Game 1 - ") for name in names)
    assert any(name.startswith("Game 2 - ") for name in names)
    assert not watcher.is_active


def test_start_replaces_previous_watch(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first.mkdir()
    second.mkdir()
    FakeObserver.instances = []

    watcher = SaveWatcher(lambda: 100, initial_scan_delay=None, observer_factory=FakeObserver)
    watcher.start(str(first))
    watcher.start(str(second / "gamesave_0.sav"))

    old, new = FakeObserver.instances
    assert not old.is_alive()
    assert new.is_alive()
    assert new.scheduled == [os.path.abspath(second)]
    assert watcher.watched_path == os.path.abspath(second)

    watcher.stop()
    assert watcher.watched_path is None


def test_start_on_missing_path(tmp_path):
    watcher = SaveWatcher(lambda: 100, initial_scan_delay=None, observer_factory=FakeObserver)

    with pytest.raises(WatcherError):
        watcher.start(str(tmp_path / "missing"))
    assert not watcher.is_active


def test_settled_events_use_current_limit(save_dir):
    limits = iter([1, 1])
    watcher = SaveWatcher(lambda: next(limits), initial_scan_delay=None, observer_factory=FakeObserver)
    watcher.start(str(save_dir))
    session = watcher.session

    write_save(save_dir, 0, b"one", mtime=1_700_000_000)
    watcher._backup_slots(session, [0])
    write_save(save_dir, 0, b"two", mtime=1_700_000_100)
    watcher._backup_slots(session, [0])
    watcher.stop()

    names = [n for n in os.listdir(os.path.join(save_dir, ".backups")) if n.startswith("Game")]
    assert len(names) == 1


def test_quick_rewrites_of_backed_up_content_add_nothing(save_dir):
    watcher = SaveWatcher(lambda: 100, initial_scan_delay=None, observer_factory=FakeObserver)
    watcher.start(str(save_dir))
    session = watcher.session
    write_save(save_dir, 0, b"checkpoint")
    watcher._backup_slots(session, [0])

    settled = threading.Event()
    coalescer = SlotCoalescer(lambda slots: (watcher._backup_slots(session, slots), settled.set()),
                              settle_seconds=0.05)
    write_save(save_dir, 0, b"half written")
    coalescer.add(0)
    write_save(save_dir, 0, b"checkpoint")
    coalescer.add(0)

    assert settled.wait(5)
    watcher.stop()
    names = [n for n in os.listdir(os.path.join(save_dir, ".backups")) if n.startswith("Game")]
    assert len(names) == 1


def test_failed_slot_is_logged_and_others_still_run(save_dir, caplog):
    watcher = SaveWatcher(lambda: 100, initial_scan_delay=None, observer_factory=FakeObserver)
    watcher.start(str(save_dir))
    (save_dir / ".backups").write_text("not a folder")
    write_save(save_dir, 0, b"first")
    write_save(save_dir, 1, b"second")

    with caplog.at_level(logging.INFO):
        watcher._backup_slots(watcher.session, [0, 1])
    watcher.stop()

    assert "Backup failed for game 0" in caplog.text
    assert "Backup failed for game 1" in caplog.text
    assert "Backup process complete" in caplog.text
