import hashlib
import os
from datetime import datetime

import pytest

from oddsave.filenames import format_backup_folder_name, main_filename
from oddsave.store import BackupStore, HASH_FILE_NAME, LOCKED_FILE_NAME


@pytest.fixture
def save_dir(tmp_path):
    path = tmp_path / "saves"
    path.mkdir()
    return path


@pytest.fixture
def store(save_dir):
    return BackupStore(save_dir)


def write_save(save_dir, game_number, content, bak=None, mtime=None):
    """Writes gamesave_N.sav (and optionally the .bak sidecar) into the save folder."""
    main_path = os.path.join(save_dir, main_filename(game_number))
    with open(main_path, "wb") as f:
        f.write(content)
    if bak is not None:
        with open(f"{main_path}.bak", "wb") as f:
            f.write(bak)
    if mtime is not None:
        os.utime(main_path, (mtime, mtime))
    return main_path


def make_backup(store, game_number, when, content=b"data", locked=False):
    """Creates a backup folder the way the engine lays it out, dated `when`."""
    if isinstance(when, int):
        when = datetime(2024, 1, 1, 12, 0, 0).replace(minute=when)
    folder = os.path.join(store.ensure_root(), format_backup_folder_name(game_number, when))
    os.makedirs(folder)
    with open(os.path.join(folder, main_filename(game_number)), "wb") as f:
        f.write(content)
    with open(os.path.join(folder, HASH_FILE_NAME), "w") as f:
        f.write(hashlib.sha256(content).hexdigest())
    if locked:
        open(os.path.join(folder, LOCKED_FILE_NAME), "w").close()
    return os.path.realpath(folder)


def sha256(data):
    return hashlib.sha256(data).hexdigest()


class FakeObserver:
    """Stands in for watchdog's Observer without touching the OS notification APIs."""
    instances = []

    def __init__(self):
        self.scheduled = []
        self.alive = False
        FakeObserver.instances.append(self)

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append(path)

    def start(self):
        self.alive = True

    def stop(self):
        self.alive = False

    def join(self, timeout=None):
        pass

    def is_alive(self):
        return self.alive
