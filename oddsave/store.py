# store.py

"""
Backup folder layout, the per-save-directory index and the lock/note metadata.

Each backup is a folder under <save_dir>/.backups holding the slot's files, a
.hash marker with the SHA-256 of the main save and, when locked, an empty
.locked marker. Notes and the deduplication state live in .backups/index.json.
"""

import os
import json
import uuid
import shutil
import logging
import threading
import itertools
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, Optional

from .errors import BackupError, BackupNotFoundError, ValidationError
from .filenames import (
    backup_root_for, main_filename, parse_backup_folder_name,
)

HASH_FILE_NAME = ".hash"
LOCKED_FILE_NAME = ".locked"
INDEX_FILE_NAME = "index.json"
STAGING_PREFIX = ".staging-"
TRASH_PREFIX = ".trash-"


@dataclass
class BackupInfo:
    """One snapshot of a slot plus its mutable lock/note state."""
    path: str
    filename: str
    original_filename: str
    original_path: str
    size: int
    modified: str
    game_number: int
    locked: bool = False
    hash: str = ""
    note: Optional[str] = None
    timestamp: datetime = field(default=None, repr=False, compare=False)
    duplicate: int = field(default=1, repr=False, compare=False)

    def sort_key(self):
        return (self.timestamp, self.duplicate, self.filename)

    def to_dict(self):
        data = asdict(self)
        data.pop("timestamp")
        data.pop("duplicate")
        return data


@dataclass
class IndexEntry:
    last_hash: str
    last_source_size: int
    last_source_modified: int  # nanoseconds since the epoch
    last_backup_path: str      # folder name of the last backup


@dataclass
class BackupIndex:
    games: Dict[int, IndexEntry] = field(default_factory=dict)
    notes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data):
        games = {}
        for key, entry in (data.get("games") or {}).items():
            try:
                games[int(key)] = IndexEntry(
                    last_hash=str(entry["last_hash"]),
                    last_source_size=int(entry["last_source_size"]),
                    last_source_modified=int(entry["last_source_modified"]),
                    last_backup_path=str(entry["last_backup_path"]),
                )
            except (KeyError, TypeError, ValueError):
                logging.warning(f"Ignoring malformed index entry for game {key}.")
        notes = {str(k): str(v) for k, v in (data.get("notes") or {}).items()}
        return cls(games=games, notes=notes)

    def to_dict(self):
        return {
            "games": {str(k): asdict(v) for k, v in sorted(self.games.items())},
            "notes": dict(sorted(self.notes.items())),
        }


class SlotLocks:
    """
    Registry of per-slot locks, shared by every BackupStore in the process.
    Backup creation, pruning, restore and metadata changes for one slot are
    serialized; other slots are not blocked. The index lock of a backup root is
    only ever taken while holding (or without) a slot lock, never the reverse.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._slots = {}
        self._indexes = {}

    @staticmethod
    def _key(root):
        return os.path.normcase(os.path.abspath(root))

    def for_slot(self, root, game_number):
        key = (self._key(root), game_number)
        with self._guard:
            lock = self._slots.get(key)
            if lock is None:
                lock = self._slots[key] = threading.RLock()
            return lock

    def for_index(self, root):
        key = self._key(root)
        with self._guard:
            lock = self._indexes.get(key)
            if lock is None:
                lock = self._indexes[key] = threading.Lock()
            return lock


SLOT_LOCKS = SlotLocks()

_sequence = itertools.count(1)
_sequence_lock = threading.Lock()


def next_sequence() -> int:
    """Monotonic process-wide counter used to order listings and change events."""
    with _sequence_lock:
        return next(_sequence)


def load_index(backup_root) -> BackupIndex:
    """Loads the index; a missing or unreadable file gives an empty one."""
    index_path = os.path.join(backup_root, INDEX_FILE_NAME)
    if not os.path.exists(index_path):
        return BackupIndex()
    try:
        with open(index_path, 'r', encoding='utf-8') as f:
            return BackupIndex.from_dict(json.load(f))
    except (IOError, ValueError, AttributeError) as e:
        logging.warning(f"Backup index {index_path} is unreadable, starting fresh: {e}")
        return BackupIndex()


def save_index(backup_root, index: BackupIndex):
    """Writes the index through a temporary file so a crash never leaves half a file."""
    index_path = os.path.join(backup_root, INDEX_FILE_NAME)
    tmp_path = f"{index_path}.{uuid.uuid4().hex}.tmp"
    try:
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(index.to_dict(), f, indent=2)
        os.replace(tmp_path, index_path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class BackupStore:
    """The .backups directory of one save directory."""

    def __init__(self, save_dir, locks: SlotLocks = SLOT_LOCKS):
        self.save_dir = os.path.abspath(os.fspath(save_dir))
        self.root = backup_root_for(self.save_dir)
        self.locks = locks

    def exists(self) -> bool:
        return os.path.isdir(self.root)

    def ensure_root(self):
        os.makedirs(self.root, exist_ok=True)
        return self.root

    def slot_lock(self, game_number):
        return self.locks.for_slot(self.root, game_number)

    def folder_path(self, folder_name):
        return os.path.join(self.root, folder_name)

    # --- Index ---

    def load_index(self) -> BackupIndex:
        with self.locks.for_index(self.root):
            return load_index(self.root)

    @contextmanager
    def edit_index(self):
        """Load-modify-save under the index lock. Nothing is written if the body raises."""
        with self.locks.for_index(self.root):
            index = load_index(self.root)
            yield index
            self.ensure_root()
            save_index(self.root, index)

    # --- Listing ---

    def backup_info_from_folder(self, folder_path, folder_name, include_hash=True):
        """Builds a BackupInfo for a folder, or None if it is not a usable backup."""
        info = parse_backup_folder_name(folder_name)
        if info is None:
            return None

        original_filename = main_filename(info.game_number)
        main_file_path = os.path.join(folder_path, original_filename)
        try:
            size = os.path.getsize(main_file_path)
        except OSError:
            logging.warning(f"Skipping backup folder {folder_path} because the main save is missing.")
            return None

        file_hash = ""
        if include_hash:
            file_hash = read_hash_file(folder_path)

        return BackupInfo(
            path=os.path.realpath(folder_path),
            filename=folder_name,
            original_filename=original_filename,
            original_path=os.path.join(self.save_dir, original_filename),
            size=size,
            modified=info.timestamp.astimezone().isoformat(),
            game_number=info.game_number,
            locked=os.path.exists(os.path.join(folder_path, LOCKED_FILE_NAME)),
            hash=file_hash,
            timestamp=info.timestamp,
            duplicate=info.duplicate,
        )

    def list_backups(self, include_hash=True, game_number=None):
        """All backups newest first, with notes attached. Optionally one slot only."""
        if not self.exists():
            return []

        notes = self.load_index().notes
        backups = []
        try:
            names = os.listdir(self.root)
        except FileNotFoundError:
            return []
        for name in names:
            folder_path = os.path.join(self.root, name)
            if not os.path.isdir(folder_path):
                continue
            info = self.backup_info_from_folder(folder_path, name, include_hash)
            if info is None:
                continue
            if game_number is not None and info.game_number != game_number:
                continue
            info.note = notes.get(name)
            backups.append(info)

        backups.sort(key=BackupInfo.sort_key, reverse=True)
        return backups

    # --- Identity ---

    def resolve_backup_path(self, backup_path):
        """
        Maps a caller-supplied backup path to (folder path, folder name, game number).
        Paths outside this store's .backups directory are rejected.
        """
        if not backup_path:
            raise ValidationError("No backup selected.")
        root_real = os.path.realpath(self.root)
        target_real = os.path.realpath(os.fspath(backup_path))
        try:
            inside = os.path.commonpath([root_real, target_real]) == root_real
        except ValueError:
            inside = False
        if not inside or target_real == root_real:
            raise ValidationError("Security violation: Path is outside the backup directory")
        if os.path.dirname(target_real) != root_real:
            raise ValidationError(f"Not a backup folder: {backup_path}")

        folder_name = os.path.basename(target_real)
        info = parse_backup_folder_name(folder_name)
        if info is None:
            raise ValidationError(f"Not a backup folder: {backup_path}")
        return target_real, folder_name, info.game_number

    # --- Mutation (callers hold the slot lock) ---

    def remove_backup(self, folder_name):
        """
        Deletes a backup folder and its note as one step. The folder is first
        renamed out of the listing; if the index cannot be updated the rename is
        undone and the error propagates.
        """
        folder_path = self.folder_path(folder_name)
        if not os.path.isdir(folder_path):
            raise BackupNotFoundError(f"Backup folder does not exist: {folder_name}")

        trash_path = os.path.join(self.root, f"{TRASH_PREFIX}{uuid.uuid4().hex}")
        try:
            os.rename(folder_path, trash_path)
        except FileNotFoundError:
            raise BackupNotFoundError(f"Backup folder does not exist: {folder_name}")
        except OSError as e:
            raise BackupError(f"Failed to delete backup {folder_name}: {e}") from e

        try:
            with self.locks.for_index(self.root):
                index = load_index(self.root)
                if folder_name in index.notes:
                    del index.notes[folder_name]
                    save_index(self.root, index)
        except OSError as e:
            os.rename(trash_path, folder_path)
            raise BackupError(f"Failed to update index while deleting {folder_name}: {e}") from e

        shutil.rmtree(trash_path, ignore_errors=True)
        if os.path.exists(trash_path):
            logging.warning(f"Leftover files from deleted backup remain at {trash_path}")
        logging.info(f"🗑️ Deleted backup: {folder_name}")

    def sweep_leftovers(self):
        """Removes staging and trash folders left behind by an interrupted run."""
        if not self.exists():
            return
        for name in os.listdir(self.root):
            if name.startswith(STAGING_PREFIX) or name.startswith(TRASH_PREFIX):
                shutil.rmtree(os.path.join(self.root, name), ignore_errors=True)
                logging.debug(f"Removed leftover folder {name}")


def read_hash_file(folder_path) -> str:
    try:
        with open(os.path.join(folder_path, HASH_FILE_NAME), 'r', encoding='utf-8') as f:
            return f.read().strip()
    except OSError:
        return ""


# --- Lock and note commands ---

def set_backup_lock(store: BackupStore, backup_path, locked: bool):
    """Creates or removes the .locked marker. Fails with BackupNotFoundError if the backup is gone."""
    folder_path, folder_name, game_number = store.resolve_backup_path(backup_path)
    with store.slot_lock(game_number):
        if not os.path.isdir(folder_path):
            raise BackupNotFoundError(f"Backup folder does not exist: {folder_name}")
        lock_file = os.path.join(folder_path, LOCKED_FILE_NAME)
        if locked:
            if not os.path.exists(lock_file):
                with open(lock_file, 'w', encoding='utf-8'):
                    pass
        elif os.path.exists(lock_file):
            os.remove(lock_file)
    logging.info(f"{'🔒 Locked' if locked else '🔓 Unlocked'} backup: {folder_name}")


def set_backup_note(store: BackupStore, folder_name, note):
    """Sets or clears the note of a backup. Blank notes clear it."""
    info = parse_backup_folder_name(folder_name or "")
    if info is None or os.path.basename(folder_name) != folder_name:
        raise BackupNotFoundError(f"No backup named {folder_name!r}")

    text = note.strip() if note is not None else ""
    with store.slot_lock(info.game_number):
        if not os.path.isdir(store.folder_path(folder_name)):
            raise BackupNotFoundError(f"Backup folder does not exist: {folder_name}")
        with store.edit_index() as index:
            if text:
                index.notes[folder_name] = text
            else:
                index.notes.pop(folder_name, None)
    logging.info(f"📝 Note {'updated' if text else 'cleared'} for backup: {folder_name}")
