# engine.py

import os
import time
import uuid
import errno
import shutil
import hashlib
import logging
from collections import namedtuple
from datetime import datetime

from .errors import BackupError
from .filenames import bak_filename, format_backup_folder_name, main_filename
from .retention import enforce_backup_limit
from .store import (
    BackupStore, HASH_FILE_NAME, IndexEntry, STAGING_PREFIX, read_hash_file,
)

COPY_ATTEMPTS = 3
COPY_BACKOFF_SECONDS = 0.1
HASH_CHUNK_SIZE = 1024 * 1024
# ERROR_SHARING_VIOLATION, ERROR_LOCK_VIOLATION
_WINDOWS_LOCK_ERRORS = (32, 33)

SavePaths = namedtuple("SavePaths", "main_filename main_path bak_filename bak_path")
SourceMetadata = namedtuple("SourceMetadata", "size modified_ns modified_dt")


def build_save_paths(save_dir, game_number) -> SavePaths:
    """The main save and the game's own .bak sidecar for one slot."""
    main_name = main_filename(game_number)
    bak_name = bak_filename(game_number)
    return SavePaths(
        main_filename=main_name,
        main_path=os.path.join(save_dir, main_name),
        bak_filename=bak_name,
        bak_path=os.path.join(save_dir, bak_name),
    )


def read_source_metadata(main_path) -> SourceMetadata:
    stat = os.stat(main_path)
    return SourceMetadata(
        size=stat.st_size,
        modified_ns=stat.st_mtime_ns,
        modified_dt=datetime.fromtimestamp(stat.st_mtime),
    )


def calculate_hash(path) -> str:
    """SHA-256 of a file's bytes as lowercase hex."""
    hasher = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


def is_transient_lock_error(error) -> bool:
    """True for errors raised while the game still holds the file open for writing."""
    if isinstance(error, PermissionError):
        return True
    if getattr(error, 'winerror', None) in _WINDOWS_LOCK_ERRORS:
        return True
    return isinstance(error, OSError) and error.errno in (errno.EBUSY, errno.EAGAIN)


def retry_while_locked(action, path, attempts=COPY_ATTEMPTS, backoff=COPY_BACKOFF_SECONDS, sleep=time.sleep):
    """Runs `action` on a save file, retrying a few times when the file is briefly locked."""
    for attempt in range(1, attempts + 1):
        try:
            return action()
        except OSError as e:
            if not is_transient_lock_error(e) or attempt == attempts:
                raise
            logging.warning(f"'{os.path.basename(path)}' is locked ({e}), retrying ({attempt}/{attempts})...")
            sleep(backoff * attempt)


def copy_with_retry(src, dst, attempts=COPY_ATTEMPTS, backoff=COPY_BACKOFF_SECONDS, sleep=time.sleep):
    retry_while_locked(lambda: shutil.copy2(src, dst), src, attempts, backoff, sleep)


def hash_with_retry(path, attempts=COPY_ATTEMPTS, backoff=COPY_BACKOFF_SECONDS, sleep=time.sleep) -> str:
    return retry_while_locked(lambda: calculate_hash(path), path, attempts, backoff, sleep)


def resolve_hash(index, game_number, source, main_path, sleep=time.sleep):
    """
    Returns (hash, calculated). When size and mtime match the index entry the
    stored hash is reused and the file is not read.
    """
    entry = index.games.get(game_number)
    if entry and entry.last_source_size == source.size and entry.last_source_modified == source.modified_ns:
        logging.debug(f"Metadata match for game {game_number}: skipping hash calculation.")
        return entry.last_hash, False
    return hash_with_retry(main_path, sleep=sleep), True


def is_duplicate_by_index(store, index, game_number, file_hash, calculated, source) -> bool:
    """Fast path: the index already records this content as backed up."""
    entry = index.games.get(game_number)
    if entry is None or entry.last_hash != file_hash:
        return False

    last_backup = store.folder_path(entry.last_backup_path)
    if not os.path.isdir(last_backup):
        logging.warning(f"Index pointed to missing backup {last_backup}, forcing new backup.")
        return False

    if calculated and (entry.last_source_size != source.size or entry.last_source_modified != source.modified_ns):
        index.games[game_number] = IndexEntry(file_hash, source.size, source.modified_ns, entry.last_backup_path)
    logging.info(f"Duplicate backup found for game {game_number} (index match), skipping.")
    return True


def is_duplicate_by_content(index, game_number, file_hash, source, latest) -> bool:
    """Fallback: the newest backup on disk for the slot already holds this content."""
    if latest is None:
        return False
    # Backups made without a .hash marker are hashed from their main save
    latest_hash = latest.hash or backup_hash(latest.path, game_number)
    if latest_hash != file_hash:
        return False
    logging.info(f"Duplicate backup found for game {game_number} in existing backup {latest.filename}, skipping.")
    index.games[game_number] = IndexEntry(file_hash, source.size, source.modified_ns, latest.filename)
    return True


def _allocate_folder_name(store, game_number, timestamp):
    duplicate = 1
    while True:
        name = format_backup_folder_name(game_number, timestamp, duplicate)
        if not os.path.exists(store.folder_path(name)):
            return name
        duplicate += 1


def write_backup_folder(store, paths, game_number, source, file_hash, sleep=time.sleep) -> str:
    """
    Copies the slot's files into a staging folder, then renames it into place so
    a half-written backup never shows up in the listing. Returns the folder name.
    """
    staging = store.folder_path(f"{STAGING_PREFIX}{uuid.uuid4().hex}")
    try:
        store.ensure_root()
        os.makedirs(staging)
        copy_with_retry(paths.main_path, os.path.join(staging, paths.main_filename), sleep=sleep)
        if os.path.exists(paths.bak_path):
            copy_with_retry(paths.bak_path, os.path.join(staging, paths.bak_filename), sleep=sleep)
        with open(os.path.join(staging, HASH_FILE_NAME), 'w', encoding='utf-8') as f:
            f.write(file_hash)
        folder_name = _allocate_folder_name(store, game_number, source.modified_dt)
        os.rename(staging, store.folder_path(folder_name))
    except OSError as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise BackupError(f"Failed to back up game {game_number}: {e}") from e
    return folder_name


def perform_backup_for_game(save_dir, game_number, limit, store=None, sleep=time.sleep):
    """
    Backs up one slot if its content changed since the last backup, then prunes
    the slot down to `limit` unlocked backups (0 = unlimited).

    Returns the path of the new backup folder, or None when nothing was written.
    Raises BackupError when the snapshot could not be written.
    """
    if not os.path.isdir(save_dir):
        raise BackupError(f"Save directory does not exist: {save_dir}")

    store = store or BackupStore(save_dir)
    paths = build_save_paths(store.save_dir, game_number)

    with store.slot_lock(game_number):
        if not os.path.exists(paths.main_path):
            if os.path.exists(paths.bak_path):
                logging.info(f"Only .bak exists for game {game_number}, skipping backup.")
            else:
                logging.info(f"Main save file not found for game {game_number}, skipping backup.")
            return None

        try:
            source = read_source_metadata(paths.main_path)
            index = store.load_index()
            file_hash, calculated = resolve_hash(index, game_number, source, paths.main_path, sleep=sleep)
        except OSError as e:
            raise BackupError(f"Failed to read save for game {game_number}: {e}") from e

        if is_duplicate_by_index(store, index, game_number, file_hash, calculated, source):
            if calculated:
                _store_index_entry(store, game_number, index.games[game_number])
            return None

        try:
            slot_backups = store.list_backups(include_hash=True, game_number=game_number)
            latest = slot_backups[0] if slot_backups else None
            duplicate = is_duplicate_by_content(index, game_number, file_hash, source, latest)
        except OSError as e:
            raise BackupError(f"Failed to read existing backups for game {game_number}: {e}") from e
        if duplicate:
            _store_index_entry(store, game_number, index.games[game_number])
            return None

        folder_name = write_backup_folder(store, paths, game_number, source, file_hash, sleep=sleep)
        _store_index_entry(store, game_number, IndexEntry(file_hash, source.size, source.modified_ns, folder_name))
        logging.info(f"💾 Successfully created backup: {folder_name}")

        # After a successful backup, clean up old versions
        try:
            enforce_backup_limit(store, game_number, limit)
        except Exception as e:
            logging.error(f"Failed to enforce backup limit for game {game_number}: {e}")

    return store.folder_path(folder_name)


def _store_index_entry(store, game_number, entry):
    """Only this slot's entry is written back so concurrent slots don't overwrite each other."""
    try:
        with store.edit_index() as index:
            index.games[game_number] = entry
    except OSError as e:
        logging.warning(f"Failed to update backup index for game {game_number}: {e}")


def backup_hash(folder_path, game_number) -> str:
    """Hash recorded for a backup, recomputed from its main save when the marker is missing."""
    file_hash = read_hash_file(folder_path)
    if file_hash:
        return file_hash
    return calculate_hash(os.path.join(folder_path, main_filename(game_number)))
