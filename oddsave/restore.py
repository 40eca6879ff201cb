# restore.py

import os
import uuid
import shutil
import logging

from .engine import backup_hash, read_source_metadata
from .errors import BackupNotFoundError, RestoreError
from .filenames import main_filename, normalize_to_directory, parse_backup_folder_name, parse_path
from .paths import is_steam_cloud_path
from .store import BackupStore, IndexEntry


def _slot_files(backup_folder):
    """(file name, game number) for every save or .bak file inside a backup folder."""
    files = []
    for name in sorted(os.listdir(backup_folder)):
        path = os.path.join(backup_folder, name)
        info = parse_path(name)
        if info is not None and os.path.isfile(path):
            files.append((name, info.game_number))
    return files


def restore_backup(backup_path, target_path):
    """
    Copies the save files of a backup over the originals in the target save directory.

    All files are first copied next to their destination under temporary names
    and only then swapped in with os.replace, so a failed copy leaves the current
    saves untouched. The pre-restore state is not backed up.
    """
    backup_folder = os.path.realpath(os.fspath(backup_path))
    if not os.path.isdir(backup_folder):
        raise BackupNotFoundError("Backup folder does not exist")

    target_dir = normalize_to_directory(target_path)
    if not os.path.isdir(target_dir):
        raise RestoreError("Target save directory does not exist")

    files = _slot_files(backup_folder)
    if not files:
        raise RestoreError("No valid save files found in backup folder to restore")

    store = BackupStore(target_dir)
    game_numbers = sorted({game_number for _, game_number in files})
    locks = [store.slot_lock(n) for n in game_numbers]
    for lock in locks:
        lock.acquire()
    try:
        _replace_files(backup_folder, target_dir, files)
        logging.info(f"♻️ Restored backup from {backup_folder} to {target_dir}")
        try:
            update_index_after_restore(store, backup_folder)
        except (OSError, RestoreError) as e:
            logging.warning(f"Failed to update backup index after restore: {e}")
    finally:
        for lock in reversed(locks):
            lock.release()


def _replace_files(backup_folder, target_dir, files):
    staged = []
    try:
        for name, _ in files:
            tmp_path = os.path.join(target_dir, f".{name}.restore-{uuid.uuid4().hex}.tmp")
            staged.append((tmp_path, os.path.join(target_dir, name)))
            shutil.copyfile(os.path.join(backup_folder, name), tmp_path)
        for tmp_path, final_path in staged:
            os.replace(tmp_path, final_path)
    except OSError as e:
        raise RestoreError(f"Failed to restore backup: {e}") from e
    finally:
        for tmp_path, _ in staged:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)


def update_index_after_restore(store: BackupStore, backup_folder):
    """
    Points the slot's index entry at the restored backup so the watcher does not
    take a second copy of content that is already backed up.
    """
    folder_name = os.path.basename(backup_folder)
    info = parse_backup_folder_name(folder_name)
    if info is None:
        raise RestoreError("Backup folder name did not match expected format")
    if os.path.dirname(backup_folder) != os.path.realpath(store.root):
        raise RestoreError("Backup folder is not under the target .backups directory")

    main_path = os.path.join(store.save_dir, main_filename(info.game_number))
    if not os.path.exists(main_path):
        raise RestoreError("Restored main save file was not found after restore")

    source = read_source_metadata(main_path)
    file_hash = backup_hash(backup_folder, info.game_number)
    with store.edit_index() as index:
        index.games[info.game_number] = IndexEntry(file_hash, source.size, source.modified_ns, folder_name)


def check_cloud_path(path) -> bool:
    """Advisory check used before a restore; True if the path is synced by Steam Cloud."""
    return is_steam_cloud_path(path)
