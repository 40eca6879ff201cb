# retention.py

import logging

from .errors import BackupNotFoundError, SaveManagerError, ValidationError
from .store import BackupInfo, BackupStore


def enforce_backup_limit(store: BackupStore, game_number, limit) -> int:
    """
    Deletes the oldest unlocked backups of a slot until at most `limit` remain.
    Locked backups neither count toward the limit nor get deleted. A limit of 0
    means unlimited. Returns the number of backups deleted.
    """
    if not limit or limit <= 0:
        return 0

    with store.slot_lock(game_number):
        unlocked = [
            b for b in store.list_backups(include_hash=False, game_number=game_number)
            if not b.locked
        ]
        if len(unlocked) <= limit:
            return 0

        # Oldest first
        unlocked.sort(key=BackupInfo.sort_key)
        num_to_delete = len(unlocked) - limit
        logging.info(f"🔎 Enforcing limit ({limit}): deleting {num_to_delete} old backup(s) for game {game_number}.")

        deleted = 0
        for backup in unlocked[:num_to_delete]:
            try:
                store.remove_backup(backup.filename)
                deleted += 1
            except BackupNotFoundError:
                logging.debug(f"Backup {backup.filename} was already removed.")
        return deleted


def delete_backup(store: BackupStore, backup_path):
    """Deletes one backup folder together with its metadata."""
    folder_path, folder_name, game_number = store.resolve_backup_path(backup_path)
    with store.slot_lock(game_number):
        store.remove_backup(folder_name)


def delete_backups_batch(store: BackupStore, game_numbers, keep_latest: bool, delete_locked: bool) -> int:
    """
    Deletes backups of the given slots. With keep_latest the newest backup of
    each slot survives; locked backups survive unless delete_locked is set.
    Returns the total number deleted.
    """
    targets = sorted(set(int(n) for n in game_numbers or ()))
    if not targets:
        raise ValidationError("No games selected for deletion.")

    deleted_count = 0
    for game_number in targets:
        with store.slot_lock(game_number):
            # Newest first
            game_backups = store.list_backups(include_hash=False, game_number=game_number)
            candidates = game_backups[1:] if keep_latest else game_backups

            for backup in candidates:
                if backup.locked and not delete_locked:
                    continue
                try:
                    store.remove_backup(backup.filename)
                    deleted_count += 1
                except SaveManagerError as e:
                    logging.error(f"Failed to delete backup {backup.path}: {e}")

    logging.info(f"Batch delete removed {deleted_count} backup(s) for game(s) {', '.join(str(n + 1) for n in targets)}.")
    return deleted_count
