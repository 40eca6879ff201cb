# events.py

import logging
import threading
from collections import namedtuple

from .store import next_sequence

BACKUPS_UPDATED = "backups-updated"

# A backup list tagged with the sequence number drawn when the listing finished.
BackupListing = namedtuple("BackupListing", "sequence backups")


class BackupEvents:
    """Pushes 'backups updated' to subscribers when the watcher changes the backup set."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers = []

    def subscribe(self, callback):
        """Registers callback(event_name, sequence). Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def publish(self, event_name=BACKUPS_UPDATED):
        sequence = next_sequence()
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event_name, sequence)
            except Exception as e:
                logging.error(f"Failed to emit {event_name} event: {e}")
        return sequence


class BackupsView:
    """
    What the window currently shows: the backup list, its sequence number and
    whether the configured save path is valid. Owned by one window controller.

    A listing replaces the shown one only if its sequence is higher, so whichever
    listing was produced last wins no matter in which order the replies arrive.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.backups = []
        self.sequence = 0
        self.path_valid = False

    def apply(self, listing: BackupListing) -> bool:
        with self._lock:
            if listing.sequence <= self.sequence:
                logging.debug(f"Dropping stale backup listing #{listing.sequence} (showing #{self.sequence}).")
                return False
            self.sequence = listing.sequence
            self.backups = list(listing.backups)
            return True

    def find(self, backup_path):
        with self._lock:
            for backup in self.backups:
                if backup.path == backup_path:
                    return backup
        return None
