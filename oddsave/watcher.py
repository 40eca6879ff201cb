# watcher.py

import os
import logging
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .engine import perform_backup_for_game
from .errors import BackupError, WatcherError
from .filenames import normalize_to_directory, parse_path
from .logs import log_separator
from .store import BackupStore

# Window that merges the .sav and .sav.bak writes of one real save
SETTLE_SECONDS = 0.3
# The first scan waits a little so startup stays responsive
INITIAL_SCAN_DELAY = 3.0


class SlotCoalescer:
    """
    Collects the slots touched by a burst of events and hands them over once no
    new event has arrived for `settle_seconds`.
    """
    def __init__(self, on_settled, settle_seconds=SETTLE_SECONDS):
        self.on_settled = on_settled
        self.settle_seconds = settle_seconds
        self.pending = set()
        self.timer = None
        self.cancelled = False
        self._lock = threading.Lock()

    def add(self, game_number):
        with self._lock:
            if self.cancelled:
                return
            if not self.pending:
                logging.info("⚠️ Change detected. Preparing backup...")
            self.pending.add(game_number)
            # If a timer is already running, cancel it to reset the waiting period
            if self.timer is not None:
                self.timer.cancel()
            self.timer = threading.Timer(self.settle_seconds, self.flush)
            self.timer.daemon = True
            self.timer.start()

    def flush(self):
        """Drains the pending slots and passes them on. Called by the timer."""
        with self._lock:
            if self.cancelled or not self.pending:
                return
            slots = sorted(self.pending)
            self.pending.clear()
            self.timer = None
        self.on_settled(slots)

    def cancel(self):
        with self._lock:
            self.cancelled = True
            self.pending.clear()
            if self.timer is not None:
                self.timer.cancel()
                self.timer = None


class SaveEventHandler(FileSystemEventHandler):
    """Turns raw filesystem events on main save files into pending slots."""
    def __init__(self, save_dir, coalescer):
        self.save_dir = save_dir
        self.backup_root = os.path.realpath(BackupStore(save_dir).root)
        self.coalescer = coalescer

    def _handle_event(self, event):
        if event.is_directory:  # We only care about file changes
            return
        paths = [event.src_path]
        dest_path = getattr(event, 'dest_path', None)
        if dest_path:
            paths = [dest_path]
        for path in paths:
            if isinstance(path, bytes):
                path = os.fsdecode(path)
            if os.path.realpath(path).startswith(self.backup_root):
                continue
            info = parse_path(path)
            # The .bak sidecar is copied along with its main save
            if info is None or info.is_bak:
                continue
            logging.debug(f"Change detected: {event.event_type} at {path}. Resetting timer.")
            self.coalescer.add(info.game_number)

    def on_modified(self, event):
        """Called when a file or directory is modified."""
        self._handle_event(event)

    def on_created(self, event):
        """Called when a file or directory is created."""
        self._handle_event(event)

    def on_deleted(self, event):
        """Called when a file or directory is deleted."""
        self._handle_event(event)

    def on_moved(self, event):
        """Called when a file or directory is moved or renamed."""
        self._handle_event(event)


class WatcherSession:
    """One observer bound to one save directory."""
    def __init__(self, save_dir, observer, coalescer, store):
        self.save_dir = save_dir
        self.observer = observer
        self.coalescer = coalescer
        self.store = store
        self.scan_timer = None
        self.active = True

    def close(self):
        self.active = False
        self.coalescer.cancel()
        if self.scan_timer is not None:
            self.scan_timer.cancel()
        if self.observer.is_alive():
            self.observer.stop()
            self.observer.join()


class SaveWatcher:
    """
    Keeps at most one watch on the configured save directory. Starting a new
    watch tears the previous one down first.

    `limit_provider` is called before every backup so settings changes apply to
    the next retention decision. `on_backup` is called after settled events
    produced at least one new backup.
    """
    def __init__(self, limit_provider, on_backup=None, settle_seconds=SETTLE_SECONDS,
                 initial_scan_delay=INITIAL_SCAN_DELAY, observer_factory=Observer):
        self.limit_provider = limit_provider
        self.on_backup = on_backup
        self.settle_seconds = settle_seconds
        self.initial_scan_delay = initial_scan_delay
        self.observer_factory = observer_factory
        self.session = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        session = self.session
        return session is not None and session.active and session.observer.is_alive()

    @property
    def watched_path(self):
        session = self.session
        return session.save_dir if session is not None else None

    def start(self, path, on_backup=None):
        """Starts watching `path` (a file path watches its directory)."""
        with self._lock:
            self._stop_locked()
            if on_backup is not None:
                self.on_backup = on_backup

            save_dir = normalize_to_directory(path)
            if not os.path.isdir(save_dir):
                raise WatcherError(f"Watch target does not exist: {save_dir}")

            store = BackupStore(save_dir)
            store.sweep_leftovers()

            session = None
            coalescer = SlotCoalescer(lambda slots: self._backup_slots(session, slots), self.settle_seconds)
            handler = SaveEventHandler(save_dir, coalescer)
            observer = self.observer_factory()
            try:
                observer.schedule(handler, save_dir, recursive=False)
                observer.start()
            except OSError as e:
                raise WatcherError(f"Failed to watch path: {e}") from e

            session = WatcherSession(save_dir, observer, coalescer, store)
            if self.initial_scan_delay is not None:
                session.scan_timer = threading.Timer(self.initial_scan_delay, self._initial_scan, args=(session,))
                session.scan_timer.daemon = True
                session.scan_timer.start()
            self.session = session

        logging.info(f"✅ Watchdog started. Monitoring folder: {save_dir}")
        return save_dir

    def stop(self):
        with self._lock:
            self._stop_locked()

    def _stop_locked(self):
        if self.session is None:
            return
        self.session.close()
        self.session = None
        logging.info("🛑 Watchdog stopped.")

    def _initial_scan(self, session):
        """Backs up any slot whose current save is not backed up yet."""
        if not session.active:
            return
        logging.info(f"🔎 Performing initial scan of {session.save_dir}")
        try:
            names = os.listdir(session.save_dir)
        except OSError as e:
            logging.error(f"Initial scan failed: {e}")
            return
        slots = sorted({info.game_number for info in map(parse_path, names) if info and not info.is_bak})
        self._backup_slots(session, slots)

    def _backup_slots(self, session, slots):
        if session is None or not session.active:
            return
        logging.info(f"⚙️ Starting backup for game(s) {', '.join(str(n + 1) for n in slots)}...")
        created = False
        for game_number in slots:
            try:
                if perform_backup_for_game(session.save_dir, game_number, self.limit_provider(), store=session.store):
                    created = True
            except (BackupError, OSError) as e:
                logging.error(f"Backup failed for game {game_number}: {e}")
        if created and self.on_backup is not None:
            self.on_backup()
        logging.info("✅ Backup process complete. Awaiting next change.")
        log_separator()
