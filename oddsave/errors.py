# errors.py

"""Error hierarchy shared by the backup engine and the command surface."""


class SaveManagerError(RuntimeError):
    """Base exception for save manager failures."""


class ValidationError(SaveManagerError):
    """Bad input from the caller: invalid path, empty selection, unconfigured save path."""


class BackupError(SaveManagerError):
    """A snapshot could not be written."""


class BackupNotFoundError(SaveManagerError):
    """The backup was already removed, usually by a concurrent delete or prune."""


class RestoreError(SaveManagerError):
    """Restoring a backup failed; the previous save files are left as they were."""


class WatcherError(SaveManagerError):
    """The filesystem watcher could not be started."""


# Matched by callers to tell a retryable deferral from a real failure.
WATCHER_DEFERRED_MESSAGE = "window not yet visible"


class WatcherDeferredError(WatcherError):
    """Watcher start was requested before the window could receive events."""

    def __init__(self, message=f"Watcher initialization deferred: {WATCHER_DEFERRED_MESSAGE}"):
        super().__init__(message)


class LaunchError(SaveManagerError):
    """The game could not be launched."""


def is_deferred_error(error) -> bool:
    """Returns True if the error is the retryable 'window not yet visible' deferral."""
    if isinstance(error, WatcherDeferredError):
        return True
    return WATCHER_DEFERRED_MESSAGE in str(error)
