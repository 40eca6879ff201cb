# filenames.py

import os
import re
from datetime import datetime

SAVE_PREFIX = "gamesave_"
MAIN_SUFFIX = ".sav"
BAK_SUFFIX = ".sav.bak"

BACKUP_DIR_NAME = ".backups"
BACKUP_FOLDER_PREFIX = "Game "
BACKUP_FOLDER_SEPARATOR = " - "
BACKUP_TIMESTAMP_FORMAT = "%d-%b-%Y %I-%M-%S %p"

# "(2)", "(3)", ... appended when two snapshots of a slot share the same second
_DUPLICATE_SUFFIX = re.compile(r"^(?P<stamp>.+?) \((?P<n>\d+)\)$")


class SaveFileInfo:
    """Slot number and file kind parsed from a save file name."""

    __slots__ = ("game_number", "is_bak")

    def __init__(self, game_number: int, is_bak: bool):
        self.game_number = game_number
        self.is_bak = is_bak

    def __eq__(self, other):
        if not isinstance(other, SaveFileInfo):
            return NotImplemented
        return (self.game_number, self.is_bak) == (other.game_number, other.is_bak)

    def __repr__(self):
        return f"SaveFileInfo(game_number={self.game_number}, is_bak={self.is_bak})"


def parse_filename(filename):
    """
    Parses 'gamesave_{N}.sav' or 'gamesave_{N}.sav.bak'.
    Returns a SaveFileInfo, or None for anything else.
    """
    if not filename.startswith(SAVE_PREFIX):
        return None

    rest = filename[len(SAVE_PREFIX):]
    dot_index = rest.find(".")
    if dot_index <= 0:
        return None

    number_str = rest[:dot_index]
    if not number_str.isdigit():
        return None
    game_number = int(number_str)

    suffix = rest[dot_index:]
    if suffix == MAIN_SUFFIX:
        return SaveFileInfo(game_number, False)
    if suffix == BAK_SUFFIX:
        return SaveFileInfo(game_number, True)
    return None


def parse_path(path):
    """Same as parse_filename, applied to the last component of a path."""
    if not path:
        return None
    return parse_filename(os.path.basename(os.fspath(path)))


def main_filename(game_number: int) -> str:
    return f"{SAVE_PREFIX}{game_number}{MAIN_SUFFIX}"


def bak_filename(game_number: int) -> str:
    return f"{SAVE_PREFIX}{game_number}{BAK_SUFFIX}"


def normalize_to_directory(path):
    """
    Normalizes a path to a directory.

    An existing file resolves to its parent. A path that does not exist but has an
    extension is treated as a future file and also resolves to its parent.
    Anything else is assumed to be a directory already.
    """
    path = os.path.abspath(os.fspath(path))
    if os.path.isfile(path):
        return os.path.dirname(path)
    if not os.path.exists(path) and os.path.splitext(path)[1]:
        return os.path.dirname(path)
    return path


def backup_root_for(save_dir) -> str:
    return os.path.join(os.fspath(save_dir), BACKUP_DIR_NAME)


def format_backup_folder_name(game_number: int, timestamp: datetime, duplicate: int = 1) -> str:
    """Formats 'Game {N+1} - dd-Mon-YYYY hh-mm-ss AM', with ' (n)' for n > 1."""
    name = f"{BACKUP_FOLDER_PREFIX}{game_number + 1}{BACKUP_FOLDER_SEPARATOR}{timestamp.strftime(BACKUP_TIMESTAMP_FORMAT)}"
    if duplicate > 1:
        name = f"{name} ({duplicate})"
    return name


class BackupFolderInfo:
    """Slot number and timestamp parsed from a backup folder name."""

    __slots__ = ("game_number", "timestamp", "duplicate")

    def __init__(self, game_number: int, timestamp: datetime, duplicate: int = 1):
        self.game_number = game_number
        self.timestamp = timestamp
        self.duplicate = duplicate


def parse_backup_folder_name(folder_name):
    """Returns a BackupFolderInfo, or None if the name does not follow the folder naming scheme."""
    prefix, sep, date_part = folder_name.partition(BACKUP_FOLDER_SEPARATOR)
    if not sep or not prefix.startswith(BACKUP_FOLDER_PREFIX):
        return None

    number_str = prefix[len(BACKUP_FOLDER_PREFIX):]
    if not number_str.isdigit():
        return None
    display_number = int(number_str)
    if display_number < 1:
        return None

    duplicate = 1
    match = _DUPLICATE_SUFFIX.match(date_part)
    if match:
        date_part = match.group("stamp")
        duplicate = int(match.group("n"))

    try:
        timestamp = datetime.strptime(date_part, BACKUP_TIMESTAMP_FORMAT)
    except ValueError:
        return None

    # Folder names count from 1, slots from 0
    return BackupFolderInfo(display_number - 1, timestamp, duplicate)
