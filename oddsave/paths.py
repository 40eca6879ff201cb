# paths.py

import os
import sys
import logging

STEAM_APP_ID = "2239710"
STEAM_SAVE_FILE = "gamesave_0.sav"


def is_valid_path(path) -> bool:
    """
    True if the path exists, or if it looks like a new file (has an extension)
    inside a directory that exists.
    """
    if not path:
        return False
    path = os.fspath(path)
    if os.path.exists(path):
        return True
    parent = os.path.dirname(os.path.abspath(path))
    if parent and os.path.isdir(parent):
        return bool(os.path.splitext(path)[1])
    return False


def is_auto_detection_supported() -> bool:
    """Steam folder detection only knows the Windows install layout."""
    return sys.platform == "win32"


def candidate_steam_roots(environ=None):
    """Returns existing Steam install roots from the Program Files variables, without duplicates."""
    environ = os.environ if environ is None else environ
    roots = []
    for var in ("ProgramFiles(x86)", "ProgramFiles"):
        base = environ.get(var)
        if not base:
            continue
        root = os.path.join(base, "Steam")
        if os.path.isdir(root) and root not in roots:
            roots.append(root)
    return roots


def find_steam_save_dirs(steam_root):
    """Finds userdata/<user>/<app id>/remote folders that hold a first-slot save."""
    userdata = os.path.join(steam_root, "userdata")
    matches = []
    try:
        entries = sorted(os.listdir(userdata))
    except OSError:
        return matches

    for entry in entries:
        user_dir = os.path.join(userdata, entry)
        if not os.path.isdir(user_dir):
            continue
        remote_dir = os.path.join(user_dir, STEAM_APP_ID, "remote")
        if os.path.isfile(os.path.join(remote_dir, STEAM_SAVE_FILE)):
            matches.append(remote_dir)
    return matches


def detect_save_paths(roots=None):
    """Lists candidate save folders. Empty on platforms without auto-detection."""
    logging.info("🔎 Steam save detection started")
    if roots is None:
        if not is_auto_detection_supported():
            logging.warning("Steam save detection is limited to Windows.")
            return []
        roots = candidate_steam_roots()

    results = set()
    for root in roots:
        results.update(find_steam_save_dirs(root))

    logging.info(f"Steam save detection completed with {len(results)} result(s)")
    return sorted(results)


def _components(path):
    return [part for part in os.fspath(path).replace("\\", "/").split("/") if part]


def is_steam_cloud_path(path) -> bool:
    """
    True if the path looks like a Steam Cloud synced folder for this game:
    a 'userdata' component (any case) and the app id somewhere in the path.
    """
    parts = _components(path)
    has_app_id = STEAM_APP_ID in parts
    has_userdata = any(part.lower() == "userdata" for part in parts)
    return has_app_id and has_userdata
