# game.py

import os
import sys
import logging
import threading
import subprocess

import psutil

from .errors import LaunchError
from .paths import STEAM_APP_ID

# Matched case-insensitively against running process names. A renamed game
# executable will not be detected.
PROCESS_NAME_PART = "intothedead"
POLL_SECONDS_AUTO_CLOSE = 5
POLL_SECONDS_IDLE = 30


def is_game_process(name) -> bool:
    return PROCESS_NAME_PART in (name or "").lower()


def open_url(url):
    """Hands a URL to the platform's default handler."""
    # os.startfile is Windows-only
    if sys.platform == "win32":
        os.startfile(url)
    # For macOS
    elif sys.platform == "darwin":
        subprocess.run(["open", url], check=True)
    # For Linux and other Unix-like OS
    else:
        subprocess.run(["xdg-open", url], check=True)


def launch_game(opener=open_url):
    """Starts the game through the Steam protocol handler."""
    logging.info("🚀 Launching game via Steam...")
    try:
        opener(f"steam://run/{STEAM_APP_ID}")
    except (OSError, subprocess.SubprocessError) as e:
        logging.error(f"Failed to launch game: {e}")
        raise LaunchError(f"Failed to launch game: {e}") from e
    logging.info("Game launch command sent successfully.")


def is_game_running(process_iter=psutil.process_iter) -> bool:
    for proc in process_iter(['name']):
        try:
            if is_game_process(proc.info.get('name')):
                return True
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return False


class GameMonitor:
    """
    Polls the process list and calls `on_game_exit` when the game stops running
    while auto-close is enabled.
    """
    def __init__(self, auto_close_provider, on_game_exit, process_iter=psutil.process_iter):
        self.auto_close_provider = auto_close_provider
        self.on_game_exit = on_game_exit
        self.process_iter = process_iter
        self.game_was_running = False
        self._stop_event = threading.Event()
        self._thread = None

    def check_once(self) -> bool:
        """One poll. Returns True when the app should exit."""
        running = is_game_running(self.process_iter)
        if running:
            if not self.game_was_running:
                logging.info(f"🎮 Game process detected: {PROCESS_NAME_PART}")
            self.game_was_running = True
            return False
        if self.game_was_running:
            logging.info("Game process exited.")
            self.game_was_running = False
            return bool(self.auto_close_provider())
        return False

    def _run(self):
        while not self._stop_event.is_set():
            auto_close = bool(self.auto_close_provider())
            try:
                should_exit = self.check_once()
            except psutil.Error as e:
                logging.warning(f"Process scan failed: {e}")
                should_exit = False
            if should_exit:
                logging.info("Auto-close enabled. Exiting application.")
                self.on_game_exit()
                return
            self._stop_event.wait(POLL_SECONDS_AUTO_CLOSE if auto_close else POLL_SECONDS_IDLE)

    def start(self):
        logging.info("Starting game process monitor...")
        self._thread = threading.Thread(target=self._run, name="game-monitor", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop_event.set()
