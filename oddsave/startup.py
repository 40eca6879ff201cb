# startup.py

import time
import logging

from .errors import is_deferred_error

MIN_RETRY_DELAY_MS = 50
RETRY_STEP_MS = 50
MAX_RETRY_DELAY_MS = 1000


def retry_delay_ms(attempt: int) -> int:
    """50, 100, 150, ... capped at 1000 ms."""
    return min(MAX_RETRY_DELAY_MS, MIN_RETRY_DELAY_MS + attempt * RETRY_STEP_MS)


def initialize_watcher(init, sleep=time.sleep, stop_event=None) -> bool:
    """
    Calls `init` until it succeeds. A 'window not yet visible' deferral is
    retried on the backoff schedule; any other error is logged and ends the loop.
    Returns True once the watcher is initialized.
    """
    attempt = 0
    while True:
        if stop_event is not None and stop_event.is_set():
            logging.info("Watcher initialization cancelled.")
            return False
        try:
            init()
        except Exception as e:
            if not is_deferred_error(e):
                logging.error(f"Failed to initialize watcher: {e}")
                return False
            delay = retry_delay_ms(attempt)
            logging.debug(f"Watcher initialization deferred, retrying in {delay} ms.")
            sleep(delay / 1000)
            attempt += 1
            continue
        logging.info("Watcher initialized.")
        return True
