# app.py

import time
import logging
import argparse
import tkinter as tk

from .commands import CommandService, bootstrap_config
from .config import ConfigStore, default_config_path
from .logs import setup_plain_console_logging
from .startup import initialize_watcher

DISCLAIMER = ("This tool has no affiliation with \"Into the Dead: Our Darkest Days\" or its publisher.\n"
              "This software is provided 'as-is'. Use at your own risk. "
              "The author is not responsible for any damage or data loss.")


def run_console_mode(service):
    """Runs the backup monitor in a console-only (no GUI) mode."""
    logging.info("Running in console-only mode.")

    save_path = service.get_config().save_path
    if not save_path or not service.validate_path(save_path):
        logging.error(f"Save folder does not exist or is not specified in config: {save_path}")
        return 1

    # Nothing to wait for without a window
    service.mark_window_visible()
    if not initialize_watcher(service.init_watcher):
        return 1

    logging.info("Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logging.info("🛑 Ctrl+C received. Stopping watchdog...")
    service.shutdown()
    logging.info("Watchdog stopped. Exiting.")
    return 0


def run_gui_mode(service):
    from .gui import SaveManagerApp

    root = tk.Tk()
    # Set initial window size to a percentage of the screen
    screen_width = root.winfo_screenwidth()
    screen_height = root.winfo_screenheight()
    root.geometry(f"{int(screen_width * 0.6)}x{int(screen_height * 0.75)}")

    SaveManagerApp(root, service)
    root.mainloop()
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backs up Into the Dead: Our Darkest Days saves whenever they change.")
    parser.add_argument("config_file", nargs="?", default=None,
                        help="Path to the JSON configuration file (default: next to the program).")
    parser.add_argument("--nogui", action="store_true", help="Run in console-only mode without a GUI.")
    parser.add_argument("--debug", action="store_true", help="Log every filesystem event.")
    return parser.parse_args(argv)


def main(argv=None):
    """Parses arguments, loads config, and starts the window or the console monitor."""
    print(f"\n{DISCLAIMER}\n")

    args = parse_args(argv)
    setup_plain_console_logging(debug=args.debug)

    config_store = ConfigStore(args.config_file or default_config_path())
    bootstrap_config(config_store)
    service = CommandService(config_store)

    if args.nogui:
        return run_console_mode(service)
    return run_gui_mode(service)

