# gui.py

import os
import sys
import queue
import logging
import threading
import tkinter as tk
from tkinter import ttk, filedialog, messagebox, scrolledtext, simpledialog
from datetime import datetime

import sv_ttk

if sys.platform == "win32":
    import ctypes

from .errors import BackupNotFoundError, SaveManagerError
from .events import BackupsView
from .game import GameMonitor
from .logs import CustomFormatter, LOG_DATEFMT, LOG_FORMAT, QueueHandler
from .startup import initialize_watcher

APP_TITLE = "ODD Save Manager"


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def format_modified(iso_string: str) -> str:
    try:
        return datetime.fromisoformat(iso_string).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return iso_string


def build_restore_confirmation_message(backup, is_cloud) -> str:
    game_label = f"Game {backup.game_number + 1}"
    message = (f"Are you sure you want to restore \"{backup.original_filename}\" ({game_label}) "
               f"from {format_modified(backup.modified)}?\n"
               f"This will overwrite the current save files for {game_label}.")
    if is_cloud:
        message += ("\n\nThis save folder is synced by Steam Cloud. Steam may report a "
                    "sync conflict the next time the game starts.")
    elif is_cloud is None:
        message += "\n\nCould not check whether this folder is synced by Steam Cloud."
    return message


class BatchDeleteDialog(simpledialog.Dialog):
    """Asks which games to clear and how."""
    def __init__(self, parent, game_numbers):
        self.game_numbers = game_numbers
        self.result = None
        super().__init__(parent, title="Batch Delete Backups")

    def body(self, master):
        ttk.Label(master, text="Delete backups for:").grid(row=0, column=0, sticky=tk.W, pady=(0, 5))
        self.game_vars = {}
        for row, game_number in enumerate(self.game_numbers, start=1):
            var = tk.BooleanVar(value=True)
            ttk.Checkbutton(master, text=f"Game {game_number + 1}", variable=var).grid(row=row, column=0, sticky=tk.W)
            self.game_vars[game_number] = var
        self.keep_latest_var = tk.BooleanVar(value=True)
        self.delete_locked_var = tk.BooleanVar(value=False)
        next_row = len(self.game_numbers) + 1
        ttk.Checkbutton(master, text="Keep the latest backup of each game", variable=self.keep_latest_var).grid(
            row=next_row, column=0, sticky=tk.W, pady=(10, 0))
        ttk.Checkbutton(master, text="Also delete locked backups", variable=self.delete_locked_var).grid(
            row=next_row + 1, column=0, sticky=tk.W)

    def validate(self):
        if not any(var.get() for var in self.game_vars.values()):
            messagebox.showwarning("Nothing Selected", "Select at least one game.", parent=self)
            return False
        return True

    def apply(self):
        self.result = {
            "game_numbers": [n for n, var in self.game_vars.items() if var.get()],
            "keep_latest": self.keep_latest_var.get(),
            "delete_locked": self.delete_locked_var.get(),
        }


class SaveManagerApp:
    """The main GUI application class."""
    def __init__(self, root, service):
        self.root = root
        self.service = service
        self.view = BackupsView()
        self.ui_queue = queue.Queue()
        self.theme = "light"

        self.root.title(APP_TITLE)
        self.root.protocol("WM_DELETE_WINDOW", self.quit_app)

        self.create_widgets()
        self.populate_widgets_from_config()

        # --- Logging to GUI ---
        self.log_queue = queue.Queue()
        self.queue_handler = QueueHandler(self.log_queue)
        self.queue_handler.setFormatter(CustomFormatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logging.getLogger().addHandler(self.queue_handler)
        self.root.after(100, self.process_log_queue)
        self.root.after(100, self.process_ui_queue)

        # Delay initial theme application to ensure the window is ready
        self.root.after(50, lambda: self.apply_theme(self.theme))

        # Backups changed by the watcher thread; handled on the Tk thread
        self.unsubscribe = self.service.events.subscribe(lambda name, seq: self.ui_queue.put(("reload", None)))

        # The watcher starts once the window is mapped
        self.root.bind("<Map>", self.on_window_mapped, add="+")
        self.init_stop = threading.Event()
        threading.Thread(
            target=initialize_watcher, args=(self.watcher_init_attempt,),
            kwargs={"stop_event": self.init_stop}, name="watcher-init", daemon=True,
        ).start()

        config = self.service.get_config()
        self.game_monitor = GameMonitor(lambda: self.service.get_config().auto_close,
                                        lambda: self.ui_queue.put(("quit", None)))
        self.game_monitor.start()
        if config.auto_launch_game:
            self.root.after(1000, self.launch_game)

        self.load_backups()

    # --- Layout ---

    def create_widgets(self):
        """Create and layout all the GUI widgets."""
        main_frame = ttk.Frame(self.root, padding="10")
        main_frame.grid(row=0, column=0, sticky=(tk.W, tk.E, tk.N, tk.S))
        self.root.columnconfigure(0, weight=1)
        self.root.rowconfigure(0, weight=1)
        main_frame.columnconfigure(0, weight=1)

        # --- Status Indicator Frame ---
        status_indicator_frame = ttk.Frame(main_frame, padding=(0, 0, 0, 10))
        status_indicator_frame.grid(row=0, column=0, sticky=(tk.W, tk.E))
        status_indicator_frame.columnconfigure(1, weight=1)

        self.status_canvas = tk.Canvas(status_indicator_frame, width=20, height=20, highlightthickness=0, borderwidth=0)
        self.status_canvas.grid(row=0, column=0, padx=(0, 10))
        self.status_light = self.status_canvas.create_oval(3, 3, 18, 18, outline="", width=2)

        self.status_label_var = tk.StringVar()
        ttk.Label(status_indicator_frame, textvariable=self.status_label_var, font=("-size 12 -weight bold")).grid(
            row=0, column=1, sticky=tk.W)
        ttk.Button(status_indicator_frame, text="Launch Game", command=self.launch_game).grid(row=0, column=2, padx=5)
        ttk.Button(status_indicator_frame, text="Toggle Theme", command=self.toggle_theme).grid(row=0, column=3, padx=5)

        # --- Settings Frame ---
        settings_frame = ttk.LabelFrame(main_frame, text="Settings", padding="10")
        settings_frame.grid(row=1, column=0, sticky=(tk.W, tk.E))
        settings_frame.columnconfigure(1, weight=1)

        ttk.Label(settings_frame, text="Save Folder:").grid(row=0, column=0, sticky=tk.W, pady=2)
        self.save_path_var = tk.StringVar()
        ttk.Entry(settings_frame, textvariable=self.save_path_var).grid(row=0, column=1, sticky=(tk.W, tk.E), padx=5)
        ttk.Button(settings_frame, text="Browse...", command=self.browse_folder).grid(row=0, column=2, padx=(0, 5))
        self.detect_button = ttk.Button(settings_frame, text="Detect", command=self.detect_save_path)
        self.detect_button.grid(row=0, column=3, padx=(0, 5))
        ttk.Button(settings_frame, text="Apply", command=self.apply_save_path).grid(row=0, column=4)

        ttk.Label(settings_frame, text="Maximum backups per game (0 = unlimited):").grid(row=1, column=0, sticky=tk.W, pady=2)
        self.max_backups_var = tk.IntVar()
        ttk.Spinbox(settings_frame, from_=0, to=1000, textvariable=self.max_backups_var, width=6).grid(
            row=1, column=1, sticky=tk.W, padx=5)

        options_frame = ttk.Frame(settings_frame)
        options_frame.grid(row=2, column=0, columnspan=5, sticky=tk.W, pady=(5, 0))
        self.auto_launch_var = tk.BooleanVar()
        ttk.Checkbutton(options_frame, text="Launch game on start", variable=self.auto_launch_var).grid(row=0, column=0, sticky=tk.W)
        self.auto_close_var = tk.BooleanVar()
        ttk.Checkbutton(options_frame, text="Close when the game exits", variable=self.auto_close_var).grid(
            row=0, column=1, sticky=tk.W, padx=15)
        ttk.Button(options_frame, text="Save Settings", command=self.save_game_settings).grid(row=0, column=2, padx=15)

        # --- Backups Frame ---
        backups_frame = ttk.LabelFrame(main_frame, text="Backups", padding="10")
        backups_frame.grid(row=2, column=0, sticky=(tk.W, tk.E, tk.N, tk.S), pady=(10, 0))
        main_frame.rowconfigure(2, weight=3)
        backups_frame.columnconfigure(0, weight=1)
        backups_frame.rowconfigure(0, weight=1)

        columns = ("game", "date", "size", "locked", "note")
        self.backups_tree = ttk.Treeview(backups_frame, columns=columns, show="headings", selectmode="browse")
        for column, heading, width in (("game", "Game", 80), ("date", "Date", 160), ("size", "Size", 80),
                                       ("locked", "Locked", 60), ("note", "Note", 300)):
            self.backups_tree.heading(column, text=heading)
            self.backups_tree.column(column, width=width, stretch=(column == "note"))
        self.backups_tree.grid(row=0, column=0, sticky=(tk.W, tk.E, tk.N, tk.S))
        scrollbar = ttk.Scrollbar(backups_frame, orient=tk.VERTICAL, command=self.backups_tree.yview)
        scrollbar.grid(row=0, column=1, sticky=(tk.N, tk.S))
        self.backups_tree.configure(yscrollcommand=scrollbar.set)

        actions_frame = ttk.Frame(backups_frame, padding=(0, 10, 0, 0))
        actions_frame.grid(row=1, column=0, columnspan=2, sticky=tk.W)
        for column, (text, command) in enumerate((
                ("Refresh", self.load_backups),
                ("Restore", self.restore_selected),
                ("Lock / Unlock", self.toggle_lock_selected),
                ("Note...", self.edit_note_selected),
                ("Delete", self.delete_selected),
                ("Batch Delete...", self.batch_delete))):
            ttk.Button(actions_frame, text=text, command=command).grid(row=0, column=column, padx=(0, 5))

        # --- Status Frame ---
        status_frame = ttk.LabelFrame(main_frame, text="Status Log", padding="10")
        status_frame.grid(row=3, column=0, sticky=(tk.W, tk.E, tk.N, tk.S), pady=(10, 0))
        main_frame.rowconfigure(3, weight=1)
        status_frame.columnconfigure(0, weight=1)
        status_frame.rowconfigure(0, weight=1)
        self.log_text = scrolledtext.ScrolledText(status_frame, state='disabled', height=8, font=("TkDefaultFont", 11), spacing3=4)
        self.log_text.grid(row=0, column=0, sticky=(tk.W, tk.E, tk.N, tk.S))

        separator = ttk.Separator(main_frame, orient='horizontal')
        separator.grid(row=4, column=0, sticky='ew', pady=5)
        disclaimer_text = ("This tool has no affiliation with \"Into the Dead: Our Darkest Days\" or its publisher. | "
                           "Use at your own risk. The author is not responsible for any damage or data loss.")
        ttk.Label(main_frame, text=disclaimer_text, justify=tk.CENTER, font=("-size 8"), anchor=tk.CENTER).grid(
            row=5, column=0, sticky='ew')

        self.update_status_indicator(False)

    def populate_widgets_from_config(self):
        config = self.service.get_config()
        self.save_path_var.set(config.save_path or "")
        self.max_backups_var.set(config.max_backups_per_game)
        self.auto_launch_var.set(config.auto_launch_game)
        self.auto_close_var.set(config.auto_close)
        self.view.path_valid = bool(config.save_path) and self.service.validate_path(config.save_path)
        if not self.service.is_auto_detection_supported():
            self.detect_button.config(state=tk.DISABLED)

    # --- Queues ---

    def process_log_queue(self):
        """Checks the queue for new log messages and adds them to the GUI."""
        try:
            while True:
                record = self.log_queue.get_nowait()
                self.log_text.config(state='normal')
                self.log_text.insert(tk.END, record + '\n')
                self.log_text.see(tk.END)
                self.log_text.config(state='disabled')
        except queue.Empty:
            pass
        self.root.after(100, self.process_log_queue)

    def process_ui_queue(self):
        """Runs results posted by worker threads on the Tk thread."""
        try:
            while True:
                kind, payload = self.ui_queue.get_nowait()
                if kind == "reload":
                    self.load_backups()
                elif kind == "call":
                    payload()
                elif kind == "quit":
                    self.quit_app()
                    return
        except queue.Empty:
            pass
        self.update_status_indicator(self.service.watcher.is_active)
        self.root.after(100, self.process_ui_queue)

    def run_in_background(self, action, on_success=None, error_title="Error"):
        """Runs a blocking command off the Tk thread and reports the outcome back on it."""
        def worker():
            try:
                result = action()
            except (SaveManagerError, OSError) as e:
                logging.error(f"{error_title}: {e}")
                self.ui_queue.put(("call", lambda error=e: self.show_command_error(error_title, error)))
                return
            if on_success is not None:
                self.ui_queue.put(("call", lambda: on_success(result)))
        threading.Thread(target=worker, daemon=True).start()

    def show_command_error(self, title, error):
        messagebox.showerror(title, str(error))
        if isinstance(error, BackupNotFoundError):
            self.load_backups()

    # --- Watcher startup ---

    def on_window_mapped(self, event=None):
        if event is None or event.widget is self.root:
            self.service.mark_window_visible()

    def watcher_init_attempt(self):
        self.service.init_watcher()

    # --- Backups ---

    def load_backups(self):
        self.run_in_background(self.service.get_backups, self.apply_listing,
                               error_title="Failed to load backups")

    def apply_listing(self, listing):
        # Replies may arrive out of order; the view keeps the newest listing
        if self.view.apply(listing):
            self.render_backups()

    def render_backups(self):
        self.backups_tree.delete(*self.backups_tree.get_children())
        for backup in self.view.backups:
            self.backups_tree.insert("", tk.END, iid=backup.path, values=(
                f"Game {backup.game_number + 1}",
                format_modified(backup.modified),
                format_size(backup.size),
                "🔒" if backup.locked else "",
                backup.note or "",
            ))

    def require_valid_path(self) -> bool:
        if not self.view.path_valid:
            messagebox.showwarning("No Save Folder", "Set a valid save folder before managing backups.")
        return self.view.path_valid

    def selected_backup(self):
        if not self.require_valid_path():
            return None
        selection = self.backups_tree.selection()
        backup = self.view.find(selection[0]) if selection else None
        if backup is None:
            messagebox.showinfo("No Backup Selected", "Select a backup in the list first.")
        return backup

    def restore_selected(self):
        backup = self.selected_backup()
        if backup is None:
            return
        # Advisory only: a failed check must not block the restore
        try:
            is_cloud = self.service.check_cloud_path(backup.original_path)
        except Exception as e:
            logging.warning(f"Could not check for Steam Cloud folder: {e}")
            is_cloud = None
        if not messagebox.askyesno("Restore Backup", build_restore_confirmation_message(backup, is_cloud)):
            return
        self.run_in_background(lambda: self.service.restore_backup(backup.path, backup.original_path),
                               lambda _: messagebox.showinfo("Restore Complete", f"Restored {backup.filename}."),
                               error_title="Restore failed")

    def toggle_lock_selected(self):
        backup = self.selected_backup()
        if backup is None:
            return
        self.run_in_background(lambda: self.service.toggle_backup_lock(backup.path, not backup.locked),
                               lambda _: self.load_backups(), error_title="Failed to change lock")

    def edit_note_selected(self):
        backup = self.selected_backup()
        if backup is None:
            return
        note = simpledialog.askstring("Backup Note", f"Note for {backup.filename}:",
                                      initialvalue=backup.note or "", parent=self.root)
        if note is None:
            return
        self.run_in_background(lambda: self.service.set_backup_note(backup.filename, note),
                               lambda _: self.load_backups(), error_title="Failed to save note")

    def delete_selected(self):
        backup = self.selected_backup()
        if backup is None:
            return
        message = f"Delete backup \"{backup.filename}\"?"
        if backup.locked:
            message += "\nThis backup is locked."
        if not messagebox.askyesno("Delete Backup", message):
            return
        self.run_in_background(lambda: self.service.delete_backup(backup.path),
                               lambda _: self.load_backups(), error_title="Failed to delete backup")

    def batch_delete(self):
        if not self.require_valid_path():
            return
        game_numbers = sorted({b.game_number for b in self.view.backups})
        if not game_numbers:
            messagebox.showinfo("No Backups", "There are no backups to delete.")
            return
        dialog = BatchDeleteDialog(self.root, game_numbers)
        if dialog.result is None:
            return

        def done(count):
            logging.info(f"🗑️ Deleted {count} backup(s).")
            self.load_backups()
        self.run_in_background(lambda: self.service.batch_delete_backups(**dialog.result), done,
                               error_title="Batch delete failed")

    # --- Settings ---

    def browse_folder(self):
        """Open a folder browser dialog and update the save path."""
        folder_selected = filedialog.askdirectory()
        if folder_selected:
            self.save_path_var.set(folder_selected)

    def detect_save_path(self):
        candidates = self.service.detect_save_paths()
        if not candidates:
            messagebox.showinfo("Detect Save Folder", "No Steam save folder was found.")
            return
        self.save_path_var.set(candidates[0])
        if len(candidates) > 1:
            logging.info(f"Found {len(candidates)} save folders, using {candidates[0]}")

    def apply_save_path(self):
        path = self.save_path_var.get().strip()
        try:
            final_path = self.service.set_save_path(path)
        except (SaveManagerError, OSError) as e:
            self.view.path_valid = False
            messagebox.showerror("Invalid Save Folder", str(e))
            return
        self.view.path_valid = True
        self.save_path_var.set(final_path)
        self.load_backups()

    def save_game_settings(self):
        try:
            max_backups = self.max_backups_var.get()
        except tk.TclError:
            messagebox.showerror("Invalid Setting", "The backup limit must be a whole number.")
            return
        try:
            self.service.set_game_settings(self.auto_launch_var.get(), self.auto_close_var.get(), max_backups)
        except (SaveManagerError, OSError) as e:
            messagebox.showerror("Settings Error", str(e))

    def launch_game(self):
        self.run_in_background(self.service.launch_game, error_title="Failed to launch game")

    # --- Look and feel ---

    def update_status_indicator(self, is_active: bool):
        """Updates the color and text of the status indicator."""
        if is_active:
            color = "#2ECC71"
            text = f"Monitoring {os.path.basename(self.service.watcher.watched_path or '')}"
        else:
            color = "#E74C3C"
            text = "Not monitoring"
        self.status_label_var.set(text)
        self.status_canvas.config(bg=self.root.cget("background"))
        self.status_canvas.itemconfig(self.status_light, fill=color)

    def apply_theme(self, theme_name):
        """Applies the specified theme and updates the title bar."""
        self.theme = theme_name
        sv_ttk.set_theme(theme_name)
        self._update_title_bar_theme(theme_name == "dark")
        self.update_status_indicator(self.service.watcher.is_active)

    def _update_title_bar_theme(self, is_dark: bool):
        """On Windows, sets the title bar to dark or light mode to match the theme."""
        if sys.platform == "win32":
            try:
                # DWMWA_USE_IMMERSIVE_DARK_MODE = 20 (for Windows 10 1903+ and Windows 11)
                DWMWA_USE_IMMERSIVE_DARK_MODE = 20
                hwnd = ctypes.windll.user32.GetParent(self.root.winfo_id())
                value = ctypes.c_int(2 if is_dark else 0)
                ctypes.windll.dwmapi.DwmSetWindowAttribute(hwnd, DWMWA_USE_IMMERSIVE_DARK_MODE, ctypes.byref(value), ctypes.sizeof(value))
            except Exception as e:
                logging.warning(f"Could not set title bar theme: {e}")

    def toggle_theme(self):
        """Switches the GUI theme between light and dark."""
        self.apply_theme("dark" if sv_ttk.get_theme() == "light" else "light")

    def quit_app(self):
        self.init_stop.set()
        self.game_monitor.stop()
        self.unsubscribe()
        self.service.shutdown()
        logging.getLogger().removeHandler(self.queue_handler)
        self.root.destroy()
