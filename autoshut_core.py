# autoshut_core.py
# STEAM AUTO-SHUTDOWN CORE ENGINE
# Version: 1.0.0

"""
STEAM AUTO-SHUTDOWN CORE ENGINE
===============================
Shuts the machine down once a Steam download has finished.

Steam keeps one folder per app id in steamapps/downloading while a download
or update is in progress. When the folder disappears, the download is done.

BUILDING BLOCKS:
- AutoShutdownConfig: every tunable in one immutable object
- EventLog: timestamped log lines to a debug file and a pollable buffer
- AppNameResolver: app id -> game name, read from the store page
- DownloadWatcher: polls the download folder for a given app id
- ShutdownInvoker: runs the platform shutdown command
- AutoShutdownCore: orchestrator shared by the CLI and the GUI
"""

import os
import sys
import time
import threading
import subprocess
import requests
from pathlib import Path
from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Set, Tuple, Any, Dict
from datetime import datetime

from autoshut_stream import DEFAULT_STRATEGY, scan_between

# =========================================================
# CONSTANTS
# =========================================================

# The game name sits in: <div id="appHubAppName" class="apphub_AppName">NAME</div>
APP_NAME_PREFIX = b'apphub_AppName">'
APP_NAME_SUFFIX = b"</div>"
UNKNOWN_APP_NAME = "Unknown game"

# Store page for an app id
APP_URL_TEMPLATE = "https://store.steampowered.com/app/{app_id}"

# Skips the age check page mature titles redirect to
COOKIE_VALUE = "wants_mature_content=1; lastagecheckage=1-0-1999; birthtime=912463201"

# How often the download folder is checked (seconds)
CHECK_INTERVAL_SECONDS = 30

# Connection Timeout
CONNECTION_TIMEOUT = 15

# Store pages are scanned in small chunks, never held whole
PAGE_CHUNK_SIZE = 8192

USER_AGENT = "steam-autoshutdown/1.0 (+https://github.com/steam-autoshutdown)"

DEFAULT_LOG_FILE = Path.cwd() / "autoshut_debug.log"


def default_watch_directory() -> str:
    """Steam's downloading folder for the current platform."""
    if sys.platform.startswith("win"):
        return r"C:\Program Files (x86)\Steam\steamapps\downloading"
    if sys.platform == "darwin":
        return str(Path.home() / "Library" / "Application Support" / "Steam"
                   / "steamapps" / "downloading")
    return str(Path.home() / ".steam" / "steam" / "steamapps" / "downloading")


def default_shutdown_command() -> Tuple[str, Tuple[str, ...]]:
    if sys.platform.startswith("win"):
        return ("shutdown", ("/s",))
    return ("shutdown", ("-h", "now"))


# Engine states reported by get_stats()
STATE_IDLE = "idle"
STATE_WATCHING = "watching"
STATE_MISSING = "missing"
STATE_STOPPED = "stopped"
STATE_SHUTDOWN = "shutdown"
STATE_FAILED = "failed"


# =========================================================
# CONFIGURATION
# =========================================================
@dataclass(frozen=True)
class AutoShutdownConfig:
    """Process-wide settings, built once and handed to each collaborator."""
    poll_interval_seconds: int = CHECK_INTERVAL_SECONDS
    watch_directory: str = default_watch_directory()
    app_url_template: str = APP_URL_TEMPLATE
    cookie_header: str = COOKIE_VALUE
    shutdown_command: Tuple[str, Tuple[str, ...]] = default_shutdown_command()
    connection_timeout: int = CONNECTION_TIMEOUT
    chunk_size: int = PAGE_CHUNK_SIZE
    user_agent: str = USER_AGENT
    match_strategy: str = DEFAULT_STRATEGY

    def with_overrides(self, **overrides) -> "AutoShutdownConfig":
        """Copy with the given fields replaced. None values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    def app_url(self, app_id: str) -> str:
        return self.app_url_template.format(app_id=app_id)


# =========================================================
# EVENT LOG
# =========================================================
class EventLog:
    """
    Thread-safe log shared by the engine parts and polled by the front-ends.

    Lines look like "[12:30:01] [INFO] message". Indexes handed out by
    get_logs() count every line ever written, so they stay valid after the
    buffer starts dropping old lines.
    """

    def __init__(self, log_file: Optional[Path] = None, maxlen: int = 50000):
        self.log_file = Path(log_file) if log_file else None
        self.lines = deque(maxlen=maxlen)
        self.total = 0
        self.lock = threading.Lock()

        if self.log_file and self.log_file.exists():
            self.log_file.unlink()

    def log(self, message: str, level: str = "info"):
        """
        Record a message.

        Args:
            message: Log message
            level: Log level (info, success, warning, error)
        """
        timestamp = datetime.now().strftime("%H:%M:%S")
        formatted = f"[{timestamp}] [{level.upper()}] {message}"

        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as f:
                    f.write(formatted + "\n")
            except Exception:
                pass

        with self.lock:
            self.lines.append(formatted)
            self.total += 1

    def get_logs(self, from_index: int = 0) -> Tuple[List[str], int]:
        """
        Get log lines written since from_index.

        Returns:
            Tuple of (log_lines, new_index)
        """
        with self.lock:
            first = self.total - len(self.lines)
            start = max(from_index - first, 0)
            return list(self.lines)[start:], self.total


# =========================================================
# NAME RESOLVER
# =========================================================
class AppNameResolver:
    """
    Looks up game names on the Steam store.

    resolve() never raises: the name is only shown to the user, so any problem
    gives UNKNOWN_APP_NAME and a warning in the log.
    """

    def __init__(self, config: AutoShutdownConfig, session: requests.Session = None,
                 log: EventLog = None):
        self.config = config
        self.log = log or EventLog()

        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": config.user_agent,
            "Cookie": config.cookie_header,
            "Connection": "keep-alive",
        })

    def _open_page(self, app_id: str) -> requests.Response:
        response = self.session.get(self.config.app_url(app_id), stream=True,
                                    timeout=self.config.connection_timeout)
        try:
            response.raise_for_status()
        except requests.HTTPError:
            response.close()
            raise
        return response

    def resolve(self, app_id: str) -> str:
        try:
            response = self._open_page(app_id)
        except Exception as e:
            self.log.log(f"Store page fetch failed for {app_id}: {e}", "warning")
            return UNKNOWN_APP_NAME

        try:
            result = scan_between(
                APP_NAME_PREFIX, APP_NAME_SUFFIX,
                response.iter_content(chunk_size=self.config.chunk_size),
                strategy=self.config.match_strategy,
            )
        finally:
            response.close()

        if not result.found:
            if result.error is not None:
                self.log.log(f"Store page read failed for {app_id}: {result.error}", "warning")
            else:
                self.log.log(f"No app name on store page for {app_id}", "warning")
            return UNKNOWN_APP_NAME

        try:
            name = result.data.decode("utf-8")
        except UnicodeDecodeError as e:
            self.log.log(f"App name for {app_id} is not valid UTF-8: {e}", "warning")
            return UNKNOWN_APP_NAME

        self.log.log(f"Resolved {app_id} -> {name}", "info")
        return name

    def resolve_many(self, app_ids: List[str]) -> List[Tuple[str, str]]:
        """Resolve each id in turn; returns (app_id, name) pairs in input order."""
        return [(app_id, self.resolve(app_id)) for app_id in app_ids]


# =========================================================
# DOWNLOAD WATCHER
# =========================================================
class DownloadWatcher:
    """Polls the download folder for the presence of one app's folder."""

    def __init__(self, config: AutoShutdownConfig, log: EventLog = None,
                 stop_event: threading.Event = None,
                 sleep: Callable[[float], Any] = None):
        self.config = config
        self.log = log or EventLog()
        self.stop_event = stop_event or threading.Event()
        # Event.wait doubles as an interruptible sleep
        self._sleep = sleep or self.stop_event.wait

        self.polls = 0
        self.last_check = 0.0

    @property
    def directory(self) -> Path:
        return Path(self.config.watch_directory)

    def list_entries(self) -> Set[str]:
        """
        Names of the subdirectories currently in the download folder.

        An unreadable folder gives an empty set. Entries whose type cannot be
        read are skipped.
        """
        names = set()
        try:
            with os.scandir(self.directory) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir():
                            names.add(entry.name)
                    except OSError as e:
                        self.log.log(f"Skipping unreadable entry {entry.name}: {e}", "warning")
        except OSError as e:
            self.log.log(f"Cannot read download folder {self.directory}: {e}", "warning")
        return names

    def exists(self, name: str) -> bool:
        self.last_check = time.time()
        return name in self.list_entries()

    def wait_for_removal(self, name: str) -> bool:
        """
        Block until the folder for name disappears.

        Returns:
            True once the folder went from present to absent, False if it was
            never there or the stop event was set first
        """
        if not self.exists(name):
            return False

        while not self.stop_event.is_set():
            self._sleep(self.config.poll_interval_seconds)
            if self.stop_event.is_set():
                break

            self.polls += 1
            if not self.exists(name):
                return True

        return False


# =========================================================
# SHUTDOWN INVOKER
# =========================================================
class ShutdownInvoker:
    """Runs the configured shutdown command. Failures propagate to the caller."""

    def __init__(self, config: AutoShutdownConfig, log: EventLog = None,
                 runner: Callable[..., Any] = subprocess.run):
        self.config = config
        self.log = log or EventLog()
        self._runner = runner

    def command(self) -> List[str]:
        name, args = self.config.shutdown_command
        return [name, *args]

    def shutdown(self):
        command = self.command()
        self.log.log(f"Shutting down: {' '.join(command)}", "warning")
        self._runner(command, check=True, capture_output=True)


# =========================================================
# AUTO-SHUTDOWN CORE ENGINE
# =========================================================
class AutoShutdownCore:
    """
    Orchestrates name lookup, folder polling and the shutdown.

    The CLI calls run() directly. The GUI uses start()/stop(), which run the
    same loop on a background thread, and polls get_stats()/get_logs().
    """

    def __init__(self, config: AutoShutdownConfig = None, session: requests.Session = None,
                 sleep: Callable[[float], Any] = None,
                 runner: Callable[..., Any] = subprocess.run,
                 log_file: Optional[Path] = DEFAULT_LOG_FILE):
        """
        Initialize the engine.

        Args:
            config: Settings (defaults for this platform if None)
            session: requests session for store lookups
            sleep: Replacement for the interruptible poll sleep
            runner: Replacement for subprocess.run when shutting down
            log_file: Debug log path, None to keep logs in memory only
        """
        self.config = config or AutoShutdownConfig()
        self.stop_event = threading.Event()
        self.events = EventLog(log_file)

        self.resolver = AppNameResolver(self.config, session, self.events)
        self.watcher = DownloadWatcher(self.config, self.events, self.stop_event, sleep)
        self.shutdown = ShutdownInvoker(self.config, self.events, runner)

        self.stats_lock = threading.Lock()
        self.state = STATE_IDLE
        self.armed_app_id = None
        self.armed_app_name = None
        self.watch_thread = None
        self.failure = None

        self._log("Core Engine Initialized", "info")
        self._log(f"Download folder: {self.config.watch_directory}", "info")
        self._log(f"Check interval: {self.config.poll_interval_seconds}s", "info")

    def _log(self, message: str, level: str = "info"):
        self.events.log(message, level)

    def _set_state(self, state: str):
        with self.stats_lock:
            self.state = state

    def list_downloads(self) -> List[Tuple[str, str]]:
        """Pending downloads as (app_id, name) pairs, sorted by app id."""
        app_ids = sorted(self.watcher.list_entries())
        self._log(f"Found {len(app_ids)} pending download(s)", "info")
        return self.resolver.resolve_many(app_ids)

    def run(self, app_id: str, app_name: str = None) -> bool:
        """
        Wait for the download of app_id to finish, then shut down.

        Returns:
            True if the shutdown command was issued, False if the download
            folder was missing or the engine was stopped
        """
        with self.stats_lock:
            self.armed_app_id = app_id
            self.armed_app_name = app_name
        self.watcher.polls = 0

        if not self.watcher.exists(app_id):
            self._log(f'Game download "{app_id}" doesn\'t exist', "error")
            self._set_state(STATE_MISSING)
            return False

        self._set_state(STATE_WATCHING)
        self._log(f"Auto shutdown armed for {app_id}", "success")

        if not self.watcher.wait_for_removal(app_id):
            if self.stop_event.is_set():
                self._log(f"Auto shutdown disarmed for {app_id}", "info")
                self._set_state(STATE_STOPPED)
            else:
                self._log(f'Game download "{app_id}" vanished before watching started', "warning")
                self._set_state(STATE_MISSING)
            return False

        self._log(f"Download finished: {app_id}", "success")
        self.shutdown.shutdown()
        self._set_state(STATE_SHUTDOWN)
        return True

    def _run_thread(self, app_id: str, app_name: str = None):
        try:
            self.run(app_id, app_name)
        except Exception as e:
            self.failure = e
            self._set_state(STATE_FAILED)
            self._log(f"Shutdown failed: {e}", "error")

    def start(self, app_id: str, app_name: str = None):
        """Run the watch loop on a background thread."""
        if self.watch_thread and self.watch_thread.is_alive():
            self._log("A watch is already running", "warning")
            return

        self.stop_event.clear()
        self.failure = None
        self.watch_thread = threading.Thread(
            target=self._run_thread,
            args=(app_id, app_name),
            daemon=True
        )
        self.watch_thread.start()

    def stop(self):
        """Stop the watch loop."""
        self.stop_event.set()

        if self.watch_thread and self.watch_thread.is_alive():
            self.watch_thread.join(timeout=2)

        self._log("Engine stopped", "info")

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of the engine state for polling front-ends."""
        with self.stats_lock:
            next_check_in = 0.0
            if self.state == STATE_WATCHING and self.watcher.last_check:
                elapsed = time.time() - self.watcher.last_check
                next_check_in = max(self.config.poll_interval_seconds - elapsed, 0.0)

            return {
                "state": self.state,
                "armed_app_id": self.armed_app_id,
                "armed_app_name": self.armed_app_name,
                "polls": self.watcher.polls,
                "last_check": self.watcher.last_check,
                "next_check_in": next_check_in,
                "poll_interval": self.config.poll_interval_seconds,
                "watch_directory": self.config.watch_directory,
                "heartbeat": time.time(),
            }

    def get_logs(self, from_index: int = 0) -> Tuple[List[str], int]:
        return self.events.get_logs(from_index)
