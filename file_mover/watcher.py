"""File system watcher for the File Mover Service.

Uses watchdog's polling observer to notice files that appear in the
source folder after watching starts, holds each one until it stops
changing, then hands it to the registered ``add`` handlers.  Polling
keeps detection reliable on network shares where native change
notifications are missing or fire too early.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers.polling import PollingObserver

logger = logging.getLogger(__name__)

EVENT_ADD = "add"
EVENT_ERROR = "error"

DEFAULT_POLL_INTERVAL = 1.0


@dataclass(frozen=True)
class WatchTarget:
    """The directory observed for the lifetime of the process."""
    directory_path: str


@dataclass(frozen=True)
class FileEvent:
    """A new file in the watched folder that has finished being written."""
    absolute_path: str
    detected_at: datetime = field(default_factory=datetime.now)

    @property
    def name(self) -> str:
        return os.path.basename(self.absolute_path)


class _SettleTracker:
    """Holds new files until they have stayed unchanged for *settle_seconds*."""

    def __init__(self, settle_seconds: float = 0.0) -> None:
        self.settle_seconds = max(0.0, settle_seconds)
        # file_path -> (size, mtime_ns, last_seen, detected_at)
        self._pending = {}
        self._lock = threading.Lock()

    def track(self, path: str) -> None:
        """Register a newly created file."""
        try:
            stat = os.stat(path)
        except OSError:
            return
        with self._lock:
            self._pending[path] = (
                stat.st_size, stat.st_mtime_ns, time.monotonic(), datetime.now()
            )
        logger.debug("Tracking %s (size=%d)", path, stat.st_size)

    def forget(self, path: str) -> None:
        with self._lock:
            self._pending.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def pending_files(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def collect_settled(self) -> list[FileEvent]:
        """Return files unchanged for at least *settle_seconds*, and stop tracking them."""
        settled = []  # type: list[FileEvent]
        now = time.monotonic()
        with self._lock:
            for path, (last_size, last_mtime, last_seen, detected_at) in list(self._pending.items()):
                try:
                    stat = os.stat(path)
                except OSError:
                    # Gone before it settled
                    del self._pending[path]
                    logger.debug("Dropping %s (vanished)", path)
                    continue
                if (stat.st_size, stat.st_mtime_ns) != (last_size, last_mtime):
                    # Still being written
                    self._pending[path] = (
                        stat.st_size, stat.st_mtime_ns, time.monotonic(), detected_at
                    )
                elif now - last_seen >= self.settle_seconds:
                    del self._pending[path]
                    settled.append(FileEvent(path, detected_at))
        return settled


class _NewFileHandler(FileSystemEventHandler):
    """Watchdog handler that feeds created files into the settle tracker."""

    def __init__(
        self,
        tracker: _SettleTracker,
        root: str,
        on_root_lost: Callable[[], None],
    ):
        super().__init__()
        self._tracker = tracker
        self._root = root
        self._on_root_lost = on_root_lost

    def _in_root(self, path: str) -> bool:
        return os.path.dirname(path) == self._root

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._tracker.track(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemMovedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        self._tracker.forget(os.fsdecode(event.src_path))
        dest = os.fsdecode(event.dest_path)
        # A rename into the folder counts as a new file
        if self._in_root(dest):
            self._tracker.track(dest)

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = os.fsdecode(event.src_path)
        if event.is_directory:
            if os.path.normpath(path) == self._root:
                self._on_root_lost()
            return
        self._tracker.forget(path)


class FolderWatcher:
    """Polling watcher that reports each new, settled file exactly once.

    Usage:
        watcher = FolderWatcher(source)
        watcher.on("add", handle_file)
        watcher.on("error", handle_error)
        watcher.start()
    """

    def __init__(
        self,
        source_folder: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        log: logging.Logger | None = None,
    ):
        self.target = WatchTarget(os.path.normpath(os.path.abspath(source_folder)))
        self._poll_interval = poll_interval
        self._log = log or logger
        self._handlers = {EVENT_ADD: [], EVENT_ERROR: []}  # type: dict[str, list[Callable[[Any], None]]]
        self._tracker = _SettleTracker(settle_seconds=poll_interval)
        self._handler = _NewFileHandler(
            self._tracker, self.target.directory_path, self._on_target_lost
        )
        self._observer: Any | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._target_lost = False

    def on(self, event: str, handler: Callable[[Any], None]) -> "FolderWatcher":
        """Register *handler* for ``"add"`` (FileEvent) or ``"error"`` (exception)."""
        if event not in self._handlers:
            raise ValueError(f"Unknown watcher event: {event!r}")
        self._handlers[event].append(handler)
        return self

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the source folder."""
        if self.is_running:
            self._log.warning("Already watching %s", self.target.directory_path)
            return
        root = self.target.directory_path
        if not os.path.isdir(root):
            self._log.error("Source folder does not exist: %s", root)
            raise FileNotFoundError(f"Source folder does not exist: {root}")
        if not os.access(root, os.R_OK | os.X_OK):
            self._log.error("Source folder is not readable: %s", root)
            raise PermissionError(f"Source folder is not readable: {root}")

        observer = PollingObserver(timeout=self._poll_interval)
        observer.schedule(self._handler, root, recursive=False)
        observer.start()
        self._observer = observer

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._poll, daemon=True, name="FolderWatcher"
        )
        self._thread.start()
        self._log.info(
            "Watching directory: %s (poll every %.1fs)", root, self._poll_interval
        )

    def stop(self) -> None:
        """Stop watching and release resources."""
        self._stop.set()
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        self._tracker.clear()
        self._log.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    @property
    def target_available(self) -> bool:
        """False while the watched directory is missing."""
        with self._state_lock:
            return not self._target_lost

    @property
    def pending_count(self) -> int:
        """Number of new files still being written."""
        return self._tracker.pending_count

    @property
    def pending_files(self) -> list[str]:
        return self._tracker.pending_files

    # ---- polling ----

    def _poll(self) -> None:
        while not self._stop.wait(timeout=self._poll_interval):
            if not self._check_target():
                continue
            for event in self._tracker.collect_settled():
                self._emit(EVENT_ADD, event)

    def _check_target(self) -> bool:
        """Return whether the directory is observable, re-attaching after an outage."""
        root = self.target.directory_path
        if not os.path.isdir(root):
            self._on_target_lost()
            return False
        with self._state_lock:
            if not self._target_lost:
                return True
            self._target_lost = False
        return self._reschedule()

    def _reschedule(self) -> bool:
        observer = self._observer
        if observer is None:
            return False
        root = self.target.directory_path
        observer.unschedule_all()
        try:
            observer.schedule(self._handler, root, recursive=False)
        except OSError as exc:
            # Already reported when the directory went away; try again next tick
            self._log.debug("Cannot re-attach to %s yet: %s", root, exc)
            with self._state_lock:
                self._target_lost = True
            return False
        self._log.info("Watched directory is available again: %s", root)
        return True

    def _on_target_lost(self) -> None:
        with self._state_lock:
            if self._target_lost:
                return
            self._target_lost = True
        self._tracker.clear()
        root = self.target.directory_path
        self._emit(
            EVENT_ERROR,
            FileNotFoundError(f"Watched directory is no longer available: {root}"),
        )

    def _emit(self, event: str, payload: Any) -> None:
        handlers = list(self._handlers[event])
        if event == EVENT_ERROR and not handlers:
            self._log.error("Watcher error: %s", payload)
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                self._log.exception("Error in %s handler for %s", event, payload)
