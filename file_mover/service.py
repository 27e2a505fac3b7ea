"""
Headless runner for the File Mover Service.

Wires configuration, logging, the folder watcher and the mover together
and runs in the foreground until SIGINT/SIGTERM:

    python -m file_mover

Every new file in SRC is moved to DEST.  The exit code only reflects
startup failures; per-file outcomes are reported in the log.
"""

from __future__ import annotations

import gzip
import logging
import logging.handlers
import os
import shutil
import signal
import sys
import threading
from pathlib import Path

from file_mover import __app_name__, __version__
from file_mover.config import ConfigError, Settings, get_env_path, load_settings
from file_mover.mover import FileMover
from file_mover.watcher import EVENT_ADD, EVENT_ERROR, FileEvent, FolderWatcher

logger = logging.getLogger(__name__)

LOG_DIR_NAME = "logs"
LOG_FILE_NAME = "file-mover-service.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_RETENTION_DAYS = 14


# ======================================================================
# Logging
# ======================================================================

def _gzip_namer(name: str) -> str:
    return name + ".gz"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as sf, gzip.open(dest, "wb") as df:
        shutil.copyfileobj(sf, df)
    os.remove(source)


def _level_number(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def ensure_log_directory(log_dir: Path) -> Path:
    """Create *log_dir* if needed and return it."""
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_logging(log_dir: Path, level: str = "INFO") -> list[logging.Handler]:
    """Configure a daily rotating log file and a stderr handler on the root logger.

    Returns the handlers that were added so the caller can detach them.
    """
    root_logger = logging.getLogger()
    fmt = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Rotated at midnight, old files gzipped, two weeks kept
    fh = logging.handlers.TimedRotatingFileHandler(
        str(log_dir / LOG_FILE_NAME),
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    fh.namer = _gzip_namer
    fh.rotator = _gzip_rotator
    fh.setFormatter(fmt)
    root_logger.setLevel(_level_number(level))
    root_logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    return [fh, sh]


def _teardown_logging(handlers: list[logging.Handler]) -> None:
    root_logger = logging.getLogger()
    for handler in handlers:
        root_logger.removeHandler(handler)
        handler.close()


# ======================================================================
# Service
# ======================================================================

class MoverService:
    """Connects a FolderWatcher to a FileMover.

    Each detected file is dispatched to the mover without waiting for
    earlier moves; the destination is ``<destination>/<file name>``.
    """

    def __init__(
        self,
        source_folder: Path,
        destination_folder: Path,
        poll_interval: float = 1.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        log: logging.Logger | None = None,
    ):
        self._log = log or logger
        self.destination_folder = Path(destination_folder)
        self.mover = FileMover(max_retries=max_retries, retry_delay=retry_delay, log=log)
        self.watcher = FolderWatcher(str(source_folder), poll_interval=poll_interval, log=log)
        self.watcher.on(EVENT_ADD, self._on_file_added)
        self.watcher.on(EVENT_ERROR, self._on_watch_error)

    @classmethod
    def from_settings(cls, settings: Settings, app_dir: Path) -> "MoverService":
        return cls(
            source_folder=settings.source_dir(app_dir),
            destination_folder=settings.destination_dir(app_dir),
            poll_interval=settings.poll_interval,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )

    def start(self) -> None:
        """Start watching. Raises if the source folder is unusable."""
        self.watcher.start()

    def stop(self) -> None:
        self.watcher.stop()

    def _on_file_added(self, event: FileEvent) -> None:
        self._log.info("Detected new file: %s", event.name)
        self.mover.dispatch(event.absolute_path, self.destination_folder / event.name)

    def _on_watch_error(self, exc: BaseException) -> None:
        self._log.error("Watcher error: %s", exc)


def run(app_dir: Path | None = None, stop_event: threading.Event | None = None) -> int:
    """Run the service until stopped. Return the process exit code.

    When *stop_event* is None, SIGINT/SIGTERM handlers are installed and
    the call blocks until one arrives.
    """
    app_dir = Path(app_dir) if app_dir else Path(os.getcwd())

    try:
        log_dir = ensure_log_directory(app_dir / LOG_DIR_NAME)
    except OSError as exc:
        print(f"Error creating log directory: {exc}", file=sys.stderr)
        return 1

    try:
        handlers = setup_logging(log_dir)
    except OSError as exc:
        print(f"Error creating log file: {exc}", file=sys.stderr)
        return 1

    try:
        logger.info("%s %s starting.", __app_name__, __version__)
        logger.info("Log directory is set at: %s", log_dir)

        try:
            settings = load_settings(get_env_path(app_dir))
        except ConfigError as exc:
            logger.error("Service cannot start: %s", exc)
            return 1
        logging.getLogger().setLevel(_level_number(settings.log_level))

        service = MoverService.from_settings(settings, app_dir)
        try:
            service.start()
        except OSError:
            # Already reported by the watcher
            return 1

        if stop_event is None:
            stop_event = threading.Event()

            def _handler(sig, frame):
                stop_event.set()

            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            print(f"{__app_name__} running (press Ctrl-C to stop)…")

        # Timed waits keep the main thread responsive to signals
        while not stop_event.wait(timeout=1):
            pass
        service.stop()
        logger.info("%s stopped.", __app_name__)
        return 0
    finally:
        _teardown_logging(handlers)
