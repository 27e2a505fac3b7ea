"""
File move engine for the File Mover Service.

Moves a single file from the watched source folder to the destination,
overwriting whatever is already there.  A move that fails because the
file is still held open by another process is retried after a fixed
delay, up to a bounded number of retries; any other failure abandons
that file only.
Dispatched moves run in background threads so detection never waits
on them.
"""

from __future__ import annotations

import enum
import errno
import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0

# Windows reports a file held open by another process as a sharing
# violation rather than EBUSY.
_ERROR_SHARING_VIOLATION = 32


def is_busy_error(exc: BaseException) -> bool:
    """Return True if *exc* means the file is locked by another writer."""
    if not isinstance(exc, OSError):
        return False
    if exc.errno == errno.EBUSY:
        return True
    return getattr(exc, "winerror", None) == _ERROR_SHARING_VIOLATION


def _relocate(source: Path, destination: Path) -> None:
    """Move *source* onto *destination*, replacing any existing file."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(source, destination)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        # Different filesystem: copy, then drop the original.
        shutil.copy2(source, destination)
        os.unlink(source)


class MoveState(enum.Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class MoveAttempt:
    """Mutable state of one move invocation."""
    source_path: Path
    dest_path: Path
    retries_remaining: int


@dataclass
class MoveResult:
    """Terminal outcome of a single move."""
    source: str
    destination: str
    state: MoveState = MoveState.PENDING
    attempts: int = 0
    reason: str = ""

    @property
    def success(self) -> bool:
        return self.state is MoveState.SUCCEEDED


class FileMover:
    """
    Moves files with overwrite, retrying while the file is busy.

    Parameters
    ----------
    max_retries : int
        Default number of retries after a busy failure (0 = single attempt).
    retry_delay : float
        Seconds to wait between attempts.  Constant, not exponential.
    log : logging.Logger, optional
        Where move outcomes are reported.  Defaults to this module's logger.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        log: logging.Logger | None = None,
    ):
        self.max_retries = max(0, max_retries)
        self.retry_delay = max(0.0, retry_delay)
        self._log = log or logger
        self._active_moves: int = 0
        self._lock = threading.Lock()

    @property
    def active_moves(self) -> int:
        with self._lock:
            return self._active_moves

    def dispatch(self, source_path: str | Path, dest_path: str | Path) -> threading.Thread:
        """Start a background move of *source_path* and return without waiting."""
        thread = threading.Thread(
            target=self._run,
            args=(Path(source_path), Path(dest_path)),
            daemon=True,
            name=f"Move-{Path(source_path).name}",
        )
        with self._lock:
            self._active_moves += 1
        thread.start()
        return thread

    def _run(self, source_path: Path, dest_path: Path) -> None:
        try:
            self.move(source_path, dest_path)
        except Exception:
            self._log.exception("Unexpected error moving %s", source_path)
        finally:
            with self._lock:
                self._active_moves -= 1

    def move(
        self,
        source_path: str | Path,
        dest_path: str | Path,
        max_retries: int | None = None,
    ) -> MoveResult:
        """
        Move *source_path* to *dest_path*, overwriting the destination.

        Busy failures are retried up to *max_retries* times (defaults to the
        instance setting); every other failure is terminal on first sight.
        """
        if max_retries is None:
            max_retries = self.max_retries
        attempt = MoveAttempt(
            source_path=Path(source_path),
            dest_path=Path(dest_path),
            retries_remaining=max(0, max_retries),
        )
        result = MoveResult(source=str(attempt.source_path), destination=str(attempt.dest_path))

        while True:
            result.state = MoveState.ATTEMPTING
            result.attempts += 1
            self._log.debug(
                "Attempting to move file from %s to %s (attempt %d)",
                attempt.source_path, attempt.dest_path, result.attempts,
            )
            try:
                _relocate(attempt.source_path, attempt.dest_path)
            except OSError as exc:
                if is_busy_error(exc) and attempt.retries_remaining > 0:
                    result.state = MoveState.RETRYING
                    self._log.warning(
                        "File is in use: %s. Retrying in %.1fs... (%d retries left)",
                        attempt.source_path, self.retry_delay, attempt.retries_remaining,
                    )
                    time.sleep(self.retry_delay)
                    attempt.retries_remaining -= 1
                    continue

                result.state = MoveState.FAILED
                result.reason = exc.strerror or str(exc)
                if is_busy_error(exc):
                    self._log.error(
                        "Giving up on %s after %d attempts, file still in use: %s",
                        attempt.source_path, result.attempts, result.reason,
                    )
                else:
                    self._log.error(
                        "Error moving file %s: %s", attempt.source_path, result.reason,
                    )
                return result

            result.state = MoveState.SUCCEEDED
            self._log.info(
                "File moved successfully from %s to %s",
                attempt.source_path, attempt.dest_path,
            )
            return result
