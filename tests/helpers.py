"""Test helpers"""
import time


def wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll *predicate* until it returns truthy or *timeout* expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


# Settings the service reads from the environment
ENV_NAMES = ["SRC", "DEST", "FILE_NAME", "LOG_LEVEL", "POLL_INTERVAL", "MAX_RETRIES", "RETRY_DELAY"]
