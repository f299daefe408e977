"""Cross-process exclusive lock on a sibling lock file, with a bounded wait."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows fallback
    fcntl = None

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.01  # seconds


class LockTimeout(Exception):
    """The lock was not acquired before the deadline."""


@contextmanager
def file_lock(lock_path: Path, timeout: float) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``lock_path``.

    The lock is polled non-blockingly so a stuck holder can never hang the
    caller past ``timeout``. Without ``fcntl`` only the atomic rename of the
    data file protects writers.

    Args:
        lock_path: Lock file, created if missing.
        timeout: Maximum seconds to wait.

    Raises:
        LockTimeout: If another process held the lock for the whole wait.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+") as handle:
        if fcntl is None:
            yield
            return

        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise LockTimeout(f"Timed out after {timeout:.2f}s waiting for {lock_path}")
                time.sleep(_POLL_INTERVAL)

        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
