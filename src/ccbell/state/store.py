"""Persisted ccbell state with compare-and-swap updates.

Every ccbell invocation is its own short-lived process, so the state file is
the only shared memory. All read-then-write sequences go through
``StateStore.compare_and_swap``: lock, read, mutate, write temp file,
``os.replace``, unlock. Any failure along the way fails open: the
invocation carries on with the state it could read, and nothing is written.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ccbell.state.lock import LockTimeout, file_lock
from ccbell.state.snapshot import Snapshot
from ccbell.utils.atomic import atomic_write_json

logger = logging.getLogger(__name__)

Mutation = Callable[[Snapshot], None]


@dataclass
class CasResult:
    """Snapshot after a compare-and-swap; ``committed`` is False when it failed open."""

    snapshot: Snapshot
    committed: bool


class StateStore:
    """File-backed state shared by all ccbell invocations."""

    def __init__(
        self,
        path: Path,
        lock_timeout: float = 0.3,
        retries: int = 3,
    ) -> None:
        """Initialize the store.

        Args:
            path: State JSON file. A sibling ``<name>.lock`` file is used for locking.
            lock_timeout: Seconds to wait for the lock before failing open.
            retries: Extra compare-and-swap attempts after a write failure.
        """
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock_timeout = lock_timeout
        self._retries = max(0, retries)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Snapshot:
        """Read the current state.

        Returns:
            The parsed snapshot, or an empty one if the file is missing,
            unreadable, or corrupt.
        """
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return Snapshot()
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Corrupt state file %s (%s), starting empty", self._path, exc)
            return Snapshot()
        return Snapshot.from_dict(data)

    def compare_and_swap(self, mutation: Mutation) -> CasResult:
        """Atomically apply ``mutation`` to the on-disk state.

        ``mutation`` receives a private copy of the freshest state and edits it
        in place. It may run more than once (once per attempt), always on a
        fresh copy, so it must not keep side effects between calls.

        Args:
            mutation: In-place edit of a Snapshot.

        Returns:
            The resulting snapshot. ``committed`` is False when the lock timed
            out or every write attempt failed; the snapshot is then the
            mutation applied to an unlocked read, and nothing was persisted.
        """
        attempts = 1 + self._retries
        for attempt in range(1, attempts + 1):
            try:
                with file_lock(self._lock_path, self._lock_timeout):
                    updated = self.load()
                    mutation(updated)
                    atomic_write_json(self._path, updated.to_dict())
                return CasResult(snapshot=updated, committed=True)
            except LockTimeout as exc:
                logger.warning("State lock unavailable, failing open: %s", exc)
                break
            except OSError as exc:
                logger.warning(
                    "State write failed (attempt %d/%d): %s", attempt, attempts, exc,
                )

        stale = self.load()
        mutation(stale)
        return CasResult(snapshot=stale, committed=False)
