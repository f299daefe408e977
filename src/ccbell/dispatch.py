"""Dispatch stage — play now, or queue for sequential playback.

Immediate mode spawns a detached player and returns. Stacked mode appends
to a persisted queue; the invocation that finds no live drainer becomes the
drainer and plays queued sounds one by one, so notifications from
overlapping invocations never talk over each other.
"""

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from ccbell.audio.player import AudioPlayer
from ccbell.audio.sounds import sound_path
from ccbell.config import BellConfig
from ccbell.errors import PlaybackError, StatePersistenceError
from ccbell.events import Event, EventType, Outcome, OutcomeStatus
from ccbell.resolve import Resolution
from ccbell.state.bookkeeping import commit, rollback
from ccbell.state.snapshot import Drainer, QueueEntry, Snapshot
from ccbell.state.store import StateStore

logger = logging.getLogger(__name__)


class Dispatcher:
    """Hands resolved notifications to the audio player and records outcomes."""

    def __init__(
        self,
        config: BellConfig,
        store: StateStore,
        player: AudioPlayer,
        sounds_dir: Path,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            config: User configuration (stacking settings).
            store: Shared state store.
            player: Audio player boundary.
            sounds_dir: Cache directory for bundled tones.
            clock: Wall clock, used for drainer heartbeats and outcome times.
            sleep: Pause between queued sounds.
        """
        self._config = config
        self._store = store
        self._player = player
        self._sounds_dir = sounds_dir
        self._clock = clock
        self._sleep = sleep

    def dispatch(self, resolution: Resolution, event: Event, token: str) -> Outcome:
        """Play or enqueue a notification that passed the policy chain.

        Args:
            resolution: Sound, volume and priority to play.
            event: The invocation's event.
            token: The reservation taken during the decision.

        Returns:
            The outcome for this invocation.

        Raises:
            StatePersistenceError: In stacked mode, if the queue could not be persisted.
        """
        if self._config.stacking.enabled:
            return self._dispatch_stacked(resolution, event, token)
        return self._dispatch_immediate(resolution, event, token)

    # ── Immediate ──────────────────────────────────────────────────

    def _dispatch_immediate(self, resolution: Resolution, event: Event, token: str) -> Outcome:
        outcome = self._play(event.type, resolution.sound, resolution.volume, wait=False)

        def record(snap: Snapshot) -> None:
            commit(snap, event.type.value, token, event.timestamp)
            snap.record_outcome(outcome.to_dict())

        result = self._store.compare_and_swap(record)
        if not result.committed:
            logger.warning("Outcome for %s not persisted", event.type.value)
        return outcome

    def _play(self, event_type: EventType, sound: str, volume: float, wait: bool) -> Outcome:
        """Attempt playback; failures become a FAILED outcome, never an exception."""
        status = OutcomeStatus.PLAYED
        detail = ""
        try:
            path = sound_path(sound, self._sounds_dir)
            self._player.play(path, volume, wait=wait)
        except PlaybackError as exc:
            status = OutcomeStatus.FAILED
            detail = str(exc)
            logger.warning("Playback failed for %s: %s", event_type.value, exc)

        return Outcome(
            status=status,
            event_type=event_type,
            timestamp=self._clock(),
            sound=sound,
            volume=volume,
            detail=detail,
        )

    # ── Stacked ────────────────────────────────────────────────────

    def _dispatch_stacked(self, resolution: Resolution, event: Event, token: str) -> Outcome:
        stacking = self._config.stacking
        entry = QueueEntry(
            event=event.type.value,
            sound=resolution.sound,
            volume=resolution.volume,
            priority=resolution.priority,
            enqueued_at=self._clock(),
            token=token,
        )
        rejected = False
        became_drainer = False

        def enqueue(snap: Snapshot) -> None:
            nonlocal rejected, became_drainer
            rejected = False
            became_drainer = False
            now = self._clock()
            self._expire_entries(snap, now)

            if len(snap.queue) >= stacking.max_depth:
                if stacking.overflow == "reject":
                    rejected = True
                    rollback(snap, token)
                    snap.record_outcome(self._queue_outcome(
                        OutcomeStatus.DROPPED, entry, now, "queue full",
                    ).to_dict())
                    return
                while len(snap.queue) >= stacking.max_depth:
                    oldest = min(snap.queue, key=lambda e: e.enqueued_at)
                    snap.queue.remove(oldest)
                    snap.record_outcome(self._queue_outcome(
                        OutcomeStatus.DROPPED, oldest, now, "evicted from full queue",
                    ).to_dict())

            _insert_by_priority(snap.queue, entry)
            commit(snap, event.type.value, token, event.timestamp)
            snap.record_outcome(self._queue_outcome(OutcomeStatus.QUEUED, entry, now).to_dict())

            if snap.drainer is None or not snap.drainer.is_alive(now, stacking.stale_after):
                snap.drainer = Drainer(token=token, pid=os.getpid(), heartbeat=now)
                became_drainer = True

        result = self._store.compare_and_swap(enqueue)
        if not result.committed:
            raise StatePersistenceError("Could not persist the notification queue")

        if rejected:
            logger.info("Queue full, rejected %s", event.type.value)
            return self._queue_outcome(OutcomeStatus.DROPPED, entry, self._clock(), "queue full")

        queued = self._queue_outcome(OutcomeStatus.QUEUED, entry, self._clock())
        if not became_drainer:
            logger.debug("Queued %s behind an active drainer", event.type.value)
            return queued

        own = self.drain(token)
        return own or queued

    def drain(self, token: str) -> Outcome | None:
        """Play queued entries until the queue is empty or the role is taken over.

        Args:
            token: Drainer identity recorded in the state.

        Returns:
            The outcome of the entry enqueued under ``token``, if this
            drainer played it.

        Raises:
            StatePersistenceError: If a queue pop could not be persisted.
        """
        stacking = self._config.stacking
        last: Outcome | None = None
        own: Outcome | None = None
        first = True

        while True:
            entry: QueueEntry | None = None
            previous = last

            def pop(snap: Snapshot) -> None:
                nonlocal entry
                entry = None
                if previous is not None:
                    snap.record_outcome(previous.to_dict())
                if snap.drainer is None or snap.drainer.token != token:
                    return
                self._expire_entries(snap, self._clock())
                if not snap.queue:
                    snap.drainer = None
                    return
                entry = snap.queue.pop(0)
                snap.drainer.heartbeat = self._clock()

            result = self._store.compare_and_swap(pop)
            if not result.committed:
                raise StatePersistenceError("Could not persist the notification queue")
            if entry is None:
                break

            if not first and stacking.delay > 0:
                self._sleep(stacking.delay)
            first = False

            last = self._play(EventType(entry.event), entry.sound, entry.volume, wait=True)
            if entry.token == token:
                own = last

        return own

    def _expire_entries(self, snap: Snapshot, now: float) -> None:
        """Drop queued sounds older than ``stacking.max_age``, recording each as dropped.

        A drainer killed mid-queue leaves its backlog behind; a later
        takeover must not replay it long after the events happened.
        """
        max_age = self._config.stacking.max_age
        expired = [e for e in snap.queue if now - e.enqueued_at > max_age]
        for entry in expired:
            snap.queue.remove(entry)
            snap.record_outcome(self._queue_outcome(
                OutcomeStatus.DROPPED, entry, now, "expired in queue",
            ).to_dict())
        if expired:
            logger.info("Dropped %d expired queued sound(s)", len(expired))

    @staticmethod
    def _queue_outcome(
        status: OutcomeStatus, entry: QueueEntry, now: float, detail: str = "",
    ) -> Outcome:
        return Outcome(
            status=status,
            event_type=EventType(entry.event),
            timestamp=now,
            sound=entry.sound,
            volume=entry.volume,
            detail=detail,
        )


def _insert_by_priority(queue: list[QueueEntry], entry: QueueEntry) -> None:
    """Insert after every entry of equal or higher priority (FIFO within a priority)."""
    for i, existing in enumerate(queue):
        if existing.priority < entry.priority:
            queue.insert(i, entry)
            return
    queue.append(entry)
