"""Notification pipeline — decide, resolve, dispatch, record.

One ``run`` per process. The decision happens inside a single
compare-and-swap so the policy chain always sees the state it reserves
against: two racing invocations of the same event cannot both pass the
cooldown, and a throttle window cannot be overfilled.
"""

import logging
import time
import uuid
from pathlib import Path

from ccbell.audio.player import AudioPlayer
from ccbell.config import BellConfig, BellSettings
from ccbell.dispatch import Dispatcher
from ccbell.events import PROCEED, Event, Outcome, OutcomeStatus, Verdict
from ccbell.policy.chain import evaluate_chain, run_chain
from ccbell.resolve import resolve
from ccbell.state.bookkeeping import reserve
from ccbell.state.snapshot import QuickDisable, Snapshot
from ccbell.state.store import StateStore

logger = logging.getLogger(__name__)


def expire_quick_disable(snapshot: Snapshot, now: float) -> bool:
    """Drop an expired quick-disable record and restore its stashed profile.

    Returns:
        True if a record was removed.
    """
    record = snapshot.quick_disable
    if record is None or record.is_active(now):
        return False
    snapshot.active_profile = record.restore_profile
    snapshot.quick_disable = None
    logger.info("Quick-disable expired, restored profile %s", record.restore_profile or "(config)")
    return True


class NotificationPipeline:
    """Runs the gating and dispatch pipeline for one event."""

    def __init__(
        self,
        config: BellConfig,
        store: StateStore,
        dispatcher: Dispatcher,
    ) -> None:
        self._config = config
        self._store = store
        self._dispatcher = dispatcher

    @classmethod
    def from_settings(cls, config: BellConfig, settings: BellSettings) -> "NotificationPipeline":
        """Build a pipeline wired to the real state file and audio player."""
        store = StateStore(
            settings.state_path,
            lock_timeout=settings.lock_timeout,
            retries=settings.cas_retries,
        )
        player = AudioPlayer(preferred=settings.player, timeout=settings.playback_timeout)
        dispatcher = Dispatcher(config, store, player, Path(settings.sounds_dir))
        return cls(config, store, dispatcher)

    @property
    def store(self) -> StateStore:
        return self._store

    def run(self, event: Event) -> Outcome:
        """Decide and, if allowed, play a notification for ``event``.

        Args:
            event: The invocation's event.

        Returns:
            What happened. Suppression is a normal outcome, not an error.

        Raises:
            StatePersistenceError: Stacked mode only, when the queue cannot be persisted.
        """
        if event.dry_run:
            return self.dry_run(event)

        token = uuid.uuid4().hex
        verdict: Verdict = PROCEED

        def decide(snap: Snapshot) -> None:
            nonlocal verdict
            expire_quick_disable(snap, event.timestamp)
            verdict = run_chain(self._config, snap, event)
            if verdict.proceed:
                reserve(
                    snap, event.type.value, token, event.timestamp, self._config.throttle.window,
                )
            else:
                snap.record_outcome(Outcome.suppressed(event, verdict).to_dict())

        result = self._store.compare_and_swap(decide)
        if not result.committed:
            logger.warning("Decision for %s made on unpersisted state", event.type.value)

        if not verdict.proceed:
            logger.info(
                "Suppressed %s: %s (%s)", event.type.value, verdict.reason.value, verdict.detail,
            )
            return Outcome.suppressed(event, verdict)

        resolution = resolve(self._config, event, result.snapshot.active_profile)
        logger.debug(
            "Resolved %s -> %s @ %.2f (profile %s)",
            event.type.value, resolution.sound, resolution.volume, resolution.profile,
        )
        outcome = self._dispatcher.dispatch(resolution, event, token)
        logger.info("%s %s: %s %s", outcome.status.value, event.type.value, outcome.sound, outcome.detail)
        return outcome

    def dry_run(self, event: Event) -> Outcome:
        """Evaluate without playing or writing state.

        Returns:
            A suppressed outcome, or a skipped outcome carrying the sound and
            volume that would have played.
        """
        snap = self._store.load()
        expire_quick_disable(snap, event.timestamp)
        verdict = run_chain(self._config, snap, event)
        if not verdict.proceed:
            return Outcome.suppressed(event, verdict)

        resolution = resolve(self._config, event, snap.active_profile)
        return Outcome(
            status=OutcomeStatus.SKIPPED,
            event_type=event.type,
            timestamp=event.timestamp,
            sound=resolution.sound,
            volume=resolution.volume,
            detail="dry run",
        )

    def explain(self, event: Event) -> list[tuple[str, Verdict]]:
        """Every policy's verdict for ``event`` against the current state."""
        snap = self._store.load()
        expire_quick_disable(snap, event.timestamp)
        return evaluate_chain(self._config, snap, event)

    # ── Quick-disable and profiles ─────────────────────────────────

    def quick_disable(self, duration: float, now: float | None = None) -> QuickDisable:
        """Mute all notifications for ``duration`` seconds.

        The profile in effect is stashed and restored once the mute expires.
        Re-issuing while muted extends the expiry but keeps the original stash.
        """
        now = time.time() if now is None else now
        record = QuickDisable(expiry=now + duration)

        def mutate(snap: Snapshot) -> None:
            expire_quick_disable(snap, now)
            if snap.quick_disable is not None:
                record.restore_profile = snap.quick_disable.restore_profile
            else:
                record.restore_profile = snap.active_profile
            snap.quick_disable = QuickDisable(record.expiry, record.restore_profile)

        self._store.compare_and_swap(mutate)
        logger.info("Quick-disabled for %.0fs", duration)
        return record

    def resume(self, now: float | None = None) -> bool:
        """End a quick-disable early and restore its profile.

        Returns:
            True if a quick-disable was active.
        """
        now = time.time() if now is None else now
        was_active = False

        def mutate(snap: Snapshot) -> None:
            nonlocal was_active
            was_active = snap.active_quick_disable(now) is not None
            if snap.quick_disable is not None:
                snap.active_profile = snap.quick_disable.restore_profile
                snap.quick_disable = None

        self._store.compare_and_swap(mutate)
        return was_active

    def use_profile(self, name: str | None) -> None:
        """Select a profile at runtime (None returns to the configured one).

        While quick-disabled, the choice becomes the profile restored on expiry.
        """
        if name and name not in self._config.profiles and name != self._config.active_profile:
            logger.warning("Profile %r is not defined in the config", name)

        def mutate(snap: Snapshot) -> None:
            if snap.quick_disable is not None:
                snap.quick_disable.restore_profile = name
            else:
                snap.active_profile = name

        self._store.compare_and_swap(mutate)

    def status(self, now: float | None = None) -> dict:
        """Summarize the persisted state for display."""
        now = time.time() if now is None else now
        snap = self._store.load()
        quick = snap.active_quick_disable(now)
        window = self._config.throttle.window
        return {
            "enabled": self._config.enabled,
            "profile": snap.state_profile(now) or self._config.active_profile,
            "quick_disable_remaining": (quick.expiry - now) if quick else 0.0,
            "cooldowns": {
                event: now - last for event, last in sorted(snap.cooldowns.items())
            },
            "throttle": {
                "count": snap.window_count(now, window),
                "max": self._config.throttle.max,
                "window": window,
            },
            "queue_depth": len(snap.queue),
            "recent_outcomes": snap.recent_outcomes[-10:],
        }
