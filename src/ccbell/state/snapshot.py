"""In-memory form of the persisted ccbell state file.

Everything ccbell remembers between invocations lives here: cooldown
timestamps, the throttle window, the quick-disable record, the profile
selected at runtime, and the stacked-dispatch queue. Each section is parsed
independently so one garbled section never discards the others.
"""

import copy
import logging
from dataclasses import dataclass, field

from ccbell.events import EventType

logger = logging.getLogger(__name__)

STATE_VERSION = 1
MAX_OUTCOMES = 50

# Raised when a section holds the wrong JSON type (e.g. a number instead of an object)
_MALFORMED = (AttributeError, KeyError, TypeError, ValueError)


@dataclass
class Reservation:
    """A throttle slot taken by an invocation that passed the policy chain.

    ``committed`` flips once playback was attempted; uncommitted slots still
    count toward the window so that concurrent invocations cannot overshoot.
    ``previous_cooldown`` is what the event's cooldown record held before the
    tentative update, for rollback.
    """

    token: str
    event: str
    timestamp: float
    committed: bool = False
    previous_cooldown: float | None = None

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "event": self.event,
            "at": self.timestamp,
            "committed": self.committed,
            "previous_cooldown": self.previous_cooldown,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reservation":
        return cls(
            token=str(data["token"]),
            event=str(data["event"]),
            timestamp=float(data["at"]),
            committed=bool(data.get("committed", False)),
            previous_cooldown=(
                float(data["previous_cooldown"])
                if data.get("previous_cooldown") is not None else None
            ),
        )


@dataclass
class QuickDisable:
    """Temporary mute until ``expiry``; ``restore_profile`` is re-activated afterwards."""

    expiry: float
    restore_profile: str | None = None

    def is_active(self, now: float) -> bool:
        return now < self.expiry

    def to_dict(self) -> dict:
        return {"expiry": self.expiry, "restore_profile": self.restore_profile}

    @classmethod
    def from_dict(cls, data: dict) -> "QuickDisable":
        restore = data.get("restore_profile")
        return cls(expiry=float(data["expiry"]), restore_profile=str(restore) if restore else None)


@dataclass
class QueueEntry:
    """One pending sound in the stacked-dispatch queue."""

    event: str
    sound: str
    volume: float
    priority: int
    enqueued_at: float
    token: str

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "sound": self.sound,
            "volume": self.volume,
            "priority": self.priority,
            "enqueued_at": self.enqueued_at,
            "token": self.token,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueueEntry":
        return cls(
            event=EventType(data["event"]).value,
            sound=str(data["sound"]),
            volume=float(data["volume"]),
            priority=int(data.get("priority", 0)),
            enqueued_at=float(data["enqueued_at"]),
            token=str(data["token"]),
        )


@dataclass
class Drainer:
    """The invocation currently playing the stacked queue."""

    token: str
    pid: int
    heartbeat: float

    def is_alive(self, now: float, stale_after: float) -> bool:
        return now - self.heartbeat < stale_after


@dataclass
class Snapshot:
    """The full cross-invocation state."""

    cooldowns: dict[str, float] = field(default_factory=dict)
    throttle: list[Reservation] = field(default_factory=list)
    quick_disable: QuickDisable | None = None
    active_profile: str | None = None
    queue: list[QueueEntry] = field(default_factory=list)
    drainer: Drainer | None = None
    recent_outcomes: list[dict] = field(default_factory=list)

    def copy(self) -> "Snapshot":
        return copy.deepcopy(self)

    # ── Throttle window ────────────────────────────────────────────

    def window_count(self, now: float, window: float) -> int:
        """Number of reservations inside the trailing window ending at ``now``.

        Reservations stamped later than ``now`` (a concurrent invocation with
        a newer clock reading) count too.
        """
        return sum(1 for r in self.throttle if now - r.timestamp < window)

    def prune_throttle(self, now: float, window: float) -> None:
        """Forget reservations that fell out of the window."""
        self.throttle = [r for r in self.throttle if now - r.timestamp < window]

    def find_reservation(self, token: str) -> Reservation | None:
        for r in self.throttle:
            if r.token == token:
                return r
        return None

    # ── Quick-disable ──────────────────────────────────────────────

    def active_quick_disable(self, now: float) -> QuickDisable | None:
        """The quick-disable record, or None once it has expired."""
        if self.quick_disable and self.quick_disable.is_active(now):
            return self.quick_disable
        return None

    def state_profile(self, now: float) -> str | None:
        """Profile selected at runtime, honoring an expired quick-disable's restore."""
        qd = self.quick_disable
        if qd and not qd.is_active(now) and qd.restore_profile:
            return qd.restore_profile
        return self.active_profile

    # ── Audit trail ────────────────────────────────────────────────

    def record_outcome(self, outcome: dict) -> None:
        self.recent_outcomes.append(outcome)
        del self.recent_outcomes[:-MAX_OUTCOMES]

    # ── Serialization ──────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "version": STATE_VERSION,
            "cooldowns": dict(self.cooldowns),
            "throttle": [r.to_dict() for r in self.throttle],
            "quick_disable": self.quick_disable.to_dict() if self.quick_disable else None,
            "active_profile": self.active_profile,
            "queue": [e.to_dict() for e in self.queue],
            "drainer": (
                {
                    "token": self.drainer.token,
                    "pid": self.drainer.pid,
                    "heartbeat": self.drainer.heartbeat,
                }
                if self.drainer else None
            ),
            "recent_outcomes": list(self.recent_outcomes),
        }

    @classmethod
    def from_dict(cls, data: object) -> "Snapshot":
        """Build a snapshot, replacing any malformed section with its empty value."""
        snap = cls()
        if not isinstance(data, dict):
            logger.warning("State file root is not an object, starting empty")
            return snap

        try:
            snap.cooldowns = {
                str(k): float(v) for k, v in (data.get("cooldowns") or {}).items()
            }
        except _MALFORMED:
            logger.warning("Discarding malformed cooldown records")

        try:
            snap.throttle = [Reservation.from_dict(r) for r in data.get("throttle") or []]
        except _MALFORMED:
            logger.warning("Discarding malformed throttle window")

        try:
            qd = data.get("quick_disable")
            snap.quick_disable = QuickDisable.from_dict(qd) if qd else None
        except _MALFORMED:
            logger.warning("Discarding malformed quick-disable record")

        profile = data.get("active_profile")
        snap.active_profile = profile if isinstance(profile, str) and profile else None

        try:
            snap.queue = [QueueEntry.from_dict(e) for e in data.get("queue") or []]
        except _MALFORMED:
            logger.warning("Discarding malformed dispatch queue")

        try:
            d = data.get("drainer")
            snap.drainer = Drainer(
                token=str(d["token"]), pid=int(d["pid"]), heartbeat=float(d["heartbeat"]),
            ) if d else None
        except _MALFORMED:
            logger.warning("Discarding malformed drainer record")

        outcomes = data.get("recent_outcomes")
        if isinstance(outcomes, list):
            snap.recent_outcomes = [o for o in outcomes if isinstance(o, dict)][-MAX_OUTCOMES:]

        return snap
