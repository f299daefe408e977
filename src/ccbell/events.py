"""Events, verdicts and outcomes for a single ccbell invocation."""

import time
from dataclasses import dataclass, field
from enum import Enum


class EventType(str, Enum):
    """Lifecycle events ccbell can be invoked for."""

    STOP = "stop"
    PERMISSION_PROMPT = "permission_prompt"
    IDLE_PROMPT = "idle_prompt"
    SUBAGENT = "subagent"


class SuppressReason(str, Enum):
    """Why the policy chain refused a notification."""

    DISABLED = "disabled"
    QUICK_DISABLE = "quick_disable"
    QUIET_HOURS = "quiet_hours"
    COOLDOWN = "cooldown"
    THROTTLED = "throttled"
    FILTERED = "filtered"


class OutcomeStatus(str, Enum):
    """Final state of an invocation, recorded in the audit trail."""

    PLAYED = "played"
    SUPPRESSED = "suppressed"
    FAILED = "failed"
    QUEUED = "queued"
    DROPPED = "dropped"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class Event:
    """One lifecycle occurrence, built fresh per invocation and never persisted."""

    type: EventType
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, str] = field(default_factory=dict)
    profile: str | None = None   # --profile override
    volume: float | None = None  # --volume override
    dry_run: bool = False


@dataclass(frozen=True)
class Verdict:
    """Proceed, or suppress with a reason."""

    reason: SuppressReason | None = None
    detail: str = ""

    @property
    def proceed(self) -> bool:
        return self.reason is None

    @classmethod
    def allow(cls) -> "Verdict":
        return cls()

    @classmethod
    def suppress(cls, reason: SuppressReason, detail: str = "") -> "Verdict":
        return cls(reason=reason, detail=detail)


PROCEED = Verdict.allow()


@dataclass
class Outcome:
    """What happened to one notification, for logging and the audit trail."""

    status: OutcomeStatus
    event_type: EventType
    timestamp: float
    reason: SuppressReason | None = None
    sound: str | None = None
    volume: float | None = None
    detail: str = ""

    def to_dict(self) -> dict:
        """Serialize for the state file's audit trail."""
        return {
            "status": self.status.value,
            "event": self.event_type.value,
            "at": self.timestamp,
            "reason": self.reason.value if self.reason else None,
            "sound": self.sound,
            "volume": self.volume,
            "detail": self.detail,
        }

    @classmethod
    def suppressed(cls, event: Event, verdict: Verdict) -> "Outcome":
        return cls(
            status=OutcomeStatus.SUPPRESSED,
            event_type=event.type,
            timestamp=event.timestamp,
            reason=verdict.reason,
            detail=verdict.detail,
        )
