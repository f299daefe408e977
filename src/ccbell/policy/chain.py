"""Policy chain — ordered gates deciding whether a notification proceeds.

Each policy is a pure function ``(config, snapshot, event) -> Verdict``.
Order matters: cheap static checks run first, and the first suppression
short-circuits the rest.
"""

from collections.abc import Callable, Sequence
from datetime import datetime

from ccbell.config import BellConfig, EventConfig
from ccbell.events import PROCEED, Event, SuppressReason, Verdict
from ccbell.policy.filters import first_failing_rule
from ccbell.policy.quiet_hours import is_quiet
from ccbell.resolve import select_profile
from ccbell.state.snapshot import Snapshot

Policy = Callable[[BellConfig, Snapshot, Event], Verdict]


def _event_config(config: BellConfig, snapshot: Snapshot, event: Event) -> EventConfig:
    profile = select_profile(config, event, snapshot.state_profile(event.timestamp))
    return config.event_config(event.type, profile)


def check_enabled(config: BellConfig, snapshot: Snapshot, event: Event) -> Verdict:
    """Global switch, then the per-event switch."""
    if not config.enabled:
        return Verdict.suppress(SuppressReason.DISABLED, "notifications disabled")
    if _event_config(config, snapshot, event).enabled is False:
        return Verdict.suppress(SuppressReason.DISABLED, f"{event.type.value} disabled")
    return PROCEED


def check_quick_disable(config: BellConfig, snapshot: Snapshot, event: Event) -> Verdict:
    """Suppress while a quick-disable is running; expired records count as absent."""
    record = snapshot.active_quick_disable(event.timestamp)
    if record is None:
        return PROCEED
    remaining = record.expiry - event.timestamp
    return Verdict.suppress(SuppressReason.QUICK_DISABLE, f"{remaining:.0f}s remaining")


def check_quiet_hours(config: BellConfig, snapshot: Snapshot, event: Event) -> Verdict:
    when = datetime.fromtimestamp(event.timestamp)
    if is_quiet(config.quiet_hours, when):
        return Verdict.suppress(SuppressReason.QUIET_HOURS, when.strftime("%H:%M"))
    return PROCEED


def check_cooldown(config: BellConfig, snapshot: Snapshot, event: Event) -> Verdict:
    """Suppress repeats of the same event type inside its cooldown.

    No record means the event never played, which never suppresses.
    """
    cooldown = _event_config(config, snapshot, event).cooldown or 0
    last = snapshot.cooldowns.get(event.type.value)
    if cooldown <= 0 or last is None:
        return PROCEED
    elapsed = event.timestamp - last
    if elapsed < cooldown:
        return Verdict.suppress(
            SuppressReason.COOLDOWN, f"{cooldown - elapsed:.0f}s remaining",
        )
    return PROCEED


def check_throttle(config: BellConfig, snapshot: Snapshot, event: Event) -> Verdict:
    """Suppress once the trailing window already holds ``max`` notifications."""
    limit = config.throttle.max
    if limit <= 0:
        return PROCEED
    count = snapshot.window_count(event.timestamp, config.throttle.window)
    if count >= limit:
        return Verdict.suppress(
            SuppressReason.THROTTLED, f"{count}/{limit} in {config.throttle.window:.0f}s",
        )
    return PROCEED


def check_event_filter(config: BellConfig, snapshot: Snapshot, event: Event) -> Verdict:
    rules = _event_config(config, snapshot, event).filters or []
    failing = first_failing_rule(rules, event.metadata)
    if failing is not None:
        return Verdict.suppress(SuppressReason.FILTERED, f"filter on {failing.field!r}")
    return PROCEED


POLICIES: tuple[tuple[str, Policy], ...] = (
    ("enabled", check_enabled),
    ("quick_disable", check_quick_disable),
    ("quiet_hours", check_quiet_hours),
    ("cooldown", check_cooldown),
    ("throttle", check_throttle),
    ("event_filter", check_event_filter),
)


def run_chain(
    config: BellConfig,
    snapshot: Snapshot,
    event: Event,
    policies: Sequence[tuple[str, Policy]] = POLICIES,
) -> Verdict:
    """Return the first suppression, or proceed if every policy passes."""
    for _, policy in policies:
        verdict = policy(config, snapshot, event)
        if not verdict.proceed:
            return verdict
    return PROCEED


def evaluate_chain(
    config: BellConfig,
    snapshot: Snapshot,
    event: Event,
    policies: Sequence[tuple[str, Policy]] = POLICIES,
) -> list[tuple[str, Verdict]]:
    """Evaluate every policy without short-circuiting, for dry runs and status."""
    return [(name, policy(config, snapshot, event)) for name, policy in policies]
