"""Resolution stage — which profile, which sound, how loud.

Pure functions of configuration plus event; no state store access. The only
state-derived input is the runtime profile, passed in by the caller.
"""

import logging
import random
from dataclasses import dataclass

from ccbell.config import BellConfig, SoundSpec, WeightedSound
from ccbell.events import Event

logger = logging.getLogger(__name__)

# Non-deterministic per invocation; reproducibility is not wanted here
_system_random = random.SystemRandom()


@dataclass(frozen=True)
class Resolution:
    """Concrete sound reference and volume for one notification."""

    profile: str
    sound: str
    volume: float
    priority: int = 0


def select_profile(config: BellConfig, event: Event, state_profile: str | None = None) -> str:
    """Pick the profile: CLI override, then runtime/restored profile, then config."""
    return event.profile or state_profile or config.active_profile


def pick_sound(spec: SoundSpec | None, rng: random.Random | None = None) -> str | None:
    """Choose one sound reference from a single reference or a candidate list.

    Weighted candidates are drawn proportionally to their weights (any
    positive total). Non-positive weights are ignored; if no weight is
    positive the draw is uniform.

    Args:
        spec: A reference, a list of references, or weighted entries.
        rng: Random source (defaults to SystemRandom).

    Returns:
        The chosen reference, or None for an empty/missing spec.
    """
    if spec is None or isinstance(spec, str):
        return spec
    rng = rng or _system_random

    candidates = [
        (c.sound, c.weight) if isinstance(c, WeightedSound) else (c, 1.0)
        for c in spec
    ]
    if not candidates:
        return None

    positive = [(sound, weight) for sound, weight in candidates if weight > 0]
    if not positive:
        logger.debug("No positive sound weights, drawing uniformly")
        return rng.choice([sound for sound, _ in candidates])

    sounds, weights = zip(*positive)
    return rng.choices(sounds, weights=weights, k=1)[0]


def resolve_volume(config: BellConfig, event: Event, profile_name: str) -> float:
    """Pick the volume, clamped to [0, 1].

    Order: CLI override, the profile's per-event volume, the profile volume,
    the base per-event volume, the global volume. A profile is an override
    layer, so its volume beats the per-event volumes of the base config
    (which the default config file sets for every event).
    """
    profile = config.profile(profile_name)
    profile_event = profile.events.get(event.type) if profile else None
    base_event = config.events.get(event.type)

    for candidate in (
        event.volume,
        profile_event.volume if profile_event else None,
        profile.volume if profile else None,
        base_event.volume if base_event else None,
    ):
        if candidate is not None:
            return min(1.0, max(0.0, candidate))
    return config.volume


def resolve(
    config: BellConfig,
    event: Event,
    state_profile: str | None = None,
    rng: random.Random | None = None,
) -> Resolution:
    """Resolve the sound and volume for a notification that passed the policy chain.

    Args:
        config: User configuration.
        event: The invocation's event (carries CLI overrides).
        state_profile: Profile selected at runtime or restored after quick-disable.
        rng: Random source for candidate lists.

    Returns:
        The resolved profile, sound reference, volume and queue priority.
    """
    profile_name = select_profile(config, event, state_profile)
    if config.profile(profile_name) is None and profile_name != config.active_profile:
        logger.debug("Unknown profile %r, using base settings", profile_name)

    event_cfg = config.event_config(event.type, profile_name)
    sound = pick_sound(event_cfg.sound, rng) or f"bundled:{event.type.value}"

    return Resolution(
        profile=profile_name,
        sound=sound,
        volume=resolve_volume(config, event, profile_name),
        priority=event_cfg.priority or 0,
    )
