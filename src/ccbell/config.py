"""ccbell configuration — runtime settings from env, user config from JSON.

Two layers:

* ``BellSettings`` — where things live and how long to wait, loaded from
  ``CCBELL_*`` environment variables (pydantic-settings).
* ``BellConfig`` — the user's notification preferences, parsed from
  ``~/.claude/ccbell.config.json`` (camelCase keys) into typed models.

A broken field in the JSON file never disables ccbell: the field is dropped,
its default is used, and a warning is logged.
"""

import copy
import json
import logging
from datetime import time as dtime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from ccbell.events import EventType
from ccbell.utils.atomic import atomic_write_json

logger = logging.getLogger(__name__)

_CLAUDE_DIR = Path.home() / ".claude"

_settings_instance: "BellSettings | None" = None


class BellSettings(BaseSettings):
    """Runtime settings, loaded from environment variables with CCBELL_ prefix."""

    # Paths
    config_path: Path = _CLAUDE_DIR / "ccbell.config.json"
    state_path: Path = _CLAUDE_DIR / "ccbell.state.json"
    sounds_dir: Path = _CLAUDE_DIR / "ccbell" / "sounds"
    log_dir: Path = _CLAUDE_DIR / "ccbell" / "logs"

    # State store
    lock_timeout: float = 0.3  # seconds
    cas_retries: int = 3

    # Playback
    playback_timeout: float = 10.0
    player: str = ""  # force a player, e.g. "mpv"

    # System
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CCBELL_",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> BellSettings:
    """Get the singleton BellSettings instance.

    Returns:
        The shared BellSettings loaded from environment.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = BellSettings()
    return _settings_instance


# ── User configuration models ────────────────────────────────────────


def parse_clock(value: str) -> dtime:
    """Parse an ``HH:MM`` time of day.

    Raises:
        ValueError: If the string is not a valid 24-hour time.
    """
    hours, sep, minutes = value.strip().partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"expected HH:MM, got {value!r}")
    return dtime(int(hours), int(minutes))


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TimeWindow(_CamelModel):
    """A start/end time-of-day pair; both must be set for the window to apply."""

    start: str | None = None
    end: str | None = None

    @field_validator("start", "end")
    @classmethod
    def _valid_clock(cls, value: str | None) -> str | None:
        if value is not None:
            parse_clock(value)
        return value

    @property
    def is_set(self) -> bool:
        return self.start is not None and self.end is not None


class QuietHours(TimeWindow):
    """Default quiet window plus optional weekday/weekend variants."""

    weekday: TimeWindow | None = None
    weekend: TimeWindow | None = None


class WeightedSound(_CamelModel):
    sound: str
    weight: float = 1.0


class FilterRule(_CamelModel):
    """Predicate over one event metadata field.

    ``pattern`` is a regex searched in the value; ``min``/``max`` are numeric
    bounds (inclusive). ``negate`` inverts the result.
    """

    field: str
    pattern: str | None = None
    min: float | None = None
    max: float | None = None
    negate: bool = False


SoundSpec = str | list[str | WeightedSound]


class EventConfig(_CamelModel):
    """Per-event settings. ``None`` means "inherit"."""

    enabled: bool | None = None
    sound: SoundSpec | None = None
    volume: float | None = Field(default=None, ge=0.0, le=1.0)
    cooldown: float | None = Field(default=None, ge=0.0)  # seconds
    priority: int | None = None
    filters: list[FilterRule] | None = None

    def merged(self, override: "EventConfig | None") -> "EventConfig":
        """Return a copy with every non-None field of ``override`` applied."""
        if override is None:
            return self
        update = {
            name: getattr(override, name)
            for name in EventConfig.model_fields
            if getattr(override, name) is not None
        }
        return self.model_copy(update=update)


class ProfileConfig(_CamelModel):
    """Named set of overrides, e.g. a quiet "work" profile."""

    volume: float | None = Field(default=None, ge=0.0, le=1.0)
    events: dict[EventType, EventConfig] = Field(default_factory=dict)


class ThrottleConfig(_CamelModel):
    """At most ``max`` notifications per trailing ``window`` seconds (0 = off)."""

    max: int = Field(default=0, ge=0)
    window: float = Field(default=60.0, gt=0.0)


class StackingConfig(_CamelModel):
    """Sequential playback through a persisted queue."""

    enabled: bool = False
    max_depth: int = Field(default=10, ge=1)
    overflow: Literal["reject", "drop_oldest"] = "reject"
    delay: float = Field(default=0.5, ge=0.0)  # pause between queued sounds
    stale_after: float = Field(default=30.0, gt=0.0)  # drainer heartbeat age
    max_age: float = Field(default=120.0, gt=0.0)  # queued sounds older than this are dropped


def _default_events() -> dict[EventType, EventConfig]:
    return {
        EventType.STOP: EventConfig(enabled=True, sound="bundled:stop", volume=0.5, cooldown=0),
        EventType.PERMISSION_PROMPT: EventConfig(
            enabled=True, sound="bundled:permission_prompt", volume=0.7, cooldown=0,
        ),
        EventType.IDLE_PROMPT: EventConfig(
            enabled=True, sound="bundled:idle_prompt", volume=0.5, cooldown=0,
        ),
        EventType.SUBAGENT: EventConfig(enabled=True, sound="bundled:subagent", volume=0.5, cooldown=0),
    }


class BellConfig(_CamelModel):
    """All user notification preferences."""

    enabled: bool = True
    debug: bool = False
    active_profile: str = "default"
    volume: float = Field(default=0.5, ge=0.0, le=1.0)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    events: dict[EventType, EventConfig] = Field(default_factory=_default_events)
    profiles: dict[str, ProfileConfig] = Field(default_factory=dict)
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    stacking: StackingConfig = Field(default_factory=StackingConfig)

    def profile(self, name: str | None) -> ProfileConfig | None:
        """Look up a profile by name; unknown names yield None."""
        if not name:
            return None
        return self.profiles.get(name)

    def event_config(self, event_type: EventType, profile_name: str | None) -> EventConfig:
        """Effective settings for an event: base config, then profile override."""
        base = self.events.get(event_type, EventConfig())
        profile = self.profile(profile_name)
        if profile is None:
            return base
        return base.merged(profile.events.get(event_type))

    def to_json_dict(self) -> dict:
        """Serialize with the camelCase keys used on disk."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ── Loading ──────────────────────────────────────────────────────────


def _drop_error_path(data: dict, loc: tuple) -> bool:
    """Remove the deepest key of ``loc`` that exists in ``data``.

    Returns:
        True if something was removed.
    """
    node = data
    for i, key in enumerate(loc):
        if isinstance(node, dict):
            present = key in node
        elif isinstance(node, list):
            present = isinstance(key, int) and 0 <= key < len(node)
        else:
            present = False
        if not present:
            return False

        child = node[key]
        if i == len(loc) - 1 or not _has_key(child, loc[i + 1]):
            del node[key]
            return True
        node = child
    return False


def _has_key(node: object, key: object) -> bool:
    if isinstance(node, dict):
        return key in node
    if isinstance(node, list):
        return isinstance(key, int) and 0 <= key < len(node)
    return False


def parse_config(raw: object) -> BellConfig:
    """Validate a decoded JSON document, falling back field-by-field to defaults.

    Args:
        raw: The decoded JSON value (anything; non-dicts yield defaults).

    Returns:
        A valid BellConfig.
    """
    if not isinstance(raw, dict):
        logger.warning("Config root is not an object, using defaults")
        return BellConfig()

    data = copy.deepcopy(raw)
    # Each pass removes at least one bad field, so this terminates
    while True:
        try:
            return BellConfig.model_validate(data)
        except ValidationError as exc:
            error = exc.errors()[0]
            loc = tuple(error["loc"])
            logger.warning(
                "Invalid config field %s (%s), using default",
                ".".join(str(p) for p in loc), error["msg"],
            )
            if not _drop_error_path(data, loc):
                logger.warning("Could not isolate invalid config field, using defaults")
                return BellConfig()


def load_config(path: Path) -> BellConfig:
    """Load the user configuration file.

    Missing, unreadable, or non-JSON files yield the default configuration.

    Args:
        path: Path to the JSON config file.

    Returns:
        The parsed configuration.
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.debug("No config at %s, using defaults", path)
        return BellConfig()
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
        logger.warning("Unreadable config %s (%s), using defaults", path, exc)
        return BellConfig()
    return parse_config(raw)


def ensure_config(path: Path) -> bool:
    """Write the default configuration file if none exists.

    Returns:
        True if a new file was created.
    """
    if path.exists():
        return False
    atomic_write_json(path, BellConfig().to_json_dict())
    logger.info("Created default config at %s", path)
    return True
