"""Tests for ccbell settings and the user config loader."""

import json

import pytest

import ccbell.config
from ccbell.config import (
    BellConfig,
    BellSettings,
    EventConfig,
    ProfileConfig,
    WeightedSound,
    ensure_config,
    get_settings,
    load_config,
    parse_clock,
    parse_config,
)
from ccbell.events import EventType


@pytest.fixture(autouse=True)
def _reset_settings():
    ccbell.config._settings_instance = None
    yield
    ccbell.config._settings_instance = None


class TestBellSettingsDefaults:
    def test_default_values(self):
        settings = BellSettings()
        assert settings.lock_timeout == 0.3
        assert settings.cas_retries == 3
        assert settings.playback_timeout == 10.0
        assert settings.player == ""
        assert settings.log_level == "WARNING"

    def test_default_paths_under_claude_dir(self):
        settings = BellSettings()
        assert settings.config_path.name == "ccbell.config.json"
        assert settings.state_path.name == "ccbell.state.json"
        assert settings.config_path.parent.name == ".claude"


class TestBellSettingsFromEnv:
    def test_loads_from_env_vars(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CCBELL_LOCK_TIMEOUT", "1.5")
        monkeypatch.setenv("CCBELL_PLAYER", "mpv")
        monkeypatch.setenv("CCBELL_STATE_PATH", str(tmp_path / "state.json"))

        settings = BellSettings()
        assert settings.lock_timeout == 1.5
        assert settings.player == "mpv"
        assert settings.state_path == tmp_path / "state.json"

    def test_get_settings_is_singleton(self):
        assert get_settings() is get_settings()


class TestParseClock:
    def test_valid(self):
        assert parse_clock("07:05").hour == 7
        assert parse_clock("23:59").minute == 59

    @pytest.mark.parametrize("value", ["7", "25:00", "ab:cd", "12:61", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_clock(value)


class TestDefaults:
    def test_every_event_configured(self):
        config = BellConfig()
        assert set(config.events) == set(EventType)
        assert config.events[EventType.STOP].sound == "bundled:stop"

    def test_default_file_round_trips(self):
        data = BellConfig().to_json_dict()
        assert "activeProfile" in data
        assert parse_config(json.loads(json.dumps(data))) == BellConfig()


class TestParseConfig:
    def test_camel_case_keys(self):
        config = parse_config({
            "activeProfile": "work",
            "quietHours": {"start": "22:00", "end": "07:00"},
            "stacking": {"enabled": True, "maxDepth": 3, "staleAfter": 10, "maxAge": 45},
        })
        assert config.active_profile == "work"
        assert config.quiet_hours.is_set
        assert config.stacking.max_depth == 3
        assert config.stacking.stale_after == 10
        assert config.stacking.max_age == 45

    def test_weighted_sounds(self):
        config = parse_config({"events": {"stop": {
            "sound": ["bundled:stop", {"sound": "system:Glass", "weight": 3}],
        }}})
        sound = config.events[EventType.STOP].sound
        assert sound[0] == "bundled:stop"
        assert sound[1] == WeightedSound(sound="system:Glass", weight=3)

    def test_invalid_field_falls_back_alone(self):
        config = parse_config({"volume": 7, "enabled": False})
        assert config.volume == 0.5
        assert config.enabled is False

    def test_invalid_nested_field(self):
        config = parse_config({
            "events": {"stop": {"volume": -1, "cooldown": 30}},
            "throttle": {"max": 3, "window": 0},
        })
        assert config.events[EventType.STOP].volume is None
        assert config.events[EventType.STOP].cooldown == 30
        assert config.throttle.max == 3
        assert config.throttle.window == 60.0

    def test_bad_quiet_hours_clock(self):
        config = parse_config({"quietHours": {"start": "late", "end": "07:00"}})
        assert config.quiet_hours.start is None
        assert not config.quiet_hours.is_set

    def test_unknown_event_key_dropped(self):
        config = parse_config({"events": {"stop": {"cooldown": 5}, "bogus": {}}})
        assert config.events == {EventType.STOP: EventConfig(cooldown=5)}

    def test_non_object_root(self):
        assert parse_config([1, 2, 3]) == BellConfig()

    def test_input_not_mutated(self):
        raw = {"volume": 7}
        parse_config(raw)
        assert raw == {"volume": 7}


class TestEventConfigMerge:
    def test_profile_overrides_set_fields_only(self):
        base = EventConfig(enabled=True, sound="bundled:stop", volume=0.5, cooldown=10)
        merged = base.merged(EventConfig(volume=0.1))
        assert merged.volume == 0.1
        assert merged.sound == "bundled:stop"
        assert merged.cooldown == 10

    def test_event_config_via_profile(self):
        config = BellConfig(profiles={"quiet": ProfileConfig(
            events={EventType.STOP: EventConfig(enabled=False)},
        )})
        assert config.event_config(EventType.STOP, "quiet").enabled is False
        assert config.event_config(EventType.STOP, "missing").enabled is True


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "nope.json") == BellConfig()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{oops", encoding="utf-8")
        assert load_config(path) == BellConfig()

    def test_reads_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"throttle": {"max": 4}}), encoding="utf-8")
        assert load_config(path).throttle.max == 4


class TestEnsureConfig:
    def test_creates_once(self, tmp_path):
        path = tmp_path / "sub" / "config.json"
        assert ensure_config(path) is True
        assert ensure_config(path) is False
        assert load_config(path) == BellConfig()

    def test_keeps_existing(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"enabled": false}', encoding="utf-8")
        ensure_config(path)
        assert load_config(path).enabled is False
