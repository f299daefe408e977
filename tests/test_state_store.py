"""Tests for the state store — snapshot parsing, compare-and-swap, fail-open paths."""

import json
import os
import threading
from unittest.mock import patch

import pytest

from ccbell.state.bookkeeping import commit, reserve, rollback
from ccbell.state.lock import LockTimeout, file_lock
from ccbell.state.snapshot import MAX_OUTCOMES, QuickDisable, QueueEntry, Snapshot
from ccbell.state.store import StateStore
from ccbell.utils.atomic import atomic_write_json


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "ccbell.state.json"


@pytest.fixture
def store(state_path):
    return StateStore(state_path, lock_timeout=2.0, retries=2)


# ── Snapshot parsing ─────────────────────────────────────────────────


class TestSnapshotFromDict:
    def test_round_trip_keeps_sections(self):
        snap = Snapshot(
            cooldowns={"stop": 100.0},
            quick_disable=QuickDisable(expiry=200.0, restore_profile="work"),
            active_profile="loud",
            queue=[QueueEntry("stop", "bundled:stop", 0.5, 0, 10.0, "tok")],
        )
        reserve(snap, "idle_prompt", "r1", now=150.0, window=60)
        restored = Snapshot.from_dict(json.loads(json.dumps(snap.to_dict())))
        assert restored == snap

    def test_non_dict_root_is_empty(self):
        assert Snapshot.from_dict(["nope"]) == Snapshot()

    def test_malformed_section_discarded_alone(self):
        snap = Snapshot.from_dict({
            "cooldowns": {"stop": "not-a-number"},
            "quick_disable": {"expiry": 500, "restore_profile": "work"},
            "throttle": [{"token": "a"}],
        })
        assert snap.cooldowns == {}
        assert snap.throttle == []
        assert snap.quick_disable == QuickDisable(expiry=500.0, restore_profile="work")

    @pytest.mark.parametrize("section", [
        "cooldowns", "throttle", "quick_disable", "queue", "drainer", "recent_outcomes",
    ])
    @pytest.mark.parametrize("value", [5, "soon", [1, 2], {"x": 1}])
    def test_wrong_type_section_discarded(self, section, value):
        snap = Snapshot.from_dict({
            "cooldowns": {"stop": 1.0},
            "active_profile": "work",
            section: value,
        })
        if section != "cooldowns":
            assert snap.cooldowns == {"stop": 1.0}
        assert snap.active_profile == "work"
        assert snap.quick_disable is None
        assert snap.drainer is None
        assert snap.throttle == []
        assert snap.queue == []

    def test_load_with_wrong_type_section(self, store, state_path):
        state_path.write_text(json.dumps({"quick_disable": [1, 2]}), encoding="utf-8")
        assert store.load().quick_disable is None
        result = store.compare_and_swap(lambda s: s.cooldowns.update(stop=1.0))
        assert result.committed
        assert json.loads(state_path.read_text(encoding="utf-8"))["quick_disable"] is None

    def test_queue_with_unknown_event_discarded(self):
        snap = Snapshot.from_dict({"queue": [{
            "event": "bogus", "sound": "x", "volume": 1, "enqueued_at": 1, "token": "t",
        }]})
        assert snap.queue == []

    def test_outcomes_bounded(self):
        snap = Snapshot()
        for i in range(MAX_OUTCOMES + 10):
            snap.record_outcome({"n": i})
        assert len(snap.recent_outcomes) == MAX_OUTCOMES
        assert snap.recent_outcomes[-1] == {"n": MAX_OUTCOMES + 9}


class TestStateProfile:
    def test_active_profile(self):
        assert Snapshot(active_profile="work").state_profile(0) == "work"

    def test_expired_quick_disable_restores(self):
        snap = Snapshot(
            active_profile=None,
            quick_disable=QuickDisable(expiry=10, restore_profile="work"),
        )
        assert snap.state_profile(5) is None
        assert snap.state_profile(10) == "work"


# ── Load ─────────────────────────────────────────────────────────────


class TestLoad:
    def test_missing_file_is_empty(self, store):
        assert store.load() == Snapshot()

    def test_corrupt_file_is_empty(self, store, state_path):
        state_path.write_text("{not json", encoding="utf-8")
        assert store.load() == Snapshot()

    def test_binary_garbage_is_empty(self, store, state_path):
        state_path.write_bytes(b"\xff\xfe\x00garbage")
        assert store.load() == Snapshot()

    def test_reads_saved_state(self, store, state_path):
        state_path.write_text(json.dumps({"cooldowns": {"stop": 42}}), encoding="utf-8")
        assert store.load().cooldowns == {"stop": 42.0}


# ── Compare-and-swap ─────────────────────────────────────────────────


class TestCompareAndSwap:
    def test_persists_mutation(self, store):
        result = store.compare_and_swap(lambda s: s.cooldowns.update(stop=1.0))
        assert result.committed
        assert result.snapshot.cooldowns == {"stop": 1.0}
        assert store.load().cooldowns == {"stop": 1.0}

    def test_mutation_sees_latest_state(self, store):
        store.compare_and_swap(lambda s: s.cooldowns.update(stop=1.0))
        store.compare_and_swap(lambda s: s.cooldowns.update(idle_prompt=2.0))
        assert store.load().cooldowns == {"stop": 1.0, "idle_prompt": 2.0}

    def test_repairs_corrupt_file(self, store, state_path):
        state_path.write_text("garbage", encoding="utf-8")
        result = store.compare_and_swap(lambda s: s.cooldowns.update(stop=1.0))
        assert result.committed
        assert json.loads(state_path.read_text(encoding="utf-8"))["cooldowns"] == {"stop": 1.0}

    def test_no_temp_files_left_behind(self, store, state_path):
        store.compare_and_swap(lambda s: s.cooldowns.update(stop=1.0))
        leftovers = [p.name for p in state_path.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_lock_timeout_fails_open(self, state_path):
        store = StateStore(state_path, lock_timeout=0.05, retries=3)
        store.compare_and_swap(lambda s: s.cooldowns.update(stop=1.0))
        lock_path = state_path.with_name(state_path.name + ".lock")

        with file_lock(lock_path, timeout=1.0):
            result = store.compare_and_swap(lambda s: s.cooldowns.update(stop=99.0))

        assert not result.committed
        assert result.snapshot.cooldowns == {"stop": 99.0}
        assert store.load().cooldowns == {"stop": 1.0}

    def test_write_failure_retries_then_fails_open(self, store):
        calls = []

        def failing_write(path, payload):
            calls.append(path)
            raise OSError("disk full")

        with patch("ccbell.state.store.atomic_write_json", side_effect=failing_write):
            result = store.compare_and_swap(lambda s: s.cooldowns.update(stop=5.0))

        assert len(calls) == 3  # first attempt + 2 retries
        assert not result.committed
        assert result.snapshot.cooldowns == {"stop": 5.0}
        assert store.load() == Snapshot()

    def test_transient_write_failure_recovers(self, store):
        attempts = []

        def flaky_write(path, payload):
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("rename failed")
            atomic_write_json(path, payload)

        with patch("ccbell.state.store.atomic_write_json", side_effect=flaky_write):
            result = store.compare_and_swap(lambda s: s.cooldowns.update(stop=5.0))

        assert result.committed
        assert store.load().cooldowns == {"stop": 5.0}

    def test_concurrent_increments_are_not_lost(self, store):
        """Every thread's read-modify-write lands; no update is lost."""
        barrier = threading.Barrier(8)

        def bump(snap):
            snap.cooldowns["counter"] = snap.cooldowns.get("counter", 0) + 1

        def worker():
            barrier.wait()
            for _ in range(5):
                assert store.compare_and_swap(bump).committed

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.load().cooldowns["counter"] == 40


class TestFileLock:
    def test_second_holder_times_out(self, tmp_path):
        lock_path = tmp_path / "x.lock"
        with file_lock(lock_path, timeout=1.0):
            with pytest.raises(LockTimeout):
                with file_lock(lock_path, timeout=0.05):
                    pass

    def test_released_after_exit(self, tmp_path):
        lock_path = tmp_path / "x.lock"
        with file_lock(lock_path, timeout=1.0):
            pass
        with file_lock(lock_path, timeout=0.05):
            assert os.path.exists(lock_path)


# ── Bookkeeping ──────────────────────────────────────────────────────


class TestBookkeeping:
    def test_reserve_sets_tentative_cooldown(self):
        snap = Snapshot(cooldowns={"stop": 10.0})
        reserve(snap, "stop", "tok", now=100.0, window=60)
        assert snap.cooldowns["stop"] == 100.0
        assert snap.throttle[0].previous_cooldown == 10.0
        assert not snap.throttle[0].committed

    def test_reserve_prunes_old_slots(self):
        snap = Snapshot()
        reserve(snap, "stop", "old", now=0.0, window=60)
        reserve(snap, "stop", "new", now=100.0, window=60)
        assert [r.token for r in snap.throttle] == ["new"]

    def test_commit(self):
        snap = Snapshot()
        reserve(snap, "stop", "tok", now=100.0, window=60)
        commit(snap, "stop", "tok", now=100.0)
        assert snap.throttle[0].committed
        assert snap.cooldowns["stop"] == 100.0

    def test_rollback_restores_previous_cooldown(self):
        snap = Snapshot(cooldowns={"stop": 10.0})
        reserve(snap, "stop", "tok", now=100.0, window=60)
        rollback(snap, "tok")
        assert snap.throttle == []
        assert snap.cooldowns["stop"] == 10.0

    def test_rollback_of_first_ever_removes_record(self):
        snap = Snapshot()
        reserve(snap, "stop", "tok", now=100.0, window=60)
        rollback(snap, "tok")
        assert "stop" not in snap.cooldowns

    def test_rollback_keeps_newer_cooldown(self):
        snap = Snapshot()
        reserve(snap, "stop", "a", now=100.0, window=60)
        reserve(snap, "stop", "b", now=101.0, window=60)
        rollback(snap, "a")
        assert snap.cooldowns["stop"] == 101.0

    def test_rollback_unknown_token_is_noop(self):
        snap = Snapshot(cooldowns={"stop": 1.0})
        rollback(snap, "missing")
        assert snap.cooldowns == {"stop": 1.0}
