"""Tests for kryten_counters.cooldowns module."""

from __future__ import annotations

import threading
from datetime import timedelta

from kryten_counters.cooldowns import CooldownTracker
from tests.conftest import T0


class TestCheckAndRecord:
    """Atomic check-and-set behaviour."""

    def test_first_use_allowed(self):
        tracker = CooldownTracker()
        assert tracker.check_and_record("ch", "!deaths", T0, 5) is True

    def test_second_use_within_window_blocked(self):
        tracker = CooldownTracker()
        tracker.check_and_record("ch", "!deaths", T0, 5)
        assert tracker.check_and_record("ch", "!deaths", T0 + timedelta(seconds=4), 5) is False

    def test_allowed_after_window(self):
        tracker = CooldownTracker()
        tracker.check_and_record("ch", "!deaths", T0, 5)
        assert tracker.check_and_record("ch", "!deaths", T0 + timedelta(seconds=5), 5) is True

    def test_blocked_attempt_does_not_extend_window(self):
        tracker = CooldownTracker()
        tracker.check_and_record("ch", "!deaths", T0, 5)
        tracker.check_and_record("ch", "!deaths", T0 + timedelta(seconds=3), 5)
        assert tracker.check_and_record("ch", "!deaths", T0 + timedelta(seconds=5), 5) is True

    def test_zero_cooldown_never_blocks(self):
        tracker = CooldownTracker()
        assert tracker.check_and_record("ch", "!x", T0, 0) is True
        assert tracker.check_and_record("ch", "!x", T0, 0) is True

    def test_keys_and_broadcasters_independent(self):
        tracker = CooldownTracker()
        tracker.check_and_record("ch", "!deaths", T0, 5)
        assert tracker.check_and_record("ch", "!swears", T0, 5) is True
        assert tracker.check_and_record("other", "!deaths", T0, 5) is True

    def test_concurrent_callers_fire_once(self):
        """Only one of many simultaneous callers wins the window."""
        tracker = CooldownTracker()
        results: list[bool] = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def worker():
            barrier.wait()
            ok = tracker.check_and_record("ch", "!death+", T0, 1)
            with lock:
                results.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1


class TestEviction:
    """TTL pruning and per-broadcaster capacity."""

    def test_prune_removes_idle_entries(self):
        tracker = CooldownTracker(ttl_seconds=60)
        tracker.check_and_record("ch", "!old", T0, 5)
        tracker.check_and_record("ch", "!new", T0 + timedelta(seconds=50), 5)

        removed = tracker.prune(T0 + timedelta(seconds=90))
        assert removed == 1
        assert tracker.tracked_keys("ch") == 1

    def test_prune_drops_empty_broadcasters(self):
        tracker = CooldownTracker(ttl_seconds=60)
        tracker.check_and_record("ch", "!old", T0, 5)
        tracker.prune(T0 + timedelta(hours=1))
        assert tracker.tracked_keys() == 0

    def test_capacity_evicts_least_recently_used(self):
        tracker = CooldownTracker(max_keys_per_broadcaster=2)
        tracker.check_and_record("ch", "!a", T0, 60)
        tracker.check_and_record("ch", "!b", T0, 60)
        tracker.check_and_record("ch", "!a", T0 + timedelta(seconds=61), 60)
        tracker.check_and_record("ch", "!c", T0 + timedelta(seconds=62), 60)

        assert tracker.tracked_keys("ch") == 2
        # "!b" was evicted, so it is usable again immediately
        assert tracker.check_and_record("ch", "!b", T0 + timedelta(seconds=63), 60) is True
        assert tracker.check_and_record("ch", "!c", T0 + timedelta(seconds=63), 60) is False
