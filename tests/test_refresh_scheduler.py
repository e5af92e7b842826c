#!/usr/bin/env python3
"""
Unit tests for refresh_scheduler.py

Run with: python -m pytest tests/test_refresh_scheduler.py -v
"""

import sys
from pathlib import Path

import pytest

# Add scripts directory to path
scripts_dir = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

from batch_scan import WorkQueue
from refresh_scheduler import MAX_INTERVAL, MIN_INTERVAL, RefreshScheduler, round_half_up


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class Harness:
    def __init__(self, seed=None):
        self.clock = FakeClock()
        self.queue = WorkQueue(clock=self.clock)
        self.calls: list[str] = []
        self.scheduler = RefreshScheduler(
            self.queue,
            on_full=lambda: self.calls.append("full"),
            on_light=lambda: self.calls.append("light"),
            clock=self.clock,
            seed=seed,
        )

    def armed_interval(self) -> float:
        return self.queue.next_deadline() - self.clock.now

    def fire_next(self) -> float:
        """Advance to the next timer, run it, and return the newly armed interval."""
        self.clock.now = self.queue.next_deadline()
        self.queue.run_until_idle()
        return self.armed_interval()


class TestRoundHalfUp:
    def test_values(self):
        assert round_half_up(67.5) == 68
        assert round_half_up(101.25) == 101
        assert round_half_up(151.875) == 152
        assert round_half_up(227.8125) == 228


class TestBackoff:
    def test_sequence_without_interaction(self):
        h = Harness()
        h.scheduler.start()
        intervals = [h.armed_interval()]
        for _ in range(7):
            intervals.append(h.fire_next())

        assert intervals == [30, 45, 68, 101, 152, 228, 300, 300]

    def test_start_runs_full_then_ticks_run_light(self):
        h = Harness()
        h.scheduler.start()
        h.fire_next()
        h.fire_next()
        assert h.calls == ["full", "light", "light"]
        assert h.scheduler.ticks == 2

    def test_one_timer_armed_at_a_time(self):
        h = Harness()
        h.scheduler.start()
        h.scheduler.start()
        h.fire_next()
        assert h.queue.pending_timers() == 1


class TestInteraction:
    def test_interaction_snaps_back_to_minimum(self):
        h = Harness()
        h.scheduler.start()
        for _ in range(3):
            h.fire_next()
        assert h.scheduler.current_interval == 101

        h.scheduler.record_interaction()

        assert h.scheduler.current_interval == MIN_INTERVAL
        assert h.armed_interval() == MIN_INTERVAL
        assert h.queue.pending_timers() == 1

    def test_recent_activity_holds_minimum(self):
        h = Harness()
        h.scheduler.start()
        h.scheduler.record_interaction()

        # Still within the activity window: stay at the minimum
        intervals = [h.fire_next() for _ in range(5)]
        assert intervals == [30] * 5

    def test_backoff_resumes_after_activity_window(self):
        h = Harness()
        h.scheduler.start()
        h.scheduler.record_interaction()

        intervals = [h.fire_next() for _ in range(12)]
        # Ticks at 30..270 are within 300s of the interaction
        assert intervals[:9] == [30] * 9
        assert intervals[9:] == [45, 68, 101]

    def test_interaction_at_minimum_does_not_rearm(self):
        h = Harness()
        h.scheduler.start()
        deadline = h.queue.next_deadline()
        h.clock.now = 10
        h.scheduler.record_interaction()
        assert h.queue.next_deadline() == deadline


class TestSeedAndStop:
    def test_seed_sets_initial_interval(self):
        h = Harness(seed=120)
        h.scheduler.start()
        assert h.armed_interval() == 120
        assert h.fire_next() == 180

    @pytest.mark.parametrize("seed,expected", [(5, MIN_INTERVAL), (10_000, MAX_INTERVAL)])
    def test_seed_clamped(self, seed, expected):
        h = Harness(seed=seed)
        h.scheduler.start()
        assert h.armed_interval() == expected

    def test_stop_cancels_timer(self):
        h = Harness()
        h.scheduler.start()
        h.scheduler.stop()
        assert not h.scheduler.armed
        assert h.queue.next_deadline() is None

    def test_failing_cycle_still_rearms(self):
        h = Harness()

        def boom():
            raise RuntimeError("scan failed")

        h.scheduler.on_light = boom
        h.scheduler.start()
        h.clock.now = h.queue.next_deadline()
        h.queue.run_until_idle()
        assert h.scheduler.armed

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            RefreshScheduler(WorkQueue(), lambda: None, lambda: None, min_interval=60, max_interval=30)
