#!/usr/bin/env python3
"""
Adaptive refresh timing for Recent Workspaces.

While the user is active the engine rescans every min_interval seconds. Once
they go quiet the interval grows by 1.5x per tick up to max_interval, and any
interaction snaps it straight back to min_interval.

Without interaction the armed intervals run 30, 45, 68, 101, 152, 228, 300.
The unrounded interval is carried between ticks and rounded half up when a
timer is armed.

Requirements: Python 3.10+
"""

import logging
import math
import sys
import time
from pathlib import Path
from typing import Callable, Optional

# Add scripts directory to path for local imports
script_dir = Path(__file__).parent
if str(script_dir) not in sys.path:
    sys.path.insert(0, str(script_dir))

from batch_scan import Handle, WorkQueue

logger = logging.getLogger(__name__)

MIN_INTERVAL = 30
MAX_INTERVAL = 300
BACKOFF_FACTOR = 1.5
ACTIVE_THRESHOLD = 5 * 60  # seconds since last interaction that still count as active


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RefreshScheduler:
    """
    One-shot timer state machine choosing when to run full vs lightweight cycles.

    start() runs a full cycle immediately; each tick() runs a lightweight one.
    The timer is re-armed per tick, never repeating, so a new interval takes
    effect on the very next firing.
    """

    def __init__(
        self,
        queue: WorkQueue,
        on_full: Callable[[], None],
        on_light: Callable[[], None],
        clock: Callable[[], float] = time.time,
        min_interval: int = MIN_INTERVAL,
        max_interval: int = MAX_INTERVAL,
        seed: Optional[int] = None,
    ):
        if min_interval <= 0 or max_interval < min_interval:
            raise ValueError("need 0 < min_interval <= max_interval")
        self.queue = queue
        self.on_full = on_full
        self.on_light = on_light
        self._clock = clock
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.seed = seed
        self.last_interaction: Optional[float] = None
        self._exact_interval = float(min_interval)
        self._timer: Optional[Handle] = None
        self.ticks = 0

    @property
    def current_interval(self) -> int:
        return min(round_half_up(self._exact_interval), self.max_interval)

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def initial_interval(self) -> int:
        """The seed setting, clamped to [min_interval, max_interval]."""
        if self.seed is None:
            return self.min_interval
        return max(self.min_interval, min(int(self.seed), self.max_interval))

    def start(self) -> None:
        """Reset the interval, run a full cycle now, and arm the first tick."""
        self._cancel_timer()
        self._exact_interval = float(self.initial_interval())
        try:
            self.on_full()
        finally:
            self._arm()

    def stop(self) -> None:
        self._cancel_timer()

    def tick(self) -> None:
        """Adapt the interval to recent activity, run a lightweight cycle, re-arm."""
        self._timer = None
        self.ticks += 1
        self._update_interval()
        try:
            self.on_light()
        finally:
            self._arm()

    def record_interaction(self) -> None:
        """Note user activity; snap back to min_interval immediately if slower."""
        self.last_interaction = self._clock()
        if self.current_interval > self.min_interval:
            logger.debug("User interaction detected, resetting to minimum refresh interval")
            self._exact_interval = float(self.min_interval)
            if self.armed:
                self._cancel_timer()
                self._arm()

    def user_recently_active(self) -> bool:
        if self.last_interaction is None:
            return False
        return self._clock() - self.last_interaction < ACTIVE_THRESHOLD

    def _update_interval(self) -> None:
        if self.user_recently_active():
            self._exact_interval = float(self.min_interval)
            logger.debug("User recently active, using minimum refresh interval: %ds", self.current_interval)
        else:
            self._exact_interval = min(self._exact_interval * BACKOFF_FACTOR, float(self.max_interval))
            logger.debug("User inactive, increased refresh interval to: %ds", self.current_interval)

    def _arm(self) -> None:
        self._cancel_timer()
        self._timer = self.queue.call_later(self.current_interval, self.tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
