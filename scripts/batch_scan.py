#!/usr/bin/env python3
"""
Cooperative work queue and chunked directory scanning for Recent Workspaces.

Everything runs on one thread. Long enumerations are split into batches, and
each batch is queued as its own idle callback so the caller gets control back
between batches.

Key Interfaces:
    WorkQueue.call_soon(cb, *args) -> Handle        queue an idle callback
    WorkQueue.call_later(delay, cb, *args) -> Handle  arm a one-shot timer
    WorkQueue.run_once() / run_until_idle() / run_forever(stop)
    BatchScanScheduler(queue, directory, process_entry, finalize).start()

Requirements: Python 3.10+
"""

import heapq
import itertools
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


# =============================================================================
# Work Queue
# =============================================================================


class Handle:
    """A queued callback or timer that can be cancelled before it runs."""

    __slots__ = ("callback", "args", "when", "cancelled")

    def __init__(self, callback: Callable[..., Any], args: tuple, when: Optional[float] = None):
        self.callback = callback
        self.args = args
        self.when = when
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def _run(self) -> None:
        self.callback(*self.args)


class WorkQueue:
    """
    Single-threaded scheduler of idle callbacks and one-shot timers.

    The clock and sleep functions are injectable so tests can drive time.
    Exceptions raised by a callback are logged and do not stop the queue.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._idle: deque[Handle] = deque()
        self._timers: list[tuple[float, int, Handle]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._clock()

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> Handle:
        handle = Handle(callback, args)
        self._idle.append(handle)
        return handle

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Handle:
        when = self._clock() + max(0.0, delay)
        handle = Handle(callback, args, when)
        heapq.heappush(self._timers, (when, next(self._seq), handle))
        return handle

    def pending_idle(self) -> int:
        return sum(1 for h in self._idle if not h.cancelled)

    def pending_timers(self) -> int:
        return sum(1 for _, _, h in self._timers if not h.cancelled)

    def next_deadline(self) -> Optional[float]:
        """When the earliest live timer is due, or None."""
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0][0] if self._timers else None

    def run_once(self) -> bool:
        """
        Fire every due timer, then at most one idle callback.

        Returns True if anything ran.
        """
        ran = False
        now = self._clock()
        while self._timers and self._timers[0][0] <= now:
            _, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._invoke(handle)
            ran = True

        while self._idle:
            handle = self._idle.popleft()
            if handle.cancelled:
                continue
            self._invoke(handle)
            ran = True
            break

        return ran

    def run_until_idle(self, max_steps: int = 100000) -> int:
        """Run until no idle callback and no due timer remains. Returns steps run."""
        steps = 0
        while steps < max_steps and self.run_once():
            steps += 1
        return steps

    def run_forever(self, stop: Callable[[], bool] = lambda: False) -> None:
        """Run callbacks, sleeping until the next timer when there is nothing to do."""
        while not stop():
            if self.run_once():
                continue
            deadline = self.next_deadline()
            if deadline is None:
                return
            self._sleep(max(0.0, deadline - self._clock()))

    def _invoke(self, handle: Handle) -> None:
        try:
            handle._run()
        except Exception:
            logger.exception("Error in queued callback %r", handle.callback)


# =============================================================================
# Batch Scan
# =============================================================================


class BatchScanScheduler:
    """
    Resumable cursor over a directory's children, processed in fixed-size batches.

    Children are listed once in sorted order when the first batch runs. Each
    batch hands the next batch_size entries of that listing to process_entry,
    so entries removed by earlier batches do not shift the cursor. finalize is
    called exactly once when nothing remains (including for an empty or
    missing directory) unless the scan is cancelled first.
    """

    def __init__(
        self,
        queue: WorkQueue,
        directory: Path,
        process_entry: Callable[[Path], None],
        finalize: Callable[[], None],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.queue = queue
        self.directory = Path(directory)
        self.process_entry = process_entry
        self.finalize = finalize
        self.batch_size = batch_size
        self.start_index = 0
        self.batches_run = 0
        self._children: Optional[list[Path]] = None
        self._handle: Optional[Handle] = None
        self._finalized = False
        self._cancelled = False

    @property
    def done(self) -> bool:
        return self._finalized or self._cancelled

    def start(self) -> None:
        self._schedule()

    def cancel(self) -> None:
        """Drop the scan without finalizing."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self.queue.call_soon(self._run_batch)

    def _run_batch(self) -> None:
        self._handle = None
        if self.done:
            return

        self.batches_run += 1
        logger.debug("Processing workspace batch starting at index %d", self.start_index)

        try:
            if self._children is None:
                self._children = self._list_children()
            batch = self._children[self.start_index:self.start_index + self.batch_size]
            for child in batch:
                if self._cancelled:
                    return
                self._process(child)
            has_more = len(self._children) > self.start_index + len(batch)
        except OSError as e:
            logger.warning("Cannot enumerate %s: %s", self.directory, e)
            has_more = False
        except Exception:
            logger.exception("Error processing workspace batch in %s", self.directory)
            has_more = False

        if self._cancelled:
            return

        if has_more:
            self.start_index += len(batch)
            logger.debug("Scheduling next batch starting at index %d", self.start_index)
            self._schedule()
        else:
            self._finish()

    def _list_children(self) -> list[Path]:
        if not self.directory.is_dir():
            logger.debug("Workspace directory does not exist: %s", self.directory)
            return []
        return sorted(self.directory.iterdir())

    def _process(self, child: Path) -> None:
        if not child.exists():
            logger.debug("Skipping %s, removed since listing", child)
            return
        logger.debug("Checking %s", child)
        try:
            self.process_entry(child)
        except Exception:
            logger.exception("Error processing %s", child)

    def _finish(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        logger.debug("All workspaces processed in %s", self.directory)
        self.finalize()
