"""Virtual-clock timer scheduler driving typing, waits and effects."""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, List


@dataclass(eq=False)
class TimerHandle:
    """Token returned by :meth:`Scheduler.call_later`."""

    due_ms: float
    callback: Callable[[], None] = field(repr=False)
    cancelled: bool = False
    fired: bool = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


class Scheduler:
    """Single-threaded scheduler whose clock only moves when told to.

    Hosts drive time with :meth:`advance` (tests, headless playback) or by
    feeding wall-clock deltas from their own loop. Timers fire in due-time
    order, ties broken by scheduling order, and callbacks may schedule new
    timers that fire within the same :meth:`advance` window.
    """

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: List[tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    @property
    def now(self) -> float:
        return self._now

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if handle.active)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(due_ms=self._now + max(0.0, float(delay_ms)), callback=callback)
        heapq.heappush(self._queue, (handle.due_ms, next(self._counter), handle))
        return handle

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancelled = True

    def cancel_all(self) -> None:
        for _, _, handle in self._queue:
            handle.cancelled = True
        self._queue.clear()

    def next_due(self) -> float | None:
        """Return the due time of the earliest live timer."""

        self._discard_cancelled()
        return self._queue[0][0] if self._queue else None

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward by ``delta_ms`` and fire due timers."""

        if delta_ms < 0:
            raise ValueError("delta_ms must not be negative")
        return self.advance_to(self._now + delta_ms)

    def advance_to(self, now_ms: float) -> int:
        """Move the clock to ``now_ms``, returning how many timers fired."""

        fired = 0
        while True:
            self._discard_cancelled()
            if not self._queue or self._queue[0][0] > now_ms:
                break
            due, _, handle = heapq.heappop(self._queue)
            self._now = max(self._now, due)
            handle.fired = True
            handle.callback()
            fired += 1
        self._now = max(self._now, now_ms)
        return fired

    def run_until_idle(self, limit: int = 100_000) -> int:
        """Fire every pending timer, jumping the clock as needed."""

        fired = 0
        while fired < limit:
            due = self.next_due()
            if due is None:
                break
            fired += self.advance_to(due)
        return fired

    def _discard_cancelled(self) -> None:
        while self._queue and not self._queue[0][2].active:
            heapq.heappop(self._queue)


__all__ = ["Scheduler", "TimerHandle"]
