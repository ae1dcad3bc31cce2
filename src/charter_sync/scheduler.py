# SPDX-License-Identifier: MIT
"""Timer abstractions for retry backoff and the periodic sync tick.

The engine never sleeps on the wall clock directly. It asks a ``Scheduler``
for delayed callbacks, so production code runs on event loop timers while
tests drive a ``ManualScheduler`` and advance virtual time explicitly.
"""

import asyncio
import heapq
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from .constants import DEFAULT_BASE_DELAY_SECONDS, DEFAULT_MAX_DELAY_SECONDS


def utc_now() -> datetime:
    """Default clock: timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def backoff_delay(
    retry_count: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> float:
    """Delay before the next attempt of an operation that failed ``retry_count`` times.

    The first retry waits ``base_delay``, each later one twice as long as the
    previous, capped at ``max_delay``.

    Examples:
        >>> [backoff_delay(n) for n in (1, 2, 3)]
        [1.0, 2.0, 4.0]
    """
    if retry_count < 1:
        return 0.0
    return float(min(base_delay * 2 ** (retry_count - 1), max_delay))


class TimerHandle(Protocol):
    """Handle returned by ``Scheduler.call_later``."""

    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Source of time and delayed callbacks."""

    def time(self) -> float:
        """Current scheduler time in seconds (monotonic)."""
        ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop if self._loop is not None else asyncio.get_running_loop()

    def time(self) -> float:
        return self._get_loop().time()

    def call_later(
        self, delay: float, callback: Callable[[], None]
    ) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(delay, 0.0), callback)


@dataclass(order=True)
class _ManualTimer:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-time scheduler; callbacks only fire inside ``advance``.

    Examples:
        >>> scheduler = ManualScheduler()
        >>> fired = []
        >>> _ = scheduler.call_later(2.0, lambda: fired.append("retry"))
        >>> scheduler.advance(1.0)
        0
        >>> scheduler.advance(1.0)
        1
        >>> fired
        ['retry']
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: list[_ManualTimer] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(delay, 0.0), next(self._seq), callback)
        heapq.heappush(self._timers, timer)
        return timer

    def advance(self, seconds: float) -> int:
        """Move virtual time forward, firing due callbacks in due-time order.

        Callbacks scheduled by fired callbacks also run when they fall inside
        the window.

        Returns:
            Number of callbacks fired
        """
        target = self._now + seconds
        fired = 0
        while self._timers and self._timers[0].due <= target:
            timer = heapq.heappop(self._timers)
            self._now = timer.due
            if timer.cancelled:
                continue
            timer.callback()
            fired += 1
        self._now = target
        return fired

    def pending_timers(self) -> list[float]:
        """Due times of timers that have not fired or been cancelled."""
        return sorted(t.due for t in self._timers if not t.cancelled)
