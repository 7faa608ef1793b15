"""Injectable time source.

All time-based logic (staleness decisions, retry backoff, vendor cooldowns,
job time budgets) reads the current instant and suspends through a Clock, so
that tests can run the whole sync engine without waiting on real time.

``ManualClock`` is the test seam: its ``sleep`` records the requested
duration and returns immediately without elapsing anything.  Only
``SystemClock`` actually delays.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current instant (epoch ms) and of suspension."""

    @abstractmethod
    def now(self) -> int:
        """Return the current instant in epoch milliseconds."""

    @abstractmethod
    async def sleep(self, ms: float) -> None:
        """Suspend the current task for ``ms`` milliseconds."""


class SystemClock(Clock):
    """Wall clock.  ``sleep`` really waits."""

    def now(self) -> int:
        return time.time_ns() // 1_000_000

    async def sleep(self, ms: float) -> None:
        await asyncio.sleep(max(ms, 0) / 1000.0)


class ManualClock(Clock):
    """Deterministic clock for tests.

    Time only moves when told to: via ``set_now`` / ``advance``, or, when
    constructed with ``advance_on_sleep=True``, by the durations passed to
    ``sleep``.  Every ``sleep`` call is recorded in ``sleep_calls``.

    Usage::

        clock = ManualClock(1_000_000_000)
        await clock.sleep(500)
        assert clock.sleep_calls == [500]
        assert clock.now() == 1_000_000_000
    """

    def __init__(self, now: int | None = None, advance_on_sleep: bool = False) -> None:
        self._now = now if now is not None else time.time_ns() // 1_000_000
        self._advance_on_sleep = advance_on_sleep
        self.sleep_calls: list[float] = []

    def now(self) -> int:
        return self._now

    def set_now(self, now: int) -> None:
        self._now = now

    def advance(self, ms: int) -> None:
        self._now += ms

    async def sleep(self, ms: float) -> None:
        self.sleep_calls.append(ms)
        if self._advance_on_sleep:
            self._now += int(ms)
