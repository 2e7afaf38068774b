"""
now() provides the canonical notion of time for a deadline. sleep_until() and sleep_for()
provide a way to pause until an instant. This module is used by
 - deadline() (race.py), whose timer child sleeps on the caller's clock until the deadline
 - VirtualClock (testing), which implements the same interface on simulated time
 - callers computing a deadline: clock.now() + timedelta(seconds=5)

Durations are plain datetime.timedelta values. Instants wrap a timedelta offset from
the clock's own origin, so two instants only compare meaningfully if they come from the
same clock.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Final, Optional, Union, overload

from async_deadline.errors.errors import ClockError

if TYPE_CHECKING:
    from async_deadline.config.configs import MonotonicClockConfig


# -------- Utilities (duration parsing) ---------------------------------------

_TIME_UNITS_MS: Final[dict[str, int]] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}


def parse_duration(text: str) -> timedelta:
    """
    Parse duration strings like '500ms', '3s', '1m', '1h', '1d' into a timedelta.
    Raises ValueError on unknown units, empty quantities, non-digits, or non-positive values.

    Decimals (e.g., 1.5s) are not supported; write '1500ms' instead.
    """
    text = text.strip().lower()

    # "ms" must be tried before "m" and "s"
    for unit in ("ms", "s", "m", "h", "d"):
        if text.endswith(unit):
            prefix = text[: -len(unit)].strip()
            if not prefix or not prefix.isdigit():
                raise ValueError(f"parse_duration(): quantity missing or not digit: {text!r}")
            quantity = int(prefix)
            if quantity <= 0:
                raise ValueError(f"parse_duration(): quantity must be positive: {text!r}")
            return timedelta(milliseconds=quantity * _TIME_UNITS_MS[unit])
    raise ValueError(f"parse_duration(): invalid duration: {text!r}")


# -------- Instant --------------------------------------------------------------


@dataclass(frozen=True, order=True)
class Instant:
    """
    A point in time, expressed as an offset from a clock's origin.

    Ordered by offset. Adding a timedelta gives a new Instant; subtracting two
    instants gives the timedelta between them.
    """

    offset: timedelta = field(default_factory=timedelta)

    def advanced(self, by: timedelta) -> Instant:
        return Instant(offset=self.offset + by)

    def duration_to(self, other: Instant) -> timedelta:
        """Elapsed time from self to other (negative if other lies in the past)."""
        return other.offset - self.offset

    def __add__(self, other: timedelta) -> Instant:
        if not isinstance(other, timedelta):
            return NotImplemented
        return self.advanced(other)

    @overload
    def __sub__(self, other: Instant) -> timedelta: ...

    @overload
    def __sub__(self, other: timedelta) -> Instant: ...

    def __sub__(self, other: Union[Instant, timedelta]) -> Union[Instant, timedelta]:
        if isinstance(other, Instant):
            return other.duration_to(self)
        if isinstance(other, timedelta):
            return self.advanced(-other)
        return NotImplemented


# -------- Interface -----------------------------------------------------------


class Clock(ABC):
    """
    Time source interface used by deadline().

    Implementations must be monotonic non-decreasing and must raise
    asyncio.CancelledError from sleep_until() when the sleeping task is cancelled.
    """

    @abstractmethod
    def now(self) -> Instant:
        """Current instant on this clock."""
        raise NotImplementedError

    @property
    @abstractmethod
    def minimum_resolution(self) -> timedelta:
        """Smallest distinguishable difference between two instants."""
        raise NotImplementedError

    @abstractmethod
    async def sleep_until(self, deadline: Instant, tolerance: Optional[timedelta] = None) -> None:
        """
        Block (await) until the clock reaches deadline.

        MonotonicClock: actually sleeps.
        VirtualClock: registers a suspension that fires when the clock is advanced.
        """
        raise NotImplementedError

    async def sleep_for(self, duration: timedelta, tolerance: Optional[timedelta] = None) -> None:
        """Convenience helper: sleep for a relative duration."""
        await self.sleep_until(self.now() + duration, tolerance=tolerance)


# -------- MonotonicClock ------------------------------------------------------


@dataclass
class MonotonicClock(Clock):
    """
    Production clock backed by time.monotonic().

    The origin is the monotonic counter's own (unspecified) epoch, so instants from
    different MonotonicClock objects are interchangeable. Not affected by NTP or
    manual changes of the OS clock.

    param sleep_chunk: longest single asyncio.sleep() slice; the clock re-reads
    now() between slices so a long sleep does not drift past its deadline.
    """

    sleep_chunk: timedelta = timedelta(milliseconds=500)

    def __post_init__(self) -> None:
        if self.sleep_chunk <= timedelta(0):
            raise ClockError(
                f"MonotonicClock: sleep_chunk must be positive: {self.sleep_chunk}",
                component="MonotonicClock",
            )
        self.sleep_chunk = max(timedelta(milliseconds=5), self.sleep_chunk)

    @classmethod
    def from_config(cls, config: MonotonicClockConfig) -> MonotonicClock:
        return cls(sleep_chunk=config.sleep_chunk)

    @property
    def minimum_resolution(self) -> timedelta:
        resolution = time.get_clock_info("monotonic").resolution
        return timedelta(seconds=resolution)

    def now(self) -> Instant:
        return Instant(offset=timedelta(seconds=time.monotonic()))

    async def sleep_until(self, deadline: Instant, tolerance: Optional[timedelta] = None) -> None:
        """
        Sleep in chunks up to deadline. tolerance is accepted for interface
        compatibility; asyncio timers have no leeway parameter, so it is ignored.
        """
        while True:
            remaining = self.now().duration_to(deadline)
            if remaining <= timedelta(0):
                return
            chunk = min(remaining, self.sleep_chunk)
            await asyncio.sleep(chunk.total_seconds())
