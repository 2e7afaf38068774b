"""
Deadlines for asynchronous operations.

This package races asyncio operations that have no native timeout support against
a deadline, and provides a virtual clock to test such code without waiting on real
time.

Components:
- deadline: Race an operation against an Instant on a Clock
- Clock / Instant: Time source interface; durations are datetime.timedelta
- MonotonicClock: Production clock backed by time.monotonic()
- VirtualClock: Manually advanced clock with a watchdog-guarded run() for tests

Usage:
    from datetime import timedelta
    from async_deadline import MonotonicClock, deadline

    clock = MonotonicClock()
    body = await deadline(clock.now() + timedelta(seconds=5), lambda: fetch(url))
"""

from async_deadline.config.configs import (
    MonotonicClockConfig,
    VirtualClockConfig,
    load_virtual_clock_config,
)
from async_deadline.core.clock import Clock, Instant, MonotonicClock, parse_duration
from async_deadline.core.race import deadline, with_deadline
from async_deadline.errors.errors import (
    ClockError,
    ConfigurationError,
    DeadlineError,
    DeadlineExceededError,
    RunTimeoutError,
    SuspensionError,
)
from async_deadline.testing.virtual_clock import Suspension, VirtualClock

__all__ = [
    # Main entry point
    "deadline",
    "with_deadline",
    # Clocks
    "Clock",
    "Instant",
    "MonotonicClock",
    "VirtualClock",
    "Suspension",
    "parse_duration",
    # Config
    "VirtualClockConfig",
    "MonotonicClockConfig",
    "load_virtual_clock_config",
    # Errors
    "DeadlineError",
    "DeadlineExceededError",
    "ClockError",
    "SuspensionError",
    "RunTimeoutError",
    "ConfigurationError",
]
