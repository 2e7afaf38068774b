"""Clock Port Interface.

Contract: Provides the current instant of a clock and a cancellable sleep on it.
Anything satisfying this protocol can time a deadline() race; the Clock ABC in
async_deadline.core.clock is the nominal version of the same contract.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from async_deadline.core.clock import Instant


@runtime_checkable
class Clock(Protocol):
    def now(self) -> Instant:
        """Return the current instant. Monotonic non-decreasing."""
        ...

    @property
    def minimum_resolution(self) -> timedelta: ...

    async def sleep_until(self, deadline: Instant, tolerance: Optional[timedelta] = None) -> None:
        """Suspend until deadline; raise asyncio.CancelledError if cancelled first."""
        ...
