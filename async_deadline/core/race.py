"""
Race an operation against a deadline.

deadline() is a helper for asynchronous APIs that do not support timeouts natively.
It starts two child tasks, the operation and a sleep on the given clock, and there
are three possible outcomes:
 1. The operation finishes first: its result is returned (or its exception raised)
    and the sleep is cancelled.
 2. The sleep finishes first: DeadlineExceededError is raised and the operation is
    cancelled.
 3. The task awaiting deadline() is cancelled: both children are cancelled and the
    outcome is whatever the operation does with its cancellation. A CancelledError
    coming from the sleep is ignored.

The operation must support cooperative cancellation, i.e. await something that
raises asyncio.CancelledError when its task is cancelled. Otherwise deadline() waits
until the operation completes, making the deadline ineffective.

Example:
    clock = MonotonicClock()
    data = await deadline(clock.now() + timedelta(seconds=5), lambda: fetch(url))
"""

from __future__ import annotations

import asyncio
import logging
import warnings
from dataclasses import dataclass
from datetime import timedelta
from typing import (
    Any,
    Awaitable,
    Callable,
    Coroutine,
    Generic,
    Optional,
    TypeVar,
    Union,
    assert_never,
)

from async_deadline.core.clock import Instant, MonotonicClock
from async_deadline.errors.errors import DeadlineExceededError
from async_deadline.ports.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


# --- Outcomes ---


@dataclass(frozen=True)
class _Finished(Generic[T]):
    """The operation (or a failing clock) produced a final value or error."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass(frozen=True)
class _DeadlineReached:
    """The timer slept until the deadline."""


@dataclass(frozen=True)
class _TimerCancelled:
    """The timer was cancelled; not an error, keep waiting for the operation."""


_Outcome = Union[_Finished[T], _DeadlineReached, _TimerCancelled]


# --- Structured scope ---


class _RaceGroup:
    """
    Minimal structured task group.

    spawn() starts a child, next() returns children in the order they complete and
    aclose() cancels and awaits whatever is still running. Completion order is
    captured by done-callbacks, which run in the order tasks finish.
    """

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task[Any]] = []
        self._completed: asyncio.Queue[asyncio.Task[Any]] = asyncio.Queue()
        self._received = 0

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        task.add_done_callback(self._completed.put_nowait)
        self._tasks.append(task)
        return task

    async def next(self) -> Optional[asyncio.Task[Any]]:
        """Next completed child, or None once every child has been received."""
        if self._received == len(self._tasks):
            return None
        task = await self._completed.get()
        self._received += 1
        return task

    def cancel_all(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def aclose(self) -> None:
        self.cancel_all()
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.wait(pending)


async def _run_operation(operation: Callable[[], Awaitable[T]]) -> _Finished[T]:
    try:
        return _Finished(value=await operation())
    except (Exception, asyncio.CancelledError) as exc:
        return _Finished(error=exc)


async def _run_timer(
    clock: Clock, until: Instant, tolerance: Optional[timedelta]
) -> Union[_Finished[Any], _DeadlineReached, _TimerCancelled]:
    try:
        await clock.sleep_until(until, tolerance=tolerance)
    except asyncio.CancelledError:
        return _TimerCancelled()
    except Exception as exc:
        # The clock itself failed; surface its error rather than a timeout.
        return _Finished(error=exc)
    return _DeadlineReached()


def _outcome_of(task: asyncio.Task[Any], *, is_operation: bool) -> _Outcome[Any]:
    # A child cancelled before its first step never ran its body.
    if task.cancelled():
        if not is_operation:
            return _TimerCancelled()
        # Rarely reached: the operation child is scheduled first, so it almost always
        # runs before any cancel. Take the task's own CancelledError.
        try:
            task.result()
        except asyncio.CancelledError as exc:
            return _Finished(error=exc)
        raise AssertionError("cancelled task produced a result")
    outcome: _Outcome[Any] = task.result()
    return outcome


# --- Public API ---


async def deadline(
    until: Instant,
    operation: Callable[[], Awaitable[T]],
    *,
    tolerance: Optional[timedelta] = None,
    clock: Optional[Clock] = None,
) -> T:
    """
    Race operation against a deadline on clock.

    Args:
        until: Instant the operation must finish by; must come from clock
        operation: Zero-argument callable returning the awaitable to run. Must
            observe cooperative cancellation.
        tolerance: Leeway the clock may use when waking the timer
        clock: Clock to time the deadline on (default: MonotonicClock)

    Returns:
        The operation's result.

    Raises:
        DeadlineExceededError: If the deadline was reached first
        Exception: Whatever the operation raised, unchanged, including the error it
            raises in response to cancellation
    """
    if clock is None:
        clock = MonotonicClock()

    group = _RaceGroup()
    op_task = group.spawn(_run_operation(operation), name="deadline_operation")
    group.spawn(_run_timer(clock, until, tolerance), name="deadline_timer")
    logger.debug(f"[deadline] Racing operation against {until}")

    try:
        while True:
            try:
                task = await group.next()
            except asyncio.CancelledError:
                # Outer cancellation: hand it to both children and keep waiting, the
                # operation decides what cancellation means.
                logger.debug("[deadline] Cancelled from outside, propagating to children")
                group.cancel_all()
                continue

            if task is None:
                raise AssertionError("deadline(): both children finished without an outcome")

            outcome = _outcome_of(task, is_operation=task is op_task)
            if isinstance(outcome, _Finished):
                return outcome.unwrap()
            elif isinstance(outcome, _DeadlineReached):
                logger.warning(f"[deadline] Deadline exceeded at {until}")
                raise DeadlineExceededError()
            elif isinstance(outcome, _TimerCancelled):
                continue
            else:
                assert_never(outcome)
    finally:
        await group.aclose()
        logger.debug("[deadline] Race torn down")


async def with_deadline(
    until: Instant,
    operation: Callable[[], Awaitable[T]],
    *,
    tolerance: Optional[timedelta] = None,
    clock: Optional[Clock] = None,
) -> T:
    """
    DEPRECATED: Use deadline() instead.
    """
    warnings.warn(
        "with_deadline() is deprecated, use deadline()",
        DeprecationWarning,
        stacklevel=2,
    )
    return await deadline(until, operation, tolerance=tolerance, clock=clock)
