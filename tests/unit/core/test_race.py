"""
Unit tests for deadline().
"""

import asyncio
from datetime import timedelta
from typing import Optional

import pytest

from async_deadline.core.clock import Instant, MonotonicClock
from async_deadline.core.race import (
    _DeadlineReached,
    _Finished,
    _outcome_of,
    _RaceGroup,
    _TimerCancelled,
    deadline,
    with_deadline,
)
from async_deadline.errors.errors import DeadlineExceededError
from async_deadline.testing.virtual_clock import VirtualClock


class CustomError(Exception):
    """Error an operation raises in place of CancelledError."""


def at(ms: int) -> Instant:
    return Instant(timedelta(milliseconds=ms))


async def settle(passes: int = 20) -> None:
    for _ in range(passes):
        await asyncio.sleep(0)


class FailingClock:
    """Clock whose sleep fails for reasons other than cancellation."""

    def now(self) -> Instant:
        return Instant()

    @property
    def minimum_resolution(self) -> timedelta:
        return timedelta(0)

    async def sleep_until(self, deadline: Instant, tolerance: Optional[timedelta] = None) -> None:
        raise CustomError()


class TestDeadlineOutcomes:
    """Tests for the three race outcomes on a virtual clock."""

    @pytest.fixture
    def clock(self) -> VirtualClock:
        return VirtualClock()

    @pytest.mark.asyncio
    async def test_operation_in_time(self, clock: VirtualClock) -> None:
        """Operation finishing before the deadline returns its value."""

        async def operation() -> str:
            await clock.sleep_until(at(100))
            return "done"

        task = asyncio.create_task(deadline(at(200), operation, clock=clock))
        await clock.advance_by(timedelta(milliseconds=200))

        assert await task == "done"
        assert clock.pending_suspensions == 0
        assert clock.now() == at(200)

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, clock: VirtualClock) -> None:
        """Deadline reached first raises DeadlineExceededError and cancels the operation."""
        cancelled = []

        async def operation() -> str:
            try:
                await clock.sleep_until(at(200))
            except asyncio.CancelledError:
                cancelled.append(clock.now())
                raise
            return "late"

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        await clock.advance_by(timedelta(milliseconds=200))

        with pytest.raises(DeadlineExceededError):
            await task
        assert cancelled == [at(100)]
        assert clock.pending_suspensions == 0

    @pytest.mark.asyncio
    async def test_deadline_exceeded_discards_operation_error(self, clock: VirtualClock) -> None:
        """The error an operation raises on cancellation does not replace the timeout."""

        async def operation() -> None:
            try:
                await clock.sleep_until(at(200))
            except asyncio.CancelledError:
                raise CustomError()

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        await clock.advance_by(timedelta(milliseconds=200))

        with pytest.raises(DeadlineExceededError):
            await task

    @pytest.mark.asyncio
    async def test_operation_error_passes_through(self, clock: VirtualClock) -> None:
        """An operation's own error is raised unchanged."""
        error = ValueError("boom")

        async def operation() -> None:
            raise error

        with pytest.raises(ValueError) as exc_info:
            await deadline(at(100), operation, clock=clock)

        assert exc_info.value is error
        assert clock.pending_suspensions == 0

    @pytest.mark.asyncio
    async def test_immediate_result_needs_no_advance(self, clock: VirtualClock) -> None:
        """An operation that never sleeps resolves without touching the clock."""

        async def operation() -> int:
            return 7

        assert await deadline(at(100), operation, clock=clock) == 7
        assert clock.now() == Instant()

    @pytest.mark.asyncio
    async def test_run_drives_race_to_completion(self, clock: VirtualClock) -> None:
        """VirtualClock.run() resolves a race without explicit advances."""

        async def operation() -> str:
            await clock.sleep_until(at(100))
            return "done"

        task = asyncio.create_task(deadline(at(200), operation, clock=clock))
        await clock.run()

        assert await task == "done"
        assert clock.now() == at(100)


class TestDeadlineCancellation:
    """Tests for cancellation of the task awaiting deadline()."""

    @pytest.fixture
    def clock(self) -> VirtualClock:
        return VirtualClock()

    @pytest.mark.asyncio
    async def test_cancellation_returns_operation_error(self, clock: VirtualClock) -> None:
        """Outer cancellation surfaces the operation's error, not a timeout."""

        async def operation() -> None:
            try:
                await clock.sleep_until(at(200))
            except asyncio.CancelledError:
                raise CustomError()

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        await clock.advance_by(timedelta(milliseconds=50))
        task.cancel()

        with pytest.raises(CustomError):
            await task
        assert clock.pending_suspensions == 0

    @pytest.mark.asyncio
    async def test_early_cancellation(self, clock: VirtualClock) -> None:
        """Cancelling before any advance still yields the operation's error."""

        async def operation() -> None:
            try:
                await clock.sleep_until(at(200))
            except asyncio.CancelledError:
                raise CustomError()

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        await settle()
        assert clock.pending_suspensions == 2

        task.cancel()

        with pytest.raises(CustomError):
            await task
        assert clock.now() == Instant()

    @pytest.mark.asyncio
    async def test_cancellation_reraised_when_operation_does_not_convert(
        self, clock: VirtualClock
    ) -> None:
        """An operation that lets CancelledError through leaves the task cancelled."""

        async def operation() -> None:
            await clock.sleep_until(at(200))

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        await settle()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_operation_may_absorb_cancellation(self, clock: VirtualClock) -> None:
        """Whatever the operation returns on cancellation is returned verbatim."""

        async def operation() -> str:
            try:
                await clock.sleep_until(at(200))
            except asyncio.CancelledError:
                return "fallback"
            return "late"

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        await settle()
        task.cancel()

        assert await task == "fallback"

    @pytest.mark.asyncio
    async def test_cleanup_sleep_after_cancellation(self, clock: VirtualClock) -> None:
        """An operation may sleep on the clock while handling its cancellation."""
        never = asyncio.Event()

        async def operation() -> None:
            try:
                await never.wait()
            except asyncio.CancelledError:
                await clock.sleep_for(timedelta(milliseconds=1))
                raise CustomError()

        task = asyncio.create_task(deadline(at(5000), operation, clock=clock))
        await settle()
        task.cancel()
        await clock.advance_by(timedelta(milliseconds=1))

        with pytest.raises(CustomError):
            await task
        assert clock.pending_suspensions == 0

    @pytest.mark.asyncio
    async def test_caller_sleeps_after_absorbed_cancellation(self, clock: VirtualClock) -> None:
        """Once the race has handled a cancellation, later sleeps in the caller still work."""

        async def operation() -> str:
            try:
                await clock.sleep_until(at(200))
            except asyncio.CancelledError:
                return "fallback"
            return "late"

        async def caller() -> str:
            result = await deadline(at(100), operation, clock=clock)
            await clock.sleep_for(timedelta(milliseconds=10))
            return result

        task = asyncio.create_task(caller())
        await settle()
        task.cancel()
        await clock.advance_by(timedelta(milliseconds=10))

        assert await task == "fallback"
        assert clock.pending_suspensions == 0

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, clock: VirtualClock) -> None:
        """A race cancelled before its first step never runs and ends cancelled."""
        started = []

        async def operation() -> None:
            started.append(True)

        task = asyncio.create_task(deadline(at(100), operation, clock=clock))
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert started == []
        assert clock.pending_suspensions == 0


class TestDeadlineClocks:
    """Tests for the clock the timer runs on."""

    @pytest.mark.asyncio
    async def test_failing_clock_error_surfaces(self) -> None:
        """A clock that fails to sleep surfaces its error instead of a timeout."""
        virtual = VirtualClock()

        async def operation() -> None:
            await virtual.sleep_until(at(100))

        with pytest.raises(CustomError):
            await deadline(at(200), operation, clock=FailingClock())
        assert virtual.pending_suspensions == 0

    @pytest.mark.asyncio
    async def test_default_clock_in_time(self) -> None:
        """Without a clock argument the race runs on real monotonic time."""
        until = MonotonicClock().now() + timedelta(seconds=5)

        assert await deadline(until, lambda: asyncio.sleep(0, result=42)) == 42

    @pytest.mark.asyncio
    async def test_default_clock_exceeded(self) -> None:
        """A short real deadline cancels a slow operation."""
        until = MonotonicClock().now() + timedelta(milliseconds=20)

        with pytest.raises(DeadlineExceededError):
            await deadline(until, lambda: asyncio.sleep(5))

    @pytest.mark.asyncio
    async def test_past_deadline_on_real_clock(self) -> None:
        """A deadline already in the past times out a pending operation."""
        clock = MonotonicClock()
        until = clock.now() - timedelta(seconds=1)

        with pytest.raises(DeadlineExceededError):
            await deadline(until, lambda: asyncio.sleep(5), clock=clock)


class TestWithDeadline:
    """Tests for the deprecated alias."""

    @pytest.mark.asyncio
    async def test_warns_and_forwards(self) -> None:
        clock = VirtualClock()

        async def operation() -> str:
            return "ok"

        with pytest.warns(DeprecationWarning, match="use deadline"):
            result = await with_deadline(at(100), operation, clock=clock)

        assert result == "ok"


class TestRaceGroup:
    """Tests for the internal task group and outcome mapping."""

    @pytest.mark.asyncio
    async def test_next_returns_children_in_completion_order(self) -> None:
        group = _RaceGroup()
        release = asyncio.Event()

        async def slow() -> str:
            await release.wait()
            return "slow"

        async def fast() -> str:
            return "fast"

        slow_task = group.spawn(slow(), name="slow")
        fast_task = group.spawn(fast(), name="fast")

        assert await group.next() is fast_task
        release.set()
        assert await group.next() is slow_task
        assert await group.next() is None

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_children(self) -> None:
        group = _RaceGroup()
        task = group.spawn(asyncio.sleep(10), name="sleeper")

        await group.aclose()

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_outcome_of_cancelled_children(self) -> None:
        group = _RaceGroup()
        op_task = group.spawn(asyncio.sleep(10), name="operation")
        timer_task = group.spawn(asyncio.sleep(10), name="timer")
        await group.aclose()

        op_outcome = _outcome_of(op_task, is_operation=True)
        assert isinstance(op_outcome, _Finished)
        assert isinstance(op_outcome.error, asyncio.CancelledError)
        assert isinstance(_outcome_of(timer_task, is_operation=False), _TimerCancelled)

    @pytest.mark.asyncio
    async def test_outcome_of_finished_child(self) -> None:
        async def reached() -> _DeadlineReached:
            return _DeadlineReached()

        task = asyncio.create_task(reached())
        await task

        assert isinstance(_outcome_of(task, is_operation=False), _DeadlineReached)
