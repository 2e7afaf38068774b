"""
Custom exceptions for deadlines and clocks.

Exception hierarchy:
- DeadlineError (base)
  - DeadlineExceededError: the deadline was reached before the operation finished
  - ClockError: a clock operation would violate its invariants
  - SuspensionError: sleeps are still registered on a virtual clock
  - RunTimeoutError: VirtualClock.run() exhausted its real-time budget
  - ConfigurationError: invalid configuration
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional


class DeadlineError(Exception):
    """
    Base exception for all deadline and clock errors.

    component names the clock or helper that raised (e.g. "VirtualClock"); details
    holds structured context such as pending suspension counts. Both show up in
    str() as "[component] message (key=value, ...)".
    """

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        text = super().__str__()
        if self.component:
            text = f"[{self.component}] {text}"
        if self.details:
            context = ", ".join(f"{key}={value}" for key, value in self.details.items())
            text = f"{text} ({context})"
        return text


class DeadlineExceededError(DeadlineError):
    """
    Raised by deadline() when the deadline passed before the operation completed.

    Carries no payload: callers should match on the type, not on the message.
    """

    def __init__(self) -> None:
        super().__init__("deadline exceeded")


class ClockError(DeadlineError):
    """Raised when a clock operation would violate its invariants (e.g., going backward)."""


class SuspensionError(DeadlineError):
    """Raised when a virtual clock still has sleeps suspending."""

    def __init__(
        self,
        message: str,
        *,
        pending: int = 0,
        deadlines: Optional[list[Any]] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.pending = pending
        self.deadlines = deadlines or []
        details = details or {}
        details["pending"] = pending
        super().__init__(message, component=component, details=details)


class RunTimeoutError(DeadlineError):
    """Raised when VirtualClock.run() hits its watchdog before all sleeps finished."""

    def __init__(
        self,
        message: str,
        *,
        timeout: Optional[timedelta] = None,
        pending: int = 0,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.timeout = timeout
        self.pending = pending
        details = details or {}
        if timeout is not None:
            details["timeout_s"] = timeout.total_seconds()
        details["pending"] = pending
        super().__init__(message, component=component, details=details)


class ConfigurationError(DeadlineError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)
