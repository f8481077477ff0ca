from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Session


class TimelyError(Exception):
    """Base class for errors raised by the timer and report layers."""


class StateError(TimelyError):
    """A timer transition was requested from a state that does not allow it."""

    default_message = "invalid timer state"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class AlreadyActive(StateError):
    default_message = "timer already running"


class NotRunning(StateError):
    default_message = "timer is not running"


class NotPaused(StateError):
    default_message = "timer is not paused"


class NotActive(StateError):
    default_message = "no active session"


class InvalidPeriod(TimelyError, ValueError):
    def __init__(self, year: int, month: int) -> None:
        if 1 <= month <= 12:
            reason = f"year {year} is out of range"
        else:
            reason = f"month {month} must be between 1 and 12"
        super().__init__(f"Invalid reporting period: {reason}")
        self.year = year
        self.month = month


class StorageError(TimelyError):
    """Session repository failure.

    When raised from ``Timer.end()`` the finalized session is attached so the
    caller can retry the save.
    """

    def __init__(self, message: str, session: Session | None = None) -> None:
        super().__init__(message)
        self.session = session
