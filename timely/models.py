from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Sequence


@dataclass(frozen=True, slots=True)
class PauseInterval:
    paused_at: datetime
    resumed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class Session:
    """One tracked work interval with its pause/resume history.

    ``intervals`` holds (pause, resume) pairs in order. Only the last pair may
    lack a resume, either because the session is currently paused or because
    it was ended while paused.
    """

    id: str
    start: datetime
    intervals: tuple[PauseInterval, ...] = ()
    end: datetime | None = None
    total_seconds: int = 0

    def __post_init__(self) -> None:
        if self.start.tzinfo is None:
            raise ValueError("Session start must be timezone-aware")
        if self.total_seconds < 0:
            raise ValueError("total_seconds must not be negative")

        marks = [self.start]
        last_index = len(self.intervals) - 1
        for index, interval in enumerate(self.intervals):
            marks.append(interval.paused_at)
            if interval.resumed_at is not None:
                marks.append(interval.resumed_at)
            elif index != last_index:
                raise ValueError("Only the last pause of a session may be unresumed")
        if self.end is not None:
            marks.append(self.end)

        if any(later < earlier for earlier, later in zip(marks, marks[1:])):
            raise ValueError(f"Session {self.id} timestamps are out of order")

    @classmethod
    def begin(cls, started_at: datetime) -> Session:
        return cls(id=str(uuid.uuid4()), start=started_at)

    @classmethod
    def from_timestamps(
        cls,
        session_id: str,
        start: datetime,
        pauses: Sequence[datetime],
        resumes: Sequence[datetime],
        end: datetime | None,
        total_seconds: int,
    ) -> Session:
        """Build a session from the flat pauses/resumes lists used for storage."""
        if not 0 <= len(pauses) - len(resumes) <= 1:
            raise ValueError(
                f"Session {session_id} has {len(pauses)} pauses and {len(resumes)} resumes"
            )

        intervals = tuple(
            PauseInterval(paused_at, resumes[i] if i < len(resumes) else None)
            for i, paused_at in enumerate(pauses)
        )
        return cls(
            id=session_id,
            start=start,
            intervals=intervals,
            end=end,
            total_seconds=total_seconds,
        )

    @property
    def pauses(self) -> tuple[datetime, ...]:
        return tuple(interval.paused_at for interval in self.intervals)

    @property
    def resumes(self) -> tuple[datetime, ...]:
        return tuple(interval.resumed_at for interval in self.intervals if interval.resumed_at is not None)

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def is_paused(self) -> bool:
        return self.is_open and bool(self.intervals) and self.intervals[-1].resumed_at is None

    @property
    def last_mark(self) -> datetime:
        """Latest timestamp recorded on the session."""
        if self.end is not None:
            return self.end
        if self.intervals:
            last = self.intervals[-1]
            return last.resumed_at or last.paused_at
        return self.start

    def running_seconds(self, at: datetime) -> int:
        """Seconds spent running between ``start`` and ``at``; paused time never counts.

        An unresumed pause is treated as lasting until ``at``.
        """
        running = at - self.start
        for interval in self.intervals:
            resumed = interval.resumed_at or at
            running -= resumed - interval.paused_at
        return max(0, int(running.total_seconds()))

    def paused(self, at: datetime) -> Session:
        return replace(self, intervals=self.intervals + (PauseInterval(at),))

    def resumed(self, at: datetime) -> Session:
        last = self.intervals[-1]
        return replace(self, intervals=self.intervals[:-1] + (PauseInterval(last.paused_at, at),))

    def finalized(self, at: datetime) -> Session:
        return replace(self, end=at, total_seconds=self.running_seconds(at))


@dataclass(frozen=True, slots=True)
class TimerState:
    is_running: bool = False
    is_paused: bool = False
    current_session_id: str | None = None
    elapsed_seconds: int = 0


class TimerEventKind(Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class TimerEvent:
    """Emitted by every successful timer transition for external notifiers."""

    kind: TimerEventKind
    session: Session
    at: datetime


@dataclass(frozen=True, slots=True)
class DailySummary:
    date: date
    total_seconds: int
    session_count: int


@dataclass(frozen=True, slots=True)
class WeeklySummary:
    week_start: date
    week_end: date
    total_seconds: int
    total_hours: float
    regular_hours: float
    overtime_hours: float
    session_count: int


@dataclass(frozen=True, slots=True)
class MonthlySummary:
    year: int
    month: int
    total_seconds: int
    regular_hours: float
    overtime_hours: float
    session_count: int
    longest_session_seconds: int
    daily_breakdown: tuple[DailySummary, ...] = ()
    weekly_breakdown: tuple[WeeklySummary, ...] = ()
