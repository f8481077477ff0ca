"""Pure time-accounting functions over finalized sessions.

Every session is attributed, whole, to the local calendar day of its start.
Durations are summed in integer seconds; hours appear only in the final
summary values.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import MAXYEAR, MINYEAR, date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, Sequence

from .errors import InvalidPeriod
from .models import DailySummary, MonthlySummary, Session, WeeklySummary

SECONDS_PER_HOUR = 3600
DEFAULT_THRESHOLD_HOURS = 40
WEEK_LENGTH_DAYS = 7


def local_date(ts: datetime, tz: tzinfo) -> date:
    return ts.astimezone(tz).date()


def validate_period(year: int, month: int) -> None:
    # The first day of the following month must be representable.
    if not 1 <= month <= 12 or not MINYEAR <= year < MAXYEAR:
        raise InvalidPeriod(year, month)


def month_bounds(year: int, month: int, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return the UTC instants of local midnight on the 1st of the month and of the next month."""
    validate_period(year, month)
    first = date(year, month, 1)
    following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    start = datetime.combine(first, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(following, time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, end


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, end


def split_overtime(total_seconds: int, threshold_hours: int = DEFAULT_THRESHOLD_HOURS) -> tuple[int, int]:
    """Split a week's seconds into (regular, overtime) at the weekly threshold."""
    threshold_seconds = threshold_hours * SECONDS_PER_HOUR
    regular = min(total_seconds, threshold_seconds)
    return regular, total_seconds - regular


def _in_month(day: date, year: int, month: int) -> bool:
    return day.year == year and day.month == month


def _finalized_sorted(sessions: Iterable[Session]) -> list[Session]:
    closed = [session for session in sessions if not session.is_open]
    closed.sort(key=lambda session: (session.start, session.id))
    return closed


def daily_breakdown(sessions: Iterable[Session], tz: tzinfo) -> tuple[DailySummary, ...]:
    """Group sessions by the local date of their start; days without sessions are omitted."""
    seconds_by_day: dict[date, int] = defaultdict(int)
    count_by_day: dict[date, int] = defaultdict(int)

    for session in _finalized_sorted(sessions):
        day = local_date(session.start, tz)
        seconds_by_day[day] += session.total_seconds
        count_by_day[day] += 1

    return tuple(
        DailySummary(date=day, total_seconds=seconds_by_day[day], session_count=count_by_day[day])
        for day in sorted(seconds_by_day)
    )


def daily_summary(sessions: Iterable[Session], day: date, tz: tzinfo) -> DailySummary:
    for summary in daily_breakdown(sessions, tz):
        if summary.date == day:
            return summary
    return DailySummary(date=day, total_seconds=0, session_count=0)


def _weekly_summary(
    week_start: date,
    total_seconds: int,
    session_count: int,
    threshold_hours: int,
) -> WeeklySummary:
    regular, overtime = split_overtime(total_seconds, threshold_hours)
    return WeeklySummary(
        week_start=week_start,
        week_end=week_start + timedelta(days=WEEK_LENGTH_DAYS - 1),
        total_seconds=total_seconds,
        total_hours=total_seconds / SECONDS_PER_HOUR,
        regular_hours=regular / SECONDS_PER_HOUR,
        overtime_hours=overtime / SECONDS_PER_HOUR,
        session_count=session_count,
    )


def weekly_breakdown(
    daily: Sequence[DailySummary],
    threshold_hours: int = DEFAULT_THRESHOLD_HOURS,
) -> tuple[WeeklySummary, ...]:
    """Group daily totals into contiguous 7-day spans anchored at the first day.

    Spans are ``anchor + 7k .. anchor + 7k + 6``; spans without sessions are
    omitted. The overtime threshold applies to each span on its own.
    """
    if not daily:
        return ()

    ordered = sorted(daily, key=lambda summary: summary.date)
    anchor = ordered[0].date

    seconds_by_week: dict[date, int] = defaultdict(int)
    count_by_week: dict[date, int] = defaultdict(int)
    for summary in ordered:
        offset = (summary.date - anchor).days // WEEK_LENGTH_DAYS
        week_start = anchor + timedelta(days=offset * WEEK_LENGTH_DAYS)
        seconds_by_week[week_start] += summary.total_seconds
        count_by_week[week_start] += summary.session_count

    return tuple(
        _weekly_summary(week_start, seconds_by_week[week_start], count_by_week[week_start], threshold_hours)
        for week_start in sorted(seconds_by_week)
    )


def monthly_summary(
    sessions: Iterable[Session],
    year: int,
    month: int,
    tz: tzinfo,
    threshold_hours: int = DEFAULT_THRESHOLD_HOURS,
) -> MonthlySummary:
    """Summarize the finalized sessions whose local start date falls in ``year``-``month``.

    Weeks are anchored at the first day with a session in the month, so a week
    that runs past the month end belongs to the month it starts in and only
    counts that month's sessions.
    """
    validate_period(year, month)

    in_month = [
        session
        for session in _finalized_sorted(sessions)
        if _in_month(local_date(session.start, tz), year, month)
    ]

    daily = daily_breakdown(in_month, tz)
    weekly = weekly_breakdown(daily, threshold_hours)

    regular_seconds = 0
    overtime_seconds = 0
    for week in weekly:
        regular, overtime = split_overtime(week.total_seconds, threshold_hours)
        regular_seconds += regular
        overtime_seconds += overtime

    return MonthlySummary(
        year=year,
        month=month,
        total_seconds=sum(session.total_seconds for session in in_month),
        regular_hours=regular_seconds / SECONDS_PER_HOUR,
        overtime_hours=overtime_seconds / SECONDS_PER_HOUR,
        session_count=len(in_month),
        longest_session_seconds=max((session.total_seconds for session in in_month), default=0),
        daily_breakdown=daily,
        weekly_breakdown=weekly,
    )
