from __future__ import annotations

import calendar
import logging
from datetime import date, tzinfo
from typing import Protocol

import discord
from discord.ext import commands

from .aggregator import DEFAULT_THRESHOLD_HOURS, daily_summary, day_bounds, monthly_summary
from .db import SessionRepository
from .models import DailySummary, MonthlySummary, TimerEvent, TimerEventKind, TimerState

MESSAGE_LIMIT = 2000


def format_seconds(total_seconds: int) -> str:
    """Render a duration as HH:MM:SS for consistent report output."""
    safe_seconds = max(0, int(total_seconds))
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02}:{minutes:02}:{seconds:02}"


def format_duration(total_seconds: int) -> str:
    hours, remainder = divmod(max(0, int(total_seconds)), 3600)
    return f"{hours}h {remainder // 60}m"


def format_hours(hours: float) -> str:
    return f"{hours:.1f}h"


def describe_state(state: TimerState) -> str:
    if not state.is_running:
        return "Timer is idle."
    label = "Paused" if state.is_paused else "Running"
    return f"{label}: `{format_seconds(state.elapsed_seconds)}` (session `{state.current_session_id}`)"


def describe_event(event: TimerEvent, tz: tzinfo) -> str:
    local_time = event.at.astimezone(tz).strftime("%H:%M")
    if event.kind is TimerEventKind.STARTED:
        return f"Work session started at {local_time}."
    if event.kind is TimerEventKind.PAUSED:
        return f"Work session paused at {local_time}."
    if event.kind is TimerEventKind.RESUMED:
        return f"Work session resumed at {local_time}."
    return (
        f"Work session ended at {local_time}. "
        f"Tracked `{format_seconds(event.session.total_seconds)}`."
    )


def build_daily_report_content(summary: DailySummary) -> str:
    header = f"**Daily Work Report - {summary.date.isoformat()}**"
    if summary.session_count == 0:
        return f"{header}\nNo tracked work for {summary.date.isoformat()}."

    return (
        f"{header}\n"
        f"Sessions: {summary.session_count}\n"
        f"Total: `{format_seconds(summary.total_seconds)}`"
    )


def build_monthly_report_content(summary: MonthlySummary) -> str:
    period = f"{calendar.month_name[summary.month]} {summary.year}"
    header = f"**Monthly Work Report - {period}**"
    if summary.session_count == 0:
        return f"{header}\nNo tracked work for {period}."

    lines = [
        header,
        f"Sessions: {summary.session_count}",
        f"Total time: {format_duration(summary.total_seconds)}",
        f"Regular: {format_hours(summary.regular_hours)} | Overtime: {format_hours(summary.overtime_hours)}",
        f"Longest session: {format_duration(summary.longest_session_seconds)}",
        "",
        "Weeks:",
    ]
    lines.extend(
        f"- {week.week_start.isoformat()} to {week.week_end.isoformat()}: "
        f"{format_hours(week.total_hours)} "
        f"({format_hours(week.regular_hours)} regular, {format_hours(week.overtime_hours)} overtime)"
        for week in summary.weekly_breakdown
    )
    lines.append("")
    lines.append("Days:")
    lines.extend(
        f"- {day.date.isoformat()}: `{format_seconds(day.total_seconds)}` ({day.session_count} sessions)"
        for day in summary.daily_breakdown
    )
    return "\n".join(lines)


def chunk_content(content: str, limit: int = MESSAGE_LIMIT) -> list[str]:
    """Split a report on line boundaries so each piece fits in one Discord message."""
    paginator = commands.Paginator(prefix=None, suffix=None, max_size=limit)
    # Paginator reserves room for two separators per page.
    width = limit - 2
    for line in content.split("\n"):
        # A single overlong line is hard-wrapped.
        while len(line) > width:
            paginator.add_line(line[:width])
            line = line[width:]
        paginator.add_line(line)
    return paginator.pages


class ReportChannelLike(Protocol):
    async def send(self, content: str, **kwargs): ...


class Reporter:
    """Builds summaries from the repository and posts them to a channel."""

    def __init__(
        self,
        repository: SessionRepository,
        tz: tzinfo,
        threshold_hours: int = DEFAULT_THRESHOLD_HOURS,
        logger: logging.Logger | None = None,
    ) -> None:
        self.repository = repository
        self.tz = tz
        self.threshold_hours = threshold_hours
        self.logger = logger or logging.getLogger(__name__)

    def monthly(self, year: int, month: int) -> MonthlySummary:
        sessions = self.repository.list_by_month(year, month)
        return monthly_summary(sessions, year, month, self.tz, self.threshold_hours)

    def daily(self, day: date) -> DailySummary:
        start, end = day_bounds(day, self.tz)
        sessions = self.repository.list_between(start, end)
        return daily_summary(sessions, day, self.tz)

    async def post_report(self, report_channel: ReportChannelLike, content: str) -> bool:
        try:
            for chunk in chunk_content(content):
                # Never ping anyone in automated reports.
                await report_channel.send(chunk, allowed_mentions=discord.AllowedMentions.none())
        except discord.DiscordException:
            self.logger.exception("Failed to post report")
            return False
        return True
