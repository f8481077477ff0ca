from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import discord
import pytest

from timely.commands import register_commands
from timely.config import Config
from timely.db import Database
from timely.errors import StorageError
from timely.main import DAILY_REPORT_META_KEY, MONTHLY_REPORT_META_KEY, TimelyBot
from timely.models import Session

GUILD_ID = 10
OWNER_ID = 20


class FakeChannel:
    def __init__(self, fail_on: str | None = None) -> None:
        self.sent: list[str] = []
        self.fail_on = fail_on

    async def send(self, content: str, **kwargs):
        if self.fail_on is not None and self.fail_on in content:
            raise discord.DiscordException("channel unavailable")
        self.sent.append(content)


class FakeResponse:
    def __init__(self) -> None:
        self.messages: list[str] = []

    async def send_message(self, content: str, **kwargs):
        self.messages.append(content)


def make_interaction(user_id: int = OWNER_ID) -> SimpleNamespace:
    return SimpleNamespace(user=SimpleNamespace(id=user_id), response=FakeResponse())


def make_bot() -> TimelyBot:
    config = Config(
        discord_token="token",
        guild_id=GUILD_ID,
        owner_user_id=OWNER_ID,
        report_channel_id=30,
        timezone=ZoneInfo("UTC"),
        database_path=Path(":memory:"),
        overtime_threshold_hours=40,
    )
    db = Database(":memory:", tz=config.timezone)
    db.initialize()
    return TimelyBot(config=config, db=db)


def ready_bot(channel: FakeChannel) -> TimelyBot:
    bot = make_bot()
    bot.runtime_ready = True
    bot.report_channel = channel
    return bot


def ended_session(start: datetime, seconds: int) -> Session:
    return Session.begin(start).finalized(start + timedelta(seconds=seconds))


def freeze_now(monkeypatch: pytest.MonkeyPatch, value: datetime) -> None:
    monkeypatch.setattr("timely.main.utc_now", lambda: value)


def count_starting(sent: list[str], prefix: str) -> int:
    return sum(1 for content in sent if content.startswith(prefix))


@pytest.mark.asyncio
async def test_unsaved_session_is_saved_on_retry() -> None:
    bot = make_bot()
    session = ended_session(datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc), 600)

    bot.keep_unsaved(session)
    bot.retry_unsaved_sessions()

    assert bot.unsaved_sessions == []
    assert bot.db.get(session.id) == session


@pytest.mark.asyncio
async def test_failed_retry_keeps_session_pending(monkeypatch: pytest.MonkeyPatch) -> None:
    bot = make_bot()
    session = ended_session(datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc), 600)
    bot.keep_unsaved(session)

    def failing_save(_session: Session) -> None:
        raise StorageError("database is locked")

    monkeypatch.setattr(bot.db, "save", failing_save)
    bot.retry_unsaved_sessions()
    bot.retry_unsaved_sessions()

    assert bot.unsaved_sessions == [session]


@pytest.mark.asyncio
async def test_end_command_retries_unsaved_sessions_first() -> None:
    channel = FakeChannel()
    bot = ready_bot(channel)
    register_commands(bot)
    pending = ended_session(datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc), 600)
    bot.keep_unsaved(pending)
    started = bot.timer.start()

    command = bot.tree.get_command("end", guild=discord.Object(id=GUILD_ID))
    interaction = make_interaction()
    await command.callback(interaction)

    assert bot.unsaved_sessions == []
    assert bot.db.get(pending.id) == pending
    assert bot.db.get(started.session.id) is not None
    assert interaction.response.messages[0].startswith("Work session ended at")
    assert count_starting(channel.sent, "Work session ended at") == 1


@pytest.mark.asyncio
async def test_timer_commands_reject_other_users() -> None:
    bot = ready_bot(FakeChannel())
    register_commands(bot)

    command = bot.tree.get_command("start", guild=discord.Object(id=GUILD_ID))
    interaction = make_interaction(user_id=OWNER_ID + 1)
    await command.callback(interaction)

    assert interaction.response.messages == ["Only the timer owner can control the timer."]
    assert bot.timer.current_session is None


@pytest.mark.asyncio
async def test_start_command_reports_unrecorded_change(monkeypatch: pytest.MonkeyPatch) -> None:
    bot = ready_bot(FakeChannel())
    register_commands(bot)

    def failing_snapshot(_session: Session) -> None:
        raise StorageError("database is locked")

    monkeypatch.setattr(bot.db, "save_open_session", failing_snapshot)
    command = bot.tree.get_command("start", guild=discord.Object(id=GUILD_ID))
    interaction = make_interaction()
    await command.callback(interaction)

    assert interaction.response.messages == ["Could not record the change; the timer is unchanged."]
    assert bot.timer.current_session is None
    assert bot.unsaved_sessions == []


@pytest.mark.asyncio
async def test_midnight_report_posts_once_per_day(monkeypatch: pytest.MonkeyPatch) -> None:
    channel = FakeChannel()
    bot = ready_bot(channel)
    bot.db.save(ended_session(datetime(2026, 2, 3, 9, 0, tzinfo=timezone.utc), 3600))
    freeze_now(monkeypatch, datetime(2026, 2, 4, 0, 0, 5, tzinfo=timezone.utc))

    await bot.midnight_report_loop()
    await bot.midnight_report_loop()

    assert channel.sent == [
        "**Daily Work Report - 2026-02-03**\nSessions: 1\nTotal: `01:00:00`",
    ]
    assert bot.db.get_meta(DAILY_REPORT_META_KEY) == "2026-02-03"
    assert bot.db.get_meta(MONTHLY_REPORT_META_KEY) is None


@pytest.mark.asyncio
async def test_midnight_report_skips_outside_first_minute(monkeypatch: pytest.MonkeyPatch) -> None:
    channel = FakeChannel()
    bot = ready_bot(channel)
    freeze_now(monkeypatch, datetime(2026, 2, 4, 0, 1, 0, tzinfo=timezone.utc))

    await bot.midnight_report_loop()

    assert channel.sent == []
    assert bot.db.get_meta(DAILY_REPORT_META_KEY) is None


@pytest.mark.asyncio
async def test_first_of_month_also_posts_monthly_report(monkeypatch: pytest.MonkeyPatch) -> None:
    channel = FakeChannel()
    bot = ready_bot(channel)
    bot.db.save(ended_session(datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc), 7200))
    freeze_now(monkeypatch, datetime(2026, 3, 1, 0, 0, 10, tzinfo=timezone.utc))

    await bot.midnight_report_loop()
    await bot.midnight_report_loop()

    assert len(channel.sent) == 2
    assert channel.sent[0] == "**Daily Work Report - 2026-02-28**\nNo tracked work for 2026-02-28."
    assert count_starting(channel.sent, "**Monthly Work Report - February 2026**") == 1
    assert bot.db.get_meta(MONTHLY_REPORT_META_KEY) == "2026-02"


@pytest.mark.asyncio
async def test_failed_monthly_post_does_not_repeat_daily_report(monkeypatch: pytest.MonkeyPatch) -> None:
    channel = FakeChannel(fail_on="Monthly Work Report")
    bot = ready_bot(channel)
    bot.db.save(ended_session(datetime(2026, 2, 28, 9, 0, tzinfo=timezone.utc), 1800))
    freeze_now(monkeypatch, datetime(2026, 3, 1, 0, 0, 10, tzinfo=timezone.utc))

    await bot.midnight_report_loop()
    await bot.midnight_report_loop()

    assert count_starting(channel.sent, "**Daily Work Report - 2026-02-28**") == 1
    assert bot.db.get_meta(DAILY_REPORT_META_KEY) == "2026-02-28"
    assert bot.db.get_meta(MONTHLY_REPORT_META_KEY) is None

    channel.fail_on = None
    await bot.midnight_report_loop()

    assert count_starting(channel.sent, "**Daily Work Report - 2026-02-28**") == 1
    assert count_starting(channel.sent, "**Monthly Work Report - February 2026**") == 1
    assert bot.db.get_meta(MONTHLY_REPORT_META_KEY) == "2026-02"
