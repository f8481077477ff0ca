from __future__ import annotations

import logging
from datetime import timedelta

import discord
from discord.ext import commands, tasks
from dotenv import load_dotenv

from .clock import utc_now
from .commands import register_commands
from .config import Config, load_config
from .db import Database
from .errors import StorageError
from .models import Session, TimerEvent
from .reporter import Reporter, build_daily_report_content, build_monthly_report_content, describe_event
from .timer import Timer

DAILY_REPORT_META_KEY = "last_auto_daily_report_day"
MONTHLY_REPORT_META_KEY = "last_auto_monthly_report"


class TimelyBot(commands.Bot):
    def __init__(self, config: Config, db: Database) -> None:
        intents = discord.Intents.none()
        intents.guilds = True

        super().__init__(command_prefix="!", intents=intents)

        self.config = config
        self.db = db
        self.timer = Timer(db, logger=logging.getLogger("timely.timer"))
        self.reporter = Reporter(db, config.timezone, config.overtime_threshold_hours)

        self.logger = logging.getLogger("timely-bot")

        # runtime_ready prevents the report loop from running before channel/permission checks pass.
        self.runtime_ready = False
        self.report_channel: discord.TextChannel | None = None
        # Ended sessions whose save failed; retried before the next end and on each report.
        self.unsaved_sessions: list[Session] = []

    async def setup_hook(self) -> None:
        # Register slash commands during startup and begin the midnight scheduler loop.
        register_commands(self)
        await self.tree.sync(guild=discord.Object(id=self.config.guild_id))
        self.midnight_report_loop.start()

    async def on_ready(self) -> None:
        self.logger.info("Connected as %s (%s)", self.user, self.user.id if self.user else "unknown")
        if self.runtime_ready:
            return

        if await self._validate_runtime_resources():
            self.runtime_ready = True
            self.logger.info("Runtime checks passed")

    async def _validate_runtime_resources(self) -> bool:
        # Fail fast if guild/channel/permissions are misconfigured.
        guild = self.get_guild(self.config.guild_id)
        if guild is None:
            self.logger.error("Configured guild %s not found", self.config.guild_id)
            await self.close()
            return False

        report = guild.get_channel(self.config.report_channel_id)
        if not isinstance(report, discord.TextChannel):
            self.logger.error("Report channel %s is missing or not a text channel", self.config.report_channel_id)
            await self.close()
            return False

        me = guild.me
        if me is None:
            self.logger.error("Unable to resolve bot member in guild %s", guild.id)
            await self.close()
            return False

        perms = report.permissions_for(me)
        if not perms.view_channel or not perms.send_messages:
            self.logger.error("Missing view/send permission in report channel %s", report.id)
            await self.close()
            return False

        self.report_channel = report
        return True

    async def announce(self, event: TimerEvent) -> None:
        """Post a timer event to the report channel; failures never affect the timer."""
        if self.report_channel is None:
            return
        await self.reporter.post_report(self.report_channel, describe_event(event, self.config.timezone))

    def keep_unsaved(self, session: Session) -> None:
        self.unsaved_sessions.append(session)
        self.logger.warning("Holding unsaved session %s (%d pending)", session.id, len(self.unsaved_sessions))

    def retry_unsaved_sessions(self) -> None:
        pending = self.unsaved_sessions
        self.unsaved_sessions = []
        for session in pending:
            try:
                self.db.save(session)
            except StorageError:
                self.logger.exception("Retry failed for session %s", session.id)
                self.unsaved_sessions.append(session)
            else:
                self.logger.info("Saved previously unsaved session %s", session.id)

    @tasks.loop(seconds=30)
    async def midnight_report_loop(self) -> None:
        if not self.runtime_ready:
            return

        now_local = utc_now().astimezone(self.config.timezone)

        # The loop runs every 30s; only execute report logic during 00:00 local minute.
        if now_local.hour != 0 or now_local.minute != 0:
            return

        target_day = now_local.date() - timedelta(days=1)
        target_month = f"{target_day.year:04d}-{target_day.month:02d}"
        # Each report has its own guard so a failed post is retried without repeating the other one.
        daily_due = self.db.get_meta(DAILY_REPORT_META_KEY) != target_day.isoformat()
        # On the first of the month, also close out the month that just ended.
        monthly_due = now_local.day == 1 and self.db.get_meta(MONTHLY_REPORT_META_KEY) != target_month
        if not daily_due and not monthly_due:
            return

        if self.report_channel is None:
            self.logger.error("Report channel unavailable while trying to post midnight report")
            return

        self.retry_unsaved_sessions()
        self.logger.info("Posting midnight report for %s", target_day)

        if daily_due:
            try:
                content = build_daily_report_content(self.reporter.daily(target_day))
            except StorageError:
                self.logger.exception("Daily report temporarily unavailable for %s", target_day)
            else:
                if await self.reporter.post_report(self.report_channel, content):
                    self.db.set_meta(DAILY_REPORT_META_KEY, target_day.isoformat())

        if monthly_due:
            try:
                summary = self.reporter.monthly(target_day.year, target_day.month)
            except StorageError:
                self.logger.exception("Monthly report temporarily unavailable for %s", target_month)
            else:
                if await self.reporter.post_report(self.report_channel, build_monthly_report_content(summary)):
                    self.db.set_meta(MONTHLY_REPORT_META_KEY, target_month)

    @midnight_report_loop.before_loop
    async def before_midnight_report_loop(self) -> None:
        await self.wait_until_ready()

    async def close(self) -> None:
        if self.midnight_report_loop.is_running():
            self.midnight_report_loop.cancel()
        session = self.timer.current_session
        if session is not None:
            self.logger.warning(
                "Shutting down with session %s still open; it will be restored on next start", session.id
            )
        self.db.close()
        await super().close()


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main() -> None:
    load_dotenv()
    configure_logging()

    config = load_config()
    db = Database(config.database_path, tz=config.timezone)
    db.initialize()

    bot = TimelyBot(config=config, db=db)
    bot.run(config.discord_token)


if __name__ == "__main__":
    main()
