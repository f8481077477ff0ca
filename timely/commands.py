from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import discord

from .clock import utc_now
from .errors import InvalidPeriod, StateError, StorageError
from .models import TimerEvent
from .reporter import (
    build_daily_report_content,
    build_monthly_report_content,
    chunk_content,
    describe_event,
    describe_state,
    format_seconds,
)

if TYPE_CHECKING:
    from .main import TimelyBot


async def _send_ephemeral(interaction: discord.Interaction, content: str) -> None:
    chunks = chunk_content(content)
    await interaction.response.send_message(chunks[0], ephemeral=True)
    for chunk in chunks[1:]:
        await interaction.followup.send(chunk, ephemeral=True)


def register_commands(bot: TimelyBot) -> None:
    """Register all slash commands on the bot. Called once during setup."""
    guild_scope = discord.Object(id=bot.config.guild_id)
    tz = bot.config.timezone

    def is_owner(interaction: discord.Interaction) -> bool:
        return interaction.user.id == bot.config.owner_user_id

    async def run_transition(interaction: discord.Interaction, transition: Callable[[], TimerEvent]) -> None:
        if not is_owner(interaction):
            await interaction.response.send_message("Only the timer owner can control the timer.", ephemeral=True)
            return

        try:
            event = transition()
        except StateError as exc:
            # Rejected transitions are a no-op; tell the user why.
            await interaction.response.send_message(f"Nothing changed: {exc}.", ephemeral=True)
            return
        except StorageError as exc:
            if exc.session is None:
                # The open session snapshot could not be written, so the transition was not applied.
                bot.logger.exception("Timer transition could not be recorded")
                await interaction.response.send_message(
                    "Could not record the change; the timer is unchanged.", ephemeral=True
                )
                return

            bot.logger.exception("Ended session could not be saved")
            bot.keep_unsaved(exc.session)
            await interaction.response.send_message(
                "Session ended but could not be saved; your time may be lost. "
                f"Session `{exc.session.id}` tracked `{format_seconds(exc.session.total_seconds)}`. "
                "It will be retried automatically.",
                ephemeral=True,
            )
            return

        await interaction.response.send_message(describe_event(event, tz), ephemeral=True)
        await bot.announce(event)

    @bot.tree.command(name="start", description="Start a work session", guild=guild_scope)
    async def start(interaction: discord.Interaction) -> None:
        await run_transition(interaction, bot.timer.start)

    @bot.tree.command(name="pause", description="Pause the running work session", guild=guild_scope)
    async def pause(interaction: discord.Interaction) -> None:
        await run_transition(interaction, bot.timer.pause)

    @bot.tree.command(name="resume", description="Resume the paused work session", guild=guild_scope)
    async def resume(interaction: discord.Interaction) -> None:
        await run_transition(interaction, bot.timer.resume)

    @bot.tree.command(name="end", description="End the current work session", guild=guild_scope)
    async def end(interaction: discord.Interaction) -> None:
        bot.retry_unsaved_sessions()
        await run_transition(interaction, bot.timer.end)

    @bot.tree.command(name="status", description="Show the timer state", guild=guild_scope)
    async def status(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(describe_state(bot.timer.current_state()), ephemeral=True)

    @bot.tree.command(name="today", description="Show today's finished sessions", guild=guild_scope)
    async def today(interaction: discord.Interaction) -> None:
        day_local = utc_now().astimezone(tz).date()
        try:
            summary = bot.reporter.daily(day_local)
        except StorageError:
            bot.logger.exception("/today failed")
            await interaction.response.send_message("Report temporarily unavailable.", ephemeral=True)
            return

        lines = [build_daily_report_content(summary), describe_state(bot.timer.current_state())]
        await _send_ephemeral(interaction, "\n".join(lines))

    @bot.tree.command(name="month", description="Show a monthly summary", guild=guild_scope)
    @discord.app_commands.describe(year="Year, defaults to the current year", month="Month 1-12, defaults to the current month")
    async def month_report(interaction: discord.Interaction, year: int | None = None, month: int | None = None) -> None:
        now_local = utc_now().astimezone(tz)
        target_year = now_local.year if year is None else year
        target_month = now_local.month if month is None else month

        try:
            summary = bot.reporter.monthly(target_year, target_month)
        except InvalidPeriod as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        except StorageError:
            bot.logger.exception("/month failed")
            await interaction.response.send_message("Report temporarily unavailable.", ephemeral=True)
            return

        await _send_ephemeral(interaction, build_monthly_report_content(summary))
