"""
seedkeeper.bot.cogs.seeding — Seeding Slash Commands
=====================================================

Discord slash commands for operators:
- /seeding-status  — active sessions with live counts
- /seeding-preview — what closing a session now would pay
- /seeding-close   — complete a session and pay completion rewards
- /seeding-cancel  — cancel a session without paying anything

All commands require the configured admin_role_id.  Replies are
ephemeral.  Close and cancel go through the bot's notifier, so players in
game (and the announce channel) hear about them.  A task loop repeats the
seeding call for every active session.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands, tasks

from seedkeeper.database.engine import run_db
from seedkeeper.engine.durations import format_reward_duration
from seedkeeper.errors import DependencyFailure, SeedingError
from seedkeeper.services.preview_service import build_close_preview
from seedkeeper.services.session_service import (
    cancel_session,
    close_session,
    get_active_sessions,
    get_session_with_stats,
    remind_active_sessions,
)

if TYPE_CHECKING:
    from seedkeeper.bot.core import SeedkeeperBot

logger = logging.getLogger(__name__)


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: SeedkeeperBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


def _status_lines(bot: SeedkeeperBot) -> list[tuple[str, str]]:
    """Sync helper for /seeding-status.  Call via ``run_db()``."""
    fields = []
    for row in get_active_sessions(bot.engine):
        _, stats = get_session_with_stats(bot.engine, row.id)
        rewards = row.rewards
        value = (
            f"On target: **{stats['currently_on_target']}/{row.player_threshold}**\n"
            f"Switchers: {stats['switchers']} · Seeders: {stats['seeders']}\n"
            f"Rewards granted: {row.rewards_granted_count} · "
            f"Max per player: {format_reward_duration(rewards.total_possible_minutes)}"
        )
        if row.test_mode:
            value += "\n🧪 Test mode"
        name = f"#{row.id} — {row.target_server_name or row.target_server_id}"
        fields.append((name, value))
    return fields


class Seeding(commands.Cog, name="Seeding"):
    """Operator commands for seeding sessions."""

    def __init__(self, bot: SeedkeeperBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        minutes = self.bot.cfg.notifications.reminder_minutes
        if minutes:
            self.reminder_loop.change_interval(minutes=minutes)
            self.reminder_loop.start()

    async def cog_unload(self) -> None:
        self.reminder_loop.cancel()

    # -------------------------------------------------------------------
    # Seeding call reminders
    # -------------------------------------------------------------------
    @tasks.loop(minutes=5)
    async def reminder_loop(self) -> None:
        try:
            await run_db(remind_active_sessions, self.bot.engine, self.bot.game_notifier)
        except Exception:
            logger.exception("Seeding reminder failed")

    @reminder_loop.before_loop
    async def _wait_reminders(self) -> None:
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # /seeding-status
    # -------------------------------------------------------------------
    @app_commands.command(name="seeding-status", description="Show active seeding sessions.")
    @is_admin()
    async def seeding_status(self, interaction: discord.Interaction) -> None:
        fields = await run_db(_status_lines, self.bot)
        if not fields:
            await interaction.response.send_message(
                "No seeding session is active.", ephemeral=True,
            )
            return
        embed = discord.Embed(title="🌱 Active Seeding Sessions", color=discord.Color.green())
        for name, value in fields:
            embed.add_field(name=name, value=value, inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /seeding-preview
    # -------------------------------------------------------------------
    @app_commands.command(
        name="seeding-preview",
        description="Preview the completion rewards closing a session would grant.",
    )
    @app_commands.describe(session_id="Seeding session ID")
    @is_admin()
    async def seeding_preview(self, interaction: discord.Interaction, session_id: int) -> None:
        preview = await run_db(build_close_preview, self.bot.engine, session_id)
        embed = discord.Embed(
            title=f"🔍 Close preview — session #{session_id}",
            color=discord.Color.blurple(),
        )
        embed.add_field(
            name="Players to reward", value=str(preview.participants_to_reward), inline=True,
        )
        embed.add_field(
            name="Completion reward",
            value=preview.completion_reward or "none",
            inline=True,
        )
        embed.add_field(
            name="Total whitelist days",
            value=f"{preview.total_whitelist_days_to_grant:g}",
            inline=True,
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # -------------------------------------------------------------------
    # /seeding-close
    # -------------------------------------------------------------------
    @app_commands.command(
        name="seeding-close",
        description="Close a seeding session and grant completion rewards.",
    )
    @app_commands.describe(session_id="Seeding session ID")
    @is_admin()
    async def seeding_close(self, interaction: discord.Interaction, session_id: int) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await run_db(
            close_session,
            self.bot.engine,
            self.bot.whitelist,
            session_id,
            actor_id=str(interaction.user.id),
            actor_name=interaction.user.display_name,
            notifier=self.bot.notifier,
        )
        summary = (
            f"✅ Session #{session_id} closed.\n"
            f"{result.participants_rewarded} player(s) received "
            f"{format_reward_duration(result.minutes_granted)} in total."
        )
        await interaction.followup.send(summary, ephemeral=True)

    # -------------------------------------------------------------------
    # /seeding-cancel
    # -------------------------------------------------------------------
    @app_commands.command(
        name="seeding-cancel",
        description="Cancel a seeding session. No rewards are granted.",
    )
    @app_commands.describe(session_id="Seeding session ID", reason="Why it is cancelled")
    @is_admin()
    async def seeding_cancel(
        self, interaction: discord.Interaction, session_id: int, reason: str
    ) -> None:
        await run_db(
            cancel_session,
            self.bot.engine,
            session_id,
            actor_id=str(interaction.user.id),
            reason=reason,
            notifier=self.bot.notifier,
        )
        await interaction.response.send_message(
            f"🛑 Session #{session_id} cancelled: {reason}", ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            message = "🔒 You need the Admin role to use this command."
        elif isinstance(error, app_commands.CommandInvokeError) and isinstance(
            error.original, SeedingError
        ):
            if isinstance(error.original, DependencyFailure):
                logger.error("Seeding command failed: %s", error.original)
            message = f"❌ {error.original}"
        else:
            raise error

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: SeedkeeperBot) -> None:
    await bot.add_cog(Seeding(bot))
