"""
seedkeeper.bot.core — Bot Instance & Cog Loader
================================================

Defines :class:`SeedkeeperBot`, a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``),
   whitelist backend (``bot.whitelist``) and notifiers so every Cog can
   reach them.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from seedkeeper.bot.announcer import DiscordNotifier
from seedkeeper.config import SeedkeeperConfig
from seedkeeper.services.notify_service import FanoutNotifier, Notifier
from seedkeeper.services.whitelist_service import WhitelistService

logger = logging.getLogger(__name__)

# Cog modules to load on startup
EXTENSIONS: list[str] = [
    "seedkeeper.bot.cogs.seeding",
]


class SeedkeeperBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`SeedkeeperConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    whitelist:
        The backend reward grants are written to.
    game_notifier:
        Reaches players in game.  ``bot.notifier`` adds the announce
        channel on top when ``notifications.discord`` is set; reminders use
        ``bot.game_notifier`` alone.
    """

    def __init__(
        self,
        cfg: SeedkeeperConfig,
        engine: Engine,
        whitelist: WhitelistService,
        game_notifier: Notifier,
    ) -> None:
        # Slash commands only; no privileged intents needed
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — seeding rewards",
        )

        self.cfg = cfg
        self.engine = engine
        self.whitelist = whitelist
        self.game_notifier = game_notifier
        self.notifier: Notifier = game_notifier
        if cfg.notifications.discord and cfg.announce_channel_id:
            self.notifier = FanoutNotifier(game_notifier, DiscordNotifier(self))

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load all Cog extensions before connecting.

        A failing extension is logged and skipped; the rest still load.
        """
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

    async def announce(self, embed: discord.Embed) -> None:
        """Post *embed* to the configured announce channel, if any."""
        channel_id = self.cfg.announce_channel_id
        if not channel_id:
            return
        channel = self.get_channel(channel_id)
        if not isinstance(channel, discord.TextChannel):
            logger.warning("Announce channel %d not found or not a text channel", channel_id)
            return
        try:
            await channel.send(embed=embed)
        except discord.HTTPException:
            logger.exception("Failed to post announcement to #%s", channel.name)
