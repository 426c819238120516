"""
seedkeeper.bot.announcer — Discord Notifier
============================================

Mirrors session broadcasts (seeding call, close, cancel) to the announce
channel.  Service functions run on a worker thread via ``run_db()``, so
posts are handed to the bot's event loop and not awaited.  Per-player
messages stay in game.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from seedkeeper.bot.core import SeedkeeperBot

logger = logging.getLogger(__name__)


class DiscordNotifier:
    def __init__(self, bot: SeedkeeperBot) -> None:
        self.bot = bot

    def broadcast(self, server_ids: Sequence[str], message: str) -> None:
        if self.bot.is_closed():
            return
        embed = discord.Embed(description=message, color=discord.Color.green())
        asyncio.run_coroutine_threadsafe(self.bot.announce(embed), self.bot.loop)

    def message_player(self, server_id: str, steam_id: str, message: str) -> None:
        logger.debug("Player message for %s not mirrored to Discord", steam_id)
