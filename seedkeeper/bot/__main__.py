"""
seedkeeper.bot.__main__ — Entry point for ``python -m seedkeeper.bot``
======================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Build the whitelist backend and game notifier named in config.
5. Create the SeedkeeperBot and run it (blocking).
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from seedkeeper.bot.core import SeedkeeperBot
from seedkeeper.config import load_config
from seedkeeper.database.engine import create_db_engine, init_db
from seedkeeper.services.notify_service import build_notifier
from seedkeeper.services.whitelist_service import build_whitelist_service

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("seedkeeper")


def main() -> None:
    """Bootstrap and run the Seedkeeper bot."""
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    cfg = load_config()
    logger.info("Config loaded — Community: %s (%d servers)", cfg.community_name, len(cfg.servers))

    engine = create_db_engine()
    init_db(engine)

    whitelist = build_whitelist_service(cfg)
    bot = SeedkeeperBot(
        cfg=cfg, engine=engine, whitelist=whitelist, game_notifier=build_notifier(cfg),
    )

    logger.info("Starting Seedkeeper bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
