"""
seedkeeper.constants — Shared Constants
========================================

Single source of truth for session limits and ledger tags.
Import from here instead of duplicating in services, routes, and the bot.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from seedkeeper.database.models import RewardTrigger

# ---------------------------------------------------------------------------
# Player threshold bounds
# ---------------------------------------------------------------------------
MIN_PLAYER_THRESHOLD = 10
MIN_TEST_PLAYER_THRESHOLD = 1  # Test mode relaxes the floor only
MAX_PLAYER_THRESHOLD = 99

# ---------------------------------------------------------------------------
# Actors and ledger tags
# ---------------------------------------------------------------------------
SYSTEM_ACTOR = "system"          # actor_id for threshold auto-close
GRANTED_BY = "seeding-system"    # granted_by on whitelist ledger rows


def source_tag(trigger: RewardTrigger) -> str:
    """Whitelist source tag for a reward track, e.g. ``seeding-switch``."""
    return f"seeding-{trigger.value}"
