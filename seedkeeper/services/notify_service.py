"""
seedkeeper.services.notify_service — Session Broadcasts & Player Messages
==========================================================================

Players hear about seeding in game; operators may also see it in Discord.
Like the whitelist backend, the delivery side is a narrow protocol:

- ``broadcast(server_ids, message)``          → every player on those servers
- ``message_player(server_id, steam_id, ...)`` → one player, on one server

Implementations:

``LogNotifier``
    Only logs.  The default, and what tests and dry runs use.

``HttpNotifier``
    Posts to a game-server bridge (an RCON relay) with httpx.

``DiscordNotifier`` (in :mod:`seedkeeper.bot.announcer`)
    Mirrors broadcasts to the bot's announce channel.

``FanoutNotifier``
    Sends to several of the above.

Notifications are sent after the transaction that caused them has
committed.  A failed delivery is logged and never undoes a grant.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx

from seedkeeper.config import SeedkeeperConfig
from seedkeeper.database.models import ParticipantType, RewardTrigger
from seedkeeper.engine.durations import format_reward_duration

if TYPE_CHECKING:
    from seedkeeper.database.models import RewardGrant, SeedingParticipant, SeedingSession

logger = logging.getLogger(__name__)

PREFIX = "[SEEDING]"
TEST_PREFIX = "[TEST] "


class Notifier(Protocol):
    def broadcast(self, server_ids: Sequence[str], message: str) -> None: ...

    def message_player(self, server_id: str, steam_id: str, message: str) -> None: ...


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------
class LogNotifier:
    def broadcast(self, server_ids: Sequence[str], message: str) -> None:
        logger.info("Broadcast to %s: %s", ", ".join(server_ids), message)

    def message_player(self, server_id: str, steam_id: str, message: str) -> None:
        logger.info("Message to %s on %s: %s", steam_id, server_id, message)


class HttpNotifier:
    """Client for a game-server bridge.

    Endpoints::

        POST {base_url}/servers/{server_id}/broadcast               {"message"}
        POST {base_url}/servers/{server_id}/players/{steam_id}/warn {"message"}

    Auth is a bearer token from ``NOTIFY_API_TOKEN``.  Each server is tried
    independently; errors are logged per server.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, message: str) -> bool:
        try:
            resp = self._client.post(path, json={"message": message})
        except httpx.HTTPError as exc:
            logger.warning("Game bridge unreachable for %s: %s", path, exc)
            return False
        if resp.is_error:
            logger.warning("Game bridge returned %d for %s", resp.status_code, path)
            return False
        return True

    def broadcast(self, server_ids: Sequence[str], message: str) -> None:
        for server_id in server_ids:
            self._post(f"/servers/{server_id}/broadcast", message)

    def message_player(self, server_id: str, steam_id: str, message: str) -> None:
        self._post(f"/servers/{server_id}/players/{steam_id}/warn", message)


class FanoutNotifier:
    def __init__(self, *notifiers: Notifier) -> None:
        self.notifiers = notifiers

    def broadcast(self, server_ids: Sequence[str], message: str) -> None:
        for notifier in self.notifiers:
            notifier.broadcast(server_ids, message)

    def message_player(self, server_id: str, steam_id: str, message: str) -> None:
        for notifier in self.notifiers:
            notifier.message_player(server_id, steam_id, message)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
def _short(minutes: int) -> str:
    return f"+{format_reward_duration(minutes)}"


def _stay_hints(row: SeedingSession) -> list[str]:
    rewards = row.rewards
    hints = []
    if rewards.playtime is not None:
        hints.append(
            f"Stay {rewards.playtime.threshold_minutes}min for "
            f"{_short(rewards.playtime.minutes)} whitelist."
        )
    if rewards.completion is not None:
        hints.append(
            f"Be here at {row.player_threshold} players for "
            f"{_short(rewards.completion.minutes)} more!"
        )
    return hints


def seeding_call(row: SeedingSession) -> str:
    reward = format_reward_duration(row.rewards.total_possible_minutes)
    prefix = TEST_PREFIX if row.test_mode else ""
    return (
        f"{prefix}{PREFIX} {row.target_server_name or row.target_server_id} needs players! "
        f"Switch now for up to {reward} whitelist reward!"
    )


def seeding_closed(row: SeedingSession) -> str:
    name = row.target_server_name or row.target_server_id
    return f"{PREFIX} Thanks! {name} seeding complete. Session closed."


def seeding_cancelled(row: SeedingSession) -> str:
    name = row.target_server_name or row.target_server_id
    return f"{PREFIX} {name} seeding session has been cancelled."


def seeder_enrollment(row: SeedingSession) -> str:
    return " ".join([f"{PREFIX} Seeding session started!", *_stay_hints(row)])


def switch_confirmation(row: SeedingSession) -> str:
    switch = row.rewards.switch
    if switch is not None:
        head = f"{PREFIX} {_short(switch.minutes)} whitelist unlocked!"
    else:
        head = f"{PREFIX} You've been counted!"
    return " ".join([head, *_stay_hints(row)])


def playtime_reward(row: SeedingSession, total_minutes: int) -> str:
    return (
        f"{PREFIX} Playtime bonus unlocked! {_short(row.rewards.minutes_for('playtime'))} "
        f"whitelist added. Total earned: {format_reward_duration(total_minutes)}"
    )


def completion_reward(row: SeedingSession, total_minutes: int) -> str:
    return (
        f"{PREFIX} Seeding complete! {_short(row.rewards.minutes_for('completion'))} "
        f"completion bonus! Your total reward: {format_reward_duration(total_minutes)} whitelist"
    )


# ---------------------------------------------------------------------------
# Notices: built inside a transaction, delivered after it commits
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class Notice:
    server_ids: tuple[str, ...]
    message: str
    steam_id: str | None = None  # set → a message to one player


def session_started_notices(row: SeedingSession) -> list[Notice]:
    return [Notice(tuple(row.source_server_ids or ()), seeding_call(row))]


def session_cancelled_notices(row: SeedingSession) -> list[Notice]:
    return [Notice(tuple(row.source_server_ids or ()), seeding_cancelled(row))]


def session_closed_notices(
    row: SeedingSession, rewarded: Iterable[tuple[str, int]]
) -> list[Notice]:
    """The closing broadcast plus one completion message per paid player.

    *rewarded* holds ``(steam_id, total_reward_minutes)`` pairs.
    """
    notices = [Notice(tuple(row.source_server_ids or ()), seeding_closed(row))]
    for steam_id, total in rewarded:
        notices.append(
            Notice((row.target_server_id,), completion_reward(row, total), steam_id)
        )
    return notices


def presence_notices(
    row: SeedingSession,
    p: SeedingParticipant,
    *,
    created: bool,
    switched: bool,
    grants: Iterable[RewardGrant],
) -> list[Notice]:
    """Player messages for what one presence event just did to *p*."""
    target = (row.target_server_id,)
    notices = []
    if created and p.participant_type == ParticipantType.SEEDER and p.is_on_target:
        notices.append(Notice(target, seeder_enrollment(row), p.steam_id))
    if switched:
        notices.append(Notice(target, switch_confirmation(row), p.steam_id))
    for grant in grants:
        if grant.track == RewardTrigger.PLAYTIME:
            notices.append(
                Notice(target, playtime_reward(row, p.total_reward_minutes), p.steam_id)
            )
    return notices


def deliver(notifier: Notifier | None, notices: Iterable[Notice]) -> None:
    """Send *notices*.  Never raises; the state they describe is already committed."""
    if notifier is None:
        return
    for notice in notices:
        try:
            if notice.steam_id is None:
                if notice.server_ids:
                    notifier.broadcast(notice.server_ids, notice.message)
            else:
                notifier.message_player(notice.server_ids[0], notice.steam_id, notice.message)
        except Exception:
            logger.exception("Failed to deliver notice: %s", notice.message)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def build_notifier(cfg: SeedkeeperConfig) -> Notifier:
    """Instantiate the game-side notifier named by ``cfg.notifications.backend``."""
    settings = cfg.notifications
    if settings.backend == "http":
        logger.info("Notifications: http → %s", settings.base_url)
        return HttpNotifier(
            settings.base_url or "",
            token=os.getenv("NOTIFY_API_TOKEN"),
            timeout=settings.timeout_seconds,
        )
    logger.info("Notifications: log only")
    return LogNotifier()
