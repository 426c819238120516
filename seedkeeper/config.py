"""
seedkeeper.config — YAML Configuration Loader
==============================================

Reads ``config.yaml`` for infrastructure settings: Discord identity, the
game servers Seedkeeper knows about, which whitelist backend receives
reward grants, where session broadcasts and player messages go, and
seeding policy defaults.  Secrets (database URL, JWT secret, API tokens)
stay in the environment / ``.env``.

Usage::

    from seedkeeper.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.server_ids)            # ("server1", "server2")
    print(cfg.whitelist.backend)     # "ledger"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

WHITELIST_BACKENDS = ("ledger", "http")
NOTIFY_BACKENDS = ("log", "http")


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ServerInfo:
    """A game server that can be a seeding target or source."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class WhitelistSettings:
    """Where reward grants are written."""

    backend: str = "ledger"
    base_url: str | None = None  # Required for the http backend
    timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class NotificationSettings:
    """How players and operators hear about seeding sessions."""

    backend: str = "log"  # log | http (game-server bridge)
    base_url: str | None = None  # Required for the http backend
    timeout_seconds: float = 5.0
    reminder_minutes: int = 5  # 0 disables the recurring seeding call
    discord: bool = True  # Mirror session broadcasts to the announce channel


@dataclass(frozen=True, slots=True)
class SeedkeeperConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str

    # Discord
    bot_prefix: str
    guild_id: int

    # Dashboard
    dashboard_port: int

    # Admin / Hardened Access
    admin_role_id: int  # Discord role required for operator commands

    # Game servers, in display order
    servers: tuple[ServerInfo, ...] = ()

    whitelist: WhitelistSettings = field(default_factory=WhitelistSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    # Seeding policy defaults (overridable per session)
    seeders_earn_playtime: bool = False

    # Optional
    announce_channel_id: int | None = None  # Where to post session results

    @property
    def server_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.servers)

    def get_server(self, server_id: str) -> ServerInfo | None:
        for server in self.servers:
            if server.id == server_id:
                return server
        return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SeedkeeperConfig:
    """Read *path* and return a :class:`SeedkeeperConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If the whitelist or notifications backend is unknown, or ``http``
        is selected without a ``base_url``.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    return parse_config(raw)


def parse_config(raw: dict) -> SeedkeeperConfig:
    """Build a :class:`SeedkeeperConfig` from an already-parsed mapping."""
    servers = tuple(
        ServerInfo(id=str(s["id"]), name=str(s.get("name") or s["id"]))
        for s in raw.get("servers") or []
    )

    wl_raw = raw.get("whitelist") or {}
    whitelist = WhitelistSettings(
        backend=wl_raw.get("backend", "ledger"),
        base_url=wl_raw.get("base_url"),
        timeout_seconds=float(wl_raw.get("timeout_seconds", 10)),
    )
    if whitelist.backend not in WHITELIST_BACKENDS:
        raise ValueError(
            f"Unknown whitelist backend {whitelist.backend!r}; "
            f"expected one of {WHITELIST_BACKENDS}"
        )
    if whitelist.backend == "http" and not whitelist.base_url:
        raise ValueError("whitelist.base_url is required for the http backend")

    nt_raw = raw.get("notifications") or {}
    notifications = NotificationSettings(
        backend=nt_raw.get("backend", "log"),
        base_url=nt_raw.get("base_url"),
        timeout_seconds=float(nt_raw.get("timeout_seconds", 5)),
        reminder_minutes=int(nt_raw.get("reminder_minutes", 5)),
        discord=bool(nt_raw.get("discord", True)),
    )
    if notifications.backend not in NOTIFY_BACKENDS:
        raise ValueError(
            f"Unknown notifications backend {notifications.backend!r}; "
            f"expected one of {NOTIFY_BACKENDS}"
        )
    if notifications.backend == "http" and not notifications.base_url:
        raise ValueError("notifications.base_url is required for the http backend")
    if notifications.reminder_minutes < 0:
        raise ValueError("notifications.reminder_minutes cannot be negative")

    seeding_raw = raw.get("seeding") or {}

    return SeedkeeperConfig(
        community_name=raw["community_name"],
        bot_prefix=raw["bot_prefix"],
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        servers=servers,
        whitelist=whitelist,
        notifications=notifications,
        seeders_earn_playtime=bool(seeding_raw.get("seeders_earn_playtime", False)),
        announce_channel_id=(
            int(raw["announce_channel_id"]) if raw.get("announce_channel_id") else None
        ),
    )
