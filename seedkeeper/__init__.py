"""
Seedkeeper — Cross-Server Seeding Incentives for Game Communities
==================================================================
Runs "seeding" campaigns for a multiplayer game community: when a server
needs players, Seedkeeper tracks who switches over from the busy servers,
who stays, and who is there when the server fills up, then pays them in
whitelist time.  Operators drive it from the dashboard API or Discord.

Package layout::

    seedkeeper/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Thresholds, source tags, shared helpers
    ├── errors.py          # SeedingError hierarchy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Sessions, participants, grants, whitelist, audit
    ├── engine/
    │   ├── durations.py   # hours/days/months ⇄ minutes
    │   ├── rewards.py     # RewardsConfig + validator
    │   ├── events.py      # PresenceEvent envelope
    │   ├── state.py       # Participant state machine
    │   └── locks.py       # Per-key mutual exclusion
    ├── services/
    │   ├── session_service.py   # Session lifecycle + presence routing
    │   ├── reward_service.py    # Exactly-once reward grants
    │   ├── reversal_service.py  # Revocation / reversal
    │   ├── preview_service.py   # Close preview
    │   ├── whitelist_service.py # Ledger + HTTP whitelist backends
    │   └── audit.py             # audit_log helpers
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       └── seeding.py # /seeding-status, /seeding-close, ...
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + feed-token dependencies
        └── routes/        # Seeding + presence endpoints
"""

__version__ = "0.1.0"
