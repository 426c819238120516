"""
seedkeeper.services.whitelist_service — Whitelist Duration Backends
====================================================================

Rewards are paid as whitelist time.  The seeding engine only needs two
operations, so the backend is a narrow protocol:

- ``grant(...)``   → add N minutes for a player, return a record id
- ``retract(...)`` → cancel a previously returned record id

Two implementations:

``LedgerWhitelistService``
    Writes ``whitelist_entries`` rows through the caller's SQLAlchemy
    session, so a grant commits or rolls back together with the
    participant row that records it.

``HttpWhitelistService``
    Talks to a remote whitelist API with httpx.  It cannot share our
    transaction; the reward service retracts its grants if the local
    transaction fails afterwards.

Select one with ``whitelist.backend`` in ``config.yaml``.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from sqlalchemy.orm import Session

from seedkeeper.config import SeedkeeperConfig
from seedkeeper.constants import GRANTED_BY
from seedkeeper.database.models import WhitelistEntry
from seedkeeper.errors import DependencyFailure

logger = logging.getLogger(__name__)


class WhitelistService(Protocol):
    #: True when grants are written inside the caller's DB transaction
    shares_transaction: bool

    def grant(
        self,
        db: Session,
        *,
        steam_id: str,
        username: str | None,
        minutes: int,
        source_tag: str,
        metadata: dict[str, Any],
    ) -> str: ...

    def retract(self, db: Session, record_id: str, *, reason: str) -> None: ...


# ---------------------------------------------------------------------------
# Database ledger backend
# ---------------------------------------------------------------------------
class LedgerWhitelistService:
    shares_transaction = True

    def grant(
        self,
        db: Session,
        *,
        steam_id: str,
        username: str | None,
        minutes: int,
        source_tag: str,
        metadata: dict[str, Any],
    ) -> str:
        entry = WhitelistEntry(
            steam_id=steam_id,
            username=username,
            duration_minutes=minutes,
            source_tag=source_tag,
            granted_by=GRANTED_BY,
            metadata_=metadata,
            granted_at=datetime.now(UTC),
            revoked=False,
        )
        db.add(entry)
        db.flush()
        logger.debug(
            "Whitelist +%d min for %s (%s) → entry %d",
            minutes, steam_id, source_tag, entry.id,
        )
        return str(entry.id)

    def retract(self, db: Session, record_id: str, *, reason: str) -> None:
        try:
            entry = db.get(WhitelistEntry, int(record_id))
        except ValueError:
            entry = None
        if entry is None:
            raise DependencyFailure(f"Whitelist entry {record_id} not found")
        if entry.revoked:
            return
        entry.revoked = True
        entry.revoked_at = datetime.now(UTC)
        entry.revoked_reason = reason
        db.flush()


# ---------------------------------------------------------------------------
# Remote HTTP backend
# ---------------------------------------------------------------------------
class HttpWhitelistService:
    """Client for a remote whitelist API.

    Endpoints::

        POST {base_url}/grants              → {"id": "..."}
        POST {base_url}/grants/{id}/retract

    Auth is a bearer token from ``WHITELIST_API_TOKEN``.  Any transport
    error or non-2xx status becomes :class:`DependencyFailure`; there are no
    silent retries.
    """

    shares_transaction = False

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
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

    def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            resp = self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise DependencyFailure(f"Whitelist service unreachable: {exc}") from exc
        if resp.is_error:
            raise DependencyFailure(
                f"Whitelist service returned {resp.status_code} for {path}"
            )
        return resp

    def grant(
        self,
        db: Session,
        *,
        steam_id: str,
        username: str | None,
        minutes: int,
        source_tag: str,
        metadata: dict[str, Any],
    ) -> str:
        resp = self._post("/grants", {
            "steam_id": steam_id,
            "username": username,
            "duration_minutes": minutes,
            "source": source_tag,
            "granted_by": GRANTED_BY,
            "metadata": metadata,
        })
        try:
            record_id = resp.json()["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise DependencyFailure("Whitelist service returned no grant id") from exc
        return str(record_id)

    def retract(self, db: Session, record_id: str, *, reason: str) -> None:
        self._post(f"/grants/{record_id}/retract", {"reason": reason})


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------
def build_whitelist_service(cfg: SeedkeeperConfig) -> WhitelistService:
    """Instantiate the backend named by ``cfg.whitelist.backend``."""
    settings = cfg.whitelist
    if settings.backend == "http":
        logger.info("Whitelist backend: http → %s", settings.base_url)
        return HttpWhitelistService(
            settings.base_url or "",
            token=os.getenv("WHITELIST_API_TOKEN"),
            timeout=settings.timeout_seconds,
        )
    logger.info("Whitelist backend: ledger")
    return LedgerWhitelistService()
