"""
seedkeeper.services.audit — Audit Trail Helpers
================================================

Every lifecycle change to a seeding session writes one ``audit_log`` row
with before/after snapshots, inside the same transaction as the change.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from seedkeeper.database.models import AuditAction, AuditLog

logger = logging.getLogger(__name__)


def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key if col.key != "metadata" else "metadata_", None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_action(
    session: Session,
    *,
    actor_id: str,
    action_type: AuditAction,
    target_table: str,
    target_id: str | int | None,
    before: dict | None = None,
    after: dict | None = None,
    reason: str | None = None,
) -> None:
    """Insert a row into audit_log within the current transaction."""
    session.add(AuditLog(
        actor_id=str(actor_id),
        action_type=action_type.value,
        target_table=target_table,
        target_id=str(target_id) if target_id is not None else None,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))
    logger.info(
        "audit %s by %s on %s/%s", action_type.value, actor_id, target_table, target_id
    )
