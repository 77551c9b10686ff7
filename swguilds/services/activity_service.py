"""
swguilds.services.activity_service — Member activity journal
==============================================================

Every member-visible mutation appends one ``activity_logs`` row inside
the same transaction as the change itself.  Admins browse the journal
from ``GET /api/admin/logs``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session, joinedload

from swguilds.database.engine import get_session
from swguilds.database.models import ActivityLog

logger = logging.getLogger(__name__)

MAX_LOG_LIMIT = 1000


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def log_activity(
    session: Session,
    *,
    user_id: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    details: dict | None = None,
) -> ActivityLog:
    """Add a journal row to *session* (committed by the caller)."""
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=_json_safe(details) if details is not None else None,
    )
    session.add(entry)
    logger.debug("activity %s/%s by %s (%s)", action, entity_type, user_id, entity_id)
    return entry


def log_dict(entry: ActivityLog) -> dict:
    user = entry.user
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "user": (
            {"id": user.id, "identifier": user.identifier, "name": user.name}
            if user else None
        ),
        "action": entry.action,
        "entity_type": entry.entity_type,
        "entity_id": entry.entity_id,
        "details": entry.details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def list_logs(
    engine: Engine,
    *,
    limit: int = 100,
    entity_type: str | None = None,
    action: str | None = None,
) -> list[dict]:
    """Most recent journal entries first, optionally filtered."""
    limit = max(1, min(limit, MAX_LOG_LIMIT))
    stmt = (
        select(ActivityLog)
        .options(joinedload(ActivityLog.user))
        .order_by(ActivityLog.created_at.desc())
        .limit(limit)
    )
    if entity_type:
        stmt = stmt.where(ActivityLog.entity_type == entity_type)
    if action:
        stmt = stmt.where(ActivityLog.action == action)

    with get_session(engine) as session:
        return [log_dict(row) for row in session.scalars(stmt).all()]
