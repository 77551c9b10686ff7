"""
swguilds.services.settings_service — Instance settings store
==============================================================

Typed read/write access to the key/value ``settings`` table.  The
instance settings (name, logo, Discord webhooks) are a fixed set of keys
seeded by :mod:`swguilds.database.seed`; admins edit them from
``PUT /api/admin/settings``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from swguilds.constants import DEFAULT_INSTANCE_NAME
from swguilds.database.engine import get_session
from swguilds.database.models import Setting
from swguilds.database.seed import DEFAULT_SETTINGS
from swguilds.services.activity_service import log_activity
from swguilds.services.upload_service import resolve_upload_path

logger = logging.getLogger(__name__)

EDITABLE_KEYS: tuple[str, ...] = (
    "instance_name",
    "logo_url",
    "approval_webhook_url",
    "approval_webhook_role_id",
    "news_webhook_url",
    "news_webhook_role_id",
    "discord_webhook_url",
)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns *default* when the key does not exist or holds JSON ``null``.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        value = json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json
    return default if value is None else value


def get_value(engine: Engine, key: str, default=None):
    with get_session(engine) as session:
        return get_setting_value(session, key, default)


def get_instance_settings(engine: Engine) -> dict[str, Any]:
    """Public view of the instance settings.

    ``logo_url`` is reported as ``None`` when the file it points to has
    disappeared from the upload directory.
    """
    with get_session(engine) as session:
        values = {key: get_setting_value(session, key) for key in EDITABLE_KEYS}
        row = session.get(Setting, "instance_name")
        updated_at = row.updated_at.isoformat() if row and row.updated_at else None

    values["instance_name"] = values["instance_name"] or DEFAULT_INSTANCE_NAME
    logo = values.get("logo_url")
    if logo:
        path = resolve_upload_path(logo)
        if path is None or not path.is_file():
            values["logo_url"] = None
    values["updated_at"] = updated_at
    return values


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def upsert_setting(session: Session, *, key: str, value: Any) -> Setting:
    """Insert or update a single setting inside *session*."""
    value_json = json.dumps(value)
    row = session.get(Setting, key)
    if row is None:
        _, category, description = DEFAULT_SETTINGS.get(key, (None, "general", None))
        row = Setting(key=key, value_json=value_json, category=category, description=description)
        session.add(row)
    else:
        row.value_json = value_json
    return row


def update_instance_settings(engine: Engine, actor_id: str, changes: dict[str, Any]) -> dict:
    """Apply admin edits to the instance settings.

    Blank strings clear a value.  Raises ``ValueError`` when *changes*
    holds no editable key.
    """
    updates = {k: v for k, v in changes.items() if k in EDITABLE_KEYS}
    if not updates:
        raise ValueError("No settings to update")

    if "instance_name" in updates:
        name = (updates["instance_name"] or "").strip()
        updates["instance_name"] = name or DEFAULT_INSTANCE_NAME

    with get_session(engine) as session:
        for key, value in updates.items():
            if isinstance(value, str):
                value = value.strip() or None
            upsert_setting(session, key=key, value=value)
        upsert_setting(session, key="updated_by", value=actor_id)
        log_activity(
            session,
            user_id=actor_id,
            action="update",
            entity_type="settings",
            details={"keys": sorted(updates)},
        )

    logger.info("Instance settings updated by %s: %s", actor_id, ", ".join(sorted(updates)))
    return get_instance_settings(engine)
