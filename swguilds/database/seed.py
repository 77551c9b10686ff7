"""
swguilds.database.seed — Default Settings Seeder
==================================================

Baseline instance settings seeded on first startup so the public
``/api/settings`` endpoint answers before an admin has saved anything.

Idempotent — only inserts keys that don't already exist.  Admin edits
are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from swguilds.constants import DEFAULT_INSTANCE_NAME
from swguilds.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "instance_name": (DEFAULT_INSTANCE_NAME, "display", "Name shown in the header and tab title"),
    "logo_url": (None, "display", "Uploaded logo, served from /api/uploads"),
    "approval_webhook_url": (
        None, "discord", "Webhook notified when a new account awaits approval",
    ),
    "approval_webhook_role_id": (None, "discord", "Role pinged on new registrations"),
    "news_webhook_url": (None, "discord", "Webhook used by 'send news to Discord'"),
    "news_webhook_role_id": (None, "discord", "Role pinged when news is sent"),
    "discord_webhook_url": (None, "discord", "Webhook notified of new absences"),
    "updated_by": (None, "meta", "User id of the last admin who saved settings"),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(Setting, key) is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
