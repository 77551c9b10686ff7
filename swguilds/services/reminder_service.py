"""
swguilds.services.reminder_service — Weekly Discord reminders
===============================================================

Admins schedule messages ("siege in 1h!") for given weekdays at a fixed
wall-clock time in the guild's zone (``TIMEZONE``, default
``Europe/Paris``).  An external poller hits ``/api/cron/reminders`` once a
minute; :func:`check_and_send_reminders` posts every reminder whose day,
hour and minute match *now*.

Weekdays are numbered 0 = Sunday … 6 = Saturday.  ``last_sent`` is
compared by local calendar date so a reminder fires at most once a day
even if the poller runs twice in the same minute.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import Engine, select

from swguilds.constants import app_timezone, as_utc, role_mention
from swguilds.database.engine import get_session, run_db
from swguilds.database.models import Reminder, User
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import NotFoundError, WebhookError
from swguilds.services.webhook_service import post_webhook

logger = logging.getLogger(__name__)

REMINDER_FIELDS = (
    "title", "message", "days_of_week", "hour", "minute",
    "discord_role_id", "webhook_url", "is_active",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def sunday_weekday(moment: datetime) -> int:
    """Weekday with 0 = Sunday (``datetime.weekday`` has 0 = Monday)."""
    return (moment.weekday() + 1) % 7


def format_reminder_message(message: str, role_id: str | None) -> str:
    return f"{role_mention(role_id)} {message}" if role_id else message


def reminder_dict(r: Reminder) -> dict[str, Any]:
    return {
        "id": r.id,
        "title": r.title,
        "message": r.message,
        "days_of_week": list(r.days_of_week or []),
        "hour": r.hour,
        "minute": r.minute,
        "discord_role_id": r.discord_role_id,
        "webhook_url": r.webhook_url,
        "is_active": r.is_active,
        "last_sent": as_utc(r.last_sent).isoformat() if r.last_sent else None,
        "created_by": r.created_by,
        "created_at": as_utc(r.created_at).isoformat() if r.created_at else None,
        "updated_at": as_utc(r.updated_at).isoformat() if r.updated_at else None,
    }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_days(days: Any) -> list[int]:
    if not isinstance(days, list) or not days:
        raise ValueError("days_of_week must be a non-empty list")
    if not all(_is_int(d) and 0 <= d <= 6 for d in days):
        raise ValueError("days_of_week entries must be integers 0 (Sunday) to 6 (Saturday)")
    return sorted(set(days))


def validate_hour(hour: Any) -> int:
    if not _is_int(hour) or not 0 <= hour <= 23:
        raise ValueError("hour must be an integer between 0 and 23")
    return hour


def validate_minute(minute: Any) -> int:
    if not _is_int(minute) or not 0 <= minute <= 59:
        raise ValueError("minute must be an integer between 0 and 59")
    return minute


def validate_webhook_url(url: Any) -> str:
    parsed = urlparse(url or "") if isinstance(url, str) else None
    if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Invalid webhook URL")
    return url


_VALIDATORS = {
    "days_of_week": validate_days,
    "hour": validate_hour,
    "minute": validate_minute,
    "webhook_url": validate_webhook_url,
}


def _get(session, reminder_id: str) -> Reminder:
    reminder = session.get(Reminder, reminder_id)
    if reminder is None:
        raise NotFoundError("Reminder not found")
    return reminder


# ---------------------------------------------------------------------------
# Admin CRUD
# ---------------------------------------------------------------------------
def list_reminders(engine: Engine) -> list[dict]:
    with get_session(engine) as session:
        rows = session.scalars(select(Reminder).order_by(Reminder.created_at.desc())).all()
        return [reminder_dict(r) for r in rows]


def create_reminder(engine: Engine, actor: User, data: dict[str, Any]) -> dict:
    title = (data.get("title") or "").strip()
    message = (data.get("message") or "").strip()
    if not title or not message or data.get("days_of_week") is None \
            or data.get("hour") is None or not data.get("webhook_url"):
        raise ValueError("title, message, days_of_week, hour and webhook_url are required")
    days = validate_days(data["days_of_week"])
    hour = validate_hour(data["hour"])
    minute = validate_minute(data["minute"] if data.get("minute") is not None else 0)
    url = validate_webhook_url(data["webhook_url"])

    with get_session(engine) as session:
        reminder = Reminder(
            title=title,
            message=message,
            days_of_week=days,
            hour=hour,
            minute=minute,
            discord_role_id=data.get("discord_role_id") or None,
            webhook_url=url,
            is_active=data.get("is_active") is not False,
            created_by=actor.id,
        )
        session.add(reminder)
        session.flush()
        log_activity(
            session,
            user_id=actor.id,
            action="create",
            entity_type="reminder",
            entity_id=reminder.id,
            details={
                "title": title,
                "message": message,
                "days_of_week": days,
                "hour": hour,
                "minute": minute,
            },
        )
        return reminder_dict(reminder)


def update_reminder(engine: Engine, actor: User, reminder_id: str, changes: dict[str, Any]) -> dict:
    """Partial update; raises ``ValueError`` when *changes* holds nothing."""
    updates: dict[str, Any] = {}
    for key in REMINDER_FIELDS:
        if key not in changes:
            continue
        value = changes[key]
        if key in _VALIDATORS:
            value = _VALIDATORS[key](value)
        elif key == "discord_role_id":
            value = value or None
        elif key == "is_active":
            value = bool(value)
        elif key in ("title", "message"):
            value = (value or "").strip()
            if not value:
                raise ValueError(f"{key} cannot be empty")
        updates[key] = value
    if not updates:
        raise ValueError("Nothing to update")

    with get_session(engine) as session:
        reminder = _get(session, reminder_id)
        for key, value in updates.items():
            setattr(reminder, key, value)
        session.flush()
        log_activity(
            session,
            user_id=actor.id,
            action="update",
            entity_type="reminder",
            entity_id=reminder.id,
            details={"title": reminder.title, "updated_fields": sorted(updates)},
        )
        return reminder_dict(reminder)


def set_active(engine: Engine, actor: User, reminder_id: str, is_active: Any) -> dict:
    if not isinstance(is_active, bool):
        raise ValueError("is_active must be a boolean")
    with get_session(engine) as session:
        reminder = _get(session, reminder_id)
        reminder.is_active = is_active
        log_activity(
            session,
            user_id=actor.id,
            action="activate" if is_active else "deactivate",
            entity_type="reminder",
            entity_id=reminder.id,
            details={"title": reminder.title, "is_active": is_active},
        )
        return reminder_dict(reminder)


def delete_reminder(engine: Engine, actor: User, reminder_id: str) -> None:
    with get_session(engine) as session:
        reminder = _get(session, reminder_id)
        log_activity(
            session,
            user_id=actor.id,
            action="delete",
            entity_type="reminder",
            entity_id=reminder.id,
            details={"title": reminder.title, "message": reminder.message},
        )
        session.delete(reminder)


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------
def _mark_sent(engine: Engine, reminder_id: str, sent_at: datetime) -> None:
    with get_session(engine) as session:
        reminder = session.get(Reminder, reminder_id)
        if reminder is not None:
            reminder.last_sent = sent_at


def _snapshot(engine: Engine, reminder_id: str) -> tuple[str, str, str]:
    with get_session(engine) as session:
        r = _get(session, reminder_id)
        return r.title, r.webhook_url, format_reminder_message(r.message, r.discord_role_id)


async def send_now(engine: Engine, actor: User, reminder_id: str) -> dict:
    """Send a reminder immediately (admin "test" button).

    Raises
    ------
    WebhookError
        If Discord rejects the message; ``last_sent`` is left untouched.
    """
    title, url, content = await run_db(_snapshot, engine, reminder_id)
    await post_webhook(url, content)
    await run_db(_mark_sent, engine, reminder_id, datetime.now(UTC))

    def _log() -> None:
        with get_session(engine) as session:
            log_activity(
                session,
                user_id=actor.id,
                action="send",
                entity_type="reminder",
                entity_id=reminder_id,
                details={"title": title, "sent_manually": True},
            )

    await run_db(_log)
    logger.info("Reminder %r sent manually by %s", title, actor.identifier)
    return {"success": True}


def due_reminders(engine: Engine, now: datetime) -> list[tuple[str, str, str, str]]:
    """Active reminders scheduled for *now* and not yet sent today.

    *now* must be aware; matching happens on its wall-clock in the guild
    zone.  Returns ``(id, title, webhook_url, content)`` tuples.
    """
    local_now = now.astimezone(app_timezone())
    weekday = sunday_weekday(local_now)
    today = local_now.date()

    due = []
    with get_session(engine) as session:
        rows = session.scalars(
            select(Reminder).where(
                Reminder.is_active.is_(True),
                Reminder.hour == local_now.hour,
                Reminder.minute == local_now.minute,
            )
        ).all()
        for r in rows:
            if weekday not in (r.days_of_week or []):
                continue
            if r.last_sent is not None and as_utc(r.last_sent).astimezone(local_now.tzinfo).date() == today:
                continue
            due.append((r.id, r.title, r.webhook_url, format_reminder_message(r.message, r.discord_role_id)))
    return due


async def check_and_send_reminders(engine: Engine, now: datetime | None = None) -> int:
    """Post every due reminder.  Returns how many were delivered.

    A failed delivery is logged and skipped; it will not be retried this
    minute, and ``last_sent`` stays unchanged.
    """
    now = as_utc(now) if now is not None else datetime.now(UTC)
    due = await run_db(due_reminders, engine, now)

    sent = 0
    for reminder_id, title, url, content in due:
        try:
            await post_webhook(url, content)
        except WebhookError:
            logger.error("Reminder %r (%s) could not be delivered", title, reminder_id, exc_info=True)
            continue
        await run_db(_mark_sent, engine, reminder_id, now)
        sent += 1
        logger.info("Reminder %r sent", title)
    return sent
