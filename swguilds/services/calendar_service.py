"""
swguilds.services.calendar_service — Absences & guild events
==============================================================

Members log absences (and other dated events) so officers can plan war
assignments.  A new absence is announced on the guild Discord.
"""

from __future__ import annotations

import calendar as _calendar
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import joinedload

from swguilds.constants import ABSENCE_MESSAGE, UNKNOWN_AUTHOR, app_timezone, as_utc
from swguilds.database.engine import get_session
from swguilds.database.models import CalendarEvent, CalendarEventType, User
from swguilds.services import settings_service
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset(t.value for t in CalendarEventType)


def event_dict(event: CalendarEvent) -> dict[str, Any]:
    user = event.user
    return {
        "id": event.id,
        "user_id": event.user_id,
        "event_type": event.event_type,
        "start_date": as_utc(event.start_date).isoformat(),
        "end_date": as_utc(event.end_date).isoformat(),
        "description": event.description,
        "created_at": as_utc(event.created_at).isoformat() if event.created_at else None,
        "updated_at": as_utc(event.updated_at).isoformat() if event.updated_at else None,
        "user": {"id": user.id, "name": user.name, "identifier": user.identifier} if user else None,
    }


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """First and last instant of a month in the guild's time zone, as UTC."""
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    tz = app_timezone()
    last_day = _calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, tzinfo=tz)
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=tz)
    return as_utc(start), as_utc(end)


def _validate_type(event_type: str | None) -> None:
    if event_type not in EVENT_TYPES:
        raise ValueError('Invalid event type, expected "absence" or "autre"')


def _log_details(event: CalendarEvent) -> dict:
    return {
        "event_type": event.event_type,
        "start_date": as_utc(event.start_date).isoformat(),
        "end_date": as_utc(event.end_date).isoformat(),
        "description": event.description,
    }


def _editable(session, user: User, event_id: str) -> CalendarEvent:
    event = session.get(CalendarEvent, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    if event.user_id != user.id and not user.is_admin:
        raise ForbiddenError("You can only change your own events")
    return event


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def list_events(
    engine: Engine,
    *,
    year: int | None = None,
    month: int | None = None,
    user_id: str | None = None,
) -> list[dict]:
    """Events overlapping the given month (all events when no month is given)."""
    stmt = select(CalendarEvent).options(joinedload(CalendarEvent.user))
    if year is not None and month is not None:
        start, end = month_bounds(year, month)
        stmt = stmt.where(CalendarEvent.start_date <= end, CalendarEvent.end_date >= start)
    if user_id:
        stmt = stmt.where(CalendarEvent.user_id == user_id)
    stmt = stmt.order_by(CalendarEvent.start_date.asc())

    with get_session(engine) as session:
        return [event_dict(e) for e in session.scalars(stmt).all()]


def create_event(
    engine: Engine, actor: User, data: dict[str, Any]
) -> tuple[dict, tuple[str, str] | None]:
    """Create an event.

    Returns ``(event, absence_notice)`` where *absence_notice* is
    ``(webhook_url, content)`` when an absence should be announced.
    """
    event_type = data.get("event_type")
    start, end = as_utc(data.get("start_date")), as_utc(data.get("end_date"))
    if not event_type or start is None or end is None:
        raise ValueError("event_type, start_date and end_date are required")
    _validate_type(event_type)
    if end < start:
        raise ValueError("end_date must not be before start_date")

    target_id = data.get("user_id")
    with get_session(engine) as session:
        owner = actor
        if target_id and target_id != actor.id:
            if not actor.is_admin:
                raise ForbiddenError("Only admins can create events for other members")
            owner = session.get(User, target_id)
            if owner is None:
                raise NotFoundError("Target user not found")
            if not owner.is_approved:
                raise ForbiddenError("Target user is not approved")

        event = CalendarEvent(
            user_id=owner.id,
            event_type=event_type,
            start_date=start,
            end_date=end,
            description=data.get("description") or None,
        )
        session.add(event)
        session.flush()

        details = _log_details(event)
        if owner.id != actor.id:
            details["target_user_id"] = owner.id
            details["target_user_name"] = owner.display_name or UNKNOWN_AUTHOR
        log_activity(
            session,
            user_id=actor.id,
            action="create",
            entity_type="calendar",
            entity_id=event.id,
            details=details,
        )

        notice = None
        if event_type == CalendarEventType.ABSENCE:
            url = settings_service.get_setting_value(session, "discord_webhook_url")
            if url:
                tz = app_timezone()
                notice = (url, ABSENCE_MESSAGE.format(
                    name=owner.display_name,
                    start=start.astimezone(tz).strftime("%d/%m/%Y"),
                    end=end.astimezone(tz).strftime("%d/%m/%Y"),
                ))

        event = session.scalar(
            select(CalendarEvent)
            .options(joinedload(CalendarEvent.user))
            .where(CalendarEvent.id == event.id)
        )
        return event_dict(event), notice


def update_event(engine: Engine, actor: User, event_id: str, changes: dict[str, Any]) -> dict:
    with get_session(engine) as session:
        event = _editable(session, actor, event_id)
        if changes.get("event_type"):
            _validate_type(changes["event_type"])
            event.event_type = changes["event_type"]
        start = as_utc(changes.get("start_date")) or as_utc(event.start_date)
        end = as_utc(changes.get("end_date")) or as_utc(event.end_date)
        if end < start:
            raise ValueError("end_date must not be before start_date")
        event.start_date, event.end_date = start, end
        if "description" in changes:
            event.description = changes["description"] or None
        session.flush()
        log_activity(
            session,
            user_id=actor.id,
            action="update",
            entity_type="calendar",
            entity_id=event.id,
            details=_log_details(event),
        )
        return event_dict(event)


def delete_event(engine: Engine, actor: User, event_id: str) -> None:
    with get_session(engine) as session:
        event = _editable(session, actor, event_id)
        log_activity(
            session,
            user_id=actor.id,
            action="delete",
            entity_type="calendar",
            entity_id=event.id,
            details=_log_details(event),
        )
        session.delete(event)
