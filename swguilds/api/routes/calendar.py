"""
swguilds.api.routes.calendar — Absences & events
==================================================
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Query, status
from pydantic import BaseModel

from swguilds.api.deps import CurrentUser, EngineDep, service_errors
from swguilds.services import calendar_service, webhook_service

router = APIRouter(prefix="/calendar", tags=["calendar"])


class EventBody(BaseModel):
    event_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    description: str | None = None
    user_id: str | None = None


@router.get("")
def list_events(
    user: CurrentUser,
    engine: EngineDep,
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None),
    user_id: str | None = Query(None),
):
    """Events overlapping ``month``/``year`` (everything when omitted)."""
    with service_errors():
        return calendar_service.list_events(engine, year=year, month=month, user_id=user_id)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_event(
    body: EventBody,
    user: CurrentUser,
    engine: EngineDep,
    background: BackgroundTasks,
):
    with service_errors():
        event, notice = calendar_service.create_event(engine, user, body.model_dump())
    if notice is not None:
        background.add_task(webhook_service.send_quietly, *notice)
    return event


@router.put("/{event_id}")
def update_event(event_id: str, body: EventBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return calendar_service.update_event(
            engine, user, event_id, body.model_dump(exclude_unset=True)
        )


@router.delete("/{event_id}")
def delete_event(event_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        calendar_service.delete_event(engine, user, event_id)
    return {"success": True}
