"""
swguilds.api.routes.reminders — Reminder admin & cron trigger
===============================================================

``/api/cron/reminders`` is called once a minute by ``python -m
swguilds.cron`` (or any external scheduler).  When ``CRON_SECRET`` is set
the caller must send ``Authorization: Bearer <CRON_SECRET>``.
"""

from __future__ import annotations

import hmac
import logging
import os
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Header, HTTPException, status
from pydantic import BaseModel

from swguilds.api.deps import AdminUser, EngineDep, service_errors
from swguilds.services import reminder_service

router = APIRouter(tags=["reminders"])
logger = logging.getLogger(__name__)


class ReminderBody(BaseModel):
    title: str | None = None
    message: str | None = None
    days_of_week: list[Any] | None = None
    hour: Any = None
    minute: Any = None
    discord_role_id: str | None = None
    webhook_url: str | None = None
    is_active: bool | None = None


class ActiveBody(BaseModel):
    is_active: Any = None


# ---------------------------------------------------------------------------
# Admin CRUD
# ---------------------------------------------------------------------------
@router.get("/admin/reminders")
def list_reminders(admin: AdminUser, engine: EngineDep):
    return reminder_service.list_reminders(engine)


@router.post("/admin/reminders", status_code=status.HTTP_201_CREATED)
def create_reminder(body: ReminderBody, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return reminder_service.create_reminder(engine, admin, body.model_dump())


@router.put("/admin/reminders/{reminder_id}")
def update_reminder(reminder_id: str, body: ReminderBody, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return reminder_service.update_reminder(
            engine, admin, reminder_id, body.model_dump(exclude_unset=True)
        )


@router.patch("/admin/reminders/{reminder_id}")
def toggle_reminder(reminder_id: str, body: ActiveBody, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return reminder_service.set_active(engine, admin, reminder_id, body.is_active)


@router.delete("/admin/reminders/{reminder_id}")
def delete_reminder(reminder_id: str, admin: AdminUser, engine: EngineDep):
    with service_errors():
        reminder_service.delete_reminder(engine, admin, reminder_id)
    return {"success": True}


@router.post("/admin/reminders/{reminder_id}/send")
async def send_reminder(reminder_id: str, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return await reminder_service.send_now(engine, admin, reminder_id)


# ---------------------------------------------------------------------------
# Cron trigger
# ---------------------------------------------------------------------------
def _check_cron_secret(authorization: str | None) -> None:
    secret = os.getenv("CRON_SECRET", "")
    if not secret:
        return
    if not hmac.compare_digest(authorization or "", f"Bearer {secret}"):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid cron secret")


@router.api_route("/cron/reminders", methods=["GET", "POST"])
async def run_reminders(
    engine: EngineDep,
    authorization: Annotated[str | None, Header()] = None,
):
    """Send every reminder due this minute."""
    _check_cron_secret(authorization)
    sent = await reminder_service.check_and_send_reminders(engine)
    if sent:
        logger.info("Cron tick sent %d reminder(s)", sent)
    return {"success": True, "sent_count": sent, "timestamp": datetime.now(UTC).isoformat()}
