"""
swguilds.api.routes.settings — Instance settings, logo & favicon
==================================================================
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import APIRouter, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel

from swguilds.api.deps import AdminUser, ConfigDep, EngineDep, service_errors
from swguilds.database.engine import run_db
from swguilds.services import settings_service, upload_service

router = APIRouter(tags=["settings"])
logger = logging.getLogger(__name__)

PUBLIC_KEYS = ("instance_name", "logo_url", "updated_at")


class SettingsUpdate(BaseModel):
    instance_name: str | None = None
    logo_url: str | None = None
    approval_webhook_url: str | None = None
    approval_webhook_role_id: str | None = None
    news_webhook_url: str | None = None
    news_webhook_role_id: str | None = None
    discord_webhook_url: str | None = None


@router.get("/settings")
def public_settings(engine: EngineDep):
    """Name and logo for the login page; no authentication required."""
    values = settings_service.get_instance_settings(engine)
    return {key: values.get(key) for key in PUBLIC_KEYS}


@router.get("/admin/settings")
def admin_settings(admin: AdminUser, engine: EngineDep):
    return settings_service.get_instance_settings(engine)


@router.put("/admin/settings")
def update_settings(body: SettingsUpdate, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return settings_service.update_instance_settings(
            engine, admin.id, body.model_dump(exclude_unset=True)
        )


@router.post("/admin/settings/logo")
async def upload_logo(file: UploadFile, admin: AdminUser, engine: EngineDep, cfg: ConfigDep):
    content = await file.read()
    with service_errors():
        url = await upload_service.save_logo(
            file.filename or "logo", content, file.content_type, max_bytes=cfg.max_image_bytes
        )
        await run_db(settings_service.update_instance_settings, engine, admin.id, {"logo_url": url})
    return {"url": url}


def _favicon_path(engine) -> Path | None:
    for candidate in sorted(upload_service.UPLOAD_DIR.glob("favicon.*")):
        if candidate.is_file():
            return candidate
    logo = settings_service.get_value(engine, "logo_url")
    if logo:
        path = upload_service.resolve_upload_path(logo)
        if path is not None and path.is_file():
            return path
    return None


@router.get("/favicon")
def favicon(engine: EngineDep):
    """``uploads/favicon.*``, else the instance logo."""
    path = _favicon_path(engine)
    if path is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "No favicon")
    return FileResponse(path, headers={"Cache-Control": "public, max-age=3600"})
