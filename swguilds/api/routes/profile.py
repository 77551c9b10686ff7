"""
swguilds.api.routes.profile — The caller's own account
========================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, UploadFile, status
from pydantic import BaseModel

from swguilds.api.deps import ConfigDep, CurrentUser, EngineDep, service_errors
from swguilds.database.engine import run_db
from swguilds.services import monster_service, upload_service, user_service

router = APIRouter(tags=["profile"])
logger = logging.getLogger(__name__)


class ProfileUpdate(BaseModel):
    identifier: str | None = None
    name: str | None = None
    password: str | None = None
    avatar_url: str | None = None
    preferred_locale: str | None = None


class ProfileAction(BaseModel):
    action: str | None = None


@router.get("/user/profile")
def get_profile(user: CurrentUser, engine: EngineDep):
    with service_errors():
        return user_service.get_profile(engine, user.id)


@router.put("/user/profile")
def update_profile(body: ProfileUpdate, user: CurrentUser, engine: EngineDep):
    """Change only the fields present in the body."""
    with service_errors():
        return user_service.update_profile(engine, user.id, body.model_dump(exclude_unset=True))


@router.post("/user/profile")
def profile_action(body: ProfileAction, user: CurrentUser, engine: EngineDep):
    if body.action != "regenerate_api_key":
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Unknown action")
    with service_errors():
        return {"api_key": user_service.regenerate_api_key(engine, user.id)}


@router.post("/user/profile/upload")
async def upload_avatar(file: UploadFile, user: CurrentUser, engine: EngineDep, cfg: ConfigDep):
    """Store the avatar as ``uploads/profiles/{name}.{ext}``."""
    content = await file.read()
    with service_errors():
        url = await upload_service.save_avatar(
            user.name or "",
            file.filename or "avatar",
            content,
            file.content_type,
            max_bytes=cfg.max_image_bytes,
        )
        profile = await run_db(user_service.set_avatar, engine, user.id, url)
    if user.avatar_url and user.avatar_url != url:
        upload_service.delete_upload(user.avatar_url)
    return {"url": url, "user": profile}


@router.post("/user/profile/upload-json")
async def upload_json_box(file: UploadFile, user: CurrentUser, engine: EngineDep, cfg: ConfigDep):
    """Store the member's game export and drop manual monsters it now covers."""
    content = await file.read()
    with service_errors():
        data = upload_service.parse_json_upload(
            file.filename or "", content, max_bytes=cfg.max_json_bytes
        )
        url = await upload_service.save_json_box(user.name or user.identifier, content)
        monsters = await monster_service.get_monsters(cfg)
        return await run_db(monster_service.record_json_upload, engine, user.id, url, data, monsters)


@router.get("/users")
def list_users(user: CurrentUser, engine: EngineDep):
    """Approved members, for pickers."""
    return user_service.list_approved_users(engine)
