"""
swguilds.api.routes.admin — Admin panel endpoints
===================================================

Member management, activity journal, tags, database maintenance, the
SwarFarm refresh and live server logs.  Everything except ``/check``
requires an admin session.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse
from pydantic import BaseModel

from swguilds.api.deps import AdminUser, ConfigDep, CurrentUser, EngineDep, service_errors
from swguilds.database.engine import run_db
from swguilds.services import (
    activity_service,
    maintenance_service,
    monster_service,
    tag_service,
    user_service,
)
from swguilds.services.log_buffer import (
    VALID_LEVELS,
    get_current_level,
    get_logs,
    set_capture_level,
)

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ApprovalUpdate(BaseModel):
    user_id: str
    is_approved: bool | None = None
    role: str | None = None


class UserPatch(BaseModel):
    new_password: str | None = None
    name: str | None = None
    can_edit_all_defenses: bool | None = None
    can_edit_map: bool | None = None
    can_edit_assignments: bool | None = None
    can_edit_news: bool | None = None


class LockUpdate(BaseModel):
    is_approved: bool


class TagBody(BaseModel):
    name: str | None = None
    color: str | None = None


class LevelUpdate(BaseModel):
    level: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
@router.get("/check")
def check_admin(user: CurrentUser):
    return {"is_admin": user.is_admin}


@router.get("/users")
def list_users(admin: AdminUser, engine: EngineDep):
    return user_service.list_users_admin(engine)


@router.put("/users")
def approve_user(body: ApprovalUpdate, admin: AdminUser, engine: EngineDep):
    """Approve/reject an account and/or change its role."""
    with service_errors():
        return user_service.set_approval_and_role(
            engine, admin, body.user_id, is_approved=body.is_approved, role=body.role
        )


@router.patch("/users/{user_id}")
def patch_user(user_id: str, body: UserPatch, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return user_service.admin_update_user(
            engine, admin, user_id, body.model_dump(exclude_unset=True)
        )


@router.put("/users/{user_id}")
def lock_user(user_id: str, body: LockUpdate, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return user_service.set_locked(engine, admin, user_id, body.is_approved)


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return user_service.delete_user(engine, admin, user_id)


@router.delete("/users/{user_id}/avatar")
def delete_avatar(user_id: str, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return user_service.remove_avatar(engine, admin, user_id)


# ---------------------------------------------------------------------------
# Activity journal
# ---------------------------------------------------------------------------
@router.get("/logs")
def activity_logs(
    admin: AdminUser,
    engine: EngineDep,
    limit: int = Query(100, ge=1, le=activity_service.MAX_LOG_LIMIT),
    entity_type: str | None = Query(None),
    action: str | None = Query(None),
):
    return activity_service.list_logs(engine, limit=limit, entity_type=entity_type, action=action)


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------
@router.get("/tags")
def list_tags(admin: AdminUser, engine: EngineDep):
    return tag_service.list_tags(engine, newest_first=True)


@router.post("/tags", status_code=status.HTTP_201_CREATED)
def create_tag(body: TagBody, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return tag_service.create_tag(engine, admin.id, body.name, body.color, log=True)


@router.put("/tags/{tag_id}")
def update_tag(tag_id: str, body: TagBody, admin: AdminUser, engine: EngineDep):
    with service_errors():
        return tag_service.update_tag(engine, admin.id, tag_id, body.name, body.color)


@router.delete("/tags/{tag_id}")
def delete_tag(tag_id: str, admin: AdminUser, engine: EngineDep):
    with service_errors():
        tag_service.delete_tag(engine, admin.id, tag_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Database maintenance
# ---------------------------------------------------------------------------
@router.post("/db/clean")
def clean_database(admin: AdminUser, engine: EngineDep):
    deleted = maintenance_service.clean_orphans(engine, admin.id)
    return {"message": "Cleanup finished", "deleted_count": deleted}


@router.get("/db/export")
def export_database(admin: AdminUser, engine: EngineDep):
    with service_errors():
        path = maintenance_service.export_database(engine)
    logger.info("Database exported by %s", admin.identifier)
    return FileResponse(path, media_type="application/x-sqlite3", filename=path.name)


@router.post("/db/import")
async def import_database(admin: AdminUser, engine: EngineDep, file: UploadFile | None = None):
    if file is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No file provided")
    content = await file.read()
    with service_errors():
        await run_db(maintenance_service.import_database, engine, file.filename or "", content)
    return {"message": "Database imported"}


@router.post("/update-counter-creators")
def update_counter_creators(admin: AdminUser, engine: EngineDep):
    updated = maintenance_service.backfill_counter_creators(engine)
    return {"message": f"{updated} counter(s) updated", "updated": updated}


@router.post("/update-swarfarm-data")
async def update_swarfarm_data(admin: AdminUser, cfg: ConfigDep):
    """Re-download SwarFarm data and mirror every missing portrait."""
    logger.info("SwarFarm refresh requested by %s", admin.identifier)
    with service_errors():
        stats = await monster_service.refresh_swarfarm_data(cfg)
    return {"success": True, "stats": stats}


# ---------------------------------------------------------------------------
# Live server logs
# ---------------------------------------------------------------------------
@router.get("/server-logs")
def server_logs(
    admin: AdminUser,
    tail: int = Query(200, ge=1, le=5000),
    level: str | None = Query(None),
    logger_filter: str | None = Query(None, alias="logger"),
):
    """Recent entries from the in-memory ring buffer."""
    with service_errors():
        entries = get_logs(tail=tail, level=level, logger_filter=logger_filter)
    return {
        "entries": entries,
        "total": len(entries),
        "capture_level": get_current_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/server-logs/level")
def set_log_level(body: LevelUpdate, admin: AdminUser):
    with service_errors():
        level = set_capture_level(body.level)
    logger.info("Log capture level set to %s by %s", level, admin.identifier)
    return {"capture_level": level}
