"""
swguilds.api.routes.gestion — Defense assignments
===================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from pydantic import BaseModel

from swguilds.api.deps import ConfigDep, CurrentUser, EngineDep, service_errors
from swguilds.database.engine import run_db
from swguilds.services import assignment_service, monster_service

router = APIRouter(prefix="/gestion", tags=["gestion"])


class AssignBody(BaseModel):
    defense_id: str | None = None
    user_ids: list[str] | None = None


class SyncBody(BaseModel):
    user_ids: list[str] | None = None


@router.post("/assign")
def assign(body: AssignBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return assignment_service.assign(engine, user, body.defense_id or "", body.user_ids)


@router.get("/assignments")
def list_assignments(user: CurrentUser, engine: EngineDep):
    return assignment_service.list_assignments(engine)


@router.delete("/assignments/{assignment_id}")
def delete_assignment(assignment_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        assignment_service.delete_assignment(engine, user, assignment_id)
    return {"success": True}


@router.put("/assignments/defense/{defense_id}")
def sync_assignments(defense_id: str, body: SyncBody, user: CurrentUser, engine: EngineDep):
    """Replace the defense's assignees with ``user_ids``."""
    with service_errors():
        return assignment_service.sync_defense_assignments(engine, user, defense_id, body.user_ids)


@router.get("/check-users")
async def check_users(
    user: CurrentUser,
    engine: EngineDep,
    cfg: ConfigDep,
    defense_id: str | None = Query(None),
):
    """Approved members who own the three monsters of ``defense_id``."""
    monsters = await monster_service.get_monsters(cfg)
    with service_errors():
        users = await run_db(assignment_service.eligible_users, engine, defense_id or "", monsters)
    return {"users": users}
