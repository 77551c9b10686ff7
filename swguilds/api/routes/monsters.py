"""
swguilds.api.routes.monsters — SwarFarm data, portraits & member boxes
========================================================================

Handlers that need the monster list are ``async``: they await
:func:`monster_service.get_monsters` (memory → file → SwarFarm) and then
push the database part to a worker thread with :func:`run_db`.
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from swguilds.api.deps import ConfigDep, CurrentUser, EngineDep, service_errors
from swguilds.database.engine import run_db
from swguilds.services import monster_service

router = APIRouter(prefix="/monsters", tags=["monsters"])


class ImageRequest(BaseModel):
    image_filename: str | None = None
    monster_name: str | None = None


class ManualMonsterBody(BaseModel):
    monster_name: str | None = None


@router.get("")
async def list_monsters(
    user: CurrentUser,
    cfg: ConfigDep,
    q: str | None = Query(None),
    refresh: bool = Query(False),
):
    monsters = await monster_service.get_monsters(cfg, refresh=refresh)
    return {"monsters": monster_service.filter_by_name(monsters, q)}


@router.get("/images")
async def image_urls(
    user: CurrentUser,
    cfg: ConfigDep,
    monsters: str = Query(""),
):
    """Locally mirrored portrait URLs for a comma-separated list of names."""
    names = [n.strip() for n in monsters.split(",") if n.strip()]
    if not names:
        return {"images": {}}
    data = await monster_service.get_monsters(cfg)
    return {"images": monster_service.local_image_urls(data, names)}


@router.post("/images")
async def download_image(body: ImageRequest, user: CurrentUser, cfg: ConfigDep):
    with service_errors():
        return await monster_service.mirror_image(cfg, body.image_filename or "")


@router.get("/search-users")
async def search_users(
    user: CurrentUser,
    engine: EngineDep,
    cfg: ConfigDep,
    monster_name: str | None = Query(None),
    element: str | None = Query(None),
    stars: int | None = Query(None, ge=1, le=6),
    exact_match: bool = Query(False),
):
    monsters = await monster_service.get_monsters(cfg)
    with service_errors():
        users = await run_db(
            lambda: monster_service.search_users(
                engine,
                monsters,
                monster_name=monster_name,
                element=element,
                stars=stars,
                exact_match=exact_match,
            )
        )
    return {"users": users}


@router.get("/user/{user_id}")
async def user_box(user_id: str, user: CurrentUser, engine: EngineDep, cfg: ConfigDep):
    monsters = await monster_service.get_monsters(cfg)
    with service_errors():
        return await run_db(monster_service.user_box, engine, user, user_id, monsters)


@router.post("/user/{user_id}/manual", status_code=status.HTTP_201_CREATED)
def add_manual(user_id: str, body: ManualMonsterBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return monster_service.add_manual_monster(engine, user, user_id, body.monster_name)


@router.delete("/user/{user_id}/manual")
def remove_manual(
    user_id: str,
    user: CurrentUser,
    engine: EngineDep,
    monster_name: str | None = Query(None),
):
    with service_errors():
        monster_service.remove_manual_monster(engine, user, user_id, monster_name)
    return {"success": True}
