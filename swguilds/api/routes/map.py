"""
swguilds.api.routes.map — Guild-war tower map
===============================================
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from swguilds.api.deps import CurrentUser, EngineDep, service_errors
from swguilds.services import map_service

router = APIRouter(prefix="/map", tags=["map"])


class TowerBody(BaseModel):
    map_name: str | None = None
    tower_number: str | int | None = None
    name: str | None = None
    stars: int | None = None
    color: str | None = None
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None
    defense_ids: list[Any] | None = None


@router.get("/towers")
def list_towers(user: CurrentUser, engine: EngineDep, map_name: str | None = Query(None)):
    return map_service.list_towers(engine, map_name)


@router.post("/towers", status_code=status.HTTP_201_CREATED)
def create_tower(body: TowerBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return map_service.create_tower(engine, user, body.model_dump())


@router.put("/towers/{tower_id}")
def update_tower(tower_id: str, body: TowerBody, user: CurrentUser, engine: EngineDep):
    """Only the fields sent in the request body are changed."""
    with service_errors():
        return map_service.update_tower(engine, user, tower_id, body.model_dump(exclude_unset=True))


@router.delete("/towers/{tower_id}")
def delete_tower(tower_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        map_service.delete_tower(engine, user, tower_id)
    return {"success": True}
