"""
swguilds.services.map_service — Siege map towers
==================================================

Towers are rectangles placed on a map image (``map_name``), each pairing
up to five defenses with the member who holds them.  Anyone logged in can
read the map; writes need the ``can_edit_map`` right.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import Engine, select

from swguilds.constants import DEFAULT_MAP_NAME, MAX_TOWER_DEFENSES
from swguilds.database.engine import get_session
from swguilds.database.models import MapTower, User
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import ForbiddenError, NotFoundError
from swguilds.services.permissions import can_edit_map

logger = logging.getLogger(__name__)

TOWER_FIELDS = ("map_name", "tower_number", "name", "stars", "color", "x", "y", "width", "height")
_DIGITS = re.compile(r"(\d+)")


def tower_sort_key(tower_number: str) -> list:
    """Natural ordering so tower "10" comes after tower "9"."""
    return [int(p) if p.isdigit() else p.lower() for p in _DIGITS.split(str(tower_number))]


def tower_dict(tower: MapTower) -> dict[str, Any]:
    return {
        "id": tower.id,
        "map_name": tower.map_name,
        "tower_number": tower.tower_number,
        "name": tower.name,
        "stars": tower.stars,
        "color": tower.color,
        "x": tower.x,
        "y": tower.y,
        "width": tower.width,
        "height": tower.height,
        "defense_ids": list(tower.defense_ids or []),
        "created_by": tower.created_by,
        "created_at": tower.created_at.isoformat() if tower.created_at else None,
        "updated_at": tower.updated_at.isoformat() if tower.updated_at else None,
    }


def validate_defense_slots(slots: Any) -> list[dict]:
    """Normalise ``defense_ids`` to ``[{"defense_id", "user_id"}]``.

    Raises
    ------
    ValueError
        On more than five slots or a malformed entry.
    """
    if slots is None:
        return []
    if not isinstance(slots, list):
        raise ValueError("defense_ids must be a list of {defense_id, user_id} objects")
    if len(slots) > MAX_TOWER_DEFENSES:
        raise ValueError(f"At most {MAX_TOWER_DEFENSES} defenses per tower")
    cleaned = []
    for item in slots:
        if not isinstance(item, dict):
            raise ValueError("defense_ids must be a list of {defense_id, user_id} objects")
        defense_id = item.get("defense_id")
        if not defense_id or not isinstance(defense_id, str):
            raise ValueError("Each entry needs a defense_id string")
        user_id = item.get("user_id")
        if user_id is not None and not isinstance(user_id, str):
            raise ValueError("user_id must be a string when given")
        cleaned.append({"defense_id": defense_id, "user_id": user_id})
    return cleaned


def _require_editor(user: User) -> None:
    if not can_edit_map(user):
        raise ForbiddenError("You are not allowed to edit the map")


def _log_details(tower: MapTower) -> dict:
    return {
        "map_name": tower.map_name,
        "tower_number": tower.tower_number,
        "name": tower.name,
        "stars": tower.stars,
    }


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def list_towers(engine: Engine, map_name: str | None = None) -> list[dict]:
    with get_session(engine) as session:
        towers = session.scalars(
            select(MapTower).where(MapTower.map_name == (map_name or DEFAULT_MAP_NAME))
        ).all()
        towers = sorted(towers, key=lambda t: tower_sort_key(t.tower_number))
        return [tower_dict(t) for t in towers]


def create_tower(engine: Engine, user: User, data: dict[str, Any]) -> dict:
    _require_editor(user)
    if not data.get("map_name") or data.get("tower_number") in (None, ""):
        raise ValueError("map_name, tower_number, x and y are required")
    if data.get("x") is None or data.get("y") is None:
        raise ValueError("map_name, tower_number, x and y are required")
    slots = validate_defense_slots(data.get("defense_ids"))

    with get_session(engine) as session:
        tower = MapTower(
            map_name=data["map_name"],
            tower_number=str(data["tower_number"]),
            name=data.get("name") or None,
            stars=data.get("stars") or 5,
            color=data.get("color") or "blue",
            x=data["x"],
            y=data["y"],
            width=data.get("width") or 150,
            height=data.get("height") or 100,
            defense_ids=slots,
            created_by=user.id,
        )
        session.add(tower)
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="create",
            entity_type="map_tower",
            entity_id=tower.id,
            details=_log_details(tower),
        )
        return tower_dict(tower)


def update_tower(engine: Engine, user: User, tower_id: str, changes: dict[str, Any]) -> dict:
    """Partial update: only keys present in *changes* are applied."""
    _require_editor(user)
    slots = validate_defense_slots(changes["defense_ids"]) if "defense_ids" in changes else None

    with get_session(engine) as session:
        tower = session.get(MapTower, tower_id)
        if tower is None:
            raise NotFoundError("Tower not found")
        for key in TOWER_FIELDS:
            if key in changes and changes[key] is not None:
                value = changes[key]
                setattr(tower, key, str(value) if key == "tower_number" else value)
        if "name" in changes and changes["name"] is None:
            tower.name = None
        if slots is not None:
            tower.defense_ids = slots
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="update",
            entity_type="map_tower",
            entity_id=tower.id,
            details=_log_details(tower),
        )
        return tower_dict(tower)


def delete_tower(engine: Engine, user: User, tower_id: str) -> None:
    _require_editor(user)
    with get_session(engine) as session:
        tower = session.get(MapTower, tower_id)
        if tower is None:
            raise NotFoundError("Tower not found")
        log_activity(
            session,
            user_id=user.id,
            action="delete",
            entity_type="map_tower",
            entity_id=tower.id,
            details=_log_details(tower),
        )
        session.delete(tower)
