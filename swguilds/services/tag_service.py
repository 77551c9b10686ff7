"""
swguilds.services.tag_service — Defense tags
==============================================

Any member may create a tag from the defense form; renaming, recolouring
and deleting are admin-only.  Tag names are unique.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import Engine, select

from swguilds.constants import DEFAULT_TAG_COLOR
from swguilds.database.engine import get_session
from swguilds.database.models import Tag
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import NotFoundError

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def tag_dict(tag: Tag) -> dict:
    return {
        "id": tag.id,
        "name": tag.name,
        "color": tag.color,
        "created_at": tag.created_at.isoformat() if tag.created_at else None,
    }


def _clean(name: str | None, color: str | None) -> tuple[str, str]:
    name = (name or "").strip()
    if not name:
        raise ValueError("Tag name is required")
    color = (color or "").strip() or DEFAULT_TAG_COLOR
    if not _HEX_COLOR.match(color):
        raise ValueError(f"Invalid color {color!r}, expected #RRGGBB")
    return name, color


def list_tags(engine: Engine, *, newest_first: bool = False) -> list[dict]:
    order = Tag.created_at.desc() if newest_first else Tag.name.asc()
    with get_session(engine) as session:
        return [tag_dict(t) for t in session.scalars(select(Tag).order_by(order)).all()]


def create_tag(engine: Engine, actor_id: str, name: str | None, color: str | None = None,
               *, log: bool = False) -> dict:
    name, color = _clean(name, color)
    with get_session(engine) as session:
        if session.scalar(select(Tag.id).where(Tag.name == name)) is not None:
            raise ValueError("This tag already exists")
        tag = Tag(name=name, color=color)
        session.add(tag)
        session.flush()
        if log:
            log_activity(
                session,
                user_id=actor_id,
                action="create",
                entity_type="tag",
                entity_id=tag.id,
                details={"tag_name": name, "tag_color": color},
            )
        return tag_dict(tag)


def update_tag(engine: Engine, actor_id: str, tag_id: str, name: str | None, color: str | None) -> dict:
    with get_session(engine) as session:
        tag = session.get(Tag, tag_id)
        if tag is None:
            raise NotFoundError("Tag not found")
        new_name, new_color = _clean(name or tag.name, color or tag.color)
        clash = session.scalar(select(Tag.id).where(Tag.name == new_name, Tag.id != tag.id))
        if clash is not None:
            raise ValueError("A tag with this name already exists")

        previous = (tag.name, tag.color)
        tag.name, tag.color = new_name, new_color
        log_activity(
            session,
            user_id=actor_id,
            action="update",
            entity_type="tag",
            entity_id=tag.id,
            details={
                "previous_name": previous[0],
                "new_name": new_name,
                "previous_color": previous[1],
                "new_color": new_color,
            },
        )
        return tag_dict(tag)


def delete_tag(engine: Engine, actor_id: str, tag_id: str) -> None:
    with get_session(engine) as session:
        tag = session.get(Tag, tag_id)
        if tag is None:
            raise NotFoundError("Tag not found")
        log_activity(
            session,
            user_id=actor_id,
            action="delete",
            entity_type="tag",
            entity_id=tag.id,
            details={"tag_name": tag.name, "tag_color": tag.color},
        )
        session.delete(tag)
    logger.info("Tag %s deleted by %s", tag_id, actor_id)
