"""
swguilds.services.assignment_service — Defense assignments ("gestion")
========================================================================

Officers decide which members field which defense in guild war.  An
assignment is a unique ``(defense, member)`` pair; writes need the
``can_edit_assignments`` right.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import joinedload

from swguilds.database.engine import get_session
from swguilds.database.models import Defense, DefenseAssignment, User
from swguilds.services.activity_service import log_activity
from swguilds.services.defense_service import monsters_label
from swguilds.services.errors import ForbiddenError, NotFoundError
from swguilds.services.monster_service import MonsterIndex, owned_monster_names
from swguilds.services.permissions import can_edit_assignments

logger = logging.getLogger(__name__)


def _name_key(name: str | None, identifier: str) -> str:
    return (name or identifier).lower()


def _require_editor(user: User) -> None:
    if not can_edit_assignments(user):
        raise ForbiddenError("You are not allowed to edit assignments")


def _assignment_dict(a: DefenseAssignment) -> dict[str, Any]:
    return {
        "id": a.id,
        "defense_id": a.defense_id,
        "user_id": a.user_id,
        "assigned_by": a.assigned_by,
        "assigned_at": a.assigned_at.isoformat() if a.assigned_at else None,
        "user": {"id": a.user.id, "name": a.user.name, "identifier": a.user.identifier},
    }


def _clean_user_ids(user_ids: list[str] | None) -> list[str]:
    return list(dict.fromkeys(uid for uid in (user_ids or []) if uid))


def assign(engine: Engine, actor: User, defense_id: str, user_ids: list[str] | None) -> dict:
    """Add members to a defense; pairs that already exist are skipped."""
    _require_editor(actor)
    wanted = _clean_user_ids(user_ids)
    if not defense_id or not wanted:
        raise ValueError("defense_id and a non-empty user_ids list are required")

    with get_session(engine) as session:
        defense = session.get(Defense, defense_id)
        if defense is None:
            raise NotFoundError("Defense not found")

        already = set(session.scalars(
            select(DefenseAssignment.user_id).where(DefenseAssignment.defense_id == defense_id)
        ))
        users = {u.id: u for u in session.scalars(select(User).where(User.id.in_(wanted)))}

        created: list[DefenseAssignment] = []
        for uid in wanted:
            if uid in already or uid not in users:
                continue
            row = DefenseAssignment(
                defense_id=defense_id, user_id=uid, assigned_by=actor.display_name
            )
            row.user = users[uid]
            session.add(row)
            created.append(row)
        session.flush()

        if created:
            log_activity(
                session,
                user_id=actor.id,
                action="assign",
                entity_type="defense_assignment",
                entity_id=defense_id,
                details={
                    "defense_monsters": monsters_label(defense),
                    "assigned_to": wanted,
                    "assigned_to_names": [a.user.display_name for a in created],
                    "count": len(created),
                },
            )
        return {
            "success": True,
            "assignments": [_assignment_dict(a) for a in created],
            "count": len(created),
        }


def list_assignments(engine: Engine) -> list[dict]:
    """Assignments grouped by defense, members sorted by display name."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(DefenseAssignment)
            .options(joinedload(DefenseAssignment.defense), joinedload(DefenseAssignment.user))
            .order_by(DefenseAssignment.assigned_at.desc())
        ).all()

        groups: dict[str, dict] = {}
        for a in rows:
            group = groups.get(a.defense_id)
            if group is None:
                d = a.defense
                group = groups[a.defense_id] = {
                    "defense_id": d.id,
                    "defense": {
                        "id": d.id,
                        "leader_monster": d.leader_monster,
                        "monster2": d.monster2,
                        "monster3": d.monster3,
                        "strengths": d.strengths,
                        "weaknesses": d.weaknesses,
                        "notes": d.notes,
                        "created_at": d.created_at.isoformat() if d.created_at else None,
                        "updated_at": d.updated_at.isoformat() if d.updated_at else None,
                    },
                    "users": [],
                }
            group["users"].append({
                "assignment_id": a.id,
                "id": a.user.id,
                "name": a.user.name,
                "identifier": a.user.identifier,
                "assigned_at": a.assigned_at.isoformat() if a.assigned_at else None,
                "assigned_by": a.assigned_by,
            })

    for group in groups.values():
        group["users"].sort(key=lambda u: _name_key(u["name"], u["identifier"]))
    return list(groups.values())


def delete_assignment(engine: Engine, actor: User, assignment_id: str) -> None:
    _require_editor(actor)
    with get_session(engine) as session:
        a = session.get(DefenseAssignment, assignment_id)
        if a is None:
            raise NotFoundError("Assignment not found")
        log_activity(
            session,
            user_id=actor.id,
            action="delete",
            entity_type="defense_assignment",
            entity_id=a.id,
            details={
                "defense_monsters": monsters_label(a.defense),
                "defense_id": a.defense_id,
                "user_id": a.user_id,
                "user_identifier": a.user.identifier,
                "user_name": a.user.display_name,
            },
        )
        session.delete(a)


def sync_defense_assignments(
    engine: Engine, actor: User, defense_id: str, user_ids: list[str] | None
) -> dict:
    """Make the defense's assignees exactly *user_ids*."""
    _require_editor(actor)
    if user_ids is None:
        raise ValueError("user_ids must be a list")
    wanted = _clean_user_ids(user_ids)

    with get_session(engine) as session:
        defense = session.get(Defense, defense_id)
        if defense is None:
            raise NotFoundError("Defense not found")

        existing = session.scalars(
            select(DefenseAssignment)
            .options(joinedload(DefenseAssignment.user))
            .where(DefenseAssignment.defense_id == defense_id)
        ).all()
        current = {a.user_id for a in existing}

        removed = [a for a in existing if a.user_id not in wanted]
        removed_names = [a.user.display_name for a in removed]
        for a in removed:
            session.delete(a)

        to_add = [uid for uid in wanted if uid not in current]
        users = {u.id: u for u in session.scalars(select(User).where(User.id.in_(to_add)))} if to_add else {}
        added_names = []
        for uid in to_add:
            if uid not in users:
                continue
            session.add(DefenseAssignment(
                defense_id=defense_id, user_id=uid, assigned_by=actor.display_name
            ))
            added_names.append(users[uid].display_name)
        session.flush()

        log_activity(
            session,
            user_id=actor.id,
            action="update",
            entity_type="defense_assignment",
            entity_id=defense_id,
            details={
                "defense_monsters": monsters_label(defense),
                "defense_id": defense_id,
                "added": len(added_names),
                "removed": len(removed),
                "added_names": added_names,
                "removed_names": removed_names,
                "total": len(wanted),
            },
        )
        return {"success": True, "added": len(added_names), "removed": len(removed)}


def eligible_users(engine: Engine, defense_id: str, monsters: list[dict]) -> list[dict]:
    """Approved members who own all three monsters of the defense."""
    if not defense_id:
        raise ValueError("defense_id is required")
    index = MonsterIndex(monsters)

    with get_session(engine) as session:
        defense = session.get(Defense, defense_id)
        if defense is None:
            raise NotFoundError("Defense not found")
        needed = {m.strip().lower() for m in defense.monsters}

        result = []
        for user in session.scalars(select(User).where(User.is_approved.is_(True))):
            if needed <= owned_monster_names(session, user, index):
                result.append({"id": user.id, "name": user.name, "identifier": user.identifier})

    result.sort(key=lambda u: _name_key(u["name"], u["identifier"]))
    return result
