"""
swguilds.services.defense_service — Defenses, counters & votes
================================================================

A defense is a leader plus two monsters.  Members see their own defenses
and every public one; counters hang off a defense and both can be liked
or disliked once per member.

Counters are ranked by likes (desc), then dislikes (asc), then newest
first.  Two defenses of the same member are duplicates when the leader
matches and the two followers match in either order.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, and_, delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from swguilds.database.engine import get_session
from swguilds.database.models import (
    Counter,
    CounterVote,
    Defense,
    DefenseTag,
    DefenseVote,
    Tag,
    User,
    VoteType,
)
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import ForbiddenError, NotFoundError
from swguilds.services.permissions import can_edit_defense, is_creator

logger = logging.getLogger(__name__)

VOTE_TYPES = frozenset(v.value for v in VoteType)
DEFENSE_TEXT_FIELDS = ("strengths", "weaknesses", "attack_sequence", "notes")


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------
def _iso(value):
    return value.isoformat() if value else None


def _vote_counts(votes) -> tuple[int, int]:
    likes = sum(1 for v in votes if v.vote_type == VoteType.LIKE)
    dislikes = sum(1 for v in votes if v.vote_type == VoteType.DISLIKE)
    return likes, dislikes


def counter_dict(counter: Counter, *, with_votes: bool = True) -> dict[str, Any]:
    data = {
        "id": counter.id,
        "defense_id": counter.defense_id,
        "counter_monsters": list(counter.counter_monsters or []),
        "description": counter.description,
        "created_by": counter.created_by,
        "updated_by": counter.updated_by,
        "created_at": _iso(counter.created_at),
        "updated_at": _iso(counter.updated_at),
    }
    if with_votes:
        data["likes"], data["dislikes"] = _vote_counts(counter.votes)
    return data


def rank_counters(counters: list[dict]) -> list[dict]:
    """Sort counter dicts best first: likes desc, dislikes asc, newest first."""
    newest_first = sorted(counters, key=lambda c: c["created_at"] or "", reverse=True)
    return sorted(newest_first, key=lambda c: (-c["likes"], c["dislikes"]))


def defense_dict(defense: Defense) -> dict[str, Any]:
    likes, dislikes = _vote_counts(defense.votes)
    return {
        "id": defense.id,
        "user_id": defense.user_id,
        "leader_monster": defense.leader_monster,
        "monster2": defense.monster2,
        "monster3": defense.monster3,
        "strengths": defense.strengths,
        "weaknesses": defense.weaknesses,
        "attack_sequence": defense.attack_sequence,
        "notes": defense.notes,
        "pinned_to_dashboard": defense.pinned_to_dashboard,
        "is_public": defense.is_public,
        "created_by": defense.created_by,
        "updated_by": defense.updated_by,
        "created_at": _iso(defense.created_at),
        "updated_at": _iso(defense.updated_at),
        "tags": [
            {"id": link.tag.id, "name": link.tag.name, "color": link.tag.color}
            for link in defense.tags
        ],
        "counters": rank_counters([counter_dict(c) for c in defense.counters]),
        "likes": likes,
        "dislikes": dislikes,
    }


def _defense_query():
    return select(Defense).options(
        selectinload(Defense.tags).selectinload(DefenseTag.tag),
        selectinload(Defense.counters).selectinload(Counter.votes),
        selectinload(Defense.votes),
    )


def _visible_to(user: User):
    return or_(Defense.user_id == user.id, Defense.is_public.is_(True))


def monsters_label(defense: Defense) -> str:
    return " / ".join(defense.monsters)


# ---------------------------------------------------------------------------
# Defenses
# ---------------------------------------------------------------------------
def list_defenses(
    engine: Engine,
    user: User,
    *,
    owner_id: str | None = None,
    pinned: bool = False,
) -> list[dict]:
    """Defenses visible to *user*, most recently updated first.

    Admins may pass *owner_id* to see one member's defenses (public or not).
    ``pinned`` restricts to the caller's own dashboard pins.
    """
    stmt = _defense_query()
    if pinned:
        stmt = stmt.where(Defense.user_id == user.id, Defense.pinned_to_dashboard.is_(True))
    elif owner_id and user.is_admin:
        stmt = stmt.where(Defense.user_id == owner_id)
    else:
        stmt = stmt.where(_visible_to(user))
    stmt = stmt.order_by(Defense.updated_at.desc())

    with get_session(engine) as session:
        return [defense_dict(d) for d in session.scalars(stmt).all()]


def get_defense(engine: Engine, user: User, defense_id: str) -> dict:
    with get_session(engine) as session:
        defense = session.scalar(
            _defense_query().where(Defense.id == defense_id, _visible_to(user))
        )
        if defense is None:
            raise NotFoundError("Defense not found")
        return defense_dict(defense)


def _clean_monsters(data: dict[str, Any]) -> tuple[str, str, str]:
    names = tuple((data.get(k) or "").strip() for k in ("leader_monster", "monster2", "monster3"))
    if not all(names):
        raise ValueError("All three monsters are required")
    return names  # type: ignore[return-value]


def _check_duplicate(
    session: Session,
    owner_id: str,
    monsters: tuple[str, str, str],
    *,
    exclude_id: str | None = None,
) -> None:
    leader, m2, m3 = monsters
    stmt = select(Defense.id).where(
        Defense.user_id == owner_id,
        Defense.leader_monster == leader,
        or_(
            and_(Defense.monster2 == m2, Defense.monster3 == m3),
            and_(Defense.monster2 == m3, Defense.monster3 == m2),
        ),
    )
    if exclude_id:
        stmt = stmt.where(Defense.id != exclude_id)
    if session.scalar(stmt.limit(1)) is not None:
        raise ValueError("A defense with the same monsters already exists")


def _set_tags(session: Session, defense: Defense, tag_ids: list[str] | None) -> None:
    """Make the defense carry exactly *tag_ids*, ignoring unknown tags."""
    wanted = list(dict.fromkeys(tag_ids or []))
    if wanted:
        known = set(session.scalars(select(Tag.id).where(Tag.id.in_(wanted))))
        wanted = [t for t in wanted if t in known]
    for link in list(defense.tags):
        if link.tag_id not in wanted:
            defense.tags.remove(link)
    present = {link.tag_id for link in defense.tags}
    for tag_id in wanted:
        if tag_id not in present:
            defense.tags.append(DefenseTag(tag_id=tag_id))


def create_defense(engine: Engine, user: User, data: dict[str, Any]) -> dict:
    monsters = _clean_monsters(data)
    author = user.display_name

    with get_session(engine) as session:
        _check_duplicate(session, user.id, monsters)
        defense = Defense(
            user_id=user.id,
            leader_monster=monsters[0],
            monster2=monsters[1],
            monster3=monsters[2],
            pinned_to_dashboard=bool(data.get("pinned_to_dashboard")),
            is_public=data.get("is_public", True) is not False,
            created_by=author,
            updated_by=author,
            **{k: data.get(k) or None for k in DEFENSE_TEXT_FIELDS},
        )
        _set_tags(session, defense, data.get("tag_ids"))
        session.add(defense)
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="create",
            entity_type="defense",
            entity_id=defense.id,
            details={
                "leader_monster": defense.leader_monster,
                "monster2": defense.monster2,
                "monster3": defense.monster3,
                "is_public": defense.is_public,
                "user_name": author,
            },
        )
        defense_id = defense.id

    logger.info("Defense %s created by %s", defense_id, user.identifier)
    return get_defense(engine, user, defense_id)


def update_defense(engine: Engine, user: User, defense_id: str, data: dict[str, Any]) -> dict:
    monsters = _clean_monsters(data)

    with get_session(engine) as session:
        defense = session.get(Defense, defense_id)
        if defense is None:
            raise NotFoundError("Defense not found")
        if not can_edit_defense(user, defense):
            raise ForbiddenError("You are not allowed to edit this defense")

        _check_duplicate(session, defense.user_id, monsters, exclude_id=defense.id)

        defense.leader_monster, defense.monster2, defense.monster3 = monsters
        for key in DEFENSE_TEXT_FIELDS:
            setattr(defense, key, data.get(key) or None)
        defense.pinned_to_dashboard = bool(data.get("pinned_to_dashboard"))
        defense.is_public = data.get("is_public", True) is not False
        defense.updated_by = user.display_name
        _set_tags(session, defense, data.get("tag_ids"))
        session.flush()

        log_activity(
            session,
            user_id=user.id,
            action="update",
            entity_type="defense",
            entity_id=defense.id,
            details={
                "leader_monster": defense.leader_monster,
                "monster2": defense.monster2,
                "monster3": defense.monster3,
                "is_public": defense.is_public,
                "user_name": user.display_name,
            },
        )

    with get_session(engine) as session:
        return defense_dict(session.scalar(_defense_query().where(Defense.id == defense_id)))


def delete_defense(engine: Engine, user: User, defense_id: str) -> None:
    with get_session(engine) as session:
        defense = session.get(Defense, defense_id)
        if defense is None:
            raise NotFoundError("Defense not found")
        if not (user.is_admin or defense.user_id == user.id or is_creator(user, defense.created_by)):
            raise ForbiddenError("You are not allowed to delete this defense")

        log_activity(
            session,
            user_id=user.id,
            action="delete",
            entity_type="defense",
            entity_id=defense.id,
            details={
                "leader_monster": defense.leader_monster,
                "monster2": defense.monster2,
                "monster3": defense.monster3,
                "user_name": user.display_name,
            },
        )
        session.delete(defense)
    logger.info("Defense %s deleted by %s", defense_id, user.identifier)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------
def _counter_details(defense: Defense, counter_monsters: list[str]) -> dict:
    return {
        "defense_id": defense.id,
        "leader_monster": defense.leader_monster,
        "monster2": defense.monster2,
        "monster3": defense.monster3,
        "counter_monsters": counter_monsters,
    }


def _clean_counter_monsters(monsters: list[str] | None) -> list[str]:
    return [m.strip() for m in (monsters or []) if m and m.strip()]


def list_counters(engine: Engine, user: User, defense_id: str) -> list[dict]:
    with get_session(engine) as session:
        defense = session.scalar(
            select(Defense).where(Defense.id == defense_id, _visible_to(user))
        )
        if defense is None:
            raise NotFoundError("Defense not found")
        counters = session.scalars(
            select(Counter)
            .options(selectinload(Counter.votes))
            .where(Counter.defense_id == defense_id)
        ).all()
        return rank_counters([counter_dict(c) for c in counters])


def create_counter(engine: Engine, user: User, defense_id: str, data: dict[str, Any]) -> dict:
    monsters = _clean_counter_monsters(data.get("counter_monsters"))

    with get_session(engine) as session:
        defense = session.get(Defense, defense_id)
        if defense is None:
            raise NotFoundError("Defense not found")
        if not defense.is_public and defense.user_id != user.id:
            raise ForbiddenError("Counters can only be added to public defenses")

        counter = Counter(
            defense_id=defense.id,
            counter_monsters=monsters,
            description=data.get("description") or None,
            created_by=user.display_name,
            updated_by=user.display_name,
        )
        session.add(counter)
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="create",
            entity_type="counter",
            entity_id=counter.id,
            details=_counter_details(defense, monsters),
        )
        return counter_dict(counter, with_votes=False) | {"likes": 0, "dislikes": 0}


def _editable_counter(session: Session, user: User, counter_id: str, verb: str) -> Counter:
    counter = session.get(Counter, counter_id)
    if counter is None:
        raise NotFoundError("Counter not found")
    if not (user.is_admin or is_creator(user, counter.created_by)):
        raise ForbiddenError(f"You are not allowed to {verb} this counter")
    return counter


def update_counter(engine: Engine, user: User, counter_id: str, data: dict[str, Any]) -> dict:
    monsters = _clean_counter_monsters(data.get("counter_monsters"))

    with get_session(engine) as session:
        counter = _editable_counter(session, user, counter_id, "edit")
        counter.counter_monsters = monsters
        counter.description = data.get("description") or None
        counter.updated_by = user.display_name
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="update",
            entity_type="counter",
            entity_id=counter.id,
            details=_counter_details(counter.defense, monsters),
        )
        return counter_dict(counter)


def delete_counter(engine: Engine, user: User, counter_id: str) -> None:
    with get_session(engine) as session:
        counter = _editable_counter(session, user, counter_id, "delete")
        log_activity(
            session,
            user_id=user.id,
            action="delete",
            entity_type="counter",
            entity_id=counter.id,
            details=_counter_details(counter.defense, list(counter.counter_monsters or [])),
        )
        session.delete(counter)


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
_VOTE_TARGETS = {
    "defense": (Defense, DefenseVote, "defense_id", "Defense not found"),
    "counter": (Counter, CounterVote, "counter_id", "Counter not found"),
}


def _counts(session: Session, vote_model, column: str, target_id: str) -> dict[str, int]:
    target_col = getattr(vote_model, column)
    rows = dict(session.execute(
        select(vote_model.vote_type, func.count())
        .where(target_col == target_id)
        .group_by(vote_model.vote_type)
    ).all())
    return {"likes": rows.get(VoteType.LIKE.value, 0), "dislikes": rows.get(VoteType.DISLIKE.value, 0)}


def cast_vote(engine: Engine, user: User, kind: str, target_id: str, vote_type: str) -> dict:
    """Create or change the caller's vote on a defense or counter."""
    if vote_type not in VOTE_TYPES:
        raise ValueError('vote_type must be "like" or "dislike"')
    model, vote_model, column, missing = _VOTE_TARGETS[kind]

    with get_session(engine) as session:
        if session.get(model, target_id) is None:
            raise NotFoundError(missing)
        vote = session.scalar(
            select(vote_model).where(
                vote_model.user_id == user.id, getattr(vote_model, column) == target_id
            )
        )
        if vote is None:
            vote = vote_model(user_id=user.id, vote_type=vote_type, **{column: target_id})
            session.add(vote)
        else:
            vote.vote_type = vote_type
        session.flush()
        return {
            "vote": {
                "id": vote.id,
                "user_id": vote.user_id,
                column: target_id,
                "vote_type": vote.vote_type,
            },
            **_counts(session, vote_model, column, target_id),
        }


def get_votes(engine: Engine, user: User, kind: str, target_id: str) -> dict:
    _, vote_model, column, _ = _VOTE_TARGETS[kind]
    with get_session(engine) as session:
        mine = session.scalar(
            select(vote_model.vote_type).where(
                vote_model.user_id == user.id, getattr(vote_model, column) == target_id
            )
        )
        return {**_counts(session, vote_model, column, target_id), "user_vote": mine}


def remove_vote(engine: Engine, user: User, kind: str, target_id: str) -> dict:
    _, vote_model, column, _ = _VOTE_TARGETS[kind]
    with get_session(engine) as session:
        session.execute(
            delete(vote_model).where(
                vote_model.user_id == user.id, getattr(vote_model, column) == target_id
            )
        )
        return _counts(session, vote_model, column, target_id)
