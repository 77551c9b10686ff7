"""
swguilds.api.routes.defenses — Defenses, counters, votes & tags
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from swguilds.api.deps import CurrentUser, EngineDep, service_errors
from swguilds.services import defense_service, tag_service

router = APIRouter(tags=["defenses"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class DefenseBody(BaseModel):
    leader_monster: str | None = None
    monster2: str | None = None
    monster3: str | None = None
    strengths: str | None = None
    weaknesses: str | None = None
    attack_sequence: str | None = None
    notes: str | None = None
    pinned_to_dashboard: bool = False
    is_public: bool | None = True
    tag_ids: list[str] = Field(default_factory=list)


class CounterBody(BaseModel):
    counter_monsters: list[str] = Field(default_factory=list)
    description: str | None = None


class VoteBody(BaseModel):
    vote_type: str | None = None


class TagBody(BaseModel):
    name: str | None = None
    color: str | None = None


# ---------------------------------------------------------------------------
# Defenses
# ---------------------------------------------------------------------------
@router.get("/defenses")
def list_defenses(
    user: CurrentUser,
    engine: EngineDep,
    user_id: str | None = Query(None),
    pinned: bool = Query(False),
):
    """Own and public defenses; admins may filter by owner with ``user_id``."""
    return defense_service.list_defenses(engine, user, owner_id=user_id, pinned=pinned)


@router.post("/defenses", status_code=status.HTTP_201_CREATED)
def create_defense(body: DefenseBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.create_defense(engine, user, body.model_dump())


@router.get("/defenses/{defense_id}")
def get_defense(defense_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.get_defense(engine, user, defense_id)


@router.put("/defenses/{defense_id}")
def update_defense(defense_id: str, body: DefenseBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.update_defense(engine, user, defense_id, body.model_dump())


@router.delete("/defenses/{defense_id}")
def delete_defense(defense_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        defense_service.delete_defense(engine, user, defense_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------
@router.get("/defenses/{defense_id}/counters")
def list_counters(defense_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.list_counters(engine, user, defense_id)


@router.post("/defenses/{defense_id}/counters", status_code=status.HTTP_201_CREATED)
def create_counter(defense_id: str, body: CounterBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.create_counter(engine, user, defense_id, body.model_dump())


@router.put("/counters/{counter_id}")
def update_counter(counter_id: str, body: CounterBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.update_counter(engine, user, counter_id, body.model_dump())


@router.delete("/counters/{counter_id}")
def delete_counter(counter_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        defense_service.delete_counter(engine, user, counter_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
@router.get("/defenses/{defense_id}/votes")
def defense_votes(defense_id: str, user: CurrentUser, engine: EngineDep):
    return defense_service.get_votes(engine, user, "defense", defense_id)


@router.post("/defenses/{defense_id}/votes")
def vote_defense(defense_id: str, body: VoteBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.cast_vote(engine, user, "defense", defense_id, body.vote_type or "")


@router.delete("/defenses/{defense_id}/votes")
def unvote_defense(defense_id: str, user: CurrentUser, engine: EngineDep):
    return defense_service.remove_vote(engine, user, "defense", defense_id)


@router.get("/counters/{counter_id}/votes")
def counter_votes(counter_id: str, user: CurrentUser, engine: EngineDep):
    return defense_service.get_votes(engine, user, "counter", counter_id)


@router.post("/counters/{counter_id}/votes")
def vote_counter(counter_id: str, body: VoteBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return defense_service.cast_vote(engine, user, "counter", counter_id, body.vote_type or "")


@router.delete("/counters/{counter_id}/votes")
def unvote_counter(counter_id: str, user: CurrentUser, engine: EngineDep):
    return defense_service.remove_vote(engine, user, "counter", counter_id)


# ---------------------------------------------------------------------------
# Tags (member side; the admin CRUD lives in routes.admin)
# ---------------------------------------------------------------------------
@router.get("/tags")
def list_tags(user: CurrentUser, engine: EngineDep):
    return tag_service.list_tags(engine)


@router.post("/tags", status_code=status.HTTP_201_CREATED)
def create_tag(body: TagBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return tag_service.create_tag(engine, user.id, body.name, body.color)
