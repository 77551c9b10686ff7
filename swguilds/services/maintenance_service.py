"""
swguilds.services.maintenance_service — Database housekeeping
===============================================================

Admin-only chores that don't belong to a single feature:

* :func:`clean_orphans` — drop rows whose parent user/defense/counter
  vanished (possible on SQLite databases restored without foreign keys).
* :func:`export_database` / :func:`import_database` — download or replace
  the SQLite file.  Server databases are backed up with their own tools.
* :func:`backfill_counter_creators` — fill empty ``created_by`` /
  ``updated_by`` names on counters from the activity log.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from sqlalchemy import Engine, delete, or_, select

from swguilds.constants import UNKNOWN_AUTHOR
from swguilds.database.engine import get_session, sqlite_path
from swguilds.database.models import (
    ActivityLog,
    CalendarEvent,
    Counter,
    CounterVote,
    Defense,
    DefenseAssignment,
    DefenseVote,
    NewsPost,
    User,
    UserMonster,
)
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import NotFoundError

logger = logging.getLogger(__name__)

SQLITE_MAGIC = b"SQLite format 3\x00"


# ---------------------------------------------------------------------------
# Orphan cleanup
# ---------------------------------------------------------------------------
def clean_orphans(engine: Engine, actor_id: str | None = None) -> int:
    """Delete rows pointing at missing parents.  Returns the number removed.

    Order matters: defenses go before counters so counters of a deleted
    orphan defense are caught in the same pass.
    """
    users = select(User.id)
    deleted = 0
    with get_session(engine) as session:
        def purge(stmt) -> None:
            nonlocal deleted
            deleted += session.execute(stmt.execution_options(synchronize_session=False)).rowcount or 0

        purge(delete(UserMonster).where(UserMonster.user_id.not_in(users)))
        purge(delete(Defense).where(Defense.user_id.not_in(users)))

        defenses = select(Defense.id)
        purge(delete(Counter).where(Counter.defense_id.not_in(defenses)))
        counters = select(Counter.id)

        purge(delete(DefenseVote).where(or_(
            DefenseVote.user_id.not_in(users), DefenseVote.defense_id.not_in(defenses)
        )))
        purge(delete(CounterVote).where(or_(
            CounterVote.user_id.not_in(users), CounterVote.counter_id.not_in(counters)
        )))
        purge(delete(CalendarEvent).where(CalendarEvent.user_id.not_in(users)))
        purge(delete(DefenseAssignment).where(or_(
            DefenseAssignment.user_id.not_in(users),
            DefenseAssignment.defense_id.not_in(defenses),
        )))
        purge(delete(ActivityLog).where(ActivityLog.user_id.not_in(users)))
        purge(delete(NewsPost).where(or_(
            NewsPost.created_by.not_in(users), NewsPost.updated_by.not_in(users)
        )))

        if actor_id:
            log_activity(
                session,
                user_id=actor_id,
                action="clean",
                entity_type="database",
                details={"deleted_count": deleted},
            )

    logger.info("Database cleanup removed %d orphan row(s)", deleted)
    return deleted


# ---------------------------------------------------------------------------
# SQLite export / import
# ---------------------------------------------------------------------------
def _require_sqlite(engine: Engine) -> Path:
    path = sqlite_path(engine)
    if path is None:
        raise ValueError("Database export/import is only available for file-based SQLite")
    return Path(path)


def export_database(engine: Engine) -> Path:
    """Return the path of the SQLite file to stream back to the admin."""
    path = _require_sqlite(engine)
    if not path.is_file():
        raise NotFoundError("Database file not found")
    return path


def import_database(engine: Engine, filename: str, content: bytes) -> None:
    """Replace the SQLite file with *content*.

    The upload must be named ``*.db`` and start with the SQLite header.
    Pooled connections are disposed so the next query opens the new file.
    """
    path = _require_sqlite(engine)
    if not (filename or "").lower().endswith(".db"):
        raise ValueError("The file must be a SQLite database (.db)")
    if not content.startswith(SQLITE_MAGIC):
        raise ValueError("The file is not a valid SQLite database")

    path.parent.mkdir(parents=True, exist_ok=True)
    engine.dispose()
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_bytes(content)
    os.replace(tmp, path)
    engine.dispose()
    logger.warning("Database replaced from upload %r (%d bytes)", filename, len(content))


# ---------------------------------------------------------------------------
# Counter authorship backfill
# ---------------------------------------------------------------------------
def _log_author(session, counter_id: str, action: str, newest: bool) -> str | None:
    order = ActivityLog.created_at.desc() if newest else ActivityLog.created_at.asc()
    entry = session.scalar(
        select(ActivityLog)
        .where(
            ActivityLog.entity_type == "counter",
            ActivityLog.entity_id == counter_id,
            ActivityLog.action == action,
        )
        .order_by(order)
        .limit(1)
    )
    if entry is None or entry.user is None:
        return None
    return entry.user.display_name


def backfill_counter_creators(engine: Engine) -> int:
    """Fill blank counter author names.  Returns how many counters changed.

    The creator comes from the oldest ``create`` log entry and the updater
    from the newest ``update`` entry (falling back to the creator).  With
    no log at all both fall back to the defense owner.
    """
    updated = 0
    with get_session(engine) as session:
        counters = session.scalars(
            select(Counter).where(or_(Counter.created_by == "", Counter.updated_by == ""))
        ).all()
        for counter in counters:
            creator = _log_author(session, counter.id, "create", newest=False)
            if creator is not None:
                updater = _log_author(session, counter.id, "update", newest=True) or creator
            else:
                defense = session.get(Defense, counter.defense_id)
                if defense is None:
                    continue
                creator = updater = defense.user.display_name if defense.user else UNKNOWN_AUTHOR
            counter.created_by = creator
            counter.updated_by = updater
            updated += 1

    logger.info("Backfilled authors on %d counter(s)", updated)
    return updated
