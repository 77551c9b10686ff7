"""
swguilds.database.models — SQLAlchemy ORM Models
===================================================

Every table the guild tool needs lives here:

- **users** — guild members, their role, approval state and edit rights.
- **defenses** / **counters** — three-monster defenses and the teams that
  beat them, with **tags**, **defense_tags** and like/dislike votes
  (**defense_votes**, **counter_votes**).
- **map_towers** — towers placed on the siege map, each holding up to
  five defense references.
- **defense_assignments** — which member fields which defense.
- **news_posts** — the guild news feed.
- **calendar_events** — absences and other dated events.
- **reminders** — weekly Discord reminders fired by the minute poller.
- **user_monsters** — monsters a member added by hand to their box.
- **activity_logs** — append-only journal of member actions.
- **settings** — key/value instance settings (name, logo, webhooks).
- **rate_limit_events** — durable sliding-window throttle state.

Primary keys are UUID strings so ids never leak creation order and can be
generated client-side in imports.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Shared base for all SWGuilds ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class UserRole(enum.StrEnum):
    """Account roles.  Admins pass every permission check."""
    USER = "user"
    ADMIN = "admin"


class VoteType(enum.StrEnum):
    LIKE = "like"
    DISLIKE = "dislike"


class CalendarEventType(enum.StrEnum):
    ABSENCE = "absence"
    OTHER = "autre"


# ---------------------------------------------------------------------------
# Users — one row per guild member
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    identifier: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), default=None)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER.value)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False)

    # Fine-grained edit rights (admins implicitly hold all of them)
    can_edit_all_defenses: Mapped[bool] = mapped_column(Boolean, default=False)
    can_edit_map: Mapped[bool] = mapped_column(Boolean, default=False)
    can_edit_assignments: Mapped[bool] = mapped_column(Boolean, default=False)
    can_edit_news: Mapped[bool] = mapped_column(Boolean, default=False)

    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    preferred_locale: Mapped[str | None] = mapped_column(String(5), default="fr")
    api_key: Mapped[str | None] = mapped_column(String(64), unique=True, default=None)
    json_file_path: Mapped[str | None] = mapped_column(String(500), default=None)
    last_json_upload: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    defenses: Mapped[list[Defense]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    defense_votes: Mapped[list[DefenseVote]] = relationship(cascade="all, delete-orphan")
    counter_votes: Mapped[list[CounterVote]] = relationship(cascade="all, delete-orphan")
    calendar_events: Mapped[list[CalendarEvent]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    assignments: Mapped[list[DefenseAssignment]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    monsters: Mapped[list[UserMonster]] = relationship(cascade="all, delete-orphan")
    activity_logs: Mapped[list[ActivityLog]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.name or self.identifier

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User id={self.id} identifier={self.identifier!r} role={self.role}>"


# ---------------------------------------------------------------------------
# Defenses — three-monster siege defenses
# ---------------------------------------------------------------------------
class Defense(Base):
    __tablename__ = "defenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    leader_monster: Mapped[str] = mapped_column(String(100), nullable=False)
    monster2: Mapped[str] = mapped_column(String(100), nullable=False)
    monster3: Mapped[str] = mapped_column(String(100), nullable=False)
    strengths: Mapped[str | None] = mapped_column(Text, default=None)
    weaknesses: Mapped[str | None] = mapped_column(Text, default=None)
    attack_sequence: Mapped[str | None] = mapped_column(Text, default=None)
    notes: Mapped[str | None] = mapped_column(Text, default=None)
    pinned_to_dashboard: Mapped[bool] = mapped_column(Boolean, default=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="defenses")
    counters: Mapped[list[Counter]] = relationship(
        back_populates="defense", cascade="all, delete-orphan"
    )
    tags: Mapped[list[DefenseTag]] = relationship(
        back_populates="defense", cascade="all, delete-orphan"
    )
    votes: Mapped[list[DefenseVote]] = relationship(
        back_populates="defense", cascade="all, delete-orphan"
    )
    assignments: Mapped[list[DefenseAssignment]] = relationship(
        back_populates="defense", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_defenses_user_id", "user_id"),
        Index("ix_defenses_updated_at", "updated_at"),
    )

    @property
    def monsters(self) -> tuple[str, str, str]:
        return (self.leader_monster, self.monster2, self.monster3)

    def __repr__(self) -> str:
        return f"<Defense id={self.id} {' / '.join(self.monsters)}>"


# ---------------------------------------------------------------------------
# Counters — teams that beat a defense
# ---------------------------------------------------------------------------
class Counter(Base):
    __tablename__ = "counters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    defense_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False
    )
    counter_monsters: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    defense: Mapped[Defense] = relationship(back_populates="counters")
    votes: Mapped[list[CounterVote]] = relationship(
        back_populates="counter", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_counters_defense_id", "defense_id"),
    )

    def __repr__(self) -> str:
        return f"<Counter id={self.id} defense={self.defense_id}>"


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------
class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#3B82F6")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    defenses: Mapped[list[DefenseTag]] = relationship(
        back_populates="tag", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Tag id={self.id} name={self.name!r}>"


class DefenseTag(Base):
    __tablename__ = "defense_tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    defense_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False
    )
    tag_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tags.id", ondelete="CASCADE"), nullable=False
    )

    defense: Mapped[Defense] = relationship(back_populates="tags")
    tag: Mapped[Tag] = relationship(back_populates="defenses")

    __table_args__ = (
        UniqueConstraint("defense_id", "tag_id", name="uq_defense_tags_defense_tag"),
    )


# ---------------------------------------------------------------------------
# Votes — one per (user, target)
# ---------------------------------------------------------------------------
class DefenseVote(Base):
    __tablename__ = "defense_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    defense_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False
    )
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    defense: Mapped[Defense] = relationship(back_populates="votes")

    __table_args__ = (
        UniqueConstraint("user_id", "defense_id", name="uq_defense_votes_user_defense"),
    )


class CounterVote(Base):
    __tablename__ = "counter_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    counter_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("counters.id", ondelete="CASCADE"), nullable=False
    )
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    counter: Mapped[Counter] = relationship(back_populates="votes")

    __table_args__ = (
        UniqueConstraint("user_id", "counter_id", name="uq_counter_votes_user_counter"),
    )


# ---------------------------------------------------------------------------
# MapTower — a tower on the siege map
# ---------------------------------------------------------------------------
class MapTower(Base):
    """A tower placed on a siege map image.

    ``defense_ids`` is a list of ``{"defense_id": str, "user_id": str | None}``
    entries (at most five), pairing a defense with the member holding it.
    """
    __tablename__ = "map_towers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    map_name: Mapped[str] = mapped_column(String(100), nullable=False)
    tower_number: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), default=None)
    stars: Mapped[int] = mapped_column(Integer, default=5)
    color: Mapped[str] = mapped_column(String(20), default="blue")
    x: Mapped[float] = mapped_column(nullable=False)
    y: Mapped[float] = mapped_column(nullable=False)
    width: Mapped[float] = mapped_column(default=150)
    height: Mapped[float] = mapped_column(default=100)
    defense_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_map_towers_map_name", "map_name"),
    )

    def __repr__(self) -> str:
        return f"<MapTower id={self.id} map={self.map_name!r} n={self.tower_number}>"


# ---------------------------------------------------------------------------
# DefenseAssignment — which member fields which defense
# ---------------------------------------------------------------------------
class DefenseAssignment(Base):
    __tablename__ = "defense_assignments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    defense_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by: Mapped[str] = mapped_column(String(36), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    defense: Mapped[Defense] = relationship(back_populates="assignments")
    user: Mapped[User] = relationship(back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("defense_id", "user_id", name="uq_assignments_defense_user"),
    )


# ---------------------------------------------------------------------------
# NewsPost — guild news feed
# ---------------------------------------------------------------------------
class NewsPost(Base):
    __tablename__ = "news_posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str | None] = mapped_column(String(200), default=None)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    updated_by: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    created_by_user: Mapped[User | None] = relationship(foreign_keys=[created_by])
    updated_by_user: Mapped[User | None] = relationship(foreign_keys=[updated_by])

    def __repr__(self) -> str:
        return f"<NewsPost id={self.id} pinned={self.is_pinned}>"


# ---------------------------------------------------------------------------
# CalendarEvent — absences and other dated events
# ---------------------------------------------------------------------------
class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="calendar_events")

    __table_args__ = (
        Index("ix_calendar_events_range", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<CalendarEvent id={self.id} type={self.event_type} user={self.user_id}>"


# ---------------------------------------------------------------------------
# Reminder — weekly Discord reminder
# ---------------------------------------------------------------------------
class Reminder(Base):
    """A message posted to a Discord webhook on given weekdays at hour:minute.

    ``days_of_week`` holds integers 0..6 with 0 = Sunday.  ``last_sent``
    guards against a second delivery on the same local day.
    """
    __tablename__ = "reminders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    days_of_week: Mapped[list] = mapped_column(JSON, nullable=False)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discord_role_id: Mapped[str | None] = mapped_column(String(30), default=None)
    webhook_url: Mapped[str] = mapped_column(String(500), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_sent: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Reminder id={self.id} title={self.title!r} at={self.hour:02d}:{self.minute:02d}>"


# ---------------------------------------------------------------------------
# UserMonster — monsters added to a box by hand
# ---------------------------------------------------------------------------
class UserMonster(Base):
    __tablename__ = "user_monsters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    monster_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "monster_name", name="uq_user_monsters_user_name"),
    )


# ---------------------------------------------------------------------------
# ActivityLog — append-only member action journal
# ---------------------------------------------------------------------------
class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(36), default=None)
    details: Mapped[dict | None] = mapped_column(JSON, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user: Mapped[User] = relationship(back_populates="activity_logs")

    __table_args__ = (
        Index("ix_activity_logs_created_at", "created_at"),
        Index("ix_activity_logs_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog id={self.id} user={self.user_id} {self.action}/{self.entity_type}>"


# ---------------------------------------------------------------------------
# Setting — instance key/value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value store for admin-editable instance settings.

    Values are stored as JSON strings; typed access lives in
    :mod:`swguilds.services.settings_service`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# RateLimitEvent — durable sliding-window throttle entries
# ---------------------------------------------------------------------------
class RateLimitEvent(Base):
    __tablename__ = "rate_limit_events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    bucket: Mapped[str] = mapped_column(String(150), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_rate_limit_bucket_ts", "bucket", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<RateLimitEvent bucket={self.bucket!r} ts={self.timestamp}>"
