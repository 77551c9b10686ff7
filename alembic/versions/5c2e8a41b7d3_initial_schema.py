"""Initial schema: members, defenses, map, news, calendar, reminders

Revision ID: 5c2e8a41b7d3
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e8a41b7d3'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create every SWGuilds table."""

    # --- users ---
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("identifier", sa.String(100), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(100), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_approved", sa.Boolean, nullable=True),
        sa.Column("can_edit_all_defenses", sa.Boolean, nullable=True),
        sa.Column("can_edit_map", sa.Boolean, nullable=True),
        sa.Column("can_edit_assignments", sa.Boolean, nullable=True),
        sa.Column("can_edit_news", sa.Boolean, nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("preferred_locale", sa.String(5), nullable=True),
        sa.Column("api_key", sa.String(64), nullable=True, unique=True),
        sa.Column("json_file_path", sa.String(500), nullable=True),
        sa.Column("last_json_upload", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # --- defenses / counters ---
    op.create_table(
        "defenses",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("leader_monster", sa.String(100), nullable=False),
        sa.Column("monster2", sa.String(100), nullable=False),
        sa.Column("monster3", sa.String(100), nullable=False),
        sa.Column("strengths", sa.Text, nullable=True),
        sa.Column("weaknesses", sa.Text, nullable=True),
        sa.Column("attack_sequence", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("pinned_to_dashboard", sa.Boolean, nullable=True),
        sa.Column("is_public", sa.Boolean, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("updated_by", sa.String(100), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_defenses_user_id", "defenses", ["user_id"])
    op.create_index("ix_defenses_updated_at", "defenses", ["updated_at"])

    op.create_table(
        "counters",
        _uuid_pk(),
        sa.Column(
            "defense_id", sa.String(36),
            sa.ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("counter_monsters", sa.JSON, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("updated_by", sa.String(100), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_counters_defense_id", "counters", ["defense_id"])

    # --- tags ---
    op.create_table(
        "tags",
        _uuid_pk(),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("color", sa.String(7), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "defense_tags",
        _uuid_pk(),
        sa.Column(
            "defense_id", sa.String(36),
            sa.ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "tag_id", sa.String(36),
            sa.ForeignKey("tags.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.UniqueConstraint("defense_id", "tag_id", name="uq_defense_tags_defense_tag"),
    )

    # --- votes ---
    op.create_table(
        "defense_votes",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "defense_id", sa.String(36),
            sa.ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("vote_type", sa.String(10), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "defense_id", name="uq_defense_votes_user_defense"),
    )
    op.create_table(
        "counter_votes",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "counter_id", sa.String(36),
            sa.ForeignKey("counters.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("vote_type", sa.String(10), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "counter_id", name="uq_counter_votes_user_counter"),
    )

    # --- siege map ---
    op.create_table(
        "map_towers",
        _uuid_pk(),
        sa.Column("map_name", sa.String(100), nullable=False),
        sa.Column("tower_number", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("stars", sa.Integer, nullable=True),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("x", sa.Float, nullable=False),
        sa.Column("y", sa.Float, nullable=False),
        sa.Column("width", sa.Float, nullable=True),
        sa.Column("height", sa.Float, nullable=True),
        sa.Column("defense_ids", sa.JSON, nullable=False),
        sa.Column("created_by", sa.String(36), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_map_towers_map_name", "map_towers", ["map_name"])

    op.create_table(
        "defense_assignments",
        _uuid_pk(),
        sa.Column(
            "defense_id", sa.String(36),
            sa.ForeignKey("defenses.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("assigned_by", sa.String(36), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("defense_id", "user_id", name="uq_assignments_defense_user"),
    )

    # --- news / calendar / reminders ---
    op.create_table(
        "news_posts",
        _uuid_pk(),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("is_pinned", sa.Boolean, nullable=True),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("updated_by", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "calendar_events",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_calendar_events_range", "calendar_events", ["start_date", "end_date"])

    op.create_table(
        "reminders",
        _uuid_pk(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("days_of_week", sa.JSON, nullable=False),
        sa.Column("hour", sa.Integer, nullable=False),
        sa.Column("minute", sa.Integer, nullable=False),
        sa.Column("discord_role_id", sa.String(30), nullable=True),
        sa.Column("webhook_url", sa.String(500), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=True),
        sa.Column("last_sent", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=False),
        *_timestamps(),
    )

    # --- monster boxes ---
    op.create_table(
        "user_monsters",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("monster_name", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "monster_name", name="uq_user_monsters_user_name"),
    )

    # --- journal / settings / throttle ---
    op.create_table(
        "activity_logs",
        _uuid_pk(),
        sa.Column(
            "user_id", sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=True),
        sa.Column("details", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])
    op.create_index("ix_activity_logs_entity", "activity_logs", ["entity_type", "entity_id"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text, nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "rate_limit_events",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("bucket", sa.String(150), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_rate_limit_bucket_ts", "rate_limit_events", ["bucket", "timestamp"])


def downgrade() -> None:
    """Drop every SWGuilds table, children first."""
    op.drop_index("ix_rate_limit_bucket_ts", table_name="rate_limit_events")
    op.drop_table("rate_limit_events")
    op.drop_table("settings")
    op.drop_index("ix_activity_logs_entity", table_name="activity_logs")
    op.drop_index("ix_activity_logs_created_at", table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_table("user_monsters")
    op.drop_table("reminders")
    op.drop_index("ix_calendar_events_range", table_name="calendar_events")
    op.drop_table("calendar_events")
    op.drop_table("news_posts")
    op.drop_table("defense_assignments")
    op.drop_index("ix_map_towers_map_name", table_name="map_towers")
    op.drop_table("map_towers")
    op.drop_table("counter_votes")
    op.drop_table("defense_votes")
    op.drop_table("defense_tags")
    op.drop_table("tags")
    op.drop_index("ix_counters_defense_id", table_name="counters")
    op.drop_table("counters")
    op.drop_index("ix_defenses_updated_at", table_name="defenses")
    op.drop_index("ix_defenses_user_id", table_name="defenses")
    op.drop_table("defenses")
    op.drop_table("users")
