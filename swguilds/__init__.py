"""
SWGuilds — Guild Management for Summoners War
===============================================
Keeps a guild's siege defenses, counters, tower map, assignments, news,
absences and Discord reminders in one place, with admin tooling for
member approval and a local mirror of SwarFarm monster data.

Package layout::

    swguilds/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Shared enums, message templates, helpers
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default instance settings
    ├── services/
    │   ├── user_service.py        # Accounts, approval, profile
    │   ├── defense_service.py     # Defenses, counters, votes
    │   ├── tag_service.py         # Defense tags
    │   ├── map_service.py         # Tower map editor
    │   ├── assignment_service.py  # Defense assignments ("gestion")
    │   ├── news_service.py        # News feed
    │   ├── calendar_service.py    # Absences and events
    │   ├── reminder_service.py    # Reminder CRUD + minute scheduler
    │   ├── monster_service.py     # SwarFarm cache, images, user boxes
    │   ├── maintenance_service.py # DB clean / export / import / backfill
    │   ├── activity_service.py    # Activity log journal
    │   ├── settings_service.py    # Instance settings key/value store
    │   ├── webhook_service.py     # Discord webhook delivery
    │   ├── upload_service.py      # File upload handling
    │   ├── permissions.py         # Role + flag checks
    │   └── log_buffer.py          # Live log ring buffer
    ├── cron/              # ``python -m swguilds.cron`` reminder poller
    ├── scripts/           # One-off maintenance commands
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Password login → JWT session
        ├── deps.py        # Dependency injection
        ├── rate_limit.py  # Sliding-window throttles
        └── routes/        # Public, member and admin REST endpoints
"""

__version__ = "0.1.0"
