"""
swguilds.constants — Shared Constants & Helpers
=================================================

Single source of truth for presentation constants, Discord message
templates and filename normalisation.  Import from here instead of
duplicating in services and routes.
"""

from __future__ import annotations

import os
import re
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_INSTANCE_NAME = "SWGuilds"
DEFAULT_TAG_COLOR = "#3B82F6"
DEFAULT_MAP_NAME = "map.png"
DEFAULT_LOCALE = "fr"
SUPPORTED_LOCALES: frozenset[str] = frozenset({"fr", "en"})
UNKNOWN_AUTHOR = "Inconnu"

MIN_PASSWORD_LENGTH = 6
MAX_TOWER_DEFENSES = 5

# ---------------------------------------------------------------------------
# Monster box presentation
# ---------------------------------------------------------------------------
ELEMENT_ORDER: dict[str, int] = {
    "water": 0,
    "fire": 1,
    "wind": 2,
    "light": 3,
    "dark": 4,
}

SIX_STAR_CLASS = 6
IMAGE_EXTENSIONS: tuple[str, ...] = ("png", "jpg", "jpeg", "gif", "webp")

# ---------------------------------------------------------------------------
# Discord message templates (guild-facing, kept in French)
# ---------------------------------------------------------------------------
APPROVAL_MESSAGE = (
    "\U0001f514 **Nouvelle inscription en attente d'approbation**\n\n"
    "**Pseudo:** {name}\n\n"
    "Veuillez approuver ce compte depuis le panneau d'administration."
)
ABSENCE_MESSAGE = "Absence: **{name}** du {start} au {end}"


def role_mention(role_id: str | None) -> str:
    """Return ``<@&role>`` for a Discord role id, or an empty string."""
    return f"<@&{role_id}>" if role_id else ""


# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------
_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_\-]")
_UNDERSCORE_RUNS = re.compile(r"_+")


def normalize_file_name(name: str) -> str:
    """Make *name* safe for use as a filename stem.

    Every character outside ``[a-zA-Z0-9_-]`` becomes ``_``, runs of ``_``
    collapse to one, and leading/trailing ``_`` are stripped::

        >>> normalize_file_name("Lushen (Wind)")
        'Lushen_Wind'
    """
    cleaned = _UNSAFE_CHARS.sub("_", name)
    cleaned = _UNDERSCORE_RUNS.sub("_", cleaned)
    return cleaned.strip("_")


def slugify(name: str) -> str:
    """Lower-case, hyphen-separated slug used for SwarFarm bestiary links."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    return slug.strip("-")


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------
DEFAULT_TIMEZONE = "Europe/Paris"


def app_timezone() -> ZoneInfo:
    """The guild's wall-clock zone (``TIMEZONE`` env var)."""
    return ZoneInfo(os.getenv("TIMEZONE", DEFAULT_TIMEZONE) or DEFAULT_TIMEZONE)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise to aware UTC; naive values (SQLite round-trips) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
