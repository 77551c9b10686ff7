"""
swguilds.services.permissions — Role and edit-right checks
============================================================

Admins pass every check.  Other members need the matching ``can_edit_*``
flag, or ownership for their own defenses.
"""

from __future__ import annotations

import os

from swguilds.database.models import Defense, User


def is_env_admin(user: User) -> bool:
    """True when *user* is the bootstrap admin named by ``ADMIN_ID``.

    That account cannot be demoted, edited, locked or deleted from the
    admin panel.
    """
    env_id = os.getenv("ADMIN_ID", "").strip()
    return bool(env_id) and user.identifier == env_id


def is_creator(user: User, created_by: str | None) -> bool:
    """Compare a stored author label against the user's name and identifier."""
    if not created_by:
        return False
    return created_by in {user.name, user.identifier}


def can_edit_defense(user: User, defense: Defense) -> bool:
    if user.is_admin or user.can_edit_all_defenses:
        return True
    return defense.user_id == user.id or is_creator(user, defense.created_by)


def can_edit_map(user: User) -> bool:
    return user.is_admin or bool(user.can_edit_map)


def can_edit_assignments(user: User) -> bool:
    return user.is_admin or bool(user.can_edit_assignments)


def can_edit_news(user: User) -> bool:
    return user.is_admin or bool(user.can_edit_news)


def permissions_dict(user: User) -> dict[str, bool]:
    """Effective rights, as shown to the front end."""
    return {
        "is_admin": user.is_admin,
        "can_edit_all_defenses": user.is_admin or bool(user.can_edit_all_defenses),
        "can_edit_map": can_edit_map(user),
        "can_edit_assignments": can_edit_assignments(user),
        "can_edit_news": can_edit_news(user),
    }
