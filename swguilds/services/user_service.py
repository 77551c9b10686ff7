"""
swguilds.services.user_service — Accounts, approval & profile
===============================================================

Members register with an identifier and password, then wait for an
admin to approve them.  Re-registering an existing identifier resets its
password and name without touching role or approval (the "forgot my
password" path the guild relies on).

Admin operations (approve, lock, rename, grant rights, delete) refuse to
touch the bootstrap admin named by the ``ADMIN_ID`` env var.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import bcrypt
from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from swguilds.constants import (
    APPROVAL_MESSAGE,
    DEFAULT_LOCALE,
    MIN_PASSWORD_LENGTH,
    SUPPORTED_LOCALES,
    role_mention,
)
from swguilds.database.engine import get_session
from swguilds.database.models import ActivityLog, Defense, NewsPost, User, UserRole
from swguilds.services import settings_service
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import ForbiddenError, NotFoundError
from swguilds.services.permissions import is_env_admin, permissions_dict
from swguilds.services.upload_service import delete_upload

logger = logging.getLogger(__name__)

_BCRYPT_MAX_BYTES = 72
PERMISSION_FLAGS: tuple[str, ...] = (
    "can_edit_all_defenses",
    "can_edit_map",
    "can_edit_assignments",
    "can_edit_news",
)


# ---------------------------------------------------------------------------
# Password helpers
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    raw = password.encode("utf-8")
    if len(raw) > _BCRYPT_MAX_BYTES:
        raise ValueError(f"Password too long (max {_BCRYPT_MAX_BYTES} bytes)")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=10)).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        return False


def _check_password_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def generate_api_key() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def user_dict(user: User, *, private: bool = False) -> dict[str, Any]:
    """Member view of a user; *private* adds fields only the owner/admins see."""
    data: dict[str, Any] = {
        "id": user.id,
        "identifier": user.identifier,
        "name": user.name,
        "role": user.role,
        "is_approved": user.is_approved,
        "avatar_url": user.avatar_url,
        "preferred_locale": user.preferred_locale,
        "permissions": permissions_dict(user),
    }
    if private:
        data.update({
            "api_key": user.api_key,
            "json_file_path": user.json_file_path,
            "last_json_upload": _iso(user.last_json_upload),
            "last_login": _iso(user.last_login),
            "created_at": _iso(user.created_at),
            "updated_at": _iso(user.updated_at),
        })
        for flag in PERMISSION_FLAGS:
            data[flag] = bool(getattr(user, flag))
    return data


def _get_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def get_user(engine: Engine, user_id: str) -> User | None:
    with get_session(engine) as session:
        return session.get(User, user_id)


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------
def register(
    engine: Engine,
    *,
    identifier: str,
    password: str,
    name: str,
) -> tuple[dict, bool, tuple[str, str] | None]:
    """Create an account, or reset an existing one.

    Returns ``(user, created, approval_notice)`` where *approval_notice* is
    ``(webhook_url, content)`` for a brand-new account when an approval
    webhook is configured.
    """
    identifier = (identifier or "").strip()
    if not identifier or not password:
        raise ValueError("Identifier and password are required")
    name = (name or "").strip()
    if not name:
        raise ValueError("Name is required")
    password_hash = hash_password(password)

    with get_session(engine) as session:
        user = session.scalar(select(User).where(User.identifier == identifier))
        if user is not None:
            user.password_hash = password_hash
            user.name = name
            if not user.api_key:
                user.api_key = generate_api_key()
            session.flush()
            log_activity(
                session,
                user_id=user.id,
                action="update_account",
                entity_type="user",
                entity_id=user.id,
                details={"identifier": identifier, "name": name},
            )
            logger.info("Account %r re-registered (password reset)", identifier)
            return user_dict(user), False, None

        user = User(
            identifier=identifier,
            password_hash=password_hash,
            name=name,
            role=UserRole.USER.value,
            is_approved=False,
            preferred_locale=DEFAULT_LOCALE,
            api_key=generate_api_key(),
        )
        session.add(user)
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="register",
            entity_type="user",
            entity_id=user.id,
            details={"identifier": identifier, "name": name},
        )

        webhook_url = settings_service.get_setting_value(session, "approval_webhook_url")
        role_id = settings_service.get_setting_value(session, "approval_webhook_role_id")
        notice = None
        if webhook_url:
            content = APPROVAL_MESSAGE.format(name=name)
            if role_id:
                content = f"{role_mention(role_id)} {content}"
            notice = (webhook_url, content)

        logger.info("New account %r registered, awaiting approval", identifier)
        return user_dict(user), True, notice


def authenticate(engine: Engine, identifier: str, password: str) -> User | None:
    """Check credentials and stamp ``last_login``.

    Returns ``None`` for an unknown identifier or a wrong password.

    Raises
    ------
    ForbiddenError
        If the credentials are right but the account is not approved.
    """
    with get_session(engine) as session:
        user = session.scalar(select(User).where(User.identifier == identifier.strip()))
        if user is None or not verify_password(password, user.password_hash):
            return None
        if not user.is_approved:
            raise ForbiddenError("Account awaiting approval")
        user.last_login = datetime.now(UTC)
        return user


def ensure_admin(engine: Engine, *, identifier: str, password: str, name: str) -> tuple[User, bool]:
    """Create or refresh the bootstrap admin account. Returns ``(user, created)``."""
    with get_session(engine) as session:
        user = session.scalar(select(User).where(User.identifier == identifier))
        created = user is None
        if created:
            user = User(identifier=identifier, password_hash="", api_key=generate_api_key())
            session.add(user)
        user.password_hash = hash_password(password)
        user.name = name
        user.role = UserRole.ADMIN.value
        user.is_approved = True
        session.flush()
        return user, created


# ---------------------------------------------------------------------------
# Profile (self-service)
# ---------------------------------------------------------------------------
def get_profile(engine: Engine, user_id: str) -> dict:
    with get_session(engine) as session:
        user = _get_user(session, user_id)
        if not user.api_key:
            user.api_key = generate_api_key()
        return user_dict(user, private=True)


def update_profile(engine: Engine, user_id: str, changes: dict[str, Any]) -> dict:
    """Apply the fields present in *changes* to the caller's own account."""
    updates: dict[str, Any] = {}

    with get_session(engine) as session:
        user = _get_user(session, user_id)

        identifier = (changes.get("identifier") or "").strip()
        if identifier:
            clash = session.scalar(select(User).where(User.identifier == identifier))
            if clash is not None and clash.id != user.id:
                raise ValueError("This identifier is already in use")
            updates["identifier"] = identifier

        if "name" in changes:
            updates["name"] = (changes["name"] or "").strip() or None

        if changes.get("password"):
            _check_password_length(changes["password"])
            updates["password_hash"] = hash_password(changes["password"])

        if "avatar_url" in changes:
            updates["avatar_url"] = changes["avatar_url"]

        if "preferred_locale" in changes:
            locale = changes["preferred_locale"]
            if locale is not None and locale not in SUPPORTED_LOCALES:
                raise ValueError('Invalid locale. Use "fr" or "en"')
            updates["preferred_locale"] = locale

        if not updates:
            raise ValueError("Nothing to update")

        previous_locale = user.preferred_locale
        for key, value in updates.items():
            setattr(user, key, value)
        session.flush()

        if "preferred_locale" in updates and updates["preferred_locale"] != previous_locale:
            log_activity(
                session,
                user_id=user.id,
                action="change_language",
                entity_type="user",
                entity_id=user.id,
                details={"previous_locale": previous_locale, "new_locale": user.preferred_locale},
            )
        other_fields = sorted(
            "password" if k == "password_hash" else k
            for k in updates if k != "preferred_locale"
        )
        if other_fields:
            log_activity(
                session,
                user_id=user.id,
                action="update_profile",
                entity_type="user",
                entity_id=user.id,
                details={"updated_fields": other_fields},
            )
        return user_dict(user, private=True)


def regenerate_api_key(engine: Engine, user_id: str) -> str:
    with get_session(engine) as session:
        user = _get_user(session, user_id)
        user.api_key = generate_api_key()
        log_activity(
            session,
            user_id=user.id,
            action="regenerate_api_key",
            entity_type="user",
            entity_id=user.id,
        )
        return user.api_key


def set_avatar(engine: Engine, user_id: str, avatar_url: str) -> dict:
    with get_session(engine) as session:
        user = _get_user(session, user_id)
        user.avatar_url = avatar_url
        log_activity(
            session,
            user_id=user.id,
            action="update_avatar",
            entity_type="user",
            entity_id=user.id,
            details={"avatar_url": avatar_url},
        )
        return user_dict(user, private=True)


def list_approved_users(engine: Engine) -> list[dict]:
    """Approved members for pickers, sorted by display name."""
    with get_session(engine) as session:
        users = session.scalars(select(User).where(User.is_approved.is_(True))).all()
        users = sorted(users, key=lambda u: u.display_name.lower())
        return [{"id": u.id, "identifier": u.identifier, "name": u.name} for u in users]


# ---------------------------------------------------------------------------
# Admin operations
# ---------------------------------------------------------------------------
def list_users_admin(engine: Engine) -> list[dict]:
    """All accounts, newest first, with defense and journal counts."""
    with get_session(engine) as session:
        defense_counts = dict(session.execute(
            select(Defense.user_id, func.count(Defense.id)).group_by(Defense.user_id)
        ).all())
        log_counts = dict(session.execute(
            select(ActivityLog.user_id, func.count(ActivityLog.id)).group_by(ActivityLog.user_id)
        ).all())
        users = session.scalars(select(User).order_by(User.created_at.desc())).all()
        result = []
        for u in users:
            data = user_dict(u, private=True)
            data.pop("api_key", None)
            data["is_env_admin"] = is_env_admin(u)
            data["counts"] = {
                "defenses": defense_counts.get(u.id, 0),
                "logs": log_counts.get(u.id, 0),
            }
            result.append(data)
        return result


def set_approval_and_role(
    engine: Engine,
    actor: User,
    user_id: str,
    *,
    is_approved: bool | None = None,
    role: str | None = None,
) -> dict:
    if role is not None and role not in {r.value for r in UserRole}:
        raise ValueError("Invalid role")

    with get_session(engine) as session:
        user = _get_user(session, user_id)
        if is_env_admin(user) and role == UserRole.USER:
            raise ForbiddenError("The bootstrap admin cannot be demoted")
        if is_env_admin(user) and is_approved is False:
            raise ForbiddenError("The bootstrap admin cannot be locked")

        previous = {"is_approved": user.is_approved, "role": user.role}
        if is_approved is not None:
            user.is_approved = is_approved
        if role is not None:
            user.role = role

        if is_approved is not None:
            action = "approve_user" if is_approved else "reject_user"
        else:
            action = "update_user"
        log_activity(
            session,
            user_id=actor.id,
            action=action,
            entity_type="user",
            entity_id=user.id,
            details={
                "identifier": user.identifier,
                "is_approved": user.is_approved,
                "role": user.role,
                "previous_is_approved": previous["is_approved"],
                "previous_role": previous["role"],
            },
        )
        return user_dict(user, private=True)


def admin_update_user(engine: Engine, actor: User, user_id: str, changes: dict[str, Any]) -> dict:
    """Reset a password, rename, or change edit rights for another member."""
    with get_session(engine) as session:
        user = _get_user(session, user_id)
        if is_env_admin(user):
            raise ForbiddenError("The bootstrap admin cannot be edited by other admins")

        updates: dict[str, Any] = {}
        new_password = changes.get("new_password")
        if new_password:
            _check_password_length(new_password)
            updates["password_hash"] = hash_password(new_password)
        if "name" in changes:
            updates["name"] = (changes["name"] or "").strip() or None
        for flag in PERMISSION_FLAGS:
            if changes.get(flag) is not None:
                updates[flag] = changes[flag] is True

        if not updates:
            raise ValueError("Nothing to update")

        previous_name = user.name
        for key, value in updates.items():
            setattr(user, key, value)

        if new_password:
            action = "change_password"
        elif "name" in updates:
            action = "rename_user"
        else:
            action = "update_user"
        log_activity(
            session,
            user_id=actor.id,
            action=action,
            entity_type="user",
            entity_id=user.id,
            details={
                "identifier": user.identifier,
                "previous_name": previous_name,
                "new_name": user.name,
                "fields": sorted("password" if k == "password_hash" else k for k in updates),
            },
        )
        return user_dict(user, private=True)


def set_locked(engine: Engine, actor: User, user_id: str, is_approved: bool) -> dict:
    with get_session(engine) as session:
        user = _get_user(session, user_id)
        if is_env_admin(user):
            raise ForbiddenError("The bootstrap admin cannot be locked")
        user.is_approved = is_approved
        log_activity(
            session,
            user_id=actor.id,
            action="unlock_user" if is_approved else "lock_user",
            entity_type="user",
            entity_id=user.id,
            details={"identifier": user.identifier, "is_approved": is_approved},
        )
        return user_dict(user, private=True)


def delete_user(engine: Engine, actor: User, user_id: str) -> dict:
    """Delete a member after handing their defenses to the oldest other admin."""
    if user_id == actor.id:
        raise ValueError("You cannot delete your own account")

    with get_session(engine) as session:
        user = _get_user(session, user_id)
        if is_env_admin(user):
            raise ForbiddenError("The bootstrap admin cannot be deleted")

        heir = session.scalar(
            select(User)
            .where(User.role == UserRole.ADMIN.value, User.id != user.id)
            .order_by(User.created_at.asc())
            .limit(1)
        )
        if heir is None:
            raise ValueError("No other admin available to take over the defenses")

        transferred = 0
        for defense in list(user.defenses):
            defense.user_id = heir.id
            transferred += 1
        for post in session.scalars(select(NewsPost).where(NewsPost.created_by == user.id)):
            post.created_by = heir.id
        for post in session.scalars(select(NewsPost).where(NewsPost.updated_by == user.id)):
            post.updated_by = heir.id
        session.flush()
        session.expire(user, ["defenses"])

        identifier = user.identifier
        avatar = user.avatar_url
        session.delete(user)
        session.flush()
        log_activity(
            session,
            user_id=actor.id,
            action="delete_user",
            entity_type="user",
            entity_id=user_id,
            details={
                "identifier": identifier,
                "defenses_transferred": transferred,
                "transferred_to": heir.identifier,
            },
        )

    delete_upload(avatar)
    logger.info("User %r deleted by %s; %d defenses moved to %r",
                identifier, actor.identifier, transferred, heir.identifier)
    return {
        "success": True,
        "defenses_transferred": transferred,
        "transferred_to": heir.identifier,
    }


def remove_avatar(engine: Engine, actor: User, user_id: str) -> dict:
    with get_session(engine) as session:
        user = _get_user(session, user_id)
        old = user.avatar_url
        user.avatar_url = None
        log_activity(
            session,
            user_id=actor.id,
            action="delete_avatar",
            entity_type="user",
            entity_id=user.id,
            details={"identifier": user.identifier},
        )
    delete_upload(old)
    return {"success": True}
