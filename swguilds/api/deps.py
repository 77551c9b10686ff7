"""
swguilds.api.deps — FastAPI dependency injection
==================================================

Engine/config singletons, session-token resolution and the translation
of service exceptions into HTTP errors.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Cookie, Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from swguilds.config import SWGuildsConfig, load_config
from swguilds.database.engine import create_db_engine
from swguilds.database.models import User
from swguilds.services import user_service
from swguilds.services.errors import (
    ForbiddenError,
    NotFoundError,
    UpstreamError,
    WebhookError,
)

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "swguilds-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"
SESSION_COOKIE = "session"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> SWGuildsConfig:
    return load_config()


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------
def issue_token(user: User, ttl_hours: int) -> str:
    payload = {
        "sub": user.id,
        "identifier": user.identifier,
        "role": user.role,
        "exp": datetime.now(UTC) + timedelta(hours=ttl_hours),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def _token_from_request(authorization: str | None, cookie: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return cookie or None


def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    session: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
    engine: Engine = Depends(get_engine),
) -> User:
    """Resolve the caller from the Bearer header or the session cookie.

    The user row is reloaded on every request so role, flag and approval
    changes apply immediately.  Raises 401 if there is no valid token or
    the account is gone, 403 if it has been locked.
    """
    token = _token_from_request(authorization, session)
    if not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Not authenticated")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")

    user = user_service.get_user(engine, payload.get("sub", ""))
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Unknown user")
    if not user.is_approved:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Account not approved")
    return user


def get_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin access required")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
AdminUser = Annotated[User, Depends(get_admin_user)]
EngineDep = Annotated[Engine, Depends(get_engine)]
ConfigDep = Annotated[SWGuildsConfig, Depends(get_config)]


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------
@contextmanager
def service_errors() -> Iterator[None]:
    """Map service exceptions onto HTTP status codes.

    ``ValueError`` → 400, ``ForbiddenError`` → 403, ``NotFoundError`` → 404,
    webhook / SwarFarm failures → 502.
    """
    try:
        yield
    except (WebhookError, UpstreamError) as exc:
        logger.warning("Upstream call failed: %s", exc)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
    except ForbiddenError as exc:
        raise HTTPException(status.HTTP_403_FORBIDDEN, str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc)) from exc
