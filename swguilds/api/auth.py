"""
swguilds.api.auth — Registration, password login & JWT sessions
==================================================================
"""

from __future__ import annotations

import logging
import os

from fastapi import APIRouter, BackgroundTasks, HTTPException, Response, status
from pydantic import BaseModel

from swguilds.api.deps import (
    SESSION_COOKIE,
    ConfigDep,
    CurrentUser,
    EngineDep,
    issue_token,
    service_errors,
)
from swguilds.api.rate_limit import clear_login_attempts, enforce_login_limit
from swguilds.database.engine import run_db
from swguilds.services import user_service, webhook_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RegisterBody(BaseModel):
    identifier: str | None = None
    password: str | None = None
    name: str | None = None


class LoginBody(BaseModel):
    identifier: str | None = None
    password: str | None = None


def _secure_cookies() -> bool:
    return os.getenv("COOKIE_SECURE", "").strip().lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.post("/register")
def register(
    body: RegisterBody,
    response: Response,
    background: BackgroundTasks,
    engine: EngineDep,
):
    """Create an account (201) or reset an existing one's password (200)."""
    with service_errors():
        user, created, notice = user_service.register(
            engine,
            identifier=body.identifier or "",
            password=body.password or "",
            name=body.name or "",
        )
    if notice is not None:
        background.add_task(webhook_service.send_quietly, *notice)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {"user": user, "created": created}


@router.post("/login")
async def login(body: LoginBody, response: Response, engine: EngineDep, cfg: ConfigDep):
    """Check credentials and open a session (body token + http-only cookie)."""
    identifier = (body.identifier or "").strip()
    if not identifier or not body.password:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Identifier and password are required")

    await enforce_login_limit(identifier)
    with service_errors():
        user = await run_db(user_service.authenticate, engine, identifier, body.password)
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    await clear_login_attempts(identifier)

    token = issue_token(user, cfg.token_ttl_hours)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=cfg.token_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=_secure_cookies(),
        path="/",
    )
    logger.info("User %r logged in", user.identifier)
    return {"token": token, "user": user_service.user_dict(user)}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"success": True}


@router.get("/me")
def me(user: CurrentUser):
    """Return the authenticated user with their effective permissions."""
    return user_service.user_dict(user)
