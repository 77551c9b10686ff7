"""
swguilds.services.news_service — Guild news feed
==================================================

Pinned posts first, then newest.  Writers need ``can_edit_news``; a post
can be pushed to the news Discord webhook on demand.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import joinedload

from swguilds.constants import UNKNOWN_AUTHOR, role_mention
from swguilds.database.engine import get_session
from swguilds.database.models import NewsPost, User
from swguilds.services import settings_service
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import ForbiddenError, NotFoundError
from swguilds.services.permissions import can_edit_news

logger = logging.getLogger(__name__)


def _excerpt(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _author(user: User | None) -> dict[str, str]:
    return {"name": user.display_name if user else UNKNOWN_AUTHOR}


def post_dict(post: NewsPost) -> dict[str, Any]:
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content,
        "is_pinned": post.is_pinned,
        "created_by": post.created_by,
        "updated_by": post.updated_by,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "updated_at": post.updated_at.isoformat() if post.updated_at else None,
        "created_by_user": _author(post.created_by_user),
        "updated_by_user": _author(post.updated_by_user),
    }


def _clean_title(title: str | None) -> str | None:
    return (title or "").strip() or None


def _require_writer(user: User) -> None:
    if not can_edit_news(user):
        raise ForbiddenError("You are not allowed to edit news")


def _load(session, post_id: str) -> NewsPost:
    post = session.scalar(
        select(NewsPost)
        .options(joinedload(NewsPost.created_by_user), joinedload(NewsPost.updated_by_user))
        .where(NewsPost.id == post_id)
    )
    if post is None:
        raise NotFoundError("Post not found")
    return post


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def list_posts(engine: Engine) -> list[dict]:
    with get_session(engine) as session:
        posts = session.scalars(
            select(NewsPost)
            .options(joinedload(NewsPost.created_by_user), joinedload(NewsPost.updated_by_user))
            .order_by(NewsPost.is_pinned.desc(), NewsPost.created_at.desc())
        ).all()
        return [post_dict(p) for p in posts]


def get_post(engine: Engine, post_id: str) -> dict:
    with get_session(engine) as session:
        return post_dict(_load(session, post_id))


def create_post(engine: Engine, user: User, data: dict[str, Any]) -> dict:
    _require_writer(user)
    content = data.get("content")
    if not content or not isinstance(content, str) or not content.strip():
        raise ValueError("Content is required")

    with get_session(engine) as session:
        post = NewsPost(
            title=_clean_title(data.get("title")),
            content=content,
            is_pinned=data.get("is_pinned") is True,
            created_by=user.id,
            updated_by=user.id,
        )
        session.add(post)
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="create",
            entity_type="news",
            entity_id=post.id,
            details={
                "title": post.title or "",
                "content": _excerpt(content),
                "is_pinned": post.is_pinned,
            },
        )
        post_id = post.id
    return get_post(engine, post_id)


def update_post(engine: Engine, user: User, post_id: str, changes: dict[str, Any]) -> dict:
    _require_writer(user)
    with get_session(engine) as session:
        post = _load(session, post_id)
        if "title" in changes:
            post.title = _clean_title(changes["title"])
        if changes.get("content") is not None:
            if not str(changes["content"]).strip():
                raise ValueError("Content cannot be empty")
            post.content = changes["content"]
        if changes.get("is_pinned") is not None:
            post.is_pinned = bool(changes["is_pinned"])
        post.updated_by = user.id
        session.flush()
        log_activity(
            session,
            user_id=user.id,
            action="update",
            entity_type="news",
            entity_id=post.id,
            details={
                "title": post.title or "",
                "content": _excerpt(post.content),
                "is_pinned": post.is_pinned,
            },
        )
    return get_post(engine, post_id)


def delete_post(engine: Engine, user: User, post_id: str) -> None:
    _require_writer(user)
    with get_session(engine) as session:
        post = session.get(NewsPost, post_id)
        if post is None:
            raise NotFoundError("Post not found")
        log_activity(
            session,
            user_id=user.id,
            action="delete",
            entity_type="news",
            entity_id=post.id,
            details={"content": _excerpt(post.content)},
        )
        session.delete(post)


# ---------------------------------------------------------------------------
# Discord
# ---------------------------------------------------------------------------
def format_discord_message(title: str | None, content: str, role_id: str | None) -> str:
    message = f"**{title}**\n\n{content}" if title else content
    if role_id:
        message = f"{message}\n\n{role_mention(role_id)}"
    return message


def prepare_discord_post(engine: Engine, user: User, post_id: str) -> tuple[str, str]:
    """Return ``(webhook_url, content)`` for pushing a post to Discord."""
    _require_writer(user)
    with get_session(engine) as session:
        post = session.get(NewsPost, post_id)
        if post is None:
            raise NotFoundError("Post not found")
        url = settings_service.get_setting_value(session, "news_webhook_url")
        if not url:
            raise ValueError("News webhook is not configured")
        role_id = settings_service.get_setting_value(session, "news_webhook_role_id")
        return url, format_discord_message(post.title, post.content, role_id)


def record_discord_post(engine: Engine, user: User, post_id: str) -> None:
    with get_session(engine) as session:
        post = session.get(NewsPost, post_id)
        log_activity(
            session,
            user_id=user.id,
            action="send_discord",
            entity_type="news",
            entity_id=post_id,
            details={"content": _excerpt(post.content, 50) if post else ""},
        )
    logger.info("News %s sent to Discord by %s", post_id, user.identifier)
