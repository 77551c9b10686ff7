"""
swguilds.api.routes.news — News feed
======================================
"""

from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel

from swguilds.api.deps import CurrentUser, EngineDep, service_errors
from swguilds.database.engine import run_db
from swguilds.services import news_service
from swguilds.services.webhook_service import post_webhook

router = APIRouter(prefix="/news", tags=["news"])


class PostBody(BaseModel):
    title: str | None = None
    content: str | None = None
    is_pinned: bool | None = None


@router.get("")
def list_posts(user: CurrentUser, engine: EngineDep):
    return news_service.list_posts(engine)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_post(body: PostBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return news_service.create_post(engine, user, body.model_dump())


@router.put("/{post_id}")
def update_post(post_id: str, body: PostBody, user: CurrentUser, engine: EngineDep):
    with service_errors():
        return news_service.update_post(engine, user, post_id, body.model_dump(exclude_unset=True))


@router.delete("/{post_id}")
def delete_post(post_id: str, user: CurrentUser, engine: EngineDep):
    with service_errors():
        news_service.delete_post(engine, user, post_id)
    return {"success": True}


@router.post("/{post_id}/send-discord")
async def send_to_discord(post_id: str, user: CurrentUser, engine: EngineDep):
    """Push a post to the news webhook; Discord failures answer 502."""
    with service_errors():
        url, content = await run_db(news_service.prepare_discord_post, engine, user, post_id)
        await post_webhook(url, content)
    await run_db(news_service.record_discord_post, engine, user, post_id)
    return {"success": True}
