"""
tests/test_news.py — News Feed & Discord Push
===============================================
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import auth
from swguilds.database.models import ActivityLog
from swguilds.services import news_service, settings_service
from swguilds.services.errors import ForbiddenError, NotFoundError, WebhookError


@pytest.fixture
def writer(make_user):
    return make_user("writer", name="Writer", can_edit_news=True)


class TestNewsService:
    def test_pinned_first_then_newest(self, db_engine, writer):
        old = news_service.create_post(db_engine, writer, {"content": "old"})
        pinned = news_service.create_post(db_engine, writer, {"content": "pinned", "is_pinned": True})
        new = news_service.create_post(db_engine, writer, {"content": "new"})
        ids = [p["id"] for p in news_service.list_posts(db_engine)]
        assert ids == [pinned["id"], new["id"], old["id"]]

    def test_author_names_are_resolved(self, db_engine, writer):
        post = news_service.create_post(db_engine, writer, {"title": "  ", "content": "hello"})
        assert post["title"] is None
        assert post["created_by_user"] == {"name": "Writer"}

    def test_content_required(self, db_engine, writer):
        with pytest.raises(ValueError):
            news_service.create_post(db_engine, writer, {"content": "   "})

    def test_writer_right_required(self, db_engine, member):
        with pytest.raises(ForbiddenError):
            news_service.create_post(db_engine, member, {"content": "hi"})

    def test_update_records_editor(self, db_engine, writer, admin):
        post = news_service.create_post(db_engine, writer, {"content": "draft"})
        updated = news_service.update_post(db_engine, admin, post["id"], {"content": "final"})
        assert updated["content"] == "final"
        assert updated["updated_by"] == admin.id
        assert updated["updated_by_user"] == {"name": "Admin"}
        with pytest.raises(ValueError):
            news_service.update_post(db_engine, admin, post["id"], {"content": " "})

    def test_delete(self, db_engine, writer):
        post = news_service.create_post(db_engine, writer, {"content": "bye"})
        news_service.delete_post(db_engine, writer, post["id"])
        with pytest.raises(NotFoundError):
            news_service.get_post(db_engine, post["id"])

    def test_discord_message_format(self):
        assert news_service.format_discord_message("Titre", "Texte", "99") == "**Titre**\n\nTexte\n\n<@&99>"
        assert news_service.format_discord_message(None, "Texte", None) == "Texte"


class TestSendToDiscord:
    def test_webhook_not_configured(self, client, writer):
        post = client.post("/api/news", json={"content": "hi"}, headers=auth(writer)).json()
        resp = client.post(f"/api/news/{post['id']}/send-discord", headers=auth(writer))
        assert resp.status_code == 400

    def test_sends_and_logs(self, client, db_engine, writer, admin):
        settings_service.update_instance_settings(
            db_engine, admin.id, {"news_webhook_url": "https://discord.test/news"}
        )
        post = client.post("/api/news", json={"title": "War", "content": "Tonight"},
                           headers=auth(writer)).json()
        with patch("swguilds.api.routes.news.post_webhook", new=AsyncMock()) as send:
            resp = client.post(f"/api/news/{post['id']}/send-discord", headers=auth(writer))
        assert resp.status_code == 200
        send.assert_awaited_once_with("https://discord.test/news", "**War**\n\nTonight")
        with Session(db_engine) as s:
            actions = s.scalars(
                select(ActivityLog.action).where(ActivityLog.entity_id == post["id"])
            ).all()
        assert "send_discord" in actions

    def test_discord_failure_is_502(self, client, db_engine, writer, admin):
        settings_service.update_instance_settings(
            db_engine, admin.id, {"news_webhook_url": "https://discord.test/news"}
        )
        post = client.post("/api/news", json={"content": "Tonight"}, headers=auth(writer)).json()
        failing = AsyncMock(side_effect=WebhookError("Webhook returned 500"))
        with patch("swguilds.api.routes.news.post_webhook", new=failing):
            resp = client.post(f"/api/news/{post['id']}/send-discord", headers=auth(writer))
        assert resp.status_code == 502

    def test_member_cannot_send(self, client, writer, member):
        post = client.post("/api/news", json={"content": "hi"}, headers=auth(writer)).json()
        resp = client.post(f"/api/news/{post['id']}/send-discord", headers=auth(member))
        assert resp.status_code == 403
