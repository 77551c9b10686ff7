"""
tests/test_admin.py — Admin Panel, Settings, Profile & Public Routes
======================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import auth
from swguilds.database.models import Defense, User
from swguilds.services import defense_service, upload_service, user_service
from swguilds.services.errors import ForbiddenError, NotFoundError

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
TEAM = {"leader_monster": "Lushen", "monster2": "Verde", "monster3": "Bernard"}


# ===========================================================================
# Member management
# ===========================================================================
class TestUserAdministration:
    def test_routes_require_admin(self, client, member):
        assert client.get("/api/admin/users", headers=auth(member)).status_code == 403
        assert client.get("/api/admin/check", headers=auth(member)).json() == {"is_admin": False}

    def test_list_users_has_counts_without_api_key(self, client, db_engine, admin, member):
        defense_service.create_defense(db_engine, member, TEAM)
        users = client.get("/api/admin/users", headers=auth(admin)).json()
        alice = next(u for u in users if u["identifier"] == "alice")
        assert alice["counts"]["defenses"] == 1
        assert "api_key" not in alice
        assert alice["is_env_admin"] is False

    def test_approve_and_promote(self, client, admin, make_user):
        pending = make_user("newbie", is_approved=False)
        resp = client.put(
            "/api/admin/users",
            json={"user_id": pending.id, "is_approved": True, "role": "admin"},
            headers=auth(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["is_approved"] is True
        assert resp.json()["permissions"]["is_admin"] is True

    def test_invalid_role(self, client, admin, member):
        resp = client.put(
            "/api/admin/users", json={"user_id": member.id, "role": "overlord"}, headers=auth(admin)
        )
        assert resp.status_code == 400

    def test_grant_rights_and_reset_password(self, client, admin, member):
        resp = client.patch(
            f"/api/admin/users/{member.id}",
            json={"can_edit_map": True, "new_password": "brand-new"},
            headers=auth(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["permissions"]["can_edit_map"] is True
        login = client.post("/api/auth/login", json={"identifier": "alice", "password": "brand-new"})
        assert login.status_code == 200

    def test_short_password_and_empty_patch(self, client, admin, member):
        short = client.patch(f"/api/admin/users/{member.id}", json={"new_password": "abc"}, headers=auth(admin))
        assert short.status_code == 400
        empty = client.patch(f"/api/admin/users/{member.id}", json={}, headers=auth(admin))
        assert empty.status_code == 400

    def test_lock_blocks_the_account(self, client, admin, member):
        resp = client.put(f"/api/admin/users/{member.id}", json={"is_approved": False}, headers=auth(admin))
        assert resp.json()["is_approved"] is False
        assert client.get("/api/auth/me", headers=auth(member)).status_code == 403

    def test_unknown_user_is_404(self, client, admin):
        assert client.delete("/api/admin/users/ghost", headers=auth(admin)).status_code == 404


class TestDeleteUser:
    def test_defenses_move_to_oldest_admin(self, db_engine, admin, member):
        created = defense_service.create_defense(db_engine, member, TEAM)
        result = user_service.delete_user(db_engine, admin, member.id)
        assert result == {"success": True, "defenses_transferred": 1, "transferred_to": "admin"}

        with Session(db_engine) as s:
            assert s.get(User, member.id) is None
            assert s.get(Defense, created["id"]).user_id == admin.id

    def test_cannot_delete_self(self, db_engine, admin):
        with pytest.raises(ValueError):
            user_service.delete_user(db_engine, admin, admin.id)

    def test_unknown_user(self, db_engine, admin):
        with pytest.raises(NotFoundError):
            user_service.delete_user(db_engine, admin, "ghost")

    def test_self_delete_route_is_400(self, client, admin):
        assert client.delete(f"/api/admin/users/{admin.id}", headers=auth(admin)).status_code == 400


class TestBootstrapAdminProtection:
    @pytest.fixture
    def env_admin(self, monkeypatch, make_user):
        monkeypatch.setenv("ADMIN_ID", "root")
        return make_user("root", name="Root", role="admin")

    def test_cannot_be_demoted_locked_edited_or_deleted(self, db_engine, admin, env_admin):
        with pytest.raises(ForbiddenError):
            user_service.set_approval_and_role(db_engine, admin, env_admin.id, role="user")
        with pytest.raises(ForbiddenError):
            user_service.set_locked(db_engine, admin, env_admin.id, False)
        with pytest.raises(ForbiddenError):
            user_service.admin_update_user(db_engine, admin, env_admin.id, {"name": "X"})
        with pytest.raises(ForbiddenError):
            user_service.delete_user(db_engine, admin, env_admin.id)

    def test_flagged_in_listing(self, db_engine, env_admin):
        users = user_service.list_users_admin(db_engine)
        assert [u["is_env_admin"] for u in users if u["identifier"] == "root"] == [True]

    def test_cannot_be_rejected_through_approval(self, client, db_engine, admin, env_admin):
        with pytest.raises(ForbiddenError):
            user_service.set_approval_and_role(db_engine, admin, env_admin.id, is_approved=False)
        resp = client.put(
            "/api/admin/users", json={"user_id": env_admin.id, "is_approved": False}, headers=auth(admin)
        )
        assert resp.status_code == 403
        assert client.get("/api/auth/me", headers=auth(env_admin)).status_code == 200

    def test_delete_route_is_403(self, client, admin, env_admin):
        assert client.delete(f"/api/admin/users/{env_admin.id}", headers=auth(admin)).status_code == 403


# ===========================================================================
# Activity journal & tags
# ===========================================================================
class TestActivityJournal:
    def test_filters(self, client, db_engine, admin, member):
        defense_service.create_defense(db_engine, member, TEAM)
        client.put(f"/api/admin/users/{member.id}", json={"is_approved": False}, headers=auth(admin))

        logs = client.get("/api/admin/logs?entity_type=defense", headers=auth(admin)).json()
        assert [(e["action"], e["user"]["name"]) for e in logs] == [("create", "Alice")]
        locks = client.get("/api/admin/logs?action=lock_user", headers=auth(admin)).json()
        assert len(locks) == 1

    def test_limit_is_bounded(self, client, admin):
        assert client.get("/api/admin/logs?limit=0", headers=auth(admin)).status_code == 422


class TestAdminTags:
    def test_crud(self, client, admin):
        created = client.post("/api/admin/tags", json={"name": "Speed", "color": "#FF0000"}, headers=auth(admin))
        assert created.status_code == 201
        tag_id = created.json()["id"]
        renamed = client.put(f"/api/admin/tags/{tag_id}", json={"name": "Fast"}, headers=auth(admin))
        assert renamed.json()["name"] == "Fast"
        assert client.delete(f"/api/admin/tags/{tag_id}", headers=auth(admin)).json() == {"success": True}
        assert client.get("/api/admin/tags", headers=auth(admin)).json() == []


# ===========================================================================
# Instance settings
# ===========================================================================
class TestSettings:
    def test_public_view_is_a_subset(self, client):
        resp = client.get("/api/settings")
        assert resp.status_code == 200
        body = resp.json()
        assert set(body) == {"instance_name", "logo_url", "updated_at"}
        assert body["instance_name"] == "SWGuilds"

    def test_admin_update(self, client, admin):
        resp = client.put(
            "/api/admin/settings",
            json={"instance_name": "  Dragons ", "news_webhook_url": "https://discord.test/news"},
            headers=auth(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["news_webhook_url"] == "https://discord.test/news"
        assert client.get("/api/settings").json()["instance_name"] == "Dragons"

    def test_blank_name_falls_back_to_default(self, client, admin):
        client.put("/api/admin/settings", json={"instance_name": "Dragons"}, headers=auth(admin))
        client.put("/api/admin/settings", json={"instance_name": " "}, headers=auth(admin))
        assert client.get("/api/settings").json()["instance_name"] == "SWGuilds"

    def test_empty_update_is_400(self, client, admin):
        assert client.put("/api/admin/settings", json={}, headers=auth(admin)).status_code == 400

    def test_members_cannot_read_webhooks(self, client, member):
        assert client.get("/api/admin/settings", headers=auth(member)).status_code == 403

    def test_logo_upload_and_favicon(self, client, admin):
        assert client.get("/api/favicon").status_code == 404
        resp = client.post(
            "/api/admin/settings/logo",
            files={"file": ("guild.png", PNG, "image/png")},
            headers=auth(admin),
        )
        assert resp.json() == {"url": "/api/uploads/logo.png"}
        assert client.get("/api/settings").json()["logo_url"] == "/api/uploads/logo.png"
        assert client.get("/api/uploads/logo.png").content == PNG
        assert client.get("/api/favicon").status_code == 200

    def test_logo_rejects_other_types(self, client, admin):
        resp = client.post(
            "/api/admin/settings/logo",
            files={"file": ("guild.exe", b"MZ", "application/octet-stream")},
            headers=auth(admin),
        )
        assert resp.status_code == 400


# ===========================================================================
# Profile
# ===========================================================================
class TestProfile:
    def test_profile_issues_api_key(self, client, member):
        first = client.get("/api/user/profile", headers=auth(member)).json()
        assert first["api_key"]
        assert client.get("/api/user/profile", headers=auth(member)).json()["api_key"] == first["api_key"]

    def test_regenerate_api_key(self, client, member):
        old = client.get("/api/user/profile", headers=auth(member)).json()["api_key"]
        resp = client.post("/api/user/profile", json={"action": "regenerate_api_key"}, headers=auth(member))
        assert resp.json()["api_key"] != old
        assert client.post("/api/user/profile", json={"action": "dance"}, headers=auth(member)).status_code == 400

    def test_update_fields(self, client, member):
        resp = client.put(
            "/api/user/profile",
            json={"name": "Alicia", "preferred_locale": "en"},
            headers=auth(member),
        )
        assert resp.status_code == 200
        assert (resp.json()["name"], resp.json()["preferred_locale"]) == ("Alicia", "en")

    def test_update_validation(self, client, member, make_user):
        make_user("bob")
        for body in ({"identifier": "bob"}, {"preferred_locale": "de"}, {"password": "abc"}, {}):
            assert client.put("/api/user/profile", json=body, headers=auth(member)).status_code == 400

    def test_language_change_is_logged(self, db_engine, member):
        user_service.update_profile(db_engine, member.id, {"preferred_locale": "en"})
        from swguilds.services.activity_service import list_logs

        entry = list_logs(db_engine, action="change_language")[0]
        assert entry["details"] == {"previous_locale": "fr", "new_locale": "en"}

    def test_avatar_upload_is_named_after_member(self, client, member):
        resp = client.post(
            "/api/user/profile/upload",
            files={"file": ("me.png", PNG, "image/png")},
            headers=auth(member),
        )
        assert resp.status_code == 200
        assert resp.json()["url"] == "/api/uploads/profiles/Alice.png"
        assert (upload_service.UPLOAD_DIR / "profiles" / "Alice.png").is_file()

    def test_avatar_refuses_svg(self, client, member):
        resp = client.post(
            "/api/user/profile/upload",
            files={"file": ("me.png", PNG, "image/svg+xml")},
            headers=auth(member),
        )
        assert resp.status_code == 400
        assert list(upload_service.UPLOAD_DIR.rglob("Alice.*")) == []

    def test_svg_mime_is_logo_only(self):
        assert "image/svg+xml" in upload_service.LOGO_MIME_TYPES
        assert "image/svg+xml" not in upload_service.AVATAR_MIME_TYPES

    def test_admin_removes_avatar(self, client, db_engine, admin, member):
        client.post("/api/user/profile/upload", files={"file": ("me.png", PNG, "image/png")}, headers=auth(member))
        resp = client.delete(f"/api/admin/users/{member.id}/avatar", headers=auth(admin))
        assert resp.json() == {"success": True}
        assert not (upload_service.UPLOAD_DIR / "profiles" / "Alice.png").exists()
        with Session(db_engine) as s:
            assert s.scalar(select(User.avatar_url).where(User.id == member.id)) is None

    def test_member_directory(self, client, member, make_user):
        make_user("zed")
        make_user("bea")
        make_user("pending", is_approved=False)
        names = [u["name"] for u in client.get("/api/users", headers=auth(member)).json()]
        assert names == ["Alice", "Bea", "Zed"]


# ===========================================================================
# Public
# ===========================================================================
class TestPublic:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"

    def test_missing_upload_is_404(self, client):
        assert client.get("/api/uploads/profiles/nobody.png").status_code == 404

    def test_serves_data_files(self, client):
        from swguilds.services import monster_service

        monster_service.save_cache_file([{"id": 1, "name": "Lushen"}])
        resp = client.get("/api/data/monsters.json")
        assert resp.status_code == 200
        assert resp.json()["monsters"] == [{"id": 1, "name": "Lushen"}]

    @pytest.mark.parametrize("relative", ["../secret", "a/../../b", "", "/etc/passwd"])
    def test_safe_join_refuses_escapes(self, tmp_path, relative):
        assert upload_service.safe_join(tmp_path, relative) is None

    def test_safe_join_nested(self, tmp_path):
        assert upload_service.safe_join(tmp_path, "json/Alice.json") == tmp_path / "json" / "Alice.json"
