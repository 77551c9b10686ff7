"""
tests/test_monsters.py — SwarFarm Cache & Member Boxes
========================================================
SwarFarm traffic goes through ``httpx.MockTransport``; boxes are written
to the per-test upload directory.
"""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import auth, run
from swguilds.services import monster_service, upload_service
from swguilds.services.errors import ForbiddenError, NotFoundError, UpstreamError

MONSTERS = [
    {"id": 1, "name": "Lushen", "element": "wind", "com2us_id": 101, "natural_stars": 4},
    {"id": 2, "name": "Verde", "element": "fire", "com2us_id": 102, "natural_stars": 5},
    {"id": 3, "name": "Bernard", "element": "wind", "com2us_id": 103, "natural_stars": 2},
    {"id": 4, "name": "Mav", "element": "light", "com2us_id": 104, "natural_stars": 3},
]

API_URL = "https://swarfarm.test/api/v2/monsters/"


def _raw(monster_id: int, name: str, element: str = "Wind") -> dict:
    return {
        "id": monster_id,
        "name": name,
        "element": element,
        "com2us_id": 100 + monster_id,
        "image_filename": f"unit_icon_{monster_id}.png",
        "base_stars": 4,
        "natural_stars": 4,
        "awaken_level": 1,
    }


def _paged_transport(pages: dict[str, dict]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        page = pages.get(str(request.url))
        if page is None:
            return httpx.Response(404)
        return httpx.Response(200, json=page)
    return httpx.MockTransport(handler)


def _client(transport: httpx.MockTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=transport)


def _write_box(user, units: list[dict]) -> None:
    path = upload_service.UPLOAD_DIR / "json" / f"{user.display_name}.json"
    path.write_text(json.dumps({"unit_list": units}), encoding="utf-8")


# ===========================================================================
# Caches
# ===========================================================================
class TestMonsterCache:
    def test_empty_cache_misses(self):
        assert monster_service.MonsterCache().get(ttl_seconds=60) is None

    def test_set_then_get(self):
        cache = monster_service.MonsterCache()
        cache.set(MONSTERS)
        assert cache.get(ttl_seconds=60) is MONSTERS

    def test_zero_ttl_expires_immediately(self):
        cache = monster_service.MonsterCache()
        cache.set(MONSTERS)
        assert cache.get(ttl_seconds=0) is None


class TestCacheFile:
    def test_missing_file(self):
        assert monster_service.load_cache_file() == ([], None)

    def test_round_trip_keeps_timestamp(self):
        stamp = datetime(2026, 10, 1, tzinfo=UTC)
        monster_service.save_cache_file(MONSTERS, now=stamp)
        monsters, updated = monster_service.load_cache_file()
        assert monsters == MONSTERS
        assert updated == stamp

    def test_bare_list_format_uses_mtime(self):
        path = monster_service.cache_file()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(MONSTERS), encoding="utf-8")
        monsters, updated = monster_service.load_cache_file()
        assert monsters == MONSTERS
        assert updated is not None and updated.tzinfo is not None

    def test_corrupt_file_is_ignored(self):
        path = monster_service.cache_file()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json", encoding="utf-8")
        assert monster_service.load_cache_file() == ([], None)

    def test_expiry(self):
        now = datetime(2026, 10, 19, tzinfo=UTC)
        assert monster_service.is_expired(None, 180, now)
        assert not monster_service.is_expired(now - timedelta(days=10), 180, now)
        assert monster_service.is_expired(now - timedelta(days=181), 180, now)


# ===========================================================================
# SwarFarm fetch
# ===========================================================================
class TestFetch:
    def test_follows_pagination(self):
        page2 = API_URL + "?page=2"
        transport = _paged_transport({
            API_URL: {"next": page2, "results": [_raw(1, "Lushen")]},
            page2: {"next": None, "results": [_raw(2, "Verde", "Fire")]},
        })

        async def go():
            async with _client(transport) as client:
                return await monster_service.fetch_all_monsters(API_URL, client=client)

        monsters = run(go())
        assert [m["name"] for m in monsters] == ["Lushen", "Verde"]
        assert monsters[0]["element"] == "wind"
        assert monsters[0]["bestiary_slug"] == "1-lushen"
        assert monsters[0]["is_second_awakened"] is False

    def test_error_status_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))

        async def go():
            async with _client(transport) as client:
                await monster_service.fetch_all_monsters(API_URL, client=client)

        with pytest.raises(UpstreamError):
            run(go())

    def test_malformed_page_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"oops": []}))

        async def go():
            async with _client(transport) as client:
                await monster_service.fetch_all_monsters(API_URL, client=client)

        with pytest.raises(UpstreamError):
            run(go())


class TestGetMonsters:
    def _cfg(self, config):
        return replace(config, swarfarm_api_url=API_URL)

    def test_fetches_then_caches(self, config):
        cfg = self._cfg(config)
        transport = _paged_transport({API_URL: {"next": None, "results": [_raw(1, "Lushen")]}})

        async def go():
            async with _client(transport) as client:
                return await monster_service.get_monsters(cfg, client=client)

        monsters = run(go())
        assert [m["name"] for m in monsters] == ["Lushen"]
        assert monster_service.monster_cache.get(60) == monsters
        assert monster_service.load_cache_file()[0] == monsters

    def test_fresh_file_skips_swarfarm(self, config):
        cfg = self._cfg(config)
        monster_service.save_cache_file(MONSTERS)
        transport = httpx.MockTransport(lambda request: pytest.fail("SwarFarm should not be called"))

        async def go():
            async with _client(transport) as client:
                return await monster_service.get_monsters(cfg, client=client)

        assert run(go()) == MONSTERS

    def test_stale_file_is_fallback_when_swarfarm_down(self, config):
        cfg = self._cfg(config)
        monster_service.save_cache_file(MONSTERS, now=datetime(2020, 1, 1, tzinfo=UTC))
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        async def go():
            async with _client(transport) as client:
                return await monster_service.get_monsters(cfg, client=client)

        assert run(go()) == MONSTERS

    def test_nothing_available_returns_empty_uncached(self, config):
        cfg = self._cfg(config)
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        async def go():
            async with _client(transport) as client:
                return await monster_service.get_monsters(cfg, client=client)

        assert run(go()) == []
        assert monster_service.monster_cache.get(60) is None


def test_filter_by_name():
    assert [m["name"] for m in monster_service.filter_by_name(MONSTERS, "ER")] == ["Verde", "Bernard"]
    assert monster_service.filter_by_name(MONSTERS, "  ") == MONSTERS


# ===========================================================================
# Member boxes
# ===========================================================================
class TestMonsterIndex:
    def test_com2us_then_id_fallback(self):
        index = monster_service.MonsterIndex(MONSTERS)
        assert index.for_unit(101)["name"] == "Lushen"
        assert index.for_unit(3)["name"] == "Bernard"
        assert index.for_unit(999) is None

    def test_extract_units_filters_six_stars(self):
        data = {"unit_list": [
            {"unit_master_id": 101, "class": 6},
            {"unit_master_id": 102, "class": 5},
            {"class": 6},
        ]}
        assert len(monster_service.extract_units(data)) == 2
        assert monster_service.extract_units(data, six_star_only=True) == [{"unit_master_id": 101, "class": 6}]
        assert monster_service.extract_units(["not", "a", "box"]) == []


class TestUserBox:
    def test_box_and_manual_sorted_by_element(self, db_engine, member):
        _write_box(member, [
            {"unit_master_id": 101, "class": 6},
            {"unit_master_id": 102, "class": 5},
            {"unit_master_id": 999, "class": 6},
        ])
        monster_service.add_manual_monster(db_engine, member, member.id, "Verde")

        box = monster_service.user_box(db_engine, member, member.id, MONSTERS)
        assert box["has_json_file"] is True
        assert [(m["name"], m["is_manual"]) for m in box["monsters"]] == [
            ("Verde", True),
            ("Lushen", False),
        ]

    def test_without_json_file(self, db_engine, member):
        box = monster_service.user_box(db_engine, member, member.id, MONSTERS)
        assert box == {"monsters": [], "has_json_file": False}

    def test_other_members_box_is_forbidden(self, db_engine, member, make_user):
        bob = make_user("bob")
        with pytest.raises(ForbiddenError):
            monster_service.user_box(db_engine, bob, member.id, MONSTERS)

    def test_admin_can_view_any_box(self, db_engine, admin, member):
        assert monster_service.user_box(db_engine, admin, member.id, MONSTERS)["has_json_file"] is False


class TestManualMonsters:
    def test_add_and_remove(self, db_engine, member):
        row = monster_service.add_manual_monster(db_engine, member, member.id, "  Mav ")
        assert row["monster_name"] == "Mav"
        monster_service.remove_manual_monster(db_engine, member, member.id, "Mav")
        with pytest.raises(NotFoundError):
            monster_service.remove_manual_monster(db_engine, member, member.id, "Mav")

    def test_duplicate_and_blank(self, db_engine, member):
        monster_service.add_manual_monster(db_engine, member, member.id, "Mav")
        with pytest.raises(ValueError):
            monster_service.add_manual_monster(db_engine, member, member.id, "Mav")
        with pytest.raises(ValueError):
            monster_service.add_manual_monster(db_engine, member, member.id, " ")

    def test_only_self_or_admin(self, db_engine, admin, member, make_user):
        bob = make_user("bob")
        with pytest.raises(ForbiddenError):
            monster_service.add_manual_monster(db_engine, bob, member.id, "Mav")
        assert monster_service.add_manual_monster(db_engine, admin, member.id, "Mav")["user_id"] == member.id

    def test_unknown_user(self, db_engine, admin):
        with pytest.raises(NotFoundError):
            monster_service.add_manual_monster(db_engine, admin, "ghost", "Mav")


class TestSearchUsers:
    @pytest.fixture
    def roster(self, db_engine, member, make_user):
        _write_box(member, [
            {"unit_master_id": 101, "class": 6},
            {"unit_master_id": 102, "class": 5},
        ])
        bob = make_user("bob")
        monster_service.add_manual_monster(db_engine, bob, bob.id, "lushen")
        pending = make_user("pending", is_approved=False)
        monster_service.add_manual_monster(db_engine, pending, pending.id, "Lushen")
        return member, bob

    def test_by_partial_name(self, db_engine, roster):
        results = monster_service.search_users(db_engine, MONSTERS, monster_name="lush")
        assert [(r["name"], r["count"]) for r in results] == [("Alice", 1), ("Bob", 1)]

    def test_exact_match(self, db_engine, roster):
        assert monster_service.search_users(db_engine, MONSTERS, monster_name="lush", exact_match=True) == []
        results = monster_service.search_users(db_engine, MONSTERS, monster_name="LUSHEN", exact_match=True)
        assert len(results) == 2

    def test_by_element_and_stars(self, db_engine, roster):
        fire = monster_service.search_users(db_engine, MONSTERS, element="Fire")
        assert [r["name"] for r in fire] == ["Alice"]
        assert fire[0]["monsters"][0]["name"] == "Verde"
        assert monster_service.search_users(db_engine, MONSTERS, stars=2) == []

    def test_requires_a_criterion(self, db_engine):
        with pytest.raises(ValueError):
            monster_service.search_users(db_engine, MONSTERS, monster_name="  ")


class TestJsonUpload:
    def test_prunes_manual_monsters_now_in_box(self, db_engine, member):
        monster_service.add_manual_monster(db_engine, member, member.id, "lushen")
        monster_service.add_manual_monster(db_engine, member, member.id, "Mav")
        data = {"unit_list": [{"unit_master_id": 101, "class": 6}, {"unit_master_id": 104, "class": 4}]}

        result = monster_service.record_json_upload(
            db_engine, member.id, "/api/uploads/json/Alice.json", data, MONSTERS
        )
        assert result == {
            "file_name": "Alice.json",
            "url": "/api/uploads/json/Alice.json",
            "manual_monsters_removed": 1,
        }
        box = monster_service.user_box(db_engine, member, member.id, MONSTERS)
        assert [m["name"] for m in box["monsters"] if m["is_manual"]] == ["Mav"]

    def test_upload_route_stores_box(self, client, member):
        monster_service.monster_cache.set(MONSTERS)
        payload = json.dumps({"unit_list": [{"unit_master_id": 101, "class": 6}]}).encode()
        resp = client.post(
            "/api/user/profile/upload-json",
            files={"file": ("my-box.json", payload, "application/json")},
            headers=auth(member),
        )
        assert resp.status_code == 200
        assert resp.json()["url"] == "/api/uploads/json/Alice.json"
        assert (upload_service.UPLOAD_DIR / "json" / "Alice.json").is_file()

    def test_upload_route_rejects_non_json(self, client, member):
        resp = client.post(
            "/api/user/profile/upload-json",
            files={"file": ("box.txt", b"{}", "text/plain")},
            headers=auth(member),
        )
        assert resp.status_code == 400


# ===========================================================================
# Portraits & SwarFarm refresh
# ===========================================================================
IMAGE_URL = "https://swarfarm.test/static/monsters/"
PORTRAITS = [monster_service.simplify(_raw(1, "Lushen")), monster_service.simplify(_raw(2, "Verde", "Fire"))]


def _image_transport(images: dict[str, bytes], pages: dict[str, dict] | None = None):
    """Serve SwarFarm pages plus the given portraits; anything else is a 404."""
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        seen.append(url)
        if pages and url in pages:
            return httpx.Response(200, json=pages[url])
        name = url.removeprefix(IMAGE_URL)
        if url.startswith(IMAGE_URL) and name in images:
            return httpx.Response(200, content=images[name])
        return httpx.Response(404)

    return httpx.MockTransport(handler), seen


def _mirrored(file_name: str, content: bytes = b"old") -> None:
    path = upload_service.UPLOAD_DIR / "monsters" / file_name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


class TestPortraitNames:
    @pytest.mark.parametrize(
        ("monster", "expected"),
        [
            ({"name": "Lushen (Wind)", "image_filename": "unit_icon_1.png"}, "lushen_wind.png"),
            ({"name": "Ryu Bi", "image_filename": "unit_icon_9.jpg"}, "ryu_bi.jpg"),
            ({"name": "Mav", "image_filename": None}, "mav.png"),
        ],
    )
    def test_normalized_lowercase_name(self, monster, expected):
        assert monster_service.image_file_name(monster) == expected

    def test_local_urls_only_for_mirrored_files(self):
        _mirrored("lushen.png")
        urls = monster_service.local_image_urls(PORTRAITS, ["Lushen", "Verde", "Ghost"])
        assert urls == {"Lushen": "/api/uploads/monsters/lushen.png"}


class TestMirrorImage:
    def _cfg(self, config):
        return replace(config, swarfarm_image_url=IMAGE_URL)

    def test_downloads_once(self, config):
        monster_service.monster_cache.set(PORTRAITS)
        transport, seen = _image_transport({"unit_icon_2.png": b"verde"})

        async def go():
            async with _client(transport) as client:
                first = await monster_service.mirror_image(self._cfg(config), "unit_icon_2.png", client=client)
                again = await monster_service.mirror_image(self._cfg(config), "unit_icon_2.png", client=client)
                return first, again

        first, again = run(go())
        assert first == {
            "url": "/api/uploads/monsters/verde.png",
            "local": True,
            "downloaded": True,
            "monster_name": "Verde",
        }
        assert again["downloaded"] is False
        assert seen == [f"{IMAGE_URL}unit_icon_2.png"]
        assert (upload_service.UPLOAD_DIR / "monsters" / "verde.png").read_bytes() == b"verde"

    def test_unknown_image_filename(self, config):
        monster_service.monster_cache.set(PORTRAITS)
        with pytest.raises(NotFoundError):
            run(monster_service.mirror_image(self._cfg(config), "unit_icon_999.png"))

    def test_blank_image_filename(self, config):
        with pytest.raises(ValueError):
            run(monster_service.mirror_image(self._cfg(config), ""))

    def test_failed_download(self, config):
        monster_service.monster_cache.set(PORTRAITS)
        transport, _ = _image_transport({})

        async def go():
            async with _client(transport) as client:
                return await monster_service.mirror_image(self._cfg(config), "unit_icon_1.png", client=client)

        with pytest.raises(UpstreamError):
            run(go())
        assert not (upload_service.UPLOAD_DIR / "monsters" / "lushen.png").exists()


class TestRefreshSwarfarmData:
    def _cfg(self, config):
        return replace(config, swarfarm_api_url=API_URL, swarfarm_image_url=IMAGE_URL)

    def test_counts_monsters_and_images(self, config):
        old_verde = {**monster_service.simplify(_raw(2, "Verde", "Fire")), "element": "water"}
        monster_service.save_cache_file([monster_service.simplify(_raw(1, "Lushen")), old_verde])
        _mirrored("lushen.png")
        page = {
            "next": None,
            "results": [
                _raw(1, "Lushen"),
                _raw(2, "Verde", "Fire"),
                _raw(3, "Bernard"),
                {**_raw(4, "Mav", "Light"), "image_filename": None},
            ],
        }
        transport, seen = _image_transport({"unit_icon_2.png": b"verde"}, pages={API_URL: page})

        async def go():
            async with _client(transport) as client:
                return await monster_service.refresh_swarfarm_data(self._cfg(config), client=client)

        stats = run(go())
        assert stats == {
            "monsters": 4,
            "new_monsters": 2,
            "updated_monsters": 1,
            "images_downloaded": 1,
            "images_already_exist": 1,
            "images_errors": 2,
        }
        assert f"{IMAGE_URL}unit_icon_1.png" not in seen
        assert (upload_service.UPLOAD_DIR / "monsters" / "verde.png").read_bytes() == b"verde"
        assert (upload_service.UPLOAD_DIR / "monsters" / "lushen.png").read_bytes() == b"old"
        assert len(monster_service.load_cache_file()[0]) == 4
        assert len(monster_service.monster_cache.get(60)) == 4

    def test_empty_swarfarm_is_an_error(self, config):
        transport, _ = _image_transport({}, pages={API_URL: {"next": None, "results": []}})

        async def go():
            async with _client(transport) as client:
                return await monster_service.refresh_swarfarm_data(self._cfg(config), client=client)

        with pytest.raises(UpstreamError):
            run(go())
        assert monster_service.load_cache_file()[0] == []


# ===========================================================================
# Routes
# ===========================================================================
class TestMonsterRoutes:
    def test_list_filters_by_query(self, client, member):
        monster_service.monster_cache.set(MONSTERS)
        resp = client.get("/api/monsters?q=mav", headers=auth(member))
        assert resp.status_code == 200
        assert [m["name"] for m in resp.json()["monsters"]] == ["Mav"]

    def test_requires_login(self, client):
        assert client.get("/api/monsters").status_code == 401

    def test_user_box_route(self, client, member, make_user):
        monster_service.monster_cache.set(MONSTERS)
        _write_box(member, [{"unit_master_id": 103, "class": 6}])
        resp = client.get(f"/api/monsters/user/{member.id}", headers=auth(member))
        assert resp.status_code == 200
        assert [m["name"] for m in resp.json()["monsters"]] == ["Bernard"]

        bob = make_user("bob")
        assert client.get(f"/api/monsters/user/{member.id}", headers=auth(bob)).status_code == 403

    def test_search_without_criteria_is_400(self, client, member):
        monster_service.monster_cache.set(MONSTERS)
        assert client.get("/api/monsters/search-users", headers=auth(member)).status_code == 400

    def test_manual_routes(self, client, member):
        created = client.post(
            f"/api/monsters/user/{member.id}/manual",
            json={"monster_name": "Mav"},
            headers=auth(member),
        )
        assert created.status_code == 201
        removed = client.delete(
            f"/api/monsters/user/{member.id}/manual",
            params={"monster_name": "Mav"},
            headers=auth(member),
        )
        assert removed.json() == {"success": True}


class TestPortraitRoutes:
    @pytest.fixture
    def swarfarm(self, monkeypatch, config):
        """Route SwarFarm portrait downloads through a mock transport."""
        monster_service.monster_cache.set(PORTRAITS)
        images: dict[str, bytes] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            name = str(request.url).removeprefix(config.swarfarm_image_url)
            if name in images:
                return httpx.Response(200, content=images[name])
            return httpx.Response(500)

        monkeypatch.setattr(
            monster_service, "_swarfarm_client", lambda: _client(httpx.MockTransport(handler))
        )
        return images

    def test_get_lists_mirrored_urls(self, client, member, swarfarm):
        _mirrored("lushen.png")
        resp = client.get("/api/monsters/images", params={"monsters": "Lushen, Verde"}, headers=auth(member))
        assert resp.json() == {"images": {"Lushen": "/api/uploads/monsters/lushen.png"}}
        empty = client.get("/api/monsters/images", headers=auth(member))
        assert empty.json() == {"images": {}}

    def test_post_mirrors_portrait(self, client, member, swarfarm):
        swarfarm["unit_icon_2.png"] = b"verde"
        resp = client.post("/api/monsters/images", json={"image_filename": "unit_icon_2.png"}, headers=auth(member))
        assert resp.status_code == 200
        assert resp.json()["url"] == "/api/uploads/monsters/verde.png"
        assert client.get("/api/uploads/monsters/verde.png").content == b"verde"

    def test_post_unknown_is_404(self, client, member, swarfarm):
        resp = client.post("/api/monsters/images", json={"image_filename": "nope.png"}, headers=auth(member))
        assert resp.status_code == 404

    def test_post_blank_is_400(self, client, member, swarfarm):
        assert client.post("/api/monsters/images", json={}, headers=auth(member)).status_code == 400

    def test_post_download_failure_is_502(self, client, member, swarfarm):
        resp = client.post("/api/monsters/images", json={"image_filename": "unit_icon_1.png"}, headers=auth(member))
        assert resp.status_code == 502


class TestSwarfarmRefreshRoute:
    STATS = {
        "monsters": 2,
        "new_monsters": 0,
        "updated_monsters": 1,
        "images_downloaded": 0,
        "images_already_exist": 2,
        "images_errors": 0,
    }

    def test_admin_refresh(self, client, admin):
        with patch.object(monster_service, "refresh_swarfarm_data", AsyncMock(return_value=self.STATS)) as refresh:
            resp = client.post("/api/admin/update-swarfarm-data", headers=auth(admin))
        assert resp.json() == {"success": True, "stats": self.STATS}
        refresh.assert_awaited_once()

    def test_upstream_failure_is_502(self, client, admin):
        failing = AsyncMock(side_effect=UpstreamError("SwarFarm returned no monsters"))
        with patch.object(monster_service, "refresh_swarfarm_data", failing):
            assert client.post("/api/admin/update-swarfarm-data", headers=auth(admin)).status_code == 502

    def test_members_are_refused(self, client, member):
        assert client.post("/api/admin/update-swarfarm-data", headers=auth(member)).status_code == 403
