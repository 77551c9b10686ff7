"""
tests/test_map.py — Siege Map Towers
======================================
"""

from __future__ import annotations

import pytest

from conftest import auth
from swguilds.services import map_service
from swguilds.services.errors import ForbiddenError, NotFoundError


def _tower(**overrides) -> dict:
    return {"map_name": "map.png", "tower_number": "1", "x": 10.0, "y": 20.0, **overrides}


class TestTowerHelpers:
    def test_natural_sort(self):
        numbers = ["10", "2", "1", "B3", "b10", "9"]
        assert sorted(numbers, key=map_service.tower_sort_key) == ["1", "2", "9", "10", "B3", "b10"]

    def test_slots_are_normalised(self):
        assert map_service.validate_defense_slots([{"defense_id": "d1"}]) == [
            {"defense_id": "d1", "user_id": None}
        ]
        assert map_service.validate_defense_slots(None) == []

    @pytest.mark.parametrize("slots", [
        [{"defense_id": f"d{i}"} for i in range(6)],
        ["d1"],
        [{"user_id": "u1"}],
        [{"defense_id": "d1", "user_id": 3}],
        "d1",
    ])
    def test_bad_slots(self, slots):
        with pytest.raises(ValueError):
            map_service.validate_defense_slots(slots)


class TestTowers:
    @pytest.fixture
    def mapper(self, make_user):
        return make_user("mapper", can_edit_map=True)

    def test_defaults_on_create(self, db_engine, mapper):
        tower = map_service.create_tower(db_engine, mapper, _tower(tower_number=3))
        assert tower["tower_number"] == "3"
        assert (tower["stars"], tower["color"], tower["width"], tower["height"]) == (5, "blue", 150, 100)
        assert tower["created_by"] == mapper.id

    def test_requires_map_right(self, db_engine, member):
        with pytest.raises(ForbiddenError):
            map_service.create_tower(db_engine, member, _tower())

    def test_required_fields(self, db_engine, mapper):
        with pytest.raises(ValueError):
            map_service.create_tower(db_engine, mapper, _tower(x=None))

    def test_list_is_per_map_and_sorted(self, db_engine, mapper):
        for n in ("10", "2", "1"):
            map_service.create_tower(db_engine, mapper, _tower(tower_number=n))
        map_service.create_tower(db_engine, mapper, _tower(map_name="other.png"))
        listed = map_service.list_towers(db_engine)
        assert [t["tower_number"] for t in listed] == ["1", "2", "10"]
        assert len(map_service.list_towers(db_engine, "other.png")) == 1

    def test_partial_update_keeps_other_fields(self, db_engine, mapper):
        tower = map_service.create_tower(db_engine, mapper, _tower(name="Nord", stars=4))
        updated = map_service.update_tower(
            db_engine, mapper, tower["id"], {"defense_ids": [{"defense_id": "d1", "user_id": "u1"}]}
        )
        assert updated["name"] == "Nord"
        assert updated["stars"] == 4
        assert updated["defense_ids"] == [{"defense_id": "d1", "user_id": "u1"}]

        cleared = map_service.update_tower(db_engine, mapper, tower["id"], {"name": None})
        assert cleared["name"] is None

    def test_delete(self, db_engine, mapper):
        tower = map_service.create_tower(db_engine, mapper, _tower())
        map_service.delete_tower(db_engine, mapper, tower["id"])
        with pytest.raises(NotFoundError):
            map_service.delete_tower(db_engine, mapper, tower["id"])


class TestMapRoutes:
    def test_member_reads_but_cannot_write(self, client, member):
        assert client.get("/api/map/towers", headers=auth(member)).status_code == 200
        assert client.post("/api/map/towers", json=_tower(), headers=auth(member)).status_code == 403

    def test_admin_round_trip(self, client, admin):
        created = client.post("/api/map/towers", json=_tower(), headers=auth(admin))
        assert created.status_code == 201
        tower_id = created.json()["id"]
        resp = client.put(f"/api/map/towers/{tower_id}", json={"color": "red"}, headers=auth(admin))
        assert resp.json()["color"] == "red"
        assert resp.json()["x"] == 10.0
        assert client.delete(f"/api/map/towers/{tower_id}", headers=auth(admin)).status_code == 200

    def test_six_defenses_is_400(self, client, admin):
        slots = [{"defense_id": f"d{i}"} for i in range(6)]
        resp = client.post("/api/map/towers", json=_tower(defense_ids=slots), headers=auth(admin))
        assert resp.status_code == 400
