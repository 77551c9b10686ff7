"""
tests/test_maintenance.py — Database Housekeeping
===================================================
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from conftest import auth
from swguilds.database.models import ActivityLog, Base, Counter, Defense, User, UserMonster
from swguilds.services import maintenance_service
from swguilds.services.errors import NotFoundError


def _defense(session: Session, user_id: str) -> Defense:
    defense = Defense(user_id=user_id, leader_monster="Lushen", monster2="Verde", monster3="Bernard")
    session.add(defense)
    session.flush()
    return defense


def _file_engine(path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return engine


# ===========================================================================
# Orphans
# ===========================================================================
class TestCleanOrphans:
    def test_removes_rows_without_parents(self, db_engine, db_session, admin, member):
        kept = _defense(db_session, member.id)
        orphan = _defense(db_session, "ghost")
        db_session.add_all([
            UserMonster(user_id="ghost", monster_name="Mav"),
            UserMonster(user_id=member.id, monster_name="Mav"),
            Counter(defense_id=orphan.id, counter_monsters=["A", "B", "C"]),
            Counter(defense_id="missing", counter_monsters=["A", "B", "C"]),
            Counter(defense_id=kept.id, counter_monsters=["A", "B", "C"]),
        ])
        db_session.commit()

        assert maintenance_service.clean_orphans(db_engine, admin.id) == 4

        with Session(db_engine) as s:
            assert s.scalar(select(func.count()).select_from(Defense)) == 1
            assert s.scalar(select(func.count()).select_from(Counter)) == 1
            assert s.scalar(select(func.count()).select_from(UserMonster)) == 1
            entry = s.scalars(select(ActivityLog).where(ActivityLog.action == "clean")).one()
            assert entry.details == {"deleted_count": 4}

    def test_clean_database_is_noop(self, db_engine):
        assert maintenance_service.clean_orphans(db_engine) == 0


# ===========================================================================
# Counter authorship backfill
# ===========================================================================
class TestBackfillCounterCreators:
    def test_uses_activity_log_then_owner(self, db_engine, db_session, admin, member):
        defense = _defense(db_session, member.id)
        logged = Counter(defense_id=defense.id, counter_monsters=["A", "B", "C"])
        unlogged = Counter(defense_id=defense.id, counter_monsters=["D", "E", "F"])
        named = Counter(defense_id=defense.id, counter_monsters=["G", "H", "I"],
                        created_by="Zed", updated_by="Zed")
        db_session.add_all([logged, unlogged, named])
        db_session.flush()
        logged_id, unlogged_id, named_id = logged.id, unlogged.id, named.id
        db_session.add_all([
            ActivityLog(user_id=member.id, action="create", entity_type="counter",
                        entity_id=logged_id, created_at=datetime(2026, 1, 1, tzinfo=UTC)),
            ActivityLog(user_id=admin.id, action="update", entity_type="counter",
                        entity_id=logged_id, created_at=datetime(2026, 2, 1, tzinfo=UTC)),
        ])
        db_session.commit()

        assert maintenance_service.backfill_counter_creators(db_engine) == 2

        with Session(db_engine) as s:
            assert (s.get(Counter, logged_id).created_by, s.get(Counter, logged_id).updated_by) == ("Alice", "Admin")
            assert (s.get(Counter, unlogged_id).created_by, s.get(Counter, unlogged_id).updated_by) == ("Alice", "Alice")
            assert s.get(Counter, named_id).created_by == "Zed"


# ===========================================================================
# Export / import
# ===========================================================================
class TestExportImport:
    def test_in_memory_database_is_refused(self, db_engine):
        with pytest.raises(ValueError):
            maintenance_service.export_database(db_engine)
        with pytest.raises(ValueError):
            maintenance_service.import_database(db_engine, "backup.db", maintenance_service.SQLITE_MAGIC)

    def test_export_returns_file(self, tmp_path):
        engine = _file_engine(tmp_path / "guild.db")
        assert maintenance_service.export_database(engine) == tmp_path / "guild.db"

    def test_export_missing_file(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'absent.db'}")
        with pytest.raises(NotFoundError):
            maintenance_service.export_database(engine)

    def test_import_validates_upload(self, tmp_path):
        engine = _file_engine(tmp_path / "guild.db")
        with pytest.raises(ValueError, match=".db"):
            maintenance_service.import_database(engine, "backup.sql", maintenance_service.SQLITE_MAGIC)
        with pytest.raises(ValueError, match="not a valid"):
            maintenance_service.import_database(engine, "backup.db", b"hello")

    def test_import_replaces_database(self, tmp_path):
        source = _file_engine(tmp_path / "source.db")
        with Session(source) as s:
            s.add(User(identifier="restored", password_hash="x", is_approved=True))
            s.commit()
        source.dispose()

        target = _file_engine(tmp_path / "guild.db")
        content = (tmp_path / "source.db").read_bytes()
        maintenance_service.import_database(target, "Backup.DB", content)

        with Session(target) as s:
            assert s.scalars(select(User.identifier)).all() == ["restored"]


# ===========================================================================
# Routes
# ===========================================================================
class TestMaintenanceRoutes:
    def test_admin_only(self, client, member):
        assert client.post("/api/admin/db/clean", headers=auth(member)).status_code == 403

    def test_clean(self, client, admin):
        resp = client.post("/api/admin/db/clean", headers=auth(admin))
        assert resp.status_code == 200
        assert resp.json()["deleted_count"] == 0

    def test_export_of_memory_db_is_400(self, client, admin):
        assert client.get("/api/admin/db/export", headers=auth(admin)).status_code == 400

    def test_import_without_file_is_400(self, client, admin):
        assert client.post("/api/admin/db/import", headers=auth(admin)).status_code == 400

    def test_backfill_route(self, client, admin):
        resp = client.post("/api/admin/update-counter-creators", headers=auth(admin))
        assert resp.json() == {"message": "0 counter(s) updated", "updated": 0}
