"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of swguilds.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from swguilds.config import SWGuildsConfig  # noqa: E402
from swguilds.database.models import Base, User, UserRole  # noqa: E402
from swguilds.database.seed import seed_default_settings  # noqa: E402

# bcrypt is slow on purpose; hash the shared test password once.
TEST_PASSWORD = "hunter22"
_password_hash: str | None = None


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


def _hashed_password() -> str:
    global _password_hash
    if _password_hash is None:
        from swguilds.services.user_service import hash_password

        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Per-test env: no bootstrap admin, no cron secret, temp upload/data dirs."""
    from swguilds.services import monster_service, upload_service

    monkeypatch.delenv("ADMIN_ID", raising=False)
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.setenv("TIMEZONE", "Europe/Paris")
    monkeypatch.setattr(upload_service, "UPLOAD_DIR", tmp_path / "uploads")
    monkeypatch.setattr(monster_service, "DATA_DIR", tmp_path / "data")
    upload_service.ensure_upload_dir()
    monster_service.monster_cache.clear()
    yield
    monster_service.monster_cache.clear()


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every SWGuilds table and seeded settings.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db`` and the limiter).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def config() -> SWGuildsConfig:
    return SWGuildsConfig(login_max_attempts=3, login_window_seconds=60)


@pytest.fixture
def make_user(db_engine: Engine):
    """Factory creating an approved member (or admin) with ``TEST_PASSWORD``."""
    def _make(identifier: str, *, name: str | None = None, role: str = UserRole.USER.value,
              is_approved: bool = True, **flags) -> User:
        with Session(db_engine, expire_on_commit=False) as session:
            user = User(
                identifier=identifier,
                password_hash=_hashed_password(),
                name=name if name is not None else identifier.capitalize(),
                role=role,
                is_approved=is_approved,
                **flags,
            )
            session.add(user)
            session.commit()
            return user
    return _make


@pytest.fixture
def admin(make_user) -> User:
    return make_user("admin", name="Admin", role=UserRole.ADMIN.value)


@pytest.fixture
def member(make_user) -> User:
    return make_user("alice", name="Alice")


@pytest.fixture
def client(db_engine: Engine, config: SWGuildsConfig):
    """FastAPI TestClient bound to the in-memory engine.

    Lifespan is not entered, so the limiter is configured here.
    """
    from fastapi.testclient import TestClient

    from swguilds.api.deps import get_config, get_engine
    from swguilds.api.main import app
    from swguilds.api.rate_limit import configure_rate_limiter

    configure_rate_limiter(
        engine=db_engine,
        max_attempts=config.login_max_attempts,
        window_seconds=config.login_window_seconds,
    )
    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: config
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def auth(user: User) -> dict[str, str]:
    """Bearer header carrying a fresh session token for *user*."""
    from swguilds.api.deps import issue_token

    return {"Authorization": f"Bearer {issue_token(user, 1)}"}
