"""
swguilds.api.rate_limit — Login throttle
==========================================

Sliding-window counter keyed by a free-form *bucket* (``login:<identifier>``).
State lives in the ``rate_limit_events`` table so it survives restarts and
is shared between workers.  A throttled login answers HTTP 429 with a
``Retry-After`` header.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from swguilds.constants import as_utc
from swguilds.database.models import RateLimitEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_WINDOW_SECONDS = 300


class SlidingWindowLimiter:
    """At most *max_requests* events per bucket in any *window_seconds*."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_ATTEMPTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _prune(self, session: Session, bucket: str, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        session.execute(
            delete(RateLimitEvent).where(
                RateLimitEvent.bucket == bucket,
                RateLimitEvent.timestamp < cutoff,
            )
        )

    def check(self, bucket: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; *info* holds remaining, reset and limit."""
        now = datetime.now(UTC)
        with Session(self.engine) as session:
            self._prune(session, bucket, now)
            timestamps = session.scalars(
                select(RateLimitEvent.timestamp)
                .where(RateLimitEvent.bucket == bucket)
                .order_by(RateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = as_utc(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }
        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, bucket: str) -> None:
        with Session(self.engine) as session:
            self._prune(session, bucket, datetime.now(UTC))
            session.add(RateLimitEvent(bucket=bucket))
            session.commit()

    def reset(self, bucket: str | None = None) -> None:
        """Clear state for *bucket*, or everything when *bucket* is None."""
        with Session(self.engine) as session:
            stmt = delete(RateLimitEvent)
            if bucket is not None:
                stmt = stmt.where(RateLimitEvent.bucket == bucket)
            session.execute(stmt)
            session.commit()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_login_limiter: SlidingWindowLimiter | None = None


def get_login_limiter() -> SlidingWindowLimiter:
    if _login_limiter is None:
        raise RuntimeError("Rate limiter not configured — call configure_rate_limiter() first")
    return _login_limiter


def configure_rate_limiter(
    *,
    engine: Engine,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> None:
    global _login_limiter
    _login_limiter = SlidingWindowLimiter(max_attempts, window_seconds, engine=engine)


def login_bucket(identifier: str) -> str:
    return f"login:{identifier.strip().lower()}"[:150]


async def enforce_login_limit(identifier: str) -> None:
    """Count one login attempt for *identifier*; raise 429 past the limit."""
    limiter = get_login_limiter()
    bucket = login_bucket(identifier)

    allowed, info = await asyncio.to_thread(limiter.check, bucket)
    if not allowed:
        logger.warning(
            "Login throttled for %r: %d attempts in %ds",
            identifier, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": "Too many login attempts, try again later.",
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )
    await asyncio.to_thread(limiter.record, bucket)


async def clear_login_attempts(identifier: str) -> None:
    await asyncio.to_thread(get_login_limiter().reset, login_bucket(identifier))
