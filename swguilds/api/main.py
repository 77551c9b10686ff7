"""
swguilds.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn swguilds.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from swguilds.api.auth import router as auth_router  # noqa: E402
from swguilds.api.deps import get_config, get_engine  # noqa: E402
from swguilds.api.rate_limit import configure_rate_limiter  # noqa: E402
from swguilds.api.routes.admin import router as admin_router  # noqa: E402
from swguilds.api.routes.calendar import router as calendar_router  # noqa: E402
from swguilds.api.routes.defenses import router as defenses_router  # noqa: E402
from swguilds.api.routes.gestion import router as gestion_router  # noqa: E402
from swguilds.api.routes.map import router as map_router  # noqa: E402
from swguilds.api.routes.monsters import router as monsters_router  # noqa: E402
from swguilds.api.routes.news import router as news_router  # noqa: E402
from swguilds.api.routes.profile import router as profile_router  # noqa: E402
from swguilds.api.routes.public import router as public_router  # noqa: E402
from swguilds.api.routes.reminders import router as reminders_router  # noqa: E402
from swguilds.api.routes.settings import router as settings_router  # noqa: E402
from swguilds.database.engine import init_db  # noqa: E402
from swguilds.services.log_buffer import install_handler  # noqa: E402
from swguilds.services.upload_service import ensure_upload_dir  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: logging, upload dir, schema, throttle."""
    # Uvicorn reconfigures logging when it starts, so the ring buffer is
    # attached here rather than at import time.
    install_handler()
    ensure_upload_dir()

    engine = get_engine()
    cfg = get_config()
    init_db(engine)
    configure_rate_limiter(
        engine=engine,
        max_attempts=cfg.login_max_attempts,
        window_seconds=cfg.login_window_seconds,
    )
    logger.info("SWGuilds API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("SWGuilds API shutting down")


app = FastAPI(
    title="SWGuilds API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Mount routers
app.include_router(public_router, prefix="/api")
app.include_router(auth_router, prefix="/api")
app.include_router(settings_router, prefix="/api")
app.include_router(profile_router, prefix="/api")
app.include_router(defenses_router, prefix="/api")
app.include_router(map_router, prefix="/api")
app.include_router(gestion_router, prefix="/api")
app.include_router(news_router, prefix="/api")
app.include_router(calendar_router, prefix="/api")
app.include_router(monsters_router, prefix="/api")
app.include_router(reminders_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
