"""
swguilds.api.routes.public — Health check & file serving
==========================================================

Uploaded files (avatars, logo, JSON boxes, monster portraits) are served
from ``SWGUILDS_UPLOAD_DIR`` and the SwarFarm cache from
``SWGUILDS_DATA_DIR``.  Paths containing ``..`` are refused.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from swguilds.services import monster_service, upload_service

router = APIRouter(tags=["public"])


def _serve(base: Path, relative: str) -> FileResponse:
    path = upload_service.safe_join(base, relative)
    if path is None:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "Invalid path")
    if not path.is_file():
        raise HTTPException(status.HTTP_404_NOT_FOUND, "File not found")
    return FileResponse(path, headers={"Cache-Control": "public, max-age=86400"})


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@router.get("/uploads/{file_path:path}")
def serve_upload(file_path: str):
    return _serve(upload_service.UPLOAD_DIR, file_path)


@router.get("/data/{file_path:path}")
def serve_data(file_path: str):
    return _serve(monster_service.DATA_DIR, file_path)
