"""
swguilds.services.upload_service — File upload handling
=========================================================

Uploaded files live under a configurable ``uploads/`` directory (Docker
volume) and are served from ``/api/uploads/...``:

- ``logo.{ext}`` — the instance logo (one at a time).
- ``profiles/{name}.{ext}`` — member avatars, named after the member.
- ``json/{name}.json`` — member monster boxes exported from the game.
- ``monsters/{name}.{ext}`` — mirrored SwarFarm monster portraits.

Names are normalised with :func:`swguilds.constants.normalize_file_name`
so a re-upload replaces the previous file instead of piling up copies.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path, PurePosixPath

from swguilds.constants import normalize_file_name

UPLOAD_DIR = Path(os.getenv("SWGUILDS_UPLOAD_DIR", "uploads"))
UPLOAD_URL_PREFIX = "/api/uploads/"
SUBDIRS = ("profiles", "json", "monsters")

LOGO_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg"}
AVATAR_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}
AVATAR_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp"}
LOGO_MIME_TYPES = AVATAR_MIME_TYPES | {"image/svg+xml"}
JSON_MIME_TYPES = {"application/json", "text/json", "application/octet-stream", "text/plain"}

_MIME_TO_EXT = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
}


def ensure_upload_dir() -> None:
    """Create the upload directory and its sub-folders if missing."""
    for sub in SUBDIRS:
        (UPLOAD_DIR / sub).mkdir(parents=True, exist_ok=True)


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------
def safe_join(base: Path, relative: str) -> Path | None:
    """Join *relative* under *base*, refusing absolute paths and ``..``."""
    parts = PurePosixPath(relative.replace("\\", "/")).parts
    if not parts or any(p in ("..", "") for p in parts) or parts[0] == "/":
        return None
    return base.joinpath(*parts)


def upload_url(relative: str) -> str:
    return f"{UPLOAD_URL_PREFIX}{relative}"


def resolve_upload_path(url_path: str) -> Path | None:
    """Map an upload URL (``/api/uploads/x`` or legacy ``/uploads/x``) to disk."""
    for prefix in (UPLOAD_URL_PREFIX, "/uploads/"):
        if url_path.startswith(prefix):
            return safe_join(UPLOAD_DIR, url_path[len(prefix):])
    return None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def validate_image(
    filename: str,
    content: bytes,
    content_type: str | None,
    *,
    max_bytes: int,
    allowed_extensions: set[str],
    allowed_mime_types: set[str],
) -> str:
    """Check size, extension and MIME type; return the extension to store.

    Raises
    ------
    ValueError
        If validation fails (wrong type, too large, etc.).
    """
    if not content:
        raise ValueError("Empty file")
    if len(content) > max_bytes:
        raise ValueError(
            f"File too large: {len(content)} bytes (max {max_bytes // 1024 // 1024}MB)"
        )

    if content_type and content_type not in allowed_mime_types:
        raise ValueError(f"MIME type not allowed: {content_type!r}")

    ext = Path(filename).suffix.lower()
    if not ext and content_type:
        ext = _MIME_TO_EXT.get(content_type, "")
    if ext not in allowed_extensions:
        raise ValueError(
            f"File type not allowed: {ext!r}. "
            f"Allowed: {', '.join(sorted(allowed_extensions))}"
        )
    return ".jpg" if ext == ".jpeg" else ext


def parse_json_upload(filename: str, content: bytes, *, max_bytes: int) -> object:
    """Validate a monster-box export and return the decoded JSON."""
    if not filename.lower().endswith(".json"):
        raise ValueError("The file must be a .json export")
    if len(content) > max_bytes:
        raise ValueError(
            f"File too large: {len(content)} bytes (max {max_bytes // 1024 // 1024}MB)"
        )
    try:
        return json.loads(content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("The file is not valid JSON") from exc


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def _remove_variants(directory: Path, stem: str, keep: Path | None = None) -> None:
    for old in directory.glob(f"{stem}.*"):
        if old.is_file() and old != keep:
            old.unlink()


async def save_named_upload(subdir: str, stem: str, ext: str, content: bytes) -> str:
    """Write *content* as ``{subdir}/{stem}{ext}``, replacing other extensions.

    Returns the URL path to the saved file.
    """
    directory = UPLOAD_DIR / subdir if subdir else UPLOAD_DIR
    directory.mkdir(parents=True, exist_ok=True)
    dest = directory / f"{stem}{ext}"

    # Offload blocking file I/O to a thread to avoid stalling the event loop
    await asyncio.to_thread(dest.write_bytes, content)
    await asyncio.to_thread(_remove_variants, directory, stem, dest)

    relative = f"{subdir}/{dest.name}" if subdir else dest.name
    return upload_url(relative)


async def save_logo(filename: str, content: bytes, content_type: str | None, *, max_bytes: int) -> str:
    ext = validate_image(
        filename, content, content_type,
        max_bytes=max_bytes,
        allowed_extensions=LOGO_EXTENSIONS,
        allowed_mime_types=LOGO_MIME_TYPES,
    )
    return await save_named_upload("", "logo", ext, content)


async def save_avatar(
    display_name: str,
    filename: str,
    content: bytes,
    content_type: str | None,
    *,
    max_bytes: int,
) -> str:
    stem = normalize_file_name(display_name)
    if not stem:
        raise ValueError("A name is required before uploading an avatar")
    ext = validate_image(
        filename, content, content_type,
        max_bytes=max_bytes,
        allowed_extensions=AVATAR_EXTENSIONS,
        allowed_mime_types=AVATAR_MIME_TYPES,
    )
    return await save_named_upload("profiles", stem, ext, content)


async def save_json_box(owner_label: str, content: bytes) -> str:
    stem = normalize_file_name(owner_label) or "box"
    return await save_named_upload("json", stem, ".json", content)


def delete_upload(url_path: str | None) -> bool:
    """Remove an uploaded file by its URL path.

    Returns True if the file existed and was deleted.
    """
    if not url_path:
        return False
    filepath = resolve_upload_path(url_path)
    if filepath is not None and filepath.is_file():
        filepath.unlink()
        return True
    return False
