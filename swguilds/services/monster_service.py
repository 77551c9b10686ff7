"""
swguilds.services.monster_service — SwarFarm cache & member boxes
===================================================================

Monster reference data comes from the SwarFarm public API and is cached
at two levels:

1. A JSON file (``{data_dir}/monsters.json``) holding
   ``{"last_updated": iso, "monsters": [...]}``.  A bare list is the older
   format; its age is taken from the file's mtime.  The file is trusted
   for ``monster_cache_max_age_days``.
2. A process-wide :class:`MonsterCache` with a short TTL so hot paths
   never touch the disk.

When SwarFarm is unreachable a stale file is still better than nothing,
so the file is used regardless of age before giving up with ``[]``.

Member boxes are the game's JSON export (``unit_list`` entries with
``unit_master_id`` and ``class``), matched to SwarFarm records through
``com2us_id`` with ``id`` as a fallback, plus monsters the member added
by hand.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from swguilds.config import SWGuildsConfig
from swguilds.constants import ELEMENT_ORDER, SIX_STAR_CLASS, normalize_file_name, slugify
from swguilds.database.engine import get_session
from swguilds.database.models import User, UserMonster
from swguilds.services import upload_service
from swguilds.services.activity_service import log_activity
from swguilds.services.errors import ForbiddenError, NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("SWGUILDS_DATA_DIR", "data"))
CACHE_FILE_NAME = "monsters.json"
SWARFARM_TIMEOUT_SECONDS = 30
IMAGE_BATCH_PAUSE = 10


# ---------------------------------------------------------------------------
# In-memory cache
# ---------------------------------------------------------------------------
class MonsterCache:
    """Thread-safe holder for the simplified monster list.

    Usage:
        monsters = monster_cache.get(ttl_seconds=3600)
        if monsters is None:
            ...
            monster_cache.set(fresh)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._monsters: list[dict] | None = None
        self._loaded_at = 0.0

    def get(self, ttl_seconds: float) -> list[dict] | None:
        with self._lock:
            if self._monsters is None:
                return None
            if time.monotonic() - self._loaded_at >= ttl_seconds:
                return None
            return self._monsters

    def set(self, monsters: list[dict]) -> None:
        with self._lock:
            self._monsters = monsters
            self._loaded_at = time.monotonic()

    def clear(self) -> None:
        with self._lock:
            self._monsters = None
            self._loaded_at = 0.0


monster_cache = MonsterCache()


# ---------------------------------------------------------------------------
# Records & cache file
# ---------------------------------------------------------------------------
def simplify(raw: dict[str, Any]) -> dict[str, Any]:
    """Keep only the SwarFarm fields the guild tool uses."""
    name = raw.get("name") or ""
    awaken_level = raw.get("awaken_level")
    return {
        "id": raw.get("id"),
        "name": name,
        "image_filename": raw.get("image_filename"),
        "element": (raw.get("element") or "").lower() or None,
        "base_stars": raw.get("base_stars"),
        "natural_stars": raw.get("natural_stars"),
        "com2us_id": raw.get("com2us_id"),
        "awaken_level": awaken_level,
        "is_second_awakened": bool(raw.get("is_second_awakened")) or awaken_level == 2,
        "bestiary_slug": raw.get("bestiary_slug") or f"{raw.get('id')}-{slugify(name)}",
    }


def cache_file() -> Path:
    return DATA_DIR / CACHE_FILE_NAME


def load_cache_file() -> tuple[list[dict], datetime | None]:
    """Read the cache file; returns ``([], None)`` when missing or unreadable."""
    path = cache_file()
    if not path.is_file():
        return [], None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Unreadable monster cache %s", path, exc_info=True)
        return [], None

    if isinstance(data, list):
        return data, datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
    if isinstance(data, dict) and isinstance(data.get("monsters"), list):
        try:
            updated = datetime.fromisoformat(data["last_updated"])
        except (KeyError, TypeError, ValueError):
            updated = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=UTC)
        return data["monsters"], updated
    return [], None


def save_cache_file(monsters: list[dict], now: datetime | None = None) -> None:
    path = cache_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "last_updated": (now or datetime.now(UTC)).isoformat(),
        "monsters": monsters,
    }
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)
    logger.info("Saved %d monsters to %s", len(monsters), path)


def is_expired(updated: datetime | None, max_age_days: int, now: datetime | None = None) -> bool:
    if updated is None:
        return True
    return (now or datetime.now(UTC)) - updated > timedelta(days=max_age_days)


# ---------------------------------------------------------------------------
# SwarFarm fetch
# ---------------------------------------------------------------------------
def _swarfarm_client() -> httpx.AsyncClient:
    transport = httpx.AsyncHTTPTransport(retries=1)
    return httpx.AsyncClient(
        timeout=SWARFARM_TIMEOUT_SECONDS,
        transport=transport,
        headers={"Accept": "application/json"},
        follow_redirects=True,
    )


async def fetch_all_monsters(
    api_url: str, *, client: httpx.AsyncClient | None = None
) -> list[dict]:
    """Walk every page of the SwarFarm monster list.

    Raises
    ------
    UpstreamError
        On a transport error, a non-200 page or a malformed payload.
    """
    if client is None:
        async with _swarfarm_client() as own_client:
            return await fetch_all_monsters(api_url, client=own_client)

    monsters: list[dict] = []
    next_url: str | None = api_url
    while next_url:
        try:
            resp = await client.get(next_url)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"SwarFarm request failed: {exc}") from exc
        if resp.status_code != 200:
            raise UpstreamError(f"SwarFarm returned {resp.status_code} for {next_url}")
        try:
            page = resp.json()
            results = page["results"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError("Malformed SwarFarm page") from exc
        monsters.extend(simplify(m) for m in results)
        next_url = page.get("next")

    logger.info("Fetched %d monsters from SwarFarm", len(monsters))
    return monsters


async def get_monsters(
    cfg: SWGuildsConfig,
    *,
    refresh: bool = False,
    client: httpx.AsyncClient | None = None,
) -> list[dict]:
    """Return the monster list, from memory, file or SwarFarm in that order."""
    if not refresh:
        cached = monster_cache.get(cfg.monster_memory_ttl_seconds)
        if cached is not None:
            return cached
        monsters, updated = await asyncio.to_thread(load_cache_file)
        if monsters and not is_expired(updated, cfg.monster_cache_max_age_days):
            monster_cache.set(monsters)
            return monsters

    try:
        monsters = await fetch_all_monsters(cfg.swarfarm_api_url, client=client)
    except UpstreamError:
        logger.warning("SwarFarm unavailable, falling back to the local cache", exc_info=True)
        monsters = []

    if monsters:
        await asyncio.to_thread(save_cache_file, monsters)
    else:
        monsters, _ = await asyncio.to_thread(load_cache_file)
        if not monsters:
            logger.warning("No monster data available (no cache file, SwarFarm down)")
            return []

    monster_cache.set(monsters)
    return monsters


def filter_by_name(monsters: list[dict], query: str | None) -> list[dict]:
    query = (query or "").strip().lower()
    if not query:
        return monsters
    return [m for m in monsters if query in (m.get("name") or "").lower()]


# ---------------------------------------------------------------------------
# Image mirror
# ---------------------------------------------------------------------------
def image_file_name(monster: dict) -> str:
    ext = (monster.get("image_filename") or "").rsplit(".", 1)[-1] or "png"
    return f"{normalize_file_name(monster['name']).lower()}.{ext}"


def _image_dir() -> Path:
    return upload_service.UPLOAD_DIR / "monsters"


def local_image_urls(monsters: list[dict], names: list[str]) -> dict[str, str]:
    """Map each requested monster name to its mirrored image, when present."""
    by_name = {m["name"]: m for m in monsters}
    found: dict[str, str] = {}
    for name in names:
        monster = by_name.get(name)
        if monster is None or not monster.get("image_filename"):
            continue
        file_name = image_file_name(monster)
        if (_image_dir() / file_name).is_file():
            found[name] = upload_service.upload_url(f"monsters/{file_name}")
    return found


async def _download_image(cfg: SWGuildsConfig, monster: dict, client: httpx.AsyncClient) -> str:
    """Mirror one portrait.  Returns ``"exists"``, ``"downloaded"`` or ``"error"``."""
    dest = _image_dir() / image_file_name(monster)
    if dest.is_file():
        return "exists"
    try:
        resp = await client.get(f"{cfg.swarfarm_image_url}{monster['image_filename']}")
    except httpx.HTTPError:
        logger.warning("Image download failed for %s", monster["name"], exc_info=True)
        return "error"
    if resp.status_code != 200:
        logger.warning("Image download for %s returned %d", monster["name"], resp.status_code)
        return "error"
    dest.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(dest.write_bytes, resp.content)
    return "downloaded"


async def mirror_image(
    cfg: SWGuildsConfig,
    image_filename: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Download one portrait (looked up by SwarFarm file name) if not mirrored yet."""
    if not image_filename:
        raise ValueError("image_filename is required")
    monsters = await get_monsters(cfg)
    monster = next((m for m in monsters if m.get("image_filename") == image_filename), None)
    if monster is None:
        raise NotFoundError("No monster uses this image_filename")

    if client is None:
        async with _swarfarm_client() as own_client:
            status = await _download_image(cfg, monster, own_client)
    else:
        status = await _download_image(cfg, monster, client)
    if status == "error":
        raise UpstreamError(f"Could not download {image_filename} from SwarFarm")
    return {
        "url": upload_service.upload_url(f"monsters/{image_file_name(monster)}"),
        "local": True,
        "downloaded": status == "downloaded",
        "monster_name": monster["name"],
    }


def _has_changed(old: dict, new: dict) -> bool:
    keys = ("name", "image_filename", "natural_stars", "base_stars", "element", "awaken_level")
    return any(old.get(k) != new.get(k) for k in keys)


async def refresh_swarfarm_data(
    cfg: SWGuildsConfig, *, client: httpx.AsyncClient | None = None
) -> dict[str, int]:
    """Re-download the whole monster list and mirror every missing portrait."""
    if client is None:
        async with _swarfarm_client() as own_client:
            return await refresh_swarfarm_data(cfg, client=own_client)

    existing, _ = await asyncio.to_thread(load_cache_file)
    existing_by_id = {m.get("id"): m for m in existing}

    monsters = await fetch_all_monsters(cfg.swarfarm_api_url, client=client)
    if not monsters:
        raise UpstreamError("SwarFarm returned no monsters")

    new_count = sum(1 for m in monsters if m["id"] not in existing_by_id)
    updated_count = sum(
        1 for m in monsters
        if m["id"] in existing_by_id and _has_changed(existing_by_id[m["id"]], m)
    )
    await asyncio.to_thread(save_cache_file, monsters)
    monster_cache.set(monsters)

    counts = {"downloaded": 0, "exists": 0, "error": 0}
    for i, monster in enumerate(monsters):
        if not monster.get("image_filename"):
            counts["error"] += 1
            continue
        counts[await _download_image(cfg, monster, client)] += 1
        if i and i % IMAGE_BATCH_PAUSE == 0:
            await asyncio.sleep(0.1)

    stats = {
        "monsters": len(monsters),
        "new_monsters": new_count,
        "updated_monsters": updated_count,
        "images_downloaded": counts["downloaded"],
        "images_already_exist": counts["exists"],
        "images_errors": counts["error"],
    }
    logger.info("SwarFarm refresh done: %s", stats)
    return stats


# ---------------------------------------------------------------------------
# Member boxes
# ---------------------------------------------------------------------------
class MonsterIndex:
    """Lookup tables for matching box units and names to SwarFarm records."""

    def __init__(self, monsters: list[dict]) -> None:
        self.monsters = monsters
        self.by_com2us = {m["com2us_id"]: m for m in monsters if m.get("com2us_id") is not None}
        self.by_id = {m["id"]: m for m in monsters if m.get("id") is not None}
        self.by_lower_name: dict[str, dict] = {}
        for m in monsters:
            self.by_lower_name.setdefault((m.get("name") or "").lower(), m)

    def for_unit(self, unit_master_id) -> dict | None:
        return self.by_com2us.get(unit_master_id) or self.by_id.get(unit_master_id)


def box_path(user: User) -> Path | None:
    """Where the member's JSON box lives on disk."""
    if user.json_file_path:
        path = upload_service.resolve_upload_path(user.json_file_path)
        if path is not None:
            return path
    stem = normalize_file_name(user.display_name)
    return upload_service.UPLOAD_DIR / "json" / f"{stem}.json" if stem else None


def extract_units(data: Any, *, six_star_only: bool = False) -> list[dict]:
    units = data.get("unit_list") if isinstance(data, dict) else None
    if not isinstance(units, list):
        return []
    result = []
    for unit in units:
        if not isinstance(unit, dict) or unit.get("unit_master_id") is None:
            continue
        if six_star_only and unit.get("class") != SIX_STAR_CLASS:
            continue
        result.append(unit)
    return result


def read_box_units(user: User, *, six_star_only: bool = False) -> list[dict] | None:
    """Units from the member's JSON box, or ``None`` when there is no file."""
    path = box_path(user)
    if path is None or not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Unreadable JSON box for %s at %s", user.identifier, path, exc_info=True)
        return []
    return extract_units(data, six_star_only=six_star_only)


def _require_self_or_admin(viewer: User, user_id: str) -> None:
    if viewer.id != user_id and not viewer.is_admin:
        raise ForbiddenError("You can only manage your own monsters")


def _box_sort_key(monster: dict) -> tuple[int, int]:
    return (
        ELEMENT_ORDER.get(monster.get("element") or "", 99),
        monster.get("com2us_id") or monster.get("id") or 0,
    )


def user_box(engine: Engine, viewer: User, user_id: str, monsters: list[dict]) -> dict[str, Any]:
    """Six-star units from the JSON box plus manual additions, sorted by element."""
    _require_self_or_admin(viewer, user_id)
    index = MonsterIndex(monsters)

    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        manual_names = set(session.scalars(
            select(UserMonster.monster_name).where(UserMonster.user_id == user_id)
        ))
        units = read_box_units(user, six_star_only=True)

    box: list[dict] = []
    for position, unit in enumerate(units or []):
        monster = index.for_unit(unit["unit_master_id"])
        if monster is None:
            continue
        box.append({
            **monster,
            "unit_master_id": unit["unit_master_id"],
            "duplicate_index": position,
            "is_manual": False,
        })
    for monster in monsters:
        if monster.get("name") in manual_names:
            box.append({**monster, "is_manual": True})

    box.sort(key=_box_sort_key)
    return {"monsters": box, "has_json_file": units is not None}


def owned_monster_names(session: Session, user: User, index: MonsterIndex) -> set[str]:
    """Lower-cased names of every monster the member has, manual or from the box."""
    names = {
        n.lower()
        for n in session.scalars(select(UserMonster.monster_name).where(UserMonster.user_id == user.id))
    }
    for unit in read_box_units(user) or []:
        monster = index.for_unit(unit["unit_master_id"])
        if monster is not None:
            names.add(monster["name"].lower())
    return names


def add_manual_monster(engine: Engine, viewer: User, user_id: str, monster_name: str | None) -> dict:
    _require_self_or_admin(viewer, user_id)
    name = (monster_name or "").strip()
    if not name:
        raise ValueError("Monster name is required")

    with get_session(engine) as session:
        if session.get(User, user_id) is None:
            raise NotFoundError("User not found")
        exists = session.scalar(
            select(UserMonster.id).where(
                UserMonster.user_id == user_id, UserMonster.monster_name == name
            )
        )
        if exists is not None:
            raise ValueError("This monster is already in the list")
        row = UserMonster(user_id=user_id, monster_name=name)
        session.add(row)
        session.flush()
        return {
            "id": row.id,
            "user_id": row.user_id,
            "monster_name": row.monster_name,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }


def remove_manual_monster(engine: Engine, viewer: User, user_id: str, monster_name: str | None) -> None:
    _require_self_or_admin(viewer, user_id)
    name = (monster_name or "").strip()
    if not name:
        raise ValueError("Monster name is required")
    with get_session(engine) as session:
        result = session.execute(
            delete(UserMonster).where(
                UserMonster.user_id == user_id, UserMonster.monster_name == name
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Monster not in the list")


def prune_manual_monsters(session: Session, user_id: str, data: Any, index: MonsterIndex) -> int:
    """Drop manual entries now covered by six-star units of a fresh JSON box."""
    in_box = set()
    for unit in extract_units(data, six_star_only=True):
        monster = index.by_com2us.get(unit["unit_master_id"])
        if monster is not None:
            in_box.add(monster["name"].lower())
    if not in_box:
        return 0
    stale = [
        row for row in session.scalars(select(UserMonster).where(UserMonster.user_id == user_id))
        if row.monster_name.lower() in in_box
    ]
    for row in stale:
        session.delete(row)
    return len(stale)


def search_users(
    engine: Engine,
    monsters: list[dict],
    *,
    monster_name: str | None = None,
    element: str | None = None,
    stars: int | None = None,
    exact_match: bool = False,
) -> list[dict]:
    """Approved members owning monsters that match every given criterion."""
    name = (monster_name or "").strip().lower()
    if not name and not element and stars is None:
        raise ValueError("At least one of monster_name, element or stars is required")

    matching = monsters
    if name:
        if exact_match:
            matching = [m for m in matching if (m.get("name") or "").lower() == name]
        else:
            matching = [m for m in matching if name in (m.get("name") or "").lower()]
    if element:
        matching = [m for m in matching if (m.get("element") or "").lower() == element.lower()]
    if stars is not None:
        matching = [
            m for m in matching
            if (m.get("natural_stars") if m.get("natural_stars") is not None else m.get("base_stars")) == stars
        ]
    if not matching:
        return []

    index = MonsterIndex(monsters)
    matching_ids = {m["id"] for m in matching}
    matching_by_lower = {(m.get("name") or "").lower(): m for m in matching}

    results = []
    with get_session(engine) as session:
        users = session.scalars(select(User).where(User.is_approved.is_(True))).all()
        for user in users:
            owned: list[dict] = []
            for manual in session.scalars(
                select(UserMonster.monster_name).where(UserMonster.user_id == user.id)
            ):
                hit = matching_by_lower.get(manual.lower())
                if hit is not None:
                    owned.append(hit)
            for unit in read_box_units(user) or []:
                monster = index.for_unit(unit["unit_master_id"])
                if monster is not None and monster["id"] in matching_ids:
                    owned.append(monster)
            if owned:
                owned.sort(key=lambda m: m["id"])
                results.append({
                    "id": user.id,
                    "name": user.name,
                    "identifier": user.identifier,
                    "count": len(owned),
                    "monsters": owned,
                })

    results.sort(key=lambda r: (r["name"] or r["identifier"]).lower())
    return results


# ---------------------------------------------------------------------------
# JSON box upload
# ---------------------------------------------------------------------------
def record_json_upload(
    engine: Engine,
    user_id: str,
    url: str,
    data: Any,
    monsters: list[dict],
) -> dict[str, Any]:
    """Bookkeeping after a box upload: prune manual monsters, stamp the user, log it."""
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        removed = prune_manual_monsters(session, user_id, data, MonsterIndex(monsters))
        user.json_file_path = url
        user.last_json_upload = datetime.now(UTC)
        file_name = url.rsplit("/", 1)[-1]
        log_activity(
            session,
            user_id=user.id,
            action="upload_json",
            entity_type="user",
            entity_id=user.id,
            details={
                "identifier": user.identifier,
                "name": user.name,
                "file_name": file_name,
                "manual_monsters_removed": removed,
            },
        )
    logger.info("JSON box uploaded for user %s (%d manual monsters pruned)", user_id, removed)
    return {"file_name": file_name, "url": url, "manual_monsters_removed": removed}
