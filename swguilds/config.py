"""
swguilds.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for **soft** settings (session lifetime, cache ages,
SwarFarm endpoints, reminder poller timing, login throttle).  Secrets and
deployment paths come from the environment (``.env``), and the
admin-editable instance settings (name, logo, webhooks) live in the
``settings`` database table.

Usage::

    from swguilds.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.token_ttl_hours)        # 12
    print(cfg.monster_cache_max_age_days)  # 180
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SWGuildsConfig:
    """Immutable configuration loaded from ``config.yaml``.

    Every field has a default so a partial YAML file is valid; only the
    file itself is required.
    """

    # Sessions
    token_ttl_hours: int = 12

    # Login throttle
    login_max_attempts: int = 10
    login_window_seconds: int = 300

    # SwarFarm
    swarfarm_api_url: str = "https://swarfarm.com/api/v2/monsters/"
    swarfarm_image_url: str = "https://swarfarm.com/static/herders/images/monsters/"
    monster_cache_max_age_days: int = 180
    monster_memory_ttl_seconds: int = 3600

    # Reminder poller
    cron_base_url: str = "http://localhost:8000"
    cron_interval_seconds: int = 60
    cron_health_attempts: int = 30
    cron_health_delay_seconds: float = 2.0

    # Uploads
    max_image_bytes: int = 5 * 1024 * 1024
    max_json_bytes: int = 10 * 1024 * 1024


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> SWGuildsConfig:
    """Read *path* and return a :class:`SWGuildsConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a value has the wrong type.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: run from the repository root or pass the path explicitly."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    sessions = raw.get("sessions", {})
    swarfarm = raw.get("swarfarm", {})
    cron = raw.get("cron", {})
    uploads = raw.get("uploads", {})
    defaults = SWGuildsConfig()

    return SWGuildsConfig(
        token_ttl_hours=int(sessions.get("token_ttl_hours", defaults.token_ttl_hours)),
        login_max_attempts=int(
            sessions.get("login_max_attempts", defaults.login_max_attempts)
        ),
        login_window_seconds=int(
            sessions.get("login_window_seconds", defaults.login_window_seconds)
        ),
        swarfarm_api_url=str(swarfarm.get("api_url", defaults.swarfarm_api_url)),
        swarfarm_image_url=str(swarfarm.get("image_url", defaults.swarfarm_image_url)),
        monster_cache_max_age_days=int(
            swarfarm.get("cache_max_age_days", defaults.monster_cache_max_age_days)
        ),
        monster_memory_ttl_seconds=int(
            swarfarm.get("memory_ttl_seconds", defaults.monster_memory_ttl_seconds)
        ),
        cron_base_url=str(cron.get("base_url", defaults.cron_base_url)).rstrip("/"),
        cron_interval_seconds=int(cron.get("interval_seconds", defaults.cron_interval_seconds)),
        cron_health_attempts=int(cron.get("health_attempts", defaults.cron_health_attempts)),
        cron_health_delay_seconds=float(
            cron.get("health_delay_seconds", defaults.cron_health_delay_seconds)
        ),
        max_image_bytes=int(uploads.get("max_image_mb", 5)) * 1024 * 1024,
        max_json_bytes=int(uploads.get("max_json_mb", 10)) * 1024 * 1024,
    )
