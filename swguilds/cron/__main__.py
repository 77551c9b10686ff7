"""
swguilds.cron.__main__ — Reminder poller, ``python -m swguilds.cron``
=======================================================================

Runs next to the API and drives the reminder scheduler:

1. Load .env and config.yaml.
2. Wait for ``GET /api/health`` to answer (``cron.health_attempts`` tries,
   ``cron.health_delay_seconds`` apart); give up with exit code 1.
3. On every ``cron.interval_seconds`` boundary of the wall clock, call
   ``/api/cron/reminders`` with the ``CRON_SECRET`` bearer token when one
   is set.  A check that overruns a boundary skips it with a warning.

A failed tick is logged and the loop carries on.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import time
from collections.abc import Awaitable, Callable

import httpx
from dotenv import load_dotenv

from swguilds.config import SWGuildsConfig, load_config

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("swguilds.cron")

REQUEST_TIMEOUT_SECONDS = 30


async def wait_for_api(client: httpx.AsyncClient, cfg: SWGuildsConfig) -> bool:
    url = f"{cfg.cron_base_url}/api/health"
    for attempt in range(1, cfg.cron_health_attempts + 1):
        try:
            resp = await client.get(url)
            if resp.status_code == 200:
                logger.info("API is up after %d attempt(s)", attempt)
                return True
        except httpx.HTTPError:
            pass
        logger.info("Waiting for the API (%d/%d)…", attempt, cfg.cron_health_attempts)
        await asyncio.sleep(cfg.cron_health_delay_seconds)
    return False


async def tick(client: httpx.AsyncClient, cfg: SWGuildsConfig, headers: dict[str, str]) -> int | None:
    """Trigger one reminder check; returns the sent count, or None on failure."""
    try:
        resp = await client.post(f"{cfg.cron_base_url}/api/cron/reminders", headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Reminder check failed: %s", exc)
        return None
    if resp.status_code != 200:
        logger.error("Reminder check returned HTTP %d: %s", resp.status_code, resp.text[:200])
        return None
    sent = int(resp.json().get("sent_count", 0))
    if sent:
        logger.info("%d reminder(s) sent", sent)
    return sent


def next_due(previous: float, now: float, interval: int) -> tuple[float, int]:
    """First ``interval`` boundary after ``previous`` that is still ahead of ``now``.

    Returns the boundary and how many boundaries were already behind ``now``.
    """
    due = (previous // interval + 1) * interval
    skipped = 0
    while due <= now:
        due += interval
        skipped += 1
    return due, skipped


async def poll(
    client: httpx.AsyncClient,
    cfg: SWGuildsConfig,
    headers: dict[str, str],
    *,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    max_ticks: int | None = None,
) -> None:
    """Tick now, then on each wall-clock boundary of ``cron.interval_seconds``."""
    interval = cfg.cron_interval_seconds
    due = clock()
    ticks = 0
    while max_ticks is None or ticks < max_ticks:
        await tick(client, cfg, headers)
        ticks += 1
        due, skipped = next_due(due, clock(), interval)
        if skipped:
            logger.warning("Reminder check overran, skipped %d tick(s)", skipped)
        # Sleep can return early; never tick before the boundary.
        delay = due - clock()
        while delay > 0:
            await sleep(delay)
            delay = due - clock()


async def run(cfg: SWGuildsConfig) -> int:
    secret = os.getenv("CRON_SECRET", "")
    headers = {"Authorization": f"Bearer {secret}"} if secret else {}

    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
        if not await wait_for_api(client, cfg):
            logger.critical("API never became healthy at %s, giving up", cfg.cron_base_url)
            return 1
        logger.info("Polling reminders every %ds", cfg.cron_interval_seconds)
        await poll(client, cfg, headers)
        return 0


def main() -> None:
    load_dotenv()
    cfg = load_config()
    try:
        sys.exit(asyncio.run(run(cfg)))
    except KeyboardInterrupt:
        logger.info("Reminder poller stopped")


if __name__ == "__main__":
    main()
