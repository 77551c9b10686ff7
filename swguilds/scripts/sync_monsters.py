"""
swguilds.scripts.sync_monsters — Refresh SwarFarm data from the shell
=======================================================================

Same work as ``POST /api/admin/update-swarfarm-data``: refetch every
monster, rewrite the cache file and mirror missing portraits::

    python -m swguilds.scripts.sync_monsters
"""

from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from swguilds.config import load_config  # noqa: E402
from swguilds.services.errors import UpstreamError  # noqa: E402
from swguilds.services.monster_service import refresh_swarfarm_data  # noqa: E402
from swguilds.services.upload_service import ensure_upload_dir  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("swguilds.scripts.sync_monsters")


def main() -> int:
    cfg = load_config()
    ensure_upload_dir()
    try:
        stats = asyncio.run(refresh_swarfarm_data(cfg))
    except UpstreamError as exc:
        logger.critical("SwarFarm refresh failed: %s", exc)
        return 1
    for key, value in stats.items():
        logger.info("%-22s %d", key, value)
    return 0


if __name__ == "__main__":
    sys.exit(main())
