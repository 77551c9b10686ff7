"""
swguilds.scripts.create_admin — Bootstrap the admin account
=============================================================

Creates (or resets) the account named by ``ADMIN_ID`` as an approved
admin.  Password from ``ADMIN_PASSWORD``, display name from ``ADMIN_NAME``
(default ``Admin``)::

    python -m swguilds.scripts.create_admin
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from swguilds.constants import MIN_PASSWORD_LENGTH
from swguilds.database.engine import create_db_engine, init_db
from swguilds.services.user_service import ensure_admin

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("swguilds.scripts.create_admin")


def main() -> int:
    load_dotenv()
    identifier = os.getenv("ADMIN_ID", "").strip()
    password = os.getenv("ADMIN_PASSWORD", "")
    name = os.getenv("ADMIN_NAME", "").strip() or "Admin"

    if not identifier or not password:
        logger.critical("ADMIN_ID and ADMIN_PASSWORD must be set in the environment")
        return 1
    if len(password) < MIN_PASSWORD_LENGTH:
        logger.critical("ADMIN_PASSWORD must be at least %d characters", MIN_PASSWORD_LENGTH)
        return 1

    engine = create_db_engine()
    init_db(engine)
    _, created = ensure_admin(engine, identifier=identifier, password=password, name=name)
    logger.info("Admin %r %s", identifier, "created" if created else "updated")
    return 0


if __name__ == "__main__":
    sys.exit(main())
