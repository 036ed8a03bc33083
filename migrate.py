#!/usr/bin/env python3
"""
Ensure the PostgreSQL sessions schema exists (table + created_at index).

Reads DATABASE_URL from the environment or a local .env file.
"""
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from pokerface import datastore_pg

logger = logging.getLogger("pokerface.migrate")


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    load_dotenv(Path.cwd() / ".env", override=False)
    try:
        datastore_pg.ensure_schema()
    except Exception:
        logger.exception("Migration failed")
        return 1
    logger.info("Database schema ensured.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
