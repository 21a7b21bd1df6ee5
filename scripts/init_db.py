#!/usr/bin/env python3
"""
Create the onboarding tables in the configured database.

Usage:
    python scripts/init_db.py [--drop]

Intended for local development and fresh environments. Existing tables are
left untouched unless --drop is given.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from onboarding.db import session as db_session
from onboarding.models import Base

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def init_db(drop: bool = False) -> None:
    if db_session.engine is None:
        logger.error("Database engine is not configured; set DATABASE_URL")
        sys.exit(1)

    async with db_session.engine.begin() as conn:
        if drop:
            logger.warning("Dropping all onboarding tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    await db_session.engine.dispose()
    logger.info("Created tables: %s", ", ".join(sorted(Base.metadata.tables)))


def main():
    parser = argparse.ArgumentParser(description="Create the onboarding schema")
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables first (destroys data)"
    )
    args = parser.parse_args()
    asyncio.run(init_db(drop=args.drop))


if __name__ == "__main__":
    main()
