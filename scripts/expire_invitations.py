#!/usr/bin/env python3
"""
Invitation expiry sweep for cron.

Usage:
    python scripts/expire_invitations.py [--dry-run]

Flips every pending invitation past its expiry to expired and writes one
activity row per invitation. Safe to run repeatedly.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import func, select

from onboarding.db import session as db_session
from onboarding.models.base import utcnow
from onboarding.models.enums import InvitationStatus
from onboarding.models.invitations import Invitation
from onboarding.services.audit import AuditLogger
from onboarding.services.invitations import InvitationRegistry

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_sweep(dry_run: bool = False) -> int:
    if db_session.async_session is None:
        logger.error("Database is not configured; set DATABASE_URL")
        return 0

    async with db_session.async_session() as session:
        if dry_run:
            count = (await session.execute(
                select(func.count()).select_from(Invitation).where(
                    Invitation.status == InvitationStatus.pending.value,
                    Invitation.expires_at <= utcnow(),
                )
            )).scalar_one()
            logger.info("[dry run] %d invitations would expire", count)
            return count

        audit = AuditLogger(session)
        expired = await InvitationRegistry(session, audit).expire_sweep()
        await audit.record("expire_invitations", None, details={"expired": len(expired), "source": "cron"})
        logger.info("Expired %d invitations", len(expired))
        return len(expired)


def main():
    parser = argparse.ArgumentParser(description="Expire stale pending invitations")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only count what would expire"
    )
    args = parser.parse_args()
    asyncio.run(run_sweep(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
