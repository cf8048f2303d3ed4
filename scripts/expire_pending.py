"""
Reject open and unpaid tickets that sat past the expiry window.

Meant for a periodic job (cron or similar):

    python scripts/expire_pending.py --days 7
"""

import argparse
import asyncio
import logging
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from favorqueue.core.config import get_settings
from favorqueue.core.logging import setup_logging
from favorqueue.db.session import SessionLocal
from favorqueue.services.ticket import TicketService

logger = logging.getLogger(__name__)


async def expire_pending(max_age_days: int) -> int:
    async with SessionLocal() as session:  # type: ignore[call-arg]
        expired = await TicketService().expire_stale(session, max_age_days=max_age_days)
        await session.commit()
    logger.info("Expired %d tickets older than %d days", len(expired), max_age_days)
    return len(expired)


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--days", type=int, default=settings.PENDING_EXPIRY_DAYS)
    args = parser.parse_args()

    setup_logging(level=settings.LOG_LEVEL)
    asyncio.run(expire_pending(args.days))


if __name__ == "__main__":
    main()
