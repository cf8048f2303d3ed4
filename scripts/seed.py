import asyncio
import logging
import os
import sys
from datetime import timedelta

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import select

from favorqueue.core.logging import setup_logging
from favorqueue.db.base import Base
from favorqueue.db.models import Ticket, utcnow
from favorqueue.db.session import SessionLocal, engine
from favorqueue.services.ticket import TicketService

logger = logging.getLogger(__name__)

DEMO_CREATOR = "demo"

# (lane, title, approve)
DEMO_TICKETS = [
    ("priority", "Review my portfolio", True),
    ("personal", "Say hi on stream", True),
    ("priority", "Mix feedback on my track", True),
    ("priority", "Logo critique", True),
    ("personal", "Birthday shoutout", False),
]


async def seed() -> None:
    """Seed a demo creator with a small approved queue.

    Returns:
        None
    """

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:  # type: ignore[call-arg]
        res = await session.execute(select(Ticket.id).where(Ticket.creator_slug == DEMO_CREATOR).limit(1))
        if res.first() is not None:
            logger.info("Demo creator already has tickets; skipping seeding")
            return

        svc = TicketService()
        start = utcnow() - timedelta(hours=len(DEMO_TICKETS))
        for i, (lane, title, approve) in enumerate(DEMO_TICKETS):
            ticket = await svc.create(
                session=session,
                creator_slug=DEMO_CREATOR,
                lane=lane,
                title=title,
                tip_cents=500 if lane == "priority" else 0,
                created_at=start + timedelta(hours=i),
            )
            if approve:
                await svc.approve(session, ticket.ref)
        await session.commit()
        logger.info("Seeded %d tickets for %s", len(DEMO_TICKETS), DEMO_CREATOR)


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
