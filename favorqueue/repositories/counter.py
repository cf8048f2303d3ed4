from __future__ import annotations
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from favorqueue.core.ticket_workflow import Lane
from favorqueue.db.models import TicketCounter


class CounterRepository:
    """Repository for the per-creator ticket number counters."""

    async def get_by_creator(self, session: AsyncSession, creator_slug: str) -> Optional[TicketCounter]:
        stmt = (
            select(TicketCounter)
            .where(TicketCounter.creator_slug == creator_slug)
            .execution_options(populate_existing=True)
        )
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def insert(self, session: AsyncSession, creator_slug: str, initial: Dict[str, int]) -> bool:
        """Insert the creator's counter row; returns False if another writer got there first."""
        try:
            async with session.begin_nested():
                session.add(TicketCounter(creator_slug=creator_slug, **initial))
        except IntegrityError:
            return False
        return True

    async def patch(self, session: AsyncSession, counter_id: int, fields: Dict[Any, Any]) -> None:
        await session.execute(
            update(TicketCounter).where(TicketCounter.id == counter_id).values(fields)
        )

    async def claim(self, session: AsyncSession, counter_id: int, lane: Lane) -> Tuple[int, int]:
        """
        Atomically take the next global and lane-local numbers.

        Increments in SQL first and reads the new values back in the same
        transaction, so two approvals can never be handed the same number.

        Returns:
            (ticket_number, queue_number)
        """
        lane_column = (
            TicketCounter.next_personal_number
            if Lane(lane) == Lane.PERSONAL
            else TicketCounter.next_priority_number
        )
        await self.patch(session, counter_id, {
            TicketCounter.next_ticket_number: TicketCounter.next_ticket_number + 1,
            lane_column: lane_column + 1,
        })
        row = (await session.execute(
            select(TicketCounter.next_ticket_number, lane_column).where(TicketCounter.id == counter_id)
        )).one()
        return row[0] - 1, row[1] - 1
