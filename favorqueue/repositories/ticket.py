from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from favorqueue.db.models import Ticket, utcnow


class TicketRepository:
    """Repository for Ticket operations with creator scoping."""

    async def list_by_creator(self, session: AsyncSession, creator_slug: str) -> List[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.creator_slug == creator_slug)
            .order_by(Ticket.created_at, Ticket.id)
        )
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def get_by_id(self, session: AsyncSession, ticket_id: int) -> Optional[Ticket]:
        return await session.get(Ticket, ticket_id)

    async def get_by_ref(self, session: AsyncSession, ref: str) -> Optional[Ticket]:
        stmt = select(Ticket).where(Ticket.ref == ref)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()

    async def list_stale(
        self,
        session: AsyncSession,
        statuses: Iterable[str],
        created_before: datetime,
    ) -> List[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.status.in_(list(statuses)), Ticket.created_at < created_before)
            .order_by(Ticket.created_at, Ticket.id)
        )
        res = await session.execute(stmt)
        return list(res.scalars().all())

    async def create(
        self,
        session: AsyncSession,
        ref: str,
        creator_slug: str,
        lane: str,
        status: str,
        title: Optional[str] = None,
        message: Optional[str] = None,
        tip_cents: int = 0,
        requester_name: Optional[str] = None,
        requester_email: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Ticket:
        entity = Ticket(
            ref=ref,
            creator_slug=creator_slug,
            lane=lane,
            status=status,
            title=title,
            message=message,
            tip_cents=tip_cents,
            requester_name=requester_name,
            requester_email=requester_email,
            created_at=created_at or utcnow(),
            tags=[],
        )
        session.add(entity)
        await session.flush()
        return entity

    async def patch(self, session: AsyncSession, ticket_id: int, fields: Dict[str, Any]) -> Optional[Ticket]:
        entity = await self.get_by_id(session, ticket_id)
        if entity is None:
            return None
        for field, value in fields.items():
            # JSON columns only track reassignment, never hand over the caller's list
            setattr(entity, field, list(value) if isinstance(value, (list, tuple)) else value)
        await session.flush()
        return entity
