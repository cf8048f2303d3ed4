from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from favorqueue.core.config import get_settings
from favorqueue.core.exceptions import CounterUnavailableError, NotFoundError
from favorqueue.core.scheduler import (
    QueueSnapshot,
    SchedulePattern,
    TicketPosition,
    TicketRecord,
    assign_tags,
    build_schedule,
    build_snapshot,
)
from favorqueue.core.ticket_workflow import (
    Lane,
    TicketStatus,
    TicketTag,
    TicketWorkflowEngine,
    is_awaiting_feedback,
    strip_engine_tags,
)
from favorqueue.repositories.counter import CounterRepository
from favorqueue.repositories.ticket import TicketRepository

logger = logging.getLogger(__name__)

INITIAL_COUNTER = {
    "next_ticket_number": 1,
    "next_personal_number": 1,
    "next_priority_number": 1,
}


@dataclass
class SyncResult:
    updated: int = 0
    preserved: int = 0
    unchanged: int = 0


@dataclass(frozen=True)
class NumberAssignment:
    ticket_number: int
    queue_number: int


class TicketEngineService:
    """Persists the scheduler's decisions: workflow tags and ticket numbers."""

    def __init__(
        self,
        pattern: Optional[SchedulePattern] = None,
        eta_minutes_per_ticket: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.pattern = pattern or SchedulePattern.from_settings(settings)
        self.eta_minutes_per_ticket = (
            eta_minutes_per_ticket
            if eta_minutes_per_ticket is not None
            else settings.ETA_MINUTES_PER_TICKET
        )
        self.tickets = TicketRepository()
        self.counters = CounterRepository()
        self.workflow = TicketWorkflowEngine()

    async def load_records(self, session: AsyncSession, creator_slug: str) -> List[TicketRecord]:
        tickets = await self.tickets.list_by_creator(session, creator_slug)
        return [TicketRecord.from_model(t) for t in tickets]

    async def schedule(self, session: AsyncSession, creator_slug: str) -> List[TicketRecord]:
        return build_schedule(await self.load_records(session, creator_slug), self.pattern)

    async def active_positions(self, session: AsyncSession, creator_slug: str) -> List[TicketPosition]:
        return assign_tags(await self.schedule(session, creator_slug))

    async def ticket_position(self, session: AsyncSession, ref: str) -> TicketPosition:
        """
        Position of a single ticket in its creator's serving order.

        Tickets outside the active set get a position without tag or index.

        Raises:
            NotFoundError: If no ticket has this ref
        """
        ticket = await self.tickets.get_by_ref(session, ref)
        if ticket is None:
            raise NotFoundError("Ticket not found", {"ref": ref})

        if ticket.status == TicketStatus.APPROVED.value:
            for position in await self.active_positions(session, ticket.creator_slug):
                if position.ref == ref:
                    return position

        return TicketPosition(
            ref=ticket.ref,
            lane=Lane(ticket.lane),
            status=TicketStatus(ticket.status),
            ticket_number=ticket.ticket_number,
            queue_number=ticket.queue_number,
            tag=None,
            active_before_you=None,
        )

    async def snapshot(self, session: AsyncSession, creator_slug: str) -> QueueSnapshot:
        ordered = await self.schedule(session, creator_slug)
        snapshot = build_snapshot(ordered, self.eta_minutes_per_ticket)
        logger.debug(
            "Queue snapshot for %s: %d active",
            creator_slug,
            snapshot.general.active_count,
        )
        return snapshot

    async def next_numbers(self, session: AsyncSession, creator_slug: str) -> Dict[str, int]:
        counter = await self.counters.get_by_creator(session, creator_slug)
        if counter is None:
            return dict(INITIAL_COUNTER)
        return {
            "next_ticket_number": counter.next_ticket_number,
            "next_personal_number": counter.next_personal_number,
            "next_priority_number": counter.next_priority_number,
        }

    async def synchronize(self, session: AsyncSession, creator_slug: str) -> SyncResult:
        """
        Recompute and persist workflow tags for every ticket of a creator.

        Idempotent: a second call with no ticket changes writes nothing.
        A ticket awaiting feedback is never retagged by this pass.
        """
        tickets = await self.tickets.list_by_creator(session, creator_slug)
        records = [TicketRecord.from_model(t) for t in tickets]
        positions = assign_tags(build_schedule(records, self.pattern))
        desired: Dict[str, Optional[TicketTag]] = {p.ref: p.tag for p in positions}

        result = SyncResult()
        for ticket in tickets:
            if self.workflow.is_terminal(ticket.status):
                continue

            next_tag = desired.get(ticket.ref)
            current_tags = list(ticket.tags or [])

            if is_awaiting_feedback(current_tags) and next_tag != TicketTag.AWAITING_FEEDBACK:
                logger.info(
                    "Preserving awaiting-feedback for %s (computed %s)",
                    ticket.ref,
                    next_tag.value if next_tag else None,
                )
                result.preserved += 1
                continue

            new_tags = strip_engine_tags(current_tags)
            if next_tag is not None:
                new_tags.append(next_tag.value)

            if new_tags == current_tags:
                result.unchanged += 1
                continue

            await self.tickets.patch(session, ticket.id, {"tags": new_tags})
            logger.debug("Retagged %s: %s -> %s", ticket.ref, current_tags, new_tags)
            result.updated += 1

        logger.info(
            "Synchronized tags for %s: updated=%d preserved=%d unchanged=%d",
            creator_slug,
            result.updated,
            result.preserved,
            result.unchanged,
        )
        return result

    async def assign_numbers(self, session: AsyncSession, ticket_id: int) -> Optional[NumberAssignment]:
        """
        Give an approved ticket its global and lane-local numbers.

        Returns:
            The assigned numbers, or None if the ticket is missing, not
            approved, or already numbered

        Raises:
            CounterUnavailableError: If the creator's counter cannot be read
                back after creating it; nothing is assigned
        """
        ticket = await self.tickets.get_by_id(session, ticket_id)
        if ticket is None or ticket.status != TicketStatus.APPROVED.value:
            return None
        if ticket.ticket_number is not None:
            return None

        creator_slug = ticket.creator_slug
        counter = await self.counters.get_by_creator(session, creator_slug)
        if counter is None:
            if not await self.counters.insert(session, creator_slug, INITIAL_COUNTER):
                logger.info("Counter for %s was created concurrently", creator_slug)
            counter = await self.counters.get_by_creator(session, creator_slug)
            if counter is None:
                raise CounterUnavailableError(
                    "Ticket counter could not be created",
                    {"creator_slug": creator_slug, "ticket_id": ticket_id},
                )

        ticket_number, queue_number = await self.counters.claim(session, counter.id, Lane(ticket.lane))
        await self.tickets.patch(
            session,
            ticket.id,
            {"ticket_number": ticket_number, "queue_number": queue_number},
        )
        logger.info(
            "Numbered %s: ticket_number=%d queue_number=%d (%s)",
            ticket.ref,
            ticket_number,
            queue_number,
            ticket.lane,
        )
        return NumberAssignment(ticket_number=ticket_number, queue_number=queue_number)
