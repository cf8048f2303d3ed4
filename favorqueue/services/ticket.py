from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from favorqueue.core.config import get_settings
from favorqueue.core.exceptions import (
    ErrorHandler,
    InvalidTransitionError,
    NotFoundError,
    NumberingError,
    ValidationError,
)
from favorqueue.core.ticket_workflow import (
    RESERVED_TAGS,
    Lane,
    RejectionReason,
    TicketStatus,
    TicketTag,
    TicketWorkflowEngine,
    has_tag,
    terminal_tags,
    toggle_feedback_tags,
    with_tag,
    without_tags,
)
from favorqueue.db.models import Ticket, utcnow
from favorqueue.repositories.ticket import TicketRepository
from favorqueue.services.ticket_engine import SyncResult, TicketEngineService

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of a read-then-act ticket operation."""
    ok: bool
    ref: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    numbered: Optional[bool] = None

    @classmethod
    def for_ticket(cls, ticket: Ticket, **extra) -> "OperationResult":
        return cls(ok=True, ref=ticket.ref, status=ticket.status, tags=list(ticket.tags or []), **extra)


class TicketService:
    """Ticket lifecycle: submission, approval, rejection, expiry, finish and manual tagging.

    Every operation that changes the approved set or a ticket's workflow tag
    ends with a tag synchronization for the ticket's creator.
    """

    def __init__(self, engine: Optional[TicketEngineService] = None) -> None:
        self.repo = TicketRepository()
        self.workflow = TicketWorkflowEngine()
        self.engine = engine or TicketEngineService()

    async def _allocate_ref(self, session: AsyncSession, creator_slug: str) -> str:
        seq = int(time.time() * 1000)
        ref = f"{creator_slug.upper()}-{seq}"
        while await self.repo.get_by_ref(session, ref) is not None:
            seq += 1
            ref = f"{creator_slug.upper()}-{seq}"
        return ref

    async def get_by_ref(self, session: AsyncSession, ref: str) -> Ticket:
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            raise NotFoundError("Ticket not found", {"ref": ref})
        return ticket

    async def create(
        self,
        session: AsyncSession,
        creator_slug: str,
        lane: str,
        title: Optional[str] = None,
        message: Optional[str] = None,
        tip_cents: int = 0,
        requester_name: Optional[str] = None,
        requester_email: Optional[str] = None,
        awaiting_payment: bool = False,
        created_at: Optional[datetime] = None,
    ) -> Ticket:
        """
        Submit a new favor request.

        Args:
            session: Database session
            creator_slug: Owning creator
            lane: "priority" or "personal"
            awaiting_payment: Start in pending_payment until the payment is confirmed
            created_at: Override the submission time (imports and seeding)

        Returns:
            Created ticket

        Raises:
            ValidationError: For invalid input
        """
        ErrorHandler.validate_creator_slug(creator_slug)
        ErrorHandler.validate_non_negative_integer(tip_cents, "tip_cents")
        try:
            lane_value = Lane(lane)
        except ValueError:
            raise ValidationError(
                f"Unknown lane '{lane}'",
                {"field": "lane", "allowed": [l.value for l in Lane]},
            )

        status = TicketStatus.PENDING_PAYMENT if awaiting_payment else TicketStatus.OPEN
        ticket = await self.repo.create(
            session=session,
            ref=await self._allocate_ref(session, creator_slug),
            creator_slug=creator_slug,
            lane=lane_value.value,
            status=status.value,
            title=title,
            message=message,
            tip_cents=tip_cents,
            requester_name=requester_name,
            requester_email=requester_email,
            created_at=created_at,
        )
        logger.info("Created ticket %s for %s in %s lane (%s)", ticket.ref, creator_slug, lane_value.value, status.value)
        return ticket

    async def confirm_payment(self, session: AsyncSession, ref: str) -> OperationResult:
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=False, ref=ref)
        if ticket.status == TicketStatus.OPEN.value:
            return OperationResult.for_ticket(ticket)

        self.workflow.validate_transition(ticket.status, TicketStatus.OPEN, action="payment_confirmed")
        await self.repo.patch(session, ticket.id, {"status": TicketStatus.OPEN.value})
        logger.info("Payment confirmed for %s", ref)
        return OperationResult.for_ticket(ticket)

    async def approve(self, session: AsyncSession, ref: str) -> OperationResult:
        """
        Approve an open ticket, number it and resynchronize the creator's tags.

        A numbering failure leaves the ticket approved but unnumbered;
        approving again retries the numbering.
        """
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=True, ref=ref)

        if ticket.status != TicketStatus.APPROVED.value:
            self.workflow.validate_transition(ticket.status, TicketStatus.APPROVED, action="approve")
            await self.repo.patch(session, ticket.id, {"status": TicketStatus.APPROVED.value})
            logger.info("Approved %s", ref)

        try:
            await self.engine.assign_numbers(session, ticket.id)
        except NumberingError as e:
            logger.warning(f"Numbering failed for {ref}, ticket stays approved: {e.message}")

        await self.engine.synchronize(session, ticket.creator_slug)
        return OperationResult.for_ticket(ticket, numbered=ticket.ticket_number is not None)

    async def _reject(self, session: AsyncSession, ticket: Ticket, reason: RejectionReason) -> None:
        action = "expire" if reason == RejectionReason.EXPIRED else "reject"
        self.workflow.validate_transition(ticket.status, TicketStatus.REJECTED, action=action)
        await self.repo.patch(session, ticket.id, {
            "status": TicketStatus.REJECTED.value,
            "tags": terminal_tags(ticket.tags, TicketTag.REJECTED),
            "rejection_reason": reason.value,
            "resolved_at": utcnow(),
        })
        logger.info("Rejected %s (%s)", ticket.ref, reason.value)

    async def reject(
        self,
        session: AsyncSession,
        ref: str,
        reason: RejectionReason = RejectionReason.CREATOR_REJECTED,
    ) -> OperationResult:
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=True, ref=ref)
        if ticket.status == TicketStatus.REJECTED.value:
            return OperationResult.for_ticket(ticket)

        await self._reject(session, ticket, reason)
        await self.engine.synchronize(session, ticket.creator_slug)
        return OperationResult.for_ticket(ticket)

    async def expire_stale(
        self,
        session: AsyncSession,
        now: Optional[datetime] = None,
        max_age_days: Optional[int] = None,
    ) -> List[str]:
        """Reject open and unpaid tickets older than the expiry window; returns the expired refs."""
        days = max_age_days if max_age_days is not None else get_settings().PENDING_EXPIRY_DAYS
        cutoff = (now or utcnow()) - timedelta(days=days)
        stale = await self.repo.list_stale(
            session,
            [TicketStatus.OPEN.value, TicketStatus.PENDING_PAYMENT.value],
            cutoff,
        )

        expired: List[str] = []
        creators: List[str] = []
        for ticket in stale:
            await self._reject(session, ticket, RejectionReason.EXPIRED)
            expired.append(ticket.ref)
            if ticket.creator_slug not in creators:
                creators.append(ticket.creator_slug)

        for creator_slug in creators:
            await self.engine.synchronize(session, creator_slug)

        if expired:
            logger.info("Expired %d stale tickets across %d creators", len(expired), len(creators))
        return expired

    async def finish(self, session: AsyncSession, ref: str) -> OperationResult:
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=True, ref=ref)
        if ticket.status == TicketStatus.CLOSED.value:
            return OperationResult.for_ticket(ticket)

        self.workflow.validate_transition(ticket.status, TicketStatus.CLOSED, action="finish")
        await self.repo.patch(session, ticket.id, {
            "status": TicketStatus.CLOSED.value,
            "tags": terminal_tags(ticket.tags, TicketTag.FINISHED),
            "resolved_at": utcnow(),
        })
        logger.info("Finished %s", ref)

        await self.engine.synchronize(session, ticket.creator_slug)
        return OperationResult.for_ticket(ticket)

    async def toggle_feedback(self, session: AsyncSession, ref: str) -> OperationResult:
        """
        Flip an approved ticket between `current` and `awaiting-feedback`.

        Raises:
            InvalidTransitionError: If the ticket is not approved, or is
                neither current nor awaiting feedback
        """
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=False, ref=ref)
        if ticket.status != TicketStatus.APPROVED.value:
            raise InvalidTransitionError(
                "Only approved tickets can be toggled",
                {"ref": ref, "status": ticket.status},
            )

        resuming = has_tag(ticket.tags, TicketTag.AWAITING_FEEDBACK)
        new_tags = toggle_feedback_tags(ticket.tags)

        if resuming:
            # The resumed ticket takes the current slot from whoever holds it
            for other in await self.repo.list_by_creator(session, ticket.creator_slug):
                if other.id != ticket.id and has_tag(other.tags, TicketTag.CURRENT):
                    await self.repo.patch(session, other.id, {"tags": without_tags(other.tags, TicketTag.CURRENT)})

        await self.repo.patch(session, ticket.id, {"tags": new_tags})
        logger.info("Toggled %s to %s", ref, "current" if resuming else "awaiting-feedback")

        await self.engine.synchronize(session, ticket.creator_slug)
        return OperationResult.for_ticket(ticket)

    def _validate_free_form_tag(self, tag: str) -> str:
        tag = (tag or "").strip()
        if not tag:
            raise ValidationError("Tag must not be empty", {"field": "tag"})
        if tag in RESERVED_TAGS:
            raise ValidationError(
                f"Tag '{tag}' is managed by the workflow",
                {"field": "tag", "reserved": sorted(RESERVED_TAGS)},
            )
        return tag

    async def add_tag(self, session: AsyncSession, ref: str, tag: str) -> OperationResult:
        tag = self._validate_free_form_tag(tag)
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=False, ref=ref)
        if tag not in (ticket.tags or []):
            await self.repo.patch(session, ticket.id, {"tags": with_tag(ticket.tags, tag)})
        return OperationResult.for_ticket(ticket)

    async def remove_tag(self, session: AsyncSession, ref: str, tag: str) -> OperationResult:
        tag = self._validate_free_form_tag(tag)
        ticket = await self.repo.get_by_ref(session, ref)
        if ticket is None:
            return OperationResult(ok=False, ref=ref)
        if tag in (ticket.tags or []):
            await self.repo.patch(session, ticket.id, {"tags": [t for t in ticket.tags if t != tag]})
        return OperationResult.for_ticket(ticket)

    async def retag(self, session: AsyncSession, creator_slug: str) -> SyncResult:
        ErrorHandler.validate_creator_slug(creator_slug)
        return await self.engine.synchronize(session, creator_slug)
