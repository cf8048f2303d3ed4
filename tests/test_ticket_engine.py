"""
Tests for ticket numbering, tag synchronization and the ticket lifecycle
against a real (in-memory) database.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from favorqueue.core.exceptions import CounterUnavailableError, InvalidTransitionError, NotFoundError, ValidationError
from favorqueue.core.ticket_workflow import Lane, TicketStatus, TicketTag
from favorqueue.repositories.counter import CounterRepository
from favorqueue.services.ticket import TicketService
from favorqueue.services.ticket_engine import INITIAL_COUNTER, TicketEngineService


@pytest.mark.unit
class TestNumberAssignment:
    """Tests for global and lane-local ticket numbers."""

    async def test_numbers_follow_approval_order(self, db_session: AsyncSession, test_factory):
        """Test global numbers are 1..N and lane numbers 1..k per lane."""
        tickets = await test_factory.create_approved(
            db_session, ["priority", "personal", "priority", "priority", "personal"]
        )

        assert [t.ticket_number for t in tickets] == [1, 2, 3, 4, 5]
        assert [t.queue_number for t in tickets] == [1, 1, 2, 3, 2]

    async def test_numbering_is_idempotent(self, db_session: AsyncSession, test_factory):
        """Test a numbered ticket is never renumbered."""
        engine = TicketEngineService()
        [ticket] = await test_factory.create_approved(db_session, ["priority"])

        assert await engine.assign_numbers(db_session, ticket.id) is None
        assert ticket.ticket_number == 1
        assert (await engine.next_numbers(db_session, "alice"))["next_ticket_number"] == 2

    async def test_unapproved_ticket_is_not_numbered(self, db_session: AsyncSession, test_factory):
        """Test open tickets get no numbers."""
        engine = TicketEngineService()
        ticket = await test_factory.create_ticket(db_session)

        assert await engine.assign_numbers(db_session, ticket.id) is None
        assert await engine.assign_numbers(db_session, 999999) is None
        assert ticket.ticket_number is None

    async def test_assign_numbers_returns_assignment(self, db_session: AsyncSession, test_factory):
        """Test the engine reports the numbers it handed out."""
        engine = TicketEngineService()
        ticket = await test_factory.create_ticket(db_session, lane="personal")
        await TicketService().repo.patch(db_session, ticket.id, {"status": TicketStatus.APPROVED.value})

        assignment = await engine.assign_numbers(db_session, ticket.id)

        assert (assignment.ticket_number, assignment.queue_number) == (1, 1)
        assert ticket.queue_number == 1

    async def test_duplicate_counter_insert(self, db_session: AsyncSession, test_factory):
        """Test a second counter insert for a creator is refused and numbering continues."""
        repo = CounterRepository()
        await test_factory.create_ticket(db_session, minute=0)

        assert await repo.insert(db_session, "alice", INITIAL_COUNTER) is True
        assert await repo.insert(db_session, "alice", INITIAL_COUNTER) is False

        counter = await repo.get_by_creator(db_session, "alice")
        assert await repo.claim(db_session, counter.id, Lane.PRIORITY) == (1, 1)
        assert await repo.claim(db_session, counter.id, Lane.PERSONAL) == (2, 1)

        ticket = await test_factory.create_ticket(db_session, lane="priority", minute=1)
        result = await TicketService().approve(db_session, ticket.ref)

        assert result.numbered is True
        assert (ticket.ticket_number, ticket.queue_number) == (3, 2)
        assert (await TicketEngineService().next_numbers(db_session, "alice")) == {
            "next_ticket_number": 4,
            "next_personal_number": 2,
            "next_priority_number": 3,
        }

    async def test_counter_created_lazily(self, db_session: AsyncSession, test_factory):
        """Test next numbers start at 1 and advance after the first approval."""
        engine = TicketEngineService()

        assert await engine.next_numbers(db_session, "alice") == {
            "next_ticket_number": 1,
            "next_personal_number": 1,
            "next_priority_number": 1,
        }

        await test_factory.create_approved(db_session, ["personal"])

        assert await engine.next_numbers(db_session, "alice") == {
            "next_ticket_number": 2,
            "next_personal_number": 2,
            "next_priority_number": 1,
        }

    async def test_creators_are_numbered_independently(self, db_session: AsyncSession, test_factory):
        """Test each creator has its own counter."""
        await test_factory.create_approved(db_session, ["priority", "priority"], creator_slug="alice")
        [bob_ticket] = await test_factory.create_approved(db_session, ["priority"], creator_slug="bob")

        assert bob_ticket.ticket_number == 1
        assert bob_ticket.queue_number == 1

    async def test_counter_unavailable_raises(self, db_session: AsyncSession, test_factory, monkeypatch):
        """Test a counter that cannot be read back aborts numbering."""
        engine = TicketEngineService()
        ticket = await test_factory.create_ticket(db_session)
        await TicketService().repo.patch(db_session, ticket.id, {"status": TicketStatus.APPROVED.value})

        async def missing(session, creator_slug):
            return None

        async def inserted(session, creator_slug, initial):
            return True

        monkeypatch.setattr(engine.counters, "get_by_creator", missing)
        monkeypatch.setattr(engine.counters, "insert", inserted)

        with pytest.raises(CounterUnavailableError):
            await engine.assign_numbers(db_session, ticket.id)
        assert ticket.ticket_number is None

    async def test_approval_survives_numbering_failure(self, db_session: AsyncSession, test_factory, monkeypatch):
        """Test approval keeps the ticket approved and a retry numbers it."""
        svc = TicketService()
        ticket = await test_factory.create_ticket(db_session)

        async def missing(session, creator_slug):
            return None

        async def inserted(session, creator_slug, initial):
            return True

        with monkeypatch.context() as m:
            m.setattr(svc.engine.counters, "get_by_creator", missing)
            m.setattr(svc.engine.counters, "insert", inserted)
            result = await svc.approve(db_session, ticket.ref)

        assert result.ok is True
        assert result.numbered is False
        assert result.status == TicketStatus.APPROVED.value

        retry = await svc.approve(db_session, ticket.ref)
        assert retry.numbered is True
        assert ticket.ticket_number == 1


@pytest.mark.unit
class TestTagSynchronization:
    """Tests for persisting workflow tags."""

    async def test_approvals_tag_the_queue(self, db_session: AsyncSession, test_factory):
        """Test A, B(personal), C, D end up current, pending, next-up, pending."""
        a, b, c, d = await test_factory.create_approved(
            db_session, ["priority", "personal", "priority", "priority"]
        )

        assert a.tags == ["current"]
        assert c.tags == ["next-up"]
        assert d.tags == ["pending"]
        assert b.tags == ["pending"]

    async def test_synchronize_is_idempotent(self, db_session: AsyncSession, test_factory):
        """Test a second pass without changes writes nothing."""
        engine = TicketEngineService()
        await test_factory.create_approved(db_session, ["priority", "personal", "priority"])

        first = await engine.synchronize(db_session, "alice")
        second = await engine.synchronize(db_session, "alice")

        assert first.updated == 0
        assert second.updated == 0
        assert second.unchanged == 3

    async def test_feedback_toggle_scenario(self, db_session: AsyncSession, test_factory):
        """Test E waits for feedback, F becomes current and G next-up."""
        svc = TicketService()
        e, f, g, h = await test_factory.create_approved(db_session, ["priority"] * 4)

        result = await svc.toggle_feedback(db_session, e.ref)

        assert result.ok is True
        assert e.tags == ["awaiting-feedback"]
        assert f.tags == ["current"]
        assert g.tags == ["next-up"]
        assert h.tags == ["pending"]

    async def test_awaiting_feedback_is_sticky(self, db_session: AsyncSession, test_factory):
        """Test approvals, rejections and resyncs never move a waiting ticket."""
        svc = TicketService()
        engine = TicketEngineService()
        e, f = await test_factory.create_approved(db_session, ["priority", "personal"])
        await svc.toggle_feedback(db_session, e.ref)

        newcomer = await test_factory.create_ticket(db_session, lane="priority", minute=30)
        await svc.approve(db_session, newcomer.ref)
        spam = await test_factory.create_ticket(db_session, lane="personal", minute=31)
        await svc.reject(db_session, spam.ref)
        for _ in range(3):
            await engine.synchronize(db_session, "alice")

        assert e.tags == ["awaiting-feedback"]
        assert f.tags == ["current"]
        assert newcomer.tags == ["next-up"]

    async def test_resuming_takes_current_back(self, db_session: AsyncSession, test_factory):
        """Test toggling a waiting ticket makes it current and demotes the holder."""
        svc = TicketService()
        e, f, g = await test_factory.create_approved(db_session, ["priority"] * 3)
        await svc.toggle_feedback(db_session, e.ref)

        await svc.toggle_feedback(db_session, e.ref)

        assert e.tags == ["current"]
        assert f.tags == ["next-up"]
        assert g.tags == ["pending"]

    async def test_toggle_requires_current_or_awaiting(self, db_session: AsyncSession, test_factory):
        """Test a pending or unapproved ticket cannot be toggled."""
        svc = TicketService()
        _, _, pending = await test_factory.create_approved(db_session, ["priority"] * 3)
        open_ticket = await test_factory.create_ticket(db_session, minute=50)

        with pytest.raises(InvalidTransitionError):
            await svc.toggle_feedback(db_session, pending.ref)
        with pytest.raises(InvalidTransitionError):
            await svc.toggle_feedback(db_session, open_ticket.ref)
        assert (await svc.toggle_feedback(db_session, "NOPE-1")).ok is False

    async def test_corrupted_awaiting_tags_are_repaired(self, db_session: AsyncSession, test_factory):
        """Test a waiting ticket with a stale next-up still leaves the queue a current ticket."""
        svc = TicketService()
        engine = TicketEngineService()
        a, b, c = await test_factory.create_approved(db_session, ["priority"] * 3)
        await svc.repo.patch(db_session, a.id, {"tags": []})
        await svc.repo.patch(db_session, b.id, {"tags": ["next-up", "awaiting-feedback"]})

        await engine.synchronize(db_session, "alice")

        assert a.tags == ["current"]
        assert b.tags == ["awaiting-feedback"]
        assert c.tags == ["next-up"]

        second = await engine.synchronize(db_session, "alice")
        assert second.updated == 0

    async def test_terminal_tickets_are_never_retagged(self, db_session: AsyncSession, test_factory):
        """Test closed tickets keep their labels through a resynchronization."""
        svc = TicketService()
        a, b = await test_factory.create_approved(db_session, ["priority", "priority"])
        await svc.finish(db_session, a.ref)
        await svc.repo.patch(db_session, a.id, {"tags": ["finished", "vip"]})

        result = await TicketEngineService().synchronize(db_session, "alice")

        assert a.tags == ["finished", "vip"]
        assert b.tags == ["current"]
        assert result.unchanged == 1

    async def test_free_form_tags_survive(self, db_session: AsyncSession, test_factory):
        """Test labels outside the workflow vocabulary are left untouched."""
        svc = TicketService()
        a, b = await test_factory.create_approved(db_session, ["priority", "priority"])
        await svc.add_tag(db_session, b.ref, "vip")

        await svc.finish(db_session, a.ref)

        assert b.tags == ["vip", "current"]

    async def test_reserved_tags_cannot_be_set_by_hand(self, db_session: AsyncSession, test_factory):
        """Test workflow labels are refused by the manual tag operations."""
        svc = TicketService()
        [a] = await test_factory.create_approved(db_session, ["priority"])

        with pytest.raises(ValidationError):
            await svc.add_tag(db_session, a.ref, "current")
        with pytest.raises(ValidationError):
            await svc.remove_tag(db_session, a.ref, "finished")

        await svc.add_tag(db_session, a.ref, "vip")
        await svc.add_tag(db_session, a.ref, "vip")
        assert a.tags == ["current", "vip"]
        await svc.remove_tag(db_session, a.ref, "vip")
        assert a.tags == ["current"]


@pytest.mark.unit
class TestTicketLifecycle:
    """Tests for approval, rejection, expiry and finish."""

    async def test_finish_removes_ticket_from_queue(self, db_session: AsyncSession, test_factory):
        """Test finishing closes the ticket and promotes the next one."""
        svc = TicketService()
        engine = TicketEngineService()
        a, b, c = await test_factory.create_approved(db_session, ["priority", "priority", "personal"])

        result = await svc.finish(db_session, a.ref)

        assert result.status == TicketStatus.CLOSED.value
        assert a.tags == ["finished"]
        assert a.resolved_at is not None
        assert b.tags == ["current"]
        assert c.tags == ["next-up"]
        assert [p.ref for p in await engine.active_positions(db_session, "alice")] == [b.ref, c.ref]

        await engine.synchronize(db_session, "alice")
        assert a.tags == ["finished"]

    async def test_finish_is_idempotent(self, db_session: AsyncSession, test_factory):
        """Test finishing twice or finishing a missing ticket succeeds quietly."""
        svc = TicketService()
        [a] = await test_factory.create_approved(db_session, ["priority"])
        await svc.finish(db_session, a.ref)

        again = await svc.finish(db_session, a.ref)

        assert again.ok is True
        assert a.tags == ["finished"]
        assert (await svc.finish(db_session, "NOPE-1")).ok is True

    async def test_finish_requires_approval(self, db_session: AsyncSession, test_factory):
        """Test an open ticket cannot be finished."""
        ticket = await test_factory.create_ticket(db_session)

        with pytest.raises(InvalidTransitionError):
            await TicketService().finish(db_session, ticket.ref)

    async def test_reject_adds_marker_once(self, db_session: AsyncSession, test_factory):
        """Test rejection sets the terminal marker and repeats are no-ops."""
        svc = TicketService()
        ticket = await test_factory.create_ticket(db_session)

        await svc.reject(db_session, ticket.ref)
        again = await svc.reject(db_session, ticket.ref)

        assert again.ok is True
        assert ticket.status == TicketStatus.REJECTED.value
        assert ticket.tags == ["rejected"]
        assert ticket.rejection_reason == "creator_rejected"
        assert (await svc.reject(db_session, "NOPE-1")).ok is True

    async def test_approved_ticket_cannot_be_rejected(self, db_session: AsyncSession, test_factory):
        """Test rejection is only possible before approval."""
        [a] = await test_factory.create_approved(db_session, ["priority"])

        with pytest.raises(InvalidTransitionError):
            await TicketService().reject(db_session, a.ref)

    async def test_payment_gate(self, db_session: AsyncSession, test_factory):
        """Test unpaid tickets must be confirmed before approval."""
        svc = TicketService()
        ticket = await test_factory.create_ticket(db_session, awaiting_payment=True)
        assert ticket.status == TicketStatus.PENDING_PAYMENT.value

        with pytest.raises(InvalidTransitionError):
            await svc.approve(db_session, ticket.ref)

        confirmed = await svc.confirm_payment(db_session, ticket.ref)
        assert confirmed.status == TicketStatus.OPEN.value

        approved = await svc.approve(db_session, ticket.ref)
        assert approved.numbered is True
        assert (await svc.confirm_payment(db_session, "NOPE-1")).ok is False

    async def test_approve_missing_ticket_is_noop(self, db_session: AsyncSession):
        """Test approving an unknown ref reports success without effect."""
        result = await TicketService().approve(db_session, "NOPE-1")

        assert result.ok is True
        assert result.numbered is None

    async def test_expire_stale(self, db_session: AsyncSession, test_factory):
        """Test old open and unpaid tickets expire, recent and approved ones stay."""
        svc = TicketService()
        old_open = await test_factory.create_ticket(db_session, minute=0)
        old_unpaid = await test_factory.create_ticket(db_session, minute=1, awaiting_payment=True)
        [approved] = await test_factory.create_approved(db_session, ["priority"], creator_slug="bob")
        recent = await test_factory.create_ticket(db_session, minute=60 * 24 * 7)

        now = test_factory.at(60 * 24 * 8)
        expired = await svc.expire_stale(db_session, now=now, max_age_days=7)

        assert expired == [old_open.ref, old_unpaid.ref]
        assert old_open.status == TicketStatus.REJECTED.value
        assert old_unpaid.rejection_reason == "expired"
        assert old_unpaid.tags == ["rejected"]
        assert approved.status == TicketStatus.APPROVED.value
        assert recent.status == TicketStatus.OPEN.value

    async def test_create_validates_input(self, db_session: AsyncSession):
        """Test unknown lanes and negative tips are refused."""
        svc = TicketService()

        with pytest.raises(ValidationError):
            await svc.create(db_session, creator_slug="alice", lane="express")
        with pytest.raises(ValidationError):
            await svc.create(db_session, creator_slug="alice", lane="priority", tip_cents=-5)
        with pytest.raises(ValidationError):
            await svc.create(db_session, creator_slug="  ", lane="priority")


@pytest.mark.unit
class TestQueueReads:
    """Tests for positions and snapshots read from the database."""

    async def test_ticket_position(self, db_session: AsyncSession, test_factory):
        """Test positions report tag and index for active tickets only."""
        engine = TicketEngineService()
        a, b = await test_factory.create_approved(db_session, ["priority", "personal"])
        waiting = await test_factory.create_ticket(db_session, minute=10)

        position = await engine.ticket_position(db_session, b.ref)
        assert position.tag == TicketTag.NEXT_UP
        assert position.active_before_you == 1

        outside = await engine.ticket_position(db_session, waiting.ref)
        assert outside.tag is None
        assert outside.active_before_you is None
        assert outside.status == TicketStatus.OPEN

        with pytest.raises(NotFoundError):
            await engine.ticket_position(db_session, "NOPE-1")

    async def test_snapshot(self, db_session: AsyncSession, test_factory):
        """Test snapshot metrics reflect the approved queue."""
        engine = TicketEngineService(eta_minutes_per_ticket=10)
        await test_factory.create_approved(db_session, ["priority", "personal", "priority"])

        snapshot = await engine.snapshot(db_session, "alice")

        assert snapshot.general.active_count == 3
        assert snapshot.general.current_ticket_number == 1
        assert snapshot.general.next_ticket_number == 3
        assert snapshot.general.eta_mins == 30
        assert snapshot.personal.current_ticket_number == 1
        assert snapshot.priority.next_ticket_number == 2

    async def test_queue_follows_submission_time(self, db_session: AsyncSession, test_factory):
        """Test approval order does not override submission order behind current."""
        svc = TicketService()
        engine = TicketEngineService()
        first = await test_factory.create_ticket(db_session, minute=0)
        late = await test_factory.create_ticket(db_session, minute=20)
        early = await test_factory.create_ticket(db_session, minute=5)
        for ticket in (first, late, early):
            await svc.approve(db_session, ticket.ref)

        ordered = [p.ref for p in await engine.active_positions(db_session, "alice")]

        assert ordered == [first.ref, early.ref, late.ref]
        assert early.tags == ["next-up"]
        assert late.tags == ["pending"]
        assert late.ticket_number == 2
