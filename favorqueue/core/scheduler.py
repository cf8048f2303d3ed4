"""
Ticket scheduling for Favor Queue.

Pure functions over a creator's ticket set: the serving order (lane
interleaving), the workflow tag each approved ticket should carry, and the
per-lane display metrics. Nothing here touches the database; callers load
tickets, convert them to `TicketRecord` and persist the results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from favorqueue.core.ticket_workflow import (
    Lane,
    TicketStatus,
    TicketTag,
    has_tag,
    is_awaiting_feedback,
)


@dataclass(frozen=True)
class SchedulePattern:
    """How many tickets each lane gets per interleave cycle."""
    priority_per_cycle: int = 3
    personal_per_cycle: int = 1

    def __post_init__(self) -> None:
        if self.priority_per_cycle < 1 or self.personal_per_cycle < 1:
            raise ValueError(
                f"Schedule pattern counts must be >= 1, got "
                f"{self.priority_per_cycle}:{self.personal_per_cycle}"
            )

    @classmethod
    def from_settings(cls, settings: Any) -> "SchedulePattern":
        return cls(
            priority_per_cycle=settings.SCHEDULE_PRIORITY_PER_CYCLE,
            personal_per_cycle=settings.SCHEDULE_PERSONAL_PER_CYCLE,
        )


DEFAULT_PATTERN = SchedulePattern()


@dataclass(frozen=True)
class TicketRecord:
    """Immutable view of a ticket row used by the scheduler."""
    id: int
    ref: str
    creator_slug: str
    lane: Lane
    status: TicketStatus
    created_at: datetime
    ticket_number: Optional[int] = None
    queue_number: Optional[int] = None
    tags: Tuple[str, ...] = ()

    @classmethod
    def from_model(cls, ticket: Any) -> "TicketRecord":
        return cls(
            id=ticket.id,
            ref=ticket.ref,
            creator_slug=ticket.creator_slug,
            lane=Lane(ticket.lane),
            status=TicketStatus(ticket.status),
            created_at=ticket.created_at,
            ticket_number=ticket.ticket_number,
            queue_number=ticket.queue_number,
            tags=tuple(ticket.tags or ()),
        )


@dataclass(frozen=True)
class TicketPosition:
    ref: str
    lane: Lane
    status: TicketStatus
    ticket_number: Optional[int]
    queue_number: Optional[int]
    tag: Optional[TicketTag]
    # Absolute index in the serving order; None outside the active set
    active_before_you: Optional[int]


@dataclass(frozen=True)
class QueueMetrics:
    scope: str
    active_count: int
    current_ticket_number: Optional[int]
    next_ticket_number: Optional[int]
    eta_mins: Optional[int]


@dataclass(frozen=True)
class QueueSnapshot:
    personal: QueueMetrics
    priority: QueueMetrics
    general: QueueMetrics


def _chronological(ticket: TicketRecord) -> Tuple[datetime, str]:
    # ref only breaks exact created_at ties so the order stays total
    return (ticket.created_at, ticket.ref)


def interleave_lanes(
    priority: Sequence[TicketRecord],
    personal: Sequence[TicketRecord],
    pattern: SchedulePattern = DEFAULT_PATTERN,
) -> List[TicketRecord]:
    """Take `priority_per_cycle` priority then `personal_per_cycle` personal tickets, repeatedly."""
    ordered: List[TicketRecord] = []
    p = q = 0
    while p < len(priority) or q < len(personal):
        ordered.extend(priority[p:p + pattern.priority_per_cycle])
        p += pattern.priority_per_cycle
        ordered.extend(personal[q:q + pattern.personal_per_cycle])
        q += pattern.personal_per_cycle
    return ordered


def build_schedule(
    tickets: Iterable[TicketRecord],
    pattern: SchedulePattern = DEFAULT_PATTERN,
) -> List[TicketRecord]:
    """
    Order a creator's approved tickets for serving.

    The manually pinned `current` ticket comes first, then every ticket
    awaiting feedback (oldest first), then the remaining tickets interleaved
    by lane according to `pattern`, FIFO within each lane.

    Args:
        tickets: All tickets of one creator, any status, any order
        pattern: Lane interleave ratio

    Returns:
        The approved tickets in serving order
    """
    approved = [t for t in tickets if t.status == TicketStatus.APPROVED]

    pinned = sorted(
        (t for t in approved if has_tag(t.tags, TicketTag.CURRENT)),
        key=_chronological,
    )
    current = pinned[0] if pinned else None
    rest = [t for t in approved if current is None or t.ref != current.ref]

    awaiting = sorted(
        (t for t in rest if is_awaiting_feedback(t.tags)),
        key=_chronological,
    )
    regular = [t for t in rest if not is_awaiting_feedback(t.tags)]
    priority = sorted((t for t in regular if t.lane == Lane.PRIORITY), key=_chronological)
    personal = sorted((t for t in regular if t.lane == Lane.PERSONAL), key=_chronological)

    ordered: List[TicketRecord] = [current] if current else []
    ordered.extend(awaiting)
    ordered.extend(interleave_lanes(priority, personal, pattern))
    return ordered


def assign_tags(ordered: Sequence[TicketRecord]) -> List[TicketPosition]:
    """
    Compute the engine tag for each ticket of an ordered schedule.

    Tickets awaiting feedback keep that tag and do not count towards the
    active index; the first remaining ticket is `current`, the second
    `next-up`, the rest `pending`. The pinned ticket at the head of the
    schedule is `current` even if it also carries `awaiting-feedback`.
    """
    positions: List[TicketPosition] = []
    active_index = 0

    for index, ticket in enumerate(ordered):
        pinned = index == 0 and has_tag(ticket.tags, TicketTag.CURRENT)

        if is_awaiting_feedback(ticket.tags) and not pinned:
            tag = TicketTag.AWAITING_FEEDBACK
        else:
            if active_index == 0:
                tag = TicketTag.CURRENT
            elif active_index == 1:
                tag = TicketTag.NEXT_UP
            else:
                tag = TicketTag.PENDING
            active_index += 1

        positions.append(TicketPosition(
            ref=ticket.ref,
            lane=ticket.lane,
            status=ticket.status,
            ticket_number=ticket.ticket_number,
            queue_number=ticket.queue_number,
            tag=tag,
            active_before_you=index,
        ))

    return positions


def _metrics(
    scope: str,
    subset: Sequence[TicketRecord],
    use_queue_number: bool,
    eta_minutes_per_ticket: int,
) -> QueueMetrics:
    def number(ticket: Optional[TicketRecord]) -> Optional[int]:
        if ticket is None:
            return None
        return ticket.queue_number if use_queue_number else ticket.ticket_number

    active_count = len(subset)
    return QueueMetrics(
        scope=scope,
        active_count=active_count,
        current_ticket_number=number(subset[0] if active_count > 0 else None),
        next_ticket_number=number(subset[1] if active_count > 1 else None),
        eta_mins=active_count * eta_minutes_per_ticket if active_count > 0 else None,
    )


def build_snapshot(ordered: Sequence[TicketRecord], eta_minutes_per_ticket: int = 5) -> QueueSnapshot:
    """Per-lane and overall display metrics from a serving order."""
    personal = [t for t in ordered if t.lane == Lane.PERSONAL]
    priority = [t for t in ordered if t.lane == Lane.PRIORITY]
    # Lane cards show lane-local queue numbers, the general card global ticket numbers
    return QueueSnapshot(
        personal=_metrics(Lane.PERSONAL.value, personal, True, eta_minutes_per_ticket),
        priority=_metrics(Lane.PRIORITY.value, priority, True, eta_minutes_per_ticket),
        general=_metrics("general", ordered, False, eta_minutes_per_ticket),
    )
