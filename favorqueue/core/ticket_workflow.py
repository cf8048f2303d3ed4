"""
Ticket workflow and state machine management for Favor Queue.
Handles status transitions, the workflow tag vocabulary and the
creator-initiated tag toggles.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from favorqueue.core.exceptions import InvalidTransitionError


class TicketStatus(str, Enum):
    """Ticket statuses with workflow transitions."""
    PENDING_PAYMENT = "pending_payment"
    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"
    CLOSED = "closed"


class Lane(str, Enum):
    """The two per-creator request lanes."""
    PRIORITY = "priority"
    PERSONAL = "personal"


class TicketTag(str, Enum):
    """Workflow labels stored in a ticket's tag list."""
    CURRENT = "current"
    NEXT_UP = "next-up"
    PENDING = "pending"
    AWAITING_FEEDBACK = "awaiting-feedback"
    FINISHED = "finished"
    REJECTED = "rejected"


class RejectionReason(str, Enum):
    CREATOR_REJECTED = "creator_rejected"
    EXPIRED = "expired"


# Managed exclusively by the tag synchronizer
ENGINE_TAGS = frozenset({
    TicketTag.CURRENT.value,
    TicketTag.NEXT_UP.value,
    TicketTag.PENDING.value,
    TicketTag.AWAITING_FEEDBACK.value,
})

TERMINAL_TAGS = frozenset({TicketTag.FINISHED.value, TicketTag.REJECTED.value})

RESERVED_TAGS = ENGINE_TAGS | TERMINAL_TAGS

TERMINAL_STATUSES = frozenset({TicketStatus.REJECTED, TicketStatus.CLOSED})

# Order in which a label set resolves to a single engine tag.
# awaiting-feedback outranks the recomputed tags; only a manual toggle clears it.
_ENGINE_TAG_PRECEDENCE = (
    TicketTag.AWAITING_FEEDBACK,
    TicketTag.CURRENT,
    TicketTag.NEXT_UP,
    TicketTag.PENDING,
)


@dataclass(frozen=True)
class Active:
    """Ticket is in the working set with one of the engine tags."""
    tag: TicketTag


@dataclass(frozen=True)
class Terminal:
    """Ticket carries a terminal marker and is never retagged."""
    tag: TicketTag


WorkflowState = Union[Active, Terminal]


def engine_tag(tags: Optional[Iterable[str]]) -> Optional[TicketTag]:
    """Resolve a label set to its engine tag, ignoring free-form labels."""
    if not tags:
        return None
    present = set(tags)
    for tag in _ENGINE_TAG_PRECEDENCE:
        if tag.value in present:
            return tag
    return None


def workflow_state(tags: Optional[Iterable[str]]) -> Optional[WorkflowState]:
    """Resolve a label set into exactly one workflow state (or None)."""
    labels = list(tags or [])
    markers = [t for t in labels if t in TERMINAL_TAGS]
    if markers:
        return Terminal(TicketTag(markers[0]))
    found = engine_tag(labels)
    return Active(found) if found else None


def is_awaiting_feedback(tags: Optional[Iterable[str]]) -> bool:
    return workflow_state(tags) == Active(TicketTag.AWAITING_FEEDBACK)


def has_tag(tags: Optional[Iterable[str]], tag: TicketTag) -> bool:
    return tag.value in (tags or [])


def strip_engine_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """Drop every engine tag, keeping all other labels in their order."""
    return [t for t in (tags or []) if t not in ENGINE_TAGS]


def without_tags(tags: Optional[Iterable[str]], *remove: TicketTag) -> List[str]:
    values = {t.value for t in remove}
    return [t for t in (tags or []) if t not in values]


def with_tag(tags: Optional[Iterable[str]], tag: Union[TicketTag, str]) -> List[str]:
    """Append a label once; adding an already present label is a no-op."""
    value = tag.value if isinstance(tag, TicketTag) else tag
    result = list(tags or [])
    if value not in result:
        result.append(value)
    return result


def toggle_feedback_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """
    Flip a ticket between `current` and `awaiting-feedback`.

    Raises:
        InvalidTransitionError: if the ticket holds neither tag
    """
    labels = list(tags or [])
    if TicketTag.AWAITING_FEEDBACK.value in labels:
        return with_tag(without_tags(labels, TicketTag.AWAITING_FEEDBACK), TicketTag.CURRENT)
    if TicketTag.CURRENT.value in labels:
        return with_tag(
            without_tags(labels, TicketTag.CURRENT, TicketTag.NEXT_UP),
            TicketTag.AWAITING_FEEDBACK,
        )
    raise InvalidTransitionError(
        "Ticket is neither current nor awaiting feedback",
        {"tags": labels},
    )


def terminal_tags(tags: Optional[Iterable[str]], marker: TicketTag) -> List[str]:
    """Clear engine tags and add a terminal marker once."""
    return with_tag(strip_engine_tags(tags), marker)


@dataclass
class TicketTransition:
    """Represents a valid ticket status transition."""
    from_status: TicketStatus
    to_status: TicketStatus
    action: str


class TicketWorkflowEngine:
    """Validates ticket status transitions."""

    VALID_TRANSITIONS: List[TicketTransition] = [
        # From PENDING_PAYMENT
        TicketTransition(TicketStatus.PENDING_PAYMENT, TicketStatus.OPEN, action="payment_confirmed"),
        TicketTransition(TicketStatus.PENDING_PAYMENT, TicketStatus.REJECTED, action="expire"),

        # From OPEN
        TicketTransition(TicketStatus.OPEN, TicketStatus.APPROVED, action="approve"),
        TicketTransition(TicketStatus.OPEN, TicketStatus.REJECTED, action="reject"),
        TicketTransition(TicketStatus.OPEN, TicketStatus.REJECTED, action="expire"),

        # From APPROVED
        TicketTransition(TicketStatus.APPROVED, TicketStatus.CLOSED, action="finish"),
    ]

    def __init__(self):
        self._build_transition_map()

    def _build_transition_map(self) -> None:
        """Build a lookup map for valid transitions."""
        self.transition_map: Dict[TicketStatus, List[TicketTransition]] = {}
        for transition in self.VALID_TRANSITIONS:
            self.transition_map.setdefault(transition.from_status, []).append(transition)

    def get_valid_transitions(self, current_status: TicketStatus) -> List[TicketStatus]:
        """Statuses reachable from `current_status` (deduplicated, in table order)."""
        seen: List[TicketStatus] = []
        for transition in self.transition_map.get(TicketStatus(current_status), []):
            if transition.to_status not in seen:
                seen.append(transition.to_status)
        return seen

    def is_terminal(self, status: TicketStatus) -> bool:
        return TicketStatus(status) in TERMINAL_STATUSES

    def validate_transition(
        self,
        current_status: TicketStatus,
        new_status: TicketStatus,
        action: Optional[str] = None,
    ) -> TicketTransition:
        """
        Validate if a status transition is allowed.

        Args:
            current_status: Current ticket status
            new_status: Desired new status
            action: Optional action name narrowing the match (e.g. "expire")

        Returns:
            TicketTransition object if valid

        Raises:
            InvalidTransitionError: If transition is not valid
        """
        current_status = TicketStatus(current_status)
        new_status = TicketStatus(new_status)
        for t in self.transition_map.get(current_status, []):
            if t.to_status == new_status and (action is None or t.action == action):
                return t

        raise InvalidTransitionError(
            f"Invalid transition from '{current_status.value}' to '{new_status.value}'",
            {
                "current_status": current_status.value,
                "new_status": new_status.value,
                "action": action,
                "allowed": [s.value for s in self.get_valid_transitions(current_status)],
            },
        )
