"""
Pydantic schemas for the ticket and queue API endpoints.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from favorqueue.core.ticket_workflow import Lane, TicketStatus, TicketTag


class CreateTicketRequest(BaseModel):
    """Request model for submitting a favor."""

    creator_slug: str = Field(
        ...,
        min_length=1,
        max_length=128,
        pattern=r"^\S+$",
        description="Slug of the creator the favor is addressed to",
        examples=["alice"],
    )
    lane: Lane = Field(..., description="priority (paid) or personal (free)", examples=["priority"])
    title: Optional[str] = Field(None, max_length=200, description="Short favor title")
    message: Optional[str] = Field(None, max_length=5000, description="Favor details")
    tip_cents: int = Field(0, ge=0, description="Tip amount in cents")
    requester_name: Optional[str] = Field(None, max_length=200)
    requester_email: Optional[str] = Field(None, max_length=320)
    awaiting_payment: bool = Field(
        False,
        description="Start in pending_payment until the payment is confirmed",
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "creator_slug": "alice",
                "lane": "priority",
                "title": "Review my demo",
                "message": "Two minutes of feedback please",
                "tip_cents": 1500,
            }
        }
    }


class TicketResponse(BaseModel):
    """A ticket as seen by dashboards and trackers."""

    id: int
    ref: str
    creator_slug: str
    lane: Lane
    status: TicketStatus
    created_at: datetime
    ticket_number: Optional[int] = None
    queue_number: Optional[int] = None
    tags: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    message: Optional[str] = None
    tip_cents: int = 0
    rejection_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OperationResponse(BaseModel):
    """Result of a lifecycle operation."""

    ok: bool
    ref: Optional[str] = None
    status: Optional[TicketStatus] = None
    tags: List[str] = Field(default_factory=list)
    numbered: Optional[bool] = Field(
        None,
        description="Approval only: whether the ticket has its numbers",
    )

    model_config = {"from_attributes": True}


class TagRequest(BaseModel):
    tag: str = Field(..., min_length=1, max_length=64, description="Free-form label")


class TicketPositionResponse(BaseModel):
    ref: str
    lane: Lane
    status: TicketStatus
    ticket_number: Optional[int] = None
    queue_number: Optional[int] = None
    tag: Optional[TicketTag] = None
    active_before_you: Optional[int] = Field(
        None,
        description="Tickets ahead of this one in the serving order",
    )

    model_config = {"from_attributes": True}


class QueueMetricsResponse(BaseModel):
    scope: str
    active_count: int
    current_ticket_number: Optional[int] = None
    next_ticket_number: Optional[int] = None
    eta_mins: Optional[int] = None

    model_config = {"from_attributes": True}


class QueueSnapshotResponse(BaseModel):
    personal: QueueMetricsResponse
    priority: QueueMetricsResponse
    general: QueueMetricsResponse

    model_config = {"from_attributes": True}


class NextNumbersResponse(BaseModel):
    next_ticket_number: int
    next_personal_number: int
    next_priority_number: int


class SyncResponse(BaseModel):
    updated: int
    preserved: int
    unchanged: int

    model_config = {"from_attributes": True}


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: Dict[str, Any] | str
