# favorqueue/db/models.py
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from favorqueue.db.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so we never store it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Ticket(Base):
    __tablename__ = "ticket"
    __table_args__ = (
        UniqueConstraint("creator_slug", "ticket_number", name="uq_ticket_creator_ticket_number"),
        UniqueConstraint("creator_slug", "lane", "queue_number", name="uq_ticket_creator_lane_queue_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True, index=True)
    ref: Mapped[str] = mapped_column(String(128), nullable=False, unique=True, index=True)
    creator_slug: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    lane: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    ticket_number: Mapped[int | None] = mapped_column(Integer)
    queue_number: Mapped[int | None] = mapped_column(Integer)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    title: Mapped[str | None] = mapped_column(Text)
    message: Mapped[str | None] = mapped_column(Text)
    tip_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requester_name: Mapped[str | None] = mapped_column(Text)
    requester_email: Mapped[str | None] = mapped_column(Text)

    rejection_reason: Mapped[str | None] = mapped_column(String(32))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)


class TicketCounter(Base):
    __tablename__ = "ticket_counter"
    __table_args__ = (
        UniqueConstraint("creator_slug", name="uq_ticket_counter_creator"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True, index=True)
    creator_slug: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    next_ticket_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    next_personal_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    next_priority_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
