"""
Test configuration and fixtures for the Favor Queue test suite.
Provides database setup, an API client and common test utilities.
"""

from datetime import datetime, timedelta
from typing import AsyncGenerator, Iterable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from favorqueue.main import app
from favorqueue.db.base import Base
from favorqueue.db.models import Ticket
from favorqueue.db.session import get_db
from favorqueue.services.ticket import TicketService

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh in-memory database."""
    # One engine per test: the in-memory database lives on its single pooled connection
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    TestSessionLocal = async_sessionmaker(
        autoflush=False,
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Create all tables
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Create session
    async with TestSessionLocal() as session:
        yield session

    # Drop all tables after test
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_ticket_data():
    """Sample favor submission payload."""
    return {
        "creator_slug": "alice",
        "lane": "priority",
        "title": "Review my demo",
        "message": "Two minutes of feedback please",
        "tip_cents": 1500,
    }


class TestDataFactory:
    """Factory class for creating test data."""

    @staticmethod
    def at(minutes: int) -> datetime:
        """Deterministic submission time `minutes` after the base time."""
        return BASE_TIME + timedelta(minutes=minutes)

    @staticmethod
    async def create_ticket(
        session: AsyncSession,
        creator_slug: str = "alice",
        lane: str = "priority",
        minute: int = 0,
        title: Optional[str] = None,
        awaiting_payment: bool = False,
    ) -> Ticket:
        """Submit a ticket at a fixed offset from the base time."""
        return await TicketService().create(
            session=session,
            creator_slug=creator_slug,
            lane=lane,
            title=title,
            awaiting_payment=awaiting_payment,
            created_at=TestDataFactory.at(minute),
        )

    @staticmethod
    async def create_approved(
        session: AsyncSession,
        lanes: Iterable[str],
        creator_slug: str = "alice",
    ) -> list[Ticket]:
        """Submit and approve one ticket per lane entry, one minute apart."""
        svc = TicketService()
        tickets = []
        for minute, lane in enumerate(lanes):
            ticket = await TestDataFactory.create_ticket(session, creator_slug, lane, minute=minute)
            await svc.approve(session, ticket.ref)
            tickets.append(ticket)
        return tickets


@pytest.fixture
def test_factory():
    """Provide access to test data factory."""
    return TestDataFactory
