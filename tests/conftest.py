"""Shared test fixtures for the Negotiation Engine test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite)
    - A session factory and a default session
    - An in-memory event publisher that records published events
    - Helpers that drive a negotiation to a given lifecycle stage
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from negotiation_engine.infrastructure.database.engine import (
    build_session_factory,
    create_engine_for_url,
)
from negotiation_engine.infrastructure.database.orm_models import Base
from negotiation_engine.services.negotiation_service import NegotiationService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from negotiation_engine.domain.events import NegotiationDomainEvent
    from negotiation_engine.infrastructure.database.orm_models import Negotiation

BUYER = "buyer-1"
SELLER = "seller-1"
OUTSIDER = "outsider-1"
ADMIN = "admin-1"


class RecordingEventPublisher:
    """Keeps every published event in memory."""

    def __init__(self) -> None:
        self.events: list[NegotiationDomainEvent] = []

    async def publish(self, event: NegotiationDomainEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type.value for event in self.events]


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh schema in a temporary SQLite file."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def service(session, publisher) -> NegotiationService:
    return NegotiationService(session, publisher)


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------


async def open_negotiation(
    service: NegotiationService,
    price: str = "100.00",
    quantity: int = 2,
    premium_tier=None,
    expires_at=None,
) -> Negotiation:
    return await service.open_negotiation(
        listing_id="listing-42",
        buyer_id=BUYER,
        seller_id=SELLER,
        price=Decimal(price),
        quantity=quantity,
        premium_tier=premium_tier,
        expires_at=expires_at,
    )


async def accepted_negotiation(service: NegotiationService, **kwargs) -> Negotiation:
    """Open a negotiation and have the seller accept the buyer's opening offer."""
    negotiation = await open_negotiation(service, **kwargs)
    return await service.accept_offer(negotiation.id, SELLER)


async def funded_negotiation(service: NegotiationService, **kwargs) -> Negotiation:
    negotiation = await accepted_negotiation(service, **kwargs)
    return await service.fund_escrow(
        negotiation.id, BUYER, amount=negotiation.escrow_account.expected_amount
    )
