"""Pytest fixtures for collector earnings tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from collector_earnings.database import create_all
from collector_earnings.gateway.stub import StubGateway
from collector_earnings.models import (
    BinPayment,
    CollectorLoyaltyTier,
    CollectorTip,
    DigitalBin,
    PickupRequest,
)
from collector_earnings.models.events import CollectionEventColumns
from collector_earnings.store.sql import SqlRowStore

# Use in-memory SQLite for tests (with async support).
# StaticPool keeps the single in-memory database alive across connections.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

COLLECTOR_ID = "collector-1"

# Wednesday, mid-month
NOW = datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)

MakeEvent = Callable[..., Awaitable[CollectionEventColumns]]


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session: AsyncSession) -> SqlRowStore:
    return SqlRowStore(session)


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_event(session: AsyncSession) -> MakeEvent:
    """Factory inserting a collection event plus its customer payment.

    payout: authoritative collector total (marks the row settled); the
            whole amount is booked as core.
    payment_mode: customer payment mode, or None for no payment row.
    """

    async def _make(
        *,
        collector_id: str = COLLECTOR_ID,
        fee: str = "100.00",
        status: str = "disposed",
        payout: str | None = None,
        payment_mode: str | None = "momo",
        digital_bin: bool = False,
        picked_up_at: datetime | None = NOW,
        **columns: Any,
    ) -> CollectionEventColumns:
        model = DigitalBin if digital_bin else PickupRequest
        row = model(
            collector_id=collector_id,
            fee=Decimal(fee),
            status=status,
            picked_up_at=picked_up_at,
            **columns,
        )
        if payout is not None:
            row.collector_core_payout = Decimal(payout)
            row.collector_total_payout = Decimal(payout)
        session.add(row)
        await session.flush()

        if payment_mode is not None:
            session.add(
                BinPayment(
                    event_id=row.id,
                    collector_id=collector_id,
                    type="collection",
                    payment_mode=payment_mode,
                    amount=Decimal(fee),
                    status="success",
                    gateway_reference=f"PAY-{row.id}",
                )
            )
        await session.commit()
        return row

    return _make


@pytest.fixture
def make_tip(session: AsyncSession):
    """Factory inserting a tip for an event."""

    async def _make(
        event_id: str,
        amount: str,
        *,
        collector_id: str = COLLECTOR_ID,
        status: str = "confirmed",
    ) -> CollectorTip:
        tip = CollectorTip(
            collector_id=collector_id,
            request_id=event_id,
            amount=Decimal(amount),
            status=status,
        )
        session.add(tip)
        await session.commit()
        return tip

    return _make


@pytest.fixture
def make_loyalty_tier(session: AsyncSession):
    """Factory inserting a collector's loyalty tier for a month."""

    async def _make(
        *,
        collector_id: str = COLLECTOR_ID,
        month: datetime = NOW,
        tier: str = "Gold",
        cashback_rate: str = "0.02",
        monthly_cap: str = "100",
        cashback_earned: str = "0",
    ) -> CollectorLoyaltyTier:
        row = CollectorLoyaltyTier(
            collector_id=collector_id,
            month=month.date().replace(day=1),
            tier=tier,
            cashback_rate=Decimal(cashback_rate),
            monthly_cap=Decimal(monthly_cap),
            cashback_earned=Decimal(cashback_earned),
        )
        session.add(row)
        await session.commit()
        return row

    return _make
