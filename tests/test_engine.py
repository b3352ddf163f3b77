"""Tests for EarningsEngine - the per-collector session.

Tests verify:
1. Earnings are computed from the row store and cached
2. Cached snapshots are served by age, online and offline
3. Cash-outs invalidate the cached balance
4. Telemetry records fetches and failures
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from collector_earnings import EarningsEngine
from collector_earnings.calculators.types import PricingInputs
from collector_earnings.engine_config import CacheConfig, EngineConfig
from collector_earnings.errors import InsufficientBalanceError
from collector_earnings.gateway.base import Destination
from collector_earnings.telemetry.events import CacheOutcome, ErrorRecorded, FetchRecorded

COLLECTOR_ID = "collector-1"
NOW = datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)
DESTINATION = Destination(account_number="0241234567", network="mtn")


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FailingStore:
    """Row store whose event query fails."""

    async def fetch_events(self, collector_id, statuses=None):
        raise RuntimeError("database unavailable")


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
async def earnings_engine(store, gateway, clock):
    async with EarningsEngine(COLLECTOR_ID, store, gateway, clock=clock) as engine:
        yield engine


class TestGetEarnings:
    """Test computing and caching earnings."""

    async def test_computes_snapshot(self, earnings_engine, make_event):
        """Disposed and picked-up events are aggregated and reconciled."""
        await make_event(fee="120.00", payout="100.00", payment_mode="momo")
        await make_event(fee="60.00", payout="50.00", status="picked_up")

        result = await earnings_engine.get_earnings()

        snapshot = result.snapshot
        assert result.from_cache is False
        assert result.freshness is None
        assert snapshot.collector_id == COLLECTOR_ID
        assert snapshot.created_at == NOW
        assert snapshot.aggregate.job_count == 2
        assert snapshot.aggregate.total_earnings == Decimal("150.00")
        assert snapshot.aggregate.pending_earnings == Decimal("50.00")
        assert snapshot.settlement.digital_collector_due == Decimal("150.00")
        assert snapshot.available_for_cashout == Decimal("100.00")
        assert snapshot.loyalty_tier == "Silver"
        assert len(result.transactions) == 2

    async def test_cash_commission_netted(self, earnings_engine, make_event):
        """Cash jobs reduce the cashable balance by the platform's share."""
        await make_event(fee="100.00", payout="100.00", payment_mode="momo")
        await make_event(fee="100.00", payout="80.00", payment_mode="cash")

        result = await earnings_engine.get_earnings()

        assert result.snapshot.settlement.cash_platform_due == Decimal("20.00")
        assert result.snapshot.available_for_cashout == Decimal("80.00")

    async def test_second_call_served_from_cache(self, earnings_engine, make_event):
        """A fresh snapshot is reused until it ages out."""
        await make_event(fee="120.00", payout="100.00")
        first = await earnings_engine.get_earnings()
        await make_event(fee="60.00", payout="50.00")

        second = await earnings_engine.get_earnings()

        assert second.from_cache is True
        assert second.freshness == CacheOutcome.FRESH
        assert second.snapshot == first.snapshot
        assert second.transactions == first.transactions

    async def test_force_refresh_bypasses_cache(self, earnings_engine, make_event):
        """force_refresh always recomputes."""
        await make_event(fee="120.00", payout="100.00")
        await earnings_engine.get_earnings()
        await make_event(fee="60.00", payout="50.00")

        result = await earnings_engine.get_earnings(force_refresh=True)

        assert result.from_cache is False
        assert result.snapshot.aggregate.total_earnings == Decimal("150.00")

    async def test_offline_without_cache(self, earnings_engine, make_event):
        """Offline with nothing cached yields None."""
        await make_event(fee="120.00", payout="100.00")

        assert await earnings_engine.get_earnings(online=False) is None

    async def test_offline_serves_stale_cache(self, earnings_engine, make_event, clock):
        """Offline lookups fall back to an older snapshot."""
        await make_event(fee="120.00", payout="100.00")
        await earnings_engine.get_earnings()
        clock.now = NOW + timedelta(hours=2)

        result = await earnings_engine.get_earnings(online=False)

        assert result.from_cache is True
        assert result.freshness == CacheOutcome.STALE
        assert result.snapshot.available_for_cashout == Decimal("100.00")

    async def test_transactions_oldest_first(self, earnings_engine, make_event):
        """Transactions are ordered by pickup time."""
        newer = await make_event(payout="10.00", picked_up_at=NOW - timedelta(hours=1))
        older = await make_event(payout="20.00", picked_up_at=NOW - timedelta(days=2))

        result = await earnings_engine.get_earnings()

        assert [t["event_id"] for t in result.transactions] == [older.id, newer.id]

    async def test_history_limit(self, store, gateway, make_event, clock):
        """Only the newest transactions are returned."""
        await make_event(payout="10.00", picked_up_at=NOW - timedelta(days=2))
        newest = await make_event(payout="20.00", picked_up_at=NOW - timedelta(hours=1))
        config = EngineConfig(cache=CacheConfig(history_limit=1))

        async with EarningsEngine(COLLECTOR_ID, store, gateway, config, clock=clock) as engine:
            result = await engine.get_earnings()

        assert [t["event_id"] for t in result.transactions] == [newest.id]

    async def test_loyalty_tier_applied(self, earnings_engine, make_event, make_loyalty_tier):
        """The current month's tier is reported on the snapshot."""
        await make_loyalty_tier(tier="Gold", cashback_rate="0.02")
        await make_event(fee="120.00", payout="100.00")

        result = await earnings_engine.get_earnings()

        assert result.snapshot.loyalty_tier == "Gold"

    async def test_loyalty_cap_shared_by_all_jobs(
        self, earnings_engine, make_event, make_loyalty_tier
    ):
        """The month's cashback never exceeds what is left of its cap."""
        await make_loyalty_tier(
            tier="Platinum", cashback_rate="0.03", monthly_cap="10", cashback_earned="5"
        )
        for _ in range(6):
            await make_event(fee="100.00")

        result = await earnings_engine.get_earnings()

        cashback = sum(Decimal(t["collector"]["loyalty"]) for t in result.transactions)
        assert cashback == Decimal("5.00")
        assert result.snapshot.loyalty_tier == "Platinum"

    async def test_other_collectors_excluded(self, earnings_engine, make_event):
        """Only the session's collector is aggregated."""
        await make_event(collector_id="collector-2", payout="100.00")

        result = await earnings_engine.get_earnings()

        assert result.snapshot.aggregate.job_count == 0
        assert result.snapshot.available_for_cashout == Decimal("0")


class TestCashouts:
    """Test cash-outs through the engine."""

    async def test_cashout_invalidates_cache(self, earnings_engine, make_event, gateway):
        """The next read recomputes the balance net of the pending cash-out."""
        await make_event(fee="120.00", payout="100.00")
        await earnings_engine.get_earnings()

        result = await earnings_engine.request_cashout(Decimal("40"), DESTINATION)
        earnings = await earnings_engine.get_earnings()

        assert result.success is True
        assert len(gateway.calls) == 1
        assert earnings.from_cache is False
        assert earnings.snapshot.available_for_cashout == Decimal("60.00")

    async def test_list_disbursements(self, earnings_engine, make_event):
        """Cash-outs are listed for the collector."""
        await make_event(fee="120.00", payout="100.00")
        result = await earnings_engine.request_cashout(Decimal("40"), DESTINATION)

        records = await earnings_engine.list_disbursements()

        assert [r.disbursement_id for r in records] == [result.disbursement.disbursement_id]

    async def test_failed_cashout_recorded(self, earnings_engine):
        """Refused cash-outs land in telemetry as errors."""
        with pytest.raises(InsufficientBalanceError):
            await earnings_engine.request_cashout(Decimal("40"), DESTINATION)

        errors = [e for e in earnings_engine.telemetry.events if isinstance(e, ErrorRecorded)]
        assert [e.operation for e in errors] == ["request_cashout"]


class TestTelemetry:
    """Test fetch telemetry."""

    async def test_fetches_recorded(self, earnings_engine, make_event):
        """Database and cache loads are both recorded."""
        await make_event(fee="120.00", payout="100.00")

        await earnings_engine.get_earnings()
        await earnings_engine.get_earnings()

        fetches = [e for e in earnings_engine.telemetry.events if isinstance(e, FetchRecorded)]
        assert [f.source for f in fetches] == ["network", "cache"]
        assert fetches[0].success is True
        assert fetches[0].event_count == 1

        summary = earnings_engine.telemetry_summary()
        assert summary.cache_lookups == 2
        assert summary.cache_hits == 1

    async def test_failed_fetch_recorded(self, gateway, clock):
        """A failing store is recorded and re-raised."""
        engine = EarningsEngine(COLLECTOR_ID, FailingStore(), gateway, clock=clock)

        with pytest.raises(RuntimeError, match="database unavailable"):
            await engine.get_earnings()

        fetches = [e for e in engine.telemetry.events if isinstance(e, FetchRecorded)]
        errors = [e for e in engine.telemetry.events if isinstance(e, ErrorRecorded)]
        assert fetches[0].success is False
        assert errors[0].operation == "fetch_earnings"
        await engine.close()


class TestEstimate:
    """Test pre-acceptance estimates."""

    def test_estimate(self, store, gateway):
        """Estimates are flagged and priced at the given distance."""
        engine = EarningsEngine(COLLECTOR_ID, store, gateway)

        breakdown = engine.estimate(
            Decimal("100"), PricingInputs(recycler_gross=Decimal("50")), Decimal("10")
        )

        assert breakdown.is_estimate is True
        assert breakdown.collector.core == Decimal("91.08")
