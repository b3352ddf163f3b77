"""Earnings engine - one collector session.

Wires the split calculator, aggregator, reconciler, offline cache, telemetry
and disbursement orchestrator together. Nothing here is global: construct
one engine per collector session and close it when the session ends.

Control flow for get_earnings():
    cache -> fetch -> calculate -> aggregate -> reconcile -> cache -> return
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

from collector_earnings.cache.manager import OfflineCacheManager
from collector_earnings.cache.storage import MemoryCacheStorage
from collector_earnings.calculators.aggregator import Aggregator
from collector_earnings.calculators.split import SplitCalculator
from collector_earnings.calculators.types import (
    DEFAULT_LOYALTY_TIER,
    EventStatus,
    LoyaltyTier,
    PayoutBreakdown,
    PricingInputs,
)
from collector_earnings.disbursement.orchestrator import DisbursementOrchestrator
from collector_earnings.disbursement.types import CashoutResult, DisbursementRecord
from collector_earnings.engine_config import EngineConfig
from collector_earnings.gateway.base import Destination, PaymentGateway
from collector_earnings.money import ZERO
from collector_earnings.settlement.reconciler import SettlementReconciler
from collector_earnings.snapshot import EarningsSnapshot
from collector_earnings.telemetry.events import CacheOutcome
from collector_earnings.telemetry.recorder import TelemetryRecorder
from collector_earnings.telemetry.summary import TelemetrySummary

if TYPE_CHECKING:
    from collector_earnings.cache.storage import CacheStorage
    from collector_earnings.store.base import RowStore
    from collector_earnings.telemetry.recorder import TelemetrySink

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _sort_key(breakdown: PayoutBreakdown) -> datetime:
    when = breakdown.occurred_at
    if when is None:
        return _EPOCH
    return when if when.tzinfo is not None else when.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class EarningsResult:
    """What get_earnings() hands back to the caller."""

    snapshot: EarningsSnapshot
    transactions: tuple[dict[str, Any], ...]
    from_cache: bool
    freshness: CacheOutcome | None = None  # None when freshly computed


class EarningsEngine:
    """Per-collector earnings and cash-out session."""

    def __init__(
        self,
        collector_id: str,
        store: RowStore,
        gateway: PaymentGateway,
        config: EngineConfig | None = None,
        *,
        cache_storage: CacheStorage | None = None,
        telemetry_sink: TelemetrySink | None = None,
        clock: Callable[[], datetime] | None = None,
        schedule_refresh: Callable[[], None] | None = None,
    ):
        self.collector_id = collector_id
        self.store = store
        self.gateway = gateway
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.calculator = SplitCalculator(self.config.split)
        self.aggregator = Aggregator()
        self.reconciler = SettlementReconciler()
        self.telemetry = TelemetryRecorder(
            self.config.telemetry,
            telemetry_sink,
            collector_id=collector_id,
            clock=self._clock,
        )
        self.cache = OfflineCacheManager(
            cache_storage or MemoryCacheStorage(),
            self.config.cache,
            refresh=self.refresh,
            telemetry=self.telemetry,
            clock=self._clock,
            schedule=schedule_refresh,
        )
        self.orchestrator = DisbursementOrchestrator(
            store,
            gateway,
            calculator=self.calculator,
            reconciler=self.reconciler,
            config=self.config.disbursement,
            currency=self.config.gateway.currency,
            telemetry=self.telemetry,
        )

    async def __aenter__(self) -> EarningsEngine:
        await self.telemetry.load_history()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def get_earnings(
        self,
        *,
        online: bool = True,
        force_refresh: bool = False,
    ) -> EarningsResult | None:
        """Earnings snapshot, from cache when its age allows.

        Returns None only when offline with nothing usable cached.
        """
        if not force_refresh:
            hit = await self.cache.get(online)
            if hit is not None:
                self.telemetry.record_fetch("cache", 0.0, True)
                return EarningsResult(
                    snapshot=hit.snapshot,
                    transactions=hit.transactions,
                    from_cache=True,
                    freshness=hit.freshness,
                )
        if not online:
            logger.info("Offline with no usable cache for %s", self.collector_id)
            return None
        return await self.refresh()

    async def refresh(self) -> EarningsResult:
        """Recompute the snapshot from the row store and cache it."""
        started = time.perf_counter()
        try:
            result, event_count = await self._compute()
        except Exception as e:
            elapsed = (time.perf_counter() - started) * 1000
            self.telemetry.record_fetch("network", elapsed, False)
            self.telemetry.record_error("fetch_earnings", e)
            raise

        elapsed = (time.perf_counter() - started) * 1000
        self.telemetry.record_fetch("network", elapsed, True, event_count)
        return result

    async def request_cashout(self, amount: Decimal, destination: Destination) -> CashoutResult:
        """Cash out; see DisbursementOrchestrator.request_cashout."""
        _, tiers = await self._loyalty()
        try:
            result = await self.orchestrator.request_cashout(
                self.collector_id, amount, destination, loyalty=tiers
            )
        except Exception as e:
            self.telemetry.record_error("request_cashout", e)
            raise
        await self.cache.clear()
        return result

    async def retry_disbursement(self, disbursement_id: str) -> CashoutResult:
        """Retry a failed cash-out; see DisbursementOrchestrator.retry_disbursement."""
        try:
            result = await self.orchestrator.retry_disbursement(
                disbursement_id, collector_id=self.collector_id
            )
        except Exception as e:
            self.telemetry.record_error("retry_disbursement", e)
            raise
        await self.cache.clear()
        return result

    async def refresh_disbursement(self, disbursement_id: str) -> DisbursementRecord:
        return await self.orchestrator.refresh_status(
            disbursement_id, collector_id=self.collector_id
        )

    async def list_disbursements(self, limit: int = 50) -> list[DisbursementRecord]:
        return await self.store.list_disbursements(self.collector_id, limit)

    def estimate(
        self,
        fee: Decimal,
        inputs: PricingInputs,
        deadhead_km: Decimal | None,
    ) -> PayoutBreakdown:
        """Pre-acceptance payout estimate for a job at a given distance."""
        return self.calculator.estimate(fee, inputs, deadhead_km)

    def telemetry_summary(self) -> TelemetrySummary:
        return self.telemetry.summary()

    async def close(self) -> None:
        """Cancel background work and flush telemetry; store and gateway are not owned."""
        await self.cache.close()
        await self.telemetry.flush()

    async def _loyalty(self) -> tuple[LoyaltyTier, list[LoyaltyTier]]:
        """Current month's tier, plus every stored tier and the default template."""
        month = self._clock().date().replace(day=1)
        stored = await self.store.fetch_loyalty_tiers(self.collector_id)
        current = next((t for t in stored if t.month == month), DEFAULT_LOYALTY_TIER)
        return current, [*stored, DEFAULT_LOYALTY_TIER]

    async def _compute(self) -> tuple[EarningsResult, int]:
        now = self._clock()
        events = await self.store.fetch_events(
            self.collector_id, [EventStatus.PICKED_UP, EventStatus.DISPOSED]
        )
        event_ids = [e.event_id for e in events]

        tips: dict[str, Decimal] = {}
        for tip in await self.store.fetch_tips(self.collector_id, event_ids):
            tips[tip.event_id] = tips.get(tip.event_id, ZERO) + tip.amount
        current_tier, tiers = await self._loyalty()

        batch = self.calculator.calculate_batch(events, tips_by_event=tips, loyalty=tiers)
        aggregate = self.aggregator.aggregate(
            batch.breakdowns, now=now, skipped=len(batch.errors)
        )

        payments = await self.store.fetch_payments(self.collector_id, event_ids)
        settlement = self.reconciler.reconcile_with_payments(batch.breakdowns, payments)
        disposed = [b for b in batch.breakdowns if b.status == EventStatus.DISPOSED]
        cashable = self.reconciler.reconcile_with_payments(disposed, payments)
        outstanding = await self.store.outstanding_disbursement_total(self.collector_id)

        snapshot = EarningsSnapshot(
            collector_id=self.collector_id,
            aggregate=aggregate,
            settlement=settlement,
            available_for_cashout=max(ZERO, cashable.available_for_cashout - outstanding),
            loyalty_tier=current_tier.tier,
            created_at=now,
            errors=dict(batch.errors),
        )
        transactions = [b.to_dict() for b in sorted(batch.breakdowns, key=_sort_key)]
        await self.cache.set(snapshot, transactions)

        limit = self.config.cache.history_limit
        return (
            EarningsResult(
                snapshot=snapshot,
                transactions=tuple(transactions[-limit:]) if limit else (),
                from_cache=False,
            ),
            len(events),
        )
