"""Split calculator - converts one collection event into a payout breakdown.

Bucket rules (canonical deadhead-share variant, request fee excluded):
- Core: base portion x deadhead share (85% at <=5 km -> 92% at >=10 km,
  87% when distance is unknown)
- Urgent: 75% collector / 25% platform of the embedded 30% loading
- Distance: 100% collector, urgent jobs beyond 5 km only, capped
- Surge: 75% collector / 25% platform of the uplift, capped
- Tips: 100% collector
- Recyclables: 60% collector / 25% customer credit / 15% platform
- Loyalty cashback: rate x fee-derived payout, funded by the platform

Sign conventions: every bucket is non-negative. Complementary platform
shares are computed by subtraction so each bucket splits exactly.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Mapping

from collector_earnings.calculators.types import (
    CalculationBatch,
    CollectionEvent,
    CollectorBuckets,
    LoyaltyTier,
    PayoutBreakdown,
    PlatformBuckets,
    PricingInputs,
    Settled,
    Unsettled,
)
from collector_earnings.engine_config import SplitConfig
from collector_earnings.errors import CalculationOverrunError, InvalidInputError
from collector_earnings.money import ZERO, parse_amount, round_to_cents

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _event_month(event: CollectionEvent) -> date | None:
    when = event.occurred_at
    return when.date().replace(day=1) if when is not None else None


def _spend_order(event: CollectionEvent) -> tuple[datetime, str]:
    when = event.occurred_at
    if when is None:
        when = _EPOCH
    elif when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when, event.event_id


def _tiers_by_month(
    loyalty: LoyaltyTier | Iterable[LoyaltyTier] | None,
) -> dict[date | None, LoyaltyTier]:
    if loyalty is None:
        return {}
    if isinstance(loyalty, LoyaltyTier):
        loyalty = [loyalty]
    return {tier.month.replace(day=1) if tier.month else None: tier for tier in loyalty}


def loyalty_tier_name(cashback_rate: Decimal) -> str:
    """Tier name for a cashback rate (1% Silver, 2% Gold, 3% Platinum)."""
    if cashback_rate >= Decimal("0.03"):
        return "Platinum"
    if cashback_rate >= Decimal("0.02"):
        return "Gold"
    return "Silver"


class SplitCalculator:
    """Pure payout calculator.

    Settled events pass through untouched. Unsettled events are split from
    their raw inputs. The calculator never touches I/O.
    """

    def __init__(self, config: SplitConfig | None = None):
        self.config = config or SplitConfig()

    def deadhead_share(self, deadhead_km: Decimal | None) -> Decimal:
        """Collector's cut of the base portion for a deadhead distance."""
        cfg = self.config
        if deadhead_km is None or deadhead_km == 0:
            return cfg.default_deadhead_share
        if deadhead_km <= cfg.free_distance_km:
            return cfg.min_deadhead_share
        if deadhead_km >= cfg.max_distance_km:
            return cfg.max_deadhead_share

        span = cfg.max_distance_km - cfg.free_distance_km
        t = (deadhead_km - cfg.free_distance_km) / span
        share = cfg.min_deadhead_share + t * (cfg.max_deadhead_share - cfg.min_deadhead_share)
        return share.quantize(Decimal("0.0001"))

    def billable_distance(self, urgent: bool, deadhead_km: Decimal | None) -> Decimal:
        """Kilometres billed for the distance bonus (at most 5)."""
        cfg = self.config
        if not urgent or deadhead_km is None or deadhead_km <= cfg.free_distance_km:
            return ZERO
        return min(deadhead_km, cfg.max_distance_km) - cfg.free_distance_km

    def calculate(
        self,
        event: CollectionEvent,
        *,
        tips: Decimal = ZERO,
        loyalty: LoyaltyTier | None = None,
    ) -> PayoutBreakdown:
        """Split a single event.

        Args:
            event: The collection event
            tips: Confirmed tips for this event
            loyalty: Collector's tier for the event's month, if any

        Returns:
            PayoutBreakdown for collector and platform

        Raises:
            InvalidInputError: negative or malformed inputs
            CalculationOverrunError: only when the config is strict
        """
        fee = parse_amount(event.fee, "fee")

        if isinstance(event.pricing, Settled):
            return self._pass_through(event, fee)
        if isinstance(event.pricing, Unsettled):
            return self._split(event, fee, event.pricing.inputs, tips=tips, loyalty=loyalty)
        raise InvalidInputError("pricing", event.pricing, "unknown pricing variant")

    def calculate_batch(
        self,
        events: Iterable[CollectionEvent],
        *,
        tips_by_event: Mapping[str, Decimal] | None = None,
        loyalty: LoyaltyTier | Iterable[LoyaltyTier] | None = None,
    ) -> CalculationBatch:
        """Split many events; a bad event is recorded, not fatal.

        Loyalty cashback draws down the remaining monthly cap of the tier for
        each event's month, oldest event first (ties by event id). A tier
        without a month is a template: every month with no tier of its own
        gets a fresh copy. Breakdowns come back in input order.
        """
        batch = CalculationBatch()
        tips_by_event = tips_by_event or {}
        events = list(events)
        tiers = _tiers_by_month(loyalty)
        template = tiers.pop(None, None)

        results: dict[int, PayoutBreakdown] = {}
        for index in sorted(range(len(events)), key=lambda i: _spend_order(events[i])):
            event = events[index]
            month = _event_month(event)
            tier = tiers.get(month)
            if tier is None and template is not None:
                tier = replace(template, month=month)
            try:
                breakdown = self.calculate(
                    event,
                    tips=tips_by_event.get(event.event_id, ZERO),
                    loyalty=tier,
                )
            except InvalidInputError as e:
                logger.warning("Skipping event %s: %s", event.event_id, e)
                batch.errors[event.event_id] = str(e)
                continue
            if tier is not None:
                tiers[month] = replace(
                    tier, cashback_earned=tier.cashback_earned + breakdown.collector.loyalty
                )
            results[index] = breakdown

        batch.breakdowns.extend(results[i] for i in sorted(results))
        return batch

    def estimate(
        self,
        fee: Decimal,
        inputs: PricingInputs,
        deadhead_km: Decimal | None,
    ) -> PayoutBreakdown:
        """Pre-acceptance estimate for a collector at a given distance.

        Tips, recyclables and loyalty are unknown until completion and are
        left out.
        """
        event = CollectionEvent(
            event_id="estimate",
            collector_id="",
            fee=fee,
            pricing=Unsettled(replace(inputs, deadhead_km=deadhead_km, recycler_gross=ZERO)),
        )
        breakdown = self.calculate(event)
        return replace(breakdown, is_estimate=True)

    def _pass_through(self, event: CollectionEvent, fee: Decimal) -> PayoutBreakdown:
        """Copy authoritative payout fields through unchanged."""
        payout = event.pricing.payout  # type: ignore[union-attr]
        collector = CollectorBuckets(
            core=payout.core,
            urgent=payout.urgent,
            distance=payout.distance,
            surge=payout.surge,
            tips=payout.tips,
            recyclables=payout.recyclables,
            loyalty=payout.loyalty,
        )
        collector_total = payout.total if payout.total is not None else collector.total
        # Upstream keeps the platform split; whatever the collector did not get
        # from the bill is attributed to the platform.
        platform = PlatformBuckets(core=max(ZERO, fee - collector.fee_derived))

        return PayoutBreakdown(
            event_id=event.event_id,
            gross=fee,
            shareable=fee,
            collector=collector,
            platform=platform,
            collector_total=collector_total,
            platform_total=platform.total,
            settled=True,
            status=event.status,
            occurred_at=event.occurred_at,
            rating=event.rating,
        )

    def _split(
        self,
        event: CollectionEvent,
        fee: Decimal,
        inputs: PricingInputs,
        *,
        tips: Decimal,
        loyalty: LoyaltyTier | None,
    ) -> PayoutBreakdown:
        cfg = self.config

        deadhead_km = (
            parse_amount(inputs.deadhead_km, "deadhead_km")
            if inputs.deadhead_km is not None
            else None
        )
        surge_multiplier = parse_amount(
            inputs.surge_multiplier, "surge_multiplier", default=Decimal("1.0")
        )
        if surge_multiplier < 1:
            raise InvalidInputError("surge_multiplier", inputs.surge_multiplier, "below 1.0")
        recycler_gross = parse_amount(inputs.recycler_gross, "recycler_gross", default=ZERO)
        tips = parse_amount(tips, "tips", default=ZERO)
        request_fee = min(
            parse_amount(inputs.request_fee, "request_fee", default=cfg.request_fee),
            fee,
        )

        # 1. Shareable pool
        share = self.deadhead_share(deadhead_km)
        shareable = fee - request_fee

        # 2. Urgent bills already embed the loading: decompose, never re-add
        if inputs.urgent and shareable > 0:
            base = round_to_cents(shareable / (1 + cfg.urgent_loading))
            urgent_portion = shareable - base
        else:
            base = shareable
            urgent_portion = ZERO

        # 3. Core
        collector_core = round_to_cents(base * share)
        platform_core = base - collector_core

        # 4. Urgent split
        collector_urgent = round_to_cents(urgent_portion * cfg.urgent_collector_share)
        platform_urgent = urgent_portion - collector_urgent

        # 5. Distance bonus (100% collector)
        collector_distance = ZERO
        billed_km = self.billable_distance(inputs.urgent, deadhead_km)
        if billed_km > 0:
            collector_distance = min(
                round_to_cents(billed_km * cfg.distance_rate * base),
                round_to_cents(shareable * cfg.distance_cap_ratio),
            )

        # 6. Surge uplift
        surge_uplift = min(
            round_to_cents((surge_multiplier - 1) * (base + urgent_portion)),
            round_to_cents(fee * cfg.surge_cap_ratio),
        )
        collector_surge = round_to_cents(surge_uplift * cfg.surge_collector_share)
        platform_surge = surge_uplift - collector_surge

        # 7. Collector draw from the bill must fit the shareable pool
        drawn = collector_core + collector_urgent + collector_distance + collector_surge
        overrun = ZERO
        if drawn > shareable:
            error = CalculationOverrunError(
                event_id=event.event_id,
                collector_amount=drawn,
                shareable=shareable,
                inputs={
                    "fee": str(fee),
                    "request_fee": str(request_fee),
                    "urgent": inputs.urgent,
                    "deadhead_km": str(deadhead_km) if deadhead_km is not None else None,
                    "surge_multiplier": str(surge_multiplier),
                    "core": str(collector_core),
                    "urgent_payout": str(collector_urgent),
                    "distance_payout": str(collector_distance),
                    "surge_payout": str(collector_surge),
                },
            )
            if cfg.strict:
                raise error
            logger.warning("%s; clamping. inputs=%s", error, error.inputs)
            overrun = error.excess
            collector_surge, collector_distance = self._clamp(
                overrun, collector_surge, collector_distance
            )

        fee_derived = collector_core + collector_urgent + collector_distance + collector_surge

        # 8. External sources, uncapped by the bill
        collector_recyclables = round_to_cents(recycler_gross * cfg.recyclables_collector_share)
        customer_recyclables = round_to_cents(recycler_gross * cfg.recyclables_customer_share)
        platform_recyclables = recycler_gross - collector_recyclables - customer_recyclables

        loyalty_cashback = ZERO
        if loyalty is not None and loyalty.cashback_rate > 0:
            loyalty_cashback = min(
                round_to_cents(fee_derived * loyalty.cashback_rate),
                loyalty.remaining,
            )

        collector = CollectorBuckets(
            core=collector_core,
            urgent=collector_urgent,
            distance=collector_distance,
            surge=collector_surge,
            tips=tips,
            recyclables=collector_recyclables,
            loyalty=loyalty_cashback,
        )
        platform = PlatformBuckets(
            request_fee=request_fee,
            core=platform_core,
            urgent=platform_urgent,
            surge=platform_surge,
            recyclables=platform_recyclables,
        )

        return PayoutBreakdown(
            event_id=event.event_id,
            gross=fee,
            shareable=shareable,
            collector=collector,
            platform=platform,
            collector_total=collector.total,
            platform_total=platform.total,
            customer_recyclables_credit=customer_recyclables,
            deadhead_share=share,
            base_portion=base,
            urgent_portion=urgent_portion,
            surge_uplift=surge_uplift,
            overrun=overrun,
            status=event.status,
            occurred_at=event.occurred_at,
            rating=event.rating,
        )

    @staticmethod
    def _clamp(
        excess: Decimal,
        surge: Decimal,
        distance: Decimal,
    ) -> tuple[Decimal, Decimal]:
        """Trim surge first, then distance, until the excess is gone.

        Core and urgent can never exceed the pool on their own, so these two
        buckets always absorb the excess.
        """
        cut = min(excess, surge)
        surge -= cut
        excess -= cut
        cut = min(excess, distance)
        distance -= cut
        return surge, distance
