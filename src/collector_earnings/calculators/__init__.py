"""Payout calculation: per-event split and cross-event aggregation."""

from collector_earnings.calculators.aggregator import Aggregator, ChartPoint, EarningsAggregate
from collector_earnings.calculators.split import SplitCalculator, loyalty_tier_name
from collector_earnings.calculators.types import (
    BUCKETS,
    CalculationBatch,
    CollectionEvent,
    CollectorBuckets,
    DEFAULT_LOYALTY_TIER,
    EventKind,
    EventStatus,
    LoyaltyTier,
    PaymentChannel,
    PayoutBreakdown,
    PlatformBuckets,
    Pricing,
    PricingInputs,
    Settled,
    SettledPayout,
    TipRecord,
    Unsettled,
)

__all__ = [
    "Aggregator",
    "ChartPoint",
    "EarningsAggregate",
    "SplitCalculator",
    "loyalty_tier_name",
    "BUCKETS",
    "CalculationBatch",
    "CollectionEvent",
    "CollectorBuckets",
    "DEFAULT_LOYALTY_TIER",
    "EventKind",
    "EventStatus",
    "LoyaltyTier",
    "PaymentChannel",
    "PayoutBreakdown",
    "PlatformBuckets",
    "Pricing",
    "PricingInputs",
    "Settled",
    "SettledPayout",
    "TipRecord",
    "Unsettled",
]
