"""Type definitions for the payout calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from collector_earnings.money import ZERO


class EventKind(str, Enum):
    """Collection event variants."""

    PICKUP_REQUEST = "pickup_request"
    DIGITAL_BIN = "digital_bin"


class EventStatus(str, Enum):
    """Collection event lifecycle statuses the engine reads."""

    PICKED_UP = "picked_up"  # collected, pending disposal
    DISPOSED = "disposed"  # finalized, cashable


class PaymentChannel(str, Enum):
    """Who physically received the customer's money."""

    CASH = "cash"
    DIGITAL = "digital"


BUCKETS = ("core", "urgent", "distance", "surge", "tips", "recyclables", "loyalty")


@dataclass(frozen=True)
class SettledPayout:
    """Authoritative collector payouts already computed by the upstream ledger."""

    core: Decimal = ZERO
    urgent: Decimal = ZERO
    distance: Decimal = ZERO
    surge: Decimal = ZERO
    tips: Decimal = ZERO
    recyclables: Decimal = ZERO
    loyalty: Decimal = ZERO
    total: Decimal | None = None  # None = sum of buckets


@dataclass(frozen=True)
class PricingInputs:
    """Raw monetary inputs for an event the calculator must split."""

    urgent: bool = False
    deadhead_km: Decimal | None = None
    surge_multiplier: Decimal = Decimal("1.0")
    recycler_gross: Decimal = ZERO
    request_fee: Decimal | None = None  # None = configured default


@dataclass(frozen=True)
class Settled:
    """Pricing variant carrying an authoritative payout."""

    payout: SettledPayout


@dataclass(frozen=True)
class Unsettled:
    """Pricing variant carrying raw inputs."""

    inputs: PricingInputs


Pricing = Union[Settled, Unsettled]


@dataclass(frozen=True)
class CollectionEvent:
    """One paid pickup (standard request or digital bin)."""

    event_id: str
    collector_id: str
    fee: Decimal  # gross bill paid by the customer
    pricing: Pricing
    status: EventStatus = EventStatus.PICKED_UP
    kind: EventKind = EventKind.PICKUP_REQUEST
    picked_up_at: datetime | None = None
    disposed_at: datetime | None = None
    rating: Decimal | None = None

    @property
    def occurred_at(self) -> datetime | None:
        """Timestamp used for time bucketing (pickup time)."""
        return self.picked_up_at or self.disposed_at

    @property
    def is_disposed(self) -> bool:
        return self.status == EventStatus.DISPOSED


@dataclass(frozen=True)
class TipRecord:
    """A customer tip attached to an event."""

    event_id: str
    amount: Decimal
    status: str = "confirmed"
    tip_type: str = "post_completion"

    @property
    def is_confirmed(self) -> bool:
        return self.status == "confirmed"


@dataclass(frozen=True)
class LoyaltyTier:
    """Monthly loyalty tier with cashback rate and cap."""

    tier: str = "Silver"
    cashback_rate: Decimal = Decimal("0.01")
    monthly_cap: Decimal = Decimal("100")
    cashback_earned: Decimal = ZERO
    month: date | None = None

    @property
    def remaining(self) -> Decimal:
        """Cashback still payable this month."""
        return max(ZERO, self.monthly_cap - self.cashback_earned)


DEFAULT_LOYALTY_TIER = LoyaltyTier()


@dataclass(frozen=True)
class CollectorBuckets:
    """Collector side of a payout, one amount per bucket."""

    core: Decimal = ZERO
    urgent: Decimal = ZERO
    distance: Decimal = ZERO
    surge: Decimal = ZERO
    tips: Decimal = ZERO
    recyclables: Decimal = ZERO
    loyalty: Decimal = ZERO

    @property
    def fee_derived(self) -> Decimal:
        """Portion drawn from the customer's bill."""
        return self.core + self.urgent + self.distance + self.surge

    @property
    def total(self) -> Decimal:
        return self.fee_derived + self.tips + self.recyclables + self.loyalty

    def as_dict(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in BUCKETS}


@dataclass(frozen=True)
class PlatformBuckets:
    """Platform side of a payout."""

    request_fee: Decimal = ZERO
    core: Decimal = ZERO
    urgent: Decimal = ZERO
    surge: Decimal = ZERO
    recyclables: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.request_fee + self.core + self.urgent + self.surge + self.recyclables

    @property
    def bill_share(self) -> Decimal:
        """Platform's share of the customer's bill (excludes recyclables)."""
        return self.request_fee + self.core + self.urgent + self.surge


@dataclass(frozen=True)
class PayoutBreakdown:
    """Split of one event between collector and platform."""

    event_id: str
    gross: Decimal
    shareable: Decimal
    collector: CollectorBuckets
    platform: PlatformBuckets
    collector_total: Decimal
    platform_total: Decimal
    customer_recyclables_credit: Decimal = ZERO
    deadhead_share: Decimal | None = None
    base_portion: Decimal = ZERO
    urgent_portion: Decimal = ZERO
    surge_uplift: Decimal = ZERO
    overrun: Decimal = ZERO  # amount clamped off the collector side
    settled: bool = False
    is_estimate: bool = False
    status: EventStatus = EventStatus.PICKED_UP
    occurred_at: datetime | None = None
    rating: Decimal | None = None

    @property
    def platform_bill_share(self) -> Decimal:
        """What the platform keeps out of the customer's payment."""
        return self.platform.bill_share

    @property
    def collector_bill_share(self) -> Decimal:
        """What the collector keeps out of the customer's payment."""
        return self.collector.fee_derived

    def to_dict(self) -> dict[str, Any]:
        """Serialize for caching and API responses."""
        return {
            "event_id": self.event_id,
            "gross": str(self.gross),
            "shareable": str(self.shareable),
            "collector": {k: str(v) for k, v in self.collector.as_dict().items()},
            "platform": {
                "request_fee": str(self.platform.request_fee),
                "core": str(self.platform.core),
                "urgent": str(self.platform.urgent),
                "surge": str(self.platform.surge),
                "recyclables": str(self.platform.recyclables),
            },
            "collector_total": str(self.collector_total),
            "platform_total": str(self.platform_total),
            "customer_recyclables_credit": str(self.customer_recyclables_credit),
            "deadhead_share": str(self.deadhead_share) if self.deadhead_share is not None else None,
            "overrun": str(self.overrun),
            "settled": self.settled,
            "status": self.status.value,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
        }


@dataclass
class CalculationBatch:
    """Breakdowns for a set of events plus per-event failures."""

    breakdowns: list[PayoutBreakdown] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)  # event_id -> message

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0
