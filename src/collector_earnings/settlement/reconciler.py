"""Settlement reconciler.

Works out who owes whom given how each event was paid:

- Cash: the collector physically holds the gross bill and owes the platform
  its share of it.
- Digital: the platform holds the gross bill and owes the collector their
  share.

Net settlement = cash platform-due - digital collector-due. Positive means
the collector owes the platform, negative means the platform owes the
collector.

At cash-out time the platform nets its cash receivable against what it owes
through the digital channel before any money moves. Only a residual cash
receivable has to be paid back by the collector.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Sequence

from collector_earnings.calculators.types import PaymentChannel, PayoutBreakdown
from collector_earnings.money import ZERO

# Payment modes written by the customer apps, mapped onto settlement channels
CHANNEL_ALIASES: dict[str, PaymentChannel] = {
    "cash": PaymentChannel.CASH,
    "digital": PaymentChannel.DIGITAL,
    "momo": PaymentChannel.DIGITAL,
    "e_cash": PaymentChannel.DIGITAL,
}


class SettlementDirection(str, Enum):
    """Which party holds the net obligation."""

    COLLECTOR_OWES_PLATFORM = "collector_owes_platform"
    PLATFORM_OWES_COLLECTOR = "platform_owes_collector"
    SETTLED = "settled"


@dataclass(frozen=True)
class PaymentRecord:
    """One payment row tied to a collection event."""

    payment_id: str
    event_id: str
    collector_id: str
    amount: Decimal
    channel: str  # raw payment mode
    type: str = "collection"  # collection | disbursement
    status: str = "success"  # pending | success | failed
    gateway_reference: str | None = None

    @property
    def settlement_channel(self) -> PaymentChannel:
        return CHANNEL_ALIASES.get(self.channel.lower(), PaymentChannel.DIGITAL)


def classify_channel(payments: Iterable[PaymentRecord]) -> PaymentChannel:
    """Channel of an event, from its successful collection payment.

    Events with no successful collection record are treated as digital.
    """
    for payment in payments:
        if payment.type == "collection" and payment.status == "success":
            return payment.settlement_channel
    return PaymentChannel.DIGITAL


def channels_by_event(payments: Iterable[PaymentRecord]) -> dict[str, PaymentChannel]:
    """Group payments by event and classify each event's channel."""
    grouped: dict[str, list[PaymentRecord]] = defaultdict(list)
    for payment in payments:
        grouped[payment.event_id].append(payment)
    return {event_id: classify_channel(rows) for event_id, rows in grouped.items()}


@dataclass(frozen=True)
class SettlementPosition:
    """Net obligation between collector and platform."""

    cash_platform_due: Decimal = ZERO
    digital_collector_due: Decimal = ZERO
    cash_event_count: int = 0
    digital_event_count: int = 0

    @property
    def net_settlement(self) -> Decimal:
        return self.cash_platform_due - self.digital_collector_due

    @property
    def direction(self) -> SettlementDirection:
        if self.net_settlement > 0:
            return SettlementDirection.COLLECTOR_OWES_PLATFORM
        if self.net_settlement < 0:
            return SettlementDirection.PLATFORM_OWES_COLLECTOR
        return SettlementDirection.SETTLED

    @property
    def commission_deducted(self) -> Decimal:
        """Cash receivable the platform nets off its digital payable."""
        return min(self.cash_platform_due, self.digital_collector_due)

    @property
    def net_payout_to_collector(self) -> Decimal:
        return self.digital_collector_due - self.commission_deducted

    @property
    def collector_must_pay_back(self) -> Decimal:
        return self.cash_platform_due - self.commission_deducted

    @property
    def requires_payback(self) -> bool:
        return self.collector_must_pay_back > 0

    @property
    def available_for_cashout(self) -> Decimal:
        return self.net_payout_to_collector

    def to_dict(self) -> dict[str, Any]:
        return {
            "cash_platform_due": str(self.cash_platform_due),
            "digital_collector_due": str(self.digital_collector_due),
            "cash_event_count": self.cash_event_count,
            "digital_event_count": self.digital_event_count,
            "net_settlement": str(self.net_settlement),
            "direction": self.direction.value,
            "commission_deducted": str(self.commission_deducted),
            "net_payout_to_collector": str(self.net_payout_to_collector),
            "collector_must_pay_back": str(self.collector_must_pay_back),
            "requires_payback": self.requires_payback,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SettlementPosition:
        return cls(
            cash_platform_due=Decimal(data["cash_platform_due"]),
            digital_collector_due=Decimal(data["digital_collector_due"]),
            cash_event_count=int(data.get("cash_event_count", 0)),
            digital_event_count=int(data.get("digital_event_count", 0)),
        )


class SettlementReconciler:
    """Sums per-channel obligations over a set of breakdowns."""

    def reconcile(
        self,
        entries: Iterable[tuple[PayoutBreakdown, PaymentChannel]],
    ) -> SettlementPosition:
        """Reconcile (breakdown, channel) pairs into a settlement position."""
        cash_due = digital_due = ZERO
        cash_count = digital_count = 0

        for breakdown, channel in entries:
            if channel == PaymentChannel.CASH:
                cash_due += breakdown.platform_bill_share
                cash_count += 1
            else:
                digital_due += breakdown.collector_total
                digital_count += 1

        return SettlementPosition(
            cash_platform_due=cash_due,
            digital_collector_due=digital_due,
            cash_event_count=cash_count,
            digital_event_count=digital_count,
        )

    def reconcile_with_payments(
        self,
        breakdowns: Sequence[PayoutBreakdown],
        payments: Iterable[PaymentRecord],
    ) -> SettlementPosition:
        """Classify each breakdown's channel from payment rows, then reconcile."""
        channels = channels_by_event(payments)
        return self.reconcile(
            (b, channels.get(b.event_id, PaymentChannel.DIGITAL)) for b in breakdowns
        )
