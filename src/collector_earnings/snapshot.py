"""Earnings snapshot - the cached output of one earnings computation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from collector_earnings.calculators.aggregator import EarningsAggregate
from collector_earnings.money import ZERO
from collector_earnings.settlement.reconciler import SettlementPosition


@dataclass(frozen=True)
class EarningsSnapshot:
    """Aggregate plus settlement for one collector at a point in time.

    Snapshots are replaced, never mutated.
    """

    collector_id: str
    aggregate: EarningsAggregate
    settlement: SettlementPosition  # all events
    available_for_cashout: Decimal = ZERO  # disposed events, net of outstanding cash-outs
    loyalty_tier: str = "Silver"
    created_at: datetime | None = None
    errors: dict[str, str] = field(default_factory=dict)  # event_id -> skipped reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "collector_id": self.collector_id,
            "aggregate": self.aggregate.to_dict(),
            "settlement": self.settlement.to_dict(),
            "available_for_cashout": str(self.available_for_cashout),
            "loyalty_tier": self.loyalty_tier,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "errors": dict(self.errors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EarningsSnapshot:
        created_at = data.get("created_at")
        return cls(
            collector_id=data["collector_id"],
            aggregate=EarningsAggregate.from_dict(data["aggregate"]),
            settlement=SettlementPosition.from_dict(data["settlement"]),
            available_for_cashout=Decimal(data["available_for_cashout"]),
            loyalty_tier=data.get("loyalty_tier", "Silver"),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
            errors=dict(data.get("errors", {})),
        )
