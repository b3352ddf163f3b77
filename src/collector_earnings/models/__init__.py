"""SQLAlchemy ORM models."""

from collector_earnings.models.base import Base, IdMixin, TimestampMixin
from collector_earnings.models.events import DigitalBin, PickupRequest
from collector_earnings.models.incentives import CollectorLoyaltyTier, CollectorTip
from collector_earnings.models.payments import BinPayment, Withdrawal

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "DigitalBin",
    "PickupRequest",
    "CollectorLoyaltyTier",
    "CollectorTip",
    "BinPayment",
    "Withdrawal",
]
