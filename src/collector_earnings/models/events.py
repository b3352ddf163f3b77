"""Collection event models (pickup requests and digital bins)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from collector_earnings.models.base import Base, IdMixin, TimestampMixin


class CollectionEventColumns(IdMixin, TimestampMixin):
    """Columns shared by both event tables.

    A non-null collector_total_payout marks a row whose payout the upstream
    ledger has already settled; the bucket columns are then authoritative.
    """

    collector_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="picked_up")
    fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deadhead_km: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    surge_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(4, 2), nullable=False, default=Decimal("1.0")
    )
    recycler_gross: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    request_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # Authoritative payout breakdown
    collector_core_payout: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    collector_urgent_payout: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    collector_distance_payout: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    collector_surge_payout: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    collector_tips: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    collector_recyclables_payout: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    collector_loyalty_cashback: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    collector_total_payout: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    picked_up_at: Mapped[datetime | None] = mapped_column(nullable=True)
    disposed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rating: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)


class PickupRequest(CollectionEventColumns, Base):
    """Standard on-demand pickup request."""

    __tablename__ = "pickup_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('picked_up', 'disposed')",
            name="pickup_requests_status_check",
        ),
        Index("idx_pickup_requests_collector_status", "collector_id", "status"),
    )


class DigitalBin(CollectionEventColumns, Base):
    """Digital bin collection."""

    __tablename__ = "digital_bins"

    __table_args__ = (
        CheckConstraint(
            "status IN ('picked_up', 'disposed')",
            name="digital_bins_status_check",
        ),
        Index("idx_digital_bins_collector_status", "collector_id", "status"),
    )
