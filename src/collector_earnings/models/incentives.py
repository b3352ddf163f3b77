"""Tip and loyalty tier models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from collector_earnings.models.base import Base, IdMixin, TimestampMixin


class CollectorTip(Base, IdMixin, TimestampMixin):
    """Customer tip attached to a collection event."""

    __tablename__ = "collector_tips"

    collector_id: Mapped[str] = mapped_column(String(36), nullable=False)
    request_id: Mapped[str] = mapped_column(String(36), nullable=False)
    request_type: Mapped[str] = mapped_column(String(50), nullable=False, default="pickup_request")
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="confirmed")
    tip_type: Mapped[str] = mapped_column(String(20), nullable=False, default="post_completion")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_tips_collector", "collector_id", "created_at"),
        Index("idx_tips_request", "request_id"),
    )


class CollectorLoyaltyTier(Base, IdMixin, TimestampMixin):
    """Monthly loyalty tier for a collector."""

    __tablename__ = "collector_loyalty_tiers"

    collector_id: Mapped[str] = mapped_column(String(36), nullable=False)
    month: Mapped[date] = mapped_column(Date, nullable=False)  # first day of month
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="Silver")
    cashback_rate: Mapped[Decimal] = mapped_column(
        Numeric(4, 3), nullable=False, default=Decimal("0.01")
    )
    monthly_cap: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("100")
    )
    cashback_earned: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    total_jobs_this_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("collector_id", "month", name="collector_loyalty_tiers_month_key"),
    )
