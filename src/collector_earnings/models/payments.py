"""Payment and disbursement models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, CheckConstraint, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from collector_earnings.models.base import Base, IdMixin, TimestampMixin


class BinPayment(Base, IdMixin, TimestampMixin):
    """Customer payment for a collection event.

    payment_mode is the raw mode recorded by the customer app (cash, momo,
    e_cash, digital); the reconciler folds it into cash or digital.
    """

    __tablename__ = "bin_payments"

    event_id: Mapped[str] = mapped_column(String(36), nullable=False)
    collector_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="collection")
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    gateway_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_gateway_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "type IN ('collection', 'disbursement')",
            name="bin_payments_type_check",
        ),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="bin_payments_status_check",
        ),
        Index("idx_bin_payments_collector", "collector_id"),
        Index("idx_bin_payments_event", "event_id"),
    )


class Withdrawal(Base, IdMixin, TimestampMixin):
    """Collector cash-out (disbursement) attempt.

    The row id is the gateway idempotency reference; retries reuse the row
    and suffix the reference with the retry number.
    """

    __tablename__ = "withdrawals"

    collector_id: Mapped[str] = mapped_column(String(36), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    network: Mapped[str] = mapped_column(String(20), nullable=False)
    gateway_transaction_id: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    gateway_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="withdrawals_amount_check"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="withdrawals_status_check",
        ),
        CheckConstraint("retry_count >= 0", name="withdrawals_retry_count_check"),
        Index("idx_withdrawals_collector_status", "collector_id", "status"),
    )
