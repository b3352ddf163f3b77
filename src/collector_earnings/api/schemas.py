"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Earnings schemas
# ============================================================================


class SettlementResponse(BaseModel):
    """Net position between collector and platform."""

    cash_platform_due: Decimal
    digital_collector_due: Decimal
    net_settlement: Decimal
    direction: str
    commission_deducted: Decimal
    net_payout_to_collector: Decimal
    collector_must_pay_back: Decimal
    requires_payback: bool
    cash_event_count: int
    digital_event_count: int


class EarningsResponse(BaseModel):
    """Earnings snapshot for one collector."""

    collector_id: str
    from_cache: bool
    freshness: str | None = None
    loyalty_tier: str
    computed_at: datetime | None = None
    total_earnings: Decimal
    pending_earnings: Decimal
    disposed_earnings: Decimal
    weekly_earnings: Decimal
    monthly_earnings: Decimal
    job_count: int
    average_per_job: Decimal
    completion_rate: Decimal
    average_rating: Decimal | None = None
    buckets: list[dict[str, Any]]
    chart: dict[str, list[dict[str, Any]]]
    settlement: SettlementResponse
    available_for_cashout: Decimal
    skipped_events: dict[str, str] = Field(default_factory=dict)
    transactions: list[dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Cash-out schemas
# ============================================================================


class CashoutRequest(BaseModel):
    """Schema for requesting a cash-out."""

    amount: Decimal = Field(gt=0)
    account_number: str = Field(min_length=1)
    network: str = Field(min_length=1)


class DisbursementResponse(BaseModel):
    """Schema for a cash-out record."""

    model_config = ConfigDict(from_attributes=True)

    disbursement_id: str
    collector_id: str
    amount: Decimal
    account_number: str
    network: str
    status: str
    retry_count: int
    gateway_transaction_id: str | None = None
    gateway_error: str | None = None
    created_at: datetime | None = None


class CashoutResponse(BaseModel):
    """Outcome of a cash-out or retry."""

    success: bool
    is_retry: bool
    message: str
    error: str | None = None
    gateway_status: str | None = None
    disbursement: DisbursementResponse


class DisbursementListResponse(BaseModel):
    """Schema for a collector's cash-out history."""

    items: list[DisbursementResponse]
    total: int


# ============================================================================
# Webhook schemas
# ============================================================================


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    reference: str
    status: str
    applied: bool


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str | None = None
