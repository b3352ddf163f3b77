"""Type definitions for collector cash-outs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from collector_earnings.disbursement.state_machine import DisbursementStatus
from collector_earnings.gateway.base import Destination


@dataclass(frozen=True)
class DisbursementRecord:
    """One cash-out attempt as stored in the row store."""

    disbursement_id: str
    collector_id: str
    amount: Decimal
    destination: Destination
    status: DisbursementStatus = DisbursementStatus.PENDING
    retry_count: int = 0
    gateway_transaction_id: str | None = None
    gateway_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def gateway_reference(self) -> str:
        """Idempotency reference for the current attempt."""
        if self.retry_count == 0:
            return self.disbursement_id
        return retry_reference(self.disbursement_id, self.retry_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "disbursement_id": self.disbursement_id,
            "collector_id": self.collector_id,
            "amount": str(self.amount),
            "account_number": self.destination.masked_account,
            "network": self.destination.network_code,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "gateway_transaction_id": self.gateway_transaction_id,
            "gateway_error": self.gateway_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def retry_reference(disbursement_id: str, retry_number: int) -> str:
    return f"{disbursement_id}-retry-{retry_number}"


def strip_retry_suffix(reference: str) -> str:
    """Record id for a gateway reference, retried or not."""
    head, sep, tail = reference.rpartition("-retry-")
    if sep and tail.isdigit():
        return head
    return reference


@dataclass(frozen=True)
class CashoutValidation:
    """Server-side balance check result."""

    valid: bool
    available: Decimal
    error: str | None = None


@dataclass(frozen=True)
class CashoutResult:
    """Outcome of a cash-out or retry.

    Gateway failures are reported here (success=False, error set) rather
    than raised; the record is left in 'failed' and can be retried.
    """

    success: bool
    disbursement: DisbursementRecord
    gateway_status: str | None = None
    message: str = ""
    error: str | None = None
    is_retry: bool = False

    @property
    def status(self) -> DisbursementStatus:
        return self.disbursement.status
