"""Row store protocol.

The engine never talks to the database directly; it goes through a RowStore.
Mutual exclusion for money movement relies entirely on the store's
conditional updates (update only if the row is still in the expected state).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Protocol, Sequence

from collector_earnings.calculators.types import (
    CollectionEvent,
    EventStatus,
    LoyaltyTier,
    TipRecord,
)
from collector_earnings.disbursement.state_machine import DisbursementStatus
from collector_earnings.disbursement.types import CashoutValidation, DisbursementRecord
from collector_earnings.gateway.base import Destination
from collector_earnings.settlement.reconciler import PaymentRecord


class RowStore(Protocol):
    """Read/write operations the engine issues against durable storage."""

    async def fetch_events(
        self,
        collector_id: str,
        statuses: Iterable[EventStatus] | None = None,
    ) -> list[CollectionEvent]:
        """Events for a collector, optionally restricted to statuses."""
        ...

    async def fetch_tips(
        self,
        collector_id: str,
        event_ids: Sequence[str] | None = None,
    ) -> list[TipRecord]:
        """Confirmed tips for a collector's events."""
        ...

    async def fetch_loyalty_tiers(self, collector_id: str) -> list[LoyaltyTier]:
        """Every monthly loyalty tier assigned to a collector."""
        ...

    async def fetch_payments(
        self,
        collector_id: str,
        event_ids: Sequence[str] | None = None,
    ) -> list[PaymentRecord]:
        """Customer payment rows for a collector's events."""
        ...

    async def validate_cashout(self, collector_id: str, amount: Decimal) -> CashoutValidation:
        """Server-side balance check for a cash-out request."""
        ...

    async def insert_disbursement(
        self,
        collector_id: str,
        amount: Decimal,
        destination: Destination,
    ) -> DisbursementRecord:
        """Create a pending disbursement and return it."""
        ...

    async def get_disbursement(self, disbursement_id: str) -> DisbursementRecord | None:
        ...

    async def list_disbursements(
        self,
        collector_id: str,
        limit: int = 50,
    ) -> list[DisbursementRecord]:
        """Most recent first."""
        ...

    async def outstanding_disbursement_total(self, collector_id: str) -> Decimal:
        """Sum of pending and successful disbursements."""
        ...

    async def update_disbursement(
        self,
        disbursement_id: str,
        *,
        expected_status: DisbursementStatus,
        status: DisbursementStatus,
        gateway_transaction_id: str | None = None,
        gateway_error: str | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> DisbursementRecord | None:
        """Set status only if the row is still in expected_status.

        Returns the updated record, or None when the predicate did not match.
        """
        ...

    async def mark_for_retry(
        self,
        disbursement_id: str,
        max_retries: int,
    ) -> DisbursementRecord | None:
        """failed -> pending with retry_count + 1, only while retries remain.

        Returns the updated record, or None when the predicate did not match.
        """
        ...

    async def update_payment_status(
        self,
        gateway_reference: str,
        status: str,
        *,
        gateway_error: str | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> bool:
        """pending -> status for a customer collection payment.

        Returns False when no pending payment carries the reference.
        """
        ...
