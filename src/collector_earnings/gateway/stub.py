"""Stub gateway for local development and testing.

Replace with TrendiPayGateway (or another adapter) for production.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from collector_earnings.errors import GatewayError, InvalidInputError
from collector_earnings.gateway.base import Destination, InitiateResult, StatusResult
from collector_earnings.money import to_minor_units


class StubGateway:
    """In-memory gateway.

    Records every call, returns deterministic transaction ids and can be told
    to reject upcoming requests.
    """

    gateway_name = "stub"

    def __init__(self, auto_complete: bool = False):
        """Initialize stub gateway.

        Args:
            auto_complete: If True, initiations immediately report success.
                           If False, they stay 'processing' until completed
                           with simulate_status().
        """
        self.auto_complete = auto_complete
        # In-memory tracking for stub
        self._transactions: dict[str, dict[str, Any]] = {}
        self._failures: list[GatewayError] = []
        self.calls: list[dict[str, Any]] = []

    def fail_next(self, message: str = "Insufficient float", *, transient: bool = False) -> None:
        """Reject the next initiation with a GatewayError."""
        self._failures.append(GatewayError(message, transient=transient))

    async def initiate_disbursement(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str = "GHS",
    ) -> InitiateResult:
        """Submit a disbursement (stub implementation)."""
        return self._initiate("disbursement", reference, destination, amount, description, currency)

    async def initiate_collection(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str = "GHS",
    ) -> InitiateResult:
        """Submit a collection (stub implementation)."""
        return self._initiate("collection", reference, destination, amount, description, currency)

    async def check_status(
        self,
        transaction_id: str,
        reference: str,
        *,
        kind: str = "disbursement",
    ) -> StatusResult:
        """Get status of a submitted transaction."""
        record = self._transactions.get(transaction_id)
        if record is None:
            raise GatewayError(f"Transaction {transaction_id} not found", status_code=404)
        return StatusResult(
            status=record["status"],
            message="Stub status",
            amount=record["amount"],
            completed_at=record.get("completed_at"),
            transaction_id=transaction_id,
        )

    async def aclose(self) -> None:
        return None

    def simulate_status(self, transaction_id: str, status: str) -> None:
        """Move a transaction to a new gateway status (for testing)."""
        if transaction_id in self._transactions:
            record = self._transactions[transaction_id]
            record["status"] = status
            if status in ("success", "failed"):
                record["completed_at"] = datetime.now(timezone.utc)

    def transaction_for(self, reference: str) -> str | None:
        """Transaction id issued for a reference, if any."""
        for transaction_id, record in self._transactions.items():
            if record["reference"] == reference:
                return transaction_id
        return None

    def _initiate(
        self,
        kind: str,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str,
    ) -> InitiateResult:
        self.calls.append(
            {
                "kind": kind,
                "reference": reference,
                "account_number": destination.account_number,
                "network": destination.network_code,
                "amount": amount,
                "description": description,
                "currency": currency,
            }
        )
        if to_minor_units(amount) < 100:
            raise InvalidInputError("amount", amount, "must be at least 1.00 (100 minor units)")
        if self._failures:
            raise self._failures.pop(0)

        transaction_id = f"STUB-{uuid.uuid4().hex[:12].upper()}"
        status = "success" if self.auto_complete else "processing"
        self._transactions[transaction_id] = {
            "kind": kind,
            "reference": reference,
            "amount": amount,
            "status": status,
            "completed_at": datetime.now(timezone.utc) if self.auto_complete else None,
        }
        return InitiateResult(
            transaction_id=transaction_id,
            status=status,
            message="Stub accepted",
            gateway_reference=transaction_id,
        )
