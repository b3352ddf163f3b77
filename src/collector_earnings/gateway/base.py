"""Base protocol and types for payment gateway adapters.

All gateway adapters must implement the PaymentGateway protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from collector_earnings.errors import InvalidInputError

# Mobile-money network -> gateway rSwitch code
NETWORK_CODES: dict[str, str] = {
    "mtn": "MTN",
    "vodafone": "VODAFONE",
    "airteltigo": "AIRTELTIGO",
}


@dataclass(frozen=True)
class Destination:
    """Mobile-money account a disbursement is paid into."""

    account_number: str
    network: str

    def __post_init__(self) -> None:
        if not self.account_number or not self.account_number.strip():
            raise InvalidInputError("account_number", self.account_number, "missing")
        if not self.network or not self.network.strip():
            raise InvalidInputError("network", self.network, "missing")

    @property
    def network_code(self) -> str:
        """Gateway rSwitch code; unknown networks pass through upper-cased."""
        return NETWORK_CODES.get(self.network.lower(), self.network.upper())

    @property
    def masked_account(self) -> str:
        """Account number safe for logs."""
        return f"{self.account_number[:6]}***"


@dataclass(frozen=True)
class InitiateResult:
    """Result of initiating a collection or disbursement."""

    transaction_id: str | None
    status: str  # raw gateway status: pending/processing/success/failed/...
    message: str = ""
    gateway_reference: str | None = None


@dataclass(frozen=True)
class StatusResult:
    """Result of checking a transaction's status."""

    status: str  # raw gateway status
    message: str = ""
    amount: Decimal | None = None
    completed_at: datetime | None = None
    transaction_id: str | None = None


class PaymentGateway(Protocol):
    """Protocol for payment gateway adapters.

    Amounts are passed in major units and converted to minor units by the
    adapter. Business rejections and exhausted transport retries raise
    GatewayError.
    """

    gateway_name: str

    async def initiate_disbursement(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str = "GHS",
    ) -> InitiateResult:
        """Pay a collector.

        Args:
            reference: Idempotent reference, unique per money movement
            destination: Collector's mobile-money account
            amount: Amount in major units (GHS)
            description: Narrative shown to the payee
            currency: Currency code

        Returns:
            InitiateResult with the gateway transaction id and status.
        """
        ...

    async def initiate_collection(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str = "GHS",
    ) -> InitiateResult:
        """Charge a customer's mobile-money account."""
        ...

    async def check_status(
        self,
        transaction_id: str,
        reference: str,
        *,
        kind: str = "disbursement",
    ) -> StatusResult:
        """Get current status of a transaction.

        Args:
            transaction_id: The id returned from initiate_*
            reference: Original reference
            kind: "disbursement" or "collection"
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
