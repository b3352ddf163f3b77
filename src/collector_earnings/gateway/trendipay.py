"""TrendiPay gateway adapter.

Mobile-money collections (customer pays the platform) and disbursements
(platform pays a collector) over the TrendiPay terminal API.

Wire format:
- Amounts in pesewas (integer), minimum 100
- Network as rSwitch code (MTN, VODAFONE, AIRTELTIGO)
- Bearer auth plus X-Merchant-ID header

Only transport failures (connect errors, timeouts) are retried, with a fixed
delay and a bounded number of attempts. HTTP error responses are business
rejections and are never retried.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx

from collector_earnings.engine_config import GatewayConfig
from collector_earnings.errors import GatewayError, InvalidInputError
from collector_earnings.gateway.base import Destination, InitiateResult, StatusResult
from collector_earnings.money import from_minor_units, to_minor_units

logger = logging.getLogger(__name__)

MINIMUM_MINOR_UNITS = 100


class TrendiPayGateway:
    """PaymentGateway implementation for TrendiPay."""

    gateway_name = "trendipay"

    def __init__(
        self,
        config: GatewayConfig,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the adapter.

        Args:
            config: Gateway credentials and retry policy
            client: Optional pre-built client (tests pass one with a
                    MockTransport). Owned by the caller when given.
        """
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def _terminal_path(self) -> str:
        return f"/v1/terminals/{self.config.terminal_id}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Merchant-ID": self.config.merchant_id,
        }

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request, retrying transport failures only."""
        attempt = 0
        while True:
            try:
                logger.info("TrendiPay request: %s %s", method, path)
                response = await self._client.request(
                    method,
                    f"{self.config.api_url}{path}",
                    json=body,
                    headers=self._headers(),
                    timeout=self.config.timeout_seconds,
                )
            except httpx.TransportError as e:
                if attempt < self.config.retry_attempts:
                    attempt += 1
                    logger.warning(
                        "Retrying TrendiPay request (%d/%d) after %s",
                        attempt,
                        self.config.retry_attempts,
                        type(e).__name__,
                    )
                    await asyncio.sleep(self.config.retry_delay_seconds)
                    continue
                raise GatewayError(
                    f"Gateway unreachable: {e}", transient=True
                ) from e

            try:
                data = response.json()
            except ValueError:
                data = {}
            logger.info("TrendiPay response: %s", response.status_code)

            if not isinstance(data, dict):
                if not response.is_error:
                    raise GatewayError(
                        f"Unexpected response body ({type(data).__name__})",
                        status_code=response.status_code,
                        payload={},
                    )
                data = {}

            if response.is_error:
                raise GatewayError(
                    data.get("message") or f"API error: {response.status_code}",
                    status_code=response.status_code,
                    payload=data,
                )
            return data

    def _payload(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str,
        *,
        callback_path: str,
        transaction_type: str,
    ) -> dict[str, Any]:
        if not reference:
            raise InvalidInputError("reference", reference, "missing")
        minor = to_minor_units(amount)
        if minor < MINIMUM_MINOR_UNITS:
            raise InvalidInputError(
                "amount", amount, "must be at least 1.00 (100 minor units)"
            )
        return {
            "reference": reference,
            "accountNumber": destination.account_number,
            "rSwitch": destination.network_code,
            "amount": minor,
            "description": description,
            "callbackUrl": f"{self.config.callback_base_url}{callback_path}",
            "type": transaction_type,
            "currency": currency,
        }

    async def initiate_disbursement(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str = "GHS",
    ) -> InitiateResult:
        """Pay a collector (transaction type 'payment')."""
        payload = self._payload(
            reference,
            destination,
            amount,
            description,
            currency,
            callback_path="/webhooks/trendipay/disbursement",
            transaction_type="payment",
        )
        logger.info(
            "Initiating disbursement %s to %s (%s) amount=%s",
            reference,
            destination.masked_account,
            destination.network_code,
            amount,
        )
        data = await self._request("POST", f"{self._terminal_path}/disbursements", payload)
        return self._initiate_result(data, default_message="Disbursement initiated")

    async def initiate_collection(
        self,
        reference: str,
        destination: Destination,
        amount: Decimal,
        description: str,
        currency: str = "GHS",
    ) -> InitiateResult:
        """Charge a customer (transaction type 'purchase')."""
        payload = self._payload(
            reference,
            destination,
            amount,
            description,
            currency,
            callback_path="/webhooks/trendipay/collection",
            transaction_type="purchase",
        )
        logger.info(
            "Initiating collection %s from %s (%s) amount=%s",
            reference,
            destination.masked_account,
            destination.network_code,
            amount,
        )
        data = await self._request("POST", f"{self._terminal_path}/collections", payload)
        return self._initiate_result(
            data, default_message="Payment initiated. Awaiting client approval."
        )

    async def check_status(
        self,
        transaction_id: str,
        reference: str,
        *,
        kind: str = "disbursement",
    ) -> StatusResult:
        """Poll a transaction's status."""
        collection = "collections" if kind == "collection" else "disbursements"
        logger.info("Checking %s status %s (ref %s)", kind, transaction_id, reference)
        data = await self._request(
            "GET", f"{self._terminal_path}/{collection}/{transaction_id}"
        )

        amount = data.get("amount")
        completed_at = data.get("completedAt")
        return StatusResult(
            status=str(data.get("status", "")),
            message=data.get("message") or "",
            amount=from_minor_units(amount) if amount is not None else None,
            completed_at=(
                datetime.fromisoformat(completed_at.replace("Z", "+00:00"))
                if completed_at
                else None
            ),
            transaction_id=data.get("transactionId") or transaction_id,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _initiate_result(data: dict[str, Any], *, default_message: str) -> InitiateResult:
        transaction_id = data.get("transactionId")
        return InitiateResult(
            transaction_id=transaction_id,
            status=str(data.get("status") or "pending"),
            message=data.get("message") or default_message,
            gateway_reference=transaction_id,
        )
