"""Signed gateway callbacks.

The gateway signs each callback with HMAC-SHA256 over the raw request body
(hex digest) in the x-trendipay-signature header. Verification always runs
over the exact bytes received, never a re-serialized payload.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from collector_earnings.errors import InvalidInputError
from collector_earnings.money import parse_amount

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-trendipay-signature"

# Gateway status vocabulary -> pending/success/failed
STATUS_MAP: dict[str, str] = {
    "successful": "success",
    "success": "success",
    "completed": "success",
    "failed": "failed",
    "declined": "failed",
    "expired": "failed",
    "canceled": "failed",
    "cancelled": "failed",
    "processing": "pending",
    "in_progress": "pending",
    "pending": "pending",
    "initiated": "pending",
}


def map_gateway_status(status: str | None) -> str:
    """Map a raw gateway status onto pending/success/failed.

    Unknown statuses count as failed so they surface for manual review.
    """
    if not status:
        return "failed"
    mapped = STATUS_MAP.get(status.strip().lower())
    if mapped is None:
        logger.warning("Unknown gateway status %r treated as failed", status)
        return "failed"
    return mapped


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of payload under secret."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    signature: str | None,
    secret: str | None,
    *,
    sandbox: bool = False,
) -> bool:
    """Check a callback signature in constant time.

    Args:
        payload: Raw request body
        signature: Header value (hex, any case)
        secret: Shared webhook secret
        sandbox: Tolerate a missing secret outside production

    Returns:
        True if the callback may be trusted.
    """
    if not secret:
        if sandbox:
            logger.warning("Webhook secret not configured; accepting unsigned callback (sandbox)")
            return True
        logger.error("Webhook secret not configured; rejecting callback")
        return False

    if not signature:
        return False

    expected = compute_signature(payload, secret)
    return hmac.compare_digest(
        expected.encode("ascii"),
        signature.strip().lower().encode("utf-8", "replace"),
    )


@dataclass(frozen=True)
class GatewayCallback:
    """Decoded callback body."""

    reference: str
    raw_status: str
    transaction_id: str | None = None
    amount: Decimal | None = None
    account_number: str | None = None
    message: str | None = None
    timestamp: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return map_gateway_status(self.raw_status)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GatewayCallback:
        reference = payload.get("reference")
        if not reference:
            raise InvalidInputError("reference", reference, "missing")
        status = payload.get("status")
        if not status:
            raise InvalidInputError("status", status, "missing")
        amount = payload.get("amount")
        return cls(
            reference=str(reference),
            raw_status=str(status),
            transaction_id=payload.get("transactionId"),
            amount=parse_amount(amount, "amount") if amount is not None else None,
            account_number=payload.get("accountNumber"),
            message=payload.get("message"),
            timestamp=payload.get("timestamp"),
            payload=payload,
        )
