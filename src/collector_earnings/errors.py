"""Error taxonomy for the earnings and settlement engine.

Recovery policy:
- InvalidInputError: fatal to one calculation, never to a batch.
- CalculationOverrunError: logged and clamped unless the calculator is strict.
- InsufficientBalanceError / NotRetryableError: raised to the caller.
- GatewayError: carried back in a CashoutResult, not raised from the
  orchestrator.
- CacheCorruptionError: internal to the cache manager, always recovered.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any


class EarningsEngineError(Exception):
    """Base class for all engine errors."""


class InvalidInputError(EarningsEngineError):
    """Raised when a monetary or distance input is negative or malformed."""

    def __init__(self, field: str, value: Any, reason: str | None = None):
        self.field = field
        self.value = value
        self.reason = reason
        msg = f"Invalid value for '{field}': {value!r}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class CalculationOverrunError(EarningsEngineError):
    """Collector share computed above the shareable amount.

    Indicates upstream data drift. Carries the full calculation inputs so the
    anomaly can be traced from logs.
    """

    def __init__(
        self,
        event_id: str,
        collector_amount: Decimal,
        shareable: Decimal,
        inputs: dict[str, Any],
    ):
        self.event_id = event_id
        self.collector_amount = collector_amount
        self.shareable = shareable
        self.inputs = inputs
        super().__init__(
            f"Collector share {collector_amount} exceeds shareable amount "
            f"{shareable} for event {event_id}"
        )

    @property
    def excess(self) -> Decimal:
        return self.collector_amount - self.shareable


class BalanceShortfall(str, Enum):
    """Why a cash-out could not be covered."""

    NOTHING_AVAILABLE = "nothing_available"
    EXCEEDS_AVAILABLE = "exceeds_available"


class InsufficientBalanceError(EarningsEngineError):
    """Raised when a cash-out request exceeds the cashable balance."""

    def __init__(
        self,
        requested: Decimal,
        available: Decimal,
        reason: BalanceShortfall,
        detail: str | None = None,
    ):
        self.requested = requested
        self.available = available
        self.reason = reason
        self.detail = detail
        if detail:
            msg = detail
        elif reason == BalanceShortfall.NOTHING_AVAILABLE:
            msg = "No funds available for withdrawal: no disposed bins yet"
        else:
            msg = (
                f"Amount {requested} cannot exceed your available balance "
                f"of {available}"
            )
        super().__init__(msg)


class GatewayError(EarningsEngineError):
    """Payment gateway failure.

    transient=True for network and timeout failures (retried by the gateway
    client up to its bounded limit); False for business rejections.
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ):
        self.transient = transient
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)


class NotRetryableError(EarningsEngineError):
    """Raised when retrying a disbursement that is not failed or is exhausted."""

    def __init__(self, disbursement_id: str, status: str, retry_count: int, reason: str):
        self.disbursement_id = disbursement_id
        self.status = status
        self.retry_count = retry_count
        self.reason = reason
        super().__init__(
            f"Disbursement {disbursement_id} cannot be retried "
            f"(status={status}, retries={retry_count}): {reason}"
        )


class CacheCorruptionError(EarningsEngineError):
    """Cached entry could not be decoded. Never leaves the cache manager."""


class DisbursementNotFoundError(EarningsEngineError):
    """Raised when a disbursement id does not exist for the collector."""

    def __init__(self, disbursement_id: str):
        self.disbursement_id = disbursement_id
        super().__init__(f"Disbursement {disbursement_id} not found")


class ConfigurationError(EarningsEngineError):
    """Raised when the app is configured in a way that cannot move money safely."""
