"""Disbursement state machine with transition validation."""

from __future__ import annotations

from enum import Enum

from collector_earnings.errors import EarningsEngineError

MAX_RETRIES = 3


class DisbursementStatus(str, Enum):
    """Disbursement status values."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class InvalidTransitionError(EarningsEngineError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class DisbursementStateMachine:
    """State machine for disbursement status transitions.

    Allowed transitions:
    - pending → success
    - pending → failed
    - failed → pending (retry, while retry_count < 3)

    success is terminal. A failed record with exhausted retries is terminal
    and needs manual intervention.
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        DisbursementStatus.PENDING: [DisbursementStatus.SUCCESS, DisbursementStatus.FAILED],
        DisbursementStatus.SUCCESS: [],  # Terminal state
        DisbursementStatus.FAILED: [DisbursementStatus.PENDING],
    }

    # Statuses that hold money against the collector's balance
    OUTSTANDING = {
        DisbursementStatus.PENDING,
        DisbursementStatus.SUCCESS,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def retry_blocker(
        cls, status: str, retry_count: int, max_retries: int = MAX_RETRIES
    ) -> str | None:
        """Why a record cannot be retried, or None if it can."""
        if status != DisbursementStatus.FAILED:
            return (
                "only failed disbursements can be retried "
                f"(status is '{DisbursementStatus(status).value}')"
            )
        if retry_count >= max_retries:
            return f"maximum retries ({max_retries}) exceeded"
        return None

