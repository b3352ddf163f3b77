"""Collector cash-outs: state machine, records and orchestration."""

from collector_earnings.disbursement.orchestrator import DisbursementOrchestrator
from collector_earnings.disbursement.state_machine import (
    MAX_RETRIES,
    DisbursementStateMachine,
    DisbursementStatus,
    InvalidTransitionError,
)
from collector_earnings.disbursement.types import (
    CashoutResult,
    CashoutValidation,
    DisbursementRecord,
    retry_reference,
    strip_retry_suffix,
)

__all__ = [
    "DisbursementOrchestrator",
    "MAX_RETRIES",
    "DisbursementStateMachine",
    "DisbursementStatus",
    "InvalidTransitionError",
    "CashoutResult",
    "CashoutValidation",
    "DisbursementRecord",
    "retry_reference",
    "strip_retry_suffix",
]
