"""Disbursement orchestrator - collector cash-outs through the gateway.

Orchestrates cash-out execution through:
1. Balance check (disposed events only, net of outstanding cash-outs)
2. Pending record creation (the record id is the idempotency reference)
3. Gateway submission, with gateway errors folded into the result
4. Status updates from polling and signed callbacks

Retries are caller-initiated only. Each retry reuses the record and sends a
suffixed reference so the gateway never sees the same reference for two
money movements.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Sequence

from collector_earnings.calculators.split import SplitCalculator
from collector_earnings.calculators.types import EventStatus, LoyaltyTier
from collector_earnings.disbursement.state_machine import (
    DisbursementStateMachine,
    DisbursementStatus,
)
from collector_earnings.disbursement.types import (
    CashoutResult,
    DisbursementRecord,
    strip_retry_suffix,
)
from collector_earnings.engine_config import DisbursementConfig
from collector_earnings.errors import (
    BalanceShortfall,
    DisbursementNotFoundError,
    GatewayError,
    InsufficientBalanceError,
    InvalidInputError,
    NotRetryableError,
)
from collector_earnings.gateway.base import Destination, PaymentGateway
from collector_earnings.gateway.webhooks import map_gateway_status
from collector_earnings.money import ZERO, parse_amount, round_to_cents
from collector_earnings.settlement.reconciler import SettlementPosition, SettlementReconciler
from collector_earnings.telemetry.events import CashoutOutcome

if TYPE_CHECKING:
    from collector_earnings.store.base import RowStore
    from collector_earnings.telemetry.recorder import TelemetryRecorder

logger = logging.getLogger(__name__)


class DisbursementOrchestrator:
    """Cash-out orchestration service.

    Coordinates disbursement lifecycle:
    - Validate the request against the cashable balance
    - Submit to the payment gateway
    - Apply polled or called-back status changes
    - Retry failed attempts on request
    """

    def __init__(
        self,
        store: RowStore,
        gateway: PaymentGateway,
        *,
        calculator: SplitCalculator | None = None,
        reconciler: SettlementReconciler | None = None,
        config: DisbursementConfig | None = None,
        currency: str = "GHS",
        telemetry: TelemetryRecorder | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.calculator = calculator or SplitCalculator()
        self.reconciler = reconciler or SettlementReconciler()
        self.config = config or DisbursementConfig()
        self.currency = currency
        self.telemetry = telemetry

    async def settlement_position(
        self,
        collector_id: str,
        *,
        loyalty: LoyaltyTier | Sequence[LoyaltyTier] | None = None,
    ) -> SettlementPosition:
        """Reconcile the collector's disposed events only."""
        events = await self.store.fetch_events(collector_id, [EventStatus.DISPOSED])
        event_ids = [e.event_id for e in events]
        tips: dict[str, Decimal] = {}
        for tip in await self.store.fetch_tips(collector_id, event_ids):
            tips[tip.event_id] = tips.get(tip.event_id, ZERO) + tip.amount

        batch = self.calculator.calculate_batch(events, tips_by_event=tips, loyalty=loyalty)
        payments = await self.store.fetch_payments(collector_id, event_ids)
        return self.reconciler.reconcile_with_payments(batch.breakdowns, payments)

    async def available_balance(
        self,
        collector_id: str,
        *,
        loyalty: LoyaltyTier | Sequence[LoyaltyTier] | None = None,
    ) -> Decimal:
        """Cashable balance: net payout on disposed events less outstanding cash-outs."""
        position = await self.settlement_position(collector_id, loyalty=loyalty)
        outstanding = await self.store.outstanding_disbursement_total(collector_id)
        return position.available_for_cashout - outstanding

    async def request_cashout(
        self,
        collector_id: str,
        amount: Decimal,
        destination: Destination,
        *,
        loyalty: LoyaltyTier | Sequence[LoyaltyTier] | None = None,
    ) -> CashoutResult:
        """Cash out part of the collector's balance.

        Args:
            collector_id: Collector requesting the cash-out
            amount: Amount in major units
            destination: Mobile-money account to pay into
            loyalty: Collector's tiers (one per month, or a template)

        Returns:
            CashoutResult. Gateway failures come back here with the record in
            'failed', never as an exception.

        Raises:
            InvalidInputError: amount not positive or below the minimum
            InsufficientBalanceError: nothing cashable, or amount too large
        """
        amount = parse_amount(amount, "amount", allow_negative=True)
        if amount <= 0:
            raise InvalidInputError("amount", amount, "must be greater than zero")
        amount = round_to_cents(amount)
        if amount < self.config.minimum_amount:
            raise InvalidInputError(
                "amount", amount, f"minimum cash-out is {self.config.minimum_amount}"
            )

        try:
            available = await self.available_balance(collector_id, loyalty=loyalty)
            if available <= 0:
                raise InsufficientBalanceError(
                    amount, ZERO, BalanceShortfall.NOTHING_AVAILABLE
                )
            if amount > available:
                raise InsufficientBalanceError(
                    amount, available, BalanceShortfall.EXCEEDS_AVAILABLE
                )

            validation = await self.store.validate_cashout(collector_id, amount)
            if not validation.valid:
                server_available = max(validation.available, ZERO)
                raise InsufficientBalanceError(
                    amount,
                    server_available,
                    BalanceShortfall.NOTHING_AVAILABLE
                    if server_available <= 0
                    else BalanceShortfall.EXCEEDS_AVAILABLE,
                    detail=validation.error,
                )
        except InsufficientBalanceError as e:
            logger.info("Cash-out of %s refused for %s: %s", amount, collector_id, e)
            self._record(amount, CashoutOutcome.REJECTED, detail=e.reason.value)
            raise

        record = await self.store.insert_disbursement(collector_id, amount, destination)
        logger.info(
            "Created disbursement %s for %s amount=%s",
            record.disbursement_id,
            collector_id,
            amount,
        )
        return await self._submit(record, is_retry=False)

    async def retry_disbursement(
        self,
        disbursement_id: str,
        *,
        collector_id: str | None = None,
    ) -> CashoutResult:
        """Retry a failed disbursement in place.

        Raises:
            DisbursementNotFoundError: no such record (for this collector)
            NotRetryableError: not failed, or retries exhausted. The gateway
                is not contacted.
        """
        record = await self._get(disbursement_id, collector_id)
        max_retries = self.config.max_retries

        blocker = DisbursementStateMachine.retry_blocker(
            record.status, record.retry_count, max_retries
        )
        if blocker is not None:
            raise NotRetryableError(
                disbursement_id, record.status.value, record.retry_count, blocker
            )

        updated = await self.store.mark_for_retry(disbursement_id, max_retries)
        if updated is None:
            current = await self._get(disbursement_id, collector_id)
            raise NotRetryableError(
                disbursement_id,
                current.status.value,
                current.retry_count,
                "record changed while retrying",
            )

        logger.info(
            "Retrying disbursement %s (attempt %d/%d)",
            disbursement_id,
            updated.retry_count,
            max_retries,
        )
        return await self._submit(updated, is_retry=True)

    async def refresh_status(
        self,
        disbursement_id: str,
        *,
        collector_id: str | None = None,
    ) -> DisbursementRecord:
        """Poll the gateway for a pending disbursement and apply the result."""
        record = await self._get(disbursement_id, collector_id)
        if record.status != DisbursementStatus.PENDING or not record.gateway_transaction_id:
            return record

        try:
            result = await self.gateway.check_status(
                record.gateway_transaction_id, record.gateway_reference
            )
        except GatewayError as e:
            logger.warning("Status check failed for %s: %s", disbursement_id, e)
            return record

        mapped = DisbursementStatus(map_gateway_status(result.status))
        if mapped == DisbursementStatus.PENDING:
            return record

        updated = await self.store.update_disbursement(
            disbursement_id,
            expected_status=DisbursementStatus.PENDING,
            status=mapped,
            gateway_error=(result.message or f"Disbursement {result.status}")
            if mapped == DisbursementStatus.FAILED
            else None,
        )
        return updated or await self._get(disbursement_id, collector_id)

    async def apply_callback(
        self,
        reference: str,
        status: str,
        transaction_id: str | None = None,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> DisbursementRecord:
        """Apply a verified gateway callback.

        Callbacks for superseded attempts and out-of-order transitions are
        ignored and the current record returned.

        Raises:
            DisbursementNotFoundError: reference matches no record
        """
        disbursement_id = strip_retry_suffix(reference)
        record = await self._get(disbursement_id, None)
        mapped = DisbursementStatus(map_gateway_status(status))

        if reference != record.gateway_reference:
            logger.warning(
                "Ignoring callback for superseded reference %s (current %s)",
                reference,
                record.gateway_reference,
            )
            return record

        if mapped == record.status:
            if transaction_id and transaction_id != record.gateway_transaction_id:
                updated = await self.store.update_disbursement(
                    disbursement_id,
                    expected_status=record.status,
                    status=record.status,
                    gateway_transaction_id=transaction_id,
                    gateway_response=payload,
                )
                return updated or record
            return record

        if not DisbursementStateMachine.can_transition(record.status, mapped):
            logger.warning(
                "Ignoring callback %s -> %s for disbursement %s",
                record.status.value,
                mapped.value,
                disbursement_id,
            )
            return record

        updated = await self.store.update_disbursement(
            disbursement_id,
            expected_status=record.status,
            status=mapped,
            gateway_transaction_id=transaction_id,
            gateway_error=(message or f"Disbursement {status}")
            if mapped == DisbursementStatus.FAILED
            else None,
            gateway_response=payload,
        )
        logger.info("Disbursement %s updated to %s by callback", disbursement_id, mapped.value)
        return updated or await self._get(disbursement_id, None)

    async def _submit(self, record: DisbursementRecord, *, is_retry: bool) -> CashoutResult:
        """Send one attempt to the gateway and store its outcome."""
        reference = record.gateway_reference
        description = self.config.description_template.format(reference=reference)

        try:
            result = await self.gateway.initiate_disbursement(
                reference,
                record.destination,
                record.amount,
                description,
                self.currency,
            )
        except GatewayError as e:
            logger.warning("Gateway rejected disbursement %s: %s", reference, e)
            failed = await self.store.update_disbursement(
                record.disbursement_id,
                expected_status=DisbursementStatus.PENDING,
                status=DisbursementStatus.FAILED,
                gateway_error=str(e),
                gateway_response=e.payload or None,
            )
            self._record(
                record.amount,
                CashoutOutcome.FAILED,
                is_retry=is_retry,
                disbursement_id=record.disbursement_id,
                detail=str(e),
            )
            return CashoutResult(
                success=False,
                disbursement=failed or await self._get(record.disbursement_id, None),
                message="Disbursement failed",
                error=str(e),
                is_retry=is_retry,
            )

        mapped = DisbursementStatus(map_gateway_status(result.status))
        if mapped != DisbursementStatus.PENDING:
            DisbursementStateMachine.validate_transition(DisbursementStatus.PENDING, mapped)

        updated = await self.store.update_disbursement(
            record.disbursement_id,
            expected_status=DisbursementStatus.PENDING,
            status=mapped,
            gateway_transaction_id=result.transaction_id,
            gateway_error=(result.message or f"Disbursement {result.status}")
            if mapped == DisbursementStatus.FAILED
            else None,
        )
        # A callback may have landed first; report what the store holds.
        stored = updated or await self._get(record.disbursement_id, None)

        accepted = mapped != DisbursementStatus.FAILED
        self._record(
            record.amount,
            CashoutOutcome.ACCEPTED if accepted else CashoutOutcome.FAILED,
            is_retry=is_retry,
            disbursement_id=record.disbursement_id,
            detail=result.status,
        )
        logger.info(
            "Disbursement %s submitted: gateway status %s, transaction %s",
            reference,
            result.status,
            result.transaction_id,
        )
        return CashoutResult(
            success=accepted,
            disbursement=stored,
            gateway_status=result.status,
            message=result.message,
            error=None if accepted else (result.message or f"Disbursement {result.status}"),
            is_retry=is_retry,
        )

    async def _get(self, disbursement_id: str, collector_id: str | None) -> DisbursementRecord:
        record = await self.store.get_disbursement(disbursement_id)
        if record is None or (collector_id is not None and record.collector_id != collector_id):
            raise DisbursementNotFoundError(disbursement_id)
        return record

    def _record(
        self,
        amount: Decimal,
        outcome: CashoutOutcome,
        *,
        is_retry: bool = False,
        disbursement_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        if self.telemetry is not None:
            self.telemetry.record_cashout(
                amount,
                outcome,
                is_retry=is_retry,
                disbursement_id=disbursement_id,
                detail=detail,
            )
