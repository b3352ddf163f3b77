"""SQLAlchemy row store.

Reads collection events from pickup_requests and digital_bins, payments from
bin_payments and cash-outs from withdrawals. Disbursement status changes are
conditional UPDATEs; a zero rowcount means another writer got there first.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from collector_earnings.calculators.types import (
    CollectionEvent,
    EventKind,
    EventStatus,
    LoyaltyTier,
    PricingInputs,
    Settled,
    SettledPayout,
    TipRecord,
    Unsettled,
)
from collector_earnings.disbursement.state_machine import DisbursementStateMachine, DisbursementStatus
from collector_earnings.disbursement.types import CashoutValidation, DisbursementRecord
from collector_earnings.gateway.base import Destination
from collector_earnings.models import (
    BinPayment,
    CollectorLoyaltyTier,
    CollectorTip,
    DigitalBin,
    PickupRequest,
    Withdrawal,
)
from collector_earnings.models.base import utcnow
from collector_earnings.models.events import CollectionEventColumns
from collector_earnings.money import ZERO, round_to_cents
from collector_earnings.settlement.reconciler import PaymentRecord

logger = logging.getLogger(__name__)

EVENT_TABLES: tuple[tuple[type[CollectionEventColumns], EventKind], ...] = (
    (PickupRequest, EventKind.PICKUP_REQUEST),
    (DigitalBin, EventKind.DIGITAL_BIN),
)


def _zero_if_none(value: Decimal | None) -> Decimal:
    return value if value is not None else ZERO


def event_from_row(row: CollectionEventColumns, kind: EventKind) -> CollectionEvent:
    """Build a CollectionEvent, choosing the pricing variant from the row."""
    if row.collector_total_payout is not None:
        pricing: Settled | Unsettled = Settled(
            SettledPayout(
                core=_zero_if_none(row.collector_core_payout),
                urgent=_zero_if_none(row.collector_urgent_payout),
                distance=_zero_if_none(row.collector_distance_payout),
                surge=_zero_if_none(row.collector_surge_payout),
                tips=_zero_if_none(row.collector_tips),
                recyclables=_zero_if_none(row.collector_recyclables_payout),
                loyalty=_zero_if_none(row.collector_loyalty_cashback),
                total=row.collector_total_payout,
            )
        )
    else:
        pricing = Unsettled(
            PricingInputs(
                urgent=bool(row.is_urgent),
                deadhead_km=row.deadhead_km,
                surge_multiplier=row.surge_multiplier,
                recycler_gross=row.recycler_gross,
                request_fee=row.request_fee,
            )
        )

    return CollectionEvent(
        event_id=row.id,
        collector_id=row.collector_id,
        fee=row.fee,
        pricing=pricing,
        status=EventStatus(row.status),
        kind=kind,
        picked_up_at=row.picked_up_at,
        disposed_at=row.disposed_at,
        rating=row.rating,
    )


def disbursement_from_row(row: Withdrawal) -> DisbursementRecord:
    return DisbursementRecord(
        disbursement_id=row.id,
        collector_id=row.collector_id,
        amount=row.amount,
        destination=Destination(account_number=row.phone_number, network=row.network),
        status=DisbursementStatus(row.status),
        retry_count=row.retry_count,
        gateway_transaction_id=row.gateway_transaction_id,
        gateway_error=row.gateway_error,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )


class SqlRowStore:
    """RowStore over an AsyncSession.

    Writes commit immediately so a pending disbursement is durable before the
    gateway is contacted.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def fetch_events(
        self,
        collector_id: str,
        statuses: Iterable[EventStatus] | None = None,
    ) -> list[CollectionEvent]:
        wanted = [EventStatus(s).value for s in statuses] if statuses is not None else None
        events: list[CollectionEvent] = []

        for model, kind in EVENT_TABLES:
            stmt = select(model).where(model.collector_id == collector_id)
            if wanted is not None:
                stmt = stmt.where(model.status.in_(wanted))
            result = await self.session.execute(stmt)
            events.extend(event_from_row(row, kind) for row in result.scalars())

        return events

    async def fetch_tips(
        self,
        collector_id: str,
        event_ids: Sequence[str] | None = None,
    ) -> list[TipRecord]:
        stmt = select(CollectorTip).where(
            CollectorTip.collector_id == collector_id,
            CollectorTip.status == "confirmed",
        )
        if event_ids is not None:
            stmt = stmt.where(CollectorTip.request_id.in_(list(event_ids)))
        result = await self.session.execute(stmt)
        return [
            TipRecord(
                event_id=row.request_id,
                amount=row.amount,
                status=row.status,
                tip_type=row.tip_type,
            )
            for row in result.scalars()
        ]

    async def fetch_loyalty_tiers(self, collector_id: str) -> list[LoyaltyTier]:
        result = await self.session.execute(
            select(CollectorLoyaltyTier)
            .where(CollectorLoyaltyTier.collector_id == collector_id)
            .order_by(CollectorLoyaltyTier.month)
        )
        return [
            LoyaltyTier(
                tier=row.tier,
                cashback_rate=row.cashback_rate,
                monthly_cap=row.monthly_cap,
                cashback_earned=row.cashback_earned,
                month=row.month,
            )
            for row in result.scalars()
        ]

    async def fetch_payments(
        self,
        collector_id: str,
        event_ids: Sequence[str] | None = None,
    ) -> list[PaymentRecord]:
        stmt = select(BinPayment).where(BinPayment.collector_id == collector_id)
        if event_ids is not None:
            stmt = stmt.where(BinPayment.event_id.in_(list(event_ids)))
        result = await self.session.execute(stmt)
        return [
            PaymentRecord(
                payment_id=row.id,
                event_id=row.event_id,
                collector_id=row.collector_id,
                amount=row.amount,
                channel=row.payment_mode,
                type=row.type,
                status=row.status,
                gateway_reference=row.gateway_reference,
            )
            for row in result.scalars()
        ]

    async def validate_cashout(self, collector_id: str, amount: Decimal) -> CashoutValidation:
        """Ledger-side upper bound on the cashable balance.

        Disposed events count at their settled payout, or at the full bill
        plus recyclables while unsettled. Confirmed tips are added on top.
        Outstanding cash-outs are subtracted.
        """
        earned = ZERO
        for model, _ in EVENT_TABLES:
            bound = func.coalesce(
                model.collector_total_payout,
                model.fee + func.coalesce(model.recycler_gross, 0),
            )
            result = await self.session.execute(
                select(func.coalesce(func.sum(bound), 0)).where(
                    model.collector_id == collector_id,
                    model.status == EventStatus.DISPOSED.value,
                )
            )
            earned += round_to_cents(Decimal(str(result.scalar_one())))

        tips = await self.session.execute(
            select(func.coalesce(func.sum(CollectorTip.amount), 0)).where(
                CollectorTip.collector_id == collector_id,
                CollectorTip.status == "confirmed",
            )
        )
        earned += round_to_cents(Decimal(str(tips.scalar_one())))

        available = earned - await self.outstanding_disbursement_total(collector_id)
        if amount <= 0:
            return CashoutValidation(False, available, "Amount must be greater than zero")
        if amount > available:
            return CashoutValidation(False, available, "Insufficient balance")
        return CashoutValidation(True, available)

    async def insert_disbursement(
        self,
        collector_id: str,
        amount: Decimal,
        destination: Destination,
    ) -> DisbursementRecord:
        row = Withdrawal(
            collector_id=collector_id,
            amount=amount,
            status=DisbursementStatus.PENDING.value,
            phone_number=destination.account_number,
            network=destination.network_code,
            retry_count=0,
            requested_at=utcnow(),
        )
        self.session.add(row)
        await self.session.flush()
        record = disbursement_from_row(row)
        await self.session.commit()
        return record

    async def get_disbursement(self, disbursement_id: str) -> DisbursementRecord | None:
        row = await self._load(disbursement_id)
        return disbursement_from_row(row) if row is not None else None

    async def list_disbursements(
        self,
        collector_id: str,
        limit: int = 50,
    ) -> list[DisbursementRecord]:
        result = await self.session.execute(
            select(Withdrawal)
            .where(Withdrawal.collector_id == collector_id)
            .order_by(Withdrawal.created_at.desc())
            .limit(limit)
        )
        return [disbursement_from_row(row) for row in result.scalars()]

    async def outstanding_disbursement_total(self, collector_id: str) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Withdrawal.amount), 0)).where(
                Withdrawal.collector_id == collector_id,
                Withdrawal.status.in_([s.value for s in DisbursementStateMachine.OUTSTANDING]),
            )
        )
        return round_to_cents(Decimal(str(result.scalar_one())))

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
        now = utcnow()
        values: dict[str, Any] = {
            "status": status.value,
            "updated_at": now,
            "processed_at": now,
        }
        if gateway_transaction_id is not None:
            values["gateway_transaction_id"] = gateway_transaction_id
        if gateway_error is not None:
            values["gateway_error"] = gateway_error
        if gateway_response is not None:
            values["gateway_response"] = gateway_response
        if status in (DisbursementStatus.SUCCESS, DisbursementStatus.FAILED):
            values["completed_at"] = now

        result = await self.session.execute(
            update(Withdrawal)
            .where(
                Withdrawal.id == disbursement_id,
                Withdrawal.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        if result.rowcount == 0:
            logger.info(
                "Disbursement %s not in %s; update to %s skipped",
                disbursement_id,
                expected_status.value,
                status.value,
            )
            return None
        return await self.get_disbursement(disbursement_id)

    async def mark_for_retry(
        self,
        disbursement_id: str,
        max_retries: int,
    ) -> DisbursementRecord | None:
        result = await self.session.execute(
            update(Withdrawal)
            .where(
                Withdrawal.id == disbursement_id,
                Withdrawal.status == DisbursementStatus.FAILED.value,
                Withdrawal.retry_count < max_retries,
            )
            .values(
                status=DisbursementStatus.PENDING.value,
                retry_count=Withdrawal.retry_count + 1,
                gateway_error=None,
                completed_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        if result.rowcount == 0:
            return None
        return await self.get_disbursement(disbursement_id)

    async def update_payment_status(
        self,
        gateway_reference: str,
        status: str,
        *,
        gateway_error: str | None = None,
        gateway_response: dict[str, Any] | None = None,
    ) -> bool:
        """Settle a pending customer collection payment from a gateway callback."""
        result = await self.session.execute(
            update(BinPayment)
            .where(
                BinPayment.gateway_reference == gateway_reference,
                BinPayment.status == "pending",
            )
            .values(
                status=status,
                gateway_error=gateway_error,
                raw_gateway_response=gateway_response,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount > 0

    async def _load(self, disbursement_id: str) -> Withdrawal | None:
        result = await self.session.execute(
            select(Withdrawal)
            .where(Withdrawal.id == disbursement_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
