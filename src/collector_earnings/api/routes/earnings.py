"""Collector earnings and cash-out endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from collector_earnings.api.dependencies import Engine
from collector_earnings.api.schemas import (
    CashoutRequest,
    CashoutResponse,
    DisbursementListResponse,
    DisbursementResponse,
    EarningsResponse,
    ErrorResponse,
    SettlementResponse,
)
from collector_earnings.disbursement.types import CashoutResult, DisbursementRecord
from collector_earnings.engine import EarningsResult
from collector_earnings.gateway.base import Destination

router = APIRouter(prefix="/collectors/{collector_id}", tags=["earnings"])


def _disbursement_response(record: DisbursementRecord) -> DisbursementResponse:
    return DisbursementResponse.model_validate(record.to_dict())


def _cashout_response(result: CashoutResult) -> CashoutResponse:
    return CashoutResponse(
        success=result.success,
        is_retry=result.is_retry,
        message=result.message,
        error=result.error,
        gateway_status=result.gateway_status,
        disbursement=_disbursement_response(result.disbursement),
    )


def _earnings_response(result: EarningsResult) -> EarningsResponse:
    snapshot = result.snapshot
    aggregate = snapshot.aggregate
    return EarningsResponse(
        collector_id=snapshot.collector_id,
        from_cache=result.from_cache,
        freshness=result.freshness.value if result.freshness else None,
        loyalty_tier=snapshot.loyalty_tier,
        computed_at=snapshot.created_at,
        total_earnings=aggregate.total_earnings,
        pending_earnings=aggregate.pending_earnings,
        disposed_earnings=aggregate.disposed_earnings,
        weekly_earnings=aggregate.weekly_earnings,
        monthly_earnings=aggregate.monthly_earnings,
        job_count=aggregate.job_count,
        average_per_job=aggregate.average_per_job,
        completion_rate=aggregate.completion_rate,
        average_rating=aggregate.average_rating,
        buckets=aggregate.bucket_breakdown(),
        chart=aggregate.to_dict()["chart"],
        settlement=SettlementResponse.model_validate(snapshot.settlement.to_dict()),
        available_for_cashout=snapshot.available_for_cashout,
        skipped_events=dict(snapshot.errors),
        transactions=list(result.transactions),
    )


# ============================================================================
# Earnings
# ============================================================================


@router.get(
    "/earnings",
    response_model=EarningsResponse,
    responses={503: {"model": ErrorResponse}},
)
async def get_earnings(
    engine: Engine,
    refresh: Annotated[bool, Query()] = False,
) -> EarningsResponse:
    """Earnings, settlement position and recent transactions."""
    result = await engine.get_earnings(online=True, force_refresh=refresh)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Earnings unavailable",
        )
    return _earnings_response(result)


# ============================================================================
# Cash-outs
# ============================================================================


@router.get("/cashouts", response_model=DisbursementListResponse)
async def list_cashouts(
    engine: Engine,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> DisbursementListResponse:
    """Most recent cash-outs first."""
    records = await engine.list_disbursements(limit)
    items = [_disbursement_response(r) for r in records]
    return DisbursementListResponse(items=items, total=len(items))


@router.post(
    "/cashouts",
    response_model=CashoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def request_cashout(engine: Engine, payload: CashoutRequest) -> CashoutResponse:
    """Cash out to a mobile-money account.

    A gateway rejection still returns 201: the record exists in 'failed'
    and can be retried.
    """
    destination = Destination(payload.account_number, payload.network)
    result = await engine.request_cashout(payload.amount, destination)
    return _cashout_response(result)


@router.post(
    "/cashouts/{disbursement_id}/retry",
    response_model=CashoutResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def retry_cashout(engine: Engine, disbursement_id: str) -> CashoutResponse:
    """Retry a failed cash-out."""
    result = await engine.retry_disbursement(disbursement_id)
    return _cashout_response(result)


@router.post(
    "/cashouts/{disbursement_id}/refresh",
    response_model=DisbursementResponse,
    responses={404: {"model": ErrorResponse}},
)
async def refresh_cashout(engine: Engine, disbursement_id: str) -> DisbursementResponse:
    """Poll the gateway for a pending cash-out's status."""
    record = await engine.refresh_disbursement(disbursement_id)
    return _disbursement_response(record)
