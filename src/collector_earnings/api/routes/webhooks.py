"""Gateway callback endpoints.

The signature is checked over the raw body before anything is parsed.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status

from collector_earnings.api.dependencies import Config, Gateway, Store
from collector_earnings.api.schemas import ErrorResponse, WebhookAck
from collector_earnings.disbursement.orchestrator import DisbursementOrchestrator
from collector_earnings.engine_config import EngineConfig
from collector_earnings.gateway.webhooks import SIGNATURE_HEADER, GatewayCallback, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/trendipay", tags=["webhooks"])


async def _verified_callback(request: Request, config: EngineConfig) -> GatewayCallback:
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_signature(
        body,
        signature,
        config.gateway.webhook_secret,
        sandbox=config.gateway.sandbox,
    ):
        logger.warning("Rejected gateway callback with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    try:
        payload: Any = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body is not valid JSON",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body must be a JSON object",
        )
    return GatewayCallback.from_payload(payload)


@router.post(
    "/disbursement",
    response_model=WebhookAck,
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def disbursement_callback(
    request: Request,
    store: Store,
    gateway: Gateway,
    config: Config,
) -> WebhookAck:
    """Final status for a cash-out."""
    callback = await _verified_callback(request, config)
    orchestrator = DisbursementOrchestrator(
        store,
        gateway,
        config=config.disbursement,
        currency=config.gateway.currency,
    )
    record = await orchestrator.apply_callback(
        callback.reference,
        callback.status,
        transaction_id=callback.transaction_id,
        message=callback.message,
        payload=callback.payload,
    )
    return WebhookAck(
        reference=callback.reference,
        status=record.status.value,
        applied=record.status.value == callback.status,
    )


@router.post(
    "/collection",
    response_model=WebhookAck,
    responses={401: {"model": ErrorResponse}},
)
async def collection_callback(request: Request, store: Store, config: Config) -> WebhookAck:
    """Final status for a customer payment."""
    callback = await _verified_callback(request, config)
    if callback.status == "pending":
        return WebhookAck(reference=callback.reference, status="pending", applied=False)

    applied = await store.update_payment_status(
        callback.reference,
        callback.status,
        gateway_error=callback.message if callback.status == "failed" else None,
        gateway_response=callback.payload,
    )
    if not applied:
        logger.info("Collection callback %s matched no pending payment", callback.reference)
    return WebhookAck(reference=callback.reference, status=callback.status, applied=applied)
