"""Payment gateway adapters."""

from collector_earnings.gateway.base import (
    NETWORK_CODES,
    Destination,
    InitiateResult,
    PaymentGateway,
    StatusResult,
)
from collector_earnings.gateway.stub import StubGateway
from collector_earnings.gateway.trendipay import TrendiPayGateway
from collector_earnings.gateway.webhooks import (
    SIGNATURE_HEADER,
    GatewayCallback,
    compute_signature,
    map_gateway_status,
    verify_signature,
)

__all__ = [
    "NETWORK_CODES",
    "Destination",
    "InitiateResult",
    "PaymentGateway",
    "StatusResult",
    "StubGateway",
    "TrendiPayGateway",
    "SIGNATURE_HEADER",
    "GatewayCallback",
    "compute_signature",
    "map_gateway_status",
    "verify_signature",
]
