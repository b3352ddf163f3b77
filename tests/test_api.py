"""API endpoint tests.

Runs the FastAPI app in-process against the SQLite test session.
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker

from collector_earnings.api.app import build_gateway, create_app
from collector_earnings.api.background import BackgroundRefresher
from collector_earnings.api.dependencies import get_db_session
from collector_earnings.config import Settings
from collector_earnings.engine_config import (
    CacheConfig,
    EngineConfig,
    GatewayConfig,
    validate_production_config,
)
from collector_earnings.errors import ConfigurationError
from collector_earnings.gateway.stub import StubGateway
from collector_earnings.gateway.webhooks import SIGNATURE_HEADER, compute_signature
from collector_earnings.models import BinPayment

COLLECTOR_ID = "collector-1"
SECRET = "whsec-test"

SETTINGS = Settings(
    database_url="sqlite+aiosqlite:///:memory:",
    environment="test",
    host="127.0.0.1",
    port=8000,
    debug=False,
    gateway_api_url="https://api.test",
    gateway_api_key="",
    gateway_terminal_id="",
    gateway_merchant_id="",
    gateway_callback_base_url="http://localhost:8000",
    gateway_webhook_secret=SECRET,
    gateway_enabled=False,
    cache_dir="",
    telemetry_path="",
)


@pytest.fixture
async def client(session, gateway) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(
        SETTINGS,
        gateway=gateway,
        engine_config=EngineConfig(gateway=GatewayConfig(webhook_secret=SECRET, sandbox=False)),
    )

    async def override_session():
        yield session

    app.dependency_overrides[get_db_session] = override_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def signed(payload: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    headers = {
        SIGNATURE_HEADER: compute_signature(body, SECRET),
        "Content-Type": "application/json",
    }
    return body, headers


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Health reports the database status."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["gateway"] == "stub"

    async def test_readiness_and_liveness(self, client: AsyncClient):
        """Readiness and liveness answer once the gateway is in place."""
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestEarningsEndpoints:
    """Test earnings retrieval."""

    async def test_get_earnings(self, client: AsyncClient, make_event):
        """Earnings include totals, settlement and transactions."""
        await make_event(fee="120.00", payout="100.00")
        await make_event(fee="100.00", payout="80.00", payment_mode="cash")

        response = await client.get(f"/api/v1/collectors/{COLLECTOR_ID}/earnings")

        assert response.status_code == 200
        data = response.json()
        assert data["collector_id"] == COLLECTOR_ID
        assert data["from_cache"] is False
        assert data["job_count"] == 2
        assert Decimal(data["total_earnings"]) == Decimal("180.00")
        assert Decimal(data["available_for_cashout"]) == Decimal("80.00")
        assert Decimal(data["settlement"]["cash_platform_due"]) == Decimal("20.00")
        assert data["settlement"]["direction"] == "platform_owes_collector"
        assert set(data["chart"]) == {"week", "month", "year"}
        assert len(data["transactions"]) == 2

    async def test_empty_collector(self, client: AsyncClient):
        """A collector without events gets zeros."""
        response = await client.get("/api/v1/collectors/nobody/earnings")

        assert response.status_code == 200
        assert response.json()["job_count"] == 0


class TestCashoutEndpoints:
    """Test cash-out endpoints."""

    async def test_cashout_created(self, client: AsyncClient, make_event, gateway):
        """A covered cash-out is submitted and returns 201."""
        await make_event(fee="120.00", payout="100.00")

        response = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts",
            json={"amount": "40.00", "account_number": "0241234567", "network": "mtn"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["disbursement"]["status"] == "pending"
        assert Decimal(data["disbursement"]["amount"]) == Decimal("40.00")
        assert len(gateway.calls) == 1

        listing = await client.get(f"/api/v1/collectors/{COLLECTOR_ID}/cashouts")
        assert listing.json()["total"] == 1

    async def test_cashout_without_balance(self, client: AsyncClient, gateway):
        """Nothing disposed yet is a 409 with the shortfall code."""
        response = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts",
            json={"amount": "40.00", "account_number": "0241234567", "network": "mtn"},
        )

        assert response.status_code == 409
        assert response.json()["code"] == "NOTHING_AVAILABLE"
        assert gateway.calls == []

    async def test_cashout_validation(self, client: AsyncClient):
        """Non-positive amounts fail request validation."""
        response = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts",
            json={"amount": "0", "account_number": "0241234567", "network": "mtn"},
        )

        assert response.status_code == 422

    async def test_retry_pending_refused(self, client: AsyncClient, make_event):
        """Only failed cash-outs can be retried."""
        await make_event(fee="120.00", payout="100.00")
        created = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts",
            json={"amount": "40.00", "account_number": "0241234567", "network": "mtn"},
        )
        disbursement_id = created.json()["disbursement"]["disbursement_id"]

        response = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts/{disbursement_id}/retry"
        )

        assert response.status_code == 409
        assert response.json()["code"] == "NOT_RETRYABLE"

    async def test_retry_unknown(self, client: AsyncClient):
        """Unknown disbursements are 404."""
        response = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts/does-not-exist/retry"
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestWebhookEndpoints:
    """Test signed gateway callbacks."""

    async def test_bad_signature_rejected(self, client: AsyncClient):
        """Callbacks failing verification are 401."""
        body = json.dumps({"reference": "x", "status": "successful"}).encode()

        response = await client.post(
            "/webhooks/trendipay/disbursement",
            content=body,
            headers={SIGNATURE_HEADER: "0" * 64, "Content-Type": "application/json"},
        )

        assert response.status_code == 401

    async def test_unsigned_rejected_outside_sandbox(self, client: AsyncClient):
        """A missing signature is rejected."""
        response = await client.post(
            "/webhooks/trendipay/collection",
            json={"reference": "x", "status": "successful"},
        )

        assert response.status_code == 401

    async def test_malformed_payload(self, client: AsyncClient):
        """Signed callbacks without a reference are 400."""
        body, headers = signed({"status": "successful"})

        response = await client.post(
            "/webhooks/trendipay/disbursement", content=body, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_INPUT"

    async def test_disbursement_callback_applied(self, client: AsyncClient, make_event):
        """A success callback completes the pending cash-out."""
        await make_event(fee="120.00", payout="100.00")
        created = await client.post(
            f"/api/v1/collectors/{COLLECTOR_ID}/cashouts",
            json={"amount": "40.00", "account_number": "0241234567", "network": "mtn"},
        )
        disbursement_id = created.json()["disbursement"]["disbursement_id"]
        body, headers = signed(
            {"reference": disbursement_id, "status": "successful", "transactionId": "TX-9"}
        )

        response = await client.post(
            "/webhooks/trendipay/disbursement", content=body, headers=headers
        )

        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "reference": disbursement_id,
            "status": "success",
            "applied": True,
        }

    async def test_disbursement_callback_unknown_reference(self, client: AsyncClient):
        """Callbacks for unknown cash-outs are 404."""
        body, headers = signed({"reference": "missing", "status": "successful"})

        response = await client.post(
            "/webhooks/trendipay/disbursement", content=body, headers=headers
        )

        assert response.status_code == 404

    async def test_collection_callback(self, client: AsyncClient, session, make_event):
        """Collection callbacks settle a pending customer payment once."""
        event = await make_event(payment_mode=None)
        session.add(
            BinPayment(
                event_id=event.id,
                collector_id=COLLECTOR_ID,
                type="collection",
                payment_mode="momo",
                amount=Decimal("100.00"),
                status="pending",
                gateway_reference="COL-1",
            )
        )
        await session.commit()
        body, headers = signed({"reference": "COL-1", "status": "successful"})

        first = await client.post("/webhooks/trendipay/collection", content=body, headers=headers)
        second = await client.post("/webhooks/trendipay/collection", content=body, headers=headers)

        assert first.json()["applied"] is True
        assert first.json()["status"] == "success"
        assert second.json()["applied"] is False

    async def test_collection_callback_pending(self, client: AsyncClient):
        """In-progress statuses are acknowledged without changes."""
        body, headers = signed({"reference": "COL-2", "status": "processing"})

        response = await client.post(
            "/webhooks/trendipay/collection", content=body, headers=headers
        )

        assert response.json() == {
            "received": True,
            "reference": "COL-2",
            "status": "pending",
            "applied": False,
        }


class TestBackgroundRefresh:
    """Test that stale earnings are refreshed after the response."""

    async def test_stale_hit_refreshed(self, engine, session, gateway, make_event, tmp_path):
        """A stale read schedules a refresh that outlives the request."""
        app = create_app(
            replace(SETTINGS, cache_dir=str(tmp_path)),
            gateway=gateway,
            engine_config=EngineConfig(
                cache=CacheConfig(fresh_ttl=timedelta(microseconds=1)),
                gateway=GatewayConfig(webhook_secret=SECRET, sandbox=False),
            ),
            session_factory=async_sessionmaker(engine, expire_on_commit=False),
        )

        async def override_session():
            yield session

        app.dependency_overrides[get_db_session] = override_session
        url = f"/api/v1/collectors/{COLLECTOR_ID}/earnings"

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            await make_event(fee="120.00", payout="100.00")
            first = await client.get(url)
            await make_event(fee="60.00", payout="50.00")
            stale = await client.get(url)
            await app.state.refresher.drain()
            refreshed = await client.get(url)
        await app.state.refresher.aclose()

        assert first.json()["from_cache"] is False
        assert stale.json()["freshness"] == "stale"
        assert Decimal(stale.json()["total_earnings"]) == Decimal("100.00")
        assert refreshed.json()["from_cache"] is True
        assert Decimal(refreshed.json()["total_earnings"]) == Decimal("150.00")

    async def test_shutdown_cancels_refreshes(self, session):
        """aclose cancels refreshes still running."""
        started = asyncio.Event()

        class SlowEngine:
            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc):
                return None

            async def refresh(self):
                started.set()
                await asyncio.sleep(3600)

        @asynccontextmanager
        async def session_factory():
            yield session

        refresher = BackgroundRefresher(session_factory, lambda collector_id, store: SlowEngine())
        refresher.schedule(COLLECTOR_ID)
        refresher.schedule(COLLECTOR_ID)
        await started.wait()

        assert refresher.running == (COLLECTOR_ID,)
        await refresher.aclose()
        assert refresher.running == ()


class TestProductionGateway:
    """Test that production never pays out through the stub."""

    PRODUCTION = replace(SETTINGS, environment="production")

    def test_stub_refused_in_production(self):
        """Building the gateway with TrendiPay disabled fails in production."""
        with pytest.raises(ConfigurationError):
            build_gateway(self.PRODUCTION, GatewayConfig())

    def test_stub_allowed_outside_production(self):
        """Development falls back to the stub."""
        assert isinstance(build_gateway(SETTINGS, GatewayConfig()), StubGateway)

    def test_disabled_gateway_flagged(self):
        """Production validation reports a disabled gateway as critical."""
        issues = validate_production_config(EngineConfig(), gateway_enabled=False)

        assert any(i.startswith("CRITICAL: TrendiPay is disabled") for i in issues)

    async def test_health_degraded_on_stub(self, session, gateway):
        """A production app running on the stub is not healthy."""
        app = create_app(self.PRODUCTION, gateway=gateway)

        async def override_session():
            yield session

        app.dependency_overrides[get_db_session] = override_session
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health")

        assert response.json()["status"] == "degraded"
        assert response.json()["gateway"] == "stub"
