"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from collector_earnings.api.background import BackgroundRefresher, SessionFactory
from collector_earnings.api.dependencies import build_engine
from collector_earnings.api.routes import earnings_router, health_router, webhooks_router
from collector_earnings.config import Settings, get_settings
from collector_earnings.database import dispose_db, init_db
from collector_earnings.engine_config import EngineConfig, GatewayConfig, validate_production_config
from collector_earnings.errors import (
    ConfigurationError,
    DisbursementNotFoundError,
    EarningsEngineError,
    InsufficientBalanceError,
    InvalidInputError,
    NotRetryableError,
)
from collector_earnings.gateway.base import PaymentGateway
from collector_earnings.gateway.stub import StubGateway
from collector_earnings.gateway.trendipay import TrendiPayGateway

logger = logging.getLogger(__name__)


def _error(status_code: int, detail: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def build_gateway(settings: Settings, config: GatewayConfig) -> PaymentGateway:
    """TrendiPay when enabled, otherwise the in-memory stub.

    Raises:
        ConfigurationError: TrendiPay disabled in production
    """
    if settings.gateway_enabled:
        return TrendiPayGateway(config)
    if settings.is_production:
        raise ConfigurationError(
            "TrendiPay is disabled in production; set ENABLE_TRENDIPAY=true"
        )
    logger.warning("TrendiPay disabled; using stub gateway")
    return StubGateway()


def _database_session() -> AbstractAsyncContextManager[AsyncSession]:
    _, factory = init_db()
    return factory()


def create_app(
    settings: Settings | None = None,
    *,
    gateway: PaymentGateway | None = None,
    engine_config: EngineConfig | None = None,
    session_factory: SessionFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    config = engine_config or EngineConfig(gateway=GatewayConfig.from_settings(settings))
    if settings.is_production:
        for problem in validate_production_config(
            config, gateway_enabled=settings.gateway_enabled
        ):
            logger.error("Production config: %s", problem)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        init_db(settings.database_url)
        owns_gateway = app.state.gateway is None
        if owns_gateway:
            app.state.gateway = build_gateway(settings, config.gateway)
        yield
        await app.state.refresher.aclose()
        if owns_gateway:
            await app.state.gateway.aclose()
        await dispose_db()

    app = FastAPI(
        title="Collector Earnings API",
        description="Collector earnings, settlement and cash-out",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine_config = config
    app.state.gateway = gateway
    app.state.cache_dir = settings.cache_dir or None
    app.state.telemetry_path = settings.telemetry_path or None
    app.state.production = settings.is_production
    app.state.refresher = BackgroundRefresher(
        session_factory or _database_session,
        lambda collector_id, store: build_engine(app, collector_id, store),
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "INVALID_INPUT")

    @app.exception_handler(InsufficientBalanceError)
    async def balance_handler(request: Request, exc: InsufficientBalanceError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), exc.reason.value.upper())

    @app.exception_handler(NotRetryableError)
    async def not_retryable_handler(request: Request, exc: NotRetryableError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "NOT_RETRYABLE")

    @app.exception_handler(DisbursementNotFoundError)
    async def not_found_handler(request: Request, exc: DisbursementNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "NOT_FOUND")

    @app.exception_handler(EarningsEngineError)
    async def engine_error_handler(request: Request, exc: EarningsEngineError) -> JSONResponse:
        logger.error("Unhandled engine error: %s", exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), "ENGINE_ERROR")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unexpected error handling %s", request.url.path)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred",
            "INTERNAL_ERROR",
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(earnings_router, prefix="/api/v1")

    return app
