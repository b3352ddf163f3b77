"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator, Callable
from functools import partial
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncSession

from collector_earnings.cache.storage import FileCacheStorage
from collector_earnings.database import init_db
from collector_earnings.engine import EarningsEngine
from collector_earnings.engine_config import EngineConfig
from collector_earnings.gateway.base import PaymentGateway
from collector_earnings.store.sql import SqlRowStore
from collector_earnings.telemetry.recorder import JsonlTelemetrySink


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_engine_config(request: Request) -> EngineConfig:
    """Engine configuration built at app creation."""
    return request.app.state.engine_config


def get_gateway(request: Request) -> PaymentGateway:
    """Shared gateway adapter owned by the app."""
    return request.app.state.gateway


def get_store(session: Annotated[AsyncSession, Depends(get_db_session)]) -> SqlRowStore:
    """Row store bound to the request's session."""
    return SqlRowStore(session)


def build_engine(
    app: FastAPI,
    collector_id: str,
    store: SqlRowStore,
    *,
    schedule_refresh: Callable[[], None] | None = None,
) -> EarningsEngine:
    """Collector engine wired to the app's gateway, config, cache and telemetry."""
    state = app.state
    config: EngineConfig = state.engine_config
    return EarningsEngine(
        collector_id,
        store,
        state.gateway,
        config,
        cache_storage=(
            FileCacheStorage(Path(state.cache_dir) / f"{collector_id}.json")
            if state.cache_dir
            else None
        ),
        telemetry_sink=(
            JsonlTelemetrySink(state.telemetry_path, config.telemetry.retention)
            if state.telemetry_path
            else None
        ),
        schedule_refresh=schedule_refresh,
    )


async def get_earnings_engine(
    collector_id: str,
    request: Request,
    store: Annotated[SqlRowStore, Depends(get_store)],
) -> AsyncGenerator[EarningsEngine, None]:
    """Per-request collector session, closed when the response is sent.

    Stale cache hits are refreshed by the app's background refresher, which
    outlives the request.
    """
    refresher = request.app.state.refresher
    engine = build_engine(
        request.app,
        collector_id,
        store,
        schedule_refresh=partial(refresher.schedule, collector_id),
    )
    async with engine:
        yield engine


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Store = Annotated[SqlRowStore, Depends(get_store)]
Gateway = Annotated[PaymentGateway, Depends(get_gateway)]
Config = Annotated[EngineConfig, Depends(get_engine_config)]
Engine = Annotated[EarningsEngine, Depends(get_earnings_engine)]
