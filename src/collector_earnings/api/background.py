"""App-owned background refreshes.

A request's engine closes with its response, so the refresh a stale cache
hit asks for runs here instead: at most one task per collector, each on its
own database session. Running tasks are cancelled at shutdown.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession

from collector_earnings.engine import EarningsEngine
from collector_earnings.store.sql import SqlRowStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]
EngineFactory = Callable[[str, SqlRowStore], EarningsEngine]


class BackgroundRefresher:
    """Runs earnings refreshes outside the request that asked for them."""

    def __init__(self, session_factory: SessionFactory, build_engine: EngineFactory):
        self.session_factory = session_factory
        self.build_engine = build_engine
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> tuple[str, ...]:
        return tuple(self._tasks)

    def schedule(self, collector_id: str) -> None:
        """Start a refresh unless one is already running for the collector."""
        current = self._tasks.get(collector_id)
        if current is not None and not current.done():
            return
        task = asyncio.get_running_loop().create_task(self._run(collector_id))
        self._tasks[collector_id] = task
        task.add_done_callback(lambda done: self._forget(collector_id, done))

    async def drain(self) -> None:
        """Wait for every running refresh to finish."""
        while self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel running refreshes and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run(self, collector_id: str) -> None:
        try:
            async with self.session_factory() as session:
                async with self.build_engine(collector_id, SqlRowStore(session)) as engine:
                    await engine.refresh()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Background refresh failed for %s", collector_id, exc_info=True)

    def _forget(self, collector_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(collector_id) is task:
            del self._tasks[collector_id]
