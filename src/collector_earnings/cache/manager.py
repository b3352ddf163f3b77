"""Offline cache manager.

Serves the last earnings snapshot by age:
- age <= fresh_ttl: FRESH
- fresh_ttl < age <= offline_ttl: STALE (online: a background refresh is
  scheduled, one at a time)
- age > offline_ttl: miss

The refresh task is cancelled when the snapshot is replaced or the manager
is closed. A manager built with `schedule` hands stale refreshes to that
callback instead, for owners that outlive the manager (an app serving one
request per manager). Corrupt entries are purged and reported as a miss.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import InvalidOperation
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence

from collector_earnings.engine_config import CacheConfig
from collector_earnings.errors import CacheCorruptionError
from collector_earnings.snapshot import EarningsSnapshot
from collector_earnings.telemetry.events import CacheOutcome

if TYPE_CHECKING:
    from collector_earnings.cache.storage import CacheStorage
    from collector_earnings.telemetry.recorder import TelemetryRecorder

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[Any]]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class CacheHit:
    """A snapshot served from the cache."""

    snapshot: EarningsSnapshot
    transactions: tuple[dict[str, Any], ...]
    freshness: CacheOutcome  # FRESH or STALE
    age: timedelta
    from_cache: bool = True

    @property
    def is_stale(self) -> bool:
        return self.freshness == CacheOutcome.STALE


class OfflineCacheManager:
    """Owns the cached snapshot and its background refresh task."""

    def __init__(
        self,
        storage: CacheStorage,
        config: CacheConfig | None = None,
        *,
        refresh: RefreshCallback | None = None,
        telemetry: TelemetryRecorder | None = None,
        clock: Callable[[], datetime] | None = None,
        schedule: Callable[[], None] | None = None,
    ):
        self.storage = storage
        self.config = config or CacheConfig()
        self.refresh = refresh
        self.telemetry = telemetry
        self.schedule = schedule
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._refresh_task: asyncio.Task[Any] | None = None

    @property
    def refresh_task(self) -> asyncio.Task[Any] | None:
        return self._refresh_task

    async def get(self, online: bool) -> CacheHit | None:
        """Return the cached snapshot if its age allows, else None."""
        entry = await self._load()
        if entry is None:
            self._record(CacheOutcome.MISS, None, online)
            return None

        snapshot, transactions = entry
        created_at = snapshot.created_at
        if created_at is None:
            self._record(CacheOutcome.MISS, None, online)
            return None

        age = max(self._clock() - _as_utc(created_at), timedelta(0))
        if age <= self.config.fresh_ttl:
            freshness = CacheOutcome.FRESH
        elif age <= self.config.offline_ttl:
            freshness = CacheOutcome.STALE
        else:
            self._record(CacheOutcome.MISS, age, online)
            return None

        self._record(freshness, age, online)
        if freshness == CacheOutcome.STALE and online and self.config.refresh_on_stale:
            self._schedule_refresh()

        return CacheHit(
            snapshot=snapshot,
            transactions=transactions,
            freshness=freshness,
            age=age,
        )

    async def set(
        self,
        snapshot: EarningsSnapshot,
        transactions: Sequence[dict[str, Any]] = (),
    ) -> None:
        """Replace the stored entry.

        transactions are oldest first; only the newest history_limit are kept.
        """
        self._cancel_refresh()
        limit = self.config.history_limit
        history = list(transactions)[-limit:] if limit else []
        document = {
            "snapshot": snapshot.to_dict(),
            "transactions": history,
            "stored_at": self._clock().isoformat(),
        }
        try:
            await self.storage.write(document)
        except (OSError, TypeError, ValueError):
            logger.warning("Could not write earnings cache", exc_info=True)

    async def clear(self) -> None:
        self._cancel_refresh()
        await self._purge()

    async def close(self) -> None:
        """Cancel any refresh in flight and wait for it to unwind."""
        task = self._refresh_task
        self._cancel_refresh()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _load(self) -> tuple[EarningsSnapshot, tuple[dict[str, Any], ...]] | None:
        try:
            document = await self.storage.read()
            if document is None:
                return None
            try:
                snapshot = EarningsSnapshot.from_dict(document["snapshot"])
                transactions = tuple(document.get("transactions", ()))
                if not all(isinstance(t, dict) for t in transactions):
                    raise TypeError("transactions must be objects")
            except (AttributeError, KeyError, TypeError, ValueError, InvalidOperation) as e:
                raise CacheCorruptionError(f"Cache entry malformed: {e}") from e
        except CacheCorruptionError as e:
            logger.warning("Purging corrupt earnings cache: %s", e)
            await self._purge()
            return None
        return snapshot, transactions

    async def _purge(self) -> None:
        try:
            await self.storage.delete()
        except OSError:
            logger.warning("Could not delete earnings cache", exc_info=True)

    def _schedule_refresh(self) -> None:
        if self.schedule is not None:
            self.schedule()
            return
        if self.refresh is None:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self._run_refresh())

    async def _run_refresh(self) -> None:
        try:
            await self.refresh()  # type: ignore[misc]
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Background earnings refresh failed: %s", e)
            if self.telemetry is not None:
                self.telemetry.record_error("cache_refresh", e)

    def _cancel_refresh(self) -> None:
        task = self._refresh_task
        if task is None:
            return
        # A refresh that stores its own result must not cancel itself.
        if task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        self._refresh_task = None

    def _record(self, outcome: CacheOutcome, age: timedelta | None, online: bool) -> None:
        if self.telemetry is not None:
            self.telemetry.record_cache_lookup(
                outcome,
                age_seconds=age.total_seconds() if age is not None else None,
                online=online,
            )
