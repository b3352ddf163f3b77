"""Tests for the offline cache manager."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from collector_earnings.cache.manager import OfflineCacheManager
from collector_earnings.cache.storage import FileCacheStorage, MemoryCacheStorage
from collector_earnings.calculators.aggregator import Aggregator
from collector_earnings.engine_config import CacheConfig
from collector_earnings.settlement.reconciler import SettlementPosition
from collector_earnings.snapshot import EarningsSnapshot
from collector_earnings.telemetry.events import CacheOutcome, ErrorRecorded
from collector_earnings.telemetry.recorder import TelemetryRecorder

NOW = datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)

CONFIG = CacheConfig(
    fresh_ttl=timedelta(minutes=5),
    offline_ttl=timedelta(hours=24),
    history_limit=3,
)


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def snapshot(created_at: datetime | None = NOW) -> EarningsSnapshot:
    return EarningsSnapshot(
        collector_id="collector-1",
        aggregate=Aggregator().aggregate([], now=NOW),
        settlement=SettlementPosition(Decimal("10.00"), Decimal("30.00"), 1, 2),
        available_for_cashout=Decimal("20.00"),
        loyalty_tier="Gold",
        created_at=created_at,
    )


def make_manager(clock: Clock, *, refresh=None, storage=None, telemetry=None):
    return OfflineCacheManager(
        storage or MemoryCacheStorage(),
        CONFIG,
        refresh=refresh,
        telemetry=telemetry,
        clock=clock,
    )


class TestFreshness:
    """Test age classification."""

    async def test_fresh_hit(self):
        """An entry younger than fresh_ttl is served fresh."""
        clock = Clock()
        manager = make_manager(clock)
        await manager.set(snapshot())
        clock.advance(timedelta(minutes=4))

        hit = await manager.get(online=True)

        assert hit is not None
        assert hit.freshness == CacheOutcome.FRESH
        assert hit.is_stale is False
        assert hit.age == timedelta(minutes=4)
        assert hit.snapshot == snapshot()

    async def test_stale_hit(self):
        """Between fresh_ttl and offline_ttl the entry is stale."""
        clock = Clock()
        manager = make_manager(clock)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=1))

        hit = await manager.get(online=True)

        assert hit is not None
        assert hit.is_stale is True

    async def test_expired_is_miss(self):
        """Past offline_ttl nothing is served, even offline."""
        clock = Clock()
        manager = make_manager(clock)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=25))

        assert await manager.get(online=False) is None
        assert await manager.get(online=True) is None

    async def test_offline_serves_within_offline_ttl(self):
        """Offline lookups are served stale up to offline_ttl."""
        clock = Clock()
        manager = make_manager(clock)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=23))

        hit = await manager.get(online=False)

        assert hit is not None
        assert hit.freshness == CacheOutcome.STALE

    async def test_empty_is_miss(self):
        """Nothing stored is a miss."""
        assert await make_manager(Clock()).get(online=True) is None

    async def test_undated_snapshot_is_miss(self):
        """Snapshots without created_at cannot be aged."""
        manager = make_manager(Clock())
        await manager.set(snapshot(created_at=None))

        assert await manager.get(online=True) is None

    async def test_lookups_recorded(self):
        """Every lookup lands in telemetry with its outcome."""
        clock = Clock()
        telemetry = TelemetryRecorder(collector_id="collector-1", clock=clock)
        manager = make_manager(clock, telemetry=telemetry)

        await manager.get(online=True)
        await manager.set(snapshot())
        await manager.get(online=False)

        outcomes = [(e.outcome, e.online) for e in telemetry.events]
        assert outcomes == [(CacheOutcome.MISS, True), (CacheOutcome.FRESH, False)]


class TestStorage:
    """Test persistence and corruption handling."""

    async def test_history_limit(self):
        """Only the newest history_limit transactions are kept."""
        manager = make_manager(Clock())
        transactions = [{"event_id": str(i)} for i in range(5)]

        await manager.set(snapshot(), transactions)
        hit = await manager.get(online=True)

        assert [t["event_id"] for t in hit.transactions] == ["2", "3", "4"]

    async def test_corrupt_entry_purged(self):
        """Undecodable entries are deleted and reported as a miss."""
        storage = MemoryCacheStorage()
        storage.raw = "{not json"
        manager = make_manager(Clock(), storage=storage)

        assert await manager.get(online=True) is None
        assert storage.raw is None

    async def test_malformed_document_purged(self):
        """Valid JSON with the wrong shape is purged too."""
        storage = MemoryCacheStorage()
        storage.raw = '{"snapshot": {"collector_id": "c"}}'
        manager = make_manager(Clock(), storage=storage)

        assert await manager.get(online=True) is None
        assert storage.raw is None

    @pytest.mark.parametrize(
        "field, value",
        [
            ("aggregate", []),
            ("buckets", ["x"]),
            ("chart", ["week"]),
            ("settlement", "nope"),
        ],
    )
    async def test_wrongly_typed_document_purged(self, field, value):
        """Fields of the wrong JSON type are purged, never raised."""
        data = snapshot().to_dict()
        if field in data:
            data[field] = value
        else:
            data["aggregate"][field] = value
        storage = MemoryCacheStorage()
        storage.raw = json.dumps({"snapshot": data, "transactions": []})
        manager = make_manager(Clock(), storage=storage)

        assert await manager.get(online=True) is None
        assert storage.raw is None

    async def test_non_object_transactions_purged(self):
        """Transactions must be JSON objects."""
        document = {"snapshot": snapshot().to_dict(), "transactions": ["x", 1]}
        storage = MemoryCacheStorage()
        storage.raw = json.dumps(document)
        manager = make_manager(Clock(), storage=storage)

        assert await manager.get(online=True) is None
        assert storage.raw is None

    async def test_clear(self):
        """clear removes the stored entry."""
        storage = MemoryCacheStorage()
        manager = make_manager(Clock(), storage=storage)
        await manager.set(snapshot())

        await manager.clear()

        assert storage.raw is None

    async def test_file_storage(self, tmp_path):
        """The file backend survives a new manager instance."""
        path = tmp_path / "cache" / "earnings.json"
        await make_manager(Clock(), storage=FileCacheStorage(path)).set(
            snapshot(), [{"event_id": "a"}]
        )

        hit = await make_manager(Clock(), storage=FileCacheStorage(path)).get(online=True)

        assert hit is not None
        assert hit.snapshot.available_for_cashout == Decimal("20.00")
        assert hit.transactions == ({"event_id": "a"},)

    async def test_corrupt_file_purged(self, tmp_path):
        """A corrupt cache file is removed."""
        path = tmp_path / "earnings.json"
        path.write_text("[]", encoding="utf-8")

        assert await make_manager(Clock(), storage=FileCacheStorage(path)).get(online=True) is None
        assert not path.exists()


class TestBackgroundRefresh:
    """Test stale-while-revalidate."""

    async def test_stale_online_schedules_single_refresh(self):
        """Repeated stale hits share one refresh task."""
        clock = Clock()
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def refresh():
            calls.append(1)
            started.set()
            await release.wait()

        manager = make_manager(clock, refresh=refresh)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=1))

        await manager.get(online=True)
        task = manager.refresh_task
        await started.wait()
        await manager.get(online=True)

        assert task is not None
        assert manager.refresh_task is task
        assert calls == [1]

        release.set()
        await task

    async def test_offline_stale_does_not_refresh(self):
        """No refresh is scheduled while offline."""
        clock = Clock()

        async def refresh():
            raise AssertionError("refresh while offline")

        manager = make_manager(clock, refresh=refresh)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=1))

        await manager.get(online=False)

        assert manager.refresh_task is None

    async def test_fresh_does_not_refresh(self):
        """Fresh hits leave the snapshot alone."""
        clock = Clock()
        manager = make_manager(clock, refresh=asyncio.sleep)
        await manager.set(snapshot())

        await manager.get(online=True)

        assert manager.refresh_task is None

    async def test_close_cancels_refresh(self):
        """close cancels the in-flight refresh and waits for it."""
        clock = Clock()

        async def refresh():
            await asyncio.sleep(3600)

        manager = make_manager(clock, refresh=refresh)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=1))
        await manager.get(online=True)
        task = manager.refresh_task

        await manager.close()

        assert task.cancelled()
        assert manager.refresh_task is None

    async def test_set_cancels_refresh(self):
        """Storing a new snapshot supersedes the pending refresh."""
        clock = Clock()

        async def refresh():
            await asyncio.sleep(3600)

        manager = make_manager(clock, refresh=refresh)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=1))
        await manager.get(online=True)
        task = manager.refresh_task

        await manager.set(snapshot(created_at=clock.now))

        with pytest.raises(asyncio.CancelledError):
            await task
        assert manager.refresh_task is None

    async def test_failed_refresh_recorded(self):
        """Refresh failures are logged to telemetry, not raised."""
        clock = Clock()
        telemetry = TelemetryRecorder(collector_id="collector-1", clock=clock)

        async def refresh():
            raise RuntimeError("database down")

        manager = make_manager(clock, refresh=refresh, telemetry=telemetry)
        await manager.set(snapshot())
        clock.advance(timedelta(hours=1))
        await manager.get(online=True)

        await manager.refresh_task

        errors = [e for e in telemetry.events if isinstance(e, ErrorRecorded)]
        assert len(errors) == 1
        assert errors[0].operation == "cache_refresh"
        assert errors[0].message == "database down"
