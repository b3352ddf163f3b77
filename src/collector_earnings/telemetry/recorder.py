"""Telemetry recorder.

Append-only, best-effort log of fetches, cache lookups, cash-outs and errors.
Recording never raises into the calling operation: a failing sink drops the
event and the caller carries on.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Protocol

from collector_earnings.engine_config import TelemetryConfig
from collector_earnings.telemetry.events import (
    CacheLookupRecorded,
    CacheOutcome,
    CashoutOutcome,
    CashoutRecorded,
    ErrorRecorded,
    FetchRecorded,
    TelemetryEvent,
    event_from_dict,
)
from collector_earnings.telemetry.summary import TelemetrySummary

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Where recorded events go besides the in-memory log.

    Methods are blocking; the recorder calls them from a worker thread.
    """

    def write(self, event: TelemetryEvent) -> None:
        ...

    def load(self, limit: int) -> list[TelemetryEvent]:
        """Most recent events, oldest first."""
        ...


class MemoryTelemetrySink:
    """Keeps written events in a list (tests, ephemeral sessions)."""

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def write(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def load(self, limit: int) -> list[TelemetryEvent]:
        return self.events[-limit:]


class JsonlTelemetrySink:
    """Appends one JSON object per line.

    The file is compacted to the newest `retention` lines once it grows past
    twice that size.
    """

    def __init__(self, path: str | Path, retention: int = 500):
        self.path = Path(path)
        self.retention = retention
        self._lines_written = 0

    def write(self, event: TelemetryEvent) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(event.to_json() + "\n")
        self._lines_written += 1
        if self._lines_written >= self.retention:
            self._lines_written = 0
            self._compact()

    def load(self, limit: int) -> list[TelemetryEvent]:
        if not self.path.exists():
            return []
        events: list[TelemetryEvent] = []
        for line in self._read_lines()[-limit:]:
            try:
                events.append(event_from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError):
                logger.debug("Skipping unreadable telemetry line")
        return events

    def _read_lines(self) -> list[str]:
        with self.path.open("r", encoding="utf-8") as f:
            return [line for line in f.read().splitlines() if line.strip()]

    def _compact(self) -> None:
        lines = self._read_lines()
        if len(lines) <= 2 * self.retention:
            return
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text("\n".join(lines[-self.retention:]) + "\n", encoding="utf-8")
        tmp.replace(self.path)


class TelemetryRecorder:
    """Bounded, append-only telemetry log for one collector session.

    Sink writes never run on the caller's stack inside an event loop: events
    are queued and a single writer task hands them to the sink in a worker
    thread, in order. Outside a loop the sink is written directly.
    """

    def __init__(
        self,
        config: TelemetryConfig | None = None,
        sink: TelemetrySink | None = None,
        *,
        collector_id: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or TelemetryConfig()
        self.sink = sink
        self.collector_id = collector_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._events: deque[TelemetryEvent] = deque(maxlen=self.config.retention)
        self._pending: deque[TelemetryEvent] = deque()
        self._writer: asyncio.Task[None] | None = None

    @property
    def events(self) -> tuple[TelemetryEvent, ...]:
        return tuple(self._events)

    async def load_history(self) -> None:
        """Prepend the sink's stored events to the in-memory log."""
        if self.sink is None:
            return
        try:
            history = await asyncio.to_thread(self.sink.load, self.config.retention)
        except Exception:
            logger.warning("Could not load telemetry history", exc_info=True)
            return
        current = list(self._events)
        self._events.clear()
        self._events.extend(history)
        self._events.extend(current)

    def record(self, event: TelemetryEvent) -> None:
        """Append an event. Never raises and never waits on the sink."""
        try:
            self._events.append(event)
            if self.sink is not None:
                self._enqueue(event)
        except Exception:
            logger.debug("Dropped telemetry event %s", event.event_type, exc_info=True)

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the sink."""
        writer = self._writer
        if writer is not None and not writer.done():
            await writer

    def _enqueue(self, event: TelemetryEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.sink.write(event)  # type: ignore[union-attr]
            return
        self._pending.append(event)
        if self._writer is None or self._writer.done():
            self._writer = loop.create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            event = self._pending.popleft()
            try:
                await asyncio.to_thread(self.sink.write, event)  # type: ignore[union-attr]
            except Exception:
                logger.debug("Dropped telemetry event %s", event.event_type, exc_info=True)

    def record_fetch(
        self,
        source: str,
        duration_ms: float,
        success: bool,
        event_count: int = 0,
    ) -> None:
        self._safe(
            lambda: FetchRecorded(
                timestamp=self._clock(),
                collector_id=self.collector_id,
                source=source,
                duration_ms=duration_ms,
                success=success,
                event_count=event_count,
            )
        )

    def record_cache_lookup(
        self,
        outcome: CacheOutcome,
        age_seconds: float | None = None,
        online: bool = True,
    ) -> None:
        self._safe(
            lambda: CacheLookupRecorded(
                timestamp=self._clock(),
                collector_id=self.collector_id,
                outcome=outcome,
                age_seconds=age_seconds,
                online=online,
            )
        )

    def record_cashout(
        self,
        amount: Decimal,
        outcome: CashoutOutcome,
        *,
        is_retry: bool = False,
        disbursement_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        self._safe(
            lambda: CashoutRecorded(
                timestamp=self._clock(),
                collector_id=self.collector_id,
                amount=amount,
                outcome=outcome,
                is_retry=is_retry,
                disbursement_id=disbursement_id,
                detail=detail,
            )
        )

    def record_error(self, operation: str, error: BaseException) -> None:
        self._safe(
            lambda: ErrorRecorded(
                timestamp=self._clock(),
                collector_id=self.collector_id,
                operation=operation,
                error_type=type(error).__name__,
                message=str(error),
            )
        )

    def summary(self, events: Iterable[TelemetryEvent] | None = None) -> TelemetrySummary:
        """Hit rate, average fetch latency and cash-out success rate."""
        summary = TelemetrySummary(collected_at=self._clock())
        for event in self._events if events is None else events:
            if isinstance(event, CacheLookupRecorded):
                summary.cache_lookups += 1
                if event.hit:
                    summary.cache_hits += 1
                if event.outcome == CacheOutcome.STALE:
                    summary.stale_hits += 1
            elif isinstance(event, FetchRecorded):
                summary.fetch_count += 1
                summary.total_fetch_ms += event.duration_ms
                if not event.success:
                    summary.failed_fetches += 1
            elif isinstance(event, CashoutRecorded):
                summary.cashout_attempts += 1
                if event.outcome == CashoutOutcome.ACCEPTED:
                    summary.cashout_successes += 1
            elif isinstance(event, ErrorRecorded):
                summary.error_count += 1
        return summary

    def clear(self) -> None:
        self._events.clear()

    def _safe(self, build: Callable[[], TelemetryEvent]) -> None:
        try:
            event = build()
        except Exception:
            logger.debug("Could not build telemetry event", exc_info=True)
            return
        self.record(event)
