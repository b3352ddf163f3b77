"""Telemetry event types.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Serializable for the JSON-lines log and back
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class TelemetryCategory(str, Enum):
    """Event categories for filtering."""

    FETCH = "fetch"
    CACHE = "cache"
    CASHOUT = "cashout"
    ERROR = "error"


class CacheOutcome(str, Enum):
    """Staleness classification of a cache lookup."""

    FRESH = "fresh"
    STALE = "stale"
    MISS = "miss"


class CashoutOutcome(str, Enum):
    """How a cash-out attempt ended."""

    ACCEPTED = "accepted"  # gateway took it (pending or success)
    FAILED = "failed"  # gateway rejected or unreachable
    REJECTED = "rejected"  # refused before reaching the gateway


@dataclass(frozen=True)
class TelemetryEvent:
    """Base class for all telemetry events."""

    timestamp: datetime
    collector_id: str | None

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> TelemetryCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = _serialize_dict(asdict(self))
        data["event_type"] = self.event_type
        data["category"] = self.category.value
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def _serialize_dict(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: _serialize_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_serialize_dict(v) for v in obj]
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


@dataclass(frozen=True)
class FetchRecorded(TelemetryEvent):
    """Earnings data was loaded from a source."""

    source: str  # 'network' or 'cache'
    duration_ms: float
    success: bool
    event_count: int = 0

    @property
    def category(self) -> TelemetryCategory:
        return TelemetryCategory.FETCH


@dataclass(frozen=True)
class CacheLookupRecorded(TelemetryEvent):
    """The offline cache was consulted."""

    outcome: CacheOutcome
    age_seconds: float | None = None
    online: bool = True

    @property
    def category(self) -> TelemetryCategory:
        return TelemetryCategory.CACHE

    @property
    def hit(self) -> bool:
        return self.outcome != CacheOutcome.MISS


@dataclass(frozen=True)
class CashoutRecorded(TelemetryEvent):
    """A cash-out or retry was attempted."""

    amount: Decimal
    outcome: CashoutOutcome
    is_retry: bool = False
    disbursement_id: str | None = None
    detail: str | None = None

    @property
    def category(self) -> TelemetryCategory:
        return TelemetryCategory.CASHOUT


@dataclass(frozen=True)
class ErrorRecorded(TelemetryEvent):
    """An operation failed."""

    operation: str
    error_type: str
    message: str

    @property
    def category(self) -> TelemetryCategory:
        return TelemetryCategory.ERROR


EVENT_TYPES: dict[str, type[TelemetryEvent]] = {
    cls.__name__: cls
    for cls in (FetchRecorded, CacheLookupRecorded, CashoutRecorded, ErrorRecorded)
}


def event_from_dict(data: dict[str, Any]) -> TelemetryEvent:
    """Rebuild an event written by to_dict()."""
    cls = EVENT_TYPES[data["event_type"]]
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name == "timestamp":
            value = datetime.fromisoformat(value)
        elif f.name == "amount":
            value = Decimal(value)
        elif f.name == "outcome":
            value = CacheOutcome(value) if cls is CacheLookupRecorded else CashoutOutcome(value)
        kwargs[f.name] = value
    return cls(**kwargs)
