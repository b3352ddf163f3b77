"""Best-effort telemetry for earnings sessions."""

from collector_earnings.telemetry.events import (
    CacheLookupRecorded,
    CacheOutcome,
    CashoutOutcome,
    CashoutRecorded,
    ErrorRecorded,
    FetchRecorded,
    TelemetryCategory,
    TelemetryEvent,
    event_from_dict,
)
from collector_earnings.telemetry.recorder import (
    JsonlTelemetrySink,
    MemoryTelemetrySink,
    TelemetryRecorder,
    TelemetrySink,
)
from collector_earnings.telemetry.summary import Counter, Gauge, TelemetrySummary

__all__ = [
    "CacheLookupRecorded",
    "CacheOutcome",
    "CashoutOutcome",
    "CashoutRecorded",
    "ErrorRecorded",
    "FetchRecorded",
    "TelemetryCategory",
    "TelemetryEvent",
    "event_from_dict",
    "JsonlTelemetrySink",
    "MemoryTelemetrySink",
    "TelemetryRecorder",
    "TelemetrySink",
    "Counter",
    "Gauge",
    "TelemetrySummary",
]
