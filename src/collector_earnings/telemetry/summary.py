"""Telemetry summary metrics.

Usage:
    summary = recorder.summary()

    # For Prometheus export
    print(summary.to_prometheus())

    # For JSON export
    print(summary.to_json())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


@dataclass
class Counter:
    """A counter metric (monotonically increasing)."""

    name: str
    value: int
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class Gauge:
    """A gauge metric (can go up or down)."""

    name: str
    value: float | int | Decimal
    labels: dict[str, str] = field(default_factory=dict)
    help_text: str = ""


@dataclass
class TelemetrySummary:
    """Rates computed over the retained telemetry log."""

    cache_lookups: int = 0
    cache_hits: int = 0
    stale_hits: int = 0
    fetch_count: int = 0
    failed_fetches: int = 0
    total_fetch_ms: float = 0.0
    cashout_attempts: int = 0
    cashout_successes: int = 0
    error_count: int = 0
    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def hit_rate(self) -> float:
        return self.cache_hits / self.cache_lookups if self.cache_lookups else 0.0

    @property
    def average_fetch_ms(self) -> float:
        return self.total_fetch_ms / self.fetch_count if self.fetch_count else 0.0

    @property
    def cashout_success_rate(self) -> float:
        return self.cashout_successes / self.cashout_attempts if self.cashout_attempts else 0.0

    def metrics(self) -> list[Counter | Gauge]:
        return [
            Counter("earnings_cache_lookups_total", self.cache_lookups,
                    help_text="Offline cache lookups"),
            Counter("earnings_cache_hits_total", self.cache_hits,
                    help_text="Cache lookups served (fresh or stale)"),
            Counter("earnings_cache_stale_hits_total", self.stale_hits,
                    help_text="Cache lookups served stale"),
            Gauge("earnings_cache_hit_rate", round(self.hit_rate, 4),
                  help_text="Share of lookups served from cache"),
            Counter("earnings_fetches_total", self.fetch_count,
                    help_text="Earnings loads"),
            Counter("earnings_fetch_failures_total", self.failed_fetches,
                    help_text="Earnings loads that failed"),
            Gauge("earnings_fetch_latency_ms_avg", round(self.average_fetch_ms, 2),
                  help_text="Average earnings load latency"),
            Counter("earnings_cashouts_total", self.cashout_attempts,
                    help_text="Cash-out attempts including retries"),
            Counter("earnings_cashouts_accepted_total", self.cashout_successes,
                    help_text="Cash-outs accepted by the gateway"),
            Gauge("earnings_cashout_success_rate", round(self.cashout_success_rate, 4),
                  help_text="Share of cash-outs accepted"),
            Counter("earnings_errors_total", self.error_count,
                    help_text="Recorded errors"),
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "collected_at": self.collected_at.isoformat(),
            "cache_lookups": self.cache_lookups,
            "cache_hits": self.cache_hits,
            "stale_hits": self.stale_hits,
            "hit_rate": self.hit_rate,
            "fetch_count": self.fetch_count,
            "failed_fetches": self.failed_fetches,
            "average_fetch_ms": self.average_fetch_ms,
            "cashout_attempts": self.cashout_attempts,
            "cashout_successes": self.cashout_successes,
            "cashout_success_rate": self.cashout_success_rate,
            "error_count": self.error_count,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def to_prometheus(self) -> str:
        """Convert to Prometheus text format."""
        lines = []

        for metric in self.metrics():
            labels = ""
            if metric.labels:
                label_parts = [f'{k}="{v}"' for k, v in metric.labels.items()]
                labels = "{" + ",".join(label_parts) + "}"

            value = float(metric.value) if isinstance(metric.value, Decimal) else metric.value

            if metric.help_text:
                lines.append(f"# HELP {metric.name} {metric.help_text}")

            metric_type = "counter" if isinstance(metric, Counter) else "gauge"
            lines.append(f"# TYPE {metric.name} {metric_type}")
            lines.append(f"{metric.name}{labels} {value}")

        return "\n".join(lines)
