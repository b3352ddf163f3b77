"""Aggregates payout breakdowns into collector earnings totals and series.

Aggregation is order-independent: all sums are exact Decimal additions and
chart series are keyed by fixed bucket boundaries computed from `now`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable

from collector_earnings.calculators.types import BUCKETS, EventStatus, PayoutBreakdown
from collector_earnings.money import ZERO, round_to_cents

DAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_LABELS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _shift_month(day: date, months: int) -> date:
    """First day of the month `months` away from day's month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


@dataclass(frozen=True)
class ChartPoint:
    """One bar of an earnings chart."""

    label: str
    start: date
    amount: Decimal


@dataclass(frozen=True)
class EarningsAggregate:
    """Collector earnings summed over an event set."""

    total_earnings: Decimal = ZERO
    pending_earnings: Decimal = ZERO  # picked up, not yet disposed
    disposed_earnings: Decimal = ZERO
    buckets: dict[str, Decimal] = field(default_factory=lambda: {b: ZERO for b in BUCKETS})
    job_count: int = 0
    pending_count: int = 0
    disposed_count: int = 0
    average_per_job: Decimal = ZERO
    weekly_earnings: Decimal = ZERO
    monthly_earnings: Decimal = ZERO
    completion_rate: Decimal = ZERO  # percent of jobs disposed
    average_rating: Decimal | None = None
    chart: dict[str, tuple[ChartPoint, ...]] = field(default_factory=dict)
    skipped: int = 0

    def bucket_breakdown(self) -> list[dict[str, Any]]:
        """Per-bucket amounts with percentage of the bucket total."""
        total = sum(self.buckets.values(), ZERO)
        return [
            {
                "type": name,
                "amount": self.buckets.get(name, ZERO),
                "percentage": (
                    round_to_cents(self.buckets.get(name, ZERO) / total * 100)
                    if total > 0
                    else ZERO
                ),
            }
            for name in BUCKETS
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_earnings": str(self.total_earnings),
            "pending_earnings": str(self.pending_earnings),
            "disposed_earnings": str(self.disposed_earnings),
            "buckets": {k: str(v) for k, v in self.buckets.items()},
            "job_count": self.job_count,
            "pending_count": self.pending_count,
            "disposed_count": self.disposed_count,
            "average_per_job": str(self.average_per_job),
            "weekly_earnings": str(self.weekly_earnings),
            "monthly_earnings": str(self.monthly_earnings),
            "completion_rate": str(self.completion_rate),
            "average_rating": str(self.average_rating) if self.average_rating is not None else None,
            "chart": {
                series: [
                    {"label": p.label, "start": p.start.isoformat(), "amount": str(p.amount)}
                    for p in points
                ]
                for series, points in self.chart.items()
            },
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EarningsAggregate:
        rating = data.get("average_rating")
        return cls(
            total_earnings=Decimal(data["total_earnings"]),
            pending_earnings=Decimal(data["pending_earnings"]),
            disposed_earnings=Decimal(data["disposed_earnings"]),
            buckets={k: Decimal(v) for k, v in data["buckets"].items()},
            job_count=int(data["job_count"]),
            pending_count=int(data["pending_count"]),
            disposed_count=int(data["disposed_count"]),
            average_per_job=Decimal(data["average_per_job"]),
            weekly_earnings=Decimal(data["weekly_earnings"]),
            monthly_earnings=Decimal(data["monthly_earnings"]),
            completion_rate=Decimal(data["completion_rate"]),
            average_rating=Decimal(rating) if rating is not None else None,
            chart={
                series: tuple(
                    ChartPoint(
                        label=p["label"],
                        start=date.fromisoformat(p["start"]),
                        amount=Decimal(p["amount"]),
                    )
                    for p in points
                )
                for series, points in data.get("chart", {}).items()
            },
            skipped=int(data.get("skipped", 0)),
        )


class Aggregator:
    """Sums split calculator outputs across an event set."""

    def aggregate(
        self,
        breakdowns: Iterable[PayoutBreakdown],
        *,
        now: datetime | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: Iterable[EventStatus] | None = None,
        skipped: int = 0,
    ) -> EarningsAggregate:
        """Aggregate breakdowns, optionally filtered by date range and status.

        Args:
            breakdowns: Calculator outputs (any order)
            now: Reference time for rolling sums and chart series
            start / end: Inclusive/exclusive bounds on the event timestamp
            statuses: Keep only these statuses
            skipped: Events already dropped by the calculator

        Returns:
            EarningsAggregate
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        wanted = set(statuses) if statuses is not None else None
        selected = [
            b for b in breakdowns
            if self._matches(b, start=start, end=end, statuses=wanted)
        ]

        buckets = {name: ZERO for name in BUCKETS}
        total = pending = disposed = weekly = monthly = ZERO
        pending_count = disposed_count = 0
        ratings: list[Decimal] = []
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=30)

        for b in selected:
            amount = b.collector_total
            total += amount
            for name, value in b.collector.as_dict().items():
                buckets[name] += value

            if b.status == EventStatus.DISPOSED:
                disposed += amount
                disposed_count += 1
            else:
                pending += amount
                pending_count += 1

            if b.occurred_at is not None:
                when = _as_utc(b.occurred_at)
                if week_ago < when <= now:
                    weekly += amount
                if month_ago < when <= now:
                    monthly += amount

            if b.rating is not None:
                ratings.append(b.rating)

        job_count = len(selected)
        return EarningsAggregate(
            total_earnings=total,
            pending_earnings=pending,
            disposed_earnings=disposed,
            buckets=buckets,
            job_count=job_count,
            pending_count=pending_count,
            disposed_count=disposed_count,
            average_per_job=round_to_cents(total / job_count) if job_count else ZERO,
            weekly_earnings=weekly,
            monthly_earnings=monthly,
            completion_rate=(
                round_to_cents(Decimal(disposed_count) / job_count * 100) if job_count else ZERO
            ),
            average_rating=(
                round_to_cents(sum(ratings, ZERO) / len(ratings)) if ratings else None
            ),
            chart=self.chart_series(selected, now=now),
            skipped=skipped,
        )

    def chart_series(
        self,
        breakdowns: Iterable[PayoutBreakdown],
        *,
        now: datetime,
    ) -> dict[str, tuple[ChartPoint, ...]]:
        """Day (last 7 days), week (last 4 weeks), month (last 12 months) series."""
        now = _as_utc(now)
        today = now.date()
        dated = [
            (_as_utc(b.occurred_at), b.collector_total)
            for b in breakdowns
            if b.occurred_at is not None
        ]

        days = [today - timedelta(days=i) for i in range(6, -1, -1)]
        day_totals = {d: ZERO for d in days}

        week_edges = [now - timedelta(days=7 * i) for i in range(4, -1, -1)]
        week_totals = [ZERO] * 4

        months = [_shift_month(today, -i) for i in range(11, -1, -1)]
        month_totals = {m: ZERO for m in months}

        for when, amount in dated:
            day = when.date()
            if day in day_totals:
                day_totals[day] += amount
            for i in range(4):
                if week_edges[i] <= when < week_edges[i + 1]:
                    week_totals[i] += amount
                    break
            month = date(day.year, day.month, 1)
            if month in month_totals:
                month_totals[month] += amount

        return {
            "week": tuple(
                ChartPoint(label=DAY_LABELS[d.weekday()], start=d, amount=day_totals[d])
                for d in days
            ),
            "month": tuple(
                ChartPoint(label=f"W{i + 1}", start=week_edges[i].date(), amount=week_totals[i])
                for i in range(4)
            ),
            "year": tuple(
                ChartPoint(label=MONTH_LABELS[m.month - 1], start=m, amount=month_totals[m])
                for m in months
            ),
        }

    @staticmethod
    def _matches(
        breakdown: PayoutBreakdown,
        *,
        start: datetime | None,
        end: datetime | None,
        statuses: set[EventStatus] | None,
    ) -> bool:
        if statuses is not None and breakdown.status not in statuses:
            return False
        if start is None and end is None:
            return True
        if breakdown.occurred_at is None:
            return False
        when = _as_utc(breakdown.occurred_at)
        if start is not None and when < _as_utc(start):
            return False
        if end is not None and when >= _as_utc(end):
            return False
        return True
