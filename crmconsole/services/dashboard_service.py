# Overview: Service-layer operations for the sales dashboard; range state, metrics and snapshots.

"""
Dashboard

The aggregate is computed by the backend and never mutated here. What the
console owns is the operator's view state:

- RangeSelection: exactly one of the 7-day window, the 30-day window, or a
  custom [start, end] range. Choosing one replaces the others.
- Metric: which per-day series the trend chart shows. Switching metric only
  changes rendering; the fetched series already carries all three.

Responses can arrive out of order when the operator changes the range
quickly. Every fetch takes a ticket from a FetchSequencer and its result is
kept only if no newer fetch has been issued since.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional

from crmconsole.client import APIClient, APIError, SessionExpired, unwrap
from crmconsole.services.concurrency import FetchSequencer
from crmconsole.time_utils import parse_iso_date, short_day, trailing_window
from crmconsole.validation import ValidationError


PRESET_DAYS = (7, 30)
RECENT_LIMIT = 10

CHART_WIDTH = 640
CHART_HEIGHT = 240


class DashboardError(Exception):
    """Raised when the aggregate cannot be loaded."""


class Metric(Enum):
    AMOUNT = "amount"
    COUNT = "count"
    AVERAGE = "average"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Metric":
        for metric in cls:
            if metric.value == value:
                return metric
        return cls.AMOUNT

    @property
    def data_key(self) -> str:
        return _METRIC_KEYS[self]

    @property
    def label(self) -> str:
        return _METRIC_LABELS[self]

    def format(self, value: float) -> str:
        if self is Metric.COUNT:
            return f"{int(value)} orders"
        return f"{value:.2f}"


_METRIC_KEYS = {
    Metric.AMOUNT: "totalAmount",
    Metric.COUNT: "orderCount",
    Metric.AVERAGE: "averageAmount",
}

_METRIC_LABELS = {
    Metric.AMOUNT: "Revenue",
    Metric.COUNT: "Orders",
    Metric.AVERAGE: "Average order",
}


@dataclass(frozen=True)
class RangeSelection:
    """
    Mutually exclusive range control. Build one with last_days() or custom();
    there is no way to hold a preset and a custom range at the same time.
    """
    days: Optional[int] = None
    start: Optional[date] = None
    end: Optional[date] = None

    @classmethod
    def last_days(cls, days: int) -> "RangeSelection":
        if days not in PRESET_DAYS:
            raise ValidationError(f"Range must be one of {PRESET_DAYS}", "range")
        return cls(days=days)

    @classmethod
    def custom(cls, start: date | str | None, end: date | str | None) -> "RangeSelection":
        try:
            start_d = parse_iso_date(start) if isinstance(start, str) else start
            end_d = parse_iso_date(end) if isinstance(end, str) else end
        except ValueError:
            raise ValidationError("Dates must be YYYY-MM-DD", "startDate")
        if start_d is None or end_d is None:
            raise ValidationError("Pick both a start and an end date", "startDate")
        if end_d < start_d:
            raise ValidationError("End date cannot be before start date", "endDate")
        return cls(start=start_d, end=end_d)

    @classmethod
    def from_args(cls, args) -> "RangeSelection":
        """Query-string form: ?range=7|30 or ?startDate=&endDate=."""
        if args.get("startDate") or args.get("endDate"):
            return cls.custom(args.get("startDate"), args.get("endDate"))
        raw = args.get("range") or "7"
        try:
            return cls.last_days(int(raw))
        except ValueError:
            raise ValidationError("Range must be 7 or 30", "range")

    @property
    def kind(self) -> str:
        return "custom" if self.days is None else str(self.days)

    @property
    def is_custom(self) -> bool:
        return self.days is None

    def query_params(self) -> dict:
        if self.is_custom:
            return {"startDate": self.start.isoformat(), "endDate": self.end.isoformat()}
        return {"range": self.days}

    def describe(self) -> str:
        if self.is_custom:
            return f"{self.start:%m/%d} - {self.end:%m/%d}"
        return f"Last {self.days} days"

    def window(self) -> tuple[date, date]:
        if self.is_custom:
            return self.start, self.end
        return trailing_window(self.days)


@dataclass
class DayTotals:
    date: str
    total_amount: float = 0.0
    order_count: int = 0
    average_amount: float = 0.0

    @classmethod
    def from_api(cls, data: dict) -> "DayTotals":
        return cls(
            date=data.get("date") or "",
            total_amount=float(data.get("totalAmount") or 0),
            order_count=int(data.get("orderCount") or 0),
            average_amount=float(data.get("averageAmount") or 0),
        )

    def to_api(self) -> dict:
        return {
            "date": self.date,
            "totalAmount": self.total_amount,
            "orderCount": self.order_count,
            "averageAmount": self.average_amount,
        }

    def value(self, metric: Metric) -> float:
        return float(self.to_api()[metric.data_key])


@dataclass
class DashboardAggregate:
    today: DayTotals
    trend: list[DayTotals] = field(default_factory=list)
    recent_orders: list[dict] = field(default_factory=list)
    recent_customers: list[dict] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "DashboardAggregate":
        data = data or {}
        today = DayTotals.from_api(data.get("today") or {})
        return cls(
            today=today,
            trend=[DayTotals.from_api(row) for row in data.get("trend") or []],
            recent_orders=list(data.get("recentOrders") or [])[:RECENT_LIMIT],
            recent_customers=list(data.get("recentCustomers") or [])[:RECENT_LIMIT],
        )

    def series(self, metric: Metric) -> list[tuple[str, float]]:
        return [(day.date, day.value(metric)) for day in self.trend]


def fetch_aggregate(api: APIClient, selection: RangeSelection) -> DashboardAggregate:
    try:
        data = unwrap(api.get("/api/dashboard", params=selection.query_params()))
    except SessionExpired:
        raise
    except APIError as exc:
        raise DashboardError(exc.user_message) from exc
    return DashboardAggregate.from_api(data)


class DashboardService:
    """
    Holds the operator's current range and the snapshot that belongs to it.
    One instance per visitor session (see extensions.DashboardRegistry).
    """

    KEY = "dashboard"

    def __init__(self):
        self._sequencer = FetchSequencer()
        self._lock = threading.Lock()
        self.selection = RangeSelection.last_days(7)
        self.snapshot: Optional[DashboardAggregate] = None
        self.discarded = 0

    def select(self, selection: RangeSelection) -> None:
        with self._lock:
            if selection != self.selection:
                self.selection = selection
                self.snapshot = None

    def refresh(self, api: APIClient, selection: Optional[RangeSelection] = None) -> Optional[DashboardAggregate]:
        """
        Fetch the aggregate for `selection` (default: the current one).

        Returns the aggregate when it is still the newest request, or the
        snapshot of whichever newer request already won.
        """
        if selection is not None:
            self.select(selection)
        selection = self.selection
        ticket = self._sequencer.issue(self.KEY)

        aggregate = fetch_aggregate(api, selection)

        def _apply():
            self.snapshot = aggregate

        if not self._sequencer.apply_if_current(self.KEY, ticket, _apply):
            with self._lock:
                self.discarded += 1
        return self.snapshot

    def reset(self) -> None:
        with self._lock:
            self.selection = RangeSelection.last_days(7)
            self.snapshot = None


def trend_points(
    aggregate: DashboardAggregate,
    metric: Metric,
    *,
    width: int = CHART_WIDTH,
    height: int = CHART_HEIGHT,
    padding: int = 24,
) -> list[dict]:
    """
    Lay out the selected series for an inline SVG polyline.
    Each point carries its pixel position, axis label and formatted value.
    """
    series = aggregate.series(metric)
    if not series:
        return []
    peak = max(value for _, value in series) or 1.0
    inner_w = width - 2 * padding
    inner_h = height - 2 * padding
    step = inner_w / (len(series) - 1) if len(series) > 1 else 0
    points = []
    for index, (day, value) in enumerate(series):
        points.append({
            "x": round(padding + index * step, 1),
            "y": round(padding + inner_h - (value / peak) * inner_h, 1),
            "label": short_day(day),
            "value": metric.format(value),
        })
    return points
