"""
OEE Metric Calculator

Derives Availability, Performance, Quality and OEE from a DayBucket:

- Availability = run time / planned production time
- Performance  = theoretical (cycle-time) minutes / run time, capped at 100%
- Quality      = good parts / (good + scrap parts)
- OEE          = A x P x Q / 10000   (A, P, Q are percentages 0-100)

Every value is a percentage clamped to [0, 100]; zero denominators resolve
to fixed fallbacks so no NaN ever reaches the output.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

import polars as pl
import structlog

from oee_engine.events.records import Lot, QualityIssue, StopEvent
from oee_engine.events.repository import DateWindow
from .buckets import BucketSet, DayBucket, accumulate

logger = structlog.get_logger(__name__)

METRIC_FIELDS = ("availability", "performance", "quality", "oee")


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    """Clamp to [lower, upper]; NaN collapses to lower"""
    if math.isnan(value):
        return lower
    return max(lower, min(upper, value))


@dataclass
class OEEMetrics:
    """Container for OEE calculation results (percentages 0-100)"""
    availability: float
    performance: float
    quality: float
    oee: float

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, float]:
        """Convert to dictionary, optionally rounded for display"""
        values = {name: getattr(self, name) for name in METRIC_FIELDS}
        if precision is not None:
            values = {name: round(value, precision) for name, value in values.items()}
        return values


def oee_from_components(availability: float, performance: float, quality: float) -> float:
    """The single OEE formula used everywhere"""
    return clamp(availability * performance * quality / 10000)


def calculate_metrics(bucket: DayBucket) -> OEEMetrics:
    """
    Calculate OEE components for one day bucket.

    Args:
        bucket: Accumulated raw totals

    Returns:
        OEEMetrics with all components as percentages

    Examples:
        >>> # 480 min lot, 30 min breakdown, 400 parts at 60 s
        >>> m = calculate_metrics(DayBucket(date(2024, 1, 1), planned_time=480,
        ...     unplanned_stops=30, net_time_sec=24000, ok_parts=400))
        >>> round(m.oee, 2)
        83.33
    """
    run_time = max(0.0, bucket.planned_time - (bucket.planned_stops + bucket.unplanned_stops))
    planned_production_time = max(0.0, bucket.planned_time - bucket.planned_stops)

    availability = (run_time / planned_production_time) * 100 if planned_production_time > 0 else 0.0

    # Scrap is assumed to consume the same average cycle time as good parts
    net_seconds = bucket.net_time_sec
    if bucket.ok_parts > 0 and bucket.scrap_parts > 0:
        avg_cycle = bucket.net_time_sec / bucket.ok_parts
        net_seconds += avg_cycle * bucket.scrap_parts

    performance = min(100.0, (net_seconds / 60 / run_time) * 100) if run_time > 0 else 0.0

    total_parts = bucket.ok_parts + bucket.scrap_parts
    quality = (bucket.ok_parts / total_parts) * 100 if total_parts > 0 else 100.0

    availability = clamp(availability)
    performance = clamp(performance)
    quality = clamp(quality)

    return OEEMetrics(
        availability=availability,
        performance=performance,
        quality=quality,
        oee=oee_from_components(availability, performance, quality),
    )


@dataclass
class DayMetrics:
    """One row of a day-series"""
    date: date
    availability: float = 0.0
    performance: float = 0.0
    quality: float = 0.0
    oee: float = 0.0
    has_data: bool = False

    @property
    def metrics(self) -> OEEMetrics:
        return OEEMetrics(self.availability, self.performance, self.quality, self.oee)

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        return {"date": self.date.isoformat(), **self.metrics.to_dict(precision)}


@dataclass
class DaySeries:
    """Ordered, zero-filled day-series of OEE metrics"""
    rows: List[DayMetrics] = field(default_factory=list)

    def __iter__(self):
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def dates(self) -> List[str]:
        return [row.date.isoformat() for row in self.rows]

    def days_with_data(self) -> List[DayMetrics]:
        return [row for row in self.rows if row.has_data]

    def to_records(self, precision: Optional[int] = None) -> List[Dict[str, object]]:
        return [row.to_dict(precision) for row in self.rows]

    def to_frame(self) -> pl.DataFrame:
        """Day-series as a polars DataFrame (one row per date)"""
        return pl.DataFrame(
            {
                "date": [row.date for row in self.rows],
                **{name: [float(getattr(row, name)) for row in self.rows] for name in METRIC_FIELDS},
                "has_data": [row.has_data for row in self.rows],
            },
            schema={
                "date": pl.Date,
                **{name: pl.Float64 for name in METRIC_FIELDS},
                "has_data": pl.Boolean,
            },
        )


def day_metrics(bucket: DayBucket) -> DayMetrics:
    """
    Metrics row for a bucket.

    A day without any counted parts has no data point: it keeps its place in
    the series with every metric at zero.
    """
    if not bucket.has_data:
        return DayMetrics(date=bucket.date)
    m = calculate_metrics(bucket)
    return DayMetrics(
        date=bucket.date,
        availability=m.availability,
        performance=m.performance,
        quality=m.quality,
        oee=m.oee,
        has_data=True,
    )


def build_day_series(buckets: Iterable[DayBucket]) -> DaySeries:
    """Metrics for every bucket, ascending by date"""
    rows = [day_metrics(bucket) for bucket in buckets]
    rows.sort(key=lambda row: row.date)
    return DaySeries(rows=rows)


@dataclass
class OEESummary:
    """Cross-day averages over the days that have data"""
    availability: float = 0.0
    performance: float = 0.0
    quality: float = 0.0
    oee: float = 0.0
    days_with_data: int = 0
    trend: float = 0.0  # OEE points, last data day vs the one before

    @property
    def has_data(self) -> bool:
        return self.days_with_data > 0

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        values: Dict[str, object] = {
            name: getattr(self, name) for name in (*METRIC_FIELDS, "trend")
        }
        if precision is not None:
            values = {name: round(value, precision) for name, value in values.items()}
        values["days_with_data"] = self.days_with_data
        values["has_data"] = self.has_data
        return values


def summarize(series: DaySeries) -> OEESummary:
    """
    Average the series over days with data.

    Days with zero parts are excluded from the denominator.
    """
    data_days = series.days_with_data()
    if not data_days:
        return OEESummary()

    count = len(data_days)
    averages = {
        name: sum(getattr(row, name) for row in data_days) / count
        for name in METRIC_FIELDS
    }
    trend = data_days[-1].oee - data_days[-2].oee if count > 1 else 0.0

    return OEESummary(days_with_data=count, trend=trend, **averages)


PRODUCTION_FIELDS = ("actual", "target", "scrap")


@dataclass
class ProductionDay:
    """Good output of one day against its target"""
    date: date
    actual: int = 0
    target: int = 0
    scrap: int = 0
    rework: int = 0
    ongoing_lots: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "actual": self.actual,
            "target": self.target,
            "scrap": self.scrap,
            "rework": self.rework,
            "ongoing_lots": self.ongoing_lots,
        }


def production_day(bucket: DayBucket) -> ProductionDay:
    """
    Production row for a bucket.

    The target is the summed lot size; lots without a size fall back to the
    parts actually counted (good + scrap).
    """
    return ProductionDay(
        date=bucket.date,
        actual=bucket.ok_parts,
        target=bucket.target_parts if bucket.target_parts > 0 else bucket.total_parts,
        scrap=bucket.scrap_parts,
        rework=bucket.rework_parts,
        ongoing_lots=bucket.ongoing_lots,
    )


def build_production_series(buckets: Iterable[DayBucket]) -> List[ProductionDay]:
    return sorted((production_day(bucket) for bucket in buckets), key=lambda row: row.date)


@dataclass
class QualityKPIs:
    """Window-level yield figures, percentages of good output"""
    total_production: int = 0
    total_scrap: int = 0
    total_rework: int = 0
    first_pass_yield: float = 0.0
    scrap_rate: float = 0.0

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        first_pass_yield, scrap_rate = self.first_pass_yield, self.scrap_rate
        if precision is not None:
            first_pass_yield = round(first_pass_yield, precision)
            scrap_rate = round(scrap_rate, precision)
        return {
            "total_production": self.total_production,
            "total_scrap": self.total_scrap,
            "total_rework": self.total_rework,
            "first_pass_yield": first_pass_yield,
            "scrap_rate": scrap_rate,
        }


def quality_kpis(total: DayBucket) -> QualityKPIs:
    """
    Yield figures from a window total.

    First-pass yield is the share of good output not reported as scrap or
    rework, floored at 0. Scrap rate is scrap relative to good output and is
    not capped. Both are 0 without good output.

    Examples:
        >>> k = quality_kpis(DayBucket(date(2024, 1, 1), ok_parts=400, scrap_parts=20, rework_parts=20))
        >>> k.first_pass_yield, k.scrap_rate
        (90.0, 5.0)
    """
    produced = total.ok_parts
    if produced <= 0:
        return QualityKPIs(total_scrap=total.scrap_parts, total_rework=total.rework_parts)

    defects = total.scrap_parts + total.rework_parts
    return QualityKPIs(
        total_production=produced,
        total_scrap=total.scrap_parts,
        total_rework=total.rework_parts,
        first_pass_yield=clamp((produced - defects) / produced * 100),
        scrap_rate=max(0.0, total.scrap_parts / produced * 100),
    )


@dataclass
class MachineSummary:
    """OEE of one machine over a window"""
    machine_id: str
    summary: OEESummary
    series: DaySeries

    @property
    def has_data(self) -> bool:
        return self.summary.has_data

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        return {
            "machine_id": self.machine_id,
            **self.summary.to_dict(precision),
            "historical_data": self.series.to_records(precision),
        }


def summarize_by_machine(
    lots: Sequence[Lot],
    stops: Sequence[StopEvent],
    issues: Sequence[QualityIssue],
    window: DateWindow,
    now,
    tz=None,
    clip_to_window: bool = False,
    machine_ids: Optional[Sequence[str]] = None,
) -> List[MachineSummary]:
    """
    One summary per machine.

    Machines are those seen in lots or stops, plus any listed in
    ``machine_ids`` (which then appear even without records). Quality issues
    without a machine are not attributed to any machine.
    """
    machines = set(machine_ids or [])
    machines.update(lot.machine_id for lot in lots)
    machines.update(stop.machine_id for stop in stops)

    results = []
    for machine_id in sorted(machines):
        bucket_set: BucketSet = accumulate(
            [lot for lot in lots if lot.machine_id == machine_id],
            [stop for stop in stops if stop.machine_id == machine_id],
            [issue for issue in issues if issue.machine_id == machine_id],
            window,
            now,
            tz=tz,
            clip_to_window=clip_to_window,
        )
        series = build_day_series(bucket_set)
        results.append(MachineSummary(machine_id=machine_id, summary=summarize(series), series=series))

    logger.debug("Summarized machines", machines=len(results))
    return results
