"""
Cause Aggregator

Groups stop events and quality issues by their free-text cause:

- Pareto tables: causes sorted by magnitude with running cumulative share
- Cause tracking: per-cause totals by type, date history and trend, plus the
  zero-filled history of the top causes for trend charts

Causes are grouped on the raw string unless a normalization policy is
explicitly requested.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import polars as pl
import structlog

from oee_engine.config.settings import CauseNormalization
from oee_engine.events.records import (
    FailureType,
    QualityCategory,
    QualityIssue,
    StopEvent,
    measured_minutes,
)
from oee_engine.events.repository import DateWindow

logger = structlog.get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_cause(cause: str, policy: CauseNormalization = CauseNormalization.RAW) -> str:
    """Grouping key for a cause under ``policy``"""
    if policy == CauseNormalization.CASEFOLD:
        return _WHITESPACE.sub(" ", cause.strip()).casefold()
    return cause


def _measured(stops: Iterable[StopEvent], now: datetime) -> Iterator[Tuple[StopEvent, float]]:
    """Stops paired with their duration; unmeasurable stops are skipped"""
    for stop in stops:
        minutes = measured_minutes(stop.interval, now)
        if minutes is None:
            logger.warning("Skipping unmeasurable stop", stop_id=stop.id)
            continue
        yield stop, minutes


def _stop_durations(stops: Iterable[StopEvent], now: datetime) -> Iterator[Tuple[str, float]]:
    for stop, minutes in _measured(stops, now):
        yield stop.cause, minutes


# =============================================================================
# PARETO
# =============================================================================

@dataclass
class ParetoRow:
    """One cause in a Pareto table"""
    cause: str
    total: float
    count: int
    percentage: float = 0.0
    cumulative: float = 0.0

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        values = {"total": self.total, "percentage": self.percentage, "cumulative": self.cumulative}
        if precision is not None:
            values = {name: round(value, precision) for name, value in values.items()}
        return {"cause": self.cause, **values, "count": self.count}


@dataclass
class ParetoTable:
    """Causes sorted by magnitude, descending"""
    rows: List[ParetoRow] = field(default_factory=list)
    total: float = 0.0

    def __iter__(self):
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def causes(self) -> List[str]:
        return [row.cause for row in self.rows]

    def vital_few(self, threshold: float = 80.0) -> List[ParetoRow]:
        """Leading rows up to and including the one crossing ``threshold``"""
        selected = []
        for row in self.rows:
            selected.append(row)
            if row.cumulative >= threshold:
                break
        return selected

    def to_records(self, precision: Optional[int] = None) -> List[Dict[str, object]]:
        return [row.to_dict(precision) for row in self.rows]

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "cause": [row.cause for row in self.rows],
                "total": [float(row.total) for row in self.rows],
                "count": [row.count for row in self.rows],
                "percentage": [row.percentage for row in self.rows],
                "cumulative": [row.cumulative for row in self.rows],
            },
            schema={
                "cause": pl.Utf8,
                "total": pl.Float64,
                "count": pl.Int64,
                "percentage": pl.Float64,
                "cumulative": pl.Float64,
            },
        )


def build_pareto(
    entries: Iterable[Tuple[str, float]],
    normalization: CauseNormalization = CauseNormalization.RAW,
) -> ParetoTable:
    """
    Build a Pareto table from (cause, magnitude) pairs.

    Rows are sorted by total descending (ties by cause name) and carry their
    share of the grand total and the running cumulative share. With a zero
    grand total every share is zero.
    """
    totals: Dict[str, float] = defaultdict(float)
    counts: Dict[str, int] = defaultdict(int)
    for cause, magnitude in entries:
        key = normalize_cause(cause, normalization)
        totals[key] += magnitude
        counts[key] += 1

    grand_total = sum(totals.values())
    rows = [
        ParetoRow(cause=cause, total=total, count=counts[cause])
        for cause, total in sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ]

    cumulative = 0.0
    for row in rows:
        row.percentage = (row.total / grand_total) * 100 if grand_total > 0 else 0.0
        cumulative += row.percentage
        row.cumulative = cumulative

    return ParetoTable(rows=rows, total=grand_total)


def stop_pareto(
    stops: Iterable[StopEvent],
    now: datetime,
    normalization: CauseNormalization = CauseNormalization.RAW,
    failure_types: Optional[Sequence[FailureType]] = None,
) -> ParetoTable:
    """Pareto of stop causes by downtime minutes"""
    selected = (
        stop for stop in stops
        if failure_types is None or stop.failure_type in failure_types
    )
    return build_pareto(_stop_durations(selected, now), normalization)


def quality_pareto(
    issues: Iterable[QualityIssue],
    normalization: CauseNormalization = CauseNormalization.RAW,
    categories: Optional[Sequence[QualityCategory]] = None,
) -> ParetoTable:
    """Pareto of quality causes by defective quantity"""
    return build_pareto(
        (
            (issue.cause, issue.quantity)
            for issue in issues
            if categories is None or issue.category in categories
        ),
        normalization,
    )


def stop_pareto_by_failure_type(
    stops: Sequence[StopEvent],
    now: datetime,
    normalization: CauseNormalization = CauseNormalization.RAW,
) -> Dict[FailureType, ParetoTable]:
    """One Pareto table per failure type, empty for types without stops"""
    return {
        failure_type: stop_pareto(stops, now, normalization, failure_types=[failure_type])
        for failure_type in FailureType
    }


def quality_pareto_by_category(
    issues: Sequence[QualityIssue],
    normalization: CauseNormalization = CauseNormalization.RAW,
) -> Dict[QualityCategory, ParetoTable]:
    """One Pareto table per quality category"""
    return {
        category: quality_pareto(issues, normalization, categories=[category])
        for category in QualityCategory
    }


# =============================================================================
# CAUSE TRACKING
# =============================================================================

def cause_trend(history: Sequence[Tuple[date, float]]) -> float:
    """
    Percentage change from the first to the last point of a history.

    Zero with fewer than two points or when the first value is zero.
    """
    if len(history) < 2:
        return 0.0
    ordered = sorted(history, key=lambda point: point[0])
    first = ordered[0][1]
    last = ordered[-1][1]
    if first == 0:
        return 0.0
    return (last - first) / first * 100


@dataclass
class CauseRecord:
    """Accumulated figures for one cause"""
    cause: str
    counts: Dict[str, int] = field(default_factory=dict)
    totals: Dict[str, float] = field(default_factory=dict)
    history: Dict[date, float] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return sum(self.totals.values())

    @property
    def count(self) -> int:
        return sum(self.counts.values())

    @property
    def trend(self) -> float:
        return cause_trend(list(self.history.items()))

    def history_points(self) -> List[Tuple[date, float]]:
        return sorted(self.history.items())

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        total, trend = self.total, self.trend
        if precision is not None:
            total, trend = round(total, precision), round(trend, precision)
        return {
            "cause": self.cause,
            "counts": dict(self.counts),
            "totals": dict(self.totals),
            "total": total,
            "count": self.count,
            "trend": trend,
        }


@dataclass
class CauseTracking:
    """Cause tracking report over a window"""
    window: DateWindow
    types: List[str]
    causes: List[CauseRecord] = field(default_factory=list)
    top_causes: List[str] = field(default_factory=list)
    top_history: List[Dict[str, object]] = field(default_factory=list)
    daily: List[Dict[str, object]] = field(default_factory=list)
    total: float = 0.0
    event_count: int = 0

    def cause(self, name: str) -> Optional[CauseRecord]:
        for record in self.causes:
            if record.cause == name:
                return record
        return None

    def daily_frame(self) -> pl.DataFrame:
        return pl.DataFrame(self.daily)

    def top_history_frame(self) -> pl.DataFrame:
        return pl.DataFrame(self.top_history)


def _track(
    events: Iterable[Tuple[date, str, str, float]],
    types: List[str],
    window: DateWindow,
    top_n: int,
    normalization: CauseNormalization,
) -> CauseTracking:
    """
    Shared tracking fold over (date, type, cause, magnitude) tuples.

    The daily and top histories cover every date of the window plus the date
    of any event that falls outside it, as the day buckets do.
    """
    records: Dict[str, CauseRecord] = {}
    daily: Dict[date, Dict[str, float]] = {
        day: {**{t: 0.0 for t in types}, "total": 0.0} for day in window.days()
    }
    grand_total = 0.0
    event_count = 0

    for day, event_type, cause, magnitude in events:
        key = normalize_cause(cause, normalization)
        grand_total += magnitude
        event_count += 1

        if day not in daily:
            daily[day] = {**{t: 0.0 for t in types}, "total": 0.0}
        daily[day][event_type] += magnitude
        daily[day]["total"] += magnitude

        record = records.get(key)
        if record is None:
            record = CauseRecord(
                cause=key,
                counts={t: 0 for t in types},
                totals={t: 0.0 for t in types},
            )
            records[key] = record
        record.counts[event_type] += 1
        record.totals[event_type] += magnitude
        record.history[day] = record.history.get(day, 0.0) + magnitude

    causes = sorted(
        (record for record in records.values() if record.total > 0),
        key=lambda record: (-record.total, record.cause),
    )
    top = [record.cause for record in causes[:top_n]]
    days = sorted(daily)
    top_history = [
        {"date": day.isoformat(), **{cause: records[cause].history.get(day, 0.0) for cause in top}}
        for day in days
    ]

    return CauseTracking(
        window=window,
        types=types,
        causes=causes,
        top_causes=top,
        top_history=top_history,
        daily=[{"date": day.isoformat(), **daily[day]} for day in days],
        total=grand_total,
        event_count=event_count,
    )


def track_stop_causes(
    stops: Iterable[StopEvent],
    window: DateWindow,
    now: datetime,
    tz: Optional[tzinfo] = None,
    top_n: int = 5,
    normalization: CauseNormalization = CauseNormalization.RAW,
) -> CauseTracking:
    """
    Track stop causes by downtime minutes, split by failure type.

    The daily breakdown has one column per failure type code plus ``total``.
    """
    tracking = _track(
        (
            (stop.bucket_date(tz), stop.failure_type.value, stop.cause, minutes)
            for stop, minutes in _measured(stops, now)
        ),
        [failure_type.value for failure_type in FailureType],
        window,
        top_n,
        normalization,
    )
    logger.debug(
        "Tracked stop causes",
        causes=len(tracking.causes),
        total_minutes=tracking.total,
        stops=tracking.event_count,
    )
    return tracking


def track_quality_causes(
    issues: Iterable[QualityIssue],
    window: DateWindow,
    top_n: int = 5,
    normalization: CauseNormalization = CauseNormalization.RAW,
) -> CauseTracking:
    """Track quality causes by quantity, split by category"""
    tracking = _track(
        ((issue.date, issue.category.value, issue.cause, float(issue.quantity)) for issue in issues),
        [category.value for category in QualityCategory],
        window,
        top_n,
        normalization,
    )
    logger.debug(
        "Tracked quality causes",
        causes=len(tracking.causes),
        total_quantity=tracking.total,
        issues=tracking.event_count,
    )
    return tracking
