"""
Period Comparator

Merges two independently computed series (current vs. previous period, or
entity A vs. entity B over the same period) into one series keyed on date.

The merge is keyed, never positional: inputs of different lengths or with
non-overlapping dates still merge on date equality.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import polars as pl
import structlog

from oee_engine.events.records import FailureType, QualityCategory
from .metrics import METRIC_FIELDS, PRODUCTION_FIELDS, DaySeries, OEESummary, ProductionDay, QualityKPIs

logger = structlog.get_logger(__name__)

Row = Mapping[str, Any]
SeriesLike = Union[DaySeries, Iterable[Row]]

STOP_FIELDS = tuple(failure_type.value for failure_type in FailureType) + ("total",)
QUALITY_FIELDS = tuple(category.value for category in QualityCategory) + ("total",)


def _key_of(value: Any) -> str:
    """Keys compare as strings; dates become ISO calendar dates"""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _rows(series: SeriesLike) -> List[Row]:
    if isinstance(series, DaySeries):
        return series.to_records()
    return [row.to_dict() if isinstance(row, ProductionDay) else row for row in series]


def _index(rows: Sequence[Row], key: str) -> Dict[str, Row]:
    indexed: Dict[str, Row] = {}
    for row in rows:
        if key not in row:
            logger.warning("Row without key skipped", key=key)
            continue
        # last row wins for duplicated keys
        indexed[_key_of(row[key])] = row
    return indexed


def _value(row: Optional[Row], name: str) -> float:
    if row is None:
        return 0.0
    value = row.get(name)
    return 0.0 if value is None else value


def merge_series(
    current: SeriesLike,
    comparison: SeriesLike,
    fields: Sequence[str],
    key: str = "date",
    suffix: str = "_prev",
) -> List[Dict[str, Any]]:
    """
    Merge two series on ``key``.

    Args:
        current: Rows providing the plain ``fields``
        comparison: Rows providing ``field + suffix``
        fields: Value columns to carry over
        key: Join column
        suffix: Suffix for the comparison columns

    Returns:
        One row per key of either input, ascending by key, missing values 0
    """
    current_rows = _index(_rows(current), key)
    comparison_rows = _index(_rows(comparison), key)

    merged = []
    for value in sorted(set(current_rows) | set(comparison_rows)):
        row_a = current_rows.get(value)
        row_b = comparison_rows.get(value)
        row: Dict[str, Any] = {key: value}
        for name in fields:
            row[name] = _value(row_a, name)
        for name in fields:
            row[f"{name}{suffix}"] = _value(row_b, name)
        merged.append(row)

    logger.debug(
        "Merged series",
        current=len(current_rows),
        comparison=len(comparison_rows),
        merged=len(merged),
    )
    return merged


def merge_day_series(current: SeriesLike, comparison: SeriesLike) -> List[Dict[str, Any]]:
    """Merge two OEE day-series"""
    return merge_series(current, comparison, METRIC_FIELDS)


def merge_production_daily(
    current: Iterable[Union[ProductionDay, Row]],
    comparison: Iterable[Union[ProductionDay, Row]],
) -> List[Dict[str, Any]]:
    """Merge two daily production series (actual, target, scrap)"""
    return merge_series(current, comparison, PRODUCTION_FIELDS)


def rounded_rows(rows: Sequence[Row], precision: Optional[int]) -> List[Dict[str, Any]]:
    """Copy of ``rows`` with float values rounded"""
    if precision is None:
        return [dict(row) for row in rows]
    return [
        {name: round(value, precision) if isinstance(value, float) else value for name, value in row.items()}
        for row in rows
    ]


def merge_stop_daily(current: Iterable[Row], comparison: Iterable[Row]) -> List[Dict[str, Any]]:
    """Merge two daily stop-minute breakdowns (one column per failure type)"""
    return merge_series(current, comparison, STOP_FIELDS)


def merge_quality_daily(current: Iterable[Row], comparison: Iterable[Row]) -> List[Dict[str, Any]]:
    """Merge two daily quality breakdowns (one column per category)"""
    return merge_series(current, comparison, QUALITY_FIELDS)


def merged_frame(rows: Sequence[Mapping[str, Any]]) -> pl.DataFrame:
    return pl.DataFrame(list(rows))


@dataclass
class SummaryDelta:
    """Current minus comparison, in percentage points"""
    availability: float = 0.0
    performance: float = 0.0
    quality: float = 0.0
    oee: float = 0.0

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, float]:
        values = {name: getattr(self, name) for name in METRIC_FIELDS}
        if precision is not None:
            values = {name: round(value, precision) for name, value in values.items()}
        return values


def compare_summaries(current: OEESummary, comparison: OEESummary) -> SummaryDelta:
    return SummaryDelta(
        **{name: getattr(current, name) - getattr(comparison, name) for name in METRIC_FIELDS}
    )


def compare_kpis(current: QualityKPIs, comparison: QualityKPIs) -> Dict[str, float]:
    """Yield deltas in points, production deltas in parts"""
    return {
        "total_production": current.total_production - comparison.total_production,
        "total_scrap": current.total_scrap - comparison.total_scrap,
        "first_pass_yield": current.first_pass_yield - comparison.first_pass_yield,
        "scrap_rate": current.scrap_rate - comparison.scrap_rate,
    }
