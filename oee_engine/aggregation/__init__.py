"""
Aggregation Module
"""
from .buckets import AccumulationStats, BucketSet, DayBucket, accumulate
from .causes import (
    CauseTracking,
    ParetoTable,
    build_pareto,
    cause_trend,
    normalize_cause,
    quality_pareto,
    stop_pareto,
    track_quality_causes,
    track_stop_causes,
)
from .comparison import compare_kpis, compare_summaries, merge_day_series, merge_production_daily, merge_series
from .downtime import DowntimeSummary, downtime_summary
from .engine import EffectivenessEngine, EventBatch, RepositoryError
from .metrics import (
    DaySeries,
    ProductionDay,
    QualityKPIs,
    OEEMetrics,
    OEESummary,
    build_day_series,
    build_production_series,
    calculate_metrics,
    quality_kpis,
    summarize,
    summarize_by_machine,
)

__all__ = [
    "AccumulationStats",
    "BucketSet",
    "DayBucket",
    "accumulate",
    "CauseTracking",
    "ParetoTable",
    "build_pareto",
    "cause_trend",
    "normalize_cause",
    "quality_pareto",
    "stop_pareto",
    "track_quality_causes",
    "track_stop_causes",
    "compare_kpis",
    "compare_summaries",
    "merge_day_series",
    "merge_production_daily",
    "merge_series",
    "DowntimeSummary",
    "downtime_summary",
    "EffectivenessEngine",
    "EventBatch",
    "RepositoryError",
    "DaySeries",
    "ProductionDay",
    "QualityKPIs",
    "OEEMetrics",
    "OEESummary",
    "build_day_series",
    "build_production_series",
    "calculate_metrics",
    "quality_kpis",
    "summarize",
    "summarize_by_machine",
]
