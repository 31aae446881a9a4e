"""
Effectiveness Engine

Request-level orchestration: fetch the three event streams for one project
and window, then run the accumulator, the metric calculator and, on demand,
the cause aggregator, the downtime summary or the period comparator.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import polars as pl
import structlog

from oee_engine.config import Settings, get_settings
from oee_engine.config.logging import request_context
from oee_engine.events.parsers import resolve_timezone
from oee_engine.events.records import FailureType, Lot, QualityIssue, StopEvent
from oee_engine.events.repository import DateWindow, EventFilters, EventRepository
from .buckets import AccumulationStats, DayBucket, accumulate
from .causes import (
    CauseTracking,
    ParetoTable,
    quality_pareto,
    stop_pareto,
    stop_pareto_by_failure_type,
    track_quality_causes,
    track_stop_causes,
)
from .comparison import (
    SummaryDelta,
    compare_kpis,
    compare_summaries,
    merge_day_series,
    merge_production_daily,
    merge_quality_daily,
    merge_stop_daily,
    merged_frame,
    rounded_rows,
)
from .downtime import DowntimeSummary, downtime_summary
from .metrics import (
    DaySeries,
    MachineSummary,
    OEESummary,
    ProductionDay,
    QualityKPIs,
    build_day_series,
    build_production_series,
    quality_kpis,
    summarize,
    summarize_by_machine,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class RepositoryError(RuntimeError):
    """An event repository failed; the request produces no result"""


@dataclass
class EventBatch:
    """The three streams of one request, fetched against a single "now" """
    project_id: str
    window: DateWindow
    now: datetime
    lots: List[Lot] = field(default_factory=list)
    stops: List[StopEvent] = field(default_factory=list)
    quality_issues: List[QualityIssue] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.lots or self.stops or self.quality_issues)


@dataclass
class OEEReport:
    """
    Day-series, summary and accumulation stats of one window.

    ``precision`` is the rounding used by ``to_dict`` when the caller passes
    none; attributes always hold unrounded values.
    """
    window: DateWindow
    series: DaySeries
    summary: OEESummary
    totals: DayBucket
    stats: AccumulationStats = field(default_factory=AccumulationStats)
    production: List[ProductionDay] = field(default_factory=list)
    kpis: QualityKPIs = field(default_factory=QualityKPIs)
    precision: Optional[int] = None

    def production_records(self) -> List[Dict[str, object]]:
        return [day.to_dict() for day in self.production]

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, Any]:
        precision = self.precision if precision is None else precision
        return {
            "start_date": self.window.start_date.isoformat(),
            "end_date": self.window.end_date.isoformat(),
            **self.summary.to_dict(precision),
            "historical_data": self.series.to_records(precision),
            "production_data": self.production_records(),
            "quality_kpis": self.kpis.to_dict(precision),
        }


@dataclass
class CauseReport:
    """Pareto table plus cause tracking for one stream"""
    pareto: ParetoTable
    tracking: CauseTracking
    precision: Optional[int] = None

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, Any]:
        precision = self.precision if precision is None else precision
        return {
            "pareto": self.pareto.to_records(precision),
            "causes": [record.to_dict(precision) for record in self.tracking.causes],
            "top_causes": list(self.tracking.top_causes),
            "top_history": rounded_rows(self.tracking.top_history, precision),
            "daily": rounded_rows(self.tracking.daily, precision),
            "total": self.tracking.total,
            "event_count": self.tracking.event_count,
        }


@dataclass
class ComparisonReport:
    """Two reports side by side with their merged series"""
    current: OEEReport
    comparison: OEEReport
    merged: List[Dict[str, Any]]
    delta: SummaryDelta
    stop_daily: List[Dict[str, Any]] = field(default_factory=list)
    quality_daily: List[Dict[str, Any]] = field(default_factory=list)
    production_daily: List[Dict[str, Any]] = field(default_factory=list)
    kpi_delta: Dict[str, float] = field(default_factory=dict)
    precision: Optional[int] = None

    def merged_frame(self) -> pl.DataFrame:
        return merged_frame(self.merged)

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, Any]:
        precision = self.precision if precision is None else precision
        return {
            "current": self.current.to_dict(precision),
            "comparison": self.comparison.to_dict(precision),
            "merged": rounded_rows(self.merged, precision),
            "delta": self.delta.to_dict(precision),
            "stop_daily": rounded_rows(self.stop_daily, precision),
            "quality_daily": rounded_rows(self.quality_daily, precision),
            "production_daily": rounded_rows(self.production_daily, precision),
            "kpi_delta": rounded_rows([self.kpi_delta], precision)[0],
        }


class EffectivenessEngine:
    """
    Computes OEE reports from an event repository.

    The clock is read once per request; every open interval of that request
    is measured against the same instant.

    Example:
        engine = EffectivenessEngine(InMemoryEventRepository().add_lots("p1", rows))
        report = await engine.day_series("p1", DateWindow.of(start, end))
    """

    def __init__(
        self,
        repository: EventRepository,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self.config = self.settings.engine
        self.tz = resolve_timezone(self.config.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))

    def _effective_filters(self, filters: Optional[EventFilters]) -> EventFilters:
        filters = filters or EventFilters()
        if filters.include_unassigned_quality is None:
            filters = filters.model_copy(
                update={"include_unassigned_quality": self.config.include_unassigned_quality}
            )
        return filters

    async def fetch(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
        now: Optional[datetime] = None,
    ) -> EventBatch:
        """
        Fetch lots, stops and quality issues concurrently.

        Raises:
            RepositoryError: If any of the three fetches fails
        """
        filters = self._effective_filters(filters)
        now = now or self.clock()

        with request_context(project_id, window.start_date, window.end_date):
            try:
                lots, stops, issues = await asyncio.gather(
                    self.repository.fetch_lots(project_id, window, filters),
                    self.repository.fetch_stops(project_id, window, filters),
                    self.repository.fetch_quality_issues(project_id, window, filters),
                )
            except RepositoryError:
                raise
            except Exception as e:
                logger.error("Event fetch failed", error=str(e))
                raise RepositoryError(f"Failed to fetch events for project {project_id}: {e}") from e

            logger.info(
                "Fetched events",
                lots=len(lots),
                stops=len(stops),
                quality_issues=len(issues),
            )
        return EventBatch(
            project_id=project_id,
            window=window,
            now=now,
            lots=list(lots),
            stops=list(stops),
            quality_issues=list(issues),
        )

    # =========================================================================
    # Computations over a fetched batch
    # =========================================================================

    def build_report(self, batch: EventBatch) -> OEEReport:
        bucket_set = accumulate(
            batch.lots,
            batch.stops,
            batch.quality_issues,
            batch.window,
            batch.now,
            tz=self.tz,
            clip_to_window=self.config.clip_to_window,
        )
        series = build_day_series(bucket_set)
        totals = bucket_set.total()
        return OEEReport(
            window=batch.window,
            series=series,
            summary=summarize(series),
            totals=totals,
            stats=bucket_set.stats,
            production=build_production_series(bucket_set),
            kpis=quality_kpis(totals),
            precision=self.config.output_precision,
        )

    def _stop_tracking(self, batch: EventBatch) -> CauseTracking:
        return track_stop_causes(
            batch.stops,
            batch.window,
            batch.now,
            tz=self.tz,
            top_n=self.config.top_causes,
            normalization=self.config.cause_normalization,
        )

    def _quality_tracking(self, batch: EventBatch) -> CauseTracking:
        return track_quality_causes(
            batch.quality_issues,
            batch.window,
            top_n=self.config.top_causes,
            normalization=self.config.cause_normalization,
        )

    def build_stop_causes(self, batch: EventBatch) -> CauseReport:
        return CauseReport(
            pareto=stop_pareto(batch.stops, batch.now, self.config.cause_normalization),
            tracking=self._stop_tracking(batch),
            precision=self.config.output_precision,
        )

    def build_quality_causes(self, batch: EventBatch) -> CauseReport:
        return CauseReport(
            pareto=quality_pareto(batch.quality_issues, self.config.cause_normalization),
            tracking=self._quality_tracking(batch),
            precision=self.config.output_precision,
        )

    # =========================================================================
    # Requests
    # =========================================================================

    async def day_series(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> OEEReport:
        """Zero-filled OEE day-series and its summary"""
        batch = await self.fetch(project_id, window, filters)
        report = self.build_report(batch)
        logger.info(
            "OEE report computed",
            project_id=project_id,
            days=len(report.series),
            days_with_data=report.summary.days_with_data,
            oee=round(report.summary.oee, 2),
        )
        return report

    async def machine_report(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[MachineSummary]:
        """One OEE summary per machine"""
        filters = self._effective_filters(filters)
        batch = await self.fetch(project_id, window, filters)
        return summarize_by_machine(
            batch.lots,
            batch.stops,
            batch.quality_issues,
            window,
            batch.now,
            tz=self.tz,
            clip_to_window=self.config.clip_to_window,
            machine_ids=filters.machine_ids,
        )

    async def stop_causes(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> CauseReport:
        """Pareto and tracking of stop causes by downtime minutes"""
        batch = await self.fetch(project_id, window, filters)
        return self.build_stop_causes(batch)

    async def quality_causes(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> CauseReport:
        """Pareto and tracking of quality causes by quantity"""
        batch = await self.fetch(project_id, window, filters)
        return self.build_quality_causes(batch)

    async def stop_pareto_by_type(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> Dict[FailureType, ParetoTable]:
        batch = await self.fetch(project_id, window, filters)
        return stop_pareto_by_failure_type(batch.stops, batch.now, self.config.cause_normalization)

    async def downtime(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> DowntimeSummary:
        batch = await self.fetch(project_id, window, filters)
        return downtime_summary(batch.stops, window, batch.now, tz=self.tz)

    async def compare(
        self,
        project_id: str,
        window: DateWindow,
        comparison_window: Optional[DateWindow] = None,
        filters: Optional[EventFilters] = None,
        comparison_filters: Optional[EventFilters] = None,
    ) -> ComparisonReport:
        """
        Run the pipeline for two scopes and merge the results.

        Without ``comparison_window`` the previous window of the same length is
        used; without ``comparison_filters`` the current filters are reused, so
        passing only other filters compares two entities over one period.
        """
        comparison_window = comparison_window or window.previous()
        comparison_filters = comparison_filters if comparison_filters is not None else filters
        now = self.clock()

        current_batch, comparison_batch = await asyncio.gather(
            self.fetch(project_id, window, filters, now=now),
            self.fetch(project_id, comparison_window, comparison_filters, now=now),
        )

        current = self.build_report(current_batch)
        comparison = self.build_report(comparison_batch)

        report = ComparisonReport(
            current=current,
            comparison=comparison,
            merged=merge_day_series(current.series, comparison.series),
            delta=compare_summaries(current.summary, comparison.summary),
            stop_daily=merge_stop_daily(
                self._stop_tracking(current_batch).daily,
                self._stop_tracking(comparison_batch).daily,
            ),
            quality_daily=merge_quality_daily(
                self._quality_tracking(current_batch).daily,
                self._quality_tracking(comparison_batch).daily,
            ),
            production_daily=merge_production_daily(current.production, comparison.production),
            kpi_delta=compare_kpis(current.kpis, comparison.kpis),
            precision=self.config.output_precision,
        )

        logger.info(
            "Comparison computed",
            project_id=project_id,
            current_start=str(window.start_date),
            comparison_start=str(comparison_window.start_date),
            merged_rows=len(report.merged),
            oee_delta=round(report.delta.oee, 2),
        )
        return report
