"""
Event Repository

The engine reads its three record streams through an ``EventRepository``.
Implementations resolve display names and storage details on their side;
the engine only ever sees typed records for one project and one date window.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import polars as pl
import structlog
from pydantic import BaseModel, Field, model_validator

from oee_engine.config import get_settings
from .parsers import (
    parse_lot,
    parse_quality_issue,
    parse_rows,
    parse_stop,
    resolve_timezone,
    rows_from_frame,
)
from .records import Lot, QualityIssue, StopEvent

logger = structlog.get_logger(__name__)


class DateWindow(BaseModel):
    """Closed calendar range [start_date, end_date]"""

    model_config = {"frozen": True}

    start_date: date
    end_date: date

    @model_validator(mode="after")
    def check_order(self) -> "DateWindow":
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )
        return self

    @classmethod
    def of(cls, start_date: date, end_date: date) -> "DateWindow":
        return cls(start_date=start_date, end_date=end_date)

    @property
    def length(self) -> int:
        """Number of days in the window"""
        return (self.end_date - self.start_date).days + 1

    def days(self) -> List[date]:
        return [self.start_date + timedelta(days=i) for i in range(self.length)]

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def previous(self) -> "DateWindow":
        """The window of the same length ending the day before this one starts"""
        end = self.start_date - timedelta(days=1)
        return DateWindow(start_date=end - timedelta(days=self.length - 1), end_date=end)


class EventFilters(BaseModel):
    """Restrict fetched records to internal machine / product / team IDs"""

    machine_ids: List[str] = Field(default_factory=list)
    product_ids: List[str] = Field(default_factory=list)
    team_ids: List[str] = Field(default_factory=list)
    include_unassigned_quality: Optional[bool] = None

    @property
    def is_empty(self) -> bool:
        return not (self.machine_ids or self.product_ids or self.team_ids)

    def _keep_unassigned(self) -> bool:
        if self.include_unassigned_quality is not None:
            return self.include_unassigned_quality
        return get_settings().engine.include_unassigned_quality

    def _match(self, values: Sequence[str], value: Optional[str], keep_missing: bool = False) -> bool:
        if not values:
            return True
        if value is None:
            return keep_missing
        return str(value) in values

    def matches_lot(self, lot: Lot) -> bool:
        return (
            self._match(self.machine_ids, lot.machine_id)
            and self._match(self.product_ids, lot.product_id)
            and self._match(self.team_ids, lot.team_id)
        )

    def matches_stop(self, stop: StopEvent) -> bool:
        return (
            self._match(self.machine_ids, stop.machine_id)
            and self._match(self.product_ids, stop.product_id)
            and self._match(self.team_ids, stop.team_id)
        )

    def matches_quality_issue(self, issue: QualityIssue) -> bool:
        keep = self._keep_unassigned()
        return (
            self._match(self.machine_ids, issue.machine_id, keep_missing=keep)
            and self._match(self.product_ids, issue.product_id, keep_missing=keep)
            and self._match(self.team_ids, issue.team_id, keep_missing=keep)
        )


class EventRepository(ABC):
    """
    Source of the three event streams.

    Each fetch returns the records of one project whose calendar date lies in
    the window, restricted by ``filters``. Errors propagate to the caller.
    """

    @abstractmethod
    async def fetch_lots(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[Lot]:
        ...

    @abstractmethod
    async def fetch_stops(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[StopEvent]:
        ...

    @abstractmethod
    async def fetch_quality_issues(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[QualityIssue]:
        ...


RowsOrRecords = Iterable[Union[Mapping[str, Any], Lot, StopEvent, QualityIssue]]


class InMemoryEventRepository(EventRepository):
    """
    Repository over already-loaded rows or records.

    Raw rows are parsed on insertion; malformed rows are skipped and logged.

    Example:
        repo = InMemoryEventRepository()
        repo.add_lots("project-1", [{"id": "L1", ...}])
        lots = await repo.fetch_lots("project-1", DateWindow.of(d1, d2))
    """

    def __init__(self, timezone: Optional[str] = None):
        self.tz = resolve_timezone(timezone or get_settings().engine.timezone)
        self._lots: Dict[str, List[Lot]] = defaultdict(list)
        self._stops: Dict[str, List[StopEvent]] = defaultdict(list)
        self._quality: Dict[str, List[QualityIssue]] = defaultdict(list)
        self.skipped_rows = 0

    def _ingest(self, items: RowsOrRecords, record_cls, parser, record_type: str) -> list:
        records = []
        rows = []
        for item in items:
            if isinstance(item, record_cls):
                records.append(item)
            else:
                rows.append(item)
        if rows:
            outcome = parse_rows(rows, parser, tz=self.tz, record_type=record_type)
            records.extend(outcome.records)
            self.skipped_rows += outcome.skipped_count
        return records

    def add_lots(self, project_id: str, items: RowsOrRecords) -> "InMemoryEventRepository":
        self._lots[project_id].extend(self._ingest(items, Lot, parse_lot, "lot"))
        return self

    def add_stops(self, project_id: str, items: RowsOrRecords) -> "InMemoryEventRepository":
        self._stops[project_id].extend(self._ingest(items, StopEvent, parse_stop, "stop"))
        return self

    def add_quality_issues(self, project_id: str, items: RowsOrRecords) -> "InMemoryEventRepository":
        self._quality[project_id].extend(
            self._ingest(items, QualityIssue, parse_quality_issue, "quality_issue")
        )
        return self

    @classmethod
    def from_frames(
        cls,
        project_id: str,
        lots: Optional[pl.DataFrame] = None,
        stops: Optional[pl.DataFrame] = None,
        quality: Optional[pl.DataFrame] = None,
        timezone: Optional[str] = None,
    ) -> "InMemoryEventRepository":
        """Build a repository from polars DataFrames of raw rows"""
        repo = cls(timezone=timezone)
        if lots is not None:
            repo.add_lots(project_id, rows_from_frame(lots))
        if stops is not None:
            repo.add_stops(project_id, rows_from_frame(stops))
        if quality is not None:
            repo.add_quality_issues(project_id, rows_from_frame(quality))
        return repo

    async def fetch_lots(self, project_id, window, filters=None) -> List[Lot]:
        filters = filters or EventFilters()
        return [
            lot for lot in self._lots.get(project_id, [])
            if window.contains(lot.bucket_date(self.tz)) and filters.matches_lot(lot)
        ]

    async def fetch_stops(self, project_id, window, filters=None) -> List[StopEvent]:
        filters = filters or EventFilters()
        return [
            stop for stop in self._stops.get(project_id, [])
            if window.contains(stop.bucket_date(self.tz)) and filters.matches_stop(stop)
        ]

    async def fetch_quality_issues(self, project_id, window, filters=None) -> List[QualityIssue]:
        filters = filters or EventFilters()
        return [
            issue for issue in self._quality.get(project_id, [])
            if window.contains(issue.date) and filters.matches_quality_issue(issue)
        ]
