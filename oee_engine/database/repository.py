"""
SQL Event Repository

Reads lots, stop events and quality issues from the production tracking
tables and converts them to typed records through the shared row parsers.
"""

from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from oee_engine.config import get_settings
from oee_engine.events.parsers import (
    parse_lot,
    parse_quality_issue,
    parse_rows,
    parse_stop,
    resolve_timezone,
)
from oee_engine.events.repository import DateWindow, EventFilters, EventRepository
from oee_engine.events.records import Lot, QualityIssue, StopEvent
from .connection import get_session_factory
from .models import LotRecord, Product, QualityIssueRecord, StopEventRecord

logger = structlog.get_logger(__name__)


class SqlEventRepository(EventRepository):
    """
    Event repository backed by SQLAlchemy.

    Example:
        await init_database()
        repo = SqlEventRepository()
        stops = await repo.fetch_stops(project_id, window)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        timezone: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self.tz = resolve_timezone(timezone or get_settings().engine.timezone)

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _fetch_rows(self, query) -> List[Dict[str, Any]]:
        async with self._sessions()() as session:
            result = await session.execute(query)
            return [dict(row) for row in result.mappings().all()]

    @staticmethod
    def _apply_filters(query, table, filters: EventFilters, keep_unassigned: bool = False):
        for column_name, values in (
            ("machine_id", filters.machine_ids),
            ("product_id", filters.product_ids),
            ("team_id", filters.team_ids),
        ):
            if not values:
                continue
            column = getattr(table, column_name)
            if keep_unassigned:
                query = query.where(column.in_(values) | column.is_(None))
            else:
                query = query.where(column.in_(values))
        return query

    async def fetch_lots(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[Lot]:
        filters = filters or EventFilters()
        query = (
            select(
                LotRecord.id,
                LotRecord.machine_id,
                LotRecord.product_id,
                LotRecord.team_id,
                LotRecord.date,
                LotRecord.start_time,
                LotRecord.end_time,
                LotRecord.lot_size,
                LotRecord.ok_parts_produced,
                LotRecord.status,
                Product.cycle_time,
            )
            .join(Product, Product.id == LotRecord.product_id, isouter=True)
            .where(LotRecord.project_id == project_id)
            .where(LotRecord.date.between(window.start_date, window.end_date))
        )
        query = self._apply_filters(query, LotRecord, filters)

        rows = await self._fetch_rows(query)
        for row in rows:
            row["status"] = row["status"].value if row["status"] is not None else None
        outcome = parse_rows(rows, parse_lot, tz=self.tz, record_type="lot")
        logger.debug("Fetched lots", project_id=project_id, rows=len(rows), skipped=outcome.skipped_count)
        return outcome.records

    async def fetch_stops(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[StopEvent]:
        filters = filters or EventFilters()
        query = (
            select(
                StopEventRecord.id,
                StopEventRecord.machine_id,
                StopEventRecord.product_id,
                StopEventRecord.team_id,
                StopEventRecord.date,
                StopEventRecord.start_time,
                StopEventRecord.end_time,
                StopEventRecord.failure_type,
                StopEventRecord.cause,
            )
            .where(StopEventRecord.project_id == project_id)
            .where(StopEventRecord.date.between(window.start_date, window.end_date))
        )
        query = self._apply_filters(query, StopEventRecord, filters)

        rows = await self._fetch_rows(query)
        outcome = parse_rows(rows, parse_stop, tz=self.tz, record_type="stop")
        logger.debug("Fetched stops", project_id=project_id, rows=len(rows), skipped=outcome.skipped_count)
        return outcome.records

    async def fetch_quality_issues(
        self,
        project_id: str,
        window: DateWindow,
        filters: Optional[EventFilters] = None,
    ) -> List[QualityIssue]:
        filters = filters or EventFilters()
        keep_unassigned = (
            filters.include_unassigned_quality
            if filters.include_unassigned_quality is not None
            else get_settings().engine.include_unassigned_quality
        )
        query = (
            select(
                QualityIssueRecord.id,
                QualityIssueRecord.machine_id,
                QualityIssueRecord.product_id,
                QualityIssueRecord.team_id,
                QualityIssueRecord.lot_id,
                QualityIssueRecord.date,
                QualityIssueRecord.category,
                QualityIssueRecord.quantity,
                QualityIssueRecord.cause,
            )
            .where(QualityIssueRecord.project_id == project_id)
            .where(QualityIssueRecord.date.between(window.start_date, window.end_date))
        )
        query = self._apply_filters(query, QualityIssueRecord, filters, keep_unassigned)

        rows = await self._fetch_rows(query)
        outcome = parse_rows(rows, parse_quality_issue, tz=self.tz, record_type="quality_issue")
        logger.debug("Fetched quality issues", project_id=project_id, rows=len(rows), skipped=outcome.skipped_count)
        return outcome.records
