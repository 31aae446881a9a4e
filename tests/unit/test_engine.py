"""
Unit Tests - Effectiveness Engine
"""
from datetime import date

import pytest

from conftest import make_issue, make_lot, make_stop
from oee_engine.aggregation import EffectivenessEngine, RepositoryError
from oee_engine.config import EngineSettings, Settings
from oee_engine.events import DateWindow, EventFilters, EventRepository, FailureType, InMemoryEventRepository

PROJECT = "project-1"


class FailingRepository(EventRepository):
    """Repository whose stop query always fails"""

    async def fetch_lots(self, project_id, window, filters=None):
        return []

    async def fetch_stops(self, project_id, window, filters=None):
        raise ConnectionError("connection reset")

    async def fetch_quality_issues(self, project_id, window, filters=None):
        return []


@pytest.fixture
def repository(day_one, reference_lot, reference_stop) -> InMemoryEventRepository:
    repo = InMemoryEventRepository(timezone="Europe/Paris")
    repo.add_lots(PROJECT, [
        reference_lot,
        make_lot("lot-m2", date(2024, 1, 2), machine_id="m2", ok_parts=240),
        make_lot("lot-prev", date(2023, 12, 27), ok_parts=480),
    ])
    repo.add_stops(PROJECT, [
        reference_stop,
        make_stop("stop-2", day_one, (14, 0), (14, 20), cause="sensor fault"),
        make_stop("stop-3", date(2024, 1, 2), (9, 0), (9, 30), failure_type=FailureType.PLANNED,
                  cause="cleaning", machine_id="m2"),
    ])
    repo.add_quality_issues(PROJECT, [
        make_issue("q1", day_one, 100),
        make_issue("q2", date(2024, 1, 2), 10, machine_id=None),
    ])
    return repo


@pytest.fixture
def engine(repository, test_settings, fixed_now) -> EffectivenessEngine:
    return EffectivenessEngine(repository, settings=test_settings, clock=lambda: fixed_now)


class TestEngineFetch:
    """Tests for concurrent fetching"""

    @pytest.mark.asyncio
    async def test_fetch_batch(self, engine, week, fixed_now):
        """Test that all three streams come back with one now"""
        batch = await engine.fetch(PROJECT, week)

        assert len(batch.lots) == 2
        assert len(batch.stops) == 3
        assert len(batch.quality_issues) == 2
        assert batch.now == fixed_now

    @pytest.mark.asyncio
    async def test_repository_failure(self, test_settings, week, fixed_now):
        """Test that an adapter error surfaces as RepositoryError"""
        engine = EffectivenessEngine(FailingRepository(), settings=test_settings, clock=lambda: fixed_now)

        with pytest.raises(RepositoryError) as exc_info:
            await engine.day_series(PROJECT, week)

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_unknown_project_is_empty(self, engine, week):
        """Test an empty batch for a project without records"""
        batch = await engine.fetch("other", week)
        assert batch.is_empty


class TestEngineReports:
    """Tests for the request-level reports"""

    @pytest.mark.asyncio
    async def test_empty_week(self, test_settings, week, fixed_now):
        """Test seven zero rows and no exception for an empty repository"""
        engine = EffectivenessEngine(
            InMemoryEventRepository(timezone="Europe/Paris"),
            settings=test_settings,
            clock=lambda: fixed_now,
        )

        report = await engine.day_series(PROJECT, week)

        assert len(report.series) == 7
        assert all(row.oee == 0.0 for row in report.series)
        assert report.to_dict()["has_data"] is False

    @pytest.mark.asyncio
    async def test_day_series(self, engine, week):
        """Test the report over the week"""
        report = await engine.day_series(PROJECT, week)
        data = report.to_dict(precision=2)

        assert data["start_date"] == "2024-01-01"
        assert len(data["historical_data"]) == 7
        assert report.summary.days_with_data == 2
        assert report.stats.lots == 2
        assert report.totals.scrap_parts == 110

    @pytest.mark.asyncio
    async def test_machine_filter_excludes_unassigned_quality(self, engine, week):
        """Test that a machine filter drops machine-less issues by default"""
        batch = await engine.fetch(PROJECT, week, EventFilters(machine_ids=["m2"]))

        assert [lot.id for lot in batch.lots] == ["lot-m2"]
        assert batch.quality_issues == []

    @pytest.mark.asyncio
    async def test_machine_filter_can_keep_unassigned_quality(self, engine, week):
        """Test the explicit opt-in for machine-less issues"""
        filters = EventFilters(machine_ids=["m2"], include_unassigned_quality=True)
        batch = await engine.fetch(PROJECT, week, filters)

        assert [issue.id for issue in batch.quality_issues] == ["q2"]

    @pytest.mark.asyncio
    async def test_machine_report(self, engine, week):
        """Test one summary per machine"""
        summaries = await engine.machine_report(PROJECT, week)

        assert [s.machine_id for s in summaries] == ["m1", "m2"]
        assert summaries[1].summary.availability == 100.0

    @pytest.mark.asyncio
    async def test_stop_causes(self, engine, week):
        """Test stop Pareto and tracking"""
        report = await engine.stop_causes(PROJECT, week)

        assert report.pareto.causes == ["belt jam", "cleaning", "sensor fault"]
        assert report.pareto.rows[-1].cumulative == pytest.approx(100.0)
        assert report.tracking.daily[1]["AP"] == pytest.approx(30.0)
        assert report.to_dict()["event_count"] == 3

    @pytest.mark.asyncio
    async def test_quality_causes(self, engine, week):
        """Test quality Pareto by quantity"""
        report = await engine.quality_causes(PROJECT, week)

        assert report.pareto.total == 110
        assert report.tracking.top_causes == ["burr"]

    @pytest.mark.asyncio
    async def test_stop_pareto_by_type(self, engine, week):
        """Test per failure type Pareto tables"""
        tables = await engine.stop_pareto_by_type(PROJECT, week)
        assert tables[FailureType.PLANNED].causes == ["cleaning"]

    @pytest.mark.asyncio
    async def test_downtime(self, engine, week):
        """Test the downtime summary request"""
        summary = await engine.downtime(PROJECT, week)

        assert summary.stop_count == 3
        assert summary.planned_downtime == pytest.approx(30.0)
        assert summary.unplanned_downtime == pytest.approx(50.0)

    @pytest.mark.asyncio
    async def test_recomputation_is_deterministic(self, engine, week):
        """Test identical output for identical input and clock"""
        first = await engine.day_series(PROJECT, week)
        second = await engine.day_series(PROJECT, week)
        assert first.to_dict() == second.to_dict()


    @pytest.mark.asyncio
    async def test_production_and_quality_kpis(self, engine, week):
        """Test the production series and window yield figures"""
        report = await engine.day_series(PROJECT, week)

        production = report.production_records()
        assert production[0] == {
            "date": "2024-01-01",
            "actual": 400,
            "target": 500,
            "scrap": 100,
            "rework": 0,
            "ongoing_lots": 0,
        }
        assert production[1]["target"] == 250
        assert report.kpis.total_production == 640
        assert report.kpis.first_pass_yield == pytest.approx(82.8125)
        assert report.kpis.scrap_rate == pytest.approx(17.1875)

    @pytest.mark.asyncio
    async def test_default_output_precision(self, repository, week, fixed_now):
        """Test that to_dict rounds with the configured precision unless told otherwise"""
        settings = Settings(app_env="testing", engine=EngineSettings(timezone="Europe/Paris", output_precision=0))
        engine = EffectivenessEngine(repository, settings=settings, clock=lambda: fixed_now)

        report = await engine.day_series(PROJECT, week)

        assert report.to_dict()["quality_kpis"]["first_pass_yield"] == 83.0
        assert report.to_dict(precision=3)["quality_kpis"]["scrap_rate"] == 17.188
        assert report.kpis.first_pass_yield == pytest.approx(82.8125)


class TestEngineComparison:
    """Tests for period and entity comparisons"""

    @pytest.mark.asyncio
    async def test_previous_period_by_default(self, engine, week):
        """Test that the comparison window defaults to the previous week"""
        report = await engine.compare(PROJECT, week)

        assert report.comparison.window == DateWindow.of(date(2023, 12, 25), date(2023, 12, 31))
        assert len(report.merged) == 14
        assert report.merged[0]["date"] == "2023-12-25"
        assert report.comparison.summary.days_with_data == 1
        assert len(report.stop_daily) == 14

    @pytest.mark.asyncio
    async def test_entity_comparison(self, engine, week):
        """Test machine against machine over the same window"""
        report = await engine.compare(
            PROJECT,
            week,
            comparison_window=week,
            filters=EventFilters(machine_ids=["m1"]),
            comparison_filters=EventFilters(machine_ids=["m2"]),
        )

        assert len(report.merged) == 7
        first_day = report.merged[0]
        assert first_day["availability"] == pytest.approx(430 / 480 * 100)
        assert first_day["availability_prev"] == 0
        assert report.merged[1]["performance_prev"] == pytest.approx(240 / 450 * 100)
        assert report.merged_frame().height == 7

    @pytest.mark.asyncio
    async def test_production_comparison(self, engine, week):
        """Test merged production rows and yield deltas against the previous week"""
        report = await engine.compare(PROJECT, week)

        rows = {row["date"]: row for row in report.production_daily}
        assert rows["2023-12-27"]["actual"] == 0
        assert rows["2023-12-27"]["actual_prev"] == 480
        assert rows["2023-12-27"]["target_prev"] == 480
        assert rows["2024-01-01"]["target"] == 500
        assert rows["2024-01-01"]["scrap"] == 100
        assert report.kpi_delta["total_production"] == 160
        assert report.kpi_delta["scrap_rate"] == pytest.approx(17.1875)
        assert report.to_dict()["kpi_delta"]["scrap_rate"] == 17.19
