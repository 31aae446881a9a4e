"""
Unit Tests - Cause Aggregation
"""
from datetime import date

import pytest

from conftest import PARIS, make_issue, make_stop
from oee_engine.aggregation.causes import (
    build_pareto,
    cause_trend,
    normalize_cause,
    quality_pareto,
    quality_pareto_by_category,
    stop_pareto,
    stop_pareto_by_failure_type,
    track_quality_causes,
    track_stop_causes,
)
from oee_engine.config import CauseNormalization
from oee_engine.events import DateWindow, FailureType, QualityCategory


class TestPareto:
    """Tests for Pareto tables"""

    def test_two_cause_scenario(self, cause_stops, fixed_now):
        """Test sensor fault 120 min and belt jam 80 min"""
        table = stop_pareto(cause_stops, fixed_now)

        assert table.causes == ["sensor fault", "belt jam"]
        assert table.rows[0].total == pytest.approx(120.0)
        assert table.rows[0].percentage == pytest.approx(60.0)
        assert table.rows[0].cumulative == pytest.approx(60.0)
        assert table.rows[1].percentage == pytest.approx(40.0)
        assert table.rows[1].cumulative == pytest.approx(100.0)
        assert table.rows[0].count == 2

    def test_last_cumulative_is_100(self):
        """Test the closing cumulative share with awkward fractions"""
        table = build_pareto([("a", 1.0), ("b", 1.0), ("c", 1.0), ("d", 7.3), ("a", 0.1)])

        assert table.rows[-1].cumulative == pytest.approx(100.0)
        totals = [row.total for row in table]
        assert totals == sorted(totals, reverse=True)

    def test_ties_sorted_by_cause(self):
        """Test a stable order for equal magnitudes"""
        table = build_pareto([("zeta", 5.0), ("alpha", 5.0)])
        assert table.causes == ["alpha", "zeta"]

    def test_empty_and_zero_totals(self):
        """Test that zero grand totals give zero shares"""
        assert len(build_pareto([])) == 0

        table = build_pareto([("a", 0.0)])
        assert table.rows[0].percentage == 0.0
        assert table.rows[0].cumulative == 0.0

    def test_raw_grouping_keeps_variants_apart(self):
        """Test that differently written causes stay distinct by default"""
        table = build_pareto([("Belt jam", 1.0), (" belt  JAM ", 1.0)])
        assert len(table) == 2

    def test_casefold_grouping_merges_variants(self):
        """Test the casefold policy"""
        table = build_pareto(
            [("Belt jam", 1.0), (" belt  JAM ", 1.0)],
            normalization=CauseNormalization.CASEFOLD,
        )

        assert table.causes == ["belt jam"]
        assert table.rows[0].count == 2
        assert normalize_cause(" A\tB ", CauseNormalization.CASEFOLD) == "a b"

    def test_vital_few(self):
        """Test that the vital few stop at the 80% crossing"""
        table = build_pareto([("a", 50.0), ("b", 35.0), ("c", 10.0), ("d", 5.0)])
        assert [row.cause for row in table.vital_few()] == ["a", "b"]

    def test_quality_pareto_by_quantity(self, day_one):
        """Test quality causes ranked by defective quantity"""
        issues = [
            make_issue("q1", day_one, 2, cause="burr"),
            make_issue("q2", day_one, 8, cause="crack"),
            make_issue("q3", day_one, 5, cause="burr", category=QualityCategory.AT_STATION_REWORK),
        ]

        table = quality_pareto(issues)
        by_category = quality_pareto_by_category(issues)

        assert table.causes == ["crack", "burr"]
        assert table.rows[1].total == 7
        assert by_category[QualityCategory.SCRAP].causes == ["crack", "burr"]
        assert by_category[QualityCategory.AT_STATION_REWORK].causes == ["burr"]
        assert len(by_category[QualityCategory.OFF_STATION_REWORK]) == 0

    def test_pareto_by_failure_type(self, day_one, fixed_now):
        """Test one table per failure type"""
        stops = [
            make_stop("s1", day_one, (9, 0), (9, 30), failure_type=FailureType.PLANNED, cause="cleaning"),
            make_stop("s2", day_one, (10, 0), (10, 10), cause="belt jam"),
        ]

        tables = stop_pareto_by_failure_type(stops, fixed_now)

        assert set(tables) == set(FailureType)
        assert tables[FailureType.PLANNED].causes == ["cleaning"]
        assert tables[FailureType.BREAKDOWN].total == pytest.approx(10.0)
        assert len(tables[FailureType.SERIES_CHANGE]) == 0

    def test_to_frame(self, cause_stops, fixed_now):
        """Test the DataFrame export"""
        frame = stop_pareto(cause_stops, fixed_now).to_frame()

        assert frame.height == 2
        assert frame["cumulative"].to_list()[-1] == pytest.approx(100.0)


class TestCauseTrend:
    """Tests for first-to-last trend"""

    def test_percentage_change(self):
        """Test (last - first) / first x 100"""
        history = [(date(2024, 1, 1), 10.0), (date(2024, 1, 5), 15.0)]
        assert cause_trend(history) == pytest.approx(50.0)

    def test_single_point_is_zero(self):
        """Test that one point has no trend"""
        assert cause_trend([(date(2024, 1, 1), 10.0)]) == 0.0

    def test_zero_first_value_is_zero(self):
        """Test the division-by-zero fallback"""
        assert cause_trend([(date(2024, 1, 1), 0.0), (date(2024, 1, 2), 5.0)]) == 0.0

    def test_unsorted_history(self):
        """Test that points are ordered by date first"""
        history = [(date(2024, 1, 5), 5.0), (date(2024, 1, 1), 10.0)]
        assert cause_trend(history) == pytest.approx(-50.0)


class TestCauseTracking:
    """Tests for cause tracking reports"""

    def test_stop_tracking(self, cause_stops, week, fixed_now):
        """Test per-type totals, histories and the daily breakdown"""
        tracking = track_stop_causes(cause_stops, week, fixed_now, tz=PARIS)

        sensor = tracking.cause("sensor fault")
        assert sensor.totals["PA"] == pytest.approx(120.0)
        assert sensor.counts["PA"] == 2
        assert sensor.trend == 0.0  # 60 min on both days
        assert tracking.top_causes == ["sensor fault", "belt jam"]
        assert tracking.total == pytest.approx(200.0)
        assert tracking.event_count == 3

        assert len(tracking.daily) == 7
        first_day = tracking.daily[0]
        assert first_day["date"] == "2024-01-01"
        assert first_day["PA"] == pytest.approx(140.0)
        assert first_day["AP"] == 0.0
        assert first_day["total"] == pytest.approx(140.0)

    def test_top_history_is_zero_filled(self, cause_stops, week, fixed_now):
        """Test one row per day with every top cause present"""
        tracking = track_stop_causes(cause_stops, week, fixed_now, tz=PARIS)

        assert len(tracking.top_history) == 7
        assert tracking.top_history[1] == {"date": "2024-01-02", "sensor fault": 0.0, "belt jam": 0.0}
        assert tracking.top_history[2]["sensor fault"] == pytest.approx(60.0)

    def test_stop_outside_window_gets_its_own_day(self, day_one, fixed_now):
        """Test that a stop dated after the window adds a daily row for its date"""
        window = DateWindow.of(day_one, day_one)
        stops = [
            make_stop("s1", day_one, (9, 0), (9, 30)),
            make_stop("s2", date(2024, 1, 2), (0, 10), (0, 30), cause="sensor fault"),
        ]

        tracking = track_stop_causes(stops, window, fixed_now, tz=PARIS)

        assert [row["date"] for row in tracking.daily] == ["2024-01-01", "2024-01-02"]
        assert tracking.daily[1]["PA"] == pytest.approx(20.0)
        assert tracking.top_history[1]["sensor fault"] == pytest.approx(20.0)

    def test_top_n_limit(self, day_one, fixed_now):
        """Test that only the largest causes are kept in the history"""
        window = DateWindow.of(day_one, day_one)
        stops = [
            make_stop(f"s{i}", day_one, (8, 0), (8, i + 1), cause=f"cause {i}")
            for i in range(7)
        ]

        tracking = track_stop_causes(stops, window, fixed_now, tz=PARIS, top_n=5)

        assert tracking.top_causes == ["cause 6", "cause 5", "cause 4", "cause 3", "cause 2"]
        assert len(tracking.causes) == 7
        assert set(tracking.top_history[0]) == {"date", *tracking.top_causes}

    def test_quality_tracking_columns(self, day_one, week):
        """Test category columns for quality tracking"""
        issues = [
            make_issue("q1", day_one, 4, cause="burr"),
            make_issue("q2", date(2024, 1, 4), 2, cause="burr", category=QualityCategory.OFF_STATION_REWORK),
        ]

        tracking = track_quality_causes(issues, week)
        burr = tracking.cause("burr")

        assert burr.totals == {"scrap": 4.0, "at_station_rework": 0.0, "off_station_rework": 2.0}
        assert burr.trend == pytest.approx(-50.0)
        assert tracking.daily[3]["off_station_rework"] == 2.0
        assert tracking.daily_frame().height == 7
