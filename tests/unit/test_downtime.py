"""
Unit Tests - Downtime Summary
"""
from datetime import date

import pytest

from conftest import PARIS, make_stop
from oee_engine.aggregation.downtime import MINUTES_PER_DAY, downtime_summary
from oee_engine.events import DateWindow, FailureType


class TestDowntimeSummary:
    """Tests for window-level stop statistics"""

    def test_empty_input(self, week, fixed_now):
        """Test zeros and MTBF equal to the window length"""
        summary = downtime_summary([], week, fixed_now, tz=PARIS)

        assert summary.total_downtime == 0.0
        assert summary.stop_count == 0
        assert summary.mttr == 0.0
        assert summary.mtbf == 7 * MINUTES_PER_DAY
        assert summary.availability == 100.0
        assert summary.failure_breakdown == []

    def test_mttr_mtbf_availability(self, day_one, fixed_now):
        """Test the reliability figures of one day"""
        window = DateWindow.of(day_one, day_one)
        stops = [
            make_stop("s1", day_one, (8, 0), (9, 0), failure_type=FailureType.PLANNED),
            make_stop("s2", day_one, (10, 0), (10, 30)),
            make_stop("s3", day_one, (11, 0), (11, 30), machine_id="m2"),
        ]

        summary = downtime_summary(stops, window, fixed_now, tz=PARIS)

        assert summary.total_downtime == pytest.approx(120.0)
        assert summary.planned_downtime == pytest.approx(60.0)
        assert summary.unplanned_downtime == pytest.approx(60.0)
        assert summary.mttr == pytest.approx(40.0)
        assert summary.mtbf == pytest.approx((1440 - 120) / 3)
        assert summary.availability == pytest.approx((1440 - 120) / 1440 * 100)

    def test_failure_breakdown(self, day_one, fixed_now):
        """Test per-type shares sorted by duration"""
        window = DateWindow.of(day_one, day_one)
        stops = [
            make_stop("s1", day_one, (8, 0), (8, 15), failure_type=FailureType.SERIES_CHANGE),
            make_stop("s2", day_one, (9, 0), (9, 45)),
        ]

        breakdown = downtime_summary(stops, window, fixed_now, tz=PARIS).failure_breakdown

        assert [item.failure_type for item in breakdown] == [FailureType.BREAKDOWN, FailureType.SERIES_CHANGE]
        assert breakdown[0].percentage == pytest.approx(75.0)
        assert breakdown[1].count == 1

    def test_machines(self, day_one, fixed_now):
        """Test per-machine downtime"""
        window = DateWindow.of(day_one, day_one)
        stops = [
            make_stop("s1", day_one, (8, 0), (8, 10), machine_id="m1"),
            make_stop("s2", day_one, (9, 0), (9, 10), machine_id="m1"),
            make_stop("s3", day_one, (9, 0), (9, 50), machine_id="m2"),
        ]

        machines = downtime_summary(stops, window, fixed_now, tz=PARIS).machines

        assert [m.machine_id for m in machines] == ["m2", "m1"]
        assert machines[1].stops == 2
        assert machines[1].mttr == pytest.approx(10.0)

    def test_out_of_window_stops_ignored(self, day_one, fixed_now):
        """Test that only stops dated in the window count"""
        window = DateWindow.of(day_one, day_one)
        stops = [
            make_stop("s1", day_one, (8, 0), (8, 10)),
            make_stop("s2", date(2024, 1, 2), (8, 0), (9, 0)),
        ]

        summary = downtime_summary(stops, window, fixed_now, tz=PARIS)

        assert summary.stop_count == 1
        assert summary.total_downtime == pytest.approx(10.0)

    def test_availability_floor(self, day_one, fixed_now):
        """Test that availability never goes negative"""
        window = DateWindow.of(day_one, day_one)
        stops = [make_stop("s1", day_one, (0, 0))]
        # open since midnight on the 1st, measured on the 8th
        summary = downtime_summary(stops, window, fixed_now, tz=PARIS)

        assert summary.availability == 0.0
        assert summary.mtbf == 0.0
        assert summary.to_dict(precision=2)["availability"] == 0.0
