"""
Test Suite Configuration
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

import polars as pl
import pytest

from oee_engine.config import EngineSettings, Settings
from oee_engine.events import (
    ClosedInterval,
    DateWindow,
    FailureType,
    Lot,
    OpenInterval,
    QualityCategory,
    QualityIssue,
    StopEvent,
)

PARIS = ZoneInfo("Europe/Paris")


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware timestamp in Europe/Paris"""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=PARIS)


def make_lot(
    lot_id: str,
    day: date,
    start: tuple = (8, 0),
    end: tuple = (16, 0),
    ok_parts: int = 400,
    cycle_time: float = 60.0,
    machine_id: str = "m1",
    product_id: str = "p1",
    team_id: str = None,
) -> Lot:
    return Lot(
        id=lot_id,
        machine_id=machine_id,
        product_id=product_id,
        interval=ClosedInterval(start=at(day, *start), end=at(day, *end)),
        ok_parts_produced=ok_parts,
        cycle_time_seconds=cycle_time,
        team_id=team_id,
        date=day,
    )


def make_stop(
    stop_id: str,
    day: date,
    start: tuple,
    end: tuple = None,
    failure_type: FailureType = FailureType.BREAKDOWN,
    cause: str = "belt jam",
    machine_id: str = "m1",
) -> StopEvent:
    interval = (
        ClosedInterval(start=at(day, *start), end=at(day, *end))
        if end is not None
        else OpenInterval(start=at(day, *start))
    )
    return StopEvent(
        id=stop_id,
        machine_id=machine_id,
        interval=interval,
        failure_type=failure_type,
        cause=cause,
        date=day,
    )


def make_issue(
    issue_id: str,
    day: date,
    quantity: int,
    category: QualityCategory = QualityCategory.SCRAP,
    cause: str = "burr",
    machine_id: str = "m1",
) -> QualityIssue:
    return QualityIssue(
        id=issue_id,
        category=category,
        quantity=quantity,
        cause=cause,
        date=day,
        machine_id=machine_id,
    )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
        engine=EngineSettings(timezone="Europe/Paris"),
    )


@pytest.fixture
def day_one() -> date:
    return date(2024, 1, 1)


@pytest.fixture
def week(day_one) -> DateWindow:
    """Seven-day window starting 2024-01-01"""
    return DateWindow.of(day_one, date(2024, 1, 7))


@pytest.fixture
def fixed_now() -> datetime:
    """Frozen 'now', after every fixture interval"""
    return datetime(2024, 1, 8, 12, 0, tzinfo=PARIS)


@pytest.fixture
def reference_lot(day_one) -> Lot:
    """480 minute lot, 400 ok parts at 60 s"""
    return make_lot("lot-1", day_one)


@pytest.fixture
def reference_stop(day_one) -> StopEvent:
    """30 minute breakdown"""
    return make_stop("stop-1", day_one, (10, 0), (10, 30))


@pytest.fixture
def cause_stops(day_one) -> list:
    """sensor fault 120 min over two days, belt jam 80 min"""
    return [
        make_stop("s1", day_one, (9, 0), (10, 0), cause="sensor fault"),
        make_stop("s2", date(2024, 1, 3), (9, 0), (10, 0), cause="sensor fault"),
        make_stop("s3", day_one, (13, 0), (14, 20), cause="belt jam"),
    ]


@pytest.fixture
def sample_lot_rows() -> list:
    """Raw lot rows as returned by a database or JSON payload"""
    return [
        {
            "id": "lot-1",
            "machine": "m1",
            "product": "p1",
            "date": "2024-01-01",
            "start_time": "2024-01-01T08:00:00",
            "end_time": "2024-01-01T16:00:00",
            "ok_parts_produced": 400,
            "lot_size": 450,
            "status": "completed",
            "products": {"cycle_time": 60},
        },
        {
            "id": "lot-2",
            "machine": "m2",
            "product": "p1",
            "date": "2024-01-02",
            "start_time": "2024-01-02 06:00:00",
            "end_time": None,
            "ok_parts_produced": "120",
            "cycle_time": "30",
            "status": "ongoing",
        },
        {
            "id": "lot-bad",
            "machine": "m1",
            "product": "p1",
            "start_time": "not a timestamp",
            "ok_parts_produced": 10,
        },
    ]


@pytest.fixture
def sample_stops_df() -> pl.DataFrame:
    """Stop rows in a polars DataFrame"""
    return pl.DataFrame({
        "id": ["s1", "s2", "s3"],
        "machine": ["m1", "m1", "m2"],
        "date": ["2024-01-01", "2024-01-01", "2024-01-02"],
        "start_time": ["2024-01-01 10:00:00", "2024-01-01 12:00:00", "2024-01-02 09:00:00"],
        "end_time": ["2024-01-01 10:30:00", "2024-01-01 12:15:00", "2024-01-02 09:45:00"],
        "failure_type": ["PA", "AP", "XX"],
        "cause": ["belt jam", "cleaning", "unknown"],
    })
