"""
Event Records

Typed, immutable records for the three event streams consumed by the engine:
production lots, stop events and quality issues.

Time spans are modelled as an explicit sum type: a ``ClosedInterval`` has a
known end, an ``OpenInterval`` is still running and is resolved to "now" only
when its duration is measured.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Optional, Union


class FailureType(str, Enum):
    """Stop event classification"""
    PLANNED = "AP"  # Planned downtime
    BREAKDOWN = "PA"  # Equipment breakdown
    ORGANIZED_MALFUNCTION = "DO"
    QUALITY_RELATED = "NQ"  # Non-quality issue
    SERIES_CHANGE = "CS"

    @property
    def is_planned(self) -> bool:
        return self is FailureType.PLANNED

    @classmethod
    def parse(cls, value: Union[str, "FailureType"]) -> "FailureType":
        """Accept a code ("AP") or a member name ("planned"), case-insensitively"""
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        for member in cls:
            if text == member.value or text == member.name:
                return member
        raise ValueError(f"Unknown failure type: {value!r}")


class QualityCategory(str, Enum):
    """Quality issue classification"""
    SCRAP = "scrap"
    AT_STATION_REWORK = "at_station_rework"
    OFF_STATION_REWORK = "off_station_rework"

    @property
    def is_rework(self) -> bool:
        return self is not QualityCategory.SCRAP

    @classmethod
    def parse(cls, value: Union[str, "QualityCategory"]) -> "QualityCategory":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown quality category: {value!r}") from None


class LotStatus(str, Enum):
    """Lot lifecycle status"""
    ONGOING = "ongoing"
    COMPLETED = "completed"


def _minutes_between(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() / 60.0)


@dataclass(frozen=True)
class ClosedInterval:
    """A time span with a known end"""
    start: datetime
    end: datetime

    def duration_minutes(self, now: datetime) -> float:
        return _minutes_between(self.start, self.end)

    def clipped(self, lower: datetime, upper: datetime, now: datetime) -> "ClosedInterval":
        """Intersect with [lower, upper]; an empty intersection has zero length"""
        start = max(self.start, lower)
        end = min(self.end, upper)
        return ClosedInterval(start=start, end=max(start, end))


@dataclass(frozen=True)
class OpenInterval:
    """A time span that is still running"""
    start: datetime

    def duration_minutes(self, now: datetime) -> float:
        return _minutes_between(self.start, now)

    def clipped(self, lower: datetime, upper: datetime, now: datetime) -> "ClosedInterval":
        """Close at now, then intersect with [lower, upper]"""
        start = max(self.start, lower)
        return ClosedInterval(start=start, end=max(start, min(now, upper)))


Interval = Union[ClosedInterval, OpenInterval]


def make_interval(start: datetime, end: Optional[datetime]) -> Interval:
    """Build the right interval variant for an optional end"""
    if end is None:
        return OpenInterval(start=start)
    return ClosedInterval(start=start, end=end)


def local_date(moment: datetime, tz: Optional[tzinfo]) -> date:
    """Truncate a timestamp to the calendar date in ``tz``"""
    if tz is not None and moment.tzinfo is not None:
        moment = moment.astimezone(tz)
    return moment.date()


@dataclass(frozen=True)
class Lot:
    """A production run on one machine"""
    id: str
    machine_id: str
    product_id: str
    interval: Interval
    ok_parts_produced: int
    lot_size: int = 0
    cycle_time_seconds: Optional[float] = None
    team_id: Optional[str] = None
    date: Optional[date] = None
    status: LotStatus = LotStatus.COMPLETED

    def bucket_date(self, tz: Optional[tzinfo] = None) -> date:
        if self.date is not None:
            return self.date
        return local_date(self.interval.start, tz)


@dataclass(frozen=True)
class StopEvent:
    """A machine stoppage"""
    id: str
    machine_id: str
    interval: Interval
    failure_type: FailureType
    cause: str
    product_id: Optional[str] = None
    team_id: Optional[str] = None
    date: Optional[date] = None

    @property
    def is_planned(self) -> bool:
        return self.failure_type.is_planned

    def bucket_date(self, tz: Optional[tzinfo] = None) -> date:
        if self.date is not None:
            return self.date
        return local_date(self.interval.start, tz)


@dataclass(frozen=True)
class QualityIssue:
    """A defect record; contributes unit counts only"""
    id: str
    category: QualityCategory
    quantity: int
    cause: str
    date: date
    machine_id: Optional[str] = None
    product_id: Optional[str] = None
    team_id: Optional[str] = None
    lot_id: Optional[str] = None

    @property
    def is_scrap(self) -> bool:
        return self.category is QualityCategory.SCRAP

    def bucket_date(self, tz: Optional[tzinfo] = None) -> date:
        return self.date


EventRecord = Union[Lot, StopEvent, QualityIssue]


def measured_minutes(interval: Interval, now: datetime) -> Optional[float]:
    """Duration of ``interval``, or None when it cannot be measured against ``now``"""
    try:
        return interval.duration_minutes(now)
    except (TypeError, OverflowError):
        return None
