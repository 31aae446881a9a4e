"""
Event Records and Repositories
"""
from .records import (
    ClosedInterval,
    FailureType,
    Interval,
    Lot,
    LotStatus,
    OpenInterval,
    QualityCategory,
    QualityIssue,
    StopEvent,
)
from .parsers import MalformedRecordError, ParseOutcome, parse_rows
from .repository import DateWindow, EventFilters, EventRepository, InMemoryEventRepository

__all__ = [
    "ClosedInterval",
    "FailureType",
    "Interval",
    "Lot",
    "LotStatus",
    "OpenInterval",
    "QualityCategory",
    "QualityIssue",
    "StopEvent",
    "MalformedRecordError",
    "ParseOutcome",
    "parse_rows",
    "DateWindow",
    "EventFilters",
    "EventRepository",
    "InMemoryEventRepository",
]
