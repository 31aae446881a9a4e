"""
Record Parsers

Coerce loosely-typed rows (database rows, JSON payloads, DataFrame rows) into
typed event records. A row that cannot be coerced raises
``MalformedRecordError``; ``parse_rows`` catches it, logs it and moves on so
that one bad row never aborts a batch.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any, Callable, Generic, Iterable, List, Mapping, Optional, TypeVar
from zoneinfo import ZoneInfo

import polars as pl
import structlog

from .records import (
    FailureType,
    Lot,
    LotStatus,
    QualityCategory,
    QualityIssue,
    StopEvent,
    make_interval,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

NULL_VALUES = {"", "NULL", "null", "None", "NA", "N/A"}

DATETIME_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M",
]


class MalformedRecordError(ValueError):
    """Raised when a row cannot be turned into a record"""


@dataclass
class SkippedRow:
    """A row rejected by a parser"""
    index: int
    reason: str


@dataclass
class ParseOutcome(Generic[T]):
    """Records parsed from a batch and the rows that were skipped"""
    records: List[T] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() in NULL_VALUES)


def _required(row: Mapping[str, Any], *keys: str) -> Any:
    """First non-null value among ``keys``"""
    for key in keys:
        value = row.get(key)
        if not _is_null(value):
            return value
    raise MalformedRecordError(f"Missing required field: {keys[0]}")


def _optional(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if not _is_null(value):
            return value
    return None


def parse_timestamp(value: Any, tz: Optional[tzinfo] = None) -> datetime:
    """
    Parse a timestamp.

    Accepts datetime objects, ISO-8601 strings and a few common fallback
    formats. Naive results are interpreted in ``tz`` when given.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in DATETIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                raise MalformedRecordError(f"Unparsable timestamp: {value!r}")
    else:
        raise MalformedRecordError(f"Unparsable timestamp: {value!r}")

    if parsed.tzinfo is None and tz is not None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def parse_date(value: Any) -> date:
    """Parse a calendar date; timestamps are truncated as written"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            raise MalformedRecordError(f"Unparsable date: {value!r}") from None
    raise MalformedRecordError(f"Unparsable date: {value!r}")


def _parse_count(value: Any, name: str) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedRecordError(f"Invalid {name}: {value!r}") from None
    if number != number or number < 0:
        raise MalformedRecordError(f"Invalid {name}: {value!r}")
    return int(number)


def _parse_interval(row: Mapping[str, Any], tz: Optional[tzinfo]):
    start = parse_timestamp(_required(row, "start_time"), tz)
    raw_end = _optional(row, "end_time")
    end = parse_timestamp(raw_end, tz) if raw_end is not None else None
    if end is not None:
        try:
            if end < start:
                raise MalformedRecordError("end_time is before start_time")
        except TypeError:
            raise MalformedRecordError("start_time and end_time mix naive and aware timestamps") from None
    return make_interval(start, end)


def _nested(row: Mapping[str, Any], key: str, inner: str) -> Any:
    value = row.get(key)
    if isinstance(value, Mapping):
        return value.get(inner)
    return None


def parse_lot(row: Mapping[str, Any], tz: Optional[tzinfo] = None) -> Lot:
    """Build a Lot from a row; the cycle time may be flat or nested under ``products``"""
    cycle_time = _optional(row, "cycle_time", "cycle_time_seconds")
    if cycle_time is None:
        cycle_time = _nested(row, "products", "cycle_time")
    if cycle_time is not None:
        try:
            cycle_time = float(cycle_time)
        except (TypeError, ValueError):
            raise MalformedRecordError(f"Invalid cycle_time: {cycle_time!r}") from None

    raw_date = _optional(row, "date")
    raw_status = _optional(row, "status")
    try:
        status = LotStatus(str(raw_status).lower()) if raw_status is not None else LotStatus.COMPLETED
    except ValueError:
        raise MalformedRecordError(f"Unknown lot status: {raw_status!r}") from None

    return Lot(
        id=str(_required(row, "id", "lot_id")),
        machine_id=str(_required(row, "machine_id", "machine")),
        product_id=str(_required(row, "product_id", "product")),
        interval=_parse_interval(row, tz),
        ok_parts_produced=_parse_count(_required(row, "ok_parts_produced"), "ok_parts_produced"),
        lot_size=_parse_count(_optional(row, "lot_size") or 0, "lot_size"),
        cycle_time_seconds=cycle_time,
        team_id=_optional(row, "team_id", "team_member"),
        date=parse_date(raw_date) if raw_date is not None else None,
        status=status,
    )


def parse_stop(row: Mapping[str, Any], tz: Optional[tzinfo] = None) -> StopEvent:
    """Build a StopEvent from a row"""
    try:
        failure_type = FailureType.parse(_required(row, "failure_type"))
    except ValueError as e:
        raise MalformedRecordError(str(e)) from None

    raw_date = _optional(row, "date")
    return StopEvent(
        id=str(_required(row, "id")),
        machine_id=str(_required(row, "machine_id", "machine")),
        interval=_parse_interval(row, tz),
        failure_type=failure_type,
        cause=str(_required(row, "cause")),
        product_id=_optional(row, "product_id", "product"),
        team_id=_optional(row, "team_id", "team_member"),
        date=parse_date(raw_date) if raw_date is not None else None,
    )


def parse_quality_issue(row: Mapping[str, Any], tz: Optional[tzinfo] = None) -> QualityIssue:
    """Build a QualityIssue from a row"""
    try:
        category = QualityCategory.parse(_required(row, "category"))
    except ValueError as e:
        raise MalformedRecordError(str(e)) from None

    machine_id = _optional(row, "machine_id", "machine")
    return QualityIssue(
        id=str(_required(row, "id")),
        category=category,
        quantity=_parse_count(_required(row, "quantity"), "quantity"),
        cause=str(_required(row, "cause")),
        date=parse_date(_required(row, "date")),
        machine_id=str(machine_id) if machine_id is not None else None,
        product_id=_optional(row, "product_id", "product"),
        team_id=_optional(row, "team_id", "team_member"),
        lot_id=_optional(row, "lot_id"),
    )


def parse_rows(
    rows: Iterable[Mapping[str, Any]],
    parser: Callable[..., T],
    tz: Optional[tzinfo] = None,
    record_type: str = "record",
) -> ParseOutcome[T]:
    """
    Parse every row with ``parser``, skipping the ones that fail.

    Args:
        rows: Raw rows
        parser: One of parse_lot / parse_stop / parse_quality_issue
        tz: Timezone for naive timestamps
        record_type: Label used in log messages

    Returns:
        ParseOutcome with the parsed records and the skipped rows
    """
    outcome: ParseOutcome[T] = ParseOutcome()
    for index, row in enumerate(rows):
        try:
            outcome.records.append(parser(row, tz))
        except MalformedRecordError as e:
            logger.warning(
                "Skipping malformed row",
                record_type=record_type,
                row_index=index,
                reason=str(e),
            )
            outcome.skipped.append(SkippedRow(index=index, reason=str(e)))

    if outcome.skipped:
        logger.info(
            f"Parsed {len(outcome.records)} {record_type} rows, skipped {outcome.skipped_count}"
        )
    return outcome


def rows_from_frame(df: pl.DataFrame) -> List[dict]:
    """Convert a polars DataFrame to row dictionaries"""
    return df.to_dicts()


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    return ZoneInfo(name) if name else None
