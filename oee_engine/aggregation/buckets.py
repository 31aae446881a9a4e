"""
Day-Bucket Accumulator

Folds the three event streams into one DayBucket per calendar day of a
window. Each stream is folded independently into a fresh partial mapping and
the partials are merged, so record order and stream order never matter.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, time, timedelta, tzinfo
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import structlog

from oee_engine.events.records import Interval, Lot, LotStatus, QualityIssue, StopEvent
from oee_engine.events.repository import DateWindow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DayBucket:
    """Raw totals for one calendar day, before metric derivation"""
    date: date
    planned_time: float = 0.0  # lot-covered minutes
    planned_stops: float = 0.0  # minutes
    unplanned_stops: float = 0.0  # minutes
    net_time_sec: float = 0.0  # sum of ok parts x cycle time
    ok_parts: int = 0
    scrap_parts: int = 0
    rework_parts: int = 0
    target_parts: int = 0  # sum of lot sizes
    lot_count: int = 0
    ongoing_lots: int = 0
    stop_count: int = 0
    quality_issue_count: int = 0

    @property
    def total_parts(self) -> int:
        """Parts counted by OEE quality (good + scrap)"""
        return self.ok_parts + self.scrap_parts

    @property
    def has_data(self) -> bool:
        return self.total_parts > 0

    @property
    def total_stops(self) -> float:
        return self.planned_stops + self.unplanned_stops

    def merge(self, other: "DayBucket") -> "DayBucket":
        """Return a new bucket summing both; dates must match"""
        if other.date != self.date:
            raise ValueError(f"Cannot merge buckets of {self.date} and {other.date}")
        values = {
            f.name: getattr(self, f.name) + getattr(other, f.name)
            for f in fields(self)
            if f.name != "date"
        }
        return DayBucket(date=self.date, **values)


@dataclass(frozen=True)
class AccumulationStats:
    """Counts of what the accumulator did with its input"""
    lots: int = 0
    stops: int = 0
    quality_issues: int = 0
    out_of_window: int = 0
    skipped: int = 0

    def __add__(self, other: "AccumulationStats") -> "AccumulationStats":
        return AccumulationStats(
            lots=self.lots + other.lots,
            stops=self.stops + other.stops,
            quality_issues=self.quality_issues + other.quality_issues,
            out_of_window=self.out_of_window + other.out_of_window,
            skipped=self.skipped + other.skipped,
        )


@dataclass(frozen=True)
class BucketSet:
    """
    One DayBucket per date of a window, in ascending date order.

    Dates without records are present with zero totals. A record whose local
    start date falls outside the window adds a bucket for that date.
    """
    window: DateWindow
    buckets: Mapping[date, DayBucket]
    stats: AccumulationStats = field(default_factory=AccumulationStats)

    def __iter__(self) -> Iterator[DayBucket]:
        return iter(self.buckets.values())

    def __len__(self) -> int:
        return len(self.buckets)

    def __getitem__(self, day: date) -> DayBucket:
        return self.buckets[day]

    def dates(self) -> List[date]:
        return list(self.buckets.keys())

    def total(self) -> DayBucket:
        """All buckets summed into one, dated on the window start"""
        result = DayBucket(date=self.window.start_date)
        for bucket in self.buckets.values():
            result = result.merge(replace(bucket, date=self.window.start_date))
        return result


@dataclass(frozen=True)
class FoldContext:
    """Inputs shared by the per-stream folds"""
    window: DateWindow
    now: datetime
    tz: Optional[tzinfo] = None
    clip_to_window: bool = False

    def window_bounds(self) -> Tuple[datetime, datetime]:
        """[start 00:00, end+1 00:00) in local time"""
        lower = datetime.combine(self.window.start_date, time.min)
        upper = datetime.combine(self.window.end_date + timedelta(days=1), time.min)
        if self.now.tzinfo is not None:
            tz = self.tz or self.now.tzinfo
            lower = lower.replace(tzinfo=tz)
            upper = upper.replace(tzinfo=tz)
        return lower, upper

    def duration(self, interval: Interval) -> float:
        if self.clip_to_window:
            lower, upper = self.window_bounds()
            interval = interval.clipped(lower, upper, self.now)
        return interval.duration_minutes(self.now)


PartialBuckets = Dict[date, DayBucket]


def _add(partial: PartialBuckets, day: date, **increments) -> None:
    # partial is local to one fold; buckets themselves are never mutated
    current = partial.get(day, DayBucket(date=day))
    partial[day] = replace(current, **{
        name: getattr(current, name) + value for name, value in increments.items()
    })


def fold_lots(lots: Iterable[Lot], ctx: FoldContext) -> Tuple[PartialBuckets, AccumulationStats]:
    """
    Fold lots into partial buckets.

    Each lot adds its duration to planned time, ok parts x cycle time to net
    seconds, its ok parts to the good count and its lot size to the target.
    """
    partial: PartialBuckets = {}
    accepted = out_of_window = skipped = 0
    for lot in lots:
        try:
            day = lot.bucket_date(ctx.tz)
            duration = ctx.duration(lot.interval)
            net_sec = 0.0
            if lot.cycle_time_seconds and lot.cycle_time_seconds > 0 and lot.ok_parts_produced > 0:
                net_sec = lot.ok_parts_produced * lot.cycle_time_seconds
        except (TypeError, ValueError, OverflowError) as e:
            skipped += 1
            logger.warning("Skipping lot", lot_id=lot.id, reason=str(e))
            continue

        if not ctx.window.contains(day):
            out_of_window += 1
            logger.debug("Lot outside window, bucketed on its start date", lot_id=lot.id, date=str(day))

        _add(
            partial,
            day,
            planned_time=duration,
            net_time_sec=net_sec,
            ok_parts=lot.ok_parts_produced,
            target_parts=max(0, lot.lot_size),
            lot_count=1,
            ongoing_lots=1 if lot.status is LotStatus.ONGOING else 0,
        )
        accepted += 1

    return partial, AccumulationStats(lots=accepted, out_of_window=out_of_window, skipped=skipped)


def fold_stops(stops: Iterable[StopEvent], ctx: FoldContext) -> Tuple[PartialBuckets, AccumulationStats]:
    """Fold stop events into planned or unplanned stop minutes"""
    partial: PartialBuckets = {}
    accepted = out_of_window = skipped = 0
    for stop in stops:
        try:
            day = stop.bucket_date(ctx.tz)
            duration = ctx.duration(stop.interval)
        except (TypeError, ValueError, OverflowError) as e:
            skipped += 1
            logger.warning("Skipping stop", stop_id=stop.id, reason=str(e))
            continue

        if not ctx.window.contains(day):
            out_of_window += 1
            logger.debug("Stop outside window, bucketed on its start date", stop_id=stop.id, date=str(day))

        if stop.is_planned:
            _add(partial, day, planned_stops=duration, stop_count=1)
        else:
            _add(partial, day, unplanned_stops=duration, stop_count=1)
        accepted += 1

    return partial, AccumulationStats(stops=accepted, out_of_window=out_of_window, skipped=skipped)


def fold_quality(issues: Iterable[QualityIssue], ctx: FoldContext) -> Tuple[PartialBuckets, AccumulationStats]:
    """Fold quality issues into scrap or rework counts"""
    partial: PartialBuckets = {}
    accepted = out_of_window = 0
    for issue in issues:
        day = issue.bucket_date(ctx.tz)
        if not ctx.window.contains(day):
            out_of_window += 1
            logger.debug("Quality issue outside window, bucketed on its date", issue_id=issue.id, date=str(day))

        if issue.is_scrap:
            _add(partial, day, scrap_parts=issue.quantity, quality_issue_count=1)
        else:
            _add(partial, day, rework_parts=issue.quantity, quality_issue_count=1)
        accepted += 1

    return partial, AccumulationStats(quality_issues=accepted, out_of_window=out_of_window)


def merge_bucket_maps(*partials: Mapping[date, DayBucket]) -> PartialBuckets:
    """Combine partial bucket maps; commutative and associative"""
    merged: PartialBuckets = {}
    for partial in partials:
        for day, bucket in partial.items():
            merged[day] = merged[day].merge(bucket) if day in merged else bucket
    return merged


def zero_filled(window: DateWindow, partial: Mapping[date, DayBucket]) -> Mapping[date, DayBucket]:
    """Every date of the window plus any other recorded date, in order, zero where nothing was recorded"""
    days = sorted(set(window.days()) | set(partial))
    return MappingProxyType({
        day: partial.get(day, DayBucket(date=day)) for day in days
    })


def accumulate(
    lots: Iterable[Lot],
    stops: Iterable[StopEvent],
    issues: Iterable[QualityIssue],
    window: DateWindow,
    now: datetime,
    tz: Optional[tzinfo] = None,
    clip_to_window: bool = False,
) -> BucketSet:
    """
    Fold the three streams into one DayBucket per date of ``window``.

    Args:
        lots: Production lots
        stops: Stop events
        issues: Quality issues
        window: Closed calendar range
        now: End used for intervals that are still open
        tz: Local timezone for truncating timestamps to dates
        clip_to_window: Intersect intervals with the window before measuring

    Returns:
        BucketSet covering every date of the window
    """
    ctx = FoldContext(window=window, now=now, tz=tz, clip_to_window=clip_to_window)

    lot_buckets, lot_stats = fold_lots(lots, ctx)
    stop_buckets, stop_stats = fold_stops(stops, ctx)
    quality_buckets, quality_stats = fold_quality(issues, ctx)

    stats = lot_stats + stop_stats + quality_stats
    buckets = zero_filled(window, merge_bucket_maps(lot_buckets, stop_buckets, quality_buckets))

    logger.debug(
        "Accumulated day buckets",
        days=len(buckets),
        lots=stats.lots,
        stops=stats.stops,
        quality_issues=stats.quality_issues,
        out_of_window=stats.out_of_window,
        skipped=stats.skipped,
    )
    return BucketSet(window=window, buckets=buckets, stats=stats)
