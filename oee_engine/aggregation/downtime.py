"""
Downtime Summary

Window-level stop statistics:

- planned vs unplanned downtime
- MTTR: mean downtime per stop
- MTBF: mean running time between stops
- breakdown by failure type and by machine
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional

import structlog

from oee_engine.events.records import FailureType, StopEvent, measured_minutes
from oee_engine.events.repository import DateWindow
from .metrics import clamp

logger = structlog.get_logger(__name__)

MINUTES_PER_DAY = 24 * 60


@dataclass
class FailureBreakdown:
    """Downtime attributed to one failure type"""
    failure_type: FailureType
    count: int
    duration: float
    percentage: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.failure_type.value,
            "count": self.count,
            "duration": self.duration,
            "percentage": self.percentage,
        }


@dataclass
class MachineDowntime:
    """Downtime of one machine"""
    machine_id: str
    downtime: float
    stops: int
    mttr: float
    availability: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "machine_id": self.machine_id,
            "downtime": self.downtime,
            "stops": self.stops,
            "mttr": self.mttr,
            "availability": self.availability,
        }


@dataclass
class DowntimeSummary:
    """Stop statistics over a window; durations in minutes"""
    window_minutes: float
    total_downtime: float = 0.0
    planned_downtime: float = 0.0
    unplanned_downtime: float = 0.0
    stop_count: int = 0
    mttr: float = 0.0
    mtbf: float = 0.0
    availability: float = 100.0
    failure_breakdown: List[FailureBreakdown] = field(default_factory=list)
    machines: List[MachineDowntime] = field(default_factory=list)

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, object]:
        metrics = {
            "total_downtime": self.total_downtime,
            "planned_downtime": self.planned_downtime,
            "unplanned_downtime": self.unplanned_downtime,
            "mttr": self.mttr,
            "mtbf": self.mtbf,
            "availability": self.availability,
        }
        if precision is not None:
            metrics = {name: round(value, precision) for name, value in metrics.items()}
        return {
            **metrics,
            "stop_count": self.stop_count,
            "failure_breakdown": [item.to_dict() for item in self.failure_breakdown],
            "machines": [machine.to_dict() for machine in self.machines],
        }


def _availability(window_minutes: float, downtime: float) -> float:
    if window_minutes <= 0:
        return 0.0
    return clamp((window_minutes - downtime) / window_minutes * 100)


def downtime_summary(
    stops: Iterable[StopEvent],
    window: DateWindow,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> DowntimeSummary:
    """
    Summarize stops over ``window``.

    Args:
        stops: Stop events; those dated outside the window are ignored
        window: Calendar window; its length in minutes is the reference time
        now: End used for stops that are still open
        tz: Local timezone for dating stops without an explicit date

    Returns:
        DowntimeSummary
    """
    window_minutes = float(window.length * MINUTES_PER_DAY)

    total = planned = unplanned = 0.0
    count = 0
    by_type_count: Dict[FailureType, int] = defaultdict(int)
    by_type_duration: Dict[FailureType, float] = defaultdict(float)
    by_machine_count: Dict[str, int] = defaultdict(int)
    by_machine_duration: Dict[str, float] = defaultdict(float)

    for stop in stops:
        if not window.contains(stop.bucket_date(tz)):
            logger.debug("Stop outside window", stop_id=stop.id)
            continue
        duration = measured_minutes(stop.interval, now)
        if duration is None:
            logger.warning("Skipping unmeasurable stop", stop_id=stop.id)
            continue

        total += duration
        count += 1
        if stop.is_planned:
            planned += duration
        else:
            unplanned += duration

        by_type_count[stop.failure_type] += 1
        by_type_duration[stop.failure_type] += duration
        by_machine_count[stop.machine_id] += 1
        by_machine_duration[stop.machine_id] += duration

    breakdown = sorted(
        (
            FailureBreakdown(
                failure_type=failure_type,
                count=by_type_count[failure_type],
                duration=duration,
                percentage=(duration / total) * 100 if total > 0 else 0.0,
            )
            for failure_type, duration in by_type_duration.items()
        ),
        key=lambda item: (-item.duration, item.failure_type.value),
    )

    machines = sorted(
        (
            MachineDowntime(
                machine_id=machine_id,
                downtime=duration,
                stops=by_machine_count[machine_id],
                mttr=duration / by_machine_count[machine_id],
                availability=_availability(window_minutes, duration),
            )
            for machine_id, duration in by_machine_duration.items()
        ),
        key=lambda machine: (-machine.downtime, machine.machine_id),
    )

    summary = DowntimeSummary(
        window_minutes=window_minutes,
        total_downtime=total,
        planned_downtime=planned,
        unplanned_downtime=unplanned,
        stop_count=count,
        mttr=total / count if count > 0 else 0.0,
        mtbf=max(0.0, window_minutes - total) / count if count > 0 else window_minutes,
        availability=_availability(window_minutes, total),
        failure_breakdown=breakdown,
        machines=machines,
    )

    logger.debug(
        "Downtime summarized",
        stops=count,
        total_downtime=round(total, 2),
        machines=len(machines),
    )
    return summary
