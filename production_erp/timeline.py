"""Day-by-day history of an item rebuilt from work logs, attendance and pauses.

Only a handful of days in an item's life carry a stored record. The
reconstruction walks every calendar day between the item's start and
``min(today, completed_at)`` and classifies each one, so the result has no
gaps. The function is pure: ``today`` and the holiday calendar are passed in
and identical inputs always give identical output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .attendance import latest_revisions
from .domain import PausePeriod, SplitMode, WorkerAttendance, WorkLog, WorkOrder, WorkOrderItem

WEEKEND_DAYS = (5, 6)


class DayType(str, Enum):
    FUTURE = "future"
    PAUSED = "paused"
    HOLIDAY = "holiday"
    WEEKEND = "weekend"
    WORKING = "working"
    NO_WORK = "no_work"


class EntryType(str, Enum):
    WORKER = "worker"
    ABSENT_WORKER = "absent_worker"
    PAUSE_START = "pause_start"
    PAUSE_END = "pause_end"
    MATERIAL_RECEIVED = "material_received"


UNKNOWN_ATTENDANCE = "unknown"

# Absences are only reported on days somebody was expected at work.
_ABSENCE_DAYS = frozenset({DayType.WORKING, DayType.NO_WORK})


@dataclass(slots=True, frozen=True)
class TimelineEntry:
    type: EntryType
    description: str
    worker_id: Optional[str] = None
    worker_name: Optional[str] = None
    process_name: Optional[str] = None
    daily_rate: float = 0.0
    attendance_status: Optional[str] = None


@dataclass(slots=True)
class TimelineDay:
    day: date
    day_type: DayType
    entries: List[TimelineEntry] = field(default_factory=list)
    daily_labor_cost: float = 0.0
    cumulative_labor_cost: float = 0.0


@dataclass(slots=True, frozen=True)
class TimelineStats:
    working_days: int
    paused_days: int
    total_days: int
    total_labor_cost: float


@dataclass(slots=True)
class ItemTimeline:
    item_id: str
    start: date
    end: date
    days: List[TimelineDay]
    stats: TimelineStats


def resolve_start(
    order: WorkOrder, item: WorkOrderItem, logs: List[WorkLog], today: date
) -> date:
    """Item start, else order creation, else first log; clamped to creation."""

    created = order.created_at.date() if order.created_at is not None else None
    if item.started_at is not None:
        start = item.started_at.date()
    elif created is not None:
        start = created
    elif logs:
        start = min(log.day for log in logs)
    else:
        start = today
    if created is not None and start < created:
        start = created
    return start


def resolve_end(item: WorkOrderItem, today: date) -> date:
    if item.completed_at is None:
        return today
    return min(today, item.completed_at.date())


def pause_periods_for(item: WorkOrderItem) -> List[PausePeriod]:
    """Pauses of the item itself plus those of every sub-task, oldest first."""

    periods = list(item.pause_periods)
    match item.mode:
        case SplitMode(subtasks=subtasks):
            for subtask in subtasks:
                periods.extend(subtask.pause_periods)
    periods.sort(key=lambda period: period.started_at)
    return periods


def classify_day(
    day: date,
    today: date,
    pauses: List[PausePeriod],
    holidays: FrozenSet[date],
    has_logs: bool,
) -> DayType:
    if day > today:
        return DayType.FUTURE
    if any(period.covers(day, today) for period in pauses):
        return DayType.PAUSED
    if day in holidays:
        return DayType.HOLIDAY
    if day.weekday() in WEEKEND_DAYS:
        return DayType.WEEKEND
    if has_logs:
        return DayType.WORKING
    return DayType.NO_WORK


def assigned_workers(item: WorkOrderItem, logs: Iterable[WorkLog]) -> Dict[str, str]:
    """Workers attached to the item, in first-seen order, with known names."""

    workers: Dict[str, str] = {}
    for ref in item.iter_workers():
        if not workers.get(ref.worker_id):
            workers[ref.worker_id] = ref.worker_name
    for log in logs:
        if not workers.get(log.worker_id):
            workers[log.worker_id] = log.worker_name
    return workers


def reconstruct(
    order: WorkOrder,
    item: WorkOrderItem,
    logs: Iterable[WorkLog],
    attendance: Iterable[WorkerAttendance],
    holidays: Iterable[date] = (),
    *,
    today: date,
) -> ItemTimeline:
    """Rebuild the gap-free timeline of ``item``.

    ``logs`` may contain logs of other items; only the item's own are used.
    ``attendance`` may contain several revisions per worker and day; the
    highest revision decides the status shown on ``absent_worker`` entries.
    """

    item_logs = sorted(
        (log for log in logs if log.item_id == item.id), key=lambda log: log.day
    )
    records: Dict[Tuple[str, date], WorkerAttendance] = latest_revisions(attendance)
    holiday_set = frozenset(holidays)
    start = resolve_start(order, item, item_logs, today)
    end = resolve_end(item, today)

    logs_by_day: Dict[date, List[WorkLog]] = {}
    for log in item_logs:
        logs_by_day.setdefault(log.day, []).append(log)
    workers = assigned_workers(item, item_logs)
    pauses = pause_periods_for(item)

    days: List[TimelineDay] = []
    cumulative = 0.0
    current = start
    while current <= end:
        day_logs = logs_by_day.get(current, [])
        day_type = classify_day(current, today, pauses, holiday_set, bool(day_logs))
        timeline_day = TimelineDay(day=current, day_type=day_type)

        for log in day_logs:
            timeline_day.entries.append(
                TimelineEntry(
                    type=EntryType.WORKER,
                    description=f"{log.worker_name} worked on {log.process_name or 'the item'}",
                    worker_id=log.worker_id,
                    worker_name=log.worker_name,
                    process_name=log.process_name,
                    daily_rate=log.daily_rate,
                )
            )
            timeline_day.daily_labor_cost += log.daily_rate

        if day_type in _ABSENCE_DAYS:
            logged = {log.worker_id for log in day_logs}
            for worker_id, known_name in workers.items():
                if worker_id in logged:
                    continue
                record = records.get((worker_id, current))
                status = record.status.value if record is not None else UNKNOWN_ATTENDANCE
                name = known_name or (record.worker_name if record is not None else "") or "Worker"
                timeline_day.entries.append(
                    TimelineEntry(
                        type=EntryType.ABSENT_WORKER,
                        description=f"{name} did not log work ({status})",
                        worker_id=worker_id,
                        worker_name=name,
                        attendance_status=status,
                    )
                )

        # sub-tasks paused on the same day share one marker
        if any(period.started_at.date() == current for period in pauses):
            timeline_day.entries.append(
                TimelineEntry(type=EntryType.PAUSE_START, description="Production paused")
            )
        if any(period.ended_at is not None and period.ended_at.date() == current for period in pauses):
            timeline_day.entries.append(
                TimelineEntry(type=EntryType.PAUSE_END, description="Production resumed")
            )

        for material in item.materials:
            if material.received_on == current:
                timeline_day.entries.append(
                    TimelineEntry(
                        type=EntryType.MATERIAL_RECEIVED,
                        description=f"Material received: {material.name}",
                    )
                )

        cumulative += timeline_day.daily_labor_cost
        timeline_day.cumulative_labor_cost = cumulative
        days.append(timeline_day)
        current += timedelta(days=1)

    return ItemTimeline(item_id=item.id, start=start, end=end, days=days, stats=summarize(days))


def summarize(days: List[TimelineDay]) -> TimelineStats:
    working = paused = total = 0
    cost = 0.0
    for day in days:
        if day.day_type == DayType.WORKING:
            working += 1
        elif day.day_type == DayType.PAUSED:
            paused += 1
        if day.day_type != DayType.FUTURE:
            total += 1
        cost += day.daily_labor_cost
    return TimelineStats(
        working_days=working, paused_days=paused, total_days=total, total_labor_cost=cost
    )


__all__ = [
    "DayType",
    "EntryType",
    "TimelineEntry",
    "TimelineDay",
    "TimelineStats",
    "ItemTimeline",
    "UNKNOWN_ATTENDANCE",
    "reconstruct",
    "resolve_start",
    "resolve_end",
    "classify_day",
    "pause_periods_for",
    "assigned_workers",
    "summarize",
]
