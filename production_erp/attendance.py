"""Worker attendance, availability checks and work-log reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

from .domain import (
    AttendanceStatus,
    LegacyMode,
    ProcessStatus,
    SplitMode,
    Worker,
    WorkerAttendance,
    WorkLog,
    WorkOrder,
    WorkOrderItem,
    WorkOrderStatus,
)
from .repository import InMemoryRepository, Repository
from .state_machine import is_paused

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = {
    AttendanceStatus.ABSENT: "marked absent",
    AttendanceStatus.SICK: "on sick leave",
    AttendanceStatus.VACATION: "on vacation",
}


@dataclass(slots=True, frozen=True)
class Availability:
    """Advisory answer of the availability gate."""

    allowed: bool
    status: Optional[AttendanceStatus] = None
    reason: str = ""


@dataclass(slots=True, frozen=True)
class AvailabilityWarning:
    """Non-blocking notice that a worker is not available today."""

    worker_id: str
    worker_name: str
    status: AttendanceStatus
    reason: str


@dataclass(slots=True, frozen=True)
class ReconciliationResult:
    created: int
    skipped: int
    message: str


class AttendanceBook:
    """Append-only attendance ledger keyed by worker and day.

    Corrections never overwrite a record; they add a new revision for the
    same ``(worker, day)`` key and the highest revision wins.
    """

    def __init__(self, repository: Optional[Repository[WorkerAttendance]] = None) -> None:
        self.records = repository if repository is not None else InMemoryRepository()

    def record(
        self,
        worker_id: str,
        day: date,
        status: AttendanceStatus,
        *,
        worker_name: str = "",
        now: Optional[datetime] = None,
    ) -> WorkerAttendance:
        history = self.history(worker_id, day)
        revision = history[-1].revision + 1 if history else 1
        entry = WorkerAttendance(
            id=f"{worker_id}:{day.isoformat()}:{revision}",
            worker_id=worker_id,
            worker_name=worker_name,
            day=day,
            status=AttendanceStatus(status),
            revision=revision,
            recorded_at=now,
        )
        self.records.add(entry.id, entry)
        if history:
            logger.info(
                "Attendance of %s on %s corrected: %s -> %s",
                worker_id,
                day,
                history[-1].status.value,
                entry.status.value,
            )
        return entry

    def history(self, worker_id: str, day: date) -> List[WorkerAttendance]:
        entries = [
            entry
            for entry in self.records
            if entry.worker_id == worker_id and entry.day == day
        ]
        entries.sort(key=lambda entry: entry.revision)
        return entries

    def get_worker_attendance(self, worker_id: str, day: date) -> Optional[WorkerAttendance]:
        history = self.history(worker_id, day)
        return history[-1] if history else None

    def get_worker_monthly_attendance(
        self, worker_id: str, year: int, month: int
    ) -> List[WorkerAttendance]:
        latest = latest_revisions(
            entry
            for entry in self.records
            if entry.worker_id == worker_id
            and entry.day.year == year
            and entry.day.month == month
        )
        return sorted(latest.values(), key=lambda entry: entry.day)

    def records_between(
        self, start: date, end: date, worker_ids: Optional[Iterable[str]] = None
    ) -> List[WorkerAttendance]:
        """Authoritative records in ``[start, end]``, optionally per worker."""

        wanted: Optional[Set[str]] = set(worker_ids) if worker_ids is not None else None
        latest = latest_revisions(
            entry
            for entry in self.records
            if start <= entry.day <= end
            and (wanted is None or entry.worker_id in wanted)
        )
        return sorted(latest.values(), key=lambda entry: (entry.day, entry.worker_id))

    def can_worker_start_process(self, worker_id: str, today: date) -> Availability:
        entry = self.get_worker_attendance(worker_id, today)
        if entry is None:
            return Availability(allowed=True, reason="No attendance recorded today")
        reason = UNAVAILABLE_STATUSES.get(entry.status)
        if reason is not None:
            return Availability(
                allowed=False,
                status=entry.status,
                reason=f"Worker is {reason} on {today.isoformat()}",
            )
        return Availability(allowed=True, status=entry.status)


def latest_revisions(entries: Iterable[WorkerAttendance]) -> Dict[Tuple[str, date], WorkerAttendance]:
    latest: Dict[Tuple[str, date], WorkerAttendance] = {}
    for entry in entries:
        key = (entry.worker_id, entry.day)
        current = latest.get(key)
        if current is None or entry.revision > current.revision:
            latest[key] = entry
    return latest


def active_process_for(item: WorkOrderItem, worker_id: str) -> Tuple[bool, Optional[str], Optional[str]]:
    """Return whether ``worker_id`` is actively working on ``item``.

    The tuple carries the process name and sub-task id the work belongs to.
    Paused items and paused sub-tasks never count as active.
    """

    if is_paused(item):
        return False, None, None
    match item.mode:
        case LegacyMode(assignments=assignments):
            for assignment in assignments:
                if assignment.status != ProcessStatus.IN_PROGRESS:
                    continue
                crew = [assignment.worker, *assignment.helpers]
                if any(ref is not None and ref.worker_id == worker_id for ref in crew):
                    return True, assignment.process_name, None
        case SplitMode(subtasks=subtasks):
            for subtask in subtasks:
                if subtask.status != ProcessStatus.IN_PROGRESS or is_paused(subtask):
                    continue
                crew = [subtask.worker, *subtask.helpers]
                if any(ref is not None and ref.worker_id == worker_id for ref in crew):
                    return True, subtask.current_process, subtask.id
    return False, None, None


def reconcile_work_logs(
    book: AttendanceBook,
    worker: Worker,
    day: date,
    orders: Iterable[WorkOrder],
    existing_logs: Iterable[WorkLog],
    *,
    now: datetime,
    hours_worked: float = 8.0,
) -> Tuple[List[WorkLog], ReconciliationResult]:
    """Create the work logs implied by a working attendance day."""

    entry = book.get_worker_attendance(worker.id, day)
    if entry is None or not entry.status.is_working:
        status = entry.status.value if entry is not None else "not recorded"
        return [], ReconciliationResult(
            created=0,
            skipped=0,
            message=f"{worker.name} did not work on {day.isoformat()} ({status})",
        )

    logged_items = {
        log.item_id
        for log in existing_logs
        if log.worker_id == worker.id and log.day == day
    }
    created: List[WorkLog] = []
    skipped = 0
    for order in orders:
        if order.status != WorkOrderStatus.IN_PROGRESS:
            continue
        for item in order.items:
            active, process_name, subtask_id = active_process_for(item, worker.id)
            if not active:
                continue
            if item.id in logged_items:
                skipped += 1
                continue
            created.append(
                WorkLog(
                    id=str(uuid4()),
                    worker_id=worker.id,
                    worker_name=worker.name,
                    day=day,
                    daily_rate=worker.daily_rate,
                    work_order_id=order.id,
                    item_id=item.id,
                    subtask_id=subtask_id,
                    process_name=process_name,
                    hours_worked=hours_worked,
                    from_attendance=True,
                    created_at=now,
                )
            )
            logged_items.add(item.id)
    message = f"Created {len(created)} work logs, skipped {skipped} for {worker.name} on {day.isoformat()}"
    logger.info(message)
    return created, ReconciliationResult(created=len(created), skipped=skipped, message=message)


__all__ = [
    "UNAVAILABLE_STATUSES",
    "Availability",
    "AvailabilityWarning",
    "ReconciliationResult",
    "AttendanceBook",
    "latest_revisions",
    "active_process_for",
    "reconcile_work_logs",
]
