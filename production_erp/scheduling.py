"""Calendar scheduling of work orders and worker double-booking detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .attendance import AttendanceBook, AvailabilityWarning
from .domain import (
    LegacyMode,
    ProcessStatus,
    SplitMode,
    WorkerConflict,
    WorkOrder,
    WorkOrderStatus,
)
from .errors import PersistenceFailure, ValidationError, WorkOrderLockedError
from .repository import Repository, RepositoryError
from .state_machine import current_stage, stage_assignment, sync_item, transition

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConflictReport:
    """Result of a double-booking check."""

    conflicts: List[WorkerConflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass(slots=True)
class CommandResult:
    """Outcome of a scheduling command as shown to the user."""

    success: bool
    message: str
    conflicts: List[WorkerConflict] = field(default_factory=list)
    warnings: List[AvailabilityWarning] = field(default_factory=list)
    missing_materials: List[str] = field(default_factory=list)


def worker_ids_for_order(order: WorkOrder) -> List[str]:
    """Primary workers and helpers of every process and sub-task, first seen first."""

    seen: Dict[str, None] = {}
    for item in order.items:
        for ref in item.iter_workers():
            seen.setdefault(ref.worker_id, None)
    return list(seen)


def worker_name_in(order: WorkOrder, worker_id: str) -> str:
    for item in order.items:
        for ref in item.iter_workers():
            if ref.worker_id == worker_id and ref.worker_name:
                return ref.worker_name
    return "Unknown worker"


def planned_window(order: WorkOrder) -> Optional[Tuple[date, date]]:
    if order.planned_start is None:
        return None
    return order.planned_start, order.planned_end or order.planned_start


def find_conflicts(
    worker_ids: Sequence[str],
    start: date,
    end: date,
    orders: Iterable[WorkOrder],
    exclude_work_order_id: Optional[str] = None,
) -> ConflictReport:
    """Scan scheduled, open work orders for workers booked inside ``[start, end]``.

    Every shared worker of every overlapping order yields one conflict whose
    overlap is the intersection of both windows.
    """

    report = ConflictReport()
    if not worker_ids:
        return report
    start, end = _day(start), _day(end)
    for order in orders:
        if exclude_work_order_id is not None and order.id == exclude_work_order_id:
            continue
        if not order.is_scheduled or order.status.is_closed:
            continue
        window = planned_window(order)
        if window is None:
            continue
        other_start, other_end = window
        if not (other_start <= end and other_end >= start):
            continue
        booked = set(worker_ids_for_order(order))
        for worker_id in worker_ids:
            if worker_id not in booked:
                continue
            report.conflicts.append(
                WorkerConflict(
                    worker_id=worker_id,
                    worker_name=worker_name_in(order, worker_id),
                    conflicting_work_order_id=order.id,
                    conflicting_work_order_number=order.number,
                    conflicting_project_name=order.project_name,
                    overlap_start=max(start, other_start),
                    overlap_end=min(end, other_end),
                )
            )
    return report


def _day(value: date) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _validate_window(start: date, end: date) -> Tuple[date, date]:
    if start is None or end is None:
        raise ValidationError("Both planned dates are required")
    start, end = _day(start), _day(end)
    if end < start:
        raise ValidationError("End date must be on or after the start date")
    return start, end


class Scheduler:
    """Places work orders on the calendar.

    Conflicts are never resolved silently: an unforced command that finds
    conflicts returns them and leaves the order untouched. Orders fetched
    from the repository are copies, so the stored record only changes once
    a write succeeds.
    """

    def __init__(
        self,
        work_orders: Repository[WorkOrder],
        attendance: AttendanceBook,
        clock: Callable[[], datetime],
    ) -> None:
        self.work_orders = work_orders
        self.attendance = attendance
        self._clock = clock

    @property
    def today(self) -> date:
        return self._clock().date()

    def scheduled_orders(self, window: Optional[Tuple[date, date]] = None) -> List[WorkOrder]:
        orders = [order for order in self.work_orders if order.is_scheduled]
        if window is not None:
            start, end = window
            orders = [
                order
                for order in orders
                if (span := planned_window(order)) is not None
                and span[0] <= end
                and span[1] >= start
            ]
        orders.sort(key=lambda order: (order.planned_start or date.max, order.number))
        return orders

    def check_worker_conflicts(
        self,
        worker_ids: Sequence[str],
        start: date,
        end: date,
        exclude_work_order_id: Optional[str] = None,
    ) -> ConflictReport:
        start, end = _validate_window(start, end)
        return find_conflicts(
            worker_ids, start, end, self.work_orders.list(), exclude_work_order_id
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def schedule(
        self, order_id: str, start: date, end: date, *, force: bool = False
    ) -> CommandResult:
        order = self.work_orders.get(order_id)
        if order.status.is_closed:
            raise ValidationError(f"Work order {order.number} is {order.status.value}")
        if order.is_scheduled and order.status == WorkOrderStatus.IN_PROGRESS:
            raise WorkOrderLockedError(
                f"Work order {order.number} is in progress and cannot be moved"
            )
        start, end = _validate_window(start, end)
        blocked = self._conflict_gate(order, start, end, force)
        if blocked is not None:
            return blocked

        order.planned_start = start
        order.planned_end = end
        order.is_scheduled = True
        order.scheduled_at = self._clock()
        if order.status in {WorkOrderStatus.DRAFT, WorkOrderStatus.ASSIGNED}:
            order.status = WorkOrderStatus.SCHEDULED
        return self._commit(order, f"Work order {order.number} scheduled {start} - {end}")

    def reschedule(
        self, order_id: str, new_start: date, new_end: date, *, force: bool = False
    ) -> CommandResult:
        order = self.work_orders.get(order_id)
        self._ensure_movable(order)
        new_start, new_end = _validate_window(new_start, new_end)
        if (new_start, new_end) == planned_window(order):
            return CommandResult(success=True, message="Schedule unchanged")
        blocked = self._conflict_gate(order, new_start, new_end, force)
        if blocked is not None:
            return blocked

        order.planned_start = new_start
        order.planned_end = new_end
        return self._commit(
            order, f"Work order {order.number} moved to {new_start} - {new_end}"
        )

    def shift(self, order_id: str, day_offset: int, *, force: bool = False) -> CommandResult:
        """Move both planned dates by ``day_offset`` days (calendar drag)."""

        order = self.work_orders.get(order_id)
        self._ensure_movable(order)
        if day_offset == 0:
            return CommandResult(success=True, message="Schedule unchanged")
        start, end = planned_window(order)  # type: ignore[misc]
        delta = timedelta(days=day_offset)
        return self.reschedule(order_id, start + delta, end + delta, force=force)

    def unschedule(self, order_id: str) -> CommandResult:
        order = self.work_orders.get(order_id)
        if order.status == WorkOrderStatus.IN_PROGRESS:
            raise WorkOrderLockedError(
                f"Work order {order.number} is in progress and stays on the planner"
            )
        if not order.is_scheduled:
            return CommandResult(success=True, message="Work order was not scheduled")

        order.planned_start = None
        order.planned_end = None
        order.is_scheduled = False
        order.scheduled_at = None
        if order.status == WorkOrderStatus.SCHEDULED:
            order.status = (
                WorkOrderStatus.ASSIGNED
                if worker_ids_for_order(order)
                else WorkOrderStatus.DRAFT
            )
        return self._commit(order, f"Work order {order.number} removed from the planner")

    def start(self, order_id: str, *, allow_early_start: bool = False) -> CommandResult:
        """Put a work order into production.

        Workers that are not available today are reported as warnings; they
        do not block the start.
        """

        order = self.work_orders.get(order_id)
        if order.status.is_closed:
            raise ValidationError(f"Work order {order.number} is {order.status.value}")
        if order.status == WorkOrderStatus.IN_PROGRESS:
            return CommandResult(success=True, message=f"Work order {order.number} is already running")
        today = self.today
        if (
            not allow_early_start
            and order.is_scheduled
            and order.planned_start is not None
            and order.planned_start > today
        ):
            raise ValidationError(
                f"Work order {order.number} is planned for {order.planned_start}; "
                "it cannot start before that day"
            )

        for item in order.items:
            missing = [m.name for m in item.materials if m.is_essential and not m.is_ready]
            if missing:
                logger.info("Not starting %s: materials missing for %s", order.number, item.product_name)
                return CommandResult(
                    success=False,
                    message=f"Essential materials not ready for {item.product_name}: {', '.join(missing)}",
                    missing_materials=missing,
                )

        warnings: List[AvailabilityWarning] = []
        for worker_id in worker_ids_for_order(order):
            availability = self.attendance.can_worker_start_process(worker_id, today)
            if not availability.allowed and availability.status is not None:
                warnings.append(
                    AvailabilityWarning(
                        worker_id=worker_id,
                        worker_name=worker_name_in(order, worker_id),
                        status=availability.status,
                        reason=availability.reason,
                    )
                )
        for warning in warnings:
            logger.warning("Starting %s without %s: %s", order.number, warning.worker_name, warning.reason)

        now = self._clock()
        order.status = WorkOrderStatus.IN_PROGRESS
        order.started_at = order.started_at or now
        for item in order.items:
            match item.mode:
                case LegacyMode():
                    stage = current_stage(item, order.production_steps)
                    if stage is not None:
                        assignment = stage_assignment(item, stage)
                        if assignment.status == ProcessStatus.PENDING:
                            transition(assignment, ProcessStatus.IN_PROGRESS, now)
                case SplitMode(subtasks=subtasks):
                    for subtask in subtasks:
                        if subtask.status == ProcessStatus.PENDING:
                            transition(subtask, ProcessStatus.IN_PROGRESS, now)
            sync_item(item)
        result = self._commit(order, f"Work order {order.number} started")
        result.warnings = warnings
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _ensure_movable(self, order: WorkOrder) -> None:
        if order.status == WorkOrderStatus.IN_PROGRESS:
            raise WorkOrderLockedError(
                f"Work order {order.number} is in progress and cannot be moved"
            )
        if not order.is_scheduled or order.planned_start is None:
            raise ValidationError(f"Work order {order.number} is not scheduled")

    def _conflict_gate(
        self, order: WorkOrder, start: date, end: date, force: bool
    ) -> Optional[CommandResult]:
        report = find_conflicts(
            worker_ids_for_order(order),
            start,
            end,
            self.work_orders.list(),
            exclude_work_order_id=order.id,
        )
        if not report.has_conflicts:
            return None
        if force:
            logger.warning(
                "Scheduling %s over %d worker conflicts on confirmation",
                order.number,
                len(report.conflicts),
            )
            return None
        logger.warning(
            "Scheduling %s blocked by %d worker conflicts", order.number, len(report.conflicts)
        )
        return CommandResult(
            success=False,
            message=(
                f"{len(report.conflicts)} worker conflicts found; "
                "confirm to schedule anyway"
            ),
            conflicts=report.conflicts,
        )

    def _commit(self, order: WorkOrder, message: str) -> CommandResult:
        try:
            self.work_orders.upsert(order.id, order)
        except (RepositoryError, PersistenceFailure):
            logger.exception("Saving work order %s failed", order.number)
            return CommandResult(success=False, message=f"Could not save work order {order.number}")
        logger.info(message)
        return CommandResult(success=True, message=message)


__all__ = [
    "ConflictReport",
    "CommandResult",
    "Scheduler",
    "find_conflicts",
    "planned_window",
    "worker_ids_for_order",
    "worker_name_in",
]
