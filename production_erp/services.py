"""Service layer that implements the production use-cases."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import chain
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from .attendance import (
    AttendanceBook,
    AvailabilityWarning,
    ReconciliationResult,
    reconcile_work_logs,
)
from .domain import (
    AttendanceStatus,
    ItemMaterial,
    LegacyMode,
    PausePeriod,
    ProcessAssignment,
    ProcessStatus,
    SubTask,
    Worker,
    WorkerAttendance,
    WorkerRef,
    WorkLog,
    WorkOrder,
    WorkOrderItem,
    WorkOrderStatus,
)
from .errors import ItemPausedError, PersistenceFailure, ValidationError
from .repository import InMemoryRepository, RecordNotFoundError, Repository, RepositoryError
from .scheduling import CommandResult, ConflictReport, Scheduler
from .splitting import move_subtask, split_item, subtask_for
from .state_machine import (
    assign_worker,
    complete_stage,
    current_stage,
    is_paused,
    item_status,
    pause,
    resume,
    stage_assignment,
    sync_item,
    transition,
)
from .timeline import ItemTimeline, reconstruct

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanningOptions:
    """Runtime switches for production planning."""

    auto_merge_subtasks: bool = True
    default_hours_worked: float = 8.0
    allow_early_start: bool = False
    holidays: FrozenSet[date] = field(default_factory=frozenset)


@dataclass(slots=True)
class ItemRequest:
    """Input for one product line of a new work order."""

    product_id: str
    product_name: str
    quantity: int
    project_id: str = ""
    project_name: str = ""
    product_value: float = 0.0
    material_cost: float = 0.0
    planned_labor_cost: float = 0.0
    stage_workers: Mapping[str, str] = field(default_factory=dict)
    materials: Sequence[ItemMaterial] = ()


class ProductionService:
    """Facade that exposes production use-cases to clients."""

    def __init__(
        self,
        worker_repo: Optional[Repository[Worker]] = None,
        work_order_repo: Optional[Repository[WorkOrder]] = None,
        work_log_repo: Optional[Repository[WorkLog]] = None,
        attendance_repo: Optional[Repository[WorkerAttendance]] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        planning_options: Optional[PlanningOptions] = None,
    ) -> None:
        self.workers = worker_repo if worker_repo is not None else InMemoryRepository()
        self.work_orders = work_order_repo if work_order_repo is not None else InMemoryRepository()
        self.work_logs = work_log_repo if work_log_repo is not None else InMemoryRepository()
        self.attendance = AttendanceBook(attendance_repo)
        self._clock = clock or datetime.utcnow
        self.planning_options = planning_options or PlanningOptions()
        self.scheduler = Scheduler(self.work_orders, self.attendance, self._clock)

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def update_planning_options(
        self,
        *,
        auto_merge_subtasks: bool,
        default_hours_worked: float,
        allow_early_start: bool,
        holidays: Iterable[date] = (),
    ) -> PlanningOptions:
        """Apply new planning switches."""

        self.planning_options = PlanningOptions(
            auto_merge_subtasks=auto_merge_subtasks,
            default_hours_worked=max(default_hours_worked, 0.0),
            allow_early_start=allow_early_start,
            holidays=frozenset(holidays),
        )
        return self.planning_options

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------
    def register_worker(self, name: str, daily_rate: float, *, role: str = "") -> Worker:
        if not name.strip():
            raise ValidationError("A worker needs a name")
        if daily_rate < 0:
            raise ValidationError("Daily rate cannot be negative")
        worker = Worker(id=str(uuid4()), name=name.strip(), daily_rate=daily_rate, role=role)
        self.workers.add(worker.id, worker)
        return worker

    def worker_ref(self, worker_id: str) -> WorkerRef:
        worker = self.workers.get(worker_id)
        return WorkerRef(worker_id=worker.id, worker_name=worker.name)

    # ------------------------------------------------------------------
    # Work orders
    # ------------------------------------------------------------------
    def create_work_order(
        self,
        number: str,
        production_steps: Sequence[str],
        items: Sequence[ItemRequest],
        *,
        due_date: Optional[date] = None,
        notes: str = "",
    ) -> WorkOrder:
        steps = tuple(step.strip() for step in production_steps if step.strip())
        if not steps:
            raise ValidationError("A work order needs at least one production step")
        if len(set(steps)) != len(steps):
            raise ValidationError("Production steps must be unique")
        if not items:
            raise ValidationError("A work order needs at least one item")

        order_id = str(uuid4())
        order = WorkOrder(
            id=order_id,
            number=number,
            production_steps=steps,
            due_date=due_date,
            notes=notes,
            created_at=self.now(),
        )
        for request in items:
            order.items.append(self._build_item(order_id, steps, request))
        if any(True for item in order.items for _ in item.iter_workers()):
            order.status = WorkOrderStatus.ASSIGNED
        self._apply_aggregates(order)
        self.work_orders.add(order.id, order)
        logger.info("Created work order %s with %d items", number, len(order.items))
        return order

    def _build_item(self, order_id: str, steps: Tuple[str, ...], request: ItemRequest) -> WorkOrderItem:
        if isinstance(request.quantity, bool) or not isinstance(request.quantity, int):
            raise ValidationError("Item quantity must be a whole number")
        if request.quantity < 1:
            raise ValidationError("Item quantity must be at least one")
        unknown = set(request.stage_workers) - set(steps)
        if unknown:
            raise ValidationError(f"Unknown stages: {', '.join(sorted(unknown))}")
        assignments = []
        for step in steps:
            worker_id = request.stage_workers.get(step)
            assignments.append(
                ProcessAssignment(
                    process_name=step,
                    worker=self.worker_ref(worker_id) if worker_id else None,
                )
            )
        return WorkOrderItem(
            id=str(uuid4()),
            work_order_id=order_id,
            product_id=request.product_id,
            product_name=request.product_name,
            quantity=request.quantity,
            mode=LegacyMode(assignments=assignments),
            project_id=request.project_id,
            project_name=request.project_name,
            product_value=request.product_value,
            material_cost=request.material_cost,
            planned_labor_cost=request.planned_labor_cost,
            materials=list(request.materials),
        )

    def get_work_order(self, order_id: str) -> WorkOrder:
        return self.work_orders.get(order_id)

    def cancel_work_order(self, order_id: str) -> WorkOrder:
        order = self.work_orders.get(order_id)
        if order.status == WorkOrderStatus.DONE:
            raise ValidationError(f"Work order {order.number} is already finished")
        order.status = WorkOrderStatus.CANCELLED
        self.work_orders.upsert(order.id, order)
        logger.info("Cancelled work order %s", order.number)
        return order

    # ------------------------------------------------------------------
    # Item progress
    # ------------------------------------------------------------------
    def assign_worker(
        self,
        order_id: str,
        item_id: str,
        worker_id: str,
        *,
        stage: Optional[str] = None,
        subtask_id: Optional[str] = None,
        helper_ids: Sequence[str] = (),
    ) -> List[AvailabilityWarning]:
        """Staff a stage or sub-task.

        Workers that are not available today are returned as warnings; the
        assignment is made regardless.
        """

        order, item = self._load_item(order_id, item_id)
        worker = self.worker_ref(worker_id)
        helpers = [self.worker_ref(helper_id) for helper_id in helper_ids]
        target = self._target(order, item, stage, subtask_id)
        assign_worker(target, worker, helpers, self.now())
        sync_item(item)
        if order.status == WorkOrderStatus.DRAFT:
            order.status = WorkOrderStatus.ASSIGNED
        self._save(order)

        warnings = []
        for ref in [worker, *helpers]:
            availability = self.attendance.can_worker_start_process(ref.worker_id, self.today())
            if not availability.allowed and availability.status is not None:
                warnings.append(
                    AvailabilityWarning(
                        worker_id=ref.worker_id,
                        worker_name=ref.worker_name,
                        status=availability.status,
                        reason=availability.reason,
                    )
                )
                logger.warning("Assigned %s although %s", ref.worker_name, availability.reason)
        return warnings

    def set_process_status(
        self,
        order_id: str,
        item_id: str,
        status: ProcessStatus,
        *,
        stage: Optional[str] = None,
        subtask_id: Optional[str] = None,
    ) -> ProcessStatus:
        order, item = self._load_item(order_id, item_id)
        target = self._target(order, item, stage, subtask_id)
        transition(target, ProcessStatus(status), self.now())
        result = sync_item(item)
        self._save(order)
        return result

    def complete_stage(
        self, order_id: str, item_id: str, stage: Optional[str] = None
    ) -> Optional[str]:
        order, item = self._load_item(order_id, item_id)
        stage = stage or current_stage(item, order.production_steps)
        if stage is None:
            raise ValidationError("Every stage of this item is already finished")
        next_stage = complete_stage(item, order.production_steps, stage, self.now())
        self._save(order)
        return next_stage

    def pause_item(
        self, order_id: str, item_id: str, *, subtask_id: Optional[str] = None
    ) -> PausePeriod:
        order, item = self._load_item(order_id, item_id)
        target = subtask_for(item, subtask_id) or item
        period = pause(target, self.now())
        self._save(order)
        logger.info("Paused item %s of %s", item.product_name, order.number)
        return period

    def resume_item(
        self, order_id: str, item_id: str, *, subtask_id: Optional[str] = None
    ) -> PausePeriod:
        order, item = self._load_item(order_id, item_id)
        target = subtask_for(item, subtask_id) or item
        period = resume(target, self.now())
        self._save(order)
        logger.info("Resumed item %s of %s", item.product_name, order.number)
        return period

    def split_item(self, order_id: str, item_id: str, groups: Sequence[int]) -> List[SubTask]:
        order, item = self._load_item(order_id, item_id)
        subtasks = split_item(item, groups, order.production_steps)
        self._save(order)
        return subtasks

    def move_subtask(
        self, order_id: str, item_id: str, subtask_id: str, target: str
    ) -> SubTask:
        order, item = self._load_item(order_id, item_id)
        subtask = move_subtask(
            item,
            subtask_id,
            target,
            order.production_steps,
            self.now(),
            auto_merge=self.planning_options.auto_merge_subtasks,
        )
        self._save(order)
        return subtask

    # ------------------------------------------------------------------
    # Work logs & attendance
    # ------------------------------------------------------------------
    def record_work_log(
        self,
        order_id: str,
        item_id: str,
        worker_id: str,
        day: date,
        *,
        process_name: Optional[str] = None,
        subtask_id: Optional[str] = None,
        hours_worked: Optional[float] = None,
        notes: str = "",
    ) -> WorkLog:
        order, item = self._load_item(order_id, item_id)
        subtask = subtask_for(item, subtask_id)
        if is_paused(item) or (subtask is not None and is_paused(subtask)):
            raise ItemPausedError(f"Item {item.product_name} is paused; no work can be logged")
        worker = self.workers.get(worker_id)
        if process_name is None:
            process_name = subtask.current_process if subtask else current_stage(item, order.production_steps)
        log = WorkLog(
            id=str(uuid4()),
            worker_id=worker.id,
            worker_name=worker.name,
            day=day,
            daily_rate=worker.daily_rate,
            work_order_id=order.id,
            item_id=item.id,
            subtask_id=subtask_id,
            process_name=process_name,
            hours_worked=self.planning_options.default_hours_worked if hours_worked is None else hours_worked,
            notes=notes,
            created_at=self.now(),
        )
        self._save_with_logs([order], [log])
        return log

    def work_logs_for_item(self, item_id: str) -> List[WorkLog]:
        logs = self.work_logs.filter(lambda log: log.item_id == item_id)
        logs.sort(key=lambda log: (log.day, log.worker_name))
        return logs

    def item_labor_cost(self, item_id: str) -> float:
        return sum(log.daily_rate for log in self.work_logs if log.item_id == item_id)

    def mark_attendance(
        self, worker_id: str, day: date, status: AttendanceStatus
    ) -> WorkerAttendance:
        worker = self.workers.get(worker_id)
        return self.attendance.record(
            worker.id, day, AttendanceStatus(status), worker_name=worker.name, now=self.now()
        )

    def trigger_work_log_reconciliation(
        self, worker_id: str, day: Optional[date] = None
    ) -> ReconciliationResult:
        """Create the work logs a working attendance day implies."""

        worker = self.workers.get(worker_id)
        created, result = reconcile_work_logs(
            self.attendance,
            worker,
            day or self.today(),
            self.work_orders.list(),
            self.work_logs.list(),
            now=self.now(),
            hours_worked=self.planning_options.default_hours_worked,
        )
        if created:
            order_ids = sorted({log.work_order_id for log in created})
            orders = [self.work_orders.get(order_id) for order_id in order_ids]
            self._save_with_logs(orders, created)
        return result

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------
    def recalculate_work_order(self, order_id: str) -> WorkOrder:
        """Refresh stored costs, profit and status from the items and logs."""

        order = self.work_orders.get(order_id)
        self._save(order)
        return order

    def _apply_aggregates(self, order: WorkOrder, pending_logs: Sequence[WorkLog] = ()) -> None:
        labor: Dict[str, float] = {}
        for log in chain(self.work_logs, pending_logs):
            if log.work_order_id == order.id:
                labor[log.item_id] = labor.get(log.item_id, 0.0) + log.daily_rate

        starts: List[datetime] = []
        completions: List[datetime] = []
        statuses: List[ProcessStatus] = []
        for item in order.items:
            status = sync_item(item)
            statuses.append(status)
            item.actual_labor_cost = labor.get(item.id, 0.0)
            item.archived = status == ProcessStatus.DONE
            if item.started_at is not None:
                starts.append(item.started_at)
            if item.completed_at is not None:
                completions.append(item.completed_at)

        total_value = sum(item.product_value for item in order.items)
        # keep a manually entered order value when items carry no prices
        if total_value == 0 and order.total_value > 0:
            total_value = order.total_value
        order.total_value = total_value
        order.material_cost = sum(item.material_cost for item in order.items)
        order.planned_labor_cost = sum(item.planned_labor_cost for item in order.items)
        order.actual_labor_cost = sum(item.actual_labor_cost for item in order.items)
        order.profit = order.total_value - order.material_cost - order.actual_labor_cost
        order.profit_margin = (order.profit / order.total_value * 100) if order.total_value > 0 else 0.0
        order.labor_cost_variance = order.planned_labor_cost - order.actual_labor_cost
        order.started_at = min(starts) if starts else order.started_at

        # InProgress is set by the start command, never derived here
        if order.status == WorkOrderStatus.CANCELLED:
            return
        if statuses and all(status == ProcessStatus.DONE for status in statuses):
            order.status = WorkOrderStatus.DONE
            order.completed_at = max(completions) if completions else self.now()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def check_worker_conflicts(
        self,
        worker_ids: Sequence[str],
        start: date,
        end: date,
        exclude_work_order_id: Optional[str] = None,
    ) -> ConflictReport:
        return self.scheduler.check_worker_conflicts(worker_ids, start, end, exclude_work_order_id)

    def schedule_work_order(
        self, order_id: str, start: date, end: date, *, force: bool = False
    ) -> CommandResult:
        return self.scheduler.schedule(order_id, start, end, force=force)

    def reschedule_work_order(
        self, order_id: str, start: date, end: date, *, force: bool = False
    ) -> CommandResult:
        return self.scheduler.reschedule(order_id, start, end, force=force)

    def shift_work_order(self, order_id: str, day_offset: int, *, force: bool = False) -> CommandResult:
        return self.scheduler.shift(order_id, day_offset, force=force)

    def unschedule_work_order(self, order_id: str) -> CommandResult:
        return self.scheduler.unschedule(order_id)

    def start_work_order(self, order_id: str) -> CommandResult:
        return self.scheduler.start(
            order_id, allow_early_start=self.planning_options.allow_early_start
        )

    def scheduled_work_orders(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[WorkOrder]:
        window = (start or date.min, end or date.max) if start or end else None
        return self.scheduler.scheduled_orders(window)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def build_timeline(
        self, order_id: str, item_id: str, *, today: Optional[date] = None
    ) -> ItemTimeline:
        order = self.work_orders.get(order_id)
        item = order.item(item_id)
        if item is None:
            raise RecordNotFoundError(f"Item {item_id!r} is not part of {order.number}")
        return reconstruct(
            order,
            item,
            self.work_logs.list(),
            self.attendance.records.list(),
            self.planning_options.holidays,
            today=today or self.today(),
        )

    def item_status(self, order_id: str, item_id: str) -> ProcessStatus:
        item = self.work_orders.get(order_id).item(item_id)
        if item is None:
            raise RecordNotFoundError(f"Item {item_id!r} not found")
        return item_status(item)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _load_item(self, order_id: str, item_id: str) -> Tuple[WorkOrder, WorkOrderItem]:
        order = self.work_orders.get(order_id)
        item = order.item(item_id)
        if item is None:
            raise RecordNotFoundError(f"Item {item_id!r} is not part of {order.number}")
        if order.status.is_closed:
            raise ValidationError(f"Work order {order.number} is {order.status.value}")
        return order, item

    def _target(
        self,
        order: WorkOrder,
        item: WorkOrderItem,
        stage: Optional[str],
        subtask_id: Optional[str],
    ) -> Union[ProcessAssignment, SubTask]:
        subtask = subtask_for(item, subtask_id)
        if subtask is not None:
            return subtask
        stage = stage or current_stage(item, order.production_steps)
        if stage is None:
            raise ValidationError("Every stage of this item is already finished")
        return stage_assignment(item, stage)

    def _save(self, order: WorkOrder) -> None:
        self._apply_aggregates(order)
        self.work_orders.upsert(order.id, order)

    def _save_with_logs(self, orders: Sequence[WorkOrder], logs: Sequence[WorkLog]) -> None:
        """Store new work logs together with the orders they are costed on.

        Orders are written first with the logs already counted, then the
        logs. A failed write puts back every record written before it.
        """

        previous = [self.work_orders.get(order.id) for order in orders]
        saved_orders: List[WorkOrder] = []
        saved_logs: List[WorkLog] = []
        try:
            for order in orders:
                self._apply_aggregates(order, logs)
                self.work_orders.upsert(order.id, order)
                saved_orders.append(order)
            for log in logs:
                self.work_logs.add(log.id, log)
                saved_logs.append(log)
        except (RepositoryError, PersistenceFailure):
            logger.exception("Saving %d work logs failed; rolling back", len(logs))
            for log in saved_logs:
                self.work_logs.remove(log.id)
            for old in previous[: len(saved_orders)]:
                self.work_orders.upsert(old.id, old)
            raise


__all__ = [
    "ProductionService",
    "PlanningOptions",
    "ItemRequest",
]
