"""Core data structures for tracking work orders through production."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union


class WorkOrderStatus(str, Enum):
    """Lifecycle stages for a work order."""

    DRAFT = "Draft"
    ASSIGNED = "Assigned"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    DONE = "Done"
    CANCELLED = "Cancelled"

    @property
    def is_closed(self) -> bool:
        return self in {WorkOrderStatus.DONE, WorkOrderStatus.CANCELLED}


class ProcessStatus(str, Enum):
    """Status of a single pipeline stage or sub-task."""

    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    DONE = "Done"
    DEFERRED = "Deferred"


class AttendanceStatus(str, Enum):
    """Daily presence status of a worker."""

    PRESENT = "Present"
    FIELD = "Field"
    ABSENT = "Absent"
    SICK = "Sick"
    VACATION = "Vacation"
    WEEKEND = "Weekend"

    @property
    def is_working(self) -> bool:
        return self in {AttendanceStatus.PRESENT, AttendanceStatus.FIELD}


@dataclass(slots=True)
class Worker:
    """Worker master data."""

    id: str
    name: str
    daily_rate: float
    role: str = ""


@dataclass(slots=True, frozen=True)
class WorkerRef:
    """Lightweight reference to a worker stored on assignments."""

    worker_id: str
    worker_name: str = ""


@dataclass(slots=True)
class PausePeriod:
    """Interval during which an item or sub-task is not worked on."""

    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def covers(self, day: date, today: date) -> bool:
        end = self.ended_at.date() if self.ended_at is not None else today
        return self.started_at.date() <= day <= end


@dataclass(slots=True)
class ProcessAssignment:
    """Worker and progress of one pipeline stage of a legacy item."""

    process_name: str
    status: ProcessStatus = ProcessStatus.PENDING
    worker: Optional[WorkerRef] = None
    helpers: List[WorkerRef] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(slots=True)
class SubTask:
    """Independently tracked share of an item's quantity."""

    id: str
    quantity: int
    current_process: Optional[str]
    status: ProcessStatus = ProcessStatus.PENDING
    worker: Optional[WorkerRef] = None
    helpers: List[WorkerRef] = field(default_factory=list)
    pause_periods: List[PausePeriod] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass(slots=True)
class LegacyMode:
    """Item tracked as a whole with one assignment per pipeline stage."""

    assignments: List[ProcessAssignment]

    def assignment_for(self, process_name: str) -> Optional[ProcessAssignment]:
        for assignment in self.assignments:
            if assignment.process_name == process_name:
                return assignment
        return None


@dataclass(slots=True)
class SplitMode:
    """Item partitioned into sub-tasks."""

    subtasks: List[SubTask]

    def subtask(self, subtask_id: str) -> Optional[SubTask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None


ItemMode = Union[LegacyMode, SplitMode]


# material statuses that let production start
READY_MATERIAL_STATUSES = frozenset({"Received", "In stock"})


@dataclass(slots=True)
class ItemMaterial:
    """Material line of an item; only dated receipts appear on timelines."""

    name: str
    status: str = "Ordered"
    received_on: Optional[date] = None
    is_essential: bool = False

    @property
    def is_ready(self) -> bool:
        return self.status in READY_MATERIAL_STATUSES


@dataclass(slots=True)
class WorkOrderItem:
    """One product line of a work order."""

    id: str
    work_order_id: str
    product_id: str
    product_name: str
    quantity: int
    mode: ItemMode
    project_id: str = ""
    project_name: str = ""
    pause_periods: List[PausePeriod] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archived: bool = False
    product_value: float = 0.0
    material_cost: float = 0.0
    planned_labor_cost: float = 0.0
    actual_labor_cost: float = 0.0
    materials: List[ItemMaterial] = field(default_factory=list)

    def iter_workers(self) -> Iterator[WorkerRef]:
        """Yield primary workers and helpers of every stage or sub-task."""

        match self.mode:
            case LegacyMode(assignments=assignments):
                for assignment in assignments:
                    if assignment.worker is not None:
                        yield assignment.worker
                    yield from assignment.helpers
            case SplitMode(subtasks=subtasks):
                for subtask in subtasks:
                    if subtask.worker is not None:
                        yield subtask.worker
                    yield from subtask.helpers


@dataclass(slots=True)
class WorkOrder:
    """A batch of items moving through an ordered list of production steps."""

    id: str
    number: str
    production_steps: Tuple[str, ...]
    items: List[WorkOrderItem] = field(default_factory=list)
    status: WorkOrderStatus = WorkOrderStatus.DRAFT
    due_date: Optional[date] = None
    planned_start: Optional[date] = None
    planned_end: Optional[date] = None
    is_scheduled: bool = False
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: str = ""
    total_value: float = 0.0
    material_cost: float = 0.0
    planned_labor_cost: float = 0.0
    actual_labor_cost: float = 0.0
    profit: float = 0.0
    profit_margin: float = 0.0
    labor_cost_variance: float = 0.0

    def item(self, item_id: str) -> Optional[WorkOrderItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @property
    def project_name(self) -> str:
        return self.items[0].project_name if self.items else ""


@dataclass(slots=True, frozen=True)
class WorkLog:
    """Fact that a worker performed work on an item on a given day."""

    id: str
    worker_id: str
    worker_name: str
    day: date
    daily_rate: float
    work_order_id: str
    item_id: str
    subtask_id: Optional[str] = None
    process_name: Optional[str] = None
    hours_worked: float = 8.0
    from_attendance: bool = False
    notes: str = ""
    created_at: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class WorkerAttendance:
    """One revision of a worker's attendance status for a day."""

    id: str
    worker_id: str
    day: date
    status: AttendanceStatus
    worker_name: str = ""
    revision: int = 1
    recorded_at: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class WorkerConflict:
    """Overlapping commitment of a worker on another scheduled work order."""

    worker_id: str
    worker_name: str
    conflicting_work_order_id: str
    conflicting_work_order_number: str
    conflicting_project_name: str
    overlap_start: date
    overlap_end: date


__all__ = [
    "WorkOrderStatus",
    "ProcessStatus",
    "AttendanceStatus",
    "Worker",
    "WorkerRef",
    "PausePeriod",
    "ProcessAssignment",
    "SubTask",
    "LegacyMode",
    "SplitMode",
    "ItemMode",
    "ItemMaterial",
    "READY_MATERIAL_STATUSES",
    "WorkOrderItem",
    "WorkOrder",
    "WorkLog",
    "WorkerAttendance",
    "WorkerConflict",
]
