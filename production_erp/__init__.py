"""Production tracking for a multi-stage workshop.

This package provides data models, in-memory and SQLite persistence, and the
services that move work order items through production: splitting items into
sub-tasks, scheduling work orders without double-booking workers, and
rebuilding the day-by-day history of an item.
"""

from .domain import (
    AttendanceStatus,
    ProcessStatus,
    WorkOrder,
    WorkOrderItem,
    WorkOrderStatus,
    Worker,
)
from .services import ItemRequest, PlanningOptions, ProductionService

__all__ = [
    "AttendanceStatus",
    "ProcessStatus",
    "WorkOrder",
    "WorkOrderItem",
    "WorkOrderStatus",
    "Worker",
    "ItemRequest",
    "PlanningOptions",
    "ProductionService",
]
