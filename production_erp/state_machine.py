"""Status transitions of items, pipeline stages and sub-tasks.

Items in legacy mode carry one :class:`ProcessAssignment` per pipeline stage;
items in split mode carry :class:`SubTask` records. Both expose the same
``status``/``started_at``/``completed_at`` triple, so the transition rules in
this module apply to either. The "current" stage of an item is never stored:
it is always derived by scanning the pipeline.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Union

from .domain import (
    LegacyMode,
    PausePeriod,
    ProcessAssignment,
    ProcessStatus,
    SplitMode,
    SubTask,
    WorkerRef,
    WorkOrderItem,
)
from .errors import IllegalTransition, ValidationError

logger = logging.getLogger(__name__)

DONE_COLUMN = "DONE"


class Trackable(Protocol):
    status: ProcessStatus
    started_at: Optional[datetime]
    completed_at: Optional[datetime]


Pausable = Union[WorkOrderItem, SubTask]


def transition(target: Trackable, status: ProcessStatus, now: datetime) -> None:
    """Move ``target`` to ``status`` and stamp the matching timestamp."""

    current = target.status
    if current == status:
        return
    if current == ProcessStatus.DONE:
        raise IllegalTransition("Finished work cannot be reopened")
    if status == ProcessStatus.IN_PROGRESS and target.started_at is None:
        target.started_at = now
    elif status == ProcessStatus.DONE:
        if target.started_at is None:
            target.started_at = now
        target.completed_at = now
    target.status = status


def assign_worker(
    target: Union[ProcessAssignment, SubTask],
    worker: Optional[WorkerRef],
    helpers: Sequence[WorkerRef],
    now: datetime,
) -> None:
    """Set the worker crew; a pending target starts as soon as it is staffed."""

    if target.status == ProcessStatus.DONE:
        raise IllegalTransition("Cannot assign workers to finished work")
    target.worker = worker
    target.helpers = [helper for helper in helpers if worker is None or helper != worker]
    if worker is not None and target.status == ProcessStatus.PENDING:
        transition(target, ProcessStatus.IN_PROGRESS, now)


def is_paused(target: Pausable) -> bool:
    return any(period.is_open for period in target.pause_periods)


def pause(target: Pausable, now: datetime) -> PausePeriod:
    if _is_done(target):
        raise IllegalTransition("Finished work cannot be paused")
    if is_paused(target):
        raise IllegalTransition("Already paused")
    period = PausePeriod(started_at=now)
    target.pause_periods.append(period)
    return period


def resume(target: Pausable, now: datetime) -> PausePeriod:
    for period in reversed(target.pause_periods):
        if period.is_open:
            period.ended_at = now
            return period
    raise IllegalTransition("Not paused")


def current_stage(item: WorkOrderItem, steps: Sequence[str]) -> Optional[str]:
    """Return the stage the item is at, or ``None`` once every stage is done."""

    match item.mode:
        case LegacyMode() as legacy:
            for step in steps:
                assignment = legacy.assignment_for(step)
                if assignment is None or assignment.status != ProcessStatus.DONE:
                    return step
            return None
        case SplitMode(subtasks=subtasks):
            open_stages = {
                subtask.current_process
                for subtask in subtasks
                if subtask.status != ProcessStatus.DONE
            }
            for step in steps:
                if step in open_stages:
                    return step
            # sub-tasks parked on a stage that was removed from the pipeline
            return next(
                (
                    subtask.current_process
                    for subtask in subtasks
                    if subtask.status != ProcessStatus.DONE and subtask.current_process
                ),
                None,
            )
    return None  # pragma: no cover - exhaustive


def item_status(item: WorkOrderItem) -> ProcessStatus:
    statuses = [part.status for part in _parts(item)]
    if statuses and all(status == ProcessStatus.DONE for status in statuses):
        return ProcessStatus.DONE
    if any(status == ProcessStatus.IN_PROGRESS for status in statuses):
        return ProcessStatus.IN_PROGRESS
    return ProcessStatus.PENDING


def sync_item(item: WorkOrderItem) -> ProcessStatus:
    """Refresh the item's own timestamps from its stages or sub-tasks."""

    parts = _parts(item)
    started = [part.started_at for part in parts if part.started_at is not None]
    if started and item.started_at is None:
        item.started_at = min(started)
    status = item_status(item)
    if status == ProcessStatus.DONE:
        completed = [part.completed_at for part in parts if part.completed_at is not None]
        item.completed_at = max(completed) if completed else item.completed_at
    else:
        item.completed_at = None
    return status


def stage_assignment(item: WorkOrderItem, stage: str) -> ProcessAssignment:
    if not isinstance(item.mode, LegacyMode):
        raise ValidationError("Item is split; address its sub-tasks instead")
    assignment = item.mode.assignment_for(stage)
    if assignment is None:
        raise ValidationError(f"Item has no stage {stage!r}")
    return assignment


def complete_stage(
    item: WorkOrderItem, steps: Sequence[str], stage: str, now: datetime
) -> Optional[str]:
    """Finish ``stage`` of a legacy item and start the next staffed stage.

    Returns the new current stage, or ``None`` when the item is finished.
    """

    assignment = stage_assignment(item, stage)
    transition(assignment, ProcessStatus.DONE, now)
    next_stage = current_stage(item, steps)
    if next_stage is not None:
        following = stage_assignment(item, next_stage)
        if following.worker is not None and following.status == ProcessStatus.PENDING:
            transition(following, ProcessStatus.IN_PROGRESS, now)
    sync_item(item)
    logger.info("Item %s finished stage %s, next: %s", item.id, stage, next_stage or DONE_COLUMN)
    return next_stage


def _parts(item: WorkOrderItem) -> List[Trackable]:
    match item.mode:
        case LegacyMode(assignments=assignments):
            return list(assignments)
        case SplitMode(subtasks=subtasks):
            return list(subtasks)
    return []  # pragma: no cover - exhaustive


def _is_done(target: Pausable) -> bool:
    if isinstance(target, SubTask):
        return target.status == ProcessStatus.DONE
    return item_status(target) == ProcessStatus.DONE


__all__ = [
    "DONE_COLUMN",
    "transition",
    "assign_worker",
    "is_paused",
    "pause",
    "resume",
    "current_stage",
    "item_status",
    "sync_item",
    "stage_assignment",
    "complete_stage",
]
