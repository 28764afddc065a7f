"""Partitioning of an item's quantity into independently tracked sub-tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import uuid4

from .domain import LegacyMode, ProcessStatus, SplitMode, SubTask, WorkOrderItem
from .errors import IllegalTransition, InvalidPartition, ValidationError
from .state_machine import DONE_COLUMN, current_stage, is_paused, sync_item, transition

logger = logging.getLogger(__name__)


def validate_partition(quantity: int, groups: Sequence[int]) -> None:
    if len(groups) < 2:
        raise InvalidPartition("A split needs at least two groups")
    for group in groups:
        if isinstance(group, bool) or not isinstance(group, int):
            raise InvalidPartition(f"Group size {group!r} is not a whole number")
        if group < 1:
            raise InvalidPartition("Every group must contain at least one unit")
    total = sum(groups)
    if total != quantity:
        raise InvalidPartition(
            f"Groups add up to {total} but the item quantity is {quantity}"
        )


def split_item(
    item: WorkOrderItem, groups: Sequence[int], steps: Sequence[str]
) -> List[SubTask]:
    """Replace the item's tracking with one pending sub-task per group.

    The partition is validated before the item is touched, so a rejected
    split leaves the item exactly as it was.
    """

    validate_partition(item.quantity, groups)
    stage = current_stage(item, steps)
    if stage is None:
        raise IllegalTransition("Finished items cannot be split")
    subtasks = [
        SubTask(id=str(uuid4()), quantity=quantity, current_process=stage)
        for quantity in groups
    ]
    previous = "split" if isinstance(item.mode, SplitMode) else "legacy"
    item.mode = SplitMode(subtasks=subtasks)
    logger.info(
        "Split item %s (%s mode) into %s at stage %s",
        item.id,
        previous,
        list(groups),
        stage,
    )
    return subtasks


def move_subtask(
    item: WorkOrderItem,
    subtask_id: str,
    target: str,
    steps: Sequence[str],
    now: datetime,
    *,
    auto_merge: bool = True,
) -> SubTask:
    """Move a sub-task to ``target`` stage, or finish it with ``DONE``.

    With ``auto_merge`` the sub-tasks collapse back into one as soon as they
    all sit on the same unfinished stage. Returns the moved (or merged)
    sub-task.
    """

    mode = _split_mode(item)
    subtask = mode.subtask(subtask_id)
    if subtask is None:
        raise ValidationError(f"Sub-task {subtask_id!r} does not belong to item {item.id!r}")
    if subtask.status == ProcessStatus.DONE:
        raise IllegalTransition("Finished sub-tasks cannot be moved")
    if target == DONE_COLUMN:
        transition(subtask, ProcessStatus.DONE, now)
    elif target in steps:
        subtask.current_process = target
        transition(subtask, ProcessStatus.IN_PROGRESS, now)
    else:
        raise ValidationError(f"Unknown stage {target!r}")

    if auto_merge and _mergeable(mode.subtasks):
        subtask = _merge(mode)
        logger.info("Merged sub-tasks of item %s back into one", item.id)
    sync_item(item)
    return subtask


def _split_mode(item: WorkOrderItem) -> SplitMode:
    if isinstance(item.mode, LegacyMode):
        raise ValidationError(f"Item {item.id!r} is not split")
    return item.mode


def _mergeable(subtasks: Sequence[SubTask]) -> bool:
    if len(subtasks) < 2:
        return False
    stage = subtasks[0].current_process
    return all(
        subtask.current_process == stage
        and subtask.status != ProcessStatus.DONE
        and not is_paused(subtask)
        for subtask in subtasks
    )


def _merge(mode: SplitMode) -> SubTask:
    first = mode.subtasks[0]
    started = [subtask.started_at for subtask in mode.subtasks if subtask.started_at]
    periods = sorted(
        (period for subtask in mode.subtasks for period in subtask.pause_periods),
        key=lambda period: period.started_at,
    )
    merged = SubTask(
        id=str(uuid4()),
        quantity=sum(subtask.quantity for subtask in mode.subtasks),
        current_process=first.current_process,
        status=first.status,
        worker=first.worker,
        helpers=list(first.helpers),
        pause_periods=periods,
        started_at=min(started) if started else None,
    )
    mode.subtasks = [merged]
    return merged


@dataclass(slots=True)
class SplitDraft:
    """Editable group sizes for a split that keeps the total fixed."""

    quantity: int
    groups: List[int] = field(default_factory=list)

    @classmethod
    def halves(cls, quantity: int) -> "SplitDraft":
        if quantity < 2:
            raise InvalidPartition("Only items with a quantity above one can be split")
        half = quantity // 2
        return cls(quantity=quantity, groups=[half, quantity - half])

    def add_group(self) -> None:
        """Move one unit from the largest group into a new group."""

        largest = self.groups.index(max(self.groups))
        if self.groups[largest] < 2:
            raise InvalidPartition("No group has a unit to spare")
        self.groups[largest] -= 1
        self.groups.append(1)

    def remove_group(self, index: int) -> None:
        if len(self.groups) <= 2:
            raise InvalidPartition("A split needs at least two groups")
        self._check_index(index)
        removed = self.groups.pop(index)
        self.groups[0] += removed

    def resize_group(self, index: int, value: int) -> None:
        self._check_index(index)
        other = 1 if index == 0 else 0
        delta = value - self.groups[index]
        if value < 1 or self.groups[other] - delta < 1:
            raise InvalidPartition("Groups cannot drop below one unit")
        self.groups[index] = value
        self.groups[other] -= delta

    def apply(self, item: WorkOrderItem, steps: Sequence[str]) -> List[SubTask]:
        if item.quantity != self.quantity:
            raise InvalidPartition("Draft was prepared for a different quantity")
        return split_item(item, self.groups, steps)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.groups):
            raise InvalidPartition(f"No group at position {index}")


def subtask_for(item: WorkOrderItem, subtask_id: Optional[str]) -> Optional[SubTask]:
    if subtask_id is None:
        return None
    subtask = _split_mode(item).subtask(subtask_id)
    if subtask is None:
        raise ValidationError(f"Sub-task {subtask_id!r} does not belong to item {item.id!r}")
    return subtask


__all__ = [
    "validate_partition",
    "split_item",
    "move_subtask",
    "subtask_for",
    "SplitDraft",
]
