"""
Reorder engine: drag-and-drop results to new board state plus sync calls.

Within one column a drop yields a single reorder_tasks instruction. Across
columns it yields, in this order:

  1. reorder_tasks(source column, new list)
  2. reorder_tasks(destination column, new list)
  3. move_task(task, destination column, index)

The third call repeats what (2) already implies; it is kept because the
backend stores a task's position independently of list order.

Indices from the gesture source are clamped rather than trusted.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .gateway import SyncInstruction, move_task, reorder_columns, reorder_tasks
from .schema import Board
from .state import set_column_order, set_task_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DropResult:
    """Where a dragged task came from and where it was dropped."""
    task_id: str
    source_column_id: str
    source_index: int
    destination_column_id: Optional[str]
    destination_index: int = 0


@dataclass(frozen=True)
class ReorderOutcome:
    board: Board
    instructions: Tuple[SyncInstruction, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.instructions)


def _clamp(index: int, upper: int) -> int:
    return max(0, min(int(index), upper))


def apply_drop(board: Board, drop: DropResult) -> ReorderOutcome:
    """Compute the board after a task drop and the calls that sync it."""
    unchanged = ReorderOutcome(board)

    if drop.destination_column_id is None:
        return unchanged
    if (drop.destination_column_id == drop.source_column_id
            and drop.destination_index == drop.source_index):
        return unchanged

    source = board.columns.get(drop.source_column_id)
    destination = board.columns.get(drop.destination_column_id)
    if source is None or destination is None:
        logger.debug(f"Drop of {drop.task_id} references an unknown column, ignoring")
        return unchanged
    if drop.task_id not in source.task_ids:
        logger.debug(f"Task {drop.task_id} is not in column {source.id}, ignoring drop")
        return unchanged

    source_ids = list(source.task_ids)
    source_ids.remove(drop.task_id)

    if source.id == destination.id:
        index = _clamp(drop.destination_index, len(source_ids))
        source_ids.insert(index, drop.task_id)
        if tuple(source_ids) == source.task_ids:
            return unchanged
        new_board = set_task_ids(board, source.id, source_ids)
        return ReorderOutcome(new_board, (reorder_tasks(source.id, source_ids),))

    destination_ids = list(destination.task_ids)
    index = _clamp(drop.destination_index, len(destination_ids))
    destination_ids.insert(index, drop.task_id)

    new_board = set_task_ids(board, source.id, source_ids)
    new_board = set_task_ids(new_board, destination.id, destination_ids)
    return ReorderOutcome(new_board, (
        reorder_tasks(source.id, source_ids),
        reorder_tasks(destination.id, destination_ids),
        move_task(drop.task_id, destination.id, index),
    ))


def apply_column_drop(board: Board, source_index: int, destination_index: int) -> ReorderOutcome:
    """Move a column within the display order."""
    order = list(board.column_order)
    if not order:
        return ReorderOutcome(board)
    source_index = _clamp(source_index, len(order) - 1)
    column_id = order.pop(source_index)
    order.insert(_clamp(destination_index, len(order)), column_id)
    if tuple(order) == board.column_order:
        return ReorderOutcome(board)
    return ReorderOutcome(set_column_order(board, order), (reorder_columns(order),))
