"""
Board state store: the single in-memory source of truth for rendering.

The store holds one Board value. Updates are pure functions that return a new
Board (copy-on-write) so observers can detect change by identity:

    store.apply(put_task, task)      # publishes a new Board
    store.apply(remove_tasks, [tid]) # same

The store never validates or rejects an update. Callers (reorder engine,
lifecycle manager) are responsible for keeping invariants.
"""
import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .schema import Board, BoardSettings, Column, Task

logger = logging.getLogger(__name__)

Observer = Callable[[Board, Board], None]


class BoardStore:
    """Holds the current Board and notifies observers on change."""

    def __init__(self, board: Optional[Board] = None):
        self._board = board or Board()
        self._observers: List[Observer] = []

    @property
    def board(self) -> Board:
        return self._board

    def subscribe(self, callback: Observer) -> None:
        """Register callback(old_board, new_board)."""
        self._observers.append(callback)

    def replace(self, board: Board) -> Board:
        """Swap in a whole board (initial load or reload)."""
        return self._publish(board)

    def apply(self, update: Callable[..., Board], *args, **kwargs) -> Board:
        """Run a pure update function against the current board and publish."""
        return self._publish(update(self._board, *args, **kwargs))

    def _publish(self, new: Board) -> Board:
        old = self._board
        if new is old:
            return old
        self._board = new
        for callback in self._observers:
            try:
                callback(old, new)
            except Exception as e:
                logger.error(f"Board observer {callback!r} failed: {e}")
        return new


# ── Pure update functions ─────────────────────────────────────────────────────


def put_task(board: Board, task: Task) -> Board:
    """Insert or replace a task in the task collection."""
    tasks = dict(board.tasks)
    tasks[task.id] = task
    return replace(board, tasks=tasks)


def put_tasks(board: Board, tasks: Iterable[Task]) -> Board:
    merged = dict(board.tasks)
    for task in tasks:
        merged[task.id] = task
    return replace(board, tasks=merged)


def remove_tasks(board: Board, task_ids: Iterable[str]) -> Board:
    """Drop tasks from the collection and from every column that lists them."""
    doomed = set(task_ids)
    if not doomed:
        return board
    tasks = {tid: t for tid, t in board.tasks.items() if tid not in doomed}
    columns = dict(board.columns)
    for cid, column in board.columns.items():
        if doomed.intersection(column.task_ids):
            columns[cid] = replace(
                column, task_ids=tuple(t for t in column.task_ids if t not in doomed)
            )
    return replace(board, tasks=tasks, columns=columns)


def put_column(board: Board, column: Column) -> Board:
    """Insert or replace a column. New columns are appended to the order."""
    columns = dict(board.columns)
    columns[column.id] = column
    order = board.column_order
    if column.id not in order:
        order = order + (column.id,)
    return replace(board, columns=columns, column_order=order)


def remove_column(board: Board, column_id: str) -> Board:
    """Drop a column and every task it contains."""
    column = board.columns.get(column_id)
    if column is None:
        return board
    doomed = set(column.task_ids)
    tasks = {tid: t for tid, t in board.tasks.items() if tid not in doomed}
    columns = {cid: c for cid, c in board.columns.items() if cid != column_id}
    order = tuple(cid for cid in board.column_order if cid != column_id)
    return replace(board, tasks=tasks, columns=columns, column_order=order)


def set_task_ids(board: Board, column_id: str, task_ids: Sequence[str]) -> Board:
    columns = dict(board.columns)
    columns[column_id] = replace(board.columns[column_id], task_ids=tuple(task_ids))
    return replace(board, columns=columns)


def insert_task_ids(board: Board, column_id: str, task_ids: Sequence[str],
                    index: Optional[int] = None) -> Board:
    """Insert ids into a column at index (append when index is None)."""
    current = list(board.columns[column_id].task_ids)
    if index is None:
        index = len(current)
    current[index:index] = list(task_ids)
    return set_task_ids(board, column_id, current)


def add_tasks(board: Board, column_id: str, tasks: Sequence[Task],
              index: Optional[int] = None) -> Board:
    """Put new tasks in the collection and list them in a column in one step."""
    board = put_tasks(board, tasks)
    return insert_task_ids(board, column_id, [t.id for t in tasks], index)


def set_column_order(board: Board, column_order: Sequence[str]) -> Board:
    return replace(board, column_order=tuple(column_order))


def set_settings(board: Board, settings: BoardSettings) -> Board:
    return replace(board, settings=settings)


# ── Render helpers ────────────────────────────────────────────────────────────


def column_tasks(board: Board, column_id: str) -> List[Task]:
    """Resolve a column's tasks in order, skipping ids with no task behind them."""
    column = board.columns.get(column_id)
    if column is None:
        return []
    return [board.tasks[tid] for tid in column.task_ids if tid in board.tasks]


def filter_board(board: Board, query: str) -> Board:
    """
    Return a view of the board whose columns only list tasks matching query.

    Dangling ids are dropped regardless of the query. The task collection is
    left whole so callers can still look up any task by id.
    """
    query = (query or "").strip()
    columns: Dict[str, Column] = {}
    for cid, column in board.columns.items():
        visible = [
            t.id for t in column_tasks(board, cid)
            if not query or t.matches(query)
        ]
        columns[cid] = replace(column, task_ids=tuple(visible))
    return replace(board, columns=columns)
