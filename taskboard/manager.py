"""
Board lifecycle manager: every user intent that changes the board.

Each operation is optimistic: the local board is updated first, then the
matching sync instructions go to the gateway. A failed sync is logged by the
gateway and never rolls the local board back, so what the caller sees is
always "what I just did", not "what the backend confirmed".
"""
import logging
import threading
from dataclasses import replace
from functools import wraps
from typing import Callable, Iterable, List, Optional

from . import state
from .gateway import PersistenceGateway, SyncInstruction, SyncOp, reorder_tasks
from .generator import Enhancement, GenerationError, TaskDraft, TextGenerator
from .importer import drafts_from_text
from .reorder import DropResult, ReorderOutcome, apply_column_drop, apply_drop
from .schema import (
    Board, BoardSettings, Column, Task, DEFAULT_TASK_TITLE,
    clamp_width, make_id, new_column, now_ms, unique_tags,
)
from .session import SessionContext

logger = logging.getLogger(__name__)


def serialized(method):
    """Run a BoardManager method while holding the manager's lock."""
    @wraps(method)
    def locked(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return locked


def apply_enhancement(task: Task, enhancement: Enhancement) -> Task:
    """Replace content fields and merge suggested tags after existing ones."""
    return replace(
        task,
        title=enhancement.title,
        description=enhancement.description,
        acceptance_criteria=enhancement.acceptance_criteria,
        tags=unique_tags(task.tags + enhancement.tags),
        story_points=enhancement.story_points,
    )


class BoardManager:
    """Applies board intents locally and hands the sync calls to the gateway."""

    def __init__(
        self,
        store: state.BoardStore,
        gateway: PersistenceGateway,
        session: SessionContext,
        generator: Optional[TextGenerator] = None,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[str], str] = make_id,
    ):
        self.store = store
        self.gateway = gateway
        self.session = session
        self.generator = generator
        self.clock = clock
        self.id_factory = id_factory
        # one intent at a time: read board, publish, dispatch
        self._lock = threading.RLock()

    @property
    def board(self) -> Board:
        return self.store.board

    def _sync(self, *instructions: SyncInstruction) -> None:
        self.gateway.dispatch(instructions)

    # ── Load ─────────────────────────────────────────────────────────────────

    @serialized
    def load(self) -> Board:
        """Fetch (or create) the user's board and replace local state with it."""
        board_id, board = self.gateway.load_board(self.session)
        self.session = self.session.with_board(board_id)
        logger.info(
            f"Loaded board {board_id} for {self.session.user_id}: "
            f"{len(board.columns)} columns, {len(board.tasks)} tasks"
        )
        return self.store.replace(board)

    reload = load

    def find_column_of(self, task_id: str) -> Optional[Column]:
        return self.board.column_of(task_id)

    # ── Tasks ────────────────────────────────────────────────────────────────

    @serialized
    def create_task(self, column_id: str, title: str = DEFAULT_TASK_TITLE) -> Optional[Task]:
        """Create a default task at the front of a column."""
        if column_id not in self.board.columns:
            logger.debug(f"Create task in unknown column {column_id}, ignoring")
            return None
        task = Task(
            id=self.id_factory("task"),
            title=title.strip() or DEFAULT_TASK_TITLE,
            created_at=self.clock(),
        )
        board = self.store.apply(state.add_tasks, column_id, [task], 0)
        self._sync(
            SyncInstruction(SyncOp.CREATE_TASK, {"column_id": column_id, "task": task, "position": 0}),
            reorder_tasks(column_id, board.columns[column_id].task_ids),
        )
        return task

    @serialized
    def update_task(self, task: Task) -> Optional[Task]:
        """Replace a task's fields in place. The id must already exist."""
        if task.id not in self.board.tasks:
            logger.debug(f"Update of unknown task {task.id}, ignoring")
            return None
        if not isinstance(task.title, str) or not task.title.strip():
            return None
        self.store.apply(state.put_task, task)
        self._sync(SyncInstruction(SyncOp.UPDATE_TASK, {"task": task}))
        return task

    @serialized
    def edit_task(self, task_id: str, **changes) -> Optional[Task]:
        """update_task() from a partial set of fields."""
        current = self.board.tasks.get(task_id)
        if current is None:
            return None
        if "tags" in changes:
            changes["tags"] = unique_tags(changes["tags"])
        if "acceptance_criteria" in changes:
            changes["acceptance_criteria"] = tuple(changes["acceptance_criteria"])
        return self.update_task(replace(current, **changes))

    @serialized
    def delete_task(self, task_id: str) -> bool:
        if task_id not in self.board.tasks:
            return False
        self.store.apply(state.remove_tasks, [task_id])
        self._sync(SyncInstruction(SyncOp.DELETE_TASK, {"task_id": task_id}))
        return True

    @serialized
    def delete_tasks(self, task_ids: Iterable[str]) -> List[str]:
        """Bulk delete. Unknown ids are skipped; returns the ids removed."""
        doomed = [tid for tid in dict.fromkeys(task_ids) if tid in self.board.tasks]
        if not doomed:
            return []
        self.store.apply(state.remove_tasks, doomed)
        self._sync(SyncInstruction(SyncOp.DELETE_TASKS, {"task_ids": tuple(doomed)}))
        return doomed

    @serialized
    def move_task(self, drop: DropResult) -> ReorderOutcome:
        """Apply a drag-and-drop result."""
        outcome = apply_drop(self.board, drop)
        if outcome.changed:
            self.store.replace(outcome.board)
            self._sync(*outcome.instructions)
        return outcome

    # ── Columns ──────────────────────────────────────────────────────────────

    @serialized
    def create_column(self, title: str) -> Optional[Column]:
        title = (title or "").strip()
        if not title:
            return None
        column = new_column(title, column_id=self.id_factory("col"))
        board = self.store.apply(state.put_column, column)
        self._sync(SyncInstruction(SyncOp.CREATE_COLUMN, {
            "board_id": self.session.board_id,
            "column": column,
            "position": len(board.column_order) - 1,
        }))
        return column

    @serialized
    def rename_column(self, column_id: str, title: str) -> Optional[Column]:
        title = (title or "").strip()
        column = self.board.columns.get(column_id)
        if column is None or not title:
            return None
        column = replace(column, title=title)
        self.store.apply(state.put_column, column)
        self._sync(SyncInstruction(SyncOp.UPDATE_COLUMN, {"column_id": column_id, "title": title}))
        return column

    @serialized
    def resize_column(self, column_id: str, width: float) -> Optional[Column]:
        column = self.board.columns.get(column_id)
        if column is None:
            return None
        column = replace(column, width=clamp_width(width))
        self.store.apply(state.put_column, column)
        self._sync(SyncInstruction(SyncOp.UPDATE_COLUMN, {"column_id": column_id, "width": column.width}))
        return column

    @serialized
    def delete_column(self, column_id: str) -> bool:
        """Delete a column and every task in it."""
        if column_id not in self.board.columns:
            return False
        self.store.apply(state.remove_column, column_id)
        self._sync(SyncInstruction(SyncOp.DELETE_COLUMN, {"column_id": column_id}))
        return True

    @serialized
    def move_column(self, source_index: int, destination_index: int) -> ReorderOutcome:
        outcome = apply_column_drop(self.board, source_index, destination_index)
        if outcome.changed:
            self.store.replace(outcome.board)
            self._sync(*outcome.instructions)
        return outcome

    # ── Settings ─────────────────────────────────────────────────────────────

    @serialized
    def update_settings(self, is_condensed: Optional[bool] = None, **extra) -> BoardSettings:
        current = self.board.settings
        settings = BoardSettings(
            is_condensed=current.is_condensed if is_condensed is None else bool(is_condensed),
            extra={**current.extra, **extra},
        )
        if settings == current:
            return current
        self.store.apply(state.set_settings, settings)
        self._sync(SyncInstruction(SyncOp.UPDATE_SETTINGS, {
            "board_id": self.session.board_id,
            "settings": settings.to_dict(),
        }))
        return settings

    # ── AI-assisted ──────────────────────────────────────────────────────────

    def import_tasks(self, column_id: str, text: str, use_ai: bool = False) -> List[Task]:
        """
        Bulk-create tasks from pasted text at the end of a column.

        GenerationError from AI mode propagates before anything changes. The
        generator runs outside the lock; the column is checked again after.
        """
        if column_id not in self.board.columns:
            return []
        drafts = drafts_from_text(text, use_ai=use_ai, generator=self.generator)
        if not drafts:
            return []
        return self._add_drafts(column_id, drafts, use_ai)

    @serialized
    def _add_drafts(self, column_id: str, drafts: List[TaskDraft], use_ai: bool) -> List[Task]:
        if column_id not in self.board.columns:
            logger.debug(f"Column {column_id} vanished during import, dropping {len(drafts)} drafts")
            return []
        base = self.clock()
        tasks = [
            Task(
                id=self.id_factory("task"),
                title=draft.title,
                description=draft.description,
                priority=draft.priority,
                tags=draft.tags,
                story_points=draft.story_points,
                created_at=base + i,
            )
            for i, draft in enumerate(drafts)
        ]
        start = len(self.board.columns[column_id].task_ids)
        self.store.apply(state.add_tasks, column_id, tasks)
        self._sync(*(
            SyncInstruction(SyncOp.CREATE_TASK, {"column_id": column_id, "task": t, "position": start + i})
            for i, t in enumerate(tasks)
        ))
        logger.info(f"Imported {len(tasks)} tasks into column {column_id} (ai={use_ai})")
        return tasks

    def enhance_task(self, task_id: str) -> Optional[Task]:
        """Rewrite a task with the generator's suggestions and save it."""
        task = self.board.tasks.get(task_id)
        if task is None:
            return None
        if self.generator is None:
            raise GenerationError("AI enhancement requested but no text generator is configured")
        enhancement = self.generator.enhance_task(task.title, task.description)
        with self._lock:
            current = self.board.tasks.get(task_id)
            if current is None:
                return None
            return self.update_task(apply_enhancement(current, enhancement))
