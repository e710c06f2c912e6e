"""
Persistence gateway: turns board mutations into backend calls.

The lifecycle manager and reorder engine describe what the backend must do
as SyncInstructions. The gateway hands them to a worker pool fire-and-forget,
issued in order (completion order is not guaranteed), and never feeds the
outcome back into local state. Each
outcome is published as a SyncResult on the "sync_completed" /
"sync_failed" events so a caller can watch (or later reconcile) without the
manager knowing about it.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .backends import BackendError, BoardBackend
from .schema import Board, new_column
from .session import SessionContext

logger = logging.getLogger(__name__)

DEFAULT_BOARD_TITLE = "My Board"
DEFAULT_COLUMN_TITLES = ("To Do", "In Progress", "Done")


class SyncOp(Enum):
    """Remote operations. Values are the BoardBackend method names."""
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    DELETE_TASK = "delete_task"
    DELETE_TASKS = "delete_tasks"
    CREATE_COLUMN = "create_column"
    UPDATE_COLUMN = "update_column"
    DELETE_COLUMN = "delete_column"
    REORDER_TASKS = "reorder_tasks"
    MOVE_TASK = "move_task"
    REORDER_COLUMNS = "reorder_columns"
    UPDATE_SETTINGS = "update_board_settings"


@dataclass(frozen=True)
class SyncInstruction:
    """One remote call: an operation plus the keyword arguments for it."""
    op: SyncOp
    args: Dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        keys = ", ".join(f"{k}={_short(v)}" for k, v in self.args.items())
        return f"{self.op.value}({keys})"


def _short(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return f"[{len(value)} items]"
    return getattr(value, "id", None) or repr(value)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one instruction. error is None when ok."""
    instruction: SyncInstruction
    ok: bool
    error: Optional[str] = None


class PersistenceGateway:
    """Runs sync instructions against a backend without blocking the caller."""

    def __init__(self, backend: BoardBackend, workers: int = 4):
        self.backend = backend
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks
        self._executor: Optional[ThreadPoolExecutor] = None
        if workers > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="taskboard-sync"
            )
        self._pending: List[Future] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for "sync_completed" or "sync_failed"."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    # ── Dispatch ─────────────────────────────────────────────────────────────

    def dispatch(self, instructions: Iterable[SyncInstruction]) -> None:
        """
        Issue instructions in order and return immediately.

        With a worker pool the calls may land at the backend in any order.
        Without one (workers=0) they run inline, one after another.
        """
        for instruction in instructions:
            if self._executor is None:
                self.execute(instruction)
                continue
            future = self._executor.submit(self.execute, instruction)
            with self._lock:
                self._pending = [f for f in self._pending if not f.done()]
                self._pending.append(future)

    def execute(self, instruction: SyncInstruction) -> SyncResult:
        """Run one instruction. Failures are logged and reported, never raised."""
        method = getattr(self.backend, instruction.op.value)
        try:
            method(**instruction.args)
        except Exception as e:
            logger.error(f"Sync {instruction.describe()} failed: {e}")
            result = SyncResult(instruction, ok=False, error=str(e))
            self._emit("sync_failed", result=result)
            return result
        logger.debug(f"Synced {instruction.describe()}")
        result = SyncResult(instruction, ok=True)
        self._emit("sync_completed", result=result)
        return result

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until every instruction issued so far has finished."""
        with self._lock:
            pending, self._pending = self._pending, []
        if pending:
            wait_futures(pending, timeout=timeout)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ── Snapshot load ────────────────────────────────────────────────────────

    def load_board(self, session: SessionContext) -> Tuple[str, Board]:
        """
        Fetch the user's board, creating the default one first if none exists.

        Runs synchronously; BackendError propagates to the caller.
        """
        fetched = self.backend.fetch_board(session.user_id)
        if fetched is None:
            logger.info(f"No board for user {session.user_id}, creating default board")
            columns = [new_column(title) for title in DEFAULT_COLUMN_TITLES]
            self.backend.create_board(session.user_id, DEFAULT_BOARD_TITLE, columns)
            fetched = self.backend.fetch_board(session.user_id)
        if fetched is None:
            raise BackendError(f"Board for user {session.user_id} missing after creation")
        return fetched


# ── Instruction builders ──────────────────────────────────────────────────────


def reorder_tasks(column_id: str, task_ids: Iterable[str]) -> SyncInstruction:
    return SyncInstruction(SyncOp.REORDER_TASKS, {"column_id": column_id, "task_ids": tuple(task_ids)})


def move_task(task_id: str, column_id: str, position: int) -> SyncInstruction:
    return SyncInstruction(SyncOp.MOVE_TASK, {"task_id": task_id, "column_id": column_id, "position": position})


def reorder_columns(column_ids: Iterable[str]) -> SyncInstruction:
    return SyncInstruction(SyncOp.REORDER_COLUMNS, {"column_ids": tuple(column_ids)})
