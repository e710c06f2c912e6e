"""Shared test fixtures for taskboard tests."""

import sys
from pathlib import Path
from typing import List

import pytest

# Make board_server importable without installing the package
sys.path.insert(0, str(Path(__file__).parent.parent))

from taskboard.backends import BackendError, BoardBackend, SqliteBoardBackend
from taskboard.gateway import PersistenceGateway
from taskboard.generator import Enhancement, GenerationError, TaskDraft, TextGenerator
from taskboard.manager import BoardManager
from taskboard.schema import Board, Column, Task
from taskboard.session import SessionContext
from taskboard.state import BoardStore


class RecordingBackend(BoardBackend):
    """Backend double that records every call as (method, kwargs)."""

    def __init__(self, board: Board = None, fail: bool = False):
        self.calls: List[tuple] = []
        self.board = board
        self.fail = fail

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if self.fail:
            raise BackendError(f"{name} refused")

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def fetch_board(self, user_id):
        self.calls.append(("fetch_board", {"user_id": user_id}))
        if self.board is None:
            return None
        return f"board-{user_id}", self.board

    def create_board(self, user_id, title, columns):
        self.calls.append(("create_board", {"user_id": user_id, "title": title, "columns": columns}))
        self.board = Board(columns={c.id: c for c in columns}, column_order=tuple(c.id for c in columns))
        return f"board-{user_id}"

    def create_task(self, column_id, task, position):
        self._record("create_task", column_id=column_id, task=task, position=position)

    def update_task(self, task):
        self._record("update_task", task=task)

    def delete_task(self, task_id):
        self._record("delete_task", task_id=task_id)

    def delete_tasks(self, task_ids):
        self._record("delete_tasks", task_ids=task_ids)

    def create_column(self, board_id, column, position):
        self._record("create_column", board_id=board_id, column=column, position=position)

    def update_column(self, column_id, title=None, width=None):
        self._record("update_column", column_id=column_id, title=title, width=width)

    def delete_column(self, column_id):
        self._record("delete_column", column_id=column_id)

    def reorder_tasks(self, column_id, task_ids):
        self._record("reorder_tasks", column_id=column_id, task_ids=task_ids)

    def move_task(self, task_id, column_id, position):
        self._record("move_task", task_id=task_id, column_id=column_id, position=position)

    def reorder_columns(self, column_ids):
        self._record("reorder_columns", column_ids=column_ids)

    def update_board_settings(self, board_id, settings):
        self._record("update_board_settings", board_id=board_id, settings=settings)


class FakeGenerator(TextGenerator):
    """Canned generator replies; set fail=True to simulate an outage."""

    def __init__(self, enhancement: Enhancement = None, drafts: List[TaskDraft] = None,
                 fail: bool = False):
        self.enhancement = enhancement or Enhancement(
            title="Improved title",
            description="As a user I want it improved.",
            acceptance_criteria=("It is improved",),
            tags=("UX", "Frontend"),
            story_points=5,
        )
        self.drafts = drafts or [TaskDraft(title="Draft one"), TaskDraft(title="Draft two")]
        self.fail = fail
        self.prompts: List[str] = []

    def enhance_task(self, title, description=""):
        self.prompts.append(title)
        if self.fail:
            raise GenerationError("generator unavailable")
        return self.enhancement

    def generate_tasks(self, text):
        self.prompts.append(text)
        if self.fail:
            raise GenerationError("generator unavailable")
        return list(self.drafts)


def make_board() -> Board:
    """Two columns: A=[T1, T2], B=[]."""
    tasks = {
        "T1": Task(id="T1", title="First", created_at=1),
        "T2": Task(id="T2", title="Second", created_at=2),
    }
    columns = {
        "A": Column(id="A", title="To Do", task_ids=("T1", "T2")),
        "B": Column(id="B", title="Done"),
    }
    return Board(tasks=tasks, columns=columns, column_order=("A", "B"))


class Counter:
    """Deterministic id factory and clock for manager tests."""

    def __init__(self):
        self.n = 0

    def next_id(self, prefix):
        self.n += 1
        return f"{prefix}-{self.n}"


@pytest.fixture
def board():
    return make_board()


@pytest.fixture
def recording_backend(board):
    return RecordingBackend(board)


@pytest.fixture
def gateway(recording_backend):
    gw = PersistenceGateway(recording_backend, workers=0)
    yield gw
    gw.close()


@pytest.fixture
def manager(gateway):
    counter = Counter()
    mgr = BoardManager(
        BoardStore(),
        gateway,
        SessionContext("alice"),
        generator=FakeGenerator(),
        clock=lambda: 1000,
        id_factory=counter.next_id,
    )
    mgr.load()
    gateway.backend.calls.clear()
    return mgr


@pytest.fixture
def sqlite_backend(tmp_path):
    return SqliteBoardBackend(str(tmp_path / "board.db"))
