"""
Persistence backends for the board.

A backend is the remote store the gateway syncs to. Two implementations:

  SqliteBoardBackend - local SQLite file (boards / columns / tasks tables)
  RestBoardBackend   - PostgREST-style HTTP API (/rest/v1/<table>)

Both share the same row layout: every column and task row carries a
`position` field, and a column's task order is rebuilt from task positions
on load. Write methods raise BackendError on failure; the gateway decides
what to do with it.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from .schema import Board, BoardSettings, Column, Priority, Task, DEFAULT_COLUMN_WIDTH

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """Raised when the backend rejects or fails a request."""
    pass


# ── Row conversion (shared by both backends) ─────────────────────────────────


def ms_to_iso(ms: int) -> str:
    seconds, millis = divmod(int(ms), 1000)
    stamp = datetime.fromtimestamp(seconds, timezone.utc).replace(microsecond=millis * 1000)
    return stamp.isoformat(timespec="milliseconds")


def iso_to_ms(value: Optional[str]) -> int:
    if not value:
        return 0
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return round(parsed.timestamp() * 1000)


def task_to_row(task: Task) -> Dict[str, Any]:
    """Task fields as stored in the tasks table (without column/position)."""
    return {
        "title": task.title,
        "description": task.description,
        "priority": task.priority.value,
        "tags": list(task.tags),
        "story_points": task.story_points,
        "acceptance_criteria": list(task.acceptance_criteria),
        "is_completed": task.is_completed,
        "assignee": task.assignee,
    }


def task_from_row(row: Dict[str, Any]) -> Task:
    return Task(
        id=row["id"],
        title=row.get("title") or "",
        description=row.get("description") or "",
        priority=Priority.from_str(row.get("priority")),
        tags=tuple(row.get("tags") or ()),
        story_points=row.get("story_points"),
        acceptance_criteria=tuple(row.get("acceptance_criteria") or ()),
        is_completed=bool(row.get("is_completed") or False),
        assignee=row.get("assignee"),
        created_at=iso_to_ms(row.get("created_at")),
    )


def assemble_board(board_row: Dict[str, Any], column_rows: Sequence[Dict[str, Any]],
                   task_rows: Sequence[Dict[str, Any]]) -> Board:
    """
    Build a Board from rows. column_rows and task_rows must already be sorted
    by position; tasks pointing at an unknown column are dropped.
    """
    columns: Dict[str, Column] = {}
    members: Dict[str, List[str]] = {}
    for row in column_rows:
        members[row["id"]] = []
        columns[row["id"]] = Column(
            id=row["id"],
            title=row.get("title") or "",
            width=int(row.get("width") or DEFAULT_COLUMN_WIDTH),
        )
    tasks: Dict[str, Task] = {}
    for row in task_rows:
        if row.get("column_id") not in members:
            continue
        task = task_from_row(row)
        tasks[task.id] = task
        members[row["column_id"]].append(task.id)
    for cid, ids in members.items():
        columns[cid] = Column(
            id=cid, title=columns[cid].title, width=columns[cid].width, task_ids=tuple(ids)
        )
    settings = board_row.get("settings") or {}
    if isinstance(settings, str):
        settings = json.loads(settings)
    return Board(
        tasks=tasks,
        columns=columns,
        column_order=tuple(row["id"] for row in column_rows),
        settings=BoardSettings.from_dict(settings),
    )


class BoardBackend:
    """Interface every persistence backend implements."""

    def fetch_board(self, user_id: str) -> Optional[Tuple[str, Board]]:
        """Return (board_id, Board) for the user's board, or None if none exists."""
        raise NotImplementedError

    def create_board(self, user_id: str, title: str, columns: Sequence[Column]) -> str:
        """Create a board with the given starter columns; return its id."""
        raise NotImplementedError

    def create_task(self, column_id: str, task: Task, position: int) -> None:
        raise NotImplementedError

    def update_task(self, task: Task) -> None:
        raise NotImplementedError

    def delete_task(self, task_id: str) -> None:
        raise NotImplementedError

    def delete_tasks(self, task_ids: Sequence[str]) -> None:
        raise NotImplementedError

    def create_column(self, board_id: str, column: Column, position: int) -> None:
        raise NotImplementedError

    def update_column(self, column_id: str, title: Optional[str] = None,
                      width: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete_column(self, column_id: str) -> None:
        raise NotImplementedError

    def reorder_tasks(self, column_id: str, task_ids: Sequence[str]) -> None:
        """Rewrite position and column membership for every task in the list."""
        raise NotImplementedError

    def move_task(self, task_id: str, column_id: str, position: int) -> None:
        raise NotImplementedError

    def reorder_columns(self, column_ids: Sequence[str]) -> None:
        raise NotImplementedError

    def update_board_settings(self, board_id: str, settings: Dict[str, Any]) -> None:
        raise NotImplementedError


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SQLite backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@contextmanager
def _connect(db_path: str):
    """Open a connection with FK enforcement and WAL mode; commit on success."""
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        yield conn
        conn.commit()
    finally:
        conn.close()


class SqliteBoardBackend(BoardBackend):
    """SQLite-backed board store."""

    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "taskboard" / "board.db")
        self.db_path = str(Path(db_path).expanduser())
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS boards (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    settings TEXT,  -- JSON object
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS columns (
                    id TEXT PRIMARY KEY,
                    board_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    width INTEGER DEFAULT 320,
                    position INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (board_id) REFERENCES boards(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    column_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    priority TEXT DEFAULT 'Medium',
                    tags TEXT,  -- JSON list
                    story_points INTEGER,
                    acceptance_criteria TEXT,  -- JSON list
                    is_completed INTEGER DEFAULT 0,
                    assignee TEXT,
                    position INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (column_id) REFERENCES columns(id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_boards_user ON boards(user_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_columns_board ON columns(board_id, position)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_column ON tasks(column_id, position)")

    @contextmanager
    def _write(self, what: str):
        """Run a write, turning sqlite errors into BackendError."""
        try:
            with _connect(self.db_path) as conn:
                yield conn
        except sqlite3.Error as e:
            raise BackendError(f"{what} failed: {e}") from e

    def fetch_board(self, user_id: str) -> Optional[Tuple[str, Board]]:
        try:
            with _connect(self.db_path) as conn:
                board_row = conn.execute(
                    "SELECT * FROM boards WHERE user_id = ? ORDER BY created_at LIMIT 1",
                    (user_id,)
                ).fetchone()
                if not board_row:
                    return None
                column_rows = [dict(r) for r in conn.execute(
                    "SELECT * FROM columns WHERE board_id = ? ORDER BY position, rowid",
                    (board_row["id"],)
                ).fetchall()]
                task_rows = [self._decode_task(r) for r in conn.execute(
                    """
                    SELECT t.* FROM tasks t JOIN columns c ON t.column_id = c.id
                    WHERE c.board_id = ? ORDER BY t.position, t.created_at
                    """,
                    (board_row["id"],)
                ).fetchall()]
        except sqlite3.Error as e:
            raise BackendError(f"Fetch board for {user_id} failed: {e}") from e
        return board_row["id"], assemble_board(dict(board_row), column_rows, task_rows)

    def create_board(self, user_id: str, title: str, columns: Sequence[Column]) -> str:
        board_id = f"board-{user_id}"
        with self._write("Create board") as conn:
            conn.execute(
                "INSERT INTO boards (id, user_id, title, settings, created_at) VALUES (?, ?, ?, ?, ?)",
                (board_id, user_id, title, json.dumps({}), datetime.now(timezone.utc).isoformat())
            )
            for position, column in enumerate(columns):
                conn.execute(
                    "INSERT INTO columns (id, board_id, title, width, position) VALUES (?, ?, ?, ?, ?)",
                    (column.id, board_id, column.title, column.width, position)
                )
        return board_id

    def create_task(self, column_id: str, task: Task, position: int) -> None:
        row = task_to_row(task)
        with self._write(f"Create task {task.id}") as conn:
            conn.execute(
                """
                INSERT INTO tasks
                (id, column_id, title, description, priority, tags, story_points,
                 acceptance_criteria, is_completed, assignee, position, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id, column_id, row["title"], row["description"], row["priority"],
                    json.dumps(row["tags"]), row["story_points"],
                    json.dumps(row["acceptance_criteria"]), 1 if row["is_completed"] else 0,
                    row["assignee"], position, ms_to_iso(task.created_at),
                )
            )

    def update_task(self, task: Task) -> None:
        row = task_to_row(task)
        with self._write(f"Update task {task.id}") as conn:
            conn.execute(
                """
                UPDATE tasks SET title = ?, description = ?, priority = ?, tags = ?,
                    story_points = ?, acceptance_criteria = ?, is_completed = ?, assignee = ?
                WHERE id = ?
                """,
                (
                    row["title"], row["description"], row["priority"], json.dumps(row["tags"]),
                    row["story_points"], json.dumps(row["acceptance_criteria"]),
                    1 if row["is_completed"] else 0, row["assignee"], task.id,
                )
            )

    def delete_task(self, task_id: str) -> None:
        with self._write(f"Delete task {task_id}") as conn:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

    def delete_tasks(self, task_ids: Sequence[str]) -> None:
        if not task_ids:
            return
        with self._write(f"Delete {len(task_ids)} tasks") as conn:
            conn.executemany("DELETE FROM tasks WHERE id = ?", [(tid,) for tid in task_ids])

    def create_column(self, board_id: str, column: Column, position: int) -> None:
        with self._write(f"Create column {column.id}") as conn:
            conn.execute(
                "INSERT INTO columns (id, board_id, title, width, position) VALUES (?, ?, ?, ?, ?)",
                (column.id, board_id, column.title, column.width, position)
            )

    def update_column(self, column_id: str, title: Optional[str] = None,
                      width: Optional[int] = None) -> None:
        updates = {}
        if title:
            updates["title"] = title
        if width:
            updates["width"] = int(width)
        if not updates:
            return
        assignments = ", ".join(f"{key} = ?" for key in updates)
        with self._write(f"Update column {column_id}") as conn:
            conn.execute(
                f"UPDATE columns SET {assignments} WHERE id = ?",
                (*updates.values(), column_id)
            )

    def delete_column(self, column_id: str) -> None:
        with self._write(f"Delete column {column_id}") as conn:
            conn.execute("DELETE FROM columns WHERE id = ?", (column_id,))

    def reorder_tasks(self, column_id: str, task_ids: Sequence[str]) -> None:
        with self._write(f"Reorder column {column_id}") as conn:
            conn.executemany(
                "UPDATE tasks SET position = ?, column_id = ? WHERE id = ?",
                [(index, column_id, tid) for index, tid in enumerate(task_ids)]
            )

    def move_task(self, task_id: str, column_id: str, position: int) -> None:
        with self._write(f"Move task {task_id}") as conn:
            conn.execute(
                "UPDATE tasks SET column_id = ?, position = ? WHERE id = ?",
                (column_id, position, task_id)
            )

    def reorder_columns(self, column_ids: Sequence[str]) -> None:
        with self._write("Reorder columns") as conn:
            conn.executemany(
                "UPDATE columns SET position = ? WHERE id = ?",
                [(index, cid) for index, cid in enumerate(column_ids)]
            )

    def update_board_settings(self, board_id: str, settings: Dict[str, Any]) -> None:
        with self._write(f"Update settings of {board_id}") as conn:
            conn.execute(
                "UPDATE boards SET settings = ? WHERE id = ?",
                (json.dumps(settings), board_id)
            )

    @staticmethod
    def _decode_task(row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for key in ("tags", "acceptance_criteria"):
            try:
                data[key] = json.loads(data[key]) if data.get(key) else []
            except (json.JSONDecodeError, TypeError):
                data[key] = []
        data["is_completed"] = bool(data.get("is_completed", 0))
        return data


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REST backend (PostgREST conventions)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _in_filter(values: Iterable[str]) -> str:
    quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in values)
    return f"in.({quoted})"


class RestBoardBackend(BoardBackend):
    """
    Board store reached over a PostgREST-style HTTP API.

    Tables are addressed as {url}/rest/v1/{table}; filters use the
    `column=eq.value` / `column=in.(a,b)` syntax. The anon key goes in the
    `apikey` header, the user's access token (or the key) as bearer auth.
    """

    def __init__(self, url: str, api_key: str, access_token: Optional[str] = None,
                 timeout: float = 15, session: Optional[requests.Session] = None):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, table: str, params: Optional[Dict[str, str]] = None,
                 payload: Any = None, returning: bool = False) -> Any:
        headers = {"Prefer": "return=representation"} if returning else {}
        try:
            r = self.session.request(
                method,
                f"{self.base_url}/{table}",
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise BackendError(f"{method} {table} failed: {e}") from e
        if not r.ok:
            raise BackendError(f"{method} {table} returned {r.status_code}: {r.text[:200]}")
        if r.status_code == 204 or not r.content:
            return None
        return r.json()

    def fetch_board(self, user_id: str) -> Optional[Tuple[str, Board]]:
        boards = self._request("GET", "boards", params={
            "select": "*", "user_id": f"eq.{user_id}", "limit": "1",
        }) or []
        if not boards:
            return None
        board_row = boards[0]
        column_rows = self._request("GET", "columns", params={
            "select": "*", "board_id": f"eq.{board_row['id']}", "order": "position",
        }) or []
        task_rows = []
        if column_rows:
            task_rows = self._request("GET", "tasks", params={
                "select": "*",
                "column_id": _in_filter(c["id"] for c in column_rows),
                "order": "position",
            }) or []
        return board_row["id"], assemble_board(board_row, column_rows, task_rows)

    def create_board(self, user_id: str, title: str, columns: Sequence[Column]) -> str:
        created = self._request(
            "POST", "boards", payload=[{"user_id": user_id, "title": title}], returning=True
        )
        if not created:
            raise BackendError("Create board returned no row")
        board_id = created[0]["id"]
        self._request("POST", "columns", payload=[
            {"id": c.id, "board_id": board_id, "title": c.title, "width": c.width, "position": i}
            for i, c in enumerate(columns)
        ])
        return board_id

    def create_task(self, column_id: str, task: Task, position: int) -> None:
        row = task_to_row(task)
        row.update({
            "id": task.id,
            "column_id": column_id,
            "position": position,
            "created_at": ms_to_iso(task.created_at),
        })
        self._request("POST", "tasks", payload=row)

    def update_task(self, task: Task) -> None:
        self._request("PATCH", "tasks", params={"id": f"eq.{task.id}"}, payload=task_to_row(task))

    def delete_task(self, task_id: str) -> None:
        self._request("DELETE", "tasks", params={"id": f"eq.{task_id}"})

    def delete_tasks(self, task_ids: Sequence[str]) -> None:
        if not task_ids:
            return
        self._request("DELETE", "tasks", params={"id": _in_filter(task_ids)})

    def create_column(self, board_id: str, column: Column, position: int) -> None:
        self._request("POST", "columns", payload={
            "id": column.id,
            "board_id": board_id,
            "title": column.title,
            "width": column.width,
            "position": position,
        })

    def update_column(self, column_id: str, title: Optional[str] = None,
                      width: Optional[int] = None) -> None:
        updates = {}
        if title:
            updates["title"] = title
        if width:
            updates["width"] = int(width)
        if updates:
            self._request("PATCH", "columns", params={"id": f"eq.{column_id}"}, payload=updates)

    def delete_column(self, column_id: str) -> None:
        self._request("DELETE", "columns", params={"id": f"eq.{column_id}"})

    def reorder_tasks(self, column_id: str, task_ids: Sequence[str]) -> None:
        # One PATCH per task; the API has no bulk positional update
        for index, tid in enumerate(task_ids):
            self._request("PATCH", "tasks", params={"id": f"eq.{tid}"},
                          payload={"position": index, "column_id": column_id})

    def move_task(self, task_id: str, column_id: str, position: int) -> None:
        self._request("PATCH", "tasks", params={"id": f"eq.{task_id}"},
                      payload={"column_id": column_id, "position": position})

    def reorder_columns(self, column_ids: Sequence[str]) -> None:
        for index, cid in enumerate(column_ids):
            self._request("PATCH", "columns", params={"id": f"eq.{cid}"},
                          payload={"position": index})

    def update_board_settings(self, board_id: str, settings: Dict[str, Any]) -> None:
        self._request("PATCH", "boards", params={"id": f"eq.{board_id}"},
                      payload={"settings": settings})
