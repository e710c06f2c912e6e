"""
Board data model: tasks, columns, board settings, and the board itself.

All entities are immutable values. Updates go through dataclasses.replace()
or the pure helpers in state.py, so a published Board is never mutated.

Wire format (to_dict/from_dict) uses camelCase keys:
  taskIds, columnOrder, storyPoints, acceptanceCriteria, isCompleted,
  createdAt, isCondensed
"""
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple, Iterable


DEFAULT_COLUMN_WIDTH = 320
MIN_COLUMN_WIDTH = 250
MAX_COLUMN_WIDTH = 800
DEFAULT_TASK_TITLE = "New Issue"

# Story point estimates the generator is allowed to return
STORY_POINTS = (1, 2, 3, 5, 8, 13)


class Priority(Enum):
    """Task priority, ordered from least to most urgent."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return list(Priority).index(self)

    def __lt__(self, other: "Priority") -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def from_str(cls, value: Optional[str]) -> "Priority":
        if isinstance(value, Priority):
            return value
        for member in cls:
            if isinstance(value, str) and (value == member.value or value.upper() == member.name):
                return member
        return cls.MEDIUM


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def make_id(prefix: str) -> str:
    """Generate a unique ID (ms-precision timestamp + random hex)."""
    return f"{prefix}-{now_ms()}-{uuid.uuid4().hex[:8]}"


def clamp_width(width: float) -> int:
    return int(min(max(MIN_COLUMN_WIDTH, width), MAX_COLUMN_WIDTH))


def unique_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    """Drop blank and repeated tags, keeping first-seen order."""
    seen = []
    for tag in tags or ():
        tag = str(tag).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


@dataclass(frozen=True)
class Task:
    """A unit of work on the board. Owned by exactly one column."""

    id: str
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    tags: Tuple[str, ...] = ()
    story_points: Optional[int] = None
    acceptance_criteria: Tuple[str, ...] = ()
    is_completed: bool = False
    assignee: Optional[str] = None
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority.value,
            "tags": list(self.tags),
            "storyPoints": self.story_points,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "isCompleted": self.is_completed,
            "assignee": self.assignee,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=data["id"],
            title=data.get("title") or DEFAULT_TASK_TITLE,
            description=data.get("description") or "",
            priority=Priority.from_str(data.get("priority")),
            tags=unique_tags(data.get("tags") or ()),
            story_points=data.get("storyPoints"),
            acceptance_criteria=tuple(data.get("acceptanceCriteria") or ()),
            is_completed=bool(data.get("isCompleted", False)),
            assignee=data.get("assignee"),
            created_at=int(data.get("createdAt") or now_ms()),
        )

    def matches(self, query: str) -> bool:
        """Case-insensitive search over title, description and tags."""
        query = query.lower()
        return (
            query in self.title.lower()
            or query in self.description.lower()
            or any(query in tag.lower() for tag in self.tags)
        )


@dataclass(frozen=True)
class Column:
    """A named, ordered bucket of task references."""

    id: str
    title: str
    task_ids: Tuple[str, ...] = ()
    width: int = DEFAULT_COLUMN_WIDTH

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "taskIds": list(self.task_ids),
            "width": self.width,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            task_ids=tuple(data.get("taskIds") or ()),
            width=int(data.get("width") or DEFAULT_COLUMN_WIDTH),
        )


@dataclass(frozen=True)
class BoardSettings:
    """Board-level display settings. Unknown backend keys ride along in extra."""

    is_condensed: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["isCondensed"] = self.is_condensed
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BoardSettings":
        data = dict(data or {})
        is_condensed = bool(data.pop("isCondensed", False))
        return cls(is_condensed=is_condensed, extra=data)


@dataclass(frozen=True)
class Board:
    """Columns, their display order, the task collection, and settings."""

    tasks: Dict[str, Task] = field(default_factory=dict)
    columns: Dict[str, Column] = field(default_factory=dict)
    column_order: Tuple[str, ...] = ()
    settings: BoardSettings = field(default_factory=BoardSettings)

    def ordered_columns(self) -> List[Column]:
        return [self.columns[cid] for cid in self.column_order if cid in self.columns]

    def column_of(self, task_id: str) -> Optional[Column]:
        for column in self.columns.values():
            if task_id in column.task_ids:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasks": {tid: t.to_dict() for tid, t in self.tasks.items()},
            "columns": {cid: c.to_dict() for cid, c in self.columns.items()},
            "columnOrder": list(self.column_order),
            "settings": self.settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        return cls(
            tasks={tid: Task.from_dict(t) for tid, t in (data.get("tasks") or {}).items()},
            columns={cid: Column.from_dict(c) for cid, c in (data.get("columns") or {}).items()},
            column_order=tuple(data.get("columnOrder") or ()),
            settings=BoardSettings.from_dict(data.get("settings")),
        )


def new_task(title: str = DEFAULT_TASK_TITLE, task_id: Optional[str] = None,
             created_at: Optional[int] = None, **fields) -> Task:
    """Build a task with default fields (Medium priority, no tags)."""
    return Task(
        id=task_id or make_id("task"),
        title=title,
        created_at=created_at if created_at is not None else now_ms(),
        **fields,
    )


def new_column(title: str, column_id: Optional[str] = None,
               width: int = DEFAULT_COLUMN_WIDTH) -> Column:
    return Column(id=column_id or make_id("col"), title=title, width=clamp_width(width))


def check_invariants(board: Board) -> List[str]:
    """
    Return a list of human-readable invariant violations (empty when sound).

    Checks: a task id sits in at most one column, no column lists an id twice,
    and the column order is a permutation of the column keys. Dangling task
    references are tolerated (filtered at render time) and not reported.
    """
    problems = []
    owner: Dict[str, str] = {}
    for column in board.columns.values():
        if len(set(column.task_ids)) != len(column.task_ids):
            problems.append(f"column {column.id} lists a task twice")
        for tid in column.task_ids:
            if tid in owner and owner[tid] != column.id:
                problems.append(f"task {tid} is in columns {owner[tid]} and {column.id}")
            owner[tid] = column.id
    if len(set(board.column_order)) != len(board.column_order):
        problems.append("column order contains duplicates")
    if set(board.column_order) != set(board.columns):
        problems.append("column order does not match the column set")
    return problems
