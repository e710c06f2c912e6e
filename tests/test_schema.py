"""
Tests for the board data model: priorities, widths, tags, wire format, invariants.
"""
from taskboard.schema import (
    Board, BoardSettings, Column, Priority, Task,
    clamp_width, check_invariants, make_id, new_column, new_task, unique_tags,
    DEFAULT_COLUMN_WIDTH, DEFAULT_TASK_TITLE,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Value helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_priority_from_str():
    """Priorities parse from value or name, unknown falls back to Medium"""
    assert Priority.from_str("High") is Priority.HIGH
    assert Priority.from_str("critical") is Priority.CRITICAL
    assert Priority.from_str(Priority.LOW) is Priority.LOW
    assert Priority.from_str("urgent!!") is Priority.MEDIUM
    assert Priority.from_str(None) is Priority.MEDIUM


def test_priority_ordering():
    assert Priority.LOW < Priority.MEDIUM < Priority.HIGH < Priority.CRITICAL
    assert sorted([Priority.CRITICAL, Priority.LOW, Priority.HIGH]) == [
        Priority.LOW, Priority.HIGH, Priority.CRITICAL
    ]


def test_clamp_width():
    """Widths are clamped into [250, 800]"""
    assert clamp_width(50) == 250
    assert clamp_width(10000) == 800
    assert clamp_width(400) == 400


def test_unique_tags_keeps_first_seen_order():
    assert unique_tags(["Bug", " UX ", "Bug", "", "Frontend"]) == ("Bug", "UX", "Frontend")
    assert unique_tags(None) == ()


def test_make_id_is_unique_and_prefixed():
    ids = {make_id("task") for _ in range(50)}
    assert len(ids) == 50
    assert all(i.startswith("task-") for i in ids)


def test_new_task_defaults():
    task = new_task()
    assert task.title == DEFAULT_TASK_TITLE
    assert task.priority is Priority.MEDIUM
    assert task.tags == ()
    assert task.story_points is None
    assert not task.is_completed


def test_new_column_clamps_width():
    assert new_column("Wide", width=5000).width == 800
    assert new_column("Default").width == DEFAULT_COLUMN_WIDTH


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Wire format
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_task_serialization():
    """Task to_dict uses camelCase keys and survives from_dict"""
    task = Task(
        id="T1",
        title="Ship it",
        description="Release 1.0",
        priority=Priority.HIGH,
        tags=("Release",),
        story_points=3,
        acceptance_criteria=("Tagged", "Announced"),
        created_at=1700000000000,
    )
    data = task.to_dict()
    assert data["priority"] == "High"
    assert data["storyPoints"] == 3
    assert data["acceptanceCriteria"] == ["Tagged", "Announced"]
    assert data["createdAt"] == 1700000000000
    assert Task.from_dict(data) == task


def test_board_settings_keep_unknown_keys():
    settings = BoardSettings.from_dict({"isCondensed": True, "theme": "dark"})
    assert settings.is_condensed
    assert settings.extra == {"theme": "dark"}
    assert settings.to_dict() == {"theme": "dark", "isCondensed": True}


def test_board_serialization(board):
    data = board.to_dict()
    assert data["columnOrder"] == ["A", "B"]
    assert data["columns"]["A"]["taskIds"] == ["T1", "T2"]
    assert Board.from_dict(data) == board


def test_task_matches_title_description_and_tags():
    task = Task(id="T", title="Login page", description="OAuth flow", tags=("Security",))
    assert task.matches("login")
    assert task.matches("oauth")
    assert task.matches("secur")
    assert not task.matches("billing")


def test_column_of(board):
    assert board.column_of("T2").id == "A"
    assert board.column_of("missing") is None
    assert [c.id for c in board.ordered_columns()] == ["A", "B"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Invariants
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_sound_board_has_no_violations(board):
    assert check_invariants(board) == []


def test_task_in_two_columns_is_reported(board):
    columns = dict(board.columns)
    columns["B"] = Column(id="B", title="Done", task_ids=("T1",))
    broken = Board(tasks=board.tasks, columns=columns, column_order=board.column_order)
    problems = check_invariants(broken)
    assert any("T1" in p for p in problems)


def test_duplicate_id_in_column_is_reported():
    broken = Board(
        tasks={"T1": Task(id="T1", title="x")},
        columns={"A": Column(id="A", title="A", task_ids=("T1", "T1"))},
        column_order=("A",),
    )
    assert check_invariants(broken) == ["column A lists a task twice"]


def test_column_order_mismatch_is_reported(board):
    broken = Board(tasks=board.tasks, columns=board.columns, column_order=("A",))
    assert "column order does not match the column set" in check_invariants(broken)


def test_dangling_reference_is_tolerated():
    board = Board(
        columns={"A": Column(id="A", title="A", task_ids=("ghost",))},
        column_order=("A",),
    )
    assert check_invariants(board) == []
