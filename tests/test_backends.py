"""
Tests for persistence backends: SQLite round trips and the REST client
(HTTP mocked).
"""
import sqlite3
from unittest.mock import MagicMock

import pytest
import requests

from taskboard.backends import (
    BackendError, RestBoardBackend,
    _in_filter, assemble_board, iso_to_ms, ms_to_iso,
)
from taskboard.schema import Column, Priority, Task, new_column


def seed(backend, user="alice"):
    columns = [new_column("To Do", column_id="A"), new_column("Done", column_id="B")]
    board_id = backend.create_board(user, "My Board", columns)
    return board_id


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Row helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_timestamp_conversion():
    assert iso_to_ms(ms_to_iso(1700000000123)) == 1700000000123
    assert iso_to_ms("2024-01-01T00:00:00Z") == 1704067200000
    assert iso_to_ms(None) == 0


def test_assemble_board_drops_orphan_tasks():
    board = assemble_board(
        {"id": "b", "settings": '{"isCondensed": true}'},
        [{"id": "A", "title": "To Do", "width": 300}],
        [
            {"id": "T1", "column_id": "A", "title": "One"},
            {"id": "T9", "column_id": "gone", "title": "Orphan"},
        ],
    )
    assert board.columns["A"].task_ids == ("T1",)
    assert board.columns["A"].width == 300
    assert "T9" not in board.tasks
    assert board.settings.is_condensed


def test_in_filter_quotes_values():
    assert _in_filter(["a", "b"]) == 'in.("a","b")'


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SQLite backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_fetch_missing_board(sqlite_backend):
    assert sqlite_backend.fetch_board("nobody") is None


def test_create_and_fetch_board(sqlite_backend):
    board_id = seed(sqlite_backend)
    fetched_id, board = sqlite_backend.fetch_board("alice")
    assert fetched_id == board_id
    assert board.column_order == ("A", "B")
    assert board.columns["A"].title == "To Do"
    assert board.tasks == {}


def test_task_round_trip(sqlite_backend):
    seed(sqlite_backend)
    task = Task(
        id="T1",
        title="Ship",
        description="Release it",
        priority=Priority.CRITICAL,
        tags=("Release", "Ops"),
        story_points=8,
        acceptance_criteria=("Tagged",),
        assignee="sam",
        created_at=1700000000123,
    )
    sqlite_backend.create_task("A", task, 0)
    _, board = sqlite_backend.fetch_board("alice")
    assert board.tasks["T1"] == task


def test_positions_drive_order(sqlite_backend):
    seed(sqlite_backend)
    for i, tid in enumerate(["T1", "T2", "T3"]):
        sqlite_backend.create_task("A", Task(id=tid, title=tid, created_at=1000 + i), i)

    sqlite_backend.reorder_tasks("A", ["T3", "T1"])
    sqlite_backend.reorder_tasks("B", ["T2"])
    sqlite_backend.move_task("T2", "B", 0)

    _, board = sqlite_backend.fetch_board("alice")
    assert board.columns["A"].task_ids == ("T3", "T1")
    assert board.columns["B"].task_ids == ("T2",)


def test_update_and_delete_tasks(sqlite_backend):
    seed(sqlite_backend)
    for tid in ("T1", "T2", "T3"):
        sqlite_backend.create_task("A", Task(id=tid, title=tid, created_at=1), 0)
    sqlite_backend.update_task(Task(id="T1", title="Renamed", is_completed=True, created_at=1))
    sqlite_backend.delete_task("T2")
    sqlite_backend.delete_tasks(["T3"])

    _, board = sqlite_backend.fetch_board("alice")
    assert set(board.tasks) == {"T1"}
    assert board.tasks["T1"].title == "Renamed"
    assert board.tasks["T1"].is_completed


def test_delete_column_cascades(sqlite_backend):
    seed(sqlite_backend)
    sqlite_backend.create_task("A", Task(id="T1", title="x", created_at=1), 0)
    sqlite_backend.delete_column("A")

    _, board = sqlite_backend.fetch_board("alice")
    assert board.column_order == ("B",)
    assert board.tasks == {}


def test_columns_and_settings(sqlite_backend):
    board_id = seed(sqlite_backend)
    sqlite_backend.create_column(board_id, Column(id="C", title="Review"), 2)
    sqlite_backend.update_column("C", title="QA", width=500)
    sqlite_backend.reorder_columns(["C", "A", "B"])
    sqlite_backend.update_board_settings(board_id, {"isCondensed": True})

    _, board = sqlite_backend.fetch_board("alice")
    assert board.column_order == ("C", "A", "B")
    assert board.columns["C"].title == "QA"
    assert board.columns["C"].width == 500
    assert board.settings.is_condensed


def test_task_in_unknown_column_fails(sqlite_backend):
    seed(sqlite_backend)
    with pytest.raises(BackendError, match="Create task"):
        sqlite_backend.create_task("nope", Task(id="T1", title="x"), 0)


def test_sqlite_schema_has_foreign_keys(sqlite_backend):
    conn = sqlite3.connect(sqlite_backend.db_path)
    try:
        fks = conn.execute("PRAGMA foreign_key_list(tasks)").fetchall()
    finally:
        conn.close()
    assert any(row[2] == "columns" for row in fks)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REST backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def reply(payload=None, status=200):
    response = MagicMock()
    response.ok = status < 400
    response.status_code = status
    response.text = "details"
    response.content = b"" if payload is None else b"x"
    response.json.return_value = payload
    return response


def make_rest(*responses):
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return RestBoardBackend("https://db.example.com/", "anon-key", session=session), session


def test_rest_sets_auth_headers():
    backend, session = make_rest()
    assert backend.base_url == "https://db.example.com/rest/v1"
    assert session.headers["apikey"] == "anon-key"
    assert session.headers["Authorization"] == "Bearer anon-key"


def test_rest_fetch_board():
    backend, session = make_rest(
        reply([{"id": "b1", "settings": {"isCondensed": False}}]),
        reply([{"id": "A", "title": "To Do", "width": 320, "position": 0}]),
        reply([{"id": "T1", "column_id": "A", "title": "One", "priority": "Low",
                "created_at": "2024-01-01T00:00:00+00:00"}]),
    )
    board_id, board = backend.fetch_board("alice")
    assert board_id == "b1"
    assert board.columns["A"].task_ids == ("T1",)
    assert board.tasks["T1"].priority is Priority.LOW

    method, url = session.request.call_args_list[2][0]
    params = session.request.call_args_list[2][1]["params"]
    assert (method, url) == ("GET", "https://db.example.com/rest/v1/tasks")
    assert params["column_id"] == 'in.("A")'


def test_rest_fetch_missing_board():
    backend, _ = make_rest(reply([]))
    assert backend.fetch_board("alice") is None


def test_rest_reorder_patches_each_task():
    backend, session = make_rest(reply(), reply())
    backend.reorder_tasks("B", ["T2", "T1"])
    calls = session.request.call_args_list
    assert [c[1]["params"] for c in calls] == [{"id": "eq.T2"}, {"id": "eq.T1"}]
    assert [c[1]["json"] for c in calls] == [
        {"position": 0, "column_id": "B"},
        {"position": 1, "column_id": "B"},
    ]


def test_rest_error_status_raises():
    backend, _ = make_rest(reply(status=409))
    with pytest.raises(BackendError, match="409"):
        backend.delete_task("T1")


def test_rest_network_error_raises():
    backend, session = make_rest()
    session.request.side_effect = requests.Timeout("slow")
    with pytest.raises(BackendError, match="slow"):
        backend.update_column("A", title="x")
