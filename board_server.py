#!/usr/bin/env python3
"""
Task Board Server
-----------------
JSON API over the board manager. Every route is one user intent (create,
edit, drag, import ...) applied optimistically; backend sync runs in the
background and its failures only show up in the log.

Usage:
    python board_server.py --config ~/.config/taskboard/config.yaml
    python board_server.py --db /tmp/board.db --port 3000

Requests:
    X-User-Id   identifies the board owner (required on /api/*)
    X-API-Key   must match api_secret on write routes

API:
    GET    /api/board[?q=]                → { board, boardId }
    POST   /api/board/reload              → { board }
    PUT    /api/settings                  → { settings }
    POST   /api/columns                   → { column }
    PUT    /api/columns/<id>              → { column }   body: { title?, width? }
    DELETE /api/columns/<id>              → { deleted }
    POST   /api/columns/move              → { columnOrder } body: { sourceIndex, destinationIndex }
    POST   /api/columns/<id>/tasks        → { task }
    POST   /api/columns/<id>/import       → { tasks }    body: { text, useAi }
    PUT    /api/tasks/<id>                → { task }
    DELETE /api/tasks/<id>                → { deleted }
    POST   /api/tasks/delete              → { deleted }  body: { taskIds }
    POST   /api/tasks/<id>/enhance        → { task }
    POST   /api/move                      → { board, changed }
"""

import hmac
import logging
import sys
import threading
from functools import wraps
from typing import Dict, Optional

from flask import Flask, current_app, jsonify, request

from taskboard.backends import BackendError, BoardBackend
from taskboard.config import BoardConfig, build_backend, build_generator
from taskboard.gateway import PersistenceGateway
from taskboard.generator import GenerationError, TextGenerator
from taskboard.manager import BoardManager
from taskboard.reorder import DropResult
from taskboard.schema import Priority, check_invariants
from taskboard.session import SessionContext
from taskboard.state import BoardStore, filter_board

logger = logging.getLogger("taskboard.server")

# request field -> (Task field, type check, what the check expects)
EDITABLE_FIELDS = {
    "title": ("title", lambda v: isinstance(v, str) and bool(v.strip()), "a non-empty string"),
    "description": ("description", lambda v: isinstance(v, str), "a string"),
    "priority": ("priority", lambda v: isinstance(v, str), "a string"),
    "tags": ("tags", lambda v: _is_str_list(v), "a list of strings"),
    "storyPoints": ("story_points", lambda v: v is None or _is_int(v), "an integer or null"),
    "acceptanceCriteria": ("acceptance_criteria", lambda v: _is_str_list(v), "a list of strings"),
    "isCompleted": ("is_completed", lambda v: isinstance(v, bool), "true or false"),
    "assignee": ("assignee", lambda v: v is None or isinstance(v, str), "a string or null"),
}


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def task_changes(data: dict):
    """
    Map a PUT /api/tasks body onto Task fields.

    Returns (changes, error); error names the first field with a wrong type.
    Unknown keys are ignored.
    """
    changes = {}
    for key, value in data.items():
        if key not in EDITABLE_FIELDS:
            continue
        field_name, check, expected = EDITABLE_FIELDS[key]
        if not check(value):
            return {}, f"{key} must be {expected}"
        changes[field_name] = value
    if "priority" in changes:
        changes["priority"] = Priority.from_str(changes["priority"])
    return changes, None


class BoardRegistry:
    """One BoardManager per user, loaded on first use, shared by all requests."""

    def __init__(self, cfg: BoardConfig, backend: Optional[BoardBackend] = None,
                 generator: Optional[TextGenerator] = None):
        self.cfg = cfg
        self.backend = backend or build_backend(cfg)
        self.gateway = PersistenceGateway(self.backend, workers=cfg.sync_workers)
        self.generator = generator
        self._managers: Dict[str, BoardManager] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> BoardManager:
        with self._lock:
            manager = self._managers.get(user_id)
            if manager is None:
                manager = BoardManager(
                    BoardStore(), self.gateway, SessionContext(user_id), generator=self.generator
                )
                manager.load()
                self._managers[user_id] = manager
            return manager

    def loaded(self):
        with self._lock:
            return list(self._managers.items())

    def close(self) -> None:
        self.gateway.close()


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config["BOARD"].api_secret
        if not secret:
            return jsonify({"error": "API_SECRET not set"}), 503
        provided = request.headers.get("X-API-Key", "").strip()
        if not hmac.compare_digest(provided, secret):
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


def current_manager() -> BoardManager:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise PermissionError("X-User-Id header is required")
    return current_app.config["REGISTRY"].get(user_id)


def body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


# ── App factory ──────────────────────────────────────────────────────────────


def create_app(config: Optional[BoardConfig] = None, backend: Optional[BoardBackend] = None,
               generator: Optional[TextGenerator] = None) -> Flask:
    cfg = config or BoardConfig.load()
    if generator is None:
        generator = build_generator(cfg)

    app = Flask(__name__)
    app.config["BOARD"] = cfg
    app.config["REGISTRY"] = BoardRegistry(cfg, backend=backend, generator=generator)

    @app.errorhandler(PermissionError)
    def _missing_user(e):
        return jsonify({"error": str(e)}), 401

    @app.errorhandler(BackendError)
    def _backend_down(e):
        logger.error(f"Backend error: {e}")
        return jsonify({"error": "Board backend unavailable"}), 503

    @app.errorhandler(GenerationError)
    def _generation_failed(e):
        return jsonify({"error": f"AI generation failed: {e}"}), 502

    # ── Board ────────────────────────────────────────────────────────────────

    @app.route("/api/board")
    def api_board():
        manager = current_manager()
        board = filter_board(manager.board, request.args.get("q", ""))
        return jsonify({"boardId": manager.session.board_id, "board": board.to_dict()})

    @app.route("/api/board/reload", methods=["POST"])
    @require_api_key
    def api_reload():
        manager = current_manager()
        board = manager.reload()
        return jsonify({"boardId": manager.session.board_id, "board": board.to_dict()})

    @app.route("/api/settings", methods=["PUT"])
    @require_api_key
    def api_settings():
        data = body()
        is_condensed = data.pop("isCondensed", None)
        settings = current_manager().update_settings(is_condensed=is_condensed, **data)
        return jsonify({"settings": settings.to_dict()})

    # ── Columns ──────────────────────────────────────────────────────────────

    @app.route("/api/columns", methods=["POST"])
    @require_api_key
    def api_create_column():
        title = str(body().get("title", "")).strip()
        if not title:
            return jsonify({"error": "title is required"}), 400
        column = current_manager().create_column(title)
        return jsonify({"column": column.to_dict()}), 201

    @app.route("/api/columns/<column_id>", methods=["PUT"])
    @require_api_key
    def api_update_column(column_id):
        manager = current_manager()
        if column_id not in manager.board.columns:
            return jsonify({"error": "Column not found"}), 404
        data = body()
        if data.get("title") is not None:
            manager.rename_column(column_id, str(data["title"]))
        if data.get("width") is not None:
            try:
                manager.resize_column(column_id, float(data["width"]))
            except (TypeError, ValueError):
                return jsonify({"error": "width must be a number"}), 400
        return jsonify({"column": manager.board.columns[column_id].to_dict()})

    @app.route("/api/columns/<column_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_column(column_id):
        if not current_manager().delete_column(column_id):
            return jsonify({"error": "Column not found"}), 404
        return jsonify({"deleted": column_id})

    @app.route("/api/columns/move", methods=["POST"])
    @require_api_key
    def api_move_column():
        data = body()
        try:
            source, destination = int(data["sourceIndex"]), int(data["destinationIndex"])
        except (KeyError, TypeError, ValueError):
            return jsonify({"error": "sourceIndex and destinationIndex are required"}), 400
        outcome = current_manager().move_column(source, destination)
        return jsonify({"columnOrder": list(outcome.board.column_order), "changed": outcome.changed})

    @app.route("/api/columns/<column_id>/tasks", methods=["POST"])
    @require_api_key
    def api_create_task(column_id):
        title = str(body().get("title") or "").strip()
        manager = current_manager()
        task = manager.create_task(column_id, title)
        if task is None:
            return jsonify({"error": "Column not found"}), 404
        return jsonify({"task": task.to_dict()}), 201

    @app.route("/api/columns/<column_id>/import", methods=["POST"])
    @require_api_key
    def api_import(column_id):
        data = body()
        manager = current_manager()
        if column_id not in manager.board.columns:
            return jsonify({"error": "Column not found"}), 404
        tasks = manager.import_tasks(column_id, str(data.get("text", "")), bool(data.get("useAi")))
        return jsonify({"tasks": [t.to_dict() for t in tasks]}), 201 if tasks else 200

    # ── Tasks ────────────────────────────────────────────────────────────────

    @app.route("/api/tasks/<task_id>", methods=["PUT"])
    @require_api_key
    def api_update_task(task_id):
        manager = current_manager()
        if task_id not in manager.board.tasks:
            return jsonify({"error": "Task not found"}), 404
        changes, error = task_changes(body())
        if error:
            return jsonify({"error": error}), 400
        task = manager.edit_task(task_id, **changes)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_task(task_id):
        if not current_manager().delete_task(task_id):
            return jsonify({"error": "Task not found"}), 404
        return jsonify({"deleted": task_id})

    @app.route("/api/tasks/delete", methods=["POST"])
    @require_api_key
    def api_delete_tasks():
        task_ids = body().get("taskIds")
        if not isinstance(task_ids, list):
            return jsonify({"error": "taskIds must be a list"}), 400
        deleted = current_manager().delete_tasks(str(t) for t in task_ids)
        return jsonify({"deleted": deleted})

    @app.route("/api/tasks/<task_id>/enhance", methods=["POST"])
    @require_api_key
    def api_enhance(task_id):
        task = current_manager().enhance_task(task_id)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        return jsonify({"task": task.to_dict()})

    @app.route("/api/move", methods=["POST"])
    @require_api_key
    def api_move():
        data = body()
        source = data.get("source") or {}
        destination = data.get("destination") or {}
        try:
            drop = DropResult(
                task_id=str(data["taskId"]),
                source_column_id=str(source["columnId"]),
                source_index=int(source.get("index", 0)),
                destination_column_id=destination.get("columnId"),
                destination_index=int(destination.get("index", 0)),
            )
        except (KeyError, TypeError, ValueError):
            return jsonify({"error": "taskId and source.columnId are required"}), 400
        outcome = current_manager().move_task(drop)
        return jsonify({"changed": outcome.changed, "board": outcome.board.to_dict()})

    @app.route("/health")
    def health():
        registry = app.config["REGISTRY"]
        problems = {
            user_id: check_invariants(manager.board)
            for user_id, manager in registry.loaded()
        }
        return jsonify({
            "status": "ok",
            "backend": cfg.backend,
            "ai": registry.generator is not None,
            "boards": len(problems),
            "invariantViolations": {u: p for u, p in problems.items() if p},
        })

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse
    import os

    parser = argparse.ArgumentParser(description="Task Board Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--db", help="Path to board.db (overrides TASKBOARD_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["TASKBOARD_DB"] = args.db

    cfg = BoardConfig.load(args.config)
    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format="%(asctime)s [taskboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    print(f"""
╔═══════════════════════════════════════╗
║  Task Board Server                    ║
╠═══════════════════════════════════════╣
║  URL:     http://{args.host}:{args.port:<17}║
║  Backend: {cfg.backend:<28}║
║  AI:      {"on" if cfg.gemini_api_key else "off":<28}║
╚═══════════════════════════════════════╝
""")

    app = create_app(cfg)
    try:
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
    finally:
        app.config["REGISTRY"].close()
