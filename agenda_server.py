#!/usr/bin/env python3
"""
Agenda Server
-------------
JSON API over the planner: daily lists, routines, deliveries, categories,
calendar markers, settings, workspaces and members.

Runs against the hosted backend when SUPABASE_URL and SUPABASE_ANON_KEY are
set and a user is signed in; otherwise everything lives in the local
storage database.

Usage:
    python agenda_server.py --port 3000
    python agenda_server.py --db /tmp/agenda.db --config agenda.yaml

API:
    GET    /health
    GET    /api/state                   → { tasks, categories, settings, mode, state, error }
    GET    /api/day?date=&q=&view=      → { progress, sections } for one day
    GET    /api/calendar?month=YYYY-MM  → { days } carrying a task marker
    POST   /api/tasks                   → create   { text, isPermanent, date, isDelivery, deliveryDate, categoryId }
    PUT    /api/tasks/<id>              → partial update
    DELETE /api/tasks/<id>
    POST   /api/tasks/<id>/toggle       → { date }
    GET    /api/categories
    POST   /api/categories              → { name, color }
    DELETE /api/categories/<id>
    GET    /api/settings
    PUT    /api/settings                → { darkMode, showCompleted, confirmDelete }
    POST   /api/clear
    GET    /api/workspace
    POST   /api/workspaces              → { name, type }
    POST   /api/workspaces/<id>/switch
    POST   /api/members                 → { name, email }
    DELETE /api/members/<id>
    POST   /api/auth/signup|signin|signout|reset
    POST   /api/migrate

Mutating routes require an X-API-Key header when AGENDA_API_SECRET is set.
"""

import argparse
import hmac
import logging
import sys
from functools import wraps
from typing import Optional

from flask import Flask, jsonify, request

from agenda.auth import AuthService, AuthError
from agenda.config import Config
from agenda.local_store import LocalStorage
from agenda.migrate import migrate_from_local_storage
from agenda.planner import Planner
from agenda.schema import WorkspaceType
from agenda.supabase import BackendError
from agenda.views import (
    PLANNER_VIEW, VIEWS, marked_days, parse_day, progress_for_day,
    split_sections, tasks_for_day, today,
)
from agenda.workspace import (
    WorkspaceManager, WorkspacePermissionError, local_user, user_from_session,
)

logger = logging.getLogger("agenda")


def _json_body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _optional_day(value) -> Optional[str]:
    """Parse a date field that may be blank."""
    if value in (None, ""):
        return None
    return parse_day(value)


def create_app(
    config: Optional[Config] = None,
    planner: Optional[Planner] = None,
    workspaces: Optional[WorkspaceManager] = None,
    auth: Optional[AuthService] = None,
) -> Flask:
    """
    Build the Flask app around one shared planner.

    Every collaborator can be injected; missing ones are wired from config.
    """
    config = config or Config.load()
    if planner is None:
        planner = Planner.from_config(config)
        planner.start()
    if workspaces is None:
        workspaces = WorkspaceManager(LocalStorage(config.db_path))
    if auth is None:
        auth = AuthService(planner.client)

    def _on_auth_change(event, session):
        if event in ("SIGNED_IN", "SIGNED_OUT"):
            workspaces.switch_user(user_from_session(session) if session else local_user())

    auth.on_auth_state_change(_on_auth_change)
    session = auth.get_session()
    if session is not None:
        workspaces.switch_user(user_from_session(session))

    app = Flask(__name__)
    app.config["API_SECRET"] = config.api_secret
    app.extensions["agenda"] = {"planner": planner, "workspaces": workspaces, "auth": auth}

    # ── Auth ─────────────────────────────────────────────────────────────────

    def require_api_key(f):
        """Decorator: when a secret is configured, reject requests without it."""
        @wraps(f)
        def decorated(*args, **kwargs):
            secret = app.config.get("API_SECRET", "")
            if secret:
                provided = request.headers.get("X-API-Key", "").strip()
                if not hmac.compare_digest(provided, secret):
                    code = 401 if not provided else 403
                    return jsonify({"error": "Unauthorized"}), code
            return f(*args, **kwargs)
        return decorated

    def backend_failure(message: str, err: BackendError):
        app.logger.warning(f"{message}: {err.status} {err.message}")
        return jsonify({"error": message}), 502

    @app.errorhandler(AuthError)
    def handle_auth_error(err: AuthError):
        status = err.status if err.status in (400, 401, 422, 429, 503) else 401
        return jsonify({"error": err.message}), status

    @app.errorhandler(WorkspacePermissionError)
    def handle_permission_error(err: WorkspacePermissionError):
        return jsonify({"error": str(err)}), 403

    @app.errorhandler(ValueError)
    def handle_value_error(err: ValueError):
        return jsonify({"error": str(err)}), 400

    # ── Read routes ──────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        return jsonify({
            "status": "ok",
            "mode": planner.mode.value,
            "state": planner.state.value,
            "backendConfigured": config.backend_configured,
        })

    @app.route("/api/state")
    def api_state():
        return jsonify(planner.snapshot())

    @app.route("/api/day")
    def api_day():
        day = parse_day(request.args.get("date") or today())
        query = request.args.get("q", "")
        view = request.args.get("view", PLANNER_VIEW)
        if view not in VIEWS:
            return jsonify({"error": f"view must be one of {', '.join(VIEWS)}"}), 400

        visible = tasks_for_day(planner.tasks, day, query, view)
        progress = progress_for_day(planner.tasks, day, query, view)
        sections = split_sections(visible, day, planner.settings.show_completed)
        return jsonify({
            "date": day,
            "view": view,
            "query": query,
            "count": len(visible),
            "progress": progress.to_dict(),
            "sections": sections.to_dict(day),
        })

    @app.route("/api/calendar")
    def api_calendar():
        month = request.args.get("month") or today()[:7]
        try:
            year, mon = (int(p) for p in month.split("-")[:2])
            days = marked_days(planner.tasks, year, mon)
        except ValueError:
            return jsonify({"error": f"Invalid month: '{month}' (expected YYYY-MM)"}), 400
        return jsonify({"month": f"{year:04d}-{mon:02d}", "days": days})

    # ── Tasks ────────────────────────────────────────────────────────────────

    @app.route("/api/tasks", methods=["POST"])
    @require_api_key
    def api_create_task():
        data = _json_body()
        try:
            task = planner.add_task(
                text=data.get("text", ""),
                is_permanent=data.get("isPermanent", False),
                date=_optional_day(data.get("date")),
                category_id=data.get("categoryId") or None,
                is_delivery=data.get("isDelivery", False),
                delivery_date=_optional_day(data.get("deliveryDate")),
                assigned_to_id=data.get("assignedToId", "") or "",
            )
        except BackendError as e:
            return backend_failure("Erro ao adicionar tarefa", e)
        return jsonify({"task": task.to_dict(), "id": task.id}), 201

    @app.route("/api/tasks/<task_id>", methods=["PUT"])
    @require_api_key
    def api_update_task(task_id):
        data = _json_body()
        for key in ("date", "deliveryDate"):
            if key in data:
                data[key] = _optional_day(data[key])
        try:
            task = planner.update_task(task_id, data)
        except KeyError:
            return jsonify({"error": "Task not found"}), 404
        except BackendError as e:
            return backend_failure("Erro ao atualizar tarefa", e)
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_task(task_id):
        try:
            planner.delete_task(task_id)
        except KeyError:
            return jsonify({"error": "Task not found"}), 404
        except BackendError as e:
            return backend_failure("Erro ao remover tarefa", e)
        return jsonify({"deleted": task_id})

    @app.route("/api/tasks/<task_id>/toggle", methods=["POST"])
    @require_api_key
    def api_toggle_task(task_id):
        data = _json_body()
        day = _optional_day(data.get("date"))
        try:
            task = planner.toggle_task(task_id, day)
        except KeyError:
            return jsonify({"error": "Task not found"}), 404
        except BackendError as e:
            return backend_failure("Erro ao atualizar tarefa", e)
        return jsonify({"task": task.to_dict()})

    # ── Categories ───────────────────────────────────────────────────────────

    @app.route("/api/categories", methods=["GET"])
    def api_categories():
        return jsonify({"categories": [c.to_dict() for c in planner.categories]})

    @app.route("/api/categories", methods=["POST"])
    @require_api_key
    def api_create_category():
        data = _json_body()
        try:
            category = planner.add_category(data.get("name", ""), data.get("color", ""))
        except BackendError as e:
            return backend_failure("Erro ao criar categoria", e)
        return jsonify({"category": category.to_dict()}), 201

    @app.route("/api/categories/<category_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_category(category_id):
        try:
            planner.delete_category(category_id)
        except BackendError as e:
            return backend_failure("Erro ao remover categoria", e)
        return jsonify({"deleted": category_id})

    # ── Settings / bulk ──────────────────────────────────────────────────────

    @app.route("/api/settings", methods=["GET"])
    def api_settings():
        return jsonify({"settings": planner.settings.to_dict()})

    @app.route("/api/settings", methods=["PUT"])
    @require_api_key
    def api_update_settings():
        try:
            settings = planner.update_settings(_json_body())
        except BackendError as e:
            return backend_failure("Erro ao salvar configurações", e)
        return jsonify({"settings": settings.to_dict()})

    @app.route("/api/clear", methods=["POST"])
    @require_api_key
    def api_clear():
        try:
            planner.clear_all()
        except BackendError as e:
            return backend_failure("Erro ao limpar dados", e)
        return jsonify(planner.snapshot())

    # ── Workspaces ───────────────────────────────────────────────────────────

    @app.route("/api/workspace", methods=["GET"])
    def api_workspace():
        return jsonify(workspaces.to_dict())

    @app.route("/api/workspaces", methods=["POST"])
    @require_api_key
    def api_create_workspace():
        data = _json_body()
        workspace = workspaces.create_workspace(
            data.get("name", ""), WorkspaceType.from_str(data.get("type", "personal"))
        )
        return jsonify({"workspace": workspace.to_dict()}), 201

    @app.route("/api/workspaces/<workspace_id>/switch", methods=["POST"])
    @require_api_key
    def api_switch_workspace(workspace_id):
        if not workspaces.switch_workspace(workspace_id):
            return jsonify({"error": "Workspace not found"}), 404
        return jsonify(workspaces.to_dict())

    @app.route("/api/members", methods=["POST"])
    @require_api_key
    def api_add_member():
        data = _json_body()
        member = workspaces.add_member(data.get("name", ""), data.get("email", ""))
        return jsonify({"member": member.to_dict()}), 201

    @app.route("/api/members/<user_id>", methods=["DELETE"])
    @require_api_key
    def api_remove_member(user_id):
        removed = workspaces.remove_member(user_id)
        return jsonify({"removed": removed, "members": [m.to_dict() for m in workspaces.members]})

    # ── Auth ─────────────────────────────────────────────────────────────────

    @app.route("/api/auth/signup", methods=["POST"])
    def api_signup():
        data = _json_body()
        result = auth.sign_up(data.get("email", ""), data.get("password", ""))
        return jsonify(result), 201

    @app.route("/api/auth/signin", methods=["POST"])
    def api_signin():
        data = _json_body()
        session = auth.sign_in(data.get("email", ""), data.get("password", ""))
        return jsonify({"user": session.user, "state": planner.snapshot()["state"]})

    @app.route("/api/auth/signout", methods=["POST"])
    def api_signout():
        auth.sign_out()
        return jsonify({"signedOut": True, "mode": planner.mode.value})

    @app.route("/api/auth/reset", methods=["POST"])
    def api_reset_password():
        data = _json_body()
        auth.reset_password(data.get("email", ""), data.get("redirectTo"))
        return jsonify({"sent": True})

    # ── Migration ────────────────────────────────────────────────────────────

    @app.route("/api/migrate", methods=["POST"])
    @require_api_key
    def api_migrate():
        if planner.remote is None or auth.get_session() is None:
            return jsonify({"error": "Sign in to a configured backend first"}), 409
        result = migrate_from_local_storage(planner.local, planner.remote)
        if result is None:
            return jsonify({"success": False, "error": "Nenhum dado encontrado no armazenamento local"}), 404
        planner.reload()
        return jsonify(result.to_dict())

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Agenda planner server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to the local storage database (overrides AGENDA_DB)")
    parser.add_argument("--config", help="Path to agenda.yaml")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [agenda] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    config = Config.load(args.config)
    if args.db:
        config.db_path = args.db
        config.resolve_paths()

    app = create_app(config)
    planner = app.extensions["agenda"]["planner"]

    print(f"""
╔═══════════════════════════════════════╗
║  Agenda Server                        ║
╠═══════════════════════════════════════╣
║  URL:  http://{args.host}:{args.port:<20}║
║  DB:   {config.db_path:<31}║
║  Mode: {planner.mode.value:<31}║
╚═══════════════════════════════════════╝
""")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
