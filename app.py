"""
QuestLog - Flask Application
JSON API over the journal store: notes, goals with subtasks, XP and backups.
"""

import json
import logging
from datetime import date

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from config import Config, build_store
from journal import (
    BreakdownInProgressError,
    ExternalServiceError,
    GoalUpdate,
    PersistenceError,
    SubtaskUpdate,
    ValidationError,
)

logger = logging.getLogger("questlog.app")

api = Blueprint("api", __name__)


def create_app(store=None, config=None):
    """Build the Flask app around a journal store (built from config if omitted)."""
    config = config or Config()
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_CONTENT_LENGTH
    app.extensions["questlog_store"] = store if store is not None else build_store(config)
    app.register_blueprint(api)
    register_error_handlers(app)
    return app


def get_store():
    return current_app.extensions["questlog_store"]


# Helper functions


def get_json_body():
    """Request JSON as a dict; anything else counts as an empty body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def mutation_response(name, entity, stats=True, status=200):
    """Standard envelope for write endpoints, with current stats for the XP bar."""
    body = {"success": True, name: entity}
    if isinstance(entity, dict) and "id" in entity:
        body["id"] = entity["id"]
    if stats:
        body["stats"] = get_store().get_stats()
    return jsonify(body), status


# Notes


@api.route("/api/notes")
def api_list_notes():
    """List notes, newest first."""
    return jsonify(get_store().list_notes())


@api.route("/api/notes", methods=["POST"])
def api_create_note():
    """Create a note via API."""
    data = get_json_body()
    note = get_store().create_note(data.get("content"))
    return mutation_response("note", note)


@api.route("/api/notes/<int:note_id>", methods=["DELETE"])
def api_delete_note(note_id):
    """Delete a note."""
    get_store().delete_note(note_id)
    return jsonify({"success": True})


# Goals


@api.route("/api/goals")
def api_list_goals():
    """List goals with their subtasks, newest first."""
    return jsonify(get_store().list_goals())


@api.route("/api/goals", methods=["POST"])
def api_create_goal():
    """Create a new goal via API."""
    data = get_json_body()
    goal = get_store().create_goal(
        data.get("title"), data.get("description"), data.get("color")
    )
    return mutation_response("goal", goal)


@api.route("/api/goals/<int:goal_id>")
def api_get_goal(goal_id):
    """Get a single goal with its subtasks."""
    goal = get_store().get_goal(goal_id)
    if goal is None:
        return jsonify({"error": "Goal not found"}), 404
    return jsonify(goal)


@api.route("/api/goals/<int:goal_id>", methods=["PATCH"])
def api_update_goal(goal_id):
    """Update goal via API (partial update)."""
    update = GoalUpdate.from_json(get_json_body())
    goal = get_store().update_goal(goal_id, update)
    return mutation_response("goal", goal)


@api.route("/api/goals/<int:goal_id>", methods=["DELETE"])
def api_delete_goal(goal_id):
    """Delete a goal and its subtasks."""
    get_store().delete_goal(goal_id)
    return jsonify({"success": True})


@api.route("/api/goals/<int:goal_id>/subtasks", methods=["POST"])
def api_add_subtask(goal_id):
    """Add a subtask to a goal via API."""
    data = get_json_body()
    subtask = get_store().create_subtask(
        goal_id, data.get("title"), data.get("color")
    )
    return mutation_response("subtask", subtask)


@api.route("/api/goals/<int:goal_id>/breakdown", methods=["POST"])
def api_breakdown_goal(goal_id):
    """Ask the AI to split a goal into subtasks."""
    subtasks = get_store().breakdown_goal(goal_id)
    return mutation_response("subtasks", subtasks)


@api.route("/api/goals/<int:goal_id>/breakdown")
def api_breakdown_status(goal_id):
    """State of the latest breakdown for a goal."""
    status = get_store().breakdown_status(goal_id)
    return jsonify(status or {"state": None, "error": None})


# Subtasks


@api.route("/api/subtasks/<int:subtask_id>")
def api_get_subtask(subtask_id):
    """Get a single subtask."""
    subtask = get_store().get_subtask(subtask_id)
    if subtask is None:
        return jsonify({"error": "Subtask not found"}), 404
    return jsonify(subtask)


@api.route("/api/subtasks/<int:subtask_id>", methods=["PATCH"])
def api_update_subtask(subtask_id):
    """Update subtask via API (partial update)."""
    update = SubtaskUpdate.from_json(get_json_body())
    subtask = get_store().update_subtask(subtask_id, update)
    return mutation_response("subtask", subtask)


@api.route("/api/subtasks/<int:subtask_id>", methods=["DELETE"])
def api_delete_subtask(subtask_id):
    """Delete a subtask."""
    get_store().delete_subtask(subtask_id)
    return jsonify({"success": True})


# Stats


@api.route("/api/stats")
def api_stats():
    """Current XP and level."""
    return jsonify(get_store().get_stats())


@api.route("/api/stats/add-xp", methods=["POST"])
def api_add_xp():
    """Credit XP via API."""
    data = get_json_body()
    stats = get_store().add_xp(data.get("amount"))
    return jsonify(stats)


# Export / import


@api.route("/api/export")
def api_export():
    """Export all data as JSON."""
    return jsonify(get_store().export_all())


@api.route("/export/backup")
def export_backup():
    """Export all data as a downloadable backup file."""
    snapshot = get_store().export_all()
    filename = f"questlog-backup-{date.today().isoformat()}.json"
    return Response(
        json.dumps(snapshot, indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@api.route("/api/import", methods=["POST"])
def api_import():
    """Replace all data with a backup (JSON body or uploaded file)."""
    upload = request.files.get("file")
    if upload is not None:
        try:
            data = json.loads(upload.read().decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError("Invalid backup file") from exc
    else:
        data = request.get_json(silent=True)
        if data is None:
            raise ValidationError("Invalid backup file")

    snapshot = get_store().import_all(data)
    return jsonify(
        {
            "success": True,
            "notes": len(snapshot["notes"]),
            "goals": len(snapshot["goals"]),
            "stats": snapshot["stats"],
        }
    )


# Error handlers


def register_error_handlers(app):
    @app.errorhandler(ValidationError)
    def validation_error(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(BreakdownInProgressError)
    def breakdown_busy(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(ExternalServiceError)
    def external_service_error(e):
        return jsonify({"error": str(e)}), 502

    @app.errorhandler(PersistenceError)
    def persistence_error(e):
        logger.error("Storage failure: %s", e)
        return jsonify({"error": "Storage failure", "message": str(e)}), 500

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal Server Error", "message": str(e)}), 500


if __name__ == "__main__":
    config = Config()
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_app(config=config).run(debug=True, host=config.HOST, port=config.PORT)
