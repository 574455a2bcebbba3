#!/usr/bin/env python3
"""
Habit Sync Service
HTTP surface for the Todoist completion sync and the habit calendar view.
"""

import logger
logger.setup_logging()

from flask import Flask, jsonify, request
import threading

import config
from data_manager import DataManager
from data_manager_impl.core import PersistenceError
from api_clients.todoist_client import TodoistError
from utils.activity import ValidationError
from utils.date_keys import month_bounds, parse_date_key, today_in
from utils.habit_stats import build_month_grid, can_navigate_to, habit_summary
from utils.todoist_sync import sync_completions

app = Flask(__name__)
log = logger.get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_data_manager = None
_data_manager_lock = threading.Lock()


def get_data_manager() -> DataManager:
    """Lazily opens the shared DataManager. Raises PersistenceError when the DB is not configured."""
    global _data_manager
    with _data_manager_lock:
        if _data_manager is None:
            if not config.HABITS_DB_PATH:
                raise PersistenceError("Server configuration error: HABITS_DB_PATH is not set")
            _data_manager = DataManager(config.HABITS_DB_PATH)
        return _data_manager


@app.after_request
def add_cors_headers(response):
    if request.path.startswith("/api/"):
        for key, value in CORS_HEADERS.items():
            response.headers[key] = value
    return response


@app.route('/health', methods=['GET'])
def health():
    """Health check endpoint"""
    return jsonify({"status": "ok", "service": "habit_sync", "dev_db_fallback": config.USING_DEV_DB_FALLBACK})


@app.route('/api/todoist/sync-completions', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'])
def sync_todoist_completions():
    """Sync the current month's (or the requested window's) Todoist completions for a user."""
    if request.method == 'OPTIONS':
        return "", 200
    if request.method != 'POST':
        return jsonify({"error": "Method not allowed"}), 405

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "Missing userId or todoistToken"}), 400
    user_id = body.get("userId")
    token = body.get("todoistToken") or body.get("externalToken")
    if not user_id or not token:
        return jsonify({"error": "Missing userId or todoistToken"}), 400

    try:
        data_manager = get_data_manager()
    except PersistenceError as e:
        log.error(f"Sync requested but persistence is unavailable: {e}")
        return jsonify({"error": str(e)}), 500

    try:
        result = sync_completions(
            data_manager,
            token,
            str(user_id),
            tz_name=body.get("timezone"),
            since=body.get("since"),
            until=body.get("until"),
            raise_upstream=True,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except TodoistError as e:
        log.error(f"Todoist sync failed for user {user_id}: {e}")
        return jsonify({"error": f"Todoist request failed: {e}"}), 500
    except PersistenceError as e:
        log.error(f"Storing Todoist completions failed for user {user_id}: {e}")
        return jsonify({"error": f"Failed to store completions: {e}"}), 500

    return jsonify(result.to_dict()), 200


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.")


@app.route('/api/habits/<int:habit_id>/calendar', methods=['GET'])
def habit_calendar(habit_id):
    """Month grid, stats and reactions for one habit."""
    tz_name = request.args.get("timezone") or config.DEFAULT_TIMEZONE
    try:
        data_manager = get_data_manager()
        habit = data_manager.get_habit(habit_id)
        if habit is None:
            return jsonify({"error": "Habit not found"}), 404

        today_arg = request.args.get("today")
        today = parse_date_key(today_arg) if today_arg else today_in(tz_name)
        year = _int_arg("year", today.year)
        month = _int_arg("month", today.month)
        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12.")

        creation = habit.creation_date(tz_name)
        if not can_navigate_to(year, month, creation):
            return jsonify({"error": "Month is before the habit was created"}), 400

        completion_dates = set()
        user_id = request.args.get("userId")
        task_ids = [t.strip() for t in (request.args.get("taskIds") or "").split(",") if t.strip()]
        if user_id and task_ids:
            first, last = month_bounds(year, month)
            for dates in data_manager.query_completions(user_id, task_ids, first, last).values():
                completion_dates.update(dates)

        grid = build_month_grid(year, month, creation, today, habit.activity, completion_dates)
        return jsonify({
            "habit": {"id": habit.id, "name": habit.name, "frequency": habit.frequency, "ownerId": habit.owner_id},
            "grid": grid.to_dict(),
            "summary": habit_summary(habit, today, tz_name),
            "reactions": data_manager.list_reactions(habit.id),
        })
    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except PersistenceError as e:
        log.error(f"Error loading calendar for habit {habit_id}: {e}")
        return jsonify({"error": str(e)}), 500


if __name__ == '__main__':
    log.info("Starting Habit Sync Service on http://0.0.0.0:8787")
    app.run(host='0.0.0.0', port=8787, debug=False)
