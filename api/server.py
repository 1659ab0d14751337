"""
Flask server for session tracking and account lifecycle.

Every endpoint takes a bearer token in the Authorization header.

Endpoints:
  POST  /api/sessions                    -> Open an activity session
  PATCH /api/sessions/<id>               -> Close it (final duration)
  POST  /api/sessions/<id>/beacon        -> Close it from a page-teardown beacon
  POST  /api/account/soft-delete         -> Schedule the caller's account for deletion
  POST  /api/account/restore             -> Restore it inside the grace period
  GET   /api/account/deletion-status     -> Caller's lifecycle state
  POST  /api/admin/cleanup-all-data      -> Bulk purge of all user-owned tables
  POST  /api/admin/delete-all-auth-users -> Remove every identity but the caller's
  POST  /api/admin/delete-user           -> Erase one user immediately
  GET   /api/admin/page-time?by=         -> Engagement summary
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from flask import Flask, g, jsonify, request

from analytics.engagement import page_time_summary, summary_records
from auth.authorizer import Authorizer, parse_bearer
from config import LIFECYCLE_CONFIG
from core.errors import Forbidden, LifecycleError, NotFoundOrExpired, ValidationError
from core.models import ActivitySession
from db.repository import Repository, _iso_to_dt
from lifecycle.controller import AccountLifecycleController

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DB_PATH = Path(os.environ.get("LIFECYCLE_DB_PATH", _PROJECT_ROOT / "lifecycle.db"))

_MAX_PAGE_NAME_LEN = 200

app = Flask(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@app.after_request
def add_cache_headers(response):
    """Prevent browser caching of API responses."""
    if request.path.startswith('/api/'):
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        response.headers['Pragma'] = 'no-cache'
        response.headers['Expires'] = '0'
    return response


@app.errorhandler(LifecycleError)
def handle_lifecycle_error(e: LifecycleError):
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(sqlite3.Error)
def handle_database_error(e: sqlite3.Error):
    log.exception("Database error on %s %s", request.method, request.path)
    return jsonify({"error": "backend_unavailable", "message": "Please retry"}), 503


def get_repo() -> Repository:
    """Return request-scoped repository instance."""
    if "repo" not in g:
        g.repo = Repository(_DB_PATH)
    return g.repo


@app.teardown_appcontext
def close_repo(exception: BaseException | None) -> None:
    """Close request-scoped repository connection."""
    repo = g.pop("repo", None)
    if repo is not None:
        repo.close()


def get_authorizer() -> Authorizer:
    return Authorizer(get_repo())


def get_controller() -> AccountLifecycleController:
    return AccountLifecycleController(
        get_repo(), get_authorizer(), LIFECYCLE_CONFIG, clock=_now
    )


def _caller_token() -> str | None:
    return parse_bearer(request.headers.get("Authorization"))


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------
def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _beacon_body() -> dict:
    """Beacons arrive as text/plain, so parse the raw body ourselves."""
    raw = request.get_data(as_text=True)
    try:
        data = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        raise ValidationError("Beacon body must be JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("Beacon body must be a JSON object")
    return data


def _parse_close(data: dict, session: ActivitySession) -> tuple[datetime, int]:
    """Validate a close payload against the session it targets."""
    duration = data.get("duration_seconds")
    max_seconds = LIFECYCLE_CONFIG.max_session_seconds
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError("duration_seconds must be an integer")
    if not 0 < duration < max_seconds:
        raise ValidationError(f"duration_seconds must be in (0, {max_seconds})")

    raw_end = data.get("session_end")
    if raw_end is None:
        session_end = _now()
    else:
        try:
            session_end = _iso_to_dt(raw_end)
        except (TypeError, ValueError):
            raise ValidationError("session_end must be an ISO-8601 timestamp") from None
    if session_end < session.session_start:
        log.debug("Clamping session_end of %s to its start", session.session_id)
        session_end = session.session_start
    return session_end, duration


def _owned_session(session_id: str, caller: str) -> ActivitySession:
    session = get_repo().get_activity_session(session_id)
    if session is None:
        raise NotFoundOrExpired("Session not found")
    if session.user_id != caller:
        raise Forbidden("Session belongs to another user")
    return session


# ---------------------------------------------------------------------------
# API: Activity sessions
# ---------------------------------------------------------------------------
@app.route("/api/sessions", methods=["POST"])
def open_session():
    caller = get_authorizer().resolve_identity(_caller_token())
    data = _json_body()
    user_id = data.get("user_id", caller)
    page_name = data.get("page_name")
    if user_id != caller:
        raise Forbidden("Cannot open a session for another user")
    if not isinstance(page_name, str) or not page_name.strip() or len(page_name) > _MAX_PAGE_NAME_LEN:
        raise ValidationError(f"page_name must be 1-{_MAX_PAGE_NAME_LEN} chars")

    session_id = get_repo().insert_activity_session(caller, page_name.strip(), _now())
    return jsonify({"id": session_id}), 201


@app.route("/api/sessions/<session_id>", methods=["PATCH"])
def close_session(session_id: str):
    caller = get_authorizer().resolve_identity(_caller_token())
    session = _owned_session(session_id, caller)
    session_end, duration = _parse_close(_json_body(), session)
    updated = get_repo().close_activity_session(session_id, session_end, duration)
    return jsonify({"id": session_id, "updated": updated})


@app.route("/api/sessions/<session_id>/beacon", methods=["POST"])
def close_session_beacon(session_id: str):
    caller = get_authorizer().resolve_identity(_caller_token())
    session = _owned_session(session_id, caller)
    session_end, duration = _parse_close(_beacon_body(), session)
    get_repo().close_activity_session(session_id, session_end, duration)
    return "", 204


# ---------------------------------------------------------------------------
# API: Account lifecycle
# ---------------------------------------------------------------------------
@app.route("/api/account/soft-delete", methods=["POST"])
def soft_delete_account():
    result = get_controller().request_soft_delete(_caller_token())
    return jsonify(result.to_dict())


@app.route("/api/account/restore", methods=["POST"])
def restore_account():
    result = get_controller().restore_account(_caller_token())
    return jsonify(result.to_dict())


@app.route("/api/account/deletion-status")
def deletion_status():
    return jsonify(get_controller().deletion_status(_caller_token()).to_dict())


# ---------------------------------------------------------------------------
# API: Admin
# ---------------------------------------------------------------------------
@app.route("/api/admin/cleanup-all-data", methods=["POST"])
def cleanup_all_data():
    result = get_controller().admin_bulk_purge(_caller_token())
    return jsonify(result.to_dict())


@app.route("/api/admin/delete-all-auth-users", methods=["POST"])
def delete_all_auth_users():
    result = get_controller().admin_delete_all_identities(_caller_token())
    return jsonify(result.to_dict())


@app.route("/api/admin/delete-user", methods=["POST"])
def delete_user():
    data = _json_body()
    result = get_controller().admin_delete_user(_caller_token(), data.get("userId"))
    return jsonify(result.to_dict())


@app.route("/api/admin/page-time")
def page_time():
    token = _caller_token()
    authorizer = get_authorizer()
    caller = authorizer.resolve_identity(token)
    if not authorizer.has_role(caller, LIFECYCLE_CONFIG.admin_role):
        raise Forbidden("Admin access required")
    by = request.args.get("by", "page_name")
    if by not in ("page_name", "user_id"):
        raise ValidationError("by must be page_name or user_id")
    summary = page_time_summary(get_repo().connection, by=by)
    return jsonify({"by": by, "rows": summary_records(summary)})


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    print(f"Database: {_DB_PATH}")
    app.run(debug=True, port=5001)
