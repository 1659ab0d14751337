"""
Tests for the Flask server API endpoints.

Covers:
  - POST/PATCH /api/sessions and the beacon close
  - /api/account/* (soft delete, restore, status)
  - /api/admin/* (bulk purge, identity purge, single-user deletion, page time)
  - Error rendering and the real get_repo/close_repo path
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

pytest.importorskip("flask")
from flask.testing import FlaskClient

from auth.authorizer import Authorizer
from core.models import Profile
from db.repository import Repository, _dt_to_iso

from conftest import ADMIN_ID, ALICE_ID, BOB_ID, FakeClock


# ===================================================================
# Fixtures
# ===================================================================
@pytest.fixture
def client(repo: Repository, clock: FakeClock, monkeypatch) -> FlaskClient:
    """Flask test client with monkeypatched repo and clock."""
    import api.server as server_module

    monkeypatch.setattr(server_module, "get_repo", lambda: repo)
    monkeypatch.setattr(server_module, "_now", clock)

    server_module.app.config["TESTING"] = True
    with server_module.app.test_client() as client:
        with server_module.app.app_context():
            yield client


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _open(client: FlaskClient, token: str, page: str = "insights") -> str:
    resp = client.post("/api/sessions", json={"page_name": page}, headers=_auth(token))
    assert resp.status_code == 201
    return resp.get_json()["id"]


# ===================================================================
# Activity sessions
# ===================================================================
class TestSessions:
    def test_open_session(self, client, repo, tokens, now) -> None:
        resp = client.post(
            "/api/sessions",
            json={"user_id": ALICE_ID, "page_name": "insights"},
            headers=_auth(tokens[ALICE_ID]),
        )
        assert resp.status_code == 201
        s = repo.get_activity_session(resp.get_json()["id"])
        assert s.user_id == ALICE_ID
        assert s.session_start == now
        assert s.is_open

    def test_no_cache_headers(self, client, tokens) -> None:
        resp = client.post("/api/sessions", json={"page_name": "x"}, headers=_auth(tokens[ALICE_ID]))
        assert "no-store" in resp.headers["Cache-Control"]

    def test_open_requires_token(self, client, tokens) -> None:
        resp = client.post("/api/sessions", json={"page_name": "insights"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_open_for_another_user_forbidden(self, client, tokens) -> None:
        resp = client.post(
            "/api/sessions",
            json={"user_id": BOB_ID, "page_name": "insights"},
            headers=_auth(tokens[ALICE_ID]),
        )
        assert resp.status_code == 403

    @pytest.mark.parametrize("body", [{}, {"page_name": ""}, {"page_name": 7}, {"page_name": "p" * 201}, [1, 2]])
    def test_open_bad_payload(self, client, tokens, body) -> None:
        resp = client.post("/api/sessions", json=body, headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "validation_error"

    def test_close_session(self, client, repo, tokens, now) -> None:
        sid = _open(client, tokens[ALICE_ID])
        end = now + timedelta(seconds=50)
        resp = client.patch(
            f"/api/sessions/{sid}",
            json={"session_end": _dt_to_iso(end), "duration_seconds": 50},
            headers=_auth(tokens[ALICE_ID]),
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"id": sid, "updated": True}
        s = repo.get_activity_session(sid)
        assert (s.session_end, s.duration_seconds) == (end, 50)

    def test_close_defaults_end_to_server_time(self, client, repo, tokens, clock) -> None:
        sid = _open(client, tokens[ALICE_ID])
        clock.advance(12)
        client.patch(f"/api/sessions/{sid}", json={"duration_seconds": 12}, headers=_auth(tokens[ALICE_ID]))
        assert repo.get_activity_session(sid).session_end == clock.now

    def test_smaller_repeat_close_is_ignored(self, client, repo, tokens) -> None:
        sid = _open(client, tokens[ALICE_ID])
        headers = _auth(tokens[ALICE_ID])
        client.patch(f"/api/sessions/{sid}", json={"duration_seconds": 30}, headers=headers)
        resp = client.patch(f"/api/sessions/{sid}", json={"duration_seconds": 20}, headers=headers)
        assert resp.get_json()["updated"] is False
        assert repo.get_activity_session(sid).duration_seconds == 30

    @pytest.mark.parametrize(
        "body",
        [
            {"duration_seconds": 0},
            {"duration_seconds": 86_400},
            {"duration_seconds": True},
            {"duration_seconds": "50"},
            {"duration_seconds": 5, "session_end": "yesterday"},
        ],
    )
    def test_close_bad_payload(self, client, repo, tokens, body) -> None:
        sid = _open(client, tokens[ALICE_ID])
        resp = client.patch(f"/api/sessions/{sid}", json=body, headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 400
        assert repo.get_activity_session(sid).is_open

    def test_close_end_before_start_is_clamped(self, client, repo, tokens, now) -> None:
        sid = _open(client, tokens[ALICE_ID])
        body = {"duration_seconds": 5, "session_end": _dt_to_iso(now - timedelta(hours=1))}
        resp = client.patch(f"/api/sessions/{sid}", json=body, headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 200
        s = repo.get_activity_session(sid)
        assert s.session_end == s.session_start == now
        assert s.duration_seconds == 5

    def test_close_other_users_session(self, client, tokens) -> None:
        sid = _open(client, tokens[ALICE_ID])
        resp = client.patch(f"/api/sessions/{sid}", json={"duration_seconds": 5}, headers=_auth(tokens[BOB_ID]))
        assert resp.status_code == 403

    def test_close_unknown_session(self, client, tokens) -> None:
        resp = client.patch("/api/sessions/nope", json={"duration_seconds": 5}, headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 404

    def test_beacon_close(self, client, repo, tokens, now) -> None:
        sid = _open(client, tokens[ALICE_ID])
        body = json.dumps({"session_end": _dt_to_iso(now + timedelta(seconds=42)), "duration_seconds": 42})
        resp = client.post(
            f"/api/sessions/{sid}/beacon",
            data=body,
            headers={**_auth(tokens[ALICE_ID]), "Content-Type": "text/plain;charset=UTF-8"},
        )
        assert resp.status_code == 204
        assert repo.get_activity_session(sid).duration_seconds == 42

    def test_beacon_malformed_body(self, client, tokens) -> None:
        sid = _open(client, tokens[ALICE_ID])
        resp = client.post(
            f"/api/sessions/{sid}/beacon",
            data="{not json",
            headers={**_auth(tokens[ALICE_ID]), "Content-Type": "text/plain"},
        )
        assert resp.status_code == 400


# ===================================================================
# Account lifecycle
# ===================================================================
class TestAccount:
    def test_soft_delete_then_status(self, client, repo, tokens) -> None:
        resp = client.post("/api/account/soft-delete", headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["permanentDeletionDate"] == "2025-03-31T12:00:00+00:00"

        # Signed out: the old token no longer works.
        resp = client.get("/api/account/deletion-status", headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 401

        token = Authorizer(repo).issue_token(ALICE_ID)
        data = client.get("/api/account/deletion-status", headers=_auth(token)).get_json()
        assert data["state"] == "pending_deletion"
        assert data["restorable"] is True
        assert data["daysRemaining"] == 30

    def test_restore(self, client, repo, tokens, clock) -> None:
        client.post("/api/account/soft-delete", headers=_auth(tokens[ALICE_ID]))
        clock.advance(days=3)
        token = Authorizer(repo).issue_token(ALICE_ID)
        resp = client.post("/api/account/restore", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.get_json()["success"] is True
        status = client.get("/api/account/deletion-status", headers=_auth(token)).get_json()
        assert status["state"] == "restored"

    def test_restore_nothing_pending(self, client, tokens) -> None:
        resp = client.post("/api/account/restore", headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found_or_expired"

    def test_status_active(self, client, tokens) -> None:
        data = client.get("/api/account/deletion-status", headers=_auth(tokens[BOB_ID])).get_json()
        assert data == {"state": "active", "permanentDeletionDate": None, "restorable": False, "daysRemaining": 0}


# ===================================================================
# Admin
# ===================================================================
class TestAdmin:
    def test_cleanup_forbidden_for_non_admin(self, client, tokens) -> None:
        resp = client.post("/api/admin/cleanup-all-data", headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "forbidden"

    def test_cleanup(self, client, repo, tokens, now) -> None:
        repo.insert("rewards", {"user_id": ALICE_ID, "points": 3})
        resp = client.post("/api/admin/cleanup-all-data", headers=_auth(tokens[ADMIN_ID]))
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["totalDeleted"] == 1
        assert data["deletedBy"] == ADMIN_ID
        assert data["failedTables"] == []

    def test_delete_all_auth_users(self, client, tokens) -> None:
        resp = client.post("/api/admin/delete-all-auth-users", headers=_auth(tokens[ADMIN_ID]))
        data = resp.get_json()
        assert (data["deleted"], data["skipped"], data["total"]) == (2, 1, 3)

    def test_delete_user(self, client, repo, tokens) -> None:
        resp = client.post(
            "/api/admin/delete-user", json={"userId": BOB_ID}, headers=_auth(tokens[ADMIN_ID])
        )
        assert resp.status_code == 200
        assert resp.get_json()["deletedUser"]["email"] == "bob@example.com"
        assert repo.get_profile(BOB_ID) is None

    def test_delete_user_missing_id(self, client, tokens) -> None:
        resp = client.post("/api/admin/delete-user", json={}, headers=_auth(tokens[ADMIN_ID]))
        assert resp.status_code == 400

    def test_delete_user_unknown(self, client, tokens) -> None:
        resp = client.post("/api/admin/delete-user", json={"userId": "u-9999"}, headers=_auth(tokens[ADMIN_ID]))
        assert resp.status_code == 404

    def test_page_time(self, client, tokens, clock) -> None:
        sid = _open(client, tokens[ALICE_ID], "insights")
        clock.advance(40)
        client.patch(f"/api/sessions/{sid}", json={"duration_seconds": 40}, headers=_auth(tokens[ALICE_ID]))
        _open(client, tokens[BOB_ID], "rewards")

        resp = client.get("/api/admin/page-time", headers=_auth(tokens[ADMIN_ID]))
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["by"] == "page_name"
        assert [r["page_name"] for r in data["rows"]] == ["insights", "rewards"]
        assert data["rows"][0]["total_seconds"] == 40
        assert data["rows"][1]["mean_seconds"] is None

    def test_page_time_by_user(self, client, tokens) -> None:
        _open(client, tokens[ALICE_ID])
        data = client.get("/api/admin/page-time?by=user_id", headers=_auth(tokens[ADMIN_ID])).get_json()
        assert data["rows"][0]["user_id"] == ALICE_ID

    def test_page_time_bad_grouping(self, client, tokens) -> None:
        resp = client.get("/api/admin/page-time?by=email", headers=_auth(tokens[ADMIN_ID]))
        assert resp.status_code == 400

    def test_page_time_forbidden(self, client, tokens) -> None:
        resp = client.get("/api/admin/page-time", headers=_auth(tokens[ALICE_ID]))
        assert resp.status_code == 403


# ===================================================================
# Backend failures and the real repository path
# ===================================================================
def test_database_error_renders_503(client, repo, tokens) -> None:
    token = tokens[ALICE_ID]
    repo.close()
    resp = client.post("/api/sessions", json={"page_name": "insights"}, headers=_auth(token))
    assert resp.status_code == 503
    resp = client.post("/api/account/soft-delete", headers=_auth(token))
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "backend_unavailable"


@pytest.fixture
def client_with_real_repo(tmp_path, now: datetime, monkeypatch):
    """Flask test client using the real get_repo/close_repo path with a temp DB."""
    import api.server as server_module

    db_path = tmp_path / "test.db"
    repo = Repository(db_path)
    repo.insert_identity("u-0001", "test@example.com", now)
    repo.insert_profile(Profile("u-0001", "test@example.com"), now)
    token = Authorizer(repo).issue_token("u-0001", now)
    repo.close()

    monkeypatch.setattr(server_module, "_DB_PATH", db_path)

    server_module.app.config["TESTING"] = True
    with server_module.app.test_client() as client:
        yield client, token


def test_real_get_repo_and_teardown(client_with_real_repo) -> None:
    client, token = client_with_real_repo
    resp = client.post("/api/sessions", json={"page_name": "insights"}, headers=_auth(token))
    assert resp.status_code == 201
    resp = client.get("/api/account/deletion-status", headers=_auth(token))
    assert resp.get_json()["state"] == "active"
