"""Tests for generate.py (demo database seeding)."""

from __future__ import annotations

import sys

import pytest

from auth.authorizer import Authorizer
from core.constants import ACTIVITY_TABLE
from db.repository import Repository
from generate import main, seed


def test_seed_creates_users_and_admin(repo: Repository) -> None:
    tokens = seed(repo, 5)
    assert len(tokens) == 5
    assert repo.count("profiles") == 5
    assert repo.count("auth_identities") == 5

    auth = Authorizer(repo)
    admin_id = next(iter(tokens))
    assert auth.has_role(admin_id, "admin")
    assert sum(auth.has_role(uid, "admin") for uid in tokens) == 1
    for user_id, token in tokens.items():
        assert auth.resolve_identity(token) == user_id


def test_seed_sessions_are_valid(repo: Repository) -> None:
    tokens = seed(repo, 10)
    total = repo.count(ACTIVITY_TABLE)
    assert total >= 10
    for user_id in tokens:
        for s in repo.get_activity_sessions_by_user(user_id):
            if not s.is_open:
                assert s.duration_seconds > 0


def test_seed_is_deterministic() -> None:
    a, b = Repository(), Repository()
    seed(a, 4, seed=7)
    seed(b, 4, seed=7)
    assert a.count(ACTIVITY_TABLE) == b.count(ACTIVITY_TABLE)
    assert a.count("opinion_upvotes") == b.count("opinion_upvotes")
    a.close()
    b.close()


def test_seed_requires_a_user(repo: Repository) -> None:
    with pytest.raises(AssertionError):
        seed(repo, 0)


def test_generate_main_with_memory(capsys: pytest.CaptureFixture[str]) -> None:
    """generate.main() with --memory runs without error."""
    original_argv = sys.argv
    try:
        sys.argv = ["generate.py", "--memory", "--users", "3"]
        main()
    finally:
        sys.argv = original_argv

    out = capsys.readouterr().out
    assert "Using in-memory database" in out
    assert "Users:             3" in out
    assert "Authorization: Bearer " in out
