"""Shared fixtures for lifecycle tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.authorizer import Authorizer
from core.enums import Role
from core.models import Profile
from db.repository import Repository

ADMIN_ID = "u-0001"
ALICE_ID = "u-0002"
BOB_ID = "u-0003"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now: datetime) -> FakeClock:
    return FakeClock(now)


@pytest.fixture
def repo() -> Repository:
    """In-memory repository for testing."""
    r = Repository(":memory:")
    yield r
    r.close()


@pytest.fixture
def authorizer(repo: Repository) -> Authorizer:
    return Authorizer(repo)


@pytest.fixture
def tokens(repo: Repository, authorizer: Authorizer, now: datetime) -> dict[str, str]:
    """Three users with identities, profiles and live tokens. ADMIN_ID is admin."""
    people = [
        (ADMIN_ID, "admin@example.com", "Ada Admin", "developer"),
        (ALICE_ID, "alice@example.com", "Alice Smith", "creator"),
        (BOB_ID, "bob@example.com", None, None),
    ]
    out: dict[str, str] = {}
    for user_id, email, full_name, user_type in people:
        joined = now - timedelta(days=10)
        repo.insert_identity(user_id, email, joined)
        repo.insert_profile(Profile(user_id, email, full_name, user_type), joined)
        out[user_id] = authorizer.issue_token(user_id, now)
    repo.grant_role(ADMIN_ID, Role.ADMIN.value)
    return out
