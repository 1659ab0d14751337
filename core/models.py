"""
Domain entities for user-lifecycle accounting.

Each entity enforces invariants in __post_init__ via assertions.

Entities:
  - Profile: identity snapshot source for soft deletion
  - ActivitySession: one measured visit to a tracked page
  - PendingDeletion: a soft-deleted account inside its grace period
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from core.constants import MAX_SESSION_SECONDS
from core.enums import VALID_USER_TYPES, AccountState

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _assert_aware(name: str, value: datetime) -> None:
    assert isinstance(value, datetime), f"{name} must be a datetime, got {type(value)}"
    assert value.tzinfo is not None, f"{name} must be timezone-aware (UTC)"


# ===================================================================
# Profile
# ===================================================================
@dataclass(frozen=True)
class Profile:
    """
    Public profile row for a user.

    Invariants:
      - user_id is a non-empty string.
      - email matches a basic email pattern.
      - full_name, if provided, is a non-empty string.
      - user_type, if provided, is one of VALID_USER_TYPES.
    """

    user_id: str
    email: str
    full_name: str | None = None
    user_type: str | None = None

    def __post_init__(self) -> None:
        assert isinstance(self.user_id, str) and len(self.user_id) > 0, (
            f"user_id must be a non-empty string, got {self.user_id!r}"
        )
        assert isinstance(self.email, str) and _EMAIL_RE.match(self.email), (
            f"email must match basic email pattern, got {self.email!r}"
        )
        if self.full_name is not None:
            assert isinstance(self.full_name, str) and self.full_name.strip(), (
                f"full_name must be a non-empty string, got {self.full_name!r}"
            )
        if self.user_type is not None:
            assert self.user_type in VALID_USER_TYPES, (
                f"user_type must be one of {VALID_USER_TYPES}, got {self.user_type!r}"
            )


# ===================================================================
# ActivitySession
# ===================================================================
@dataclass(frozen=True)
class ActivitySession:
    """
    One visit to a tracked page by one user in one tab.

    Invariants:
      - session_id, user_id and page_name are non-empty strings.
      - session_start is timezone-aware.
      - session_end and duration_seconds are either both None (open)
        or both set (closed).
      - session_end >= session_start.
      - 0 < duration_seconds < MAX_SESSION_SECONDS.
    """

    session_id: str
    user_id: str
    page_name: str
    session_start: datetime
    session_end: datetime | None = None
    duration_seconds: int | None = None

    def __post_init__(self) -> None:
        for name in ("session_id", "user_id", "page_name"):
            value = getattr(self, name)
            assert isinstance(value, str) and len(value) > 0, (
                f"{name} must be a non-empty string, got {value!r}"
            )
        _assert_aware("session_start", self.session_start)

        assert (self.session_end is None) == (self.duration_seconds is None), (
            "session_end and duration_seconds must be set together"
        )
        if self.session_end is not None:
            _assert_aware("session_end", self.session_end)
            assert self.session_end >= self.session_start, (
                f"session_end ({self.session_end}) must be >= session_start ({self.session_start})"
            )
            assert isinstance(self.duration_seconds, int), (
                f"duration_seconds must be an int, got {type(self.duration_seconds)}"
            )
            assert 0 < self.duration_seconds < MAX_SESSION_SECONDS, (
                f"duration_seconds must be in (0, {MAX_SESSION_SECONDS}), got {self.duration_seconds}"
            )

    @property
    def is_open(self) -> bool:
        return self.session_end is None


# ===================================================================
# PendingDeletion
# ===================================================================
@dataclass(frozen=True)
class PendingDeletion:
    """
    Soft deletion record with a restorable grace period.

    The identity fields are a snapshot taken when the deletion was
    requested; later edits to the profile do not change them.

    Invariants:
      - deletion_id and user_id are non-empty strings.
      - email is a non-empty string ('unknown' when no email was on file).
      - requested_at, permanent_deletion_date and restored_at are
        timezone-aware.
      - permanent_deletion_date > requested_at.
      - restored_at, if set, is >= requested_at.
    """

    deletion_id: str
    user_id: str
    email: str
    requested_at: datetime
    permanent_deletion_date: datetime
    full_name: str | None = None
    user_type: str | None = None
    restored_at: datetime | None = None

    def __post_init__(self) -> None:
        for name in ("deletion_id", "user_id", "email"):
            value = getattr(self, name)
            assert isinstance(value, str) and len(value) > 0, (
                f"{name} must be a non-empty string, got {value!r}"
            )
        _assert_aware("requested_at", self.requested_at)
        _assert_aware("permanent_deletion_date", self.permanent_deletion_date)
        assert self.permanent_deletion_date > self.requested_at, (
            "permanent_deletion_date must be after requested_at"
        )
        if self.restored_at is not None:
            _assert_aware("restored_at", self.restored_at)
            assert self.restored_at >= self.requested_at, (
                "restored_at must be >= requested_at"
            )

    @property
    def is_pending(self) -> bool:
        return self.restored_at is None

    def is_restorable(self, now: datetime) -> bool:
        return self.is_pending and self.permanent_deletion_date > now

    def is_purge_due(self, now: datetime) -> bool:
        """True once the sweep may purge this account."""
        return self.is_pending and self.permanent_deletion_date <= now

    @property
    def state(self) -> AccountState:
        return AccountState.PENDING_DELETION if self.is_pending else AccountState.RESTORED

    def days_remaining(self, now: datetime) -> int:
        """Whole days left in the grace period, rounded up, never negative."""
        left = self.permanent_deletion_date - now
        if left <= timedelta(0):
            return 0
        return math.ceil(left / timedelta(days=1))
