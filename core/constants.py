"""
System-wide constants for user-lifecycle accounting.

Session bounds, deletion grace period, roles, and table names.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Session duration tracking
# ---------------------------------------------------------------------------

# Exclusive upper bound on a persisted duration (24h). Anything at or above
# this is a clock-skew or suspend/resume artifact.
MAX_SESSION_SECONDS = 86_400

# ---------------------------------------------------------------------------
# Account deletion
# ---------------------------------------------------------------------------

DELETION_GRACE_DAYS = 30

VALID_USER_TYPES = frozenset({
    "audience", "creator", "studio", "ott", "tv", "gaming", "music", "developer",
})

VALID_ROLES = frozenset({"admin", "moderator", "user"})

ADMIN_ROLE = "admin"

# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

ACTIVITY_TABLE = "user_activity_logs"
PENDING_DELETION_TABLE = "pending_account_deletions"
DELETED_ACCOUNTS_LOG_TABLE = "deleted_accounts_log"

# Dependents before the rows they reference.
DEFAULT_PURGE_TABLES = (
    "opinion_upvotes",
    "notifications",
    "user_badges",
    "user_streaks",
    "rewards",
    "referrals",
    ACTIVITY_TABLE,
    "opinions",
    DELETED_ACCOUNTS_LOG_TABLE,
    PENDING_DELETION_TABLE,
    "account_deletion_attempts",
)
