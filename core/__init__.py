"""Core domain types shared across db, auth, tracking, lifecycle and api."""

from core.constants import (
    ACTIVITY_TABLE,
    DEFAULT_PURGE_TABLES,
    DELETION_GRACE_DAYS,
    MAX_SESSION_SECONDS,
    PENDING_DELETION_TABLE,
    VALID_ROLES,
    VALID_USER_TYPES,
)
from core.enums import AccountState, CloseReason, Role
from core.errors import (
    Forbidden,
    LifecycleError,
    NotFoundOrExpired,
    TransientBackendError,
    Unauthorized,
    ValidationError,
)
from core.models import ActivitySession, PendingDeletion, Profile

__all__ = [
    "ACTIVITY_TABLE",
    "AccountState",
    "ActivitySession",
    "CloseReason",
    "DEFAULT_PURGE_TABLES",
    "DELETION_GRACE_DAYS",
    "Forbidden",
    "LifecycleError",
    "MAX_SESSION_SECONDS",
    "NotFoundOrExpired",
    "PENDING_DELETION_TABLE",
    "PendingDeletion",
    "Profile",
    "Role",
    "TransientBackendError",
    "Unauthorized",
    "VALID_ROLES",
    "VALID_USER_TYPES",
    "ValidationError",
]
