"""
Enumerations for user-lifecycle accounting.
"""

from enum import Enum

from core.constants import ADMIN_ROLE, VALID_ROLES, VALID_USER_TYPES

__all__ = [
    "ADMIN_ROLE",
    "AccountState",
    "CloseReason",
    "Role",
    "VALID_ROLES",
    "VALID_USER_TYPES",
]


class CloseReason(Enum):
    UNMOUNT = "unmount"  # normal request, may fail silently
    UNLOAD = "unload"    # page teardown, goes out through the beacon


class AccountState(Enum):
    ACTIVE = "active"
    PENDING_DELETION = "pending_deletion"
    RESTORED = "restored"
    PURGED = "purged"  # realized by absence of rows; never stored


class Role(Enum):
    ADMIN = "admin"
    MODERATOR = "moderator"
    USER = "user"
