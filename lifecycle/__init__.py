"""Account lifecycle state machine and privileged cleanup operations."""

from lifecycle.controller import (
    AccountLifecycleController,
    DeletionStatus,
    IdentityPurgeResult,
    PurgeResult,
    RestoreResult,
    SoftDeleteResult,
    UserDeletionResult,
)

__all__ = [
    "AccountLifecycleController",
    "DeletionStatus",
    "IdentityPurgeResult",
    "PurgeResult",
    "RestoreResult",
    "SoftDeleteResult",
    "UserDeletionResult",
]
