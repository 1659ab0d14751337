"""
Account lifecycle state machine.

States: active (no deletion row) -> pending_deletion -> restored, or
pending_deletion -> purged once permanent_deletion_date has passed (the
sweep that purges is a separate scheduled job). Every public operation
starts by resolving the caller from a bearer token and re-checking its
preconditions, so each is safe to retry.

Privileged operations (bulk purge, identity purge, single-user erasure)
require an explicit admin grant in user_roles.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

from auth.authorizer import Authorizer
from config import LIFECYCLE_CONFIG, LifecycleConfig
from core.constants import DELETED_ACCOUNTS_LOG_TABLE
from core.enums import AccountState
from core.errors import Forbidden, NotFoundOrExpired, TransientBackendError, ValidationError
from db.repository import Repository, _dt_to_iso

log = logging.getLogger(__name__)

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    return _dt_to_iso(dt) if dt is not None else None


# ===================================================================
# Results
# ===================================================================
@dataclass(frozen=True)
class SoftDeleteResult:
    permanent_deletion_date: datetime
    already_pending: bool = False

    def to_dict(self) -> dict:
        message = (
            "Account already scheduled for deletion"
            if self.already_pending
            else "Account scheduled for deletion. You can restore it until the permanent deletion date."
        )
        return {
            "success": True,
            "message": message,
            "permanentDeletionDate": _iso(self.permanent_deletion_date),
        }


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    permanent_deletion_date: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "permanentDeletionDate": _iso(self.permanent_deletion_date),
        }


@dataclass(frozen=True)
class DeletionStatus:
    state: AccountState
    permanent_deletion_date: datetime | None = None
    restorable: bool = False
    days_remaining: int = 0

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "permanentDeletionDate": _iso(self.permanent_deletion_date),
            "restorable": self.restorable,
            "daysRemaining": self.days_remaining,
        }


@dataclass(frozen=True)
class PurgeResult:
    total_deleted: int
    deleted_by: str
    tables: dict[str, int] = field(default_factory=dict)
    failed_tables: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "success": True,
            "totalDeleted": self.total_deleted,
            "deletedBy": self.deleted_by,
            "tables": dict(self.tables),
            "failedTables": list(self.failed_tables),
        }


@dataclass(frozen=True)
class IdentityPurgeResult:
    deleted: int
    skipped: int
    total: int
    deleted_by: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "total": self.total,
            "deletedBy": self.deleted_by,
        }


@dataclass(frozen=True)
class UserDeletionResult:
    user_id: str
    email: str | None
    user_type: str | None
    deleted_by: str
    tables: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "deletedUser": {
                "userId": self.user_id,
                "email": self.email,
                "userType": self.user_type,
            },
            "deletedBy": self.deleted_by,
            "tables": dict(self.tables),
        }


# ===================================================================
# Controller
# ===================================================================
class AccountLifecycleController:
    def __init__(
        self,
        repo: Repository,
        authorizer: Authorizer,
        config: LifecycleConfig = LIFECYCLE_CONFIG,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._auth = authorizer
        self._config = config
        self._clock = clock

    @contextmanager
    def _backend(self, operation: str) -> Iterator[None]:
        """Surface persistence failures as a retryable error."""
        try:
            yield
        except sqlite3.Error as e:
            log.exception("%s failed in the persistence layer", operation)
            raise TransientBackendError(f"{operation} failed, please retry") from e

    def _require_admin(self, token: str | None, operation: str) -> str:
        user_id = self._auth.resolve_identity(token)
        if not self._auth.has_role(user_id, self._config.admin_role):
            log.warning("Non-admin user %s attempted %s", user_id, operation)
            raise Forbidden("Admin access required")
        return user_id

    # ------------------------------------------------------------------
    # Soft delete / restore
    # ------------------------------------------------------------------
    def request_soft_delete(self, token: str | None) -> SoftDeleteResult:
        """Schedule the caller's account for deletion and sign them out everywhere."""
        with self._backend("soft delete"):
            user_id = self._auth.resolve_identity(token)

            existing = self._repo.get_active_deletion(user_id)
            if existing is not None:
                log.info("Account %s already pending deletion", user_id)
                return SoftDeleteResult(existing.permanent_deletion_date, already_pending=True)

            profile = self._repo.get_profile(user_id)
            identity = self._repo.select_one("auth_identities", {"id": user_id})
            email = (
                (profile.email if profile else None)
                or (identity["email"] if identity else None)
                or "unknown"
            )

            now = self._clock()
            record, created = self._repo.schedule_deletion(
                user_id=user_id,
                email=email,
                full_name=profile.full_name if profile else None,
                user_type=profile.user_type if profile else None,
                requested_at=now,
                permanent_deletion_date=now + timedelta(days=self._config.grace_period_days),
            )
            if not created:
                log.info("Account %s already pending deletion (concurrent request)", user_id)
                return SoftDeleteResult(record.permanent_deletion_date, already_pending=True)

            log.info(
                "Account %s scheduled for deletion on %s",
                user_id, _dt_to_iso(record.permanent_deletion_date),
            )
            # Row is committed; a failed sign-out is logged, not surfaced.
            try:
                self._auth.sign_out(user_id, now)
            except sqlite3.Error:
                log.exception("Sign-out of %s after scheduling deletion failed", user_id)
            return SoftDeleteResult(record.permanent_deletion_date)

    def restore_account(self, token: str | None) -> RestoreResult:
        """Cancel the caller's pending deletion while its window is open."""
        with self._backend("restore"):
            user_id = self._auth.resolve_identity(token)
            restored = self._repo.restore_deletion(user_id, self._clock())
        if restored is None:
            log.info("Restore refused for %s: nothing pending or window expired", user_id)
            raise NotFoundOrExpired(
                "No pending deletion to restore, or the restoration window has expired"
            )
        log.info("Account %s restored", user_id)
        return RestoreResult(True, restored.permanent_deletion_date)

    def deletion_status(self, token: str | None) -> DeletionStatus:
        with self._backend("deletion status"):
            user_id = self._auth.resolve_identity(token)
            active = self._repo.get_active_deletion(user_id)
            history = [] if active is not None else self._repo.get_deletions_by_user(user_id)

        now = self._clock()
        if active is not None:
            return DeletionStatus(
                state=AccountState.PENDING_DELETION,
                permanent_deletion_date=active.permanent_deletion_date,
                restorable=active.is_restorable(now),
                days_remaining=active.days_remaining(now),
            )
        if history:
            return DeletionStatus(
                state=AccountState.RESTORED,
                permanent_deletion_date=history[-1].permanent_deletion_date,
            )
        return DeletionStatus(state=AccountState.ACTIVE)

    # ------------------------------------------------------------------
    # Privileged operations
    # ------------------------------------------------------------------
    def admin_bulk_purge(self, token: str | None) -> PurgeResult:
        """
        Delete every row of every configured table, in order.

        A failing table is logged and skipped; it only shows up as a lower
        total and in failed_tables.
        """
        with self._backend("bulk purge"):
            admin_id = self._require_admin(token, "bulk purge")

        log.info("Admin %s starting complete data cleanup", admin_id)
        counts: dict[str, int] = {}
        failed: list[str] = []
        for table in self._config.purge_tables:
            try:
                deleted = self._repo.delete_where(table)
            except sqlite3.Error:
                log.exception("Error deleting from %s", table)
                failed.append(table)
                continue
            counts[table] = deleted
            log.info("Deleted %d rows from %s", deleted, table)

        total = sum(counts.values())
        log.info("Admin %s completed cleanup. Total rows deleted: %d", admin_id, total)
        return PurgeResult(total, admin_id, counts, tuple(failed))

    def admin_delete_all_identities(self, token: str | None) -> IdentityPurgeResult:
        """Remove every identity except the calling admin's own."""
        with self._backend("identity purge"):
            admin_id = self._require_admin(token, "identity purge")
            identities = self._auth.list_identities()

        log.info("Admin %s deleting %d identities", admin_id, len(identities))
        deleted = skipped = 0
        for user_id in identities:
            if user_id == admin_id:
                skipped += 1
                continue
            try:
                if self._auth.delete_identity(user_id):
                    deleted += 1
            except sqlite3.Error:
                log.exception("Failed to delete identity %s", user_id)

        log.info("Admin %s deleted %d identities, skipped %d", admin_id, deleted, skipped)
        return IdentityPurgeResult(deleted, skipped, len(identities), admin_id)

    def admin_delete_user(self, token: str | None, user_id) -> UserDeletionResult:
        """Immediately erase one user's data and identity."""
        with self._backend("user deletion"):
            admin_id = self._require_admin(token, "user deletion")

        if not isinstance(user_id, str) or not _USER_ID_RE.match(user_id):
            raise ValidationError("A valid userId is required")
        if user_id == admin_id:
            raise ValidationError("Cannot delete your own admin account")

        with self._backend("user deletion"):
            profile = self._repo.get_profile(user_id)
            if profile is None and not self._repo.identity_exists(user_id):
                raise NotFoundOrExpired(f"No such user: {user_id}")

            log.info("Admin %s deleting user data for %s", admin_id, user_id)
            counts = {"opinion_upvotes": self._repo.delete_upvotes_on_user_opinions(user_id)}
            for table in self._config.purge_tables:
                if table == DELETED_ACCOUNTS_LOG_TABLE:
                    continue
                try:
                    deleted = self._repo.delete_where(table, {"user_id": user_id})
                except sqlite3.Error:
                    log.exception("Error deleting %s rows from %s", user_id, table)
                    continue
                counts[table] = counts.get(table, 0) + deleted

            counts["profiles"] = self._repo.delete_where("profiles", {"id": user_id})
            self._auth.delete_identity(user_id)
            self._repo.log_deleted_account(
                user_id,
                profile.email if profile else None,
                profile.user_type if profile else None,
                self._clock(),
            )

        log.info("User %s deleted by admin %s", user_id, admin_id)
        return UserDeletionResult(
            user_id=user_id,
            email=profile.email if profile else None,
            user_type=profile.user_type if profile else None,
            deleted_by=admin_id,
            tables=counts,
        )
