"""
SQLite database layer for user-lifecycle accounting.

Provides:
  - Schema creation (profiles, identities, auth sessions, roles, activity
    sessions, pending deletions, user-owned content tables).
  - Generic collaborator operations: insert, update, select_one, delete_where.
  - Atomic conditional operations for the lifecycle state machine.
  - Conversion between domain objects and DB rows.

Pre-conditions are enforced on all public methods.
"""

from __future__ import annotations

import re
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from core.constants import ACTIVITY_TABLE, DELETED_ACCOUNTS_LOG_TABLE, PENDING_DELETION_TABLE
from core.models import ActivitySession, PendingDeletion, Profile


# ===================================================================
# Schema DDL
# ===================================================================
_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    id          TEXT PRIMARY KEY,       -- same value as auth_identities.id
    email       TEXT NOT NULL,
    full_name   TEXT,
    user_type   TEXT,
    created_at  TEXT NOT NULL           -- ISO-8601 UTC
);

CREATE TABLE IF NOT EXISTS auth_identities (
    id          TEXT PRIMARY KEY,
    email       TEXT NOT NULL UNIQUE,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS auth_sessions (
    id          TEXT PRIMARY KEY,       -- sha256 of the bearer token
    user_id     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    revoked_at  TEXT                    -- nullable; set by server-side sign-out
);

CREATE TABLE IF NOT EXISTS user_roles (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    role        TEXT NOT NULL,          -- admin | moderator | user
    UNIQUE (user_id, role)
);

CREATE TABLE IF NOT EXISTS user_activity_logs (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    page_name         TEXT NOT NULL,
    session_start     TEXT NOT NULL,
    session_end       TEXT,             -- NULL while open
    duration_seconds  INTEGER           -- NULL while open
);

CREATE TABLE IF NOT EXISTS pending_account_deletions (
    id                       TEXT PRIMARY KEY,
    user_id                  TEXT NOT NULL,
    email                    TEXT NOT NULL,
    full_name                TEXT,
    user_type                TEXT,
    deletion_requested_at    TEXT NOT NULL,
    permanent_deletion_date  TEXT NOT NULL,
    restored_at              TEXT       -- set once, never cleared
);

-- At most one unrestored deletion per user.
CREATE UNIQUE INDEX IF NOT EXISTS idx_pending_deletion_active
    ON pending_account_deletions(user_id) WHERE restored_at IS NULL;

CREATE TABLE IF NOT EXISTS opinions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    body        TEXT NOT NULL DEFAULT '',
    created_at  TEXT
);

CREATE TABLE IF NOT EXISTS opinion_upvotes (
    id          TEXT PRIMARY KEY,
    opinion_id  TEXT NOT NULL REFERENCES opinions(id),
    user_id     TEXT NOT NULL,
    created_at  TEXT
);

CREATE TABLE IF NOT EXISTS notifications (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    title       TEXT NOT NULL DEFAULT '',
    created_at  TEXT
);

CREATE TABLE IF NOT EXISTS user_badges (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    badge       TEXT NOT NULL DEFAULT '',
    created_at  TEXT
);

CREATE TABLE IF NOT EXISTS user_streaks (
    id              TEXT PRIMARY KEY,
    user_id         TEXT NOT NULL,
    current_streak  INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS rewards (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    points      INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT
);

CREATE TABLE IF NOT EXISTS referrals (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,    -- referrer
    referred_user_id  TEXT,
    created_at        TEXT
);

CREATE TABLE IF NOT EXISTS deleted_accounts_log (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    email       TEXT,
    user_type   TEXT,
    deleted_at  TEXT
);

CREATE TABLE IF NOT EXISTS account_deletion_attempts (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    attempted_at  TEXT,
    success       INTEGER NOT NULL DEFAULT 0   -- 0/1 boolean
);

CREATE INDEX IF NOT EXISTS idx_activity_user
    ON user_activity_logs(user_id);
CREATE INDEX IF NOT EXISTS idx_activity_page
    ON user_activity_logs(page_name);
CREATE INDEX IF NOT EXISTS idx_auth_sessions_user
    ON auth_sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_upvotes_opinion
    ON opinion_upvotes(opinion_id);
"""

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


# ===================================================================
# Helpers
# ===================================================================
def _dt_to_iso(dt: datetime) -> str:
    """Convert a timezone-aware datetime to an ISO-8601 UTC string.

    Always normalizes to UTC so that stored strings sort correctly
    via lexicographic comparison (used by the conditional restore and
    the deletion window checks).
    """
    utc_dt = dt.astimezone(timezone.utc)
    return utc_dt.isoformat()


def _iso_to_dt(s: str) -> datetime:
    """Parse an ISO-8601 string back to a timezone-aware UTC datetime."""
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt


def _new_id() -> str:
    return uuid.uuid4().hex


def _check_identifier(name: str) -> None:
    assert isinstance(name, str) and _IDENTIFIER_RE.match(name), (
        f"not a plain SQL identifier: {name!r}"
    )


def _to_param(value):
    if isinstance(value, datetime):
        return _dt_to_iso(value)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _where(filters: dict | None) -> tuple[str, list]:
    """Build a WHERE clause from column equality filters. None matches NULL."""
    if not filters:
        return "", []
    clauses: list[str] = []
    params: list = []
    for col, value in filters.items():
        _check_identifier(col)
        if value is None:
            clauses.append(f"{col} IS NULL")
        else:
            clauses.append(f"{col} = ?")
            params.append(_to_param(value))
    return " WHERE " + " AND ".join(clauses), params


# ===================================================================
# Repository
# ===================================================================
class Repository:
    """
    Data-access layer backed by SQLite.

    Pre-conditions:
      - db_path must be a valid path (or ':memory:' for in-memory).
      - Table and column names passed to the generic operations must be
        plain SQL identifiers; values are always bound as parameters.
      - All timestamps must be timezone-aware.
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._create_schema()

    def _create_schema(self) -> None:
        self._conn.executescript(_SCHEMA_SQL)

    @property
    def connection(self) -> sqlite3.Connection:
        """Underlying connection, for read-only analytics queries."""
        return self._conn

    # ------------------------------------------------------------------
    # Generic collaborator operations
    # ------------------------------------------------------------------
    def insert(self, table: str, row: dict) -> str:
        """Insert a row and return its id (generated when not supplied)."""
        _check_identifier(table)
        assert isinstance(row, dict) and row, "row must be a non-empty dict"
        row = dict(row)
        row.setdefault("id", _new_id())
        cols = list(row)
        for c in cols:
            _check_identifier(c)
        placeholders = ", ".join("?" for _ in cols)
        self._conn.execute(
            f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
            [_to_param(row[c]) for c in cols],
        )
        self._conn.commit()
        return row["id"]

    def update(self, table: str, row_id: str, patch: dict) -> bool:
        """Apply patch to the row with the given id. Returns False if absent."""
        _check_identifier(table)
        assert isinstance(row_id, str) and len(row_id) > 0
        assert isinstance(patch, dict) and patch, "patch must be a non-empty dict"
        assert "id" not in patch, "id is immutable"
        for c in patch:
            _check_identifier(c)
        sets = ", ".join(f"{c} = ?" for c in patch)
        cur = self._conn.execute(
            f"UPDATE {table} SET {sets} WHERE id = ?",
            [_to_param(v) for v in patch.values()] + [row_id],
        )
        self._conn.commit()
        return cur.rowcount > 0

    def select_one(self, table: str, filters: dict) -> dict | None:
        """Return the most recently inserted row matching filters, or None."""
        _check_identifier(table)
        where, params = _where(filters)
        row = self._conn.execute(
            f"SELECT * FROM {table}{where} ORDER BY rowid DESC LIMIT 1", params
        ).fetchone()
        return dict(row) if row is not None else None

    def select_all(self, table: str, filters: dict | None = None) -> list[dict]:
        _check_identifier(table)
        where, params = _where(filters)
        rows = self._conn.execute(
            f"SELECT * FROM {table}{where} ORDER BY rowid", params
        ).fetchall()
        return [dict(r) for r in rows]

    def delete_where(self, table: str, filters: dict | None = None) -> int:
        """Delete rows matching filters (all rows when filters is empty).

        Returns the number of rows deleted. sqlite3 errors propagate.
        """
        _check_identifier(table)
        where, params = _where(filters)
        try:
            deleted = self._conn.execute(f"DELETE FROM {table}{where}", params).rowcount
        except sqlite3.Error:
            self._conn.rollback()
            raise
        self._conn.commit()
        return deleted

    def count(self, table: str, filters: dict | None = None) -> int:
        _check_identifier(table)
        where, params = _where(filters)
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()[0]

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def insert_profile(self, profile: Profile, created_at: datetime) -> None:
        """Insert a profile. Pre-condition: profile is a valid Profile."""
        assert isinstance(profile, Profile), f"Expected Profile, got {type(profile)}"
        self.insert("profiles", {
            "id": profile.user_id,
            "email": profile.email,
            "full_name": profile.full_name,
            "user_type": profile.user_type,
            "created_at": created_at,
        })

    def get_profile(self, user_id: str) -> Profile | None:
        """Fetch a profile by user id. Returns None if not found."""
        assert isinstance(user_id, str) and len(user_id) > 0
        row = self._conn.execute(
            "SELECT * FROM profiles WHERE id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return Profile(
            user_id=row["id"],
            email=row["email"],
            full_name=row["full_name"],
            user_type=row["user_type"],
        )

    # ------------------------------------------------------------------
    # Identities, auth sessions, roles
    # ------------------------------------------------------------------
    def insert_identity(self, user_id: str, email: str, created_at: datetime) -> None:
        assert isinstance(user_id, str) and len(user_id) > 0
        assert isinstance(email, str) and len(email) > 0
        self.insert("auth_identities", {"id": user_id, "email": email, "created_at": created_at})

    def get_identity_ids(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT id FROM auth_identities ORDER BY created_at, id"
        ).fetchall()
        return [r["id"] for r in rows]

    def identity_exists(self, user_id: str) -> bool:
        return self._conn.execute(
            "SELECT 1 FROM auth_identities WHERE id = ?", (user_id,)
        ).fetchone() is not None

    def delete_identity(self, user_id: str) -> bool:
        """Remove an identity together with its auth sessions and roles."""
        assert isinstance(user_id, str) and len(user_id) > 0
        self._conn.execute("DELETE FROM auth_sessions WHERE user_id = ?", (user_id,))
        self._conn.execute("DELETE FROM user_roles WHERE user_id = ?", (user_id,))
        deleted = self._conn.execute(
            "DELETE FROM auth_identities WHERE id = ?", (user_id,)
        ).rowcount
        self._conn.commit()
        return deleted > 0

    def insert_auth_session(self, token_hash: str, user_id: str, created_at: datetime) -> None:
        assert isinstance(token_hash, str) and len(token_hash) == 64
        self.insert("auth_sessions", {
            "id": token_hash, "user_id": user_id, "created_at": created_at,
        })

    def get_session_user_id(self, token_hash: str) -> str | None:
        """Return the owner of a live auth session whose identity still exists."""
        row = self._conn.execute(
            """SELECT s.user_id FROM auth_sessions s
               JOIN auth_identities i ON i.id = s.user_id
               WHERE s.id = ? AND s.revoked_at IS NULL""",
            (token_hash,),
        ).fetchone()
        return row["user_id"] if row is not None else None

    def revoke_auth_sessions(self, user_id: str, revoked_at: datetime) -> int:
        """Revoke every live auth session of a user. Returns the number revoked."""
        assert isinstance(user_id, str) and len(user_id) > 0
        revoked = self._conn.execute(
            "UPDATE auth_sessions SET revoked_at = ? WHERE user_id = ? AND revoked_at IS NULL",
            (_dt_to_iso(revoked_at), user_id),
        ).rowcount
        self._conn.commit()
        return revoked

    def grant_role(self, user_id: str, role: str) -> None:
        assert isinstance(user_id, str) and len(user_id) > 0
        self._conn.execute(
            "INSERT OR IGNORE INTO user_roles (id, user_id, role) VALUES (?, ?, ?)",
            (_new_id(), user_id, role),
        )
        self._conn.commit()

    def has_role(self, user_id: str, role: str) -> bool:
        return self._conn.execute(
            "SELECT 1 FROM user_roles WHERE user_id = ? AND role = ?", (user_id, role)
        ).fetchone() is not None

    # ------------------------------------------------------------------
    # Activity sessions
    # ------------------------------------------------------------------
    def insert_activity_session(
        self, user_id: str, page_name: str, session_start: datetime
    ) -> str:
        """Open a session row and return its id."""
        assert isinstance(user_id, str) and len(user_id) > 0
        assert isinstance(page_name, str) and len(page_name) > 0
        assert session_start.tzinfo is not None
        return self.insert(ACTIVITY_TABLE, {
            "user_id": user_id,
            "page_name": page_name,
            "session_start": session_start,
        })

    def close_activity_session(
        self, session_id: str, session_end: datetime, duration_seconds: int
    ) -> bool:
        """
        Write the final duration of a session.

        A repeat close overwrites with an equal or larger duration and is
        otherwise a no-op, so the stored value never moves downward.
        Returns True if the row was written.
        """
        assert isinstance(session_id, str) and len(session_id) > 0
        assert session_end.tzinfo is not None
        assert isinstance(duration_seconds, int) and duration_seconds > 0
        cur = self._conn.execute(
            f"""UPDATE {ACTIVITY_TABLE}
                SET session_end = ?, duration_seconds = ?
                WHERE id = ?
                  AND (duration_seconds IS NULL OR duration_seconds <= ?)""",
            (_dt_to_iso(session_end), duration_seconds, session_id, duration_seconds),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def get_activity_session(self, session_id: str) -> ActivitySession | None:
        assert isinstance(session_id, str) and len(session_id) > 0
        row = self._conn.execute(
            f"SELECT * FROM {ACTIVITY_TABLE} WHERE id = ?", (session_id,)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_activity_session(row)

    def get_activity_sessions_by_user(self, user_id: str) -> list[ActivitySession]:
        """Sessions for a user, oldest first."""
        assert isinstance(user_id, str) and len(user_id) > 0
        rows = self._conn.execute(
            f"SELECT * FROM {ACTIVITY_TABLE} WHERE user_id = ? ORDER BY session_start",
            (user_id,),
        ).fetchall()
        return [self._row_to_activity_session(r) for r in rows]

    @staticmethod
    def _row_to_activity_session(row: sqlite3.Row) -> ActivitySession:
        return ActivitySession(
            session_id=row["id"],
            user_id=row["user_id"],
            page_name=row["page_name"],
            session_start=_iso_to_dt(row["session_start"]),
            session_end=_iso_to_dt(row["session_end"]) if row["session_end"] else None,
            duration_seconds=row["duration_seconds"],
        )

    # ------------------------------------------------------------------
    # Pending deletions
    # ------------------------------------------------------------------
    def schedule_deletion(
        self,
        user_id: str,
        email: str,
        full_name: str | None,
        user_type: str | None,
        requested_at: datetime,
        permanent_deletion_date: datetime,
    ) -> tuple[PendingDeletion, bool]:
        """
        Insert a pending deletion unless the user already has an
        unrestored one. The existence check and the insert are a single
        statement. Returns (record, created).
        """
        assert isinstance(user_id, str) and len(user_id) > 0
        assert requested_at.tzinfo is not None and permanent_deletion_date.tzinfo is not None
        assert permanent_deletion_date > requested_at
        try:
            cur = self._conn.execute(
                f"""INSERT INTO {PENDING_DELETION_TABLE}
                    (id, user_id, email, full_name, user_type,
                     deletion_requested_at, permanent_deletion_date)
                    SELECT ?, ?, ?, ?, ?, ?, ?
                    WHERE NOT EXISTS (
                        SELECT 1 FROM {PENDING_DELETION_TABLE}
                        WHERE user_id = ? AND restored_at IS NULL
                    )""",
                (
                    _new_id(), user_id, email, full_name, user_type,
                    _dt_to_iso(requested_at), _dt_to_iso(permanent_deletion_date),
                    user_id,
                ),
            )
            created = cur.rowcount > 0
            self._conn.commit()
        except sqlite3.IntegrityError:
            # Lost a race against another writer on the partial unique index.
            self._conn.rollback()
            created = False
        record = self.get_active_deletion(user_id)
        assert record is not None, "active deletion must exist after schedule_deletion"
        return record, created

    def restore_deletion(self, user_id: str, now: datetime) -> PendingDeletion | None:
        """
        Mark the user's pending deletion restored, if it is still inside
        its window. Check and mutation are one conditional UPDATE.
        Returns the restored record, or None when nothing qualified.
        """
        assert isinstance(user_id, str) and len(user_id) > 0
        assert now.tzinfo is not None
        now_iso = _dt_to_iso(now)
        cur = self._conn.execute(
            f"""UPDATE {PENDING_DELETION_TABLE}
                SET restored_at = ?
                WHERE user_id = ?
                  AND restored_at IS NULL
                  AND permanent_deletion_date > ?""",
            (now_iso, user_id, now_iso),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            return None
        row = self._conn.execute(
            f"""SELECT * FROM {PENDING_DELETION_TABLE}
                WHERE user_id = ? AND restored_at = ?
                ORDER BY rowid DESC LIMIT 1""",
            (user_id, now_iso),
        ).fetchone()
        return self._row_to_pending_deletion(row)

    def get_active_deletion(self, user_id: str) -> PendingDeletion | None:
        """The user's unrestored deletion record, if any (expired or not)."""
        assert isinstance(user_id, str) and len(user_id) > 0
        row = self._conn.execute(
            f"""SELECT * FROM {PENDING_DELETION_TABLE}
                WHERE user_id = ? AND restored_at IS NULL""",
            (user_id,),
        ).fetchone()
        return self._row_to_pending_deletion(row) if row is not None else None

    def get_deletions_by_user(self, user_id: str) -> list[PendingDeletion]:
        """All deletion records for a user, oldest first."""
        assert isinstance(user_id, str) and len(user_id) > 0
        rows = self._conn.execute(
            f"""SELECT * FROM {PENDING_DELETION_TABLE}
                WHERE user_id = ? ORDER BY deletion_requested_at, rowid""",
            (user_id,),
        ).fetchall()
        return [self._row_to_pending_deletion(r) for r in rows]

    @staticmethod
    def _row_to_pending_deletion(row: sqlite3.Row) -> PendingDeletion:
        return PendingDeletion(
            deletion_id=row["id"],
            user_id=row["user_id"],
            email=row["email"],
            full_name=row["full_name"],
            user_type=row["user_type"],
            requested_at=_iso_to_dt(row["deletion_requested_at"]),
            permanent_deletion_date=_iso_to_dt(row["permanent_deletion_date"]),
            restored_at=_iso_to_dt(row["restored_at"]) if row["restored_at"] else None,
        )

    # ------------------------------------------------------------------
    # Per-user erasure
    # ------------------------------------------------------------------
    def delete_upvotes_on_user_opinions(self, user_id: str) -> int:
        """Delete every upvote (by anyone) on opinions authored by user_id."""
        assert isinstance(user_id, str) and len(user_id) > 0
        deleted = self._conn.execute(
            """DELETE FROM opinion_upvotes
               WHERE opinion_id IN (SELECT id FROM opinions WHERE user_id = ?)""",
            (user_id,),
        ).rowcount
        self._conn.commit()
        return deleted

    def log_deleted_account(
        self, user_id: str, email: str | None, user_type: str | None, deleted_at: datetime
    ) -> str:
        return self.insert(DELETED_ACCOUNTS_LOG_TABLE, {
            "user_id": user_id,
            "email": email,
            "user_type": user_type,
            "deleted_at": deleted_at,
        })

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------
    def close(self) -> None:
        self._conn.close()
