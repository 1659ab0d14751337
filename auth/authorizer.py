"""
Authorization collaborator: bearer token -> identity, role lookups,
server-side sign-out and identity administration.

Tokens are opaque random strings; only their sha256 digest is stored.
Roles are always read from user_roles, never taken from anything the
client asserts.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timezone

from core.enums import VALID_ROLES, Role
from core.errors import Unauthorized
from db.repository import Repository

log = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def parse_bearer(header: str | None) -> str | None:
    """Extract the token from an 'Authorization: Bearer <token>' header value."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class Authorizer:
    """Resolves callers and roles against the identity tables of a Repository."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def resolve_identity(self, token: str | None) -> str:
        """Return the user id behind a live token. Raises Unauthorized otherwise."""
        if not isinstance(token, str) or not token:
            raise Unauthorized("Missing authorization token")
        user_id = self._repo.get_session_user_id(hash_token(token))
        if user_id is None:
            raise Unauthorized("Invalid or expired token")
        return user_id

    def has_role(self, user_id: str, role: Role | str) -> bool:
        value = role.value if isinstance(role, Role) else role
        assert value in VALID_ROLES, f"unknown role {role!r}"
        return self._repo.has_role(user_id, value)

    def issue_token(self, user_id: str, now: datetime | None = None) -> str:
        """Create a new auth session for an existing identity and return its token."""
        assert self._repo.identity_exists(user_id), f"no identity {user_id!r}"
        token = secrets.token_urlsafe(32)
        self._repo.insert_auth_session(
            hash_token(token), user_id, now or datetime.now(timezone.utc)
        )
        return token

    def sign_out(self, user_id: str, now: datetime | None = None) -> int:
        """Revoke every live session of user_id. Returns the number revoked."""
        revoked = self._repo.revoke_auth_sessions(user_id, now or datetime.now(timezone.utc))
        log.info("Signed out user %s (%d sessions revoked)", user_id, revoked)
        return revoked

    def list_identities(self) -> list[str]:
        return self._repo.get_identity_ids()

    def delete_identity(self, user_id: str) -> bool:
        return self._repo.delete_identity(user_id)
