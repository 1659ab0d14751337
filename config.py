"""Runtime configuration for session tracking and account lifecycle."""

from __future__ import annotations

import re
from copy import deepcopy
from dataclasses import dataclass, field

from core.constants import (
    ADMIN_ROLE,
    DEFAULT_PURGE_TABLES,
    DELETION_GRACE_DAYS,
    MAX_SESSION_SECONDS,
    VALID_ROLES,
)
from core.enums import Role

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _default_config() -> dict:
    return {
        "tracking": {
            "max_session_seconds": MAX_SESSION_SECONDS,
            "request_timeout_seconds": 10.0,
            "beacon_timeout_seconds": 2.0,
        },
        "deletion": {
            "grace_period_days": DELETION_GRACE_DAYS,
            "admin_role": ADMIN_ROLE,
        },
        "purge": {
            "tables": list(DEFAULT_PURGE_TABLES),
        },
    }


@dataclass
class LifecycleConfig:
    """Hierarchical lifecycle config: section -> parameter."""

    tracking: dict = field(default_factory=dict)
    deletion: dict = field(default_factory=dict)
    purge: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        default = _default_config()
        for key in default:
            d = getattr(self, key, None)
            if not d:
                setattr(self, key, deepcopy(default[key]))
            else:
                # Partial sections keep their overrides and inherit the rest.
                setattr(self, key, {**default[key], **d})
        self._validate()

    def __getitem__(self, key: str):
        """Support dict-like access: config['tracking']."""
        return getattr(self, key, None)

    def to_dict(self) -> dict:
        return {
            "tracking": self.tracking,
            "deletion": self.deletion,
            "purge": self.purge,
        }

    @property
    def max_session_seconds(self) -> int:
        return self.tracking["max_session_seconds"]

    @property
    def grace_period_days(self) -> int:
        return self.deletion["grace_period_days"]

    @property
    def admin_role(self) -> Role:
        return Role(self.deletion["admin_role"])

    @property
    def purge_tables(self) -> tuple[str, ...]:
        return tuple(self.purge["tables"])

    def _validate(self) -> None:
        """Raise AssertionError if any invariant is violated."""
        errs: list[str] = []

        for path, val in [
            ("tracking.max_session_seconds", self.tracking.get("max_session_seconds")),
            ("deletion.grace_period_days", self.deletion.get("grace_period_days")),
        ]:
            if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
                errs.append(f"{path}={val!r}: must be a positive int")

        for key in ("request_timeout_seconds", "beacon_timeout_seconds"):
            val = self.tracking.get(key)
            if isinstance(val, bool) or not isinstance(val, (int, float)) or val <= 0:
                errs.append(f"tracking.{key}={val!r}: must be > 0")

        role = self.deletion.get("admin_role")
        if role not in VALID_ROLES:
            errs.append(f"deletion.admin_role={role!r}: must be one of {sorted(VALID_ROLES)}")

        tables = self.purge.get("tables")
        if not isinstance(tables, (list, tuple)):
            errs.append(f"purge.tables={tables!r}: must be a list")
        else:
            for t in tables:
                if not isinstance(t, str) or not _IDENTIFIER_RE.match(t):
                    errs.append(f"purge.tables: {t!r} is not a plain SQL identifier")
            names = [t for t in tables if isinstance(t, str)]
            dupes = sorted({t for t in names if names.count(t) > 1})
            if dupes:
                errs.append(f"purge.tables: duplicated {dupes}")

        if errs:
            raise AssertionError("Config invariants violated:\n  " + "\n  ".join(errs))


LIFECYCLE_CONFIG = LifecycleConfig()
