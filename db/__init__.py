"""Persistence layer for user-lifecycle accounting."""

from db.repository import Repository, _dt_to_iso, _iso_to_dt

__all__ = ["Repository", "_dt_to_iso", "_iso_to_dt"]
