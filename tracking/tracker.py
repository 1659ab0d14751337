"""
Session duration tracking for one tracked page instance.

A tracker opens an ActivitySession when the page mounts, accumulates
foreground time across visibility changes, and closes the session with
a bounded duration on unmount or unload. Every persistence call is best
effort: failures are logged and the visit simply goes unmeasured.

Usage:
    tracker = SessionDurationTracker(store, beacon)
    tracker.start_session(user_id, "insights")
    tracker.record_background()      # tab hidden
    tracker.record_foreground()      # tab visible again
    tracker.close_session(CloseReason.UNLOAD)

Collaborators (duck-typed):
    store.create_session(user_id, page_name, started_at) -> session_id
    store.close_session(session_id, ended_at, duration_seconds) -> None
    beacon.send(session_id, payload) -> None   # must not block or raise
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from core.constants import MAX_SESSION_SECONDS
from core.enums import CloseReason

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


@dataclass
class TrackerState:
    """Per-page-instance accounting state. Mutated only by the event handlers."""

    session_id: str | None = None
    last_active_at: datetime | None = None
    foreground: timedelta = timedelta(0)  # banked intervals, excluding the open one
    hidden: bool = False


class SessionDurationTracker:
    def __init__(
        self,
        store,
        beacon=None,
        clock: Callable[[], datetime] = _utcnow,
        max_session_seconds: int = MAX_SESSION_SECONDS,
        hidden: bool = False,
    ) -> None:
        assert max_session_seconds > 0
        self._store = store
        self._beacon = beacon
        self._clock = clock
        self._max_session_seconds = max_session_seconds
        self._started = False
        self.state = TrackerState(hidden=hidden)

    def __enter__(self) -> "SessionDurationTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close_session(CloseReason.UNMOUNT)

    @property
    def session_id(self) -> str | None:
        return self.state.session_id

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------
    def start_session(self, user_id: str | None, page_name: str) -> str | None:
        """
        Open the ActivitySession for this page instance.

        Without a resolved user the call is a no-op and may be repeated
        once the identity is known. After one attempt has been made,
        successful or not, later calls return the existing id (or None):
        a failed open is never retried.
        """
        if not user_id or not page_name:
            log.debug("Tracking deferred: user_id=%r page_name=%r", user_id, page_name)
            return None
        if self._started:
            return self.state.session_id
        self._started = True

        try:
            session_id = self._store.create_session(user_id, page_name, self._clock())
        except Exception:
            log.warning(
                "Could not open activity session for %s on %s; visit left unmeasured",
                user_id, page_name, exc_info=True,
            )
            return None

        self.state.session_id = session_id
        self.state.last_active_at = self._clock()
        log.debug("Opened activity session %s (%s, %s)", session_id, user_id, page_name)
        return session_id

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------
    def record_background(self) -> None:
        """Page went from visible to hidden: bank the foreground interval."""
        if self.state.hidden:
            return
        self.state.hidden = True
        if self.state.last_active_at is None:
            return
        self.state.foreground += self._clock() - self.state.last_active_at

    def record_foreground(self) -> None:
        """Page went from hidden to visible: start a new foreground interval."""
        if not self.state.hidden:
            return
        self.state.hidden = False
        self.state.last_active_at = self._clock()

    def handle_visibility_change(self, hidden: bool) -> None:
        if hidden:
            self.record_background()
        else:
            self.record_foreground()

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------
    def final_duration(self, now: datetime) -> int:
        """Total foreground time in whole seconds, floored once over the sum."""
        total = self.state.foreground
        if not self.state.hidden and self.state.last_active_at is not None:
            total += now - self.state.last_active_at
        return math.floor(total.total_seconds())

    def close_session(self, reason: CloseReason | str = CloseReason.UNMOUNT) -> None:
        """
        Write the final duration. Safe to call more than once: the state is
        left untouched, so a later close writes the same or a slightly
        larger value over the earlier one.
        """
        reason = CloseReason(reason)
        session_id = self.state.session_id
        if session_id is None:
            log.debug("Close (%s) before session open; nothing to close", reason.value)
            return

        now = self._clock()
        duration = self.final_duration(now)
        if not 0 < duration < self._max_session_seconds:
            log.warning(
                "Dropping close of session %s: duration %ss outside (0, %s)",
                session_id, duration, self._max_session_seconds,
            )
            return

        if reason is CloseReason.UNLOAD and self._beacon is not None:
            payload = {"session_end": _iso_utc(now), "duration_seconds": duration}
            try:
                self._beacon.send(session_id, payload)
            except Exception:
                log.warning("Beacon send failed for session %s", session_id, exc_info=True)
            return

        if reason is CloseReason.UNLOAD:
            log.warning("No beacon configured; closing session %s with a normal request", session_id)
        try:
            self._store.close_session(session_id, now, duration)
        except Exception:
            log.warning("Could not close activity session %s", session_id, exc_info=True)
            return
        log.debug("Closed activity session %s after %ss", session_id, duration)
