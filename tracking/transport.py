"""
Session stores and the teardown-safe beacon used by SessionDurationTracker.

  - RepositorySessionStore: in-process, straight onto a Repository.
  - HttpSessionStore: requests.Session against the lifecycle HTTP API.
  - ThreadedBeacon: fire-and-forget POST on its own non-daemon thread.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from typing import Callable

import requests

from config import LIFECYCLE_CONFIG
from db.repository import Repository, _dt_to_iso

log = logging.getLogger(__name__)


class RepositorySessionStore:
    """Session store writing directly through a Repository."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def create_session(self, user_id: str, page_name: str, started_at: datetime) -> str:
        return self._repo.insert_activity_session(user_id, page_name, started_at)

    def close_session(self, session_id: str, ended_at: datetime, duration_seconds: int) -> None:
        self._repo.close_activity_session(session_id, ended_at, duration_seconds)


class HttpSessionStore:
    """Session store backed by the HTTP API.

    The server stamps session_start with its own clock, so started_at is
    not sent. Non-2xx responses raise requests.HTTPError.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or LIFECYCLE_CONFIG.tracking["request_timeout_seconds"]
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    def create_session(self, user_id: str, page_name: str, started_at: datetime) -> str:
        response = self.session.post(
            f"{self.base_url}/api/sessions",
            json={"user_id": user_id, "page_name": page_name},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()["id"]

    def close_session(self, session_id: str, ended_at: datetime, duration_seconds: int) -> None:
        response = self.session.patch(
            f"{self.base_url}/api/sessions/{session_id}",
            json={"session_end": _dt_to_iso(ended_at), "duration_seconds": duration_seconds},
            timeout=self.timeout,
        )
        response.raise_for_status()


class ThreadedBeacon:
    """
    Send-and-forget transport for the unload path.

    Each send runs on a fresh non-daemon thread. The interpreter joins
    non-daemon threads before exiting, so a beacon fired during shutdown
    is still attempted; the short timeout bounds how long that can take.
    send() returns immediately and never raises.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float | None = None,
        post: Callable[..., requests.Response] = requests.post,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or LIFECYCLE_CONFIG.tracking["beacon_timeout_seconds"]
        self._token = token
        self._post = post
        self._threads: list[threading.Thread] = []

    def send(self, session_id: str, payload: dict) -> None:
        url = f"{self.base_url}/api/sessions/{session_id}/beacon"
        thread = threading.Thread(
            target=self._deliver, args=(url, payload), name=f"beacon-{session_id}", daemon=False
        )
        try:
            thread.start()
        except RuntimeError as e:
            # interpreter is finalizing
            log.warning("Could not start beacon for %s: %s", url, e)
            return
        self._threads = [t for t in self._threads if t.is_alive()] + [thread]

    def flush(self, timeout: float | None = None) -> None:
        """Wait for in-flight beacons (tests and orderly shutdown)."""
        for t in self._threads:
            t.join(timeout)

    def _deliver(self, url: str, payload: dict) -> None:
        try:
            response = self._post(
                url,
                data=json.dumps(payload),
                headers={
                    "Authorization": f"Bearer {self._token}",
                    # Same content type a browser beacon uses.
                    "Content-Type": "text/plain;charset=UTF-8",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.warning("Beacon to %s failed: %s", url, e)
            return
        if response.status_code >= 400:
            log.warning("Beacon to %s rejected with HTTP %s", url, response.status_code)
