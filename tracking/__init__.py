"""Session duration tracking."""

from tracking.tracker import SessionDurationTracker, TrackerState
from tracking.transport import HttpSessionStore, RepositorySessionStore, ThreadedBeacon

__all__ = [
    "HttpSessionStore",
    "RepositorySessionStore",
    "SessionDurationTracker",
    "ThreadedBeacon",
    "TrackerState",
]
