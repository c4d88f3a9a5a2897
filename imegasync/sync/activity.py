"""Activity feed and sync status model observed by the user interface."""

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..utils import MAX_ACTIVITIES

logger = logging.getLogger(__name__)


class ActivityKind(str, Enum):
    """Outcome recorded in the activity feed."""

    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    DELETED = "deleted"
    ERROR = "error"


@dataclass
class SyncActivity:
    """A single entry of the activity feed."""

    kind: ActivityKind
    file_name: str
    message: Optional[str] = None
    """User-facing error message (only for ERROR entries)"""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "file_name": self.file_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


class ActivityLog:
    """Bounded, thread-safe activity feed ordered newest first."""

    def __init__(self, max_entries: int = MAX_ACTIVITIES):
        self._entries: deque[SyncActivity] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._listeners: list[Callable[[SyncActivity], None]] = []

    def add(
        self,
        kind: ActivityKind,
        file_name: str,
        message: Optional[str] = None,
    ) -> SyncActivity:
        """Record an activity; the oldest entry is dropped when full.

        Args:
            kind: Kind of activity
            file_name: Affected file (or folder) name
            message: User-facing message for errors

        Returns:
            The recorded activity
        """
        activity = SyncActivity(kind=kind, file_name=file_name, message=message)
        with self._lock:
            self._entries.appendleft(activity)
            listeners = list(self._listeners)
        if kind == ActivityKind.ERROR:
            logger.warning("%s: %s", file_name, message)
        else:
            logger.info("%s %s", kind.value, file_name)
        for listener in listeners:
            listener(activity)
        return activity

    def add_listener(self, listener: Callable[[SyncActivity], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def entries(self) -> list[SyncActivity]:
        """Snapshot of the feed, newest first."""
        with self._lock:
            return list(self._entries)

    def errors(self) -> list[SyncActivity]:
        return [a for a in self.entries() if a.kind == ActivityKind.ERROR]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SyncStatusKind(str, Enum):
    """Coarse state of the sync client."""

    IDLE = "idle"
    SYNCING = "syncing"
    PAUSED = "paused"
    ERROR = "error"
    OFFLINE = "offline"


@dataclass(frozen=True)
class SyncStatus:
    """Current status; ERROR carries a user-facing message."""

    kind: SyncStatusKind
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "SyncStatus":
        return cls(SyncStatusKind.IDLE)

    @classmethod
    def syncing(cls) -> "SyncStatus":
        return cls(SyncStatusKind.SYNCING)

    @classmethod
    def paused(cls) -> "SyncStatus":
        return cls(SyncStatusKind.PAUSED)

    @classmethod
    def error(cls, message: str) -> "SyncStatus":
        return cls(SyncStatusKind.ERROR, message)

    @classmethod
    def offline(cls) -> "SyncStatus":
        return cls(SyncStatusKind.OFFLINE)

    @property
    def description(self) -> str:
        """Text for the status badge."""
        if self.kind == SyncStatusKind.ERROR:
            return f"Error: {self.message}"
        return {
            SyncStatusKind.IDLE: "Up to date",
            SyncStatusKind.SYNCING: "Syncing...",
            SyncStatusKind.PAUSED: "Paused",
            SyncStatusKind.OFFLINE: "Offline",
        }[self.kind]

    def __str__(self) -> str:
        return self.description
