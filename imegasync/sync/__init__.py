"""Sync engine for imegasync - reconciliation, state, watcher and triggers."""

from .activity import (
    ActivityKind,
    ActivityLog,
    SyncActivity,
    SyncStatus,
    SyncStatusKind,
)
from .comparator import FileComparator, SyncAction, SyncDecision
from .engine import SyncEngine
from .manager import SyncManager
from .operations import SyncOperations
from .scanner import DirectoryScanner, LocalEntry
from .state import (
    LoadOutcome,
    StateLoadResult,
    SyncedFileInfo,
    SyncState,
    SyncStateManager,
)
from .watcher import ChangeWatcher, FileEvent, FileEventKind

__all__ = [
    "SyncEngine",
    "SyncManager",
    "SyncOperations",
    "DirectoryScanner",
    "LocalEntry",
    "FileComparator",
    "SyncAction",
    "SyncDecision",
    "SyncState",
    "SyncStateManager",
    "SyncedFileInfo",
    "StateLoadResult",
    "LoadOutcome",
    "ChangeWatcher",
    "FileEvent",
    "FileEventKind",
    "ActivityKind",
    "ActivityLog",
    "SyncActivity",
    "SyncStatus",
    "SyncStatusKind",
]
