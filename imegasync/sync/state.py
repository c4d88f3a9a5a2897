"""State management for tracking sync history.

The sync state records, for every local file that was successfully synced,
the remote record it corresponds to and the fingerprint it had at that
moment. It is the single source of truth for "what was last synced" and is
written to disk after every mutation.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from ..exceptions import StateCorruptionError

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class SyncedFileInfo:
    """Last known state of one file asserted by a successful sync."""

    remote_id: str
    """ID of the remote file record"""

    local_path: str
    """Absolute local path (OS-native separators)"""

    checksum: str
    """Content hash at sync time"""

    last_modified: float
    """Local modification time (Unix timestamp) at sync time"""

    size: int
    """File size in bytes"""

    def to_dict(self) -> dict:
        return {
            "remote_id": self.remote_id,
            "local_path": self.local_path,
            "checksum": self.checksum,
            "last_modified": self.last_modified,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict, local_path: str = "") -> "SyncedFileInfo":
        """Create SyncedFileInfo from a dictionary, defaulting missing fields.

        Raises:
            KeyError: If the remote ID is missing
            ValueError: If a numeric field cannot be converted
        """
        return cls(
            remote_id=str(data["remote_id"]),
            local_path=data.get("local_path") or local_path,
            checksum=data.get("checksum") or "",
            last_modified=float(data.get("last_modified") or 0.0),
            size=int(data.get("size") or 0),
        )


@dataclass
class SyncState:
    """Persisted singleton state of the sync client."""

    last_sync_timestamp: Optional[str] = None
    """ISO timestamp of last successful full sync"""

    synced_files: dict[str, SyncedFileInfo] = field(default_factory=dict)
    """Local path -> last synced info"""

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "version": STATE_VERSION,
            "last_sync_timestamp": self.last_sync_timestamp,
            "synced_files": {
                path: info.to_dict() for path, info in sorted(self.synced_files.items())
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary.

        Unknown keys are ignored and missing keys default, so files written by
        other versions remain readable. Malformed entries are skipped.

        Raises:
            StateCorruptionError: If the document is not a JSON object
        """
        if not isinstance(data, dict):
            raise StateCorruptionError("Sync state is not a JSON object")

        synced_files: dict[str, SyncedFileInfo] = {}
        raw_files = data.get("synced_files") or {}
        if not isinstance(raw_files, dict):
            raise StateCorruptionError("'synced_files' is not a mapping")

        for path, raw_info in raw_files.items():
            try:
                synced_files[path] = SyncedFileInfo.from_dict(raw_info, local_path=path)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed sync state entry for {path}: {e}")

        return cls(
            last_sync_timestamp=data.get("last_sync_timestamp"),
            synced_files=synced_files,
        )


class LoadOutcome(str, Enum):
    """How the persisted state was obtained."""

    LOADED = "loaded"
    ABSENT = "absent"
    CORRUPT = "corrupt"


@dataclass
class StateLoadResult:
    """Result of SyncStateManager.load()."""

    state: SyncState
    outcome: LoadOutcome
    error: Optional[str] = None


class SyncStateManager:
    """Loads, mutates and persists the sync state.

    All mutations go through this object and are serialized by a lock, so
    parallel transfers within one run can record their results safely.
    """

    def __init__(self, state_file: Optional[Path] = None):
        """Initialize state manager.

        Args:
            state_file: Path of the JSON state file. Defaults to
                ~/.config/imegasync/sync_state.json
        """
        if state_file is None:
            from ..config import config

            state_file = config.get_state_path()
        self.state_file = Path(state_file)
        self._state = SyncState()
        self._lock = threading.RLock()

    @property
    def state(self) -> SyncState:
        return self._state

    def load(self) -> StateLoadResult:
        """Load the sync state from disk.

        Never fails: a missing or unreadable file yields a fresh empty state.

        Returns:
            StateLoadResult distinguishing loaded, absent and corrupt files
        """
        with self._lock:
            if not self.state_file.exists():
                logger.debug(f"No sync state found at {self.state_file}")
                self._state = SyncState()
                return StateLoadResult(self._state, LoadOutcome.ABSENT)

            try:
                with open(self.state_file, encoding="utf-8") as f:
                    data = json.load(f)
                state = SyncState.from_dict(data)
            except (OSError, ValueError, StateCorruptionError) as e:
                logger.warning(
                    f"Sync state at {self.state_file} is unreadable, "
                    f"starting from an empty state: {e}"
                )
                self._state = SyncState()
                return StateLoadResult(self._state, LoadOutcome.CORRUPT, error=str(e))

            self._state = state
            logger.debug(
                f"Loaded sync state with {len(state.synced_files)} files "
                f"from {state.last_sync_timestamp}"
            )
            return StateLoadResult(state, LoadOutcome.LOADED)

    def get(self, path: Union[str, Path]) -> Optional[SyncedFileInfo]:
        with self._lock:
            return self._state.synced_files.get(str(path))

    def entries_in(self, directory: Path) -> dict[str, SyncedFileInfo]:
        """Entries for files directly inside a local directory, keyed by name."""
        with self._lock:
            return {
                Path(path).name: info
                for path, info in self._state.synced_files.items()
                if Path(path).parent == directory
            }

    def upsert(self, path: Union[str, Path], info: SyncedFileInfo) -> None:
        """Record a confirmed sync of one file and persist."""
        with self._lock:
            self._state.synced_files[str(path)] = info
            self.persist()

    def remove(self, path: Union[str, Path]) -> bool:
        """Forget a file and persist.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            if self._state.synced_files.pop(str(path), None) is None:
                return False
            self.persist()
            return True

    def mark_synced(self, timestamp: Optional[datetime] = None) -> None:
        """Record the completion time of a full sync and persist."""
        with self._lock:
            self._state.last_sync_timestamp = (
                timestamp or datetime.now(timezone.utc)
            ).isoformat()
            self.persist()

    def clear(self) -> None:
        """Reset to an empty state and persist."""
        with self._lock:
            self._state = SyncState()
            self.persist()

    def persist(self) -> None:
        """Write the full state atomically.

        The document is written to a temporary file in the same directory,
        flushed to disk and renamed over the previous file.

        Raises:
            OSError: If the state cannot be written
        """
        with self._lock:
            payload: dict[str, Any] = self._state.to_dict()
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.state_file.name}.",
                suffix=".tmp",
                dir=self.state_file.parent,
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.state_file)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            logger.debug(
                "Saved sync state with %d files to %s",
                len(self._state.synced_files),
                self.state_file,
            )
