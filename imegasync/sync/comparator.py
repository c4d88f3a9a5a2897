"""File comparison logic for sync operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models import CloudFile
from .scanner import LocalEntry
from .state import SyncedFileInfo


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    UPLOAD = "upload"
    """Upload local file to remote"""

    DOWNLOAD = "download"
    """Download remote file to local"""

    DELETE_LOCAL = "delete_local"
    """Delete local file"""

    DELETE_REMOTE = "delete_remote"
    """Delete remote file"""

    FORGET = "forget"
    """Drop a stale sync state entry (file gone on both sides)"""

    SKIP = "skip"
    """Skip file (no action needed)"""


@dataclass
class SyncDecision:
    """Represents a decision about how to sync a file."""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    name: str
    """File name within the folder"""

    local_file: Optional[LocalEntry] = None
    """Local file (if exists)"""

    remote_file: Optional[CloudFile] = None
    """Remote file (if exists)"""

    synced: Optional[SyncedFileInfo] = None
    """Sync state entry (if known)"""


class FileComparator:
    """Compares the files of one local directory and one remote folder.

    Files are matched by exact name within the folder. The only conflict
    policy is last-writer-wins by modification time: an existing remote file
    is replaced only when the local file is strictly newer than the remote
    record's ``updatedAt``. Remote files are downloaded only when missing
    locally.

    With ``propagate_deletions`` enabled, a file recorded in the sync state
    that disappeared on one side is deleted on the other side, provided the
    surviving copy is unchanged since the last sync.
    """

    def __init__(self, propagate_deletions: bool = False):
        """Initialize file comparator.

        Args:
            propagate_deletions: Whether deletions seen through the sync
                state are mirrored instead of restored
        """
        self.propagate_deletions = propagate_deletions

    def compare_remote_files(
        self,
        local_entries: dict[str, LocalEntry],
        remote_files: dict[str, CloudFile],
        synced: dict[str, SyncedFileInfo],
    ) -> list[SyncDecision]:
        """Decide what to do with remote files missing locally.

        Args:
            local_entries: Local entries of the directory keyed by name
            remote_files: Remote files of the folder keyed by name
            synced: Sync state entries of the directory keyed by name

        Returns:
            Download / delete-remote decisions, sorted by name
        """
        decisions: list[SyncDecision] = []
        for name in sorted(remote_files):
            if name in local_entries:
                continue
            decisions.append(
                self._handle_remote_only(name, remote_files[name], synced.get(name))
            )
        return decisions

    def compare_local_files(
        self,
        local_entries: dict[str, LocalEntry],
        remote_files: dict[str, CloudFile],
        synced: dict[str, SyncedFileInfo],
    ) -> list[SyncDecision]:
        """Decide what to do with local files.

        Directories are not considered here.

        Returns:
            Upload / skip / delete-local decisions, sorted by name
        """
        decisions: list[SyncDecision] = []
        for name in sorted(local_entries):
            local_file = local_entries[name]
            if local_file.is_directory:
                continue
            remote_file = remote_files.get(name)
            if remote_file is None:
                decision = self._handle_local_only(name, local_file, synced.get(name))
            else:
                decision = self._compare_existing_files(name, local_file, remote_file)
            decisions.append(decision)
        return decisions

    def find_stale_entries(
        self,
        local_entries: dict[str, LocalEntry],
        remote_files: dict[str, CloudFile],
        synced: dict[str, SyncedFileInfo],
    ) -> list[SyncDecision]:
        """Sync state entries whose file is gone on both sides."""
        return [
            SyncDecision(
                action=SyncAction.FORGET,
                reason="File deleted on both sides",
                name=name,
                synced=info,
            )
            for name, info in sorted(synced.items())
            if name not in local_entries and name not in remote_files
        ]

    def _compare_existing_files(
        self, name: str, local_file: LocalEntry, remote_file: CloudFile
    ) -> SyncDecision:
        """Compare files that exist in both locations."""
        remote_mtime = remote_file.updated_timestamp
        if remote_mtime is None:
            # Without a remote timestamp "newer" is undecidable; uploading
            # here would re-upload on every run
            return SyncDecision(
                action=SyncAction.SKIP,
                reason="Remote modification time unavailable",
                name=name,
                local_file=local_file,
                remote_file=remote_file,
            )

        if local_file.mtime > remote_mtime:
            return SyncDecision(
                action=SyncAction.UPLOAD,
                reason="Local file is newer",
                name=name,
                local_file=local_file,
                remote_file=remote_file,
            )

        return SyncDecision(
            action=SyncAction.SKIP,
            reason="Remote file is up to date",
            name=name,
            local_file=local_file,
            remote_file=remote_file,
        )

    def _handle_local_only(
        self,
        name: str,
        local_file: LocalEntry,
        synced: Optional[SyncedFileInfo],
    ) -> SyncDecision:
        """Handle file that only exists locally."""
        if (
            self.propagate_deletions
            and synced is not None
            and local_file.mtime == synced.last_modified
            and local_file.size == synced.size
        ):
            return SyncDecision(
                action=SyncAction.DELETE_LOCAL,
                reason="File deleted from cloud",
                name=name,
                local_file=local_file,
                synced=synced,
            )

        return SyncDecision(
            action=SyncAction.UPLOAD,
            reason="New local file",
            name=name,
            local_file=local_file,
            synced=synced,
        )

    def _handle_remote_only(
        self,
        name: str,
        remote_file: CloudFile,
        synced: Optional[SyncedFileInfo],
    ) -> SyncDecision:
        """Handle file that only exists remotely."""
        if (
            self.propagate_deletions
            and synced is not None
            and synced.remote_id == remote_file.id
        ):
            return SyncDecision(
                action=SyncAction.DELETE_REMOTE,
                reason="File deleted locally",
                name=name,
                remote_file=remote_file,
                synced=synced,
            )

        return SyncDecision(
            action=SyncAction.DOWNLOAD,
            reason="New remote file",
            name=name,
            remote_file=remote_file,
            synced=synced,
        )
