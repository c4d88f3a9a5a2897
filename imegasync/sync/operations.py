"""Sync operations wrapper for unified upload/download interface."""

import os
import time
from pathlib import Path
from typing import Optional

from ..api import ImegaClient
from ..exceptions import ImegaNotFoundError, TransientIOError
from ..models import CloudFile, CloudFolder, FolderContents
from ..utils import calculate_checksum
from .state import SyncedFileInfo


class SyncOperations:
    """Remote and local file operations used by the sync engine.

    Every successful transfer returns the SyncedFileInfo describing the
    state both sides now agree on.
    """

    def __init__(self, client: ImegaClient):
        """Initialize sync operations.

        Args:
            client: CloudImega API client
        """
        self.client = client

    def list_folder(self, folder_id: str) -> FolderContents:
        return self.client.get_folder_contents(folder_id)

    def create_remote_folder(self, name: str, parent_id: Optional[str]) -> CloudFolder:
        return self.client.create_folder(name, parent_id=parent_id)

    def upload_file(
        self,
        local_path: Path,
        folder_id: Optional[str],
    ) -> tuple[CloudFile, SyncedFileInfo]:
        """Upload a local file to a remote folder.

        The fingerprint is taken before the upload so that a file modified
        while uploading is seen as newer on the next run.

        Args:
            local_path: Local file to upload
            folder_id: Destination folder ID

        Returns:
            Tuple of (created remote record, sync info)

        Raises:
            FileNotFoundError: If the file vanished before the upload
            TransientIOError: If the file cannot be read
        """
        stat = local_path.stat()
        try:
            checksum = calculate_checksum(local_path)
        except FileNotFoundError:
            raise
        except OSError as e:
            raise TransientIOError(f"Cannot read {local_path}: {e}") from e
        remote_file = self.client.upload_file(local_path, folder_id=folder_id)
        info = SyncedFileInfo(
            remote_id=remote_file.id,
            local_path=str(local_path),
            checksum=remote_file.checksum or checksum,
            last_modified=stat.st_mtime,
            size=stat.st_size,
        )
        return remote_file, info

    def download_file(
        self,
        remote_file: CloudFile,
        local_path: Path,
    ) -> SyncedFileInfo:
        """Download a remote file to local storage.

        The local modification time is set to the remote ``updatedAt`` so
        the new copy is not considered newer than its source.

        Args:
            remote_file: Remote file to download
            local_path: Local path where file should be saved

        Returns:
            Sync info for the downloaded file
        """
        # Ensure parent directory exists
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self.client.download_file(remote_file.id, local_path)

        mtime = remote_file.updated_timestamp or time.time()
        os.utime(local_path, (mtime, mtime))
        stat = local_path.stat()
        return SyncedFileInfo(
            remote_id=remote_file.id,
            local_path=str(local_path),
            checksum=remote_file.checksum or calculate_checksum(local_path),
            last_modified=stat.st_mtime,
            size=stat.st_size,
        )

    def delete_remote(self, remote_id: str) -> bool:
        """Delete a remote file.

        Returns:
            False if the file was already gone
        """
        try:
            self.client.delete_file(remote_id)
        except ImegaNotFoundError:
            return False
        return True

    def delete_local(self, local_path: Path) -> bool:
        """Delete a local file.

        Returns:
            False if the file was already gone
        """
        try:
            local_path.unlink()
        except FileNotFoundError:
            return False
        return True
