"""Shared fixtures: an in-memory CloudImega remote."""

import itertools
import threading
import time
from pathlib import Path
from typing import Optional

import pytest

from imegasync.exceptions import (
    ImegaAPIError,
    ImegaAuthenticationError,
    ImegaFileNotFoundError,
    ImegaNotFoundError,
    ImegaUploadError,
)
from imegasync.models import CloudFile, CloudFolder, FolderContents
from imegasync.sync import ActivityLog, SyncEngine, SyncStateManager
from imegasync.utils import epoch_to_iso

ROOT_ID = "root"


class FakeImegaClient:
    """In-memory stand-in for ImegaClient with the same sync surface.

    Uploads are stamped with a server time after the local write, like the
    real service. Mutating calls are recorded in ``calls``.
    """

    def __init__(self):
        self.is_authenticated = True
        self.auth_expired = False
        self.folders: dict[str, dict] = {ROOT_ID: {"name": "", "parent": None}}
        self.files: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_listing: set[str] = set()
        self.fail_uploads: set[str] = set()
        self.fail_downloads: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.upload_delay = 0.0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._active_uploads = 0
        self.max_parallel_uploads = 0

    # -- test helpers --------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}{next(self._ids)}"

    def add_folder(self, name: str, parent_id: str = ROOT_ID) -> str:
        folder_id = self._next_id("d")
        self.folders[folder_id] = {"name": name, "parent": parent_id}
        return folder_id

    def add_file(
        self,
        name: str,
        content: bytes = b"",
        folder_id: str = ROOT_ID,
        updated: Optional[float] = None,
    ) -> str:
        file_id = self._next_id("f")
        self.files[file_id] = {
            "name": name,
            "folder": folder_id,
            "content": content,
            "updated": time.time() if updated is None else updated,
        }
        return file_id

    def folder_id(self, name: str, parent_id: str = ROOT_ID) -> Optional[str]:
        for folder_id, folder in self.folders.items():
            if folder["name"] == name and folder["parent"] == parent_id:
                return folder_id
        return None

    def files_in(self, folder_id: str = ROOT_ID) -> dict[str, bytes]:
        return {
            f["name"]: f["content"]
            for f in self.files.values()
            if f["folder"] == folder_id
        }

    def mutating_calls(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in ("upload", "create_folder", "delete")]

    def _check_session(self) -> None:
        if self.auth_expired:
            raise ImegaAuthenticationError("Session expired")

    def _record(self, op: str, name: str) -> None:
        with self._lock:
            self.calls.append((op, name))

    # -- ImegaClient surface -------------------------------------------------

    def _folder_model(self, folder_id: str) -> CloudFolder:
        folder = self.folders[folder_id]
        return CloudFolder(id=folder_id, name=folder["name"], parent_id=folder["parent"])

    def _file_model(self, file_id: str) -> CloudFile:
        f = self.files[file_id]
        return CloudFile(
            id=file_id,
            name=f["name"],
            size=len(f["content"]),
            updated_at=epoch_to_iso(f["updated"]),
            folder_id=f["folder"],
        )

    def _contents(self, folder_id: str) -> FolderContents:
        return FolderContents(
            folder=self._folder_model(folder_id),
            files=[
                self._file_model(fid)
                for fid, f in self.files.items()
                if f["folder"] == folder_id
            ],
            subfolders=[
                self._folder_model(did)
                for did, d in self.folders.items()
                if d["parent"] == folder_id
            ],
        )

    def get_root_folder(self) -> FolderContents:
        self._check_session()
        self._record("list", ROOT_ID)
        return self._contents(ROOT_ID)

    def get_folder_contents(self, folder_id: str) -> FolderContents:
        self._check_session()
        self._record("list", folder_id)
        if folder_id in self.fail_listing:
            raise ImegaAPIError("Internal server error", status_code=500)
        if folder_id not in self.folders:
            raise ImegaNotFoundError("Folder not found", status_code=404)
        return self._contents(folder_id)

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> CloudFolder:
        self._check_session()
        self._record("create_folder", name)
        folder_id = self.add_folder(name, parent_id or ROOT_ID)
        return self._folder_model(folder_id)

    def upload_file(self, file_path: Path, folder_id: Optional[str] = None) -> CloudFile:
        self._check_session()
        if not file_path.is_file():
            raise ImegaFileNotFoundError(str(file_path))
        with self._lock:
            self._active_uploads += 1
            self.max_parallel_uploads = max(self.max_parallel_uploads, self._active_uploads)
        try:
            if self.upload_delay:
                time.sleep(self.upload_delay)
            self._record("upload", file_path.name)
            if file_path.name in self.fail_uploads:
                raise ImegaUploadError(f"Upload of '{file_path.name}' failed", status_code=503)
            # Server stamps the upload after the local write
            updated = max(time.time(), file_path.stat().st_mtime) + 1.0
            file_id = self.add_file(
                file_path.name, file_path.read_bytes(), folder_id or ROOT_ID, updated
            )
        finally:
            with self._lock:
                self._active_uploads -= 1
        return self._file_model(file_id)

    def download_file(self, file_id: str, destination: Path, progress_callback=None) -> Path:
        self._check_session()
        f = self.files[file_id]
        self._record("download", f["name"])
        if f["name"] in self.fail_downloads:
            raise ImegaAPIError("Download failed", status_code=500)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(f["content"])
        return destination

    def delete_file(self, file_id: str) -> None:
        self._check_session()
        if file_id not in self.files:
            raise ImegaNotFoundError("File not found", status_code=404)
        self._record("delete", self.files[file_id]["name"])
        if self.files[file_id]["name"] in self.fail_deletes:
            raise ImegaAPIError("Delete failed", status_code=500)
        del self.files[file_id]

    def close(self) -> None:
        pass


@pytest.fixture
def remote():
    """In-memory remote with an empty root folder."""
    return FakeImegaClient()


@pytest.fixture
def sync_root(tmp_path):
    """Local sync folder."""
    root = tmp_path / "CloudImega"
    root.mkdir()
    return root.resolve()


@pytest.fixture
def state_manager(tmp_path):
    """State manager persisting into the test directory."""
    return SyncStateManager(tmp_path / "state" / "sync_state.json")


@pytest.fixture
def activity_log():
    return ActivityLog()


@pytest.fixture
def engine(remote, state_manager, activity_log):
    return SyncEngine(remote, state_manager, activity_log=activity_log)
