"""Data models for CloudImega API responses."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import iso_to_epoch


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first key present in data (API mixes camelCase/snake_case)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class CloudFile:
    """A file stored in CloudImega."""

    id: str
    name: str
    size: int = 0
    updated_at: str = ""
    created_at: str = ""
    folder_id: Optional[str] = None
    checksum: Optional[str] = None
    path: str = ""
    mime_type: Optional[str] = None
    is_favorite: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CloudFile":
        """Create a CloudFile from an API response dictionary.

        Args:
            data: File object as returned by the API

        Returns:
            CloudFile instance
        """
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            size=int(_pick(data, "size", "fileSize", "file_size", default=0)),
            updated_at=_pick(data, "updatedAt", "updated_at", default=""),
            created_at=_pick(data, "createdAt", "created_at", default=""),
            folder_id=_pick(data, "folder_id", "folderId", "folderID"),
            checksum=_pick(data, "checksum"),
            path=_pick(data, "path", default=""),
            mime_type=_pick(data, "mimeType", "mime_type"),
            is_favorite=bool(_pick(data, "isFavorite", "is_favorite", default=False)),
        )

    @property
    def updated_timestamp(self) -> Optional[float]:
        """Last modification time on the server (Unix timestamp)."""
        return iso_to_epoch(self.updated_at)


@dataclass
class CloudFolder:
    """A folder stored in CloudImega."""

    id: str
    name: str
    parent_id: Optional[str] = None
    path: str = ""
    created_at: str = ""
    updated_at: str = ""
    is_favorite: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CloudFolder":
        """Create a CloudFolder from an API response dictionary."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            parent_id=_pick(data, "parentID", "parentId", "parent_id"),
            path=_pick(data, "path", default=""),
            created_at=_pick(data, "createdAt", "created_at", default=""),
            updated_at=_pick(data, "updatedAt", "updated_at", default=""),
            is_favorite=bool(_pick(data, "isFavorite", "is_favorite", default=False)),
        )


@dataclass
class FolderContents:
    """One folder with its direct child files and folders (non-recursive)."""

    folder: CloudFolder
    files: list[CloudFile] = field(default_factory=list)
    subfolders: list[CloudFolder] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "FolderContents":
        """Create FolderContents from an API response dictionary."""
        return cls(
            folder=CloudFolder.from_api_response(data["folder"]),
            files=[CloudFile.from_api_response(f) for f in data.get("files") or []],
            subfolders=[
                CloudFolder.from_api_response(f)
                for f in _pick(data, "subfolders", "folders", default=[])
            ],
        )

    @classmethod
    def empty(cls, folder: CloudFolder) -> "FolderContents":
        """Contents of a folder that was just created."""
        return cls(folder=folder)

    def find_file(self, name: str) -> Optional[CloudFile]:
        """Find a direct child file by exact name."""
        for remote_file in self.files:
            if remote_file.name == name:
                return remote_file
        return None

    def find_folder(self, name: str) -> Optional[CloudFolder]:
        """Find a direct child folder by exact name."""
        for folder in self.subfolders:
            if folder.name == name:
                return folder
        return None


@dataclass
class User:
    """Logged-in CloudImega user."""

    id: str
    email: str
    name: str = ""
    storage_used: int = 0
    storage_quota: int = 0
    is_admin: bool = False
    created_at: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "User":
        """Create a User from an API response dictionary."""
        return cls(
            id=str(data["id"]),
            email=data.get("email", ""),
            name=data.get("name", ""),
            storage_used=int(_pick(data, "storageUsed", "storage_used", default=0)),
            storage_quota=int(_pick(data, "storageQuota", "storage_quota", default=0)),
            is_admin=bool(_pick(data, "isAdmin", "is_admin", default=False)),
            created_at=_pick(data, "createdAt", "created_at", default=""),
        )


@dataclass
class FilesPage:
    """One page of a paginated file listing."""

    items: list[CloudFile]
    page: int = 1
    per_page: int = 100
    total: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "FilesPage":
        """Create a FilesPage from an API response dictionary."""
        metadata = data.get("metadata") or {}
        items = [CloudFile.from_api_response(item) for item in data.get("items", [])]
        return cls(
            items=items,
            page=int(metadata.get("page", 1)),
            per_page=int(metadata.get("per", len(items))),
            total=int(metadata.get("total", len(items))),
        )

    @property
    def has_more(self) -> bool:
        """Whether later pages exist."""
        return self.page * self.per_page < self.total
