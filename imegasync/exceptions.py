"""Exceptions for the CloudImega client and the sync engine."""

from typing import Optional


class ImegaAPIError(Exception):
    """Base exception for all CloudImega API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ImegaAuthenticationError(ImegaAPIError):
    """Missing, invalid or expired session that could not be refreshed."""


class ImegaConfigError(ImegaAPIError):
    """Client is not configured correctly."""


class ImegaNetworkError(ImegaAPIError):
    """Network level failure (connection refused, timeout, DNS, ...)."""


class ImegaNotFoundError(ImegaAPIError):
    """Requested file or folder does not exist on the server."""


class ImegaPermissionError(ImegaAPIError):
    """Access to the requested resource is forbidden."""


class ImegaRateLimitError(ImegaAPIError):
    """Too many requests."""


class ImegaInvalidResponseError(ImegaAPIError):
    """Server answered with something that is not the expected JSON."""


class ImegaUploadError(ImegaAPIError):
    """Upload could not be completed."""


class ImegaDownloadError(ImegaAPIError):
    """Download could not be completed."""


class ImegaFileNotFoundError(ImegaAPIError):
    """Local file to upload does not exist."""

    def __init__(self, file_path: str):
        super().__init__(f"File not found: {file_path}")
        self.file_path = file_path


# =============================================================================
# Sync errors
# =============================================================================


class SyncError(Exception):
    """Base exception for sync engine failures."""


class ListingFailure(SyncError):
    """A remote folder or local directory could not be enumerated.

    Aborts the affected subtree only.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class TransientIOError(SyncError):
    """A single file transfer failed; the run continues."""


class StateCorruptionError(SyncError):
    """The persisted sync state could not be read."""


class SyncCancelledError(SyncError):
    """The current run was cancelled by the caller."""


class InvalidNameError(SyncError):
    """A remote entry has a name that cannot be mapped into its local folder."""


def user_message(error: BaseException) -> str:
    """Map an exception to a message suitable for the activity feed.

    Raw exception text from third-party libraries is never shown; only
    messages produced by this package are passed through.

    Args:
        error: Exception raised during a sync operation

    Returns:
        Human-readable message
    """
    if isinstance(error, ImegaAuthenticationError):
        return "Session expired, please log in again"
    if isinstance(error, ImegaPermissionError):
        return "Permission denied by the server"
    if isinstance(error, ImegaNotFoundError):
        return "Item no longer exists on the server"
    if isinstance(error, ImegaRateLimitError):
        return "Server is busy, will retry on the next sync"
    if isinstance(error, ImegaNetworkError):
        return "Network unavailable"
    if isinstance(error, ImegaUploadError):
        return "Upload failed"
    if isinstance(error, ImegaDownloadError):
        return "Download failed"
    if isinstance(error, ImegaInvalidResponseError):
        return "Unexpected response from the server"
    if isinstance(error, ImegaFileNotFoundError):
        return "File no longer exists locally"
    if isinstance(error, ImegaAPIError):
        if error.status_code is not None:
            return f"Server error ({error.status_code})"
        return "Server request failed"
    if isinstance(error, TransientIOError):
        return "Could not read local file"
    if isinstance(error, ListingFailure):
        return "Could not read folder contents"
    if isinstance(error, SyncCancelledError):
        return "Sync cancelled"
    if isinstance(error, InvalidNameError):
        return "Name is not valid on this computer"
    if isinstance(error, PermissionError):
        return "Permission denied on local disk"
    if isinstance(error, FileNotFoundError):
        return "File no longer exists locally"
    if isinstance(error, OSError):
        return "Local disk error"
    return "Unexpected error during sync"
