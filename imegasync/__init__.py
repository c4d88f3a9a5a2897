"""imegasync - keep a local folder in sync with CloudImega."""

from .api import ImegaClient
from .exceptions import (
    ImegaAPIError,
    ImegaAuthenticationError,
    ImegaConfigError,
    ImegaDownloadError,
    ImegaFileNotFoundError,
    ImegaInvalidResponseError,
    ImegaNetworkError,
    ImegaNotFoundError,
    ImegaPermissionError,
    ImegaRateLimitError,
    ImegaUploadError,
    InvalidNameError,
    ListingFailure,
    StateCorruptionError,
    SyncCancelledError,
    SyncError,
    TransientIOError,
)
from .utils import calculate_checksum

__all__ = [
    "ImegaClient",
    "ImegaAPIError",
    "ImegaAuthenticationError",
    "ImegaConfigError",
    "ImegaDownloadError",
    "ImegaFileNotFoundError",
    "ImegaInvalidResponseError",
    "ImegaNetworkError",
    "ImegaNotFoundError",
    "ImegaPermissionError",
    "ImegaRateLimitError",
    "ImegaUploadError",
    "SyncError",
    "InvalidNameError",
    "ListingFailure",
    "TransientIOError",
    "StateCorruptionError",
    "SyncCancelledError",
    "calculate_checksum",
]
