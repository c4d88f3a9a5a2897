"""Utility functions for CloudImega sync."""

import hashlib
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

# =============================================================================
# Constants
# =============================================================================

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Periodic full sync interval (5 minutes)
DEFAULT_SYNC_INTERVAL: int = 300

# Watcher debounce window
DEFAULT_DEBOUNCE_INTERVAL: float = 0.5  # seconds

# Number of activities kept in memory
MAX_ACTIVITIES: int = 50

# Read size for checksums and downloads
CHUNK_SIZE: int = 64 * 1024


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def _parse_aware(timestamp_str: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    # The 'Z' suffix indicates UTC time
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(timestamp_str)
    except ValueError:
        # Older interpreters reject fractional seconds that are not 3 or 6 digits
        if "." not in timestamp_str:
            raise
        head, _, tail = timestamp_str.partition(".")
        offset = ""
        for sign in ("+", "-"):
            if sign in tail:
                offset = sign + tail.split(sign, 1)[1]
                break
        dt = datetime.fromisoformat(head + offset)

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO format timestamp from the CloudImega API.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        datetime object in local timezone (naive) or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        dt = _parse_aware(timestamp_str)
    except (ValueError, AttributeError):
        return None
    return datetime.fromtimestamp(dt.timestamp())


def iso_to_epoch(timestamp_str: Optional[str]) -> Optional[float]:
    """Convert an API timestamp to a Unix timestamp.

    Naive timestamps are interpreted as UTC.

    Examples:
        >>> iso_to_epoch("1970-01-01T00:01:00Z")
        60.0
        >>> iso_to_epoch("not a date") is None
        True
    """
    if not timestamp_str:
        return None
    try:
        return _parse_aware(timestamp_str).timestamp()
    except (ValueError, AttributeError):
        return None


def epoch_to_iso(timestamp: float) -> str:
    """Format a Unix timestamp as an ISO 8601 UTC string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Path and hash utilities
# =============================================================================


def is_hidden_name(name: str) -> bool:
    """Check whether a file or folder name is hidden by naming convention."""
    return name.startswith(".")


def is_safe_name(name: str) -> bool:
    """Check that a remote name denotes a single entry inside its folder.

    Examples:
        >>> is_safe_name("report.pdf")
        True
        >>> is_safe_name("sub/../../x.txt")
        False
    """
    if name in ("", ".", ".."):
        return False
    if os.sep in name or (os.altsep and os.altsep in name):
        return False
    return Path(name).name == name


def is_hidden_path(path: Union[str, Path], root: Optional[Path] = None) -> bool:
    """Check whether any segment of a path is hidden.

    Args:
        path: Path to check
        root: Optional root; only segments below it are considered

    Examples:
        >>> is_hidden_path("/sync/docs/.DS_Store")
        True
        >>> is_hidden_path("/home/.user/sync/a.txt", root=Path("/home/.user/sync"))
        False
    """
    path = Path(path)
    if root is not None:
        try:
            path = path.relative_to(root)
        except ValueError:
            pass
    return any(is_hidden_name(part) for part in path.parts if part not in ("/", ""))


def calculate_checksum(file_path: Path) -> str:
    """Calculate the SHA-256 content hash of a file.

    Args:
        file_path: File to hash

    Returns:
        Hex digest
    """
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
