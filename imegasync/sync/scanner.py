"""Directory scanning utilities for sync operations."""

import logging
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import ListingFailure
from ..utils import is_hidden_name

logger = logging.getLogger(__name__)


@dataclass
class LocalEntry:
    """Represents a local file or directory, derived at scan time."""

    path: Path
    """Absolute path to the entry"""

    name: str
    """Entry name inside its directory"""

    is_directory: bool
    """Whether the entry is a directory"""

    size: int
    """File size in bytes (0 for directories)"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    @classmethod
    def from_path(cls, path: Path) -> "LocalEntry":
        """Create LocalEntry from a path.

        Args:
            path: Absolute path to stat

        Returns:
            LocalEntry instance

        Raises:
            OSError: If the path cannot be stat'ed (e.g. it vanished)
        """
        stat = path.stat()
        is_directory = path.is_dir()
        return cls(
            path=path,
            name=path.name,
            is_directory=is_directory,
            size=0 if is_directory else stat.st_size,
            mtime=stat.st_mtime,
        )


class DirectoryScanner:
    """Lists local directories one level at a time.

    Hidden entries (names starting with a dot) are skipped. Entries that
    disappear between the directory listing and the stat call are treated
    as absent.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> entries = scanner.list_directory(Path("/sync/folder"))
        >>> files = [e for e in entries.values() if not e.is_directory]
    """

    def __init__(self, exclude_dot_files: bool = True):
        """Initialize directory scanner.

        Args:
            exclude_dot_files: Whether to exclude files/folders starting with dot
        """
        self.exclude_dot_files = exclude_dot_files

    def should_ignore(self, path: Path) -> bool:
        """Check if a path should be ignored."""
        return self.exclude_dot_files and is_hidden_name(path.name)

    def list_directory(self, directory: Path) -> dict[str, LocalEntry]:
        """List the direct children of a local directory.

        Args:
            directory: Directory to list

        Returns:
            Mapping of entry name to LocalEntry

        Raises:
            ListingFailure: If the directory cannot be enumerated
        """
        entries: dict[str, LocalEntry] = {}

        try:
            items = sorted(directory.iterdir())
        except OSError as e:
            raise ListingFailure(
                f"Cannot list local directory {directory}: {e}", path=str(directory)
            ) from e

        for item in items:
            if self.should_ignore(item):
                continue
            try:
                entry = LocalEntry.from_path(item)
            except FileNotFoundError:
                logger.debug(f"Entry vanished during scan: {item}")
                continue
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {item}: {e}")
                continue
            if not entry.is_directory and not item.is_file():
                # Sockets, FIFOs, broken symlinks
                logger.debug(f"Skipping special file: {item}")
                continue
            entries[entry.name] = entry

        return entries
