"""Core sync engine for reconciling a local tree with a remote folder tree."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

from ..api import ImegaClient
from ..exceptions import (
    ImegaAPIError,
    ImegaAuthenticationError,
    ImegaFileNotFoundError,
    InvalidNameError,
    ListingFailure,
    SyncCancelledError,
    TransientIOError,
    user_message,
)
from ..models import CloudFile, CloudFolder, FolderContents
from ..utils import is_hidden_name, is_safe_name
from .activity import ActivityKind, ActivityLog
from .comparator import FileComparator, SyncAction, SyncDecision
from .operations import SyncOperations
from .scanner import DirectoryScanner, LocalEntry
from .state import SyncedFileInfo, SyncStateManager
from .watcher import FileEvent, FileEventKind

logger = logging.getLogger(__name__)


class SyncEngine:
    """Reconciles a local directory tree with a remote folder tree.

    The walk is recursive and scoped per folder: files and folders are
    matched by exact name within the same parent. Remote files missing
    locally are downloaded, local files missing remotely are uploaded, and
    a file present on both sides is uploaded only when the local copy is
    strictly newer (last-writer-wins).

    Failures of a single file are recorded in the activity log and the walk
    continues; failing to list a folder aborts that subtree only. An
    authentication failure aborts the whole run.
    """

    def __init__(
        self,
        client: ImegaClient,
        state_manager: SyncStateManager,
        activity_log: Optional[ActivityLog] = None,
        max_workers: int = 1,
        propagate_deletions: bool = False,
        scanner: Optional[DirectoryScanner] = None,
    ):
        """Initialize sync engine.

        Args:
            client: CloudImega API client
            state_manager: Store of per-file sync state
            activity_log: Activity feed to record outcomes in
            max_workers: Number of parallel transfers within one folder
            propagate_deletions: Mirror deletions known from the sync state
                instead of restoring the missing side
            scanner: Local directory scanner
        """
        self.client = client
        self.state = state_manager
        self.activity = activity_log if activity_log is not None else ActivityLog()
        self.max_workers = max(1, max_workers)
        self.operations = SyncOperations(client)
        self.scanner = scanner or DirectoryScanner()
        self.comparator = FileComparator(propagate_deletions=propagate_deletions)
        self._stats_lock = threading.Lock()

    # =========================
    # Full reconciliation
    # =========================

    def synchronize(
        self,
        local_root: Path,
        root: FolderContents,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict:
        """Reconcile a local directory with a remote folder, recursively.

        Args:
            local_root: Local directory mirrored with the remote folder
            root: Contents of the remote folder
            cancel_event: Set by the caller to stop between files

        Returns:
            Dictionary with sync statistics

        Raises:
            ListingFailure: If the local root cannot be prepared or listed
            ImegaAuthenticationError: If the session is no longer valid
            SyncCancelledError: If cancel_event was set during the run

        Examples:
            >>> engine = SyncEngine(client, SyncStateManager(state_file))
            >>> stats = engine.synchronize(Path("~/CloudImega"), client.get_root_folder())
            >>> print(f"Uploaded {stats['uploads']} files")
        """
        start_time = time.time()
        local_root = Path(local_root).expanduser().resolve()
        stats = self._create_empty_stats()

        logger.debug(f"Starting sync of {local_root} with folder {root.folder.id}")
        self._sync_folder(root, local_root, stats, cancel_event)

        logger.info(
            "Sync of %s finished in %.2fs: %d uploaded, %d downloaded, "
            "%d folder(s) created, %d error(s)",
            local_root,
            time.time() - start_time,
            stats["uploads"],
            stats["downloads"],
            stats["folders_created"],
            stats["errors"],
        )
        return stats

    def _create_empty_stats(self) -> dict:
        """Create an empty statistics dictionary.

        Returns:
            Dictionary with zero counts for all stat categories
        """
        return {
            "uploads": 0,
            "downloads": 0,
            "deletes_local": 0,
            "deletes_remote": 0,
            "folders_created": 0,
            "skips": 0,
            "errors": 0,
        }

    def _increment(self, stats: dict, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            stats[key] += amount

    def _check_cancelled(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("Sync cancelled")

    def _record_error(self, name: str, error: BaseException, stats: dict) -> None:
        """Record a file-level failure and continue."""
        logger.debug(f"Error syncing {name}: {error}")
        self._increment(stats, "errors")
        self.activity.add(ActivityKind.ERROR, name, user_message(error))

    def _sync_folder(
        self,
        contents: FolderContents,
        local_path: Path,
        stats: dict,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Reconcile one (local directory, remote folder) pair and recurse.

        Raises:
            ListingFailure: If the local directory cannot be created or listed
        """
        self._check_cancelled(cancel_event)

        # Step 1: ensure the local directory exists
        if not local_path.is_dir():
            try:
                local_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ListingFailure(
                    f"Cannot create local directory {local_path}: {e}",
                    path=str(local_path),
                ) from e

        synced = self.state.entries_in(local_path)
        remote_folders: dict[str, CloudFolder] = {}
        for folder in contents.subfolders:
            if self._accept_remote_name(folder.name, local_path, stats, folder=True):
                remote_folders[folder.name] = folder
        remote_files = self._collect_remote_files(
            contents.files, synced, local_path, stats
        )

        # Step 2: descend into remote folders first so that folders created
        # on both sides are matched instead of duplicated
        descended: set[str] = set()
        for name, folder in remote_folders.items():
            self._check_cancelled(cancel_event)
            self._descend(folder, local_path / name, stats, cancel_event)
            descended.add(name)

        local_entries = self.scanner.list_directory(local_path)

        # Step 3: remote files missing locally
        remote_decisions = self.comparator.compare_remote_files(
            local_entries, remote_files, synced
        )
        self._execute_decisions(
            remote_decisions, local_path, contents.folder, stats, cancel_event
        )

        # Step 4: local files
        local_files: dict[str, LocalEntry] = {}
        for name, entry in local_entries.items():
            if not entry.is_directory and name in remote_folders:
                logger.warning(
                    f"Skipping {entry.path}: a remote folder has the same name"
                )
                self._increment(stats, "skips")
                continue
            local_files[name] = entry

        local_decisions = self.comparator.compare_local_files(
            local_files, remote_files, synced
        )
        self._execute_decisions(
            local_decisions, local_path, contents.folder, stats, cancel_event
        )

        for decision in self.comparator.find_stale_entries(
            local_entries, remote_files, synced
        ):
            logger.debug(f"Forgetting {decision.name}: {decision.reason}")
            self.state.remove(local_path / decision.name)

        # Step 5: local directories
        for name, entry in local_entries.items():
            if not entry.is_directory or name in descended:
                continue
            self._check_cancelled(cancel_event)

            folder = remote_folders.get(name)
            if folder is not None:
                self._descend(folder, entry.path, stats, cancel_event)
                continue

            try:
                new_folder = self.operations.create_remote_folder(
                    name, contents.folder.id
                )
            except ImegaAuthenticationError:
                raise
            except ImegaAPIError as e:
                self._record_error(f"{name}/", e, stats)
                continue

            self._increment(stats, "folders_created")
            self.activity.add(ActivityKind.UPLOADED, f"{name}/")
            self._sync_subtree(
                FolderContents.empty(new_folder), entry.path, stats, cancel_event
            )

    def _accept_remote_name(
        self, name: str, local_path: Path, stats: dict, folder: bool = False
    ) -> bool:
        """Whether a remote entry takes part in the walk of this folder.

        Hidden names are skipped silently. Names that would resolve outside
        the folder (absolute, containing a separator, "." or "..") are
        recorded as errors.
        """
        if is_hidden_name(name):
            return False
        if not is_safe_name(name):
            logger.warning(
                f"Skipping remote entry with invalid name {name!r} in {local_path}"
            )
            label = f"{name}/" if folder else name
            self._record_error(
                label, InvalidNameError(f"Invalid remote name: {name!r}"), stats
            )
            return False
        return True

    def _collect_remote_files(
        self,
        files: list[CloudFile],
        synced: dict[str, SyncedFileInfo],
        local_path: Path,
        stats: dict,
    ) -> dict[str, CloudFile]:
        """Map remote file names to records, resolving duplicate names.

        When a folder lists several files with one name (a replacing upload
        whose cleanup failed), the record known in the sync state is kept,
        otherwise the most recently updated one. The others are deleted.

        Raises:
            ImegaAuthenticationError: If the session is no longer valid
        """
        by_name: dict[str, list[CloudFile]] = {}
        for remote_file in files:
            if self._accept_remote_name(remote_file.name, local_path, stats):
                by_name.setdefault(remote_file.name, []).append(remote_file)

        remote_files: dict[str, CloudFile] = {}
        for name, candidates in by_name.items():
            if len(candidates) == 1:
                remote_files[name] = candidates[0]
                continue

            info = synced.get(name)
            keep = next(
                (f for f in candidates if info is not None and f.id == info.remote_id),
                None,
            )
            if keep is None:
                keep = max(
                    candidates,
                    key=lambda f: f.updated_timestamp or float("-inf"),
                )
            remote_files[name] = keep

            for duplicate in candidates:
                if duplicate is keep:
                    continue
                logger.info(
                    f"Removing duplicate remote version {duplicate.id} of "
                    f"{local_path / name}"
                )
                try:
                    self.operations.delete_remote(duplicate.id)
                except ImegaAuthenticationError:
                    raise
                except ImegaAPIError as e:
                    self._record_error(name, e, stats)
        return remote_files

    def _descend(
        self,
        folder: CloudFolder,
        local_path: Path,
        stats: dict,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """List a remote subfolder and reconcile it; failures abort the subtree."""
        try:
            child = self.operations.list_folder(folder.id)
        except ImegaAuthenticationError:
            raise
        except ImegaAPIError as e:
            logger.warning(f"Cannot list remote folder {folder.name}: {e}")
            self._record_error(f"{folder.name}/", e, stats)
            return
        self._sync_subtree(child, local_path, stats, cancel_event)

    def _sync_subtree(
        self,
        contents: FolderContents,
        local_path: Path,
        stats: dict,
        cancel_event: Optional[threading.Event],
    ) -> None:
        try:
            self._sync_folder(contents, local_path, stats, cancel_event)
        except ListingFailure as e:
            logger.warning(str(e))
            self._record_error(f"{local_path.name}/", e, stats)

    # =========================
    # Decision execution
    # =========================

    def _execute_decisions(
        self,
        decisions: list[SyncDecision],
        local_path: Path,
        folder: CloudFolder,
        stats: dict,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Execute the file decisions of one folder.

        Args:
            decisions: Decisions produced by the comparator
            local_path: Local directory of the folder
            folder: Remote folder
            stats: Statistics dictionary (modified in place)
            cancel_event: Cancellation flag checked before each file
        """
        actionable = [d for d in decisions if d.action != SyncAction.SKIP]
        self._increment(stats, "skips", len(decisions) - len(actionable))

        if self.max_workers > 1 and len(actionable) > 1:
            logger.debug(
                f"Executing {len(actionable)} actions with {self.max_workers} workers"
            )
            executor = ThreadPoolExecutor(max_workers=self.max_workers)
            try:
                futures = [
                    executor.submit(
                        self._execute_single_decision,
                        decision,
                        local_path,
                        folder,
                        stats,
                        cancel_event,
                    )
                    for decision in actionable
                ]
                for future in as_completed(futures):
                    # Re-raises authentication failures and cancellation
                    future.result()
            finally:
                executor.shutdown(wait=True, cancel_futures=True)
        else:
            for decision in actionable:
                self._execute_single_decision(
                    decision, local_path, folder, stats, cancel_event
                )

    def _execute_single_decision(
        self,
        decision: SyncDecision,
        local_path: Path,
        folder: CloudFolder,
        stats: dict,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Execute a single sync decision.

        File-level failures are recorded and swallowed; authentication
        failures and cancellation propagate.
        """
        self._check_cancelled(cancel_event)
        target = local_path / decision.name

        try:
            if decision.action == SyncAction.UPLOAD:
                self._upload(target, folder.id, decision.remote_file, stats)

            elif decision.action == SyncAction.DOWNLOAD and decision.remote_file:
                logger.debug(f"Downloading {target}...")
                info = self.operations.download_file(decision.remote_file, target)
                self.state.upsert(target, info)
                self._increment(stats, "downloads")
                self.activity.add(ActivityKind.DOWNLOADED, decision.name)

            elif decision.action == SyncAction.DELETE_REMOTE and decision.remote_file:
                self.operations.delete_remote(decision.remote_file.id)
                self.state.remove(target)
                self._increment(stats, "deletes_remote")
                self.activity.add(ActivityKind.DELETED, decision.name)

            elif decision.action == SyncAction.DELETE_LOCAL:
                self.operations.delete_local(target)
                self.state.remove(target)
                self._increment(stats, "deletes_local")
                self.activity.add(ActivityKind.DELETED, decision.name)

        except ImegaAuthenticationError:
            raise
        except (FileNotFoundError, ImegaFileNotFoundError):
            # Entry vanished between listing and transfer
            logger.info(f"Skipping {target}: file no longer exists")
        except (ImegaAPIError, TransientIOError, OSError) as e:
            self._record_error(decision.name, e, stats)

    def _upload(
        self,
        local_path: Path,
        folder_id: Optional[str],
        replaces: Optional[CloudFile],
        stats: dict,
    ) -> None:
        """Upload a file, replacing an older remote version if given."""
        action_start = time.time()
        logger.debug(f"Uploading {local_path}...")

        remote_file, info = self.operations.upload_file(local_path, folder_id)
        self.state.upsert(local_path, info)
        self._increment(stats, "uploads")
        self.activity.add(ActivityKind.UPLOADED, local_path.name)
        logger.debug(
            "Upload of %s took %.2fs", local_path, time.time() - action_start
        )

        if replaces is not None and replaces.id != remote_file.id:
            logger.debug(f"Removing superseded remote version {replaces.id}")
            self.operations.delete_remote(replaces.id)

    # =========================
    # Targeted single-file sync
    # =========================

    def sync_file(self, local_root: Path, event: FileEvent) -> dict:
        """Sync a single path reported by the change watcher.

        Created or modified files are uploaded when missing remotely or
        strictly newer than the remote copy. Deleted files are deleted
        remotely when known in the sync state. A rename is a delete of the
        old path followed by an upload of the new one.

        Args:
            local_root: Local sync root
            event: Watcher event

        Returns:
            Dictionary with sync statistics

        Raises:
            ImegaAuthenticationError: If the session is no longer valid
        """
        local_root = Path(local_root).expanduser().resolve()
        stats = self._create_empty_stats()
        path = Path(event.path)

        if event.kind == FileEventKind.DELETED:
            self._sync_deleted(local_root, path, stats)
        elif event.kind == FileEventKind.RENAMED:
            if event.src_path is not None:
                self._sync_deleted(local_root, Path(event.src_path), stats)
            self._sync_changed(local_root, path, stats)
        else:
            self._sync_changed(local_root, path, stats)
        return stats

    def _sync_deleted(self, local_root: Path, path: Path, stats: dict) -> None:
        if path.exists():
            # Replaced again before we got here (atomic editor saves)
            self._sync_changed(local_root, path, stats)
            return

        info = self.state.get(path)
        if info is None:
            logger.debug(f"Deleted file {path} was never synced, nothing to do")
            return

        try:
            self.operations.delete_remote(info.remote_id)
        except ImegaAuthenticationError:
            raise
        except ImegaAPIError as e:
            self._record_error(path.name, e, stats)
            return

        self.state.remove(path)
        self._increment(stats, "deletes_remote")
        self.activity.add(ActivityKind.DELETED, path.name)

    def _sync_changed(self, local_root: Path, path: Path, stats: dict) -> None:
        try:
            relative = path.relative_to(local_root)
        except ValueError:
            logger.warning(f"Ignoring change outside of sync folder: {path}")
            return
        if any(is_hidden_name(part) for part in relative.parts):
            return

        try:
            entry = LocalEntry.from_path(path)
        except FileNotFoundError:
            logger.debug(f"Changed file {path} vanished before sync")
            return
        except OSError as e:
            self._record_error(path.name, e, stats)
            return
        if entry.is_directory:
            return

        try:
            contents = self._resolve_remote_folder(relative.parts[:-1], stats)
        except ImegaAuthenticationError:
            raise
        except ImegaAPIError as e:
            self._record_error(path.name, e, stats)
            return

        if contents.find_folder(entry.name) is not None:
            logger.warning(f"Skipping {path}: a remote folder has the same name")
            self._increment(stats, "skips")
            return

        remote_files = self._collect_remote_files(
            contents.files, self.state.entries_in(path.parent), path.parent, stats
        )
        decisions = self.comparator.compare_local_files(
            {entry.name: entry}, remote_files, {}
        )
        self._execute_decisions(decisions, path.parent, contents.folder, stats, None)

    def _resolve_remote_folder(
        self, parts: tuple[str, ...], stats: dict
    ) -> FolderContents:
        """Walk from the remote root to a folder, creating missing folders.

        Args:
            parts: Folder names below the root
            stats: Statistics dictionary (modified in place)

        Returns:
            Contents of the resolved folder
        """
        contents = self.client.get_root_folder()
        for part in parts:
            folder = contents.find_folder(part)
            if folder is None:
                folder = self.operations.create_remote_folder(part, contents.folder.id)
                self._increment(stats, "folders_created")
                self.activity.add(ActivityKind.UPLOADED, f"{part}/")
                contents = FolderContents.empty(folder)
            else:
                contents = self.operations.list_folder(folder.id)
        return contents
