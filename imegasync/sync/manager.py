"""Sync triggers and status coordination.

SyncManager owns the sync status and decides when the engine runs: on a
manual request, on a repeating timer and on debounced watcher events. At
most one run is in flight; the status check and the transition to
``syncing`` happen atomically under one lock.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from ..api import ImegaClient
from ..exceptions import ImegaAPIError, SyncCancelledError, SyncError, user_message
from ..utils import DEFAULT_SYNC_INTERVAL, parse_iso_timestamp
from .activity import ActivityKind, ActivityLog, SyncStatus, SyncStatusKind
from .engine import SyncEngine
from .state import LoadOutcome, SyncStateManager
from .watcher import ChangeWatcher, FileEvent

logger = logging.getLogger(__name__)

WELCOME_FILE_NAME = "README.txt"

WELCOME_TEXT = """Welcome to CloudImega!

This folder is synchronized with your CloudImega account.

How it works:
- Any file you put here is uploaded to the cloud automatically
- Files from your cloud account are downloaded here
- Changes are synchronized automatically

Folder location: {folder}

Run `imegasync status` for more information.
"""


class SyncManager:
    """Coordinates sync runs, the change watcher and the periodic timer.

    Examples:
        >>> manager = SyncManager(client, SyncStateManager(), Path("~/CloudImega"))
        >>> manager.start()
        >>> manager.sync_now()
        True
        >>> manager.shutdown()
    """

    def __init__(
        self,
        client: ImegaClient,
        state_manager: SyncStateManager,
        sync_folder: Union[str, Path],
        auto_sync: bool = True,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        engine: Optional[SyncEngine] = None,
        watcher: Optional[ChangeWatcher] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        """Initialize sync manager.

        Args:
            client: CloudImega API client
            state_manager: Store of per-file sync state
            sync_folder: Local folder mirrored with the remote root
            auto_sync: Whether the timer and watcher trigger syncs
            sync_interval: Seconds between timer-triggered syncs
            engine: Sync engine (created from client and state if omitted)
            watcher: Change watcher (created if omitted)
            activity_log: Activity feed shared with the engine
        """
        self.client = client
        self.state = state_manager
        self.sync_folder = Path(sync_folder).expanduser()
        self.auto_sync = auto_sync
        self.sync_interval = sync_interval
        self.activity = (
            activity_log
            if activity_log is not None
            else (engine.activity if engine is not None else ActivityLog())
        )
        self.engine = engine or SyncEngine(
            client, state_manager, activity_log=self.activity
        )
        self.watcher = watcher or ChangeWatcher()

        self._lock = threading.RLock()
        self._status = SyncStatus.idle()
        self._paused = False
        self._offline = False
        self._running = False
        self._timer: Optional[threading.Timer] = None
        self._cancel_event = threading.Event()
        self._status_listeners: list[Callable[[SyncStatus], None]] = []
        self.last_stats: Optional[dict] = None

    # =========================
    # Observable state
    # =========================

    @property
    def status(self) -> SyncStatus:
        with self._lock:
            return self._status

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_offline(self) -> bool:
        return self._offline

    @property
    def synced_files_count(self) -> int:
        return len(self.state.state.synced_files)

    @property
    def last_sync(self) -> Optional[datetime]:
        return parse_iso_timestamp(self.state.state.last_sync_timestamp)

    def add_status_listener(self, listener: Callable[[SyncStatus], None]) -> None:
        """Register a callback invoked with every new status."""
        with self._lock:
            self._status_listeners.append(listener)

    def _set_status(self, status: SyncStatus) -> None:
        with self._lock:
            if status == self._status:
                return
            self._status = status
            listeners = list(self._status_listeners)
        logger.debug(f"Sync status: {status.description}")
        for listener in listeners:
            listener(status)

    def _resting_status(self) -> SyncStatus:
        if self._offline:
            return SyncStatus.offline()
        if self._paused:
            return SyncStatus.paused()
        return SyncStatus.idle()

    def _begin_run(self, allow_paused: bool) -> bool:
        """Atomically check the status and switch to syncing."""
        with self._lock:
            kind = self._status.kind
            if kind == SyncStatusKind.SYNCING:
                logger.debug("Sync already in progress, ignoring trigger")
                return False
            if self._offline:
                logger.debug("Offline, ignoring sync trigger")
                return False
            if self._paused and not allow_paused:
                return False
            authenticated = self.client.is_authenticated
            if authenticated:
                self._cancel_event.clear()
                self._status = SyncStatus.syncing()
                listeners = list(self._status_listeners)

        if not authenticated:
            self.activity.add(ActivityKind.ERROR, "Sync", "Not authenticated")
            self._set_status(SyncStatus.error("Not authenticated"))
            return False
        for listener in listeners:
            listener(SyncStatus.syncing())
        return True

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> None:
        """Load the sync state, start the watcher and, with auto sync, the timer."""
        result = self.state.load()
        if result.outcome == LoadOutcome.CORRUPT:
            logger.warning(f"Sync state was reset: {result.error}")

        self._ensure_sync_folder()
        with self._lock:
            self._running = True
        self._start_watcher()
        if self.auto_sync and not self._paused:
            self._start_timer()
        logger.info(f"Sync manager started for {self.sync_folder}")

    def shutdown(self) -> None:
        """Stop the timer and the watcher. An in-flight run is cancelled."""
        with self._lock:
            self._running = False
        self._stop_timer()
        self.watcher.stop()
        self._cancel_event.set()
        logger.info("Sync manager stopped")

    def prepare_sync_folder(self) -> Path:
        """Create the sync folder and write the welcome file once."""
        self._ensure_sync_folder()
        self._write_welcome_file()
        return self.sync_folder

    def setup_after_login(self) -> None:
        """Prepare the sync folder after a successful login and start syncing."""
        self.prepare_sync_folder()
        self.start()

    def set_sync_folder(self, path: Union[str, Path]) -> None:
        """Change the sync folder and restart the watcher on it."""
        self.sync_folder = Path(path).expanduser()
        self._ensure_sync_folder()
        if self._running:
            self._start_watcher()

    def _ensure_sync_folder(self) -> None:
        self.sync_folder.mkdir(parents=True, exist_ok=True)

    def _write_welcome_file(self) -> None:
        welcome = self.sync_folder / WELCOME_FILE_NAME
        if welcome.exists():
            return
        try:
            welcome.write_text(
                WELCOME_TEXT.format(folder=self.sync_folder), encoding="utf-8"
            )
        except OSError as e:
            logger.warning(f"Could not write welcome file {welcome}: {e}")

    def _start_watcher(self) -> None:
        try:
            self.watcher.start(self.sync_folder, self.handle_file_event)
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot watch {self.sync_folder}: {e}")

    # =========================
    # Timer
    # =========================

    def _start_timer(self) -> None:
        with self._lock:
            self._stop_timer()
            if self.sync_interval <= 0:
                return
            timer = threading.Timer(self.sync_interval, self._on_timer)
            timer.daemon = True
            timer.start()
            self._timer = timer

    def _stop_timer(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _on_timer(self) -> None:
        try:
            self.sync_now()
        finally:
            with self._lock:
                rearm = self._running and self.auto_sync and not self._paused
            if rearm:
                self._start_timer()

    # =========================
    # Triggers
    # =========================

    def sync_now(self) -> bool:
        """Run a full sync of the sync folder.

        Manual requests are honored while paused; the status returns to
        paused afterwards.

        Returns:
            True if a run completed successfully
        """
        if not self._begin_run(allow_paused=True):
            return False

        try:
            root = self.client.get_root_folder()
            stats = self.engine.synchronize(
                self.sync_folder, root, cancel_event=self._cancel_event
            )
        except SyncCancelledError as e:
            logger.info("Sync cancelled")
            self.activity.add(ActivityKind.ERROR, "Sync", user_message(e))
            self._set_status(self._resting_status())
            return False
        except (ImegaAPIError, SyncError, OSError) as e:
            message = user_message(e)
            logger.error(f"Sync failed: {e}")
            self.activity.add(ActivityKind.ERROR, "Sync", message)
            self._set_status(SyncStatus.error(message))
            return False
        except Exception as e:
            message = user_message(e)
            logger.exception("Unexpected error during sync")
            self.activity.add(ActivityKind.ERROR, "Sync", message)
            self._set_status(SyncStatus.error(message))
            return False

        self.last_stats = stats
        self.state.mark_synced()
        self._set_status(self._resting_status())
        return True

    def handle_file_event(self, event: FileEvent) -> bool:
        """Run a targeted sync for a watcher event.

        Ignored unless auto sync is on and the status is idle.

        Returns:
            True if the event was handled
        """
        if not self.auto_sync:
            return False
        with self._lock:
            if self._status.kind != SyncStatusKind.IDLE:
                logger.debug(f"Not idle, ignoring {event.kind.value} of {event.path}")
                return False
        if not self._begin_run(allow_paused=False):
            return False

        try:
            self.engine.sync_file(self.sync_folder, event)
        except (ImegaAPIError, SyncError, OSError) as e:
            message = user_message(e)
            logger.error(f"Sync of {event.path} failed: {e}")
            self.activity.add(ActivityKind.ERROR, Path(event.path).name, message)
            self._set_status(SyncStatus.error(message))
            return False
        except Exception as e:
            message = user_message(e)
            logger.exception(f"Unexpected error syncing {event.path}")
            self.activity.add(ActivityKind.ERROR, Path(event.path).name, message)
            self._set_status(SyncStatus.error(message))
            return False

        self._set_status(self._resting_status())
        return True

    # =========================
    # Controls
    # =========================

    def pause(self) -> None:
        """Stop the timer and drop pending watcher events.

        An in-flight run is not interrupted; the status becomes paused when
        it finishes.
        """
        with self._lock:
            self._paused = True
            self._stop_timer()
            syncing = self._status.kind == SyncStatusKind.SYNCING
        self.watcher.clear_pending()
        if not syncing:
            self._set_status(self._resting_status())

    def resume(self) -> None:
        with self._lock:
            self._paused = False
            syncing = self._status.kind == SyncStatusKind.SYNCING
            if self.auto_sync and self._running:
                self._start_timer()
        if not syncing:
            self._set_status(self._resting_status())

    def set_offline(self, offline: bool) -> None:
        """Mark the network as unavailable; triggers are ignored while offline."""
        with self._lock:
            self._offline = offline
            syncing = self._status.kind == SyncStatusKind.SYNCING
        if not syncing:
            self._set_status(self._resting_status())

    def cancel(self) -> None:
        """Ask the in-flight run to stop before its next file."""
        self._cancel_event.set()
