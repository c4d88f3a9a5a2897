"""Debounced file system watcher for the sync folder.

The watchdog observer thread only enqueues raw events. A single consumer
thread filters, debounces and dispatches them, so the callback is never
invoked concurrently and events are delivered in arrival order.
"""

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from ..utils import DEFAULT_DEBOUNCE_INTERVAL, is_hidden_path

logger = logging.getLogger(__name__)


class FileEventKind(str, Enum):
    """Kind of change reported for a file."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass(frozen=True)
class FileEvent:
    """A filtered change of one regular file below the watched root."""

    path: str
    kind: FileEventKind
    src_path: Optional[str] = None
    """Previous path (RENAMED only)"""


_EVENT_KINDS = {
    EVENT_TYPE_CREATED: FileEventKind.CREATED,
    EVENT_TYPE_MODIFIED: FileEventKind.MODIFIED,
    EVENT_TYPE_DELETED: FileEventKind.DELETED,
    EVENT_TYPE_MOVED: FileEventKind.RENAMED,
}

_STOP = object()


def _decode(path: Union[str, bytes]) -> str:
    return os.fsdecode(path)


class _QueueingHandler(FileSystemEventHandler):
    """Hands raw watchdog events to the consumer thread."""

    def __init__(self, events: "queue.Queue[Any]"):
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._events.put(event)


class ChangeWatcher:
    """Watches a directory tree and reports debounced file events.

    Debouncing is leading-edge: the first accepted event is dispatched
    immediately and opens a window of ``debounce_interval`` seconds during
    which further events are dropped. Changes lost this way are picked up by
    the next full sync.

    Examples:
        >>> watcher = ChangeWatcher()
        >>> watcher.start(Path("~/Documents/CloudImega"), print)
        >>> watcher.stop()
    """

    def __init__(
        self,
        debounce_interval: float = DEFAULT_DEBOUNCE_INTERVAL,
        observer_factory: Callable[[], Any] = Observer,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the watcher.

        Args:
            debounce_interval: Debounce window in seconds
            observer_factory: Creates the watchdog observer (e.g.
                PollingObserver for file systems without native events)
            clock: Monotonic time source used for debouncing
        """
        self.debounce_interval = debounce_interval
        self._observer_factory = observer_factory
        self._clock = clock

        self._root: Optional[Path] = None
        self._on_event: Optional[Callable[[FileEvent], None]] = None
        self._events: "queue.Queue[Any]" = queue.Queue()
        self._observer: Optional[Any] = None
        self._consumer: Optional[threading.Thread] = None
        self._last_dispatch: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    @property
    def root(self) -> Optional[Path]:
        return self._root

    def start(self, path: Union[str, Path], on_event: Callable[[FileEvent], None]) -> None:
        """Start watching a directory recursively.

        A running watcher is stopped first.

        Args:
            path: Directory to watch
            on_event: Called on the consumer thread for each dispatched event

        Raises:
            ValueError: If path is not a directory
        """
        root = Path(path).expanduser().resolve()
        if not root.is_dir():
            raise ValueError(f"Watch path must be a directory: {path}")

        self.stop()
        with self._lock:
            self._root = root
            self._on_event = on_event
            self._events = queue.Queue()
            self._last_dispatch = None

            observer = self._observer_factory()
            observer.schedule(_QueueingHandler(self._events), str(root), recursive=True)
            observer.start()
            self._observer = observer

            self._consumer = threading.Thread(
                target=self._consume,
                args=(self._events,),
                name="imegasync-watcher",
                daemon=True,
            )
            self._consumer.start()
        logger.debug(f"Watching {root}")

    def stop(self) -> None:
        """Stop watching; pending events are discarded."""
        with self._lock:
            observer, consumer = self._observer, self._consumer
            self._observer = None
            self._consumer = None
        if observer is None:
            return

        observer.stop()
        observer.join(timeout=5.0)
        self.clear_pending()
        self._events.put(_STOP)
        if consumer is not None and consumer is not threading.current_thread():
            consumer.join(timeout=5.0)
        logger.debug(f"Stopped watching {self._root}")

    def clear_pending(self) -> None:
        """Drop events that were received but not yet dispatched."""
        dropped = 0
        stop_requested = False
        while True:
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                stop_requested = True
            else:
                dropped += 1
        if stop_requested:
            self._events.put(_STOP)
        if dropped:
            logger.debug(f"Dropped {dropped} pending file event(s)")

    def __enter__(self) -> "ChangeWatcher":
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()

    def _consume(self, events: "queue.Queue[Any]") -> None:
        while True:
            item = events.get()
            if item is _STOP:
                return
            event = self._translate(item)
            if event is None:
                continue
            callback = self._on_event
            if callback is None:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(f"Error handling file event for {event.path}")

    def _translate(self, raw: FileSystemEvent) -> Optional[FileEvent]:
        """Filter and debounce one raw event.

        Returns:
            The event to dispatch, or None if it is dropped
        """
        if raw.is_directory:
            return None
        kind = _EVENT_KINDS.get(raw.event_type)
        if kind is None:
            # opened / closed notifications
            return None

        path = _decode(raw.src_path)
        src_path: Optional[str] = None
        if kind == FileEventKind.RENAMED:
            src_path, path = path, _decode(raw.dest_path)
            src_hidden = self._is_hidden(src_path)
            dest_hidden = self._is_hidden(path)
            if src_hidden and dest_hidden:
                return None
            if dest_hidden:
                # Moved out of sight
                kind, path, src_path = FileEventKind.DELETED, src_path, None
            elif src_hidden:
                # Temporary file renamed into place
                kind, src_path = FileEventKind.CREATED, None
        elif self._is_hidden(path):
            return None

        now = self._clock()
        if (
            self._last_dispatch is not None
            and now - self._last_dispatch < self.debounce_interval
        ):
            logger.debug(f"Debounced {kind.value} event for {path}")
            return None

        if kind != FileEventKind.DELETED and not os.path.isfile(path):
            return None

        self._last_dispatch = now
        return FileEvent(path=path, kind=kind, src_path=src_path)

    def _is_hidden(self, path: str) -> bool:
        return is_hidden_path(path, root=self._root)
