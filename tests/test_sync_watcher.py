"""Tests for the debounced change watcher."""

import os
import threading
import time

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)
from watchdog.observers.polling import PollingObserver

from imegasync.sync import ChangeWatcher, FileEvent, FileEventKind


class FakeObserver:
    """Observer double that lets tests inject raw events."""

    def __init__(self):
        self.handler = None
        self.path = None
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler
        self.path = path

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass

    def emit(self, event):
        self.handler.dispatch(event)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class Collector:
    """Collects dispatched events and lets tests wait for the consumer."""

    def __init__(self):
        self.events: list[FileEvent] = []
        self._cond = threading.Condition()

    def __call__(self, event):
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()

    def wait_for(self, count, timeout=5.0):
        deadline = time.monotonic() + timeout
        with self._cond:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
        return self.events


def drain(watcher):
    """Wait until the consumer has processed every queued event."""
    deadline = time.monotonic() + 5.0
    while not watcher._events.empty() and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.05)


@pytest.fixture
def observer():
    return FakeObserver()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def watcher(observer, clock):
    w = ChangeWatcher(debounce_interval=0.5, observer_factory=lambda: observer, clock=clock)
    yield w
    w.stop()


@pytest.fixture
def watched(tmp_path):
    root = tmp_path / "watched"
    root.mkdir()
    return root.resolve()


class TestLifecycle:
    def test_start_schedules_observer(self, watcher, observer, watched, collector):
        watcher.start(watched, collector)

        assert watcher.is_running
        assert observer.started
        assert observer.path == str(watched)
        assert watcher.root == watched

    def test_stop(self, watcher, observer, watched, collector):
        watcher.start(watched, collector)
        watcher.stop()

        assert not watcher.is_running
        assert observer.stopped

    def test_stop_when_not_running(self, watcher):
        watcher.stop()
        assert not watcher.is_running

    def test_start_requires_directory(self, watcher, tmp_path, collector):
        with pytest.raises(ValueError, match="must be a directory"):
            watcher.start(tmp_path / "missing", collector)


class TestFiltering:
    def test_created_file_is_dispatched(self, watcher, observer, watched, collector):
        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, collector)

        observer.emit(FileCreatedEvent(str(path)))

        events = collector.wait_for(1)
        assert events == [FileEvent(str(path), FileEventKind.CREATED)]

    def test_hidden_file_is_dropped(self, watcher, observer, watched, collector):
        path = watched / ".DS_Store"
        path.write_bytes(b"\x00")
        watcher.start(watched, collector)

        observer.emit(FileCreatedEvent(str(path)))
        drain(watcher)

        assert collector.events == []

    def test_file_in_hidden_directory_is_dropped(
        self, watcher, observer, watched, collector
    ):
        (watched / ".git").mkdir()
        path = watched / ".git" / "index"
        path.write_text("x")
        watcher.start(watched, collector)

        observer.emit(FileModifiedEvent(str(path)))
        drain(watcher)

        assert collector.events == []

    def test_hidden_parent_of_root_does_not_matter(
        self, observer, clock, tmp_path, collector
    ):
        root = tmp_path / ".config" / "sync"
        root.mkdir(parents=True)
        path = root / "a.txt"
        path.write_text("a")
        w = ChangeWatcher(observer_factory=lambda: observer, clock=clock)
        w.start(root, collector)
        try:
            observer.emit(FileCreatedEvent(str(path.resolve())))
            assert len(collector.wait_for(1)) == 1
        finally:
            w.stop()

    def test_directory_event_is_dropped(self, watcher, observer, watched, collector):
        (watched / "sub").mkdir()
        watcher.start(watched, collector)

        observer.emit(DirCreatedEvent(str(watched / "sub")))
        drain(watcher)

        assert collector.events == []

    def test_closed_event_is_dropped(self, watcher, observer, watched, collector):
        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, collector)

        observer.emit(FileClosedEvent(str(path)))
        drain(watcher)

        assert collector.events == []

    def test_missing_file_is_dropped(self, watcher, observer, watched, collector):
        watcher.start(watched, collector)

        observer.emit(FileModifiedEvent(str(watched / "gone.txt")))
        drain(watcher)

        assert collector.events == []

    def test_deleted_file_is_dispatched(self, watcher, observer, watched, collector):
        watcher.start(watched, collector)

        observer.emit(FileDeletedEvent(str(watched / "gone.txt")))

        events = collector.wait_for(1)
        assert events[0].kind == FileEventKind.DELETED

    def test_move_becomes_rename(self, watcher, observer, watched, collector):
        new = watched / "new.txt"
        new.write_text("n")
        watcher.start(watched, collector)

        observer.emit(FileMovedEvent(str(watched / "old.txt"), str(new)))

        events = collector.wait_for(1)
        assert events == [
            FileEvent(str(new), FileEventKind.RENAMED, src_path=str(watched / "old.txt"))
        ]

    def test_temporary_file_renamed_into_place(
        self, watcher, observer, watched, collector
    ):
        target = watched / "doc.txt"
        target.write_text("d")
        watcher.start(watched, collector)

        observer.emit(FileMovedEvent(str(watched / ".doc.txt.swp"), str(target)))

        events = collector.wait_for(1)
        assert events == [FileEvent(str(target), FileEventKind.CREATED)]

    def test_move_out_of_sight_is_delete(self, watcher, observer, watched, collector):
        watcher.start(watched, collector)

        observer.emit(
            FileMovedEvent(str(watched / "doc.txt"), str(watched / ".trash" / "doc.txt"))
        )

        events = collector.wait_for(1)
        assert events == [FileEvent(str(watched / "doc.txt"), FileEventKind.DELETED)]


class TestDebounce:
    def test_burst_yields_single_event(self, watcher, observer, clock, watched, collector):
        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, collector)

        for _ in range(10):
            observer.emit(FileModifiedEvent(str(path)))
            clock.now += 0.01
        drain(watcher)

        assert len(collector.events) == 1

    def test_event_after_window_is_dispatched(
        self, watcher, observer, clock, watched, collector
    ):
        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, collector)

        observer.emit(FileModifiedEvent(str(path)))
        collector.wait_for(1)
        clock.now += 0.6
        observer.emit(FileModifiedEvent(str(path)))

        assert len(collector.wait_for(2)) == 2

    def test_dropped_event_does_not_open_window(
        self, watcher, observer, clock, watched, collector
    ):
        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, collector)

        observer.emit(FileCreatedEvent(str(watched / ".hidden")))
        observer.emit(FileModifiedEvent(str(path)))

        assert len(collector.wait_for(1)) == 1

    def test_events_are_dispatched_in_order(self, observer, clock, watched, collector):
        names = ["one.txt", "two.txt", "three.txt"]
        for name in names:
            (watched / name).write_text(name)
        watcher = ChangeWatcher(
            debounce_interval=0, observer_factory=lambda: observer, clock=clock
        )
        watcher.start(watched, collector)

        for name in names:
            observer.emit(FileCreatedEvent(str(watched / name)))

        events = collector.wait_for(3)
        watcher.stop()
        assert [os.path.basename(e.path) for e in events] == names


class TestConsumer:
    def test_callback_exception_does_not_kill_consumer(
        self, watcher, observer, clock, watched
    ):
        seen = Collector()

        def callback(event):
            seen(event)
            if len(seen.events) == 1:
                raise RuntimeError("boom")

        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, callback)

        observer.emit(FileModifiedEvent(str(path)))
        seen.wait_for(1)
        clock.now += 1.0
        observer.emit(FileModifiedEvent(str(path)))

        assert len(seen.wait_for(2)) == 2

    def test_clear_pending_drops_queued_events(self, watcher, observer, clock, watched):
        gate = threading.Event()
        seen = Collector()

        def slow(event):
            gate.wait(5.0)
            seen(event)

        path = watched / "a.txt"
        path.write_text("a")
        watcher.start(watched, slow)

        observer.emit(FileModifiedEvent(str(path)))
        time.sleep(0.1)
        clock.now += 1.0
        for _ in range(5):
            observer.emit(FileModifiedEvent(str(path)))
        watcher.clear_pending()
        gate.set()
        drain(watcher)

        assert len(seen.events) == 1


def test_polling_observer_end_to_end(tmp_path):
    """Real observer: a created file produces a created event."""
    root = (tmp_path / "live").resolve()
    root.mkdir()
    collector = Collector()
    watcher = ChangeWatcher(
        debounce_interval=0.5,
        observer_factory=lambda: PollingObserver(timeout=0.1),
    )
    watcher.start(root, collector)
    try:
        time.sleep(0.3)
        (root / "hello.txt").write_text("hi")
        (root / ".hidden").write_text("h")
        events = collector.wait_for(1, timeout=5.0)
    finally:
        watcher.stop()

    assert events
    assert events[0].path == str(root / "hello.txt")
    assert events[0].kind in (FileEventKind.CREATED, FileEventKind.MODIFIED)
    assert all(not os.path.basename(e.path).startswith(".") for e in events)
