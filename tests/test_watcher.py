"""Tests for the debounced workspace watcher."""

import queue
import threading
import time

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from workspace_sync.bus import ChangeBus
from workspace_sync.core import FsFileChanged, FsTreeInvalidated
from workspace_sync.watcher import Debouncer, WorkspaceWatcher

DEBOUNCE = 0.05


class TestDebouncer:
    """Per-key coalescing."""

    def test_burst_fires_once_with_last_event(self):
        fired = []
        done = threading.Event()

        def callback(event):
            fired.append(event)
            done.set()

        debouncer = Debouncer(DEBOUNCE, callback)
        for i in range(5):
            debouncer.trigger("k", i)
        assert done.wait(2)
        time.sleep(DEBOUNCE * 3)
        assert fired == [4]
        assert debouncer.pending == 0

    def test_keys_are_independent(self):
        fired = []
        debouncer = Debouncer(10, fired.append)
        debouncer.trigger("a", "A")
        debouncer.trigger("b", "B")
        assert debouncer.pending == 2
        debouncer.flush()
        assert sorted(fired) == ["A", "B"]

    def test_cancel_drops_pending(self):
        fired = []
        debouncer = Debouncer(DEBOUNCE, fired.append)
        debouncer.trigger("a", "A")
        debouncer.cancel()
        time.sleep(DEBOUNCE * 3)
        assert fired == []


@pytest.fixture
def bus():
    return ChangeBus()


@pytest.fixture
def watcher(ctx, bus):
    w = WorkspaceWatcher(ctx, bus, debounce=DEBOUNCE)
    yield w
    w.stop()


class TestEventMapping:
    """Synthetic watchdog events through the handler."""

    def test_one_change_gives_one_event(self, ctx, bus, watcher):
        sub = bus.subscribe()
        path = str(ctx.root / "a.txt")
        watcher.handler.dispatch(FileModifiedEvent(path))

        assert sub.get(timeout=2) == FsFileChanged(path="/a.txt")
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_burst_is_coalesced(self, ctx, bus, watcher):
        sub = bus.subscribe()
        path = str(ctx.root / "src" / "main.py")
        for _ in range(10):
            watcher.handler.dispatch(FileModifiedEvent(path))

        assert sub.get(timeout=2) == FsFileChanged(path="/src/main.py")
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_structural_events_share_tree_key(self, ctx, bus, watcher):
        sub = bus.subscribe()
        watcher.handler.dispatch(FileCreatedEvent(str(ctx.root / "new.txt")))
        watcher.handler.dispatch(DirCreatedEvent(str(ctx.root / "newdir")))
        watcher.handler.dispatch(FileDeletedEvent(str(ctx.root / "old.txt")))
        watcher.handler.dispatch(FileMovedEvent(str(ctx.root / "x"), str(ctx.root / "y")))

        assert sub.get(timeout=2) == FsTreeInvalidated()
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_atomic_save_is_a_change_of_the_target(self, ctx, bus, watcher):
        sub = bus.subscribe()
        temp = str(ctx.root / ".a.txt.tmp-k3j2")
        watcher.handler.dispatch(FileCreatedEvent(temp))
        watcher.handler.dispatch(FileModifiedEvent(temp))
        watcher.handler.dispatch(FileMovedEvent(temp, str(ctx.root / "a.txt")))

        assert sub.get(timeout=2) == FsFileChanged(path="/a.txt")
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_directory_modified_ignored(self, ctx, bus, watcher):
        sub = bus.subscribe()
        watcher.handler.dispatch(DirModifiedEvent(str(ctx.root / "src")))
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_excluded_paths_are_silent(self, ctx, bus, watcher):
        sub = bus.subscribe()
        watcher.handler.dispatch(FileModifiedEvent(str(ctx.root / "node_modules" / "x.js")))
        watcher.handler.dispatch(FileCreatedEvent(str(ctx.root / ".git" / "index.lock")))
        watcher.handler.dispatch(DirCreatedEvent(str(ctx.root / "a" / "dist")))
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_paths_outside_root_are_silent(self, ctx, bus, watcher, tmp_path):
        sub = bus.subscribe()
        watcher.handler.dispatch(FileModifiedEvent(str(tmp_path / "elsewhere.txt")))
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)

    def test_stop_cancels_pending(self, ctx, bus, watcher):
        sub = bus.subscribe()
        watcher.handler.dispatch(FileModifiedEvent(str(ctx.root / "a.txt")))
        watcher.stop()
        with pytest.raises(queue.Empty):
            sub.get(timeout=DEBOUNCE * 4)


def test_real_filesystem_events(ctx, bus, watcher):
    """A file written after start() shows up on the bus."""
    sub = bus.subscribe()
    watcher.start()
    assert watcher.running
    time.sleep(0.2)
    (ctx.root / "fresh.txt").write_text("x")

    deadline = time.monotonic() + 5
    seen = []
    while time.monotonic() < deadline:
        try:
            seen.append(sub.get(timeout=0.5))
        except queue.Empty:
            if seen:
                break
    assert FsTreeInvalidated() in seen or FsFileChanged(path="/fresh.txt") in seen


def test_service_write_reaches_watchers_as_one_change(make_service, workspace):
    """An API save and its watcher echo both address only the saved file."""
    (workspace / "a.txt").write_text("original")
    service = make_service(workspace, debounce_ms=int(DEBOUNCE * 1000))
    sub = service.bus.subscribe()
    with service:
        time.sleep(0.2)
        service.write_file("/a.txt", "edited")
        time.sleep(1.0)
        seen = sub.drain()

    assert seen
    assert set(seen) == {FsFileChanged(path="/a.txt")}
