"""Workspace file watching using watchdog.

Architecture
------------
- A watchdog ``Observer`` watches the workspace root recursively.
- Raw events are filtered through the workspace exclusion rules and mapped
  to virtual paths.
- A per-key debouncer coalesces bursts: file modifications are keyed by
  their virtual path, structural changes (create, delete, move, for files
  and directories alike) share a single tree key.
- When a key has been quiet for the debounce window, one ChangeEvent is
  published on the bus: ``fs:change`` with the path for modifications,
  a coarse ``fs:tree`` for structural changes.
- Temp files of atomic writes are silent; renaming one over its target
  counts as a modification of the target.
"""

import logging
import os
import threading
from typing import Callable, Dict, Hashable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .bus import ChangeBus, Event
from .context import WorkspaceContext
from .core import FsFileChanged, FsTreeInvalidated
from .errors import OutsideWorkspaceError
from .utils import is_atomic_temp

logger = logging.getLogger(__name__)

_TREE_KEY = ("tree",)


class Debouncer:
    """Fire a callback once per key after ``delay`` seconds without new triggers."""

    def __init__(self, delay: float, callback: Callable[[Event], None]):
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._timers: Dict[Hashable, threading.Timer] = {}
        self._pending: Dict[Hashable, Event] = {}

    def trigger(self, key: Hashable, event: Event) -> None:
        """Record an event for ``key``; restarts that key's timer."""
        with self._lock:
            timer = self._timers.get(key)
            if timer is not None:
                timer.cancel()
            self._pending[key] = event
            timer = threading.Timer(self._delay, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _fire(self, key: Hashable) -> None:
        with self._lock:
            self._timers.pop(key, None)
            event = self._pending.pop(key, None)
        if event is None:
            return

        # Invoke outside the lock.
        try:
            self._callback(event)
        except Exception:
            logger.exception("Error publishing debounced change event")

    def flush(self) -> None:
        """Fire every pending key immediately."""
        with self._lock:
            keys = list(self._timers)
            for key in keys:
                self._timers[key].cancel()
        for key in keys:
            self._fire(key)

    def cancel(self) -> None:
        """Drop every pending event."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._pending.clear()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)


class _EventHandler(FileSystemEventHandler):
    """Watchdog handler that feeds events into the watcher."""

    def __init__(self, watcher: "WorkspaceWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        self._watcher.structural(event.src_path, event.is_directory)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._watcher.structural(event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._watcher.is_atomic_save(event.src_path):
            # Temp file renamed over its target: a content change of the target
            self._watcher.changed(event.dest_path)
            return
        self._watcher.structural(event.src_path, event.is_directory)
        self._watcher.structural(event.dest_path, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory mtimes change whenever children do; the child events cover it
        if not event.is_directory:
            self._watcher.changed(event.src_path)


class WorkspaceWatcher:
    """Watch the workspace and publish debounced change events on the bus.

    Lifecycle:
        1. ``WorkspaceWatcher(ctx, bus)``
        2. ``start()`` - schedules the recursive watch
        3. Filesystem events arrive -> filtered -> debounced -> published
        4. ``stop()`` - tears down the observer and drops pending events
    """

    def __init__(
        self,
        ctx: WorkspaceContext,
        bus: ChangeBus,
        debounce: Optional[float] = None,
    ):
        self.ctx = ctx
        self.bus = bus
        delay = ctx.config.debounce_seconds if debounce is None else debounce
        self.debouncer = Debouncer(delay, bus.publish)
        self.handler = _EventHandler(self)
        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """Begin watching (idempotent)."""
        with self._lock:
            if self._observer is not None:
                return
            observer = Observer()
            observer.schedule(self.handler, str(self.ctx.root), recursive=True)
            observer.daemon = True
            observer.start()
            self._observer = observer
        logger.info("Watching %s", self.ctx.root)

    def stop(self) -> None:
        """Stop watching and discard events still inside their debounce window."""
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
        self.debouncer.cancel()

    def _virtual(self, raw_path, is_dir: bool) -> Optional[str]:
        """Virtual path for a watched location, or None when it must stay silent."""
        try:
            vpath = self.ctx.to_virtual(os.fsdecode(raw_path))
        except OutsideWorkspaceError:
            return None
        if vpath == "/" or self.ctx.should_ignore(vpath, is_dir=is_dir):
            return None
        if not is_dir and self.is_atomic_save(raw_path):
            return None
        return vpath

    def is_atomic_save(self, raw_path) -> bool:
        """True for the temp file of an in-progress atomic write."""
        return is_atomic_temp(os.path.basename(os.fsdecode(raw_path)))

    def changed(self, raw_path) -> None:
        """A file's content changed."""
        vpath = self._virtual(raw_path, is_dir=False)
        if vpath is None:
            return
        self.debouncer.trigger(("change", vpath), FsFileChanged(path=vpath))

    def structural(self, raw_path, is_dir: bool) -> None:
        """A file or directory appeared, disappeared or moved."""
        if self._virtual(raw_path, is_dir=is_dir) is None:
            return
        self.debouncer.trigger(_TREE_KEY, FsTreeInvalidated())
