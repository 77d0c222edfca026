"""Per-path and repository-wide locking for write-class operations.

- Writes to the same virtual path are serialized; different paths run
  concurrently.
- Every git index mutation also holds the repository lock, because git
  rejects concurrent index writers. The repository lock combines a
  process-local ``RLock`` with a portalocker file lock so several engine
  processes serving the same workspace also take turns.
- Lock files live in the user cache directory and persist; the OS releases
  the underlying lock when a process dies.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional

import platformdirs
import portalocker

logger = logging.getLogger(__name__)


def _default_lock_dir() -> Path:
    return Path(platformdirs.user_cache_dir("workspace-sync", "workspace-sync")) / "locks"


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class PathLocks:
    """Lock table keyed by virtual path, plus one repository lock."""

    def __init__(self, root: Path, lock_dir: Optional[Path] = None, timeout: float = 60.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._repo_lock = threading.RLock()
        self._repo_depth = 0

        key = hashlib.sha256(str(root).encode("utf-8")).hexdigest()[:16]
        self.lock_path = (lock_dir or _default_lock_dir()) / f"{key}.lock"

    @contextlib.contextmanager
    def path(self, virtual_path: str) -> Iterator[None]:
        """Hold the lock for one virtual path."""
        with self._guard:
            entry = self._entries.get(virtual_path)
            if entry is None:
                entry = self._entries[virtual_path] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[virtual_path]

    @contextlib.contextmanager
    def repository(self) -> Iterator[None]:
        """Hold the repository lock (re-entrant within a thread)."""
        with self._repo_lock:
            self._repo_depth += 1
            try:
                if self._repo_depth == 1:
                    self.lock_path.parent.mkdir(parents=True, exist_ok=True)
                    with portalocker.Lock(str(self.lock_path), "w", timeout=self.timeout):
                        logger.debug("Acquired repository lock %s", self.lock_path)
                        yield
                else:
                    yield
            finally:
                self._repo_depth -= 1

    def active_paths(self) -> int:
        """Number of paths currently locked or waited on."""
        with self._guard:
            return len(self._entries)
