"""High-level service layer for workspace operations."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .bus import ChangeBus
from .context import WorkspaceContext
from .core import (
    DirNode,
    FileLeaf,
    FileVersions,
    FsFileChanged,
    FsTreeInvalidated,
    Hunk,
    RepoStateInvalidated,
    RepoStatus,
    RepoSummary,
    SearchEngine,
    SearchResult,
)
from .locks import PathLocks
from .ops import read_file, write_file
from .repository import RepoStateAdapter
from .search import AUTO, SearchService
from .service_types import (
    CommitResult,
    DiscardAllResult,
    HunkActionResult,
    OkResult,
    WriteResult,
)
from .snapshot import TreeSnapshot, list_files
from .watcher import WorkspaceWatcher

logger = logging.getLogger(__name__)


@dataclass
class WorkspaceDeps:
    """Dependency injection container for testability."""
    ctx: WorkspaceContext
    locks: PathLocks
    adapter: RepoStateAdapter
    bus: ChangeBus
    search: SearchService
    watcher: Optional[WorkspaceWatcher] = None


class WorkspaceService:
    """One served workspace: tree, files, repository state, search and events.

    Every mutation goes through this class so that the matching change event
    is published on the bus. Reads take no locks.

    Lifecycle:
        ``start()`` begins watching the filesystem, ``stop()`` ends it and
        detaches all subscribers. The service is also a context manager.
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        deps: Optional[WorkspaceDeps] = None,
    ):
        """Initialize with a workspace root OR deps.

        Args:
            root: Workspace directory ($WORKSPACE_DIR or cwd when omitted)
            deps: Full dependency injection (for testing)
        """
        if deps is None:
            ctx = WorkspaceContext(root)
            locks = PathLocks(ctx.root)
            bus = ChangeBus(ctx.config.subscriber_buffer)
            deps = WorkspaceDeps(
                ctx=ctx,
                locks=locks,
                adapter=RepoStateAdapter(ctx, locks=locks),
                bus=bus,
                search=SearchService(ctx),
            )
        if deps.watcher is None:
            deps.watcher = WorkspaceWatcher(deps.ctx, deps.bus)
        self.deps = deps

    @property
    def ctx(self) -> WorkspaceContext:
        return self.deps.ctx

    @property
    def bus(self) -> ChangeBus:
        return self.deps.bus

    @property
    def adapter(self) -> RepoStateAdapter:
        return self.deps.adapter

    # === Lifecycle ===

    def start(self) -> None:
        """Start watching the workspace."""
        self.deps.watcher.start()

    def stop(self) -> None:
        """Stop watching and detach every subscriber."""
        self.deps.watcher.stop()
        self.deps.bus.close()

    def __enter__(self) -> "WorkspaceService":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    # === Tree and files ===

    def tree(self, virtual_path: str = "/") -> Union[DirNode, FileLeaf]:
        """Fresh snapshot of the (filtered) workspace tree."""
        return TreeSnapshot(self.ctx).build(virtual_path)

    def files(self) -> List[str]:
        """Every non-excluded file as a flat, ordered list of virtual paths."""
        return list_files(self.tree())

    def read_file(self, virtual_path: str) -> str:
        return read_file(self.ctx, virtual_path)

    def write_file(self, virtual_path: str, content: str) -> WriteResult:
        """Write a file and publish its change right away.

        The watcher will usually echo the same change after its debounce
        window; clients treat the duplicate as a no-op refetch.
        """
        result = write_file(self.ctx, self.deps.locks, virtual_path, content)
        self.bus.publish(FsFileChanged(path=result.path))
        if result.created:
            self.bus.publish(FsTreeInvalidated())
        return result

    # === Search ===

    def search(
        self,
        query: str,
        globs: Union[None, str, Sequence[str]] = None,
        max_results: Optional[int] = None,
        engine: Union[str, SearchEngine] = AUTO,
    ) -> SearchResult:
        return self.deps.search.search(query, globs=globs, max_results=max_results, engine=engine)

    # === Repository queries ===

    def status(self) -> RepoStatus:
        return self.adapter.status()

    def summary(self) -> RepoSummary:
        return self.adapter.summary()

    def versions(self, virtual_path: str) -> FileVersions:
        return self.adapter.versions(virtual_path)

    def hunks(self, virtual_path: str, staged: bool = False) -> List[Hunk]:
        return self.adapter.hunks(virtual_path, staged=staged)

    # === Repository mutations ===

    def _repo_changed(self, tree_changed: bool = False, path: Optional[str] = None) -> None:
        self.bus.publish(RepoStateInvalidated())
        if path is not None:
            self.bus.publish(FsFileChanged(path=path))
        if tree_changed:
            self.bus.publish(FsTreeInvalidated())

    def stage(self, virtual_path: str) -> OkResult:
        vpath = self.ctx.sandbox.normalize(virtual_path)
        self.adapter.stage(vpath)
        self._repo_changed()
        return OkResult(path=vpath)

    def unstage(self, virtual_path: str) -> OkResult:
        vpath = self.ctx.sandbox.normalize(virtual_path)
        self.adapter.unstage(vpath)
        self._repo_changed()
        return OkResult(path=vpath)

    def discard(self, virtual_path: str) -> OkResult:
        """Throw away working-tree changes of one path."""
        vpath = self.ctx.sandbox.normalize(virtual_path)
        existed_before = self.ctx.resolve(vpath).exists()
        self.adapter.discard(vpath)
        exists_now = self.ctx.resolve(vpath).exists()
        self._repo_changed(tree_changed=existed_before != exists_now, path=vpath)
        return OkResult(path=vpath)

    def stage_all(self) -> OkResult:
        self.adapter.stage_all()
        self._repo_changed()
        return OkResult()

    def unstage_all(self) -> OkResult:
        self.adapter.unstage_all()
        self._repo_changed()
        return OkResult()

    def discard_all(self) -> DiscardAllResult:
        """Restore every tracked path and delete every path HEAD lacks."""
        paths = self.adapter.discard_all()
        logger.warning("Discarded changes to %d path(s)", len(paths))
        self._repo_changed(tree_changed=bool(paths))
        return DiscardAllResult(paths=paths)

    def stage_hunk(self, virtual_path: str, index: int, digest: Optional[str] = None) -> HunkActionResult:
        hunk = self.adapter.stage_hunk(virtual_path, index, digest)
        self._repo_changed()
        return self._hunk_result(virtual_path, hunk)

    def unstage_hunk(self, virtual_path: str, index: int, digest: Optional[str] = None) -> HunkActionResult:
        hunk = self.adapter.unstage_hunk(virtual_path, index, digest)
        self._repo_changed()
        return self._hunk_result(virtual_path, hunk)

    def discard_hunk(self, virtual_path: str, index: int, digest: Optional[str] = None) -> HunkActionResult:
        vpath = self.ctx.sandbox.normalize(virtual_path)
        hunk = self.adapter.discard_hunk(vpath, index, digest)
        self._repo_changed(path=vpath)
        return self._hunk_result(vpath, hunk)

    def _hunk_result(self, virtual_path: str, hunk: Hunk) -> HunkActionResult:
        return HunkActionResult(
            path=self.ctx.sandbox.normalize(virtual_path),
            index=hunk.index,
            digest=hunk.digest,
        )

    def commit(self, message: str) -> CommitResult:
        commit_id = self.adapter.commit(message)
        self._repo_changed()
        return CommitResult(commit=commit_id)
