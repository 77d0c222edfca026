"""Directory tree snapshots."""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .constants import ROOT_NODE_NAME
from .context import WorkspaceContext
from .core import DirNode, FileLeaf
from .errors import InvalidInputError, NotFoundError, OutsideWorkspaceError

logger = logging.getLogger(__name__)

# (name, real path, traverse) for directories; name for files
_Listing = Tuple[List[Tuple[str, Path, bool]], List[str]]


def join_virtual(parent: str, name: str) -> str:
    """Join a child name onto a virtual directory path."""
    return f"/{name}" if parent == "/" else f"{parent}/{name}"


class TreeSnapshot:
    """
    Ordered, filtered directory tree of the workspace.

    Built fresh on every call; nothing is cached between requests. Sibling
    directories of one level are listed concurrently, but the result is
    assembled in a fixed order (directories first, then files, each sorted
    by name) so two snapshots of an unchanged tree compare equal.
    """

    def __init__(self, ctx: WorkspaceContext, max_workers: int = 8):
        self.ctx = ctx
        self.max_workers = max_workers

    def build(self, virtual_path: str = "/") -> Union[DirNode, FileLeaf]:
        """Build the tree rooted at ``virtual_path``.

        Raises:
            OutsideWorkspaceError: If the path escapes the sandbox
            NotFoundError: If nothing exists at the path
        """
        vpath = self.ctx.sandbox.normalize(virtual_path)
        real = self.ctx.resolve(vpath)
        if not real.exists():
            raise NotFoundError(vpath)

        if vpath == "/":
            name = real.name or ROOT_NODE_NAME
        else:
            name = vpath.rsplit("/", 1)[-1]

        if not real.is_dir():
            return FileLeaf(name=name, path=vpath)
        if vpath != "/" and self.ctx.should_ignore(vpath, is_dir=True):
            raise InvalidInputError(f"Directory is excluded: {vpath}")

        root_node = DirNode(name=name, path=vpath)
        frontier: List[Tuple[DirNode, Path]] = [(root_node, real)]

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while frontier:
                listings = list(pool.map(lambda item: self._list_dir(item[1], item[0].path), frontier))
                next_frontier = []
                for (node, _), listing in zip(frontier, listings):
                    if listing is None:
                        continue
                    dirs, files = listing
                    for child_name, child_real, traverse in dirs:
                        child = DirNode(name=child_name, path=join_virtual(node.path, child_name))
                        node.children.append(child)
                        if traverse:
                            next_frontier.append((child, child_real))
                    for child_name in files:
                        node.children.append(
                            FileLeaf(name=child_name, path=join_virtual(node.path, child_name))
                        )
                frontier = next_frontier

        return root_node

    def _list_dir(self, real_dir: Path, vpath: str) -> Optional[_Listing]:
        """List one directory; None (with a warning) when it cannot be read."""
        try:
            with os.scandir(real_dir) as it:
                entries = list(it)
        except OSError as e:
            logger.warning("Skipping unreadable directory %s: %s", vpath, e)
            return None

        ignore = self.ctx.get_ignore_spec()
        dirs: List[Tuple[str, Path, bool]] = []
        files: List[str] = []
        for entry in entries:
            child_vpath = join_virtual(vpath, entry.name)
            rel = child_vpath.lstrip("/")
            try:
                is_link = entry.is_symlink()
                is_dir = entry.is_dir()
                is_file = entry.is_file()
            except OSError:
                continue

            if is_link:
                # Links are shown only when their target stays inside the workspace
                try:
                    self.ctx.resolve(child_vpath)
                except OutsideWorkspaceError:
                    logger.debug("Skipping symlink leaving the workspace: %s", child_vpath)
                    continue

            if is_dir:
                if ignore.is_ignored(rel, is_dir=True):
                    continue
                # Linked directories are listed but not descended into (cycles)
                dirs.append((entry.name, Path(entry.path), not is_link))
            elif is_file:
                if ignore.is_ignored(rel):
                    continue
                files.append(entry.name)

        dirs.sort(key=lambda d: d[0])
        files.sort()
        return dirs, files


def list_files(node: Union[DirNode, FileLeaf]) -> List[str]:
    """Flatten a snapshot into the ordered list of file virtual paths."""
    if isinstance(node, FileLeaf):
        return [node.path]
    return [leaf.path for leaf in node.iter_files()]
