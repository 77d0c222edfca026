"""Gitignore-style exclusion rules for workspace-sync."""

from pathlib import Path
from typing import Iterable

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern

from .constants import DEFAULT_EXCLUDE_DIRS, IGNORE_FILE


class IgnoreSpec:
    """Decides which workspace paths are hidden from tree, search and watcher."""

    def __init__(
        self,
        root: Path,
        exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS,
        extra: Iterable[str] = (),
    ):
        """Initialize ignore spec with excluded directory names and custom patterns.

        Args:
            root: Workspace root directory
            exclude_dirs: Directory names skipped at any depth
            extra: Additional gitignore-style patterns
        """
        self.root = root
        self.exclude_dirs = frozenset(exclude_dirs)
        patterns = []

        # Load workspace-specific .workspaceignore if it exists
        ignore_file = root / IGNORE_FILE
        if ignore_file.is_file():
            for line in ignore_file.read_text(errors="replace").splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    patterns.append(line)

        patterns.extend(extra)
        self.patterns = patterns
        self.spec = PathSpec.from_lines(GitWildMatchPattern, patterns)

    def is_ignored(self, relpath: str, is_dir: bool = False) -> bool:
        """Check if a workspace-relative POSIX path should be hidden.

        A path is hidden when any of its directory components is an excluded
        name, or when it matches a pattern from ``.workspaceignore``.

        Args:
            relpath: Workspace-relative path in POSIX format (no leading slash)
            is_dir: Whether the path names a directory

        Returns:
            True if the path is excluded
        """
        relpath = relpath.strip("/")
        if not relpath:
            return False

        parts = relpath.split("/")
        # The last component only counts as a directory name when it is one,
        # except that anything *inside* an excluded directory is excluded.
        dir_parts = parts if is_dir else parts[:-1]
        if any(part in self.exclude_dirs for part in dir_parts):
            return True

        if not self.patterns:
            return False
        if is_dir:
            return self.spec.match_file(relpath + "/")
        return self.spec.match_file(relpath)

    def should_traverse(self, dirpath: str) -> bool:
        """Check if a directory should be listed and recursed into."""
        return not self.is_ignored(dirpath, is_dir=True)
