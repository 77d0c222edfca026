"""Workspace context for managing the root, configuration and path resolution."""

from pathlib import Path
from typing import Optional, Union

from .config import WorkspaceConfig, load_workspace_config, resolve_workspace_root
from .ignore import IgnoreSpec
from .sandbox import PathSandbox


class WorkspaceContext:
    """Holds the fixed workspace root and everything derived from it.

    The root is resolved once at construction and never changes afterwards.
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        config: Optional[WorkspaceConfig] = None,
    ):
        """Initialize context for a workspace directory.

        Args:
            root: Workspace directory ($WORKSPACE_DIR or cwd when omitted)
            config: Explicit configuration (loaded from the workspace when omitted)
        """
        self._root = resolve_workspace_root(str(root) if root is not None else None)
        self.config = config if config is not None else load_workspace_config(self._root)
        self.sandbox = PathSandbox(self._root)
        self._ignore_spec: Optional[IgnoreSpec] = None

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, virtual_path: str) -> Path:
        """Resolve a virtual path through the sandbox."""
        return self.sandbox.resolve(virtual_path)

    def relative(self, virtual_path: str) -> str:
        """Workspace-relative POSIX path for git pathspecs."""
        return self.sandbox.relative(virtual_path)

    def to_virtual(self, real_path: Union[str, Path]) -> str:
        """Map a real path back to its virtual path."""
        return self.sandbox.to_virtual(real_path)

    def get_ignore_spec(self) -> IgnoreSpec:
        """Get the ignore specification (memoized)."""
        if self._ignore_spec is None:
            self._ignore_spec = IgnoreSpec(
                self._root,
                exclude_dirs=self.config.exclude_dirs,
                extra=self.config.ignore,
            )
        return self._ignore_spec

    def should_ignore(self, virtual_path: str, is_dir: bool = False) -> bool:
        """Check if a virtual path is hidden by the exclusion rules."""
        return self.get_ignore_spec().is_ignored(virtual_path.lstrip("/"), is_dir=is_dir)
