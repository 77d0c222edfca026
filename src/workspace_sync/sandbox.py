"""Path sandbox: the single trust boundary between virtual and real paths.

Clients only ever see VirtualPaths (``/src/main.py``). Everything that turns
one into a real filesystem location goes through :class:`PathSandbox`.

Security:
    ``..`` segments are collapsed lexically first, without touching the
    filesystem; a path that climbs above the root is rejected right there.
    Surviving paths are then resolved (following symlinks) and compared to
    the resolved root segment by segment, so neither a sibling directory
    sharing a name prefix (``/ws`` vs ``/ws-evil``) nor a symlink pointing
    out of the workspace is accepted.
"""

import os
from pathlib import Path, PurePosixPath
from typing import List, Union

from .errors import InvalidInputError, OutsideWorkspaceError


class PathSandbox:
    """Resolve client-supplied virtual paths inside a fixed workspace root."""

    def __init__(self, root: Union[str, Path]):
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def _segments(self, virtual_path: str) -> List[str]:
        """Validate and lexically normalize a virtual path into segments."""
        if not isinstance(virtual_path, str):
            raise InvalidInputError(f"Path must be a string, got {type(virtual_path).__name__}")
        if not virtual_path.startswith("/"):
            raise InvalidInputError(f"Path must start with '/': {virtual_path!r}")
        if "\x00" in virtual_path:
            raise InvalidInputError("Path must not contain NUL bytes")

        segments: List[str] = []
        # Backslashes are treated as separators so Windows-style traversal
        # cannot sneak past the '..' check.
        for part in virtual_path.replace("\\", "/").split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                if not segments:
                    raise OutsideWorkspaceError(virtual_path)
                segments.pop()
                continue
            segments.append(part)
        return segments

    def resolve(self, virtual_path: str) -> Path:
        """Map a virtual path to a real path under the workspace root.

        Args:
            virtual_path: Slash-separated path rooted at ``/``

        Returns:
            Fully resolved absolute path inside the workspace

        Raises:
            InvalidInputError: If the path is not rooted at ``/``
            OutsideWorkspaceError: If the path escapes the workspace
        """
        segments = self._segments(virtual_path)
        target = self._root.joinpath(*segments).resolve()
        try:
            target.relative_to(self._root)
        except ValueError:
            raise OutsideWorkspaceError(virtual_path) from None
        return target

    def normalize(self, virtual_path: str) -> str:
        """Return the canonical spelling of a virtual path (``/a/b``)."""
        segments = self._segments(virtual_path)
        return "/" + "/".join(segments)

    def relative(self, virtual_path: str) -> str:
        """Workspace-relative POSIX path for a virtual path ('.' for the root)."""
        self.resolve(virtual_path)
        segments = self._segments(virtual_path)
        return "/".join(segments) or "."

    def to_virtual(self, real_path: Union[str, Path]) -> str:
        """Map a real path under the root back to its virtual path.

        Symlinks in ``real_path`` are not followed: a link inside the
        workspace keeps the virtual path of the link itself.
        """
        absolute = Path(os.path.abspath(real_path))
        try:
            rel = absolute.relative_to(self._root)
        except ValueError:
            raise OutsideWorkspaceError(str(real_path)) from None
        posix = PurePosixPath(*rel.parts).as_posix()
        return "/" if posix == "." else "/" + posix
