"""File operations for workspace-sync."""

import logging

from .context import WorkspaceContext
from .errors import InvalidInputError, NotFoundError
from .locks import PathLocks
from .service_types import WriteResult
from .utils import atomic_write_bytes, compute_digest

logger = logging.getLogger(__name__)


def read_file(ctx: WorkspaceContext, virtual_path: str) -> str:
    """Read a workspace file as UTF-8 text.

    Raises:
        OutsideWorkspaceError: If the path escapes the workspace
        NotFoundError: If nothing exists at the path
        InvalidInputError: If the path is a directory
    """
    vpath = ctx.sandbox.normalize(virtual_path)
    real = ctx.resolve(vpath)
    if real.is_dir():
        raise InvalidInputError(f"Not a file: {vpath}")
    try:
        data = real.read_bytes()
    except (FileNotFoundError, NotADirectoryError):
        raise NotFoundError(vpath) from None
    return data.decode("utf-8", errors="replace")


def write_file(
    ctx: WorkspaceContext,
    locks: PathLocks,
    virtual_path: str,
    content: str,
) -> WriteResult:
    """Atomically replace (or create) a workspace file with UTF-8 text.

    Parent directories are created as needed. Writers of the same path are
    serialized through ``locks``.

    Raises:
        OutsideWorkspaceError: If the path escapes the workspace
        InvalidInputError: If the path is the root, an existing directory or excluded
    """
    vpath = ctx.sandbox.normalize(virtual_path)
    if vpath == "/":
        raise InvalidInputError("Cannot write to the workspace root")
    if ctx.should_ignore(vpath):
        raise InvalidInputError(f"Path is excluded from the workspace: {vpath}")
    real = ctx.resolve(vpath)

    data = content.encode("utf-8")
    with locks.path(vpath):
        if real.is_dir():
            raise InvalidInputError(f"Not a file: {vpath}")
        created = not real.exists()
        atomic_write_bytes(real, data)

    logger.debug("Wrote %s (%d bytes)", vpath, len(data))
    return WriteResult(path=vpath, size=len(data), digest=compute_digest(data), created=created)
