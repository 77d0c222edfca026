"""Custom exceptions for workspace-sync.

This module defines typed exceptions for better error handling and clearer
error messages throughout the application. Every error carries a stable
``kind`` string that the HTTP layer and CLI report to clients.
"""

from typing import Optional, Sequence


class WorkspaceError(RuntimeError):
    """Base class for all workspace-related errors."""

    kind = "WorkspaceError"


# Client Errors
class ClientError(WorkspaceError):
    """The request itself is wrong; retrying it unchanged will fail again."""

    kind = "ClientError"


class OutsideWorkspaceError(ClientError):
    """Virtual path resolves outside the workspace root."""

    kind = "OutsideWorkspace"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path outside workspace: {path!r}")


class NotFoundError(ClientError):
    """Resolved path has no corresponding file."""

    kind = "NotFound"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Not found: {path}")


class InvalidInputError(ClientError):
    """Malformed request shape or argument."""

    kind = "InvalidInput"


# Commit Errors
class InvalidMessageError(ClientError):
    """Commit message is empty."""

    kind = "InvalidMessage"

    def __init__(self):
        super().__init__("Commit message must not be empty")


class EmptyCommitError(ClientError):
    """Index has no staged changes relative to HEAD."""

    kind = "EmptyCommit"

    def __init__(self):
        super().__init__("Nothing to commit: the index matches HEAD")


class StaleHunkError(ClientError):
    """Target hunk no longer matches the current diff."""

    kind = "StaleHunk"

    def __init__(self, path: str, index: int, reason: str):
        self.path = path
        self.index = index
        super().__init__(
            f"Hunk {index} of {path} is stale: {reason}. "
            f"Reload the diff and retry."
        )


# Repository Errors
class RepoUnavailableError(WorkspaceError):
    """Workspace is not inside a git repository."""

    kind = "RepoUnavailable"

    def __init__(self, root: str):
        self.root = root
        super().__init__(f"{root} is not a git repository")


class ExternalToolFailureError(WorkspaceError):
    """An external command (git, rg) could not run or exited with an error."""

    kind = "ExternalToolFailure"

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr.strip()
        status = "could not be started" if returncode is None else f"exited with {returncode}"
        message = f"`{' '.join(self.command)}` {status}"
        if self.stderr:
            message += f": {self.stderr}"
        super().__init__(message)
