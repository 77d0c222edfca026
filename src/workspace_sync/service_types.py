"""Service layer types for workspace-sync."""

from typing import List, Optional

from pydantic import BaseModel


class WriteResult(BaseModel):
    """Result of writing a file."""
    path: str
    size: int
    digest: str
    created: bool


class CommitResult(BaseModel):
    """Result of a commit."""
    ok: bool = True
    commit: str


class HunkActionResult(BaseModel):
    """Result of staging, unstaging or discarding one hunk."""
    ok: bool = True
    path: str
    index: int
    digest: str


class DiscardAllResult(BaseModel):
    """Paths restored from HEAD or removed by a repository-wide discard."""
    ok: bool = True
    paths: List[str]


class OkResult(BaseModel):
    """Plain acknowledgement for mutations with nothing else to report."""
    ok: bool = True
    path: Optional[str] = None
