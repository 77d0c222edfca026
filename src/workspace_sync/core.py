"""Core data models for workspace-sync.

Three views of repository state:
---------------------------------
- HEAD: the most recent commit
- index: what the next commit will contain (staged)
- working tree: the files on disk

Every model here is computed on demand and discarded after the response or
event is delivered; the filesystem and git are the only source of truth.
"""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ============= File Tree =============

class FileLeaf(BaseModel):
    """A regular file in the tree."""

    type: Literal["file"] = "file"
    name: str
    path: str


class DirNode(BaseModel):
    """A directory with its (ordered) children."""

    type: Literal["dir"] = "dir"
    name: str
    path: str
    children: List["FileNode"] = Field(default_factory=list)

    def iter_files(self):
        """Yield every file leaf below this directory in tree order."""
        for child in self.children:
            if isinstance(child, DirNode):
                yield from child.iter_files()
            else:
                yield child


FileNode = Annotated[Union[FileLeaf, DirNode], Field(discriminator="type")]
DirNode.model_rebuild()


# ============= Repository State =============

class FileStatus(str, Enum):
    """Per-stage status of a changed path (git porcelain letters)."""

    MODIFIED = "M"
    ADDED = "A"
    DELETED = "D"
    RENAMED = "R"
    UNTRACKED = "?"
    UNMODIFIED = " "


class ChangeRecord(BaseModel):
    """One changed path with its index and working-tree status."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    index_status: FileStatus = Field(serialization_alias="index")
    working_status: FileStatus = Field(serialization_alias="working_dir")
    original_path: Optional[str] = None

    @property
    def is_staged(self) -> bool:
        return self.index_status not in (FileStatus.UNMODIFIED, FileStatus.UNTRACKED)

    @property
    def is_untracked(self) -> bool:
        return self.working_status == FileStatus.UNTRACKED


class RepoStatus(BaseModel):
    """Repository-wide difference between HEAD, index and working tree."""

    branch: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    changes: List[ChangeRecord] = Field(default_factory=list, serialization_alias="changed")

    def get(self, path: str) -> Optional[ChangeRecord]:
        """Find the record for a virtual path."""
        for record in self.changes:
            if record.path == path:
                return record
        return None

    @property
    def staged(self) -> List[ChangeRecord]:
        return [c for c in self.changes if c.is_staged]

    @property
    def unstaged(self) -> List[ChangeRecord]:
        return [
            c for c in self.changes
            if c.working_status != FileStatus.UNMODIFIED and not c.is_untracked
        ]

    @property
    def untracked(self) -> List[ChangeRecord]:
        return [c for c in self.changes if c.is_untracked]


class FileVersions(BaseModel):
    """Content of one file at HEAD, in the index and on disk.

    Absent stages are empty strings; the ``in_*``/``on_disk`` flags tell an
    absent file apart from an empty one.
    """

    path: str
    head: str = ""
    index: str = ""
    working: str = ""
    in_head: bool = False
    in_index: bool = False
    on_disk: bool = False


class CommitInfo(BaseModel):
    """The latest commit on the current branch."""

    hash: str
    message: str
    author_name: str
    author_email: str
    date: str


class RepoSummary(BaseModel):
    """Branch position plus the latest commit (None on an unborn branch)."""

    branch: Optional[str] = None
    ahead: int = 0
    behind: int = 0
    last: Optional[CommitInfo] = None


class Hunk(BaseModel):
    """One contiguous block of a file-level unified diff."""

    index: int
    header: str
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: List[str] = Field(default_factory=list)
    digest: str

    @property
    def added(self) -> int:
        return sum(1 for line in self.lines if line.startswith("+"))

    @property
    def removed(self) -> int:
        return sum(1 for line in self.lines if line.startswith("-"))


# ============= Change Events =============

class FsTreeInvalidated(BaseModel):
    """The shape of the tree changed; clients refetch the whole tree."""

    model_config = ConfigDict(frozen=True)

    type: Literal["fs:tree"] = "fs:tree"


class FsFileChanged(BaseModel):
    """The content of one file changed."""

    model_config = ConfigDict(frozen=True)

    type: Literal["fs:change"] = "fs:change"
    path: str


class RepoStateInvalidated(BaseModel):
    """Repository state changed; clients re-query status."""

    model_config = ConfigDict(frozen=True)

    type: Literal["git"] = "git"


ChangeEvent = Annotated[
    Union[FsTreeInvalidated, FsFileChanged, RepoStateInvalidated],
    Field(discriminator="type"),
]

_change_event_adapter = TypeAdapter(ChangeEvent)


def parse_change_event(data) -> Union[FsTreeInvalidated, FsFileChanged, RepoStateInvalidated]:
    """Parse a wire-format dict (or JSON string) back into a ChangeEvent."""
    if isinstance(data, (str, bytes)):
        return _change_event_adapter.validate_json(data)
    return _change_event_adapter.validate_python(data)


# ============= Search =============

class SearchEngine(str, Enum):
    """Which engine produced a search result."""

    RIPGREP = "ripgrep"
    FALLBACK = "fallback"


class SearchMatch(BaseModel):
    """A single matching line."""

    path: str
    line: int  # 1-based
    text: str


class SearchResult(BaseModel):
    """Matches plus the engine that found them."""

    engine: SearchEngine
    matches: List[SearchMatch] = Field(default_factory=list, serialization_alias="results")
    truncated: bool = False
