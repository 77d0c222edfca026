"""Repository state adapter backed by the git executable.

This module queries and mutates the three views of repository state (HEAD,
index, working tree) for the workspace. All paths in and out are virtual
paths; they are resolved through the workspace sandbox before git ever sees
them, and git's repository-relative output is re-rooted at the workspace so
a workspace nested inside a larger repository works too.

Mutations take the per-path lock for the path they touch and the repository
lock, since git serializes index writes through ``index.lock``. Publishing
change events is the caller's job (see ``service.WorkspaceService``).
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .context import WorkspaceContext
from .core import (
    ChangeRecord,
    CommitInfo,
    FileStatus,
    FileVersions,
    Hunk,
    RepoStatus,
    RepoSummary,
)
from .diffing import FileDiff, parse_diff
from .errors import (
    EmptyCommitError,
    ExternalToolFailureError,
    InvalidInputError,
    InvalidMessageError,
    NotFoundError,
    RepoUnavailableError,
    StaleHunkError,
)
from .locks import PathLocks
from .utils import wire_text

logger = logging.getLogger(__name__)

_STATUS_LETTERS: Dict[str, FileStatus] = {
    ".": FileStatus.UNMODIFIED,
    " ": FileStatus.UNMODIFIED,
    "M": FileStatus.MODIFIED,
    "T": FileStatus.MODIFIED,  # type change
    "U": FileStatus.MODIFIED,  # unmerged
    "A": FileStatus.ADDED,
    "C": FileStatus.ADDED,  # copy: a new path
    "D": FileStatus.DELETED,
    "R": FileStatus.RENAMED,
    "?": FileStatus.UNTRACKED,
}

# Keep argument lists well under OS limits
_PATHSPEC_CHUNK = 200


@dataclass(frozen=True)
class RepoInfo:
    """Where the workspace sits inside its repository."""

    toplevel: Path
    prefix: str  # workspace path relative to toplevel, "" or ending in "/"


def _letter(code: str) -> FileStatus:
    return _STATUS_LETTERS.get(code, FileStatus.MODIFIED)


def _chunks(items: Sequence[str], size: int = _PATHSPEC_CHUNK) -> Iterable[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class RepoStateAdapter:
    """Query and mutate git state for one workspace."""

    def __init__(
        self,
        ctx: WorkspaceContext,
        locks: Optional[PathLocks] = None,
        git: str = "git",
        timeout: Optional[float] = None,
    ):
        self.ctx = ctx
        self.locks = locks or PathLocks(ctx.root)
        self.git = git
        self.timeout = timeout if timeout is not None else ctx.config.git_timeout

    # ============= Command plumbing =============

    def _run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        input: Optional[str] = None,
        ok_codes: Tuple[int, ...] = (0,),
        readonly: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run one git command and return the completed process.

        Raises:
            ExternalToolFailureError: If git is missing, times out or exits
                with a code outside ``ok_codes``
        """
        cmd = [self.git, "-C", str(cwd or self.ctx.root), *args]
        env = dict(os.environ)
        env["LC_ALL"] = "C"
        env["GIT_TERMINAL_PROMPT"] = "0"
        if readonly:
            # Read-only queries must not grab index.lock for stat refreshes
            env["GIT_OPTIONAL_LOCKS"] = "0"

        logger.debug("git %s", " ".join(args))
        try:
            proc = subprocess.run(
                cmd,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                check=False,
                timeout=self.timeout,
                env=env,
            )
        except FileNotFoundError:
            raise ExternalToolFailureError(cmd, None, f"{self.git} executable not found") from None
        except subprocess.TimeoutExpired:
            raise ExternalToolFailureError(cmd, None, f"timed out after {self.timeout}s") from None

        if proc.returncode not in ok_codes:
            raise ExternalToolFailureError(cmd, proc.returncode, proc.stderr)
        return proc

    def info(self) -> RepoInfo:
        """Locate the repository containing the workspace.

        Raises:
            RepoUnavailableError: If the workspace is not inside a work tree
        """
        try:
            proc = self._run(["rev-parse", "--show-toplevel", "--show-prefix"], readonly=True)
        except ExternalToolFailureError as e:
            if e.returncode is not None and "not a git repository" in e.stderr.lower():
                raise RepoUnavailableError(str(self.ctx.root)) from None
            raise
        lines = proc.stdout.split("\n")
        if not lines or not lines[0]:
            # e.g. the workspace is the .git directory itself
            raise RepoUnavailableError(str(self.ctx.root))
        prefix = lines[1] if len(lines) > 1 else ""
        return RepoInfo(toplevel=Path(lines[0]), prefix=prefix)

    def is_available(self) -> bool:
        """Check whether the workspace is a usable git work tree."""
        try:
            self.info()
        except (RepoUnavailableError, ExternalToolFailureError):
            return False
        return True

    def has_head(self) -> bool:
        """False on an unborn branch (no commit yet)."""
        proc = self._run(["rev-parse", "--verify", "-q", "HEAD"], ok_codes=(0, 1), readonly=True)
        return proc.returncode == 0

    def _blob(self, spec: str) -> Optional[str]:
        """Content of ``<rev>:<path>`` or None when it does not exist."""
        proc = self._run(["cat-file", "blob", spec], ok_codes=(0, 1, 128), readonly=True)
        if proc.returncode != 0:
            return None
        return wire_text(proc.stdout)

    def _exists_at_head(self, rel: str) -> bool:
        proc = self._run(["cat-file", "-e", f"HEAD:./{rel}"], ok_codes=(0, 1, 128), readonly=True)
        return proc.returncode == 0

    def _to_virtual(self, repo_path: str, prefix: str) -> Optional[str]:
        """Re-root a repository-relative path at the workspace (None if outside)."""
        if prefix:
            if not repo_path.startswith(prefix):
                return None
            repo_path = repo_path[len(prefix):]
        return "/" + repo_path

    # ============= Status =============

    def status(self) -> RepoStatus:
        """Repository-wide difference between HEAD, index and working tree."""
        info = self.info()
        proc = self._run(
            ["status", "--porcelain=v2", "--branch", "-z", "--untracked-files=all", "--", "."],
            readonly=True,
        )
        return self._parse_status(proc.stdout, info.prefix)

    def _parse_status(self, output: str, prefix: str) -> RepoStatus:
        status = RepoStatus()
        fields = output.split("\0")
        i = 0
        while i < len(fields):
            entry = fields[i]
            i += 1
            if not entry:
                continue

            if entry.startswith("# "):
                key, _, value = entry[2:].partition(" ")
                if key == "branch.head":
                    status.branch = None if value == "(detached)" else value
                elif key == "branch.ab":
                    ahead, _, behind = value.partition(" ")
                    status.ahead = abs(int(ahead))
                    status.behind = abs(int(behind))
                continue

            kind = entry[0]
            original = None
            if kind == "1":
                parts = entry.split(" ", 8)
                xy, path = parts[1], parts[8]
            elif kind == "2":
                parts = entry.split(" ", 9)
                xy, path = parts[1], parts[9]
                original = fields[i]
                i += 1
            elif kind == "u":
                parts = entry.split(" ", 10)
                xy, path = parts[1], parts[10]
            elif kind == "?":
                xy, path = "??", entry[2:]
            else:
                # "!" ignored entries, or anything newer than we understand
                continue

            vpath = self._to_virtual(path, prefix)
            if vpath is None:
                continue
            record = ChangeRecord(
                path=vpath,
                index_status=_letter(xy[0]),
                working_status=_letter(xy[1]),
                original_path=self._to_virtual(original, prefix) if original else None,
            )
            status.changes.append(record)

        status.changes.sort(key=lambda c: c.path)
        return status

    def summary(self) -> RepoSummary:
        """Branch position and the latest commit."""
        info = self.info()
        proc = self._run(
            ["status", "--porcelain=v2", "--branch", "-z", "--untracked-files=no"],
            readonly=True,
        )
        status = self._parse_status(proc.stdout, info.prefix)
        summary = RepoSummary(branch=status.branch, ahead=status.ahead, behind=status.behind)

        if self.has_head():
            log = self._run(
                ["log", "-1", "--format=%H%x00%an%x00%ae%x00%aI%x00%B"],
                readonly=True,
            )
            commit_hash, name, email, date, message = log.stdout.split("\0", 4)
            summary.last = CommitInfo(
                hash=commit_hash,
                message=wire_text(message.strip()),
                author_name=wire_text(name),
                author_email=wire_text(email),
                date=date,
            )
        return summary

    # ============= Versions =============

    def versions(self, virtual_path: str) -> FileVersions:
        """Content of one file at HEAD, in the index and on disk.

        Absent stages come back empty; only sandbox violations and a missing
        repository are errors.
        """
        vpath = self.ctx.sandbox.normalize(virtual_path)
        real = self.ctx.resolve(vpath)
        rel = self.ctx.relative(vpath)
        self.info()

        versions = FileVersions(path=vpath)
        head = self._blob(f"HEAD:./{rel}")
        if head is not None:
            versions.head, versions.in_head = head, True
        index = self._blob(f":./{rel}")
        if index is not None:
            versions.index, versions.in_index = index, True
        if real.is_file():
            versions.working = real.read_text(encoding="utf-8", errors="replace")
            versions.on_disk = True
        return versions

    # ============= Single-path mutations =============

    def stage(self, virtual_path: str) -> None:
        """Add the working content of a path (including deletion) to the index."""
        vpath = self.ctx.sandbox.normalize(virtual_path)
        rel = self.ctx.relative(vpath)
        self.info()
        with self.locks.path(vpath), self.locks.repository():
            try:
                self._run(["add", "-A", "--", rel])
            except ExternalToolFailureError as e:
                if "did not match any files" in e.stderr:
                    raise NotFoundError(vpath) from None
                raise

    def unstage(self, virtual_path: str) -> None:
        """Reset the index entry of a path to HEAD; the working tree is untouched."""
        vpath = self.ctx.sandbox.normalize(virtual_path)
        rel = self.ctx.relative(vpath)
        self.info()
        with self.locks.path(vpath), self.locks.repository():
            self._unstage_paths([rel])

    def _unstage_paths(self, rels: Sequence[str]) -> None:
        if self.has_head():
            for chunk in _chunks(rels):
                self._run(["reset", "-q", "HEAD", "--", *chunk])
        else:
            for chunk in _chunks(rels):
                self._run(["rm", "--cached", "-r", "-q", "--ignore-unmatch", "--", *chunk])

    def discard(self, virtual_path: str) -> None:
        """Overwrite the working copy with HEAD; delete it if HEAD lacks the path.

        Uncommitted edits to the path are lost for good.

        Raises:
            InvalidInputError: If the path is the workspace root or excluded
        """
        vpath = self.ctx.sandbox.normalize(virtual_path)
        real = self.ctx.resolve(vpath)
        if vpath == "/":
            raise InvalidInputError("Cannot discard the workspace root")
        if ".git" in vpath.split("/") or self.ctx.should_ignore(vpath, is_dir=real.is_dir()):
            raise InvalidInputError(f"Path is excluded from the workspace: {vpath}")
        rel = self.ctx.relative(vpath)
        self.info()
        with self.locks.path(vpath), self.locks.repository():
            if self._exists_at_head(rel):
                self._run(["restore", "--source=HEAD", "--worktree", "--", rel])
            else:
                self._remove_working(vpath, real)

    def _remove_working(self, vpath: str, real: Path) -> None:
        if real.is_dir() and not real.is_symlink():
            logger.info("Discarding untracked directory %s", vpath)
            shutil.rmtree(real)
        elif real.exists() or real.is_symlink():
            logger.info("Discarding file absent at HEAD: %s", vpath)
            real.unlink()

    # ============= Repository-wide mutations =============

    def stage_all(self) -> None:
        """Stage every change in the workspace."""
        self.info()
        with self.locks.repository():
            self._run(["add", "-A", "--", "."])

    def unstage_all(self) -> None:
        """Reset the whole workspace index to HEAD."""
        self.info()
        with self.locks.repository():
            self._unstage_paths(["."])

    def discard_all(self) -> List[str]:
        """Restore every tracked path from HEAD and delete every path HEAD lacks.

        This is the most destructive operation of the adapter; callers must
        confirm it explicitly.

        Returns:
            Virtual paths that were restored or removed
        """
        with self.locks.repository():
            status = self.status()
            restore: List[str] = []
            remove: List[str] = []
            for record in status.changes:
                if record.index_status == FileStatus.RENAMED:
                    remove.append(record.path)
                    if record.original_path:
                        restore.append(record.original_path)
                elif record.is_untracked or record.index_status == FileStatus.ADDED:
                    remove.append(record.path)
                else:
                    restore.append(record.path)

            if restore and self.has_head():
                rels = [self.ctx.relative(p) for p in restore]
                for chunk in _chunks(rels):
                    self._run(["restore", "--source=HEAD", "--worktree", "--", *chunk])
            elif restore:
                # Unborn branch: nothing exists at HEAD
                remove.extend(restore)
                restore = []

            for vpath in remove:
                self._remove_working(vpath, self.ctx.resolve(vpath))

        return sorted(set(restore) | set(remove))

    # ============= Commit =============

    def has_staged_changes(self) -> bool:
        """True when the index differs from HEAD."""
        proc = self._run(["diff", "--cached", "--quiet", "--exit-code"], ok_codes=(0, 1), readonly=True)
        return proc.returncode == 1

    def commit(self, message: str) -> str:
        """Create a commit from the current index and return its id.

        Raises:
            InvalidMessageError: If the message is empty or blank
            EmptyCommitError: If nothing is staged
        """
        if not message or not message.strip():
            raise InvalidMessageError()
        self.info()
        with self.locks.repository():
            if not self.has_staged_changes():
                raise EmptyCommitError()
            self._run(["commit", "-q", "-F", "-"], input=message)
            proc = self._run(["rev-parse", "HEAD"], readonly=True)
        commit_id = proc.stdout.strip()
        logger.info("Created commit %s", commit_id[:12])
        return commit_id

    # ============= Hunks =============

    def _file_diff(self, rel: str, staged: bool) -> FileDiff:
        args = [
            "diff", "--no-color", "--no-ext-diff", "--no-renames",
            "--src-prefix=a/", "--dst-prefix=b/", "-U3",
        ]
        if staged:
            args.append("--cached")
        args.extend(["--", rel])
        proc = self._run(args, readonly=True)
        return parse_diff(proc.stdout)

    def hunks(self, virtual_path: str, staged: bool = False) -> List[Hunk]:
        """Hunks of a file's diff: index->working, or HEAD->index when staged."""
        vpath = self.ctx.sandbox.normalize(virtual_path)
        rel = self.ctx.relative(vpath)
        self.info()
        return self._file_diff(rel, staged).hunks

    def stage_hunk(self, virtual_path: str, index: int, digest: Optional[str] = None) -> Hunk:
        """Apply one unstaged hunk to the index."""
        return self._apply_hunk(virtual_path, index, digest, staged=False, apply_args=["--cached"])

    def unstage_hunk(self, virtual_path: str, index: int, digest: Optional[str] = None) -> Hunk:
        """Revert one staged hunk in the index."""
        return self._apply_hunk(
            virtual_path, index, digest, staged=True, apply_args=["--cached", "--reverse"]
        )

    def discard_hunk(self, virtual_path: str, index: int, digest: Optional[str] = None) -> Hunk:
        """Revert one unstaged hunk in the working tree."""
        return self._apply_hunk(virtual_path, index, digest, staged=False, apply_args=["--reverse"])

    def _apply_hunk(
        self,
        virtual_path: str,
        index: int,
        digest: Optional[str],
        staged: bool,
        apply_args: List[str],
    ) -> Hunk:
        """Recompute the diff, re-validate the target hunk, then apply it alone.

        Raises:
            StaleHunkError: If the hunk index no longer exists, its content
                digest changed, or the patch no longer applies
        """
        vpath = self.ctx.sandbox.normalize(virtual_path)
        rel = self.ctx.relative(vpath)
        info = self.info()
        with self.locks.path(vpath), self.locks.repository():
            file_diff = self._file_diff(rel, staged)
            if index < 0 or index >= len(file_diff.hunks):
                raise StaleHunkError(vpath, index, f"the diff has {len(file_diff.hunks)} hunk(s)")
            hunk = file_diff.hunks[index]
            if digest is not None and hunk.digest != digest:
                raise StaleHunkError(vpath, index, "its lines changed")

            # Patch paths are relative to the repository top level
            try:
                self._run(
                    ["apply", *apply_args, "--whitespace=nowarn", "-"],
                    cwd=info.toplevel,
                    input=file_diff.patch_for(hunk),
                )
            except ExternalToolFailureError as e:
                raise StaleHunkError(vpath, index, f"patch no longer applies ({e.stderr})") from e
        return hunk
