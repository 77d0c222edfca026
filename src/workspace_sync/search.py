"""Workspace text search: ripgrep when available, a naive scan otherwise."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern

from .context import WorkspaceContext
from .core import SearchEngine, SearchMatch, SearchResult
from .errors import ExternalToolFailureError, InvalidInputError, OutsideWorkspaceError
from .utils import is_binary

logger = logging.getLogger(__name__)

AUTO = "auto"
_PREVIEW_MAX_CHARS = 300


def _preview_line(text: str, max_chars: int = _PREVIEW_MAX_CHARS) -> str:
    clean = text.strip().replace("\t", "    ")
    if len(clean) <= max_chars:
        return clean
    return clean[: max(1, max_chars - 3)] + "..."


def split_globs(globs: Union[None, str, Sequence[str]]) -> List[str]:
    """Accept ``"*.py,*.ts"`` or a list of globs."""
    if not globs:
        return []
    if isinstance(globs, str):
        globs = globs.split(",")
    return [g.strip() for g in globs if g and g.strip()]


class SearchService:
    """Best-effort full-text search over the non-excluded workspace files.

    Every call re-scans; there is no index. The result always names the
    engine that produced it, since ripgrep and the fallback scan differ in
    match fidelity.
    """

    def __init__(
        self,
        ctx: WorkspaceContext,
        rg: str = "rg",
        use_ripgrep: Optional[bool] = None,
        timeout: float = 30.0,
    ):
        self.ctx = ctx
        self.rg = rg
        self.use_ripgrep = ctx.config.use_ripgrep if use_ripgrep is None else use_ripgrep
        self.timeout = timeout

    def search(
        self,
        query: str,
        globs: Union[None, str, Sequence[str]] = None,
        max_results: Optional[int] = None,
        engine: Union[str, SearchEngine] = AUTO,
    ) -> SearchResult:
        """Find lines containing ``query`` (case-insensitive).

        Args:
            query: Literal text to look for
            globs: Optional file globs limiting the search
            max_results: Cap on returned matches (config default when None)
            engine: ``auto`` tries ripgrep then falls back; ``ripgrep`` or
                ``fallback`` forces one engine

        Raises:
            InvalidInputError: Empty query, bad cap or unknown engine
            ExternalToolFailureError: Only when ripgrep is forced and fails
        """
        if not query:
            raise InvalidInputError("Search query must not be empty")
        if max_results is None:
            max_results = self.ctx.config.search_max_results
        if max_results < 1:
            raise InvalidInputError("maxResults must be at least 1")
        patterns = split_globs(globs)

        if engine == AUTO:
            if self.use_ripgrep:
                try:
                    return self.search_ripgrep(query, patterns, max_results)
                except ExternalToolFailureError as e:
                    logger.warning("ripgrep unavailable, using fallback scan: %s", e)
            return self.search_fallback(query, patterns, max_results)

        try:
            engine = SearchEngine(engine)
        except ValueError:
            raise InvalidInputError(f"Unknown search engine: {engine!r}") from None
        if engine == SearchEngine.RIPGREP:
            return self.search_ripgrep(query, patterns, max_results)
        return self.search_fallback(query, patterns, max_results)

    # ============= ripgrep =============

    def _rg_command(self, query: str, globs: Iterable[str]) -> List[str]:
        cmd = [
            self.rg,
            "--json",
            "--fixed-strings",
            "--ignore-case",
            "--no-ignore",
            "--hidden",
            "--sort", "path",
        ]
        for name in sorted(self.ctx.get_ignore_spec().exclude_dirs):
            cmd.extend(["--glob", f"!{name}"])
        for glob in globs:
            cmd.extend(["--glob", glob])
        cmd.extend(["--", query, "."])
        return cmd

    def search_ripgrep(self, query: str, globs: Sequence[str], max_results: int) -> SearchResult:
        """Search with ripgrep's JSON output.

        Raises:
            ExternalToolFailureError: rg missing, failing, or emitting
                output we cannot parse
        """
        if shutil.which(self.rg) is None:
            raise ExternalToolFailureError([self.rg], None, "rg is not installed")

        cmd = self._rg_command(query, globs)
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=self.ctx.root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ExternalToolFailureError(cmd, None, str(e)) from e

        result = SearchResult(engine=SearchEngine.RIPGREP)
        malformed = False
        try:
            assert proc.stdout is not None
            for raw in proc.stdout:
                line = raw.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except ValueError:
                    malformed = True
                    break
                if payload.get("type") != "match":
                    continue

                match = self._parse_rg_match(payload.get("data", {}))
                if match is None:
                    continue
                if len(result.matches) >= max_results:
                    # One match past the cap: there is more
                    result.truncated = True
                    break
                result.matches.append(match)
        finally:
            if proc.poll() is None and (result.truncated or malformed):
                proc.kill()
            try:
                _, stderr_text = proc.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                _, stderr_text = proc.communicate()

        if malformed:
            raise ExternalToolFailureError(cmd, proc.returncode, "malformed JSON output")
        if not result.truncated and proc.returncode not in (0, 1) and not result.matches:
            raise ExternalToolFailureError(cmd, proc.returncode, stderr_text or "")
        return result

    def _parse_rg_match(self, data: dict) -> Optional[SearchMatch]:
        path_text = (data.get("path") or {}).get("text")
        if not path_text:
            return None
        rel = Path(path_text)
        if rel.is_absolute() or ".." in rel.parts:
            return None
        # Path() already drops a leading "./"
        vpath = "/" + rel.as_posix()
        if self.ctx.should_ignore(vpath):
            return None
        line_text = (data.get("lines") or {}).get("text", "")
        return SearchMatch(
            path=vpath,
            line=int(data.get("line_number") or 1),
            text=_preview_line(line_text),
        )

    # ============= Fallback =============

    def search_fallback(self, query: str, globs: Sequence[str], max_results: int) -> SearchResult:
        """Recursive case-insensitive substring scan of every non-excluded text file."""
        result = SearchResult(engine=SearchEngine.FALLBACK)
        needle = query.lower()
        include = PathSpec.from_lines(GitWildMatchPattern, globs) if globs else None
        ignore = self.ctx.get_ignore_spec()
        root = self.ctx.root

        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = Path(dirpath).relative_to(root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = sorted(
                d for d in dirnames if not ignore.is_ignored(rel_dir + d, is_dir=True)
            )

            for name in sorted(filenames):
                rel = rel_dir + name
                if ignore.is_ignored(rel):
                    continue
                if include is not None and not include.match_file(rel):
                    continue
                vpath = "/" + rel
                try:
                    real = self.ctx.resolve(vpath)
                    data = real.read_bytes()
                except OutsideWorkspaceError:
                    continue
                except OSError as e:
                    logger.debug("Skipping unreadable file %s: %s", vpath, e)
                    continue
                if is_binary(data):
                    continue

                text = data.decode("utf-8", errors="replace")
                for lineno, line in enumerate(text.splitlines(), start=1):
                    if needle in line.lower():
                        if len(result.matches) >= max_results:
                            result.truncated = True
                            return result
                        result.matches.append(
                            SearchMatch(path=vpath, line=lineno, text=_preview_line(line))
                        )
        return result
