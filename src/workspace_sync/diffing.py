"""Unified diff parsing - splits a file-level diff into independently appliable hunks."""

import hashlib
import re
from dataclasses import dataclass, field
from typing import List, Tuple

from .core import Hunk
from .utils import wire_text

_HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass
class FileDiff:
    """One file section of ``git diff`` output."""

    header: List[str] = field(default_factory=list)
    hunks: List[Hunk] = field(default_factory=list)
    binary: bool = False
    # Undecoded (header, lines) per hunk; Hunk itself carries display text
    raw: List[Tuple[str, List[str]]] = field(default_factory=list)

    def add_hunk(self, header: str, lines: List[str]) -> None:
        self.hunks.append(_make_hunk(len(self.hunks), header, lines))
        self.raw.append((header, lines))

    def patch_for(self, hunk: Hunk) -> str:
        """Build a patch that applies exactly one hunk of this file."""
        header, lines = self.raw[hunk.index]
        return "\n".join(self.header + [header] + lines) + "\n"


def hunk_digest(lines: List[str]) -> str:
    """Content digest of a hunk body.

    Covers the lines only, so a hunk whose line numbers shift keeps its digest.
    """
    sha256 = hashlib.sha256()
    for line in lines:
        sha256.update(line.encode("utf-8", "surrogateescape"))
        sha256.update(b"\n")
    return f"sha256:{sha256.hexdigest()}"


def _make_hunk(index: int, header: str, lines: List[str]) -> Hunk:
    m = _HUNK_RE.match(header)
    if m is None:
        raise ValueError(f"Malformed hunk header: {header!r}")
    old_start, old_count, new_start, new_count = m.groups()
    return Hunk(
        index=index,
        header=wire_text(header),
        old_start=int(old_start),
        old_count=int(old_count) if old_count is not None else 1,
        new_start=int(new_start),
        new_count=int(new_count) if new_count is not None else 1,
        lines=[wire_text(line) for line in lines],
        digest=hunk_digest(lines),
    )


def parse_diff(text: str) -> FileDiff:
    """
    Parse the diff of a single file into header lines and hunks.

    Args:
        text: Output of ``git diff -- <path>``; only the first file section
            is used.

    Returns:
        FileDiff with the file header (everything before the first ``@@``)
        and an ordered list of hunks. An empty diff yields no header and no
        hunks; a binary diff is flagged and has no hunks.
    """
    result = FileDiff()
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    current_header = None
    current_lines: List[str] = []
    seen_file = False

    for line in lines:
        if line.startswith("diff --git "):
            if seen_file:
                break
            seen_file = True
            result.header.append(line)
            continue

        if line.startswith("@@"):
            if current_header is not None:
                result.add_hunk(current_header, current_lines)
            current_header = line
            current_lines = []
            continue

        if current_header is None:
            if line.startswith("Binary files ") or line == "GIT binary patch":
                result.binary = True
            result.header.append(line)
        else:
            current_lines.append(line)

    if current_header is not None:
        result.add_hunk(current_header, current_lines)

    return result
