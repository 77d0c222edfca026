"""Utility functions for workspace-sync."""

import hashlib
import logging
import os
import tempfile
from pathlib import Path

from .constants import ATOMIC_TMP_INFIX

logger = logging.getLogger(__name__)


def compute_digest(data: bytes) -> str:
    """Compute SHA256 digest of a byte string."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def wire_text(text: str) -> str:
    """Replace undecodable bytes (kept as surrogates by git output) with U+FFFD."""
    return text.encode("utf-8", "surrogateescape").decode("utf-8", errors="replace")


def is_atomic_temp(name: str) -> bool:
    """True for the transient file name used by ``atomic_write_bytes``."""
    return name.startswith(".") and ATOMIC_TMP_INFIX in name


def is_binary(data: bytes) -> bool:
    """Heuristic used by search and diff display: NUL byte in the first 8 KiB."""
    return b"\x00" in data[:8192]


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Atomically write bytes to file with crash safety.

    1. Writes to temp file with fsync to ensure content is on disk
    2. Atomic rename to target path (appears all-at-once)
    3. Fsync parent directory to ensure rename is durable (best-effort)

    Args:
        path: Target file path
        data: Content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Create temp file in same directory
    with tempfile.NamedTemporaryFile(
        mode="wb",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}{ATOMIC_TMP_INFIX}",
        suffix=""
    ) as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)

    try:
        # Keep the permissions of the file being replaced
        if path.exists():
            os.chmod(tmp, path.stat().st_mode & 0o7777)
        else:
            os.chmod(tmp, 0o644)

        os.replace(tmp, path)

        try:
            flags = os.O_RDONLY
            if hasattr(os, "O_DIRECTORY"):
                flags |= os.O_DIRECTORY
            dirfd = os.open(str(path.parent), flags)
            try:
                os.fsync(dirfd)
            finally:
                os.close(dirfd)
        except OSError:
            # Expected on Windows or filesystems that don't support directory fsync
            logger.debug("Directory fsync not supported for %s", path.parent)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise