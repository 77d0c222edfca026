"""Test file read and atomic write operations."""

import os
import threading

import pytest

from workspace_sync.errors import InvalidInputError, NotFoundError, OutsideWorkspaceError
from workspace_sync.locks import PathLocks
from workspace_sync.ops import read_file, write_file as _write
from workspace_sync.utils import compute_digest


@pytest.fixture
def locks(ctx, tmp_path):
    return PathLocks(ctx.root, lock_dir=tmp_path / "locks")


class TestReadWrite:
    """Test round trips and error cases."""

    def test_round_trip(self, ctx, locks):
        result = _write(ctx, locks, "/notes/today.md", "héllo\nworld\n")
        assert result.path == "/notes/today.md"
        assert result.created is True
        assert result.size == len("héllo\nworld\n".encode("utf-8"))
        assert result.digest == compute_digest("héllo\nworld\n".encode("utf-8"))
        assert read_file(ctx, "/notes/today.md") == "héllo\nworld\n"

    def test_overwrite_reports_not_created(self, ctx, locks, write_file):
        write_file("a.txt", "old")
        result = _write(ctx, locks, "/a.txt", "new")
        assert result.created is False
        assert read_file(ctx, "/a.txt") == "new"

    def test_overwrite_keeps_mode(self, ctx, locks, workspace):
        target = workspace / "run.sh"
        target.write_text("#!/bin/sh\n")
        os.chmod(target, 0o755)
        _write(ctx, locks, "/run.sh", "#!/bin/sh\necho hi\n")
        assert (target.stat().st_mode & 0o777) == 0o755

    def test_no_temp_files_left(self, ctx, locks, workspace):
        _write(ctx, locks, "/a.txt", "x")
        assert sorted(p.name for p in workspace.iterdir()) == ["a.txt"]

    def test_read_missing(self, ctx):
        with pytest.raises(NotFoundError):
            read_file(ctx, "/missing.txt")

    def test_read_below_a_file(self, ctx, write_file):
        write_file("a.txt", "hi")
        with pytest.raises(NotFoundError):
            read_file(ctx, "/a.txt/x")

    def test_read_directory(self, ctx, workspace):
        (workspace / "dir").mkdir()
        with pytest.raises(InvalidInputError):
            read_file(ctx, "/dir")

    def test_escape_rejected(self, ctx, locks, tmp_path):
        with pytest.raises(OutsideWorkspaceError):
            _write(ctx, locks, "/../evil.txt", "x")
        assert not (tmp_path / "evil.txt").exists()
        with pytest.raises(OutsideWorkspaceError):
            read_file(ctx, "/../../etc/passwd")

    def test_write_root_or_directory_rejected(self, ctx, locks, workspace):
        (workspace / "dir").mkdir()
        with pytest.raises(InvalidInputError):
            _write(ctx, locks, "/", "x")
        with pytest.raises(InvalidInputError):
            _write(ctx, locks, "/dir", "x")

    def test_write_into_excluded_dir_rejected(self, ctx, locks):
        with pytest.raises(InvalidInputError):
            _write(ctx, locks, "/.git/config", "x")

    def test_concurrent_writers_same_path(self, ctx, locks):
        """Serialized writers leave exactly one complete version behind."""
        contents = [f"writer {i}\n" * 1000 for i in range(8)]
        threads = [
            threading.Thread(target=_write, args=(ctx, locks, "/shared.txt", c))
            for c in contents
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert read_file(ctx, "/shared.txt") in contents
        assert locks.active_paths() == 0

