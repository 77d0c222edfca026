"""Shared test fixtures and utilities."""

import shutil
from pathlib import Path

import pytest

from tests.fixtures.git_repo import commit_all, init_repo

from workspace_sync.bus import ChangeBus
from workspace_sync.config import WorkspaceConfig
from workspace_sync.context import WorkspaceContext
from workspace_sync.locks import PathLocks
from workspace_sync.repository import RepoStateAdapter
from workspace_sync.search import SearchService
from workspace_sync.service import WorkspaceDeps, WorkspaceService


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep lock files and environment overrides out of the user's real setup."""
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in (
        "WORKSPACE_DIR",
        "WORKSPACE_SYNC_HOST",
        "WORKSPACE_SYNC_PORT",
        "PORT",
        "FRONTEND_ORIGIN",
        "WORKSPACE_SYNC_DEBOUNCE_MS",
        "WORKSPACE_SYNC_RG",
    ):
        monkeypatch.delenv(var, raising=False)
    # Never let git discover a repository above the test directory
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))


@pytest.fixture
def workspace(tmp_path):
    """A plain (non-repository) workspace directory."""
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture
def write_file(workspace):
    """Factory fixture to write files relative to the workspace."""
    def _write(path: str, content: str = "test content"):
        file_path = workspace / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
        return file_path
    return _write


@pytest.fixture
def make_ctx():
    """Factory for a context over a directory with default configuration."""
    def _make(root: Path, **overrides) -> WorkspaceContext:
        return WorkspaceContext(root, config=WorkspaceConfig(**overrides))
    return _make


@pytest.fixture
def ctx(workspace, make_ctx):
    return make_ctx(workspace)


@pytest.fixture
def repo(tmp_path):
    """A git repository with one commit: ``/a.txt`` containing ``hi``."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    root = init_repo(tmp_path / "repo")
    (root / "a.txt").write_text("hi")
    commit_all(root, "initial")
    return root


@pytest.fixture
def repo_ctx(repo, make_ctx):
    return make_ctx(repo)


@pytest.fixture
def adapter(repo_ctx, tmp_path):
    return RepoStateAdapter(repo_ctx, locks=PathLocks(repo_ctx.root, lock_dir=tmp_path / "locks"))


@pytest.fixture
def make_service(tmp_path):
    """Factory for a service with injected dependencies (watcher not started)."""
    def _make(root: Path, **overrides) -> WorkspaceService:
        ctx = WorkspaceContext(root, config=WorkspaceConfig(**overrides))
        locks = PathLocks(ctx.root, lock_dir=tmp_path / "locks")
        return WorkspaceService(deps=WorkspaceDeps(
            ctx=ctx,
            locks=locks,
            adapter=RepoStateAdapter(ctx, locks=locks),
            bus=ChangeBus(ctx.config.subscriber_buffer),
            search=SearchService(ctx),
        ))
    return _make


@pytest.fixture
def service(repo, make_service):
    return make_service(repo)
