"""CLI tests using typer's CliRunner against real temporary repositories."""

import pytest
from typer.testing import CliRunner

from tests.fixtures.git_repo import git, requires_git
from workspace_sync.cli import app

pytestmark = requires_git


@pytest.fixture
def runner():
    """Create a CliRunner for in-process testing."""
    return CliRunner()


def invoke(runner, repo, *args, **kwargs):
    return runner.invoke(app, ["--root", str(repo), *args], **kwargs)


class TestReadCommands:
    def test_version(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "workspace-sync" in result.output

    def test_tree(self, runner, repo):
        (repo / "src").mkdir()
        (repo / "src" / "main.py").write_text("")
        result = invoke(runner, repo, "tree")
        assert result.exit_code == 0
        assert "src/" in result.output
        assert "main.py" in result.output
        assert ".git" not in result.output

    def test_tree_json(self, runner, repo):
        result = invoke(runner, repo, "tree", "--json")
        assert result.exit_code == 0
        assert '"path": "/a.txt"' in result.output

    def test_cat(self, runner, repo):
        result = invoke(runner, repo, "cat", "a.txt")
        assert result.exit_code == 0
        assert result.output == "hi"

    def test_cat_escape_fails(self, runner, repo):
        result = invoke(runner, repo, "cat", "/../secret")
        assert result.exit_code == 1

    def test_status(self, runner, repo):
        (repo / "a.txt").write_text("hello")
        (repo / "new.txt").write_text("new")
        result = invoke(runner, repo, "status")
        assert result.exit_code == 0
        assert "On branch main" in result.output
        assert "/a.txt" in result.output
        assert "Untracked (1)" in result.output

    def test_status_clean(self, runner, repo):
        result = invoke(runner, repo, "status")
        assert "Working tree clean" in result.output

    def test_summary(self, runner, repo):
        result = invoke(runner, repo, "summary")
        assert result.exit_code == 0
        assert "initial" in result.output

    def test_versions(self, runner, repo):
        (repo / "a.txt").write_text("hello")
        result = invoke(runner, repo, "versions", "/a.txt")
        assert result.exit_code == 0
        assert '"working": "hello"' in result.output

    def test_search(self, runner, repo):
        result = invoke(runner, repo, "search", "HI", "--engine", "fallback")
        assert result.exit_code == 0
        assert "/a.txt" in result.output
        assert "fallback" in result.output

    def test_not_a_repository(self, runner, workspace):
        result = invoke(runner, workspace, "status")
        assert result.exit_code == 1
        assert "RepoUnavailable" in result.output

    def test_missing_workspace(self, runner, tmp_path):
        result = invoke(runner, tmp_path / "missing", "status")
        assert result.exit_code == 1


class TestMutatingCommands:
    def test_stage_commit(self, runner, repo):
        (repo / "a.txt").write_text("hello")
        assert invoke(runner, repo, "stage", "a.txt").exit_code == 0
        result = invoke(runner, repo, "commit", "-m", "update a")
        assert result.exit_code == 0
        head = git(repo, "rev-parse", "HEAD").strip()
        assert head[:12] in result.output

    def test_commit_nothing_staged(self, runner, repo):
        result = invoke(runner, repo, "commit", "-m", "nothing")
        assert result.exit_code == 1
        assert "EmptyCommit" in result.output

    def test_unstage_all(self, runner, repo):
        (repo / "a.txt").write_text("hello")
        invoke(runner, repo, "stage", "--all")
        assert invoke(runner, repo, "unstage", "--all").exit_code == 0
        assert git(repo, "diff", "--cached", "--name-only") == ""

    def test_hunk_commands(self, runner, repo):
        (repo / "a.txt").write_text("hello\n")
        result = invoke(runner, repo, "hunks", "a.txt")
        assert result.exit_code == 0
        assert "#0" in result.output
        assert invoke(runner, repo, "stage", "a.txt", "--hunk", "0").exit_code == 0
        assert git(repo, "diff", "--cached", "--name-only").strip() == "a.txt"

    def test_discard(self, runner, repo):
        (repo / "a.txt").write_text("hello")
        assert invoke(runner, repo, "discard", "a.txt").exit_code == 0
        assert (repo / "a.txt").read_text() == "hi"

    def test_stage_requires_path(self, runner, repo):
        assert invoke(runner, repo, "stage").exit_code == 2

    def test_discard_all_needs_confirmation(self, runner, repo):
        (repo / "a.txt").write_text("hello")
        result = invoke(runner, repo, "discard", "--all", input="n\n")
        assert result.exit_code == 1
        assert (repo / "a.txt").read_text() == "hello"

        result = invoke(runner, repo, "discard", "--all", "--yes")
        assert result.exit_code == 0
        assert (repo / "a.txt").read_text() == "hi"
