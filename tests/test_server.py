"""HTTP and WebSocket API tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from tests.fixtures.git_repo import git, requires_git
from workspace_sync.server import create_app

pytestmark = requires_git


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as c:
        yield c


class TestFilesystemRoutes:
    def test_tree(self, client):
        resp = client.get("/api/fs/tree")
        assert resp.status_code == 200
        data = resp.json()
        assert data["type"] == "dir"
        assert data["children"] == [{"type": "file", "name": "a.txt", "path": "/a.txt"}]

    def test_files(self, client):
        assert client.get("/api/fs/files").json() == {"files": ["/a.txt"]}

    def test_read_and_write(self, client, repo):
        resp = client.put("/api/fs/file", json={"path": "/docs/new.md", "content": "# new"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["created"] is True
        assert (repo / "docs" / "new.md").read_text() == "# new"

        resp = client.get("/api/fs/file", params={"path": "/docs/new.md"})
        assert resp.status_code == 200
        assert resp.text == "# new"

    def test_escape_is_400(self, client):
        resp = client.get("/api/fs/file", params={"path": "/../../etc/passwd"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "OutsideWorkspace"

    def test_missing_file_is_404(self, client):
        resp = client.get("/api/fs/file", params={"path": "/missing.txt"})
        assert resp.status_code == 404
        assert resp.json()["error"] == "NotFound"

    def test_malformed_body_is_400(self, client):
        resp = client.put("/api/fs/file", json={"path": "/x.txt"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidInput"

    def test_search(self, client):
        resp = client.get("/api/search", params={"q": "HI", "maxResults": 5, "engine": "fallback"})
        assert resp.status_code == 200
        assert resp.json() == {
            "engine": "fallback",
            "results": [{"path": "/a.txt", "line": 1, "text": "hi"}],
            "truncated": False,
        }

    def test_search_requires_query(self, client):
        resp = client.get("/api/search")
        assert resp.status_code == 400


class TestGitRoutes:
    def test_status_and_versions(self, client, repo):
        (repo / "a.txt").write_text("hello")
        status = client.get("/api/git/status").json()
        assert status["branch"] == "main"
        assert status["changed"] == [
            {"path": "/a.txt", "index": " ", "working_dir": "M", "original_path": None}
        ]

        versions = client.get("/api/git/file-versions", params={"path": "/a.txt"}).json()
        assert (versions["head"], versions["index"], versions["working"]) == ("hi", "hi", "hello")

    def test_versions_of_non_utf8_file(self, client, repo):
        (repo / "l1.txt").write_bytes(b"caf\xe9\n")
        git(repo, "add", "l1.txt")
        resp = client.get("/api/git/file-versions", params={"path": "/l1.txt"})
        assert resp.status_code == 200
        assert resp.json()["index"] == "caf\ufffd\n"

    def test_stage_unstage_commit(self, client, repo):
        (repo / "a.txt").write_text("hello")
        assert client.post("/api/git/stage", json={"path": "/a.txt"}).json()["ok"] is True
        assert client.get("/api/git/status").json()["changed"][0]["index"] == "M"

        assert client.post("/api/git/unstage", json={"path": "/a.txt"}).status_code == 200
        assert client.post("/api/git/stage-all").status_code == 200

        resp = client.post("/api/git/commit", json={"message": "update"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["commit"] == git(repo, "rev-parse", "HEAD").strip()

        summary = client.get("/api/git/summary").json()
        assert summary["last"]["hash"] == body["commit"]

    def test_commit_errors(self, client):
        resp = client.post("/api/git/commit", json={"message": ""})
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidMessage"

        resp = client.post("/api/git/commit", json={"message": "nothing"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "EmptyCommit"

    def test_hunks_and_stale_hunk(self, client, repo):
        (repo / "a.txt").write_text("hello\n")
        hunks = client.get("/api/git/hunks", params={"path": "/a.txt"}).json()["hunks"]
        assert len(hunks) == 1

        resp = client.post("/api/git/stage-hunk", json={"path": "/a.txt", "index": 0, "digest": "sha256:stale"})
        assert resp.status_code == 409
        assert resp.json()["error"] == "StaleHunk"

        resp = client.post("/api/git/stage-hunk", json={"path": "/a.txt", "index": 0, "digest": hunks[0]["digest"]})
        assert resp.status_code == 200
        staged = client.get("/api/git/hunks", params={"path": "/a.txt", "staged": "true"}).json()
        assert len(staged["hunks"]) == 1

    def test_discard_all(self, client, repo):
        (repo / "a.txt").write_text("changed")
        resp = client.post("/api/git/discard-all")
        assert resp.json() == {"ok": True, "paths": ["/a.txt"]}
        assert (repo / "a.txt").read_text() == "hi"


def test_not_a_repository_is_409(workspace, make_service):
    with TestClient(create_app(make_service(workspace))) as client:
        resp = client.get("/api/git/status")
    assert resp.status_code == 409
    assert resp.json()["error"] == "RepoUnavailable"


def test_cors_allows_frontend_origin(client):
    resp = client.options(
        "/api/fs/tree",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
    )
    assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"


class TestEventStream:
    """WebSocket delivery of change events."""

    def test_mutation_reaches_websocket(self, client, repo):
        with client.websocket_connect("/ws") as ws:
            client.put("/api/fs/file", json={"path": "/a.txt", "content": "hello"})
            assert ws.receive_json() == {"type": "fs:change", "path": "/a.txt"}

            client.post("/api/git/stage", json={"path": "/a.txt"})
            assert ws.receive_json() == {"type": "git"}

    def test_each_client_gets_its_own_copy(self, client, service):
        with client.websocket_connect("/ws") as first, client.websocket_connect("/ws") as second:
            client.post("/api/git/stage-all")
            assert first.receive_json() == {"type": "git"}
            assert second.receive_json() == {"type": "git"}
