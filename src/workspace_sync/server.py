"""FastAPI application exposing a WorkspaceService over HTTP and WebSocket.

Route handlers are plain ``def`` functions so blocking git and filesystem
work runs in Starlette's threadpool; only the WebSocket stream is async.
"""

import asyncio
import contextlib
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .constants import WORKSPACE_SYNC_VERSION
from .errors import (
    ClientError,
    ExternalToolFailureError,
    NotFoundError,
    RepoUnavailableError,
    StaleHunkError,
    WorkspaceError,
)
from .service import WorkspaceService

logger = logging.getLogger(__name__)


# ============= Request bodies =============

class PathRequest(BaseModel):
    path: str


class WriteRequest(BaseModel):
    path: str
    content: str


class HunkRequest(BaseModel):
    path: str
    index: int
    digest: Optional[str] = None


class CommitRequest(BaseModel):
    message: str


# ============= Error mapping =============

def status_code_for(error: WorkspaceError) -> int:
    """HTTP status for a workspace error."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (StaleHunkError, RepoUnavailableError)):
        return 409
    if isinstance(error, ClientError):
        return 400
    if isinstance(error, ExternalToolFailureError):
        return 502
    return 500


def _error_body(kind: str, detail: str) -> Dict[str, str]:
    return {"error": kind, "detail": detail}


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def create_app(service: WorkspaceService) -> FastAPI:
    """Create the FastAPI application for one workspace service.

    The caller owns the service lifecycle (``start``/``stop``).
    """
    app = FastAPI(
        title="workspace-sync",
        description="Live workspace tree, file and git state for a browser editor",
        version=WORKSPACE_SYNC_VERSION,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[service.ctx.config.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkspaceError)
    async def workspace_error_handler(request: Request, exc: WorkspaceError) -> JSONResponse:
        code = status_code_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=_error_body(exc.kind, str(exc)))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content=_error_body("InvalidInput", detail))

    _register_fs_routes(app, service)
    _register_git_routes(app, service)
    _register_event_stream(app, service)
    return app


def _register_fs_routes(app: FastAPI, service: WorkspaceService) -> None:
    @app.get("/api/fs/tree")
    def get_tree(path: str = "/") -> Dict[str, Any]:
        return _dump(service.tree(path))

    @app.get("/api/fs/files")
    def get_files() -> Dict[str, Any]:
        return {"files": service.files()}

    @app.get("/api/fs/file", response_class=PlainTextResponse)
    def get_file(path: str) -> str:
        return service.read_file(path)

    @app.put("/api/fs/file")
    def put_file(body: WriteRequest) -> Dict[str, Any]:
        result = service.write_file(body.path, body.content)
        return {"ok": True, **_dump(result)}

    @app.get("/api/search")
    def search(
        q: str = "",
        globs: Optional[str] = None,
        max_results: Optional[int] = Query(None, alias="maxResults"),
        engine: str = "auto",
    ) -> Dict[str, Any]:
        return _dump(service.search(q, globs=globs, max_results=max_results, engine=engine))


def _register_git_routes(app: FastAPI, service: WorkspaceService) -> None:
    @app.get("/api/git/status")
    def git_status() -> Dict[str, Any]:
        return _dump(service.status())

    @app.get("/api/git/summary")
    def git_summary() -> Dict[str, Any]:
        return _dump(service.summary())

    @app.get("/api/git/file-versions")
    def git_file_versions(path: str) -> Dict[str, Any]:
        return _dump(service.versions(path))

    @app.get("/api/git/hunks")
    def git_hunks(path: str, staged: bool = False) -> Dict[str, Any]:
        hunks = service.hunks(path, staged=staged)
        return {"path": path, "staged": staged, "hunks": [_dump(h) for h in hunks]}

    @app.post("/api/git/stage")
    def git_stage(body: PathRequest) -> Dict[str, Any]:
        return _dump(service.stage(body.path))

    @app.post("/api/git/unstage")
    def git_unstage(body: PathRequest) -> Dict[str, Any]:
        return _dump(service.unstage(body.path))

    @app.post("/api/git/discard")
    def git_discard(body: PathRequest) -> Dict[str, Any]:
        return _dump(service.discard(body.path))

    @app.post("/api/git/stage-hunk")
    def git_stage_hunk(body: HunkRequest) -> Dict[str, Any]:
        return _dump(service.stage_hunk(body.path, body.index, body.digest))

    @app.post("/api/git/unstage-hunk")
    def git_unstage_hunk(body: HunkRequest) -> Dict[str, Any]:
        return _dump(service.unstage_hunk(body.path, body.index, body.digest))

    @app.post("/api/git/discard-hunk")
    def git_discard_hunk(body: HunkRequest) -> Dict[str, Any]:
        return _dump(service.discard_hunk(body.path, body.index, body.digest))

    @app.post("/api/git/stage-all")
    def git_stage_all() -> Dict[str, Any]:
        return _dump(service.stage_all())

    @app.post("/api/git/unstage-all")
    def git_unstage_all() -> Dict[str, Any]:
        return _dump(service.unstage_all())

    @app.post("/api/git/discard-all")
    def git_discard_all() -> Dict[str, Any]:
        return _dump(service.discard_all())

    @app.post("/api/git/commit")
    def git_commit(body: CommitRequest) -> Dict[str, Any]:
        return _dump(service.commit(body.message))


def _register_event_stream(app: FastAPI, service: WorkspaceService) -> None:
    @app.websocket("/ws")
    async def event_stream(websocket: WebSocket) -> None:
        """Push every ChangeEvent to the client; nothing is replayed on connect."""
        # Subscribe before accepting so no event published after the
        # handshake completes can be missed
        subscription = service.bus.subscribe_async(asyncio.get_running_loop())
        await websocket.accept()

        async def pump() -> None:
            while True:
                event = await subscription.next()
                if event is None:
                    # Service stopped
                    return
                await websocket.send_json(event.model_dump(mode="json"))

        async def drain_client() -> None:
            # Clients never send anything meaningful; this just notices disconnects
            while True:
                await websocket.receive_text()

        sender = asyncio.ensure_future(pump())
        receiver = asyncio.ensure_future(drain_client())
        try:
            await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if sender.done() and sender.exception() is None and not receiver.done():
                await websocket.close()
        finally:
            subscription.close()
            for task in (sender, receiver):
                task.cancel()
            for task in (sender, receiver):
                with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                    await task
