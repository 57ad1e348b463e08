"""FastAPI app factory.

Endpoints are thin wrappers over the thread API of a :class:`CompiledGraph`.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from threadgraph import __version__
from threadgraph.checkpoint.models import StateSnapshot
from threadgraph.errors import (
    CheckpointNotFoundError,
    CheckpointStoreError,
    ReducerConflictError,
    SuspensionMisuseError,
    ThreadConflictError,
    ThreadGraphError,
)
from threadgraph.runtime.compiled import CompiledGraph, RunResult
from threadgraph.server.config import ServerSettings
from threadgraph.server.models import (
    ApiError,
    ForkRequest,
    ResumeRequest,
    RunRequest,
    ThreadList,
    UpdateStateRequest,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[ThreadGraphError], int]] = [
    (CheckpointNotFoundError, 404),
    (SuspensionMisuseError, 409),
    (ThreadConflictError, 409),
    (ReducerConflictError, 422),
    (CheckpointStoreError, 503),
]


def _to_http(error: ThreadGraphError) -> HTTPException:
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(error, kind)), 500)
    if status >= 500:
        logger.error(
            "Request failed",
            exc_info=error,
            extra={"thread_id": error.thread_id, "checkpoint_id": error.checkpoint_id},
        )
    detail = ApiError(
        error=type(error).__name__,
        message=error.message,
        thread_id=error.thread_id,
        checkpoint_id=error.checkpoint_id,
    )
    return HTTPException(status_code=status, detail=detail.model_dump(mode="json"))


def create_app(graph: CompiledGraph, settings: ServerSettings | None = None) -> FastAPI:
    settings = settings or ServerSettings()

    app = FastAPI(
        title=settings.title,
        version=__version__,
        description=f"Thread API for graph {graph.name!r}.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.graph = graph

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "graph": graph.name}

    @app.get("/api/threads", response_model=ThreadList)
    def list_threads() -> ThreadList:
        try:
            return ThreadList(threads=graph.checkpointer.list_threads())
        except Exception as e:
            raise _to_http(CheckpointStoreError(f"Could not list threads: {e}")) from e

    @app.post("/api/threads/{thread_id}/runs", response_model=RunResult)
    def run_thread(thread_id: str, req: RunRequest) -> RunResult:
        try:
            return graph.advance(
                thread_id, req.input, req.config, checkpoint_id=req.checkpoint_id
            )
        except ThreadGraphError as e:
            raise _to_http(e) from e

    @app.post("/api/threads/{thread_id}/resume", response_model=RunResult)
    def resume_thread(thread_id: str, req: ResumeRequest) -> RunResult:
        try:
            return graph.resume(thread_id, req.value, node=req.node, config=req.config)
        except ThreadGraphError as e:
            raise _to_http(e) from e

    @app.get("/api/threads/{thread_id}/state", response_model=StateSnapshot)
    def get_state(thread_id: str, checkpoint_id: str | None = None) -> StateSnapshot:
        try:
            return graph.get_state(thread_id, checkpoint_id)
        except ThreadGraphError as e:
            raise _to_http(e) from e

    @app.post("/api/threads/{thread_id}/state", response_model=StateSnapshot)
    def update_state(thread_id: str, req: UpdateStateRequest) -> StateSnapshot:
        try:
            return graph.update_state(thread_id, req.checkpoint_id, req.values)
        except ThreadGraphError as e:
            raise _to_http(e) from e

    @app.get("/api/threads/{thread_id}/history", response_model=list[StateSnapshot])
    def get_history(
        thread_id: str,
        before: str | None = None,
        limit: int | None = Query(default=None, ge=1),
    ) -> list[StateSnapshot]:
        try:
            return graph.get_history(
                thread_id, before=before, limit=limit or settings.history_page_size
            )
        except ThreadGraphError as e:
            raise _to_http(e) from e

    @app.post("/api/threads/{thread_id}/fork", response_model=StateSnapshot)
    def fork_thread(thread_id: str, req: ForkRequest) -> StateSnapshot:
        try:
            return graph.fork(thread_id, req.checkpoint_id, req.new_thread_id)
        except ThreadGraphError as e:
            raise _to_http(e) from e

    @app.delete("/api/threads/{thread_id}")
    def delete_thread(thread_id: str) -> dict[str, str]:
        try:
            graph.checkpointer.delete_thread(thread_id)
        except Exception as e:
            raise _to_http(CheckpointStoreError(f"Could not delete thread: {e}")) from e
        return {"status": "deleted", "thread_id": thread_id}

    return app
