"""FastAPI application factory for the task sync service."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from config.settings import CorsConfig
from ..storage.clock import InvalidTimestampError
from ..storage.models import TaskValidationError
from ..storage.task_store import TaskStore, TaskStoreError, TaskNotFoundError
from ..sync.engine import ReconciliationEngine
from ..sync.feed import ChangeFeed
from .schemas import (
    SyncRequest,
    SyncResponse,
    TaskCreateRequest,
    TaskResponse,
    TaskUpdateRequest,
)
from .session import decode_sync_request, encode_sync_result

logger = logging.getLogger(__name__)


@contextmanager
def _http_errors() -> Iterator[None]:
    """Map domain errors raised inside a route to HTTP errors."""
    try:
        yield
    except TaskNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (TaskValidationError, InvalidTimestampError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TaskStoreError as e:
        logger.error(f"Store failure: {e}")
        raise HTTPException(status_code=503, detail="task store unavailable")


def create_app(store: TaskStore, cors: Optional[CorsConfig] = None) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        store: Task store backing every route
        cors: CORS settings; middleware is only installed when enabled

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(title="Task Sync Service")
    feed = ChangeFeed(store)
    engine = ReconciliationEngine(store, feed=feed)

    app.state.store = store
    app.state.engine = engine

    if cors is not None and cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cors.origins),
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "Accept"],
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/tasks", response_model=list[TaskResponse])
    def list_tasks() -> list[dict]:
        with _http_errors():
            return [task.to_dict() for task in store.list_live()]

    # Declared before /tasks/{task_id} so "changes" is not taken as an id
    @app.get("/tasks/changes", response_model=list[TaskResponse])
    def get_changes(since: str = Query(...)) -> list[dict]:
        with _http_errors():
            return [task.to_dict() for task in feed.since(since)]

    @app.get("/tasks/{task_id}", response_model=TaskResponse)
    def get_task(task_id: str) -> dict:
        with _http_errors():
            return store.get(task_id).to_dict()

    @app.post("/tasks", response_model=TaskResponse, status_code=201)
    def create_task(body: TaskCreateRequest) -> dict:
        with _http_errors():
            task = store.create(body.title, body.description)
        logger.info(f"Created task {task.id}")
        return task.to_dict()

    @app.put("/tasks/{task_id}", response_model=TaskResponse)
    def update_task(task_id: str, body: TaskUpdateRequest) -> dict:
        with _http_errors():
            return store.update(task_id, body.model_dump(exclude_unset=True)).to_dict()

    @app.patch("/tasks/{task_id}/toggle", response_model=TaskResponse)
    def toggle_task(task_id: str) -> dict:
        with _http_errors():
            return store.toggle(task_id).to_dict()

    @app.delete("/tasks/{task_id}", status_code=204)
    def delete_task(task_id: str) -> Response:
        with _http_errors():
            store.soft_delete(task_id)
        return Response(status_code=204)

    # exclude_unset drops absent localId/data but keeps deletedAt: null
    @app.post(
        "/tasks/sync",
        response_model=SyncResponse,
        response_model_exclude_unset=True,
    )
    def sync(body: SyncRequest) -> dict:
        last_sync_timestamp, changes = decode_sync_request(body)
        with _http_errors():
            result = engine.sync(last_sync_timestamp, changes)
        return encode_sync_result(result)

    return app
