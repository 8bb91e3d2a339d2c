"""FastAPI application: workstream generation as a server-sent-event stream, plus manual placement."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from workstream_engine import __version__
from workstream_engine.config import Settings
from workstream_engine.filters import FilterValidationError, parse_generate_request
from workstream_engine.metering import InsufficientCreditsError, MeteringGate
from workstream_engine.models import (
    LLMJsonClient,
    TextEmbeddingClient,
    build_embedding_client,
    build_llm_client,
)
from workstream_engine.pipeline.manual import AssignmentError, assign_achievement
from workstream_engine.schemas import WorkstreamFilters
from workstream_engine.service import WorkstreamService
from workstream_engine.store import WorkstreamStore
from workstream_engine.streaming import CancellableEventSink, QueueEventSink, encode_sse

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], WorkstreamStore]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

router = APIRouter()


class ProjectOwnershipError(FilterValidationError):
    """Raised when a filter names projects the caller does not own."""


def get_store(request: Request) -> Iterator[WorkstreamStore]:
    """Request-scoped store for the checks that run before the stream opens."""

    store = request.app.state.store_factory()
    try:
        yield store
    finally:
        store.close()


def get_current_user(
    authorization: str | None = Header(None),
    store: WorkstreamStore = Depends(get_store),
) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="No Authorization header found")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Invalid header format")

    user_id = store.user_id_for_token(token.strip())
    if user_id is None or store.get_user(user_id) is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


def ensure_projects_owned(store: WorkstreamStore, user_id: str, filters: WorkstreamFilters | None) -> None:
    if filters is None or not filters.project_ids:
        return
    owned = store.owned_project_ids(user_id, filters.project_ids)
    missing = [project_id for project_id in filters.project_ids if project_id not in owned]
    if missing:
        raise ProjectOwnershipError(f"Projects not found or not owned by user: {', '.join(missing)}")


async def _read_filters(request: Request, settings: Settings) -> WorkstreamFilters | None:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FilterValidationError(f"Request body is not valid JSON: {exc.msg}") from exc
    return parse_generate_request(payload, max_range_months=settings.max_filter_range_months)


def _run_worker(
    app: FastAPI,
    user_id: str,
    filters: WorkstreamFilters | None,
    sink: CancellableEventSink,
    channel: QueueEventSink,
    action: str,
) -> None:
    store = app.state.store_factory()
    try:
        service = WorkstreamService(
            app.state.settings,
            store,
            app.state.embedding_client,
            app.state.llm_client,
        )
        if action == "auto_assign":
            service.auto_assign(user_id, filters, sink)
        else:
            service.generate(user_id, filters, sink)
    finally:
        store.close()
        channel.close()


async def _event_stream(
    request: Request,
    channel: QueueEventSink,
    sink: CancellableEventSink,
) -> AsyncIterator[str]:
    events = channel.iter_events()
    try:
        while True:
            event = await run_in_threadpool(next, events, None)
            if event is None:
                break
            if await request.is_disconnected():
                logger.info("Client disconnected; cancelling workstream run")
                break
            yield encode_sse(event)
    finally:
        sink.cancel()


async def _open_stream(
    request: Request,
    user_id: str,
    store: WorkstreamStore,
    action: str,
) -> StreamingResponse | JSONResponse:
    settings: Settings = request.app.state.settings
    try:
        filters = await _read_filters(request, settings)
        ensure_projects_owned(store, user_id, filters)
    except FilterValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    gate = MeteringGate(
        store,
        cost=settings.generation_credit_cost,
        unlimited_levels=settings.unlimited_user_levels,
    )
    try:
        gate.reserve(user_id)
    except InsufficientCreditsError as exc:
        return JSONResponse(
            status_code=402,
            content={"error": "Insufficient credits", "required": exc.required, "available": exc.available},
        )

    channel = QueueEventSink()
    sink = CancellableEventSink(channel)
    threading.Thread(
        target=_run_worker,
        args=(request.app, user_id, filters, sink, channel, action),
        name=f"workstreams-{action}-{user_id}",
        daemon=True,
    ).start()

    return StreamingResponse(
        _event_stream(request, channel, sink),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/workstreams/generate")
async def generate_workstreams(
    request: Request,
    user_id: str = Depends(get_current_user),
    store: WorkstreamStore = Depends(get_store),
):
    """Cluster or incrementally assign the caller's achievements, streaming progress."""

    return await _open_stream(request, user_id, store, "generate")


@router.post("/workstreams/auto-assign")
async def auto_assign_workstreams(
    request: Request,
    user_id: str = Depends(get_current_user),
    store: WorkstreamStore = Depends(get_store),
):
    """Assign new achievements to existing workstreams, streaming progress."""

    return await _open_stream(request, user_id, store, "auto_assign")


class _AssignInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    workstream_id: str | None = Field(alias="workstreamId")


@router.put("/achievements/{achievement_id}/workstream")
async def assign_achievement_workstream(
    achievement_id: str,
    request: Request,
    user_id: str = Depends(get_current_user),
    store: WorkstreamStore = Depends(get_store),
):
    """Pin an achievement to one of the caller's workstreams, or unpin it with null."""

    try:
        body = _AssignInput.model_validate_json(await request.body())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid body: {exc.errors(include_url=False)}") from exc
    try:
        outcome = assign_achievement(store, user_id, achievement_id, body.workstream_id)
    except AssignmentError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "achievementId": outcome.achievement_id,
        "workstreamId": outcome.workstream_id,
        "previousWorkstreamId": outcome.previous_workstream_id,
        "archivedWorkstreamIds": outcome.archived,
    }


@router.get("/health")
async def health_check() -> dict[str, Any]:
    return {"status": "healthy", "service": "workstream-engine", "version": __version__}


def create_app(
    settings: Settings | None = None,
    *,
    store_factory: StoreFactory | None = None,
    embedding_client: TextEmbeddingClient | None = None,
    llm_client: LLMJsonClient | None = None,
) -> FastAPI:
    """Build the application; collaborators default to the ones ``settings`` describes."""

    settings = settings or Settings()
    app = FastAPI(title="Workstream Engine", version=__version__)
    app.state.settings = settings
    app.state.store_factory = store_factory or (lambda: WorkstreamStore(path=settings.database_path))
    app.state.embedding_client = embedding_client or build_embedding_client(settings)
    app.state.llm_client = llm_client if llm_client is not None else build_llm_client(settings)
    app.include_router(router)
    return app
