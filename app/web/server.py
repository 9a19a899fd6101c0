"""FastAPI application exposing video generation and record updates to the frontend."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from bson import ObjectId
from fastapi import FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..config import AppConfig
from ..services.errors import (
    GenerationTimeoutError,
    NotFoundError,
    ProviderError,
    StoreUnavailableError,
    ValidationError,
    VideoBridgeError,
)
from ..services.events import (
    EventKind,
    bind_request_id,
    emit_structured_event,
    new_correlation_id,
    reset_request_id,
)
from ..services.generation import VideoGenerationOrchestrator
from ..services.records import RecordWriter
from ..services.resolver import NestedRecord, RecordResolver, ResolvedRecord
from ..services.store import DocumentStore
from ..ui.overview import collect_inspection


LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "Subtopic Video Bridge"
REQUEST_ID_HEADER = "X-Request-ID"
_ALLOWED_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
_ALLOWED_HEADERS = ["Content-Type", "Authorization", "X-Requested-With"]
_NOT_FOUND_SUGGESTIONS = [
    "1. Make sure the subtopic was created before attaching a video",
    "2. Verify the collection hint matches the subject collection name",
    "3. Check that the subtopic identifier is correct",
]


class RequestContextMiddleware:
    """Assign a correlation identifier to each request and expose it via contextvars."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = new_correlation_id()
        scope_state = scope.get("state")
        if scope_state is None:
            scope_state = {}
            scope["state"] = scope_state
        if isinstance(scope_state, dict):
            scope_state["request_id"] = request_id
        else:
            setattr(scope_state, "request_id", request_id)

        async def _send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.append(REQUEST_ID_HEADER, request_id)
            await send(message)

        request_token = bind_request_id(request_id)
        try:
            await self.app(scope, receive, _send_with_request_id)
        finally:
            reset_request_id(request_token)


class GeneratePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subtopic_identifier: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("subtopicIdentifier", "subtopic"),
    )
    description: Optional[str] = None


class AttachVideoPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    record_identifier: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("recordIdentifier", "subtopicId"),
    )
    video_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("videoUrl", "aiVideoUrl"),
    )
    collection_hint: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("collectionHint", "subjectName"),
    )
    database: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("database", "dbname"),
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubtopicCreatePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    collection: str = Field(..., min_length=1)
    unitName: Optional[str] = None
    subtopicName: Optional[str] = None
    parentId: Optional[str] = None
    database: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("database", "dbname"),
    )


def _encode(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder={ObjectId: str})


def _serialize_record(record: ResolvedRecord) -> Dict[str, Any]:
    body: Dict[str, Any] = {"record": _encode(record.target)}
    if isinstance(record, NestedRecord):
        body["parent"] = {
            "_id": str(record.parent.get("_id")),
            "unitName": record.parent.get("unitName"),
        }
        body["idField"] = record.id_field
    return body


def _error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"error": message}
    body.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=_encode(body))


def _log_event(message: str, **context: Any) -> None:
    emit_structured_event(EventKind.APP, message, context=context)


def create_app(
    *,
    config: AppConfig,
    store: DocumentStore,
    orchestrator: VideoGenerationOrchestrator,
    resolver: RecordResolver,
    writer: RecordWriter,
    closers: Optional[List[Any]] = None,
) -> FastAPI:
    """Return a configured FastAPI application.

    ``closers`` are objects with an async ``aclose()`` or ``close()`` method
    that are released when the application shuts down. The store is pinged
    once at startup; failing to reach it aborts startup after the closers
    are released. Routes that touch records accept an optional database name
    and fall back to the configured one.
    """

    @contextlib.asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            await store.ping()
            LOGGER.info("%s ready (database=%s)", SERVICE_NAME, config.database_name)
            yield
        finally:
            for resource in closers or ():
                closer = getattr(resource, "aclose", None) or getattr(resource, "close", None)
                if closer is None:
                    continue
                try:
                    await closer()
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Failed to close %r during shutdown", resource)

    app = FastAPI(
        title=SERVICE_NAME,
        description="Generate subtopic videos and attach them to stored lessons",
        lifespan=_lifespan,
    )
    app.state.config = config
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.allowed_origins),
        allow_credentials=True,
        allow_methods=_ALLOWED_METHODS,
        allow_headers=_ALLOWED_HEADERS,
    )
    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(VideoBridgeError)
    async def _handle_service_error(request: Request, error: VideoBridgeError) -> JSONResponse:
        if isinstance(error, ValidationError):
            return _error_response(status.HTTP_400_BAD_REQUEST, str(error))
        if isinstance(error, NotFoundError):
            return _error_response(
                status.HTTP_404_NOT_FOUND,
                "Subtopic not found in database",
                identifier=error.identifier,
                collections=list(error.collections),
                suggestion=_NOT_FOUND_SUGGESTIONS,
            )
        if isinstance(error, GenerationTimeoutError):
            LOGGER.warning("Generation timed out: %s", error)
            return _error_response(
                status.HTTP_504_GATEWAY_TIMEOUT,
                str(error),
                jobId=error.job_id,
                polls=error.polls,
            )
        if isinstance(error, ProviderError):
            LOGGER.error("Video provider error: %s", error)
            return _error_response(
                status.HTTP_502_BAD_GATEWAY,
                str(error),
                jobId=error.job_id,
                providerStatus=error.status_code,
            )
        if isinstance(error, StoreUnavailableError):
            LOGGER.error("Document store unavailable: %s", error)
            return _error_response(status.HTTP_503_SERVICE_UNAVAILABLE, str(error))
        LOGGER.error("Unhandled service error: %s", error)
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(error))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "database": config.database_name,
        }

    @app.post("/generate-and-upload")
    async def generate_and_upload(payload: GeneratePayload) -> Dict[str, Any]:
        subtopic = (payload.subtopic_identifier or "").strip()
        if not subtopic:
            raise ValidationError("A subtopic identifier is required for AI video generation.")

        _log_event("Starting AI video generation", subtopic=subtopic)
        handle = await orchestrator.submit_job(payload.description)
        result = await orchestrator.await_completion(handle)
        _log_event("AI video ready", subtopic=subtopic, job=handle.id, polls=result.polls)
        return {
            "videoUrl": result.result_url,
            "jobId": handle.id,
            "polls": result.polls,
            "subtopicIdentifier": subtopic,
            "message": "AI video generated successfully",
        }

    @app.put("/api/updateSubtopicVideo")
    async def update_subtopic_video(payload: AttachVideoPayload) -> Dict[str, Any]:
        scoped = store.with_database(payload.database)
        _log_event(
            "Attaching AI video",
            identifier=payload.record_identifier,
            collection=payload.collection_hint,
            database=scoped.database_name,
        )
        outcome = await resolver.for_store(scoped).attach_video(
            payload.record_identifier or "",
            payload.video_url or "",
            payload.metadata,
            payload.collection_hint,
        )
        return {"status": "ok", **outcome.to_dict(), "database": scoped.database_name}

    @app.get("/api/debug-subtopic/{identifier}")
    async def debug_subtopic(
        identifier: str,
        collection: Optional[str] = Query(None),
        subject_name: Optional[str] = Query(None, alias="subjectName"),
        dbname: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        scoped = store.with_database(dbname)
        outcome = await resolver.for_store(scoped).locate(identifier, collection or subject_name)
        body: Dict[str, Any] = {
            "found": outcome.matched,
            **outcome.to_dict(),
            "database": scoped.database_name,
            "searchedId": identifier,
            "collectionsSearched": list(outcome.collections_searched),
        }
        if outcome.record is not None:
            body.update(_serialize_record(outcome.record))
        else:
            body["suggestion"] = _NOT_FOUND_SUGGESTIONS
        return body

    @app.post("/api/subtopics", status_code=status.HTTP_201_CREATED)
    async def create_subtopic(payload: SubtopicCreatePayload) -> Dict[str, Any]:
        scoped = store.with_database(payload.database)
        document = payload.model_dump(exclude={"collection", "database"}, exclude_none=True)
        created = await writer.for_store(scoped).create_record(payload.collection, document)
        _log_event(
            "Created subtopic",
            identifier=created.identifier,
            location=created.location.value,
            collection=created.collection_name,
            database=scoped.database_name,
        )
        return {**created.to_dict(), "database": scoped.database_name}

    @app.get("/api/inspect-database")
    async def inspect_database(dbname: Optional[str] = Query(None)) -> Dict[str, Any]:
        scoped = store.with_database(dbname)
        snapshot = await collect_inspection(scoped, scoped.database_name)
        return snapshot.to_dict()

    return app


__all__ = ["RequestContextMiddleware", "create_app"]
