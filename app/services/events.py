"""Structured event helpers shared across the service.

Events are ordinary log records on the ``video_bridge.events`` logger. The
message reads ``[TYPE] text (key=value, ...)`` and the same details are
attached to the record as ``event_*`` attributes for handlers that want them.
Request and job identifiers bound through the context variables below are
merged into every event emitted while they are active.
"""

from __future__ import annotations

import contextvars
import logging
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from bson import ObjectId


DEFAULT_EVENT_LOGGER = logging.getLogger("video_bridge.events")

_MAX_VALUE_LENGTH = 200

_REQUEST_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "video_bridge_request_id",
    default=None,
)
_JOB_ID_VAR: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "video_bridge_job_id",
    default=None,
)

EventLogger = logging.Logger | logging.LoggerAdapter


class EventKind(str, Enum):
    APP = "APP_EVENT"
    DB = "DB_QUERY"
    PROVIDER = "PROVIDER_CALL"
    TASK = "TASK_STATE"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def bind_request_id(request_id: Optional[str]) -> contextvars.Token[Optional[str]]:
    return _REQUEST_ID_VAR.set(request_id)


def reset_request_id(token: contextvars.Token[Optional[str]]) -> None:
    _REQUEST_ID_VAR.reset(token)


def bind_job_id(job_id: Optional[str]) -> contextvars.Token[Optional[str]]:
    return _JOB_ID_VAR.set(job_id)


def reset_job_id(token: contextvars.Token[Optional[str]]) -> None:
    _JOB_ID_VAR.reset(token)


def collect_correlation_context() -> Dict[str, str]:
    """Return the identifiers bound in the current context, omitting unset ones."""

    bound = {"request_id": _REQUEST_ID_VAR.get(), "job_id": _JOB_ID_VAR.get()}
    return {key: str(value) for key, value in bound.items() if value}


def _clip(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None
    if len(text) > _MAX_VALUE_LENGTH:
        return text[:_MAX_VALUE_LENGTH] + "…"
    return text


def sanitize_context_value(value: Any) -> Any:
    """Return a log-friendly, JSON-serialisable form of *value* (``None`` drops it)."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return _clip(", ".join(str(item) for item in value))
    # ObjectId, Path and everything else read best as their string form.
    if isinstance(value, (ObjectId, Path)):
        return str(value)
    return _clip(str(value))


def normalize_context(values: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    """Drop empty entries and sanitise the rest."""

    normalised: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        if key is None or key == "":
            continue
        value = sanitize_context_value(raw_value)
        if value is None or value == "" or value == {}:
            continue
        normalised[str(key)] = value
    return normalised


def emit_structured_event(
    event_type: EventKind | str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    """Log one event, merging the bound correlation identifiers into its details."""

    kind = event_type.value if isinstance(event_type, EventKind) else str(event_type or "")
    text = str(message).strip()
    correlation = collect_correlation_context()
    context_fields = normalize_context(context)
    payload_fields = normalize_context(payload)

    details: Dict[str, Any] = {**correlation, **context_fields, **payload_fields}
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)

    rendered = f"[{kind}] {text}" if kind else text
    if details:
        rendered += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"

    extra: Dict[str, Any] = {"event": text, "event_type": kind}
    for name, fields in (
        ("event_context", context_fields),
        ("event_payload", payload_fields),
        ("event_correlation", correlation),
    ):
        if fields:
            extra[name] = fields
    if duration_ms is not None:
        extra["event_duration_ms"] = float(duration_ms)
    logger.log(level, rendered, extra=extra)


def emit_db_event(
    action: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.DEBUG,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    """Report one document store round trip."""

    emit_structured_event(
        EventKind.DB, action, payload=payload, duration_ms=duration_ms, level=level, logger=logger
    )


def emit_provider_event(
    operation: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    """Report one outbound call to the video provider."""

    emit_structured_event(
        EventKind.PROVIDER,
        operation,
        payload=payload,
        duration_ms=duration_ms,
        level=level,
        logger=logger,
    )


def emit_task_event(
    phase: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    level: int = logging.INFO,
    logger: EventLogger = DEFAULT_EVENT_LOGGER,
) -> None:
    """Report a generation job lifecycle change; *phase* leads the payload."""

    emit_structured_event(
        EventKind.TASK,
        message or phase,
        payload={"phase": phase, **(payload or {})},
        level=level,
        logger=logger,
    )


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "EventKind",
    "bind_job_id",
    "bind_request_id",
    "collect_correlation_context",
    "emit_db_event",
    "emit_provider_event",
    "emit_structured_event",
    "emit_task_event",
    "new_correlation_id",
    "normalize_context",
    "reset_job_id",
    "reset_request_id",
    "sanitize_context_value",
]
