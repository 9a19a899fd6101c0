"""HTTP client for the D-ID "talks" video generation API."""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import ProviderError
from .events import emit_provider_event


LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TalkStatus:
    """Status snapshot returned by the provider for one job."""

    status: str
    result_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class VideoProvider(Protocol):
    """Protocol describing the submission and status calls of a provider."""

    async def create_talk(self, script: str, presenter_id: str) -> str:
        """Submit *script* for synthesis and return the provider job id."""

    async def get_talk(self, talk_id: str) -> TalkStatus:
        """Return the current status of job *talk_id*."""


def build_basic_authorization(api_key: str) -> str:
    """Return the ``Authorization`` header value expected by the provider."""

    token = base64.b64encode(api_key.encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _extract_error_message(response: httpx.Response) -> tuple[str, Any]:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return (text or f"Provider responded with HTTP {response.status_code}"), text
    if isinstance(body, dict):
        for key in ("details", "error", "description", "message"):
            value = body.get(key)
            if value:
                return (value if isinstance(value, str) else str(value)), body
    return f"Provider responded with HTTP {response.status_code}", body


class TalksClient:
    """Thin async wrapper around the provider's job submission and status endpoints.

    A single :class:`httpx.AsyncClient` is kept for the lifetime of the
    process and shared by every request. Transport and HTTP status failures
    are reported as :class:`ProviderError`; nothing is retried here.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        submit_timeout: float = 120.0,
        poll_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._submit_timeout = submit_timeout
        self._poll_timeout = poll_timeout
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": build_basic_authorization(api_key)},
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        timeout: float,
        json: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            response = await self._client.request(method, path, json=json, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as error:
            message, details = _extract_error_message(error.response)
            emit_provider_event(
                operation,
                payload={
                    "path": path,
                    "status": "error",
                    "http_status": error.response.status_code,
                    "error": message,
                },
                duration_ms=(time.perf_counter() - start) * 1000.0,
                level=logging.WARNING,
            )
            raise ProviderError(
                message,
                status_code=error.response.status_code,
                details=details,
                job_id=job_id,
            ) from error
        except httpx.HTTPError as error:
            emit_provider_event(
                operation,
                payload={
                    "path": path,
                    "status": "error",
                    "error": f"{error.__class__.__name__}: {error}",
                },
                duration_ms=(time.perf_counter() - start) * 1000.0,
                level=logging.WARNING,
            )
            raise ProviderError(
                f"Provider request failed: {error.__class__.__name__}: {error}",
                job_id=job_id,
            ) from error

        emit_provider_event(
            operation,
            payload={"path": path, "status": "ok", "http_status": response.status_code},
            duration_ms=(time.perf_counter() - start) * 1000.0,
            level=logging.DEBUG,
        )
        try:
            data = response.json()
        except ValueError as error:
            raise ProviderError(
                "Provider returned a non-JSON response",
                status_code=response.status_code,
                details=response.text,
                job_id=job_id,
            ) from error
        if not isinstance(data, dict):
            raise ProviderError(
                "Provider returned an unexpected payload",
                status_code=response.status_code,
                details=data,
                job_id=job_id,
            )
        return data

    async def create_talk(self, script: str, presenter_id: str) -> str:
        payload = {
            "script": {"type": "text", "input": script, "subtitles": "false"},
            "presenter_id": presenter_id,
        }
        data = await self._request(
            "create_talk",
            "POST",
            "/talks",
            json=payload,
            timeout=self._submit_timeout,
        )
        talk_id = data.get("id")
        if not talk_id:
            raise ProviderError("Provider response did not include a job id", details=data)
        LOGGER.info("Submitted generation job %s (presenter=%s)", talk_id, presenter_id)
        return str(talk_id)

    async def get_talk(self, talk_id: str) -> TalkStatus:
        data = await self._request(
            "get_talk",
            "GET",
            f"/talks/{talk_id}",
            timeout=self._poll_timeout,
            job_id=talk_id,
        )
        status = str(data.get("status") or "").strip()
        result_url = data.get("result_url")
        return TalkStatus(
            status=status,
            result_url=str(result_url) if result_url else None,
            raw=data,
        )


__all__ = ["TalkStatus", "TalksClient", "VideoProvider", "build_basic_authorization"]
