"""Error taxonomy shared by the generation and record services."""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple


class VideoBridgeError(RuntimeError):
    """Base class for failures surfaced to callers of the service."""


class ValidationError(VideoBridgeError):
    """Raised when caller input fails a precondition."""


class ProviderError(VideoBridgeError):
    """Raised when the video generation provider reports a failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        details: Any = None,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details
        self.job_id = job_id


class GenerationTimeoutError(VideoBridgeError, TimeoutError):
    """Raised when a generation job does not finish within its polling budget."""

    def __init__(self, job_id: str, waited_seconds: float, polls: int) -> None:
        super().__init__(
            f"Video generation timeout: job {job_id} still pending after "
            f"{waited_seconds:.1f}s ({polls} status checks)"
        )
        self.job_id = job_id
        self.waited_seconds = waited_seconds
        self.polls = polls


class NotFoundError(VideoBridgeError):
    """Raised when no resolution strategy matched the identifier."""

    def __init__(self, identifier: str, collections: Sequence[str] = ()) -> None:
        searched = ", ".join(collections) if collections else "<none>"
        super().__init__(f"Record '{identifier}' not found (searched: {searched})")
        self.identifier = identifier
        self.collections: Tuple[str, ...] = tuple(collections)


class StoreUnavailableError(VideoBridgeError):
    """Raised when the document store cannot be reached."""


__all__ = [
    "GenerationTimeoutError",
    "NotFoundError",
    "ProviderError",
    "StoreUnavailableError",
    "ValidationError",
    "VideoBridgeError",
]
