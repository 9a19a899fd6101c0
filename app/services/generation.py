"""Submission and bounded polling of external video generation jobs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Optional

from .errors import GenerationTimeoutError, ProviderError, ValidationError
from .events import bind_job_id, emit_task_event, reset_job_id
from .provider import TalkStatus, VideoProvider


LOGGER = logging.getLogger(__name__)

MIN_INPUT_LENGTH = 3
DONE_TOKENS: FrozenSet[str] = frozenset({"done"})
FAILED_TOKENS: FrozenSet[str] = frozenset({"failed", "error", "rejected"})

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    IN_PROGRESS = "inProgress"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timedOut"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.FAILED, JobStatus.TIMED_OUT})


def interpret_status(token: Optional[str]) -> JobStatus:
    """Map a provider status token onto :class:`JobStatus`.

    Only exact terminal tokens end the job; everything else, including
    unknown or empty values, means the job is still running.
    """

    if token in DONE_TOKENS:
        return JobStatus.DONE
    if token in FAILED_TOKENS:
        return JobStatus.FAILED
    return JobStatus.IN_PROGRESS


class InvalidTransitionError(RuntimeError):
    """Raised when a terminal job is asked to change state."""


@dataclass
class GenerationJob:
    """Represents one submission/poll lifecycle at the provider."""

    id: str
    input_text: str
    status: JobStatus = JobStatus.SUBMITTED
    result_url: Optional[str] = None
    provider_status: Optional[str] = None
    polls: int = 0
    error: Optional[str] = None

    def _transition(self, status: JobStatus) -> None:
        if self.status.is_terminal:
            raise InvalidTransitionError(
                f"Job {self.id} is already {self.status.value}; cannot move to {status.value}"
            )
        previous = self.status
        self.status = status
        if previous is not status:
            emit_task_event(
                status.value,
                "Generation job state changed",
                payload={
                    "job": self.id,
                    "from": previous.value,
                    "to": status.value,
                    "polls": self.polls,
                },
            )

    def record_poll(self, snapshot: TalkStatus) -> JobStatus:
        self.polls += 1
        self.provider_status = snapshot.status
        status = interpret_status(snapshot.status)
        if status is JobStatus.DONE:
            self.mark_done(snapshot.result_url)
        elif status is JobStatus.FAILED:
            self.mark_failed(f"provider reported '{snapshot.status}'")
        else:
            self._transition(JobStatus.IN_PROGRESS)
        return self.status

    def mark_done(self, result_url: Optional[str]) -> None:
        self._transition(JobStatus.DONE)
        self.result_url = result_url

    def mark_failed(self, message: str) -> None:
        self._transition(JobStatus.FAILED)
        self.error = message

    def mark_timed_out(self) -> None:
        self._transition(JobStatus.TIMED_OUT)


@dataclass(frozen=True)
class JobHandle:
    id: str
    input_text: str
    presenter_id: str


@dataclass(frozen=True)
class JobResult:
    ok: bool
    result_url: str
    job: GenerationJob = field(compare=False)

    @property
    def polls(self) -> int:
        return self.job.polls


def validate_input_text(text: Optional[str]) -> str:
    """Return *text* stripped, or raise :class:`ValidationError` when too short."""

    if text is None or not isinstance(text, str):
        raise ValidationError("Description is required for AI video generation.")
    stripped = text.strip()
    if len(stripped) < MIN_INPUT_LENGTH:
        raise ValidationError(
            f"Description must be at least {MIN_INPUT_LENGTH} characters for AI video generation."
        )
    return stripped


class VideoGenerationOrchestrator:
    """Drive a provider job from submission to a terminal result.

    The clock and sleep primitives are injected so the polling loop can be
    exercised without real delays. One failed poll ends the loop: the caller
    decides whether the whole operation should be retried.
    """

    def __init__(
        self,
        provider: VideoProvider,
        *,
        presenter_id: str,
        poll_interval: float = 3.0,
        max_wait: float = 600.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._presenter_id = presenter_id
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._clock = clock
        self._sleep = sleep

    @property
    def presenter_id(self) -> str:
        return self._presenter_id

    async def submit_job(self, input_text: Optional[str], speaker_profile: Optional[str] = None) -> JobHandle:
        """Validate *input_text* and issue exactly one job-creation request."""

        text = validate_input_text(input_text)
        presenter_id = speaker_profile or self._presenter_id
        job_id = await self._provider.create_talk(text, presenter_id)
        emit_task_event(
            JobStatus.SUBMITTED.value,
            "Generation job submitted",
            payload={"job": job_id, "presenter": presenter_id, "characters": len(text)},
        )
        return JobHandle(id=job_id, input_text=text, presenter_id=presenter_id)

    async def await_completion(
        self,
        handle: JobHandle,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> JobResult:
        """Poll the provider until *handle* reaches a terminal status."""

        interval = self._poll_interval if poll_interval is None else max(0.0, poll_interval)
        budget = self._max_wait if max_wait is None else max(0.0, max_wait)
        job = GenerationJob(id=handle.id, input_text=handle.input_text)
        job_token = bind_job_id(handle.id)
        started = self._clock()
        try:
            while True:
                snapshot = await self._provider.get_talk(handle.id)
                status = job.record_poll(snapshot)
                LOGGER.debug(
                    "Job %s poll #%s returned '%s'", handle.id, job.polls, snapshot.status
                )

                if status is JobStatus.DONE:
                    if not job.result_url:
                        raise ProviderError(
                            "Provider reported completion without a result URL",
                            details=snapshot.raw,
                            job_id=handle.id,
                        )
                    LOGGER.info("Job %s ready after %s polls: %s", handle.id, job.polls, job.result_url)
                    return JobResult(ok=True, result_url=job.result_url, job=job)

                if status is JobStatus.FAILED:
                    LOGGER.warning("Job %s failed at the provider (%s)", handle.id, snapshot.status)
                    raise ProviderError(
                        "generation failed",
                        details=snapshot.raw,
                        job_id=handle.id,
                    )

                elapsed = self._clock() - started
                remaining = budget - elapsed
                if remaining <= 0:
                    job.mark_timed_out()
                    LOGGER.warning(
                        "Job %s timed out after %.1fs (%s polls)", handle.id, elapsed, job.polls
                    )
                    raise GenerationTimeoutError(handle.id, elapsed, job.polls)

                await self._sleep(min(interval, remaining))
        finally:
            reset_job_id(job_token)

    async def generate(self, input_text: Optional[str]) -> JobResult:
        handle = await self.submit_job(input_text)
        return await self.await_completion(handle)


__all__ = [
    "DONE_TOKENS",
    "FAILED_TOKENS",
    "GenerationJob",
    "InvalidTransitionError",
    "JobHandle",
    "JobResult",
    "JobStatus",
    "MIN_INPUT_LENGTH",
    "VideoGenerationOrchestrator",
    "interpret_status",
    "validate_input_text",
]
