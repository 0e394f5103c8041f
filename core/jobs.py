"""
Job lifecycle: submit, poll until a terminal state, extract the result.

The poll loop is driven by a deadline and an interval rather than a counter of
sleeps, and both the clock and the sleep function are injectable so the whole
state machine can run against a virtual clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

import aiohttp

from core.errors import (
    GenerationError,
    JobEmptyResult,
    JobFailed,
    JobTimedOut,
    SubmissionError,
    SubmissionRejected,
)
from core.graph import Graph
from core.image_utils import DEFAULT_MIME_TYPE
from core.models import (
    EngineStatus,
    GenerationResult,
    HostedResult,
    HostedStatus,
    Job,
    JobState,
    OutputImage,
    SubmitResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[int], Awaitable[None]]

TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


@dataclass(frozen=True)
class PollPolicy:
    interval: float = 2.0
    timeout: float = 300.0
    progress_every: float = 15.0


ENGINE_POLL_POLICY = PollPolicy()
HOSTED_POLL_POLICY = PollPolicy(interval=3.0)


class EngineTransport(Protocol):
    async def queue_prompt(self, workflow: Graph) -> SubmitResponse: ...

    async def get_job_status(self, prompt_id: str) -> EngineStatus | None: ...

    async def download_output(self, image: OutputImage) -> tuple[bytes, str | None]: ...


class HostedTransport(Protocol):
    async def submit(self, payload: dict[str, Any]) -> str: ...

    async def poll_status(self, job_id: str) -> HostedStatus: ...


def _mime_type(content_type: str | None) -> str:
    if not content_type:
        return DEFAULT_MIME_TYPE
    return content_type.split(";", 1)[0].strip() or DEFAULT_MIME_TYPE


class JobOrchestrator:
    def __init__(
        self,
        *,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    # -- ComfyUI -------------------------------------------------------------

    async def run_engine_job(
        self,
        engine: EngineTransport,
        workflow: Graph,
        *,
        policy: PollPolicy = ENGINE_POLL_POLICY,
        progress_cb: ProgressCallback | None = None,
        warning: str | None = None,
        seed: int | None = None,
    ) -> GenerationResult:
        try:
            response = await engine.queue_prompt(workflow)
        except (*TRANSIENT_ERRORS, ValueError) as exc:
            logger.exception("ComfyUI prompt submission failed")
            raise SubmissionError(f"ComfyUI prompt submission failed: {exc}") from exc

        job = Job(id=response.prompt_id, submitted_at=self._clock())
        if response.node_errors:
            job.advance(JobState.FAILED)
            logger.warning("ComfyUI rejected prompt: %s", response.node_errors)
            raise SubmissionRejected(response.node_errors, job_id=job.id or None)

        async def interpret(status: EngineStatus | None) -> GenerationResult | None:
            if status is None:
                return None
            if status.status_label == "error":
                detail = f": {status.error_message}" if status.error_message else ""
                raise JobFailed(f"ComfyUI generation failed{detail}")
            if not status.completed:
                return None

            image = status.first_image()
            if image is None:
                raise JobEmptyResult("ComfyUI generation completed but no output images found")
            try:
                image_bytes, content_type = await engine.download_output(image)
            except TRANSIENT_ERRORS as exc:
                raise JobFailed(f"Failed to download image from ComfyUI: {exc}") from exc
            return GenerationResult(
                image_bytes=image_bytes,
                mime_type=_mime_type(content_type),
                job_id=job.id,
                seed=seed,
                warning=warning,
            )

        return await self._poll(
            job,
            lambda: engine.get_job_status(job.id),
            interpret,
            policy=policy,
            progress_cb=progress_cb,
            label="ComfyUI generation",
        )

    # -- hosted provider -----------------------------------------------------

    async def run_hosted_job(
        self,
        provider: HostedTransport,
        payload: dict[str, Any],
        *,
        policy: PollPolicy = HOSTED_POLL_POLICY,
        progress_cb: ProgressCallback | None = None,
    ) -> HostedResult:
        try:
            job_id = await provider.submit(payload)
        except (*TRANSIENT_ERRORS, ValueError) as exc:
            raise SubmissionError(f"Generation request failed: {exc}") from exc
        if not job_id:
            raise SubmissionError("No generation ID returned")

        job = Job(id=job_id, submitted_at=self._clock())

        async def interpret(status: HostedStatus) -> HostedResult | None:
            if status.status == "failed":
                raise JobFailed(status.error or "Generation failed")
            if status.status != "completed":
                return None
            if not status.image_url:
                raise JobEmptyResult("No image URL in completed generation")
            return HostedResult(image_url=status.image_url, job_id=job.id)

        return await self._poll(
            job,
            lambda: provider.poll_status(job.id),
            interpret,
            policy=policy,
            progress_cb=progress_cb,
            label="Generation",
        )

    # -- shared state machine ------------------------------------------------

    async def _poll(
        self,
        job: Job,
        fetch_status: Callable[[], Awaitable[Any]],
        interpret: Callable[[Any], Awaitable[T | None]],
        *,
        policy: PollPolicy,
        progress_cb: ProgressCallback | None,
        label: str,
    ) -> T:
        job.advance(JobState.POLLING)
        started = self._clock()
        deadline = started + policy.timeout

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(policy.interval, remaining))

            elapsed = self._clock() - started
            if elapsed >= policy.timeout:
                break

            if progress_cb and elapsed - job.last_progress_notified_at >= policy.progress_every:
                job.last_progress_notified_at = elapsed
                await progress_cb(int(elapsed * 1000))

            try:
                status = await fetch_status()
            except (*TRANSIENT_ERRORS, ValueError):
                # Includes truncated or malformed status bodies.
                logger.debug("Status poll for %s failed, retrying...", job.id, exc_info=True)
                continue

            try:
                result = await interpret(status)
            except GenerationError as exc:
                job.advance(JobState.FAILED)
                exc.job_id = job.id
                logger.warning("%s %s failed: %s", label, job.id, exc)
                raise

            if result is not None:
                job.advance(JobState.COMPLETED)
                logger.info("%s %s completed in %.1fs", label, job.id, elapsed)
                return result

        job.advance(JobState.TIMED_OUT)
        raise JobTimedOut(
            f"{label} timed out after {policy.timeout:g}s",
            job_id=job.id,
        )
