from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

import aiohttp
import pytest

from core.errors import (
    GenerationError,
    JobEmptyResult,
    JobFailed,
    JobTimedOut,
    SubmissionError,
    SubmissionRejected,
)
from core.graph import Graph
from core.jobs import JobOrchestrator, PollPolicy
from core.models import EngineStatus, HostedStatus, Job, JobState, OutputImage, SubmitResponse


class VirtualClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEngine:
    """Replays a scripted sequence of status results; the last one repeats."""

    def __init__(
        self,
        statuses: Iterable[Any] = (None,),
        *,
        response: SubmitResponse | None = None,
        download: tuple[bytes, str | None] = (b"png-bytes", "image/png"),
    ) -> None:
        self.statuses = list(statuses)
        self.response = response or SubmitResponse(prompt_id="p-1")
        self.download = download
        self.submitted: list[Graph] = []
        self.polls = 0
        self.downloads: list[OutputImage] = []

    async def queue_prompt(self, workflow: Graph) -> SubmitResponse:
        self.submitted.append(workflow)
        return self.response

    async def get_job_status(self, prompt_id: str) -> EngineStatus | None:
        self.polls += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def download_output(self, image: OutputImage) -> tuple[bytes, str | None]:
        self.downloads.append(image)
        return self.download


def _completed(*images: OutputImage) -> EngineStatus:
    return EngineStatus(status_label="success", completed=True, outputs={"9": list(images)})


def _orchestrator(clock: VirtualClock) -> JobOrchestrator:
    return JobOrchestrator(clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_completed_job_returns_first_image(txt2img: Graph) -> None:
    clock = VirtualClock()
    running = EngineStatus(status_label="", completed=False)
    engine = FakeEngine(
        [None, running, _completed(OutputImage("a.png"), OutputImage("b.png"))],
        download=(b"data", "image/webp; charset=binary"),
    )

    result = await _orchestrator(clock).run_engine_job(engine, txt2img, seed=5, warning="note")

    assert result.image_bytes == b"data"
    assert result.mime_type == "image/webp"
    assert result.job_id == "p-1"
    assert result.seed == 5
    assert result.warning == "note"
    assert engine.downloads == [OutputImage("a.png")]
    assert engine.polls == 3
    assert clock.now == pytest.approx(6.0)


@pytest.mark.asyncio
async def test_missing_content_type_defaults_to_png(txt2img: Graph) -> None:
    engine = FakeEngine([_completed(OutputImage("a"))], download=(b"x", None))
    result = await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)
    assert result.mime_type == "image/png"


@pytest.mark.asyncio
async def test_node_errors_reject_without_polling(txt2img: Graph) -> None:
    engine = FakeEngine(
        response=SubmitResponse(prompt_id="p-2", node_errors={"6": {"errors": ["bad clip"]}})
    )

    with pytest.raises(SubmissionRejected) as exc_info:
        await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)

    assert exc_info.value.node_errors == {"6": {"errors": ["bad clip"]}}
    assert exc_info.value.job_id == "p-2"
    assert engine.polls == 0


@pytest.mark.asyncio
async def test_submit_transport_error_becomes_submission_error(txt2img: Graph) -> None:
    class Unreachable(FakeEngine):
        async def queue_prompt(self, workflow: Graph) -> SubmitResponse:
            raise aiohttp.ClientConnectionError("refused")

    with pytest.raises(SubmissionError):
        await _orchestrator(VirtualClock()).run_engine_job(Unreachable(), txt2img)


@pytest.mark.asyncio
async def test_completed_without_images_is_empty_result(txt2img: Graph) -> None:
    engine = FakeEngine([EngineStatus(status_label="success", completed=True, outputs={"9": []})])

    with pytest.raises(JobEmptyResult) as exc_info:
        await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)

    assert exc_info.value.job_id == "p-1"


@pytest.mark.asyncio
async def test_execution_error_fails_job(txt2img: Graph) -> None:
    engine = FakeEngine(
        [EngineStatus(status_label="error", completed=False, error_message="CUDA out of memory")]
    )

    with pytest.raises(JobFailed, match="CUDA out of memory"):
        await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)


@pytest.mark.asyncio
async def test_transient_poll_errors_are_retried(txt2img: Graph) -> None:
    engine = FakeEngine(
        [
            aiohttp.ClientConnectionError("reset"),
            aiohttp.ServerTimeoutError("slow"),
            _completed(OutputImage("a.png")),
        ]
    )

    result = await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)

    assert result.image_bytes == b"png-bytes"
    assert engine.polls == 3


@pytest.mark.asyncio
async def test_malformed_status_body_is_retried(txt2img: Graph) -> None:
    engine = FakeEngine(
        [
            json.JSONDecodeError("Expecting ':' delimiter", '{"abc": {"status"', 17),
            _completed(OutputImage("a.png")),
        ]
    )

    result = await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)

    assert result.image_bytes == b"png-bytes"
    assert engine.polls == 2


@pytest.mark.asyncio
async def test_persistently_malformed_status_times_out(txt2img: Graph) -> None:
    engine = FakeEngine([ValueError("truncated body")])
    policy = PollPolicy(interval=2.0, timeout=10.0, progress_every=15.0)

    with pytest.raises(JobTimedOut) as exc_info:
        await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img, policy=policy)

    assert isinstance(exc_info.value, GenerationError)
    assert exc_info.value.job_id == "p-1"


@pytest.mark.asyncio
async def test_completed_with_no_outputs_is_empty_result(txt2img: Graph) -> None:
    engine = FakeEngine([EngineStatus(status_label="success", completed=True, outputs={})])

    with pytest.raises(JobEmptyResult):
        await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)

    assert engine.downloads == []


@pytest.mark.asyncio
async def test_output_download_failure_fails_job(txt2img: Graph) -> None:
    class BrokenView(FakeEngine):
        async def download_output(self, image: OutputImage) -> tuple[bytes, str | None]:
            raise aiohttp.ClientConnectionError("view reset")

    engine = BrokenView([_completed(OutputImage("a.png"))])

    with pytest.raises(JobFailed, match="view reset") as exc_info:
        await _orchestrator(VirtualClock()).run_engine_job(engine, txt2img)

    assert exc_info.value.job_id == "p-1"
    assert engine.polls == 1


@pytest.mark.asyncio
async def test_timeout_limits_progress_notifications(txt2img: Graph) -> None:
    clock = VirtualClock()
    engine = FakeEngine([None])
    progress: list[int] = []

    async def on_progress(elapsed_ms: int) -> None:
        progress.append(elapsed_ms)

    policy = PollPolicy(interval=2.0, timeout=300.0, progress_every=15.0)
    with pytest.raises(JobTimedOut) as exc_info:
        await _orchestrator(clock).run_engine_job(
            engine, txt2img, policy=policy, progress_cb=on_progress
        )

    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.job_id == "p-1"
    assert clock.now == pytest.approx(300.0)
    assert 1 <= len(progress) <= 300 // 15
    assert progress == sorted(progress)
    assert all(b - a >= 15_000 for a, b in zip(progress, progress[1:]))


@pytest.mark.asyncio
async def test_last_sleep_is_clamped_to_deadline(txt2img: Graph) -> None:
    clock = VirtualClock()
    policy = PollPolicy(interval=4.0, timeout=10.0, progress_every=15.0)

    with pytest.raises(JobTimedOut):
        await _orchestrator(clock).run_engine_job(FakeEngine([None]), txt2img, policy=policy)

    assert clock.sleeps == [4.0, 4.0, 2.0]


class FakeProvider:
    def __init__(self, statuses: list[HostedStatus], job_id: str = "g-1") -> None:
        self.statuses = statuses
        self.job_id = job_id
        self.payloads: list[dict[str, Any]] = []

    async def submit(self, payload: dict[str, Any]) -> str:
        self.payloads.append(payload)
        return self.job_id

    async def poll_status(self, job_id: str) -> HostedStatus:
        return self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]


@pytest.mark.asyncio
async def test_hosted_job_completes() -> None:
    provider = FakeProvider(
        [HostedStatus("pending"), HostedStatus("completed", image_url="https://cdn/x.png")]
    )

    result = await _orchestrator(VirtualClock()).run_hosted_job(provider, {"prompt": "cat"})

    assert result.image_url == "https://cdn/x.png"
    assert result.job_id == "g-1"


@pytest.mark.asyncio
async def test_hosted_job_failure_and_empty_result() -> None:
    with pytest.raises(JobFailed, match="nsfw"):
        await _orchestrator(VirtualClock()).run_hosted_job(
            FakeProvider([HostedStatus("failed", error="nsfw")]), {}
        )
    with pytest.raises(JobEmptyResult):
        await _orchestrator(VirtualClock()).run_hosted_job(
            FakeProvider([HostedStatus("completed")]), {}
        )


@pytest.mark.asyncio
async def test_hosted_job_without_id_is_submission_error() -> None:
    with pytest.raises(SubmissionError):
        await _orchestrator(VirtualClock()).run_hosted_job(
            FakeProvider([HostedStatus("pending")], job_id=""), {}
        )


def test_job_state_only_moves_forward() -> None:
    job = Job(id="j")
    job.advance(JobState.POLLING)
    job.advance(JobState.COMPLETED)

    assert job.finished
    assert job.history == [JobState.SUBMITTED, JobState.POLLING, JobState.COMPLETED]
    with pytest.raises(RuntimeError):
        job.advance(JobState.POLLING)
    with pytest.raises(RuntimeError):
        Job(id="k").advance(JobState.COMPLETED)
