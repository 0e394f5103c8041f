from __future__ import annotations

from typing import Any


class GenerationError(Exception):
    """Terminal failure of a single generation request."""

    kind = "generation_error"

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class GraphIncomplete(GenerationError):
    kind = "graph_incomplete"

    def __init__(self, role: str, message: str | None = None) -> None:
        super().__init__(message or f"Workflow has no {role} node")
        self.role = role


class ReferenceFetchFailed(GenerationError):
    kind = "reference_fetch_failed"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to download reference image from {url}: {reason}")
        self.url = url


class ReferenceUploadFailed(GenerationError):
    kind = "reference_upload_failed"

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to upload reference image {url} to ComfyUI: {reason}")
        self.url = url


class SubmissionRejected(GenerationError):
    kind = "submission_rejected"

    def __init__(self, node_errors: dict[str, Any], *, job_id: str | None = None) -> None:
        nodes = ", ".join(sorted(str(node_id) for node_id in node_errors))
        super().__init__(f"ComfyUI rejected the workflow (nodes: {nodes})", job_id=job_id)
        self.node_errors = node_errors


class SubmissionError(GenerationError):
    kind = "submission_error"


class JobFailed(GenerationError):
    kind = "job_failed"


class JobEmptyResult(GenerationError):
    kind = "job_empty_result"


class JobTimedOut(GenerationError, TimeoutError):
    kind = "timed_out"
