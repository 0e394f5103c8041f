from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MAX_SEED = 2**32 - 1


@dataclass(frozen=True)
class GenerationRequest:
    """Everything a single template run may override."""

    prompt_text: str
    negative_prompt_text: str | None = None
    seed: int | None = None
    width: int | None = None
    height: int | None = None
    aspect_ratio: str | None = None
    reference_image_urls: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.seed is not None and not 0 <= self.seed <= MAX_SEED:
            raise ValueError(f"seed must be in 0..{MAX_SEED}")
        for name in ("width", "height"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValueError(f"{name} must be positive")
        object.__setattr__(self, "reference_image_urls", tuple(self.reference_image_urls))


@dataclass(frozen=True)
class GenerationResult:
    image_bytes: bytes
    mime_type: str
    job_id: str
    seed: int | None = None
    warning: str | None = None


@dataclass(frozen=True)
class HostedResult:
    image_url: str
    job_id: str


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT})

_ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.SUBMITTED: frozenset({JobState.POLLING, JobState.FAILED}),
    JobState.POLLING: TERMINAL_STATES,
}


@dataclass
class Job:
    """One in-flight request, owned by a single orchestrator run."""

    id: str
    state: JobState = JobState.SUBMITTED
    submitted_at: float = field(default_factory=time.monotonic)
    last_progress_notified_at: float = 0.0
    history: list[JobState] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append(self.state)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new_state: JobState) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise RuntimeError(
                f"Job {self.id}: illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)


# ---------------------------------------------------------------------------
# Engine / provider responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubmitResponse:
    prompt_id: str
    node_errors: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OutputImage:
    filename: str
    subfolder: str = ""
    type: str = "output"


@dataclass
class EngineStatus:
    """Snapshot of a prompt's history entry."""

    status_label: str
    completed: bool
    outputs: dict[str, list[OutputImage]] = field(default_factory=dict)
    error_message: str | None = None

    def first_image(self) -> OutputImage | None:
        for images in self.outputs.values():
            if images:
                return images[0]
        return None


@dataclass(frozen=True)
class HostedStatus:
    status: str
    image_url: str | None = None
    error: str | None = None
