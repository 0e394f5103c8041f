"""
End-to-end generation flows.

ComfyUI: roles -> instantiate -> reference images -> gate -> submit/poll.
Hosted:  gate -> submit/poll.
"""

from __future__ import annotations

import dataclasses
import logging
import random
from typing import Any, Protocol

from core.gate import ConcurrencyGate
from core.graph import Graph
from core.instantiate import instantiate
from core.jobs import (
    ENGINE_POLL_POLICY,
    HOSTED_POLL_POLICY,
    EngineTransport,
    HostedTransport,
    JobOrchestrator,
    PollPolicy,
    ProgressCallback,
)
from core.models import GenerationRequest, GenerationResult, HostedResult
from core.references import ReferenceTransport, apply_reference_images
from core.roles import RoleMap, infer_roles
from core.workflow_info import calculate_size

logger = logging.getLogger(__name__)


class Engine(EngineTransport, ReferenceTransport, Protocol):
    pass


def _apply_aspect_ratio(
    template: Graph,
    roles: RoleMap,
    request: GenerationRequest,
) -> GenerationRequest:
    if not request.aspect_ratio or request.width is not None or request.height is not None:
        return request
    if roles.latent_image is None:
        return request
    latent = template[roles.latent_image]
    width = latent.inputs.get("width")
    height = latent.inputs.get("height")
    if not isinstance(width, int) or not isinstance(height, int):
        return request
    new_width, new_height = calculate_size(request.aspect_ratio, width, height)
    return dataclasses.replace(request, width=new_width, height=new_height)


async def generate_from_template(
    engine: Engine,
    gate: ConcurrencyGate,
    template: Graph,
    request: GenerationRequest,
    *,
    orchestrator: JobOrchestrator | None = None,
    policy: PollPolicy = ENGINE_POLL_POLICY,
    progress_cb: ProgressCallback | None = None,
    rng: random.Random | None = None,
) -> GenerationResult:
    roles = infer_roles(template)
    request = _apply_aspect_ratio(template, roles, request)
    workflow = instantiate(template, request, roles, rng=rng)
    seed = workflow[roles.sampler].inputs["seed"]

    warning = await apply_reference_images(
        workflow,
        request.reference_image_urls,
        roles.load_images,
        engine,
    )

    orchestrator = orchestrator or JobOrchestrator()
    async with gate:
        logger.info("Submitting workflow (sampler %s, seed %s)", roles.sampler, seed)
        return await orchestrator.run_engine_job(
            engine,
            workflow,
            policy=policy,
            progress_cb=progress_cb,
            warning=warning,
            seed=seed,
        )


async def generate_hosted(
    provider: HostedTransport,
    gate: ConcurrencyGate,
    payload: dict[str, Any],
    *,
    orchestrator: JobOrchestrator | None = None,
    policy: PollPolicy = HOSTED_POLL_POLICY,
    progress_cb: ProgressCallback | None = None,
) -> HostedResult:
    orchestrator = orchestrator or JobOrchestrator()
    async with gate:
        return await orchestrator.run_hosted_job(
            provider,
            payload,
            policy=policy,
            progress_cb=progress_cb,
        )
