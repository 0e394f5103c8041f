from __future__ import annotations

import random

from core.graph import Graph
from core.models import GenerationRequest
from core.roles import RoleMap

SEED_UPPER_BOUND = 2**31


def random_seed(rng: random.Random | None = None) -> int:
    return (rng or random).randrange(SEED_UPPER_BOUND)


def instantiate(
    template: Graph,
    request: GenerationRequest,
    roles: RoleMap,
    *,
    rng: random.Random | None = None,
) -> Graph:
    """
    Build a runnable copy of ``template`` with the request written into the
    role nodes. The template itself is never modified.
    """
    graph = template.copy()

    graph[roles.positive_prompt].inputs["text"] = request.prompt_text

    if request.negative_prompt_text and roles.negative_prompt:
        graph[roles.negative_prompt].inputs["text"] = request.negative_prompt_text

    seed = request.seed if request.seed is not None else random_seed(rng)
    graph[roles.sampler].inputs["seed"] = seed

    if roles.latent_image:
        latent = graph[roles.latent_image]
        if request.width is not None:
            latent.inputs["width"] = request.width
        if request.height is not None:
            latent.inputs["height"] = request.height

    return graph
