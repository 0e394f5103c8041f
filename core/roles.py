"""
Role detection for user-supplied workflows.

Strategy: find the sampler, trace its positive/negative/latent wires to the
nodes that feed them, and fall back to the first node of the expected kind
when the wiring is non-standard. "First" always means first in
:func:`core.graph.node_sort_key` order.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import GraphIncomplete
from core.graph import Graph

SAMPLER_TYPES = frozenset({"KSampler", "KSamplerAdvanced"})
PROMPT_TYPES = frozenset({"CLIPTextEncode"})
LATENT_TYPES = frozenset({"EmptyLatentImage"})
CHECKPOINT_TYPES = frozenset({"CheckpointLoaderSimple", "CheckpointLoader"})
SAVE_TYPES = frozenset({"SaveImage", "PreviewImage"})
LOAD_IMAGE_TYPES = frozenset({"LoadImage"})


@dataclass(frozen=True)
class RoleMap:
    positive_prompt: str
    sampler: str
    negative_prompt: str | None = None
    latent_image: str | None = None
    checkpoint: str | None = None
    save_image: str | None = None
    load_images: tuple[str, ...] = ()


def infer_roles(graph: Graph) -> RoleMap:
    sampler_id = graph.first_of_kind(SAMPLER_TYPES)
    if sampler_id is None:
        raise GraphIncomplete(
            "sampler",
            "No KSampler node found in workflow. "
            "Please ensure your workflow contains a KSampler node.",
        )
    sampler = graph[sampler_id]

    positive_id = graph.resolve(sampler.reference("positive"), PROMPT_TYPES)
    if positive_id is None:
        positive_id = graph.first_of_kind(PROMPT_TYPES)
    if positive_id is None:
        raise GraphIncomplete("prompt", "No CLIPTextEncode node found in workflow.")

    negative_id = graph.resolve(sampler.reference("negative"), PROMPT_TYPES)

    latent_id = graph.resolve(sampler.reference("latent_image"), LATENT_TYPES)
    if latent_id is None:
        latent_id = graph.first_of_kind(LATENT_TYPES)

    return RoleMap(
        positive_prompt=positive_id,
        sampler=sampler_id,
        negative_prompt=negative_id,
        latent_image=latent_id,
        checkpoint=graph.first_of_kind(CHECKPOINT_TYPES),
        save_image=graph.first_of_kind(SAVE_TYPES),
        load_images=tuple(graph.all_of_kind(LOAD_IMAGE_TYPES)),
    )
