"""Human-facing views of a workflow template and small template edits."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from core.errors import GraphIncomplete
from core.graph import Graph, Node, Reference
from core.roles import RoleMap, infer_roles

logger = logging.getLogger(__name__)

ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    "1:1": (1, 1),
    "3:4": (3, 4),
    "4:3": (4, 3),
    "16:9": (16, 9),
    "9:16": (9, 16),
}


@dataclass(frozen=True)
class WorkflowSummary:
    node_count: int
    checkpoint: str | None = None
    steps: int | None = None
    cfg: float | None = None
    sampler: str | None = None
    scheduler: str | None = None
    width: int | None = None
    height: int | None = None


def _literal(node: Node, name: str) -> Any:
    value = node.inputs.get(name)
    return None if isinstance(value, Reference) else value


def summarize_graph(graph: Graph) -> WorkflowSummary:
    try:
        roles = infer_roles(graph)
    except GraphIncomplete:
        return WorkflowSummary(node_count=len(graph))

    sampler = graph[roles.sampler]
    latent = graph[roles.latent_image] if roles.latent_image else None
    checkpoint = graph[roles.checkpoint] if roles.checkpoint else None
    return WorkflowSummary(
        node_count=len(graph),
        checkpoint=_literal(checkpoint, "ckpt_name") if checkpoint else None,
        steps=_literal(sampler, "steps"),
        cfg=_literal(sampler, "cfg"),
        sampler=_literal(sampler, "sampler_name"),
        scheduler=_literal(sampler, "scheduler"),
        width=_literal(latent, "width") if latent else None,
        height=_literal(latent, "height") if latent else None,
    )


def _literal_lines(node: Node) -> list[str]:
    return [
        f"  {key}: {json.dumps(val)}"
        for key, val in node.inputs.items()
        if not isinstance(val, Reference)
    ]


def _header(node_id: str, node: Node, fallback: str) -> str:
    return f"Node #{node_id} ({node.kind}) - {node.title or fallback}"


def describe_editable_nodes(graph: Graph) -> str:
    try:
        roles: RoleMap = infer_roles(graph)
    except GraphIncomplete as exc:
        return f"Error detecting nodes: {exc}"

    sampler = graph[roles.sampler]
    lines = [_header(roles.sampler, sampler, "Main Sampler")]
    for key, val in sampler.inputs.items():
        if isinstance(val, Reference):
            continue
        if key == "seed":
            lines.append(f"  {key}: [auto-randomized per generation]")
        else:
            lines.append(f"  {key}: {json.dumps(val)}")

    positive = graph[roles.positive_prompt]
    lines += ["", _header(roles.positive_prompt, positive, "Positive Prompt")]
    lines.append("  text: [replaced by your prompt per generation]")

    if roles.negative_prompt:
        negative = graph[roles.negative_prompt]
        lines += ["", _header(roles.negative_prompt, negative, "Negative Prompt")]
        lines.append(f"  text: {json.dumps(_literal(negative, 'text'))}")

    if roles.latent_image:
        latent = graph[roles.latent_image]
        lines += ["", _header(roles.latent_image, latent, "Image Size"), *_literal_lines(latent)]

    if roles.checkpoint:
        ckpt = graph[roles.checkpoint]
        lines += ["", _header(roles.checkpoint, ckpt, "Model"), *_literal_lines(ckpt)]

    if roles.load_images:
        lines += ["", f"Reference image slots (LoadImage): {', '.join(roles.load_images)}"]

    return "\n".join(lines)


def set_node_input(template: Graph, node_id: str, input_name: str, value: Any) -> Graph:
    """Return a copy of ``template`` with one literal input replaced."""
    if node_id not in template:
        raise KeyError(f"Node {node_id} not found in workflow")
    graph = template.copy()
    node = graph[node_id]
    if isinstance(node.inputs.get(input_name), Reference):
        raise ValueError(f"Input {input_name} of node {node_id} is a node connection")
    if isinstance(value, Reference):
        raise ValueError("Only literal values can be assigned")
    node.inputs[input_name] = value
    logger.info("Set node %s input %s", node_id, input_name)
    return graph


def calculate_size(aspect_ratio: str, original_width: int, original_height: int) -> tuple[int, int]:
    """
    New dimensions for ``aspect_ratio`` keeping the original pixel count,
    rounded to multiples of 8. Unknown ratios return the original size.
    """
    ratio = ASPECT_RATIOS.get(aspect_ratio)
    if ratio is None:
        return original_width, original_height

    rw, rh = ratio
    total_pixels = original_width * original_height
    new_height = (total_pixels * rh / rw) ** 0.5
    new_width = new_height * rw / rh
    return round(new_width / 8) * 8, round(new_height / 8) * 8
