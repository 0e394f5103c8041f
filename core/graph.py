"""
Typed view over ComfyUI API-format workflows.

A workflow is a mapping of node id -> {"class_type", "inputs", "_meta"}.
Inputs are either literal values or ``[node_id, output_slot]`` wire pairs,
which are parsed into :class:`Reference` so callers can pattern-match instead
of probing list shapes.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Reference:
    """Data-flow edge from another node's output slot."""

    node_id: str
    output_slot: int

    def to_json(self) -> list[Any]:
        return [self.node_id, self.output_slot]


Value = Union[Reference, Any]


def parse_value(raw: Any) -> Value:
    if (
        isinstance(raw, (list, tuple))
        and len(raw) == 2
        and isinstance(raw[0], str)
        and isinstance(raw[1], int)
        and not isinstance(raw[1], bool)
    ):
        return Reference(raw[0], raw[1])
    return copy.deepcopy(raw)


def dump_value(value: Value) -> Any:
    if isinstance(value, Reference):
        return value.to_json()
    return copy.deepcopy(value)


def node_sort_key(node_id: str) -> tuple[int, int, str]:
    """Numeric ids by value, then everything else by name. Ties break on the raw id."""
    try:
        return (0, int(node_id), str(node_id))
    except (TypeError, ValueError):
        return (1, 0, str(node_id))


@dataclass
class Node:
    kind: str
    inputs: dict[str, Value] = field(default_factory=dict)
    title: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Node:
        kind = data.get("class_type")
        if not isinstance(kind, str) or not kind:
            raise ValueError("node is missing class_type")
        raw_inputs = data.get("inputs", {})
        if not isinstance(raw_inputs, dict):
            raise ValueError(f"node {kind} has non-object inputs")
        meta = data.get("_meta")
        title = meta.get("title") if isinstance(meta, dict) else None
        return cls(
            kind=kind,
            inputs={str(name): parse_value(val) for name, val in raw_inputs.items()},
            title=title if isinstance(title, str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "class_type": self.kind,
            "inputs": {name: dump_value(val) for name, val in self.inputs.items()},
        }
        if self.title is not None:
            data["_meta"] = {"title": self.title}
        return data

    def reference(self, input_name: str) -> Reference | None:
        value = self.inputs.get(input_name)
        return value if isinstance(value, Reference) else None


class Graph:
    """Node graph keyed by node id."""

    def __init__(self, nodes: Mapping[str, Node] | None = None) -> None:
        self._nodes: dict[str, Node] = dict(nodes or {})

    @classmethod
    def from_dict(cls, data: Any) -> Graph:
        if not isinstance(data, dict):
            raise ValueError("workflow must be a JSON object of nodes")
        nodes: dict[str, Node] = {}
        for node_id, node_data in data.items():
            if not isinstance(node_data, dict):
                raise ValueError(f"node {node_id!r} is not an object")
            try:
                nodes[str(node_id)] = Node.from_dict(node_data)
            except ValueError as exc:
                raise ValueError(f"node {node_id!r}: {exc}") from exc
        return cls(nodes)

    def to_dict(self) -> dict[str, Any]:
        return {node_id: node.to_dict() for node_id, node in self._nodes.items()}

    def copy(self) -> Graph:
        return Graph(copy.deepcopy(self._nodes))

    def ordered_ids(self) -> list[str]:
        return sorted(self._nodes, key=node_sort_key)

    def ordered_items(self) -> Iterator[tuple[str, Node]]:
        for node_id in self.ordered_ids():
            yield node_id, self._nodes[node_id]

    def first_of_kind(self, kinds: frozenset[str]) -> str | None:
        for node_id, node in self.ordered_items():
            if node.kind in kinds:
                return node_id
        return None

    def all_of_kind(self, kinds: frozenset[str]) -> list[str]:
        return [node_id for node_id, node in self.ordered_items() if node.kind in kinds]

    def resolve(self, ref: Reference | None, kinds: frozenset[str]) -> str | None:
        """Return the referenced node id if it exists and has one of ``kinds``."""
        if ref is None:
            return None
        target = self._nodes.get(ref.node_id)
        if target is None or target.kind not in kinds:
            return None
        return ref.node_id

    def __getitem__(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return self._nodes == other._nodes

    def __repr__(self) -> str:
        return f"Graph({len(self._nodes)} nodes)"
