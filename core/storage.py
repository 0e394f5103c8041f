from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from core.graph import Graph
from core.roles import infer_roles

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _.-]{0,127}$")


def normalize_template_name(name: str) -> str:
    cleaned = str(name).strip()
    if cleaned.lower().endswith(".json"):
        cleaned = cleaned[:-5]
    if not _SAFE_NAME_RE.match(cleaned) or ".." in cleaned:
        raise ValueError(f"Invalid workflow name: {name!r}")
    return cleaned


class TemplateStore:
    """Workflow templates stored as ``<name>.json`` files in one directory."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{normalize_template_name(name)}.json"

    def list(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.stem for path in self.directory.glob("*.json") if path.is_file())

    def exists(self, name: str) -> bool:
        try:
            return self._path(name).is_file()
        except ValueError:
            return False

    def load(self, name: str) -> Graph:
        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Workflow {name!r} not found in {self.directory}")
        return Graph.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def save(self, name: str, graph: Graph) -> Path:
        path = self._path(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(f"{path.suffix}.tmp")
        tmp_path.write_text(
            json.dumps(graph.to_dict(), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp_path.replace(path)
        logger.info("Saved workflow %s", path.stem)
        return path

    def delete(self, name: str) -> None:
        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Workflow {name!r} not found in {self.directory}")
        path.unlink()
        logger.info("Deleted workflow %s", path.stem)

    def import_json(self, name: str, raw: str | bytes | dict[str, Any]) -> Graph:
        """
        Validate and store an API-format workflow export.

        The document must parse into nodes and contain a sampler and a prompt
        node; otherwise nothing is written.
        """
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        graph = Graph.from_dict(data)
        infer_roles(graph)
        self.save(name, graph)
        return graph
