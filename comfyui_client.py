"""
ComfyUI API client.

Handles communication with a ComfyUI server:
- Queues API-format workflows and reports node validation errors
- Reads prompt history to follow job status
- Uploads reference images into the input folder and downloads outputs
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import aiohttp

from config import Config
from core.graph import Graph
from core.image_utils import mime_type_for_name
from core.models import EngineStatus, OutputImage, SubmitResponse

logger = logging.getLogger(__name__)


def _parse_output_images(raw: Any) -> list[OutputImage]:
    if not isinstance(raw, dict):
        return []
    images = raw.get("images", [])
    if not isinstance(images, list):
        return []
    parsed: list[OutputImage] = []
    for img_info in images:
        if not isinstance(img_info, dict):
            continue
        filename = str(img_info.get("filename") or "").strip()
        if not filename:
            continue
        parsed.append(
            OutputImage(
                filename=filename,
                subfolder=str(img_info.get("subfolder") or ""),
                type=str(img_info.get("type") or "output"),
            )
        )
    return parsed


def _execution_error(messages: Any) -> str | None:
    if not isinstance(messages, list):
        return None
    for msg in messages:
        if isinstance(msg, list) and len(msg) >= 1 and msg[0] == "execution_error":
            detail = msg[1] if len(msg) > 1 else None
            if isinstance(detail, dict):
                text = detail.get("exception_message") or detail.get("node_type")
                return str(text).strip() if text else "Unknown error"
            return str(detail) if detail else "Unknown error"
    return None


def parse_history_entry(entry: dict[str, Any]) -> EngineStatus:
    status = entry.get("status")
    if not isinstance(status, dict):
        status = {}
    outputs = entry.get("outputs")
    if not isinstance(outputs, dict):
        outputs = {}
    return EngineStatus(
        status_label=str(status.get("status_str") or ""),
        completed=bool(status.get("completed", False)),
        outputs={
            str(node_id): _parse_output_images(node_output)
            for node_id, node_output in outputs.items()
        },
        error_message=_execution_error(status.get("messages")),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ComfyUIClient:
    """Async client for the ComfyUI HTTP API."""

    def __init__(self, config: Config) -> None:
        self.base_url = config.comfyui_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    # -- session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    # -- server info ---------------------------------------------------------

    async def check_connection(self) -> bool:
        """Return True if ComfyUI is reachable."""
        session = await self._get_session()
        try:
            async with session.get(
                f"{self.base_url}/system_stats",
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    async def list_checkpoints(self) -> list[str]:
        session = await self._get_session()
        try:
            async with session.get(
                f"{self.base_url}/models/checkpoints",
                timeout=aiohttp.ClientTimeout(total=10),
            ) as resp:
                if resp.status != 200:
                    return []
                data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError):
            logger.warning("Could not list checkpoints", exc_info=True)
            return []
        return [str(item) for item in data] if isinstance(data, list) else []

    async def get_queue_status(self) -> dict[str, Any]:
        """Return current queue information."""
        session = await self._get_session()
        async with session.get(
            f"{self.base_url}/queue",
            timeout=aiohttp.ClientTimeout(total=5),
        ) as resp:
            resp.raise_for_status()
            return await resp.json()

    # -- assets --------------------------------------------------------------

    async def fetch_reference(self, url: str) -> bytes:
        """Download a reference image from an arbitrary HTTP(S) URL."""
        session = await self._get_session()
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=60)) as resp:
            resp.raise_for_status()
            return await resp.read()

    async def upload_input_image(self, image_bytes: bytes, filename: str) -> str:
        """Upload an image to ComfyUI input folder and return its workflow name."""
        session = await self._get_session()
        form = aiohttp.FormData()
        form.add_field(
            "image",
            image_bytes,
            filename=filename,
            content_type=mime_type_for_name(filename) or "application/octet-stream",
        )
        form.add_field("type", "input")
        form.add_field("overwrite", "true")

        async with session.post(
            f"{self.base_url}/upload/image",
            data=form,
            timeout=aiohttp.ClientTimeout(total=60),
        ) as resp:
            resp.raise_for_status()
            data = await resp.json()

        if not isinstance(data, dict):
            raise ValueError(f"Unexpected upload response from ComfyUI: {data!r}")
        name = str(data.get("name") or filename)
        subfolder = str(data.get("subfolder") or "")
        return f"{subfolder}/{name}" if subfolder else name

    async def download_output(self, image: OutputImage) -> tuple[bytes, str | None]:
        """Fetch an output image. Returns the bytes and the response content type."""
        session = await self._get_session()
        params = {
            "filename": image.filename,
            "subfolder": image.subfolder,
            "type": image.type,
        }
        async with session.get(
            f"{self.base_url}/view",
            params=params,
            timeout=aiohttp.ClientTimeout(total=60),
        ) as resp:
            resp.raise_for_status()
            content_type = resp.headers.get("Content-Type")
            return await resp.read(), content_type

    # -- queue & status ------------------------------------------------------

    async def queue_prompt(
        self,
        workflow: Graph,
        *,
        client_id: str | None = None,
    ) -> SubmitResponse:
        """
        Send a workflow to the queue.

        ComfyUI answers validation failures with HTTP 400 and a ``node_errors``
        object; those are returned, not raised, so the caller can tell a
        rejected workflow from an unreachable server.
        """
        session = await self._get_session()
        if not client_id:
            client_id = uuid.uuid4().hex
        payload = {"prompt": workflow.to_dict(), "client_id": client_id}

        url = f"{self.base_url}/prompt"
        async with session.post(url, json=payload, timeout=aiohttp.ClientTimeout(total=30)) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = None
            node_errors = data.get("node_errors") if isinstance(data, dict) else None
            if isinstance(node_errors, dict) and node_errors:
                return SubmitResponse(
                    prompt_id=str(data.get("prompt_id") or ""),
                    node_errors=node_errors,
                )
            resp.raise_for_status()

        prompt_id = data.get("prompt_id", "") if isinstance(data, dict) else ""
        if not prompt_id:
            raise ValueError(f"ComfyUI did not return prompt_id: {data}")
        logger.info("Queued prompt %s", prompt_id)
        return SubmitResponse(prompt_id=str(prompt_id))

    async def get_job_status(self, prompt_id: str) -> EngineStatus | None:
        """Return the prompt's status, or None while ComfyUI has no history for it."""
        session = await self._get_session()
        url = f"{self.base_url}/history/{prompt_id}"
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
            resp.raise_for_status()
            data = await resp.json()
        if not isinstance(data, dict):
            return None
        entry = data.get(prompt_id)
        if not isinstance(entry, dict):
            return None
        return parse_history_entry(entry)
