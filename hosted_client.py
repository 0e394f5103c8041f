"""
Hosted generation platform client.

The hosted API has its own job ids and a status endpoint, so jobs go through
the same submit/poll state machine as ComfyUI, minus the workflow handling.
Local reference images are compressed and pushed through the upload gateway
to obtain public URLs the platform can read.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiohttp

from config import Config
from core.image_utils import compress_reference_image, mime_type_for_name
from core.models import GenerationRequest, HostedStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    public_url: str
    original_size: int
    compressed_size: int


def build_generation_payload(
    request: GenerationRequest,
    *,
    model_id: str | None = None,
    resolution: str = "2K",
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": request.prompt_text,
        "aspectRatio": request.aspect_ratio or "1:1",
        "resolution": resolution,
    }
    if model_id:
        payload["modelId"] = model_id
    if request.reference_image_urls:
        payload["referenceImages"] = list(request.reference_image_urls)
    return payload


class HostedProviderClient:
    """Async client for the hosted generation API."""

    def __init__(self, config: Config) -> None:
        self.base_url = config.hosted_base_url.rstrip("/")
        self.upload_gateway_url = config.upload_gateway_url.rstrip("/")
        self._api_token = config.hosted_api_token
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    # -- generation ----------------------------------------------------------

    async def submit(self, payload: dict[str, Any]) -> str:
        """Start a generation and return its id."""
        if not self._api_token:
            raise ValueError("HOSTED_API_TOKEN is required for hosted image generation")

        session = await self._get_session()
        async with session.post(
            f"{self.base_url}/api/generate/v2",
            json=payload,
            headers={"Authorization": f"Bearer {self._api_token}"},
            timeout=aiohttp.ClientTimeout(total=30),
        ) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            if resp.status >= 400 or not data.get("success"):
                raise ValueError(data.get("error") or f"Generation failed: {resp.status}")

        generation_id = str(data.get("generationId") or "")
        logger.info("Hosted generation %s started", generation_id)
        return generation_id

    async def poll_status(self, job_id: str) -> HostedStatus:
        session = await self._get_session()
        async with session.get(
            f"{self.base_url}/api/generate/v2/status/{job_id}",
            timeout=aiohttp.ClientTimeout(total=10),
        ) as resp:
            resp.raise_for_status()
            data = await resp.json()
        if not isinstance(data, dict):
            data = {}
        return HostedStatus(
            status=str(data.get("status") or "pending"),
            image_url=data.get("imageUrl") or None,
            error=data.get("error") or None,
        )

    # -- reference upload ----------------------------------------------------

    async def _presign(self, filename: str, mime_type: str, size: int) -> tuple[str, str]:
        session = await self._get_session()
        async with session.post(
            f"{self.upload_gateway_url}/upload/presign",
            json={"filename": filename, "contentType": mime_type, "size": size},
            timeout=aiohttp.ClientTimeout(total=30),
        ) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}
            if resp.status >= 400 or not data.get("success"):
                raise ValueError(data.get("error") or f"Presign failed: {resp.status}")
        return str(data["presignedUrl"]), str(data["publicUrl"])

    async def upload_reference_image(self, path: Path) -> UploadResult:
        """Compress a local image and upload it; returns its public URL."""
        if not self.upload_gateway_url:
            raise ValueError("UPLOAD_GATEWAY_URL is not configured")
        mime_type = mime_type_for_name(path.name)
        if mime_type is None:
            raise ValueError(
                f"Unsupported image format: {path.suffix}. Supported: JPEG, PNG, WebP, GIF"
            )

        original = await asyncio.to_thread(path.read_bytes)
        compressed, compressed_mime = await asyncio.to_thread(
            compress_reference_image, original, mime_type
        )

        presigned_url, public_url = await self._presign(path.name, compressed_mime, len(compressed))
        session = await self._get_session()
        async with session.put(
            presigned_url,
            data=compressed,
            headers={"Content-Type": compressed_mime},
            timeout=aiohttp.ClientTimeout(total=120),
        ) as resp:
            resp.raise_for_status()

        logger.info(
            "Uploaded reference %s (%d -> %d bytes)", path.name, len(original), len(compressed)
        )
        return UploadResult(
            public_url=public_url,
            original_size=len(original),
            compressed_size=len(compressed),
        )
