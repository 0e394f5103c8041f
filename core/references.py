"""
Reference image injection.

Each reference URL is downloaded, re-uploaded into ComfyUI's input folder and
wired into one LoadImage node of the instantiated workflow, in order.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from typing import Protocol

import aiohttp

from core.errors import ReferenceFetchFailed, ReferenceUploadFailed
from core.graph import Graph
from core.image_utils import extension_from_url

logger = logging.getLogger(__name__)

NO_LOAD_IMAGE_WARNING = (
    "The current workflow has no LoadImage nodes, so reference images were not applied. "
    "To use reference images with ComfyUI, import a workflow that includes LoadImage "
    "nodes (e.g., an img2img workflow)."
)


class ReferenceTransport(Protocol):
    async def fetch_reference(self, url: str) -> bytes: ...

    async def upload_input_image(self, image_bytes: bytes, filename: str) -> str: ...


def reference_filename(url: str, index: int) -> str:
    return f"ref_{uuid.uuid4().hex}_{index}.{extension_from_url(url)}"


async def apply_reference_images(
    graph: Graph,
    urls: Sequence[str],
    load_image_ids: Sequence[str],
    transport: ReferenceTransport,
) -> str | None:
    """
    Rewire ``graph`` in place so its LoadImage nodes point at uploaded copies
    of ``urls``. Returns a warning when references were given but the workflow
    has nowhere to put them.
    """
    if not urls:
        return None
    if not load_image_ids:
        logger.warning("Workflow has no LoadImage nodes; ignoring %d reference image(s)", len(urls))
        return NO_LOAD_IMAGE_WARNING

    count = min(len(urls), len(load_image_ids))
    if len(urls) > count:
        logger.debug("Dropping %d reference image(s) beyond available LoadImage nodes", len(urls) - count)

    for index in range(count):
        url = urls[index]
        node_id = load_image_ids[index]

        try:
            image_bytes = await transport.fetch_reference(url)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ReferenceFetchFailed(url, str(exc) or type(exc).__name__) from exc

        filename = reference_filename(url, index)
        try:
            uploaded_name = await transport.upload_input_image(image_bytes, filename)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ReferenceUploadFailed(url, str(exc) or type(exc).__name__) from exc

        graph[node_id].inputs["image"] = uploaded_name
        logger.info("Reference image %d uploaded as %s for node %s", index, uploaded_name, node_id)

    return None
