from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

import pytest

from core.graph import Graph

TXT2IMG_WORKFLOW: dict[str, Any] = {
    "3": {
        "class_type": "KSampler",
        "inputs": {
            "seed": 156680208700286,
            "steps": 20,
            "cfg": 8,
            "sampler_name": "euler",
            "scheduler": "normal",
            "denoise": 1,
            "model": ["4", 0],
            "positive": ["6", 0],
            "negative": ["7", 0],
            "latent_image": ["5", 0],
        },
    },
    "4": {
        "class_type": "CheckpointLoaderSimple",
        "inputs": {"ckpt_name": "v1-5-pruned-emaonly.safetensors"},
    },
    "5": {
        "class_type": "EmptyLatentImage",
        "inputs": {"width": 1024, "height": 1024, "batch_size": 1},
    },
    "6": {
        "class_type": "CLIPTextEncode",
        "inputs": {"text": "beautiful scenery", "clip": ["4", 1]},
        "_meta": {"title": "Positive"},
    },
    "7": {
        "class_type": "CLIPTextEncode",
        "inputs": {"text": "text, watermark", "clip": ["4", 1]},
    },
    "8": {
        "class_type": "VAEDecode",
        "inputs": {"samples": ["3", 0], "vae": ["4", 2]},
    },
    "9": {
        "class_type": "SaveImage",
        "inputs": {"filename_prefix": "ComfyUI", "images": ["8", 0]},
    },
}


def _with_load_images(count: int) -> Graph:
    workflow = copy.deepcopy(TXT2IMG_WORKFLOW)
    for index in range(count):
        workflow[str(20 + index)] = {
            "class_type": "LoadImage",
            "inputs": {"image": "example.png"},
        }
    return Graph.from_dict(workflow)


@pytest.fixture
def txt2img_dict() -> dict[str, Any]:
    return copy.deepcopy(TXT2IMG_WORKFLOW)


@pytest.fixture
def txt2img() -> Graph:
    return Graph.from_dict(copy.deepcopy(TXT2IMG_WORKFLOW))


@pytest.fixture
def img2img() -> Callable[[int], Graph]:
    return _with_load_images
