"""
Command-line runner for template-driven image generation.

Usage:
  python generate.py "a red fox in the snow" --width 512 --height 512 -o fox.png
  python generate.py "a red fox" --provider hosted --aspect-ratio 16:9
  python generate.py --list
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from app_context import COMFYUI, HOSTED, AppContext, create_app_context
from config import Config
from core.errors import GenerationError
from core.models import GenerationRequest
from core.workflow_info import describe_editable_nodes, summarize_graph

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("prompt", nargs="?", help="Positive prompt text")
    parser.add_argument("--negative", help="Negative prompt text")
    parser.add_argument("--seed", type=int)
    parser.add_argument("--width", type=int)
    parser.add_argument("--height", type=int)
    parser.add_argument("--aspect-ratio", help="1:1, 3:4, 4:3, 16:9 or 9:16")
    parser.add_argument("--reference", action="append", default=[], help="Reference image URL")
    parser.add_argument("--workflow", help="Template name (defaults to COMFYUI_WORKFLOW)")
    parser.add_argument("--provider", choices=[COMFYUI, HOSTED])
    parser.add_argument("-o", "--output", type=Path, default=Path("output.png"))
    parser.add_argument("--list", action="store_true", help="List stored workflows and exit")
    parser.add_argument("--show", metavar="NAME", help="Describe a stored workflow and exit")
    return parser.parse_args(argv)


def _show_templates(app: AppContext, name: str | None) -> None:
    if name:
        print(describe_editable_nodes(app.templates.load(name)))
        return
    for template_name in app.templates.list():
        summary = summarize_graph(app.templates.load(template_name))
        size = f"{summary.width}x{summary.height}" if summary.width else "?"
        print(
            f"{template_name}: {summary.node_count} nodes, "
            f"checkpoint={summary.checkpoint or '?'}, steps={summary.steps or '?'}, size={size}"
        )


async def _run(app: AppContext, args: argparse.Namespace) -> int:
    request = GenerationRequest(
        prompt_text=args.prompt,
        negative_prompt_text=args.negative,
        seed=args.seed,
        width=args.width,
        height=args.height,
        aspect_ratio=args.aspect_ratio,
        reference_image_urls=tuple(args.reference),
    )

    async def report_progress(elapsed_ms: int) -> None:
        logger.info("Still generating... %ds elapsed", elapsed_ms // 1000)

    provider = args.provider or app.cfg.default_provider()
    if provider is None:
        logger.error(
            "No image generation providers configured. Set COMFYUI_WORKFLOW "
            "(with a stored workflow) or HOSTED_API_TOKEN."
        )
        return 1

    if provider == HOSTED:
        hosted = await app.generate_hosted(request, progress_cb=report_progress)
        print(hosted.image_url)
        return 0

    if not await app.client.check_connection():
        logger.warning("ComfyUI is NOT reachable at %s", app.cfg.comfyui_url)

    result = await app.generate(request, workflow=args.workflow, progress_cb=report_progress)
    args.output.write_bytes(result.image_bytes)
    logger.info("Saved %s (%s, seed %s)", args.output, result.mime_type, result.seed)
    if result.warning:
        logger.warning(result.warning)
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    cfg = Config.from_env()
    logging.getLogger().setLevel(cfg.log_level)
    app = create_app_context(cfg)

    try:
        if args.list or args.show:
            _show_templates(app, args.show)
            return 0
        if not args.prompt:
            logger.error("A prompt is required")
            return 2
        return await _run(app, args)
    except GenerationError as exc:
        logger.error("Image generation failed (%s): %s", exc.kind, exc)
        return 1
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1
    finally:
        await app.close()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(main()))
