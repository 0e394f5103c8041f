import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "comfy-template-gen"


def _load_config_file(path: Path) -> dict[str, Any]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError, TypeError, ValueError):
        logger.warning("Ignoring unreadable config file %s", path, exc_info=True)
        return {}
    return raw if isinstance(raw, dict) else {}


def _env(name: str, file_values: dict[str, Any], key: str, default: str = "") -> str:
    """Environment first, then the JSON config file, then the default."""
    value = os.getenv(name, "").strip()
    if value:
        return value
    file_value = file_values.get(key)
    if isinstance(file_value, (str, int, float)) and str(file_value).strip():
        return str(file_value).strip()
    return default


def _env_int(name: str, file_values: dict[str, Any], key: str, default: int) -> int:
    try:
        return int(_env(name, file_values, key, str(default)))
    except ValueError:
        return default


def _env_float(name: str, file_values: dict[str, Any], key: str, default: float) -> float:
    try:
        return float(_env(name, file_values, key, str(default)))
    except ValueError:
        return default


def _strip_trailing_slash(url: str) -> str:
    return url.rstrip("/")


@dataclass
class Config:
    # ComfyUI
    comfyui_url: str = "http://127.0.0.1:8188"
    comfyui_workflow: str = ""
    comfyui_max_concurrency: int = 2
    workflows_dir: Path = field(default_factory=lambda: CONFIG_DIR / "workflows")

    # Hosted provider
    hosted_api_token: str = ""
    hosted_base_url: str = "https://www.meigen.ai"
    hosted_max_concurrency: int = 2
    upload_gateway_url: str = ""

    # Polling
    poll_interval: float = 2.0
    poll_timeout: float = 300.0
    progress_interval: float = 15.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, config_file: Path | None = None) -> "Config":
        fv = _load_config_file(config_file or CONFIG_DIR / "config.json")
        workflows_dir = _env("COMFYUI_WORKFLOWS_DIR", fv, "workflows_dir", "")

        return cls(
            comfyui_url=_strip_trailing_slash(
                _env("COMFYUI_URL", fv, "comfyui_url", "http://127.0.0.1:8188")
            ),
            comfyui_workflow=_env("COMFYUI_WORKFLOW", fv, "comfyui_workflow", ""),
            comfyui_max_concurrency=max(
                1, _env_int("COMFYUI_MAX_CONCURRENCY", fv, "comfyui_max_concurrency", 2)
            ),
            workflows_dir=Path(workflows_dir).expanduser()
            if workflows_dir
            else CONFIG_DIR / "workflows",
            hosted_api_token=_env("HOSTED_API_TOKEN", fv, "hosted_api_token", ""),
            hosted_base_url=_strip_trailing_slash(
                _env("HOSTED_BASE_URL", fv, "hosted_base_url", "https://www.meigen.ai")
            ),
            hosted_max_concurrency=max(
                1, _env_int("HOSTED_MAX_CONCURRENCY", fv, "hosted_max_concurrency", 2)
            ),
            upload_gateway_url=_strip_trailing_slash(
                _env("UPLOAD_GATEWAY_URL", fv, "upload_gateway_url", "")
            ),
            poll_interval=_env_float("POLL_INTERVAL", fv, "poll_interval", 2.0),
            poll_timeout=_env_float("POLL_TIMEOUT", fv, "poll_timeout", 300.0),
            progress_interval=_env_float("PROGRESS_INTERVAL", fv, "progress_interval", 15.0),
            log_level=_env("LOG_LEVEL", fv, "log_level", "INFO").upper(),
        )

    def workflow_path(self, name: str) -> Path:
        return self.workflows_dir / f"{name}.json"

    def available_providers(self) -> list[str]:
        providers: list[str] = []
        if self.comfyui_url and self.comfyui_workflow and self.workflow_path(
            self.comfyui_workflow
        ).is_file():
            providers.append("comfyui")
        if self.hosted_api_token:
            providers.append("hosted")
        return providers

    def default_provider(self) -> str | None:
        providers = self.available_providers()
        return providers[0] if providers else None
