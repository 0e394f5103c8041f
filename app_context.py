from __future__ import annotations

from dataclasses import dataclass

from comfyui_client import ComfyUIClient
from config import Config
from core.gate import GateRegistry
from core.jobs import HOSTED_POLL_POLICY, JobOrchestrator, PollPolicy, ProgressCallback
from core.models import GenerationRequest, GenerationResult, HostedResult
from core.pipeline import generate_from_template, generate_hosted
from core.storage import TemplateStore
from hosted_client import HostedProviderClient, build_generation_payload

COMFYUI = "comfyui"
HOSTED = "hosted"


@dataclass(slots=True)
class AppContext:
    cfg: Config
    client: ComfyUIClient
    hosted: HostedProviderClient
    templates: TemplateStore
    gates: GateRegistry
    orchestrator: JobOrchestrator

    def _policy(self, interval: float) -> PollPolicy:
        return PollPolicy(
            interval=interval,
            timeout=self.cfg.poll_timeout,
            progress_every=self.cfg.progress_interval,
        )

    async def generate(
        self,
        request: GenerationRequest,
        *,
        workflow: str | None = None,
        progress_cb: ProgressCallback | None = None,
    ) -> GenerationResult:
        name = workflow or self.cfg.comfyui_workflow
        if not name:
            raise ValueError("No workflow selected and COMFYUI_WORKFLOW is not set")
        template = self.templates.load(name)
        return await generate_from_template(
            self.client,
            self.gates.get(COMFYUI),
            template,
            request,
            orchestrator=self.orchestrator,
            policy=self._policy(self.cfg.poll_interval),
            progress_cb=progress_cb,
        )

    async def generate_hosted(
        self,
        request: GenerationRequest,
        *,
        model_id: str | None = None,
        progress_cb: ProgressCallback | None = None,
    ) -> HostedResult:
        return await generate_hosted(
            self.hosted,
            self.gates.get(HOSTED),
            build_generation_payload(request, model_id=model_id),
            orchestrator=self.orchestrator,
            policy=self._policy(HOSTED_POLL_POLICY.interval),
            progress_cb=progress_cb,
        )

    async def close(self) -> None:
        await self.client.close()
        await self.hosted.close()


def create_app_context(cfg: Config) -> AppContext:
    return AppContext(
        cfg=cfg,
        client=ComfyUIClient(cfg),
        hosted=HostedProviderClient(cfg),
        templates=TemplateStore(cfg.workflows_dir),
        gates=GateRegistry(
            {
                COMFYUI: cfg.comfyui_max_concurrency,
                HOSTED: cfg.hosted_max_concurrency,
            }
        ),
        orchestrator=JobOrchestrator(),
    )
