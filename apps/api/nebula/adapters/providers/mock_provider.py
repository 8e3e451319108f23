"""Deterministic in-process provider for local development and tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from itertools import count
from typing import assert_never

from nebula.adapters.providers.base import GenerationProvider, TextGenerator
from nebula.domain.campaign_templates import template_scene_outline, template_script
from nebula.errors import ProviderError
from nebula.schemas.campaign import Campaign, CampaignScript
from nebula.schemas.job import JobInput, JobModule, JobOutput
from nebula.schemas.provider import ProviderFailure, ProviderResult

_VIDEO_URL = "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4"
_AUDIO_URL = "https://www.soundhelix.com/examples/mp3/SoundHelix-Song-1.mp3"


@dataclass(slots=True)
class _PendingGeneration:
    module: JobModule
    job_input: JobInput
    rounds_left: int


class MockGenerationProvider(GenerationProvider, TextGenerator):
    """Scriptable provider.

    ``fail_next`` makes that many upcoming ``generate`` calls report a failed
    result. ``raise_next`` does the same by raising ``ProviderError``.
    ``pending_rounds`` makes generation asynchronous: ``check_status`` answers
    ``pending`` that many times before succeeding. ``delay_seconds`` and
    ``hold`` slow generation down for timeout and cancellation tests.
    """

    def __init__(
        self,
        *,
        fail_next: int = 0,
        raise_next: int = 0,
        pending_rounds: int = 0,
        delay_seconds: float = 0.0,
        hold: asyncio.Event | None = None,
        fail_scripts: bool = False,
    ) -> None:
        self.fail_next = fail_next
        self.raise_next = raise_next
        self.pending_rounds = pending_rounds
        self.delay_seconds = delay_seconds
        self.hold = hold
        self.fail_scripts = fail_scripts
        self.generate_calls: list[JobModule] = []
        self.status_calls: list[str] = []
        self.script_calls = 0
        self._ids = count(1)
        self._pending: dict[str, _PendingGeneration] = {}

    async def generate(self, module: JobModule, job_input: JobInput) -> ProviderResult:
        self.generate_calls.append(module)
        if self.hold is not None:
            await self.hold.wait()
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        provider_job_id = f"mock-{next(self._ids)}"
        if self.raise_next > 0:
            self.raise_next -= 1
            raise ProviderError("Mock provider rejected the request", provider_code="MOCK_REJECTED")
        if self.fail_next > 0:
            self.fail_next -= 1
            return ProviderResult(
                status="failed",
                error=ProviderFailure(message="Mock generation failed", code="MOCK_FAILURE"),
                provider_job_id=provider_job_id,
            )
        if self.pending_rounds > 0:
            self._pending[provider_job_id] = _PendingGeneration(module, job_input, self.pending_rounds)
            return ProviderResult(status="pending", provider_job_id=provider_job_id)

        return ProviderResult(
            status="succeeded",
            output=self._outputs(module, job_input, provider_job_id),
            provider_job_id=provider_job_id,
        )

    async def check_status(self, provider_job_id: str) -> ProviderResult:
        self.status_calls.append(provider_job_id)
        pending = self._pending.get(provider_job_id)
        if pending is None:
            return ProviderResult(
                status="failed",
                error=ProviderFailure(message="Unknown provider job", code="MOCK_UNKNOWN_JOB"),
                provider_job_id=provider_job_id,
            )

        pending.rounds_left -= 1
        if pending.rounds_left > 0:
            return ProviderResult(status="pending", provider_job_id=provider_job_id)

        del self._pending[provider_job_id]
        return ProviderResult(
            status="succeeded",
            output=self._outputs(pending.module, pending.job_input, provider_job_id),
            provider_job_id=provider_job_id,
        )

    async def generate_campaign_script(self, campaign: Campaign) -> CampaignScript:
        self.script_calls += 1
        if self.fail_scripts:
            raise ProviderError("Mock text generator unavailable", provider_code="MOCK_TEXT_DOWN")
        return CampaignScript(script=template_script(campaign), scene_outline=template_scene_outline(campaign))

    @staticmethod
    def _outputs(module: JobModule, job_input: JobInput, provider_job_id: str) -> list[JobOutput]:
        image_url = f"https://picsum.photos/seed/{provider_job_id}/1024/1024"
        match module:
            case JobModule.TEXT_TO_IMAGE:
                metadata = {"width": 1024, "height": 1024}
                if "aspect_ratio" in job_input.config:
                    metadata["aspect_ratio"] = job_input.config["aspect_ratio"]
                return [JobOutput(type="image", url=image_url, metadata=metadata)]
            case JobModule.TEXT_TO_VIDEO | JobModule.IMAGE_TO_VIDEO:
                duration = job_input.config.get("duration", 15)
                return [JobOutput(type="video", url=_VIDEO_URL, metadata={"duration": duration, "width": 1920, "height": 1080})]
            case JobModule.TEXT_TO_AUDIO:
                return [JobOutput(type="audio", url=_AUDIO_URL, metadata={"duration": 30})]
            case JobModule.CAMPAIGN_WIZARD:
                return [
                    JobOutput(
                        type="script",
                        data={
                            "script": "Welcome to our amazing product! Transform your life today with cutting-edge technology.",
                            "scenes": ["Opening shot", "Product showcase", "Customer testimonial", "Call to action"],
                        },
                    ),
                    JobOutput(type="image", url=image_url, metadata={"platform": "Instagram", "aspect_ratio": "1:1"}),
                    JobOutput(type="video", url=_VIDEO_URL, metadata={"platform": "YouTube", "duration": 30}),
                ]
            case JobModule.EXPORT:
                return [
                    JobOutput(
                        type="export",
                        url=f"https://example.com/exports/{provider_job_id}.zip",
                        metadata={"format": "zip", "asset_count": len(job_input.asset_ids or [])},
                    )
                ]
            case _:
                assert_never(module)
