"""Campaign orchestration: brief, script, per-platform fan-out, progress and export."""

from __future__ import annotations

import logging

from nebula.adapters.providers.base import TextGenerator
from nebula.core.logging_safety import safe_log_identifier
from nebula.domain.job_fsm import IN_FLIGHT_STATES
from nebula.domain.campaign_templates import (
    aspect_ratio_for_platform,
    platform_prompt,
    template_scene_outline,
    template_script,
)
from nebula.errors import ApiError, CampaignNotFound, JobNotFound, UserNotFound, ValidationError
from nebula.repositories.memory import CampaignRecord, InMemoryStore
from nebula.schemas.campaign import (
    Campaign,
    CampaignAsset,
    CampaignGenerationResponse,
    CampaignPage,
    CampaignProgress,
    CampaignScript,
    CampaignStatus,
    CampaignStatusResponse,
    CreateCampaignRequest,
)
from nebula.schemas.feature import FeatureId
from nebula.schemas.job import Job, JobInput, JobModule, JobStatus
from nebula.services.feature_gate import FeatureGateService
from nebula.services.scheduler import JobScheduler

logger = logging.getLogger(__name__)

_ROLLBACK_REASON = "Campaign generation aborted"
_PAGE_LIMIT_MAX = 100


class CampaignService:
    def __init__(
        self,
        store: InMemoryStore,
        *,
        scheduler: JobScheduler,
        gate: FeatureGateService,
        text_generator: TextGenerator,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._gate = gate
        self._text_generator = text_generator

    def create_campaign(self, *, user_id: str, request: CreateCampaignRequest) -> Campaign:
        user = self._store.get_user(user_id)
        if user is None:
            raise UserNotFound()

        record = self._store.create_campaign(user_id=user_id, tenant_id=user.tenant_id, brief=request)
        logger.info(
            "campaign.created campaign_id=%s platforms=%s content_type=%s",
            safe_log_identifier(record.id, prefix="cid"),
            len(request.platforms),
            request.content_type,
        )
        return self._to_campaign(record)

    def get_campaign(self, *, campaign_id: str, user_id: str) -> Campaign:
        return self._to_campaign(self._require_owned(campaign_id, user_id))

    def list_campaigns(
        self,
        *,
        user_id: str,
        status: CampaignStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> CampaignPage:
        if limit < 1 or limit > _PAGE_LIMIT_MAX or offset < 0:
            raise ValidationError(
                "Invalid pagination parameters",
                {"limit": limit, "offset": offset, "max_limit": _PAGE_LIMIT_MAX},
            )
        records, total = self._store.list_campaigns_for_owner(user_id, status=status, limit=limit, offset=offset)
        return CampaignPage(items=[self._to_campaign(record) for record in records], total=total, limit=limit, offset=offset)

    async def generate_script(self, *, campaign_id: str, user_id: str) -> CampaignScript:
        """Write the campaign script; a generator failure falls back to the template copy."""
        record = self._require_owned(campaign_id, user_id)
        self._gate.require_access(record.tenant_id, FeatureId.CAMPAIGN_WIZARD)

        campaign = self._to_campaign(record)
        try:
            script = await self._text_generator.generate_campaign_script(campaign)
        except Exception as exc:
            logger.warning(
                "campaign.script_fallback campaign_id=%s reason=%s",
                safe_log_identifier(campaign_id, prefix="cid"),
                type(exc).__name__,
            )
            script = CampaignScript(
                script=template_script(record.brief),
                scene_outline=template_scene_outline(record.brief),
                fallback=True,
            )

        record.generated_script = script.script
        record.scene_outline = list(script.scene_outline)
        self._store.touch_campaign(record)
        return script

    async def start_generation(self, *, campaign_id: str, user_id: str) -> CampaignGenerationResponse:
        """Admit one job per content type and platform, then dispatch them together.

        If any admission fails, the jobs admitted so far are cancelled
        and refunded, the campaign returns to draft and the error propagates.
        """
        record = self._require_owned(campaign_id, user_id)
        if record.status is CampaignStatus.GENERATING:
            raise ApiError(
                status_code=409,
                code="CAMPAIGN_ALREADY_GENERATING",
                message="Campaign generation is already in progress",
                details={"campaign_id": campaign_id},
            )

        brief = record.brief
        record.status = CampaignStatus.GENERATING
        self._store.touch_campaign(record)

        asset_types: list[str] = []
        if brief.content_type in ("image", "both"):
            asset_types.append("image")
        if brief.content_type in ("video", "both"):
            asset_types.append("video")

        jobs: list[Job] = []
        assets: list[CampaignAsset] = []
        try:
            for asset_type in asset_types:
                for platform in brief.platforms:
                    job = await self._scheduler.create_job(
                        user_id=user_id,
                        module=JobModule.TEXT_TO_IMAGE if asset_type == "image" else JobModule.TEXT_TO_VIDEO,
                        job_input=self._job_input(record, platform, asset_type),
                        metadata={"campaign_id": campaign_id, "platform": platform, "asset_type": asset_type},
                        skip_processing=True,
                    )
                    jobs.append(job)
                    assets.append(
                        CampaignAsset(type=asset_type, job_id=job.id, status="generating", metadata={"platform": platform})
                    )
        except Exception as exc:
            for job in jobs:
                await self._scheduler.abort_admitted(job_id=job.id, reason=_ROLLBACK_REASON)
            record.status = CampaignStatus.DRAFT
            self._store.touch_campaign(record)
            logger.warning(
                "campaign.generation_aborted campaign_id=%s admitted=%s reason=%s",
                safe_log_identifier(campaign_id, prefix="cid"),
                len(jobs),
                exc.code if isinstance(exc, ApiError) else type(exc).__name__,
            )
            raise

        record.job_ids = [job.id for job in jobs]
        record.assets = assets
        self._store.touch_campaign(record)
        for job in jobs:
            self._scheduler.dispatch(job.id)

        logger.info(
            "campaign.generation_started campaign_id=%s jobs=%s",
            safe_log_identifier(campaign_id, prefix="cid"),
            len(jobs),
        )
        return CampaignGenerationResponse(campaign=self._to_campaign(record), jobs=jobs)

    def get_campaign_status(self, *, campaign_id: str, user_id: str) -> CampaignStatusResponse:
        record = self._require_owned(campaign_id, user_id)
        jobs: list[Job] = []
        for job_id in record.job_ids:
            try:
                jobs.append(self._scheduler.get_job(job_id=job_id, user_id=user_id))
            except JobNotFound:
                continue

        progress = CampaignProgress(
            total=len(jobs),
            completed=sum(1 for job in jobs if job.status is JobStatus.COMPLETED),
            failed=sum(1 for job in jobs if job.status is JobStatus.FAILED),
            processing=sum(1 for job in jobs if job.status in IN_FLIGHT_STATES),
        )

        jobs_by_id = {job.id: job for job in jobs}
        record.assets = [self._sync_asset(asset, jobs_by_id.get(asset.job_id)) for asset in record.assets]
        if progress.processing == 0 and progress.total > 0:
            record.status = CampaignStatus.COMPLETED if progress.completed > 0 else CampaignStatus.FAILED
        self._store.touch_campaign(record)

        return CampaignStatusResponse(campaign=self._to_campaign(record), jobs=jobs, progress=progress)

    async def export_campaign(self, *, campaign_id: str, user_id: str) -> Job:
        record = self._require_owned(campaign_id, user_id)
        return await self._scheduler.create_job(
            user_id=user_id,
            module=JobModule.EXPORT,
            job_input=JobInput(campaign_id=campaign_id, asset_ids=[asset.job_id for asset in record.assets]),
            metadata={"campaign_name": record.brief.name},
        )

    @staticmethod
    def _job_input(record: CampaignRecord, platform: str, asset_type: str) -> JobInput:
        brief = record.brief
        config: dict[str, object] = {
            "platform": platform,
            "aspect_ratio": aspect_ratio_for_platform(platform),
        }
        if asset_type == "image":
            config["style"] = brief.visual_style or "Photorealistic"
        else:
            config["style"] = brief.visual_style or "Cinematic"
            config["duration"] = brief.video_duration
        return JobInput(
            campaign_id=record.id,
            prompt=platform_prompt(brief, platform, "image" if asset_type == "image" else "video"),
            config=config,
        )

    @staticmethod
    def _sync_asset(asset: CampaignAsset, job: Job | None) -> CampaignAsset:
        if job is None:
            return asset
        if job.status is JobStatus.COMPLETED:
            url = next((item.url for item in job.output if item.type == asset.type and item.url), None)
            return asset.model_copy(update={"status": "completed", "url": url})
        if job.status in (JobStatus.FAILED, JobStatus.CANCELLED):
            return asset.model_copy(update={"status": "failed"})
        if job.status is JobStatus.QUEUED:
            return asset.model_copy(update={"status": "pending"})
        return asset.model_copy(update={"status": "generating"})

    def _require_owned(self, campaign_id: str, user_id: str) -> CampaignRecord:
        record = self._store.get_campaign_for_owner(user_id, campaign_id)
        if record is None:
            raise CampaignNotFound()
        return record

    @staticmethod
    def _to_campaign(record: CampaignRecord) -> Campaign:
        return Campaign(
            **record.brief.model_dump(),
            id=record.id,
            user_id=record.user_id,
            tenant_id=record.tenant_id,
            status=record.status,
            generated_script=record.generated_script,
            scene_outline=list(record.scene_outline),
            job_ids=list(record.job_ids),
            assets=[asset.model_copy(deep=True) for asset in record.assets],
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
