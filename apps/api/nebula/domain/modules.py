"""Per-module admission rules: credit cost, gated feature, execution timeout.

Every lookup is an exhaustive ``match`` over ``JobModule``; a new module
without an entry fails type checking at ``assert_never`` instead of
silently falling back to a default cost.
"""

from __future__ import annotations

from typing import assert_never

from nebula.core.config import Settings
from nebula.errors import ValidationError
from nebula.schemas.feature import FeatureId
from nebula.schemas.job import JobInput, JobModule


def credit_cost(module: JobModule) -> int:
    match module:
        case JobModule.TEXT_TO_IMAGE:
            return 1
        case JobModule.TEXT_TO_VIDEO:
            return 5
        case JobModule.IMAGE_TO_VIDEO:
            return 3
        case JobModule.TEXT_TO_AUDIO:
            return 2
        case JobModule.CAMPAIGN_WIZARD:
            return 10
        case JobModule.EXPORT:
            return 1
        case _:
            assert_never(module)


def gated_feature(module: JobModule) -> FeatureId | None:
    """Feature a tenant must be entitled to; ``None`` means the module is ungated."""
    match module:
        case JobModule.TEXT_TO_IMAGE:
            return FeatureId.TEXT_TO_IMAGE
        case JobModule.TEXT_TO_VIDEO:
            return FeatureId.TEXT_TO_VIDEO
        case JobModule.IMAGE_TO_VIDEO:
            return FeatureId.FRAME_TO_VIDEO
        case JobModule.TEXT_TO_AUDIO:
            return FeatureId.TEXT_TO_AUDIO
        case JobModule.CAMPAIGN_WIZARD:
            return FeatureId.CAMPAIGN_WIZARD
        case JobModule.EXPORT:
            return None
        case _:
            assert_never(module)


def ledger_feature_label(module: JobModule) -> str:
    """Feature name recorded on CONSUMPTION transactions."""
    feature = gated_feature(module)
    return feature.value if feature is not None else module.value.upper()


def execution_timeout(module: JobModule, settings: Settings) -> float:
    match module:
        case JobModule.TEXT_TO_IMAGE:
            return settings.image_timeout_seconds
        case JobModule.TEXT_TO_VIDEO | JobModule.IMAGE_TO_VIDEO:
            return settings.video_timeout_seconds
        case JobModule.TEXT_TO_AUDIO:
            return settings.audio_timeout_seconds
        case JobModule.CAMPAIGN_WIZARD:
            return settings.campaign_timeout_seconds
        case JobModule.EXPORT:
            return settings.export_timeout_seconds
        case _:
            assert_never(module)


def normalize_job_input(module: JobModule, job_input: JobInput) -> JobInput:
    """Validate module-specific input once at admission and return a cleaned copy."""
    prompt = (job_input.prompt or "").strip() or None
    normalized = job_input.model_copy(update={"prompt": prompt}, deep=True)

    match module:
        case JobModule.TEXT_TO_IMAGE | JobModule.TEXT_TO_VIDEO | JobModule.TEXT_TO_AUDIO:
            if prompt is None:
                raise ValidationError("A prompt is required", {"module": module.value, "field": "prompt"})
        case JobModule.IMAGE_TO_VIDEO:
            if not str(normalized.config.get("image_url") or "").strip():
                raise ValidationError("A source image is required", {"module": module.value, "field": "config.image_url"})
        case JobModule.CAMPAIGN_WIZARD:
            if normalized.campaign_id is None and prompt is None:
                raise ValidationError(
                    "A campaign or prompt is required",
                    {"module": module.value, "field": "campaign_id"},
                )
        case JobModule.EXPORT:
            if not normalized.asset_ids and normalized.campaign_id is None:
                raise ValidationError("Nothing to export", {"module": module.value, "field": "asset_ids"})
        case _:
            assert_never(module)

    return normalized
