"""Feature gate schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

ALL_FEATURES_WILDCARD = "all"


class FeatureId(str, Enum):
    TEXT_TO_IMAGE = "TEXT_TO_IMAGE"
    TEXT_TO_VIDEO = "TEXT_TO_VIDEO"
    TEXT_TO_AUDIO = "TEXT_TO_AUDIO"
    FRAME_TO_VIDEO = "FRAME_TO_VIDEO"
    CAMPAIGN_WIZARD = "CAMPAIGN_WIZARD"


class SystemFeature(BaseModel):
    feature_id: FeatureId
    name: str
    description: str = ""
    is_globally_enabled: bool
    disabled_by: str | None = None
    disabled_at: datetime | None = None
    disabled_reason: str | None = None
    version: int = 0
    updated_at: datetime | None = None


class ToggleFeatureRequest(BaseModel):
    enabled: bool
    reason: str | None = None


class AccessibleFeatures(BaseModel):
    tenant_id: str
    features: list[FeatureId]
