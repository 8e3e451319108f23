"""Campaign schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from nebula.schemas.job import Job


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class CampaignAsset(BaseModel):
    type: Literal["image", "video"]
    job_id: str
    status: Literal["pending", "generating", "completed", "failed"]
    url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CreateCampaignRequest(BaseModel):
    name: str = Field(min_length=1)
    objective: str = Field(min_length=1)
    platforms: list[str] = Field(min_length=1)
    brand_name: str = Field(min_length=1)
    cta: str = Field(min_length=1)
    content_type: Literal["image", "video", "both"] = "both"
    audience_type: Literal["B2C", "B2B"] = "B2C"
    audience_description: str | None = None
    brand_tone: str | None = None
    product_name: str | None = None
    product_description: str | None = None
    product_link: str | None = None
    video_duration: Literal[6, 15, 30] = 15
    visual_style: str | None = None
    primary_color: str | None = None


class Campaign(CreateCampaignRequest):
    id: str
    user_id: str
    tenant_id: str
    status: CampaignStatus
    generated_script: str | None = None
    scene_outline: list[str] = Field(default_factory=list)
    job_ids: list[str] = Field(default_factory=list)
    assets: list[CampaignAsset] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None


class CampaignScript(BaseModel):
    script: str
    scene_outline: list[str]
    fallback: bool = False


class CampaignProgress(BaseModel):
    total: int
    completed: int
    failed: int
    processing: int


class CampaignStatusResponse(BaseModel):
    campaign: Campaign
    jobs: list[Job]
    progress: CampaignProgress


class CampaignGenerationResponse(BaseModel):
    campaign: Campaign
    jobs: list[Job]


class CampaignPage(BaseModel):
    items: list[Campaign]
    total: int
    limit: int
    offset: int
