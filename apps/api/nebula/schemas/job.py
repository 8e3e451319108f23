"""Job API schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"
    CANCELLED = "cancelled"


class JobModule(str, Enum):
    CAMPAIGN_WIZARD = "campaign_wizard"
    TEXT_TO_IMAGE = "text_to_image"
    TEXT_TO_VIDEO = "text_to_video"
    IMAGE_TO_VIDEO = "image_to_video"
    TEXT_TO_AUDIO = "text_to_audio"
    EXPORT = "export"


class JobInput(BaseModel):
    prompt: str | None = None
    campaign_id: str | None = None
    asset_ids: list[str] | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class JobOutput(BaseModel):
    type: Literal["image", "video", "audio", "script", "export"]
    url: str | None = None
    data: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class JobError(BaseModel):
    """User-facing failure summary; operator detail stays on the stored record."""

    message: str
    code: str | None = None
    timestamp: datetime


class Job(BaseModel):
    id: str
    user_id: str
    tenant_id: str
    module: JobModule
    status: JobStatus
    input: JobInput
    output: list[JobOutput] = Field(default_factory=list)
    credits_used: int
    retry_count: int
    max_retries: int
    error: JobError | None = None
    metadata: dict[str, Any] | None = None
    queued_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    refunded: bool = False
    created_at: datetime
    updated_at: datetime | None = None


class CreateJobRequest(BaseModel):
    module: JobModule
    input: JobInput = Field(default_factory=JobInput)
    metadata: dict[str, Any] | None = None
    skip_processing: bool = False


class JobPage(BaseModel):
    items: list[Job]
    total: int
    limit: int
    offset: int


class JobStats(BaseModel):
    total: int
    by_status: dict[JobStatus, int]
    by_module: dict[JobModule, int]
    total_credits_used: int


class CancelAllRequest(BaseModel):
    reason: str = Field(default="System is under maintenance", min_length=1)


class CancelAllResponse(BaseModel):
    count: int
    job_ids: list[str]
    refunded_job_ids: list[str] = Field(default_factory=list)
