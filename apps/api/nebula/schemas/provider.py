"""Generation provider result schemas."""

from typing import Literal

from pydantic import BaseModel

from nebula.schemas.job import JobOutput


class ProviderFailure(BaseModel):
    message: str
    code: str | None = None


class ProviderResult(BaseModel):
    status: Literal["succeeded", "failed", "pending"]
    output: list[JobOutput] | None = None
    error: ProviderFailure | None = None
    provider_job_id: str | None = None
