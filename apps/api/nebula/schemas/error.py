"""API error response schemas."""

from typing import Any
from typing import Literal

from pydantic import BaseModel

from nebula.schemas.job import JobStatus


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class NoLeakNotFoundError(BaseModel):
    code: Literal["RESOURCE_NOT_FOUND"]
    message: str


class TransitionErrorDetails(BaseModel):
    current_status: JobStatus
    attempted_status: JobStatus
    allowed_next_statuses: list[JobStatus] | None = None


class FsmTransitionError(BaseModel):
    code: Literal["FSM_TRANSITION_INVALID", "FSM_TERMINAL_IMMUTABLE"]
    message: str
    details: TransitionErrorDetails


class CreditErrorDetails(BaseModel):
    balance: int
    shortfall: int
    required: int | None = None
    requested: int | None = None
    module: str | None = None
    feature: str | None = None


class CreditError(BaseModel):
    code: Literal["INSUFFICIENT_CREDITS", "INSUFFICIENT_BALANCE"]
    message: str
    details: CreditErrorDetails


class AccessDeniedError(BaseModel):
    code: Literal[
        "FEATURE_DISABLED_GLOBALLY",
        "FEATURE_NOT_ENTITLED",
        "TENANT_SUSPENDED",
        "TENANT_LOCKED",
        "FORBIDDEN",
    ]
    message: str
    details: dict[str, Any] | None = None
