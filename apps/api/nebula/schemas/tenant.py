"""Tenant and plan schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class TenantStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    LOCKED_PAYMENT_FAIL = "LOCKED_PAYMENT_FAIL"


class TenantType(str, Enum):
    INDIVIDUAL = "INDIVIDUAL"
    ORGANIZATION = "ORGANIZATION"


class PlanId(str, Enum):
    FREE = "FREE"
    PRO = "PRO"
    TEAM = "TEAM"
    CUSTOM = "CUSTOM"


class CustomLimits(BaseModel):
    max_users: int = Field(ge=1)
    monthly_credits: int = Field(ge=0)
    features: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class TenantPlan(BaseModel):
    id: PlanId
    is_custom: bool = False
    custom_limits: CustomLimits | None = None


class TenantCredits(BaseModel):
    balance: int
    lifetime_issued: int
    lifetime_consumed: int


class Tenant(BaseModel):
    id: str
    name: str
    type: TenantType
    owner_user_id: str
    status: TenantStatus
    plan: TenantPlan
    credits: TenantCredits
    feature_overrides: list[str] = Field(default_factory=list)
    member_count: int = 0
    suspended_at: datetime | None = None
    suspend_reason: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


class CreateTenantRequest(BaseModel):
    name: str = Field(min_length=1)
    type: TenantType = TenantType.INDIVIDUAL
    owner_user_id: str = Field(min_length=1)
    plan_id: PlanId = PlanId.FREE
    initial_credits: int = Field(default=100, ge=0)


class AssignPlanRequest(BaseModel):
    plan_id: PlanId


class AssignCustomPlanRequest(BaseModel):
    base_plan_id: PlanId = PlanId.FREE
    custom_limits: CustomLimits


class SuspendTenantRequest(BaseModel):
    reason: str | None = None


class AddMemberRequest(BaseModel):
    user_id: str = Field(min_length=1)
    role: str = Field(default="member", min_length=1)
