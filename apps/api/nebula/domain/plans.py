"""System plan catalog."""

from __future__ import annotations

from dataclasses import dataclass

from nebula.schemas.feature import ALL_FEATURES_WILDCARD, FeatureId
from nebula.schemas.tenant import PlanId


@dataclass(frozen=True, slots=True)
class SystemPlan:
    id: PlanId
    name: str
    monthly_credits: int
    max_users: int
    features: frozenset[str]
    description: str


_PRO_FEATURES = frozenset(
    {
        FeatureId.TEXT_TO_IMAGE.value,
        FeatureId.TEXT_TO_VIDEO.value,
        FeatureId.TEXT_TO_AUDIO.value,
        FeatureId.FRAME_TO_VIDEO.value,
    }
)

SYSTEM_PLANS: dict[PlanId, SystemPlan] = {
    PlanId.FREE: SystemPlan(
        id=PlanId.FREE,
        name="Free",
        monthly_credits=100,
        max_users=1,
        features=frozenset({FeatureId.TEXT_TO_IMAGE.value}),
        description="Basic plan for individuals getting started",
    ),
    PlanId.PRO: SystemPlan(
        id=PlanId.PRO,
        name="Pro",
        monthly_credits=1000,
        max_users=1,
        features=_PRO_FEATURES,
        description="Professional plan with all creative features",
    ),
    PlanId.TEAM: SystemPlan(
        id=PlanId.TEAM,
        name="Team",
        monthly_credits=5000,
        max_users=10,
        features=_PRO_FEATURES | {FeatureId.CAMPAIGN_WIZARD.value},
        description="Team collaboration with campaign tools",
    ),
}

CUSTOM_PLAN_NAME = "Custom"
MAX_CREDIT_BALANCE = 10_000_000


def get_system_plan(plan_id: PlanId) -> SystemPlan | None:
    return SYSTEM_PLANS.get(plan_id)


def plan_display_name(plan_id: PlanId) -> str:
    plan = SYSTEM_PLANS.get(plan_id)
    return plan.name if plan is not None else CUSTOM_PLAN_NAME


def feature_list_allows(features: frozenset[str] | list[str] | set[str], feature_id: str) -> bool:
    """Membership test honoring the ``"all"`` wildcard."""
    return ALL_FEATURES_WILDCARD in features or feature_id in features


def effective_max_users(plan_id: PlanId, custom_limits_max_users: int | None) -> int | None:
    """Seat limit for a tenant; ``None`` when the plan defines none."""
    if custom_limits_max_users is not None:
        return custom_limits_max_users
    plan = SYSTEM_PLANS.get(plan_id)
    return plan.max_users if plan is not None else None
