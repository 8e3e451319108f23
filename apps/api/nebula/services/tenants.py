"""Tenant administration service."""

from __future__ import annotations

from datetime import UTC, datetime
import logging

from nebula.core.locks import KeyedLocks
from nebula.core.logging_safety import safe_log_identifier
from nebula.domain.plans import MAX_CREDIT_BALANCE, effective_max_users, get_system_plan
from nebula.errors import BalanceCapExceeded, SeatLimitReached, TenantNotFound, ValidationError
from nebula.repositories.memory import InMemoryStore, TenantRecord
from nebula.schemas.credit import TransactionType
from nebula.schemas.feature import FeatureId
from nebula.schemas.tenant import (
    AssignCustomPlanRequest,
    CreateTenantRequest,
    CustomLimits,
    PlanId,
    Tenant,
    TenantCredits,
    TenantPlan,
    TenantStatus,
    TenantType,
)
from nebula.services.activity import ActivityRecorder

logger = logging.getLogger(__name__)

OWNER_ROLE = "tenant_owner"
_INITIAL_GRANT_REASON = "Initial tenant creation"


def to_tenant(record: TenantRecord, *, member_count: int = 0) -> Tenant:
    return Tenant(
        id=record.id,
        name=record.name,
        type=record.type,
        owner_user_id=record.owner_user_id,
        status=record.status,
        plan=TenantPlan(
            id=record.plan_id,
            is_custom=record.is_custom_plan,
            custom_limits=record.custom_limits.model_copy() if record.custom_limits is not None else None,
        ),
        credits=TenantCredits(
            balance=record.balance,
            lifetime_issued=record.lifetime_issued,
            lifetime_consumed=record.lifetime_consumed,
        ),
        feature_overrides=sorted(record.feature_overrides),
        member_count=member_count,
        suspended_at=record.suspended_at,
        suspend_reason=record.suspend_reason,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class TenantService:
    """Tenant lifecycle, membership and plan assignment.

    Status and plan changes take the same per-tenant lock as the ledger, so a
    suspension can never interleave with a half-applied credit mutation.
    """

    def __init__(self, store: InMemoryStore, locks: KeyedLocks, *, activity: ActivityRecorder | None = None) -> None:
        self._store = store
        self._locks = locks
        self._activity = activity or ActivityRecorder(store)

    async def create_tenant(self, request: CreateTenantRequest) -> Tenant:
        if get_system_plan(request.plan_id) is None:
            raise ValidationError(
                "Tenants start on a system plan; assign a custom plan afterwards",
                {"plan_id": request.plan_id},
            )
        if request.initial_credits > MAX_CREDIT_BALANCE:
            raise BalanceCapExceeded(balance=0, amount=request.initial_credits, cap=MAX_CREDIT_BALANCE)
        owner = self._store.get_user(request.owner_user_id)
        if owner is not None:
            raise ValidationError("User already belongs to a tenant", {"user_id": request.owner_user_id})

        record = self._store.create_tenant(
            name=request.name,
            type=request.type,
            owner_user_id=request.owner_user_id,
            plan_id=request.plan_id,
        )
        async with self._locks.hold(record.id):
            self._store.add_user(user_id=request.owner_user_id, tenant_id=record.id, role=OWNER_ROLE)
            if request.initial_credits > 0:
                self._store.apply_credit_mutation(
                    tenant=record,
                    type=TransactionType.GRANT,
                    delta=request.initial_credits,
                    reason=_INITIAL_GRANT_REASON,
                )

        logger.info(
            "tenant.created tenant_id=%s plan_id=%s initial_credits=%s",
            safe_log_identifier(record.id, prefix="tid"),
            record.plan_id.value,
            request.initial_credits,
        )
        self._activity.record("tenant.created", tenant_id=record.id, user_id=request.owner_user_id, plan_id=record.plan_id.value)
        return self._to_tenant(record)

    def get_tenant(self, tenant_id: str) -> Tenant:
        return self._to_tenant(self._require(tenant_id))

    def list_tenants(
        self,
        *,
        status: TenantStatus | None = None,
        plan_id: PlanId | None = None,
        type: TenantType | None = None,
        search: str | None = None,
    ) -> list[Tenant]:
        needle = (search or "").strip().lower()
        matches = [
            record
            for record in self._store.list_tenants()
            if (status is None or record.status is status)
            and (plan_id is None or record.plan_id is plan_id)
            and (type is None or record.type is type)
            and (not needle or needle in record.name.lower() or needle == record.id)
        ]
        matches.reverse()
        return [self._to_tenant(record) for record in matches]

    async def add_member(self, *, tenant_id: str, user_id: str, role: str = "member") -> Tenant:
        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            if self._store.get_user(user_id) is not None:
                raise ValidationError("User already belongs to a tenant", {"user_id": user_id})

            current = self._store.count_members(tenant_id)
            seat_limit = self._seat_limit(record)
            if seat_limit is not None and current + 1 > seat_limit:
                raise SeatLimitReached(max_users=seat_limit, current_users=current)

            self._store.add_user(user_id=user_id, tenant_id=tenant_id, role=role)
            self._store.touch_tenant(record)

        logger.info(
            "tenant.member_added tenant_id=%s user_id=%s members=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            safe_log_identifier(user_id, prefix="uid"),
            current + 1,
        )
        return self._to_tenant(record)

    async def suspend(self, tenant_id: str, *, reason: str | None = None, admin_id: str | None = None) -> Tenant:
        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            record.status = TenantStatus.SUSPENDED
            record.suspended_at = datetime.now(UTC)
            record.suspend_reason = reason
            self._store.touch_tenant(record)

        logger.info("tenant.suspended tenant_id=%s", safe_log_identifier(tenant_id, prefix="tid"))
        self._activity.record("tenant.suspended", tenant_id=tenant_id, user_id=admin_id, reason=reason)
        return self._to_tenant(record)

    async def activate(self, tenant_id: str, *, admin_id: str | None = None) -> Tenant:
        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            record.status = TenantStatus.ACTIVE
            record.suspended_at = None
            record.suspend_reason = None
            self._store.touch_tenant(record)

        logger.info("tenant.activated tenant_id=%s", safe_log_identifier(tenant_id, prefix="tid"))
        self._activity.record("tenant.activated", tenant_id=tenant_id, user_id=admin_id)
        return self._to_tenant(record)

    async def lock_for_payment_failure(self, tenant_id: str) -> Tenant:
        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            record.status = TenantStatus.LOCKED_PAYMENT_FAIL
            self._store.touch_tenant(record)

        logger.warning("tenant.locked tenant_id=%s reason=payment_failure", safe_log_identifier(tenant_id, prefix="tid"))
        self._activity.record("tenant.locked", tenant_id=tenant_id)
        return self._to_tenant(record)

    async def assign_system_plan(self, tenant_id: str, plan_id: PlanId) -> Tenant:
        plan = get_system_plan(plan_id)
        if plan is None:
            raise ValidationError("Use the custom plan assignment for CUSTOM plans", {"plan_id": plan_id})

        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            current = self._store.count_members(tenant_id)
            if plan.max_users < current:
                raise SeatLimitReached(max_users=plan.max_users, current_users=current)
            record.plan_id = plan_id
            record.is_custom_plan = False
            record.custom_limits = None
            self._store.touch_tenant(record)

        logger.info(
            "tenant.plan_assigned tenant_id=%s plan_id=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            plan_id.value,
        )
        return self._to_tenant(record)

    async def assign_custom_plan(self, tenant_id: str, request: AssignCustomPlanRequest) -> Tenant:
        if get_system_plan(request.base_plan_id) is None:
            raise ValidationError("Base plan must be a system plan", {"base_plan_id": request.base_plan_id})

        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            current = self._store.count_members(tenant_id)
            if request.custom_limits.max_users < current:
                raise SeatLimitReached(max_users=request.custom_limits.max_users, current_users=current)
            record.plan_id = PlanId.CUSTOM
            record.is_custom_plan = True
            record.custom_limits = CustomLimits.model_validate(request.custom_limits.model_dump())
            self._store.touch_tenant(record)

        logger.info(
            "tenant.custom_plan_assigned tenant_id=%s max_users=%s features=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            request.custom_limits.max_users,
            len(request.custom_limits.features),
        )
        return self._to_tenant(record)

    async def add_feature_override(self, tenant_id: str, feature_id: FeatureId) -> Tenant:
        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            record.feature_overrides.add(feature_id.value)
            self._store.touch_tenant(record)
        return self._to_tenant(record)

    async def remove_feature_override(self, tenant_id: str, feature_id: FeatureId) -> Tenant:
        async with self._locks.hold(tenant_id):
            record = self._require(tenant_id)
            record.feature_overrides.discard(feature_id.value)
            self._store.touch_tenant(record)
        return self._to_tenant(record)

    def _seat_limit(self, record: TenantRecord) -> int | None:
        custom_max = record.custom_limits.max_users if record.is_custom_plan and record.custom_limits else None
        return effective_max_users(record.plan_id, custom_max)

    def _require(self, tenant_id: str) -> TenantRecord:
        record = self._store.get_tenant(tenant_id)
        if record is None:
            raise TenantNotFound()
        return record

    def _to_tenant(self, record: TenantRecord) -> Tenant:
        return to_tenant(record, member_count=self._store.count_members(record.id))
