"""Super-admin routes: tenants, credits, feature switches and job operations."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from nebula.routes.dependencies import (
    get_feature_gate,
    get_ledger,
    get_scheduler,
    get_tenant_service,
    require_super_admin,
)
from nebula.schemas.auth import AuthPrincipal
from nebula.schemas.credit import (
    CreditAdjustmentRequest,
    HighVelocityTenant,
    LedgerResult,
    PurchaseRequest,
    TransactionPage,
)
from nebula.schemas.error import AccessDeniedError, CreditError, ErrorResponse, FsmTransitionError, NoLeakNotFoundError
from nebula.schemas.feature import FeatureId, SystemFeature, ToggleFeatureRequest
from nebula.schemas.job import CancelAllRequest, CancelAllResponse, Job
from nebula.schemas.tenant import (
    AddMemberRequest,
    AssignCustomPlanRequest,
    AssignPlanRequest,
    CreateTenantRequest,
    PlanId,
    SuspendTenantRequest,
    Tenant,
    TenantStatus,
    TenantType,
)
from nebula.services.feature_gate import FeatureGateService
from nebula.services.ledger import LedgerService
from nebula.services.scheduler import JobScheduler
from nebula.services.tenants import TenantService

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={403: {"model": AccessDeniedError}},
)

AdminPrincipal = Annotated[AuthPrincipal, Depends(require_super_admin)]
TenantIdPath = Annotated[str, Path(alias="tenantId")]
Tenants = Annotated[TenantService, Depends(get_tenant_service)]
Ledger = Annotated[LedgerService, Depends(get_ledger)]

_TENANT_NOT_FOUND = {404: {"model": NoLeakNotFoundError}}


@router.post("/tenants", response_model=Tenant, status_code=status.HTTP_201_CREATED)
async def create_tenant(payload: CreateTenantRequest, _: AdminPrincipal, tenants: Tenants) -> Tenant:
    return await tenants.create_tenant(payload)


@router.get("/tenants", response_model=list[Tenant])
async def list_tenants(
    _: AdminPrincipal,
    tenants: Tenants,
    tenant_status: Annotated[TenantStatus | None, Query(alias="status")] = None,
    plan_id: PlanId | None = None,
    tenant_type: Annotated[TenantType | None, Query(alias="type")] = None,
    search: str | None = None,
) -> list[Tenant]:
    return tenants.list_tenants(status=tenant_status, plan_id=plan_id, type=tenant_type, search=search)


@router.get("/tenants/{tenantId}", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def get_tenant(tenant_id: TenantIdPath, _: AdminPrincipal, tenants: Tenants) -> Tenant:
    return tenants.get_tenant(tenant_id)


@router.post(
    "/tenants/{tenantId}/members",
    response_model=Tenant,
    status_code=status.HTTP_201_CREATED,
    responses={**_TENANT_NOT_FOUND, 409: {"model": ErrorResponse}},
)
async def add_member(tenant_id: TenantIdPath, payload: AddMemberRequest, _: AdminPrincipal, tenants: Tenants) -> Tenant:
    return await tenants.add_member(tenant_id=tenant_id, user_id=payload.user_id, role=payload.role)


@router.post("/tenants/{tenantId}/suspend", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def suspend_tenant(
    tenant_id: TenantIdPath,
    payload: SuspendTenantRequest,
    admin: AdminPrincipal,
    tenants: Tenants,
) -> Tenant:
    return await tenants.suspend(tenant_id, reason=payload.reason, admin_id=admin.user_id)


@router.post("/tenants/{tenantId}/activate", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def activate_tenant(tenant_id: TenantIdPath, admin: AdminPrincipal, tenants: Tenants) -> Tenant:
    return await tenants.activate(tenant_id, admin_id=admin.user_id)


@router.post("/tenants/{tenantId}/lock", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def lock_tenant(tenant_id: TenantIdPath, _: AdminPrincipal, tenants: Tenants) -> Tenant:
    return await tenants.lock_for_payment_failure(tenant_id)


@router.put("/tenants/{tenantId}/plan", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def assign_plan(tenant_id: TenantIdPath, payload: AssignPlanRequest, _: AdminPrincipal, tenants: Tenants) -> Tenant:
    return await tenants.assign_system_plan(tenant_id, payload.plan_id)


@router.put(
    "/tenants/{tenantId}/custom-plan",
    response_model=Tenant,
    responses={**_TENANT_NOT_FOUND, 409: {"model": ErrorResponse}},
)
async def assign_custom_plan(
    tenant_id: TenantIdPath,
    payload: AssignCustomPlanRequest,
    _: AdminPrincipal,
    tenants: Tenants,
) -> Tenant:
    return await tenants.assign_custom_plan(tenant_id, payload)


@router.put("/tenants/{tenantId}/overrides/{featureId}", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def add_feature_override(
    tenant_id: TenantIdPath,
    feature_id: Annotated[FeatureId, Path(alias="featureId")],
    _: AdminPrincipal,
    tenants: Tenants,
) -> Tenant:
    return await tenants.add_feature_override(tenant_id, feature_id)


@router.delete("/tenants/{tenantId}/overrides/{featureId}", response_model=Tenant, responses=_TENANT_NOT_FOUND)
async def remove_feature_override(
    tenant_id: TenantIdPath,
    feature_id: Annotated[FeatureId, Path(alias="featureId")],
    _: AdminPrincipal,
    tenants: Tenants,
) -> Tenant:
    return await tenants.remove_feature_override(tenant_id, feature_id)


@router.post(
    "/tenants/{tenantId}/credits/grant",
    response_model=LedgerResult,
    responses={**_TENANT_NOT_FOUND, 409: {"model": ErrorResponse}},
)
async def grant_credits(
    tenant_id: TenantIdPath,
    payload: CreditAdjustmentRequest,
    admin: AdminPrincipal,
    ledger: Ledger,
) -> LedgerResult:
    return await ledger.grant(tenant_id=tenant_id, amount=payload.amount, admin_id=admin.user_id, reason=payload.reason)


@router.post(
    "/tenants/{tenantId}/credits/deduct",
    response_model=LedgerResult,
    responses={**_TENANT_NOT_FOUND, 402: {"model": CreditError}},
)
async def deduct_credits(
    tenant_id: TenantIdPath,
    payload: CreditAdjustmentRequest,
    admin: AdminPrincipal,
    ledger: Ledger,
) -> LedgerResult:
    return await ledger.deduct(tenant_id=tenant_id, amount=payload.amount, admin_id=admin.user_id, reason=payload.reason)


@router.post("/tenants/{tenantId}/credits/purchase", response_model=LedgerResult, responses=_TENANT_NOT_FOUND)
async def purchase_credits(
    tenant_id: TenantIdPath,
    payload: PurchaseRequest,
    _: AdminPrincipal,
    ledger: Ledger,
) -> LedgerResult:
    return await ledger.purchase(tenant_id=tenant_id, amount=payload.amount, reference=payload.reference)


@router.get("/tenants/{tenantId}/credits/transactions", response_model=TransactionPage, responses=_TENANT_NOT_FOUND)
async def get_tenant_transactions(
    tenant_id: TenantIdPath,
    _: AdminPrincipal,
    ledger: Ledger,
    limit: Annotated[int, Query()] = 50,
    offset: Annotated[int, Query()] = 0,
) -> TransactionPage:
    return ledger.get_transaction_history(tenant_id, limit=limit, offset=offset)


@router.get("/credits/high-velocity", response_model=list[HighVelocityTenant])
async def get_high_velocity_tenants(
    _: AdminPrincipal,
    ledger: Ledger,
    threshold_multiplier: Annotated[float, Query(gt=0)] = 5,
) -> list[HighVelocityTenant]:
    return ledger.get_high_velocity_tenants(threshold_multiplier)


@router.get("/features", response_model=list[SystemFeature])
async def list_features(
    _: AdminPrincipal,
    gate: Annotated[FeatureGateService, Depends(get_feature_gate)],
) -> list[SystemFeature]:
    return gate.list_feature_status()


@router.put("/features/{featureId}", response_model=SystemFeature)
async def toggle_feature(
    feature_id: Annotated[FeatureId, Path(alias="featureId")],
    payload: ToggleFeatureRequest,
    admin: AdminPrincipal,
    gate: Annotated[FeatureGateService, Depends(get_feature_gate)],
) -> SystemFeature:
    return gate.toggle_global(feature_id, enabled=payload.enabled, admin_id=admin.user_id, reason=payload.reason)


@router.post("/jobs/cancel-all", response_model=CancelAllResponse)
async def cancel_all_jobs(
    payload: CancelAllRequest,
    admin: AdminPrincipal,
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> CancelAllResponse:
    return await scheduler.cancel_all_processing(reason=payload.reason, admin_id=admin.user_id)


@router.post(
    "/jobs/{jobId}/retry",
    response_model=Job,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": NoLeakNotFoundError}, 409: {"model": FsmTransitionError}},
)
async def force_retry_job(
    job_id: Annotated[str, Path(alias="jobId")],
    admin: AdminPrincipal,
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> Job:
    return await scheduler.force_retry(job_id=job_id, admin_id=admin.user_id)
