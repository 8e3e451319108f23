"""Tenant credit and feature routes for the calling user."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from nebula.routes.dependencies import get_current_tenant_id, get_feature_gate, get_ledger
from nebula.schemas.credit import BalanceSummary, TransactionPage
from nebula.schemas.feature import AccessibleFeatures
from nebula.services.feature_gate import FeatureGateService
from nebula.services.ledger import LedgerService

router = APIRouter(tags=["Credits"])


@router.get("/credits/balance", response_model=BalanceSummary)
async def get_balance(
    tenant_id: Annotated[str, Depends(get_current_tenant_id)],
    ledger: Annotated[LedgerService, Depends(get_ledger)],
) -> BalanceSummary:
    return ledger.get_balance(tenant_id)


@router.get("/credits/transactions", response_model=TransactionPage)
async def get_transactions(
    tenant_id: Annotated[str, Depends(get_current_tenant_id)],
    ledger: Annotated[LedgerService, Depends(get_ledger)],
    limit: Annotated[int, Query()] = 50,
    offset: Annotated[int, Query()] = 0,
) -> TransactionPage:
    return ledger.get_transaction_history(tenant_id, limit=limit, offset=offset)


@router.get("/features/accessible", response_model=AccessibleFeatures, tags=["Features"])
async def get_accessible_features(
    tenant_id: Annotated[str, Depends(get_current_tenant_id)],
    gate: Annotated[FeatureGateService, Depends(get_feature_gate)],
) -> AccessibleFeatures:
    return gate.list_accessible_features(tenant_id)
