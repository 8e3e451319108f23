"""Credit ledger schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from nebula.schemas.tenant import Tenant, TenantStatus


class TransactionType(str, Enum):
    GRANT = "GRANT"
    DEDUCT = "DEDUCT"
    PURCHASE = "PURCHASE"
    CONSUMPTION = "CONSUMPTION"
    REFUND = "REFUND"


class CreditTransaction(BaseModel):
    id: str
    tenant_id: str
    type: TransactionType
    amount: int
    balance_before: int
    balance_after: int
    admin_user_id: str | None = None
    reason: str | None = None
    related_job_id: str | None = None
    feature: str | None = None
    reference: str | None = None
    created_at: datetime


class LedgerResult(BaseModel):
    tenant: Tenant
    transaction: CreditTransaction
    replayed: bool = False


class CreditAdjustmentRequest(BaseModel):
    amount: int
    reason: str = Field(min_length=1)


class PurchaseRequest(BaseModel):
    amount: int
    reference: str = Field(min_length=1)


class BalanceSummary(BaseModel):
    balance: int
    lifetime_issued: int
    lifetime_consumed: int
    status: TenantStatus


class TransactionPage(BaseModel):
    transactions: list[CreditTransaction]
    total: int
    limit: int
    offset: int


class HighVelocityTenant(BaseModel):
    tenant: Tenant
    consumption_24h: int
    transaction_count: int
