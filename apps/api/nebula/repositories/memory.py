"""In-memory repositories used by the API and tests."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from nebula.domain.job_fsm import ensure_transition
from nebula.schemas.campaign import CampaignAsset, CampaignStatus, CreateCampaignRequest
from nebula.schemas.credit import TransactionType
from nebula.schemas.feature import FeatureId
from nebula.schemas.job import JobInput, JobModule, JobOutput, JobStatus
from nebula.schemas.tenant import CustomLimits, PlanId, TenantStatus, TenantType


class NegativeBalanceRejected(RuntimeError):
    """Conditional credit update refused because the balance would drop below zero."""


@dataclass(slots=True)
class TenantRecord:
    id: str
    name: str
    type: TenantType
    owner_user_id: str
    status: TenantStatus
    plan_id: PlanId
    created_at: datetime
    is_custom_plan: bool = False
    custom_limits: CustomLimits | None = None
    balance: int = 0
    lifetime_issued: int = 0
    lifetime_consumed: int = 0
    feature_overrides: set[str] = field(default_factory=set)
    suspended_at: datetime | None = None
    suspend_reason: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class UserRecord:
    id: str
    tenant_id: str
    role: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class CreditTransactionRecord:
    id: str
    tenant_id: str
    type: TransactionType
    amount: int
    balance_before: int
    balance_after: int
    created_at: datetime
    admin_user_id: str | None = None
    reason: str | None = None
    related_job_id: str | None = None
    feature: str | None = None
    reference: str | None = None


@dataclass(slots=True)
class SystemFeatureRecord:
    feature_id: FeatureId
    name: str
    is_globally_enabled: bool = True
    disabled_by: str | None = None
    disabled_at: datetime | None = None
    disabled_reason: str | None = None
    version: int = 0
    updated_at: datetime | None = None


@dataclass(slots=True)
class JobFailureRecord:
    message: str
    code: str | None
    timestamp: datetime
    detail: str | None = None


@dataclass(slots=True)
class JobRecord:
    id: str
    user_id: str
    tenant_id: str
    module: JobModule
    status: JobStatus
    input: JobInput
    credits_used: int
    max_retries: int
    queued_at: datetime
    created_at: datetime
    retry_count: int = 0
    output: list[JobOutput] = field(default_factory=list)
    error: JobFailureRecord | None = None
    metadata: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    refunded_at: datetime | None = None
    delivered_at: datetime | None = None
    provider_job_id: str | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class CampaignRecord:
    id: str
    user_id: str
    tenant_id: str
    brief: CreateCampaignRequest
    status: CampaignStatus
    created_at: datetime
    generated_script: str | None = None
    scene_outline: list[str] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)
    assets: list[CampaignAsset] = field(default_factory=list)
    updated_at: datetime | None = None


@dataclass(slots=True)
class ActivityRecord:
    action: str
    details: dict[str, Any]
    created_at: datetime
    tenant_id: str | None = None
    user_id: str | None = None


_JOB_PATCHABLE_FIELDS = frozenset(
    item.name for item in fields(JobRecord) if item.name not in {"id", "user_id", "tenant_id", "module", "status"}
)


@dataclass(slots=True)
class InMemoryStore:
    """Simple, deterministic persistence layer for local runs and tests."""

    tenants: dict[str, TenantRecord] = field(default_factory=dict)
    users: dict[str, UserRecord] = field(default_factory=dict)
    transactions: list[CreditTransactionRecord] = field(default_factory=list)
    refunds_by_job: dict[str, CreditTransactionRecord] = field(default_factory=dict)
    features: dict[FeatureId, SystemFeatureRecord] = field(default_factory=dict)
    jobs: dict[str, JobRecord] = field(default_factory=dict)
    campaigns: dict[str, CampaignRecord] = field(default_factory=dict)
    activities: list[ActivityRecord] = field(default_factory=list)
    tenant_write_count: int = 0
    transaction_write_count: int = 0
    job_write_count: int = 0
    campaign_write_count: int = 0
    activity_failure_message: str | None = None

    # Tenants and members

    def create_tenant(
        self,
        *,
        name: str,
        type: TenantType,
        owner_user_id: str,
        plan_id: PlanId,
    ) -> TenantRecord:
        now = datetime.now(UTC)
        tenant = TenantRecord(
            id=str(uuid4()),
            name=name,
            type=type,
            owner_user_id=owner_user_id,
            status=TenantStatus.ACTIVE,
            plan_id=plan_id,
            created_at=now,
            updated_at=now,
        )
        self.tenants[tenant.id] = tenant
        self.tenant_write_count += 1
        return tenant

    def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        return self.tenants.get(tenant_id)

    def list_tenants(self) -> list[TenantRecord]:
        tenants = list(self.tenants.values())
        tenants.sort(key=lambda record: record.created_at)
        return tenants

    def touch_tenant(self, tenant: TenantRecord) -> None:
        tenant.updated_at = datetime.now(UTC)
        self.tenant_write_count += 1

    def add_user(self, *, user_id: str, tenant_id: str, role: str) -> UserRecord:
        user = UserRecord(id=user_id, tenant_id=tenant_id, role=role, created_at=datetime.now(UTC))
        self.users[user.id] = user
        return user

    def get_user(self, user_id: str) -> UserRecord | None:
        return self.users.get(user_id)

    def count_members(self, tenant_id: str) -> int:
        return sum(1 for user in self.users.values() if user.tenant_id == tenant_id)

    # Credit ledger

    def apply_credit_mutation(
        self,
        *,
        tenant: TenantRecord,
        type: TransactionType,
        delta: int,
        admin_user_id: str | None = None,
        reason: str | None = None,
        related_job_id: str | None = None,
        feature: str | None = None,
        reference: str | None = None,
    ) -> CreditTransactionRecord:
        """Apply a signed balance change and append its transaction in one write.

        The update is conditional: a result below zero is refused and nothing
        is written. Positive deltas count toward ``lifetime_issued``, negative
        ones toward ``lifetime_consumed``.
        """
        balance_before = tenant.balance
        balance_after = balance_before + delta
        if balance_after < 0:
            raise NegativeBalanceRejected(f"balance {balance_before} cannot absorb {delta}")

        now = datetime.now(UTC)
        transaction = CreditTransactionRecord(
            id=str(uuid4()),
            tenant_id=tenant.id,
            type=type,
            amount=abs(delta),
            balance_before=balance_before,
            balance_after=balance_after,
            created_at=now,
            admin_user_id=admin_user_id,
            reason=reason,
            related_job_id=related_job_id,
            feature=feature,
            reference=reference,
        )

        tenant.balance = balance_after
        if delta > 0:
            tenant.lifetime_issued += delta
        else:
            tenant.lifetime_consumed += -delta
        tenant.updated_at = now
        self.transactions.append(transaction)
        if type is TransactionType.REFUND and related_job_id is not None:
            self.refunds_by_job[related_job_id] = transaction
        self.tenant_write_count += 1
        self.transaction_write_count += 1
        return transaction

    def get_refund_for_job(self, job_id: str) -> CreditTransactionRecord | None:
        return self.refunds_by_job.get(job_id)

    def list_transactions(self, tenant_id: str | None = None) -> list[CreditTransactionRecord]:
        """Chronological (append) order."""
        if tenant_id is None:
            return list(self.transactions)
        return [record for record in self.transactions if record.tenant_id == tenant_id]

    # Global feature switches

    def get_feature(self, feature_id: FeatureId) -> SystemFeatureRecord | None:
        return self.features.get(feature_id)

    def save_feature(self, record: SystemFeatureRecord) -> SystemFeatureRecord:
        record.version += 1
        record.updated_at = datetime.now(UTC)
        self.features[record.feature_id] = record
        return record

    # Jobs

    def create_job(
        self,
        *,
        job_id: str,
        user_id: str,
        tenant_id: str,
        module: JobModule,
        input: JobInput,
        credits_used: int,
        max_retries: int,
        metadata: dict[str, Any] | None = None,
    ) -> JobRecord:
        now = datetime.now(UTC)
        job = JobRecord(
            id=job_id,
            user_id=user_id,
            tenant_id=tenant_id,
            module=module,
            status=JobStatus.QUEUED,
            input=input.model_copy(deep=True),
            credits_used=credits_used,
            max_retries=max_retries,
            queued_at=now,
            created_at=now,
            metadata=dict(metadata) if metadata is not None else None,
            updated_at=now,
        )
        self.jobs[job.id] = job
        self.job_write_count += 1
        return job

    def get_job(self, job_id: str) -> JobRecord | None:
        return self.jobs.get(job_id)

    def list_jobs(
        self,
        *,
        user_id: str | None = None,
        tenant_id: str | None = None,
        module: JobModule | None = None,
        status: JobStatus | None = None,
        limit: int | None = 20,
        offset: int = 0,
    ) -> tuple[list[JobRecord], int]:
        """Return one page of matching jobs, newest first, and the total match count.

        ``limit=None`` returns every match from ``offset`` on.
        """
        matches = [
            record
            for record in self.jobs.values()
            if (user_id is None or record.user_id == user_id)
            and (tenant_id is None or record.tenant_id == tenant_id)
            and (module is None or record.module is module)
            and (status is None or record.status is status)
        ]
        matches.sort(key=lambda record: record.created_at, reverse=True)
        end = None if limit is None else offset + limit
        return matches[offset:end], len(matches)

    def list_jobs_in_statuses(self, statuses: frozenset[JobStatus] | set[JobStatus]) -> list[JobRecord]:
        """Oldest first."""
        matches = [record for record in self.jobs.values() if record.status in statuses]
        matches.sort(key=lambda record: record.created_at)
        return matches

    def update_job_status(self, job_id: str, new_status: JobStatus, **patch: Any) -> JobRecord:
        """Apply an FSM-validated status mutation and its patch as one write.

        Nothing is modified when the transition or a patch key is rejected.
        """
        job = self.jobs[job_id]
        ensure_transition(job.status, new_status)
        self._check_patch(patch)

        job.status = new_status
        for key, value in patch.items():
            setattr(job, key, value)
        job.updated_at = datetime.now(UTC)
        self.job_write_count += 1
        return job

    def update_job(self, job_id: str, **patch: Any) -> JobRecord:
        """Patch non-status job fields."""
        job = self.jobs[job_id]
        self._check_patch(patch)
        for key, value in patch.items():
            setattr(job, key, value)
        job.updated_at = datetime.now(UTC)
        self.job_write_count += 1
        return job

    @staticmethod
    def _check_patch(patch: dict[str, Any]) -> None:
        unknown = set(patch) - _JOB_PATCHABLE_FIELDS
        if unknown:
            raise KeyError(f"Unsupported job fields: {sorted(unknown)}")

    # Campaigns

    def create_campaign(self, *, user_id: str, tenant_id: str, brief: CreateCampaignRequest) -> CampaignRecord:
        now = datetime.now(UTC)
        campaign = CampaignRecord(
            id=str(uuid4()),
            user_id=user_id,
            tenant_id=tenant_id,
            brief=brief.model_copy(deep=True),
            status=CampaignStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        self.campaigns[campaign.id] = campaign
        self.campaign_write_count += 1
        return campaign

    def get_campaign_for_owner(self, user_id: str, campaign_id: str) -> CampaignRecord | None:
        campaign = self.campaigns.get(campaign_id)
        if campaign is None or campaign.user_id != user_id:
            return None
        return campaign

    def list_campaigns_for_owner(
        self,
        user_id: str,
        *,
        status: CampaignStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[CampaignRecord], int]:
        matches = [
            record
            for record in self.campaigns.values()
            if record.user_id == user_id and (status is None or record.status is status)
        ]
        matches.sort(key=lambda record: record.created_at, reverse=True)
        return matches[offset : offset + limit], len(matches)

    def touch_campaign(self, campaign: CampaignRecord) -> None:
        campaign.updated_at = datetime.now(UTC)
        self.campaign_write_count += 1

    # Activity log

    def record_activity(
        self,
        *,
        action: str,
        details: dict[str, Any],
        tenant_id: str | None = None,
        user_id: str | None = None,
    ) -> ActivityRecord:
        if self.activity_failure_message is not None:
            message = self.activity_failure_message
            self.activity_failure_message = None
            raise RuntimeError(message)

        activity = ActivityRecord(
            action=action,
            details=dict(details),
            created_at=datetime.now(UTC),
            tenant_id=tenant_id,
            user_id=user_id,
        )
        self.activities.append(activity)
        return activity
