"""Credit ledger service.

Every balance change is one read-modify-write under the tenant's lock and
appends exactly one immutable transaction, so per tenant the log chains
(``balance_after`` of one entry is ``balance_before`` of the next) and
replaying it reproduces the stored balance.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import UTC, datetime, timedelta
import logging

from nebula.core.locks import KeyedLocks
from nebula.domain.plans import MAX_CREDIT_BALANCE
from nebula.core.logging_safety import safe_log_identifier
from nebula.errors import (
    BalanceCapExceeded,
    FeatureRequired,
    InsufficientBalance,
    InvalidAmount,
    TenantLocked,
    TenantNotFound,
    TenantSuspended,
    ValidationError,
)
from nebula.repositories.memory import (
    CreditTransactionRecord,
    InMemoryStore,
    NegativeBalanceRejected,
    TenantRecord,
)
from nebula.schemas.credit import (
    BalanceSummary,
    CreditTransaction,
    HighVelocityTenant,
    LedgerResult,
    TransactionPage,
    TransactionType,
)
from nebula.schemas.tenant import TenantStatus
from nebula.services.activity import ActivityRecorder
from nebula.services.tenants import to_tenant

logger = logging.getLogger(__name__)

BALANCE_CAP = MAX_CREDIT_BALANCE
_HISTORY_LIMIT_DEFAULT = 50
_HISTORY_LIMIT_MAX = 200
_VELOCITY_WINDOW = timedelta(hours=24)


class LedgerService:
    def __init__(
        self,
        store: InMemoryStore,
        locks: KeyedLocks,
        *,
        activity: ActivityRecorder | None = None,
        high_velocity_baseline: int = 500,
    ) -> None:
        self._store = store
        self._locks = locks
        self._activity = activity or ActivityRecorder(store)
        self._high_velocity_baseline = high_velocity_baseline

    async def grant(self, *, tenant_id: str, amount: int, admin_id: str, reason: str) -> LedgerResult:
        _ensure_positive(amount)
        async with self._locks.hold(tenant_id):
            tenant = self._require_tenant(tenant_id)
            if tenant.status is TenantStatus.SUSPENDED:
                raise TenantSuspended(tenant_id)
            if tenant.balance + amount > BALANCE_CAP:
                raise BalanceCapExceeded(balance=tenant.balance, amount=amount, cap=BALANCE_CAP)

            transaction = self._store.apply_credit_mutation(
                tenant=tenant,
                type=TransactionType.GRANT,
                delta=amount,
                admin_user_id=admin_id,
                reason=reason,
            )

        logger.info(
            "ledger.granted tenant_id=%s amount=%s balance=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            amount,
            transaction.balance_after,
        )
        self._activity.record(
            "credits.granted",
            tenant_id=tenant_id,
            user_id=admin_id,
            amount=amount,
            reason=reason,
        )
        return self._result(tenant, transaction)

    async def deduct(self, *, tenant_id: str, amount: int, admin_id: str, reason: str) -> LedgerResult:
        _ensure_positive(amount)
        async with self._locks.hold(tenant_id):
            tenant = self._require_tenant(tenant_id)
            if tenant.status is TenantStatus.SUSPENDED:
                raise TenantSuspended(tenant_id)

            transaction = self._apply_debit(
                tenant,
                type=TransactionType.DEDUCT,
                amount=amount,
                admin_user_id=admin_id,
                reason=reason,
            )

        logger.info(
            "ledger.deducted tenant_id=%s amount=%s balance=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            amount,
            transaction.balance_after,
        )
        self._activity.record(
            "credits.deducted",
            tenant_id=tenant_id,
            user_id=admin_id,
            amount=amount,
            reason=reason,
        )
        return self._result(tenant, transaction)

    async def purchase(self, *, tenant_id: str, amount: int, reference: str) -> LedgerResult:
        """Credit a paid top-up. Locked tenants may buy; suspended ones may not."""
        _ensure_positive(amount)
        async with self._locks.hold(tenant_id):
            tenant = self._require_tenant(tenant_id)
            if tenant.status is TenantStatus.SUSPENDED:
                raise TenantSuspended(tenant_id)
            if tenant.balance + amount > BALANCE_CAP:
                raise BalanceCapExceeded(balance=tenant.balance, amount=amount, cap=BALANCE_CAP)

            transaction = self._store.apply_credit_mutation(
                tenant=tenant,
                type=TransactionType.PURCHASE,
                delta=amount,
                reference=reference,
            )

        logger.info(
            "ledger.purchased tenant_id=%s amount=%s balance=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            amount,
            transaction.balance_after,
        )
        return self._result(tenant, transaction)

    async def consume(
        self,
        *,
        tenant_id: str,
        amount: int,
        feature: str,
        job_id: str | None = None,
    ) -> LedgerResult:
        _ensure_positive(amount)
        if not feature or not feature.strip():
            raise FeatureRequired()

        async with self._locks.hold(tenant_id):
            tenant = self._require_tenant(tenant_id)
            if tenant.status is TenantStatus.SUSPENDED:
                raise TenantSuspended(tenant_id)
            if tenant.status is TenantStatus.LOCKED_PAYMENT_FAIL:
                raise TenantLocked(tenant_id)

            transaction = self._apply_debit(
                tenant,
                type=TransactionType.CONSUMPTION,
                amount=amount,
                feature=feature.strip(),
                related_job_id=job_id,
            )

        logger.info(
            "ledger.consumed tenant_id=%s job_id=%s feature=%s amount=%s balance=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            safe_log_identifier(job_id, prefix="jid"),
            feature,
            amount,
            transaction.balance_after,
        )
        return self._result(tenant, transaction)

    async def refund_job(self, *, tenant_id: str, job_id: str, amount: int, reason: str) -> LedgerResult:
        """Return a job's credits at most once.

        A repeated call for the same job is a replay: it returns the original
        REFUND transaction and leaves the balance alone. Refunds ignore tenant
        status and the balance cap.
        """
        _ensure_positive(amount)
        async with self._locks.hold(tenant_id):
            tenant = self._require_tenant(tenant_id)
            existing = self._store.get_refund_for_job(job_id)
            if existing is not None:
                logger.info(
                    "ledger.refund_replayed tenant_id=%s job_id=%s",
                    safe_log_identifier(tenant_id, prefix="tid"),
                    safe_log_identifier(job_id, prefix="jid"),
                )
                return self._result(tenant, existing, replayed=True)

            transaction = self._store.apply_credit_mutation(
                tenant=tenant,
                type=TransactionType.REFUND,
                delta=amount,
                related_job_id=job_id,
                reason=reason,
            )

        logger.info(
            "ledger.refunded tenant_id=%s job_id=%s amount=%s balance=%s",
            safe_log_identifier(tenant_id, prefix="tid"),
            safe_log_identifier(job_id, prefix="jid"),
            amount,
            transaction.balance_after,
        )
        return self._result(tenant, transaction)

    def get_balance(self, tenant_id: str) -> BalanceSummary:
        tenant = self._require_tenant(tenant_id)
        return BalanceSummary(
            balance=tenant.balance,
            lifetime_issued=tenant.lifetime_issued,
            lifetime_consumed=tenant.lifetime_consumed,
            status=tenant.status,
        )

    def get_transaction_history(
        self,
        tenant_id: str,
        *,
        limit: int = _HISTORY_LIMIT_DEFAULT,
        offset: int = 0,
    ) -> TransactionPage:
        self._require_tenant(tenant_id)
        if limit < 1 or limit > _HISTORY_LIMIT_MAX or offset < 0:
            raise ValidationError(
                "Invalid pagination parameters",
                {"limit": limit, "offset": offset, "max_limit": _HISTORY_LIMIT_MAX},
            )

        newest_first = list(reversed(self._store.list_transactions(tenant_id)))
        return TransactionPage(
            transactions=[_to_transaction(record) for record in newest_first[offset : offset + limit]],
            total=len(newest_first),
            limit=limit,
            offset=offset,
        )

    def get_high_velocity_tenants(
        self,
        threshold_multiplier: float = 5,
        *,
        now: datetime | None = None,
    ) -> list[HighVelocityTenant]:
        """Tenants whose CONSUMPTION over the trailing 24 hours exceeds baseline × multiplier."""
        window_start = (now or datetime.now(UTC)) - _VELOCITY_WINDOW
        threshold = self._high_velocity_baseline * threshold_multiplier

        totals: dict[str, int] = defaultdict(int)
        counts: dict[str, int] = defaultdict(int)
        for record in self._store.list_transactions():
            if record.type is not TransactionType.CONSUMPTION or record.created_at < window_start:
                continue
            totals[record.tenant_id] += record.amount
            counts[record.tenant_id] += 1

        flagged = sorted(
            (tenant_id for tenant_id, total in totals.items() if total > threshold),
            key=lambda tenant_id: totals[tenant_id],
            reverse=True,
        )
        results: list[HighVelocityTenant] = []
        for tenant_id in flagged:
            tenant = self._store.get_tenant(tenant_id)
            if tenant is None:
                continue
            results.append(
                HighVelocityTenant(
                    tenant=to_tenant(tenant, member_count=self._store.count_members(tenant_id)),
                    consumption_24h=totals[tenant_id],
                    transaction_count=counts[tenant_id],
                )
            )
        return results

    def _apply_debit(self, tenant: TenantRecord, *, type: TransactionType, amount: int, **fields: str | None) -> CreditTransactionRecord:
        feature = fields.get("feature")
        if tenant.balance < amount:
            raise InsufficientBalance(balance=tenant.balance, requested=amount, feature=feature)
        try:
            return self._store.apply_credit_mutation(tenant=tenant, type=type, delta=-amount, **fields)
        except NegativeBalanceRejected as exc:
            raise InsufficientBalance(balance=tenant.balance, requested=amount, feature=feature) from exc

    def _require_tenant(self, tenant_id: str) -> TenantRecord:
        tenant = self._store.get_tenant(tenant_id)
        if tenant is None:
            raise TenantNotFound()
        return tenant

    def _result(
        self,
        tenant: TenantRecord,
        transaction: CreditTransactionRecord,
        *,
        replayed: bool = False,
    ) -> LedgerResult:
        return LedgerResult(
            tenant=to_tenant(tenant, member_count=self._store.count_members(tenant.id)),
            transaction=_to_transaction(transaction),
            replayed=replayed,
        )


def _ensure_positive(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmount(amount)


def _to_transaction(record: CreditTransactionRecord) -> CreditTransaction:
    return CreditTransaction(
        id=record.id,
        tenant_id=record.tenant_id,
        type=record.type,
        amount=record.amount,
        balance_before=record.balance_before,
        balance_after=record.balance_after,
        admin_user_id=record.admin_user_id,
        reason=record.reason,
        related_job_id=record.related_job_id,
        feature=record.feature,
        reference=record.reference,
        created_at=record.created_at,
    )
