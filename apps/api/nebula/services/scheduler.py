"""Job scheduler: admission, execution, retries, cancellation."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import logging
from typing import Any
from uuid import uuid4

from nebula.adapters.providers.base import GenerationProvider
from nebula.core.config import Settings
from nebula.core.locks import KeyedLocks
from nebula.core.logging_safety import safe_log_identifier
from nebula.core.workers import WorkerPool
from nebula.domain.job_fsm import CANCELLABLE_STATES
from nebula.domain.modules import (
    credit_cost,
    execution_timeout,
    gated_feature,
    ledger_feature_label,
    normalize_job_input,
)
from nebula.errors import (
    InsufficientBalance,
    InsufficientCredits,
    JobNotFound,
    ProviderError,
    ProviderTimeout,
    RetryLimitReached,
    UserNotFound,
    ValidationError,
)
from nebula.repositories.memory import InMemoryStore, JobFailureRecord, JobRecord
from nebula.schemas.job import (
    CancelAllResponse,
    Job,
    JobError,
    JobInput,
    JobModule,
    JobPage,
    JobStats,
    JobStatus,
)
from nebula.schemas.provider import ProviderResult
from nebula.services.activity import ActivityRecorder
from nebula.services.feature_gate import FeatureGateService
from nebula.services.ledger import LedgerService

logger = logging.getLogger(__name__)

MAINTENANCE_ERROR_CODE = "MAINTENANCE_MODE"
_FAILURE_MESSAGE = "Generation failed. Your credits have been refunded."
_RETRY_PENDING_MESSAGE = "Generation failed. Retrying automatically."
_REGENERATION_FAILED_MESSAGE = "Regeneration failed. The previous result was already delivered, so no credits were refunded."
_SHUTDOWN_MESSAGE = "Generation was interrupted by a server shutdown."
SHUTDOWN_ERROR_CODE = "WORKER_SHUTDOWN"
_PAGE_LIMIT_MAX = 100


class JobScheduler:
    """Owns every job status transition.

    Admission charges credits and persists a queued job; execution runs in
    the worker pool. A per-job lock is held around each transition but never
    across the provider call, so a cancellation can land while generation is
    in flight; the worker re-checks status afterwards and drops late results.
    """

    def __init__(
        self,
        store: InMemoryStore,
        *,
        ledger: LedgerService,
        gate: FeatureGateService,
        provider: GenerationProvider,
        pool: WorkerPool,
        settings: Settings,
        activity: ActivityRecorder | None = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._gate = gate
        self._provider = provider
        self._pool = pool
        self._settings = settings
        self._activity = activity or ActivityRecorder(store)
        self._job_locks = KeyedLocks()

    # Admission

    async def create_job(
        self,
        *,
        user_id: str,
        module: JobModule,
        job_input: JobInput,
        metadata: dict[str, Any] | None = None,
        skip_processing: bool = False,
    ) -> Job:
        user = self._store.get_user(user_id)
        if user is None:
            raise UserNotFound()
        tenant_id = user.tenant_id
        normalized_input = normalize_job_input(module, job_input)

        feature = gated_feature(module)
        if feature is not None:
            self._gate.require_access(tenant_id, feature)

        cost = credit_cost(module)
        job_id = str(uuid4())
        try:
            await self._ledger.consume(
                tenant_id=tenant_id,
                amount=cost,
                feature=ledger_feature_label(module),
                job_id=job_id,
            )
        except InsufficientBalance as exc:
            logger.info(
                "job.rejected tenant_id=%s module=%s code=INSUFFICIENT_CREDITS",
                safe_log_identifier(tenant_id, prefix="tid"),
                module.value,
            )
            raise InsufficientCredits(balance=exc.details["balance"], required=cost, module=module.value) from exc

        record = self._store.create_job(
            job_id=job_id,
            user_id=user_id,
            tenant_id=tenant_id,
            module=module,
            input=normalized_input,
            credits_used=cost,
            max_retries=self._settings.max_retries,
            metadata=metadata,
        )
        logger.info(
            "job.admitted job_id=%s tenant_id=%s module=%s credits=%s",
            safe_log_identifier(job_id, prefix="jid"),
            safe_log_identifier(tenant_id, prefix="tid"),
            module.value,
            cost,
        )

        if not skip_processing:
            self._submit(job_id)
        return self._to_job(record)

    def dispatch(self, job_id: str) -> None:
        """Start execution of a job admitted with ``skip_processing``."""
        self._submit(job_id)

    async def abort_admitted(self, *, job_id: str, reason: str) -> None:
        """Cancel a queued job that was never dispatched and return its credits."""
        async with self._job_locks.hold(job_id):
            record = self._store.get_job(job_id)
            if record is None:
                raise JobNotFound()
            self._store.update_job_status(
                job_id,
                JobStatus.CANCELLED,
                error=JobFailureRecord(message=reason, code="ADMISSION_ROLLBACK", timestamp=datetime.now(UTC)),
                completed_at=datetime.now(UTC),
            )
        await self._refund(record, reason=reason)

    # Execution

    def _submit(self, job_id: str, *, delay: float = 0.0) -> None:
        self._pool.submit(job_id, self._execute(job_id), delay=delay)

    async def _execute(self, job_id: str) -> None:
        async with self._job_locks.hold(job_id):
            record = self._store.get_job(job_id)
            if record is None or record.status not in (JobStatus.QUEUED, JobStatus.RETRYING):
                logger.info(
                    "job.execution_skipped job_id=%s status=%s",
                    safe_log_identifier(job_id, prefix="jid"),
                    record.status.value if record is not None else "missing",
                )
                return
            self._store.update_job_status(job_id, JobStatus.PROCESSING, started_at=datetime.now(UTC))
            module = record.module
            job_input = record.input.model_copy(deep=True)

        timeout_seconds = execution_timeout(module, self._settings)
        try:
            async with asyncio.timeout(timeout_seconds):
                result = await self._run_provider(job_id, module, job_input)
        except TimeoutError:
            timeout = ProviderTimeout(module=module.value, timeout_seconds=timeout_seconds)
            await self._fail(job_id, code=timeout.code, detail=str(timeout))
            return
        except ProviderError as exc:
            await self._fail(job_id, code=exc.code, detail=_provider_detail(exc.provider_code, str(exc)))
            return
        except Exception as exc:
            logger.exception(
                "job.execution_error job_id=%s module=%s reason=%s",
                safe_log_identifier(job_id, prefix="jid"),
                module.value,
                type(exc).__name__,
            )
            await self._fail(job_id, code="INTERNAL_ERROR", detail=f"{type(exc).__name__}: {exc}")
            return

        if result is None:
            return
        if result.status == "failed":
            error = result.error
            await self._fail(
                job_id,
                code="PROVIDER_ERROR",
                detail=_provider_detail(error.code if error else None, error.message if error else "Provider reported failure"),
            )
            return
        await self._complete(job_id, result)

    async def _run_provider(self, job_id: str, module: JobModule, job_input: JobInput) -> ProviderResult | None:
        """Generate and poll until the provider settles; ``None`` when the job was cancelled meanwhile."""
        result = await self._provider.generate(module, job_input)
        if result.provider_job_id is not None and self._is_processing(job_id):
            self._store.update_job(job_id, provider_job_id=result.provider_job_id)

        while result.status == "pending":
            if result.provider_job_id is None:
                raise ProviderError("Pending result without a provider job id")
            if not self._is_processing(job_id):
                return None
            await asyncio.sleep(self._settings.poll_interval_seconds)
            if not self._is_processing(job_id):
                return None
            result = await self._provider.check_status(result.provider_job_id)
        return result

    def _is_processing(self, job_id: str) -> bool:
        record = self._store.get_job(job_id)
        return record is not None and record.status is JobStatus.PROCESSING

    async def _complete(self, job_id: str, result: ProviderResult) -> None:
        async with self._job_locks.hold(job_id):
            record = self._store.get_job(job_id)
            if record is None or record.status is not JobStatus.PROCESSING:
                self._log_dropped(job_id, record)
                return
            now = datetime.now(UTC)
            self._store.update_job_status(
                job_id,
                JobStatus.COMPLETED,
                output=list(result.output or []),
                error=None,
                completed_at=now,
                delivered_at=record.delivered_at or now,
            )

        logger.info(
            "job.completed job_id=%s module=%s outputs=%s",
            safe_log_identifier(job_id, prefix="jid"),
            record.module.value,
            len(record.output),
        )

    async def _fail(self, job_id: str, *, code: str, detail: str) -> None:
        """Record a failed attempt, then either schedule an automatic retry or refund."""
        retry_delay: float | None = None
        async with self._job_locks.hold(job_id):
            record = self._store.get_job(job_id)
            if record is None or record.status is not JobStatus.PROCESSING:
                self._log_dropped(job_id, record)
                return

            now = datetime.now(UTC)
            auto_retry = self._settings.auto_retry and record.retry_count < record.max_retries
            if auto_retry:
                message = _RETRY_PENDING_MESSAGE
            elif record.delivered_at is not None:
                message = _REGENERATION_FAILED_MESSAGE
            else:
                message = _FAILURE_MESSAGE
            failure = JobFailureRecord(
                message=message,
                code=code,
                timestamp=now,
                detail=detail,
            )
            self._store.update_job_status(job_id, JobStatus.FAILED, error=failure, completed_at=now)
            if auto_retry:
                retry_delay = self._settings.retry_backoff_seconds * (2**record.retry_count)
                self._store.update_job_status(
                    job_id,
                    JobStatus.RETRYING,
                    retry_count=record.retry_count + 1,
                    completed_at=None,
                )

        logger.warning(
            "job.failed job_id=%s module=%s code=%s retry_count=%s auto_retry=%s",
            safe_log_identifier(job_id, prefix="jid"),
            record.module.value,
            code,
            record.retry_count,
            retry_delay is not None,
        )
        if retry_delay is not None:
            self._submit(job_id, delay=retry_delay)
            return
        if record.delivered_at is not None:
            # The charge already paid for an output the user received.
            logger.info("job.refund_skipped job_id=%s reason=delivered", safe_log_identifier(job_id, prefix="jid"))
            return
        await self._refund(record, reason=f"Refund for failed {record.module.value} job")

    async def _refund(self, record: JobRecord, *, reason: str) -> bool:
        result = await self._ledger.refund_job(
            tenant_id=record.tenant_id,
            job_id=record.id,
            amount=record.credits_used,
            reason=reason,
        )
        if record.refunded_at is None:
            self._store.update_job(record.id, refunded_at=result.transaction.created_at)
        return not result.replayed

    def _log_dropped(self, job_id: str, record: JobRecord | None) -> None:
        logger.info(
            "job.result_dropped job_id=%s status=%s",
            safe_log_identifier(job_id, prefix="jid"),
            record.status.value if record is not None else "missing",
        )

    # User operations

    def get_job(self, *, job_id: str, user_id: str) -> Job:
        return self._to_job(self._require_owned(job_id, user_id))

    def list_user_jobs(
        self,
        *,
        user_id: str,
        module: JobModule | None = None,
        status: JobStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> JobPage:
        if limit < 1 or limit > _PAGE_LIMIT_MAX or offset < 0:
            raise ValidationError(
                "Invalid pagination parameters",
                {"limit": limit, "offset": offset, "max_limit": _PAGE_LIMIT_MAX},
            )
        records, total = self._store.list_jobs(user_id=user_id, module=module, status=status, limit=limit, offset=offset)
        return JobPage(items=[self._to_job(record) for record in records], total=total, limit=limit, offset=offset)

    def get_user_job_stats(self, user_id: str) -> JobStats:
        records, total = self._store.list_jobs(user_id=user_id, limit=None)
        by_status = {status: 0 for status in JobStatus}
        by_module = {module: 0 for module in JobModule}
        for record in records:
            by_status[record.status] += 1
            by_module[record.module] += 1
        return JobStats(
            total=total,
            by_status=by_status,
            by_module=by_module,
            total_credits_used=sum(record.credits_used for record in records),
        )

    async def retry_job(self, *, job_id: str, user_id: str) -> Job:
        """Manual regeneration. Never charges again."""
        async with self._job_locks.hold(job_id):
            record = self._require_owned(job_id, user_id)
            if self._settings.enforce_retry_limit and record.retry_count >= record.max_retries:
                raise RetryLimitReached(retry_count=record.retry_count, max_retries=record.max_retries)
            self._begin_retry(record)

        self._submit(job_id)
        return self._to_job(record)

    async def force_retry(self, *, job_id: str, admin_id: str) -> Job:
        async with self._job_locks.hold(job_id):
            record = self._store.get_job(job_id)
            if record is None:
                raise JobNotFound()
            self._begin_retry(record)

        self._activity.record("job.force_retried", tenant_id=record.tenant_id, user_id=admin_id, job_id=job_id)
        self._submit(job_id)
        return self._to_job(record)

    def _begin_retry(self, record: JobRecord) -> None:
        previous_status = record.status
        self._store.update_job_status(
            record.id,
            JobStatus.RETRYING,
            retry_count=record.retry_count + 1,
            output=[],
            error=None,
            completed_at=None,
        )
        logger.info(
            "job.retry_requested job_id=%s from_status=%s retry_count=%s",
            safe_log_identifier(record.id, prefix="jid"),
            previous_status.value,
            record.retry_count,
        )

    async def cancel_job(self, *, job_id: str, user_id: str) -> Job:
        """Cancel a queued or processing job. Consumed credits are kept."""
        async with self._job_locks.hold(job_id):
            record = self._require_owned(job_id, user_id)
            self._store.update_job_status(job_id, JobStatus.CANCELLED, completed_at=datetime.now(UTC))

        logger.info("job.cancelled job_id=%s", safe_log_identifier(job_id, prefix="jid"))
        return self._to_job(record)

    async def cancel_all_processing(self, *, reason: str, admin_id: str | None = None) -> CancelAllResponse:
        cancelled: list[JobRecord] = []
        for candidate in self._store.list_jobs_in_statuses(CANCELLABLE_STATES):
            async with self._job_locks.hold(candidate.id):
                if candidate.status not in CANCELLABLE_STATES:
                    continue
                now = datetime.now(UTC)
                self._store.update_job_status(
                    candidate.id,
                    JobStatus.CANCELLED,
                    error=JobFailureRecord(message=reason, code=MAINTENANCE_ERROR_CODE, timestamp=now),
                    completed_at=now,
                )
                cancelled.append(candidate)

        refunded: list[str] = []
        if self._settings.refund_on_maintenance_cancel:
            for record in cancelled:
                if record.delivered_at is not None:
                    continue
                await self._refund(record, reason=f"Refund for maintenance cancellation: {reason}")
                refunded.append(record.id)

        logger.warning(
            "job.cancel_all count=%s refunded=%s admin_id=%s",
            len(cancelled),
            len(refunded),
            safe_log_identifier(admin_id, prefix="uid"),
        )
        self._activity.record("jobs.cancelled_all", user_id=admin_id, count=len(cancelled), reason=reason)
        return CancelAllResponse(
            count=len(cancelled),
            job_ids=[record.id for record in cancelled],
            refunded_job_ids=refunded,
        )

    async def shutdown(self) -> list[str]:
        """Stop the worker pool and settle the jobs its cancelled tasks left behind.

        Processing and retrying jobs become failed and are refunded unless an
        earlier output was delivered. Queued jobs never started and stay queued.
        Returns the ids of the failed jobs.
        """
        await self._pool.shutdown()

        interrupted: list[JobRecord] = []
        for candidate in self._store.list_jobs_in_statuses({JobStatus.PROCESSING, JobStatus.RETRYING}):
            async with self._job_locks.hold(candidate.id):
                if candidate.status not in (JobStatus.PROCESSING, JobStatus.RETRYING):
                    continue
                now = datetime.now(UTC)
                self._store.update_job_status(
                    candidate.id,
                    JobStatus.FAILED,
                    error=JobFailureRecord(message=_SHUTDOWN_MESSAGE, code=SHUTDOWN_ERROR_CODE, timestamp=now),
                    completed_at=now,
                )
                interrupted.append(candidate)

        for record in interrupted:
            if record.delivered_at is None:
                await self._refund(record, reason="Refund for job interrupted by shutdown")

        logger.warning("job.shutdown_interrupted count=%s", len(interrupted))
        return [record.id for record in interrupted]

    def _require_owned(self, job_id: str, user_id: str) -> JobRecord:
        record = self._store.get_job(job_id)
        if record is None or record.user_id != user_id:
            raise JobNotFound()
        return record

    @staticmethod
    def _to_job(record: JobRecord) -> Job:
        error = None
        if record.error is not None:
            error = JobError(message=record.error.message, code=record.error.code, timestamp=record.error.timestamp)
        return Job(
            id=record.id,
            user_id=record.user_id,
            tenant_id=record.tenant_id,
            module=record.module,
            status=record.status,
            input=record.input.model_copy(deep=True),
            output=[item.model_copy(deep=True) for item in record.output],
            credits_used=record.credits_used,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            error=error,
            metadata=dict(record.metadata) if record.metadata is not None else None,
            queued_at=record.queued_at,
            started_at=record.started_at,
            completed_at=record.completed_at,
            refunded=record.refunded_at is not None,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


def _provider_detail(provider_code: str | None, message: str) -> str:
    return f"[{provider_code}] {message}" if provider_code else message
