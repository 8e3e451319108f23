"""Job scheduler: admission, execution outcomes, retries, refunds and cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import unittest

from nebula.adapters.providers import MockGenerationProvider
from nebula.core.config import Settings
from nebula.errors import ApiError
from nebula.repositories.memory import InMemoryStore
from nebula.schemas.credit import TransactionType
from nebula.schemas.feature import FeatureId
from nebula.schemas.job import JobInput, JobModule, JobStatus
from nebula.schemas.tenant import CreateTenantRequest, PlanId
from nebula.services.container import ServiceContainer, build_services

_PROMPT = JobInput(prompt="A neon city skyline at night")


class _ExplodingProvider(MockGenerationProvider):
    async def generate(self, module, job_input):
        self.generate_calls.append(module)
        raise RuntimeError("socket closed")


class _SchedulerCase(unittest.IsolatedAsyncioTestCase):
    provider: MockGenerationProvider
    services: ServiceContainer

    def _settings(self, **overrides) -> Settings:
        values = {
            "auth_provider": "mock",
            "poll_interval_seconds": 0.01,
            "retry_backoff_seconds": 0,
        }
        values.update(overrides)
        return Settings(**values)

    async def _start(
        self,
        *,
        provider: MockGenerationProvider | None = None,
        plan_id: PlanId = PlanId.TEAM,
        credits: int = 100,
        **settings_overrides,
    ) -> str:
        self.store = InMemoryStore()
        self.provider = provider or MockGenerationProvider()
        self.services = build_services(self.store, self._settings(**settings_overrides), provider=self.provider)
        self.scheduler = self.services.scheduler
        self.ledger = self.services.ledger
        tenant = await self.services.tenants.create_tenant(
            CreateTenantRequest(name="Acme", owner_user_id="owner-1", plan_id=plan_id, initial_credits=credits)
        )
        self.tenant_id = tenant.id
        return tenant.id

    async def asyncTearDown(self) -> None:
        services = getattr(self, "services", None)
        if services is not None:
            await services.pool.shutdown()

    async def _wait_for(self, predicate: Callable[[], bool]) -> None:
        for _ in range(500):
            if predicate():
                return
            await asyncio.sleep(0.01)
        self.fail("condition not reached")

    def _balance(self) -> int:
        return self.ledger.get_balance(self.tenant_id).balance

    def _refunds(self) -> list:
        return [r for r in self.store.list_transactions(self.tenant_id) if r.type is TransactionType.REFUND]


class JobAdmissionTests(_SchedulerCase):
    async def test_admission_charges_credits_and_links_the_transaction(self) -> None:
        await self._start()

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)

        self.assertEqual(job.status, JobStatus.QUEUED)
        self.assertEqual(job.credits_used, 5)
        self.assertEqual(job.tenant_id, self.tenant_id)
        self.assertEqual(job.max_retries, 3)
        self.assertEqual(self._balance(), 95)
        consumption = self.store.list_transactions(self.tenant_id)[-1]
        self.assertEqual(consumption.type, TransactionType.CONSUMPTION)
        self.assertEqual(consumption.related_job_id, job.id)
        self.assertEqual(consumption.feature, "TEXT_TO_VIDEO")

    async def test_module_costs(self) -> None:
        await self._start(credits=1000)
        cases = [
            (JobModule.TEXT_TO_IMAGE, _PROMPT, 1),
            (JobModule.TEXT_TO_VIDEO, _PROMPT, 5),
            (JobModule.IMAGE_TO_VIDEO, JobInput(config={"image_url": "https://example.com/a.png"}), 3),
            (JobModule.TEXT_TO_AUDIO, _PROMPT, 2),
            (JobModule.CAMPAIGN_WIZARD, _PROMPT, 10),
            (JobModule.EXPORT, JobInput(asset_ids=["job-a"]), 1),
        ]
        for module, job_input, cost in cases:
            with self.subTest(module=module):
                before = self._balance()
                job = await self.scheduler.create_job(
                    user_id="owner-1",
                    module=module,
                    job_input=job_input,
                    skip_processing=True,
                )
                self.assertEqual(job.credits_used, cost)
                self.assertEqual(before - self._balance(), cost)

    async def test_export_label_is_recorded_for_ungated_module(self) -> None:
        await self._start(plan_id=PlanId.FREE)

        await self.scheduler.create_job(
            user_id="owner-1",
            module=JobModule.EXPORT,
            job_input=JobInput(asset_ids=["job-a"]),
            skip_processing=True,
        )

        self.assertEqual(self.store.list_transactions(self.tenant_id)[-1].feature, "EXPORT")

    async def test_rejections_leave_no_job_and_no_charge(self) -> None:
        await self._start(plan_id=PlanId.FREE, credits=3)
        cases = [
            ("owner-1", JobModule.TEXT_TO_IMAGE, JobInput(prompt="   "), "VALIDATION_ERROR"),
            ("owner-1", JobModule.IMAGE_TO_VIDEO, JobInput(), "VALIDATION_ERROR"),
            ("owner-1", JobModule.TEXT_TO_VIDEO, _PROMPT, "FEATURE_NOT_ENTITLED"),
            ("stranger", JobModule.TEXT_TO_IMAGE, _PROMPT, "RESOURCE_NOT_FOUND"),
        ]
        for user_id, module, job_input, code in cases:
            with self.subTest(module=module, code=code):
                with self.assertRaises(ApiError) as context:
                    await self.scheduler.create_job(user_id=user_id, module=module, job_input=job_input)
                self.assertEqual(context.exception.code, code)

        self.assertEqual(self.store.job_write_count, 0)
        self.assertEqual(self._balance(), 3)

    async def test_insufficient_credits_reports_requirement(self) -> None:
        await self._start(credits=4)

        with self.assertRaises(ApiError) as context:
            await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)

        self.assertEqual(context.exception.status_code, 402)
        self.assertEqual(context.exception.code, "INSUFFICIENT_CREDITS")
        self.assertEqual(context.exception.details["required"], 5)
        self.assertEqual(context.exception.details["balance"], 4)
        self.assertEqual(context.exception.payload.message, "Insufficient credits. Required: 5, Available: 4")
        self.assertEqual(self.store.job_write_count, 0)

    async def test_globally_disabled_feature_blocks_admission(self) -> None:
        await self._start()
        self.services.gate.toggle_global(FeatureId.TEXT_TO_AUDIO, enabled=False, admin_id="admin-1", reason="Outage")

        with self.assertRaises(ApiError) as context:
            await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_AUDIO, job_input=_PROMPT)

        self.assertEqual(context.exception.code, "FEATURE_DISABLED_GLOBALLY")
        self.assertEqual(self._balance(), 100)

    async def test_inactive_tenant_gets_tenant_state_error_for_gated_module(self) -> None:
        await self._start()
        await self.services.tenants.suspend(self.tenant_id, reason="Chargeback")

        with self.assertRaises(ApiError) as suspended:
            await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        self.assertEqual(suspended.exception.status_code, 403)
        self.assertEqual(suspended.exception.code, "TENANT_SUSPENDED")

        await self.services.tenants.lock_for_payment_failure(self.tenant_id)
        with self.assertRaises(ApiError) as locked:
            await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        self.assertEqual(locked.exception.code, "TENANT_LOCKED")

        self.assertEqual(self.store.job_write_count, 0)
        self.assertEqual(self._balance(), 100)

    async def test_concurrent_admissions_never_overdraw(self) -> None:
        await self._start(credits=100)

        results = await asyncio.gather(
            *(
                self.scheduler.create_job(
                    user_id="owner-1",
                    module=JobModule.CAMPAIGN_WIZARD,
                    job_input=_PROMPT,
                    skip_processing=True,
                )
                for _ in range(20)
            ),
            return_exceptions=True,
        )

        admitted = [result for result in results if not isinstance(result, BaseException)]
        rejected = [result for result in results if isinstance(result, ApiError)]
        self.assertEqual(len(admitted), 10)
        self.assertEqual(len(rejected), 10)
        self.assertTrue(all(error.code == "INSUFFICIENT_CREDITS" for error in rejected))
        self.assertEqual(self._balance(), 0)
        self.assertEqual(len(self.store.jobs), 10)


class JobExecutionTests(_SchedulerCase):
    async def test_successful_job_completes_with_outputs(self) -> None:
        await self._start()

        job = await self.scheduler.create_job(
            user_id="owner-1",
            module=JobModule.TEXT_TO_IMAGE,
            job_input=JobInput(prompt="A red fox", config={"aspect_ratio": "9:16"}),
            metadata={"source": "studio"},
        )
        await self.services.pool.drain()

        stored = self.scheduler.get_job(job_id=job.id, user_id="owner-1")
        self.assertEqual(stored.status, JobStatus.COMPLETED)
        self.assertEqual(len(stored.output), 1)
        self.assertEqual(stored.output[0].type, "image")
        self.assertTrue(stored.output[0].url.startswith("https://picsum.photos/"))
        self.assertEqual(stored.output[0].metadata["aspect_ratio"], "9:16")
        self.assertEqual(stored.metadata, {"source": "studio"})
        self.assertIsNotNone(stored.started_at)
        self.assertIsNotNone(stored.completed_at)
        self.assertFalse(stored.refunded)
        self.assertEqual(self.store.jobs[job.id].provider_job_id, "mock-1")
        self.assertEqual(self._balance(), 99)

    async def test_provider_failure_fails_job_and_refunds(self) -> None:
        await self._start(provider=MockGenerationProvider(fail_next=1))

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        await self.services.pool.drain()

        stored = self.scheduler.get_job(job_id=job.id, user_id="owner-1")
        self.assertEqual(stored.status, JobStatus.FAILED)
        self.assertEqual(stored.error.code, "PROVIDER_ERROR")
        self.assertEqual(stored.error.message, "Generation failed. Your credits have been refunded.")
        self.assertTrue(stored.refunded)
        self.assertEqual(self._balance(), 100)
        self.assertEqual(self.store.jobs[job.id].error.detail, "[MOCK_FAILURE] Mock generation failed")
        self.assertEqual(len(self._refunds()), 1)
        self.assertEqual(self._refunds()[0].related_job_id, job.id)

    async def test_raised_provider_error_is_recorded_with_vendor_code(self) -> None:
        await self._start(provider=MockGenerationProvider(raise_next=1))

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_AUDIO, job_input=_PROMPT)
        await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.FAILED)
        self.assertEqual(record.error.code, "PROVIDER_ERROR")
        self.assertIn("MOCK_REJECTED", record.error.detail)
        self.assertEqual(self._balance(), 100)

    async def test_unexpected_exception_is_logged_and_refunded(self) -> None:
        await self._start(provider=_ExplodingProvider())

        with self.assertLogs("nebula.services.scheduler", level="ERROR") as logs:
            job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
            await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.FAILED)
        self.assertEqual(record.error.code, "INTERNAL_ERROR")
        self.assertEqual(record.error.detail, "RuntimeError: socket closed")
        self.assertIn("job.execution_error", "\n".join(logs.output))
        self.assertEqual(self._balance(), 100)
        self.assertEqual(self.services.pool.failures, [])

    async def test_timeout_fails_job_with_timeout_code(self) -> None:
        hold = asyncio.Event()
        await self._start(provider=MockGenerationProvider(hold=hold), image_timeout_seconds=0.05)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.FAILED)
        self.assertEqual(record.error.code, "PROVIDER_TIMEOUT")
        self.assertEqual(record.error.detail, "Generation for text_to_image did not finish within 0.05 seconds")
        self.assertIsNotNone(record.refunded_at)
        self.assertEqual(self._balance(), 100)

    async def test_pending_result_is_polled_until_it_settles(self) -> None:
        provider = MockGenerationProvider(pending_rounds=3)
        await self._start(provider=provider)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.COMPLETED)
        self.assertEqual(record.provider_job_id, "mock-1")
        self.assertEqual(provider.status_calls, ["mock-1", "mock-1", "mock-1"])
        self.assertEqual(record.output[0].type, "video")

    async def test_polling_times_out_when_provider_never_settles(self) -> None:
        provider = MockGenerationProvider(pending_rounds=10_000)
        await self._start(provider=provider, video_timeout_seconds=0.1)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        await self.services.pool.drain()

        self.assertEqual(self.store.jobs[job.id].error.code, "PROVIDER_TIMEOUT")
        self.assertEqual(self._balance(), 100)


class JobRetryTests(_SchedulerCase):
    async def test_auto_retry_recovers_without_refund(self) -> None:
        provider = MockGenerationProvider(fail_next=1)
        await self._start(provider=provider, auto_retry=True, max_retries=2)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.COMPLETED)
        self.assertEqual(record.retry_count, 1)
        self.assertIsNone(record.error)
        self.assertEqual(len(provider.generate_calls), 2)
        self.assertEqual(self._refunds(), [])
        self.assertEqual(self._balance(), 99)

    async def test_auto_retry_exhaustion_refunds_once(self) -> None:
        provider = MockGenerationProvider(fail_next=10)
        await self._start(provider=provider, auto_retry=True, max_retries=2)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.FAILED)
        self.assertEqual(record.retry_count, 2)
        self.assertEqual(len(provider.generate_calls), 3)
        self.assertEqual(len(self._refunds()), 1)
        self.assertEqual(self._balance(), 100)

    async def test_manual_retry_never_charges_or_refunds_twice(self) -> None:
        provider = MockGenerationProvider(fail_next=1)
        await self._start(provider=provider)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        await self.services.pool.drain()
        self.assertEqual(self._balance(), 100)

        retried = await self.scheduler.retry_job(job_id=job.id, user_id="owner-1")
        self.assertEqual(retried.status, JobStatus.RETRYING)
        self.assertEqual(retried.retry_count, 1)
        self.assertIsNone(retried.error)
        await self.services.pool.drain()
        self.assertEqual(self.store.jobs[job.id].status, JobStatus.COMPLETED)

        provider.fail_next = 1
        await self.scheduler.retry_job(job_id=job.id, user_id="owner-1")
        await self.services.pool.drain()

        self.assertEqual(self.store.jobs[job.id].status, JobStatus.FAILED)
        self.assertEqual(self.store.jobs[job.id].retry_count, 2)
        self.assertEqual(len(self._refunds()), 1)
        consumptions = [r for r in self.store.list_transactions(self.tenant_id) if r.type is TransactionType.CONSUMPTION]
        self.assertEqual(len(consumptions), 1)
        self.assertEqual(self._balance(), 100)

    async def test_failed_regeneration_of_delivered_job_keeps_the_charge(self) -> None:
        provider = MockGenerationProvider()
        await self._start(provider=provider)
        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        await self.services.pool.drain()
        self.assertEqual(len(self.store.jobs[job.id].output), 1)
        self.assertEqual(self._balance(), 95)

        provider.fail_next = 1
        retried = await self.scheduler.retry_job(job_id=job.id, user_id="owner-1")
        self.assertEqual(retried.output, [])
        await self.services.pool.drain()

        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.FAILED)
        self.assertEqual(record.output, [])
        self.assertIsNone(record.refunded_at)
        self.assertTrue(record.error.message.startswith("Regeneration failed"))
        self.assertEqual(self._refunds(), [])
        self.assertEqual(self._balance(), 95)

    async def test_backoff_does_not_hold_a_worker_slot(self) -> None:
        provider = MockGenerationProvider(fail_next=1)
        await self._start(
            provider=provider,
            auto_retry=True,
            max_retries=1,
            retry_backoff_seconds=30,
            worker_concurrency=1,
        )
        backing_off = await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT
        )
        await self._wait_for(lambda: self.store.jobs[backing_off.id].status is JobStatus.RETRYING)

        fresh = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self._wait_for(lambda: self.store.jobs[fresh.id].status is JobStatus.COMPLETED)

        self.assertEqual(self.store.jobs[backing_off.id].status, JobStatus.RETRYING)
        self.assertEqual(len(provider.generate_calls), 2)

    async def test_retry_limit_is_enforced_only_when_configured(self) -> None:
        await self._start(provider=MockGenerationProvider(fail_next=5), max_retries=0, enforce_retry_limit=True)
        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        with self.assertRaises(ApiError) as context:
            await self.scheduler.retry_job(job_id=job.id, user_id="owner-1")
        self.assertEqual(context.exception.code, "RETRY_LIMIT_REACHED")
        self.assertEqual(self.store.jobs[job.id].status, JobStatus.FAILED)

        forced = await self.scheduler.force_retry(job_id=job.id, admin_id="admin-1")
        self.assertEqual(forced.retry_count, 1)
        await self.services.pool.drain()
        self.assertIn("job.force_retried", [a.action for a in self.store.activities])

    async def test_manual_retry_past_limit_is_allowed_by_default(self) -> None:
        await self._start(provider=MockGenerationProvider(fail_next=1), max_retries=0)
        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        await self.scheduler.retry_job(job_id=job.id, user_id="owner-1")
        await self.services.pool.drain()

        self.assertEqual(self.store.jobs[job.id].status, JobStatus.COMPLETED)

    async def test_retry_requires_failed_or_completed_job_owned_by_caller(self) -> None:
        await self._start()
        job = await self.scheduler.create_job(
            user_id="owner-1",
            module=JobModule.TEXT_TO_IMAGE,
            job_input=_PROMPT,
            skip_processing=True,
        )

        with self.assertRaises(ApiError) as state_context:
            await self.scheduler.retry_job(job_id=job.id, user_id="owner-1")
        self.assertEqual(state_context.exception.code, "FSM_TRANSITION_INVALID")

        with self.assertRaises(ApiError) as owner_context:
            await self.scheduler.retry_job(job_id=job.id, user_id="someone-else")
        self.assertEqual(owner_context.exception.status_code, 404)


class JobCancellationTests(_SchedulerCase):
    async def test_cancel_during_generation_discards_late_result(self) -> None:
        hold = asyncio.Event()
        provider = MockGenerationProvider(hold=hold)
        await self._start(provider=provider)

        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self._wait_for(lambda: bool(provider.generate_calls))
        self.assertEqual(self.store.jobs[job.id].status, JobStatus.PROCESSING)

        cancelled = await self.scheduler.cancel_job(job_id=job.id, user_id="owner-1")
        hold.set()
        await self.services.pool.drain()

        self.assertEqual(cancelled.status, JobStatus.CANCELLED)
        record = self.store.jobs[job.id]
        self.assertEqual(record.status, JobStatus.CANCELLED)
        self.assertEqual(record.output, [])
        self.assertIsNone(record.refunded_at)
        self.assertEqual(self._balance(), 99)

    async def test_cancelled_queued_job_is_never_executed(self) -> None:
        provider = MockGenerationProvider()
        await self._start(provider=provider)
        job = await self.scheduler.create_job(
            user_id="owner-1",
            module=JobModule.TEXT_TO_IMAGE,
            job_input=_PROMPT,
            skip_processing=True,
        )

        await self.scheduler.cancel_job(job_id=job.id, user_id="owner-1")
        self.scheduler.dispatch(job.id)
        await self.services.pool.drain()

        self.assertEqual(self.store.jobs[job.id].status, JobStatus.CANCELLED)
        self.assertEqual(provider.generate_calls, [])

    async def test_finished_jobs_cannot_be_cancelled(self) -> None:
        await self._start()
        job = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        with self.assertRaises(ApiError) as context:
            await self.scheduler.cancel_job(job_id=job.id, user_id="owner-1")

        self.assertEqual(context.exception.status_code, 409)
        self.assertEqual(self.store.jobs[job.id].status, JobStatus.COMPLETED)

    async def test_cancel_all_targets_queued_and_processing_jobs(self) -> None:
        hold = asyncio.Event()
        provider = MockGenerationProvider(hold=hold)
        await self._start(provider=provider)
        running = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        queued = await self.scheduler.create_job(
            user_id="owner-1",
            module=JobModule.TEXT_TO_AUDIO,
            job_input=_PROMPT,
            skip_processing=True,
        )
        await self._wait_for(lambda: self.store.jobs[running.id].status is JobStatus.PROCESSING)

        response = await self.scheduler.cancel_all_processing(reason="Provider migration", admin_id="admin-1")
        hold.set()
        await self.services.pool.drain()

        self.assertEqual(response.count, 2)
        self.assertEqual(set(response.job_ids), {running.id, queued.id})
        self.assertEqual(response.refunded_job_ids, [])
        for job_id in (running.id, queued.id):
            record = self.store.jobs[job_id]
            self.assertEqual(record.status, JobStatus.CANCELLED)
            self.assertEqual(record.error.code, "MAINTENANCE_MODE")
            self.assertEqual(record.error.message, "Provider migration")
        self.assertEqual(self._balance(), 97)

    async def test_cancel_all_refunds_when_configured(self) -> None:
        await self._start(refund_on_maintenance_cancel=True)
        first = await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT, skip_processing=True
        )
        second = await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT, skip_processing=True
        )
        done = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        response = await self.scheduler.cancel_all_processing(reason="Maintenance")

        self.assertEqual(set(response.refunded_job_ids), {first.id, second.id})
        self.assertEqual(self.store.jobs[done.id].status, JobStatus.COMPLETED)
        self.assertEqual(self._balance(), 99)
        self.assertTrue(self.scheduler.get_job(job_id=first.id, user_id="owner-1").refunded)


class JobShutdownTests(_SchedulerCase):
    async def test_shutdown_fails_and_refunds_interrupted_jobs(self) -> None:
        hold = asyncio.Event()
        await self._start(provider=MockGenerationProvider(hold=hold))
        running = await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        queued = await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT, skip_processing=True
        )
        await self._wait_for(lambda: self.store.jobs[running.id].status is JobStatus.PROCESSING)

        interrupted = await self.scheduler.shutdown()

        self.assertEqual(interrupted, [running.id])
        record = self.store.jobs[running.id]
        self.assertEqual(record.status, JobStatus.FAILED)
        self.assertEqual(record.error.code, "WORKER_SHUTDOWN")
        self.assertIsNotNone(record.refunded_at)
        self.assertEqual(self.store.jobs[queued.id].status, JobStatus.QUEUED)
        self.assertEqual(self._balance(), 99)
        with self.assertRaises(RuntimeError):
            self.scheduler.dispatch(queued.id)

    async def test_job_locks_are_released_after_jobs_finish(self) -> None:
        await self._start()

        for _ in range(20):
            await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()

        self.assertEqual(len(self.scheduler._job_locks), 0)
        self.assertEqual(len(self.store.jobs), 20)


class JobQueryTests(_SchedulerCase):
    async def test_listing_is_newest_first_and_filterable(self) -> None:
        await self._start()
        first = await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT, skip_processing=True
        )
        second = await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_AUDIO, job_input=_PROMPT, skip_processing=True
        )

        page = self.scheduler.list_user_jobs(user_id="owner-1")
        self.assertEqual(page.total, 2)
        self.assertEqual({item.id for item in page.items}, {first.id, second.id})

        filtered = self.scheduler.list_user_jobs(user_id="owner-1", module=JobModule.TEXT_TO_AUDIO)
        self.assertEqual([item.id for item in filtered.items], [second.id])
        self.assertEqual(self.scheduler.list_user_jobs(user_id="someone-else").total, 0)

        with self.assertRaises(ApiError) as context:
            self.scheduler.list_user_jobs(user_id="owner-1", limit=101)
        self.assertEqual(context.exception.code, "VALIDATION_ERROR")

    async def test_stats_aggregate_by_status_and_module(self) -> None:
        await self._start(provider=MockGenerationProvider(fail_next=1))
        await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_VIDEO, job_input=_PROMPT)
        await self.services.pool.drain()
        await self.scheduler.create_job(user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT)
        await self.services.pool.drain()
        await self.scheduler.create_job(
            user_id="owner-1", module=JobModule.TEXT_TO_IMAGE, job_input=_PROMPT, skip_processing=True
        )

        stats = self.scheduler.get_user_job_stats("owner-1")

        self.assertEqual(stats.total, 3)
        self.assertEqual(stats.by_status[JobStatus.FAILED], 1)
        self.assertEqual(stats.by_status[JobStatus.COMPLETED], 1)
        self.assertEqual(stats.by_status[JobStatus.QUEUED], 1)
        self.assertEqual(stats.by_module[JobModule.TEXT_TO_IMAGE], 2)
        self.assertEqual(stats.by_module[JobModule.EXPORT], 0)
        self.assertEqual(stats.total_credits_used, 7)


if __name__ == "__main__":
    unittest.main()
