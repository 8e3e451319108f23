"""Application service graph."""

from __future__ import annotations

from dataclasses import dataclass

from nebula.adapters.providers import MockGenerationProvider
from nebula.adapters.providers.base import GenerationProvider, TextGenerator
from nebula.core.config import Settings
from nebula.core.locks import KeyedLocks
from nebula.core.workers import WorkerPool
from nebula.repositories.memory import InMemoryStore
from nebula.services.activity import ActivityRecorder
from nebula.services.campaigns import CampaignService
from nebula.services.feature_gate import FeatureGateService
from nebula.services.ledger import LedgerService
from nebula.services.scheduler import JobScheduler
from nebula.services.tenants import TenantService


@dataclass(slots=True)
class ServiceContainer:
    store: InMemoryStore
    pool: WorkerPool
    ledger: LedgerService
    tenants: TenantService
    gate: FeatureGateService
    scheduler: JobScheduler
    campaigns: CampaignService


def build_services(
    store: InMemoryStore,
    settings: Settings,
    *,
    provider: GenerationProvider | None = None,
    text_generator: TextGenerator | None = None,
) -> ServiceContainer:
    """Wire one shared instance of every service around ``store``.

    Ledger and tenant administration share the tenant lock registry.
    """
    mock = MockGenerationProvider()
    provider = provider or mock
    text_generator = text_generator or (provider if isinstance(provider, TextGenerator) else mock)

    activity = ActivityRecorder(store)
    tenant_locks = KeyedLocks()
    pool = WorkerPool(concurrency=settings.worker_concurrency)
    ledger = LedgerService(
        store,
        tenant_locks,
        activity=activity,
        high_velocity_baseline=settings.high_velocity_baseline,
    )
    gate = FeatureGateService(store, activity=activity)
    scheduler = JobScheduler(
        store,
        ledger=ledger,
        gate=gate,
        provider=provider,
        pool=pool,
        settings=settings,
        activity=activity,
    )
    return ServiceContainer(
        store=store,
        pool=pool,
        ledger=ledger,
        tenants=TenantService(store, tenant_locks, activity=activity),
        gate=gate,
        scheduler=scheduler,
        campaigns=CampaignService(store, scheduler=scheduler, gate=gate, text_generator=text_generator),
    )
