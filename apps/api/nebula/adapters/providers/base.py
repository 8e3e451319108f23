"""Generation provider interfaces."""

from abc import ABC, abstractmethod

from nebula.schemas.campaign import Campaign, CampaignScript
from nebula.schemas.job import JobInput, JobModule
from nebula.schemas.provider import ProviderResult


class GenerationProvider(ABC):
    """Vendor-neutral media generation capability.

    ``generate`` may finish synchronously (``succeeded``/``failed``) or hand
    back a ``pending`` result carrying ``provider_job_id``; the caller then
    polls ``check_status`` until the result is no longer pending.
    """

    @abstractmethod
    async def generate(self, module: JobModule, job_input: JobInput) -> ProviderResult:
        """Start generation for one job."""

    @abstractmethod
    async def check_status(self, provider_job_id: str) -> ProviderResult:
        """Return the current state of a pending generation."""


class TextGenerator(ABC):
    @abstractmethod
    async def generate_campaign_script(self, campaign: Campaign) -> CampaignScript:
        """Write a campaign script and scene outline."""


__all__ = ["GenerationProvider", "TextGenerator"]
