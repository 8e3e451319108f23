"""Campaign routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from nebula.routes.dependencies import get_authenticated_principal, get_campaign_service
from nebula.schemas.auth import AuthPrincipal
from nebula.schemas.campaign import (
    Campaign,
    CampaignGenerationResponse,
    CampaignPage,
    CampaignScript,
    CampaignStatus,
    CampaignStatusResponse,
    CreateCampaignRequest,
)
from nebula.schemas.error import AccessDeniedError, CreditError, NoLeakNotFoundError
from nebula.schemas.job import Job
from nebula.services.campaigns import CampaignService

router = APIRouter(tags=["Campaigns"])

CampaignIdPath = Annotated[str, Path(alias="campaignId")]


@router.post("/campaigns", response_model=Campaign, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CreateCampaignRequest,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> Campaign:
    return service.create_campaign(user_id=principal.user_id, request=payload)


@router.get("/campaigns", response_model=CampaignPage)
async def list_campaigns(
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
    campaign_status: Annotated[CampaignStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query()] = 20,
    offset: Annotated[int, Query()] = 0,
) -> CampaignPage:
    return service.list_campaigns(user_id=principal.user_id, status=campaign_status, limit=limit, offset=offset)


@router.get(
    "/campaigns/{campaignId}",
    response_model=Campaign,
    responses={404: {"model": NoLeakNotFoundError}},
)
async def get_campaign(
    campaign_id: CampaignIdPath,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> Campaign:
    return service.get_campaign(campaign_id=campaign_id, user_id=principal.user_id)


@router.post(
    "/campaigns/{campaignId}/script",
    response_model=CampaignScript,
    responses={403: {"model": AccessDeniedError}, 404: {"model": NoLeakNotFoundError}},
)
async def generate_script(
    campaign_id: CampaignIdPath,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignScript:
    return await service.generate_script(campaign_id=campaign_id, user_id=principal.user_id)


@router.post(
    "/campaigns/{campaignId}/generate",
    response_model=CampaignGenerationResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        402: {"model": CreditError},
        403: {"model": AccessDeniedError},
        404: {"model": NoLeakNotFoundError},
    },
)
async def start_generation(
    campaign_id: CampaignIdPath,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignGenerationResponse:
    return await service.start_generation(campaign_id=campaign_id, user_id=principal.user_id)


@router.get(
    "/campaigns/{campaignId}/status",
    response_model=CampaignStatusResponse,
    responses={404: {"model": NoLeakNotFoundError}},
)
async def get_campaign_status(
    campaign_id: CampaignIdPath,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> CampaignStatusResponse:
    return service.get_campaign_status(campaign_id=campaign_id, user_id=principal.user_id)


@router.post(
    "/campaigns/{campaignId}/export",
    response_model=Job,
    status_code=status.HTTP_201_CREATED,
    responses={402: {"model": CreditError}, 404: {"model": NoLeakNotFoundError}},
)
async def export_campaign(
    campaign_id: CampaignIdPath,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    service: Annotated[CampaignService, Depends(get_campaign_service)],
) -> Job:
    return await service.export_campaign(campaign_id=campaign_id, user_id=principal.user_id)
