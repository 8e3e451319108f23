"""Job routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, status

from nebula.routes.dependencies import get_authenticated_principal, get_scheduler
from nebula.schemas.auth import AuthPrincipal
from nebula.schemas.error import AccessDeniedError, CreditError, ErrorResponse, FsmTransitionError, NoLeakNotFoundError
from nebula.schemas.job import CreateJobRequest, Job, JobModule, JobPage, JobStats, JobStatus
from nebula.services.scheduler import JobScheduler

router = APIRouter(tags=["Jobs"])


@router.post(
    "/jobs",
    response_model=Job,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse},
        402: {"model": CreditError},
        403: {"model": AccessDeniedError},
        404: {"model": NoLeakNotFoundError},
        422: {"model": ErrorResponse},
    },
)
async def create_job(
    payload: CreateJobRequest,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> Job:
    return await scheduler.create_job(
        user_id=principal.user_id,
        module=payload.module,
        job_input=payload.input,
        metadata=payload.metadata,
        skip_processing=payload.skip_processing,
    )


@router.get("/jobs", response_model=JobPage)
async def list_jobs(
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
    module: JobModule | None = None,
    job_status: Annotated[JobStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query()] = 20,
    offset: Annotated[int, Query()] = 0,
) -> JobPage:
    return scheduler.list_user_jobs(
        user_id=principal.user_id,
        module=module,
        status=job_status,
        limit=limit,
        offset=offset,
    )


@router.get("/jobs/stats", response_model=JobStats)
async def get_job_stats(
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> JobStats:
    return scheduler.get_user_job_stats(principal.user_id)


@router.get(
    "/jobs/{jobId}",
    response_model=Job,
    responses={404: {"model": NoLeakNotFoundError}},
)
async def get_job(
    job_id: Annotated[str, Path(alias="jobId")],
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> Job:
    return scheduler.get_job(job_id=job_id, user_id=principal.user_id)


@router.post(
    "/jobs/{jobId}/retry",
    response_model=Job,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": NoLeakNotFoundError}, 409: {"model": FsmTransitionError}},
)
async def retry_job(
    job_id: Annotated[str, Path(alias="jobId")],
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> Job:
    return await scheduler.retry_job(job_id=job_id, user_id=principal.user_id)


@router.post(
    "/jobs/{jobId}/cancel",
    response_model=Job,
    responses={404: {"model": NoLeakNotFoundError}, 409: {"model": FsmTransitionError}},
)
async def cancel_job(
    job_id: Annotated[str, Path(alias="jobId")],
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    scheduler: Annotated[JobScheduler, Depends(get_scheduler)],
) -> Job:
    return await scheduler.cancel_job(job_id=job_id, user_id=principal.user_id)
