"""FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from nebula.adapters.providers.base import GenerationProvider, TextGenerator
from nebula.core.config import Settings, get_settings
from nebula.core.logging_safety import configure_logging
from nebula.errors import ApiError
from nebula.repositories.memory import InMemoryStore
from nebula.routes import admin_router, campaigns_router, credits_router, jobs_router
from nebula.schemas.error import ErrorResponse
from nebula.services.container import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Stop the worker pool on shutdown; interrupted jobs are failed and refunded."""
    logger.info("app.startup worker_concurrency=%s", app.state.settings.worker_concurrency)
    yield
    await app.state.services.scheduler.shutdown()


def create_app(
    settings: Settings | None = None,
    *,
    provider: GenerationProvider | None = None,
    text_generator: TextGenerator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Nebula Core API", version="0.4.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = InMemoryStore()
    app.state.services = build_services(
        app.state.store,
        settings,
        provider=provider,
        text_generator=text_generator,
    )

    @app.exception_handler(ApiError)
    async def handle_api_error(_, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload.model_dump(mode="json", exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        payload = ErrorResponse(
            code="VALIDATION_ERROR",
            message="Invalid request payload",
            details={"errors": jsonable_encoder(exc.errors())},
        )
        return JSONResponse(status_code=422, content=payload.model_dump(mode="json", exclude_none=True))

    api_prefix = "/api/v1"
    app.include_router(jobs_router, prefix=api_prefix)
    app.include_router(credits_router, prefix=api_prefix)
    app.include_router(campaigns_router, prefix=api_prefix)
    app.include_router(admin_router, prefix=api_prefix)

    return app


app = create_app()
