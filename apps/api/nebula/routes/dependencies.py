"""Dependency wiring for routes."""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nebula.adapters.auth import (
    AuthVerificationError,
    FirebaseTokenVerifier,
    MockTokenVerifier,
    TokenVerifier,
)
from nebula.core.config import Settings
from nebula.core.logging_safety import safe_log_identifier
from nebula.errors import ApiError, Forbidden, UserNotFound
from nebula.repositories.memory import InMemoryStore
from nebula.schemas.auth import AuthPrincipal
from nebula.services.campaigns import CampaignService
from nebula.services.container import ServiceContainer
from nebula.services.feature_gate import FeatureGateService
from nebula.services.ledger import LedgerService
from nebula.services.scheduler import JobScheduler
from nebula.services.tenants import TenantService

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="bearerAuth")
logger = logging.getLogger(__name__)


def _auth_error(message: str) -> ApiError:
    return ApiError(status_code=401, code="UNAUTHORIZED", message=message)


def _request_correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if isinstance(existing, str) and existing:
        return existing

    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        request.state.correlation_id = correlation_id
        return correlation_id

    generated = f"req-{uuid4()}"
    request.state.correlation_id = generated
    return generated


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token_verifier(settings: Annotated[Settings, Depends(get_app_settings)]) -> TokenVerifier:
    """Resolve provider adapter from configuration."""
    if settings.auth_provider == "firebase":
        return FirebaseTokenVerifier(
            project_id=settings.firebase_project_id,
            audience=settings.firebase_audience,
        )
    return MockTokenVerifier()


async def get_authenticated_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> AuthPrincipal:
    """Validate bearer token and attach normalized principal to request context."""
    correlation_id = _request_correlation_id(request)
    safe_correlation_id = safe_log_identifier(correlation_id, prefix="cid")
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=invalid_or_missing_bearer",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error("Invalid or missing bearer token")

    try:
        principal = verifier.verify_token(credentials.credentials)
    except AuthVerificationError as exc:
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=token_verification_failed",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error(str(exc) or "Invalid bearer token") from exc

    logger.info(
        "auth.accepted correlation_id=%s method=%s path=%s principal_id=%s role=%s",
        safe_correlation_id,
        request.method,
        request.url.path,
        safe_log_identifier(principal.user_id, prefix="pid"),
        principal.role,
    )
    request.state.auth_principal = principal
    return principal


async def require_super_admin(
    request: Request,
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
) -> AuthPrincipal:
    if not principal.is_super_admin:
        logger.warning(
            "auth.forbidden correlation_id=%s path=%s principal_id=%s role=%s",
            safe_log_identifier(_request_correlation_id(request), prefix="cid"),
            request.url.path,
            safe_log_identifier(principal.user_id, prefix="pid"),
            principal.role,
        )
        raise Forbidden("Super admin role required")
    return principal


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_ledger(services: Annotated[ServiceContainer, Depends(get_services)]) -> LedgerService:
    return services.ledger


def get_tenant_service(services: Annotated[ServiceContainer, Depends(get_services)]) -> TenantService:
    return services.tenants


def get_feature_gate(services: Annotated[ServiceContainer, Depends(get_services)]) -> FeatureGateService:
    return services.gate


def get_scheduler(services: Annotated[ServiceContainer, Depends(get_services)]) -> JobScheduler:
    return services.scheduler


def get_campaign_service(services: Annotated[ServiceContainer, Depends(get_services)]) -> CampaignService:
    return services.campaigns


def get_current_tenant_id(
    principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    store: Annotated[InMemoryStore, Depends(get_store)],
) -> str:
    """Tenant of the calling user, from membership rather than token claims."""
    user = store.get_user(principal.user_id)
    if user is None:
        raise UserNotFound()
    return user.tenant_id
