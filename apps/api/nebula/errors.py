"""Application exception types."""

from __future__ import annotations

from typing import Any

from nebula.schemas.error import ErrorResponse


class ApiError(Exception):
    """Structured API error that maps directly to contract error payloads."""

    def __init__(self, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> None:
        self.status_code = status_code
        self.payload = ErrorResponse(code=code, message=message, details=details)
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.payload.code

    @property
    def details(self) -> dict[str, Any]:
        return self.payload.details or {}


class ValidationError(ApiError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, *, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(status_code=422, code=code, message=message, details=details)


class InvalidAmount(ValidationError):
    def __init__(self, amount: int) -> None:
        super().__init__("Credit amount must be positive", {"amount": amount}, code="INVALID_AMOUNT")


class FeatureRequired(ValidationError):
    def __init__(self) -> None:
        super().__init__("Feature name is required for credit consumption", code="FEATURE_REQUIRED")


class ResourceNotFound(ApiError):
    """No-leak 404: the message never says which resource or owner was involved."""

    def __init__(self) -> None:
        super().__init__(status_code=404, code="RESOURCE_NOT_FOUND", message="Resource not found")


class TenantNotFound(ResourceNotFound):
    pass


class UserNotFound(ResourceNotFound):
    pass


class JobNotFound(ResourceNotFound):
    pass


class CampaignNotFound(ResourceNotFound):
    pass


class InsufficientBalance(ApiError):
    def __init__(self, *, balance: int, requested: int, feature: str | None = None) -> None:
        shortfall = requested - balance
        subject = f" for {feature}" if feature else ""
        super().__init__(
            status_code=402,
            code="INSUFFICIENT_BALANCE",
            message=(
                f"Insufficient credits{subject}. Current balance: {balance:,}, "
                f"requested: {requested:,}. Shortfall: {shortfall:,} credits."
            ),
            details={"balance": balance, "requested": requested, "shortfall": shortfall, "feature": feature},
        )


class InsufficientCredits(ApiError):
    def __init__(self, *, balance: int, required: int, module: str) -> None:
        shortfall = required - balance
        super().__init__(
            status_code=402,
            code="INSUFFICIENT_CREDITS",
            message=f"Insufficient credits. Required: {required:,}, Available: {balance:,}",
            details={"balance": balance, "required": required, "shortfall": shortfall, "module": module},
        )


class BalanceCapExceeded(ApiError):
    def __init__(self, *, balance: int, amount: int, cap: int) -> None:
        super().__init__(
            status_code=409,
            code="BALANCE_CAP_EXCEEDED",
            message=f"Credit balance cannot exceed {cap:,}",
            details={"balance": balance, "amount": amount, "cap": cap},
        )


class TenantSuspended(ApiError):
    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            status_code=403,
            code="TENANT_SUSPENDED",
            message="Tenant is suspended. Activate the tenant first.",
            details={"tenant_id": tenant_id},
        )


class TenantLocked(ApiError):
    def __init__(self, tenant_id: str) -> None:
        super().__init__(
            status_code=403,
            code="TENANT_LOCKED",
            message="Tenant is locked due to payment failure.",
            details={"tenant_id": tenant_id},
        )


class FeatureDisabledGlobally(ApiError):
    def __init__(self, feature_id: str, reason: str | None = None) -> None:
        super().__init__(
            status_code=403,
            code="FEATURE_DISABLED_GLOBALLY",
            message=f"{feature_id} is temporarily unavailable.",
            details={"feature_id": feature_id, "reason": reason},
        )


class FeatureNotEntitled(ApiError):
    def __init__(self, *, feature_id: str, plan_id: str, plan_name: str, tenant_status: str) -> None:
        super().__init__(
            status_code=403,
            code="FEATURE_NOT_ENTITLED",
            message=f"{feature_id} is not included in the {plan_name} plan.",
            details={
                "feature_id": feature_id,
                "plan_id": plan_id,
                "plan_name": plan_name,
                "tenant_status": tenant_status,
            },
        )


class InvalidStateTransition(ApiError):
    def __init__(self, *, code: str, message: str, details: dict[str, Any]) -> None:
        super().__init__(status_code=409, code=code, message=message, details=details)


class RetryLimitReached(ApiError):
    def __init__(self, *, retry_count: int, max_retries: int) -> None:
        super().__init__(
            status_code=409,
            code="RETRY_LIMIT_REACHED",
            message="Maximum retry limit reached",
            details={"retry_count": retry_count, "max_retries": max_retries},
        )


class SeatLimitReached(ApiError):
    def __init__(self, *, max_users: int, current_users: int) -> None:
        super().__init__(
            status_code=409,
            code="SEAT_LIMIT_REACHED",
            message=f"Plan allows {max_users} users but the tenant has {current_users}.",
            details={"max_users": max_users, "current_users": current_users},
        )


class ProviderError(ApiError):
    """Upstream generation failure; ``provider_code`` keeps the vendor's own code."""

    def __init__(self, message: str, *, provider_code: str | None = None) -> None:
        super().__init__(
            status_code=502,
            code="PROVIDER_ERROR",
            message=message,
            details={"provider_code": provider_code},
        )
        self.provider_code = provider_code


class ProviderTimeout(ApiError):
    def __init__(self, *, module: str, timeout_seconds: float) -> None:
        super().__init__(
            status_code=504,
            code="PROVIDER_TIMEOUT",
            message=f"Generation for {module} did not finish within {timeout_seconds:g} seconds",
            details={"module": module, "timeout_seconds": timeout_seconds},
        )


class Forbidden(ApiError):
    def __init__(self, message: str = "Insufficient role for this operation") -> None:
        super().__init__(status_code=403, code="FORBIDDEN", message=message)


__all__ = [
    "ApiError",
    "BalanceCapExceeded",
    "CampaignNotFound",
    "FeatureDisabledGlobally",
    "FeatureNotEntitled",
    "FeatureRequired",
    "Forbidden",
    "InsufficientBalance",
    "InsufficientCredits",
    "InvalidAmount",
    "InvalidStateTransition",
    "JobNotFound",
    "ProviderError",
    "ProviderTimeout",
    "ResourceNotFound",
    "RetryLimitReached",
    "SeatLimitReached",
    "TenantLocked",
    "TenantNotFound",
    "TenantSuspended",
    "UserNotFound",
    "ValidationError",
]
