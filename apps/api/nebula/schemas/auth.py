"""Authentication schemas."""

from pydantic import BaseModel, Field

SUPER_ADMIN_ROLE = "super_admin"


class AuthPrincipal(BaseModel):
    """Normalized authenticated principal used by business services."""

    user_id: str = Field(min_length=1)
    role: str = Field(default="member", min_length=1)
    tenant_id: str | None = None

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN_ROLE
