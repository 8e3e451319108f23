"""Route modules."""

from .admin import router as admin_router
from .campaigns import router as campaigns_router
from .credits import router as credits_router
from .jobs import router as jobs_router

__all__ = ["admin_router", "campaigns_router", "credits_router", "jobs_router"]
