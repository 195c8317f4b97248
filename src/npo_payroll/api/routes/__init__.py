"""API routes."""

from npo_payroll.api.routes.catalog import router as catalog_router
from npo_payroll.api.routes.drafts import router as drafts_router
from npo_payroll.api.routes.health import router as health_router
from npo_payroll.api.routes.insurance import router as insurance_router

__all__ = ["catalog_router", "drafts_router", "health_router", "insurance_router"]
