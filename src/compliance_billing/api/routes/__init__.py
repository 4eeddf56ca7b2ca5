"""API routes."""

from compliance_billing.api.routes.billing_documents import router as billing_documents_router
from compliance_billing.api.routes.health import router as health_router
from compliance_billing.api.routes.obligations import router as obligations_router
from compliance_billing.api.routes.recurring import router as recurring_router

__all__ = [
    "billing_documents_router",
    "health_router",
    "obligations_router",
    "recurring_router",
]
