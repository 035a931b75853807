"""API routes."""

from disbursement_engine.api.routes.batches import router as batches_router
from disbursement_engine.api.routes.gateway import router as gateway_router
from disbursement_engine.api.routes.health import router as health_router
from disbursement_engine.api.routes.webhooks import router as webhooks_router

__all__ = ["batches_router", "gateway_router", "health_router", "webhooks_router"]
