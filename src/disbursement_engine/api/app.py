"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from disbursement_engine.api.routes import (
    batches_router,
    gateway_router,
    health_router,
    webhooks_router,
)
from disbursement_engine.bootstrap import ServiceContainer
from disbursement_engine.config import Settings, get_settings, validate_production_settings
from disbursement_engine.errors import (
    AuthError,
    GatewayError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to build the engine from; loaded from the
            environment when omitted.
        container: Pre-built engine (tests). The app does not close a
            container it did not build.
    """
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owned = None
        if getattr(app.state, "container", None) is None:
            for issue in validate_production_settings(settings):
                logger.warning(issue)
            owned = ServiceContainer.build(settings)
            app.state.container = owned
        yield
        if owned is not None:
            await owned.aclose()
            app.state.container = None

    app = FastAPI(
        title="Disbursement Engine API",
        description="Batch disbursement with gateway reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc), "code": "VALIDATION_ERROR"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_exception_handler(
        request: Request, exc: NotFoundError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc), "code": "NOT_FOUND"},
        )

    @app.exception_handler(GatewayError)
    @app.exception_handler(AuthError)
    async def gateway_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Gateway failures; details stay in the logs."""
        logger.warning("Gateway call failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": "Payment gateway request failed",
                "code": "GATEWAY_ERROR",
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(batches_router, prefix="/api/v1")
    app.include_router(gateway_router, prefix="/api/v1")
    app.include_router(webhooks_router, prefix="/api/v1")

    return app
