"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Request

from disbursement_engine.bootstrap import ServiceContainer
from disbursement_engine.database import Database
from disbursement_engine.services.disbursement import DisbursementService


def get_container(request: Request) -> ServiceContainer:
    """Container built by the application lifespan."""
    return request.app.state.container


def get_service(request: Request) -> DisbursementService:
    """Disbursement facade dependency."""
    return get_container(request).service


def get_database(request: Request) -> Database:
    """Database handle dependency."""
    return get_container(request).database


# Type aliases for cleaner dependency injection
Service = Annotated[DisbursementService, Depends(get_service)]
Db = Annotated[Database, Depends(get_database)]
