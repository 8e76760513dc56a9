"""
FastAPI Application Entry Point.

This is the main application file for the Glassbox Revenue Settlement Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from glassbox_backend.app.core.config import settings
from glassbox_backend.app.api.v1.router import router as api_v1_router
from glassbox_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from glassbox_backend.app.core.redis_client import close_redis, ping_redis
from glassbox_backend.app.db.session import engine, Base
from glassbox_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from glassbox_backend.app.models.audit_log import AuditLog
from glassbox_backend.app.models.fee_schema import FeeSchema, FeeSchemaRevision
from glassbox_backend.app.models.partner_schema_fee import PartnerSchemaFee
from glassbox_backend.app.models.ad_view_transaction import AdViewTransaction
from glassbox_backend.app.models.settlement_batch import SettlementBatch, SettlementPartnerFee, SettlementRecordFailure
from glassbox_backend.app.models.revenue_aggregate import RevenueAggregate

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup and closes the Redis pool on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Revenue fee allocation and monthly settlement for the Glassbox advertising platform",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Glassbox Revenue Settlement API",
        "docs": "/docs",
        "health": "/health",
    }
