"""
FastAPI Application Entry Point.

This is the main application file for the Daily Order Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from dailyorder.app.core.config import settings
from dailyorder.app.api.v1.router import router as api_v1_router
from dailyorder.app.db.session import engine, Base
from dailyorder.app.core.observability import ObservabilityMiddleware, configure_logging
from dailyorder.app.core.redis_client import ping_redis
from dailyorder.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from dailyorder.app.models.user import User
from dailyorder.app.models.catalog_item import CatalogItem
from dailyorder.app.models.order import Order
from dailyorder.app.models.order_item import OrderItem
from dailyorder.app.models.ledger_entry import LedgerEntry
from dailyorder.app.models.usage import TenantLimit, TenantUsage
from dailyorder.app.models.audit_log import AuditLog

configure_logging(settings.debug)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates database tables on startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Order taking and distributor ledger service",
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

    Redis only carries notifications, so an unreachable broker degrades
    the status instead of failing it.
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
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
        "message": "Welcome to Daily Order Backend API",
        "docs": "/docs",
        "health": "/health",
    }
