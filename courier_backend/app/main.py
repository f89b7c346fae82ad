"""
Courier backend ASGI application.

Run with ``uvicorn courier_backend.app.main:app``. Notification delivery runs
separately: ``python -m courier_backend.app.services.notification_worker``.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from courier_backend.app.api.v1.router import router as api_v1_router
from courier_backend.app.core.config import settings
from courier_backend.app.core.exceptions import register_exception_handlers
from courier_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from courier_backend.app.core.redis_client import ping_redis
from courier_backend.app.db.session import create_tables, engine

# Register every table on Base.metadata before create_all runs
from courier_backend.app.models import audit_log, dlq, parcel, parcel_request, payment, user  # noqa: F401

configure_logging(settings.debug)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Parcel requests, parcel lifecycle, public tracking and notifications",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)
register_exception_handlers(app)
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness plus notification queue reachability."""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "queue": "up" if await ping_redis() else "down",
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to the {settings.app_name} API",
        "docs": "/docs",
        "health": "/health",
    }
