"""
FastAPI Application Entry Point

StallFront - multi-tenant ordering platform for food stalls.
Supports both Mock services (development) and Real APIs (production).

Route groups:
    - /api/auth: Sign-up, login, magic links, OTP, invites
    - /api/customer: Browsing, cart, checkout, order self-service
    - /api/businesses, /api/stalls, /api/products: Business console
    - /api/orders: Staff orders and the order lifecycle
    - /api/users, /api/roles: User and role management
    - /api/webhooks: Outbound order event subscriptions
    - /api/analytics, /api/admin: Reporting and platform administration
    - /health, /metrics: Operations

Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from stallfront.core.config import get_settings, setup_logging
from stallfront.core.exceptions import RateLimitExceededError, StallFrontError
from stallfront.core.monitoring import MonitoringMiddleware, metrics_response
from stallfront.database import get_db, init_db, dispose_db
from stallfront.routers import (
    admin as admin_routes,
    analytics,
    auth,
    businesses,
    customer,
    orders,
    products,
    stalls,
    users,
    webhooks,
)
from stallfront.schemas import HealthResponse
from stallfront.services import admin
from stallfront.services.notifications import get_notification_service
from stallfront.services.payment import get_payment_service

settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("✅ Database initialized")

    logger.info(f"✅ Payment Service: {get_payment_service().provider_name}")
    logger.info(f"✅ Notification Service: {get_notification_service().provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("✅ Application ready!")

    yield

    logger.info("Shutting down...")
    await dispose_db()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant ordering platform for food stalls: catalog management, "
        "scheduled customer orders, staff fulfilment and business analytics."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MonitoringMiddleware)

for module in (auth, customer, businesses, stalls, products, orders, users, webhooks, analytics, admin_routes):
    app.include_router(module.router)
app.include_router(users.roles_router)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """Verify all system components are operational."""
    return HealthResponse(**await admin.system_health(db))


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics() -> Response:
    return metrics_response()


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(StallFrontError)
async def stallfront_exception_handler(request: Request, exc: StallFrontError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")

    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        details.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request", "details": details},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    content: dict[str, Any] = {
        "success": False,
        "error": "Internal Server Error",
        "detail": str(exc) if settings.debug else "An unexpected error occurred",
    }
    return JSONResponse(status_code=500, content=content)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("stallfront.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
