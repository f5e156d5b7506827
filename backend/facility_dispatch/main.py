"""
Facility Dispatch FastAPI Application.

- Lifespan context for startup/shutdown
- CORS and security header middleware
- Structured JSON logging
- Domain errors mapped to HTTP status codes
- Health check endpoint
- API versioning
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from facility_dispatch.config import settings
from facility_dispatch.database import close_db, init_db
from facility_dispatch.errors import (
    CapacityExceededError,
    DispatchError,
    InvalidTransitionError,
    NotFoundError,
    OverlapError,
    StoreUnavailableError,
    TechnicianUnavailableError,
    ValidationError,
)

# Configure structured logging
logger = logging.getLogger()
logHandler = logging.StreamHandler()
formatter = jsonlogger.JsonFormatter(
    fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logHandler.setFormatter(formatter)
logger.addHandler(logHandler)
logger.setLevel(getattr(logging, settings.log_level))


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"

        # HSTS - only in production with HTTPS
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler for startup and shutdown."""
    logger.info("Starting Facility Dispatch API", extra={"version": settings.app_version})

    if not settings.api_key.get_secret_value():
        if settings.environment == "production":
            error_msg = "DISPATCH_API_KEY must be set in production"
            logger.error(error_msg)
            raise ValueError(error_msg)
        logger.warning("No API key configured, authentication disabled (development only)")

    # Production schemas are migrated; development gets create_all
    if settings.environment == "development":
        logger.info("Initializing database...")
        await init_db()

    logger.info("Facility Dispatch started successfully")

    yield

    logger.info("Shutting down Facility Dispatch...")
    from facility_dispatch.services.notification_service import notification_service
    from facility_dispatch.services.sweep_lock import sweep_lock

    await notification_service.close()
    await sweep_lock.close()
    await close_db()
    logger.info("Facility Dispatch shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="SLA-driven dispatch of facility incidents to technicians",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)


# === Domain error mapping ===

ERROR_STATUS: list[tuple[type[DispatchError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (CapacityExceededError, status.HTTP_409_CONFLICT),
    (OverlapError, status.HTTP_409_CONFLICT),
    (TechnicianUnavailableError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")

    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint for monitoring and load balancers."""
    return JSONResponse(
        content={
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }
    )


# Import and include API routers
from facility_dispatch.api.dependencies import require_operator_key  # noqa: E402
from facility_dispatch.api.v1 import alerts, escalation, incidents, technicians  # noqa: E402

app.include_router(
    alerts.router,
    prefix=f"{settings.api_v1_prefix}/alerts",
    tags=["Alerts"],
    dependencies=[Depends(require_operator_key)],
)

app.include_router(
    escalation.router,
    prefix=f"{settings.api_v1_prefix}/escalation",
    tags=["Escalation"],
    dependencies=[Depends(require_operator_key)],
)

app.include_router(
    incidents.router,
    prefix=f"{settings.api_v1_prefix}/incidents",
    tags=["Incidents"],
    dependencies=[Depends(require_operator_key)],
)

app.include_router(
    technicians.router,
    prefix=f"{settings.api_v1_prefix}/technicians",
    tags=["Technicians"],
    dependencies=[Depends(require_operator_key)],
)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "Unhandled exception",
        extra={
            "path": str(request.url),
            "method": request.method,
            "error": str(exc),
        },
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "facility_dispatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
