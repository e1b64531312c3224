"""Main FastAPI application for the Emergency Dispatch Service."""

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from emergency_dispatch.api.delivery import router as delivery_router
from emergency_dispatch.api.emergency import router as emergency_router
from emergency_dispatch.api.health import router as health_router
from emergency_dispatch.api.workflows import router as workflows_router
from emergency_dispatch.core.config import get_settings
from emergency_dispatch.core.dependencies import get_audit_trail, get_scheduler
from emergency_dispatch.core.exceptions import BaseAPIException, get_user_friendly_error_message
from emergency_dispatch.core.logging import get_correlation_id, get_logger, setup_logging
from emergency_dispatch.core.middleware import CorrelationIDMiddleware

# Get settings
settings = get_settings()

# Initialize logging
setup_logging(settings.log_level)
logger = get_logger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Emergency Dispatch Service",
    description="Detects emergencies in caller conversations and dispatches bilingual notifications",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)
app.state.start_time = time.time()

app.add_middleware(CorrelationIDMiddleware)

# CORS middleware
if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routers
app.include_router(emergency_router, prefix=settings.api_prefix)
app.include_router(workflows_router, prefix=settings.api_prefix)
app.include_router(delivery_router, prefix=settings.api_prefix)
app.include_router(health_router, prefix=settings.api_prefix, tags=["health"])


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Render API exceptions with their error code and correlation ID."""
    exc.correlation_id = get_correlation_id() or exc.correlation_id
    content = exc.to_dict()
    content["user_message"] = get_user_friendly_error_message(exc.error_code)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup."""
    logger.info("Starting Emergency Dispatch Service", version=settings.service_version)
    await get_audit_trail().start()
    logger.info("Service startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down Emergency Dispatch Service")
    try:
        await get_scheduler().shutdown()
        await get_audit_trail().stop()
    except Exception as e:
        logger.error("Failed to stop background services", error=str(e), exc_info=True)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "emergency_dispatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
