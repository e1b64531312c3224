"""
Health check endpoints for the Emergency Dispatch Service.
"""
import time
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from emergency_dispatch.core.config import settings
from emergency_dispatch.core.dependencies import get_audit_trail
from emergency_dispatch.core.logging import get_logger
from emergency_dispatch.services.audit import AuditTrail

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str
    audit: dict


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request, audit: AuditTrail = Depends(get_audit_trail)):
    """
    Basic health check endpoint.

    Returns service status, version and audit trail counters.
    """
    logger.info("Health check requested")

    start_time = getattr(request.app.state, "start_time", time.time())

    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        uptime_seconds=round(time.time() - start_time, 2),
        timestamp=datetime.utcnow(),
        service_name=settings.service_name,
        audit={
            "running": audit.is_running,
            "pending": audit.pending,
            "recorded": audit.recorded,
            "dropped": audit.dropped,
            "processed": audit.processed,
        },
    )
