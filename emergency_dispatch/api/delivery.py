"""
Delivery tracking API endpoints.

Receives provider status callbacks and serves delivery analytics.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from emergency_dispatch.core.dependencies import get_delivery_tracker
from emergency_dispatch.core.exceptions import DispatchError, InternalServerError, map_dispatch_error
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.delivery import (
    DeliveryStatistics,
    LanguageComparison,
    TemplatePerformance,
)
from emergency_dispatch.schemas.delivery import DeliveryStatusCallback, DeliveryStatusResponse
from emergency_dispatch.services.delivery_tracker import DeliveryTracker, parse_window

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/delivery", tags=["delivery"])


@router.post("/status", response_model=DeliveryStatusResponse)
async def update_delivery_status(
    callback: DeliveryStatusCallback,
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
):
    """
    Apply a provider delivery status callback.

    Raises:
        HTTPException: 404 if the message is unknown
    """
    try:
        record = await tracker.track_status(
            callback.message_id,
            callback.status,
            timestamp=callback.timestamp,
            error_message=callback.error_message,
        )
        return DeliveryStatusResponse(
            message_id=record.message_id,
            status=record.status,
            delivered_at=record.delivered_at,
        )
    except DispatchError as e:
        logger.warning("Delivery status rejected", message_id=callback.message_id, error=str(e))
        raise map_dispatch_error(e)
    except Exception as e:
        logger.error(
            "Unexpected error updating delivery status",
            message_id=callback.message_id,
            error=str(e),
            exc_info=True,
        )
        raise InternalServerError("Internal server error while updating delivery status")


@router.get("/statistics", response_model=DeliveryStatistics)
async def get_delivery_statistics(
    time_range: str = Query(default="24h"),
    organization_id: Optional[str] = Query(default=None),
    language: Optional[Language] = Query(default=None),
    template_key: Optional[str] = Query(default=None),
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
):
    """Delivery statistics for the last 1h, 24h, 7d or 30d."""
    try:
        return await tracker.statistics(
            parse_window(time_range),
            organization_id=organization_id,
            language=language,
            template_key=template_key,
        )
    except DispatchError as e:
        raise map_dispatch_error(e)


@router.get("/language-performance", response_model=LanguageComparison)
async def get_language_performance(
    time_range: str = Query(default="7d"),
    language_a: Language = Query(default=Language.EN),
    language_b: Language = Query(default=Language.ES),
    organization_id: Optional[str] = Query(default=None),
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
):
    """Compare delivery performance between two languages."""
    try:
        return await tracker.language_comparison(
            language_a, language_b, parse_window(time_range), organization_id=organization_id
        )
    except DispatchError as e:
        raise map_dispatch_error(e)


@router.get("/template-performance/{template_key}", response_model=TemplatePerformance)
async def get_template_performance(
    template_key: str,
    time_range: str = Query(default="7d"),
    organization_id: Optional[str] = Query(default=None),
    tracker: DeliveryTracker = Depends(get_delivery_tracker),
):
    """Delivery performance and most common errors for one template."""
    try:
        return await tracker.template_performance(
            template_key, parse_window(time_range), organization_id=organization_id
        )
    except DispatchError as e:
        raise map_dispatch_error(e)
