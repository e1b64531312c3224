from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from emergency_dispatch.models.delivery import DeliveryStatus


class DeliveryStatusCallback(BaseModel):
    """Provider delivery status callback schema"""
    message_id: str = Field(min_length=1)
    status: DeliveryStatus
    timestamp: Optional[datetime] = None
    error_message: Optional[str] = None


class DeliveryStatusResponse(BaseModel):
    """Delivery status update response schema"""
    message_id: str
    status: DeliveryStatus
    delivered_at: Optional[datetime] = None
