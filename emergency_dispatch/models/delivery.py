from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4
from pydantic import BaseModel, Field, field_validator

from emergency_dispatch.models.assessment import Language


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert zone-aware ones."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class DeliveryStatus(str, Enum):
    """Provider-reported delivery status"""
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    UNDELIVERED = "undelivered"


class DeliveryRecord(BaseModel):
    """One outbound notification and its delivery lifecycle"""
    message_id: str = Field(default_factory=lambda: str(uuid4()))
    recipient: str
    channel: str = "sms"
    language_used: Language
    template_key: str
    job_id: Optional[str] = None
    organization_id: Optional[str] = None
    sent_at: datetime = Field(default_factory=datetime.utcnow)
    delivered_at: Optional[datetime] = None
    status: DeliveryStatus = DeliveryStatus.SENT
    error_message: Optional[str] = None

    @field_validator("sent_at", "delivered_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class DeliveryOutcome(BaseModel):
    """Result of a send step as seen by the dispatcher"""
    success: bool
    message_id: Optional[str] = None
    language_used: Optional[Language] = None
    error: Optional[str] = None


class DeliveryStatistics(BaseModel):
    """Aggregated delivery counts over a time window"""
    total_sent: int = 0
    delivered: int = 0
    failed: int = 0
    undelivered: int = 0
    delivery_rate: float = 0.0
    average_delivery_seconds: float = 0.0
    by_language: Dict[str, int] = Field(default_factory=dict)
    by_template: Dict[str, int] = Field(default_factory=dict)


class TemplatePerformance(BaseModel):
    """Delivery statistics for one template"""
    template_key: str
    statistics: DeliveryStatistics
    common_errors: List[str] = Field(default_factory=list)


class LanguageComparison(BaseModel):
    """Side by side delivery statistics for two languages"""
    language_a: Language
    language_b: Language
    statistics_a: DeliveryStatistics
    statistics_b: DeliveryStatistics
    delivery_rate_difference: float
    delivery_time_difference_seconds: float


class DailyDeliveryTrend(BaseModel):
    """Delivery counts for one calendar day"""
    date: str
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    delivery_rate: float = 0.0
