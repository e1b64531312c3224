"""
Dependency injection for FastAPI application.

Provides factory functions for creating service instances with proper
dependency injection and configuration.
"""

from functools import lru_cache

from emergency_dispatch.core.config import get_settings
from emergency_dispatch.core.logging import get_logger
from emergency_dispatch.core.retry import get_notification_retry_config
from emergency_dispatch.database.repository import DispatchRepository, InMemoryDispatchRepository
from emergency_dispatch.database.supabase_repository import SupabaseDispatchRepository
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.services.audit import AuditTrail
from emergency_dispatch.services.channels import HttpNotificationChannel, WebhookClient
from emergency_dispatch.services.decision_engine import EmergencyDecisionEngine
from emergency_dispatch.services.delivery_tracker import DeliveryTracker
from emergency_dispatch.services.dispatcher import NotificationDispatcher
from emergency_dispatch.services.scheduler import AsyncioScheduler
from emergency_dispatch.services.workflow_metrics import WorkflowMetricsService
from emergency_dispatch.utils.language_detection import LanguageDetector
from emergency_dispatch.utils.urgency_scoring import UrgencyScorer

logger = get_logger(__name__)


@lru_cache()
def get_repository() -> DispatchRepository:
    """Supabase repository when credentials are configured, in-memory otherwise."""
    settings = get_settings()
    if settings.supabase_url and settings.supabase_key:
        return SupabaseDispatchRepository()

    logger.warning("Supabase not configured, using in-memory repository")
    return InMemoryDispatchRepository()


@lru_cache()
def get_notification_channel() -> HttpNotificationChannel:
    """Get notification provider channel."""
    settings = get_settings()
    return HttpNotificationChannel(
        base_url=settings.notification_service_url,
        timeout=settings.notification_timeout,
        retry_config=get_notification_retry_config(),
    )


@lru_cache()
def get_scheduler() -> AsyncioScheduler:
    return AsyncioScheduler()


@lru_cache()
def get_audit_trail() -> AuditTrail:
    return AuditTrail(max_size=get_settings().audit_queue_size)


@lru_cache()
def get_delivery_tracker() -> DeliveryTracker:
    return DeliveryTracker(get_repository())


@lru_cache()
def get_workflow_metrics() -> WorkflowMetricsService:
    return WorkflowMetricsService(get_repository())


@lru_cache()
def get_dispatcher() -> NotificationDispatcher:
    """Get notification dispatcher wired to the shared repository and scheduler."""
    settings = get_settings()
    return NotificationDispatcher(
        repository=get_repository(),
        channel=get_notification_channel(),
        tracker=get_delivery_tracker(),
        scheduler=get_scheduler(),
        webhook_client=WebhookClient(timeout=settings.webhook_timeout),
        audit=get_audit_trail(),
        default_language=Language(settings.default_language),
        step_timeout_seconds=settings.step_timeout_seconds,
        max_retries=settings.max_retries,
        status_update_delay_seconds=settings.status_update_delay_seconds,
    )


@lru_cache()
def get_decision_engine() -> EmergencyDecisionEngine:
    """Get emergency decision engine."""
    settings = get_settings()
    default_language = Language(settings.default_language)
    return EmergencyDecisionEngine(
        detector=LanguageDetector(default_language=default_language),
        scorer=UrgencyScorer(
            base_score_cap=settings.base_score_cap,
            immediate_attention_threshold=settings.immediate_attention_threshold,
            emergency_threshold=settings.emergency_threshold,
        ),
        dispatcher=get_dispatcher(),
        audit=get_audit_trail(),
        default_language=default_language,
        immediate_attention_threshold=settings.immediate_attention_threshold,
    )
