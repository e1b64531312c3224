"""
Pytest configuration and fixtures for the Emergency Dispatch Service.
"""
from datetime import datetime, timedelta
from typing import Dict, Generator, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from emergency_dispatch.core.config import settings
from emergency_dispatch.core.dependencies import (
    get_audit_trail,
    get_decision_engine,
    get_delivery_tracker,
    get_dispatcher,
    get_repository,
    get_workflow_metrics,
)
from emergency_dispatch.core.exceptions import ProviderError
from emergency_dispatch.database.repository import InMemoryDispatchRepository
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.dispatch import CallDetails, OrganizationConfig, TaskHandle
from emergency_dispatch.main import app
from emergency_dispatch.services.audit import AuditTrail
from emergency_dispatch.services.channels import ChannelResult
from emergency_dispatch.services.decision_engine import EmergencyDecisionEngine
from emergency_dispatch.services.delivery_tracker import DeliveryTracker
from emergency_dispatch.services.dispatcher import NotificationDispatcher
from emergency_dispatch.services.workflow_metrics import WorkflowMetricsService
from emergency_dispatch.utils.language_detection import LanguageDetector
from emergency_dispatch.utils.urgency_scoring import UrgencyScorer


class FakeChannel:
    """Notification channel that records sends instead of calling a provider."""

    channel_name = "sms"

    def __init__(self, failing_recipients: Optional[Set[str]] = None, raise_errors: bool = False):
        self.failing_recipients = failing_recipients or set()
        self.raise_errors = raise_errors
        self.sent: List[Dict[str, object]] = []

    async def send(self, recipient: str, body: str, language_used: Language) -> ChannelResult:
        if recipient in self.failing_recipients:
            if self.raise_errors:
                raise ProviderError("Notification Service", "Provider unavailable", status_code=503)
            return ChannelResult(success=False, error="Rejected by provider: 400")

        self.sent.append({"recipient": recipient, "body": body, "language": language_used})
        return ChannelResult(success=True, channel_message_id=f"provider-{len(self.sent)}")


class FakeScheduler:
    """Scheduler that records requests and only runs them when told to."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.executor = None
        self.scheduled: Dict[str, TaskHandle] = {}
        self.cancelled: List[str] = []

    def bind(self, executor) -> None:
        self.executor = executor

    async def schedule(self, job_id: str, delay_seconds: float) -> TaskHandle:
        if self.fail:
            raise RuntimeError("scheduler unavailable")
        handle = TaskHandle(job_id=job_id, run_at=datetime.utcnow() + timedelta(seconds=delay_seconds))
        self.scheduled[handle.id] = handle
        return handle

    async def cancel(self, handle_id: str) -> bool:
        self.cancelled.append(handle_id)
        return self.scheduled.pop(handle_id, None) is not None

    async def execute(self, handle: TaskHandle) -> None:
        self.scheduled.pop(handle.id, None)
        await self.executor(handle.job_id)

    async def run_all(self) -> None:
        for handle in list(self.scheduled.values()):
            await self.execute(handle)


@pytest.fixture
def organization() -> OrganizationConfig:
    """Sample HVAC organization."""
    return OrganizationConfig(
        id="org-1",
        business_name="Acme Heating",
        industry_code="hvac",
        contact_phone="+15550000001",
    )


@pytest.fixture
def call_details() -> CallDetails:
    """Sample caller details."""
    return CallDetails(
        customer_name="Maria Lopez",
        customer_phone="+15550000002",
        customer_address="12 Elm St",
        issue_description="No heat in the house",
    )


@pytest.fixture
async def repository(organization) -> InMemoryDispatchRepository:
    """In-memory repository seeded with default templates and one organization."""
    repo = InMemoryDispatchRepository()
    await repo.save_organization(organization)
    return repo


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def audit() -> AuditTrail:
    return AuditTrail()


@pytest.fixture
def dispatcher(repository, channel, scheduler, audit) -> NotificationDispatcher:
    """Dispatcher wired to the in-memory repository and fake channel."""
    return NotificationDispatcher(
        repository=repository,
        channel=channel,
        tracker=DeliveryTracker(repository),
        scheduler=scheduler,
        audit=audit,
    )


@pytest.fixture
def client(repository, dispatcher, audit) -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.

    Service dependencies are replaced by in-memory fakes. Startup and
    shutdown handlers are not run, so the cached audit consumer stays idle.
    """
    tracker = DeliveryTracker(repository)
    metrics = WorkflowMetricsService(repository)
    engine = EmergencyDecisionEngine(
        detector=LanguageDetector(),
        scorer=UrgencyScorer(),
        dispatcher=dispatcher,
        audit=audit,
    )
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_delivery_tracker] = lambda: tracker
    app.dependency_overrides[get_decision_engine] = lambda: engine
    app.dependency_overrides[get_audit_trail] = lambda: audit
    app.dependency_overrides[get_workflow_metrics] = lambda: metrics

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def sample_headers() -> dict:
    """Sample request headers with correlation ID."""
    return {
        "X-Correlation-ID": "test-correlation-123",
        "Content-Type": "application/json",
    }


@pytest.fixture
def api_prefix() -> str:
    """Get the API prefix from settings."""
    return settings.api_prefix
