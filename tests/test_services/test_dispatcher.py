"""
Tests for the notification dispatcher.
"""
import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from conftest import FakeChannel, FakeScheduler
from emergency_dispatch.core.exceptions import (
    NotFoundError,
    ProviderError,
    RetryExhaustedError,
    ValidationError,
)
from emergency_dispatch.database.repository import InMemoryDispatchRepository
from emergency_dispatch.database.seed_data import (
    CUSTOMER_CONFIRMATION_TEMPLATE,
    STATUS_UPDATE_TEMPLATE,
)
from emergency_dispatch.models.assessment import (
    CulturalContext,
    EmergencyAssessment,
    Language,
    UrgencyLevel,
)
from emergency_dispatch.models.dispatch import JobStatus, StepStatus, WorkflowType
from emergency_dispatch.models.template import NotificationTemplate
from emergency_dispatch.services.delivery_tracker import DeliveryTracker
from emergency_dispatch.services.dispatcher import NotificationDispatcher

TECHNICIAN_PHONE = "+15550000001"
CUSTOMER_PHONE = "+15550000002"


def _assessment(language: Language = Language.EN) -> EmergencyAssessment:
    return EmergencyAssessment(
        urgency_score=0.9,
        base_score=0.6,
        urgency_level=UrgencyLevel.EMERGENCY,
        detected_language=language,
        language_confidence=1.0,
        matched_keywords=frozenset({"no heat"}),
        cultural_context=CulturalContext.NEUTRAL,
        industry_code="hvac",
        estimated_response_time="15-30 minutes",
    )


def _send(recipient: str, template_key: str = "follow_up", **extra) -> dict:
    return {
        "step_type": "send_notification",
        "template_key": template_key,
        "recipient": recipient,
        "variables": {"customer_name": "Ana", "service_type": "HVAC", "business_name": "Acme"},
        **extra,
    }


class SlowChannel(FakeChannel):
    """Channel that takes a while to answer."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def send(self, recipient, body, language_used):
        await asyncio.sleep(self.delay)
        return await super().send(recipient, body, language_used)


class TestEmergencyDispatch:
    """Tests for the emergency alert workflow."""

    @pytest.fixture
    def dispatcher(self, repository, channel, scheduler):
        return NotificationDispatcher(repository, channel, scheduler=scheduler)

    @pytest.mark.asyncio
    async def test_dispatch_sends_alerts_and_schedules_update(
        self, dispatcher, repository, channel, scheduler, call_details
    ):
        """Test technician and customer are notified and the status update is scheduled."""
        result = await dispatcher.dispatch(_assessment(), call_details, "org-1")

        assert result.technician_notification.success
        assert result.technician_notification.language_used == Language.EN
        assert result.customer_notification.success
        assert result.customer_notification.message_id is not None
        assert result.customer_notification.error is None
        record = await repository.get_delivery(result.customer_notification.message_id)
        assert record.recipient == CUSTOMER_PHONE
        assert result.follow_up_scheduled
        assert result.job_status == JobStatus.ACTIVE
        assert [sent["recipient"] for sent in channel.sent] == [TECHNICIAN_PHONE, CUSTOMER_PHONE]
        assert "HVAC emergency from Maria Lopez at 12 Elm St" in channel.sent[0]["body"]
        assert "15-30 minutes" in channel.sent[1]["body"]
        assert len(scheduler.scheduled) == 1

        await scheduler.run_all()

        job = await dispatcher.get_job(result.job_id)
        assert job.status == JobStatus.COMPLETED
        assert len(channel.sent) == 3
        assert "Technician dispatched" in channel.sent[2]["body"]

    @pytest.mark.asyncio
    async def test_customer_messages_use_detected_language(
        self, dispatcher, channel, scheduler, call_details
    ):
        """Test customer messages are Spanish while the technician alert stays English."""
        await dispatcher.dispatch(_assessment(Language.ES), call_details, "org-1")
        await scheduler.run_all()

        assert [sent["language"] for sent in channel.sent] == [Language.EN, Language.ES, Language.ES]
        assert channel.sent[1]["body"].startswith("URGENTE")
        assert "Técnico despachado" in channel.sent[2]["body"]

    @pytest.mark.asyncio
    async def test_technician_failure_does_not_block_customer(
        self, repository, scheduler, call_details
    ):
        """Test a failed technician alert still lets the customer confirmation go out."""
        channel = FakeChannel(failing_recipients={TECHNICIAN_PHONE})
        dispatcher = NotificationDispatcher(repository, channel, scheduler=scheduler)

        result = await dispatcher.dispatch(_assessment(), call_details, "org-1")

        assert not result.technician_notification.success
        assert "Rejected by provider" in result.technician_notification.error
        assert result.customer_notification.success
        assert [sent["recipient"] for sent in channel.sent] == [CUSTOMER_PHONE]

        await scheduler.run_all()
        job = await dispatcher.get_job(result.job_id)
        assert job.status == JobStatus.FAILED
        assert "step 0" in job.error_message

    @pytest.mark.asyncio
    async def test_customer_failure_halts_job(self, repository, scheduler, call_details):
        """Test a failed customer confirmation stops the workflow."""
        channel = FakeChannel(failing_recipients={CUSTOMER_PHONE}, raise_errors=True)
        dispatcher = NotificationDispatcher(repository, channel, scheduler=scheduler)

        result = await dispatcher.dispatch(_assessment(), call_details, "org-1")

        assert result.technician_notification.success
        assert not result.customer_notification.success
        assert "Provider unavailable" in result.customer_notification.error
        assert not result.follow_up_scheduled
        assert result.job_status == JobStatus.FAILED
        assert scheduler.scheduled == {}

        job = await dispatcher.get_job(result.job_id)
        statuses = [step.status for step in job.ordered_steps()]
        assert statuses == [
            StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.PENDING, StepStatus.PENDING
        ]
        assert "Provider unavailable" in job.ordered_steps()[1].error_message

    @pytest.mark.asyncio
    async def test_template_language_fallback(
        self, dispatcher, repository, channel, call_details
    ):
        """Test a missing Spanish template falls back to English."""
        await repository.save_template(NotificationTemplate(
            template_key=CUSTOMER_CONFIRMATION_TEMPLATE,
            language_code=Language.ES,
            body="inactive",
            is_active=False,
        ))

        result = await dispatcher.dispatch(_assessment(Language.ES), call_details, "org-1")

        assert result.customer_notification.success
        assert result.customer_notification.language_used == Language.EN
        assert channel.sent[1]["language"] == Language.EN
        assert channel.sent[1]["body"].startswith("URGENT:")

    @pytest.mark.asyncio
    async def test_missing_template_fails_preflight(self, channel, scheduler, call_details, organization):
        """Test dispatch refuses to start when a template exists in no language."""
        repository = InMemoryDispatchRepository()
        await repository.save_organization(organization)
        for language in Language:
            await repository.save_template(NotificationTemplate(
                template_key=STATUS_UPDATE_TEMPLATE,
                language_code=language,
                body="off",
                is_active=False,
            ))
        dispatcher = NotificationDispatcher(repository, channel, scheduler=scheduler)

        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(_assessment(), call_details, "org-1")
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_unknown_organization(self, dispatcher, call_details):
        """Test dispatch for an unknown organization raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await dispatcher.dispatch(_assessment(), call_details, "missing-org")

    @pytest.mark.asyncio
    async def test_deliveries_are_recorded(self, repository, scheduler, call_details):
        """Test every send attempt is tracked, including failures."""
        channel = FakeChannel(failing_recipients={TECHNICIAN_PHONE})
        tracker = DeliveryTracker(repository)
        dispatcher = NotificationDispatcher(repository, channel, tracker=tracker, scheduler=scheduler)

        await dispatcher.dispatch(_assessment(), call_details, "org-1")

        stats = await tracker.statistics(since=datetime(2000, 1, 1))
        assert stats.total_sent == 2
        assert stats.failed == 1


class TestJobLifecycle:
    """Tests for create, execute, cancel and retry."""

    @pytest.fixture
    def dispatcher(self, repository, channel, scheduler):
        return NotificationDispatcher(repository, channel, scheduler=scheduler, max_retries=1)

    @pytest.mark.asyncio
    async def test_create_job_is_pending(self, dispatcher):
        """Test a new job is pending with ordered steps."""
        job = await dispatcher.create_job(
            WorkflowType.APPOINTMENT_CONFIRMATION,
            "org-1",
            metadata={"phone_number": "+1555", "appointment_id": "a-1"},
        )

        assert job.status == JobStatus.PENDING
        assert [step.order for step in job.steps] == [0, 1]
        assert job.max_retries == 1

    @pytest.mark.asyncio
    async def test_invalid_step_definitions_rejected(self, dispatcher):
        """Test invalid step definitions fail at creation."""
        with pytest.raises(ValidationError):
            await dispatcher.create_job(
                WorkflowType.FOLLOW_UP, "org-1",
                steps=[{"step_type": "condition", "predicate": "is_full_moon"}],
            )
        with pytest.raises(ValidationError):
            await dispatcher.create_job(
                WorkflowType.FOLLOW_UP, "org-1",
                steps=[{"step_type": "wait", "duration_seconds": -5}],
            )
        with pytest.raises(ValidationError):
            await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[])

    @pytest.mark.asyncio
    async def test_condition_false_skips_step(self, dispatcher, channel):
        """Test an unmet condition is skipped and the job still completes."""
        job = await dispatcher.create_job(
            WorkflowType.APPOINTMENT_CONFIRMATION, "org-1", metadata={"phone_number": "+1555"}
        )
        job = await dispatcher.execute_job(job.id)

        steps = job.ordered_steps()
        assert steps[0].status == StepStatus.SKIPPED
        assert steps[1].status == StepStatus.COMPLETED
        assert job.status == JobStatus.COMPLETED
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_failing_send_halts_later_steps(self, repository):
        """Test a failed send with halt_on_failure leaves later steps pending."""
        channel = FakeChannel(failing_recipients={"+1bad"})
        dispatcher = NotificationDispatcher(repository, channel)
        job = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1bad"), _send("+1good")]
        )

        job = await dispatcher.execute_job(job.id)

        assert job.status == JobStatus.FAILED
        assert [s.status for s in job.ordered_steps()] == [StepStatus.FAILED, StepStatus.PENDING]
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_webhook_failure_does_not_halt(self, repository, channel):
        """Test a failed webhook step is recorded and later steps still run."""
        webhook_client = AsyncMock()
        webhook_client.call.side_effect = ProviderError("Webhook", "Webhook failed: 500")
        dispatcher = NotificationDispatcher(repository, channel, webhook_client=webhook_client)

        job = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1",
            steps=[{"step_type": "webhook", "url": "http://hook"}, _send("+1555")],
        )
        job = await dispatcher.execute_job(job.id)

        assert [s.status for s in job.ordered_steps()] == [StepStatus.FAILED, StepStatus.COMPLETED]
        assert job.status == JobStatus.FAILED
        assert len(channel.sent) == 1

        body = webhook_client.call.call_args.args[3]
        assert body["job_id"] == job.id
        assert body["step_id"] == job.ordered_steps()[0].id

    @pytest.mark.asyncio
    async def test_scheduling_failure_does_not_halt(self, repository, channel):
        """Test a wait step that cannot be scheduled fails without halting."""
        dispatcher = NotificationDispatcher(repository, channel, scheduler=FakeScheduler(fail=True))

        job = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1",
            steps=[{"step_type": "wait", "duration_seconds": 60}, _send("+1555")],
        )
        job = await dispatcher.execute_job(job.id)

        assert [s.status for s in job.ordered_steps()] == [StepStatus.FAILED, StepStatus.COMPLETED]
        assert job.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_zero_wait_without_scheduler(self, repository, channel):
        """Test a zero second wait completes inline."""
        dispatcher = NotificationDispatcher(repository, channel)
        job = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1",
            steps=[{"step_type": "wait", "duration_seconds": 0}, _send("+1555")],
        )
        job = await dispatcher.execute_job(job.id)
        assert job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_send_timeout_fails_step(self, repository):
        """Test a send exceeding the step timeout fails the step."""
        dispatcher = NotificationDispatcher(repository, SlowChannel(delay=1), step_timeout_seconds=0.01)
        job = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])

        job = await dispatcher.execute_job(job.id)

        assert job.status == JobStatus.FAILED
        assert "timed out" in job.steps[0].error_message

    @pytest.mark.asyncio
    async def test_execution_is_single_flight(self, repository):
        """Test concurrent executions of the same job send each message once."""
        channel = SlowChannel(delay=0.05)
        dispatcher = NotificationDispatcher(repository, channel)
        job = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])

        first, second = await asyncio.gather(
            dispatcher.execute_job(job.id), dispatcher.execute_job(job.id)
        )

        assert len(channel.sent) == 1
        assert first.status == second.status == JobStatus.COMPLETED
        assert dispatcher._locks == {}

    @pytest.mark.asyncio
    async def test_job_locks_are_released(self, dispatcher, scheduler):
        """Test per-job locks do not accumulate once executions finish."""
        completed = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])
        suspended = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1",
            steps=[{"step_type": "wait", "duration_seconds": 60}, _send("+1666")],
        )

        await dispatcher.execute_job(completed.id)
        await dispatcher.execute_job(suspended.id)
        with pytest.raises(ValidationError):
            await dispatcher.retry_job(completed.id)
        with pytest.raises(NotFoundError):
            await dispatcher.execute_job("missing")

        assert dispatcher._locks == {}
        assert dispatcher._lock_users == {}

        await scheduler.run_all()
        assert (await dispatcher.get_job(suspended.id)).status == JobStatus.COMPLETED
        assert dispatcher._locks == {}

    @pytest.mark.asyncio
    async def test_executing_terminal_job_is_noop(self, dispatcher, channel):
        """Test re-executing a completed job sends nothing."""
        job = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])
        await dispatcher.execute_job(job.id)
        await dispatcher.execute_job(job.id)
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_cancel_suspended_job(self, dispatcher, channel, scheduler):
        """Test cancelling a waiting job skips every pending step and cancels the resume."""
        job = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1",
            steps=[
                _send("+1555"),
                {"step_type": "wait", "duration_seconds": 900},
                _send("+1666"),
                _send("+1777"),
            ],
        )
        job = await dispatcher.execute_job(job.id)
        assert job.status == JobStatus.ACTIVE
        task_id = job.scheduled_task_id

        job = await dispatcher.cancel_job(job.id)

        assert job.status == JobStatus.CANCELLED
        assert [s.status for s in job.ordered_steps()] == [
            StepStatus.COMPLETED, StepStatus.COMPLETED, StepStatus.SKIPPED, StepStatus.SKIPPED
        ]
        assert scheduler.cancelled == [task_id]

        await dispatcher.execute_job(job.id)
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, dispatcher):
        """Test cancelling a cancelled job is a no-op."""
        job = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])
        await dispatcher.cancel_job(job.id)
        job = await dispatcher.cancel_job(job.id)
        assert job.status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_completed_job_rejected(self, dispatcher):
        """Test a completed job cannot be cancelled."""
        job = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])
        await dispatcher.execute_job(job.id)

        with pytest.raises(ValidationError) as exc_info:
            await dispatcher.cancel_job(job.id)
        assert exc_info.value.context["job_id"] == job.id

    @pytest.mark.asyncio
    async def test_retry_then_exhaust(self, repository):
        """Test a failed job can be retried until its retries run out."""
        channel = FakeChannel(failing_recipients={"+1bad"})
        dispatcher = NotificationDispatcher(repository, channel, max_retries=1)
        job = await dispatcher.create_job(
            WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1good"), _send("+1bad")]
        )
        await dispatcher.execute_job(job.id)

        job = await dispatcher.retry_job(job.id)
        assert job.status == JobStatus.PENDING
        assert job.retry_count == 1
        assert job.error_message is None
        assert [s.status for s in job.ordered_steps()] == [StepStatus.COMPLETED, StepStatus.PENDING]

        job = await dispatcher.execute_job(job.id)
        assert job.status == JobStatus.FAILED
        assert len(channel.sent) == 1

        with pytest.raises(RetryExhaustedError):
            await dispatcher.retry_job(job.id)

    @pytest.mark.asyncio
    async def test_retry_requires_failed_job(self, dispatcher):
        """Test only failed jobs can be retried."""
        job = await dispatcher.create_job(WorkflowType.FOLLOW_UP, "org-1", steps=[_send("+1555")])
        with pytest.raises(ValidationError):
            await dispatcher.retry_job(job.id)

    @pytest.mark.asyncio
    async def test_get_unknown_job(self, dispatcher):
        """Test loading an unknown job raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await dispatcher.get_job("nope")
