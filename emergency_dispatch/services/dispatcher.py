"""
Notification dispatcher.

Creates dispatch jobs, executes their steps in order and handles retry,
cancellation and the emergency alert workflow.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional, Tuple

import structlog

from emergency_dispatch.core.exceptions import (
    DispatchError,
    NotFoundError,
    ProviderError,
    RetryExhaustedError,
    StepTimeoutError,
    ValidationError,
)
from emergency_dispatch.core.logging import correlation_context, log_business_event
from emergency_dispatch.database.repository import DispatchRepository
from emergency_dispatch.database.seed_data import (
    CUSTOMER_CONFIRMATION_TEMPLATE,
    STATUS_UPDATE_TEMPLATE,
    TECHNICIAN_ALERT_TEMPLATE,
)
from emergency_dispatch.models.assessment import EmergencyAssessment, Language
from emergency_dispatch.models.delivery import DeliveryOutcome, DeliveryRecord, DeliveryStatus
from emergency_dispatch.models.dispatch import (
    CallDetails,
    ConditionConfig,
    DispatchJob,
    DispatchResult,
    DispatchStep,
    JobStatus,
    NotificationRole,
    SendNotificationConfig,
    StepStatus,
    StepType,
    WaitConfig,
    WebhookConfig,
    WorkflowType,
)
from emergency_dispatch.models.template import NotificationTemplate
from emergency_dispatch.services.audit import AuditTrail
from emergency_dispatch.services.channels import ChannelResult, NotificationChannel, WebhookClient
from emergency_dispatch.services.delivery_tracker import DeliveryTracker
from emergency_dispatch.services.scheduler import Scheduler
from emergency_dispatch.services.workflows import build_steps
from emergency_dispatch.utils.template_rendering import render

logger = structlog.get_logger(__name__)

PREDICATE_CHECKS: Dict[str, Callable[[Mapping[str, Any]], bool]] = {
    "has_emergency_flag": lambda metadata: metadata.get("emergency_type") is not None,
    "has_phone_number": lambda metadata: bool(metadata.get("phone_number")),
    "appointment_exists": lambda metadata: metadata.get("appointment_id") is not None,
}


class NotificationDispatcher:
    """Builds and runs notification workflows for dispatch jobs."""

    def __init__(
        self,
        repository: DispatchRepository,
        channel: NotificationChannel,
        tracker: Optional[DeliveryTracker] = None,
        scheduler: Optional[Scheduler] = None,
        webhook_client: Optional[WebhookClient] = None,
        audit: Optional[AuditTrail] = None,
        default_language: Language = Language.EN,
        step_timeout_seconds: float = 30.0,
        max_retries: int = 3,
        status_update_delay_seconds: int = 900,
    ):
        self.repository = repository
        self.channel = channel
        self.tracker = tracker or DeliveryTracker(repository)
        self.scheduler = scheduler
        self.webhook_client = webhook_client or WebhookClient(timeout=step_timeout_seconds)
        self.audit = audit
        self.default_language = Language(default_language)
        self.step_timeout_seconds = step_timeout_seconds
        self.max_retries = max_retries
        self.status_update_delay_seconds = status_update_delay_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

        if self.scheduler is not None:
            self.scheduler.bind(self.execute_job)

        # Valid job state transitions
        self.valid_transitions = {
            JobStatus.PENDING: [JobStatus.ACTIVE, JobStatus.CANCELLED, JobStatus.FAILED],
            JobStatus.ACTIVE: [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED],
            JobStatus.FAILED: [JobStatus.PENDING, JobStatus.CANCELLED],
            JobStatus.COMPLETED: [],  # Terminal state
            JobStatus.CANCELLED: [],  # Terminal state
        }

    def _validate_state_transition(self, current_status: JobStatus, new_status: JobStatus) -> bool:
        """Validate if state transition is allowed"""
        if current_status == new_status:
            return True
        return new_status in self.valid_transitions.get(current_status, [])

    def _transition(self, job: DispatchJob, new_status: JobStatus) -> None:
        if not self._validate_state_transition(job.status, new_status):
            raise ValidationError(
                f"Invalid job transition from {job.status.value} to {new_status.value}",
                field="status",
                job_id=job.id,
            )
        job.status = new_status

    @asynccontextmanager
    async def _job_lock(self, job_id: str) -> AsyncIterator[None]:
        """Hold the per-job lock. The entry is dropped when no caller holds or awaits it."""
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._lock_users[job_id] = self._lock_users.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[job_id] -= 1
            if not self._lock_users[job_id]:
                del self._lock_users[job_id]
                self._locks.pop(job_id, None)

    def _audit(self, event_type: str, **payload: Any) -> None:
        if self.audit is not None:
            self.audit.record(event_type, **payload)

    async def get_job(self, job_id: str) -> DispatchJob:
        """
        Load a job.

        Raises:
            NotFoundError: If the job does not exist
        """
        job = await self.repository.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job '{job_id}' not found", resource="job")
        return job

    async def create_job(
        self,
        workflow_type: WorkflowType,
        organization_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        scheduled_at: Optional[datetime] = None,
        steps: Optional[list] = None,
    ) -> DispatchJob:
        """
        Create a pending job with its steps.

        Args:
            workflow_type: Workflow type, selects the default step builder
            organization_id: Owning organization
            metadata: Values used by step builders and condition predicates
            scheduled_at: When the job is meant to run
            steps: Explicit step definitions replacing the default steps

        Returns:
            The persisted pending job

        Raises:
            ValidationError: If a step definition is invalid
        """
        metadata = dict(metadata or {})
        job = DispatchJob(
            organization_id=organization_id,
            workflow_type=WorkflowType(workflow_type),
            steps=build_steps(workflow_type, metadata, steps),
            max_retries=self.max_retries,
            metadata=metadata,
            scheduled_at=scheduled_at or datetime.utcnow(),
        )
        await self.repository.create_job(job)

        logger.info(
            "Dispatch job created",
            job_id=job.id,
            workflow_type=job.workflow_type.value,
            organization_id=organization_id,
            steps=len(job.steps),
        )
        self._audit(
            "dispatch_job_created",
            job_id=job.id,
            workflow_type=job.workflow_type.value,
            organization_id=organization_id,
        )
        return job

    async def execute_job(self, job_id: str) -> DispatchJob:
        """
        Run the pending steps of a job in order.

        Only one execution per job runs at a time. Terminal jobs are returned
        unchanged. A wait step with a scheduler suspends execution and the
        scheduler re-enters this method later.

        Raises:
            NotFoundError: If the job does not exist
        """
        async with self._job_lock(job_id):
            job = await self.get_job(job_id)
            if job.is_terminal:
                logger.info("Job already finished, nothing to execute", job_id=job_id, status=job.status.value)
                return job

            with correlation_context(organization_id=job.organization_id, job_id=job.id):
                return await self._run(job)

    async def _run(self, job: DispatchJob) -> DispatchJob:
        if job.status == JobStatus.PENDING:
            self._transition(job, JobStatus.ACTIVE)
            job.started_at = job.started_at or datetime.utcnow()
            job.scheduled_task_id = None
            await self.repository.update_job(job)
            logger.info("Dispatch job started", workflow_type=job.workflow_type.value)

        for step in job.ordered_steps():
            if step.status != StepStatus.PENDING:
                continue

            current = await self.get_job(job.id)
            if current.status == JobStatus.CANCELLED:
                logger.info("Dispatch job cancelled, stopping execution", step_id=step.id)
                return current

            suspended = await self._execute_step(job, step)
            if suspended:
                await self.repository.update_job(job)
                logger.info("Dispatch job suspended", task_id=job.scheduled_task_id)
                return job

            if (
                step.status == StepStatus.FAILED
                and isinstance(step.config, SendNotificationConfig)
                and step.config.halt_on_failure
            ):
                logger.warning("Notification step failed, halting job", step_id=step.id)
                break

        return await self._finish(job)

    async def _finish(self, job: DispatchJob) -> DispatchJob:
        current = await self.get_job(job.id)
        if current.status == JobStatus.CANCELLED:
            return current

        failed = [step for step in job.steps if step.status == StepStatus.FAILED]
        unfinished = [step for step in job.steps if step.status in (StepStatus.PENDING, StepStatus.EXECUTING)]

        if not failed and not unfinished:
            self._transition(job, JobStatus.COMPLETED)
            job.error_message = None
        else:
            self._transition(job, JobStatus.FAILED)
            job.error_message = "; ".join(
                f"step {step.order} ({step.step_type.value}): {step.error_message}"
                for step in failed
            ) or "Job stopped before all steps ran"

        job.completed_at = datetime.utcnow()
        job.scheduled_task_id = None
        await self.repository.update_job(job)

        log_business_event(
            "dispatch_job_finished",
            job_id=job.id,
            workflow_type=job.workflow_type.value,
            status=job.status.value,
            failed_steps=len(failed),
        )
        self._audit("dispatch_job_finished", job_id=job.id, status=job.status.value)
        return job

    async def _execute_step(self, job: DispatchJob, step: DispatchStep) -> bool:
        """Execute one step and persist it. Returns True when the job suspends."""
        step.status = StepStatus.EXECUTING
        step.started_at = datetime.utcnow()
        await self.repository.update_step(job.id, step)

        suspended = False
        try:
            config = step.config
            if isinstance(config, SendNotificationConfig):
                step.result = await self._send_notification(job, config)
                step.status = StepStatus.COMPLETED
            elif isinstance(config, WaitConfig):
                suspended = await self._wait(job, step, config)
                step.status = StepStatus.COMPLETED
            elif isinstance(config, ConditionConfig):
                met = self._evaluate_condition(job, config)
                step.result = {"condition_met": met}
                step.status = StepStatus.COMPLETED if met else StepStatus.SKIPPED
            elif isinstance(config, WebhookConfig):
                step.result = await self._call_webhook(job, step, config)
                step.status = StepStatus.COMPLETED

        except DispatchError as e:
            step.status = StepStatus.FAILED
            step.error_message = str(e)
            logger.error(
                "Dispatch step failed",
                step_id=step.id,
                step_type=step.step_type.value,
                error=str(e),
            )
        except Exception as e:
            step.status = StepStatus.FAILED
            step.error_message = f"Unexpected error: {str(e)}"
            logger.error(
                "Unexpected error in dispatch step",
                step_id=step.id,
                step_type=step.step_type.value,
                error=str(e),
                exc_info=True,
            )

        step.completed_at = datetime.utcnow()
        await self.repository.update_step(job.id, step)
        return suspended

    async def _resolve_template(
        self, template_key: str, language: Language
    ) -> Tuple[NotificationTemplate, Language]:
        template = await self.repository.get_template(template_key, language)
        if template is not None:
            return template, language

        if language != self.default_language:
            logger.warning(
                "Template missing for language, falling back",
                template_key=template_key,
                language=language.value,
                fallback_language=self.default_language.value,
            )
            template = await self.repository.get_template(template_key, self.default_language)
            if template is not None:
                return template, self.default_language

        raise NotFoundError(f"Template '{template_key}' not found", resource="template")

    async def _send_notification(
        self, job: DispatchJob, config: SendNotificationConfig
    ) -> Dict[str, Any]:
        template, language_used = await self._resolve_template(config.template_key, config.language)
        body = render(template.body, config.variables)

        error: Optional[DispatchError] = None
        try:
            result = await asyncio.wait_for(
                self.channel.send(config.recipient, body, language_used),
                timeout=self.step_timeout_seconds,
            )
        except asyncio.TimeoutError:
            error = StepTimeoutError(StepType.SEND_NOTIFICATION.value, self.step_timeout_seconds)
            result = ChannelResult(success=False, error=str(error))
        except ProviderError as e:
            error = e
            result = ChannelResult(success=False, error=str(e))

        record = DeliveryRecord(
            recipient=config.recipient,
            channel=getattr(self.channel, "channel_name", "sms"),
            language_used=language_used,
            template_key=config.template_key,
            job_id=job.id,
            organization_id=job.organization_id,
            status=DeliveryStatus.SENT if result.success else DeliveryStatus.FAILED,
            error_message=result.error,
        )
        await self.tracker.record(record)

        if not result.success:
            raise error or ProviderError(
                getattr(self.channel, "channel_name", "sms"),
                result.error or "Notification was not accepted",
            )

        outcome = DeliveryOutcome(
            success=True,
            message_id=record.message_id,
            language_used=language_used,
        )
        return {
            **outcome.model_dump(mode="json"),
            "role": config.role.value,
            "channel_message_id": result.channel_message_id,
        }

    async def _wait(self, job: DispatchJob, step: DispatchStep, config: WaitConfig) -> bool:
        if config.duration_seconds <= 0:
            step.result = {"waited_seconds": 0}
            return False

        if self.scheduler is None:
            await asyncio.sleep(config.duration_seconds)
            step.result = {"waited_seconds": config.duration_seconds}
            return False

        handle = await self.scheduler.schedule(job.id, config.duration_seconds)
        job.scheduled_task_id = handle.id
        step.result = {"task_id": handle.id, "resume_at": handle.run_at.isoformat()}
        return True

    def _evaluate_condition(self, job: DispatchJob, config: ConditionConfig) -> bool:
        try:
            return bool(PREDICATE_CHECKS[config.predicate](job.metadata))
        except Exception as e:
            logger.warning(
                "Condition evaluation failed, skipping step",
                predicate=config.predicate,
                error=str(e),
            )
            return False

    async def _call_webhook(
        self, job: DispatchJob, step: DispatchStep, config: WebhookConfig
    ) -> Dict[str, Any]:
        body = {"job_id": job.id, "step_id": step.id, **config.body}
        try:
            return await asyncio.wait_for(
                self.webhook_client.call(config.url, config.method, config.headers, body),
                timeout=self.step_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise StepTimeoutError(StepType.WEBHOOK.value, self.step_timeout_seconds)

    async def retry_job(self, job_id: str) -> DispatchJob:
        """
        Reset a failed job so it can be executed again.

        Failed steps go back to pending; completed steps are kept.

        Raises:
            NotFoundError: If the job does not exist
            ValidationError: If the job is not failed
            RetryExhaustedError: If the job has no retries left
        """
        async with self._job_lock(job_id):
            job = await self.get_job(job_id)
            if job.status != JobStatus.FAILED:
                raise ValidationError(
                    f"Only failed jobs can be retried (status: {job.status.value})",
                    field="status",
                    job_id=job.id,
                )
            if job.retry_count >= job.max_retries:
                logger.warning(
                    "Dispatch job retries exhausted",
                    job_id=job.id,
                    retry_count=job.retry_count,
                    max_retries=job.max_retries,
                )
                raise RetryExhaustedError(job.id, job.retry_count, job.max_retries)

            self._transition(job, JobStatus.PENDING)
            job.retry_count += 1
            job.error_message = None
            job.completed_at = None
            for step in job.steps:
                if step.status == StepStatus.FAILED:
                    step.status = StepStatus.PENDING
                    step.error_message = None
                    step.result = None
                    step.started_at = None
                    step.completed_at = None

            await self.repository.update_job(job)

        logger.info("Dispatch job reset for retry", job_id=job.id, retry_count=job.retry_count)
        self._audit("dispatch_job_retried", job_id=job.id, retry_count=job.retry_count)
        return job

    async def cancel_job(self, job_id: str) -> DispatchJob:
        """
        Cancel a job. Pending steps become skipped, finished steps are kept.

        Cancelling an already cancelled job is a no-op.

        Raises:
            NotFoundError: If the job does not exist
            ValidationError: If the job already completed
        """
        job = await self.get_job(job_id)
        if job.status == JobStatus.CANCELLED:
            return job

        self._transition(job, JobStatus.CANCELLED)
        job.completed_at = datetime.utcnow()
        for step in job.steps:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED

        if job.scheduled_task_id and self.scheduler is not None:
            await self.scheduler.cancel(job.scheduled_task_id)
        job.scheduled_task_id = None

        await self.repository.update_job(job)
        logger.info("Dispatch job cancelled", job_id=job.id)
        self._audit("dispatch_job_cancelled", job_id=job.id)
        return job

    def _notification_outcome(self, job: DispatchJob, role: NotificationRole) -> DeliveryOutcome:
        """Delivery outcome of the send step for a role, failed when it did not complete."""
        for step in job.ordered_steps():
            config = step.config
            if not isinstance(config, SendNotificationConfig) or config.role != role:
                continue
            if step.status == StepStatus.COMPLETED and step.result:
                return DeliveryOutcome(
                    success=True,
                    message_id=step.result.get("message_id"),
                    language_used=step.result.get("language_used"),
                )
            return DeliveryOutcome(
                success=False,
                language_used=config.language,
                error=step.error_message or f"Notification step {step.status.value}",
            )

        return DeliveryOutcome(success=False, error=f"No {role.value} notification step")

    async def _require_template(self, template_key: str) -> None:
        for language in Language:
            if await self.repository.get_template(template_key, language) is not None:
                return
        raise NotFoundError(
            f"Template '{template_key}' not found in any language", resource="template"
        )

    async def dispatch(
        self,
        assessment: EmergencyAssessment,
        call: CallDetails,
        organization_id: str,
    ) -> DispatchResult:
        """
        Run the emergency alert workflow for an escalated assessment.

        Args:
            assessment: Assessment that requires escalation
            call: Caller details captured during the conversation
            organization_id: Organization handling the call

        Returns:
            Which notifications went out and whether the status update is scheduled

        Raises:
            NotFoundError: If the organization or a required template is missing
        """
        organization = await self.repository.get_organization(organization_id)
        if organization is None:
            raise NotFoundError(f"Organization '{organization_id}' not found", resource="organization")

        for template_key in (
            TECHNICIAN_ALERT_TEMPLATE, CUSTOMER_CONFIRMATION_TEMPLATE, STATUS_UPDATE_TEMPLATE
        ):
            await self._require_template(template_key)

        metadata = {
            "language": assessment.detected_language.value,
            "industry": organization.industry_code.upper(),
            "business_name": organization.business_name,
            "contact_phone": organization.contact_phone,
            "technician_phone": organization.contact_phone,
            "customer_name": call.customer_name,
            "customer_phone": call.customer_phone,
            "phone_number": call.customer_phone,
            "address": call.customer_address or "address not provided",
            "issue": call.issue_description,
            "eta": assessment.estimated_response_time,
            "emergency_type": assessment.urgency_level.value,
            "urgency_score": assessment.urgency_score,
            "status_update_delay_seconds": self.status_update_delay_seconds,
        }

        job = await self.create_job(WorkflowType.EMERGENCY_ALERT, organization_id, metadata)
        job = await self.execute_job(job.id)

        follow_up_scheduled = any(
            isinstance(step.config, WaitConfig) and step.status == StepStatus.COMPLETED
            for step in job.steps
        )

        result = DispatchResult(
            job_id=job.id,
            technician_notification=self._notification_outcome(job, NotificationRole.TECHNICIAN),
            customer_notification=self._notification_outcome(job, NotificationRole.CUSTOMER),
            follow_up_scheduled=follow_up_scheduled,
            job_status=job.status,
        )

        log_business_event(
            "emergency_dispatched",
            job_id=job.id,
            organization_id=organization_id,
            language=assessment.detected_language.value,
            urgency_score=assessment.urgency_score,
            technician_notification=result.technician_notification.success,
            customer_notification=result.customer_notification.success,
        )
        return result
