"""
Tests for the in-memory dispatch repository.
"""
import pytest
from datetime import datetime, timedelta

from emergency_dispatch.core.exceptions import NotFoundError
from emergency_dispatch.database.repository import InMemoryDispatchRepository
from emergency_dispatch.database.seed_data import (
    CUSTOMER_CONFIRMATION_TEMPLATE,
    TECHNICIAN_ALERT_TEMPLATE,
)
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.delivery import DeliveryRecord
from emergency_dispatch.models.dispatch import (
    DispatchJob,
    DispatchStep,
    StepStatus,
    WaitConfig,
    WorkflowType,
)
from emergency_dispatch.models.template import NotificationTemplate


def _job() -> DispatchJob:
    return DispatchJob(
        organization_id="org-1",
        workflow_type=WorkflowType.FOLLOW_UP,
        steps=[DispatchStep(order=0, config=WaitConfig(duration_seconds=0))],
    )


class TestInMemoryDispatchRepository:
    """Tests for InMemoryDispatchRepository."""

    def setup_method(self):
        """Set up test fixtures."""
        self.repository = InMemoryDispatchRepository()

    @pytest.mark.asyncio
    async def test_seeded_templates(self):
        """Test default templates are available after construction."""
        assert await self.repository.get_template(CUSTOMER_CONFIRMATION_TEMPLATE, Language.ES)
        assert await self.repository.get_template(TECHNICIAN_ALERT_TEMPLATE, Language.EN)
        assert await self.repository.get_template(TECHNICIAN_ALERT_TEMPLATE, Language.ES) is None

    @pytest.mark.asyncio
    async def test_unseeded_repository_is_empty(self):
        """Test seeding can be turned off."""
        repository = InMemoryDispatchRepository(seed_templates=False)
        assert await repository.get_template(TECHNICIAN_ALERT_TEMPLATE, Language.EN) is None

    @pytest.mark.asyncio
    async def test_inactive_template_is_hidden(self):
        """Test inactive templates are not returned."""
        await self.repository.save_template(NotificationTemplate(
            template_key="survey", language_code=Language.EN, body="x", is_active=False,
        ))
        assert await self.repository.get_template("survey", Language.EN) is None

    @pytest.mark.asyncio
    async def test_reads_return_copies(self):
        """Test mutating a loaded job does not change the stored job."""
        job = _job()
        await self.repository.create_job(job)

        loaded = await self.repository.get_job(job.id)
        loaded.steps[0].status = StepStatus.FAILED

        stored = await self.repository.get_job(job.id)
        assert stored.steps[0].status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_update_step(self):
        """Test a single step can be persisted."""
        job = _job()
        await self.repository.create_job(job)

        step = job.steps[0]
        step.status = StepStatus.COMPLETED
        await self.repository.update_step(job.id, step)

        stored = await self.repository.get_job(job.id)
        assert stored.steps[0].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_missing_job_raises(self):
        """Test updating an unknown job raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await self.repository.update_job(_job())

    @pytest.mark.asyncio
    async def test_list_deliveries_by_window_and_organization(self):
        """Test delivery listing filters by time window and organization."""
        now = datetime.utcnow()
        old = DeliveryRecord(
            recipient="+1", language_used=Language.EN, template_key="t",
            organization_id="org-1", sent_at=now - timedelta(days=2),
        )
        recent = DeliveryRecord(
            recipient="+1", language_used=Language.EN, template_key="t",
            organization_id="org-1", sent_at=now - timedelta(minutes=5),
        )
        other_org = DeliveryRecord(
            recipient="+1", language_used=Language.EN, template_key="t",
            organization_id="org-2", sent_at=now - timedelta(minutes=5),
        )
        for record in (old, recent, other_org):
            await self.repository.save_delivery(record)

        records = await self.repository.list_deliveries(now - timedelta(hours=1))
        assert {r.message_id for r in records} == {recent.message_id, other_org.message_id}

        records = await self.repository.list_deliveries(
            now - timedelta(hours=1), organization_id="org-1"
        )
        assert [r.message_id for r in records] == [recent.message_id]

    @pytest.mark.asyncio
    async def test_list_jobs_by_window_and_organization(self):
        """Test job listing filters by creation window and organization, oldest first."""
        now = datetime.utcnow()
        old = _job()
        old.created_at = now - timedelta(days=2)
        newer = _job()
        newer.created_at = now - timedelta(minutes=5)
        older = _job()
        older.created_at = now - timedelta(minutes=30)
        other_org = _job()
        other_org.organization_id = "org-2"
        other_org.created_at = now - timedelta(minutes=5)
        for job in (old, newer, older, other_org):
            await self.repository.create_job(job)

        jobs = await self.repository.list_jobs(now - timedelta(hours=1), organization_id="org-1")
        assert [job.id for job in jobs] == [older.id, newer.id]
        assert len(jobs[0].steps) == 1

        jobs = await self.repository.list_jobs(now - timedelta(hours=1))
        assert {job.id for job in jobs} == {older.id, newer.id, other_org.id}
