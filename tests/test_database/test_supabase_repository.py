"""
Tests for the Supabase repository using a mocked client.
"""
from datetime import datetime
from unittest.mock import Mock

import pytest

from emergency_dispatch.database.supabase_repository import RepositoryError, SupabaseDispatchRepository
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.dispatch import (
    DispatchJob,
    DispatchStep,
    SendNotificationConfig,
    WaitConfig,
    WorkflowType,
)


def _client(*responses):
    """Supabase client whose query builder returns the given rows in order."""
    query = Mock()
    for method in ("select", "eq", "in_", "order", "limit", "gte", "lte", "insert", "upsert", "update"):
        getattr(query, method).return_value = query
    query.execute.side_effect = [Mock(data=rows) for rows in responses]

    client = Mock()
    client.table.return_value = query
    return client, query


class TestSupabaseDispatchRepository:
    """Tests for SupabaseDispatchRepository."""

    @pytest.mark.asyncio
    async def test_get_organization(self):
        """Test an organization row is parsed."""
        client, query = _client([{
            "id": "org-1",
            "business_name": "Acme Heating",
            "industry_code": "hvac",
            "contact_phone": "+15550000001",
            "timezone": "America/New_York",
        }])
        repository = SupabaseDispatchRepository(client=client)

        organization = await repository.get_organization("org-1")

        assert organization.business_name == "Acme Heating"
        client.table.assert_called_with("organizations")
        query.eq.assert_called_with("id", "org-1")

    @pytest.mark.asyncio
    async def test_missing_template(self):
        """Test an empty result returns None."""
        client, query = _client([])
        repository = SupabaseDispatchRepository(client=client)

        assert await repository.get_template("emergency_status_update", Language.ES) is None
        query.eq.assert_any_call("language_code", "es")
        query.eq.assert_any_call("is_active", True)

    @pytest.mark.asyncio
    async def test_job_round_trip_through_rows(self):
        """Test job rows written by create_job can be read back by get_job."""
        job = DispatchJob(
            organization_id="org-1",
            workflow_type=WorkflowType.FOLLOW_UP,
            steps=[
                DispatchStep(order=0, config=SendNotificationConfig(
                    template_key="follow_up", recipient="+15550000002"
                )),
                DispatchStep(order=1, config=WaitConfig(duration_seconds=60)),
            ],
        )
        writer, write_query = _client([], [])
        await SupabaseDispatchRepository(client=writer).create_job(job)

        job_row = write_query.insert.call_args_list[0].args[0]
        step_rows = write_query.insert.call_args_list[1].args[0]
        assert "steps" not in job_row
        assert [row["step_type"] for row in step_rows] == ["send_notification", "wait"]

        reader, _ = _client([job_row], step_rows)
        loaded = await SupabaseDispatchRepository(client=reader).get_job(job.id)

        assert loaded.id == job.id
        assert [step.step_type.value for step in loaded.ordered_steps()] == ["send_notification", "wait"]

    @pytest.mark.asyncio
    async def test_list_jobs_loads_steps_in_one_query(self):
        """Test listed jobs get their steps from a single dispatch_steps query."""
        job = DispatchJob(
            organization_id="org-1",
            workflow_type=WorkflowType.FOLLOW_UP,
            steps=[DispatchStep(order=0, config=WaitConfig(duration_seconds=60))],
        )
        writer, write_query = _client([], [])
        await SupabaseDispatchRepository(client=writer).create_job(job)
        job_row = write_query.insert.call_args_list[0].args[0]
        step_rows = write_query.insert.call_args_list[1].args[0]

        reader, query = _client([job_row], step_rows)
        jobs = await SupabaseDispatchRepository(client=reader).list_jobs(
            datetime(2024, 3, 1), organization_id="org-1"
        )

        assert [loaded.id for loaded in jobs] == [job.id]
        assert jobs[0].steps[0].step_type.value == "wait"
        query.gte.assert_called_with("created_at", "2024-03-01T00:00:00")
        query.eq.assert_called_with("organization_id", "org-1")
        query.in_.assert_called_with("job_id", [job.id])

    @pytest.mark.asyncio
    async def test_list_jobs_empty_window(self):
        """Test an empty window skips the steps query."""
        client, query = _client([])

        assert await SupabaseDispatchRepository(client=client).list_jobs(datetime(2024, 3, 1)) == []
        query.in_.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_failures_raise_repository_error(self):
        """Test client errors are wrapped in RepositoryError."""
        client = Mock()
        client.table.side_effect = RuntimeError("connection reset")
        repository = SupabaseDispatchRepository(client=client)

        with pytest.raises(RepositoryError) as exc_info:
            await repository.get_job("job-1")
        assert "connection reset" in str(exc_info.value)
