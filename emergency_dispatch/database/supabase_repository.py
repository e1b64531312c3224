"""
Supabase implementation of the dispatch repository.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from supabase import Client, create_client

from emergency_dispatch.core.config import get_settings
from emergency_dispatch.core.exceptions import DispatchError, NotFoundError
from emergency_dispatch.database.repository import DispatchRepository
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.delivery import DeliveryRecord
from emergency_dispatch.models.dispatch import DispatchJob, DispatchStep, OrganizationConfig
from emergency_dispatch.models.template import NotificationTemplate

logger = structlog.get_logger(__name__)


class RepositoryError(DispatchError):
    """A Supabase query failed."""


def get_supabase_client() -> Client:
    """
    Get Supabase client for database operations.

    Raises:
        RepositoryError: If Supabase credentials are not configured
    """
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise RepositoryError("Supabase URL and key must be configured")
    return create_client(settings.supabase_url, settings.supabase_key)


class SupabaseDispatchRepository(DispatchRepository):
    """Repository backed by Supabase tables"""

    def __init__(self, client: Optional[Client] = None):
        self.supabase = client or get_supabase_client()

    def _step_row(self, job_id: str, step: DispatchStep) -> Dict[str, Any]:
        row = step.model_dump(mode="json")
        row["job_id"] = job_id
        row["step_type"] = step.step_type.value
        return row

    def _job_row(self, job: DispatchJob) -> Dict[str, Any]:
        return job.model_dump(mode="json", exclude={"steps"})

    def _step_from_row(self, row: Dict[str, Any]) -> DispatchStep:
        return DispatchStep(**{k: v for k, v in row.items() if k not in ("job_id", "step_type")})

    async def get_organization(self, organization_id: str) -> Optional[OrganizationConfig]:
        """Get organization by ID"""
        try:
            response = self.supabase.table('organizations').select(
                'id, business_name, industry_code, contact_phone, timezone'
            ).eq('id', organization_id).execute()

            if response.data:
                return OrganizationConfig(**response.data[0])
            return None
        except Exception as e:
            raise RepositoryError(f"Failed to get organization: {str(e)}")

    async def save_organization(self, organization: OrganizationConfig) -> OrganizationConfig:
        """Insert or update an organization"""
        try:
            self.supabase.table('organizations').upsert(
                organization.model_dump(mode="json")
            ).execute()
            return organization
        except Exception as e:
            raise RepositoryError(f"Failed to save organization: {str(e)}")

    async def get_template(
        self, template_key: str, language: Language
    ) -> Optional[NotificationTemplate]:
        """Get the newest active template for a key and language"""
        try:
            response = self.supabase.table('notification_templates').select(
                '*'
            ).eq('template_key', template_key).eq(
                'language_code', Language(language).value
            ).eq('is_active', True).order('version', desc=True).limit(1).execute()

            if response.data:
                return NotificationTemplate(**response.data[0])
            return None
        except Exception as e:
            raise RepositoryError(f"Failed to get template: {str(e)}")

    async def save_template(self, template: NotificationTemplate) -> NotificationTemplate:
        """Insert or update a template"""
        try:
            row = template.model_dump(mode="json")
            row["variables"] = sorted(template.variables)
            self.supabase.table('notification_templates').upsert(row).execute()
            return template
        except Exception as e:
            raise RepositoryError(f"Failed to save template: {str(e)}")

    async def create_job(self, job: DispatchJob) -> DispatchJob:
        """Create a dispatch job and its steps"""
        try:
            self.supabase.table('dispatch_jobs').insert(self._job_row(job)).execute()
            if job.steps:
                self.supabase.table('dispatch_steps').insert(
                    [self._step_row(job.id, step) for step in job.steps]
                ).execute()

            logger.info("Dispatch job created", job_id=job.id, workflow_type=job.workflow_type.value)
            return job
        except Exception as e:
            raise RepositoryError(f"Failed to create dispatch job: {str(e)}")

    async def get_job(self, job_id: str) -> Optional[DispatchJob]:
        """Get dispatch job with its steps"""
        try:
            response = self.supabase.table('dispatch_jobs').select(
                '*'
            ).eq('id', job_id).execute()
            if not response.data:
                return None

            steps_response = self.supabase.table('dispatch_steps').select(
                '*'
            ).eq('job_id', job_id).order('order').execute()

            steps = [self._step_from_row(row) for row in steps_response.data]
            return DispatchJob(**response.data[0], steps=steps)
        except Exception as e:
            raise RepositoryError(f"Failed to get dispatch job: {str(e)}")

    async def update_job(self, job: DispatchJob) -> DispatchJob:
        """Update job-level fields and every step"""
        try:
            response = self.supabase.table('dispatch_jobs').update(
                self._job_row(job)
            ).eq('id', job.id).execute()

            if not response.data:
                raise NotFoundError(f"Job '{job.id}' not found", resource="job")

            if job.steps:
                self.supabase.table('dispatch_steps').upsert(
                    [self._step_row(job.id, step) for step in job.steps]
                ).execute()
            return job
        except NotFoundError:
            raise
        except Exception as e:
            raise RepositoryError(f"Failed to update dispatch job: {str(e)}")

    async def update_step(self, job_id: str, step: DispatchStep) -> DispatchStep:
        """Update a single step"""
        try:
            self.supabase.table('dispatch_steps').update(
                self._step_row(job_id, step)
            ).eq('id', step.id).execute()
            return step
        except Exception as e:
            raise RepositoryError(f"Failed to update dispatch step: {str(e)}")

    async def save_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        """Insert a delivery record"""
        try:
            self.supabase.table('delivery_records').insert(
                record.model_dump(mode="json")
            ).execute()
            return record
        except Exception as e:
            raise RepositoryError(f"Failed to save delivery record: {str(e)}")

    async def get_delivery(self, message_id: str) -> Optional[DeliveryRecord]:
        """Get delivery record by message ID"""
        try:
            response = self.supabase.table('delivery_records').select(
                '*'
            ).eq('message_id', message_id).execute()

            if response.data:
                return DeliveryRecord(**response.data[0])
            return None
        except Exception as e:
            raise RepositoryError(f"Failed to get delivery record: {str(e)}")

    async def update_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        """Update delivery status fields"""
        try:
            response = self.supabase.table('delivery_records').update({
                'status': record.status.value,
                'delivered_at': record.delivered_at.isoformat() if record.delivered_at else None,
                'error_message': record.error_message,
            }).eq('message_id', record.message_id).execute()

            if not response.data:
                raise NotFoundError(f"Delivery '{record.message_id}' not found", resource="delivery")
            return record
        except NotFoundError:
            raise
        except Exception as e:
            raise RepositoryError(f"Failed to update delivery record: {str(e)}")

    async def list_deliveries(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DeliveryRecord]:
        """List delivery records sent inside a window"""
        try:
            query = self.supabase.table('delivery_records').select('*').gte(
                'sent_at', since.isoformat()
            ).lte('sent_at', (until or datetime.utcnow()).isoformat())

            if organization_id:
                query = query.eq('organization_id', organization_id)

            response = query.order('sent_at').execute()
            return [DeliveryRecord(**row) for row in response.data]
        except Exception as e:
            raise RepositoryError(f"Failed to list delivery records: {str(e)}")

    async def list_jobs(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DispatchJob]:
        """List dispatch jobs created inside a window, with their steps"""
        try:
            query = self.supabase.table('dispatch_jobs').select('*').gte(
                'created_at', since.isoformat()
            ).lte('created_at', (until or datetime.utcnow()).isoformat())

            if organization_id:
                query = query.eq('organization_id', organization_id)

            job_rows = query.order('created_at').execute().data
            if not job_rows:
                return []

            steps_response = self.supabase.table('dispatch_steps').select(
                '*'
            ).in_('job_id', [row['id'] for row in job_rows]).order('order').execute()

            steps_by_job: Dict[str, List[DispatchStep]] = {}
            for row in steps_response.data:
                steps_by_job.setdefault(row['job_id'], []).append(self._step_from_row(row))

            return [DispatchJob(**row, steps=steps_by_job.get(row['id'], [])) for row in job_rows]
        except Exception as e:
            raise RepositoryError(f"Failed to list dispatch jobs: {str(e)}")
