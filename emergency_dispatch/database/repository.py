"""
Persistence contract for organizations, templates, dispatch jobs and
delivery records, plus the in-memory implementation.
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog

from emergency_dispatch.core.exceptions import NotFoundError
from emergency_dispatch.database.seed_data import default_templates
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.delivery import DeliveryRecord
from emergency_dispatch.models.dispatch import DispatchJob, DispatchStep, OrganizationConfig
from emergency_dispatch.models.template import NotificationTemplate

logger = structlog.get_logger(__name__)


class DispatchRepository(ABC):
    """Store used by the dispatcher and delivery tracker."""

    @abstractmethod
    async def get_organization(self, organization_id: str) -> Optional[OrganizationConfig]:
        ...

    @abstractmethod
    async def save_organization(self, organization: OrganizationConfig) -> OrganizationConfig:
        ...

    @abstractmethod
    async def get_template(
        self, template_key: str, language: Language
    ) -> Optional[NotificationTemplate]:
        """Active template for a key and language."""

    @abstractmethod
    async def save_template(self, template: NotificationTemplate) -> NotificationTemplate:
        ...

    @abstractmethod
    async def create_job(self, job: DispatchJob) -> DispatchJob:
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[DispatchJob]:
        ...

    @abstractmethod
    async def update_job(self, job: DispatchJob) -> DispatchJob:
        """Persist job-level fields and every step."""

    @abstractmethod
    async def update_step(self, job_id: str, step: DispatchStep) -> DispatchStep:
        ...

    @abstractmethod
    async def save_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        ...

    @abstractmethod
    async def get_delivery(self, message_id: str) -> Optional[DeliveryRecord]:
        ...

    @abstractmethod
    async def update_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        ...

    @abstractmethod
    async def list_deliveries(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DeliveryRecord]:
        """Delivery records sent inside [since, until]."""

    @abstractmethod
    async def list_jobs(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DispatchJob]:
        """Jobs with their steps, created inside [since, until], oldest first."""


class InMemoryDispatchRepository(DispatchRepository):
    """
    Repository backed by process memory.

    Every read and write goes through a deep copy so callers never share
    mutable state with the store.
    """

    def __init__(self, seed_templates: bool = True):
        self._organizations: Dict[str, OrganizationConfig] = {}
        self._templates: Dict[Tuple[str, Language], NotificationTemplate] = {}
        self._jobs: Dict[str, DispatchJob] = {}
        self._deliveries: Dict[str, DeliveryRecord] = {}
        self._lock = asyncio.Lock()

        if seed_templates:
            for template in default_templates():
                self._templates[(template.template_key, template.language_code)] = template

    async def get_organization(self, organization_id: str) -> Optional[OrganizationConfig]:
        organization = self._organizations.get(organization_id)
        return organization.model_copy(deep=True) if organization else None

    async def save_organization(self, organization: OrganizationConfig) -> OrganizationConfig:
        self._organizations[organization.id] = organization.model_copy(deep=True)
        return organization

    async def get_template(
        self, template_key: str, language: Language
    ) -> Optional[NotificationTemplate]:
        template = self._templates.get((template_key, Language(language)))
        if template is None or not template.is_active:
            return None
        return template.model_copy(deep=True)

    async def save_template(self, template: NotificationTemplate) -> NotificationTemplate:
        self._templates[(template.template_key, template.language_code)] = template.model_copy(deep=True)
        return template

    async def create_job(self, job: DispatchJob) -> DispatchJob:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
        logger.debug("Dispatch job stored", job_id=job.id, steps=len(job.steps))
        return job

    async def get_job(self, job_id: str) -> Optional[DispatchJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update_job(self, job: DispatchJob) -> DispatchJob:
        async with self._lock:
            if job.id not in self._jobs:
                raise NotFoundError(f"Job '{job.id}' not found", resource="job")
            self._jobs[job.id] = job.model_copy(deep=True)
        return job

    async def update_step(self, job_id: str, step: DispatchStep) -> DispatchStep:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job '{job_id}' not found", resource="job")
            job.steps = [
                step.model_copy(deep=True) if existing.id == step.id else existing
                for existing in job.steps
            ]
        return step

    async def save_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        self._deliveries[record.message_id] = record.model_copy(deep=True)
        return record

    async def get_delivery(self, message_id: str) -> Optional[DeliveryRecord]:
        record = self._deliveries.get(message_id)
        return record.model_copy(deep=True) if record else None

    async def update_delivery(self, record: DeliveryRecord) -> DeliveryRecord:
        if record.message_id not in self._deliveries:
            raise NotFoundError(f"Delivery '{record.message_id}' not found", resource="delivery")
        self._deliveries[record.message_id] = record.model_copy(deep=True)
        return record

    async def list_deliveries(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DeliveryRecord]:
        until = until or datetime.utcnow()
        return [
            record.model_copy(deep=True)
            for record in self._deliveries.values()
            if since <= record.sent_at <= until
            and (organization_id is None or record.organization_id == organization_id)
        ]

    async def list_jobs(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> List[DispatchJob]:
        until = until or datetime.utcnow()
        jobs = [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if since <= job.created_at <= until
            and (organization_id is None or job.organization_id == organization_id)
        ]
        return sorted(jobs, key=lambda job: job.created_at)
