from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from emergency_dispatch.models.dispatch import (
    DispatchJob,
    JobStatus,
    StepStatus,
    StepType,
    WorkflowType,
)


class CreateJobRequest(BaseModel):
    """Create dispatch job request schema"""
    workflow_type: WorkflowType
    organization_id: str = Field(min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    scheduled_at: Optional[datetime] = None
    steps: Optional[List[Dict[str, Any]]] = None
    execute: bool = False


class DispatchStepResponse(BaseModel):
    """Dispatch step response schema"""
    id: str
    order: int
    step_type: StepType
    status: StepStatus
    config: Dict[str, Any]
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class DispatchJobResponse(BaseModel):
    """Dispatch job response schema"""
    id: str
    organization_id: str
    workflow_type: WorkflowType
    status: JobStatus
    retry_count: int
    max_retries: int
    steps: List[DispatchStepResponse] = []
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    scheduled_at: datetime
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: DispatchJob) -> "DispatchJobResponse":
        return cls(
            id=job.id,
            organization_id=job.organization_id,
            workflow_type=job.workflow_type,
            status=job.status,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            steps=[
                DispatchStepResponse(
                    id=step.id,
                    order=step.order,
                    step_type=step.step_type,
                    status=step.status,
                    config=step.config.model_dump(mode="json"),
                    result=step.result,
                    error_message=step.error_message,
                    started_at=step.started_at,
                    completed_at=step.completed_at,
                )
                for step in job.ordered_steps()
            ],
            metadata=job.metadata,
            error_message=job.error_message,
            scheduled_at=job.scheduled_at,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
        )
