"""
Dispatch workflow API endpoints.

Create, inspect, execute, cancel and retry notification workflows.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from emergency_dispatch.core.dependencies import get_dispatcher, get_workflow_metrics
from emergency_dispatch.core.exceptions import DispatchError, InternalServerError, map_dispatch_error
from emergency_dispatch.models.dispatch import WorkflowMetrics
from emergency_dispatch.schemas.workflow import CreateJobRequest, DispatchJobResponse
from emergency_dispatch.services.dispatcher import NotificationDispatcher
from emergency_dispatch.services.delivery_tracker import parse_window
from emergency_dispatch.services.workflow_metrics import WorkflowMetricsService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _handle_error(action: str, job_id: str, e: Exception) -> HTTPException:
    if isinstance(e, DispatchError):
        logger.warning(f"Failed to {action} job", job_id=job_id, error=str(e))
        return map_dispatch_error(e)

    logger.error(f"Unexpected error trying to {action} job", job_id=job_id, error=str(e), exc_info=True)
    return InternalServerError(f"Internal server error while trying to {action} job")


@router.post("", response_model=DispatchJobResponse, status_code=201)
async def create_job(
    request: CreateJobRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Create a dispatch job, optionally executing it right away.

    Raises:
        HTTPException: 422 if the step definitions are invalid
    """
    try:
        job = await dispatcher.create_job(
            request.workflow_type,
            request.organization_id,
            metadata=request.metadata,
            scheduled_at=request.scheduled_at,
            steps=request.steps,
        )
        if request.execute:
            job = await dispatcher.execute_job(job.id)
        return DispatchJobResponse.from_job(job)
    except Exception as e:
        raise _handle_error("create", "new", e)


@router.get("/metrics", response_model=WorkflowMetrics)
async def get_workflow_metrics_summary(
    time_range: str = Query(default="7d"),
    organization_id: Optional[str] = Query(default=None),
    service: WorkflowMetricsService = Depends(get_workflow_metrics),
):
    """
    Job totals, success rates and step performance for the last 1h, 24h, 7d or 30d.

    Raises:
        HTTPException: 422 if the time range is not supported
    """
    try:
        return await service.metrics(parse_window(time_range), organization_id=organization_id)
    except DispatchError as e:
        raise map_dispatch_error(e)


@router.get("/{job_id}", response_model=DispatchJobResponse)
async def get_job(job_id: str, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """Get a dispatch job with its steps."""
    try:
        return DispatchJobResponse.from_job(await dispatcher.get_job(job_id))
    except Exception as e:
        raise _handle_error("load", job_id, e)


@router.post("/{job_id}/execute", response_model=DispatchJobResponse)
async def execute_job(job_id: str, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """Run the pending steps of a job."""
    try:
        return DispatchJobResponse.from_job(await dispatcher.execute_job(job_id))
    except Exception as e:
        raise _handle_error("execute", job_id, e)


@router.post("/{job_id}/cancel", response_model=DispatchJobResponse)
async def cancel_job(job_id: str, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """
    Cancel a job.

    Raises:
        HTTPException: 409 if the job already completed
    """
    try:
        return DispatchJobResponse.from_job(await dispatcher.cancel_job(job_id))
    except Exception as e:
        raise _handle_error("cancel", job_id, e)


@router.post("/{job_id}/retry", response_model=DispatchJobResponse)
async def retry_job(job_id: str, dispatcher: NotificationDispatcher = Depends(get_dispatcher)):
    """
    Reset a failed job and run it again.

    Raises:
        HTTPException: 409 if the job is not failed or has no retries left
    """
    try:
        await dispatcher.retry_job(job_id)
        return DispatchJobResponse.from_job(await dispatcher.execute_job(job_id))
    except Exception as e:
        raise _handle_error("retry", job_id, e)
