"""
Dispatch job analytics: totals, success rates and per-step performance.
"""
from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog

from emergency_dispatch.database.repository import DispatchRepository
from emergency_dispatch.models.delivery import to_naive_utc
from emergency_dispatch.models.dispatch import (
    DispatchJob,
    DispatchStep,
    JobStatus,
    StepPerformance,
    StepStatus,
    StepType,
    WorkflowBreakdown,
    WorkflowMetrics,
)

logger = structlog.get_logger(__name__)


def _completion_seconds(job: DispatchJob) -> Optional[float]:
    if job.status == JobStatus.COMPLETED and job.started_at and job.completed_at:
        return (job.completed_at - job.started_at).total_seconds()
    return None


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _common_errors(errors: Iterable[Optional[str]], limit: int = 5) -> List[str]:
    counts = Counter(error for error in errors if error)
    return [error for error, _ in counts.most_common(limit)]


def breakdown(jobs: Iterable[DispatchJob]) -> WorkflowBreakdown:
    """Counts, success rate and average completion time for a group of jobs."""
    jobs = list(jobs)
    statuses = Counter(job.status for job in jobs)
    durations = [d for d in (_completion_seconds(job) for job in jobs) if d is not None]

    return WorkflowBreakdown(
        total=len(jobs),
        completed=statuses[JobStatus.COMPLETED],
        failed=statuses[JobStatus.FAILED],
        success_rate=statuses[JobStatus.COMPLETED] / len(jobs) if jobs else 0.0,
        average_completion_seconds=_average(durations),
        common_errors=_common_errors(job.error_message for job in jobs),
    )


def step_performance(steps: Iterable[DispatchStep]) -> List[StepPerformance]:
    """
    Per step type execution counts.

    Average duration only covers completed steps that recorded both
    timestamps. Pending and executing steps count toward the total only.
    """
    by_type: Dict[StepType, List[DispatchStep]] = defaultdict(list)
    for step in steps:
        by_type[step.step_type].append(step)

    performance = []
    for step_type in StepType:
        group = by_type.get(step_type)
        if not group:
            continue
        statuses = Counter(step.status for step in group)
        durations = [
            step.duration_seconds for step in group
            if step.status == StepStatus.COMPLETED and step.duration_seconds is not None
        ]
        performance.append(StepPerformance(
            step_type=step_type,
            total=len(group),
            completed=statuses[StepStatus.COMPLETED],
            failed=statuses[StepStatus.FAILED],
            skipped=statuses[StepStatus.SKIPPED],
            success_rate=statuses[StepStatus.COMPLETED] / len(group),
            average_duration_seconds=_average(durations),
            common_errors=_common_errors(
                step.error_message for step in group if step.status == StepStatus.FAILED
            ),
        ))
    return performance


def job_language(job: DispatchJob) -> str:
    return str(job.metadata.get("language") or "en")


def summarize_jobs(jobs: Iterable[DispatchJob]) -> WorkflowMetrics:
    """Aggregate dispatch jobs into workflow metrics."""
    jobs = list(jobs)
    overall = breakdown(jobs)
    statuses = Counter(job.status for job in jobs)

    by_type: Dict[str, List[DispatchJob]] = defaultdict(list)
    by_language: Dict[str, List[DispatchJob]] = defaultdict(list)
    for job in jobs:
        by_type[job.workflow_type.value].append(job)
        by_language[job_language(job)].append(job)

    return WorkflowMetrics(
        total_jobs=overall.total,
        pending=statuses[JobStatus.PENDING],
        active=statuses[JobStatus.ACTIVE],
        completed=overall.completed,
        failed=overall.failed,
        cancelled=statuses[JobStatus.CANCELLED],
        success_rate=overall.success_rate,
        average_completion_seconds=overall.average_completion_seconds,
        by_workflow_type={key: breakdown(group) for key, group in by_type.items()},
        by_language={key: breakdown(group) for key, group in by_language.items()},
        step_performance=step_performance(step for job in jobs for step in job.steps),
    )


class WorkflowMetricsService:
    """Reports on dispatch jobs stored in the repository."""

    def __init__(self, repository: DispatchRepository):
        self.repository = repository

    async def metrics(
        self,
        since: datetime,
        until: Optional[datetime] = None,
        organization_id: Optional[str] = None,
    ) -> WorkflowMetrics:
        """Workflow metrics for jobs created inside [since, until]."""
        jobs = await self.repository.list_jobs(
            to_naive_utc(since), to_naive_utc(until), organization_id
        )
        metrics = summarize_jobs(jobs)
        logger.info(
            "Workflow metrics calculated",
            organization_id=organization_id,
            total_jobs=metrics.total_jobs,
            success_rate=round(metrics.success_rate, 4),
        )
        return metrics
