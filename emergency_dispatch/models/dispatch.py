from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4
from pydantic import BaseModel, Field, field_validator

from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.delivery import DeliveryOutcome, to_naive_utc


class JobStatus(str, Enum):
    """Dispatch job status enumeration"""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class WorkflowType(str, Enum):
    """Dispatch workflow type enumeration"""
    EMERGENCY_ALERT = "emergency_alert"
    APPOINTMENT_CONFIRMATION = "appointment_confirmation"
    APPOINTMENT_REMINDER = "appointment_reminder"
    FOLLOW_UP = "follow_up"
    SURVEY = "survey"


class StepType(str, Enum):
    """Dispatch step type enumeration"""
    SEND_NOTIFICATION = "send_notification"
    WAIT = "wait"
    CONDITION = "condition"
    WEBHOOK = "webhook"


class StepStatus(str, Enum):
    """Dispatch step status enumeration"""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class NotificationRole(str, Enum):
    """Who a send step addresses"""
    TECHNICIAN = "technician"
    CUSTOMER = "customer"
    STATUS_UPDATE = "status_update"
    GENERIC = "generic"


CONDITION_PREDICATES = ("has_emergency_flag", "has_phone_number", "appointment_exists")


class SendNotificationConfig(BaseModel):
    step_type: Literal["send_notification"] = "send_notification"
    template_key: str = Field(min_length=1)
    language: Language = Language.EN
    recipient: str = Field(min_length=1)
    variables: Dict[str, Any] = Field(default_factory=dict)
    role: NotificationRole = NotificationRole.GENERIC
    halt_on_failure: bool = True


class WaitConfig(BaseModel):
    step_type: Literal["wait"] = "wait"
    duration_seconds: float = Field(ge=0)


class ConditionConfig(BaseModel):
    step_type: Literal["condition"] = "condition"
    predicate: str

    @field_validator("predicate")
    @classmethod
    def validate_predicate(cls, v: str) -> str:
        if v not in CONDITION_PREDICATES:
            raise ValueError(f"Unknown condition predicate '{v}'")
        return v


class WebhookConfig(BaseModel):
    step_type: Literal["webhook"] = "webhook"
    url: str = Field(min_length=1)
    method: Literal["POST", "PUT"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Dict[str, Any] = Field(default_factory=dict)


StepConfig = Annotated[
    Union[SendNotificationConfig, WaitConfig, ConditionConfig, WebhookConfig],
    Field(discriminator="step_type"),
]


class DispatchStep(BaseModel):
    """One ordered unit of work inside a dispatch job"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    order: int = Field(ge=0)
    status: StepStatus = StepStatus.PENDING
    config: StepConfig
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @property
    def step_type(self) -> StepType:
        return StepType(self.config.step_type)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None


class DispatchJob(BaseModel):
    """A workflow instance executing notification steps for one trigger"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str
    workflow_type: WorkflowType
    status: JobStatus = JobStatus.PENDING
    steps: List[DispatchStep] = Field(default_factory=list)
    retry_count: int = 0
    max_retries: int = 3
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    scheduled_task_id: Optional[str] = None
    scheduled_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("scheduled_at", "created_at", "started_at", "completed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED)

    def ordered_steps(self) -> List[DispatchStep]:
        return sorted(self.steps, key=lambda step: step.order)

    def get_step(self, step_id: str) -> Optional[DispatchStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class OrganizationConfig(BaseModel):
    """Business running the dispatch"""
    id: str
    business_name: str
    industry_code: str
    contact_phone: str
    timezone: str = "America/New_York"


class CallDetails(BaseModel):
    """Caller facts captured during the conversation"""
    customer_name: str
    customer_phone: str
    customer_address: Optional[str] = None
    issue_description: str


class DispatchResult(BaseModel):
    """Outcome of an emergency dispatch"""
    job_id: str
    technician_notification: DeliveryOutcome
    customer_notification: DeliveryOutcome
    follow_up_scheduled: bool
    job_status: JobStatus


class WorkflowBreakdown(BaseModel):
    """Job counts for one workflow type or language"""
    total: int = 0
    completed: int = 0
    failed: int = 0
    success_rate: float = 0.0
    average_completion_seconds: float = 0.0
    common_errors: List[str] = Field(default_factory=list)


class StepPerformance(BaseModel):
    """Execution counts for one step type"""
    step_type: StepType
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    success_rate: float = 0.0
    average_duration_seconds: float = 0.0
    common_errors: List[str] = Field(default_factory=list)


class WorkflowMetrics(BaseModel):
    """Aggregated dispatch job metrics over a time window"""
    total_jobs: int = 0
    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    success_rate: float = 0.0
    average_completion_seconds: float = 0.0
    by_workflow_type: Dict[str, WorkflowBreakdown] = Field(default_factory=dict)
    by_language: Dict[str, WorkflowBreakdown] = Field(default_factory=dict)
    step_performance: List[StepPerformance] = Field(default_factory=list)


class TaskHandle(BaseModel):
    """Reference to a scheduled job resumption"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    job_id: str
    run_at: datetime
