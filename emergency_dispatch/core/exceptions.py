"""
Custom exception classes for the Emergency Dispatch Service.
"""
from typing import Optional, Any, Dict
import uuid
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class RequestValidationError(BaseAPIException):
    """Exception for request validation errors."""

    def __init__(self, detail: str, field: Optional[str] = None, **context):
        error_code = "EDS_001"
        if field:
            error_code = f"EDS_001_{field.upper()}"
            detail = f"Validation failed for field '{field}': {detail}"

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code,
            context={"field": field, **context},
        )


class ResourceNotFoundError(BaseAPIException):
    """Exception for missing jobs, organizations, templates or deliveries."""

    def __init__(self, detail: str, resource: Optional[str] = None, **context):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code="EDS_002",
            context={"resource": resource, **context},
        )


class WorkflowConflictError(BaseAPIException):
    """Exception for job operations rejected by the job's current state."""

    def __init__(self, detail: str, job_id: Optional[str] = None, **context):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="EDS_003",
            context={"job_id": job_id, **context},
        )


class ServiceUnavailableError(BaseAPIException):
    """Exception for notification provider unavailability."""

    def __init__(
        self,
        service_name: str,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.retry_after = retry_after
        if not detail:
            detail = f"External service '{service_name}' is currently unavailable"

        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="EDS_004",
            headers=headers,
            context={"service_name": service_name, "retry_after": retry_after, **context},
        )


class InternalServerError(BaseAPIException):
    """Exception for unexpected internal errors."""

    def __init__(self, detail: str = "An unexpected internal error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTERNAL_SERVER_ERROR",
        )


# Domain exceptions (non-API context)
class DispatchError(Exception):
    """Base exception for detection and dispatch errors."""

    def __init__(self, detail: str, **context):
        self.detail = detail
        self.context = context
        super().__init__(detail)


class ValidationError(DispatchError):
    """Malformed input, invalid step definition or invalid job transition."""

    def __init__(self, detail: str, field: Optional[str] = None, **context):
        self.field = field
        message = f"Validation failed: {detail}"
        if field:
            message = f"Validation failed for field '{field}': {detail}"
        super().__init__(message, field=field, **context)


class ProviderError(DispatchError):
    """Notification channel or webhook endpoint failure."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.status_code = status_code
        super().__init__(f"[{service_name}] {message}", status_code=status_code, **context)


class NotFoundError(DispatchError):
    """Missing job, organization, template or delivery record."""

    def __init__(self, detail: str, resource: Optional[str] = None, **context):
        self.resource = resource
        super().__init__(detail, resource=resource, **context)


class StepTimeoutError(DispatchError, TimeoutError):
    """A network-bound step exceeded its time bound."""

    def __init__(self, step_type: str, timeout_seconds: float, **context):
        self.step_type = step_type
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Step '{step_type}' timed out after {timeout_seconds} seconds",
            step_type=step_type,
            **context
        )


class RetryExhaustedError(DispatchError):
    """A failed job has used all of its retries."""

    def __init__(self, job_id: str, retry_count: int, max_retries: int):
        self.job_id = job_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Job '{job_id}' exhausted its retries ({retry_count}/{max_retries})",
            job_id=job_id,
        )


# Error mapping utilities
def map_dispatch_error(error: DispatchError) -> BaseAPIException:
    """Map a domain error to an API exception."""
    if isinstance(error, NotFoundError):
        return ResourceNotFoundError(str(error), resource=error.resource)
    elif isinstance(error, RetryExhaustedError):
        return WorkflowConflictError(str(error), job_id=error.job_id)
    elif isinstance(error, ValidationError):
        if error.context.get("job_id"):
            return WorkflowConflictError(str(error), job_id=error.context["job_id"])
        return RequestValidationError(str(error), field=error.field)
    elif isinstance(error, (ProviderError, StepTimeoutError)):
        service_name = getattr(error, "service_name", "notification_channel")
        return ServiceUnavailableError(service_name=service_name, detail=str(error))
    else:
        return InternalServerError(str(error))


def get_user_friendly_error_message(error_code: str) -> str:
    """Get user-friendly error message for error code."""
    error_messages = {
        "EDS_001": "Validation failed. Please check your input.",
        "EDS_002": "The requested resource was not found.",
        "EDS_003": "The workflow cannot perform this operation in its current state.",
        "EDS_004": "Notification service temporarily unavailable. Please try again later.",
    }
    # Field specific codes such as EDS_001_STEPS share their base message
    base_code = "_".join((error_code or "").split("_")[:2])
    return error_messages.get(
        error_code, error_messages.get(base_code, "An error occurred. Please try again.")
    )
