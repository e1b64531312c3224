"""
Structured logging configuration with correlation IDs and dispatch context.
"""
import logging
import sys
import time
import uuid
from typing import Any, Dict, Optional
from contextlib import contextmanager
from contextvars import ContextVar
import structlog

# Context variables for request-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
organization_id_var: ContextVar[Optional[str]] = ContextVar('organization_id', default=None)
job_id_var: ContextVar[Optional[str]] = ContextVar('job_id', default=None)


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())[:8]
        correlation_id_var.set(correlation_id)

    event_dict["correlation_id"] = correlation_id
    return event_dict


def add_request_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add organization and job context to log events."""
    organization_id = organization_id_var.get()
    if organization_id and "organization_id" not in event_dict:
        event_dict["organization_id"] = organization_id

    job_id = job_id_var.get()
    if job_id and "job_id" not in event_dict:
        event_dict["job_id"] = job_id

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    from emergency_dispatch.core.config import get_settings

    settings = get_settings()
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.service_version
    return event_dict


def add_timestamp(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = time.time()
    event_dict["iso_timestamp"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging.

    Args:
        log_level: Minimum level passed through to the stdlib handler
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_service_context,
        add_request_context,
        add_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_business_logger() -> structlog.stdlib.BoundLogger:
    """Get a business event logger instance."""
    return structlog.get_logger("business")


def get_audit_logger() -> structlog.stdlib.BoundLogger:
    """Get the audit trail logger instance."""
    return structlog.get_logger("audit")


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


@contextmanager
def correlation_context(correlation_id: str = None, organization_id: str = None,
                        job_id: str = None):
    """
    Context manager for setting correlation context.

    Args:
        correlation_id: Correlation ID for the request
        organization_id: Organization the work belongs to
        job_id: Dispatch job being executed
    """
    tokens = []
    if correlation_id:
        tokens.append((correlation_id_var, correlation_id_var.set(correlation_id)))
    if organization_id:
        tokens.append((organization_id_var, organization_id_var.set(organization_id)))
    if job_id:
        tokens.append((job_id_var, job_id_var.set(job_id)))

    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def log_business_event(event_type: str, **kwargs):
    """
    Log a structured business event.

    Args:
        event_type: Type of business event
        **kwargs: Additional event data
    """
    logger = get_business_logger()
    logger.info("Business event", event_type=event_type, **kwargs)
