"""
Step builders for each dispatch workflow type.

Steps are built and validated once, when the job is created.
"""
from typing import Any, Callable, Dict, List, Mapping, Optional

import pydantic
import structlog

from emergency_dispatch.core.exceptions import ValidationError
from emergency_dispatch.database.seed_data import (
    CUSTOMER_CONFIRMATION_TEMPLATE,
    STATUS_UPDATE_TEMPLATE,
    TECHNICIAN_ALERT_TEMPLATE,
)
from emergency_dispatch.models.assessment import Language
from emergency_dispatch.models.dispatch import (
    ConditionConfig,
    DispatchStep,
    NotificationRole,
    SendNotificationConfig,
    WaitConfig,
    WorkflowType,
)

logger = structlog.get_logger(__name__)

STATUS_DISPATCHED = {
    Language.EN: "Technician dispatched",
    Language.ES: "Técnico despachado",
}

APPOINTMENT_VARIABLES = (
    "customer_name", "service_type", "appointment_date", "appointment_time", "business_name",
)
SERVICE_VARIABLES = ("customer_name", "service_type", "business_name")


def _pick(metadata: Mapping[str, Any], keys) -> Dict[str, Any]:
    return {key: metadata.get(key) for key in keys}


def _language(metadata: Mapping[str, Any]) -> Language:
    try:
        return Language(metadata.get("language") or Language.EN)
    except ValueError:
        raise ValidationError(
            f"Unsupported language '{metadata.get('language')}'", field="language"
        )


def _single_send(template_key: str, variables) -> Callable[[Mapping[str, Any]], List[DispatchStep]]:
    def build(metadata: Mapping[str, Any]) -> List[DispatchStep]:
        return [
            DispatchStep(
                order=0,
                config=SendNotificationConfig(
                    template_key=template_key,
                    language=_language(metadata),
                    recipient=metadata.get("phone_number") or "",
                    variables=_pick(metadata, variables),
                    role=NotificationRole.CUSTOMER,
                ),
            )
        ]
    return build


def build_emergency_alert_steps(metadata: Mapping[str, Any]) -> List[DispatchStep]:
    """
    Technician alert, customer confirmation, wait, status update.

    The technician alert is always English and does not halt the job on
    failure, so the customer confirmation still goes out.
    """
    language = _language(metadata)
    common = _pick(metadata, ("industry", "business_name"))

    return [
        DispatchStep(
            order=0,
            config=SendNotificationConfig(
                template_key=TECHNICIAN_ALERT_TEMPLATE,
                language=Language.EN,
                recipient=metadata.get("technician_phone") or "",
                variables={
                    **common,
                    **_pick(metadata, ("customer_name", "address", "issue", "customer_phone")),
                },
                role=NotificationRole.TECHNICIAN,
                halt_on_failure=False,
            ),
        ),
        DispatchStep(
            order=1,
            config=SendNotificationConfig(
                template_key=CUSTOMER_CONFIRMATION_TEMPLATE,
                language=language,
                recipient=metadata.get("customer_phone") or "",
                variables={**common, **_pick(metadata, ("eta", "contact_phone"))},
                role=NotificationRole.CUSTOMER,
            ),
        ),
        DispatchStep(
            order=2,
            config=WaitConfig(duration_seconds=metadata.get("status_update_delay_seconds", 900)),
        ),
        DispatchStep(
            order=3,
            config=SendNotificationConfig(
                template_key=STATUS_UPDATE_TEMPLATE,
                language=language,
                recipient=metadata.get("customer_phone") or "",
                variables={
                    **common,
                    "eta": metadata.get("eta"),
                    "status": STATUS_DISPATCHED[language],
                },
                role=NotificationRole.STATUS_UPDATE,
            ),
        ),
    ]


def build_appointment_confirmation_steps(metadata: Mapping[str, Any]) -> List[DispatchStep]:
    """Confirmation message, sent only when an appointment is attached."""
    steps = _single_send("appointment_confirmation", APPOINTMENT_VARIABLES)(metadata)
    steps[0].order = 1
    return [DispatchStep(order=0, config=ConditionConfig(predicate="appointment_exists"))] + steps


STEP_BUILDERS: Dict[WorkflowType, Callable[[Mapping[str, Any]], List[DispatchStep]]] = {
    WorkflowType.EMERGENCY_ALERT: build_emergency_alert_steps,
    WorkflowType.APPOINTMENT_CONFIRMATION: build_appointment_confirmation_steps,
    WorkflowType.APPOINTMENT_REMINDER: _single_send("appointment_reminder", APPOINTMENT_VARIABLES),
    WorkflowType.FOLLOW_UP: _single_send("follow_up", SERVICE_VARIABLES),
    WorkflowType.SURVEY: _single_send("survey", SERVICE_VARIABLES),
}


def build_steps(
    workflow_type: WorkflowType,
    metadata: Mapping[str, Any],
    step_definitions: Optional[List[Dict[str, Any]]] = None,
) -> List[DispatchStep]:
    """
    Build the ordered step list for a job.

    Args:
        workflow_type: Workflow type of the job
        metadata: Job metadata feeding the default builders
        step_definitions: Explicit step configs, used instead of the defaults

    Returns:
        Validated steps ordered from 0

    Raises:
        ValidationError: If any step definition is invalid
    """
    try:
        if step_definitions is not None:
            if not step_definitions:
                raise ValidationError("A job needs at least one step", field="steps")
            return [
                DispatchStep(order=index, config=definition)
                for index, definition in enumerate(step_definitions)
            ]
        return STEP_BUILDERS[WorkflowType(workflow_type)](metadata)
    except pydantic.ValidationError as e:
        logger.warning(
            "Invalid step definition",
            workflow_type=str(workflow_type),
            errors=e.errors(include_url=False),
        )
        raise ValidationError(str(e), field="steps")
