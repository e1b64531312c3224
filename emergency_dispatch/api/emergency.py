"""
Emergency assessment API endpoints.
"""

from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
import structlog

from emergency_dispatch.core.dependencies import get_decision_engine
from emergency_dispatch.core.exceptions import (
    DispatchError,
    InternalServerError,
    ResourceNotFoundError,
    map_dispatch_error,
)
from emergency_dispatch.models.assessment import ConversationTurn
from emergency_dispatch.schemas.emergency import AssessTurnRequest, AssessTurnResponse
from emergency_dispatch.services.decision_engine import EmergencyDecisionEngine
from emergency_dispatch.utils.keyword_catalog import get_default_catalog

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/emergency", tags=["emergency"])


@router.post("/assess", response_model=AssessTurnResponse)
async def assess_turn(
    request: AssessTurnRequest,
    engine: EmergencyDecisionEngine = Depends(get_decision_engine),
):
    """
    Assess one conversation turn.

    When the request carries an organization and call details and the turn
    requires escalation, the emergency notifications are dispatched as well.

    Raises:
        HTTPException: 404 for an unknown industry, 422 for invalid input
    """
    catalog = get_default_catalog(request.industry_code)
    if catalog is None:
        raise ResourceNotFoundError(
            f"No keyword catalog for industry '{request.industry_code}'",
            resource="keyword_catalog",
        )

    try:
        context = request.to_context()
        if not request.wants_dispatch:
            assessment = engine.assess(request.text, catalog, context)
            return AssessTurnResponse(
                assessment=assessment,
                escalation_required=assessment.escalation_required,
            )

        turn = ConversationTurn(
            text=request.text,
            timestamp=request.timestamp or datetime.now(),
            declared_language=request.declared_language,
        )

        evaluation = await engine.process_turn(
            turn, catalog, context, request.call, request.organization_id
        )
        return AssessTurnResponse(
            assessment=evaluation.assessment,
            escalation_required=evaluation.assessment.escalation_required,
            notifications_sent=evaluation.notifications_sent,
            dispatch_result=evaluation.dispatch_result,
            error=evaluation.error,
        )

    except HTTPException:
        raise
    except DispatchError as e:
        logger.warning("Assessment rejected", industry_code=request.industry_code, error=str(e))
        raise map_dispatch_error(e)
    except Exception as e:
        logger.error(
            "Unexpected error assessing turn",
            industry_code=request.industry_code,
            error=str(e),
            exc_info=True,
        )
        raise InternalServerError("Internal server error during assessment")
