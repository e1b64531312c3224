"""
Emergency decision engine.

Turns one conversation turn into an urgency assessment and, when the
assessment calls for it, hands the call over to the notification dispatcher.
"""

from typing import Optional, Tuple

import structlog
from pydantic import BaseModel

from emergency_dispatch.core.exceptions import NotFoundError
from emergency_dispatch.models.assessment import (
    AssessmentContext,
    ConversationTurn,
    EmergencyAssessment,
    KeywordCatalog,
    Language,
)
from emergency_dispatch.models.dispatch import CallDetails, DispatchResult
from emergency_dispatch.services.audit import AuditTrail
from emergency_dispatch.services.dispatcher import NotificationDispatcher
from emergency_dispatch.utils.language_detection import LanguageDetector, contains_phrase
from emergency_dispatch.utils.urgency_scoring import UrgencyScorer

logger = structlog.get_logger(__name__)


class TurnEvaluation(BaseModel):
    """Assessment of one turn plus what the dispatcher did with it"""
    assessment: EmergencyAssessment
    notifications_sent: bool = False
    dispatch_result: Optional[DispatchResult] = None
    error: Optional[str] = None


class EmergencyDecisionEngine:
    """Assesses caller turns and escalates emergencies to dispatch."""

    def __init__(
        self,
        detector: LanguageDetector,
        scorer: UrgencyScorer,
        dispatcher: Optional[NotificationDispatcher] = None,
        audit: Optional[AuditTrail] = None,
        default_language: Language = Language.EN,
        immediate_attention_threshold: Optional[float] = None,
    ):
        self.detector = detector
        self.scorer = scorer
        self.dispatcher = dispatcher
        self.audit = audit
        self.default_language = Language(default_language)
        if immediate_attention_threshold is None:
            immediate_attention_threshold = float(scorer.immediate_attention_threshold)
        self.immediate_attention_threshold = immediate_attention_threshold

    def select_keywords(
        self, catalog: KeywordCatalog, language: Language
    ) -> Tuple[str, ...]:
        """
        Pick the catalog keywords for a language.

        Falls back to the default language when the catalog has no list for
        the detected one.

        Raises:
            NotFoundError: If the catalog has neither language
        """
        keywords = catalog.for_language(language)
        if keywords is not None:
            return keywords

        logger.warning(
            "No keywords for detected language, using default language",
            industry_code=catalog.industry_code,
            language=Language(language).value,
            fallback_language=self.default_language.value,
        )
        keywords = catalog.for_language(self.default_language)
        if keywords is None:
            raise NotFoundError(
                f"Keyword catalog '{catalog.industry_code}' has no keywords for "
                f"'{Language(language).value}' or '{self.default_language.value}'",
                resource="keyword_catalog",
            )
        return keywords

    def assess(
        self,
        text: str,
        catalog: KeywordCatalog,
        context: AssessmentContext,
    ) -> EmergencyAssessment:
        """
        Assess the urgency of a transcript.

        Args:
            text: Transcript text of the turn
            catalog: Industry keyword catalog
            context: Situational facts used by the score modifiers

        Returns:
            Immutable assessment of the turn

        Raises:
            NotFoundError: If the catalog has no usable keyword list
        """
        text = text or ""
        detection = self.detector.detect_with_confidence(text)
        language = detection.language
        if context.declared_language is not None and not self.detector.has_evidence(text):
            language = Language(context.declared_language)

        keywords = self.select_keywords(catalog, language)
        matched = frozenset(keyword for keyword in keywords if contains_phrase(text, keyword))
        cultural_context = self.detector.detect_cultural_context(text, language)

        score = self.scorer.comprehensive_score(
            text,
            keywords,
            language,
            context.industry_code,
            context,
            cultural_context,
        )

        assessment = EmergencyAssessment(
            urgency_score=score.final_score,
            base_score=score.base_score,
            urgency_level=self.scorer.classify(score.final_score),
            detected_language=language,
            language_confidence=detection.confidence,
            matched_keywords=matched,
            cultural_context=cultural_context,
            industry_code=context.industry_code,
            industry_modifiers=score.applied_industry_modifiers,
            modifier_breakdown=score.modifier_breakdown,
            estimated_response_time=self.scorer.estimate_response_time(score.final_score),
            immediate_attention_threshold=self.immediate_attention_threshold,
        )

        logger.info(
            "Turn assessed",
            urgency_score=round(assessment.urgency_score, 3),
            urgency_level=assessment.urgency_level.value,
            language=language.value,
            escalation_required=assessment.escalation_required,
        )
        if self.audit is not None:
            self.audit.record("emergency_assessed", **assessment.summary())
        return assessment

    async def process_turn(
        self,
        turn: ConversationTurn,
        catalog: KeywordCatalog,
        context: AssessmentContext,
        call: CallDetails,
        organization_id: str,
    ) -> TurnEvaluation:
        """
        Assess a turn and dispatch notifications when escalation is required.

        Dispatch failures are logged and reported on the evaluation, never
        raised to the caller.
        """
        updates = {}
        if context.observed_at is None:
            updates["observed_at"] = turn.timestamp
        if context.declared_language is None and turn.declared_language is not None:
            updates["declared_language"] = turn.declared_language
        if updates:
            context = context.model_copy(update=updates)

        assessment = self.assess(turn.text, catalog, context)
        if not assessment.escalation_required:
            return TurnEvaluation(assessment=assessment)

        if self.dispatcher is None:
            logger.warning("Escalation required but no dispatcher configured")
            return TurnEvaluation(assessment=assessment, error="No dispatcher configured")

        try:
            result = await self.dispatcher.dispatch(assessment, call, organization_id)
        except Exception as e:
            logger.error(
                "Emergency dispatch failed",
                organization_id=organization_id,
                urgency_score=assessment.urgency_score,
                error=str(e),
                exc_info=True,
            )
            return TurnEvaluation(assessment=assessment, notifications_sent=False, error=str(e))

        return TurnEvaluation(
            assessment=assessment,
            notifications_sent=(
                result.technician_notification.success or result.customer_notification.success
            ),
            dispatch_result=result,
        )
