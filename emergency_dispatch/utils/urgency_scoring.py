"""
Urgency scoring utilities for emergency detection.

Turns matched emergency keywords into a base score and layers cultural,
industry, temporal and customer modifiers on top of it. Every stage is
capped at 1.0 and its realised delta is reported, so the base score plus
the breakdown always equals the final score.
"""
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Tuple
import structlog

from emergency_dispatch.models.assessment import (
    AssessmentContext,
    CulturalContext,
    CustomerType,
    Language,
    ModifierContribution,
    UrgencyLevel,
    UrgencyScoreResult,
)
from emergency_dispatch.utils.language_detection import contains_phrase, count_phrase

logger = structlog.get_logger(__name__)

ONE = Decimal("1.0")
ZERO = Decimal("0.0")
KEYWORD_SCALE = Decimal("0.1")
DEFAULT_KEYWORD_WEIGHT = Decimal("1.5")

# Checked in order; the first tier containing the keyword wins
KEYWORD_TIERS: Tuple[Tuple[Decimal, Tuple[str, ...]], ...] = (
    (Decimal("3.0"), (
        "emergency", "urgent", "immediately", "right now", "asap",
        "emergencia", "urgente", "inmediatamente", "ahora mismo", "ya",
        "no heat", "no air", "no water", "no power", "out",
        "sin calefacción", "sin aire", "sin agua", "sin luz", "descompuesto",
        "gas leak", "water leak", "electrical fire", "sparking",
        "fuga de gas", "fuga de agua", "incendio eléctrico", "chispas",
    )),
    (Decimal("2.0"), (
        "broken", "not working", "problem", "issue", "trouble",
        "roto", "no funciona", "problema", "asunto", "dificultad",
        "leak", "drip", "flooding", "overflow",
        "fuga", "goteo", "inundación", "desbordamiento",
        "hot", "cold", "temperature", "weather",
        "caliente", "frío", "temperatura", "clima",
    )),
    (Decimal("1.0"), (
        "maintenance", "check", "inspection", "service",
        "mantenimiento", "revisar", "inspección", "servicio",
        "appointment", "schedule", "booking",
        "cita", "programar", "reservar",
    )),
)

CULTURAL_MODIFIERS: Mapping[Tuple[Language, CulturalContext], Decimal] = MappingProxyType({
    (Language.ES, CulturalContext.FORMAL): Decimal("0.1"),
    (Language.ES, CulturalContext.INFORMAL): Decimal("0.05"),
    (Language.ES, CulturalContext.NEUTRAL): ZERO,
    (Language.EN, CulturalContext.FORMAL): Decimal("0.05"),
    (Language.EN, CulturalContext.INFORMAL): ZERO,
    (Language.EN, CulturalContext.NEUTRAL): ZERO,
})

CUSTOMER_TYPE_MODIFIERS: Mapping[CustomerType, Decimal] = MappingProxyType({
    CustomerType.RESIDENTIAL: ZERO,
    CustomerType.VULNERABLE: Decimal("0.1"),
    CustomerType.BUSINESS: Decimal("0.05"),
})

FREEZING_F = 32
HOT_F = 90

RESPONSE_TIME_ESTIMATES: Tuple[Tuple[Decimal, str], ...] = (
    (Decimal("0.9"), "15-30 minutes"),
    (Decimal("0.8"), "30-45 minutes"),
    (Decimal("0.7"), "45-60 minutes"),
    (Decimal("0.5"), "1-2 hours"),
)


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


def _cap(score: Decimal) -> Decimal:
    return max(ZERO, min(ONE, score))


class UrgencyScorer:
    """Calculates urgency scores and urgency levels for caller transcripts."""

    def __init__(
        self,
        base_score_cap: float = 0.8,
        immediate_attention_threshold: float = 0.7,
        emergency_threshold: float = 0.8,
        high_threshold: float = 0.6,
        medium_threshold: float = 0.4,
    ):
        self.base_score_cap = _to_decimal(base_score_cap)
        self.immediate_attention_threshold = _to_decimal(immediate_attention_threshold)
        self.emergency_threshold = _to_decimal(emergency_threshold)
        self.high_threshold = _to_decimal(high_threshold)
        self.medium_threshold = _to_decimal(medium_threshold)

    def keyword_weight(self, keyword: str) -> Decimal:
        """Weight of a keyword from the first tier that contains it."""
        normalized = keyword.lower().strip()
        for weight, phrases in KEYWORD_TIERS:
            for phrase in phrases:
                if normalized == phrase or contains_phrase(normalized, phrase):
                    return weight
        return DEFAULT_KEYWORD_WEIGHT

    def _base_score(self, text: str, keywords: Iterable[str]) -> Decimal:
        total = ZERO
        for keyword in keywords:
            occurrences = count_phrase(text, keyword)
            if occurrences:
                total += occurrences * self.keyword_weight(keyword) * KEYWORD_SCALE
        return min(total, self.base_score_cap)

    def calculate_base_score(self, text: str, keywords: Iterable[str]) -> float:
        """
        Score keyword evidence in a transcript.

        Args:
            text: Transcript text
            keywords: Emergency keywords for the detected language

        Returns:
            Sum of occurrences x tier weight x 0.1, capped at the base score cap
        """
        return float(self._base_score(text, keywords))

    def _cultural_delta(self, language: Language, context: CulturalContext) -> Decimal:
        return CULTURAL_MODIFIERS.get((Language(language), CulturalContext(context)), ZERO)

    def apply_cultural_modifier(
        self, score: float, language: Language, context: CulturalContext
    ) -> float:
        """Add the (language, register) modifier, capped at 1.0."""
        return float(_cap(_to_decimal(score) + self._cultural_delta(language, context)))

    def industry_modifiers(
        self, industry_code: str, context: AssessmentContext
    ) -> List[Tuple[str, Decimal]]:
        """Named industry modifiers that apply to the context."""
        applied: List[Tuple[str, Decimal]] = []
        temperature = context.ambient_temperature_f
        industry = (industry_code or "").lower()

        if industry == "hvac":
            if temperature is not None and temperature < FREEZING_F:
                applied.append(("winter_heating_emergency", Decimal("0.2")))
            elif temperature is not None and temperature > HOT_F:
                applied.append(("summer_cooling_emergency", Decimal("0.15")))
        elif industry == "plumbing":
            if temperature is not None and temperature < FREEZING_F:
                applied.append(("freezing_pipe_risk", Decimal("0.25")))
            if context.water_damage:
                applied.append(("water_damage", Decimal("0.2")))
        elif industry == "electrical":
            if context.safety_hazard:
                applied.append(("safety_hazard", Decimal("0.3")))
            if context.power_outage:
                applied.append(("power_outage", Decimal("0.2")))

        return applied

    def apply_industry_modifier(
        self, score: float, industry_code: str, context: AssessmentContext
    ) -> float:
        """Add weather and hazard modifiers for the industry, capped at 1.0."""
        delta = sum((d for _, d in self.industry_modifiers(industry_code, context)), ZERO)
        return float(_cap(_to_decimal(score) + delta))

    def _temporal_delta(self, at: datetime) -> Decimal:
        hour = at.hour
        if hour >= 22 or hour <= 6:
            return Decimal("0.1")
        if 7 <= hour <= 9 or 17 <= hour <= 19:
            return Decimal("0.05")
        return ZERO

    def apply_temporal_modifier(self, score: float, at: Optional[datetime] = None) -> float:
        """Add the night or rush-hour modifier, capped at 1.0."""
        return float(_cap(_to_decimal(score) + self._temporal_delta(at or datetime.now())))

    def apply_customer_type_modifier(self, score: float, customer_type: CustomerType) -> float:
        """Add the customer category modifier, capped at 1.0."""
        delta = CUSTOMER_TYPE_MODIFIERS.get(CustomerType(customer_type), ZERO)
        return float(_cap(_to_decimal(score) + delta))

    def comprehensive_score(
        self,
        text: str,
        keywords: Iterable[str],
        language: Language,
        industry_code: str,
        context: AssessmentContext,
        cultural_context: CulturalContext = CulturalContext.NEUTRAL,
    ) -> UrgencyScoreResult:
        """
        Run the full scoring pipeline.

        Stages run in order base, cultural, industry, temporal, customer type.
        Each stage is capped at 1.0 and records the delta it actually added.

        Args:
            text: Transcript text
            keywords: Emergency keywords for the detected language
            language: Detected language
            industry_code: Organization industry code
            context: Situational facts for the modifiers
            cultural_context: Register of the speaker

        Returns:
            Base score, final score, per-stage breakdown and applied industry modifiers
        """
        base = self._base_score(text, keywords)
        industry_applied = self.industry_modifiers(industry_code, context)
        at = context.observed_at or datetime.now()

        stages = (
            ("cultural", self._cultural_delta(language, cultural_context)),
            ("industry", sum((d for _, d in industry_applied), ZERO)),
            ("temporal", self._temporal_delta(at)),
            ("customer_type", CUSTOMER_TYPE_MODIFIERS.get(context.customer_type, ZERO)),
        )

        score = base
        breakdown = []
        for name, delta in stages:
            capped = _cap(score + delta)
            breakdown.append(ModifierContribution(name=name, delta=float(capped - score)))
            score = capped

        logger.info(
            "Urgency score calculated",
            base_score=float(base),
            final_score=float(score),
            language=Language(language).value,
            industry_code=industry_code,
            industry_modifiers=[name for name, _ in industry_applied],
        )

        return UrgencyScoreResult(
            base_score=float(base),
            final_score=float(score),
            modifier_breakdown=tuple(breakdown),
            applied_industry_modifiers=tuple(name for name, _ in industry_applied),
        )

    def classify(self, score: float) -> UrgencyLevel:
        """Map a score to its urgency level."""
        value = _to_decimal(score)
        if value >= self.emergency_threshold:
            return UrgencyLevel.EMERGENCY
        if value >= self.high_threshold:
            return UrgencyLevel.HIGH
        if value >= self.medium_threshold:
            return UrgencyLevel.MEDIUM
        return UrgencyLevel.LOW

    def requires_immediate_attention(self, score: float) -> bool:
        """Escalation gate, independent of the emergency label threshold."""
        return _to_decimal(score) >= self.immediate_attention_threshold

    def estimate_response_time(self, score: float) -> str:
        """Expected technician arrival window for a score."""
        value = _to_decimal(score)
        for threshold, estimate in RESPONSE_TIME_ESTIMATES:
            if value >= threshold:
                return estimate
        return "2-4 hours"
