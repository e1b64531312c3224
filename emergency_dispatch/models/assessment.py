from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, computed_field


class Language(str, Enum):
    """Supported conversation languages"""
    EN = "en"
    ES = "es"


class CulturalContext(str, Enum):
    """Register of the speaker, derived from address markers"""
    FORMAL = "formal"
    INFORMAL = "informal"
    NEUTRAL = "neutral"


class UrgencyLevel(str, Enum):
    """Urgency classification labels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class CustomerType(str, Enum):
    """Customer categories that shift urgency"""
    RESIDENTIAL = "residential"
    VULNERABLE = "vulnerable"
    BUSINESS = "business"


class ConversationTurn(BaseModel):
    """A single transcribed utterance from the caller"""
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)
    declared_language: Optional[Language] = None


class AssessmentContext(BaseModel):
    """Situational facts fed to the urgency modifiers"""
    industry_code: str
    ambient_temperature_f: Optional[float] = None
    water_damage: bool = False
    safety_hazard: bool = False
    power_outage: bool = False
    customer_type: CustomerType = CustomerType.RESIDENTIAL
    observed_at: Optional[datetime] = None
    declared_language: Optional[Language] = None


class ModifierContribution(BaseModel):
    """Realised score delta of one modifier stage"""
    model_config = ConfigDict(frozen=True)

    name: str
    delta: float


class UrgencyScoreResult(BaseModel):
    """Output of the comprehensive urgency calculation"""
    model_config = ConfigDict(frozen=True)

    base_score: float
    final_score: float
    modifier_breakdown: Tuple[ModifierContribution, ...] = ()
    applied_industry_modifiers: Tuple[str, ...] = ()


class KeywordCatalog(BaseModel):
    """Industry-scoped emergency keywords keyed by language"""
    model_config = ConfigDict(frozen=True)

    industry_code: str
    keywords: Dict[Language, Tuple[str, ...]]

    def for_language(self, language: Language) -> Optional[Tuple[str, ...]]:
        return self.keywords.get(language)


class EmergencyAssessment(BaseModel):
    """Immutable result of evaluating one conversation turn"""
    model_config = ConfigDict(frozen=True)

    urgency_score: float = Field(ge=0.0, le=1.0)
    base_score: float = Field(ge=0.0, le=1.0)
    urgency_level: UrgencyLevel
    detected_language: Language
    language_confidence: float = Field(ge=0.0, le=1.0)
    matched_keywords: FrozenSet[str] = frozenset()
    cultural_context: CulturalContext
    industry_code: str
    industry_modifiers: Tuple[str, ...] = ()
    modifier_breakdown: Tuple[ModifierContribution, ...] = ()
    estimated_response_time: str
    immediate_attention_threshold: float = Field(default=0.7, exclude=True)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def escalation_required(self) -> bool:
        return self.urgency_score >= self.immediate_attention_threshold

    def summary(self) -> Dict[str, object]:
        """Compact form used for audit events and logs"""
        return {
            "urgency_score": round(self.urgency_score, 3),
            "urgency_level": self.urgency_level.value,
            "language": self.detected_language.value,
            "matched_keywords": sorted(self.matched_keywords),
            "escalation_required": self.escalation_required,
            "industry_code": self.industry_code,
        }


class LanguageDetectionResult(BaseModel):
    """Detected language with its evidence"""
    language: Language
    confidence: float
    scores: Dict[Language, float]
    matched_indicators: List[str] = Field(default_factory=list)


class LanguageSegment(BaseModel):
    """One sentence of a possibly mixed-language utterance"""
    text: str
    language: Language


class LanguageSwitchResult(BaseModel):
    """Sentence-level language classification"""
    has_switching: bool
    segments: List[LanguageSegment] = Field(default_factory=list)
