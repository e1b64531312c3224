"""
Language detection utilities for caller transcripts.

Scores English and Spanish evidence with weighted phrase tables, reports a
confidence for the winning language and flags sentence-level code switching.
The tables are built once at import and never mutated.
"""

import re
import unicodedata
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple
import structlog

from emergency_dispatch.models.assessment import (
    CulturalContext,
    Language,
    LanguageDetectionResult,
    LanguageSegment,
    LanguageSwitchResult,
)

logger = structlog.get_logger(__name__)


# "no" is shared by both languages and carries no evidence
LANGUAGE_INDICATORS: Mapping[Language, Tuple[Tuple[str, int], ...]] = MappingProxyType({
    Language.ES: (
        ("usted", 3),
        ("gracias", 2),
        ("por favor", 2),
        ("señor", 2),
        ("señora", 2),
        ("sí", 1),
        ("mucho", 1),
        ("muy", 1),
        ("emergencia", 3),
        ("urgente", 3),
        ("inmediatamente", 3),
        ("ahora mismo", 2),
        ("ayuda", 2),
        ("calefacción", 2),
        ("fuga", 2),
        ("sin", 1),
        ("agua", 1),
    ),
    Language.EN: (
        ("thank you", 2),
        ("please", 2),
        ("you", 1),
        ("your", 1),
        ("the", 1),
        ("and", 1),
        ("yes", 1),
        ("much", 1),
        ("very", 1),
        ("emergency", 3),
        ("urgent", 3),
        ("help", 2),
        ("heat", 1),
    ),
})

URGENCY_INDICATORS: Mapping[Language, Tuple[str, ...]] = MappingProxyType({
    Language.ES: (
        "emergencia", "urgente", "inmediatamente", "ahora mismo",
        "rápido", "pronto", "ya", "inmediato",
        "sin calefacción", "sin aire", "sin agua", "sin luz",
        "fuga", "goteo", "roto", "descompuesto",
        "peligroso", "riesgo", "daño", "problema grave",
    ),
    Language.EN: (
        "emergency", "urgent", "immediately", "right now",
        "quick", "soon", "asap", "immediate",
        "no heat", "no air", "no water", "no power",
        "leak", "drip", "broken", "out of order",
        "dangerous", "risk", "damage", "serious problem",
    ),
})

CULTURAL_INDICATORS: Mapping[Language, Tuple[str, ...]] = MappingProxyType({
    Language.ES: (
        "usted", "señor", "señora", "gracias", "por favor", "disculpe",
        "familia", "casa", "trabajo", "ayuda", "problema", "situación",
    ),
    Language.EN: (
        "sir", "ma'am", "thank you", "please", "excuse me",
        "family", "home", "work", "help", "problem", "situation",
    ),
})

# Formal address wins over informal markers when both appear
FORMAL_MARKERS: Mapping[Language, Tuple[str, ...]] = MappingProxyType({
    Language.ES: ("usted", "señor", "señora", "disculpe"),
    Language.EN: ("please", "thank you", "sir", "ma'am", "excuse me"),
})

INFORMAL_MARKERS: Mapping[Language, Tuple[str, ...]] = MappingProxyType({
    Language.ES: ("tú", "contigo", "oye", "ahora mismo", "ya"),
    Language.EN: ("right now", "asap", "hurry", "now"),
})

SENTENCE_SPLIT_PATTERN = re.compile(r"[.!?]+")

PHONE_PATTERNS = (
    re.compile(r"(\+?1[-.\s]?)?\(?([0-9]{3})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})"),
    re.compile(r"(\+?52[-.\s]?)?\(?([0-9]{2,3})\)?[-.\s]?([0-9]{3,4})[-.\s]?([0-9]{4})"),
)


@lru_cache(maxsize=1024)
def _phrase_pattern(phrase: str) -> re.Pattern:
    return re.compile(r"(?<!\w)" + re.escape(phrase.lower()) + r"(?!\w)", re.IGNORECASE)


def count_phrase(text: str, phrase: str) -> int:
    """Count whole-phrase, case-insensitive occurrences of phrase in text."""
    if not phrase:
        return 0
    return len(_phrase_pattern(phrase).findall(text))


def contains_phrase(text: str, phrase: str) -> bool:
    """Check whether phrase occurs in text as a whole phrase."""
    return count_phrase(text, phrase) > 0


class LanguageDetector:
    """
    Detects whether a transcript is English or Spanish using weighted
    indicator phrases.
    """

    def __init__(self, default_language: Language = Language.EN):
        """
        Initialize the detector.

        Args:
            default_language: Language returned on ties and when no evidence exists
        """
        self.default_language = Language(default_language)
        self.indicators = LANGUAGE_INDICATORS

    def score(self, text: str) -> Dict[Language, float]:
        """Weighted indicator score per supported language."""
        normalized_text = (text or "").strip()
        return {
            language: float(sum(
                weight * count_phrase(normalized_text, phrase)
                for phrase, weight in indicators
            ))
            for language, indicators in self.indicators.items()
        }

    def _pick(self, scores: Dict[Language, float]) -> Language:
        best = max(scores.values())
        leaders = [language for language, value in scores.items() if value == best]
        if len(leaders) != 1:
            return self.default_language
        return leaders[0]

    def detect(self, text: str) -> Language:
        """
        Detect the dominant language of a transcript.

        Args:
            text: Transcript text, possibly empty

        Returns:
            The language with the strictly highest weighted score, or the
            default language on any tie
        """
        return self._pick(self.score(text))

    def detect_with_confidence(self, text: str) -> LanguageDetectionResult:
        """
        Detect the language and report how dominant it is.

        Confidence is the winning score over the total score, or 0.5 when
        no indicator matched at all.
        """
        scores = self.score(text)
        language = self._pick(scores)
        total = sum(scores.values())
        confidence = max(scores.values()) / total if total > 0 else 0.5

        matched = [
            phrase for phrase, _ in self.indicators[language]
            if contains_phrase(text or "", phrase)
        ]

        logger.debug(
            "Language detected",
            language=language.value,
            confidence=round(confidence, 3),
            scores={lang.value: value for lang, value in scores.items()},
        )

        return LanguageDetectionResult(
            language=language,
            confidence=min(confidence, 1.0),
            scores=scores,
            matched_indicators=matched,
        )

    def has_evidence(self, text: str) -> bool:
        """True when at least one indicator phrase matched."""
        return sum(self.score(text).values()) > 0

    def detect_switching(self, text: str) -> LanguageSwitchResult:
        """
        Classify each sentence independently and flag language switches.

        Args:
            text: Transcript that may mix languages

        Returns:
            Per-sentence languages and whether consecutive sentences differ
        """
        segments = [
            LanguageSegment(text=sentence, language=self.detect(sentence))
            for sentence in split_sentences(text)
        ]

        has_switching = any(
            previous.language != current.language
            for previous, current in zip(segments, segments[1:])
        )

        return LanguageSwitchResult(has_switching=has_switching, segments=segments)

    def detect_cultural_context(self, text: str, language: Language) -> CulturalContext:
        """Derive the speaker's register from address and urgency markers."""
        if any(contains_phrase(text, marker) for marker in FORMAL_MARKERS[language]):
            return CulturalContext.FORMAL
        if any(contains_phrase(text, marker) for marker in INFORMAL_MARKERS[language]):
            return CulturalContext.INFORMAL
        return CulturalContext.NEUTRAL


def urgency_indicators(language: Language) -> Tuple[str, ...]:
    """Generic urgency phrases for a language."""
    return URGENCY_INDICATORS[Language(language)]


def cultural_indicators(language: Language) -> Tuple[str, ...]:
    """Courtesy and context phrases for a language."""
    return CULTURAL_INDICATORS[Language(language)]


def normalize_text(text: str, language: Language) -> str:
    """Lowercase and trim; Spanish text also has its accents folded."""
    normalized = text.lower().strip()
    if Language(language) == Language.ES:
        decomposed = unicodedata.normalize("NFD", normalized)
        normalized = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return normalized


def extract_phone_number(text: str) -> Optional[str]:
    """Return the first US or Mexican phone number found, digits and '+' only."""
    for pattern in PHONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return re.sub(r"[^\d+]", "", match.group(0))
    return None


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT_PATTERN.split(text or "") if s.strip()]
