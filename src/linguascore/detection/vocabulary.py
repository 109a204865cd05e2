"""Vocabulary calibration: word-frequency tiers, repetition, weak wording."""

import re
from collections import Counter

import structlog

from linguascore.detection.base import ErrorDetector
from linguascore.models.accuracy import AnalysisConfig, ProficiencyLevel
from linguascore.models.errors import ErrorDetail, ErrorPosition, ErrorType, Severity

logger = structlog.get_logger()

# Frequency tiers; anything not listed counts as unclassified
BASIC_WORDS = frozenset({
    "a", "an", "the", "i", "you", "he", "she", "it", "we", "they", "me", "my",
    "your", "is", "am", "are", "was", "were", "be", "have", "has", "had", "do",
    "does", "did", "go", "goes", "went", "come", "get", "make", "see", "say",
    "know", "think", "want", "like", "need", "good", "bad", "big", "small",
    "nice", "happy", "sad", "thing", "things", "stuff", "day", "time", "people",
    "friend", "home", "school", "work", "very", "really", "so", "and", "but",
    "or", "because", "to", "in", "on", "at", "for", "with", "of", "this", "that",
})

INTERMEDIATE_WORDS = frozenset({
    "although", "however", "already", "different", "difficult", "important",
    "interesting", "experience", "opportunity", "advantage", "situation",
    "decide", "prefer", "improve", "explain", "describe", "remember", "believe",
    "information", "especially", "probably", "usually", "recently", "enough",
    "wonderful", "comfortable", "environment", "develop", "discuss",
})

ADVANCED_WORDS = frozenset({
    "acknowledge", "adequate", "ambiguous", "anticipate", "coherent",
    "comprehensive", "consequently", "contemporary", "demonstrate",
    "elaborate", "facilitate", "furthermore", "hypothesis", "implement",
    "inevitable", "meticulous", "nevertheless", "nuanced", "paradigm",
    "predominantly", "scrutinize", "substantial", "subsequently", "ubiquitous",
})

# Intensifier + adjective pairs with a stronger single-word alternative
WEAK_PHRASES: dict[str, str] = {
    "very good": "excellent",
    "very bad": "terrible",
    "very big": "enormous",
    "very small": "tiny",
    "very happy": "delighted",
    "very sad": "miserable",
    "very tired": "exhausted",
    "very hungry": "starving",
    "very important": "essential",
    "very difficult": "challenging",
    "very beautiful": "gorgeous",
    "very interesting": "fascinating",
    "really good": "excellent",
    "really bad": "awful",
}

VAGUE_WORDS = frozenset({"thing", "things", "stuff", "nice", "good", "bad"})

FILLERS = frozenset({"um", "uh", "er", "ah", "basically", "literally", "actually"})

_WORD_RE = re.compile(r"[A-Za-z']+")
_WEAK_RE = re.compile(r"\b(" + "|".join(re.escape(p) for p in WEAK_PHRASES) + r")\b", re.IGNORECASE)

# Content words repeated this often in one message are flagged
REPETITION_THRESHOLD = 3


def frequency_profile(words: list[str]) -> dict[str, float]:
    """Share of basic, intermediate and advanced words among ``words``."""
    if not words:
        return {"basic": 0.0, "intermediate": 0.0, "advanced": 0.0}
    total = len(words)
    return {
        "basic": sum(w in BASIC_WORDS for w in words) / total,
        "intermediate": sum(w in INTERMEDIATE_WORDS for w in words) / total,
        "advanced": sum(w in ADVANCED_WORDS for w in words) / total,
    }


class VocabularyCalibrator(ErrorDetector):
    """Suggests richer vocabulary based on word frequency tiers.

    Findings are low-severity vocabulary notes; learners above beginner
    level additionally get a note when a longer message relies almost
    entirely on basic words.
    """

    name = "vocabulary"
    priority = 30

    async def is_available(self) -> bool:
        return True

    def get_confidence(self) -> float:
        return 0.6

    async def detect(self, text: str, config: AnalysisConfig) -> list[ErrorDetail]:
        matches = list(_WORD_RE.finditer(text))
        if not matches:
            return []
        words = [m.group(0).lower() for m in matches]
        errors: list[ErrorDetail] = []

        for match in _WEAK_RE.finditer(text):
            phrase = match.group(1).lower()
            errors.append(
                ErrorDetail(
                    type=ErrorType.VOCABULARY,
                    message=f"'{match.group(1)}' could be stronger",
                    position=ErrorPosition(start=match.start(), end=match.end(), word=match.group(1)),
                    severity=Severity.SUGGESTION,
                    suggestion=WEAK_PHRASES[phrase],
                    confidence=0.6,
                    rule="WEAK_INTENSIFIER",
                )
            )

        counts = Counter(w for w in words if w not in BASIC_WORDS or w in VAGUE_WORDS)
        for word, count in counts.items():
            if count < REPETITION_THRESHOLD or len(word) < 3:
                continue
            last = [m for m in matches if m.group(0).lower() == word][-1]
            errors.append(
                ErrorDetail(
                    type=ErrorType.VOCABULARY,
                    message=f"'{word}' is repeated {count} times; try a synonym",
                    position=ErrorPosition(start=last.start(), end=last.end(), word=last.group(0)),
                    severity=Severity.LOW,
                    confidence=0.65,
                    rule="WORD_REPETITION",
                )
            )

        for match in matches:
            if match.group(0).lower() in FILLERS:
                errors.append(
                    ErrorDetail(
                        type=ErrorType.FLUENCY,
                        message=f"Filler word '{match.group(0)}'",
                        position=ErrorPosition(start=match.start(), end=match.end(), word=match.group(0)),
                        severity=Severity.LOW,
                        confidence=0.55,
                        rule="FILLER_WORD",
                    )
                )

        profile = frequency_profile(words)
        if (
            config.proficiency not in (None, ProficiencyLevel.BEGINNER)
            and len(words) >= 12
            and profile["basic"] >= 0.85
            and profile["advanced"] == 0
        ):
            errors.append(
                ErrorDetail(
                    type=ErrorType.VOCABULARY,
                    message="Vocabulary is mostly basic for your level",
                    severity=Severity.SUGGESTION,
                    confidence=0.5,
                    rule="BASIC_VOCABULARY",
                )
            )

        logger.debug("vocabulary_check_complete", error_count=len(errors), profile=profile)
        return errors
