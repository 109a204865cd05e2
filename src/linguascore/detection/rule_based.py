"""Rule-based grammar, punctuation and capitalization detector.

Regex rules run per sentence; a spaCy dependency parse adds a
subject-verb agreement check when ``en_core_web_sm`` is installed.
"""

import asyncio
import re
from collections.abc import Callable
from enum import StrEnum
from typing import Any, NamedTuple

import structlog

from linguascore.detection.base import ErrorDetector
from linguascore.detection.severity import classify_severity
from linguascore.models.accuracy import AnalysisConfig, UserTier
from linguascore.models.errors import (
    ErrorDetail,
    ErrorPosition,
    ErrorType,
    Severity,
    category_for,
)
from linguascore.scoring.metrics import split_sentences, tokenize

logger = structlog.get_logger()

SPACY_MODEL = "en_core_web_sm"


class SpacyStatus(StrEnum):
    OK = "ok"
    UNAVAILABLE = "unavailable"
    DISABLED = "disabled"


def load_spacy_model(name: str = SPACY_MODEL) -> Any | None:
    """Load a spaCy pipeline, or return None when it cannot be loaded."""
    try:
        import spacy  # noqa: PLC0415
        return spacy.load(name)
    except Exception:
        # Model not installed or runtime incompatible
        logger.info("spacy_model_unavailable", model=name, exc_info=True)
        return None


# Words after which a bare verb form is grammatical ("does he go", "let it go")
_AUX_CONTEXT = frozenset({
    "do", "does", "did", "can", "could", "will", "would", "shall", "should",
    "may", "might", "must", "let", "lets", "make", "makes", "made", "help",
    "helps", "to", "why", "not", "watch", "see", "saw", "hear", "heard",
})


class GrammarRule(NamedTuple):
    rule_id: str
    pattern: re.Pattern[str]
    message: str
    error_type: ErrorType
    severity: Severity | None  # None: classify from rule id and context
    min_tier: UserTier = UserTier.FREE
    suggest: Callable[[re.Match[str]], str] | None = None
    skip_after_aux: bool = False
    question_only: bool = False


def _third_person(match: re.Match[str]) -> str:
    subject, verb = match.group(1), match.group(2).lower()
    irregular = {"go": "goes", "try": "tries", "watch": "watches", "fix": "fixes"}
    return f"{subject} {irregular.get(verb, verb + 's')}"


def _agreement(match: re.Match[str]) -> str:
    subject, verb = match.group(1), match.group(2).lower()
    fixed = {"am": "is", "are": "is", "do": "does", "have": "has", "don't": "doesn't"}
    return f"{subject} {fixed.get(verb, verb)}"


def _object_pronoun(match: re.Match[str]) -> str:
    pronoun, verb = match.group(1).lower(), match.group(2)
    subject = {"me": "I", "him": "he", "her": "she"}[pronoun]
    return f"{subject} {verb}"


def _be_verb(match: re.Match[str]) -> str:
    subject, adjective = match.group(1), match.group(2)
    verb = {"i": "am", "he": "is", "she": "is"}.get(subject.lower(), "are")
    return f"{subject} {verb} {adjective}"


def _question_order(match: re.Match[str]) -> str:
    word, subject, verb = match.group(1), match.group(2), match.group(3)
    return f"{word} {verb} {subject}"


IRREGULAR_PAST = {
    "goed": "went", "comed": "came", "eated": "ate", "buyed": "bought",
    "teached": "taught", "thinked": "thought", "runned": "ran",
    "writed": "wrote", "speaked": "spoke", "catched": "caught", "bringed": "brought",
}

IRREGULAR_PLURAL = {
    "childs": "children", "peoples": "people", "mans": "men", "womans": "women",
    "foots": "feet", "tooths": "teeth", "mouses": "mice",
}

_I = re.IGNORECASE

GRAMMAR_RULES: list[GrammarRule] = [
    GrammarRule(
        "PRONOUN_VERB_MISMATCH",
        re.compile(r"^(me|him|her)\s+(am|is|are|was|were|have|has|go|goes|want|wants)\b", _I),
        "Object pronoun used as the subject",
        ErrorType.GRAMMAR, Severity.CRITICAL, suggest=_object_pronoun,
    ),
    GrammarRule(
        "SUBJECT_VERB_AGREEMENT",
        re.compile(r"\b(he|she|it)\s+(am|are|do|have|don't)\b", _I),
        "Subject-verb agreement error",
        ErrorType.GRAMMAR, Severity.CRITICAL, suggest=_agreement, skip_after_aux=True,
    ),
    GrammarRule(
        "THIRD_PERSON_MISSING_S",
        re.compile(
            r"\b(he|she|it)\s+(go|try|want|need|say|come|work|play|like|know|think|make"
            r"|take|give|tell|use|find|call|ask|seem|feel|become|leave|watch|live)\b(?!['-])",
            _I,
        ),
        "Missing -s/-es for third-person singular verb (subject-verb agreement)",
        ErrorType.GRAMMAR, Severity.CRITICAL, suggest=_third_person, skip_after_aux=True,
    ),
    GrammarRule(
        "MULTIPLE_AUXILIARIES",
        re.compile(r"\b(am|is|are)\s+(was|were|been)\b", _I),
        "Multiple auxiliary verbs used together",
        ErrorType.GRAMMAR, Severity.CRITICAL,
        suggest=lambda m: m.group(2),
    ),
    GrammarRule(
        "MISSING_BE_VERB",
        re.compile(r"^(I|you|we|they|he|she)\s+(happy|sad|angry|ready|tired|hungry|busy|late|sure)\b", _I),
        "Missing auxiliary 'be' verb before adjective",
        ErrorType.GRAMMAR, Severity.CRITICAL, suggest=_be_verb,
    ),
    GrammarRule(
        "QUESTION_WORD_ORDER",
        re.compile(
            r"^(how|what|where|when|why)\s+(you|he|she|they|we|it)\s+"
            r"(are|is|was|were|do|does|did|can|will|have|has)\b",
            _I,
        ),
        "Question word order: the auxiliary comes before the subject",
        ErrorType.SYNTAX, Severity.CRITICAL, suggest=_question_order, question_only=True,
    ),
    GrammarRule(
        "PAST_TIME_PRESENT_TENSE",
        re.compile(
            r"\b(?:yesterday|last\s+(?:night|week|month|year))\b[^.!?]*?"
            r"\b(?:I|you|we|they|he|she)\s+(go|come|take|make|see|get|buy|eat|write|meet)\b",
            _I,
        ),
        "Present tense verb used with a past time expression (wrong tense)",
        ErrorType.GRAMMAR, Severity.MAJOR,
        suggest=lambda m: "use the past tense form",
    ),
    GrammarRule(
        "DOUBLE_PAST",
        re.compile(r"\b(did|does)\s+(went|came|saw|ate|bought|took|made|goes|comes)\b", _I),
        "Auxiliary followed by an inflected verb form",
        ErrorType.GRAMMAR, Severity.MAJOR,
        suggest=lambda m: f"{m.group(1)} + base verb",
    ),
    GrammarRule(
        "IRREGULAR_PAST",
        re.compile(r"\b(" + "|".join(IRREGULAR_PAST) + r")\b", _I),
        "Incorrect past tense verb form",
        ErrorType.GRAMMAR, Severity.MAJOR,
        suggest=lambda m: IRREGULAR_PAST[m.group(1).lower()],
    ),
    GrammarRule(
        "DOUBLE_NEGATIVE",
        re.compile(r"\b(?:don't|didn't|doesn't|won't|can't)\s+\w+\s+(?:no|nothing|nobody|nowhere)\b", _I),
        "Double negative",
        ErrorType.GRAMMAR, Severity.HIGH,
        suggest=lambda m: "remove one of the negatives",
    ),
    GrammarRule(
        "IRREGULAR_PLURAL",
        re.compile(r"\b(" + "|".join(IRREGULAR_PLURAL) + r")\b", _I),
        "Incorrect irregular plural",
        ErrorType.GRAMMAR, Severity.MEDIUM,
        suggest=lambda m: IRREGULAR_PLURAL[m.group(1).lower()],
    ),
    GrammarRule(
        "DOUBLE_COMPARATIVE",
        re.compile(r"\b(more\s+(?:better|worse|bigger|smaller|faster|easier)|most\s+(?:best|worst))\b", _I),
        "Double comparative or superlative",
        ErrorType.GRAMMAR, Severity.MEDIUM,
        suggest=lambda m: m.group(1).split()[-1],
    ),
    GrammarRule(
        "EVERYDAY_EVERY_DAY",
        re.compile(r"\beveryday(?=\s*(?:[.!?,]|$))", _I),
        "'everyday' is an adjective; the adverb is 'every day'",
        ErrorType.GRAMMAR, None,
        suggest=lambda m: "every day",
    ),
    GrammarRule(
        "WRONG_PREPOSITION",
        re.compile(r"\b(depend|depends|rely|relies|focus|focuses|concentrate)\s+at\b", _I),
        "Wrong preposition after verb",
        ErrorType.GRAMMAR, Severity.HIGH, min_tier=UserTier.PRO,
        suggest=lambda m: f"{m.group(1)} on",
    ),
    GrammarRule(
        "MISSING_ARTICLE",
        re.compile(r"\b(is|was)\s+(good|bad|important|beautiful|difficult)\s+(idea|person|thing|place|way)\b", _I),
        "Missing article before singular noun",
        ErrorType.GRAMMAR, Severity.MEDIUM, min_tier=UserTier.PRO,
        suggest=lambda m: f"{m.group(1)} a {m.group(2)} {m.group(3)}",
    ),
    GrammarRule(
        "PASSIVE_VOICE",
        re.compile(r"\b(is|was|were|are|been)\s+(?:being\s+)?\w+ed\b", _I),
        "Consider the active voice for clarity",
        ErrorType.STYLE, Severity.SUGGESTION, min_tier=UserTier.PREMIUM,
    ),
    GrammarRule(
        "REPEATED_WORD",
        re.compile(r"\b(\w+)\s+\1\b", _I),
        "Repeated word",
        ErrorType.FLUENCY, Severity.LOW,
        suggest=lambda m: m.group(1),
    ),
]

SPACE_BEFORE_PUNCT = re.compile(r"\s+([,.!?;:])")
REPEATED_PUNCT = re.compile(r"[!?]{3,}|\.{4,}|,{2,}")
MISSING_SPACE_AFTER_COMMA = re.compile(r",(?=[A-Za-z])")
LOWERCASE_I = re.compile(r"(?<![\w'])i(?=$|[\s,.!?;:']|\b)")

RUN_ON_WORDS = 40


class RuleBasedGrammarDetector(ErrorDetector):
    """Pattern rules for grammar, punctuation, capitalization and syntax.

    The spaCy pipeline is loaded once, when the detector is built. A load
    failure leaves ``spacy_status`` at ``UNAVAILABLE`` and the regex rules
    keep working.

    Args:
        use_spacy: Run the dependency-parse agreement check when spaCy loads.
        nlp: An already loaded spaCy pipeline, used instead of loading one.
    """

    name = "rules"
    priority = 10

    def __init__(self, use_spacy: bool = True, nlp: Any | None = None):
        if not use_spacy:
            self._nlp = None
            self.spacy_status = SpacyStatus.DISABLED
            return
        self._nlp = nlp if nlp is not None else load_spacy_model()
        self.spacy_status = SpacyStatus.OK if self._nlp is not None else SpacyStatus.UNAVAILABLE

    async def is_available(self) -> bool:
        return True

    def get_confidence(self) -> float:
        return 0.8 if self.spacy_status == SpacyStatus.OK else 0.75

    async def detect(self, text: str, config: AnalysisConfig) -> list[ErrorDetail]:
        if not text.strip():
            return []
        errors: list[ErrorDetail] = []
        for start, _end, sentence in split_sentences(text):
            errors.extend(self._grammar_errors(sentence, start, config.tier))
            errors.extend(self._capitalization_errors(sentence, start))
            if config.tier.rank >= UserTier.PRO.rank:
                errors.extend(self._syntax_errors(sentence, start))
        errors.extend(self._punctuation_errors(text))
        if self._nlp is not None:
            # Parsing is CPU bound; keep it off the event loop
            doc = await asyncio.to_thread(self._nlp, text)
            errors.extend(self._spacy_agreement_errors(doc, text))
        return errors

    def _grammar_errors(self, sentence: str, offset: int, tier: UserTier) -> list[ErrorDetail]:
        found = []
        is_question = sentence.rstrip().endswith("?")
        for rule in GRAMMAR_RULES:
            if tier.rank < rule.min_tier.rank:
                continue
            if rule.question_only and not is_question:
                continue
            for match in rule.pattern.finditer(sentence):
                if rule.skip_after_aux:
                    preceding = tokenize(sentence[: match.start()])
                    if preceding and preceding[-1] in _AUX_CONTEXT:
                        continue
                severity = rule.severity or classify_severity(
                    issue_type="grammar",
                    rule_id=rule.rule_id,
                    message=rule.message,
                    context=sentence,
                )
                found.append(
                    ErrorDetail(
                        type=rule.error_type,
                        category=category_for(rule.error_type),
                        message=rule.message,
                        position=ErrorPosition(
                            start=offset + match.start(),
                            end=offset + match.end(),
                            word=match.group(0),
                            context=sentence,
                        ),
                        severity=severity,
                        suggestion=rule.suggest(match) if rule.suggest else "",
                        confidence=0.85 if severity == Severity.CRITICAL else 0.75,
                        rule=rule.rule_id,
                    )
                )
        return found

    def _capitalization_errors(self, sentence: str, offset: int) -> list[ErrorDetail]:
        found = []
        first = sentence[0]
        if first.isalpha() and first.islower() and len(tokenize(sentence)) > 1:
            found.append(
                ErrorDetail(
                    type=ErrorType.CAPITALIZATION,
                    message="Sentence should start with a capital letter",
                    position=ErrorPosition(
                        start=offset, end=offset + 1, word=first, context=sentence
                    ),
                    severity=Severity.LOW,
                    suggestion=first.upper(),
                    confidence=0.9,
                    rule="SENTENCE_START_CAPITAL",
                )
            )
        for match in LOWERCASE_I.finditer(sentence):
            if match.start() == 0:
                continue  # already reported as a sentence-start issue
            found.append(
                ErrorDetail(
                    type=ErrorType.CAPITALIZATION,
                    message="The pronoun 'I' is always capitalized",
                    position=ErrorPosition(
                        start=offset + match.start(),
                        end=offset + match.end(),
                        word="i",
                        context=sentence,
                    ),
                    severity=Severity.MEDIUM,
                    suggestion="I",
                    confidence=0.95,
                    rule="LOWERCASE_I",
                )
            )
        return found

    def _punctuation_errors(self, text: str) -> list[ErrorDetail]:
        found = []
        stripped = text.rstrip()
        if len(tokenize(stripped)) >= 3 and stripped[-1] not in ".!?\"')":
            found.append(
                ErrorDetail(
                    type=ErrorType.PUNCTUATION,
                    message="Missing punctuation at the end of the sentence",
                    position=ErrorPosition(
                        start=len(stripped) - 1, end=len(stripped), word=stripped[-1]
                    ),
                    severity=Severity.LOW,
                    suggestion=".",
                    confidence=0.7,
                    rule="MISSING_END_PUNCTUATION",
                )
            )
        checks = (
            (SPACE_BEFORE_PUNCT, "Unexpected space before punctuation", "SPACE_BEFORE_PUNCT"),
            (REPEATED_PUNCT, "Repeated punctuation", "REPEATED_PUNCT"),
            (MISSING_SPACE_AFTER_COMMA, "Missing space after comma", "COMMA_SPACE"),
        )
        for pattern, message, rule_id in checks:
            for match in pattern.finditer(text):
                found.append(
                    ErrorDetail(
                        type=ErrorType.PUNCTUATION,
                        message=message,
                        position=ErrorPosition(
                            start=match.start(), end=match.end(), word=match.group(0)
                        ),
                        severity=Severity.LOW,
                        confidence=0.8,
                        rule=rule_id,
                    )
                )
        return found

    def _syntax_errors(self, sentence: str, offset: int) -> list[ErrorDetail]:
        words = tokenize(sentence)
        if len(words) <= RUN_ON_WORDS or "," in sentence or ";" in sentence:
            return []
        return [
            ErrorDetail(
                type=ErrorType.SYNTAX,
                message="Run-on sentence; consider splitting it",
                position=ErrorPosition(
                    start=offset, end=offset + len(sentence), word="", context=sentence
                ),
                severity=Severity.MEDIUM,
                confidence=0.6,
                rule="RUN_ON_SENTENCE",
            )
        ]

    def _spacy_agreement_errors(self, doc: Any, text: str) -> list[ErrorDetail]:
        """Check subject-verb agreement on a spaCy dependency parse."""
        found = []
        for token in doc:
            # "he/she/it" + present tense non-3rd-person-singular
            if (
                token.dep_ == "nsubj"
                and token.head.pos_ == "VERB"
                and token.text.lower() in ("he", "she", "it")
                and token.head.tag_ == "VBP"
            ):
                verb = token.head
                start = min(token.idx, verb.idx)
                end = max(token.idx + len(token.text), verb.idx + len(verb.text))
                found.append(
                    ErrorDetail(
                        type=ErrorType.GRAMMAR,
                        message=f"Subject-verb agreement: '{token.text} {verb.text}'",
                        position=ErrorPosition(
                            start=start, end=end, word=text[start:end], context=token.sent.text
                        ),
                        severity=Severity.CRITICAL,
                        confidence=0.8,
                        rule="SPACY_SUBJECT_VERB",
                    )
                )
        return found
