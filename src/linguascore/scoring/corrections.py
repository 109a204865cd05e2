"""Explicit corrections in the AI tutor's reply, turned into deferred penalties.

Only structurally marked corrections count. Free-text hints such as
"that's a mistake" are recorded but never penalized, and a "no corrections
needed" remark never cancels penalties found elsewhere.
"""

import re

import structlog

from linguascore.models.accuracy import CorrectionAnalysis, DeferredPenalties
from linguascore.models.errors import ErrorDetail, ErrorPosition, ErrorType, Severity

logger = structlog.get_logger()

BRACKET_RE = re.compile(r'\[CORRECTION:\s*"([^"\]]+)"(?:\s*->\s*"([^"\]]+)")?\]', re.IGNORECASE)
SIDE_BY_SIDE_RE = re.compile(r'"([^"\]]+)"\s*(?:→|->|=>)\s*"([^"\]]+)"')
PAIRED_REWRITE_RE = re.compile(
    r'(original|before)\s*:\s*"([^"]+)"[\s\S]{0,120}?'
    r'(improved|after|afterwards|better|rewrite)\s*:\s*"([^"]+)"',
    re.IGNORECASE,
)
PRAISE_RE = re.compile(r"(no corrections needed|perfect|no errors|well written)", re.IGNORECASE)
HIGH_APPRECIATION_RE = re.compile(r"well done|good job|excellent|great", re.IGNORECASE)
MINIMAL_APPRECIATION_RE = re.compile(r"nice|okay|not bad|minimal", re.IGNORECASE)

SOFT_INDICATORS = (
    "should be",
    "more clear",
    "sounds incorrect",
    "incorrect",
    "wrong",
    "mistake",
    "fix this",
    "needs correction",
)

# A rewrite counts when it differs enough from the learner's message
JACCARD_THRESHOLD = 0.8
LEVENSHTEIN_THRESHOLD = 0.15

PENALTY_CAP = 5.0
PENALTY_RATES = {"grammar": 1.5, "vocabulary": 0.5, "fluency": 0.3, "spelling": 0.1}

_MARKDOWN_RE = re.compile(r"[<>*`_]")
_SPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Strip markdown characters, collapse whitespace and lowercase."""
    return _SPACE_RE.sub(" ", _MARKDOWN_RE.sub("", text or "")).strip().lower()


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]


def jaccard(a: str, b: str) -> float:
    a_words, b_words = set(a.split()), set(b.split())
    union = a_words | b_words
    if not union:
        return 0.0
    return len(a_words & b_words) / len(union)


def is_significant_rewrite(original: str, rewrite: str) -> bool:
    """True when the rewrite differs by word set or by character edits."""
    longest = max(len(original), len(rewrite))
    edit_ratio = levenshtein(original, rewrite) / longest if longest else 0.0
    return jaccard(original, rewrite) < JACCARD_THRESHOLD or edit_ratio > LEVENSHTEIN_THRESHOLD


def _correction(before: str | None, after: str, message: str, user_norm: str) -> ErrorDetail:
    start = user_norm.find(before) if before else -1
    return ErrorDetail(
        type=ErrorType.GRAMMAR,
        message=message,
        position=ErrorPosition(
            start=start,
            end=start + len(before) if before and start >= 0 else -1,
            word=before or "",
        ),
        severity=Severity.MEDIUM,
        suggestion=after,
        source="ai_response",
        rule="AI_CORRECTION",
    )


def compute_penalties(count: int) -> DeferredPenalties:
    if count <= 0:
        return DeferredPenalties()
    return DeferredPenalties(
        **{name: min(PENALTY_CAP, count * rate) for name, rate in PENALTY_RATES.items()}
    )


def extract_corrections(user_message: str, ai_response: str) -> CorrectionAnalysis:
    """Scan the AI reply for explicit corrections.

    Args:
        user_message: The learner's message (for locating corrected spans
            and judging rewrites).
        ai_response: The tutor's reply.

    Returns:
        CorrectionAnalysis with deferred penalties; nothing is applied here.
    """
    ai_response = ai_response or ""
    user_norm = normalize(user_message)
    corrections: list[ErrorDetail] = []

    bracket_spans = []
    for match in BRACKET_RE.finditer(ai_response):
        bracket_spans.append(match.span())
        if match.group(2):
            before, after = normalize(match.group(1)), normalize(match.group(2))
        else:
            before, after = None, normalize(match.group(1))
        corrections.append(_correction(before, after, "AI suggested a correction", user_norm))

    for match in SIDE_BY_SIDE_RE.finditer(ai_response):
        # Arrow pairs inside a bracketed marker were already counted
        if any(start < match.end() and match.start() < end for start, end in bracket_spans):
            continue
        corrections.append(
            _correction(
                normalize(match.group(1)),
                normalize(match.group(2)),
                "AI suggested a side-by-side correction",
                user_norm,
            )
        )

    for match in PAIRED_REWRITE_RE.finditer(ai_response):
        before, after = normalize(match.group(2)), normalize(match.group(4))
        if is_significant_rewrite(user_norm, after):
            corrections.append(_correction(before, after, "AI provided a paired rewrite", user_norm))

    clean = normalize(ai_response)
    soft_hints = [hint for hint in SOFT_INDICATORS if hint in clean]
    if soft_hints:
        logger.debug("soft_correction_hints", hints=soft_hints)

    no_corrections = bool(PRAISE_RE.search(ai_response))
    detected = len(corrections)

    if HIGH_APPRECIATION_RE.search(ai_response):
        appreciation = "high"
    elif MINIMAL_APPRECIATION_RE.search(ai_response):
        appreciation = "minimal"
    elif detected == 0:
        appreciation = "moderate"
    else:
        appreciation = "none"

    if detected == 0:
        severity = "none"
    elif detected <= 2:
        severity = "minor"
    elif detected <= 5:
        severity = "moderate"
    else:
        severity = "major"

    penalties = compute_penalties(detected)
    if detected:
        logger.debug("ai_corrections_extracted", count=detected, penalties=penalties.model_dump())

    return CorrectionAnalysis(
        detected_corrections=detected,
        corrections=corrections,
        penalties=penalties,
        no_corrections_signal=no_corrections,
        soft_hints=soft_hints,
        appreciation_level=appreciation,
        severity_of_corrections=severity,
    )


def apply_deferred_penalties(
    scores: dict[str, float], penalties: DeferredPenalties
) -> dict[str, float]:
    """Subtract deferred penalties from computed category scores.

    Categories absent from ``scores`` (not computed for this message) are
    left alone. Returns a new dict.
    """
    merged = dict(scores)
    for name, penalty in penalties.model_dump().items():
        if name in merged and penalty:
            merged[name] = round(max(0.0, min(100.0, merged[name] - penalty)), 1)
    return merged
