"""Map a detector's native issue taxonomy onto the fixed severity scale.

Rules are checked in order: critical rule patterns, major, high, critical
context patterns, then a default table keyed by issue type. Structural
grammar problems therefore always outrank generic style or typographical
flags.
"""

import re

from linguascore.models.errors import Severity

CRITICAL_RULE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bsubject[-_\s]?verb\b"),
    re.compile(r"\bverb[-_\s]?agreement\b"),
    re.compile(r"\bsva\b"),
    re.compile(r"\bauxili(?:ary|aries)\b"),
    re.compile(r"\bmissing[-_\s]?aux\b"),
    re.compile(r"\bmodal\b.*\bbase\b"),
)

MAJOR_RULE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bverb[-_\s]?form\b"),
    re.compile(r"\bwrong[-_\s]?tense\b"),
    re.compile(r"\bverb\b.*\btense\b"),
    re.compile(r"\btense(s|d)?\b"),
    re.compile(r"\bmodal[-_\s]?verb\b"),
)

HIGH_RULE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bpronoun\b"),
    re.compile(r"\bpreposition\b"),
)

CRITICAL_CONTEXT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(?:i|he|she|they|we)\s+goes\b"),
    re.compile(r"\bi\s+not\s+\w+"),
    re.compile(r"\bshould\s+went\b"),
    re.compile(r"\bwe\s+was\s+\w+"),
)

ISSUE_TYPE_DEFAULTS: dict[str, Severity] = {
    "misspelling": Severity.HIGH,
    "punctuation": Severity.MEDIUM,
    "inconsistency": Severity.LOW,
    "wordchoice": Severity.LOW,
    "confused": Severity.LOW,
    "style": Severity.SUGGESTION,
    "typographical": Severity.SUGGESTION,
    "duplication": Severity.SUGGESTION,
    "uncategorized": Severity.MEDIUM,
}


def _matches(patterns: tuple[re.Pattern[str], ...], targets: list[str]) -> bool:
    return any(t and p.search(t) for t in targets for p in patterns)


def classify_severity(
    issue_type: str | None = None,
    rule_id: str | None = None,
    category_id: str | None = None,
    message: str | None = None,
    context: str | None = None,
) -> Severity:
    """Classify one finding.

    Args:
        issue_type: Detector issue type (e.g. LanguageTool ``issueType``).
        rule_id: Detector rule identifier.
        category_id: Detector category identifier.
        message: Human-readable finding message.
        context: Text surrounding the finding.

    Returns:
        Severity on the fixed scale.
    """
    issue = (issue_type or "").lower()
    rule = (rule_id or "").lower()
    ctx = (context or "").lower()

    targets = [
        re.sub(r"[_-]+", " ", value.lower())
        for value in (rule_id or "", category_id or "", message or "")
    ]

    if _matches(CRITICAL_RULE_PATTERNS, targets + [ctx]):
        return Severity.CRITICAL
    if _matches(MAJOR_RULE_PATTERNS, targets + [ctx]):
        return Severity.MAJOR
    if _matches(HIGH_RULE_PATTERNS, targets):
        return Severity.HIGH
    if ctx and _matches(CRITICAL_CONTEXT_PATTERNS, [ctx]):
        return Severity.CRITICAL

    if issue == "grammar":
        return Severity.HIGH if rule else Severity.MEDIUM
    return ISSUE_TYPE_DEFAULTS.get(issue, Severity.MEDIUM)
