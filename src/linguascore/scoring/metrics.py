"""Text statistics used by detectors and the category scorer."""

import re

import textstat

from linguascore.models.accuracy import SentenceType, TextStatistics

WORD_RE = re.compile(r"[A-Za-z']+")
SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)")

WH_WORDS = frozenset({"who", "what", "where", "when", "why", "how", "which"})


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens."""
    return WORD_RE.findall(text.lower())


def split_sentences(text: str) -> list[tuple[int, int, str]]:
    """Split text into sentences with character offsets.

    Returns:
        List of (start, end, sentence_text) with surrounding whitespace trimmed.
    """
    sentences = []
    for match in SENTENCE_RE.finditer(text):
        raw = match.group(0)
        stripped = raw.strip()
        if not stripped:
            continue
        start = match.start() + (len(raw) - len(raw.lstrip()))
        sentences.append((start, start + len(stripped), stripped))
    return sentences


def detect_sentence_type(text: str) -> SentenceType:
    """Question if the text ends with '?' or opens with a question word."""
    stripped = text.strip()
    if not stripped:
        return SentenceType.STATEMENT
    if stripped.endswith("?"):
        return SentenceType.QUESTION
    words = tokenize(stripped)
    # Short chat messages often drop the "?"
    if words and words[0] in WH_WORDS and len(words) <= 12:
        return SentenceType.QUESTION
    return SentenceType.STATEMENT


def compute_text_statistics(text: str) -> TextStatistics:
    """Word, sentence and readability statistics for one message.

    Args:
        text: Raw user message.

    Returns:
        TextStatistics with error counters left at zero.
    """
    words = tokenize(text)
    if not words:
        return TextStatistics(char_count=len(text))

    sentences = split_sentences(text)
    sentence_count = max(len(sentences), 1)

    try:
        readability = textstat.flesch_kincaid_grade(text)
    except Exception:
        readability = 5.0

    return TextStatistics(
        word_count=len(words),
        sentence_count=sentence_count,
        char_count=len(text),
        unique_word_count=len(set(words)),
        avg_sentence_length=round(len(words) / sentence_count, 2),
        readability_grade=round(max(0.0, min(float(readability), 20.0)), 2),
        sentence_type=detect_sentence_type(text),
    )
