"""Spelling detector backed by lookup tables and an optional word list."""

import difflib
import re
from pathlib import Path

import structlog

from linguascore.detection.base import ErrorDetector
from linguascore.models.accuracy import AnalysisConfig
from linguascore.models.errors import ErrorDetail, ErrorPosition, ErrorType, Severity

logger = structlog.get_logger()

# Frequent learner misspellings and their corrections
COMMON_MISSPELLINGS: dict[str, str] = {
    "recieve": "receive",
    "beleive": "believe",
    "definately": "definitely",
    "seperate": "separate",
    "occured": "occurred",
    "untill": "until",
    "wich": "which",
    "becuase": "because",
    "becouse": "because",
    "freind": "friend",
    "tommorow": "tomorrow",
    "tomorow": "tomorrow",
    "alot": "a lot",
    "goverment": "government",
    "enviroment": "environment",
    "wierd": "weird",
    "thier": "their",
    "realy": "really",
    "finaly": "finally",
    "beggining": "beginning",
    "begining": "beginning",
    "acommodate": "accommodate",
    "adress": "address",
    "buisness": "business",
    "calender": "calendar",
    "comming": "coming",
    "diffrent": "different",
    "familly": "family",
    "grammer": "grammar",
    "happend": "happened",
    "intresting": "interesting",
    "knowlege": "knowledge",
    "langauge": "language",
    "neccessary": "necessary",
    "peolpe": "people",
    "probaly": "probably",
    "studing": "studying",
    "truely": "truly",
    "wanna": "want to",
    "gonna": "going to",
}

# Chat shorthand, counted against spelling
TEXTSPEAK: dict[str, str] = {
    "u": "you",
    "ur": "your",
    "r": "are",
    "pls": "please",
    "plz": "please",
    "thx": "thanks",
    "tnx": "thanks",
    "coz": "because",
    "cuz": "because",
    "bcoz": "because",
    "idk": "I don't know",
    "btw": "by the way",
    "im": "I'm",
    "dont": "don't",
    "cant": "can't",
    "wont": "won't",
    "doesnt": "doesn't",
    "didnt": "didn't",
    "gud": "good",
    "msg": "message",
}

ALLOWED_WORDS = frozenset({"face-to-face", "ok", "okay", "email", "online"})

TOKEN_RE = re.compile(r"[A-Za-z][A-Za-z'-]*")
_QUOTES = str.maketrans({"‘": "'", "’": "'", "‛": "'", "`": "'", "´": "'"})


class SpellingDetector(ErrorDetector):
    """Flags misspellings and textspeak.

    The built-in tables always run. Unknown-word checks run only when a
    word list (one word per line) loaded; without one the detector stays
    available with reduced coverage.

    Args:
        dictionary_path: Optional path to a newline-separated word list.
    """

    name = "spelling"
    priority = 20

    def __init__(self, dictionary_path: Path | str | None = None):
        self._words: frozenset[str] | None = None
        self._sorted_words: list[str] = []
        if dictionary_path:
            self._load_dictionary(Path(dictionary_path))

    def _load_dictionary(self, path: Path) -> None:
        try:
            with open(path, encoding="utf-8") as f:
                words = {line.strip().lower() for line in f if line.strip()}
        except OSError as e:
            logger.warning("spelling_dictionary_unavailable", path=str(path), error=str(e))
            return
        self._words = frozenset(words)
        self._sorted_words = sorted(words)
        logger.info("spelling_dictionary_loaded", path=str(path), words=len(words))

    @property
    def has_dictionary(self) -> bool:
        return self._words is not None

    async def is_available(self) -> bool:
        return True

    def get_confidence(self) -> float:
        return 0.85 if self.has_dictionary else 0.6

    def is_correct(self, word: str) -> bool:
        """Dictionary lookup; every word passes when no dictionary loaded."""
        if self._words is None:
            return True
        clean = word.strip("'-").lower()
        if len(clean) < 2 or clean in ALLOWED_WORDS or clean in self._words:
            return True
        if clean.endswith("'s") and clean[:-2] in self._words:
            return True
        if "-" in clean:
            segments = [s for s in clean.split("-") if s]
            return all(len(s) <= 1 or s in self._words for s in segments)
        return False

    def suggest(self, word: str) -> list[str]:
        if not self._sorted_words:
            return []
        return difflib.get_close_matches(word.lower(), self._sorted_words, n=5, cutoff=0.75)

    async def detect(self, text: str, config: AnalysisConfig) -> list[ErrorDetail]:
        normalized = text.translate(_QUOTES)
        errors: list[ErrorDetail] = []
        for match in TOKEN_RE.finditer(normalized):
            word = match.group(0)
            lower = word.lower()
            position = ErrorPosition(start=match.start(), end=match.end(), word=word)

            if lower in TEXTSPEAK:
                errors.append(
                    ErrorDetail(
                        type=ErrorType.TEXTSPEAK,
                        message=f"'{word}' is chat shorthand",
                        position=position,
                        severity=Severity.LOW,
                        suggestion=TEXTSPEAK[lower],
                        confidence=0.9,
                        rule="TEXTSPEAK",
                    )
                )
            elif lower in COMMON_MISSPELLINGS:
                errors.append(
                    ErrorDetail(
                        type=ErrorType.SPELLING,
                        message=f"Possible spelling mistake: '{word}'",
                        position=position,
                        severity=Severity.HIGH,
                        suggestion=COMMON_MISSPELLINGS[lower],
                        confidence=0.9,
                        rule="COMMON_MISSPELLING",
                    )
                )
            elif not self.is_correct(word):
                suggestions = self.suggest(word)
                errors.append(
                    ErrorDetail(
                        type=ErrorType.SPELLING,
                        message=f"Unknown word: '{word}'",
                        position=position,
                        severity=Severity.HIGH if suggestions else Severity.MEDIUM,
                        suggestion=suggestions[0] if suggestions else "",
                        alternatives=tuple(suggestions[1:]),
                        confidence=0.85 if suggestions else 0.7,
                        rule="DICTIONARY",
                    )
                )
        logger.debug("spelling_check_complete", error_count=len(errors))
        return errors
