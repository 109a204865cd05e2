"""LLM-based fluency and coherence review of a single learner message."""

import json

import structlog
from openai import AsyncOpenAI

from linguascore.detection.base import ErrorDetector
from linguascore.exceptions import DetectorUnavailableError
from linguascore.models.accuracy import AnalysisConfig, UserTier
from linguascore.models.errors import (
    ErrorDetail,
    ErrorPosition,
    ErrorType,
    Severity,
    category_for,
)

logger = structlog.get_logger()

FLUENCY_SYSTEM_PROMPT = """\
You are an expert English language assessor. Review ONE message written by a \
language learner and list problems with how natural and well-connected it reads.

Report only these kinds of issue:
- **fluency**: unnatural phrasing, awkward word order, non-native collocations.
- **coherence**: ideas that do not connect, missing linking words, abrupt topic jumps.

Do NOT report spelling, punctuation, capitalization or basic grammar mistakes.

Respond ONLY with a JSON object:
{
    "issues": [
        {
            "type": "fluency" | "coherence",
            "excerpt": "<exact text from the message>",
            "message": "<short explanation>",
            "suggestion": "<more natural wording>",
            "severity": "low" | "medium" | "high"
        }
    ]
}
If the message reads naturally, return {"issues": []}.
"""

_SEVERITIES = {"low": Severity.LOW, "medium": Severity.MEDIUM, "high": Severity.HIGH}
_TYPES = {"fluency": ErrorType.FLUENCY, "coherence": ErrorType.COHERENCE}

# Shorter messages carry too little signal to be worth an API call
MIN_WORDS = 5


class LLMFluencyDetector(ErrorDetector):
    """Asks a chat model for fluency and coherence issues (pro tiers and up).

    Args:
        api_key: OpenAI API key; the detector is unavailable without one.
        model: Chat model name.
        client: Injected client (tests pass a mock).
    """

    name = "llm_fluency"
    priority = 50

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key)

    async def is_available(self) -> bool:
        return self.client is not None

    def get_confidence(self) -> float:
        return 0.7

    async def detect(self, text: str, config: AnalysisConfig) -> list[ErrorDetail]:
        if self.client is None:
            raise DetectorUnavailableError(self.name, "no API key configured")
        if config.tier == UserTier.FREE or len(text.split()) < MIN_WORDS:
            return []

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": FLUENCY_SYSTEM_PROMPT},
                {"role": "user", "content": f"Message:\n{text}"},
            ],
            temperature=0.2,
            response_format={"type": "json_object"},
        )
        try:
            payload = json.loads(response.choices[0].message.content or "{}")
        except json.JSONDecodeError as e:
            raise DetectorUnavailableError(self.name, "unparseable response") from e

        errors = []
        for issue in payload.get("issues", []):
            error_type = _TYPES.get(str(issue.get("type", "")).lower())
            if error_type is None:
                continue
            excerpt = issue.get("excerpt", "")
            start = text.find(excerpt) if excerpt else -1
            errors.append(
                ErrorDetail(
                    type=error_type,
                    category=category_for(error_type),
                    message=issue.get("message", "Unnatural phrasing"),
                    position=ErrorPosition(
                        start=start,
                        end=start + len(excerpt) if start >= 0 else -1,
                        word=excerpt,
                    ),
                    severity=_SEVERITIES.get(str(issue.get("severity", "")).lower(), Severity.LOW),
                    suggestion=issue.get("suggestion", ""),
                    confidence=0.7,
                    rule="LLM_FLUENCY",
                )
            )
        logger.info("llm_fluency_complete", issue_count=len(errors), model=self.model)
        return errors
