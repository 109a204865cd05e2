"""Client detector for a LanguageTool-compatible grammar service."""

import json
import time

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from linguascore.detection.base import ErrorDetector
from linguascore.detection.severity import classify_severity
from linguascore.exceptions import DetectorTimeoutError, DetectorUnavailableError
from linguascore.models.accuracy import AnalysisConfig
from linguascore.models.errors import (
    ErrorDetail,
    ErrorPosition,
    ErrorType,
    category_for,
)
from linguascore.storage.cache import CacheService, text_cache_key

logger = structlog.get_logger()

CATEGORY_TO_TYPE: dict[str, ErrorType] = {
    "GRAMMAR": ErrorType.GRAMMAR,
    "TYPOS": ErrorType.SPELLING,
    "CASING": ErrorType.CAPITALIZATION,
    "PUNCTUATION": ErrorType.PUNCTUATION,
    "TYPOGRAPHY": ErrorType.PUNCTUATION,
    "STYLE": ErrorType.STYLE,
    "REDUNDANCY": ErrorType.STYLE,
    "SEMANTICS": ErrorType.SEMANTIC,
    "COLLOCATIONS": ErrorType.COLLOCATION,
    "CONFUSED_WORDS": ErrorType.VOCABULARY,
}


def match_to_error(match: dict) -> ErrorDetail:
    """Convert one entry of the ``matches`` array into an ErrorDetail."""
    rule = match.get("rule") or {}
    category_id = (rule.get("category") or {}).get("id", "")
    context = match.get("context") or {}
    context_text = context.get("text", "")
    ctx_offset = context.get("offset", 0)
    offset = match.get("offset", 0)
    length = match.get("length", 0)
    replacements = [r.get("value", "") for r in match.get("replacements") or []]
    error_type = CATEGORY_TO_TYPE.get(category_id, ErrorType.GRAMMAR)

    return ErrorDetail(
        type=error_type,
        category=category_for(error_type),
        message=match.get("shortMessage") or match.get("message", ""),
        explanation=match.get("message", ""),
        position=ErrorPosition(
            start=offset,
            end=offset + length,
            word=context_text[ctx_offset : ctx_offset + length],
            context=context_text,
        ),
        severity=classify_severity(
            issue_type=rule.get("issueType"),
            rule_id=rule.get("id"),
            category_id=category_id,
            message=match.get("message"),
            context=context_text,
        ),
        suggestion=replacements[0] if replacements else "",
        alternatives=tuple(replacements[1:4]),
        confidence=0.9,
        rule=rule.get("id", ""),
    )


class LanguageToolDetector(ErrorDetector):
    """Posts text to ``{base_url}/check`` and maps the matches.

    Args:
        base_url: Service root, e.g. ``http://localhost:8081/v2``.
        cache: Result cache keyed by a hash of language and text.
        timeout_seconds: HTTP timeout per request.
        cache_ttl: Seconds to keep cached results.
        client: Injected HTTP client (tests pass one with a mock transport).
        availability_ttl: Seconds to reuse the last health check result.
    """

    name = "languagetool"
    priority = 1

    def __init__(
        self,
        base_url: str,
        cache: CacheService | None = None,
        timeout_seconds: float = 5.0,
        cache_ttl: int = 3600,
        client: httpx.AsyncClient | None = None,
        availability_ttl: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/").removesuffix("/check")
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.availability_ttl = availability_ttl
        self._available: bool | None = None
        self._checked_at = 0.0
        logger.info("languagetool_detector_initialized", base_url=self.base_url)

    async def is_available(self) -> bool:
        now = time.monotonic()
        if self._available is not None and now - self._checked_at < self.availability_ttl:
            return self._available
        try:
            response = await self._client.get(f"{self.base_url}/languages", timeout=2.0)
            available = response.status_code == 200 and isinstance(response.json(), list)
        except (httpx.HTTPError, ValueError):
            available = False
        self._available, self._checked_at = available, now
        return available

    def get_confidence(self) -> float:
        return 0.9

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _check(self, text: str, language: str) -> list[dict]:
        response = await self._client.post(
            f"{self.base_url}/check",
            data={"text": text, "language": language, "enabledOnly": "false"},
        )
        response.raise_for_status()
        return response.json().get("matches", [])

    async def detect(self, text: str, config: AnalysisConfig) -> list[ErrorDetail]:
        if not text.strip():
            return []
        key = text_cache_key("lt", config.language, text)
        if self.cache is not None and config.enable_cache:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.debug("languagetool_cache_hit", key=key)
                return [ErrorDetail.model_validate(e) for e in json.loads(cached)]

        try:
            matches = await self._check(text, config.language)
        except httpx.TimeoutException as e:
            logger.warning("languagetool_request_timeout", url=f"{self.base_url}/check")
            raise DetectorTimeoutError(self.name, self.timeout_seconds) from e
        except httpx.HTTPError as e:
            logger.warning("languagetool_request_failed", url=f"{self.base_url}/check", error=str(e))
            raise DetectorUnavailableError(self.name, str(e)) from e

        errors = [match_to_error(m) for m in matches]
        if self.cache is not None:
            await self.cache.set(
                key, json.dumps([e.model_dump(mode="json") for e in errors]), self.cache_ttl
            )
        logger.info("languagetool_detection_complete", error_count=len(errors))
        return errors

    async def close(self) -> None:
        await self._client.aclose()
