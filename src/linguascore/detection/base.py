"""Pluggable error detector interface and the registry that runs them."""

import asyncio
import time
from abc import ABC, abstractmethod

import structlog

from linguascore.exceptions import DetectorTimeoutError, DetectorUnavailableError
from linguascore.models.accuracy import AnalysisConfig, DetectionSource
from linguascore.models.errors import ErrorDetail

logger = structlog.get_logger()


class ErrorDetector(ABC):
    """A component that scans text and returns findings.

    Subclasses set ``name`` and ``priority`` (lower runs first). ``detect``
    may return an empty list or raise ``DetectorUnavailableError``; the
    registry treats any failure as "unavailable for this message".
    """

    name: str = "detector"
    priority: int = 100

    @abstractmethod
    async def detect(self, text: str, config: AnalysisConfig) -> list[ErrorDetail]:
        """Find errors in ``text``."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the detector can run right now."""

    @abstractmethod
    def get_confidence(self) -> float:
        """Static trust weight in [0, 1]."""

    async def close(self) -> None:
        """Release held resources."""


class DetectionRun:
    """Merged output of one pass over all registered detectors."""

    def __init__(self, errors: list[ErrorDetail], sources: list[DetectionSource]):
        self.errors = errors
        self.sources = sources

    @property
    def confidence(self) -> float:
        """Mean confidence of detectors that ran, scaled by coverage."""
        if not self.sources:
            return 0.0
        ran = [s for s in self.sources if s.status == "ok"]
        if not ran:
            return 0.0
        mean = sum(s.confidence for s in ran) / len(ran)
        return round(mean * len(ran) / len(self.sources), 3)


class DetectorRegistry:
    """Holds detectors in priority order and runs them with per-call timeouts.

    Args:
        detectors: Detectors to register.
        timeout_seconds: Limit for a single ``detect`` call.
    """

    def __init__(self, detectors: list[ErrorDetector] | None = None, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._detectors: list[ErrorDetector] = []
        for detector in detectors or []:
            self.register(detector)

    def register(self, detector: ErrorDetector) -> None:
        self._detectors.append(detector)
        self._detectors.sort(key=lambda d: d.priority)
        logger.info("detector_registered", detector=detector.name, priority=detector.priority)

    @property
    def detectors(self) -> list[ErrorDetector]:
        return list(self._detectors)

    async def _run_one(
        self, detector: ErrorDetector, text: str, config: AnalysisConfig
    ) -> tuple[list[ErrorDetail], DetectionSource]:
        start = time.perf_counter()
        source = DetectionSource(name=detector.name, confidence=detector.get_confidence())
        errors: list[ErrorDetail] = []
        try:
            if not await asyncio.wait_for(detector.is_available(), self.timeout_seconds):
                source.status = "unavailable"
            else:
                found = await asyncio.wait_for(
                    detector.detect(text, config), self.timeout_seconds
                )
                errors = [e.with_source(detector.name) for e in found]
        except (TimeoutError, DetectorTimeoutError):
            source.status = "timeout"
            logger.warning(
                "detector_timeout", detector=detector.name, timeout=self.timeout_seconds
            )
        except DetectorUnavailableError as e:
            source.status = "unavailable"
            logger.info("detector_unavailable", detector=detector.name, reason=e.reason)
        except Exception as e:
            source.status = "error"
            logger.warning("detector_failed", detector=detector.name, error=str(e))
        source.error_count = len(errors)
        source.duration_ms = round((time.perf_counter() - start) * 1000, 1)
        return errors, source

    async def run(self, text: str, config: AnalysisConfig) -> DetectionRun:
        """Run every detector concurrently and merge results in priority order."""
        if not self._detectors:
            return DetectionRun([], [])
        outcomes = await asyncio.gather(
            *(self._run_one(d, text, config) for d in self._detectors)
        )
        errors: list[ErrorDetail] = []
        sources: list[DetectionSource] = []
        for found, source in outcomes:
            errors.extend(found)
            sources.append(source)
        logger.debug(
            "detection_complete",
            error_count=len(errors),
            sources=[(s.name, s.status) for s in sources],
        )
        return DetectionRun(errors, sources)

    async def close(self) -> None:
        for detector in self._detectors:
            await detector.close()
