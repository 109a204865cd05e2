"""Exception hierarchy for the scoring pipeline."""


class LinguascoreError(Exception):
    """Base class for all pipeline errors."""


class DetectorUnavailableError(LinguascoreError):
    """A detector cannot run (service down, dictionary not loaded, no API key)."""

    def __init__(self, detector: str, reason: str = "unavailable"):
        super().__init__(f"Detector '{detector}' unavailable: {reason}")
        self.detector = detector
        self.reason = reason


class DetectorTimeoutError(DetectorUnavailableError):
    """A detector call exceeded its per-call timeout."""

    def __init__(self, detector: str, timeout_seconds: float):
        super().__init__(detector, f"timed out after {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class AdvancedAggregationError(LinguascoreError):
    """Advanced weighted aggregation could not be computed."""


class PersistenceError(LinguascoreError):
    """A durable write failed."""

    def __init__(self, user_id: str, message: str):
        super().__init__(f"Persistence failed for user {user_id}: {message}")
        self.user_id = user_id

