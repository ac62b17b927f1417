"""
Error taxonomy shared by the digest and summary pipelines.
"""
from typing import Dict, Optional


class DigestEngineError(Exception):
    """Base class for all pipeline errors."""


class Unauthorized(DigestEngineError):
    """Caller does not own the target resource (or it does not exist)."""


class NotFound(DigestEngineError):
    """A referenced event, digest or summary does not exist."""


class ProviderError(DigestEngineError):
    """
    Failure reported by the structured-output provider.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Rate limit, timeout, network failure or 5xx. Worth one retry."""


class FatalProviderError(ProviderError):
    """Validation, malformed response or auth rejection. Never retried."""


class BestEffortFailure(DigestEngineError):
    """An optional enrichment failed. Logged, never propagated."""


class StreamingStateError(DigestEngineError):
    """A streaming write was attempted outside the Streaming state."""


class SummaryGenerationError(DigestEngineError):
    """
    One or more summary merges failed.
    failures maps granularity -> the exception raised for it.
    """

    def __init__(self, failures: Dict[str, Exception]):
        self.failures = failures
        detail = ", ".join(f"{k}: {v}" for k, v in failures.items())
        super().__init__(f"Summary generation failed ({detail})")


class MergeConflictError(DigestEngineError):
    """A summary kept changing underneath an incremental merge."""
