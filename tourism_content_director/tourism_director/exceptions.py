"""
Error taxonomy for the generation pipeline.

ConfigurationError is fatal and never retried. RequestError and its subclasses are
recoverable: callers substitute a fallback or skip the unit of work. CancellationError
is a control signal, not a failure. GenerationError wraps anything that escaped the
orchestrator's own recovery.
"""
from typing import Optional


class ConfigurationError(Exception):
    """Missing or rejected credentials for an external provider."""


class RequestError(Exception):
    """LLM call failed or returned unusable content."""

    def __init__(self, message: str, context: Optional[str] = None) -> None:
        super().__init__(message)
        self.context = context


class RateLimitError(RequestError):
    """Provider rate limit hit; retry after a longer fixed wait."""


class GatewayError(RequestError):
    """CDN / gateway error page (502/503/504) instead of a model response."""


class RequestTimeoutError(RequestError):
    """Provider did not answer in time."""


class SslError(RequestError):
    """TLS connection dropped (unexpected EOF, reset)."""


class PlacesApiError(Exception):
    """Places provider returned an error or an unreadable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CancellationError(Exception):
    """Raised at a checkpoint when a cancellation was requested."""


class GenerationError(Exception):
    """Unexpected failure of a generation run; the run is marked failed."""


class GenerationInProgressError(Exception):
    """Another generation run holds the lock."""


class UnknownProfileError(ValueError):
    """Tourist profile key not in the known profile table."""

    def __init__(self, key: str) -> None:
        super().__init__(f"unknown_tourist_profile: {key}")
        self.key = key
