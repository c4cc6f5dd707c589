"""Error taxonomy shared by ingestion, aggregation, and the HTTP layer."""

from __future__ import annotations

from typing import Any


class AggregatorError(Exception):
    """Base class for errors that carry a stable code and HTTP status."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, *, details: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AggregatorError):
    """Raised for malformed caller input; never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AggregatorError):
    code = "NOT_FOUND"
    status_code = 404


class UpstreamError(AggregatorError):
    """Raised when a provider call fails terminally or returns an unusable payload."""

    code = "EXTERNAL_API_ERROR"
    status_code = 502

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        base_url: str | None = None,
        status: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.base_url = base_url
        self.status = status
        self.cause = cause


class CacheError(AggregatorError):
    """Raised by cache stores; always absorbed at the cache boundary."""

    code = "CACHE_ERROR"
