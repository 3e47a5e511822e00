"""
TCGMaster — Error Types

Upstream failures are typed so callers can tell retryable conditions
(rate limited, generic upstream trouble) from terminal ones (unauthorized,
not found, malformed payload). ConfigurationError aborts a whole job before
any item is processed.
"""

from __future__ import annotations


class PricingError(Exception):
    """Base class for every error raised by the pricing engine."""


class ConfigurationError(PricingError):
    """Required configuration (e.g. an API key) is missing."""


class UpstreamError(PricingError):
    """
    Generic upstream failure: 5xx, timeout, transport error.

    Attributes:
        status_code: HTTP status, or None for transport-level failures.
        code: Upstream error code string when the body carried one.
    """

    retryable: bool = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class RateLimitedError(UpstreamError):
    """HTTP 429 after the client exhausted its retries."""


class UnauthorizedError(UpstreamError):
    """HTTP 401/403 — bad or revoked credentials."""

    retryable = False


class NotFoundError(UpstreamError):
    """HTTP 404, or a 200 response whose body carried no data."""

    retryable = False


class MalformedPayloadError(UpstreamError):
    """Response body could not be parsed into the expected shape."""

    retryable = False


class CreditsExhaustedError(UpstreamError):
    """The daily credit budget for the metered API is used up."""


class SnapshotUnavailableError(PricingError):
    """No fresh price could be fetched and no prior snapshot exists."""


class EntityNotFoundError(PricingError):
    """A row the caller referenced does not exist or is not owned by them."""
