"""Typed error taxonomy for the GitHub gateway.

Transient classes (RateLimitedError, ServerError, NetworkError) are retried
by the RetryOrchestrator and only reach callers wrapped in ExhaustedError.
Everything else propagates immediately.
"""

from typing import Any

__all__ = [
    "ClientError",
    "ConfigurationError",
    "ExhaustedError",
    "GatewayError",
    "NetworkError",
    "PaginationError",
    "PaginationOverflow",
    "RateLimitedError",
    "ServerError",
    "UnsafeLinkError",
    "UnsafeRedirectError",
    "WebhookRejected",
]


class GatewayError(Exception):
    """Base exception for every failure surfaced by the gateway.

    Attributes:
        endpoint: Request path or URL (no query string credentials are ever stored)
        status_code: Provider HTTP status when one was received
        attempts: Physical calls consumed by the logical operation
    """

    reason = "GATEWAY_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        endpoint: str | None = None,
        status_code: int | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint
        self.status_code = status_code
        self.attempts = attempts

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Public, non-leaking representation for API responses."""
        return {
            "error": self.message,
            "reason": self.reason,
            "status": self.status_code,
            "endpoint": self.endpoint,
            "attempts": self.attempts,
        }


class ConfigurationError(GatewayError):
    """Raised when the gateway is asked to do something its config cannot support."""

    reason = "NOT_CONFIGURED"


class ClientError(GatewayError):
    """4xx other than 429 (and other than rate-limit 403). Never retried."""

    reason = "CLIENT_ERROR"

    def __init__(self, message: str, *, errors: list | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class RateLimitedError(GatewayError):
    """429, or a 403 signalling an exhausted or secondary rate limit.

    Attributes:
        retry_after: Seconds from the Retry-After header, if sent
        reset_at: Epoch seconds from X-RateLimit-Reset, if sent
        secondary: True when signalled via 403 rather than 429
    """

    reason = "RATE_LIMITED"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        reset_at: float | None = None,
        secondary: bool = False,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.reset_at = reset_at
        self.secondary = secondary


class ServerError(GatewayError):
    """5xx from the provider."""

    reason = "SERVER_ERROR"
    retryable = True


class NetworkError(GatewayError):
    """Timeout or connection failure; no response was received."""

    reason = "NETWORK_ERROR"
    retryable = True


class ExhaustedError(GatewayError):
    """Retry budget consumed. Carries the last underlying failure."""

    reason = "RETRIES_EXHAUSTED"

    def __init__(self, last_error: GatewayError, *, attempts: int):
        super().__init__(
            f"Retries exhausted after {attempts} attempts: {last_error.message}",
            endpoint=last_error.endpoint,
            status_code=last_error.status_code,
            attempts=attempts,
        )
        self.last_error = last_error

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["cause"] = self.last_error.reason
        return data


class PaginationError(GatewayError):
    """Base class for terminal pagination failures."""

    reason = "PAGINATION_ERROR"


class PaginationOverflow(PaginationError):
    """The next-link chain exceeded the configured page cap."""

    reason = "PAGINATION_OVERFLOW"

    def __init__(self, max_pages: int, *, endpoint: str | None = None, items_seen: int = 0):
        super().__init__(
            f"Pagination exceeded {max_pages} pages",
            endpoint=endpoint,
            attempts=max_pages,
        )
        self.max_pages = max_pages
        self.items_seen = items_seen


class UnsafeLinkError(PaginationError):
    """A next link pointed outside the configured API root."""

    reason = "UNSAFE_PAGINATION_LINK"


class UnsafeRedirectError(GatewayError):
    """A redirect pointed outside the configured API root; it is not followed."""

    reason = "UNSAFE_REDIRECT"


class WebhookRejected(GatewayError):
    """Inbound webhook failed verification.

    Attributes:
        code: MISSING_SIGNATURE, MALFORMED_SIGNATURE, SIGNATURE_MISMATCH
              or SECRET_NOT_CONFIGURED
    """

    reason = "WEBHOOK_REJECTED"

    def __init__(self, code: str, message: str = "Invalid signature"):
        super().__init__(message, status_code=401, attempts=0)
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "reason": self.reason, "code": self.code}
