"""Data models for the GitHub gateway.

Plain dataclasses; request descriptors and envelopes are frozen so that a
single descriptor can be replayed across retry attempts unchanged.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

__all__ = [
    "ApiResponse",
    "GatewayResult",
    "PageCursor",
    "RateLimitState",
    "RequestDescriptor",
    "RetryEvent",
    "RetryPlan",
    "RetryState",
    "WebhookEnvelope",
]


@dataclass(frozen=True)
class RequestDescriptor:
    """One logical request.

    Attributes:
        method: HTTP method, upper-case
        path: API path relative to the API root, or an absolute URL
              (pagination follows provider-supplied next links verbatim)
        params: Query parameters (read-only view)
        body: JSON body for POST/PUT/PATCH
        resource: Resource kind, used for logging and metrics labels
    """

    method: str
    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    body: Any = None
    resource: str = "generic"

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "params", MappingProxyType(dict(self.params or {})))

    @property
    def is_absolute(self) -> bool:
        return self.path.startswith(("http://", "https://"))

    def with_params(self, **extra: Any) -> "RequestDescriptor":
        """Copy with additional query parameters (existing keys win)."""
        merged = {**extra, **dict(self.params)}
        return RequestDescriptor(
            self.method, self.path, merged, self.body, self.resource
        )

    def follow(self, url: str) -> "RequestDescriptor":
        """Descriptor for a provider-supplied next link.

        The URL already embeds every query parameter, so none are carried over.
        """
        return RequestDescriptor("GET", url, {}, None, self.resource)


@dataclass
class RateLimitState:
    """Provider rate-limit budget as last advertised.

    Hint data only: the provider enforces the real limit.

    Attributes:
        limit: Total budget for the window
        remaining: Calls left in the window
        reset_at: Epoch seconds at which the window resets
        used: Calls consumed in the window
        resource: Provider bucket name (core, search, graphql, ...)
    """

    limit: int | None = None
    remaining: int | None = None
    reset_at: float | None = None
    used: int | None = None
    resource: str | None = None

    def copy(self) -> "RateLimitState":
        return RateLimitState(
            self.limit, self.remaining, self.reset_at, self.used, self.resource
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset_at,
            "used": self.used,
            "resource": self.resource,
        }


@dataclass
class RetryPlan:
    """Retry budget for one logical operation.

    Attributes:
        max_attempts: Total physical calls allowed (first call included)
        base_delay_ms: Exponential backoff base
        max_delay_ms: Exponential backoff ceiling
        attempt: 0-based index of the attempt in flight
    """

    max_attempts: int
    base_delay_ms: int
    max_delay_ms: int
    attempt: int = 0

    def backoff_seconds(self, attempt: int | None = None) -> float:
        """min(base * 2^attempt, max), in seconds."""
        n = self.attempt if attempt is None else attempt
        delay_ms = min(self.base_delay_ms * (2 ** n), self.max_delay_ms)
        return delay_ms / 1000.0

    @property
    def exhausted(self) -> bool:
        return self.attempt + 1 >= self.max_attempts


@dataclass(frozen=True)
class PageCursor:
    """Next-page pointer extracted from a Link header. Never persisted."""

    next_url: str | None = None

    @property
    def exhausted(self) -> bool:
        return self.next_url is None


@dataclass(frozen=True)
class WebhookEnvelope:
    """Inbound webhook delivery, exactly as received.

    Attributes:
        raw_body: Untouched request bytes (signatures cover these bytes only)
        signature: X-Hub-Signature-256 header value
        event: X-GitHub-Event header value
        delivery_id: X-GitHub-Delivery header value
    """

    raw_body: bytes
    signature: str | None = None
    event: str | None = None
    delivery_id: str | None = None

    @classmethod
    def from_headers(cls, raw_body: bytes, headers: Mapping[str, str]) -> "WebhookEnvelope":
        """Build from a raw body and a case-insensitive header mapping."""
        return cls(
            raw_body=raw_body,
            signature=headers.get("x-hub-signature-256"),
            event=headers.get("x-github-event"),
            delivery_id=headers.get("x-github-delivery"),
        )


@dataclass
class ApiResponse:
    """Decoded result of one successful physical call."""

    status_code: int
    data: Any
    headers: Mapping[str, str]
    url: str
    rate_limit: RateLimitState = field(default_factory=RateLimitState)

    @property
    def link_header(self) -> str:
        return self.headers.get("link", "") or ""


@dataclass
class GatewayResult:
    """Result of one logical operation.

    Attributes:
        data: Decoded JSON payload (None for 204 No Content)
        attempts: Physical calls consumed, including the successful one
        status_code: Final HTTP status
        rate_limit: Rate-limit snapshot after the final call
    """

    data: Any
    attempts: int
    status_code: int
    rate_limit: RateLimitState
    response: ApiResponse | None = None


class RetryState(str, Enum):
    """Retry Orchestrator transitions."""

    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class RetryEvent:
    """Emitted by the RetryOrchestrator on every transition.

    Attributes:
        state: State entered
        attempt: 0-based attempt index the event refers to
        method: HTTP method of the operation
        endpoint: Path or URL of the operation
        delay_seconds: Scheduled delay (RETRYING only)
        error: Failure that caused the transition, if any
    """

    state: RetryState
    attempt: int
    method: str
    endpoint: str
    delay_seconds: float = 0.0
    error: Exception | None = None
