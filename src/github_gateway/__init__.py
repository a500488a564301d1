"""GitHub Gateway - resilient access to the GitHub REST API.

Mediates every outbound call to GitHub and every inbound webhook:
- Signed request execution over a pooled httpx client
- Bounded retries with rate-limit aware delays (tenacity)
- Link-header pagination with a page cap
- Shared rate-limit budget tracking (Rate Gate)
- HMAC-SHA256 webhook verification, failing closed
- Per-caller inbound rate limiting for the FastAPI surface

Python Version: 3.10+ required
"""

# Logging Configuration - configure before other imports
from .logging_config import StructuredFormatter, configure_logging

# Initialize structured logging on module import
configure_logging()

from .__version__ import __version__
from .client import GitHubGateway
from .config import GatewayConfig, get_config, reset_config
from .errors import (
    ClientError,
    ConfigurationError,
    ExhaustedError,
    GatewayError,
    NetworkError,
    PaginationError,
    PaginationOverflow,
    RateLimitedError,
    ServerError,
    UnsafeLinkError,
    UnsafeRedirectError,
    WebhookRejected,
)
from .executor import RequestExecutor
from .inbound_limiter import InboundDecision, InboundRateLimiter
from .models import (
    ApiResponse,
    GatewayResult,
    PageCursor,
    RateLimitState,
    RequestDescriptor,
    RetryEvent,
    RetryPlan,
    RetryState,
    WebhookEnvelope,
)
from .pagination import PaginationWalker, parse_link_header
from .rate_gate import RateGate
from .retry import RetryOrchestrator
from .webhook import WebhookDispatcher, WebhookVerifier, sign_payload, verify_signature

__all__ = [
    "__version__",
    # Logging
    "StructuredFormatter",
    "configure_logging",
    # Configuration
    "GatewayConfig",
    "get_config",
    "reset_config",
    # Gateway
    "GitHubGateway",
    "RequestExecutor",
    "RetryOrchestrator",
    "PaginationWalker",
    "RateGate",
    "parse_link_header",
    # Webhooks
    "WebhookDispatcher",
    "WebhookVerifier",
    "sign_payload",
    "verify_signature",
    # Inbound
    "InboundDecision",
    "InboundRateLimiter",
    # Models
    "ApiResponse",
    "GatewayResult",
    "PageCursor",
    "RateLimitState",
    "RequestDescriptor",
    "RetryEvent",
    "RetryPlan",
    "RetryState",
    "WebhookEnvelope",
    # Errors
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
