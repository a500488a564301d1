"""
Prometheus metrics definitions for the GitHub gateway.

Naming conventions: snake_case, github_gateway_ prefix.
"""

from prometheus_client import Counter, Gauge, Histogram

# ==============================================================================
# OUTBOUND - calls made to the GitHub REST API
# ==============================================================================

requests_total = Counter(
    "github_gateway_requests_total",
    "Physical calls made to the GitHub API",
    ["method", "outcome"],
    # outcome: success, rate_limited, server_error, client_error, network_error
)

request_duration_seconds = Histogram(
    "github_gateway_request_duration_seconds",
    "Duration of physical calls to the GitHub API",
    ["method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0],
)

retries_total = Counter(
    "github_gateway_retries_total",
    "Retries scheduled by the retry orchestrator",
    ["reason"],
    # reason: RATE_LIMITED, SERVER_ERROR, NETWORK_ERROR
)

operations_total = Counter(
    "github_gateway_operations_total",
    "Logical operations by final state",
    ["state"],
    # state: success, exhausted, terminal
)

rate_limit_remaining = Gauge(
    "github_gateway_rate_limit_remaining",
    "Remaining provider budget as last advertised",
)

rate_limit_limit = Gauge(
    "github_gateway_rate_limit_limit",
    "Provider budget for the current window as last advertised",
)

throttle_wait_seconds = Histogram(
    "github_gateway_throttle_wait_seconds",
    "Proactive delays applied on Rate Gate advice",
    buckets=[0.1, 0.5, 1, 5, 15, 60, 300, 900, 3600],
)

# ==============================================================================
# PAGINATION
# ==============================================================================

pages_fetched_total = Counter(
    "github_gateway_pages_fetched_total",
    "Pages fetched by the pagination walker",
)

pagination_overflows_total = Counter(
    "github_gateway_pagination_overflows_total",
    "Pagination walks aborted at the page cap",
)

# ==============================================================================
# INBOUND
# ==============================================================================

webhook_verifications_total = Counter(
    "github_gateway_webhook_verifications_total",
    "Inbound webhook verification results",
    ["result"],
    # result: verified, MISSING_SIGNATURE, MALFORMED_SIGNATURE,
    #         SIGNATURE_MISMATCH, SECRET_NOT_CONFIGURED
)

inbound_requests_total = Counter(
    "github_gateway_inbound_requests_total",
    "Inbound requests seen by the inbound rate limiter",
    ["decision"],
    # decision: allowed, rejected, exempt
)
