"""Signed Request Executor: exactly one physical call to the GitHub API.

Attaches the auth/version headers, feeds every response's rate-limit
headers to the RateGate, and classifies the outcome. Never retries.
"""

import email.utils
import logging
import math
import time
from typing import Any
from urllib.parse import urlsplit

import httpx

from . import metrics
from .config import GatewayConfig
from .errors import (
    ClientError,
    GatewayError,
    NetworkError,
    RateLimitedError,
    ServerError,
    UnsafeRedirectError,
)
from .models import ApiResponse, RequestDescriptor
from .rate_gate import RateGate, parse_int_header

logger = logging.getLogger("github_gateway.executor")

__all__ = ["RequestExecutor", "build_headers", "is_under_root", "parse_retry_after"]

MAX_REDIRECTS = 5


def is_under_root(url: str, root: str) -> bool:
    """True when url has root's scheme and host and lies under root's path."""
    base = urlsplit(root.rstrip("/"))
    target = urlsplit(url)
    if (target.scheme, target.netloc) != (base.scheme, base.netloc):
        return False
    base_path = base.path.rstrip("/")
    return not base_path or target.path == base_path or target.path.startswith(base_path + "/")


def build_headers(config: GatewayConfig) -> dict[str, str]:
    """Standard headers attached to every outbound call."""
    headers = {
        "Accept": config.github_accept,
        "User-Agent": config.user_agent,
        "X-GitHub-Api-Version": config.github_api_version,
    }
    token = config.github_token.get_secret_value()
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """Retry-After as seconds: delta-seconds or an HTTP-date.

    Returns:
        Non-negative seconds, or None when absent or unparseable
    """
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed is None:
        return None
    now = time.time() if now is None else now
    return max(0.0, parsed.timestamp() - now)


def _error_message(response: httpx.Response) -> tuple[str, list]:
    """Provider message and validation errors from an error body."""
    try:
        body = response.json() if response.content else {}
    except (ValueError, UnicodeDecodeError):
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or response.reason_phrase or "GitHub API error"
    return str(message), body.get("errors") or []


class RequestExecutor:
    """Issues single authenticated requests over a pooled httpx.AsyncClient.

    Attributes:
        base_url: GitHub API root
        rate_gate: Shared RateGate updated from every response
    """

    def __init__(
        self,
        config: GatewayConfig,
        rate_gate: RateGate,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the executor.

        Args:
            config: Gateway configuration (credential, API root, timeout)
            rate_gate: RateGate shared by every caller of this credential
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = config.github_api_url
        self.rate_gate = rate_gate
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=build_headers(config),
            timeout=httpx.Timeout(config.request_timeout_seconds),
            transport=transport,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            event_hooks={"request": [self._guard_target]},
        )

    async def close(self) -> None:
        """Close the httpx client and release connections."""
        await self._client.aclose()

    async def _guard_target(self, request: httpx.Request) -> None:
        """Refuse any hop, redirects included, that leaves the API root."""
        url = str(request.url)
        if not is_under_root(url, self.base_url):
            logger.warning(
                "rejected_foreign_target",
                extra={"target": url[:100], "base_url": self.base_url},
            )
            raise UnsafeRedirectError(
                "Request target is outside the configured API root",
                endpoint=request.url.path,
            )

    async def execute(self, descriptor: RequestDescriptor) -> ApiResponse:
        """Perform one physical call.

        Args:
            descriptor: Request to send

        Returns:
            ApiResponse for any 1xx or 2xx status, after following redirects

        Raises:
            RateLimitedError: 429, or 403 with an exhausted/secondary limit
            ServerError: 5xx
            ClientError: Any other 4xx, an unfollowable 3xx, or a redirect loop
            UnsafeRedirectError: A redirect points outside the API root
            NetworkError: Timeout or transport failure
        """
        endpoint = descriptor.path
        kwargs: dict[str, Any] = {}
        if descriptor.params:
            kwargs["params"] = dict(descriptor.params)
        if descriptor.body is not None:
            kwargs["json"] = descriptor.body

        logger.debug(
            "github_request",
            extra={"method": descriptor.method, "endpoint": endpoint, "resource": descriptor.resource},
        )

        started = time.monotonic()
        try:
            response = await self._client.request(descriptor.method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            metrics.requests_total.labels(descriptor.method, "network_error").inc()
            raise NetworkError(
                f"Request timed out: {descriptor.method} {endpoint}", endpoint=endpoint
            ) from e
        except httpx.TooManyRedirects as e:
            metrics.requests_total.labels(descriptor.method, "client_error").inc()
            raise ClientError(
                f"Exceeded {MAX_REDIRECTS} redirects", endpoint=endpoint
            ) from e
        except httpx.TransportError as e:
            metrics.requests_total.labels(descriptor.method, "network_error").inc()
            raise NetworkError(
                f"Connection error: {type(e).__name__}", endpoint=endpoint
            ) from e
        finally:
            metrics.request_duration_seconds.labels(descriptor.method).observe(
                time.monotonic() - started
            )

        rate_limit = self.rate_gate.observe(response.headers)

        try:
            self._raise_for_status(response, endpoint)
        except GatewayError as e:
            metrics.requests_total.labels(descriptor.method, e.reason.lower()).inc()
            raise

        metrics.requests_total.labels(descriptor.method, "success").inc()

        if response.status_code == 204 or not response.content:
            data = None
        else:
            try:
                data = response.json()
            except ValueError:
                data = response.text

        return ApiResponse(
            status_code=response.status_code,
            data=data,
            headers=response.headers,
            url=str(response.url),
            rate_limit=rate_limit,
        )

    def _raise_for_status(self, response: httpx.Response, endpoint: str) -> None:
        """Classify an error response into the gateway taxonomy."""
        status = response.status_code
        if status < 300:
            return

        if status < 400:
            logger.error("unexpected_redirect", extra={"endpoint": endpoint, "status": status})
            raise ClientError(
                f"Unexpected {status} response without a followable Location",
                endpoint=endpoint,
                status_code=status,
            )

        message, errors = _error_message(response)
        retry_after = parse_retry_after(response.headers.get("retry-after"))
        reset = parse_int_header(response.headers, "x-ratelimit-reset")
        remaining = response.headers.get("x-ratelimit-remaining")

        if status == 429:
            logger.warning(
                "rate_limited",
                extra={"endpoint": endpoint, "status": status, "retry_after": retry_after},
            )
            raise RateLimitedError(
                message,
                retry_after=retry_after,
                reset_at=float(reset) if reset is not None else None,
                endpoint=endpoint,
                status_code=status,
            )

        if status == 403 and (
            remaining == "0"
            or retry_after is not None
            or "rate limit" in message.lower()
        ):
            logger.warning(
                "secondary_rate_limited",
                extra={"endpoint": endpoint, "status": status, "remaining": remaining},
            )
            raise RateLimitedError(
                message,
                retry_after=retry_after,
                reset_at=float(reset) if reset is not None else None,
                secondary=True,
                endpoint=endpoint,
                status_code=status,
            )

        if status >= 500:
            logger.warning("server_error", extra={"endpoint": endpoint, "status": status})
            raise ServerError(message, endpoint=endpoint, status_code=status)

        logger.error("client_error", extra={"endpoint": endpoint, "status": status, "error": message})
        raise ClientError(message, errors=errors, endpoint=endpoint, status_code=status)
