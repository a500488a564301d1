"""GitHubGateway: the single entry point for calls to the GitHub REST API.

Wires the RateGate, RequestExecutor, RetryOrchestrator and PaginationWalker
together for one credential, and verifies inbound webhooks against the
configured secret.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any

import httpx

from .config import GatewayConfig
from .errors import ConfigurationError, GatewayError
from .executor import RequestExecutor
from .models import GatewayResult, RequestDescriptor, WebhookEnvelope
from .pagination import PaginationWalker
from .rate_gate import RateGate
from .retry import RetryObserver, RetryOrchestrator
from .webhook import WebhookVerifier

logger = logging.getLogger("github_gateway.client")

__all__ = ["GitHubGateway"]


class GitHubGateway:
    """Resilient GitHub REST API client.

    Every logical operation runs through the retry orchestrator with its own
    retry budget; the RateGate is shared by every operation on this
    credential. Pass the same RateGate to several gateways that use the
    same token.

    Example:
        >>> async with GitHubGateway(GatewayConfig()) as gateway:
        ...     issues = await gateway.get_all_paginated(gateway.repo_path("/issues"))
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_gate: RateGate | None = None,
        observer: RetryObserver | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            config: Gateway configuration
            transport: Optional httpx transport (tests use httpx.MockTransport)
            rate_gate: Shared RateGate; one is created when omitted
            observer: Receives every RetryEvent (default: structured logging)
            sleep: Async sleep used for backoff and throttling
            clock: Epoch-seconds clock
        """
        self.config = config
        clock = clock or time.time
        self.rate_gate = rate_gate or RateGate(
            low_water_ratio=config.low_water_ratio,
            max_wait_seconds=config.max_rate_limit_wait_seconds,
            clock=clock,
        )
        self.executor = RequestExecutor(config, self.rate_gate, transport=transport)
        self.orchestrator = RetryOrchestrator(
            self.executor,
            config,
            rate_gate=self.rate_gate,
            observer=observer,
            sleep=sleep or asyncio.sleep,
            clock=clock,
        )
        self.walker = PaginationWalker(
            self.orchestrator,
            config.github_api_url,
            max_pages=config.max_pages,
            per_page=config.per_page,
        )
        self.verifier = WebhookVerifier(config.github_webhook_secret.get_secret_value())

    async def __aenter__(self) -> "GitHubGateway":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying httpx client."""
        await self.executor.close()

    # --- Configuration ---

    def is_configured(self) -> bool:
        return self.config.is_configured()

    def repo_path(self, suffix: str = "") -> str:
        """API path under the configured repository.

        Raises:
            ConfigurationError: No repository configured
        """
        full_name = self.config.repo_full_name
        if not full_name:
            raise ConfigurationError("GitHub repository is not configured")
        if suffix and not suffix.startswith("/"):
            suffix = "/" + suffix
        return f"/repos/{full_name}{suffix}"

    # --- Requests ---

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        resource: str = "generic",
    ) -> GatewayResult:
        """Run one logical operation with retries.

        Args:
            method: HTTP method
            path: API path relative to the API root
            params: Query parameters
            body: JSON body
            resource: Resource kind for logs and metrics

        Returns:
            GatewayResult with the decoded payload and attempts consumed

        Raises:
            ClientError: 4xx (not retried)
            ExhaustedError: Transient failures on every attempt
        """
        descriptor = RequestDescriptor(method, path, params or {}, body, resource)
        response, attempts = await self.orchestrator.run(descriptor)
        return GatewayResult(
            data=response.data,
            attempts=attempts,
            status_code=response.status_code,
            rate_limit=response.rate_limit,
            response=response,
        )

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        return (await self.request("GET", path, params=params)).data

    async def post(self, path: str, body: Any = None) -> Any:
        return (await self.request("POST", path, body=body)).data

    async def put(self, path: str, body: Any = None) -> Any:
        return (await self.request("PUT", path, body=body)).data

    async def patch(self, path: str, body: Any = None) -> Any:
        return (await self.request("PATCH", path, body=body)).data

    async def delete(self, path: str) -> Any:
        return (await self.request("DELETE", path)).data

    # --- Pagination ---

    def iter_paginated(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        per_page: int | None = None,
    ) -> AsyncIterator[Any]:
        """Lazily yield every item of a collection endpoint.

        Raises:
            PaginationOverflow: More than max_pages pages
            UnsafeLinkError: A next link leaves the API root
        """
        descriptor = RequestDescriptor("GET", path, params or {}, resource="collection")
        return self.walker.walk(descriptor, per_page=per_page)

    async def get_all_paginated(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        per_page: int | None = None,
    ) -> list[Any]:
        """Every item of a collection endpoint as one ordered list.

        A single-object response is returned as a one-item list.
        """
        descriptor = RequestDescriptor("GET", path, params or {}, resource="collection")
        items = await self.walker.collect(descriptor, per_page=per_page)
        logger.info("paginated_fetch_complete", extra={"endpoint": path, "items": len(items)})
        return items

    # --- Webhooks ---

    def verify_webhook(self, raw_body: bytes, signature_header: str | None) -> bool:
        """True only when signature_header is a valid HMAC of raw_body."""
        return self.verifier.verify(raw_body, signature_header)

    def verify_envelope(self, envelope: WebhookEnvelope) -> WebhookEnvelope:
        """Verify or raise WebhookRejected."""
        return self.verifier.verify_envelope(envelope)

    # --- Diagnostics ---

    async def check_token(self) -> dict[str, Any]:
        """Validate the credential against /user."""
        if not self.config.github_token.get_secret_value():
            return {"ok": False, "reason": "NOT_CONFIGURED"}
        try:
            user = await self.get("/user")
        except GatewayError as e:
            logger.warning("token_check_failed", extra={"status": e.status_code, "error_reason": e.reason})
            return {"ok": False, "reason": "TOKEN_INVALID_OR_SCOPE", "detail": e.message}
        login = user.get("login") if isinstance(user, dict) else None
        return {"ok": True, "login": login}

    async def check_repo_access(self) -> dict[str, Any]:
        """Confirm the credential can read the configured repository."""
        if not self.is_configured():
            return {"ok": False, "reason": "NOT_CONFIGURED"}
        try:
            repo = await self.get(self.repo_path())
        except GatewayError as e:
            if e.status_code == 404:
                return {"ok": False, "reason": "REPO_NOT_FOUND_OR_PRIVATE_NO_ACCESS"}
            return {"ok": False, "reason": "UNKNOWN", "detail": e.message}
        repo = repo if isinstance(repo, dict) else {}
        return {
            "ok": True,
            "private": bool(repo.get("private")),
            "default_branch": repo.get("default_branch"),
        }

    def rate_limit_status(self) -> dict[str, Any]:
        """Latest Rate Gate snapshot plus the advisory delay."""
        status = self.rate_gate.state.to_dict()
        status["advised_wait_seconds"] = round(self.rate_gate.should_wait(), 3)
        return status
