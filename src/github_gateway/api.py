"""FastAPI surface for the GitHub gateway.

- POST /api/github/webhook: verified webhook intake and dispatch
- GET /api/github/status: token, repository and rate-limit checks
- GET /health, /api/health: liveness (exempt from the inbound limiter)
- /metrics: Prometheus exposition

Every non-exempt request passes through the InboundRateLimiter first.
"""

import json
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from .__version__ import __version__
from .client import GitHubGateway
from .config import GatewayConfig, get_config
from .errors import (
    ClientError,
    ExhaustedError,
    GatewayError,
    PaginationError,
    RateLimitedError,
    UnsafeRedirectError,
    WebhookRejected,
)
from .inbound_limiter import InboundRateLimiter
from .logging_config import configure_logging, sanitize_log_input
from .models import WebhookEnvelope
from .webhook import WebhookDispatcher

logger = logging.getLogger("github_gateway.api")

__all__ = ["create_app", "error_status", "main"]


def error_status(error: GatewayError) -> int:
    """HTTP status this service answers with for a gateway error."""
    if isinstance(error, WebhookRejected):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(error, ClientError):
        if error.status_code is None:
            return status.HTTP_400_BAD_REQUEST
        # Unfollowed 3xx
        return error.status_code if error.status_code >= 400 else status.HTTP_502_BAD_GATEWAY
    if isinstance(error, (RateLimitedError, ExhaustedError)):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, (PaginationError, UnsafeRedirectError)):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _client_id(request: Request) -> str | None:
    """Authenticated user id when an upstream layer set one, else source address."""
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    return request.client.host if request.client else None


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def create_app(
    config: GatewayConfig | None = None,
    gateway: GitHubGateway | None = None,
    dispatcher: WebhookDispatcher | None = None,
    limiter: InboundRateLimiter | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Gateway configuration (default: get_config(), or the gateway's)
        gateway: GitHubGateway to serve; created from config when omitted
        dispatcher: Webhook handlers; an empty dispatcher when omitted
        limiter: Inbound limiter; built from config when omitted

    Returns:
        Configured FastAPI app. A gateway created here is closed on shutdown.
    """
    if config is None:
        config = gateway.config if gateway is not None else get_config()
    owns_gateway = gateway is None
    gateway = gateway or GitHubGateway(config)
    dispatcher = dispatcher or WebhookDispatcher()
    limiter = limiter or InboundRateLimiter(
        max_requests=config.inbound_max_requests,
        window_seconds=config.inbound_window_ms / 1000.0,
        exempt_paths=config.exempt_paths,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "gateway_started",
            extra={
                "version": __version__,
                "configured": gateway.is_configured(),
                "webhook_verification": gateway.verifier.configured,
            },
        )
        yield
        if owns_gateway:
            await gateway.close()
        logger.info("gateway_stopped")

    app = FastAPI(
        title="GitHub Gateway",
        description="Resilient GitHub REST API gateway with verified webhook intake",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.gateway = gateway
    app.state.dispatcher = dispatcher
    app.state.limiter = limiter

    app.mount("/metrics", make_asgi_app())

    @app.middleware("http")
    async def inbound_rate_limit(request: Request, call_next):
        path = request.url.path
        decision = limiter.check(_client_id(request), path)
        if not decision.allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers=decision.headers(),
                content={
                    "error": "Too Many Requests",
                    "message": "Rate limit exceeded. Please slow down.",
                    "limit": decision.limit,
                    "remaining": 0,
                    "used": decision.used,
                    "windowMs": config.inbound_window_ms,
                    "retryAfter": int(decision.headers()["Retry-After"]),
                    "resetTime": _iso(decision.reset_at),
                    "timestamp": _iso(datetime.now(timezone.utc).timestamp()),
                    "path": path,
                },
            )
        response = await call_next(request)
        for name, value in decision.headers().items():
            response.headers[name] = value
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        code = error_status(exc)
        if code == status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(
                "unhandled_gateway_error",
                extra={"path": request.url.path, "error_reason": exc.reason},
            )
            return JSONResponse(
                status_code=code,
                content={"error": "Internal gateway error", "reason": exc.reason},
            )

        headers = {}
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            headers["Retry-After"] = str(math.ceil(exc.retry_after))
        return JSONResponse(status_code=code, content=exc.to_dict(), headers=headers)

    @app.get("/health", tags=["Health"])
    @app.get("/api/health", tags=["Health"])
    async def health():
        """Liveness check."""
        return {
            "status": "ok",
            "service": "github-gateway",
            "version": __version__,
            "configured": gateway.is_configured(),
        }

    @app.get("/api/github/status", tags=["GitHub"])
    async def github_status():
        """Token and repository checks plus the latest rate-limit snapshot."""
        rate_limit = gateway.rate_limit_status()
        if not gateway.is_configured():
            return {"connected": False, "reason": "NOT_CONFIGURED", "rate_limit": rate_limit}

        token = await gateway.check_token()
        if not token["ok"]:
            return {
                "connected": False,
                "reason": token["reason"],
                "token": token,
                "rate_limit": gateway.rate_limit_status(),
            }

        repo = await gateway.check_repo_access()
        result = {
            "connected": repo["ok"],
            "token": token,
            "repo": repo,
            "rate_limit": gateway.rate_limit_status(),
        }
        if not repo["ok"]:
            result["reason"] = repo["reason"]
        return result

    @app.post("/api/github/webhook", tags=["GitHub"])
    async def github_webhook(request: Request):
        """Verify, parse and dispatch one webhook delivery.

        The body is read as raw bytes and verified before it is parsed.
        """
        raw_body = await request.body()
        envelope = gateway.verify_envelope(WebhookEnvelope.from_headers(raw_body, request.headers))

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            logger.warning(
                "webhook_invalid_json",
                extra={"delivery": sanitize_log_input(envelope.delivery_id or "")},
            )
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Invalid JSON payload"},
            )
        if not isinstance(payload, dict):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"error": "Webhook payload must be a JSON object"},
            )

        handled = await dispatcher.dispatch(envelope, payload)
        return {
            "success": True,
            "event": envelope.event,
            "delivery": envelope.delivery_id,
            "handled": handled,
        }

    return app


def main() -> None:
    """Run the gateway with uvicorn (the github-gateway console script)."""
    import uvicorn

    config = get_config()
    configure_logging(config=config)
    uvicorn.run(create_app(config=config), host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    main()
