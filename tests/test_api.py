"""HTTP surface tests for the FastAPI app (inbound limiter, status, webhooks)."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from github_gateway.api import create_app, error_status
from github_gateway.client import GitHubGateway
from github_gateway.errors import (
    ClientError,
    ConfigurationError,
    ExhaustedError,
    PaginationOverflow,
    RateLimitedError,
    ServerError,
    UnsafeRedirectError,
    WebhookRejected,
)
from github_gateway.inbound_limiter import InboundRateLimiter
from github_gateway.webhook import WebhookDispatcher, sign_payload

SECRET = "whsec-test"
EXEMPT = ("/health", "/api/health", "/metrics")


async def _no_sleep(seconds):
    return None


@pytest.fixture
def app_factory(scripted, config_factory):
    """Factory: app_factory(*responses, max_requests=..., dispatcher=..., **config) -> TestClient."""

    def _make(*responses, max_requests=30, dispatcher=None, **overrides):
        config = config_factory(**overrides)
        transport = scripted(*responses)
        gateway = GitHubGateway(config, transport=transport.transport(), sleep=_no_sleep)
        limiter = InboundRateLimiter(max_requests=max_requests, window_seconds=60.0, exempt_paths=EXEMPT)
        app = create_app(config=config, gateway=gateway, dispatcher=dispatcher, limiter=limiter)
        return TestClient(app), transport

    return _make


def _webhook_headers(body: bytes, event="issues", secret=SECRET):
    return {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": sign_payload(body, secret),
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
    }


# =============================================================================
# Health and inbound rate limiting
# =============================================================================


class TestHealth:
    def test_health_endpoints(self, app_factory):
        client, _ = app_factory()

        for path in ("/health", "/api/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["status"] == "ok"
            assert response.json()["configured"] is True

    def test_health_never_limited(self, app_factory):
        client, _ = app_factory(max_requests=1)

        codes = {client.get("/health").status_code for _ in range(5)}

        assert codes == {200}
        assert "X-RateLimit-Limit" not in client.get("/health").headers

    def test_metrics_exposed(self, app_factory):
        client, _ = app_factory()

        response = client.get("/metrics/")

        assert response.status_code == 200
        assert "github_gateway_" in response.text


class TestInboundRateLimit:
    def test_allowed_response_carries_headers(self, app_factory):
        client, _ = app_factory(max_requests=5, github_token="")

        response = client.get("/api/github/status")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"
        assert response.headers["X-RateLimit-Used"] == "1"

    def test_over_limit_returns_429(self, app_factory):
        client, _ = app_factory(max_requests=2, github_token="")

        assert client.get("/api/github/status").status_code == 200
        assert client.get("/api/github/status").status_code == 200
        response = client.get("/api/github/status")

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Too Many Requests"
        assert body["limit"] == 2
        assert body["remaining"] == 0
        assert body["used"] == 3
        assert body["windowMs"] == 60000
        assert body["path"] == "/api/github/status"
        assert body["resetTime"].endswith("Z")
        assert 1 <= body["retryAfter"] <= 60
        assert response.headers["Retry-After"] == str(body["retryAfter"])
        assert response.headers["X-RateLimit-Remaining"] == "0"


# =============================================================================
# Status
# =============================================================================


class TestGitHubStatus:
    def test_not_configured(self, app_factory):
        client, transport = app_factory(github_token="")

        body = client.get("/api/github/status").json()

        assert body["connected"] is False
        assert body["reason"] == "NOT_CONFIGURED"
        assert body["rate_limit"]["remaining"] is None
        assert transport.calls == 0

    def test_connected(self, app_factory):
        limit_headers = {"X-RateLimit-Limit": "5000", "X-RateLimit-Remaining": "4990",
                         "X-RateLimit-Reset": "1700003600"}
        client, transport = app_factory(
            httpx.Response(200, json={"login": "octocat"}, headers=limit_headers),
            httpx.Response(200, json={"private": False, "default_branch": "main"}, headers=limit_headers),
        )

        body = client.get("/api/github/status").json()

        assert body["connected"] is True
        assert body["token"] == {"ok": True, "login": "octocat"}
        assert body["repo"]["default_branch"] == "main"
        assert body["rate_limit"]["remaining"] == 4990
        assert transport.requests[1].url.path == "/repos/octo-org/demo"

    def test_bad_token(self, app_factory):
        client, transport = app_factory(httpx.Response(401, json={"message": "Bad credentials"}))

        body = client.get("/api/github/status").json()

        assert body["connected"] is False
        assert body["reason"] == "TOKEN_INVALID_OR_SCOPE"
        assert transport.calls == 1

    def test_repo_not_found(self, app_factory):
        client, _ = app_factory(
            httpx.Response(200, json={"login": "octocat"}),
            httpx.Response(404, json={"message": "Not Found"}),
        )

        body = client.get("/api/github/status").json()

        assert body["connected"] is False
        assert body["reason"] == "REPO_NOT_FOUND_OR_PRIVATE_NO_ACCESS"


# =============================================================================
# Webhooks
# =============================================================================


class TestWebhookEndpoint:
    def test_valid_delivery_dispatched(self, app_factory):
        dispatcher = WebhookDispatcher()
        received = []

        @dispatcher.on("issues")
        def on_issue(event, payload, envelope):
            received.append((payload["action"], envelope.delivery_id))

        client, _ = app_factory(dispatcher=dispatcher)
        body = json.dumps({"action": "opened", "issue": {"number": 7}}).encode()

        response = client.post("/api/github/webhook", content=body, headers=_webhook_headers(body))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "event": "issues",
            "delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
            "handled": 1,
        }
        assert received == [("opened", "72d3162e-cc78-11e3-81ab-4c9367dc0958")]

    def test_missing_signature(self, app_factory):
        client, _ = app_factory()

        response = client.post("/api/github/webhook", content=b"{}")

        assert response.status_code == 401
        assert response.json()["code"] == "MISSING_SIGNATURE"

    def test_wrong_secret(self, app_factory):
        client, _ = app_factory()
        body = b'{"action":"opened"}'

        response = client.post(
            "/api/github/webhook", content=body, headers=_webhook_headers(body, secret="not-it")
        )

        assert response.status_code == 401
        assert response.json()["code"] == "SIGNATURE_MISMATCH"

    def test_body_tampered_after_signing(self, app_factory):
        client, _ = app_factory()
        signed = b'{"action":"opened"}'

        response = client.post(
            "/api/github/webhook", content=b'{"action":"closed"}', headers=_webhook_headers(signed)
        )

        assert response.status_code == 401

    def test_unconfigured_secret_fails_closed(self, app_factory):
        client, _ = app_factory(github_webhook_secret="")
        body = b"{}"

        response = client.post("/api/github/webhook", content=body, headers=_webhook_headers(body))

        assert response.status_code == 401
        assert response.json()["code"] == "SECRET_NOT_CONFIGURED"

    def test_invalid_json_after_valid_signature(self, app_factory):
        client, _ = app_factory()
        body = b"not json"

        response = client.post("/api/github/webhook", content=body, headers=_webhook_headers(body))

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON payload"}

    def test_non_object_payload(self, app_factory):
        client, _ = app_factory()
        body = b"[1, 2]"

        response = client.post("/api/github/webhook", content=body, headers=_webhook_headers(body))

        assert response.status_code == 400

    def test_handler_gateway_error_mapped(self, app_factory):
        dispatcher = WebhookDispatcher()

        @dispatcher.on("push")
        def rate_limited(event, payload, envelope):
            raise RateLimitedError("limited", retry_after=2.5, status_code=429)

        client, _ = app_factory(dispatcher=dispatcher)
        body = b"{}"

        response = client.post("/api/github/webhook", content=body, headers=_webhook_headers(body, event="push"))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "3"
        assert response.json()["reason"] == "RATE_LIMITED"

    def test_unexpected_gateway_error_hides_detail(self, app_factory):
        dispatcher = WebhookDispatcher()

        @dispatcher.on("push")
        def misconfigured(event, payload, envelope):
            raise ConfigurationError("token file /etc/secret unreadable")

        client, _ = app_factory(dispatcher=dispatcher)
        body = b"{}"

        response = client.post("/api/github/webhook", content=body, headers=_webhook_headers(body, event="push"))

        assert response.status_code == 500
        assert response.json() == {"error": "Internal gateway error", "reason": "NOT_CONFIGURED"}


class TestErrorStatus:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (WebhookRejected("MISSING_SIGNATURE", "Missing signature header"), 401),
            (ClientError("Not Found", status_code=404), 404),
            (ClientError("bad"), 400),
            (ClientError("Moved Permanently", status_code=301), 502),
            (UnsafeRedirectError("Request target is outside the configured API root"), 502),
            (RateLimitedError("limited"), 503),
            (ExhaustedError(ServerError("down", status_code=502), attempts=6), 503),
            (PaginationOverflow(10, endpoint="/repos/o/r/issues", items_seen=1000), 502),
            (ConfigurationError("missing"), 500),
        ],
    )
    def test_mapping(self, error, expected):
        assert error_status(error) == expected
