"""Webhook Verifier: HMAC-SHA256 check of inbound GitHub deliveries.

The signature covers the raw request bytes, so verification must run on
the untouched body before any JSON parsing. Every failure path returns
"not verified"; nothing defaults to trusting the payload.
"""

import hashlib
import hmac
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from . import metrics
from .errors import WebhookRejected
from .logging_config import sanitize_log_input
from .models import WebhookEnvelope

logger = logging.getLogger("github_gateway.webhook")

__all__ = [
    "SIGNATURE_PREFIX",
    "WebhookDispatcher",
    "WebhookVerifier",
    "sign_payload",
    "verify_signature",
]

SIGNATURE_PREFIX = "sha256="
_HEX_DIGEST_LENGTH = hashlib.sha256().digest_size * 2
_HEX_CHARS = frozenset("0123456789abcdef")

WebhookHandler = Callable[[str, dict[str, Any], WebhookEnvelope], Any | Awaitable[Any]]


def sign_payload(raw_body: bytes, secret: str) -> str:
    """X-Hub-Signature-256 value for raw_body under secret."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def _normalize_signature(provided: str) -> str | None:
    """Hex digest from a header value, or None if malformed.

    Accepts a bare hex digest or one prefixed with "sha256=". Any other
    algorithm prefix is rejected.
    """
    value = provided.strip()
    if "=" in value:
        algorithm, _, value = value.partition("=")
        if algorithm.strip().lower() != "sha256":
            return None
    value = value.strip().lower()
    if len(value) != _HEX_DIGEST_LENGTH or not set(value) <= _HEX_CHARS:
        return None
    return value


def _check(raw_body: bytes | None, provided_signature: str | None, secret: str | None) -> str | None:
    """None when verified, otherwise the rejection code."""
    if not secret:
        return "SECRET_NOT_CONFIGURED"
    if not provided_signature:
        return "MISSING_SIGNATURE"
    if raw_body is None or not isinstance(raw_body, (bytes, bytearray)):
        return "MALFORMED_SIGNATURE"

    provided = _normalize_signature(provided_signature)
    if provided is None:
        return "MALFORMED_SIGNATURE"

    expected = hmac.new(secret.encode("utf-8"), bytes(raw_body), hashlib.sha256).hexdigest()
    # compare_digest runs in time independent of where the inputs differ
    if not hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii")):
        return "SIGNATURE_MISMATCH"
    return None


def verify_signature(raw_body: bytes, provided_signature: str | None, secret: str | None) -> bool:
    """Verify a GitHub webhook signature.

    Args:
        raw_body: Exact request bytes, before any parsing
        provided_signature: X-Hub-Signature-256 header ("sha256=<hex>")
        secret: Shared webhook secret

    Returns:
        True only when the HMAC-SHA256 of raw_body under secret matches
    """
    return _check(raw_body, provided_signature, secret) is None


class WebhookVerifier:
    """Verifies WebhookEnvelopes against a configured secret.

    Example:
        >>> verifier = WebhookVerifier(secret="s3cret")
        >>> verifier.verify(b"{}", sign_payload(b"{}", "s3cret"))
        True
    """

    def __init__(self, secret: str | None):
        self._secret = secret or None

    @property
    def configured(self) -> bool:
        return self._secret is not None

    def verify(self, raw_body: bytes, provided_signature: str | None) -> bool:
        """Boolean verification, recorded in metrics."""
        code = _check(raw_body, provided_signature, self._secret)
        metrics.webhook_verifications_total.labels(code or "verified").inc()
        return code is None

    def verify_envelope(self, envelope: WebhookEnvelope) -> WebhookEnvelope:
        """Verify an envelope or raise.

        Raises:
            WebhookRejected: With the rejection code
        """
        code = _check(envelope.raw_body, envelope.signature, self._secret)
        metrics.webhook_verifications_total.labels(code or "verified").inc()
        if code is None:
            logger.info(
                "webhook_verified",
                extra={
                    "event": sanitize_log_input(envelope.event or ""),
                    "delivery": sanitize_log_input(envelope.delivery_id or ""),
                },
            )
            return envelope

        logger.warning(
            "webhook_rejected",
            extra={
                "code": code,
                "event": sanitize_log_input(envelope.event or ""),
                "delivery": sanitize_log_input(envelope.delivery_id or ""),
            },
        )
        if code == "MISSING_SIGNATURE":
            raise WebhookRejected(code, "Missing signature header")
        if code == "SECRET_NOT_CONFIGURED":
            raise WebhookRejected(code, "Webhook verification is not configured")
        raise WebhookRejected(code, "Invalid signature")


class WebhookDispatcher:
    """Routes verified webhook payloads to handlers registered per event type.

    Handlers receive (event, payload, envelope) and may be sync or async.
    "*" registers a catch-all that runs for every event.

    Example:
        >>> dispatcher = WebhookDispatcher()
        >>> @dispatcher.on("issues")
        ... def handle_issue(event, payload, envelope):
        ...     return payload["action"]
    """

    def __init__(self):
        self._handlers: dict[str, list[WebhookHandler]] = {}

    def on(self, event: str) -> Callable[[WebhookHandler], WebhookHandler]:
        """Decorator registering a handler for event."""

        def register(handler: WebhookHandler) -> WebhookHandler:
            self.register(event, handler)
            return handler

        return register

    def register(self, event: str, handler: WebhookHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def handlers_for(self, event: str) -> list[WebhookHandler]:
        return [*self._handlers.get(event, []), *self._handlers.get("*", [])]

    async def dispatch(self, envelope: WebhookEnvelope, payload: dict[str, Any]) -> int:
        """Run every handler for the envelope's event.

        Returns:
            Number of handlers invoked
        """
        event = envelope.event or ""
        handlers = self.handlers_for(event)
        if not handlers:
            logger.info("webhook_unhandled_event", extra={"event": sanitize_log_input(event)})
            return 0

        for handler in handlers:
            result = handler(event, payload, envelope)
            if inspect.isawaitable(result):
                await result
        logger.debug(
            "webhook_dispatched",
            extra={"event": sanitize_log_input(event), "handlers": len(handlers)},
        )
        return len(handlers)
