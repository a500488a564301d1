"""Inbound rate limiter protecting this service's own endpoints.

Fixed window per caller identity. Each identity gets max_requests calls
per window; the window restarts on the first call after it has elapsed.
Health and status paths are exempt.

This is unrelated to the RateGate, which tracks the upstream provider's
budget for outbound calls.
"""

import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from . import metrics

logger = logging.getLogger("github_gateway.inbound_limiter")

__all__ = ["ClientWindow", "InboundDecision", "InboundRateLimiter"]

ANONYMOUS_CLIENT = "anonymous"


@dataclass
class ClientWindow:
    """Request count for one caller identity.

    Attributes:
        count: Requests seen in the current window
        window_start: Epoch seconds the window opened
        lock: Serializes updates for this identity
    """

    count: int
    window_start: float
    lock: threading.Lock


@dataclass(frozen=True)
class InboundDecision:
    """Outcome of one InboundRateLimiter.check() call.

    Attributes:
        allowed: Request may proceed
        exempt: Path is on the allowlist; nothing was counted
        limit: Requests allowed per window
        remaining: Requests left in the window (never negative)
        used: Requests counted in the window, this one included
        reset_at: Epoch seconds the window closes
        retry_after: Seconds until the window closes (rejections only)
    """

    allowed: bool
    exempt: bool = False
    limit: int = 0
    remaining: int = 0
    used: int = 0
    reset_at: float = 0.0
    retry_after: float | None = None

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* response headers, plus Retry-After on rejection."""
        if self.exempt:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
            "X-RateLimit-Used": str(self.used),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return headers


class InboundRateLimiter:
    """Per-caller fixed-window request counter.

    Example:
        >>> limiter = InboundRateLimiter(max_requests=30, window_seconds=60)
        >>> decision = limiter.check("user-42", "/api/github/status")
        >>> decision.allowed
        True
    """

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60.0,
        exempt_paths: Iterable[str] = (),
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the limiter.

        Args:
            max_requests: Requests allowed per identity per window
            window_seconds: Window length
            exempt_paths: Exact paths never counted (health checks, metrics)
            clock: Epoch-seconds clock (injectable for tests)
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_paths = frozenset(p.rstrip("/") or "/" for p in exempt_paths)
        self._clock = clock
        self._windows: dict[str, ClientWindow] = {}
        self._global_lock = threading.Lock()

    def is_exempt(self, path: str) -> bool:
        return (path.rstrip("/") or "/") in self.exempt_paths

    def check(self, client_id: str | None, path: str = "/") -> InboundDecision:
        """Count one inbound request and decide whether it may proceed.

        Args:
            client_id: Authenticated user id or source address
            path: Request path, matched against the exempt allowlist

        Returns:
            InboundDecision
        """
        if self.is_exempt(path):
            metrics.inbound_requests_total.labels("exempt").inc()
            return InboundDecision(allowed=True, exempt=True, limit=self.max_requests)

        key = client_id or ANONYMOUS_CLIENT
        now = self._clock()
        while True:
            window = self._get_window(key, now)
            with window.lock:
                with self._global_lock:
                    current = self._windows.get(key)
                if current is not window:
                    # Pruned between lookup and lock; count on the live window
                    continue
                if now - window.window_start >= self.window_seconds:
                    window.count = 0
                    window.window_start = now
                window.count += 1
                count = window.count
                reset_at = window.window_start + self.window_seconds
            break

        remaining = max(0, self.max_requests - count)
        if count <= self.max_requests:
            metrics.inbound_requests_total.labels("allowed").inc()
            return InboundDecision(
                allowed=True,
                limit=self.max_requests,
                remaining=remaining,
                used=count,
                reset_at=reset_at,
            )

        retry_after = max(0.0, reset_at - now)
        metrics.inbound_requests_total.labels("rejected").inc()
        logger.warning(
            "inbound_rate_limit_exceeded",
            extra={
                "client": key,
                "path": path,
                "used": count,
                "limit": self.max_requests,
                "retry_after_seconds": round(retry_after, 3),
            },
        )
        return InboundDecision(
            allowed=False,
            limit=self.max_requests,
            remaining=0,
            used=count,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def reset(self, client_id: str | None = None) -> None:
        """Forget one identity's window, or every window."""
        with self._global_lock:
            if client_id is None:
                self._windows.clear()
            else:
                self._windows.pop(client_id, None)

    @property
    def tracked_clients(self) -> int:
        with self._global_lock:
            return len(self._windows)

    def _get_window(self, key: str, now: float) -> ClientWindow:
        """Prune elapsed windows, then fetch or create key's window."""
        with self._global_lock:
            pruned = self._prune_locked(now)
            window = self._windows.get(key)
            if window is None:
                window = ClientWindow(count=0, window_start=now, lock=threading.Lock())
                self._windows[key] = window
        if pruned:
            logger.debug("inbound_windows_pruned", extra={"count": pruned})
        return window

    def _prune_locked(self, now: float) -> int:
        """Drop fully elapsed windows. Caller holds the global lock.

        A window whose lock is held by an in-flight check() is left alone.
        """
        pruned = 0
        for key, window in list(self._windows.items()):
            if now - window.window_start < self.window_seconds:
                continue
            if not window.lock.acquire(blocking=False):
                continue
            try:
                del self._windows[key]
                pruned += 1
            finally:
                window.lock.release()
        return pruned
