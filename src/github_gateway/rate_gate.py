"""Rate Gate: tracks the provider's advertised call budget.

observe() is fed the headers of every response; should_wait() turns the
latest snapshot into advisory pacing. Correctness never depends on the
gate: the provider enforces its limits and the RetryOrchestrator reacts to
the actual 429/403 responses.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from . import metrics
from .models import RateLimitState

logger = logging.getLogger("github_gateway.rate_gate")

__all__ = ["RateGate", "parse_int_header"]


def parse_int_header(headers: Mapping[str, str], name: str) -> int | None:
    """Integer header value, or None when absent or malformed."""
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except (TypeError, ValueError, OverflowError):
        logger.warning("non_numeric_rate_limit_header", extra={"header": name, "value": raw})
        return None


class RateGate:
    """Shared, thread-safe view of one credential's rate-limit budget.

    One instance per credential; share it between GitHubGateway instances
    that use the same token.

    Example:
        >>> gate = RateGate()
        >>> gate.observe({"x-ratelimit-limit": "5000", "x-ratelimit-remaining": "4999",
        ...               "x-ratelimit-reset": "1893456000"})
        >>> gate.state.remaining
        4999
    """

    def __init__(
        self,
        low_water_ratio: float = 0.10,
        max_wait_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the gate.

        Args:
            low_water_ratio: Advise waiting once remaining < ratio * limit
            max_wait_seconds: Ceiling for any advised delay
            clock: Epoch-seconds clock (injectable for tests)
        """
        self.low_water_ratio = low_water_ratio
        self.max_wait_seconds = max_wait_seconds
        self._clock = clock
        self._state = RateLimitState()
        self._lock = threading.Lock()

    @property
    def state(self) -> RateLimitState:
        """Copy of the current snapshot."""
        with self._lock:
            return self._state.copy()

    def observe(self, headers: Mapping[str, str]) -> RateLimitState:
        """Fold one response's rate-limit headers into the shared state.

        reset_at never moves backwards while the observed window is still
        open, so a late-arriving response from an earlier window cannot
        undo a newer observation. Within one window remaining only decreases.

        Args:
            headers: Case-insensitive response headers

        Returns:
            Snapshot after the update
        """
        limit = parse_int_header(headers, "x-ratelimit-limit")
        remaining = parse_int_header(headers, "x-ratelimit-remaining")
        reset = parse_int_header(headers, "x-ratelimit-reset")
        used = parse_int_header(headers, "x-ratelimit-used")
        resource = headers.get("x-ratelimit-resource")

        if limit is None and remaining is None and reset is None:
            return self.state

        now = self._clock()
        with self._lock:
            state = self._state
            window_open = state.reset_at is not None and state.reset_at > now

            if reset is not None and window_open and reset < state.reset_at:
                # Stale response from an earlier window
                logger.debug(
                    "stale_rate_limit_observation",
                    extra={"observed_reset": reset, "current_reset": state.reset_at},
                )
                return state.copy()

            same_window = reset is None or (
                state.reset_at is not None and float(reset) == state.reset_at
            )

            if limit is not None:
                state.limit = limit
            if remaining is not None:
                if same_window and state.remaining is not None and window_open:
                    state.remaining = min(state.remaining, remaining)
                else:
                    state.remaining = remaining
            if used is not None:
                state.used = used if state.used is None or not same_window else max(state.used, used)
            if reset is not None:
                state.reset_at = float(reset)
            if resource:
                state.resource = resource

            snapshot = state.copy()

        if snapshot.remaining is not None:
            metrics.rate_limit_remaining.set(snapshot.remaining)
        if snapshot.limit is not None:
            metrics.rate_limit_limit.set(snapshot.limit)

        if snapshot.remaining is not None and snapshot.remaining % 500 == 0:
            logger.info(
                "rate_limit_status",
                extra={
                    "remaining": snapshot.remaining,
                    "limit": snapshot.limit,
                    "reset_at": (
                        datetime.fromtimestamp(snapshot.reset_at, tz=timezone.utc).isoformat()
                        if snapshot.reset_at
                        else None
                    ),
                },
            )
        return snapshot

    def should_wait(self) -> float:
        """Advisory delay in seconds before the next call.

        0.0 while the budget is above the low-water mark, the window has
        already reset, or nothing has been observed yet. Below the mark the
        remaining budget is spread evenly over the rest of the window; with
        nothing left, the whole remaining window.

        Returns:
            Seconds to wait (never negative, capped at max_wait_seconds)
        """
        with self._lock:
            limit = self._state.limit
            remaining = self._state.remaining
            reset_at = self._state.reset_at

        if remaining is None or reset_at is None:
            return 0.0

        seconds_left = reset_at - self._clock()
        if seconds_left <= 0:
            return 0.0

        low_water = (limit or 0) * self.low_water_ratio
        if remaining > 0 and remaining >= low_water:
            return 0.0

        wait = seconds_left if remaining <= 0 else seconds_left / (remaining + 1)
        return min(wait, self.max_wait_seconds)

    def reset(self) -> None:
        """Forget all observations."""
        with self._lock:
            self._state = RateLimitState()
