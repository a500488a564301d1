"""Retry Orchestrator: bounded retries around the RequestExecutor.

States: ATTEMPTING -> {SUCCESS, RETRYING, EXHAUSTED, TERMINAL}

- ClientError (and any other non-retryable error): TERMINAL, no retry
- RateLimitedError: delay from Retry-After, else X-RateLimit-Reset - now,
  else exponential backoff
- ServerError / NetworkError: exponential backoff min(base * 2^attempt, max)
- max_attempts physical calls at most; then EXHAUSTED with the last cause

Built on tenacity.AsyncRetrying. Sleep and clock are injectable so the
state machine runs in tests without real delays. Transitions are reported
through an observer callable instead of being logged inline.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from . import metrics
from .config import GatewayConfig
from .errors import ExhaustedError, GatewayError, RateLimitedError
from .executor import RequestExecutor
from .models import ApiResponse, RequestDescriptor, RetryEvent, RetryPlan, RetryState
from .rate_gate import RateGate

logger = logging.getLogger("github_gateway.retry")

__all__ = ["RetryObserver", "RetryOrchestrator", "log_retry_event"]

RetryObserver = Callable[[RetryEvent], None]
SleepFunc = Callable[[float], Awaitable[None]]


def log_retry_event(event: RetryEvent) -> None:
    """Default observer: structured log line plus metrics."""
    extra = {
        "state": event.state.value,
        "attempt": event.attempt,
        "method": event.method,
        "endpoint": event.endpoint,
    }
    if event.error is not None:
        extra["error_reason"] = getattr(event.error, "reason", type(event.error).__name__)
        extra["status"] = getattr(event.error, "status_code", None)

    if event.state is RetryState.RETRYING:
        extra["delay_seconds"] = round(event.delay_seconds, 3)
        metrics.retries_total.labels(extra["error_reason"]).inc()
        logger.warning("github_retry_scheduled", extra=extra)
        return

    metrics.operations_total.labels(event.state.value).inc()
    if event.state is RetryState.SUCCESS:
        logger.debug("github_operation_succeeded", extra=extra)
    elif event.state is RetryState.EXHAUSTED:
        logger.error("github_retries_exhausted", extra=extra)
    else:
        logger.warning("github_operation_failed", extra=extra)


class RetryOrchestrator:
    """Runs a RequestDescriptor through the executor until success or a terminal state.

    Example:
        >>> orchestrator = RetryOrchestrator(executor, config)
        >>> response, attempts = await orchestrator.run(RequestDescriptor("GET", "/user"))
    """

    def __init__(
        self,
        executor: RequestExecutor,
        config: GatewayConfig,
        rate_gate: RateGate | None = None,
        observer: RetryObserver | None = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the orchestrator.

        Args:
            executor: Single-call executor
            config: Retry limits and delay bounds
            rate_gate: Consulted before each call when proactive_throttle is on
            observer: Receives a RetryEvent for every transition
            sleep: Async sleep (injectable for tests)
            clock: Epoch-seconds clock used for X-RateLimit-Reset arithmetic
        """
        self.executor = executor
        self.config = config
        self.rate_gate = rate_gate if rate_gate is not None else executor.rate_gate
        self.observer = observer or log_retry_event
        self._sleep = sleep
        self._clock = clock

    def new_plan(self) -> RetryPlan:
        """Fresh retry budget for one logical operation."""
        return RetryPlan(
            max_attempts=self.config.max_attempts,
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
        )

    def compute_delay(self, error: GatewayError, plan: RetryPlan) -> float:
        """Seconds to wait before the attempt after plan.attempt.

        Priority for rate limits: Retry-After, then reset_at - now (floored
        at min_rate_limit_delay_ms), then exponential backoff. Server and
        network errors always use exponential backoff.
        """
        backoff = plan.backoff_seconds()
        if not isinstance(error, RateLimitedError):
            return backoff

        ceiling = self.config.max_rate_limit_wait_seconds
        if error.retry_after is not None:
            return min(error.retry_after, ceiling)

        if error.reset_at is not None:
            until_reset = error.reset_at - self._clock()
            if until_reset > 0:
                floor = self.config.min_rate_limit_delay_ms / 1000.0
                return min(max(until_reset, floor), ceiling)

        return backoff

    async def run(self, descriptor: RequestDescriptor) -> tuple[ApiResponse, int]:
        """Execute with retries.

        Args:
            descriptor: Request to send (replayed unchanged on each attempt)

        Returns:
            (response, attempts consumed)

        Raises:
            ExhaustedError: Retryable failures on every one of max_attempts calls
            GatewayError: Terminal (non-retryable) failure, on the first occurrence
        """
        plan = self.new_plan()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(plan.max_attempts),
            wait=lambda state: self._wait(state, plan),
            retry=retry_if_exception(_is_retryable),
            before_sleep=lambda state: self._before_sleep(state, descriptor, plan),
            sleep=self._sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    plan.attempt = attempt.retry_state.attempt_number - 1
                    await self._throttle()
                    response = await self.executor.execute(descriptor)
        except RetryError as e:
            last = e.last_attempt.exception()
            attempts = e.last_attempt.attempt_number
            self._emit(RetryState.EXHAUSTED, plan.attempt, descriptor, error=last)
            raise ExhaustedError(last, attempts=attempts) from last
        except GatewayError as e:
            e.attempts = plan.attempt + 1
            self._emit(RetryState.TERMINAL, plan.attempt, descriptor, error=e)
            raise

        self._emit(RetryState.SUCCESS, plan.attempt, descriptor)
        return response, plan.attempt + 1

    async def _throttle(self) -> None:
        """Honor the RateGate's advisory delay."""
        if not self.config.proactive_throttle or self.rate_gate is None:
            return
        wait = self.rate_gate.should_wait()
        if wait > 0:
            metrics.throttle_wait_seconds.observe(wait)
            logger.info("rate_limit_low_throttling", extra={"wait_seconds": round(wait, 3)})
            await self._sleep(wait)

    def _wait(self, retry_state: RetryCallState, plan: RetryPlan) -> float:
        error = retry_state.outcome.exception()
        return self.compute_delay(error, plan)

    def _before_sleep(
        self, retry_state: RetryCallState, descriptor: RequestDescriptor, plan: RetryPlan
    ) -> None:
        self._emit(
            RetryState.RETRYING,
            plan.attempt,
            descriptor,
            delay=retry_state.next_action.sleep,
            error=retry_state.outcome.exception(),
        )

    def _emit(
        self,
        state: RetryState,
        attempt: int,
        descriptor: RequestDescriptor,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.observer(
            RetryEvent(
                state=state,
                attempt=attempt,
                method=descriptor.method,
                endpoint=descriptor.path,
                delay_seconds=delay,
                error=error,
            )
        )


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, GatewayError) and error.retryable
