"""Unit tests for the Retry Orchestrator state machine.

All delays go through an injected sleep, so no test waits in real time.
"""

import asyncio

import httpx
import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from github_gateway.errors import (
    ClientError,
    ExhaustedError,
    NetworkError,
    RateLimitedError,
    ServerError,
)
from github_gateway.executor import RequestExecutor
from github_gateway.models import RequestDescriptor, RetryPlan, RetryState
from github_gateway.rate_gate import RateGate
from github_gateway.retry import RetryOrchestrator

NOW = 1_700_000_000.0
USER = RequestDescriptor("GET", "/user")


def _orchestrator(config, transport, sleeper, clock, events):
    gate = RateGate(clock=clock)
    executor = RequestExecutor(config, gate, transport=transport.transport())
    return RetryOrchestrator(executor, config, observer=events.append, sleep=sleeper, clock=clock)


def _ok(body=None):
    return httpx.Response(200, json=body if body is not None else {"login": "octocat"})


# =============================================================================
# Rate-limit delays
# =============================================================================


class TestRateLimitDelays:
    """Provider hints take priority over exponential backoff."""

    @pytest.mark.asyncio
    async def test_retry_after_header_sets_delay(self, config, scripted, sleeper, clock, events):
        transport = scripted(httpx.Response(429, headers={"Retry-After": "2"}), _ok())
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        response, attempts = await orchestrator.run(USER)

        assert response.data == {"login": "octocat"}
        assert attempts == 2
        assert transport.calls == 2
        assert sleeper.delays == [2.0]

    @pytest.mark.asyncio
    async def test_exhausted_budget_waits_until_reset(self, config, scripted, sleeper, clock, events):
        limited = httpx.Response(
            403,
            json={"message": "API rate limit exceeded"},
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(NOW + 30))},
        )
        transport = scripted(limited, _ok())
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        _, attempts = await orchestrator.run(USER)

        assert attempts == 2
        assert sleeper.delays == [30.0]

    @pytest.mark.asyncio
    async def test_reset_delay_floored(self, config, scripted, sleeper, clock, events):
        clock.now = NOW + 0.5
        limited = httpx.Response(
            403,
            json={"message": "API rate limit exceeded"},
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(NOW + 1))},
        )
        transport = scripted(limited, _ok())
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        await orchestrator.run(USER)

        assert sleeper.delays == [1.0]

    @pytest.mark.asyncio
    async def test_reset_in_past_falls_back_to_backoff(self, config, scripted, sleeper, clock, events):
        limited = httpx.Response(
            403,
            json={"message": "API rate limit exceeded"},
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(NOW - 10))},
        )
        transport = scripted(limited, _ok())
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        await orchestrator.run(USER)

        assert sleeper.delays == [0.25]

    @pytest.mark.asyncio
    async def test_retry_after_capped(self, config_factory, scripted, sleeper, clock, events):
        config = config_factory(max_rate_limit_wait_seconds=60)
        transport = scripted(httpx.Response(429, headers={"Retry-After": "99999"}), _ok())
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        await orchestrator.run(USER)

        assert sleeper.delays == [60]

    def test_retry_after_wins_over_reset(self, config, scripted, sleeper, clock, events):
        orchestrator = _orchestrator(config, scripted(), sleeper, clock, events)
        error = RateLimitedError("limited", retry_after=5.0, reset_at=NOW + 600)

        assert orchestrator.compute_delay(error, orchestrator.new_plan()) == 5.0

    def test_no_hints_uses_backoff(self, config, scripted, sleeper, clock, events):
        orchestrator = _orchestrator(config, scripted(), sleeper, clock, events)
        plan = orchestrator.new_plan()
        plan.attempt = 2

        assert orchestrator.compute_delay(RateLimitedError("limited"), plan) == 1.0

    def test_server_error_ignores_reset(self, config, scripted, sleeper, clock, events):
        orchestrator = _orchestrator(config, scripted(), sleeper, clock, events)

        assert orchestrator.compute_delay(ServerError("boom"), orchestrator.new_plan()) == 0.25


# =============================================================================
# Terminal, exhausted and eventual success
# =============================================================================


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_client_error_makes_exactly_one_call(self, config, scripted, sleeper, clock, events):
        transport = scripted(httpx.Response(404, json={"message": "Not Found"}))
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        with pytest.raises(ClientError) as exc_info:
            await orchestrator.run(RequestDescriptor("GET", "/repos/octo-org/missing"))

        assert transport.calls == 1
        assert sleeper.delays == []
        assert exc_info.value.status_code == 404
        assert exc_info.value.attempts == 1
        assert [e.state for e in events] == [RetryState.TERMINAL]

    @pytest.mark.asyncio
    async def test_exhausted_after_max_attempts(self, config, scripted, sleeper, clock, events):
        transport = scripted(*[httpx.Response(500, text="down") for _ in range(6)])
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        with pytest.raises(ExhaustedError) as exc_info:
            await orchestrator.run(USER)

        assert transport.calls == config.max_attempts == 6
        assert sleeper.delays == [0.25, 0.5, 1.0, 2.0, 2.0]
        assert exc_info.value.attempts == 6
        assert isinstance(exc_info.value.last_error, ServerError)
        assert exc_info.value.to_dict()["cause"] == "SERVER_ERROR"
        states = [e.state for e in events]
        assert states == [RetryState.RETRYING] * 5 + [RetryState.EXHAUSTED]

    @pytest.mark.asyncio
    async def test_max_attempts_one_means_no_retry(self, config_factory, scripted, sleeper, clock, events):
        config = config_factory(max_attempts=1)
        transport = scripted(httpx.Response(503, text="down"))
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        with pytest.raises(ExhaustedError):
            await orchestrator.run(USER)

        assert transport.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_eventual_success(self, config, scripted, sleeper, clock, events):
        transport = scripted(
            httpx.Response(502, text="bad gateway"),
            httpx.ReadTimeout("timed out"),
            _ok(),
        )
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        response, attempts = await orchestrator.run(USER)

        assert response.status_code == 200
        assert attempts == 3
        assert sleeper.delays == [0.25, 0.5]
        retrying = [e for e in events if e.state is RetryState.RETRYING]
        assert isinstance(retrying[0].error, ServerError)
        assert isinstance(retrying[1].error, NetworkError)
        assert [e.delay_seconds for e in retrying] == [0.25, 0.5]
        assert events[-1].state is RetryState.SUCCESS

    @pytest.mark.asyncio
    async def test_client_error_after_retry_is_terminal(self, config, scripted, sleeper, clock, events):
        transport = scripted(
            httpx.Response(500, text="down"),
            httpx.Response(422, json={"message": "Validation Failed"}),
        )
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        with pytest.raises(ClientError) as exc_info:
            await orchestrator.run(RequestDescriptor("POST", "/repos/octo-org/demo/issues", body={}))

        assert transport.calls == 2
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_each_run_gets_fresh_budget(self, config_factory, scripted, sleeper, clock, events):
        config = config_factory(max_attempts=2)
        transport = scripted(
            httpx.Response(500, text="down"),
            _ok(),
            httpx.Response(500, text="down"),
            _ok(),
        )
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        _, first = await orchestrator.run(USER)
        _, second = await orchestrator.run(USER)

        assert (first, second) == (2, 2)


# =============================================================================
# Proactive throttling
# =============================================================================


class TestProactiveThrottle:
    def _gate_exhausted(self, orchestrator):
        orchestrator.rate_gate.observe(
            httpx.Headers(
                {
                    "X-RateLimit-Limit": "5000",
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(NOW + 5)),
                }
            )
        )

    @pytest.mark.asyncio
    async def test_waits_on_gate_advice(self, config, scripted, sleeper, clock, events):
        orchestrator = _orchestrator(config, scripted(_ok()), sleeper, clock, events)
        self._gate_exhausted(orchestrator)

        await orchestrator.run(USER)

        assert sleeper.delays == [5.0]

    @pytest.mark.asyncio
    async def test_disabled(self, config_factory, scripted, sleeper, clock, events):
        config = config_factory(proactive_throttle=False)
        orchestrator = _orchestrator(config, scripted(_ok()), sleeper, clock, events)
        self._gate_exhausted(orchestrator)

        await orchestrator.run(USER)

        assert sleeper.delays == []


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Cancelling the caller aborts the call and skips pending backoff."""

    @pytest.mark.asyncio
    async def test_cancel_during_http_call(self, config, scripted, sleeper, clock, events):
        started = asyncio.Event()

        async def hang(request):
            started.set()
            await asyncio.Event().wait()

        transport = scripted(hang, _ok())
        orchestrator = _orchestrator(config, transport, sleeper, clock, events)

        task = asyncio.create_task(orchestrator.run(USER))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert transport.calls == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self, config, scripted, clock, events):
        sleeping = asyncio.Event()

        async def blocking_sleep(seconds):
            sleeping.set()
            await asyncio.Event().wait()

        transport = scripted(httpx.Response(500, text="down"), _ok())
        gate = RateGate(clock=clock)
        executor = RequestExecutor(config, gate, transport=transport.transport())
        orchestrator = RetryOrchestrator(
            executor, config, observer=events.append, sleep=blocking_sleep, clock=clock
        )

        task = asyncio.create_task(orchestrator.run(USER))
        await sleeping.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        # No orphaned retry after cancellation
        assert transport.calls == 1
        assert RetryState.SUCCESS not in [e.state for e in events]


# =============================================================================
# Property-Based Tests (Hypothesis)
# =============================================================================


@given(
    base=st.integers(min_value=1, max_value=5000),
    extra=st.integers(min_value=0, max_value=60000),
    attempt=st.integers(min_value=0, max_value=30),
)
@settings(max_examples=200, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_backoff_bounded_and_monotonic(base, extra, attempt):
    """Backoff never exceeds the ceiling and never shrinks between attempts."""
    plan = RetryPlan(max_attempts=6, base_delay_ms=base, max_delay_ms=base + extra)

    current = plan.backoff_seconds(attempt)
    following = plan.backoff_seconds(attempt + 1)

    assert base / 1000.0 <= current <= (base + extra) / 1000.0
    assert following >= current
