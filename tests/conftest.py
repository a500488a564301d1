"""Shared pytest fixtures for GitHub gateway tests.

Fixture Organization:
    - Environment isolation: strips GITHUB_* / GATEWAY_* / INBOUND_* variables
    - Time doubles: recording async sleep and a settable epoch clock
    - HTTP doubles: httpx.MockTransport driven by a scripted handler
    - Gateway factory: GitHubGateway wired to the doubles above
"""

import os
from collections.abc import Callable

import httpx
import pytest

from github_gateway.config import GatewayConfig, reset_config

ENV_PREFIXES = ("GITHUB_", "GATEWAY_", "INBOUND_")

# Fixed "now" for reset-header arithmetic
NOW = 1_700_000_000.0


# =============================================================================
# Environment Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Strip gateway env vars so tests only see explicit configuration."""
    for key in list(os.environ):
        if key.upper().startswith(ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


# =============================================================================
# Time Doubles
# =============================================================================


class SleepRecorder:
    """Async sleep stand-in that records requested delays and returns at once."""

    def __init__(self, clock: "FakeClock | None" = None):
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock) -> SleepRecorder:
    return SleepRecorder(clock)


@pytest.fixture
def events() -> list:
    """List that collects RetryEvents; pass events.append as the observer."""
    return []


# =============================================================================
# HTTP Doubles
# =============================================================================


class ScriptedTransport:
    """Serves queued responses in order and records every request.

    Entries are httpx.Response objects, exceptions to raise, or callables
    taking the request and returning either.
    """

    def __init__(self, script: list | None = None):
        self.script = list(script or [])
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        entry = self.script.pop(0)
        if callable(entry) and not isinstance(entry, httpx.Response):
            entry = entry(request)
        if isinstance(entry, Exception):
            raise entry
        return entry

    @property
    def calls(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def scripted() -> Callable[..., ScriptedTransport]:
    """Factory: scripted(resp1, resp2, ...) -> ScriptedTransport."""

    def _make(*script) -> ScriptedTransport:
        return ScriptedTransport(list(script))

    return _make


# =============================================================================
# Configuration and Gateway
# =============================================================================


def make_config(**overrides) -> GatewayConfig:
    values = {
        "github_token": "ghp_test_token",
        "github_repo": "octo-org/demo",
        "github_webhook_secret": "whsec-test",
    }
    values.update(overrides)
    return GatewayConfig(_env_file=None, **values)


@pytest.fixture
def config() -> GatewayConfig:
    return make_config()


@pytest.fixture
def config_factory() -> Callable[..., GatewayConfig]:
    return make_config


@pytest.fixture
def gateway_factory(sleeper, clock, events):
    """Factory: gateway_factory(transport, **config_overrides) -> GitHubGateway."""
    from github_gateway.client import GitHubGateway

    def _make(transport: ScriptedTransport, **overrides):
        gateway = GitHubGateway(
            make_config(**overrides),
            transport=transport.transport(),
            observer=events.append,
            sleep=sleeper,
            clock=clock,
        )
        return gateway

    return _make
