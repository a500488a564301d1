"""Configuration management with pydantic-settings for the GitHub gateway.

- Automatic .env file loading with proper precedence
- Validation with clear error messages
- SecretStr for credentials and the webhook secret
- Frozen config (thread-safe, immutable after load)

Library classes take a GatewayConfig explicitly; only application entry
points call get_config().
"""

import logging
from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .__version__ import __version__

logger = logging.getLogger("github_gateway.config")

__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_EXEMPT_PATHS",
    "GatewayConfig",
    "get_config",
    "reset_config",
]

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_EXEMPT_PATHS = "/health,/api/health,/status,/api/status,/metrics"


def _env(name: str) -> AliasChoices:
    """Accept both the field name and its namespaced env var."""
    return AliasChoices(name.split("_", 1)[1], name)


class GatewayConfig(BaseSettings):
    """Configuration for the GitHub gateway.

    Loads from (in order of precedence):
    1. Constructor arguments
    2. Environment variables
    3. .env file in the working directory
    4. Default values

    Attributes:
        github_token: Credential sent as ``Authorization: token <credential>``
        github_owner: Repository owner (optional when github_repo is owner/repo)
        github_repo: Repository name or owner/repo
        github_api_url: REST API root
        github_webhook_secret: Shared secret for inbound webhook signatures
        request_timeout_seconds: Upper bound for one physical call
        max_attempts: Total physical calls allowed per logical operation
        base_delay_ms: Exponential backoff base
        max_delay_ms: Exponential backoff ceiling
        max_pages: Pagination safety cap
        inbound_max_requests: Requests per caller per inbound window
        inbound_window_ms: Inbound window length
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Provider credentials and identity ---
    github_token: SecretStr = Field(
        default=SecretStr(""),
        description="GitHub token used for every outbound call",
    )
    github_owner: str = Field(default="", description="Repository owner")
    github_repo: str = Field(
        default="",
        description="Repository name, or owner/repo",
    )
    github_api_url: str = Field(
        default=DEFAULT_API_URL,
        description="GitHub REST API root (GitHub Enterprise: https://host/api/v3)",
    )
    github_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Shared secret for X-Hub-Signature-256 verification",
    )
    github_api_version: str = Field(
        default="2022-11-28", description="X-GitHub-Api-Version header value"
    )
    github_accept: str = Field(
        default="application/vnd.github.v3+json", description="Accept header value"
    )
    user_agent: str = Field(
        default=f"github-gateway/{__version__}",
        validation_alias=_env("gateway_user_agent"),
        description="Fixed User-Agent for outbound calls",
    )

    # --- Outbound pipeline ---
    request_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120,
        validation_alias=_env("gateway_request_timeout_seconds"),
        description="Upper bound for a single physical call; exceeding it is a NetworkError",
    )
    max_attempts: int = Field(
        default=6,
        ge=1,
        le=20,
        validation_alias=_env("gateway_max_attempts"),
        description="Total physical calls per logical operation (first call + retries)",
    )
    base_delay_ms: int = Field(
        default=250,
        ge=1,
        le=60000,
        validation_alias=_env("gateway_base_delay_ms"),
    )
    max_delay_ms: int = Field(
        default=2000,
        ge=1,
        le=600000,
        validation_alias=_env("gateway_max_delay_ms"),
    )
    min_rate_limit_delay_ms: int = Field(
        default=1000,
        ge=1,
        le=60000,
        validation_alias=_env("gateway_min_rate_limit_delay_ms"),
        description="Floor applied to delays derived from X-RateLimit-Reset",
    )
    max_rate_limit_wait_seconds: float = Field(
        default=3600.0,
        gt=0,
        le=86400,
        validation_alias=_env("gateway_max_rate_limit_wait_seconds"),
        description="Ceiling for any delay derived from provider rate-limit headers",
    )
    low_water_ratio: float = Field(
        default=0.10,
        ge=0.0,
        le=1.0,
        validation_alias=_env("gateway_low_water_ratio"),
        description="Rate Gate advises waiting once remaining < ratio * limit",
    )
    proactive_throttle: bool = Field(
        default=True,
        validation_alias=_env("gateway_proactive_throttle"),
    )
    max_pages: int = Field(
        default=100,
        ge=1,
        le=10000,
        validation_alias=_env("gateway_max_pages"),
    )
    per_page: int = Field(
        default=100,
        ge=1,
        le=100,
        validation_alias=_env("gateway_per_page"),
    )

    # --- Inbound limiter ---
    inbound_max_requests: int = Field(default=30, ge=1, le=100000)
    inbound_window_ms: int = Field(default=60000, ge=1000, le=86400000)
    inbound_exempt_paths: str = Field(
        default=DEFAULT_EXEMPT_PATHS,
        description="Comma-separated paths never counted by the inbound limiter",
    )

    # --- Logging ---
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        validation_alias=_env("gateway_log_level"),
    )
    log_format: str = Field(
        default="json",
        pattern="^(json|text)$",
        validation_alias=_env("gateway_log_format"),
    )

    # --- Server ---
    # HOST is commonly set by shells, so only the namespaced names are read
    host: str = Field(default="0.0.0.0", validation_alias="gateway_host")
    port: int = Field(default=8000, ge=1, le=65535, validation_alias="gateway_port")

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """API root is stored without a trailing slash."""
        return v.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @model_validator(mode="after")
    def validate_consistency(self) -> "GatewayConfig":
        """Cross-field checks."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        if "/" in self.github_repo:
            parts = self.github_repo.split("/")
            if len(parts) != 2 or not all(parts):
                raise ValueError("GITHUB_REPO must be in owner/repo format")
        return self

    @property
    def repo_full_name(self) -> str | None:
        """owner/repo, or None when the repository is not configured."""
        if "/" in self.github_repo:
            return self.github_repo
        if self.github_owner and self.github_repo:
            return f"{self.github_owner}/{self.github_repo}"
        return None

    @property
    def exempt_paths(self) -> tuple[str, ...]:
        return tuple(
            p.strip() for p in self.inbound_exempt_paths.split(",") if p.strip()
        )

    def is_configured(self) -> bool:
        """True when both a token and a repository are configured."""
        return bool(self.github_token.get_secret_value() and self.repo_full_name)


@lru_cache(maxsize=1)
def get_config() -> GatewayConfig:
    """Get global configuration singleton for application entry points.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Returns:
        GatewayConfig singleton instance.

    Raises:
        ValidationError: If configuration values are invalid.
    """
    return GatewayConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing."""
    get_config.cache_clear()
