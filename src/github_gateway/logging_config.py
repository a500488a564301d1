"""Structured logging for the GitHub gateway.

Every logger lives under the ``github_gateway`` namespace. Messages are
snake_case event names; details travel in ``extra`` and end up in the
``context`` object of each JSON line. Credential-bearing keys are redacted
at any nesting depth.

Level and format come from a GatewayConfig when the caller has one, or
from GATEWAY_LOG_LEVEL / GATEWAY_LOG_FORMAT at import time.
"""

import json
import logging
import os
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config import GatewayConfig

ROOT_LOGGER_NAME = "github_gateway"
REDACTED = "[REDACTED]"

# Extra keys whose values never reach log output
SENSITIVE_KEYS = frozenset(
    {
        "authorization", "auth", "bearer", "token", "github_token",
        "secret", "webhook_secret", "signature", "password",
        "credential", "api_key", "apikey", "key",
    }
)

# Attributes every LogRecord carries; anything else was passed via extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def redact(value: Any) -> Any:
    """Copy of value with sensitive mapping keys masked, recursively."""
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_KEYS else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """The extra= fields of record, redacted."""
    fields = {
        k: v for k, v in vars(record).items()
        if k not in _RECORD_ATTRS and not k.startswith("_")
    }
    return redact(fields)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Keys: timestamp (UTC, ``Z`` suffix), level, logger, message, and
    optionally context (extra fields) and exception (formatted traceback).
    Values that JSON cannot encode are rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line human-readable output for local runs.

    Extra fields are appended as key=value pairs after the message.
    """

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    *,
    config: "GatewayConfig | None" = None,
) -> logging.Logger:
    """Attach one handler to the github_gateway logger and set its level.

    Safe to call repeatedly: later calls only change level and formatter.
    Explicit arguments win over config, which wins over the environment.

    Args:
        level: Level name (DEBUG, INFO, ...)
        log_format: "json" or "text"
        config: GatewayConfig supplying log_level / log_format

    Returns:
        The configured root gateway logger
    """
    if config is not None:
        level = level or config.log_level
        log_format = log_format or config.log_format
    level = level or os.getenv("GATEWAY_LOG_LEVEL") or "INFO"
    log_format = log_format or os.getenv("GATEWAY_LOG_FORMAT") or "json"

    formatter: logging.Formatter = (
        TextFormatter() if log_format.lower() == "text" else StructuredFormatter()
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        logger.addHandler(logging.StreamHandler())
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    # Own handler only
    logger.propagate = False
    return logger


def sanitize_log_input(value: Any, max_length: int = 200) -> str:
    """Make an untrusted value (path, header, event name) safe to log.

    Control characters are escaped, anything unprintable is dropped, and
    the result is cut to max_length.
    """
    text = value if isinstance(value, str) else str(value)
    escaped = text.encode("unicode_escape").decode("ascii")
    return "".join(c for c in escaped if c.isprintable())[:max_length]
