"""Logging configuration using structlog."""

import logging
import re
import sys
from typing import Any, Iterable

import structlog

from pindeploy.config import Settings

REDACTED = "***"

# Same vocabulary used to scrub helper output lines
SENSITIVE_PATTERN = re.compile(
    r"jwt|token|secret|password|auth|bearer|authorization", re.IGNORECASE
)


def redact_text(text: str, secrets: Iterable[str]) -> str:
    """Replace every known secret value in ``text``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class SecretRedactor:
    """structlog processor masking credentials in every event."""

    def __init__(self, secrets: Iterable[str] = ()):
        self.secrets = [s for s in secrets if s]

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in list(event_dict.items()):
            if key != "event" and SENSITIVE_PATTERN.search(key):
                event_dict[key] = REDACTED
            elif isinstance(value, str):
                event_dict[key] = redact_text(value, self.secrets)
        return event_dict


def configure_logging(settings: Settings) -> None:
    """Configure structured logging for the process.

    Diagnostics go to stderr so stdout carries only machine-readable results.
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.log_level),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        SecretRedactor(settings.secret_values()),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
