"""Utility functions for pindeploy."""

from pindeploy.utils.logging import (
    SecretRedactor,
    configure_logging,
    get_logger,
    redact_text,
)
from pindeploy.utils.process import kill_process

__all__ = [
    "SecretRedactor",
    "configure_logging",
    "get_logger",
    "kill_process",
    "redact_text",
]
