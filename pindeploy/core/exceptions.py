"""Custom exceptions for pindeploy."""

from enum import Enum
from typing import Any


class PinDeployError(Exception):
    """Base exception for pindeploy."""

    exit_code = 1

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(PinDeployError):
    """Bad or missing invocation arguments."""

    exit_code = 2


class PreconditionError(PinDeployError):
    """The environment is not ready for a deployment (build dir, credential, helper)."""

    pass


class UploadErrorKind(str, Enum):
    """Classification of the failure that ended an upload."""

    AUTH = "auth"
    CLIENT = "client"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"
    TIMEOUT = "timeout"
    NETWORK = "network"
    INVALID_RESPONSE = "invalid_response"
    HELPER_FAILED = "helper_failed"
    UNEXPECTED = "unexpected"


class UploadError(PinDeployError):
    """Upload to the pinning service failed."""

    def __init__(
        self,
        kind: UploadErrorKind,
        detail: str,
        status_code: int | None = None,
        attempts: int = 0,
    ):
        details: dict[str, Any] = {"kind": kind.value}
        if status_code is not None:
            details["status_code"] = status_code
        if attempts:
            details["attempts"] = attempts
        super().__init__(f"Upload failed ({kind.value}): {detail}", details)
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        self.attempts = attempts


class NamingError(PinDeployError):
    """IPNS node setup or publishing failed."""

    def __init__(self, message: str, phase: str):
        super().__init__(f"IPNS {phase} failed: {message}", {"phase": phase})
        self.phase = phase


class PersistenceError(PinDeployError):
    """A deployment record could not be written or validated."""

    def __init__(self, message: str, path: str | None = None):
        details = {}
        if path:
            details["path"] = path
        super().__init__(f"Deployment metadata error: {message}", details)


class DeploymentInterrupted(PinDeployError):
    """The run received a termination signal."""

    exit_code = 130

    def __init__(self, signal_name: str):
        super().__init__(f"Deployment interrupted by {signal_name}", {"signal": signal_name})
