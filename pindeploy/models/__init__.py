"""Data models for pindeploy."""

from pindeploy.models.deployment import (
    AttemptOutcome,
    DeploymentInfo,
    DeploymentRecord,
    DeployRequest,
    Environment,
    PinResult,
    UploadAttempt,
    gateway_urls,
    sanitize_project_name,
)

__all__ = [
    # Invocation
    "DeployRequest",
    "Environment",
    # Records
    "DeploymentInfo",
    "DeploymentRecord",
    "gateway_urls",
    "sanitize_project_name",
    # Upload
    "AttemptOutcome",
    "PinResult",
    "UploadAttempt",
]
