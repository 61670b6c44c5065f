"""Core functionality for pindeploy."""

from pindeploy.core.exceptions import (
    DeploymentInterrupted,
    NamingError,
    PersistenceError,
    PinDeployError,
    PreconditionError,
    UploadError,
    UploadErrorKind,
    ValidationError,
)
from pindeploy.core.guardian import ResourceGuardian

__all__ = [
    "DeploymentInterrupted",
    "NamingError",
    "PersistenceError",
    "PinDeployError",
    "PreconditionError",
    "ResourceGuardian",
    "UploadError",
    "UploadErrorKind",
    "ValidationError",
]
