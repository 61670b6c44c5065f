"""Services for the pindeploy pipeline."""

from pindeploy.services.gateway import verify_gateway
from pindeploy.services.naming import DaemonState, IpfsNode, NamingPublisher
from pindeploy.services.recorder import DeploymentRecorder
from pindeploy.services.upload import (
    HelperUploadClient,
    PinataUploadClient,
    backoff_delay_ms,
    build_uploader,
    classify_failure,
)

__all__ = [
    "DaemonState",
    "DeploymentRecorder",
    "HelperUploadClient",
    "IpfsNode",
    "NamingPublisher",
    "PinataUploadClient",
    "backoff_delay_ms",
    "build_uploader",
    "classify_failure",
    "verify_gateway",
]
