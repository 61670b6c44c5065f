"""Deployment pipeline.

Runs the phases in sequence inside one resource scope:

1. stage    - copy the build and inject ``deployment-info.json``
2. upload   - pin the staged directory, retrying transient failures
3. verify   - best-effort gateway check
4. publish  - optional IPNS publish (failure degrades, does not abort)
5. record   - persist the deployment record, ``latest`` and the audit log
"""

import time

import httpx

from pindeploy.config import Settings
from pindeploy.core.exceptions import NamingError, PreconditionError
from pindeploy.core.guardian import ResourceGuardian
from pindeploy.models.deployment import DeploymentInfo, DeploymentRecord, DeployRequest
from pindeploy.services.gateway import verify_gateway
from pindeploy.services.naming import IpfsNode, NamingPublisher
from pindeploy.services.recorder import DeploymentRecorder
from pindeploy.services.upload import Uploader, build_uploader
from pindeploy.utils.logging import get_logger


class DeploymentPipeline:
    """Orchestrates one deployment from build directory to recorded provenance."""

    def __init__(
        self,
        settings: Settings,
        uploader: Uploader | None = None,
        recorder: DeploymentRecorder | None = None,
        node: IpfsNode | None = None,
        gateway_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.uploader = uploader or build_uploader(settings)
        self.recorder = recorder or DeploymentRecorder(settings.deployments_dir)
        self.node = node
        self.gateway_transport = gateway_transport
        self.guardian: ResourceGuardian | None = None
        self.logger = get_logger("pipeline")

    async def run(self, request: DeployRequest) -> DeploymentRecord:
        """Deploy ``request`` and return the written record.

        Raises:
            PinDeployError: any fatal condition; resources are released first.
        """
        start_time = time.time()
        project = request.sanitized_project

        self.logger.info(
            "pipeline.started",
            environment=request.environment,
            project=project,
            build_dir=str(request.build_dir),
            branch=request.branch,
            commit=request.commit,
            deployment=request.timestamp,
        )

        if not request.build_dir.is_dir():
            raise PreconditionError(
                f"Build directory '{request.build_dir}' not found",
                {"build_dir": str(request.build_dir)},
            )
        if not self.settings.has_credentials:
            raise PreconditionError("Required environment variable not set: PINATA_JWT")
        self.recorder.check_available(request.environment, request.timestamp)

        async with ResourceGuardian(prefix=f"pindeploy-{project}-") as guardian:
            self.guardian = guardian

            info = DeploymentInfo(
                project=project,
                environment=request.environment,
                timestamp=request.timestamp,
                branch=request.branch,
                commit=request.commit,
            )
            self.recorder.stage(request.build_dir, guardian.staging_dir, info)

            pin = await self.uploader.upload(guardian.staging_dir, request.pin_name)

            await verify_gateway(self.settings, pin.content_id, transport=self.gateway_transport)

            name_address = ""
            if self.settings.ipns_enabled:
                name_address = await self._publish(guardian, request, pin.content_id)

            record = self.recorder.record(request, pin, name_address=name_address)

        self.logger.info(
            "pipeline.completed",
            content_id=record.content_id,
            name_address=record.name_address or None,
            degraded=self.settings.ipns_enabled and not record.name_address,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return record

    async def _publish(self, guardian: ResourceGuardian, request: DeployRequest, content_id: str) -> str:
        node = self.node or IpfsNode(self.settings)
        # Adopt before acquiring so a half-started daemon is still stopped
        guardian.adopt(node)
        await node.acquire()

        try:
            return await NamingPublisher(node).publish(request.key_name, content_id)
        except NamingError as e:
            self.logger.warning(
                "pipeline.naming_degraded",
                error=e.message,
                content_id=content_id,
            )
            return ""
