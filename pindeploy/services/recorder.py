"""Deployment staging and provenance records.

Layout under ``deployments_dir``::

    <env>/deployment-<timestamp>.json   one immutable record per deployment
    <env>/latest.json                   symlink to the newest valid record
    logs/<env>-deployments.log          append-only audit log
"""

import os
import shutil
import tempfile
from pathlib import Path

from pydantic import ValidationError as ModelValidationError

from pindeploy.core.exceptions import PersistenceError, PreconditionError, ValidationError
from pindeploy.models.deployment import (
    DeploymentInfo,
    DeploymentRecord,
    DeployRequest,
    PinResult,
)
from pindeploy.utils.logging import get_logger

METADATA_FILENAME = "deployment-info.json"
LATEST_FILENAME = "latest.json"


class DeploymentRecorder:
    """Stages build output and persists deployment records."""

    def __init__(self, deployments_dir: Path):
        self.deployments_dir = deployments_dir
        self.logger = get_logger("recorder")

    def record_path(self, environment: str, timestamp: str) -> Path:
        return self.deployments_dir / environment / f"deployment-{timestamp}.json"

    def latest_path(self, environment: str) -> Path:
        return self.deployments_dir / environment / LATEST_FILENAME

    def log_path(self, environment: str) -> Path:
        return self.deployments_dir / "logs" / f"{environment}-deployments.log"

    def check_available(self, environment: str, timestamp: str) -> None:
        """Refuse a deployment whose record already exists."""
        path = self.record_path(environment, timestamp)
        if path.exists():
            raise ValidationError(
                f"Deployment {environment}/{timestamp} is already recorded",
                {"path": str(path)},
            )

    def stage(self, build_dir: Path, staging_dir: Path, info: DeploymentInfo) -> int:
        """Copy ``build_dir`` into ``staging_dir`` and inject the metadata file.

        Returns the number of build files staged.
        """
        if not build_dir.is_dir():
            raise PreconditionError(
                f"Build directory '{build_dir}' not found",
                {"build_dir": str(build_dir)},
            )

        self.logger.info("recorder.staging", build_dir=str(build_dir), staging_dir=str(staging_dir))
        try:
            shutil.copytree(build_dir, staging_dir, symlinks=True, dirs_exist_ok=True)
        except (shutil.Error, OSError) as e:
            raise PreconditionError(
                f"Failed to copy files from '{build_dir}' to staging directory: {e}",
                {"build_dir": str(build_dir)},
            ) from e

        file_count = sum(1 for p in staging_dir.rglob("*") if p.is_file())
        if file_count == 0:
            raise PreconditionError(
                f"Build directory '{build_dir}' is empty or no files copied",
                {"build_dir": str(build_dir)},
            )

        (staging_dir / METADATA_FILENAME).write_text(
            info.model_dump_json(indent=2), encoding="utf-8"
        )
        self.logger.info("recorder.staged", files=file_count)
        return file_count

    def record(
        self,
        request: DeployRequest,
        pin: PinResult,
        name_address: str = "",
    ) -> DeploymentRecord:
        """Write the deployment record, repoint ``latest`` and append the log."""
        record = DeploymentRecord(
            project=request.sanitized_project,
            environment=request.environment,
            content_id=pin.content_id,
            name_address=name_address,
            timestamp=request.timestamp,
            branch=request.branch,
            commit=request.commit,
            raw_response=pin.raw_response,
        )

        path = self.record_path(record.environment, record.timestamp)
        self._write_record(path, record)
        written = self._reparse(path)
        self._point_latest(path)
        self._append_log(written)

        self.logger.info(
            "recorder.saved",
            path=str(path),
            content_id=written.content_id,
            name_address=written.name_address or None,
        )
        return written

    def _write_record(self, path: Path, record: DeploymentRecord) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            raise PersistenceError("record already exists and is immutable", str(path))

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(record.to_json())
                handle.write("\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"could not write record: {e}", str(path)) from e

    def _reparse(self, path: Path) -> DeploymentRecord:
        try:
            return DeploymentRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ModelValidationError) as e:
            path.unlink(missing_ok=True)
            raise PersistenceError(
                f"failed to create valid deployment metadata JSON: {e}", str(path)
            ) from e

    def _point_latest(self, record_path: Path) -> None:
        latest = self.latest_path(record_path.parent.name)
        tmp_link = latest.with_name(f".{latest.name}.{os.getpid()}.tmp")
        tmp_link.unlink(missing_ok=True)
        try:
            tmp_link.symlink_to(record_path.name)
            os.replace(tmp_link, latest)
        except OSError as e:
            tmp_link.unlink(missing_ok=True)
            raise PersistenceError(f"could not update latest pointer: {e}", str(latest)) from e

    def _append_log(self, record: DeploymentRecord) -> None:
        log_path = self.log_path(record.environment)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        line = " | ".join(
            [
                record.deployed_at,
                record.environment,
                record.content_id,
                record.name_address or "-",
                record.branch,
                record.commit,
            ]
        )
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def resolve_latest(self, environment: str) -> DeploymentRecord | None:
        """Return the record ``latest`` points at, if any."""
        latest = self.latest_path(environment)
        if not latest.exists():
            return None
        return DeploymentRecord.model_validate_json(latest.read_text(encoding="utf-8"))

    def history(self, environment: str) -> list[str]:
        """Audit log lines in write order."""
        log_path = self.log_path(environment)
        if not log_path.exists():
            return []
        return log_path.read_text(encoding="utf-8").splitlines()
