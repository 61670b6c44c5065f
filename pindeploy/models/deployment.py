"""Deployment data models."""

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from pindeploy.core.exceptions import ValidationError

Environment = Literal["dev", "prod"]

PROJECT_NAME_MAX_LENGTH = 100

_UNSAFE_PROJECT_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_SAFE_TIMESTAMP = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9._-]*$")

IPFS_GATEWAYS = (
    "https://gateway.pinata.cloud",
    "https://ipfs.io",
    "https://cloudflare-ipfs.com",
    "https://dweb.link",
)
IPNS_GATEWAYS = (
    "https://ipfs.io",
    "https://dweb.link",
)


def sanitize_project_name(raw: str) -> str:
    """Restrict a project name to ``[A-Za-z0-9_-]`` and cap its length."""
    sanitized = _UNSAFE_PROJECT_CHARS.sub("", raw)[:PROJECT_NAME_MAX_LENGTH]
    if not sanitized:
        raise ValidationError(
            f"Project name {raw!r} has no usable characters",
            {"project": raw},
        )
    return sanitized


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def gateway_urls(content_id: str, name_address: str = "") -> dict[str, list[str]]:
    """Browsable URLs for a content id and, when present, its IPNS name."""
    return {
        "ipfs": [f"{gateway}/ipfs/{content_id}" for gateway in IPFS_GATEWAYS],
        "ipns": (
            [f"{gateway}/ipns/{name_address}" for gateway in IPNS_GATEWAYS]
            if name_address
            else []
        ),
    }


class DeployRequest(BaseModel):
    """A validated deployment invocation."""

    environment: Environment
    build_dir: Path
    project_name: str = Field(..., min_length=1)
    timestamp: str
    branch: str = "unknown"
    commit: str = "unknown"

    @field_validator("timestamp")
    @classmethod
    def _timestamp_is_filesystem_safe(cls, value: str) -> str:
        if not _SAFE_TIMESTAMP.match(value):
            raise ValueError(
                "timestamp must only contain letters, digits, '.', '_' or '-'"
            )
        return value

    @field_validator("branch", "commit", mode="before")
    @classmethod
    def _default_unknown(cls, value: str | None) -> str:
        return value or "unknown"

    @property
    def sanitized_project(self) -> str:
        return sanitize_project_name(self.project_name)

    @property
    def pin_name(self) -> str:
        """Name sent to the pinning service; uses the raw project name."""
        return f"{self.project_name}-{self.environment}-{self.timestamp}"

    @property
    def key_name(self) -> str:
        """IPNS key bound to this project/environment pair."""
        return f"{self.sanitized_project}-{self.environment}"


class DeploymentInfo(BaseModel):
    """Metadata file injected into the uploaded artifact."""

    project: str
    environment: Environment
    timestamp: str
    branch: str
    commit: str
    deployed_at: str = Field(default_factory=utc_now_iso)


class DeploymentRecord(BaseModel):
    """Provenance of one deployment, written once and never modified."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    project: str = Field(..., min_length=1, max_length=PROJECT_NAME_MAX_LENGTH, pattern=r"^[A-Za-z0-9_-]+$")
    environment: Environment
    content_id: str = Field(..., min_length=1, alias="ipfs_hash")
    name_address: str = Field(default="", alias="ipns_name")
    timestamp: str = Field(..., pattern=_SAFE_TIMESTAMP.pattern)
    branch: str = "unknown"
    commit: str = "unknown"
    deployed_at: str = Field(default_factory=utc_now_iso)
    raw_response: dict[str, Any] = Field(default_factory=dict, alias="pinata_response")

    @field_validator("raw_response", mode="before")
    @classmethod
    def _response_object_or_empty(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @computed_field(alias="urls")  # type: ignore[prop-decorator]
    @property
    def gateway_urls(self) -> dict[str, list[str]]:
        return gateway_urls(self.content_id, self.name_address)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class AttemptOutcome(str, Enum):
    """Outcome of a single upload attempt."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


class UploadAttempt(BaseModel):
    """One upload attempt; kept in memory for diagnostics only."""

    attempt_number: int
    outcome: AttemptOutcome
    http_status: int | None = None
    wait_before_next_ms: int = 0
    detail: str | None = None


class PinResult(BaseModel):
    """Successful upload result."""

    content_id: str = Field(..., min_length=1)
    raw_response: dict[str, Any] = Field(default_factory=dict)
    attempts: list[UploadAttempt] = Field(default_factory=list)
