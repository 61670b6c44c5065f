"""Application configuration using pydantic-settings."""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Deployment settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Pinata
    pinata_jwt: SecretStr = Field(default=SecretStr(""))
    pinata_api_url: str = "https://api.pinata.cloud/pinning/pinFileToIPFS"
    pinata_gateway_url: str = "https://gateway.pinata.cloud"
    pinata_upload_timeout_ms: int = Field(default=300_000, gt=0)

    # Upload retries
    upload_max_attempts: int = Field(default=3, ge=1)

    # External upload helper (runs instead of the built-in client when set)
    upload_script_path: Path | None = None

    # IPNS publishing through a local Kubo node
    ipns_enabled: bool = False
    ipfs_bin: str = "ipfs"
    ipfs_path: Path = Field(default_factory=lambda: Path.home() / ".ipfs")
    ipfs_api_url: str = "http://127.0.0.1:5001"
    ipfs_install_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "bin")
    kubo_version: str = "0.29.0"
    ipfs_ready_timeout_s: float = Field(default=30.0, gt=0)
    ipfs_ready_interval_s: float = Field(default=1.0, gt=0)

    # Deployment records
    deployments_dir: Path = Path("deployments")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"

    @property
    def upload_timeout_s(self) -> float:
        """Upload request timeout in seconds."""
        return self.pinata_upload_timeout_ms / 1000

    @property
    def has_credentials(self) -> bool:
        return bool(self.pinata_jwt.get_secret_value())

    def secret_values(self) -> list[str]:
        """Credential values that must never reach a log line."""
        value = self.pinata_jwt.get_secret_value()
        return [value] if value else []


def load_settings() -> Settings:
    """Load settings once at process startup.

    Components never read the environment themselves; the CLI builds this
    object and passes it down.
    """
    load_dotenv(override=False)
    return Settings()


def subprocess_env(**overrides: str) -> dict[str, str]:
    """Environment for child processes: the parent's, plus ``overrides``.

    Children (the upload helper, the ``ipfs`` binary) inherit the process
    environment unchanged so PATH, HOME and proxy variables keep working.
    Nothing here is read back as configuration.
    """
    env = os.environ.copy()
    env.update(overrides)
    return env
