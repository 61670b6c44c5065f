"""Pytest configuration and fixtures."""

import stat
from pathlib import Path
from typing import Callable

import httpx
import pytest

from pindeploy.config import Settings

TEST_JWT = "test-jwt-secret-value"

FAKE_IPFS_SCRIPT = """#!/bin/sh
mkdir -p "$IPFS_PATH"
echo "$@" >> "$IPFS_PATH/calls.log"
case "$1" in
  init)
    mkdir -p "$IPFS_PATH"
    touch "$IPFS_PATH/config"
    ;;
  key)
    if [ "$2" = "list" ]; then
      echo self
      cat "$IPFS_PATH/keys" 2>/dev/null || true
    else
      echo "$4" >> "$IPFS_PATH/keys"
      echo k51generatedkey
    fi
    ;;
  name)
    if [ -f "$IPFS_PATH/fail-publish" ]; then
      echo "Error: publish failed" >&2
      exit 1
    fi
    echo k51qzi5uqu5dlvj2testname
    ;;
  daemon)
    echo $$ > "$IPFS_PATH/daemon.pid"
    exec sleep 600
    ;;
esac
"""


def write_executable(path: Path, content: str) -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the host environment."""
    return Settings(
        _env_file=None,
        pinata_jwt=TEST_JWT,
        pinata_api_url="https://pinata.test/pinning/pinFileToIPFS",
        pinata_gateway_url="https://gateway.test",
        deployments_dir=tmp_path / "deployments",
        ipfs_bin=str(tmp_path / "bin" / "ipfs"),
        ipfs_path=tmp_path / "ipfs-repo",
        ipfs_install_dir=tmp_path / "install",
        ipfs_api_url="http://ipfs-api.test",
        ipfs_ready_timeout_s=0.5,
        ipfs_ready_interval_s=0.05,
    )


@pytest.fixture
def build_dir(tmp_path: Path) -> Path:
    """A build directory with a couple of files."""
    out = tmp_path / "out"
    (out / "assets").mkdir(parents=True)
    (out / "index.html").write_text("<html>hello</html>")
    (out / "assets" / "app.js").write_text("console.log('hi')")
    return out


@pytest.fixture
def fake_ipfs(tmp_path: Path) -> Path:
    """A shell script standing in for the Kubo binary."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)
    return write_executable(bin_dir / "ipfs", FAKE_IPFS_SCRIPT)


class RecordingHandler:
    """MockTransport handler replaying a scripted list of responses."""

    def __init__(self, *steps: httpx.Response | Exception | Callable[[httpx.Request], httpx.Response]):
        self.steps = list(steps)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self.steps[min(len(self.requests), len(self.steps)) - 1]
        if isinstance(step, Exception):
            raise step
        if callable(step) and not isinstance(step, httpx.Response):
            return step(request)
        return step

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def pinned(content_id: str = "bafy123") -> httpx.Response:
    return httpx.Response(
        200,
        json={"IpfsHash": content_id, "PinSize": 1234, "Timestamp": "2024-01-01T00:00:00Z"},
    )


@pytest.fixture
def gateway_ok() -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(200))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return _sleep


@pytest.fixture
def handler_factory() -> type[RecordingHandler]:
    return RecordingHandler


@pytest.fixture
def pinned_response() -> Callable[..., httpx.Response]:
    return pinned


@pytest.fixture
def make_executable() -> Callable[[Path, str], Path]:
    return write_executable
