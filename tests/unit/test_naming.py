"""Unit tests for the IPNS node handle and publisher."""

import asyncio
import io
import os
import tarfile
import time

import httpx
import pytest

from pindeploy.core.exceptions import NamingError
from pindeploy.services.naming import (
    DaemonState,
    IpfsNode,
    NamingPublisher,
    kubo_download_url,
)


def _api(reachable_after: int = 0) -> httpx.MockTransport:
    """Kubo API that refuses connections for the first ``reachable_after`` calls."""
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] <= reachable_after:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(200, json={"ID": "12D3KooW"})

    return httpx.MockTransport(handler)


def _unreachable() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    return httpx.MockTransport(handler)


def _calls(settings) -> list[str]:
    log = settings.ipfs_path / "calls.log"
    return log.read_text().splitlines() if log.exists() else []


class TestIpfsNode:
    """Tests for IpfsNode lifecycle."""

    @pytest.mark.asyncio
    async def test_reuses_running_daemon(self, settings, fake_ipfs):
        node = IpfsNode(settings, transport=_api())

        await node.acquire()

        assert node.state is DaemonState.RUNNING
        assert node.owned is False
        assert node.process is None
        await node.release()
        assert "daemon" not in _calls(settings)

    @pytest.mark.asyncio
    async def test_initializes_repo_once(self, settings, fake_ipfs):
        node = IpfsNode(settings, transport=_api())

        await node.acquire()
        await node.acquire()

        assert _calls(settings).count("init") == 1

    @pytest.mark.asyncio
    async def test_spawns_and_stops_owned_daemon(self, settings, fake_ipfs):
        node = IpfsNode(settings, transport=_api(reachable_after=2))

        await node.acquire()

        assert node.state is DaemonState.RUNNING
        assert node.owned is True
        process = node.process

        await node.release()

        assert process.returncode is not None
        assert node.owned is False
        await node.release()

    @pytest.mark.asyncio
    async def test_never_ready_is_fatal_and_terminates(self, settings, fake_ipfs):
        node = IpfsNode(settings, transport=_unreachable())

        with pytest.raises(NamingError, match="not ready"):
            await node.acquire()

        assert node.process is None
        assert node.owned is False
        assert node.state is DaemonState.NOT_RUNNING

    @pytest.mark.asyncio
    async def test_cancelled_command_kills_child(self, settings, fake_ipfs):
        node = IpfsNode(settings, transport=_api())
        await node.acquire()
        pid_file = settings.ipfs_path / "daemon.pid"

        task = asyncio.create_task(node.run("daemon", phase="start"))
        deadline = time.monotonic() + 5
        while not pid_file.exists() or not pid_file.read_text().strip():
            assert time.monotonic() < deadline
            await asyncio.sleep(0.02)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(int(pid_file.read_text()), 0)

    def test_children_get_repo_path(self, settings, fake_ipfs, monkeypatch):
        monkeypatch.setenv("PINDEPLOY_TEST_MARKER", "kept")
        env = IpfsNode(settings)._env()

        assert env["IPFS_PATH"] == str(settings.ipfs_path)
        assert env["PINDEPLOY_TEST_MARKER"] == "kept"

    @pytest.mark.asyncio
    async def test_installs_missing_binary(self, settings, tmp_path, monkeypatch):
        monkeypatch.setattr("pindeploy.services.naming.kubo_download_url", lambda version: "https://dist.test/kubo.tar.gz")
        settings = settings.model_copy(update={"ipfs_bin": "ipfs-not-on-path-xyz"})

        payload = b"#!/bin/sh\nexit 0\n"
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            info = tarfile.TarInfo("kubo/ipfs")
            info.size = len(payload)
            archive.addfile(info, io.BytesIO(payload))
        archive_bytes = buffer.getvalue()

        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, content=archive_bytes)

        node = IpfsNode(settings, transport=httpx.MockTransport(handler))
        binary = await node.ensure_installed()

        assert binary == settings.ipfs_install_dir / "ipfs"
        assert binary.read_bytes() == payload
        assert node.state is DaemonState.INSTALLING
        assert requested == ["https://dist.test/kubo.tar.gz"]

        # Second lookup finds the installed copy without downloading again
        again = await IpfsNode(settings, transport=httpx.MockTransport(handler)).ensure_installed()
        assert again == binary
        assert len(requested) == 1

    @pytest.mark.asyncio
    async def test_failed_download(self, settings, monkeypatch):
        monkeypatch.setattr("pindeploy.services.naming.kubo_download_url", lambda version: "https://dist.test/kubo.tar.gz")
        settings = settings.model_copy(update={"ipfs_bin": "ipfs-not-on-path-xyz"})
        node = IpfsNode(settings, transport=httpx.MockTransport(lambda r: httpx.Response(404)))

        with pytest.raises(NamingError, match="install"):
            await node.ensure_installed()


def test_kubo_download_url():
    assert kubo_download_url("0.29.0", "Linux", "x86_64") == (
        "https://dist.ipfs.tech/kubo/v0.29.0/kubo_v0.29.0_linux-amd64.tar.gz"
    )
    assert kubo_download_url("0.29.0", "Darwin", "arm64").endswith("darwin-arm64.tar.gz")
    with pytest.raises(NamingError):
        kubo_download_url("0.29.0", "Windows", "x86_64")


class TestNamingPublisher:
    """Tests for NamingPublisher."""

    @pytest.fixture
    async def node(self, settings, fake_ipfs) -> IpfsNode:
        node = IpfsNode(settings, transport=_api())
        await node.acquire()
        return node

    @pytest.mark.asyncio
    async def test_publish_creates_key_then_reuses(self, node, settings):
        publisher = NamingPublisher(node)

        first = await publisher.publish("site-dev", "bafy123")
        second = await publisher.publish("site-dev", "bafy456")

        assert first == second == "k51qzi5uqu5dlvj2testname"
        calls = _calls(settings)
        assert calls.count("key gen --type=ed25519 site-dev") == 1
        assert "name publish --key=site-dev --quiet /ipfs/bafy456" in calls

    @pytest.mark.asyncio
    async def test_publish_failure_raises_naming_error(self, node, settings):
        (settings.ipfs_path / "fail-publish").touch()

        with pytest.raises(NamingError) as exc_info:
            await NamingPublisher(node).publish("site-dev", "bafy123")

        assert exc_info.value.phase == "publish"
        assert "publish failed" in exc_info.value.message
