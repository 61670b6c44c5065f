"""IPNS publishing through a local Kubo node.

``IpfsNode`` is an owned-resource handle over the node binary, its repo and
its daemon: ``acquire()`` walks the node to a running state, ``release()``
stops the daemon only if this process started it.
"""

import asyncio
import io
import os
import platform
import shutil
import tarfile
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from pindeploy.config import Settings, subprocess_env
from pindeploy.core.exceptions import NamingError
from pindeploy.utils.logging import get_logger
from pindeploy.utils.process import kill_process

KUBO_DIST_URL = "https://dist.ipfs.tech/kubo/v{version}/kubo_v{version}_{os}-{arch}.tar.gz"

COMMAND_TIMEOUT_S = 300.0
SHUTDOWN_GRACE_S = 10.0

_ARCHES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


class DaemonState(str, Enum):
    """Lifecycle of the local naming node."""

    ABSENT = "absent"
    INSTALLING = "installing"
    INITIALIZED = "initialized"
    RUNNING = "running"
    NOT_RUNNING = "not_running"


def kubo_download_url(version: str, system: str | None = None, machine: str | None = None) -> str:
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    if system not in ("linux", "darwin") or machine not in _ARCHES:
        raise NamingError(f"unsupported platform {system}/{machine}", phase="install")
    return KUBO_DIST_URL.format(version=version, os=system, arch=_ARCHES[machine])


class IpfsNode:
    """Handle on the local Kubo node and, possibly, a daemon we spawned."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.transport = transport
        self.sleep = sleep
        self.state = DaemonState.ABSENT
        self.binary: Path | None = None
        self.process: asyncio.subprocess.Process | None = None
        self.logger = get_logger("naming.node")

    @property
    def owned(self) -> bool:
        """True while a daemon started by this handle is alive."""
        return self.process is not None and self.process.returncode is None

    async def acquire(self) -> "IpfsNode":
        """Install, initialize and start (or reuse) the daemon.

        Raises:
            NamingError: the node cannot be brought to a running state.
        """
        binary = await self.ensure_installed()
        self.binary = binary
        await self.ensure_initialized()

        if await self.is_reachable():
            self.state = DaemonState.RUNNING
            self.logger.info("naming.daemon_reused", api=self.settings.ipfs_api_url)
            return self

        self.state = DaemonState.NOT_RUNNING
        await self._start_daemon(binary)
        return self

    async def release(self) -> None:
        """Stop the daemon if this handle started it. Safe to call twice."""
        process = self.process
        self.process = None
        if process is None or process.returncode is not None:
            return

        self.logger.info("naming.daemon_stopping", pid=process.pid)
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=SHUTDOWN_GRACE_S)
        except asyncio.TimeoutError:
            self.logger.warning("naming.daemon_kill", pid=process.pid)
            process.kill()
            await process.wait()
        self.state = DaemonState.NOT_RUNNING

    def _find_binary(self) -> Path | None:
        configured = self.settings.ipfs_bin
        if os.sep in configured:
            path = Path(configured)
            return path if path.is_file() else None

        found = shutil.which(configured)
        if found:
            return Path(found)

        installed = self.settings.ipfs_install_dir / "ipfs"
        return installed if installed.is_file() else None

    async def ensure_installed(self) -> Path:
        binary = self._find_binary()
        if binary is not None:
            return binary

        self.state = DaemonState.INSTALLING
        url = kubo_download_url(self.settings.kubo_version)
        target = self.settings.ipfs_install_dir / "ipfs"
        self.logger.info("naming.installing", url=url, target=str(target))

        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=COMMAND_TIMEOUT_S,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NamingError(f"could not download {url}: {e}", phase="install") from e

        try:
            with tarfile.open(fileobj=io.BytesIO(response.content), mode="r:gz") as archive:
                member = archive.extractfile("kubo/ipfs")
                if member is None:
                    raise NamingError("archive has no kubo/ipfs binary", phase="install")
                data = member.read()
        except (tarfile.TarError, KeyError) as e:
            raise NamingError(f"bad kubo archive: {e}", phase="install") from e

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        target.chmod(0o755)
        self.logger.info("naming.installed", binary=str(target))
        return target

    async def ensure_initialized(self) -> None:
        if not (self.settings.ipfs_path / "config").exists():
            self.logger.info("naming.initializing", ipfs_path=str(self.settings.ipfs_path))
            await self.run("init", phase="init")
        self.state = DaemonState.INITIALIZED

    async def is_reachable(self) -> bool:
        url = f"{self.settings.ipfs_api_url.rstrip('/')}/api/v0/id"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=2.0) as client:
                response = await client.post(url)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def _start_daemon(self, binary: Path) -> None:
        self.process = await asyncio.create_subprocess_exec(
            str(binary),
            "daemon",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            env=self._env(),
        )
        self.logger.info("naming.daemon_spawned", pid=self.process.pid)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.ipfs_ready_timeout_s
        while loop.time() < deadline:
            if self.process.returncode is not None:
                code = self.process.returncode
                self.process = None
                raise NamingError(f"daemon exited with code {code}", phase="start")
            if await self.is_reachable():
                self.state = DaemonState.RUNNING
                self.logger.info("naming.daemon_ready", pid=self.process.pid)
                return
            await self.sleep(self.settings.ipfs_ready_interval_s)

        await self.release()
        raise NamingError(
            f"daemon not ready after {self.settings.ipfs_ready_timeout_s:g}s",
            phase="start",
        )

    def _env(self) -> dict[str, str]:
        return subprocess_env(IPFS_PATH=str(self.settings.ipfs_path))

    async def run(self, *args: str, phase: str) -> str:
        """Run an ``ipfs`` subcommand and return its stdout."""
        if self.binary is None:
            raise NamingError("node binary not resolved", phase=phase)

        process = await asyncio.create_subprocess_exec(
            str(self.binary),
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=self._env(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=COMMAND_TIMEOUT_S)
        except asyncio.TimeoutError as e:
            await kill_process(process)
            raise NamingError(f"'ipfs {args[0]}' timed out", phase=phase) from e
        except BaseException:
            await kill_process(process)
            raise

        if process.returncode != 0:
            message = (stderr or stdout).decode(errors="replace").strip()[:500]
            raise NamingError(message or f"exit code {process.returncode}", phase=phase)
        return stdout.decode(errors="replace")


class NamingPublisher:
    """Publishes content ids under a per-project IPNS key."""

    def __init__(self, node: IpfsNode):
        self.node = node
        self.logger = get_logger("naming.publisher")

    async def ensure_key(self, key_name: str) -> None:
        """Create ``key_name`` unless it already exists. Keys are never deleted."""
        existing = (await self.node.run("key", "list", phase="key")).split()
        if key_name in existing:
            self.logger.info("naming.key_reused", key=key_name)
            return
        await self.node.run("key", "gen", "--type=ed25519", key_name, phase="key")
        self.logger.info("naming.key_created", key=key_name)

    async def publish(self, key_name: str, content_id: str) -> str:
        """Point ``key_name``'s IPNS name at ``content_id`` and return the name."""
        await self.ensure_key(key_name)
        output = await self.node.run(
            "name",
            "publish",
            f"--key={key_name}",
            "--quiet",
            f"/ipfs/{content_id}",
            phase="publish",
        )
        lines = output.strip().splitlines()
        if not lines:
            raise NamingError("no name returned", phase="publish")
        name = lines[-1].strip()
        self.logger.info("naming.published", key=key_name, name=name, content_id=content_id)
        return name
