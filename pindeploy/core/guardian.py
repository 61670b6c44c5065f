"""Scoped ownership of the staging directory and spawned processes."""

import asyncio
import shutil
import signal
import tempfile
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Protocol

from pindeploy.core.exceptions import DeploymentInterrupted, PinDeployError
from pindeploy.utils.logging import get_logger

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class OwnedResource(Protocol):
    async def release(self) -> None: ...


class ResourceGuardian:
    """Releases everything it owns on every exit path.

    Usage::

        async with ResourceGuardian() as guardian:
            stage_into(guardian.staging_dir)
            guardian.adopt(node)

    Release runs last-in first-out, so adopted handles are released before
    the staging directory is removed. A handled signal cancels the guarded
    task, which unwinds through the same path.
    """

    def __init__(self, prefix: str = "pindeploy-"):
        self.prefix = prefix
        self._staging_dir: Path | None = None
        self.received_signal: signal.Signals | None = None
        self._stack = AsyncExitStack()
        self._task: asyncio.Task | None = None
        self._installed: list[signal.Signals] = []
        self.logger = get_logger("guardian")

    @property
    def staging_dir(self) -> Path:
        """The scope's private staging directory."""
        if self._staging_dir is None:
            raise PinDeployError("Resource scope has not been opened")
        return self._staging_dir

    async def __aenter__(self) -> "ResourceGuardian":
        self._staging_dir = Path(tempfile.mkdtemp(prefix=self.prefix))
        self._stack.callback(self._remove_staging, self._staging_dir)
        self._install_signal_handlers()
        self.logger.debug("guardian.scope_opened", staging_dir=str(self.staging_dir))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self._stack.aclose()
        finally:
            self._remove_signal_handlers()
            self.logger.debug("guardian.scope_closed", error=exc_type.__name__ if exc_type else None)

        if self.received_signal is not None and exc_type is asyncio.CancelledError:
            # The cancellation came from our own signal handler
            if self._task is not None:
                self._task.uncancel()
            raise DeploymentInterrupted(self.received_signal.name) from exc

    def adopt(self, resource: OwnedResource) -> None:
        """Release ``resource`` when the scope closes."""
        self._stack.push_async_callback(resource.release)

    def _remove_staging(self, path: Path) -> None:
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            self.logger.warning("guardian.staging_not_removed", staging_dir=str(path))

    def _install_signal_handlers(self) -> None:
        try:
            loop = asyncio.get_running_loop()
            self._task = asyncio.current_task()
        except RuntimeError:
            return
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not in the main thread, or the platform lacks the signal
                continue
            self._installed.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed = []

    def _on_signal(self, sig: signal.Signals) -> None:
        self.received_signal = sig
        self.logger.warning("guardian.interrupted", signal=sig.name)
        if self._task is not None and not self._task.done():
            self._task.cancel()
