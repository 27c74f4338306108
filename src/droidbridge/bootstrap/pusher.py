"""Bounded background pool for artifact transfers."""

from __future__ import annotations

import asyncio
import logging

from droidbridge.bridge.interfaces import TransportSource
from droidbridge.shared.exceptions import PushError
from droidbridge.shared.models import ServiceArtifact

logger = logging.getLogger(__name__)


class ArtifactPusher:
    """Runs ``adb push`` in the background, at most ``concurrency`` at a time.

    One pool is shared by every device. ``dispatch`` returns immediately;
    completion is observed by listing the staging directory, not by awaiting
    the returned task.
    """

    def __init__(self, bridge: TransportSource, *, concurrency: int = 4, timeout: float | None = 120.0) -> None:
        self._bridge = bridge
        self._slots = asyncio.Semaphore(max(1, concurrency))
        self._timeout = timeout
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, serial: str, artifact: ServiceArtifact) -> asyncio.Task[None]:
        """Queue a transfer of ``artifact`` to ``serial``.

        Returns:
            The background task; its exception, if any, is already logged.
        """
        task = asyncio.create_task(self._push(serial, artifact), name=f"push-{serial}-{artifact.name}")
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    async def drain(self) -> None:
        """Wait for every queued transfer to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _push(self, serial: str, artifact: ServiceArtifact) -> None:
        async with self._slots:
            transport = self._bridge.transport
            if transport is None:
                raise PushError(f"bridge is not connected; cannot push {artifact.name} to {serial}")
            await transport.push(serial, artifact.local_path, artifact.device_path, timeout=self._timeout)

    def _finished(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s failed: %s", task.get_name(), exc)
