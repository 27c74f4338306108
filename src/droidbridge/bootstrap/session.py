"""Runtime handle for one bootstrapped remote service."""

from __future__ import annotations

import asyncio
import logging

from droidbridge.shared.enums import BootstrapState, EndReason, ServiceKind, SessionState, StreamOutcome
from droidbridge.shared.models import ServiceArtifact

logger = logging.getLogger(__name__)

_END_REASONS = {
    StreamOutcome.CANCELLED: EndReason.DETACHED,
    StreamOutcome.EXITED: EndReason.EXITED,
    StreamOutcome.FAILED: EndReason.FAILED,
}


class ServiceSession:
    """One (device, service kind) bootstrap and the process it launched.

    The session is ACTIVE from creation until bootstrap fails or the launched
    process's output stream ends. ``end_reason`` tells a local detach apart
    from the remote process exiting.
    """

    def __init__(self, serial: str, kind: ServiceKind) -> None:
        self.serial = serial
        self.kind = kind
        self.state = BootstrapState.SELECT
        self.history: list[BootstrapState] = [BootstrapState.SELECT]
        self.status = SessionState.ACTIVE
        self.end_reason: EndReason | None = None
        self.artifact: ServiceArtifact | None = None
        self.command: str | None = None
        self.error: str | None = None
        self._cancel = asyncio.Event()
        self._ended = asyncio.Event()
        self._task: asyncio.Task[StreamOutcome] | None = None

    def __repr__(self) -> str:
        return f"ServiceSession({self.serial!r}, {self.kind.value}, {self.state.value}, {self.status.value})"

    @property
    def active(self) -> bool:
        return self.status == SessionState.ACTIVE

    @property
    def stopping(self) -> bool:
        return self._cancel.is_set()

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel

    def advance(self, state: BootstrapState) -> None:
        logger.debug("%s/%s: %s → %s", self.serial, self.kind.value, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def fail(self, error: str) -> None:
        """Mark the bootstrap as failed before anything was launched."""
        self.error = error
        self.advance(BootstrapState.FAILED)
        self._end(EndReason.FAILED)

    def abandon(self) -> None:
        """End a bootstrap whose stop was requested before anything was launched."""
        logger.info("%s on %s stopped in %s before launch", self.kind.value, self.serial, self.state.value)
        self._end(EndReason.DETACHED)

    def attach(self, task: asyncio.Task[StreamOutcome]) -> None:
        """Bind the streaming task of the launched process."""
        self._task = task
        self.advance(BootstrapState.STREAMING)
        task.add_done_callback(self._stream_done)

    def request_stop(self) -> None:
        """Stop consuming output. The remote process is not killed."""
        if self.active:
            logger.info("detaching %s from %s", self.kind.value, self.serial)
        self._cancel.set()

    async def wait(self) -> EndReason | None:
        """Wait until the session ends and return why."""
        await self._ended.wait()
        return self.end_reason

    def _stream_done(self, task: asyncio.Task[StreamOutcome]) -> None:
        if task.cancelled():
            self._end(EndReason.DETACHED)
            return
        exc = task.exception()
        if exc is not None:
            self.error = str(exc)
            logger.error("%s on %s stream crashed: %s", self.kind.value, self.serial, exc)
            self._end(EndReason.FAILED)
            return
        self._end(_END_REASONS[task.result()])

    def _end(self, reason: EndReason) -> None:
        if not self.active:
            return
        self.status = SessionState.ENDED
        self.end_reason = reason
        self._ended.set()
        logger.info("%s on %s ended: %s", self.kind.value, self.serial, reason.value)
