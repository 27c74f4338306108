"""Service bootstrap protocol: deploy and launch minicap/minitouch on a device.

Steps run strictly in order for one session::

    SELECT → CLEAN → PUSH → AWAIT_PRESENCE → AUTHORIZE → LAUNCH → STREAMING

Pushes run on the shared background pool, so AWAIT_PRESENCE detects
completion by listing the staging directory rather than waiting on the push.
"""

from __future__ import annotations

import asyncio
import logging

from droidbridge.bootstrap.artifacts import ArtifactCatalog, parse_api_level
from droidbridge.bootstrap.pusher import ArtifactPusher
from droidbridge.bootstrap.session import ServiceSession
from droidbridge.bridge.commands import PROP_API_LEVEL, PROP_CPU_ABI, CommandChannel
from droidbridge.bridge.parsing import UNKNOWN_SIZE
from droidbridge.bridge.registry import DeviceRegistry
from droidbridge.shared.enums import BootstrapState, FaultKind, ServiceKind
from droidbridge.shared.exceptions import BootstrapError, ConvergenceStall, DroidBridgeError
from droidbridge.shared.models import CommandResult, DeviceHandle, ServiceArtifact

logger = logging.getLogger(__name__)

SessionKey = tuple[str, ServiceKind]


class ServiceBootstrapper:
    """Bring a device from "online" to "service streaming".

    Bootstraps of the same (device, kind) are serialized because every run
    deploys to the same staging filename; requesting one while a session for
    that key is still active returns the running session.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        commands: CommandChannel,
        pusher: ArtifactPusher,
        catalog: ArtifactCatalog,
        *,
        presence_timeout: float = 60.0,
        presence_initial_delay: float = 0.1,
        presence_max_delay: float = 2.0,
        default_quality: int = 80,
    ) -> None:
        self._registry = registry
        self._commands = commands
        self._pusher = pusher
        self._catalog = catalog
        self._presence_timeout = presence_timeout
        self._presence_initial_delay = presence_initial_delay
        self._presence_max_delay = presence_max_delay
        self._default_quality = default_quality
        self._sessions: dict[SessionKey, ServiceSession] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}

    def session(self, serial: str, kind: ServiceKind) -> ServiceSession | None:
        return self._sessions.get((serial, kind))

    def sessions(self) -> list[ServiceSession]:
        return list(self._sessions.values())

    async def start_capture(self, serial: str, quality: int | None = None, rotation: int = 0) -> ServiceSession:
        return await self.bootstrap(serial, ServiceKind.CAPTURE, quality=quality, rotation=rotation)

    async def start_input(self, serial: str) -> ServiceSession:
        return await self.bootstrap(serial, ServiceKind.INPUT)

    async def bootstrap(
        self,
        serial: str,
        kind: ServiceKind,
        *,
        quality: int | None = None,
        rotation: int = 0,
    ) -> ServiceSession:
        """Deploy and launch ``kind`` on ``serial``.

        Args:
            serial: Device serial; the device must be ONLINE.
            kind: Which service to bring up.
            quality: JPEG quality for the capture service.
            rotation: Display rotation passed to the capture service.

        Returns:
            The session in STREAMING state, or ended as DETACHED when a stop
            was requested before launch.

        Raises:
            DeviceUnavailableError: If the device is or goes offline.
            ConvergenceStall: If the pushed files never appear.
            BootstrapError: If the device cannot be served.
        """
        key = (serial, kind)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            existing = self._sessions.get(key)
            if existing is not None and existing.active and not existing.stopping:
                logger.info("%s already running on %s", kind.value, serial)
                return existing

            self._registry.require(serial)
            session = ServiceSession(serial, kind)
            self._sessions[key] = session
            try:
                await self._run(session, quality if quality is not None else self._default_quality, rotation)
            except DroidBridgeError as exc:
                logger.error("bootstrap of %s on %s failed in %s: %s", kind.value, serial, session.state.value, exc)
                session.fail(str(exc))
                raise
            except asyncio.CancelledError:
                session.fail("cancelled")
                raise
            if session.state == BootstrapState.STREAMING:
                logger.info("%s streaming on %s", kind.value, serial)
            return session

    def stop_device(self, serial: str) -> list[ServiceSession]:
        """Detach every active session of ``serial``.

        A session still bootstrapping stops at its next step and never launches.
        """
        stopped = [s for s in self._sessions.values() if s.serial == serial and s.active]
        for session in stopped:
            session.request_stop()
        return stopped

    def stop_all(self) -> None:
        for session in self._sessions.values():
            session.request_stop()

    async def _run(self, session: ServiceSession, quality: int, rotation: int) -> None:
        serial = session.serial

        artifact = await self._select(session)
        session.artifact = artifact
        if _abandoned(session):
            return

        session.advance(BootstrapState.CLEAN)
        stale = f"{self._catalog.staging_dir}/{session.kind.value}*"
        result = await self._commands.run(self._device(serial), f"rm -rf {stale}")
        if not result.ok:
            logger.warning("cleanup of stale %s files on %s failed; continuing", session.kind.value, serial)
        if _abandoned(session):
            return

        session.advance(BootstrapState.PUSH)
        pushes = {item.name: self._pusher.dispatch(serial, item) for item in artifact.files()}

        session.advance(BootstrapState.AWAIT_PRESENCE)
        await self._await_presence(session, pushes)
        if _abandoned(session):
            return

        session.advance(BootstrapState.AUTHORIZE)
        result = await self._commands.run(self._device(serial), f"chmod {artifact.mode} {artifact.device_path}")
        result.raise_for_fault()
        if _abandoned(session):
            return

        session.advance(BootstrapState.LAUNCH)
        device = self._device(serial)
        command = await self._launch_command(device, session.kind, artifact, quality, rotation)
        session.command = command
        if _abandoned(session):
            return
        logger.info("launching %s on %s: %s", session.kind.value, serial, command)
        task = asyncio.create_task(
            self._commands.run_streaming(device, command, _log_sink(session), session.cancel_event),
            name=f"{session.kind.value}-{serial}",
        )
        session.attach(task)

    async def _select(self, session: ServiceSession) -> ServiceArtifact:
        device = self._device(session.serial)
        abi = await self._commands.get_property(device, PROP_CPU_ABI)
        api_level = parse_api_level(await self._commands.get_property(device, PROP_API_LEVEL))
        artifact = self._catalog.resolve(session.kind, abi, api_level)
        logger.info("selected %s for %s (abi=%s, api=%d)", artifact.name, session.serial, abi, api_level)
        return artifact

    async def _await_presence(self, session: ServiceSession, pushes: dict[str, asyncio.Task[None]]) -> None:
        serial = session.serial
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._presence_timeout
        delay = self._presence_initial_delay
        while True:
            if session.stopping:
                return
            missing = await self._missing_files(serial, list(pushes))
            if not missing:
                return

            failed = [name for name in missing if _push_failed(pushes[name])]
            if failed:
                raise ConvergenceStall(f"push of {', '.join(failed)} to {serial} failed")

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConvergenceStall(
                    f"{', '.join(missing)} not present on {serial} after {self._presence_timeout:.0f}s"
                )
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self._presence_max_delay)

    async def _missing_files(self, serial: str, names: list[str]) -> list[str]:
        device = self._device(serial)
        missing: list[str] = []
        for name in names:
            result = await self._commands.run(device, f"ls {self._catalog.staging_dir} | grep {name}")
            _raise_if_gone(result)
            # Exact match: "minicap" must not be satisfied by "minicap.so".
            if name not in result.output.split():
                missing.append(name)
        return missing

    async def _launch_command(
        self,
        device: DeviceHandle,
        kind: ServiceKind,
        artifact: ServiceArtifact,
        quality: int,
        rotation: int,
    ) -> str:
        if kind == ServiceKind.INPUT:
            return artifact.device_path
        size = await self._commands.screen_size(device)
        if not size or size == UNKNOWN_SIZE:
            raise BootstrapError(f"screen size of {device.serial} is unknown")
        staging = self._catalog.staging_dir
        return f"LD_LIBRARY_PATH={staging} {artifact.device_path} -Q {quality} -P {size}@{size}/{rotation}"

    def _device(self, serial: str) -> DeviceHandle:
        return self._registry.require(serial)


def _abandoned(session: ServiceSession) -> bool:
    if not session.stopping:
        return False
    session.abandon()
    return True


def _push_failed(task: asyncio.Task[None]) -> bool:
    if not task.done() or task.cancelled():
        return False
    return task.exception() is not None


def _raise_if_gone(result: CommandResult) -> None:
    if result.fault is not None and result.fault.kind == FaultKind.DEVICE_UNAVAILABLE:
        result.raise_for_fault()


def _log_sink(session: ServiceSession):
    def sink(fragment: str) -> None:
        for line in fragment.splitlines():
            if line.strip():
                logger.info("[%s/%s] %s", session.serial, session.kind.value, line.rstrip())

    return sink
