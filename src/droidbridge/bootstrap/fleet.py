"""Fleet supervisor: bring services up on devices as they come online."""

from __future__ import annotations

import asyncio
import logging
from functools import partial

from droidbridge.bootstrap.artifacts import ArtifactCatalog
from droidbridge.bootstrap.protocol import ServiceBootstrapper
from droidbridge.bootstrap.pusher import ArtifactPusher
from droidbridge.bridge.commands import CommandChannel
from droidbridge.bridge.forward import PortForwardManager
from droidbridge.bridge.lifecycle import BridgeContext
from droidbridge.bridge.registry import DeviceRegistry
from droidbridge.config import Settings, get_settings
from droidbridge.shared.enums import ServiceKind
from droidbridge.shared.exceptions import ConfigurationError, DroidBridgeError
from droidbridge.shared.models import DeviceHandle

logger = logging.getLogger(__name__)


class FleetSupervisor:
    """``DeviceListener`` that bootstraps services on every online device.

    Forwards are allocated per device from the configured base ports; a base
    port of 0 disables forwarding for that service.
    """

    def __init__(
        self,
        bootstrapper: ServiceBootstrapper,
        forwards: PortForwardManager,
        registry: DeviceRegistry,
        *,
        capture_service: bool = True,
        input_service: bool = True,
        capture_quality: int = 80,
        capture_base_port: int = 0,
        input_base_port: int = 0,
    ) -> None:
        self._bootstrapper = bootstrapper
        self._forwards = forwards
        self._registry = registry
        enabled = ((ServiceKind.CAPTURE, capture_service), (ServiceKind.INPUT, input_service))
        self._kinds = [kind for kind, on in enabled if on]
        self._capture_quality = capture_quality
        self._base_ports = {ServiceKind.CAPTURE: capture_base_port, ServiceKind.INPUT: input_base_port}
        self._ports: dict[tuple[str, ServiceKind], int] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def device_connected(self, device: DeviceHandle) -> None:
        if device.online:
            self._schedule(device.serial)

    def device_changed(self, device: DeviceHandle) -> None:
        if device.online:
            self._schedule(device.serial)
        else:
            self._detach(device.serial)

    def device_disconnected(self, device: DeviceHandle) -> None:
        self._detach(device.serial)

    def port_for(self, serial: str, kind: ServiceKind) -> int | None:
        return self._ports.get((serial, kind))

    async def close(self) -> None:
        """Cancel pending bring-ups and detach from every session."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._bootstrapper.stop_all()

    def _schedule(self, serial: str) -> None:
        if not self._kinds:
            return
        running = self._tasks.get(serial)
        if running is not None and not running.done():
            return
        task = asyncio.create_task(self._bring_up(serial), name=f"bring-up-{serial}")
        self._tasks[serial] = task
        task.add_done_callback(partial(self._forget, serial))

    def _forget(self, serial: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(serial) is task:
            del self._tasks[serial]

    def _detach(self, serial: str) -> None:
        task = self._tasks.pop(serial, None)
        if task is not None and not task.done():
            task.cancel()
        stopped = self._bootstrapper.stop_device(serial)
        for kind in ServiceKind:
            self._ports.pop((serial, kind), None)
        if stopped:
            logger.info("detached %d session(s) from %s", len(stopped), serial)

    async def _bring_up(self, serial: str) -> None:
        await asyncio.gather(*(self._bring_up_one(serial, kind) for kind in self._kinds))

    async def _bring_up_one(self, serial: str, kind: ServiceKind) -> None:
        try:
            if kind == ServiceKind.CAPTURE:
                await self._bootstrapper.start_capture(serial, self._capture_quality)
            else:
                await self._bootstrapper.start_input(serial)
        except DroidBridgeError as exc:
            logger.error("could not start %s on %s: %s", kind.value, serial, exc)
            return

        port = self._allocate_port(serial, kind)
        if port is None:
            return
        device = self._registry.lookup(serial)
        if device is None:
            return
        result = await self._forwards.create_forward(device, port, kind.value)
        if not result.ok:
            self._ports.pop((serial, kind), None)

    def _allocate_port(self, serial: str, kind: ServiceKind) -> int | None:
        base = self._base_ports[kind]
        if base <= 0:
            return None
        key = (serial, kind)
        if key in self._ports:
            return self._ports[key]
        taken = set(self._ports.values())
        port = base
        while port in taken:
            port += 1
        self._ports[key] = port
        return port


def build_stack(settings: Settings) -> tuple[BridgeContext, ArtifactPusher, ServiceBootstrapper, FleetSupervisor]:
    """Wire bridge, command channel, push pool and bootstrapper from settings."""
    bridge = BridgeContext(settings)
    registry = DeviceRegistry(bridge)
    commands = CommandChannel(
        bridge,
        timeout=settings.command_timeout_seconds,
        stream_poll_interval=settings.stream_poll_interval_seconds,
    )
    pusher = ArtifactPusher(bridge, concurrency=settings.push_concurrency, timeout=settings.push_timeout_seconds)
    bootstrapper = ServiceBootstrapper(
        registry,
        commands,
        pusher,
        ArtifactCatalog(settings.artifact_root, staging_dir=settings.staging_dir),
        presence_timeout=settings.presence_timeout_seconds,
        presence_initial_delay=settings.presence_initial_delay_seconds,
        presence_max_delay=settings.presence_max_delay_seconds,
        default_quality=settings.capture_quality,
    )
    supervisor = FleetSupervisor(
        bootstrapper,
        PortForwardManager(bridge),
        registry,
        capture_service=settings.auto_bootstrap_capture,
        input_service=settings.auto_bootstrap_input,
        capture_quality=settings.capture_quality,
        capture_base_port=settings.capture_forward_port,
        input_base_port=settings.input_forward_port,
    )
    bridge.add_listener(supervisor)
    return bridge, pusher, bootstrapper, supervisor


async def run_from_settings(settings: Settings, *, stop_event: asyncio.Event | None = None) -> None:
    """Connect to adb and keep the fleet supervised until ``stop_event`` is set."""
    bridge, pusher, _, supervisor = build_stack(settings)
    stop_event = stop_event or asyncio.Event()
    try:
        await bridge.connect()
        logger.info("fleet supervisor running with %d device(s)", len(bridge.devices()))
        await stop_event.wait()
    finally:
        await supervisor.close()
        await pusher.drain()
        await bridge.disconnect()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(run_from_settings(get_settings()))
    except ConfigurationError as exc:
        logger.error("%s", exc)
        raise SystemExit(2) from exc
    except KeyboardInterrupt:
        logger.info("interrupted; shutting down")


if __name__ == "__main__":
    main()
