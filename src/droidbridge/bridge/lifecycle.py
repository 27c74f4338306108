"""Process-scoped connection to the adb server and the live device snapshot."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from droidbridge.bridge.adb import AdbCliTransport
from droidbridge.bridge.interfaces import DeviceListener, Transport
from droidbridge.config import Settings
from droidbridge.shared.enums import DeviceState
from droidbridge.shared.exceptions import AdbError, ConfigurationError
from droidbridge.shared.models import DeviceHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BridgeHandle:
    """Returned by ``BridgeContext.connect`` for the lifetime of the connection."""

    adb_path: str
    transport: Transport


class BridgeContext:
    """Owns the single adb server connection and the device snapshot.

    The tracker task is the only writer of the snapshot; everything else
    reads it through ``devices()``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport_factory: Callable[[str], Transport] = AdbCliTransport,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._handle: BridgeHandle | None = None
        self._devices: tuple[DeviceHandle, ...] = ()
        self._listeners: list[DeviceListener] = []
        self._has_initial_device_list = False
        self._tracker: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    @property
    def transport(self) -> Transport | None:
        return self._handle.transport if self._handle is not None else None

    @property
    def has_initial_device_list(self) -> bool:
        return self._has_initial_device_list

    def devices(self) -> tuple[DeviceHandle, ...]:
        """Return the current device snapshot (empty if not connected)."""
        if self._handle is None:
            return ()
        return self._devices

    def add_listener(self, listener: DeviceListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: DeviceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def connect(self) -> BridgeHandle:
        """Start the adb server and wait for the first device enumeration.

        Calling again while connected returns the existing handle.

        Returns:
            The live bridge handle.

        Raises:
            ConfigurationError: If ANDROID_HOME is not set.
            AdbError: If the adb server could not be started.
        """
        async with self._connect_lock:
            if self._handle is not None:
                return self._handle

            adb_path = self._settings.adb_path()
            if adb_path is None:
                logger.error("ANDROID_HOME is not set; cannot locate adb")
                raise ConfigurationError("ANDROID_HOME is not set; cannot locate adb")

            transport = self._transport_factory(adb_path)
            handle = BridgeHandle(adb_path=adb_path, transport=transport)
            # Listeners are already attached, so the first snapshot reaches them.
            await transport.start_server(restart=True)
            self._handle = handle
            self._tracker = asyncio.create_task(self._track(transport), name="droidbridge-device-tracker")
            logger.info("android device tracking started via %s", adb_path)

            await self._wait_for_initial_device_list()
            return handle

    async def disconnect(self) -> None:
        """Stop tracking and drop the snapshot. The adb server keeps running."""
        async with self._connect_lock:
            tracker, self._tracker = self._tracker, None
            if tracker is not None:
                tracker.cancel()
                try:
                    await tracker
                except asyncio.CancelledError:
                    pass
            self._handle = None
            self._devices = ()
            self._has_initial_device_list = False
            logger.info("android device tracking stopped")

    async def _wait_for_initial_device_list(self) -> None:
        interval = self._settings.init_poll_interval_seconds
        max_attempts = self._settings.init_max_attempts
        attempts = 0
        while not self._has_initial_device_list:
            if attempts >= max_attempts:
                logger.warning(
                    "initial device list not received after %d attempts; continuing with %d device(s)",
                    attempts,
                    len(self._devices),
                )
                return
            await asyncio.sleep(interval)
            attempts += 1
        logger.info("initial device list received: %d device(s)", len(self._devices))

    async def _track(self, transport: Transport) -> None:
        retry = self._settings.track_retry_seconds
        while True:
            try:
                async for entries in transport.track_devices():
                    self._apply_snapshot(entries)
            except AdbError as exc:
                logger.warning("device tracking failed: %s", exc)
            logger.info("device tracking stream closed; reconnecting in %.1fs", retry)
            await asyncio.sleep(retry)

    def _apply_snapshot(self, entries: list[tuple[str, DeviceState]]) -> None:
        previous = _by_serial(self._devices)
        fresh: list[DeviceHandle] = []
        for serial, state in entries:
            old = previous.get(serial)
            # Properties survive only while the device stays online.
            carry = old is not None and old.online and state == DeviceState.ONLINE
            fresh.append(DeviceHandle(serial=serial, state=state, properties=old.properties if carry else {}))

        self._devices = tuple(fresh)
        self._has_initial_device_list = True

        current = _by_serial(fresh)
        for serial, device in current.items():
            old = previous.get(serial)
            if old is None:
                logger.info("device %s connected (%s)", serial, device.state.value)
                self._notify("device_connected", device)
            elif old.state != device.state:
                logger.info("device %s changed %s → %s", serial, old.state.value, device.state.value)
                self._notify("device_changed", device)
        for serial, old in previous.items():
            if serial not in current:
                logger.info("device %s disconnected", serial)
                self._notify("device_disconnected", old)

    def _notify(self, event: str, device: DeviceHandle) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, event)(device)
            except Exception:
                logger.exception("device listener %r failed on %s for %s", listener, event, device.serial)


def _by_serial(devices: Iterable[DeviceHandle]) -> dict[str, DeviceHandle]:
    """Index a snapshot by serial; the first ONLINE entry wins over stale duplicates."""
    index: dict[str, DeviceHandle] = {}
    for device in devices:
        held = index.get(device.serial)
        if held is None or (device.online and not held.online):
            index[device.serial] = device
    return index
