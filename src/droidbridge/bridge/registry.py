"""Serial → online device resolution over the live snapshot."""

from __future__ import annotations

import logging
from typing import Protocol

from droidbridge.shared.exceptions import DeviceUnavailableError
from droidbridge.shared.models import DeviceHandle

logger = logging.getLogger(__name__)


class DeviceSource(Protocol):
    def devices(self) -> tuple[DeviceHandle, ...]: ...


class DeviceRegistry:
    """Resolve serials to ONLINE device handles.

    Every lookup re-scans the snapshot; nothing is cached here.
    """

    def __init__(self, source: DeviceSource) -> None:
        self._source = source

    def lookup(self, serial: str) -> DeviceHandle | None:
        """Return the first ONLINE device with this serial, or None."""
        for device in self._source.devices():
            if device.serial == serial and device.online:
                return device
        logger.info("device %s is not connected", serial)
        return None

    def require(self, serial: str) -> DeviceHandle:
        """Like ``lookup`` but raises when the device is unavailable.

        Raises:
            DeviceUnavailableError: If no ONLINE device has this serial.
        """
        device = self.lookup(serial)
        if device is None:
            raise DeviceUnavailableError(f"device {serial} is not online")
        return device

    def online_devices(self) -> list[DeviceHandle]:
        return [device for device in self._source.devices() if device.online]
