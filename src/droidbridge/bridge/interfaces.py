"""Protocol interfaces for bridge dependency injection."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from droidbridge.shared.enums import DeviceState
from droidbridge.shared.models import DeviceHandle


class ShellStream(Protocol):
    """Output side of a long-running remote shell process."""

    async def read(self, n: int = -1) -> bytes:
        """Return the next chunk of output, or ``b""`` once the process exits."""
        ...

    async def close(self) -> None:
        """Detach from the process locally. Does not signal the remote side."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Primitive device operations provided by the adb server."""

    async def start_server(self, *, restart: bool = False) -> None:
        """Start the adb server.

        Args:
            restart: Kill a running server first.

        Raises:
            AdbError: If the server could not be started.
        """
        ...

    def track_devices(self) -> AsyncIterator[list[tuple[str, DeviceState]]]:
        """Yield the full device list every time it changes.

        The iterator ends when the tracking connection closes.

        Raises:
            AdbError: If tracking could not be started.
        """
        ...

    async def shell(self, serial: str, command: str, *, timeout: float | None = None) -> str:
        """Run a shell command to completion and return its stdout.

        Raises:
            AdbTimeout: If ``timeout`` elapsed first.
            AdbError: If adb could not reach the device.
        """
        ...

    async def open_shell(self, serial: str, command: str) -> ShellStream:
        """Start a shell command and return its output stream without waiting.

        Raises:
            AdbError: If the process could not be started.
        """
        ...

    async def forward(self, serial: str, local: str, remote: str) -> None:
        """Create a port forward, e.g. ``tcp:1717`` -> ``localabstract:minicap``.

        Raises:
            AdbError: If adb rejected the forward.
        """
        ...

    async def remove_forward(self, serial: str, local: str) -> None:
        """Remove a port forward.

        Raises:
            AdbError: If adb rejected the removal.
        """
        ...

    async def push(self, serial: str, local_path: str, device_path: str, *, timeout: float | None = None) -> None:
        """Copy a local file onto the device.

        Raises:
            PushError: If the transfer failed.
        """
        ...


class DeviceListener(Protocol):
    """Receives presence changes from the bridge tracker."""

    def device_connected(self, device: DeviceHandle) -> None: ...

    def device_disconnected(self, device: DeviceHandle) -> None: ...

    def device_changed(self, device: DeviceHandle) -> None: ...


class TransportSource(Protocol):
    """Anything exposing the transport of a live bridge connection."""

    @property
    def transport(self) -> Transport | None: ...
