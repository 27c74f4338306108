"""Shared pytest fixtures for the droidbridge test suite."""

from __future__ import annotations

import asyncio
import fnmatch

import pytest

from droidbridge.bridge.lifecycle import BridgeContext
from droidbridge.config import Settings
from droidbridge.shared.enums import DeviceState
from droidbridge.shared.exceptions import AdbError, PushError


class SimulatedDevice:
    """Answers the shell commands the bootstrap protocol issues."""

    def __init__(
        self,
        props: dict[str, str] | None = None,
        *,
        wm_size: str = "Physical size: 1080x1920\r\n",
    ) -> None:
        self.props = props or {"ro.product.cpu.abi": "arm64-v8a", "ro.build.version.sdk": "29"}
        self.wm_size = wm_size
        self.files: set[str] = set()
        self.commands: list[str] = []

    def handle(self, command: str) -> str:
        self.commands.append(command)
        if command.startswith("getprop "):
            value = self.props.get(command.split(" ", 1)[1])
            return f"{value}\n" if value is not None else "\n"
        if command.startswith("ls ") and "| grep " in command:
            needle = command.rsplit("| grep ", 1)[1].strip()
            return "".join(f"{name}\n" for name in sorted(self.files) if needle in name)
        if command.startswith("rm -rf "):
            pattern = command.split(" ", 2)[2].rsplit("/", 1)[1]
            self.files = {name for name in self.files if not fnmatch.fnmatch(name, pattern)}
            return ""
        if command == "wm size":
            return self.wm_size
        return ""


class FakeShellStream:
    def __init__(self) -> None:
        self._chunks: asyncio.Queue[bytes] = asyncio.Queue()
        self.closed = False

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def finish(self) -> None:
        self._chunks.put_nowait(b"")

    async def read(self, n: int = -1) -> bytes:
        return await self._chunks.get()

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """In-memory ``Transport`` with simulated devices."""

    def __init__(self) -> None:
        self.devices: dict[str, SimulatedDevice] = {}
        self.snapshots: asyncio.Queue[list[tuple[str, DeviceState]] | None] = asyncio.Queue()
        self.start_calls: list[bool] = []
        self.track_calls = 0
        self.shell_error: Exception | None = None
        self.open_error: Exception | None = None
        self.forward_error: Exception | None = None
        self.push_error: Exception | None = None
        self.push_gate: asyncio.Event | None = None
        self.pushes: list[tuple[str, str, str]] = []
        self.forwards: list[tuple[str, str, str]] = []
        self.removed_forwards: list[tuple[str, str]] = []
        self.streams: list[tuple[str, str, FakeShellStream]] = []

    def announce(self, *entries: tuple[str, DeviceState]) -> None:
        self.snapshots.put_nowait(list(entries))

    async def start_server(self, *, restart: bool = False) -> None:
        self.start_calls.append(restart)

    async def track_devices(self):
        self.track_calls += 1
        while True:
            entries = await self.snapshots.get()
            if entries is None:
                return
            yield entries

    async def shell(self, serial: str, command: str, *, timeout: float | None = None) -> str:
        if self.shell_error is not None:
            raise self.shell_error
        device = self.devices.get(serial)
        if device is None:
            raise AdbError(f"error: device '{serial}' not found")
        return device.handle(command)

    async def open_shell(self, serial: str, command: str) -> FakeShellStream:
        if self.open_error is not None:
            raise self.open_error
        stream = FakeShellStream()
        self.streams.append((serial, command, stream))
        return stream

    async def forward(self, serial: str, local: str, remote: str) -> None:
        if self.forward_error is not None:
            raise self.forward_error
        self.forwards.append((serial, local, remote))

    async def remove_forward(self, serial: str, local: str) -> None:
        if self.forward_error is not None:
            raise self.forward_error
        self.removed_forwards.append((serial, local))

    async def push(self, serial: str, local_path: str, device_path: str, *, timeout: float | None = None) -> None:
        if self.push_gate is not None:
            await self.push_gate.wait()
        if self.push_error is not None:
            raise PushError(str(self.push_error))
        self.pushes.append((serial, local_path, device_path))
        self.devices[serial].files.add(device_path.rsplit("/", 1)[1])


@pytest.fixture()
def settings() -> Settings:
    """Return a Settings instance with fast test timings."""
    return Settings(
        android_home="/opt/android-sdk",
        init_poll_interval_seconds=0.01,
        init_max_attempts=20,
        track_retry_seconds=0.01,
        stream_poll_interval_seconds=0.02,
        presence_timeout_seconds=2.0,
        presence_initial_delay_seconds=0.005,
        presence_max_delay_seconds=0.02,
    )


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def device() -> SimulatedDevice:
    return SimulatedDevice()


@pytest.fixture()
async def bridge(settings: Settings, fake_transport: FakeTransport, device: SimulatedDevice):
    """A connected BridgeContext tracking one ONLINE device, ABC123."""
    fake_transport.devices["ABC123"] = device
    fake_transport.announce(("ABC123", DeviceState.ONLINE))
    ctx = BridgeContext(settings, transport_factory=lambda _path: fake_transport)
    await ctx.connect()
    yield ctx
    await ctx.disconnect()


@pytest.fixture()
def make_device():
    """Factory for extra simulated devices."""
    return SimulatedDevice
