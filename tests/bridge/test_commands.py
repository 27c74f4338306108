"""Tests for CommandChannel."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from droidbridge.bridge.commands import CommandChannel
from droidbridge.shared.enums import DeviceState, FaultKind, StreamOutcome
from droidbridge.shared.exceptions import AdbError, AdbTimeout, CommandExecutionFault, DeviceUnavailableError
from droidbridge.shared.models import DeviceHandle


@pytest.fixture
def online() -> DeviceHandle:
    return DeviceHandle(serial="ABC123", state=DeviceState.ONLINE)


@pytest.fixture
def channel(fake_transport, device) -> CommandChannel:
    fake_transport.devices["ABC123"] = device
    return CommandChannel(SimpleNamespace(transport=fake_transport), stream_poll_interval=0.02)


class TestRun:
    async def test_collects_output(self, channel: CommandChannel, online: DeviceHandle) -> None:
        result = await channel.run(online, "wm size")

        assert result.ok
        assert result.output == "Physical size: 1080x1920\r\n"

    async def test_offline_device_fails_fast(self, channel: CommandChannel, device) -> None:
        offline = DeviceHandle(serial="ABC123", state=DeviceState.OFFLINE)

        result = await channel.run(offline, "wm size")

        assert result.fault is not None
        assert result.fault.kind == FaultKind.DEVICE_UNAVAILABLE
        assert device.commands == []
        with pytest.raises(DeviceUnavailableError):
            result.raise_for_fault()

    async def test_disconnected_bridge(self, online: DeviceHandle) -> None:
        channel = CommandChannel(SimpleNamespace(transport=None))

        result = await channel.run(online, "ls")

        assert result.fault is not None
        assert result.fault.kind == FaultKind.DEVICE_UNAVAILABLE

    async def test_transport_error_is_contained(self, channel: CommandChannel, fake_transport, online) -> None:
        fake_transport.shell_error = AdbError("error: closed")

        result = await channel.run(online, "ls")

        assert not result.ok
        assert result.output == ""
        assert result.fault is not None and result.fault.kind == FaultKind.EXECUTION_FAILED
        with pytest.raises(CommandExecutionFault, match="closed"):
            result.raise_for_fault()

    async def test_timeout_fault(self, channel: CommandChannel, fake_transport, online) -> None:
        fake_transport.shell_error = AdbTimeout("ADB command timed out")

        result = await channel.run(online, "ls", timeout=0.1)

        assert result.fault is not None and result.fault.kind == FaultKind.TIMEOUT

    async def test_output_is_empty_on_fault(self, channel: CommandChannel, fake_transport, online) -> None:
        fake_transport.shell_error = AdbError("error: closed")

        assert await channel.output(online, "ls") == ""


class TestHelpers:
    async def test_get_property_is_cached(self, channel: CommandChannel, device, online: DeviceHandle) -> None:
        assert await channel.get_property(online, "ro.product.cpu.abi") == "arm64-v8a"
        assert await channel.get_property(online, "ro.product.cpu.abi") == "arm64-v8a"

        assert device.commands == ["getprop ro.product.cpu.abi"]
        assert online.properties == {"ro.product.cpu.abi": "arm64-v8a"}

    async def test_empty_property_is_not_cached(self, channel: CommandChannel, online: DeviceHandle) -> None:
        assert await channel.get_property(online, "ro.unknown") == ""
        assert "ro.unknown" not in online.properties

    async def test_screen_size(self, channel: CommandChannel, online: DeviceHandle) -> None:
        assert await channel.screen_size(online) == "1080x1920"

    async def test_app_version(self, channel: CommandChannel, device, online: DeviceHandle) -> None:
        device.handle = lambda command: "    versionName=3.1.4\r\n"

        assert await channel.app_version(online, "org.cloud.sonic.android") == "3.1.4"

    async def test_press_key_and_reboot(self, channel: CommandChannel, device, online: DeviceHandle) -> None:
        await channel.press_key(online, 3)
        await channel.reboot(online)

        assert device.commands == ["input keyevent 3", "reboot"]


class TestRunStreaming:
    async def test_delivers_until_exit(self, channel: CommandChannel, fake_transport, online) -> None:
        received: list[str] = []
        task = asyncio.create_task(channel.run_streaming(online, "/data/local/tmp/minitouch", received.append))
        await asyncio.sleep(0.01)
        _, _, stream = fake_transport.streams[0]

        stream.feed(b"v 1\n")
        stream.feed(b"^ 10 1079 1919 255\n")
        stream.finish()
        outcome = await asyncio.wait_for(task, timeout=1)

        assert outcome == StreamOutcome.EXITED
        assert "".join(received) == "v 1\n^ 10 1079 1919 255\n"
        assert stream.closed

    async def test_split_multibyte_output(self, channel: CommandChannel, fake_transport, online) -> None:
        received: list[str] = []
        task = asyncio.create_task(channel.run_streaming(online, "echo", received.append))
        await asyncio.sleep(0.01)
        _, _, stream = fake_transport.streams[0]

        encoded = "设备".encode()
        stream.feed(encoded[:2])
        stream.feed(encoded[2:])
        stream.finish()
        await asyncio.wait_for(task, timeout=1)

        assert "".join(received) == "设备"

    async def test_cancel_stops_sink_within_one_interval(self, channel: CommandChannel, fake_transport, online) -> None:
        received: list[str] = []
        cancel = asyncio.Event()
        task = asyncio.create_task(channel.run_streaming(online, "minicap", received.append, cancel))
        await asyncio.sleep(0.01)
        _, _, stream = fake_transport.streams[0]
        stream.feed(b"frame 1\n")
        await asyncio.sleep(0.01)

        cancel.set()
        outcome = await asyncio.wait_for(task, timeout=0.1)
        stream.feed(b"frame 2\n")
        await asyncio.sleep(0.05)

        assert outcome == StreamOutcome.CANCELLED
        assert received == ["frame 1\n"]
        assert stream.closed
        assert len(fake_transport.streams) == 1

    async def test_sink_errors_do_not_stop_stream(self, channel: CommandChannel, fake_transport, online) -> None:
        calls: list[str] = []

        def sink(text: str) -> None:
            calls.append(text)
            raise ValueError("bad sink")

        task = asyncio.create_task(channel.run_streaming(online, "minicap", sink))
        await asyncio.sleep(0.01)
        _, _, stream = fake_transport.streams[0]
        stream.feed(b"a")
        stream.feed(b"b")
        stream.finish()

        assert await asyncio.wait_for(task, timeout=1) == StreamOutcome.EXITED
        assert calls == ["a", "b"]

    async def test_already_cancelled_does_not_start(self, channel: CommandChannel, fake_transport, online) -> None:
        cancel = asyncio.Event()
        cancel.set()

        outcome = await channel.run_streaming(online, "minicap", lambda _text: None, cancel)

        assert outcome == StreamOutcome.CANCELLED
        assert fake_transport.streams == []

    async def test_open_failure(self, channel: CommandChannel, fake_transport, online) -> None:
        fake_transport.open_error = AdbError("adb binary not found")

        outcome = await channel.run_streaming(online, "minicap", lambda _text: None)

        assert outcome == StreamOutcome.FAILED

    async def test_offline_device(self, channel: CommandChannel, fake_transport) -> None:
        offline = DeviceHandle(serial="ABC123", state=DeviceState.OFFLINE)

        outcome = await channel.run_streaming(offline, "minicap", lambda _text: None)

        assert outcome == StreamOutcome.FAILED
        assert fake_transport.streams == []
