"""Shell command execution against online devices.

Remote shells are unreliable (process death, USB resets), so nothing in this
module raises past its public methods: transport failures come back as a
``Fault`` on the result and are logged here once.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import Callable

from droidbridge.bridge.interfaces import Transport, TransportSource
from droidbridge.bridge.parsing import parse_app_version, parse_screen_size
from droidbridge.shared.enums import FaultKind, StreamOutcome
from droidbridge.shared.exceptions import AdbError, AdbTimeout
from droidbridge.shared.models import CommandResult, DeviceHandle, Fault

logger = logging.getLogger(__name__)

PROP_CPU_ABI = "ro.product.cpu.abi"
PROP_API_LEVEL = "ro.build.version.sdk"

_CHUNK_SIZE = 4096

OutputSink = Callable[[str], None]


class CommandChannel:
    """Run shell commands on a device, collecting or streaming their output."""

    def __init__(
        self,
        bridge: TransportSource,
        *,
        timeout: float | None = None,
        stream_poll_interval: float = 0.5,
    ) -> None:
        self._bridge = bridge
        self._timeout = timeout
        self._stream_poll_interval = stream_poll_interval

    async def run(self, device: DeviceHandle, command: str, *, timeout: float | None = None) -> CommandResult:
        """Run ``command`` and collect its full stdout.

        Args:
            device: Target device; must be ONLINE.
            command: Shell command line.
            timeout: Per-call deadline overriding the channel default.

        Returns:
            The captured output, or a result carrying a fault.
        """
        fault = self._precheck(device)
        if fault is not None:
            logger.warning("skip %r on %s: %s", command, device.serial, fault.detail)
            return CommandResult(serial=device.serial, command=command, fault=fault)

        try:
            output = await self._transport().shell(device.serial, command, timeout=timeout or self._timeout)
        except AdbTimeout as exc:
            logger.error("shell command %r on %s timed out: %s", command, device.serial, exc)
            return CommandResult(
                serial=device.serial,
                command=command,
                fault=Fault(kind=FaultKind.TIMEOUT, detail=str(exc)),
            )
        except AdbError as exc:
            logger.error("shell command %r on %s failed: %s", command, device.serial, exc)
            return CommandResult(
                serial=device.serial,
                command=command,
                fault=Fault(kind=FaultKind.EXECUTION_FAILED, detail=str(exc)),
            )
        return CommandResult(serial=device.serial, command=command, output=output)

    async def output(self, device: DeviceHandle, command: str) -> str:
        """Run ``command`` and return its stdout, or ``""`` on any fault."""
        result = await self.run(device, command)
        return result.output

    async def run_streaming(
        self,
        device: DeviceHandle,
        command: str,
        sink: OutputSink,
        cancel: asyncio.Event | None = None,
    ) -> StreamOutcome:
        """Feed the output of a long-running command to ``sink``.

        Returns once the remote process closes its output or ``cancel`` is
        set. Cancelling only detaches locally; no kill is sent to the device.

        Args:
            device: Target device; must be ONLINE.
            command: Shell command line.
            sink: Called with each decoded output fragment.
            cancel: Set to stop consuming output.

        Returns:
            How the stream ended.
        """
        if cancel is None:
            cancel = asyncio.Event()
        fault = self._precheck(device)
        if fault is not None:
            logger.warning("skip streaming %r on %s: %s", command, device.serial, fault.detail)
            return StreamOutcome.FAILED

        if cancel.is_set():
            logger.info("not starting %r on %s: already cancelled", command, device.serial)
            return StreamOutcome.CANCELLED
        try:
            stream = await self._transport().open_shell(device.serial, command)
        except AdbError as exc:
            logger.error("failed to start %r on %s: %s", command, device.serial, exc)
            return StreamOutcome.FAILED

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while not cancel.is_set():
                try:
                    chunk = await asyncio.wait_for(stream.read(_CHUNK_SIZE), timeout=self._stream_poll_interval)
                except asyncio.TimeoutError:
                    continue
                if not chunk:
                    tail = decoder.decode(b"", final=True)
                    if tail:
                        self._deliver(sink, tail, device.serial)
                    logger.info("%r on %s exited", command, device.serial)
                    return StreamOutcome.EXITED
                if cancel.is_set():
                    break
                text = decoder.decode(chunk)
                if text:
                    self._deliver(sink, text, device.serial)
            logger.info("detached from %r on %s", command, device.serial)
            return StreamOutcome.CANCELLED
        except (AdbError, OSError) as exc:
            logger.error("stream of %r on %s broke: %s", command, device.serial, exc)
            return StreamOutcome.FAILED
        finally:
            await stream.close()

    async def get_property(self, device: DeviceHandle, key: str) -> str:
        """Read a system property, caching it on the device handle."""
        cached = device.properties.get(key)
        if cached is not None:
            return cached
        result = await self.run(device, f"getprop {key}")
        value = result.output.strip()
        if result.ok and value:
            device.properties[key] = value
        return value

    async def screen_size(self, device: DeviceHandle) -> str:
        """Return ``WIDTHxHEIGHT`` from ``wm size``; see ``parse_screen_size``."""
        raw = await self.output(device, "wm size")
        size = parse_screen_size(raw)
        if not size:
            logger.info("could not read screen size of %s", device.serial)
        return size

    async def app_version(self, device: DeviceHandle, package: str) -> str:
        """Return the ``versionName`` of an installed package, or ``""``."""
        raw = await self.output(device, f"pm dump {package} | grep 'versionName'")
        return parse_app_version(raw)

    async def press_key(self, device: DeviceHandle, keycode: int) -> CommandResult:
        return await self.run(device, f"input keyevent {keycode}")

    async def reboot(self, device: DeviceHandle) -> CommandResult:
        logger.info("rebooting %s", device.serial)
        return await self.run(device, "reboot")

    def _transport(self) -> Transport:
        transport = self._bridge.transport
        if transport is None:
            raise AdbError("bridge is not connected")
        return transport

    def _precheck(self, device: DeviceHandle) -> Fault | None:
        if not device.online:
            return Fault(kind=FaultKind.DEVICE_UNAVAILABLE, detail=f"device is {device.state.value}")
        if self._bridge.transport is None:
            return Fault(kind=FaultKind.DEVICE_UNAVAILABLE, detail="bridge is not connected")
        return None

    @staticmethod
    def _deliver(sink: OutputSink, text: str, serial: str) -> None:
        try:
            sink(text)
        except Exception:
            logger.exception("output sink failed for %s", serial)
