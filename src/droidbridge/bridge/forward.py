"""Local TCP port ⇄ device abstract socket forwarding."""

from __future__ import annotations

import logging

from droidbridge.bridge.interfaces import TransportSource
from droidbridge.shared.enums import FaultKind
from droidbridge.shared.exceptions import AdbError
from droidbridge.shared.models import DeviceHandle, Fault, ForwardBinding, ForwardResult

logger = logging.getLogger(__name__)


class PortForwardManager:
    """Create and remove ``tcp:<port>`` → ``localabstract:<name>`` forwards.

    No bookkeeping is done here: creating the same forward twice issues two
    adb calls. Failures are logged and returned, callers verify by
    connecting to the port.
    """

    def __init__(self, bridge: TransportSource) -> None:
        self._bridge = bridge

    async def create_forward(self, device: DeviceHandle, local_port: int, service_name: str) -> ForwardResult:
        binding = ForwardBinding(serial=device.serial, local_port=local_port, service_name=service_name)
        fault = self._precheck(device)
        if fault is None:
            logger.info("%s forwarding %s to local port %d", device.serial, service_name, local_port)
            fault = await self._call(binding, remove=False)
        if fault is not None:
            logger.error(
                "forward %s → %s on %s failed: %s",
                binding.local_spec,
                binding.remote_spec,
                device.serial,
                fault.detail,
            )
        return ForwardResult(binding=binding, fault=fault)

    async def remove_forward(self, device: DeviceHandle, local_port: int, service_name: str) -> ForwardResult:
        binding = ForwardBinding(serial=device.serial, local_port=local_port, service_name=service_name)
        fault = self._precheck(device)
        if fault is None:
            logger.info("%s removing forward of %s from local port %d", device.serial, service_name, local_port)
            fault = await self._call(binding, remove=True)
        if fault is not None:
            logger.error("removing forward %s on %s failed: %s", binding.local_spec, device.serial, fault.detail)
        return ForwardResult(binding=binding, fault=fault)

    async def _call(self, binding: ForwardBinding, *, remove: bool) -> Fault | None:
        try:
            transport = self._bridge.transport
            if transport is None:
                raise AdbError("bridge is not connected")
            if remove:
                await transport.remove_forward(binding.serial, binding.local_spec)
            else:
                await transport.forward(binding.serial, binding.local_spec, binding.remote_spec)
        except AdbError as exc:
            return Fault(kind=FaultKind.EXECUTION_FAILED, detail=str(exc))
        return None

    def _precheck(self, device: DeviceHandle) -> Fault | None:
        if not device.online:
            return Fault(kind=FaultKind.DEVICE_UNAVAILABLE, detail=f"device is {device.state.value}")
        if self._bridge.transport is None:
            return Fault(kind=FaultKind.DEVICE_UNAVAILABLE, detail="bridge is not connected")
        return None
