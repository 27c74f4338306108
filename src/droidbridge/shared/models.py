"""Frozen Pydantic domain models shared by all modules."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

from droidbridge.shared.enums import DeviceState, FaultKind
from droidbridge.shared.exceptions import CommandExecutionFault, DeviceUnavailableError, ForwardFault

ABSTRACT_NAMESPACE = "localabstract"


@dataclass(slots=True)
class DeviceHandle:
    """One entry of the live device snapshot.

    ``properties`` is a lazily filled cache of ``getprop`` values; the
    command channel populates it on first read.
    """

    serial: str
    state: DeviceState
    properties: dict[str, str] = field(default_factory=dict)

    @property
    def online(self) -> bool:
        return self.state == DeviceState.ONLINE


class Fault(BaseModel):
    """A contained failure from the command or forward layer."""

    model_config = {"frozen": True}

    kind: FaultKind
    detail: str = ""


class CommandResult(BaseModel):
    """Captured stdout of a completed shell invocation."""

    model_config = {"frozen": True}

    serial: str
    command: str
    output: str = ""
    fault: Fault | None = None

    @property
    def ok(self) -> bool:
        return self.fault is None

    def raise_for_fault(self) -> None:
        """Raise the matching exception if this result carries a fault."""
        if self.fault is None:
            return
        if self.fault.kind == FaultKind.DEVICE_UNAVAILABLE:
            raise DeviceUnavailableError(f"{self.serial}: {self.fault.detail}")
        raise CommandExecutionFault(f"{self.command!r} on {self.serial} failed: {self.fault.detail}")


class ForwardBinding(BaseModel):
    """Local TCP port bound to a device-side abstract socket."""

    model_config = {"frozen": True}

    serial: str
    local_port: int
    service_name: str
    namespace: str = ABSTRACT_NAMESPACE

    @property
    def local_spec(self) -> str:
        return f"tcp:{self.local_port}"

    @property
    def remote_spec(self) -> str:
        return f"{self.namespace}:{self.service_name}"


class ForwardResult(BaseModel):
    model_config = {"frozen": True}

    binding: ForwardBinding
    fault: Fault | None = None

    @property
    def ok(self) -> bool:
        return self.fault is None

    def raise_for_fault(self) -> None:
        if self.fault is None:
            return
        if self.fault.kind == FaultKind.DEVICE_UNAVAILABLE:
            raise DeviceUnavailableError(f"{self.binding.serial}: {self.fault.detail}")
        raise ForwardFault(
            f"forward {self.binding.local_spec} -> {self.binding.remote_spec} on {self.binding.serial}: "
            f"{self.fault.detail}"
        )


class ServiceArtifact(BaseModel):
    """A file deployed into the device staging directory."""

    model_config = {"frozen": True}

    name: str
    local_path: str
    device_path: str
    mode: str = "777"
    library: ServiceArtifact | None = None

    def files(self) -> list[ServiceArtifact]:
        """Return the binary followed by its shared library, if any."""
        if self.library is None:
            return [self]
        return [self, self.library]
