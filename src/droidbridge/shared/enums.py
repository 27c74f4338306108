"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class DeviceState(str, Enum):
    """Connection states reported by the adb server."""

    OFFLINE = "offline"
    ONLINE = "online"
    UNAUTHORIZED = "unauthorized"
    BOOTLOADER = "bootloader"

    @classmethod
    def from_adb(cls, raw: str) -> DeviceState:
        """Map an ``adb devices`` state token onto a DeviceState."""
        token = raw.strip().lower()
        if token == "device":
            return cls.ONLINE
        if token == "unauthorized":
            return cls.UNAUTHORIZED
        if token == "bootloader":
            return cls.BOOTLOADER
        return cls.OFFLINE


@unique
class ServiceKind(str, Enum):
    """Auxiliary remote services deployed onto a device."""

    CAPTURE = "minicap"
    INPUT = "minitouch"


@unique
class BootstrapState(str, Enum):
    """Steps of the service bootstrap state machine."""

    SELECT = "select"
    CLEAN = "clean"
    PUSH = "push"
    AWAIT_PRESENCE = "await_presence"
    AUTHORIZE = "authorize"
    LAUNCH = "launch"
    STREAMING = "streaming"
    FAILED = "failed"


@unique
class SessionState(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


@unique
class EndReason(str, Enum):
    """Why a service session stopped streaming."""

    DETACHED = "detached"
    EXITED = "exited"
    FAILED = "failed"


@unique
class StreamOutcome(str, Enum):
    """How a streaming shell invocation ended."""

    EXITED = "exited"
    CANCELLED = "cancelled"
    FAILED = "failed"


@unique
class FaultKind(str, Enum):
    """Failure categories returned by the command and forward layers."""

    DEVICE_UNAVAILABLE = "device_unavailable"
    EXECUTION_FAILED = "execution_failed"
    TIMEOUT = "timeout"
