"""Hierarchical exception types for droidbridge."""

from __future__ import annotations


class DroidBridgeError(Exception):
    """Base exception for all droidbridge errors."""


# ── Setup ───────────────────────────────────────────────────────


class ConfigurationError(DroidBridgeError):
    """Required environment or path is missing."""


# ── Transport ───────────────────────────────────────────────────


class AdbError(DroidBridgeError):
    """ADB invocation failed."""


class AdbTimeout(AdbError):
    """ADB invocation exceeded its deadline."""


class DeviceUnavailableError(DroidBridgeError):
    """Device is unknown or not in the ONLINE state."""


class CommandExecutionFault(DroidBridgeError):
    """Shell command on a device failed."""


class ForwardFault(DroidBridgeError):
    """Port forward could not be created or removed."""


class PushError(AdbError):
    """Artifact transfer to a device failed."""


# ── Bootstrap ───────────────────────────────────────────────────


class BootstrapError(DroidBridgeError):
    """Service bootstrap could not complete."""


class ConvergenceStall(BootstrapError):
    """Pushed artifacts never showed up in the staging directory."""
