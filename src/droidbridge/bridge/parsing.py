"""Parsers for adb and shell command output.

Different vendors format the same command differently, so every parser here
is forgiving: malformed input yields an empty or sentinel value, never an
exception.
"""

from __future__ import annotations

from droidbridge.shared.enums import DeviceState

UNKNOWN_SIZE = "unknown"

# Some ROMs append the override size after the physical one in `wm size`.
_OVERRIDE_MARKER = "Override size"
_MAX_SIZE_LENGTH = 20
_MAX_VERSION_LENGTH = 50


def parse_device_list(body: str) -> list[tuple[str, DeviceState]]:
    """Parse ``serial<TAB>state`` lines from ``adb devices``/``track-devices``.

    Args:
        body: Raw device list text.

    Returns:
        (serial, state) pairs in the order adb reported them.
    """
    entries: list[tuple[str, DeviceState]] = []
    for line in body.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        entries.append((parts[0], DeviceState.from_adb(parts[1])))
    return entries


def parse_screen_size(raw: str) -> str:
    """Extract ``WIDTHxHEIGHT`` from ``wm size`` output.

    Returns:
        The size string, ``""`` when the output has no ``:`` separator, or
        ``"unknown"`` when the extracted value is implausibly long.
    """
    parts = raw.split(":")
    if len(parts) < 2:
        return ""
    size = parts[1].strip().replace("\r", "").replace("\n", "").replace(_OVERRIDE_MARKER, "").strip()
    if len(size) > _MAX_SIZE_LENGTH:
        return UNKNOWN_SIZE
    return size


def parse_app_version(raw: str) -> str:
    """Extract the value from a ``versionName=...`` line of ``pm dump``.

    Vendor ROMs sometimes append diagnostic text after the version token; a
    value longer than 50 characters is cut at its first space. A long value
    without any space is returned whole rather than dropped.
    """
    marker = raw.find("=")
    if marker < 0:
        return ""
    version = raw[marker + 1 :].rstrip("\r\n")
    if len(version) > _MAX_VERSION_LENGTH:
        space = version.find(" ")
        if space >= 0:
            version = version[:space]
    return version.replace("\r", "").replace("\n", "").strip()
