"""Selection of the capture/input binaries matching a device."""

from __future__ import annotations

import os

from droidbridge.shared.enums import ServiceKind
from droidbridge.shared.exceptions import BootstrapError
from droidbridge.shared.models import ServiceArtifact

# Devices below Jelly Bean cannot run position-independent executables.
PIE_MIN_API_LEVEL = 16

CAPTURE_LIBRARY = "minicap.so"


def parse_api_level(raw: str) -> int:
    """Parse ``ro.build.version.sdk``.

    Raises:
        BootstrapError: If the value is not an integer.
    """
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise BootstrapError(f"unreadable API level: {raw!r}") from exc


def select_variant(kind: ServiceKind, api_level: int) -> str:
    """Return the binary name for ``kind`` on a device at ``api_level``."""
    if api_level < PIE_MIN_API_LEVEL:
        return f"{kind.value}-nopie"
    return kind.value


class ArtifactCatalog:
    """Maps a device's ABI and API level onto local and device-side paths.

    Local layout::

        <root>/<abi>/<binary>
        <root>/minicap-shared/aosp/libs/android-<api>/<abi>/minicap.so
    """

    def __init__(self, root: str, *, staging_dir: str = "/data/local/tmp") -> None:
        self._root = root
        self._staging_dir = staging_dir.rstrip("/")

    @property
    def staging_dir(self) -> str:
        return self._staging_dir

    def device_path(self, name: str) -> str:
        return f"{self._staging_dir}/{name}"

    def resolve(self, kind: ServiceKind, abi: str, api_level: int) -> ServiceArtifact:
        if not abi:
            raise BootstrapError("device did not report a CPU ABI")
        name = select_variant(kind, api_level)
        library: ServiceArtifact | None = None
        if kind == ServiceKind.CAPTURE:
            library = ServiceArtifact(
                name=CAPTURE_LIBRARY,
                local_path=os.path.join(
                    self._root, "minicap-shared", "aosp", "libs", f"android-{api_level}", abi, CAPTURE_LIBRARY
                ),
                device_path=self.device_path(CAPTURE_LIBRARY),
            )
        return ServiceArtifact(
            name=name,
            local_path=os.path.join(self._root, abi, name),
            device_path=self.device_path(name),
            library=library,
        )
