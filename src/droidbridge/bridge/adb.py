"""Transport implementation driving the ``adb`` executable."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from droidbridge.bridge.parsing import parse_device_list
from droidbridge.shared.enums import DeviceState
from droidbridge.shared.exceptions import AdbError, AdbTimeout, PushError

logger = logging.getLogger(__name__)

# Prefixes the adb client itself uses on stderr, as opposed to remote output
_CLIENT_ERROR_PREFIXES = ("error:", "adb: error:")


class AdbCliTransport:
    """Implements the ``Transport`` protocol over ``adb`` subprocess calls.

    Every call spawns a fresh client process talking to the adb server; only
    ``track-devices`` and streaming shells stay alive.
    """

    def __init__(self, adb_bin: str = "adb") -> None:
        self._adb_bin = adb_bin

    async def start_server(self, *, restart: bool = False) -> None:
        if restart:
            _, _, rc = await self._run("kill-server")
            logger.debug("adb kill-server exited with %d", rc)
        stdout, stderr, rc = await self._run("start-server")
        if rc != 0:
            raise AdbError(f"adb start-server failed (rc={rc}): {stderr.strip() or stdout.strip()}")
        logger.info("adb server started (%s)", self._adb_bin)

    async def track_devices(self) -> AsyncIterator[list[tuple[str, DeviceState]]]:
        proc = await self._spawn("track-devices")
        try:
            if proc.stdout is None:
                raise AdbError("adb track-devices has no output pipe")
            while True:
                try:
                    header = await proc.stdout.readexactly(4)
                except asyncio.IncompleteReadError:
                    return
                try:
                    length = int(header, 16)
                except ValueError as exc:
                    raise AdbError(f"malformed track-devices frame header: {header!r}") from exc
                try:
                    body = await proc.stdout.readexactly(length) if length else b""
                except asyncio.IncompleteReadError:
                    return
                yield parse_device_list(body.decode(errors="replace"))
        finally:
            await _terminate(proc)

    async def shell(self, serial: str, command: str, *, timeout: float | None = None) -> str:
        stdout, stderr, rc = await self._run("-s", serial, "shell", command, timeout=timeout)
        # Remote exit codes are passed through by adb; only client-side errors count.
        if rc != 0 and stderr.strip().startswith(_CLIENT_ERROR_PREFIXES):
            raise AdbError(f"adb shell on {serial} failed (rc={rc}): {stderr.strip()}")
        return stdout

    async def open_shell(self, serial: str, command: str) -> _ProcessStream:
        proc = await self._spawn("-s", serial, "shell", command, merge_stderr=True)
        return _ProcessStream(proc)

    async def forward(self, serial: str, local: str, remote: str) -> None:
        stdout, stderr, rc = await self._run("-s", serial, "forward", local, remote)
        if rc != 0:
            raise AdbError(f"adb forward failed: {stderr.strip() or stdout.strip()}")

    async def remove_forward(self, serial: str, local: str) -> None:
        stdout, stderr, rc = await self._run("-s", serial, "forward", "--remove", local)
        if rc != 0:
            raise AdbError(f"adb forward --remove failed: {stderr.strip() or stdout.strip()}")

    async def push(self, serial: str, local_path: str, device_path: str, *, timeout: float | None = None) -> None:
        try:
            stdout, stderr, rc = await self._run("-s", serial, "push", local_path, device_path, timeout=timeout)
        except AdbError as exc:
            raise PushError(f"adb push {local_path} to {serial} failed: {exc}") from exc
        if rc != 0:
            raise PushError(f"adb push {local_path} to {serial} failed: {stderr.strip() or stdout.strip()}")
        logger.info("pushed %s → %s on %s", local_path, device_path, serial)

    async def _spawn(self, *args: str, merge_stderr: bool = False) -> asyncio.subprocess.Process:
        cmd = [self._adb_bin, *args]
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise AdbError(f"adb binary not found: {self._adb_bin}") from exc

    async def _run(self, *args: str, timeout: float | None = None) -> tuple[str, str, int]:
        """Run an ADB command and return (stdout, stderr, returncode)."""
        cmd = [self._adb_bin, *args]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise AdbError(f"adb binary not found: {self._adb_bin}") from exc

        try:
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await _terminate(proc)
            raise AdbTimeout(f"ADB command timed out: {' '.join(cmd)}") from exc

        return (
            stdout_b.decode(errors="replace"),
            stderr_b.decode(errors="replace"),
            proc.returncode or 0,
        )


class _ProcessStream:
    """``ShellStream`` backed by a local adb client process."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc

    async def read(self, n: int = -1) -> bytes:
        if self._proc.stdout is None:
            raise AdbError("adb shell has no output pipe")
        return await self._proc.stdout.read(n)

    async def close(self) -> None:
        await _terminate(self._proc)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=5)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
