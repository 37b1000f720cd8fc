"""Invocation of the external ``clamscan`` engine.

The engine is run once per upload as a child process. Its exit status and output
are collected into a :class:`ScanInvocation`; nothing here decides what a status
means, see :mod:`scanners.av.outcome` for that.
"""
from __future__ import annotations

import asyncio
import logging
import sys
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

SCANNER_PATHS = {
    "win32": r"C:\Program Files\ClamAV\clamscan.exe",
    "default": "clamscan",
}

# Together these make a clean file produce no stdout at all.
SCAN_FLAGS = ("--no-summary", "--infected", "--suppress-ok-results")


class UnsafePathError(ValueError):
    pass


@dataclass(frozen=True)
class ScanInvocation:
    command_line: str
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None


class Scanner(Protocol):
    async def invoke(self, path: str) -> ScanInvocation: ...


def resolve_scanner_path(platform: str | None = None, override: str | None = None) -> str:
    if override:
        return override
    platform = sys.platform if platform is None else platform
    return SCANNER_PATHS.get(platform, SCANNER_PATHS["default"])


def _check_path(path: str) -> str:
    path = str(path)
    if '"' in path:
        raise UnsafePathError(f"Refusing to scan path containing a double quote: {path!r}")
    return path


def build_command(path: str, executable: str | None = None) -> list[str]:
    return [executable or resolve_scanner_path(), *SCAN_FLAGS, _check_path(path)]


def build_command_line(path: str, executable: str | None = None) -> str:
    """Render the scan command the way it would be typed in a shell."""
    executable = executable or resolve_scanner_path()
    if " " in executable:
        executable = f'"{executable}"'
    return f'{executable} {" ".join(SCAN_FLAGS)} "{_check_path(path)}"'


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", "replace") if data else ""


async def _kill(proc: asyncio.subprocess.Process) -> None:
    # The child may already have exited on its own.
    with suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


class ClamScanner:
    """Runs ``clamscan`` against a single file per :meth:`invoke` call.

    ``timeout`` bounds how long one engine process may run; on expiry the child is
    killed and reaped. ``max_concurrency`` caps the number of engine processes
    alive at once across all requests sharing this instance.
    """

    def __init__(
        self,
        executable: str | None = None,
        timeout: float | None = None,
        max_concurrency: int | None = None,
    ):
        self.executable = executable or resolve_scanner_path()
        self.timeout = timeout
        self._slots = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def invoke(self, path: str) -> ScanInvocation:
        if self._slots is None:
            return await self._run(path)
        async with self._slots:
            return await self._run(path)

    async def _run(self, path: str) -> ScanInvocation:
        try:
            argv = build_command(path, self.executable)
            command_line = build_command_line(path, self.executable)
        except UnsafePathError as exc:
            logger.error("%s", exc)
            return ScanInvocation(command_line="", exit_code=None, error=str(exc))

        logger.debug("Running %s", command_line)
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            logger.error("Could not start scanner %s: %s", self.executable, exc)
            return ScanInvocation(
                command_line=command_line, exit_code=None, error=f"Command failed: {exc}"
            )

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            logger.warning("Killed scanner after %ss: %s", self.timeout, command_line)
            return ScanInvocation(
                command_line=command_line,
                exit_code=None,
                error=f"Scan timed out after {self.timeout:g} seconds",
            )
        except asyncio.CancelledError:
            await asyncio.shield(_kill(proc))
            raise

        logger.debug(
            "Scanner exited with %s in %.2fs", proc.returncode, time.monotonic() - started
        )
        error = None
        if proc.returncode not in (0, 1):
            error = f"Command failed with exit code {proc.returncode}: {command_line}"
        return ScanInvocation(
            command_line=command_line,
            exit_code=proc.returncode,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            error=error,
        )
