"""Browse and resolve through the system ``dns-sd`` command.

``dns-sd`` never exits on its own, so every call runs it in the background
for a fixed window, captures its output to a temporary file and then
terminates it. :func:`scoped_process` guarantees the process is reaped and
the file removed whatever happens in between.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from contextlib import asynccontextmanager
from typing import IO, AsyncIterator

from espfleet.errors import ExternalToolError

logger = logging.getLogger(__name__)


class CapturedProcess:
    """A running background process whose output goes to a temp file."""

    def __init__(self, proc: asyncio.subprocess.Process, output: IO[bytes]) -> None:
        self.proc = proc
        self._output = output

    async def run_for(self, duration: float) -> None:
        """Let the process run for *duration* seconds (or until it exits)."""
        try:
            await asyncio.wait_for(self.proc.wait(), timeout=duration)
        except asyncio.TimeoutError:
            pass

    def read_output(self) -> str:
        self._output.flush()
        self._output.seek(0)
        return self._output.read().decode("utf-8", errors="replace")


@asynccontextmanager
async def scoped_process(*cmd: str) -> AsyncIterator[CapturedProcess]:
    """Spawn *cmd* with stdout/stderr captured; terminate and reap it on exit."""
    with tempfile.TemporaryFile() as output:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=output,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as exc:
            raise ExternalToolError(f"{cmd[0]} not found", returncode=127) from exc
        logger.debug("Started %s (pid %s)", cmd[0], proc.pid)
        try:
            yield CapturedProcess(proc, output)
        finally:
            await _terminate(proc)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
    # Shielded so a second Ctrl-C cannot leave a zombie behind
    await asyncio.shield(proc.wait())


async def capture(cmd: list[str], duration: float) -> str:
    """Run *cmd* for *duration* seconds and return everything it printed."""
    async with scoped_process(*cmd) as captured:
        await captured.run_for(duration)
        await _terminate(captured.proc)
        return captured.read_output()


# ──────────────────────────────────────────────────────────────────
# Output parsers
# ──────────────────────────────────────────────────────────────────

def parse_browse_output(output: str, service_type: str) -> list[str]:
    """Instance names from ``dns-sd -B`` output, unique and sorted.

    Example line::

        12:00:00.123  Add        3   4 local.   _esphomelib._tcp.   shelly-1-abcd
    """
    names = set()
    for line in output.splitlines():
        parts = line.split()
        if "Add" in parts and any(service_type in p for p in parts):
            names.add(parts[-1])
    return sorted(names)


def parse_resolve_output(output: str) -> str | None:
    """First address from ``dns-sd -G v4`` output, or ``None``.

    Example line::

        12:00:00.123  Add  2   4  shelly-1-abcd.local.   192.168.2.5   120
    """
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 6 and parts[1] == "Add":
            return parts[5]
    return None


# ──────────────────────────────────────────────────────────────────
# Backend
# ──────────────────────────────────────────────────────────────────

class DnsSdBackend:
    """Discovery backend driving the ``dns-sd`` command-line tool."""

    name = "dns-sd"

    def __init__(self, service_type: str = "_esphomelib._tcp", domain: str = "local", command: str = "dns-sd") -> None:
        self.service_type = service_type
        self.domain = domain
        self.command = command

    async def __aenter__(self) -> DnsSdBackend:
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def browse(self, timeout: float) -> list[str]:
        output = await capture([self.command, "-B", self.service_type, self.domain], timeout)
        return parse_browse_output(output, self.service_type)

    async def resolve(self, name: str, timeout: float) -> str | None:
        output = await capture([self.command, "-G", "v4", f"{name}.{self.domain}"], timeout)
        return parse_resolve_output(output)
