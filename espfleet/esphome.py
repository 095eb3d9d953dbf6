"""Async wrapper around the ``esphome`` command-line tool.

The tool's exit code is the only success signal; its own output goes
straight to the terminal except where noted.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import TextIO

from espfleet.errors import ExternalToolError

logger = logging.getLogger(__name__)


class EsphomeRunner:
    """Invoke ``esphome`` subcommands from the config directory.

    Args:
        config_dir: Directory holding the ESPHome YAML files (used as cwd).
        command:    The ``esphome`` executable.
    """

    def __init__(self, config_dir: str | Path = ".", command: str = "esphome") -> None:
        self.config_dir = Path(config_dir)
        self.command = command

    # ------------------------------------------------------------------ #
    # Single-device operations
    # ------------------------------------------------------------------ #

    async def run(self, config: str, ip: str | None = None) -> int:
        """Compile and upload (OTA). Without *ip*, esphome discovers the device itself."""
        args = ["run", "--no-logs", config]
        if ip:
            args.extend(["--device", ip])
        return await self._exec(args)

    async def logs(self, config: str, ip: str | None = None) -> int:
        args = ["logs", config]
        if ip:
            args.extend(["--device", ip])
        return await self._exec(args)

    async def validate(self, config: str, quiet: bool = False) -> int:
        """Check *config* with ``esphome config``; *quiet* discards its output."""
        return await self._exec(["config", config], quiet=quiet)

    async def compile(self, config: str) -> int:
        return await self._exec(["compile", config])

    # ------------------------------------------------------------------ #
    # Concurrent logs
    # ------------------------------------------------------------------ #

    async def stream_logs(self, config: str, ips: list[str], out: TextIO | None = None) -> list[int]:
        """Stream logs from every device in *ips* at once.

        Each output line is prefixed with ``[ip] ``. Returns the exit codes in
        *ips* order once all streams end; cancelling terminates all of them.
        """
        out = out or sys.stdout
        procs: list[asyncio.subprocess.Process] = []
        try:
            for ip in ips:
                proc = await self._spawn(
                    ["logs", config, "--device", ip],
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
                procs.append(proc)
            return list(await asyncio.gather(
                *(self._pump(proc, ip, out) for proc, ip in zip(procs, ips))
            ))
        finally:
            for proc in procs:
                if proc.returncode is None:
                    try:
                        proc.terminate()
                    except ProcessLookupError:
                        pass
            for proc in procs:
                await asyncio.shield(proc.wait())

    @staticmethod
    async def _pump(proc: asyncio.subprocess.Process, ip: str, out: TextIO) -> int:
        prefix = f"[{ip}] "
        assert proc.stdout is not None
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            out.write(prefix + line.decode("utf-8", errors="replace").rstrip("\r\n") + "\n")
            out.flush()
        return await proc.wait()

    # ------------------------------------------------------------------ #
    # Subprocess helper
    # ------------------------------------------------------------------ #

    async def _exec(self, args: list[str], quiet: bool = False) -> int:
        """Run ``esphome *args`` to completion and return its exit code."""
        stream = asyncio.subprocess.DEVNULL if quiet else None
        proc = await self._spawn(args, stdout=stream, stderr=stream)
        try:
            return await proc.wait()
        finally:
            if proc.returncode is None:
                try:
                    proc.terminate()
                except ProcessLookupError:
                    pass
                await asyncio.shield(proc.wait())

    async def _spawn(self, args: list[str], **kwargs) -> asyncio.subprocess.Process:
        cmd = [self.command, *args]
        logger.debug("Running %s (cwd=%s)", " ".join(cmd), self.config_dir)
        try:
            return await asyncio.create_subprocess_exec(*cmd, cwd=str(self.config_dir), **kwargs)
        except FileNotFoundError as exc:
            raise ExternalToolError(f"{self.command} not found", returncode=127) from exc
