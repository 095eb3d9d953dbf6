"""Device and bulk operations over the registry file.

Every operation resolves targets through ``devices.conf`` and hands the
actual work to :class:`~espfleet.esphome.EsphomeRunner`. Status lines go to
*err*; registry text and listings go to *out*.
"""

from __future__ import annotations

import logging
import shutil
import sys
from pathlib import Path
from typing import TextIO

from espfleet.config import FleetConfig
from espfleet.discovery.matching import list_config_identifiers
from espfleet.discovery.scanner import DeviceScanner
from espfleet.errors import (
    ExternalToolError,
    LookupMissError,
    RegistryMissingError,
    UsageError,
)
from espfleet.esphome import EsphomeRunner
from espfleet.registry import Registry, file_header, load_registry, render_registry

logger = logging.getLogger(__name__)


class FleetOperations:
    """Operations an operator runs against the device fleet.

    Args:
        config: Fleet configuration.
        runner: ``esphome`` wrapper; built from *config* when omitted.
        out:    Stream for registry text and listings.
        err:    Stream for progress and status messages.
    """

    def __init__(
        self,
        config: FleetConfig,
        runner: EsphomeRunner | None = None,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or EsphomeRunner(config.config_dir, config.esphome_command)
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def _say(self, msg: str = "") -> None:
        print(msg, file=self.out, flush=True)

    def _status(self, msg: str = "") -> None:
        print(msg, file=self.err, flush=True)

    # ------------------------------------------------------------------ #
    # Registry access
    # ------------------------------------------------------------------ #

    def load(self) -> Registry:
        path = self.config.registry_path
        if not path.exists():
            raise RegistryMissingError(
                f"{self.config.registry_file} not found.\n"
                "Run 'espfleet discover --save' to generate it."
            )
        return load_registry(path)

    def _require_config_file(self, config: str) -> None:
        if not (self.config.config_path / config).is_file():
            raise LookupMissError(f"Config file '{config}' not found")

    def config_for(self, ip: str | None, command: str) -> str:
        """Return the config file registered for *ip*."""
        if not ip:
            raise UsageError(f"IP is required. Usage: espfleet {command} <ip>")
        config = self.load().lookup_config(ip)
        if not config:
            raise LookupMissError(f"IP '{ip}' not found in {self.config.registry_file}")
        self._require_config_file(config)
        return config

    @staticmethod
    def _check(rc: int, what: str) -> None:
        if rc != 0:
            raise ExternalToolError(f"esphome failed for {what} (exit {rc})", returncode=rc)

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #

    async def discover(
        self,
        timeout: float | None = None,
        backend: str | None = None,
        save: bool = False,
    ) -> str:
        """Scan the network and return the rendered registry body.

        Without *save* the body is written to *out*. With *save* it is
        written to the registry file, or next to it as ``.new`` when one
        already exists, and the saved file is echoed to *out*.
        """
        timeout = self.config.browse_timeout if timeout is None else timeout
        identifiers = list_config_identifiers(
            self.config.config_dir,
            extension=self.config.config_extension,
            secrets_file=self.config.secrets_file,
            reserved_prefix=self.config.reserved_prefix,
        )
        scanner = DeviceScanner.from_config(self.config, identifiers, backend)

        def _on_browse(names: list[str]) -> None:
            if names:
                self._status("Found devices, resolving addresses...")
            else:
                self._status("No ESPHome devices found on the network.")

        self._status(f"Discovering ESPHome devices (waiting {timeout:g}s)...")
        entries = [entry async for entry in scanner.iter_entries(timeout, on_browse=_on_browse)]
        body = render_registry(entries)

        if save:
            self._save(body)
        elif body:
            self.out.write(body)
            self.out.flush()
        return body

    def _save(self, body: str) -> Path:
        path = self.config.registry_path
        existed = path.exists()
        target = path.with_name(path.name + ".new") if existed else path
        target.write_text(file_header() + body, encoding="utf-8")
        self._status()
        if existed:
            self._status(f"New config saved to {target.name}")
            self._status(f"Review and run: mv {target.name} {path.name}")
        else:
            self._status(f"Created {path.name}")
        self.out.write(target.read_text(encoding="utf-8"))
        self.out.flush()
        return target

    # ------------------------------------------------------------------ #
    # Single device
    # ------------------------------------------------------------------ #

    async def run(self, ip: str | None) -> None:
        """Compile and upload over the air to *ip*."""
        config = self.config_for(ip, "run")
        self._status(f"Running: {config} -> {ip}")
        self._check(await self.runner.run(config, ip), f"{config} -> {ip}")

    async def logs(self, ip: str | None) -> None:
        config = self.config_for(ip, "logs")
        self._check(await self.runner.logs(config, ip), f"{config} -> {ip}")

    async def validate(self, ip: str | None) -> None:
        config = self.config_for(ip, "validate")
        self._check(await self.runner.validate(config), config)

    async def compile(self, ip: str | None) -> None:
        config = self.config_for(ip, "compile")
        self._check(await self.runner.compile(config), config)

    # ------------------------------------------------------------------ #
    # Bulk
    # ------------------------------------------------------------------ #

    def list_devices(self) -> None:
        registry = self.load()
        self._say("Configured devices:")
        for section in registry.sections:
            self._say()
            self._say(section.name)
            for line in section.lines:
                self._say(f"  {line.raw}")
        self._say()

    async def run_all(self) -> None:
        """Run every registered device in file order; stop at the first failure."""
        for config, ip in self.load().targets():
            self._status(f"=== {config} -> {ip} ===")
            self._check(await self.runner.run(config, ip), f"{config} -> {ip}")
            self._status()

    async def run_config(self, config: str | None) -> None:
        """Run every device registered for *config*.

        With no registered devices, esphome is left to find the device itself.
        """
        if not config:
            raise UsageError("CONFIG is required. Usage: espfleet run-config <config.yaml>")
        self._require_config_file(config)
        ips = self.load().lookup_ips(config)
        if not ips:
            self._status(f"No devices found for '{config}' in {self.config.registry_file}")
            self._status("Running with mDNS discovery...")
            self._check(await self.runner.run(config), config)
            return

        self._status(f"Found devices for {config}: {' '.join(ips)}")
        for ip in ips:
            self._status()
            self._status(f"=== {config} -> {ip} ===")
            self._check(await self.runner.run(config, ip), f"{config} -> {ip}")
        self._status()
        self._status("All devices updated!")

    async def logs_config(self, config: str | None) -> None:
        """Stream logs from every device registered for *config* at once."""
        if not config:
            raise UsageError("CONFIG is required. Usage: espfleet logs-config <config.yaml>")
        self._require_config_file(config)
        ips = self.load().lookup_ips(config)
        if not ips:
            self._status(f"No devices found for '{config}' in {self.config.registry_file}")
            self._check(await self.runner.logs(config), config)
            return

        self._status(f"Streaming logs from: {' '.join(ips)}")
        self._status("(Press Ctrl+C to stop)")
        rcs = await self.runner.stream_logs(config, ips, out=self.out)
        failed = [(ip, rc) for ip, rc in zip(ips, rcs) if rc != 0]
        if failed:
            ip, rc = failed[0]
            raise ExternalToolError(
                f"esphome logs failed for {', '.join(ip for ip, _ in failed)} (exit {rc})",
                returncode=rc,
            )

    async def validate_all(self) -> list[str]:
        """Validate every registered config; report each and keep going.

        Returns the configs that failed.
        """
        failed = []
        for config in self.load().config_names():
            self._say(f"=== Validating {config} ===")
            if await self.runner.validate(config, quiet=True) == 0:
                self._say("OK")
            else:
                self._say("FAILED")
                failed.append(config)
        return failed

    def clean(self) -> None:
        build_dir = self.config.config_path / self.config.build_dir
        logger.debug("Removing %s", build_dir)
        shutil.rmtree(build_dir, ignore_errors=True)
