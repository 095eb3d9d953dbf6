"""Device scanner — browse, resolve and match ESPHome devices.

Runs one browse window, then resolves every discovered name (a few at a
time) and groups it under the matching config file. Devices that do not
resolve in time are skipped; devices that match no config are grouped under
:data:`~espfleet.discovery.matching.UNMATCHED` rather than dropped.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol

from espfleet.config import BACKENDS, FleetConfig
from espfleet.discovery.dnssd import DnsSdBackend
from espfleet.discovery.matching import ConfigIdentifier, match_device
from espfleet.discovery.mdns import ZeroconfBackend
from espfleet.registry import RegistryEntry

logger = logging.getLogger(__name__)


@dataclass
class DiscoveredDevice:
    name: str
    ip: str


class DiscoveryBackend(Protocol):
    name: str

    async def __aenter__(self) -> DiscoveryBackend: ...

    async def __aexit__(self, *exc_info) -> None: ...

    async def browse(self, timeout: float) -> list[str]: ...

    async def resolve(self, name: str, timeout: float) -> str | None: ...


def create_backend(config: FleetConfig, backend: str | None = None) -> DiscoveryBackend:
    """Build the discovery backend named by *backend* (or ``config.backend``).

    ``auto`` prefers the ``dns-sd`` command when installed.
    """
    choice = backend or config.backend
    if choice not in BACKENDS:
        raise ValueError(f"Unsupported backend: {choice}. Use one of {', '.join(BACKENDS)}.")
    if choice == "auto":
        choice = "dns-sd" if shutil.which("dns-sd") else "zeroconf"
    logger.debug("Using %s discovery backend", choice)
    if choice == "dns-sd":
        return DnsSdBackend(config.service_type, config.domain)
    return ZeroconfBackend(config.service_type, config.domain)


class DeviceScanner:
    """Turn a network scan into :class:`RegistryEntry` triples.

    Args:
        backend:             Browse/resolve implementation.
        identifiers:         Known config files to match against.
        resolve_timeout:     Seconds allowed per address lookup.
        resolve_concurrency: Lookups in flight at once (1 = serial).
        match_strategy:      See :func:`~espfleet.discovery.matching.match_device`.
    """

    def __init__(
        self,
        backend: DiscoveryBackend,
        identifiers: list[ConfigIdentifier],
        resolve_timeout: float = 2.0,
        resolve_concurrency: int = 4,
        match_strategy: str = "first",
    ) -> None:
        self.backend = backend
        self.identifiers = identifiers
        self.resolve_timeout = resolve_timeout
        self.resolve_concurrency = max(1, resolve_concurrency)
        self.match_strategy = match_strategy

    @classmethod
    def from_config(
        cls,
        config: FleetConfig,
        identifiers: list[ConfigIdentifier],
        backend: str | None = None,
    ) -> DeviceScanner:
        return cls(
            create_backend(config, backend),
            identifiers,
            resolve_timeout=config.resolve_timeout,
            resolve_concurrency=config.resolve_concurrency,
            match_strategy=config.match_strategy,
        )

    # ------------------------------------------------------------------ #
    # Public API                                                           #
    # ------------------------------------------------------------------ #

    async def iter_entries(
        self,
        timeout: float = 5.0,
        on_browse: Callable[[list[str]], None] | None = None,
    ) -> AsyncIterator[RegistryEntry]:
        """Browse for *timeout* seconds and yield an entry per resolved device.

        Entries are yielded as lookups finish, not in discovery order.
        *on_browse* is called with the discovered names before resolving.
        """
        async with self.backend:
            names = await self.backend.browse(timeout)
            logger.info("browse complete — %d device name(s)", len(names))
            if on_browse is not None:
                on_browse(names)
            if not names:
                return

            semaphore = asyncio.Semaphore(self.resolve_concurrency)

            async def resolve_one(name: str) -> DiscoveredDevice | None:
                async with semaphore:
                    ip = await self._resolve(name)
                return DiscoveredDevice(name=name, ip=ip) if ip else None

            tasks = [asyncio.ensure_future(resolve_one(name)) for name in names]
            try:
                for next_done in asyncio.as_completed(tasks):
                    device = await next_done
                    if device is None:
                        continue
                    yield self.match(device)
            finally:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

    async def scan(self, timeout: float = 5.0) -> list[RegistryEntry]:
        return [entry async for entry in self.iter_entries(timeout)]

    def match(self, device: DiscoveredDevice) -> RegistryEntry:
        config = match_device(device.name, self.identifiers, self.match_strategy)
        logger.debug("%s (%s) -> %s", device.name, device.ip, config)
        return RegistryEntry(config=config, ip=device.ip, device=device.name)

    # ------------------------------------------------------------------ #
    # Internal                                                             #
    # ------------------------------------------------------------------ #

    async def _resolve(self, name: str) -> str | None:
        try:
            ip = await asyncio.wait_for(
                self.backend.resolve(name, self.resolve_timeout),
                # backends enforce the window themselves; this is the hard stop
                timeout=self.resolve_timeout + 1.0,
            )
        except asyncio.TimeoutError:
            ip = None
        if not ip:
            logger.debug("Could not resolve %s — skipping", name)
        return ip
