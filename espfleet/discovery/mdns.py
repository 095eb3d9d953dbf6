"""Browse and resolve with the python-zeroconf library.

Used where the ``dns-sd`` command is not available (most Linux hosts).
"""

from __future__ import annotations

import asyncio
import logging

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

logger = logging.getLogger(__name__)


class ZeroconfBackend:
    """Discovery backend on top of :class:`zeroconf.asyncio.AsyncZeroconf`.

    Must be used as an async context manager; the socket set is opened on
    entry and closed on exit.
    """

    name = "zeroconf"

    def __init__(self, service_type: str = "_esphomelib._tcp", domain: str = "local") -> None:
        self.service_type = service_type
        self.domain = domain
        self._aiozc: AsyncZeroconf | None = None

    @property
    def browse_type(self) -> str:
        return f"{self.service_type}.{self.domain}."

    async def __aenter__(self) -> ZeroconfBackend:
        self._aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._aiozc is not None:
            await self._aiozc.async_close()
            self._aiozc = None

    @property
    def zeroconf(self) -> Zeroconf:
        if self._aiozc is None:
            raise RuntimeError("ZeroconfBackend used outside 'async with'")
        return self._aiozc.zeroconf

    async def browse(self, timeout: float) -> list[str]:
        found: set[str] = set()
        suffix = f".{self.browse_type}"

        def _on_change(
            zeroconf: Zeroconf,
            service_type: str,
            name: str,
            state_change: ServiceStateChange,
        ) -> None:
            if state_change is ServiceStateChange.Added:
                found.add(name.replace(suffix, ""))

        browser = AsyncServiceBrowser(self.zeroconf, self.browse_type, handlers=[_on_change])
        try:
            await asyncio.sleep(timeout)
        finally:
            await browser.async_cancel()
        return sorted(found)

    async def resolve(self, name: str, timeout: float) -> str | None:
        info = AsyncServiceInfo(self.browse_type, f"{name}.{self.browse_type}")
        if not await info.async_request(self.zeroconf, timeout * 1000):
            logger.debug("No answer for %s.%s within %.1fs", name, self.domain, timeout)
            return None
        addresses = info.parsed_addresses(IPVersion.V4Only)
        return addresses[0] if addresses else None
