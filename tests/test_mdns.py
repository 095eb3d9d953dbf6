"""Tests for the zeroconf backend — the zeroconf classes are mocked."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from zeroconf import ServiceStateChange

from espfleet.discovery.mdns import ZeroconfBackend

TYPE = "_esphomelib._tcp.local."


def _mock_aiozc():
    aiozc = MagicMock()
    aiozc.zeroconf = MagicMock(name="zeroconf")
    aiozc.async_close = AsyncMock()
    return aiozc


def _browser_factory(names, browser):
    def _factory(zc, type_, handlers):
        for name in names:
            for handler in handlers:
                handler(
                    zeroconf=zc,
                    service_type=type_,
                    name=f"{name}.{type_}",
                    state_change=ServiceStateChange.Added,
                )
        handlers[0](
            zeroconf=zc,
            service_type=type_,
            name=f"gone.{type_}",
            state_change=ServiceStateChange.Removed,
        )
        return browser

    return _factory


class TestZeroconfBackend:
    @patch("espfleet.discovery.mdns.AsyncZeroconf")
    async def test_context_closes_zeroconf(self, mock_aiozc_cls):
        aiozc = _mock_aiozc()
        mock_aiozc_cls.return_value = aiozc
        async with ZeroconfBackend() as backend:
            assert backend.zeroconf is aiozc.zeroconf
        aiozc.async_close.assert_awaited_once()

    def test_outside_context_raises(self):
        with pytest.raises(RuntimeError, match="outside"):
            ZeroconfBackend().zeroconf

    @patch("espfleet.discovery.mdns.AsyncServiceBrowser")
    @patch("espfleet.discovery.mdns.AsyncZeroconf")
    async def test_browse_collects_added_names(self, mock_aiozc_cls, mock_browser_cls):
        mock_aiozc_cls.return_value = _mock_aiozc()
        browser = MagicMock()
        browser.async_cancel = AsyncMock()
        mock_browser_cls.side_effect = _browser_factory(["shelly-b", "shelly-a", "shelly-a"], browser)

        async with ZeroconfBackend() as backend:
            names = await backend.browse(0)

        assert names == ["shelly-a", "shelly-b"]
        assert mock_browser_cls.call_args[0][1] == TYPE
        browser.async_cancel.assert_awaited_once()

    @patch("espfleet.discovery.mdns.AsyncServiceInfo")
    @patch("espfleet.discovery.mdns.AsyncZeroconf")
    async def test_resolve_first_ipv4(self, mock_aiozc_cls, mock_info_cls):
        mock_aiozc_cls.return_value = _mock_aiozc()
        info = MagicMock()
        info.async_request = AsyncMock(return_value=True)
        info.parsed_addresses.return_value = ["192.168.2.5", "192.168.2.6"]
        mock_info_cls.return_value = info

        async with ZeroconfBackend() as backend:
            ip = await backend.resolve("shelly-a", 2.0)

        assert ip == "192.168.2.5"
        mock_info_cls.assert_called_once_with(TYPE, f"shelly-a.{TYPE}")
        assert info.async_request.call_args[0][1] == 2000

    @patch("espfleet.discovery.mdns.AsyncServiceInfo")
    @patch("espfleet.discovery.mdns.AsyncZeroconf")
    async def test_resolve_no_answer(self, mock_aiozc_cls, mock_info_cls):
        mock_aiozc_cls.return_value = _mock_aiozc()
        info = MagicMock()
        info.async_request = AsyncMock(return_value=False)
        mock_info_cls.return_value = info

        async with ZeroconfBackend() as backend:
            assert await backend.resolve("ghost", 2.0) is None
