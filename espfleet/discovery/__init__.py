"""espfleet.discovery — find ESPHome devices and match them to configs.

Exports:
    ConfigIdentifier          — a local config file and its match pattern
    list_config_identifiers   — configs in a directory, minus secrets/base files
    match_device              — prefix rule mapping a device name to a config
    UNMATCHED                 — grouping bucket for devices with no config
    DeviceScanner             — browse + resolve + match
    DiscoveredDevice          — a resolved device name and address
    create_backend            — pick the dns-sd or zeroconf backend
"""

from __future__ import annotations

from espfleet.discovery.matching import (
    UNMATCHED,
    ConfigIdentifier,
    list_config_identifiers,
    match_device,
)
from espfleet.discovery.scanner import DeviceScanner, DiscoveredDevice, create_backend

__all__ = [
    "UNMATCHED",
    "ConfigIdentifier",
    "DeviceScanner",
    "DiscoveredDevice",
    "create_backend",
    "list_config_identifiers",
    "match_device",
]
