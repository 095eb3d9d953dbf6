"""espfleet — ESPHome device discovery and fleet operations.

Finds ESPHome devices on the local network via mDNS/DNS-SD, matches them to
local configuration files, records the mapping in ``devices.conf`` and drives
the ``esphome`` tool per device or in bulk.
"""

__version__ = "0.1.0"
