"""pytest configuration for espfleet tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from espfleet.config import FleetConfig


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """A config directory with a few ESPHome YAML files."""
    for name in [
        "shelly_1_mini_gen3.yaml",
        "athom_plug.yaml",
        "secrets.yaml",
        "base_wifi.yaml",
    ]:
        (tmp_path / name).write_text("esphome:\n  name: test\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def fleet_config(config_dir: Path) -> FleetConfig:
    return FleetConfig.load(config_dir)
