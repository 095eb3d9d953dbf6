"""Configuration for espfleet."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from espfleet.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "espfleet.json"

BACKENDS = ("auto", "dns-sd", "zeroconf")
MATCH_STRATEGIES = ("first", "longest")


def _default_config_dir() -> str:
    return os.environ.get("ESPFLEET_CONFIG_DIR", ".")


@dataclass
class FleetConfig:
    """Fleet configuration — loaded from espfleet.json in the config directory."""

    # Directory holding the ESPHome *.yaml files and devices.conf
    config_dir: str = "."
    registry_file: str = "devices.conf"

    # Discovery
    service_type: str = "_esphomelib._tcp"
    domain: str = "local"
    browse_timeout: float = 5.0
    resolve_timeout: float = 2.0
    resolve_concurrency: int = 4
    backend: str = "auto"  # auto | dns-sd | zeroconf
    match_strategy: str = "first"  # first | longest

    # Config file listing
    config_extension: str = ".yaml"
    secrets_file: str = "secrets.yaml"
    reserved_prefix: str = "base_"

    # External tool
    esphome_command: str = "esphome"
    build_dir: str = ".esphome"

    @classmethod
    def load(cls, config_dir: str | Path | None = None) -> FleetConfig:
        """Load ``espfleet.json`` from *config_dir*, falling back to defaults.

        *config_dir* defaults to ``$ESPFLEET_CONFIG_DIR`` or the current
        directory. Unknown keys in the file are ignored; unsupported
        ``backend`` or ``match_strategy`` values raise :class:`ConfigError`.
        """
        directory = Path(config_dir) if config_dir is not None else Path(_default_config_dir())
        path = directory / CONFIG_FILENAME
        data: dict = {}
        if path.exists():
            try:
                with open(path) as f:
                    data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
            logger.debug("Loaded config from %s", path)
        known = {k for k in cls.__dataclass_fields__}
        filtered = {k: v for k, v in data.items() if k in known}
        ignored = sorted(set(data) - known)
        if ignored:
            logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(ignored))
        filtered["config_dir"] = str(directory)
        config = cls(**filtered)
        config.validate()
        return config

    def validate(self) -> None:
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"Unsupported backend '{self.backend}' in {CONFIG_FILENAME}. "
                f"Use one of: {', '.join(BACKENDS)}"
            )
        if self.match_strategy not in MATCH_STRATEGIES:
            raise ConfigError(
                f"Unsupported match_strategy '{self.match_strategy}' in {CONFIG_FILENAME}. "
                f"Use one of: {', '.join(MATCH_STRATEGIES)}"
            )

    @property
    def config_path(self) -> Path:
        return Path(self.config_dir)

    @property
    def registry_path(self) -> Path:
        """Registry file path, relative to config_dir unless absolute."""
        return self.config_path / self.registry_file
