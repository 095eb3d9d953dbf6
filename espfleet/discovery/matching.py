"""Match discovered device names to local ESPHome configuration files.

A device named ``shelly-1-mini-gen3-abcd`` belongs to ``shelly_1_mini_gen3.yaml``
because the device name starts with the config's base name once underscores
are turned into hyphens (ESPHome hostnames cannot contain underscores).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from espfleet.config import MATCH_STRATEGIES
from espfleet.registry import UNMATCHED

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigIdentifier:
    """A configuration file, identified by its name."""

    filename: str
    stem: str

    @classmethod
    def from_filename(cls, filename: str, extension: str = ".yaml") -> ConfigIdentifier:
        stem = filename[: -len(extension)] if extension and filename.endswith(extension) else filename
        return cls(filename=filename, stem=stem)

    @property
    def pattern(self) -> str:
        """Hyphen-normalised stem used for prefix comparison."""
        return self.stem.replace("_", "-")

    def matches(self, device_name: str) -> bool:
        return device_name.startswith(self.pattern)


def list_config_identifiers(
    config_dir: str | Path,
    extension: str = ".yaml",
    secrets_file: str = "secrets.yaml",
    reserved_prefix: str = "base_",
) -> list[ConfigIdentifier]:
    """Return identifiers for every config file in *config_dir*, sorted by name.

    ``secrets.yaml`` and shared ``base_*`` fragments are not device configs
    and are excluded.
    """
    directory = Path(config_dir)
    identifiers = []
    for path in sorted(directory.glob(f"*{extension}")):
        name = path.name
        if name == secrets_file:
            continue
        if reserved_prefix and name.startswith(reserved_prefix):
            continue
        if not path.is_file():
            continue
        identifiers.append(ConfigIdentifier.from_filename(name, extension))
    identifiers.sort(key=lambda ident: ident.filename)
    logger.debug("Found %d config file(s) in %s", len(identifiers), directory)
    return identifiers


def match_device(
    device_name: str,
    identifiers: Iterable[ConfigIdentifier],
    strategy: str = "first",
) -> str:
    """Return the config filename *device_name* belongs to, or :data:`UNMATCHED`.

    Args:
        device_name: Advertised instance name.
        identifiers: Candidate configs; iterated in filename order.
        strategy:    ``"first"`` takes the lexically-first matching config.
                     ``"longest"`` takes the config with the longest pattern,
                     so ``shelly-1-mini`` wins over ``shelly-1``.
    """
    if strategy not in MATCH_STRATEGIES:
        raise ValueError(f"Unsupported match strategy: {strategy}. Use 'first' or 'longest'.")

    candidates = [i for i in sorted(identifiers, key=lambda i: i.filename) if i.matches(device_name)]
    if not candidates:
        return UNMATCHED
    if strategy == "longest":
        # max() keeps the first of equal-length patterns, i.e. the lexical one
        return max(candidates, key=lambda i: len(i.pattern)).filename
    return candidates[0].filename
