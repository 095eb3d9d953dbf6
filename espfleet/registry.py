"""Device registry — the ``devices.conf`` file.

Format::

    # ESPHome Devices Configuration
    # Generated on Fri Oct 16 12:00:00 UTC 2026

    [shelly_1_mini_gen3.yaml]
    192.168.2.5  # shelly-1-mini-gen3-abcd
    192.168.2.12  # shelly-1-mini-gen3-ef01

    # Unmatched devices (add manually to appropriate section):
    # 192.168.2.40  # mystery-device

Section headers name a config file; each address line belongs to the most
recent header. Anything after the address is ignored by lookups. The file is
meant to be hand-edited after discovery, so no uniqueness is enforced.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from functools import reduce
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

# Grouping bucket for devices that match no configuration.
UNMATCHED = "_UNMATCHED_"

FILE_TITLE = "# ESPHome Devices Configuration"
UNMATCHED_HEADER = "# Unmatched devices (add manually to appropriate section):"

_SECTION_RE = re.compile(r"^\[(.*)\]$")
_ADDRESS_RE = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+")


@dataclass(frozen=True)
class RegistryEntry:
    """One discovered device grouped under a config (or :data:`UNMATCHED`)."""

    config: str
    ip: str
    device: str

    @property
    def is_matched(self) -> bool:
        return self.config != UNMATCHED

    def line(self) -> str:
        return f"{self.ip}  # {self.device}" if self.device else self.ip


@dataclass(frozen=True)
class RegistryLine:
    ip: str
    text: str = ""
    raw: str = ""

    @property
    def comment(self) -> str:
        """Trailing comment text (the original device name), if any."""
        _, sep, comment = self.text.partition("#")
        return comment.strip() if sep else ""


@dataclass
class RegistrySection:
    name: str
    lines: list[RegistryLine] = field(default_factory=list)

    @property
    def ips(self) -> list[str]:
        return [line.ip for line in self.lines]


@dataclass
class Registry:
    """Parsed registry file: section blocks in file order."""

    sections: list[RegistrySection] = field(default_factory=list)

    def lookup_config(self, ip: str) -> str | None:
        """Return the section of the first line whose address is *ip*."""
        for section in self.sections:
            for line in section.lines:
                if line.ip == ip:
                    return section.name
        return None

    def lookup_ips(self, config: str) -> list[str]:
        """Return every address listed under *config*, in file order.

        Repeated ``[config]`` headers are treated as one section.
        """
        ips: list[str] = []
        for section in self.sections:
            if section.name == config:
                ips.extend(section.ips)
        return ips

    def config_names(self) -> list[str]:
        """Unique section names, sorted."""
        return sorted({section.name for section in self.sections})

    def targets(self) -> Iterator[tuple[str, str]]:
        """Yield ``(config, ip)`` for every address line in file order."""
        for section in self.sections:
            for line in section.lines:
                yield section.name, line.ip

    def entries(self) -> list[RegistryEntry]:
        """Re-express the parsed file as entries for :func:`render_registry`."""
        return [
            RegistryEntry(config=section.name, ip=line.ip, device=line.comment)
            for section in self.sections
            for line in section.lines
        ]

    def __len__(self) -> int:
        return sum(len(section.lines) for section in self.sections)


# ──────────────────────────────────────────────────────────────────
# Parsing
# ──────────────────────────────────────────────────────────────────

def _fold_line(registry: Registry, raw: str) -> Registry:
    line = raw.rstrip("\r\n")
    header = _SECTION_RE.match(line)
    if header:
        registry.sections.append(RegistrySection(name=header.group(1)))
        return registry
    if _ADDRESS_RE.match(line):
        if not registry.sections:
            logger.debug("Ignoring address outside any section: %s", line)
            return registry
        ip = line.split()[0]
        rest = line[len(ip):].strip()
        registry.sections[-1].lines.append(RegistryLine(ip=ip, text=rest, raw=line))
    return registry


def parse_registry(text: str | Iterable[str]) -> Registry:
    """Parse registry text (or an iterable of lines) into a :class:`Registry`."""
    lines = text.splitlines() if isinstance(text, str) else text
    return reduce(_fold_line, lines, Registry())


def load_registry(path: str | Path) -> Registry:
    with open(path, encoding="utf-8") as f:
        registry = parse_registry(f)
    logger.debug("Loaded %d address(es) from %s", len(registry), path)
    return registry


# ──────────────────────────────────────────────────────────────────
# Rendering
# ──────────────────────────────────────────────────────────────────

def _host_octet(ip: str) -> int:
    try:
        return int(ip.split(".")[3])
    except (IndexError, ValueError):
        return 0


def render_registry(entries: Iterable[RegistryEntry]) -> str:
    """Render entries grouped by config, unmatched devices last.

    Sections come in config-name order; addresses within a section are
    ordered by host octet, keeping input order for ties.
    """
    grouped: dict[str, list[RegistryEntry]] = {}
    unmatched: list[RegistryEntry] = []
    for entry in entries:
        if entry.is_matched:
            grouped.setdefault(entry.config, []).append(entry)
        else:
            unmatched.append(entry)

    out: list[str] = []
    for config in sorted(grouped):
        out.append("")
        out.append(f"[{config}]")
        for entry in sorted(grouped[config], key=lambda e: _host_octet(e.ip)):
            out.append(entry.line())

    if unmatched:
        out.append("")
        out.append(UNMATCHED_HEADER)
        for entry in unmatched:
            out.append(f"# {entry.line()}")

    return "\n".join(out) + "\n" if out else ""


def file_header(now: datetime | None = None) -> str:
    now = now or datetime.now().astimezone()
    return f"{FILE_TITLE}\n# Generated on {now.strftime('%a %b %d %H:%M:%S %Z %Y')}\n"
