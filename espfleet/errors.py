"""Error taxonomy for espfleet operations."""

from __future__ import annotations


class FleetError(Exception):
    """Base error for fleet operations. Reported to the terminal, exit 1."""

    exit_code = 1


class UsageError(FleetError):
    """A required parameter was not supplied."""

    exit_code = 2


class RegistryMissingError(FleetError):
    """The registry file does not exist yet."""


class LookupMissError(FleetError):
    """An address or config has no registry entry, or a config file is missing."""


class ExternalToolError(FleetError):
    """An external command (``esphome``, ``dns-sd``) failed or is not installed."""

    def __init__(self, message: str, returncode: int = 1) -> None:
        super().__init__(message)
        self.returncode = returncode

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.returncode if self.returncode > 0 else 1


class ConfigError(FleetError):
    """``espfleet.json`` is unreadable or holds an unsupported value."""


class TerminatedError(FleetError):
    """The run was stopped by a termination signal."""

    def __init__(self, signum: int) -> None:
        super().__init__(f"Terminated by signal {signum}")
        self.signum = signum

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return 128 + self.signum
