"""espfleet command-line entry point.

Usage::

    python -m espfleet discover [TIMEOUT] [--save] [--backend {auto,dns-sd,zeroconf}]
    python -m espfleet list
    python -m espfleet run IP            (alias: upload)
    python -m espfleet logs IP
    python -m espfleet validate IP
    python -m espfleet compile IP
    python -m espfleet run-all
    python -m espfleet run-config CONFIG
    python -m espfleet logs-config CONFIG
    python -m espfleet validate-all
    python -m espfleet clean
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from espfleet.config import BACKENDS, FleetConfig
from espfleet.errors import FleetError, TerminatedError
from espfleet.operations import FleetOperations


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="espfleet",
        description="ESPHome device discovery and fleet operations",
    )
    parser.add_argument(
        "--config-dir",
        metavar="DIR",
        default=None,
        help="Directory with ESPHome configs and devices.conf (default: . or ESPFLEET_CONFIG_DIR)",
    )
    parser.add_argument(
        "--registry",
        metavar="FILE",
        default=None,
        help="Registry file name (overrides config, default: devices.conf)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    discover = sub.add_parser("discover", help="Find devices and generate config")
    discover.add_argument(
        "timeout",
        nargs="?",
        type=float,
        default=None,
        help="Seconds to browse for devices (default: 5)",
    )
    discover.add_argument(
        "--save",
        action="store_true",
        help="Write devices.conf (or devices.conf.new when it exists)",
    )
    discover.add_argument(
        "--backend",
        choices=BACKENDS,
        default=None,
        help="Discovery backend (overrides config)",
    )

    sub.add_parser("list", help="List configured devices")

    for name, help_text in [
        ("run", "Compile and upload to device (OTA)"),
        ("upload", "Alias for run"),
        ("logs", "Stream logs from device"),
        ("validate", "Validate config for device"),
        ("compile", "Compile without uploading"),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("ip", nargs="?", default=None, help="Device address, e.g. 192.168.2.10")

    sub.add_parser("run-all", help="Run against all configured devices")
    for name, help_text in [
        ("run-config", "Run on all devices for a config"),
        ("logs-config", "Stream logs from all devices for a config"),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("config", nargs="?", default=None, help="Config file, e.g. shelly-1-mini-gen3.yaml")
    sub.add_parser("validate-all", help="Validate all device configs")
    sub.add_parser("clean", help="Remove the ESPHome build directory")
    return parser


async def _dispatch(ops: FleetOperations, args: argparse.Namespace) -> int:
    command = args.command
    if command == "discover":
        await ops.discover(timeout=args.timeout, backend=args.backend, save=args.save)
    elif command == "list":
        ops.list_devices()
    elif command in ("run", "upload"):
        await ops.run(args.ip)
    elif command == "logs":
        await ops.logs(args.ip)
    elif command == "validate":
        await ops.validate(args.ip)
    elif command == "compile":
        await ops.compile(args.ip)
    elif command == "run-all":
        await ops.run_all()
    elif command == "run-config":
        await ops.run_config(args.config)
    elif command == "logs-config":
        await ops.logs_config(args.config)
    elif command == "validate-all":
        failed = await ops.validate_all()
        return 1 if failed else 0
    elif command == "clean":
        ops.clean()
    return 0


async def _run(ops: FleetOperations, args: argparse.Namespace) -> int:
    """Run the command; SIGTERM cancels it so spawned processes are reaped."""
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    received: list[int] = []

    def _shutdown(sig: int) -> None:
        logging.getLogger(__name__).info("Received signal %d — shutting down", sig)
        received.append(sig)
        task.cancel()

    try:
        loop.add_signal_handler(signal.SIGTERM, _shutdown, signal.SIGTERM)
        handled = True
    except (NotImplementedError, RuntimeError):
        # Windows, or not on the main thread
        handled = False
    try:
        return await _dispatch(ops, args)
    except asyncio.CancelledError:
        if received:
            raise TerminatedError(received[0]) from None
        raise
    finally:
        if handled:
            loop.remove_signal_handler(signal.SIGTERM)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config = FleetConfig.load(args.config_dir)
        if args.registry:
            config.registry_file = args.registry
        return asyncio.run(_run(FleetOperations(config), args))
    except TerminatedError as exc:
        print("\nTerminated.", file=sys.stderr)
        return exc.exit_code
    except FleetError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return exc.exit_code
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
