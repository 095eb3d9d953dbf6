"""Tests for the espfleet command-line entry point."""

from __future__ import annotations

import asyncio
import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from espfleet.__main__ import build_parser, main
from espfleet.errors import ExternalToolError


class TestParser:
    def test_discover_defaults(self):
        args = build_parser().parse_args(["discover"])
        assert args.command == "discover"
        assert args.timeout is None
        assert args.save is False
        assert args.backend is None

    def test_discover_timeout_positional(self):
        args = build_parser().parse_args(["discover", "10", "--save", "--backend", "zeroconf"])
        assert args.timeout == 10.0
        assert args.save is True
        assert args.backend == "zeroconf"

    def test_device_commands_take_ip(self):
        for command in ("run", "upload", "logs", "validate", "compile"):
            args = build_parser().parse_args([command, "192.168.2.5"])
            assert args.ip == "192.168.2.5"

    def test_rejects_unknown_backend(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["discover", "--backend", "avahi"])


class TestMain:
    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "discover" in capsys.readouterr().out

    def test_missing_registry(self, config_dir, capsys):
        rc = main(["--config-dir", str(config_dir), "list"])
        assert rc == 1
        assert "Error: devices.conf not found." in capsys.readouterr().err

    def test_missing_ip_exits_2(self, config_dir, capsys):
        (config_dir / "devices.conf").write_text("[athom_plug.yaml]\n10.0.0.1\n")
        rc = main(["--config-dir", str(config_dir), "run"])
        assert rc == 2
        assert "Usage: espfleet run <ip>" in capsys.readouterr().err

    def test_list(self, config_dir, capsys):
        (config_dir / "devices.conf").write_text("[athom_plug.yaml]\n10.0.0.1  # athom-plug-1\n")
        assert main(["--config-dir", str(config_dir), "list"]) == 0
        assert "  10.0.0.1  # athom-plug-1" in capsys.readouterr().out

    def test_registry_override(self, config_dir, capsys):
        (config_dir / "lab.conf").write_text("[athom_plug.yaml]\n10.0.0.7\n")
        assert main(["--config-dir", str(config_dir), "--registry", "lab.conf", "list"]) == 0
        assert "10.0.0.7" in capsys.readouterr().out

    def test_discover_zero_devices_exits_0(self, config_dir):
        with patch("espfleet.__main__.FleetOperations.discover", new_callable=AsyncMock) as discover:
            discover.return_value = ""
            assert main(["--config-dir", str(config_dir), "discover", "2"]) == 0
        discover.assert_awaited_once_with(timeout=2.0, backend=None, save=False)

    def test_external_failure_exit_code(self, config_dir, capsys):
        with patch(
            "espfleet.__main__.FleetOperations.run_all",
            new_callable=AsyncMock,
            side_effect=ExternalToolError("esphome failed", returncode=4),
        ):
            assert main(["--config-dir", str(config_dir), "run-all"]) == 4
        assert "Error: esphome failed" in capsys.readouterr().err

    def test_validate_all_failures_exit_1(self, config_dir):
        with patch(
            "espfleet.__main__.FleetOperations.validate_all",
            new_callable=AsyncMock,
            return_value=["a.yaml"],
        ):
            assert main(["--config-dir", str(config_dir), "validate-all"]) == 1

    def test_keyboard_interrupt(self, config_dir, capsys):
        with patch(
            "espfleet.__main__.FleetOperations.run_all",
            new_callable=AsyncMock,
            side_effect=KeyboardInterrupt,
        ):
            assert main(["--config-dir", str(config_dir), "run-all"]) == 130
        assert "Cancelled." in capsys.readouterr().err

    def test_missing_esphome_command(self, config_dir, capsys):
        (config_dir / "espfleet.json").write_text(json.dumps({"esphome_command": "esphome-not-installed"}))
        (config_dir / "devices.conf").write_text("[athom_plug.yaml]\n10.0.0.1\n")
        assert main(["--config-dir", str(config_dir), "run", "10.0.0.1"]) == 127
        assert "Error: esphome-not-installed not found" in capsys.readouterr().err

    def test_unsupported_config_value(self, config_dir, capsys):
        (config_dir / "espfleet.json").write_text(json.dumps({"match_strategy": "shortest"}))
        assert main(["--config-dir", str(config_dir), "discover", "1"]) == 1
        assert "Error: Unsupported match_strategy 'shortest'" in capsys.readouterr().err


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
class TestSignals:
    def test_sigterm_cancels_command(self, config_dir, capsys):
        cleaned_up = []

        async def _hang():
            try:
                os.kill(os.getpid(), signal.SIGTERM)
                await asyncio.sleep(30)
            finally:
                cleaned_up.append(True)

        with patch("espfleet.__main__.FleetOperations.run_all", side_effect=_hang):
            assert main(["--config-dir", str(config_dir), "run-all"]) == 128 + signal.SIGTERM
        assert cleaned_up == [True]
        assert "Terminated." in capsys.readouterr().err

    def test_sigterm_reaps_dns_sd(self, config_dir, tmp_path):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        pid_file = tmp_path / "dns-sd.pid"
        fake = bin_dir / "dns-sd"
        fake.write_text(
            "#!/bin/sh\n"
            f"echo $$ > {pid_file}\n"
            "echo '12:00:00.123  Add  3  4 local.  _esphomelib._tcp.  athom-plug-0011'\n"
            "exec sleep 60\n"
        )
        fake.chmod(0o755)
        env = dict(os.environ)
        env["PATH"] = f"{bin_dir}{os.pathsep}{env.get('PATH', '')}"
        env["PYTHONPATH"] = str(Path(__file__).resolve().parent.parent)

        proc = subprocess.Popen(
            [sys.executable, "-m", "espfleet", "--config-dir", str(config_dir),
             "discover", "30", "--backend", "dns-sd"],
            env=env,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        try:
            deadline = time.monotonic() + 10
            while not (pid_file.exists() and pid_file.read_text().strip()):
                assert time.monotonic() < deadline, "dns-sd was never started"
                time.sleep(0.05)
            child = int(pid_file.read_text())

            proc.send_signal(signal.SIGTERM)
            _, err = proc.communicate(timeout=10)
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()

        assert proc.returncode == 128 + signal.SIGTERM
        assert b"Terminated." in err
        with pytest.raises(ProcessLookupError):
            os.kill(child, 0)
