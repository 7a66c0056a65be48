"""Tests for roombalink._cli — CLI entry point."""

from __future__ import annotations

import argparse
from pathlib import Path
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from roombalink._cli import (
    _add_connection_args,
    _config_from_args,
    _main,
    _print_event,
    _run_command,
    _run_status,
    _run_watch,
)
from roombalink.exceptions import AuthError
from roombalink.mapping import MapEngine
from roombalink.models import (
    DeviceEvent,
    MissionPhase,
    MissionPhaseChange,
    MissionStats,
    PoseSample,
)
from roombalink.session import SessionManager

from conftest import FakeTransportFactory, make_sample, mission_status, shadow, wire

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_args(**kwargs) -> argparse.Namespace:
    """Build a Namespace with sensible CLI defaults."""
    defaults = {
        "address": "192.168.1.50",
        "blid": "3115850251687850",
        "password": "secret",
        "port": 8883,
        "timeout": 1.0,
        "verbose": False,
    }
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


def _session_factory(factory: FakeTransportFactory, *frames: dict):
    """Replacement for SessionManager that pre-queues *frames*."""

    def build(config):
        manager = SessionManager(config, factory)
        for frame in frames:
            manager.on_event("wifistat", wire(frame))
        return manager

    return build


def _pose_sample(x: float, y: float) -> PoseSample:
    return PoseSample(x=x, y=y, heading=0.0, timestamp=0.0)


def _envelope(event) -> DeviceEvent:
    return DeviceEvent(device_id="3115850251687850", sequence=1, event=event)


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------


class TestAddConnectionArgs:
    def test_has_all_core_flags(self):
        parser = argparse.ArgumentParser()
        _add_connection_args(parser)
        args = parser.parse_args(
            ["--address", "10.0.0.9", "--blid", "B", "--password", "P", "--port", "8884", "-v"]
        )
        assert (args.address, args.blid, args.password, args.port) == ("10.0.0.9", "B", "P", 8884)
        assert args.verbose is True
        assert args.timeout == 10.0

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv("ROOMBA_ADDRESS", "10.0.0.7")
        monkeypatch.setenv("ROOMBA_BLID", "ENVBLID")
        monkeypatch.setenv("ROOMBA_PASSWORD", "ENVPASS")
        parser = argparse.ArgumentParser()
        _add_connection_args(parser)
        args = parser.parse_args([])
        assert (args.address, args.blid, args.password) == ("10.0.0.7", "ENVBLID", "ENVPASS")


class TestConfigFromArgs:
    def test_builds_config(self):
        config = _config_from_args(_make_args(timeout=3.0))
        assert config.connect_timeout == 3.0
        assert config.blid == "3115850251687850"

    def test_missing_credentials_exit(self):
        with pytest.raises(SystemExit, match="password"):
            _config_from_args(_make_args(password=None))


class TestMain:
    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["roombalink"])
        with pytest.raises(SystemExit) as exc_info:
            _main()
        assert exc_info.value.code == 0
        assert "roombalink" in capsys.readouterr().out

    def test_rejects_unknown_command_name(self, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["roombalink", "command", "selfdestruct"])
        with pytest.raises(SystemExit) as exc_info:
            _main()
        assert exc_info.value.code == 2


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestRunStatus:
    async def test_prints_status(self, capsys):
        factory = FakeTransportFactory()
        frames = (
            shadow(batPct=77, pose={"theta": 90, "point": {"x": 12, "y": -4}}),
            mission_status("none", "charge"),
        )
        with patch("roombalink._cli.SessionManager", _session_factory(factory, *frames)):
            await _run_status(_make_args())

        out = capsys.readouterr().out
        assert "Battery:  77%" in out
        assert "Phase:    charge (Charging)" in out
        assert "x=12 y=-4 heading=90" in out
        assert factory.current.closed

    async def test_exits_nonzero_without_telemetry(self, capsys):
        factory = FakeTransportFactory()
        with (
            patch("roombalink._cli.SessionManager", _session_factory(factory)),
            pytest.raises(SystemExit) as exc_info,
        ):
            await _run_status(_make_args(timeout=0.05))
        assert exc_info.value.code == 1
        assert "no telemetry" in capsys.readouterr().out

    async def test_auth_failure_exits(self):
        factory = FakeTransportFactory(AuthError("rejected", reason_code=5))
        with (
            patch("roombalink._cli.SessionManager", _session_factory(factory)),
            pytest.raises(SystemExit, match="rejected"),
        ):
            await _run_status(_make_args())


# ---------------------------------------------------------------------------
# command
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestRunCommand:
    async def test_sends_command(self, capsys):
        factory = FakeTransportFactory()
        with patch("roombalink._cli.SessionManager", _session_factory(factory)):
            await _run_command(_make_args(name="dock"))

        topic, body = factory.published[0]
        assert topic == "cmd"
        assert body["command"] == "dock"
        assert "Sent dock" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


class TestPrintEvent:
    def test_telemetry_line(self, capsys):
        sample = make_sample(battery=55, pose=(1, 2), heading=180, cycle="clean", phase="run")
        _print_event(_envelope(sample), None)
        out = capsys.readouterr().out
        assert "Battery: 55%" in out
        assert "Phase: clean/run" in out
        assert "Pose: (1, 2) 180°" in out

    def test_phase_change_line(self, capsys):
        change = MissionPhaseChange(
            mission_id="abcdef0123456789",
            previous=MissionPhase.RUNNING,
            phase=MissionPhase.ERROR,
            timestamp=0.0,
            stats=MissionStats(runtime=125.0, area=900.0),
            error_code=17,
            error_message="Path blocked",
        )
        _print_event(_envelope(change), None)
        out = capsys.readouterr().out
        assert "Mission abcdef01: running → error" in out
        assert "runtime=125s" in out
        assert "error 17: Path blocked" in out

    def test_map_written_to_dir(self, tmp_path: Path, capsys):
        engine = MapEngine()
        engine.begin("mission42")
        engine.add_pose(_pose_sample(0, 0))
        engine.add_pose(_pose_sample(50, 0))
        artifact = engine.finalize()

        _print_event(_envelope(artifact), tmp_path)

        written = tmp_path / "mission42.png"
        assert written.read_bytes().startswith(b"\x89PNG")
        assert str(written) in capsys.readouterr().out


@pytest.mark.asyncio
class TestRunWatch:
    def _bridge(self, failures=None) -> MagicMock:
        bridge = MagicMock()
        bridge.run = AsyncMock()
        bridge.failures = failures or {}

        async def no_events():
            return
            yield

        bridge.events = no_events
        bridge.worker.return_value.recent_frames = [{"topic": "wifistat", "payload": {}}]
        return bridge

    async def test_reports_frames_when_requested(self, tmp_path):
        bridge = self._bridge()
        args = _make_args(map_dir=str(tmp_path / "maps"), canvas=200, report_frames=True)
        with (
            patch("roombalink._cli.RoombaBridge", return_value=bridge) as bridge_cls,
            patch("roombalink._cli.report_frame_dump") as mock_report,
        ):
            await _run_watch(args)

        config = bridge_cls.call_args.args[0][0]
        assert (config.map.width, config.map.height) == (200, 200)
        assert (tmp_path / "maps").is_dir()
        mock_report.assert_called_once_with([{"topic": "wifistat", "payload": {}}])

    async def test_worker_failure_exits(self):
        bridge = self._bridge(failures={"3115850251687850": AuthError("rejected")})
        args = _make_args(map_dir=None, canvas=None, report_frames=False)
        with (
            patch("roombalink._cli.RoombaBridge", return_value=bridge),
            pytest.raises(SystemExit, match="rejected"),
        ):
            await _run_watch(args)
