"""
roombalink._cli — CLI entry point for the roombalink package.

Talks to one robot on the local network using previously obtained
credentials. Connection details come from flags or the ``ROOMBA_ADDRESS``,
``ROOMBA_BLID`` and ``ROOMBA_PASSWORD`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
from pathlib import Path
import sys
from typing import TYPE_CHECKING, Any

from roombalink._codec import decode
from roombalink.bridge import RoombaBridge
from roombalink.config import MapConfig, RobotConfig
from roombalink.const import PHASE_NAMES, ROBOT_PORT, Command
from roombalink.error_reporting import report_frame_dump
from roombalink.exceptions import RoombaError, UnrecognizedPayloadError
from roombalink.models import MapArtifact, MissionPhaseChange, TelemetrySample
from roombalink.normalizer import normalize
from roombalink.session import SessionManager

if TYPE_CHECKING:
    from roombalink.models import DeviceEvent

_CLI_EPILOG = """
Commands
────────

  status        Connect, print battery / phase / bin / pose, disconnect.
  watch         Stream canonical events (Ctrl+C to stop); --map-dir DIR
                writes one PNG per finished mission.
  command NAME  Send one command: start, stop, pause, resume, dock.

Connection
  --address IP      Robot IP (env ROOMBA_ADDRESS).
  --blid BLID       Robot BLID (env ROOMBA_BLID).
  --password PASS   Local password (env ROOMBA_PASSWORD).
  --port PORT       MQTT port (default: 8883).
  --timeout N       Timeout in seconds (default: 10).

Examples
  roombalink status
  roombalink watch --map-dir maps/
  roombalink command dock
"""


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--address",
        type=str,
        default=os.environ.get("ROOMBA_ADDRESS"),
        help="Robot IP address (default: $ROOMBA_ADDRESS).",
    )
    parser.add_argument(
        "--blid",
        type=str,
        default=os.environ.get("ROOMBA_BLID"),
        help="Robot BLID (default: $ROOMBA_BLID).",
    )
    parser.add_argument(
        "--password",
        type=str,
        default=os.environ.get("ROOMBA_PASSWORD"),
        help="Robot local password (default: $ROOMBA_PASSWORD).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=ROBOT_PORT,
        help=f"MQTT port (default: {ROBOT_PORT}).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Timeout in seconds (default: 10).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log protocol traffic at debug level.",
    )


def _config_from_args(args: argparse.Namespace, **extra: Any) -> RobotConfig:
    try:
        return RobotConfig(
            address=args.address or "",
            blid=args.blid or "",
            password=args.password or "",
            port=args.port,
            connect_timeout=args.timeout,
            **extra,
        )
    except ValueError as exc:
        raise SystemExit(f"Error: {exc} (use flags or ROOMBA_* environment variables)") from exc


def _setup_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")


def _main() -> None:
    parser = argparse.ArgumentParser(
        prog="roombalink",
        description="Local Roomba control and mission mapping (MQTT).",
        epilog=_CLI_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Status, event streaming, control.",
    )

    status_parser = subparsers.add_parser("status", help="Print robot status.")
    _add_connection_args(status_parser)

    watch_parser = subparsers.add_parser("watch", help="Stream canonical events.")
    _add_connection_args(watch_parser)
    watch_parser.add_argument(
        "--map-dir",
        type=str,
        default=None,
        metavar="DIR",
        help="Write <mission_id>.png here when a mission ends.",
    )
    watch_parser.add_argument(
        "--canvas",
        type=int,
        default=None,
        metavar="PX",
        help="Square map canvas size in pixels.",
    )
    watch_parser.add_argument(
        "--report-frames",
        action="store_true",
        help="On exit, send recent raw frames to GlitchTip (needs ROOMBALINK_SENTRY_DSN).",
    )

    command_parser = subparsers.add_parser("command", help="Send one command.")
    _add_connection_args(command_parser)
    command_parser.add_argument(
        "name",
        choices=[c.value for c in Command],
        help="Command to send.",
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    handlers = {
        "status": _run_status,
        "watch": _run_watch,
        "command": _run_command,
    }
    handler = handlers.get(args.command)
    if handler:
        _setup_logging(args)
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(handler(args))
    else:
        parser.print_help()
        sys.exit(1)


# ----- Status -----
async def _run_status(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    manager = SessionManager(config)
    try:
        await manager.connect()
        status = await asyncio.wait_for(_collect_status(manager), timeout=args.timeout)
    except TimeoutError:
        print("Error: connected but no telemetry received within timeout.")
        sys.exit(1)
    except RoombaError as exc:
        raise SystemExit(f"Error: {exc}") from exc
    finally:
        await manager.stop()
    _print_status(status, config)


async def _collect_status(manager: SessionManager) -> dict[str, Any]:
    """Merge the robot's connect-time state burst until battery and phase are known."""
    status: dict[str, Any] = {}
    async for raw in manager.events():
        try:
            sample = normalize(decode(raw.payload))
        except UnrecognizedPayloadError:
            continue
        for name in ("battery", "bin_full", "cycle", "phase", "error_code", "pose"):
            value = getattr(sample, name)
            if value is not None:
                status[name] = value
        if "battery" in status and "phase" in status:
            return status
    return status


def _print_status(status: dict[str, Any], config: RobotConfig) -> None:
    print(f"Robot {config.address} (blid={config.blid})")
    print(f"  Battery:  {status.get('battery', '?')}%")
    print(f"  Cycle:    {status.get('cycle', '?')}")
    phase = status.get("phase", "?")
    label = PHASE_NAMES.get(phase)
    print(f"  Phase:    {phase} ({label})" if label else f"  Phase:    {phase}")
    print(f"  Bin full: {status.get('bin_full', '?')}")
    if status.get("error_code"):
        print(f"  Error:    {status['error_code']}")
    pose = status.get("pose")
    if pose is not None:
        print(f"  Pose:     x={pose.x:.0f} y={pose.y:.0f} heading={pose.heading:.0f}°")


# ----- Watch -----
async def _run_watch(args: argparse.Namespace) -> None:
    extra: dict[str, Any] = {}
    if args.canvas:
        extra["map"] = MapConfig(width=args.canvas, height=args.canvas)
    config = _config_from_args(args, **extra)
    map_dir = Path(args.map_dir) if args.map_dir else None
    if map_dir is not None:
        map_dir.mkdir(parents=True, exist_ok=True)

    bridge = RoombaBridge([config])
    print(f"Watching {config.display_name} at {config.address} (Ctrl+C to stop)...")
    try:
        async with bridge:
            runner = asyncio.create_task(bridge.run())
            printer = asyncio.create_task(_print_events(bridge, map_dir))
            await asyncio.wait({runner, printer}, return_when=asyncio.FIRST_COMPLETED)
            printer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await printer
    finally:
        if args.report_frames:
            worker = bridge.worker(config.blid)
            report_frame_dump(list(worker.recent_frames))
    failure = bridge.failures.get(config.blid)
    if failure is not None:
        raise SystemExit(f"Error: {failure}")


async def _print_events(bridge: RoombaBridge, map_dir: Path | None) -> None:
    async for envelope in bridge.events():
        _print_event(envelope, map_dir)


def _print_event(envelope: DeviceEvent, map_dir: Path | None) -> None:
    event = envelope.event
    if isinstance(event, TelemetrySample):
        parts = []
        if event.battery is not None:
            parts.append(f"Battery: {event.battery}%")
        if event.phase is not None:
            parts.append(f"Phase: {event.cycle or '?'}/{event.phase}")
        if event.pose is not None:
            parts.append(f"Pose: ({event.pose.x:.0f}, {event.pose.y:.0f}) {event.pose.heading:.0f}°")
        if parts:
            print("  " + "  ".join(parts))
    elif isinstance(event, MissionPhaseChange):
        mission = event.mission_id[:8] if event.mission_id else "-"
        line = f"Mission {mission}: {event.previous} → {event.phase}"
        line += f"  runtime={event.stats.runtime:.0f}s"
        if event.stats.area is not None:
            line += f"  area≈{event.stats.area:.0f}"
        if event.error_message:
            line += f"  error {event.error_code}: {event.error_message}"
        print(line)
    elif isinstance(event, MapArtifact):
        if map_dir is None:
            print(f"Map for mission {event.mission_id[:8]} ready ({event.width}x{event.height}).")
            return
        path = map_dir / f"{event.mission_id}.png"
        path.write_bytes(event.to_png())
        print(f"Map written to {path}.")


# ----- Command -----
async def _run_command(args: argparse.Namespace) -> None:
    config = _config_from_args(args)
    manager = SessionManager(config)
    try:
        await manager.connect()
        await manager.send_command(args.name)
        # Let the network thread flush the publish before DISCONNECT.
        await asyncio.sleep(0.5)
    except RoombaError as exc:
        raise SystemExit(f"Error: {exc}") from exc
    finally:
        await manager.stop()
    print(f"Sent {args.name} to {config.display_name}.")


def main() -> None:
    _main()
