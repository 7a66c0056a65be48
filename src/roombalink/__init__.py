"""
roombalink — Local-network bridge for iRobot Roomba and Braava robots.

Keeps a live MQTT-over-TLS session with each robot, normalizes the
firmware-specific status reports into one data model, tracks cleaning
missions and rebuilds a map of the path each mission travelled. Works
entirely on the local network with previously obtained credentials
(BLID + local password); no cloud account is involved.

Quick start::

    import asyncio
    from roombalink import RobotConfig, RoombaBridge

    async def main():
        config = RobotConfig(address="<robot-ip>", blid="BLID", password="PASSWORD")
        async with RoombaBridge([config]) as bridge:
            bridge.subscribe(print)
            await bridge.run()

    asyncio.run(main())

Single components work on their own, e.g. normalizing a captured payload::

    from roombalink import normalize
    sample = normalize({"state": {"reported": {"batPct": 97}}})

See README.md for full documentation.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

from ._codec import decode, encode, encode_command
from .bridge import RoombaBridge
from .config import MapConfig, MissionConfig, RobotConfig, SuspectPosePolicy
from .const import Command, EventKind
from .dispatcher import EventDispatcher
from .error_reporting import init_error_reporting, report_frame_dump
from .exceptions import (
    AuthError,
    HandshakeTimeoutError,
    InvariantError,
    NotConnectedError,
    RoombaError,
    TransportError,
    UnrecognizedPayloadError,
)
from .mapping import CoordinateTransform, MapEngine, MapRaster, bresenham
from .mission import MissionStateMachine, MissionUpdate
from .models import (
    CanonicalEvent,
    ConnectionState,
    DeviceEvent,
    MapArtifact,
    Mission,
    MissionPhase,
    MissionPhaseChange,
    MissionStats,
    PayloadShape,
    PhaseHint,
    Pose,
    PoseQuality,
    PoseSample,
    RawEvent,
    RobotSession,
    TelemetrySample,
)
from .mqtt import MqttTransport
from .normalizer import detect_shape, normalize
from .session import Backoff, SessionManager
from .worker import RobotWorker

__all__ = [  # noqa: RUF022 — grouped by category, alphabetical within each
    # Version
    "__version__",
    # Codec helpers
    "decode",
    "encode",
    "encode_command",
    # Error reporting
    "init_error_reporting",
    "report_frame_dump",
    # Constants
    "Command",
    "EventKind",
    # Configuration
    "MapConfig",
    "MissionConfig",
    "RobotConfig",
    "SuspectPosePolicy",
    # Models (alphabetical)
    "CanonicalEvent",
    "ConnectionState",
    "DeviceEvent",
    "MapArtifact",
    "Mission",
    "MissionPhase",
    "MissionPhaseChange",
    "MissionStats",
    "PayloadShape",
    "PhaseHint",
    "Pose",
    "PoseQuality",
    "PoseSample",
    "RawEvent",
    "RobotSession",
    "TelemetrySample",
    # Normalizer
    "detect_shape",
    "normalize",
    # Components (alphabetical)
    "Backoff",
    "CoordinateTransform",
    "EventDispatcher",
    "MapEngine",
    "MapRaster",
    "MissionStateMachine",
    "MissionUpdate",
    "MqttTransport",
    "RobotWorker",
    "RoombaBridge",
    "SessionManager",
    "bresenham",
    # Exceptions (alphabetical)
    "AuthError",
    "HandshakeTimeoutError",
    "InvariantError",
    "NotConnectedError",
    "RoombaError",
    "TransportError",
    "UnrecognizedPayloadError",
]

# Opt-in error reporting: active only when ROOMBALINK_SENTRY_DSN / SENTRY_DSN is set
init_error_reporting()
