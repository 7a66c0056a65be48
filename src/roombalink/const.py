"""
roombalink.const — Protocol constants for the Roomba local MQTT interface.

Topic names, port numbers, command vocabulary, phase tables and default
timing/map values used across the library.

Protocol sources:
- dorita980 (koalazak) local protocol notes
- Roomba980-Python (NickWaterton) state machine and error table
- Live captures from 980 (firmware 2.x), i7 and s9 (firmware 3.x)

Firmware support matrix
-----------------------
+---------------------------+-------------+----------------------------+
| Firmware                  | Implemented | Payload shape              |
+===========================+=============+============================+
| 1.x (900 series, HTTP)    | Parse only  | ``{"ok": {...}}``          |
| 2.x / 3.x (MQTT, TLS)     | Yes         | ``{"state": {"reported"}}``|
| Forwarded shadow (bridges)| Yes         | bare reported document     |
+---------------------------+-------------+----------------------------+
"""

from __future__ import annotations

import enum

# ---------------------------------------------------------------------------
# Local broker (embedded in the robot)
# ---------------------------------------------------------------------------

#: Robot MQTT-over-TLS port.
ROBOT_PORT = 8883

#: MQTT keepalive interval in seconds.
MQTT_KEEPALIVE = 60

#: TLS cipher string; 980 and earlier robots only negotiate security level 1.
TLS_CIPHERS = "DEFAULT@SECLEVEL=1"

#: CONNACK return codes that mean the credentials were rejected.
AUTH_FAILURE_CODES: frozenset[int] = frozenset({4, 5, 134, 135})

# ---------------------------------------------------------------------------
# Topics
# ---------------------------------------------------------------------------

#: Subscribe to everything the robot publishes.
TOPIC_ALL = "#"

#: Command topic (app → robot).
TOPIC_CMD = "cmd"

#: Wifi statistics topic (robot → app), carries reported-state deltas too.
TOPIC_WIFISTAT = "wifistat"

#: Initiator tag stamped on every command.
COMMAND_INITIATOR = "localApp"


class EventKind(enum.StrEnum):
    """Kind of an inbound raw frame."""

    STATE = "state"
    """Reported-state delta (battery, bin, dock, pose, mission status)."""

    MISSION = "mission"
    """Mission document (v1 firmware ``getMission`` or forwarded mission status)."""


#: Topic leaf → event kind. Unlisted topics default to ``EventKind.STATE``.
TOPIC_KINDS: dict[str, EventKind] = {
    "update": EventKind.STATE,
    TOPIC_WIFISTAT: EventKind.STATE,
    "mission": EventKind.MISSION,
}


def topic_kind(topic: str) -> EventKind:
    """Return the :class:`EventKind` for a full topic string."""
    return TOPIC_KINDS.get(topic.rsplit("/", 1)[-1], EventKind.STATE)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class Command(enum.StrEnum):
    """Fixed command vocabulary accepted by :meth:`SessionManager.send_command`."""

    START = "start"
    STOP = "stop"
    PAUSE = "pause"
    RESUME = "resume"
    DOCK = "dock"


# ---------------------------------------------------------------------------
# Device phases
# ---------------------------------------------------------------------------

#: ``cleanMissionStatus.cycle`` value when no mission is active.
CYCLE_NONE = "none"

#: Device phases that mean the robot is cleaning.
RUN_PHASES: frozenset[str] = frozenset({"run", "resume", "new"})

#: Device phases that mean the robot is heading home.
RETURNING_PHASES: frozenset[str] = frozenset({"hmUsrDock", "hmMidMsn", "hmPostMsn"})

#: Device phases that mean the robot sits on its dock.
DOCKED_PHASES: frozenset[str] = frozenset({"charge", "evac", "recharge", "chargingerror"})

#: Device phases that mean the mission is halted.
PAUSE_PHASES: frozenset[str] = frozenset({"pause", "stop"})

#: Human readable device phase names (for logging and the CLI).
PHASE_NAMES: dict[str, str] = {
    "charge": "Charging",
    "new": "New Mission",
    "run": "Running",
    "resume": "Running",
    "hmMidMsn": "Docking",
    "recharge": "Recharging",
    "stuck": "Stuck",
    "hmUsrDock": "User Docking",
    "completed": "Mission Completed",
    "cancelled": "Cancelled",
    "stop": "Stopped",
    "pause": "Paused",
    "evac": "Emptying",
    "hmPostMsn": "Docking - End Mission",
    "chargingerror": "Base Unplugged",
}

#: Device error code → message (subset observed on 900/i/s series).
ERROR_MESSAGES: dict[int, str] = {
    0: "None",
    1: "Left wheel off floor",
    2: "Main brushes stuck",
    3: "Right wheel off floor",
    4: "Left wheel stuck",
    5: "Right wheel stuck",
    6: "Stuck near a cliff",
    7: "Left wheel error",
    8: "Bin error",
    9: "Bumper stuck",
    10: "Right wheel error",
    11: "Bin error",
    12: "Cliff sensor issue",
    13: "Both wheels off floor",
    14: "Bin missing",
    15: "Reboot required",
    16: "Bumped unexpectedly",
    17: "Path blocked",
    18: "Docking issue",
    19: "Undocking issue",
    20: "Docking issue",
    21: "Navigation problem",
    22: "Navigation problem",
    23: "Battery issue",
    24: "Navigation problem",
    25: "Reboot required",
    26: "Vacuum problem",
    27: "Vacuum problem",
    29: "Software update needed",
    30: "Vacuum problem",
    31: "Reboot required",
    32: "Smart map problem",
    33: "Path blocked",
    34: "Reboot required",
    35: "Unrecognised cleaning pad",
    36: "Bin full",
    37: "Tank needed refilling",
    38: "Vacuum problem",
    39: "Reboot required",
    40: "Navigation problem",
    41: "Timed out",
    42: "Localization problem",
    43: "Navigation problem",
    44: "Pump issue",
    45: "Lid open",
    46: "Low battery",
    47: "Reboot required",
    48: "Path blocked",
    52: "Pad required attention",
    53: "Software update required",
    65: "Hardware problem detected",
    66: "Low memory",
    68: "Hardware problem detected",
    73: "Pad type changed",
    74: "Max area reached",
    75: "Navigation problem",
    76: "Hardware problem detected",
    88: "Back-up refused",
    89: "Mission runtime too long",
    101: "Battery isn't connected",
    102: "Charging error",
    103: "Charging error",
    104: "No charge current",
    105: "Charging current too low",
    106: "Battery too warm",
    107: "Battery temperature incorrect",
    108: "Battery communication failure",
    109: "Battery error",
    110: "Battery cell imbalance",
    111: "Battery communication failure",
    112: "Invalid charging load",
    114: "Internal battery failure",
    115: "Cell failure during charging",
    116: "Charging error of Home Base",
    118: "Battery communication failure",
    119: "Charging timeout",
    120: "Battery not initialized",
    122: "Charging system error",
    123: "Battery not initialized",
}


def error_message(code: int | None) -> str:
    """Return the human readable message for a device error code."""
    if code is None:
        return ERROR_MESSAGES[0]
    return ERROR_MESSAGES.get(code, f"Unknown error number: {code}")


# ---------------------------------------------------------------------------
# Normalization bounds
# ---------------------------------------------------------------------------

#: Pose coordinates beyond this magnitude (device units) are marked suspect.
POSE_COORD_LIMIT = 10_000

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

#: Default timeout (seconds) waiting for the MQTT handshake.
DEFAULT_CONNECT_TIMEOUT = 10.0

#: Default liveness window (seconds); the robot reports at least every ~30 s.
DEFAULT_LIVENESS_TIMEOUT = 120.0

#: Default first backoff delay (seconds).
DEFAULT_BACKOFF_BASE = 1.0

#: Default backoff ceiling (seconds).
DEFAULT_BACKOFF_CEILING = 60.0

#: Default bound of the per-device raw event queue.
DEFAULT_QUEUE_SIZE = 1000

#: Default time (seconds) an idle hint must persist before a mission completes.
DEFAULT_IDLE_SETTLE = 10.0

# ---------------------------------------------------------------------------
# Map
# ---------------------------------------------------------------------------

#: Default canvas size in pixels.
DEFAULT_CANVAS_WIDTH = 800
DEFAULT_CANVAS_HEIGHT = 800

#: Default expected maximum distance (device units) from the first pose.
DEFAULT_MAX_EXTENT = 1500.0

#: Default swept width (device units) used for the coarse area estimate.
DEFAULT_COVERAGE_WIDTH = 300.0

#: Raster pixel values.
PIXEL_EMPTY = 0
PIXEL_PATH = 1
PIXEL_START = 2
PIXEL_END = 3

#: Palette used by ``MapArtifact.to_png`` (RGB per pixel value).
MAP_PALETTE: dict[int, tuple[int, int, int]] = {
    PIXEL_EMPTY: (255, 255, 255),
    PIXEL_PATH: (40, 110, 200),
    PIXEL_START: (30, 170, 60),
    PIXEL_END: (210, 50, 40),
}

#: Colour and length (pixels) of the heading marker drawn in rendered maps.
MARKER_COLOUR = (240, 160, 0)
MARKER_LENGTH = 12
