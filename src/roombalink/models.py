"""
roombalink.models — Canonical data model shared by every component.

Telemetry, pose and event types are frozen dataclasses: once built they are
shared by reference between the mission state machine, the map engine and
dispatcher consumers. :class:`Mission` is the one mutable type; it is owned
by :class:`~roombalink.mission.MissionStateMachine` and frozen when it
reaches a terminal phase.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import enum
import io
from typing import Any

from .const import MAP_PALETTE, MARKER_COLOUR, MARKER_LENGTH, EventKind
from .exceptions import InvariantError

# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ConnectionState(enum.StrEnum):
    """Connection state of a :class:`RobotSession`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    BACKOFF = "backoff"


@dataclass
class RobotSession:
    """
    Identity and connection bookkeeping for one configured robot.

    Owned by :class:`~roombalink.session.SessionManager`; read-only for
    everybody else.
    """

    address: str
    """Robot IP address or hostname on the local network."""

    blid: str
    """Device identifier (MQTT username and client id)."""

    password: str = field(repr=False)
    """Local shared secret (MQTT password)."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    retry_count: int = 0
    """Consecutive failed connection attempts since the last ``Connected``."""

    last_seen: float | None = None
    """Monotonic timestamp of the last inbound frame."""

    auth_failed: bool = False
    """True once the robot rejected the credentials (terminal)."""


@dataclass(frozen=True)
class RawEvent:
    """One inbound frame, as handed from the transport to the worker."""

    kind: EventKind
    topic: str
    payload: bytes
    received_at: float
    """Monotonic receive time."""


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class PhaseHint(enum.StrEnum):
    """Canonical cleaning-phase hint derived from ``cycle`` / ``phase``."""

    IDLE = "idle"
    RUN = "run"
    PAUSE = "pause"
    RETURNING = "returning"
    DOCKED = "docked"
    """On the dock (charging or emptying) with a mission still open."""

    STUCK = "stuck"


class PoseQuality(enum.StrEnum):
    VALID = "valid"
    SUSPECT = "suspect"


class PayloadShape(enum.StrEnum):
    """Discriminator of the raw payload variants the normalizer accepts."""

    SHADOW = "shadow"
    """``{"state": {"reported": {...}}}`` — MQTT firmware 2.x / 3.x."""

    REPORTED = "reported"
    """Bare reported document, as forwarded by other bridges."""

    LEGACY = "legacy"
    """``{"ok": {...}}`` — firmware 1.x mission document."""


@dataclass(frozen=True)
class Pose:
    """Robot position in device-local units plus heading in degrees."""

    x: float
    y: float
    heading: float = 0.0


@dataclass(frozen=True)
class TelemetrySample:
    """
    One normalized telemetry reading.

    Roombas publish partial deltas, so every field except ``timestamp`` and
    ``shape`` is optional: ``None`` means "not reported in this frame", not
    zero.
    """

    timestamp: float
    """Device timestamp when the payload carries one, else receive time."""

    shape: PayloadShape
    battery: int | None = None
    """Battery state of charge (0-100 %), clamped. Source: ``batPct``."""

    bin_full: bool | None = None
    """Source: ``bin.full``."""

    docked: bool | None = None
    """True when the device phase is a dock phase (``charge``, ``evac``, ...)."""

    error_code: int | None = None
    """Device fault code; ``None`` / ``0`` mean no fault."""

    phase_hint: PhaseHint | None = None
    cycle: str | None = None
    """Raw ``cleanMissionStatus.cycle`` (``"none"``, ``"clean"``, ``"spot"``, ...)."""

    phase: str | None = None
    """Raw ``cleanMissionStatus.phase`` (``"run"``, ``"charge"``, ...)."""

    pose: Pose | None = None
    pose_quality: PoseQuality = PoseQuality.VALID
    quality: PoseQuality = PoseQuality.VALID
    """Sample-level quality: suspect when a numeric field had to be clamped."""

    mission_minutes: int | None = None
    """Device-reported mission runtime. Source: ``mssnM``."""

    area_sqft: int | None = None
    """Device-reported cleaned area. Source: ``sqft``."""

    @property
    def has_error(self) -> bool:
        """True if the sample reports a non-zero fault code."""
        return bool(self.error_code)

    @property
    def is_suspect(self) -> bool:
        return self.quality is PoseQuality.SUSPECT


# ---------------------------------------------------------------------------
# Mission
# ---------------------------------------------------------------------------


class MissionPhase(enum.StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    RETURNING = "returning"
    DOCKED = "docked"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (MissionPhase.COMPLETED, MissionPhase.ERROR)

    @property
    def is_active(self) -> bool:
        """True for phases that belong to an open mission."""
        return self not in (MissionPhase.IDLE, MissionPhase.COMPLETED, MissionPhase.ERROR)


@dataclass(frozen=True)
class PoseSample:
    x: float
    y: float
    heading: float
    timestamp: float
    quality: PoseQuality = PoseQuality.VALID

    @property
    def is_valid(self) -> bool:
        return self.quality is PoseQuality.VALID


@dataclass(frozen=True)
class MissionStats:
    """Snapshot of a mission's derived statistics."""

    runtime: float = 0.0
    """Seconds spent running or returning (paused and docked time excluded)."""

    area: float | None = None
    """Coarse covered area in device units², ``None`` until a pose moves."""

    battery_min: int | None = None
    battery_max: int | None = None
    pose_count: int = 0
    valid_pose_count: int = 0
    device_minutes: int | None = None
    """Last ``mssnM`` reported by the device."""

    device_area_sqft: int | None = None
    """Last ``sqft`` reported by the device."""


@dataclass
class Mission:
    """
    One cleaning run.

    Created on ``Idle → Running`` and mutated only by the mission state
    machine. Calling :meth:`close` freezes it; later mutation raises
    :class:`~roombalink.exceptions.InvariantError`.
    """

    mission_id: str
    started_at: float
    """Wall-clock start time (Unix seconds)."""

    phase: MissionPhase = MissionPhase.RUNNING
    ended_at: float | None = None
    stats: MissionStats = field(default_factory=MissionStats)
    poses: list[PoseSample] = field(default_factory=list)
    error_code: int | None = None
    error_message: str | None = None
    _closed: bool = field(default=False, repr=False)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise InvariantError(f"mission {self.mission_id} is finished and immutable")

    def set_phase(self, phase: MissionPhase) -> None:
        self._check_open()
        self.phase = phase

    def append_pose(self, pose: PoseSample) -> None:
        self._check_open()
        if self.phase not in (MissionPhase.RUNNING, MissionPhase.PAUSED):
            raise InvariantError(f"cannot record pose while mission is {self.phase}")
        self.poses.append(pose)

    def update_stats(self, **changes: Any) -> None:
        self._check_open()
        self.stats = replace(self.stats, **changes)

    def close(self, phase: MissionPhase, ended_at: float) -> None:
        """Move to a terminal *phase* and freeze the mission."""
        self._check_open()
        if not phase.is_terminal:
            raise InvariantError(f"{phase} is not a terminal mission phase")
        self.phase = phase
        self.ended_at = ended_at
        self._closed = True


@dataclass(frozen=True)
class MissionPhaseChange:
    """Emitted on every mission phase transition."""

    mission_id: str | None
    """``None`` for the terminal → ``Idle`` transition."""

    previous: MissionPhase
    phase: MissionPhase
    timestamp: float
    stats: MissionStats
    error_code: int | None = None
    error_message: str | None = None
    mission: Mission | None = field(default=None, compare=False, repr=False)
    """The finished mission, attached to terminal transitions only."""


# ---------------------------------------------------------------------------
# Map
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MapArtifact:
    """Finalized map raster of one mission."""

    mission_id: str
    width: int
    height: int
    scale: float
    """Pixels per device unit."""

    origin: tuple[float, float]
    """Device coordinate mapped to the canvas centre (the first valid pose)."""

    pixels: bytes = field(repr=False)
    """Row-major pixel values (see ``PIXEL_*`` in :mod:`roombalink.const`)."""

    start: tuple[int, int] | None = None
    end: tuple[int, int] | None = None
    heading: float | None = None
    """Heading (degrees) at the last valid pose, for the directional marker."""

    def pixel(self, x: int, y: int) -> int:
        return self.pixels[y * self.width + x]

    def to_png(self) -> bytes:
        """
        Render the artifact as a PNG image.

        The heading marker is drawn here only; it never touches ``pixels``.
        """
        from PIL import Image, ImageDraw  # noqa: PLC0415

        from .mapping import heading_marker_end  # noqa: PLC0415

        image = Image.new("RGB", (self.width, self.height))
        image.putdata([MAP_PALETTE.get(v, MAP_PALETTE[0]) for v in self.pixels])
        if self.end is not None and self.heading is not None:
            tip = heading_marker_end(self.end, self.heading, MARKER_LENGTH)
            ImageDraw.Draw(image).line([self.end, tip], fill=MARKER_COLOUR, width=2)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


# ---------------------------------------------------------------------------
# Event envelope
# ---------------------------------------------------------------------------

CanonicalEvent = TelemetrySample | MissionPhaseChange | MapArtifact


@dataclass(frozen=True)
class DeviceEvent:
    """
    Envelope delivered to dispatcher consumers.

    ``sequence`` increases by one per event within a device, so consumers
    can discard duplicates produced by at-least-once delivery.
    """

    device_id: str
    sequence: int
    event: CanonicalEvent

    @property
    def is_telemetry(self) -> bool:
        return isinstance(self.event, TelemetrySample)

    @property
    def is_phase_change(self) -> bool:
        return isinstance(self.event, MissionPhaseChange)

    @property
    def is_map(self) -> bool:
        return isinstance(self.event, MapArtifact)
