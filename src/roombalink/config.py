"""
roombalink.config — Configuration inputs for one robot.

Configuration is consumed, not owned, by this library: a host integration
builds :class:`RobotConfig` from its own storage. ``from_dict`` accepts the
snake_case names used here as well as the keys found in common Roomba
``config.ini`` / ``config.json`` files (``ip``, ``blid``, ``password``,
``robotname``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
from typing import Any

from .const import (
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_CEILING,
    DEFAULT_CANVAS_HEIGHT,
    DEFAULT_CANVAS_WIDTH,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_COVERAGE_WIDTH,
    DEFAULT_IDLE_SETTLE,
    DEFAULT_LIVENESS_TIMEOUT,
    DEFAULT_MAX_EXTENT,
    DEFAULT_QUEUE_SIZE,
    ROBOT_PORT,
)


class SuspectPosePolicy(enum.StrEnum):
    """How suspect poses affect the covered-area estimate."""

    COUNT = "count"
    """Displacement to or from a suspect pose still counts as coverage."""

    IGNORE = "ignore"
    """Suspect poses are skipped for coverage bookkeeping."""


@dataclass(frozen=True)
class MapConfig:
    enabled: bool = True
    width: int = DEFAULT_CANVAS_WIDTH
    height: int = DEFAULT_CANVAS_HEIGHT
    max_extent: float = DEFAULT_MAX_EXTENT
    """Expected maximum distance (device units) from the first pose."""

    scale: float | None = None
    """Fixed pixels-per-unit; derived from ``max_extent`` when ``None``."""

    def __post_init__(self) -> None:
        if self.width < 1 or self.height < 1:
            raise ValueError("map canvas must be at least 1x1 pixels")
        if self.max_extent <= 0:
            raise ValueError("max_extent must be positive")
        if self.scale is not None and self.scale <= 0:
            raise ValueError("scale must be positive")

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MapConfig:
        return cls(
            enabled=bool(d.get("enabled", d.get("map_enabled", True))),
            width=int(d.get("width", d.get("canvas_width", DEFAULT_CANVAS_WIDTH))),
            height=int(d.get("height", d.get("canvas_height", DEFAULT_CANVAS_HEIGHT))),
            max_extent=float(d.get("max_extent", DEFAULT_MAX_EXTENT)),
            scale=float(d["scale"]) if d.get("scale") is not None else None,
        )


@dataclass(frozen=True)
class MissionConfig:
    idle_settle: float = DEFAULT_IDLE_SETTLE
    """Seconds an idle hint must persist before an open mission completes."""

    coverage_width: float = DEFAULT_COVERAGE_WIDTH
    """Swept width (device units) for the coarse area estimate."""

    suspect_pose_policy: SuspectPosePolicy = SuspectPosePolicy.COUNT

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> MissionConfig:
        return cls(
            idle_settle=float(d.get("idle_settle", DEFAULT_IDLE_SETTLE)),
            coverage_width=float(d.get("coverage_width", DEFAULT_COVERAGE_WIDTH)),
            suspect_pose_policy=SuspectPosePolicy(
                d.get("suspect_pose_policy", SuspectPosePolicy.COUNT)
            ),
        )


@dataclass(frozen=True)
class RobotConfig:
    """
    Everything needed to run one robot.

    Args:
        address:  Robot IP address on the local network.
        blid:     Device identifier (obtained beforehand, e.g. with dorita980).
        password: Local password (obtained beforehand).
        name:     Display name used in logs; defaults to the BLID.
    """

    address: str
    blid: str
    password: str = field(repr=False)
    name: str = ""
    port: int = ROBOT_PORT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    liveness_timeout: float = DEFAULT_LIVENESS_TIMEOUT
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_ceiling: float = DEFAULT_BACKOFF_CEILING
    backoff_jitter: float = 0.0
    """Fractional jitter added to each delay (0 disables; delays then never decrease)."""

    queue_size: int = DEFAULT_QUEUE_SIZE
    map: MapConfig = field(default_factory=MapConfig)
    mission: MissionConfig = field(default_factory=MissionConfig)

    def __post_init__(self) -> None:
        missing = [
            name
            for name, value in (
                ("address", self.address),
                ("blid", self.blid),
                ("password", self.password),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing parameter(s): {', '.join(missing)}")
        if self.backoff_base <= 0 or self.backoff_ceiling < self.backoff_base:
            raise ValueError("backoff requires 0 < backoff_base <= backoff_ceiling")
        if not 0 <= self.backoff_jitter < 1:
            raise ValueError("backoff_jitter must be in [0, 1)")
        if self.liveness_timeout <= 0 or self.connect_timeout <= 0:
            raise ValueError("timeouts must be positive")

    @property
    def display_name(self) -> str:
        return self.name or self.blid

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RobotConfig:
        return cls(
            address=d.get("address", d.get("ip", "")),
            blid=d.get("blid", d.get("username", "")),
            password=d.get("password", ""),
            name=d.get("name", d.get("robotname", d.get("roomba_name", ""))),
            port=int(d.get("port", ROBOT_PORT)),
            connect_timeout=float(d.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)),
            liveness_timeout=float(d.get("liveness_timeout", DEFAULT_LIVENESS_TIMEOUT)),
            backoff_base=float(d.get("backoff_base", DEFAULT_BACKOFF_BASE)),
            backoff_ceiling=float(d.get("backoff_ceiling", DEFAULT_BACKOFF_CEILING)),
            backoff_jitter=float(d.get("backoff_jitter", 0.0)),
            queue_size=int(d.get("queue_size", DEFAULT_QUEUE_SIZE)),
            map=MapConfig.from_dict(d.get("map", {}) or {}),
            mission=MissionConfig.from_dict(d.get("mission", {}) or {}),
        )
