"""
roombalink.mapping — Mission map reconstruction.

Turns a mission's pose stream into a raster of the travelled path. Drawing
is done on an explicit ``bytearray`` with :func:`bresenham`, so the raster
logic has no rendering dependency; :meth:`MapArtifact.to_png` renders the
finished raster with Pillow.

Coordinate system::

    column = round((x - origin_x) * scale) + width // 2
    row    = round((y - origin_y) * scale) + height // 2

The origin is the first valid pose of the mission and the scale is fixed at
that moment; neither changes until the mission ends. Pixels that fall off
the canvas are clamped to the nearest edge pixel.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
import logging
import math

from .config import MapConfig
from .const import PIXEL_EMPTY, PIXEL_END, PIXEL_PATH, PIXEL_START
from .exceptions import InvariantError
from .models import MapArtifact, PoseSample

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


def bresenham(x0: int, y0: int, x1: int, y1: int) -> Iterator[tuple[int, int]]:
    """Yield every pixel on the line from ``(x0, y0)`` to ``(x1, y1)``, ends included."""
    dx = abs(x1 - x0)
    dy = -abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx + dy
    while True:
        yield x0, y0
        if x0 == x1 and y0 == y1:
            return
        e2 = 2 * err
        if e2 >= dy:
            err += dy
            x0 += sx
        if e2 <= dx:
            err += dx
            y0 += sy


def heading_marker_end(point: tuple[int, int], heading: float, length: int) -> tuple[int, int]:
    """Tip of a *length*-pixel marker drawn from *point* along *heading* degrees."""
    rad = math.radians(heading)
    return (
        point[0] + round(length * math.cos(rad)),
        point[1] + round(length * math.sin(rad)),
    )


@dataclass(frozen=True)
class CoordinateTransform:
    """Device units → pixel mapping, fixed for the lifetime of one raster."""

    scale: float
    origin_x: float
    origin_y: float
    width: int
    height: int

    @classmethod
    def establish(cls, config: MapConfig, x: float, y: float) -> CoordinateTransform:
        """Centre the canvas on ``(x, y)``; derive the scale from the config."""
        scale = config.scale
        if scale is None:
            half_side = (min(config.width, config.height) - 1) / 2
            scale = max(half_side, 1.0) / config.max_extent
        return cls(
            scale=scale,
            origin_x=x,
            origin_y=y,
            width=config.width,
            height=config.height,
        )

    def to_pixel(self, x: float, y: float) -> tuple[int, int]:
        """Pixel for device coordinate ``(x, y)``, clamped to the canvas."""
        col = round((x - self.origin_x) * self.scale) + self.width // 2
        row = round((y - self.origin_y) * self.scale) + self.height // 2
        return (
            min(max(col, 0), self.width - 1),
            min(max(row, 0), self.height - 1),
        )


@dataclass(frozen=True)
class Rect:
    """Inclusive pixel rectangle."""

    left: int
    top: int
    right: int
    bottom: int

    def union(self, x: int, y: int) -> Rect:
        return Rect(
            min(self.left, x),
            min(self.top, y),
            max(self.right, x),
            max(self.bottom, y),
        )


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class MapRaster:
    """Pixel buffer of one mission plus its dirty region."""

    def __init__(self, transform: CoordinateTransform) -> None:
        self.transform = transform
        self.width = transform.width
        self.height = transform.height
        self.pixels = bytearray(self.width * self.height)
        self._dirty: Rect | None = None

    def get(self, x: int, y: int) -> int:
        return self.pixels[y * self.width + x]

    def set(self, x: int, y: int, value: int) -> None:
        self.pixels[y * self.width + x] = value
        self._dirty = Rect(x, y, x, y) if self._dirty is None else self._dirty.union(x, y)

    def plot(self, x: int, y: int) -> None:
        """Mark a path pixel; start and end markers are never overwritten."""
        if self.get(x, y) in (PIXEL_EMPTY, PIXEL_PATH):
            self.set(x, y, PIXEL_PATH)

    def line(self, start: tuple[int, int], end: tuple[int, int]) -> None:
        for x, y in bresenham(start[0], start[1], end[0], end[1]):
            self.plot(x, y)

    def take_dirty(self) -> Rect | None:
        """Return the region changed since the last call and clear it."""
        dirty, self._dirty = self._dirty, None
        return dirty


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class MapEngine:
    """
    Builds the map raster of the active mission.

    Example::

        engine = MapEngine(MapConfig(width=400, height=400))
        engine.begin(mission.mission_id)
        for pose in mission.poses:
            engine.add_pose(pose)
        artifact = engine.finalize()

    Segments touching a suspect pose are not drawn: the next valid pose
    starts a new stroke from its own position.
    """

    def __init__(self, config: MapConfig | None = None) -> None:
        self._config = config or MapConfig()
        self.mission_id: str | None = None
        self.raster: MapRaster | None = None
        self._start: tuple[int, int] | None = None
        self._last: tuple[int, int] | None = None
        self._heading: float | None = None
        self._valid_poses = 0
        self._broken = False

    @property
    def active(self) -> bool:
        return self.mission_id is not None

    def begin(self, mission_id: str) -> None:
        """Start a fresh map for *mission_id*, discarding any unfinished one."""
        if self.mission_id is not None:
            logger.warning("Discarding unfinished map of mission %s", self.mission_id)
        self._clear()
        self.mission_id = mission_id

    def add_pose(self, pose: PoseSample) -> None:
        """
        Draw *pose* onto the active raster.

        Raises:
            InvariantError: No map is in progress.
        """
        if self.mission_id is None:
            raise InvariantError("add_pose() called with no map in progress")
        if not pose.is_valid:
            self._broken = True
            return

        if self.raster is None:
            transform = CoordinateTransform.establish(self._config, pose.x, pose.y)
            self.raster = MapRaster(transform)
            logger.debug(
                "Map %s: origin (%.1f, %.1f), scale %.4f px/unit",
                self.mission_id,
                pose.x,
                pose.y,
                transform.scale,
            )
        raster = self.raster
        point = raster.transform.to_pixel(pose.x, pose.y)

        if self._start is None:
            self._start = point
            raster.set(point[0], point[1], PIXEL_START)
        elif self._last is not None and not self._broken:
            raster.line(self._last, point)
        else:
            raster.plot(point[0], point[1])

        self._last = point
        self._heading = pose.heading
        self._broken = False
        self._valid_poses += 1

    def break_stroke(self) -> None:
        """End the current stroke; the next valid pose is not joined to the last one."""
        if self._last is not None:
            self._broken = True

    def take_dirty(self) -> Rect | None:
        return self.raster.take_dirty() if self.raster is not None else None

    def finalize(self) -> MapArtifact | None:
        """
        Finish the active map.

        Returns ``None`` when the mission produced no valid pose. The engine
        is idle afterwards.
        """
        mission_id, raster = self.mission_id, self.raster
        if mission_id is None:
            return None
        if raster is None or self._start is None:
            logger.debug("Map %s: no valid pose, no artifact", mission_id)
            self._clear()
            return None

        end: tuple[int, int] | None = None
        heading: float | None = None
        if self._valid_poses > 1 and self._last is not None:
            end = self._last
            heading = self._heading
            if end != self._start:
                raster.set(end[0], end[1], PIXEL_END)

        transform = raster.transform
        artifact = MapArtifact(
            mission_id=mission_id,
            width=raster.width,
            height=raster.height,
            scale=transform.scale,
            origin=(transform.origin_x, transform.origin_y),
            pixels=bytes(raster.pixels),
            start=self._start,
            end=end,
            heading=heading,
        )
        logger.info(
            "Map %s finalized: %dx%d, %d valid poses",
            mission_id,
            raster.width,
            raster.height,
            self._valid_poses,
        )
        self._clear()
        return artifact

    def discard(self) -> None:
        """Drop the active map without producing an artifact."""
        self._clear()

    def _clear(self) -> None:
        self.mission_id = None
        self.raster = None
        self._start = None
        self._last = None
        self._heading = None
        self._valid_poses = 0
        self._broken = False
