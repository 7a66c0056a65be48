"""
roombalink.mission — Mission lifecycle state machine.

Turns the continuous :class:`~roombalink.models.TelemetrySample` stream of one
robot into missions::

    Idle ─run─▶ Running ⇄ Paused
    Running|Paused ─returning─▶ Returning ─docked─▶ Docked ─idle (sustained)─▶ Completed
    Running|Returning ─docked hint─▶ Docked ─run─▶ Running        (mid-mission recharge)
    Running|Paused|Returning ─error code─▶ Error

``Completed`` and ``Error`` are terminal for the mission object; the machine
itself returns to ``Idle`` on the next idle or run hint and a run hint always
creates a new :class:`~roombalink.models.Mission`.

Samples are applied in arrival order. Device timestamps are recorded on
poses but never used for ordering or durations: runtime comes from the
injected monotonic clock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
import time
from typing import TYPE_CHECKING
import uuid

from .config import MissionConfig, SuspectPosePolicy
from .const import error_message
from .models import (
    Mission,
    MissionPhase,
    MissionPhaseChange,
    MissionStats,
    PhaseHint,
    PoseSample,
    TelemetrySample,
)

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

#: Phases whose wall time counts towards mission runtime.
_RUNTIME_PHASES = frozenset({MissionPhase.RUNNING, MissionPhase.RETURNING})

#: Phases in which a device fault ends the mission.
_FAULT_PHASES = frozenset({MissionPhase.RUNNING, MissionPhase.PAUSED, MissionPhase.RETURNING})

#: Phases in which poses are recorded.
_POSE_PHASES = frozenset({MissionPhase.RUNNING, MissionPhase.PAUSED})


@dataclass(frozen=True)
class MissionUpdate:
    """What one sample did to the machine."""

    changes: list[MissionPhaseChange] = field(default_factory=list)
    started: Mission | None = None
    pose: PoseSample | None = None
    """Pose appended to the active mission by this sample."""

    finished: Mission | None = None
    """Mission that reached a terminal phase with this sample."""


class MissionStateMachine:
    """
    Mission tracking for one robot.

    Args:
        config:     Mission tuning (idle settle time, coverage width, suspect policy).
        clock:      Monotonic clock for runtime and idle settling.
        wall_clock: Wall clock for mission start/end timestamps.
    """

    def __init__(
        self,
        config: MissionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or MissionConfig()
        self._clock = clock
        self._wall_clock = wall_clock
        self.phase = MissionPhase.IDLE
        self.mission: Mission | None = None
        self._idle_since: float | None = None
        self._last_tick: float | None = None
        self._area_anchor: PoseSample | None = None

    @property
    def active_mission(self) -> Mission | None:
        """The open mission, or ``None`` while idle or after a terminal phase."""
        if self.phase.is_active:
            return self.mission
        return None

    # ------------------------------------------------------------------
    # Sample intake
    # ------------------------------------------------------------------

    def update(self, sample: TelemetrySample) -> list[MissionPhaseChange]:
        """Apply one sample; return the resulting phase transitions in order."""
        return self.step(sample).changes

    def step(self, sample: TelemetrySample) -> MissionUpdate:
        """Apply one sample; return transitions plus the mission/pose it touched."""
        now = self._clock()
        hint = sample.phase_hint
        if hint is PhaseHint.IDLE:
            if self._idle_since is None:
                self._idle_since = now
        elif hint is not None:
            self._idle_since = None

        if self.phase is MissionPhase.IDLE or self.phase.is_terminal:
            return self._update_inactive(sample, now)
        return self._update_active(sample, now)

    def _update_inactive(self, sample: TelemetrySample, now: float) -> MissionUpdate:
        changes: list[MissionPhaseChange] = []
        hint = sample.phase_hint
        if self.phase.is_terminal and hint in (PhaseHint.IDLE, PhaseHint.RUN):
            changes.append(self._change(None, self.phase, MissionPhase.IDLE, sample))
            self.phase = MissionPhase.IDLE
        if self.phase is not MissionPhase.IDLE or hint is not PhaseHint.RUN:
            return MissionUpdate(changes=changes)

        mission = Mission(mission_id=uuid.uuid4().hex, started_at=self._wall_clock())
        self.mission = mission
        self.phase = MissionPhase.RUNNING
        self._last_tick = now
        self._area_anchor = None
        logger.info("Mission %s started", mission.mission_id)
        changes.append(self._change(mission, MissionPhase.IDLE, MissionPhase.RUNNING, sample))
        pose = self._record(mission, sample)
        return MissionUpdate(changes=changes, started=mission, pose=pose)

    def _update_active(self, sample: TelemetrySample, now: float) -> MissionUpdate:
        mission = self.mission
        assert mission is not None
        previous = self.phase

        if sample.has_error and previous in _FAULT_PHASES:
            # Statistics stay at the last good sample.
            mission.error_code = sample.error_code
            mission.error_message = error_message(sample.error_code)
            mission.close(MissionPhase.ERROR, self._wall_clock())
            self.phase = MissionPhase.ERROR
            logger.warning(
                "Mission %s ended with device error %s: %s",
                mission.mission_id,
                sample.error_code,
                mission.error_message,
            )
            change = self._change(mission, previous, MissionPhase.ERROR, sample)
            return MissionUpdate(changes=[change], finished=mission)

        self._accrue(mission, now)
        target = self._next_phase(previous, sample, now)

        if target is MissionPhase.COMPLETED:
            pose = self._record(mission, sample)
            mission.close(MissionPhase.COMPLETED, self._wall_clock())
            self.phase = MissionPhase.COMPLETED
            logger.info("Mission %s completed", mission.mission_id)
            change = self._change(mission, previous, MissionPhase.COMPLETED, sample)
            return MissionUpdate(changes=[change], pose=pose, finished=mission)

        changes: list[MissionPhaseChange] = []
        if target is not previous:
            mission.set_phase(target)
            self.phase = target
            logger.debug("Mission %s: %s → %s", mission.mission_id, previous, target)
            changes.append(self._change(mission, previous, target, sample))
        pose = self._record(mission, sample)
        return MissionUpdate(changes=changes, pose=pose)

    def _next_phase(
        self,
        phase: MissionPhase,
        sample: TelemetrySample,
        now: float,
    ) -> MissionPhase:
        hint = sample.phase_hint
        if (
            self._idle_since is not None
            and now - self._idle_since >= self._config.idle_settle
        ):
            if phase is MissionPhase.RETURNING and sample.docked:
                # Dock confirmation first; completion follows on a later sample.
                return MissionPhase.DOCKED
            return MissionPhase.COMPLETED

        if phase is MissionPhase.RUNNING:
            if hint is PhaseHint.PAUSE:
                return MissionPhase.PAUSED
            if hint is PhaseHint.RETURNING:
                return MissionPhase.RETURNING
            if hint is PhaseHint.DOCKED:
                return MissionPhase.DOCKED
        elif phase is MissionPhase.PAUSED:
            if hint is PhaseHint.RUN:
                return MissionPhase.RUNNING
            if hint is PhaseHint.RETURNING:
                return MissionPhase.RETURNING
            if hint is PhaseHint.DOCKED:
                return MissionPhase.DOCKED
        elif phase is MissionPhase.RETURNING:
            if sample.docked or hint is PhaseHint.DOCKED:
                return MissionPhase.DOCKED
            if hint is PhaseHint.RUN:
                return MissionPhase.RUNNING
        elif phase is MissionPhase.DOCKED:
            if hint is PhaseHint.RUN:
                return MissionPhase.RUNNING
        return phase

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _accrue(self, mission: Mission, now: float) -> None:
        last, self._last_tick = self._last_tick, now
        if last is None or self.phase not in _RUNTIME_PHASES:
            return
        mission.update_stats(runtime=mission.stats.runtime + max(0.0, now - last))

    def _record(self, mission: Mission, sample: TelemetrySample) -> PoseSample | None:
        stats = mission.stats
        changes: dict[str, object] = {}
        if sample.battery is not None:
            low = stats.battery_min
            high = stats.battery_max
            changes["battery_min"] = sample.battery if low is None else min(low, sample.battery)
            changes["battery_max"] = sample.battery if high is None else max(high, sample.battery)
        if sample.mission_minutes is not None:
            changes["device_minutes"] = sample.mission_minutes
        if sample.area_sqft is not None:
            changes["device_area_sqft"] = sample.area_sqft

        pose: PoseSample | None = None
        if sample.pose is not None and self.phase in _POSE_PHASES:
            pose = PoseSample(
                x=sample.pose.x,
                y=sample.pose.y,
                heading=sample.pose.heading,
                timestamp=sample.timestamp,
                quality=sample.pose_quality,
            )
            mission.append_pose(pose)
            changes["pose_count"] = stats.pose_count + 1
            changes["valid_pose_count"] = stats.valid_pose_count + (1 if pose.is_valid else 0)
            area = self._area_step(pose)
            if area is not None:
                changes["area"] = (stats.area or 0.0) + area

        if changes:
            mission.update_stats(**changes)
        return pose

    def _area_step(self, pose: PoseSample) -> float | None:
        if not pose.is_valid and self._config.suspect_pose_policy is SuspectPosePolicy.IGNORE:
            return None
        anchor, self._area_anchor = self._area_anchor, pose
        if anchor is None:
            return None
        distance = math.hypot(pose.x - anchor.x, pose.y - anchor.y)
        return distance * self._config.coverage_width

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _change(
        self,
        mission: Mission | None,
        previous: MissionPhase,
        phase: MissionPhase,
        sample: TelemetrySample,
    ) -> MissionPhaseChange:
        terminal = phase.is_terminal
        return MissionPhaseChange(
            mission_id=mission.mission_id if mission is not None else None,
            previous=previous,
            phase=phase,
            timestamp=sample.timestamp,
            stats=mission.stats if mission is not None else MissionStats(),
            error_code=mission.error_code if mission is not None else None,
            error_message=mission.error_message if mission is not None else None,
            mission=mission if terminal else None,
        )

    def reset(self) -> None:
        """Forget any open mission without emitting events (process shutdown)."""
        if self.active_mission is not None:
            logger.info("Dropping open mission %s", self.active_mission.mission_id)
        self.phase = MissionPhase.IDLE
        self.mission = None
        self._idle_since = None
        self._last_tick = None
        self._area_anchor = None
