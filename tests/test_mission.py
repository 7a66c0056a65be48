"""
Tests for roombalink.mission — MissionStateMachine.

Covers:
- Every documented phase transition
- Idle settling on the injected clock
- Error freezes the mission and its statistics
- Terminal → Idle → Running on a run hint with a new mission
- Runtime counts only running / returning time
- Coarse area estimate and the suspect pose policy
- Pose recording limited to running / paused
"""

from __future__ import annotations

import pytest

from roombalink.config import MissionConfig, SuspectPosePolicy
from roombalink.mission import MissionStateMachine
from roombalink.models import MissionPhase, PhaseHint

from conftest import FakeClock, make_sample

RUN = PhaseHint.RUN
PAUSE = PhaseHint.PAUSE
RETURNING = PhaseHint.RETURNING
DOCKED = PhaseHint.DOCKED
IDLE = PhaseHint.IDLE


@pytest.fixture
def machine(clock: FakeClock) -> MissionStateMachine:
    return MissionStateMachine(
        MissionConfig(idle_settle=10.0, coverage_width=2.0),
        clock=clock,
        wall_clock=lambda: 1_700_000_000.0,
    )


def _phases(changes) -> list[tuple[MissionPhase, MissionPhase]]:
    return [(c.previous, c.phase) for c in changes]


class TestStart:
    def test_idle_hints_keep_idle(self, machine):
        assert machine.update(make_sample(IDLE)) == []
        assert machine.update(make_sample(DOCKED)) == []
        assert machine.update(make_sample(None, battery=50)) == []
        assert machine.phase is MissionPhase.IDLE
        assert machine.mission is None

    def test_run_hint_starts_mission(self, machine):
        update = machine.step(make_sample(RUN, battery=90))

        assert _phases(update.changes) == [(MissionPhase.IDLE, MissionPhase.RUNNING)]
        assert update.started is machine.mission
        assert machine.active_mission is machine.mission
        change = update.changes[0]
        assert change.mission_id == machine.mission.mission_id
        assert change.mission is None
        assert machine.mission.started_at == 1_700_000_000.0
        assert machine.mission.stats.battery_min == 90

    def test_error_while_idle_ignored(self, machine):
        assert machine.update(make_sample(IDLE, error_code=17)) == []
        assert machine.phase is MissionPhase.IDLE


class TestTransitions:
    def test_pause_and_resume(self, machine):
        machine.update(make_sample(RUN))
        assert _phases(machine.update(make_sample(PAUSE))) == [
            (MissionPhase.RUNNING, MissionPhase.PAUSED)
        ]
        assert _phases(machine.update(make_sample(RUN))) == [
            (MissionPhase.PAUSED, MissionPhase.RUNNING)
        ]

    def test_mid_mission_recharge(self, machine):
        machine.update(make_sample(RUN))
        mission = machine.mission
        machine.update(make_sample(RETURNING))
        assert machine.phase is MissionPhase.RETURNING
        machine.update(make_sample(DOCKED, docked=True))
        assert machine.phase is MissionPhase.DOCKED
        machine.update(make_sample(RUN, docked=False))
        assert machine.phase is MissionPhase.RUNNING
        assert machine.mission is mission

    def test_running_straight_to_docked(self, machine):
        machine.update(make_sample(RUN))
        assert _phases(machine.update(make_sample(DOCKED))) == [
            (MissionPhase.RUNNING, MissionPhase.DOCKED)
        ]

    def test_unknown_hint_keeps_phase(self, machine):
        machine.update(make_sample(RUN))
        assert machine.update(make_sample(None, battery=40)) == []
        assert machine.phase is MissionPhase.RUNNING

    def test_repeated_hint_emits_nothing(self, machine):
        machine.update(make_sample(RUN))
        assert machine.update(make_sample(RUN)) == []


class TestCompletion:
    def test_completes_after_sustained_idle(self, machine, clock):
        machine.update(make_sample(RUN))
        mission = machine.mission

        assert machine.update(make_sample(IDLE)) == []
        clock.advance(9.9)
        assert machine.update(make_sample(IDLE)) == []
        clock.advance(0.1)
        update = machine.step(make_sample(IDLE))

        assert _phases(update.changes) == [(MissionPhase.RUNNING, MissionPhase.COMPLETED)]
        assert update.finished is mission
        assert update.changes[0].mission is mission
        assert mission.is_closed
        assert mission.ended_at == 1_700_000_000.0
        assert machine.active_mission is None

    def test_completing_sample_pose_recorded(self, machine, clock):
        machine.update(make_sample(RUN, pose=(0, 0)))
        machine.update(make_sample(IDLE))
        clock.advance(10)
        update = machine.step(make_sample(IDLE, pose=(9, 0)))

        assert update.finished is not None
        assert update.pose is update.finished.poses[-1]
        assert (update.pose.x, update.pose.y) == (9, 0)

    def test_run_hint_resets_settle(self, machine, clock):
        machine.update(make_sample(RUN))
        machine.update(make_sample(IDLE))
        clock.advance(6)
        machine.update(make_sample(RUN))
        clock.advance(6)
        assert machine.update(make_sample(IDLE)) == []
        clock.advance(10)
        assert _phases(machine.update(make_sample(IDLE)))[-1][1] is MissionPhase.COMPLETED

    def test_hintless_sample_does_not_reset_settle(self, machine, clock):
        machine.update(make_sample(RUN))
        machine.update(make_sample(IDLE))
        clock.advance(10)
        changes = machine.update(make_sample(None, battery=70))
        assert _phases(changes) == [(MissionPhase.RUNNING, MissionPhase.COMPLETED)]

    def test_return_dock_then_complete(self, machine, clock):
        machine.update(make_sample(RUN))
        machine.update(make_sample(RETURNING))
        changes = machine.update(make_sample(IDLE, docked=True))
        assert _phases(changes) == [(MissionPhase.RETURNING, MissionPhase.DOCKED)]

        clock.advance(10)
        changes = machine.update(make_sample(IDLE, docked=True))
        assert _phases(changes) == [(MissionPhase.DOCKED, MissionPhase.COMPLETED)]

    def test_settled_returning_confirms_dock_first(self, machine, clock):
        machine.update(make_sample(RUN))
        machine.update(make_sample(RETURNING))
        machine.update(make_sample(IDLE))
        clock.advance(10)
        assert _phases(machine.update(make_sample(IDLE, docked=True))) == [
            (MissionPhase.RETURNING, MissionPhase.DOCKED)
        ]
        assert _phases(machine.update(make_sample(IDLE, docked=True))) == [
            (MissionPhase.DOCKED, MissionPhase.COMPLETED)
        ]

    def test_completed_then_idle(self, machine, clock):
        machine.update(make_sample(RUN))
        machine.update(make_sample(IDLE))
        clock.advance(10)
        machine.update(make_sample(IDLE))

        changes = machine.update(make_sample(IDLE))
        assert _phases(changes) == [(MissionPhase.COMPLETED, MissionPhase.IDLE)]
        assert changes[0].mission_id is None
        assert changes[0].mission is None
        assert machine.phase is MissionPhase.IDLE


class TestError:
    def test_error_freezes_stats(self, machine, clock):
        machine.update(make_sample(RUN, battery=90))
        clock.advance(5)
        machine.update(make_sample(RUN, battery=80))
        mission = machine.mission
        clock.advance(5)

        update = machine.step(make_sample(PhaseHint.STUCK, battery=10, error_code=17))

        assert _phases(update.changes) == [(MissionPhase.RUNNING, MissionPhase.ERROR)]
        assert update.finished is mission
        change = update.changes[0]
        assert change.error_code == 17
        assert change.error_message == "Path blocked"
        assert change.stats.runtime == 5.0
        assert change.stats.battery_min == 80
        assert mission.phase is MissionPhase.ERROR
        assert mission.is_closed

    def test_error_from_paused_and_returning(self, machine):
        for hint in (PAUSE, RETURNING):
            machine.update(make_sample(RUN))
            machine.update(make_sample(hint))
            assert machine.update(make_sample(None, error_code=9))[-1].phase is MissionPhase.ERROR
            machine.update(make_sample(IDLE))

    def test_error_while_docked_ignored(self, machine):
        machine.update(make_sample(RUN))
        machine.update(make_sample(DOCKED))
        assert machine.update(make_sample(DOCKED, error_code=102)) == []
        assert machine.phase is MissionPhase.DOCKED

    def test_run_after_error_starts_new_mission(self, machine):
        machine.update(make_sample(RUN))
        first = machine.mission
        machine.update(make_sample(None, error_code=17))

        update = machine.step(make_sample(RUN))

        assert _phases(update.changes) == [
            (MissionPhase.ERROR, MissionPhase.IDLE),
            (MissionPhase.IDLE, MissionPhase.RUNNING),
        ]
        assert update.started is machine.mission
        assert machine.mission.mission_id != first.mission_id
        assert first.phase is MissionPhase.ERROR

    def test_pending_error_hint_does_not_reopen(self, machine):
        machine.update(make_sample(RUN))
        machine.update(make_sample(None, error_code=17))
        assert machine.update(make_sample(PhaseHint.STUCK, error_code=17)) == []
        assert machine.phase is MissionPhase.ERROR


class TestRuntime:
    def test_excludes_paused_and_docked(self, machine, clock):
        machine.update(make_sample(RUN))  # t=0
        clock.advance(10)
        machine.update(make_sample(PAUSE))  # +10 running
        clock.advance(30)
        machine.update(make_sample(RUN))  # paused, not counted
        clock.advance(5)
        machine.update(make_sample(RUN))  # +5
        clock.advance(5)
        machine.update(make_sample(RETURNING))  # +5
        clock.advance(10)
        machine.update(make_sample(DOCKED))  # +10 returning
        clock.advance(40)
        machine.update(make_sample(RUN))  # docked, not counted

        assert machine.mission.stats.runtime == pytest.approx(30.0)


class TestPosesAndArea:
    def test_poses_recorded_while_running_or_paused(self, machine):
        machine.update(make_sample(RUN, pose=(0, 0)))
        machine.update(make_sample(PAUSE, pose=(1, 0)))
        machine.update(make_sample(RETURNING, pose=(2, 0)))
        machine.update(make_sample(RETURNING, pose=(3, 0)))

        mission = machine.mission
        assert [(p.x, p.y) for p in mission.poses] == [(0, 0), (1, 0)]
        assert mission.stats.pose_count == 2

    def test_step_reports_recorded_pose(self, machine):
        update = machine.step(make_sample(RUN, pose=(5, 6), heading=90))
        assert update.pose is not None
        assert (update.pose.x, update.pose.y, update.pose.heading) == (5, 6, 90)

    def test_single_pose_has_no_area(self, machine):
        machine.update(make_sample(RUN, pose=(0, 0)))
        assert machine.mission.stats.area is None

    def test_area_from_displacement(self, machine):
        machine.update(make_sample(RUN, pose=(0, 0)))
        machine.update(make_sample(RUN, pose=(3, 4)))
        assert machine.mission.stats.area == pytest.approx(10.0)  # 5 units x width 2

    def test_suspect_pose_counted_by_default(self, machine):
        machine.update(make_sample(RUN, pose=(0, 0)))
        machine.update(make_sample(RUN, pose=(100, 0), suspect=True))
        machine.update(make_sample(RUN, pose=(6, 8)))

        stats = machine.mission.stats
        assert stats.pose_count == 3
        assert stats.valid_pose_count == 2
        assert stats.area > 20.0

    def test_suspect_pose_ignored_by_policy(self, clock):
        machine = MissionStateMachine(
            MissionConfig(coverage_width=2.0, suspect_pose_policy=SuspectPosePolicy.IGNORE),
            clock=clock,
        )
        machine.update(make_sample(RUN, pose=(0, 0)))
        machine.update(make_sample(RUN, pose=(100, 0), suspect=True))
        machine.update(make_sample(RUN, pose=(6, 8)))

        stats = machine.mission.stats
        assert stats.pose_count == 3
        assert stats.area == pytest.approx(20.0)

    def test_device_counters_tracked(self, machine):
        machine.update(make_sample(RUN, mission_minutes=4, area_sqft=30))
        machine.update(make_sample(RUN, battery=70, mission_minutes=5, area_sqft=41))
        machine.update(make_sample(RUN, battery=75))
        stats = machine.mission.stats
        assert (stats.device_minutes, stats.device_area_sqft) == (5, 41)
        assert (stats.battery_min, stats.battery_max) == (70, 75)


class TestReset:
    def test_reset_drops_open_mission(self, machine):
        machine.update(make_sample(RUN))
        machine.reset()
        assert machine.phase is MissionPhase.IDLE
        assert machine.mission is None

        changes = machine.update(make_sample(RUN))
        assert _phases(changes) == [(MissionPhase.IDLE, MissionPhase.RUNNING)]
