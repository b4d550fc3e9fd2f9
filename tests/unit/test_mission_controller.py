"""Unit tests for mission orchestration.

A teleporting physics stub moves every airborne agent straight onto its
target at the start of each tick, so phase timing can be checked without
flight dynamics.

Run with: pytest tests/unit/test_mission_controller.py -v
"""

import numpy as np
import pytest

from swarmnav.coordination import (
    FormationShape,
    MissionController,
    MissionPhase,
    PlanMode,
)
from swarmnav.core import EventType, FlightState, SwarmConfig


class Teleport:
    """Physics stub: airborne agents appear on their targets, landing agents on the ground."""

    def __init__(self, registry, ground_height=1.0):
        self.registry = registry
        self.ground_height = ground_height

    def position(self, agent_id):
        agent = self.registry.get(agent_id)
        if agent is None:
            return None
        if agent.state.is_landing:
            landed = agent.target_position.copy()
            landed[1] = self.ground_height
            return landed
        if agent.state.is_airborne:
            return agent.target_position.copy()
        return agent.position.copy()

    def velocity(self, agent_id):
        return np.zeros(3)


def quick_config(num_agents=5):
    config = SwarmConfig.for_testing(num_agents=num_agents)
    config.formation.hold_duration = 1.0
    config.mission.waypoint_reach_time = 3.0
    config.mission.waypoint_hold_time = 1.0
    return config


def run(controller, done, dt=0.05, limit=60.0):
    """Tick until done() or limit seconds pass; True if done."""
    end = controller.clock + limit
    while controller.clock < end:
        controller.tick(dt)
        if done():
            return True
    return False


@pytest.fixture
def mission():
    """Spawned controller wired to the teleport stub."""
    controller = MissionController(quick_config())
    controller.spawn()
    controller.physics = Teleport(controller.state.registry)
    return controller


@pytest.fixture
def airborne(mission):
    """Controller with every agent hovering at takeoff height."""
    mission.arm_and_takeoff()
    assert run(mission, lambda: mission.phase == MissionPhase.AIRBORNE)
    return mission


@pytest.fixture
def formed(airborne):
    """Controller holding a V formation."""
    airborne.form_formation(FormationShape.V)
    assert run(airborne, lambda: airborne.phase == MissionPhase.HOLDING)
    return airborne


class TestSpawn:
    """Tests for agent registration."""

    def test_spawn(self, controller):
        """Test spawning registers grounded agents and state machines."""
        assert controller.agent_count == 5
        assert len(controller.machines) == 5
        assert all(a.state == FlightState.GROUNDED for a in controller.state.registry)

    def test_spawn_twice(self, controller):
        """Test a spawned swarm can't be spawned again."""
        assert controller.spawn() == 0
        assert controller.agent_count == 5

    def test_spawn_respects_capacity(self):
        """Test extra agents beyond max_agents are refused."""
        config = SwarmConfig.for_testing(num_agents=2)
        config.max_agents = 2
        controller = MissionController(config)
        assert controller.spawn(4) == 2

    def test_register_during_flight(self, airborne):
        """Test registration is refused once the mission started."""
        assert not airborne.register_agent(99, (0.0, 1.0, 0.0))

    def test_negative_dt(self, controller):
        """Test tick rejects negative time steps."""
        with pytest.raises(ValueError):
            controller.tick(-0.1)


class TestTakeoff:
    """Tests for the staggered takeoff sequence."""

    def test_arm_then_launch_even_first(self, controller):
        """Test agents arm in order and launch evens before odds."""
        assert controller.arm_and_takeoff()
        assert controller.phase == MissionPhase.TAKEOFF

        controller.tick(0.0)
        states = [a.state for a in controller.state.registry]
        assert states[0] == FlightState.ARMED
        assert states[1] == FlightState.GROUNDED

        launched = []
        for _ in range(60):
            controller.tick(0.05)
            for agent in controller.state.registry:
                if agent.state == FlightState.TAKING_OFF and agent.agent_id not in launched:
                    launched.append(agent.agent_id)

        assert launched == [0, 2, 4, 1, 3]

    def test_airborne_after_settle(self, controller):
        """Test the phase becomes AIRBORNE once everyone had time to climb."""
        controller.arm_and_takeoff()
        assert run(controller, lambda: controller.phase == MissionPhase.AIRBORNE, limit=10.0)
        # 0.4 arming + 0.5 settle + 0.6 launches + 3.0 climb
        assert controller.clock == pytest.approx(4.5, abs=0.1)

    def test_takeoff_only_when_idle(self, airborne):
        """Test a second takeoff is rejected."""
        assert not airborne.arm_and_takeoff()

    def test_agents_hover_at_takeoff_height(self, airborne):
        """Test agents reach the takeoff height below formation altitude."""
        for agent in airborne.state.registry:
            assert agent.state == FlightState.HOVERING
            assert agent.altitude == pytest.approx(8.0)


class TestFormation:
    """Tests for formation assembly."""

    def test_v_formation_slots(self, formed):
        """Test the locked V puts every agent on its slot."""
        expected = [
            (0.0, 10.0, 0.0),
            (-4.0, 12.5, 0.0),
            (-8.0, 15.0, 0.0),
            (4.0, 12.5, 0.0),
            (8.0, 15.0, 0.0),
        ]
        applied = formed.state.applied_formation
        assert applied.shape == FormationShape.V
        for agent, slot in zip(formed.state.registry, expected):
            assert agent.position.tolist() == pytest.approx(slot)
            assert agent.state == FlightState.FORMATION_HOLD

    def test_formation_changed_event(self, formed):
        """Test locking a formation is announced with its quality."""
        events = formed.events.history(EventType.FORMATION_CHANGED)
        assert len(events) == 1
        assert events[0].data["shape"] == "v"
        assert events[0].data["agent_count"] == 5
        assert events[0].data["quality"] == pytest.approx(100.0)

    def test_staging_before_slots(self, airborne):
        """Test agents visit the staging ring before their slots."""
        airborne.form_formation(FormationShape.LINE)
        seen = set()
        for _ in range(40):
            airborne.tick(0.05)
            seen.update(a.state for a in airborne.state.registry)
        assert FlightState.STAGING in seen

    def test_vertical_skips_staging(self, airborne):
        """Test the column assembles without a staging ring."""
        airborne.form_formation(FormationShape.VERTICAL)
        seen = set()
        assert run(airborne, lambda: seen.update(a.state for a in airborne.state.registry) or airborne.phase == MissionPhase.HOLDING)
        assert FlightState.STAGING not in seen
        assert FlightState.FORMATION_MOVE in seen

    def test_too_few_slots_aborts(self, airborne):
        """Test a formation with fewer slots than agents changes nothing."""
        before = [a.state for a in airborne.state.registry]
        assert not airborne.execute_formation([(0.0, 10.0, 0.0), (5.0, 10.0, 0.0)])

        assert airborne.phase == MissionPhase.AIRBORNE
        assert [a.state for a in airborne.state.registry] == before
        assert airborne.sequencer.is_idle

    def test_formation_needs_flight(self, mission):
        """Test formations are rejected on the ground."""
        assert not mission.form_formation(FormationShape.V)

    def test_hold_expires(self, formed):
        """Test the swarm is ready again after the hold duration."""
        assert run(formed, lambda: formed.phase == MissionPhase.AIRBORNE, limit=2.0)

    def test_custom_formation(self, airborne):
        """Test custom point sets are flown at formation altitude."""
        points = [(0.0, 0.0, 0.0), (6.0, 0.0, 0.0), (12.0, 0.0, 0.0), (18.0, 0.0, 0.0), (24.0, 0.0, 0.0)]
        airborne.form_formation("custom", custom_points=points)
        assert run(airborne, lambda: airborne.phase == MissionPhase.HOLDING)
        assert all(a.altitude == pytest.approx(10.0) for a in airborne.state.registry)


class TestMorph:
    """Tests for formation morphing."""

    def test_morph_locks_new_shape(self, formed):
        """Test a morph ends with the new formation locked."""
        assert formed.morph_to(FormationShape.LINE, duration=2.0)
        assert formed.phase == MissionPhase.MORPHING

        assert run(formed, lambda: formed.phase == MissionPhase.HOLDING, limit=5.0)
        assert formed.state.applied_formation.shape == FormationShape.LINE
        assert len(formed.events.history(EventType.FORMATION_CHANGED)) == 2

    def test_morph_needs_formation(self, airborne):
        """Test morphing requires a formation to start from."""
        assert not airborne.morph_to(FormationShape.LINE)


class TestNavigation:
    """Tests for waypoint tours."""

    def test_full_tour(self, formed):
        """Test a tour reaches every waypoint and lands."""
        assert formed.start_navigation()
        assert formed.phase == MissionPhase.NAVIGATING

        assert run(formed, lambda: formed.phase == MissionPhase.COMPLETE)

        report = formed.report
        assert report.completed_waypoints == 2
        assert report.timing_violations == 0
        assert len(formed.events.history(EventType.WAYPOINT_REACHED)) == 2
        assert len(formed.events.history(EventType.MISSION_COMPLETE)) == 1
        assert all(a.state == FlightState.GROUNDED for a in formed.state.registry)
        assert all(wp.reached for wp in formed.tour.waypoints)

    def test_tour_keeps_formation_shape(self, formed):
        """Test agents fly the tour in the applied formation's shape."""
        formed.start_navigation([(30.0, 10.0, 30.0)])
        formed.tick(0.05)

        center = formed.state.registry.positions().mean(axis=0)
        assert center.tolist() == pytest.approx([30.0, 10.0, 30.0])

    def test_timing_violation(self, airborne):
        """Test a swarm that never arrives still progresses after T1."""
        airborne.physics = None
        airborne.start_navigation([(30.0, None, 30.0)])

        assert run(airborne, lambda: airborne.report.completed_waypoints == 1, limit=5.0)
        assert airborne.report.timing_violations == 1
        assert airborne.report.partial_success
        events = airborne.events.history(EventType.TIMING_VIOLATION)
        assert len(events) == 1
        assert events[0].data["elapsed"] == pytest.approx(3.0, abs=0.06)

    def test_empty_tour_rejected(self, airborne):
        """Test a tour needs at least one waypoint."""
        assert not airborne.start_navigation([])
        assert airborne.phase == MissionPhase.AIRBORNE

    def test_navigation_needs_flight(self, mission):
        """Test tours are rejected on the ground."""
        assert not mission.start_navigation()


class TestCommunicationLoss:
    """Tests for losing the control link mid-mission."""

    def test_loss_mid_tour(self, formed):
        """Test agents go autonomous and the link is never queried again."""
        formed.start_navigation()
        assert run(formed, lambda: formed.report.completed_waypoints == 1)

        assert formed.trigger_communication_loss()
        requests = formed.state.link.request_count
        assert all(a.autonomous for a in formed.state.registry)

        assert run(formed, lambda: formed.phase == MissionPhase.COMPLETE)

        assert formed.state.link.request_count == requests
        for fsm in formed.machines.values():
            assert fsm.last_plan.mode == PlanMode.AUTONOMOUS
        assert formed.report.communication_lost
        assert formed.report.completed_waypoints == 2

    def test_status_event(self, airborne):
        """Test the loss is announced once."""
        airborne.trigger_communication_loss("jammed")
        assert not airborne.trigger_communication_loss()

        events = airborne.events.history(EventType.COMMUNICATION_STATUS)
        assert len(events) == 1
        assert events[0].data["active"] is False
        assert events[0].data["reason"] == "jammed"
        assert events[0].data["autonomous_agents"] == 5

    def test_automatic_loss(self):
        """Test the configured timeout cuts the link during the tour."""
        config = quick_config()
        config.mission.communication_loss_after = 2.0
        controller = MissionController(config)
        controller.spawn()
        controller.physics = Teleport(controller.state.registry)
        controller.arm_and_takeoff()
        assert run(controller, lambda: controller.phase == MissionPhase.AIRBORNE)

        # The timer only starts with the tour
        assert not controller.communication_lost
        controller.start_navigation()
        started = controller.clock

        assert run(controller, lambda: controller.communication_lost, limit=3.0)
        assert controller.communication_lost_at - started == pytest.approx(2.0, abs=0.06)
        assert controller.report.communication_loss_reason == "timeout"
        assert not controller.state.link.active


class TestLandingAndRestart:
    """Tests for aborting and resetting."""

    def test_land_all(self, formed):
        """Test land_all grounds everyone and returns to IDLE."""
        assert formed.land_all()
        assert formed.phase == MissionPhase.LANDING

        assert run(formed, lambda: formed.phase == MissionPhase.IDLE, limit=5.0)
        assert not formed.is_flying

    def test_land_all_on_ground(self, mission):
        """Test there is nothing to land before takeoff."""
        assert not mission.land_all()

    def test_restart(self, formed):
        """Test restart forgets agents, formations and link state."""
        formed.trigger_communication_loss()
        formed.restart()

        assert formed.agent_count == 0
        assert formed.phase == MissionPhase.IDLE
        assert formed.clock == 0.0
        assert formed.state.applied_formation is None
        assert formed.state.link.active
        assert not formed.communication_lost
        assert formed.events.history() == []

        assert formed.spawn() == 5
        formed.trigger_communication_loss()
        assert len(formed.events.history(EventType.COMMUNICATION_STATUS)) == 1


class TestStatistics:
    """Tests for telemetry."""

    def test_statistics_while_holding(self, formed):
        """Test formation accuracy and state counts."""
        stats = formed.get_statistics()

        assert stats["phase"] == "holding"
        assert stats["agents"] == 5
        assert stats["states"] == {"formation_hold": 5}
        assert stats["formation_accuracy"] == pytest.approx(100.0)
        assert stats["communication_health"] == pytest.approx(100.0)
        assert stats["autonomous_agents"] == 0
        assert stats["mission_progress"] == 0.0

    def test_statistics_after_mission(self, formed):
        """Test progress and health after a mission with link loss."""
        formed.start_navigation()
        formed.trigger_communication_loss()
        assert run(formed, lambda: formed.phase == MissionPhase.COMPLETE)

        stats = formed.get_statistics()
        assert stats["mission_progress"] == pytest.approx(100.0)
        assert stats["communication_health"] == 0.0
        assert stats["autonomous_agents"] == 5
        assert stats["total_mission_time"] > 0.0

    def test_snapshot(self, controller):
        """Test per-agent snapshots."""
        snapshot = controller.snapshot()
        assert len(snapshot) == 5
        assert snapshot[0]["state"] == "grounded"
