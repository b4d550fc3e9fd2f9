"""Mission orchestration for a simulated swarm.

The controller owns the agents and their state machines and sequences the
mission phases. Nothing here blocks: every "wait N seconds" is a queued
step, and the host advances everything with tick(dt). Per tick, the
controller:

1. Pulls positions/velocities from the physics collaborator (if attached)
2. Fires the automatic communication cut when its time has come
3. Runs any sequencer steps that came due
4. Advances the waypoint tour or formation morph
5. Updates every state machine, in registration order

and returns one ControlCommand per agent.
"""

import logging
import random
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from ..core.config import SwarmConfig
from ..core.events import EventType
from ..core.geometry import as_points, as_vec3
from .flight import ControlCommand, FlightStateMachine
from .formations import (
    Formation,
    FormationShape,
    FormationTransition,
    visiting_order,
)
from .missions import (
    MissionReport,
    NavigationTour,
    Waypoint,
    navigation_offsets,
)
from .planner import SafePathPlanner
from .sequencer import StepSequencer
from .state import SwarmState

logger = logging.getLogger(__name__)


class MissionPhase(Enum):
    """Swarm-level mission phase."""
    IDLE = "idle"
    TAKEOFF = "takeoff"
    AIRBORNE = "airborne"
    FORMING = "forming"
    HOLDING = "holding"
    MORPHING = "morphing"
    NAVIGATING = "navigating"
    FINAL_APPROACH = "final_approach"
    LANDING = "landing"
    COMPLETE = "complete"


# Phases in which a new formation, morph or tour may start
READY_PHASES = (MissionPhase.AIRBORNE, MissionPhase.HOLDING)


class MissionController:
    """Main orchestrator for swarm missions.

    Example:
        controller = MissionController(SwarmConfig(num_agents=5), physics=model)
        controller.spawn()
        controller.arm_and_takeoff()
        while controller.phase != MissionPhase.AIRBORNE:
            model.apply(controller.tick(0.05), 0.05)

        controller.form_formation(FormationShape.V)
        ...
        controller.start_navigation()
    """

    def __init__(
        self,
        config: Optional[SwarmConfig] = None,
        state: Optional[SwarmState] = None,
        physics=None,
    ):
        """Initialize mission controller.

        Args:
            config: Swarm configuration (uses the state's, or defaults, if None)
            state: Shared swarm state (created if None)
            physics: Optional collaborator with position(id) and velocity(id)
        """
        if config is None:
            config = state.config if state is not None else SwarmConfig()
        config.validate()

        self.config = config
        self.state = state or SwarmState(config)
        self.physics = physics
        self.events = self.state.events
        self.events.set_clock(lambda: self._clock)

        self.sequencer = StepSequencer()
        self._clock = 0.0
        self._reset_runtime()

    def _reset_runtime(self) -> None:
        seed = self.config.random_seed
        self._rng = random.Random(seed) if seed is not None else random.Random()
        self.planner = SafePathPlanner(
            self.state, self.config.planner, rng=random.Random(self._rng.random())
        )
        self.machines: Dict[int, FlightStateMachine] = {}
        for agent in self.state.registry:
            self._add_machine(agent.agent_id)

        self._phase = MissionPhase.IDLE
        self._tour: Optional[NavigationTour] = None
        self._transition: Optional[FormationTransition] = None
        self._transition_target: Optional[Formation] = None
        self._transition_elapsed = 0.0
        self.report: Optional[MissionReport] = None
        self._navigation_started_at: Optional[float] = None
        self.communication_lost_at: Optional[float] = None

        self.state.link.on_status_change(self._on_link_status)

    # ----- Properties -----

    @property
    def phase(self) -> MissionPhase:
        return self._phase

    @property
    def clock(self) -> float:
        """Mission time in seconds (sum of all tick durations)."""
        return self._clock

    @property
    def agent_count(self) -> int:
        return len(self.state.registry)

    @property
    def is_flying(self) -> bool:
        return any(a.state.is_airborne for a in self.state.registry)

    @property
    def communication_lost(self) -> bool:
        return self.communication_lost_at is not None

    @property
    def tour(self) -> Optional[NavigationTour]:
        return self._tour

    # ----- Agent registry -----

    def spawn(self, count: Optional[int] = None) -> int:
        """Register agents 0..count-1 on the ground spawn grid.

        Returns:
            Number of agents registered; extras beyond max_agents are refused
        """
        n = self.config.num_agents if count is None else count
        if n < 0:
            raise ValueError(f"Agent count must be >= 0, got {n}")
        if self._phase != MissionPhase.IDLE or len(self.state.registry) > 0:
            logger.warning("Swarm already spawned; restart before spawning again")
            return 0

        registered = 0
        for agent_id, position in enumerate(self.config.spawn_positions(n)):
            if self.register_agent(agent_id, position):
                registered += 1

        logger.info(f"Spawned {registered} agents")
        return registered

    def register_agent(self, agent_id: int, position) -> bool:
        """Add one agent. Refused mid-mission, for duplicates, and when full."""
        if self._phase != MissionPhase.IDLE:
            logger.warning(f"Cannot register agent {agent_id} during {self._phase.value}")
            return False
        if not self.state.registry.register(agent_id, position):
            return False
        self._add_machine(agent_id)
        return True

    def _add_machine(self, agent_id: int) -> None:
        seed = self.config.random_seed
        rng = random.Random(seed + agent_id) if seed is not None else random.Random()
        self.machines[agent_id] = FlightStateMachine(
            self.state.registry.get(agent_id),
            self.planner,
            self.config.flight,
            rng=rng,
        )

    # ----- Takeoff / landing -----

    def arm_and_takeoff(self, height: Optional[float] = None) -> bool:
        """Arm every agent, then launch even ids before odd ids.

        Args:
            height: Takeoff height (altitude minus takeoff margin if None)

        Returns:
            True if the sequence was queued
        """
        if not self.machines:
            logger.warning("No agents to take off")
            return False
        if self._phase != MissionPhase.IDLE:
            logger.warning(f"Takeoff rejected during {self._phase.value}")
            return False

        mission = self.config.mission
        target = self.config.takeoff_height if height is None else height

        self._set_phase(MissionPhase.TAKEOFF)
        logger.info(f"Arming {len(self.machines)} agents, takeoff to {target:.1f}")

        for k, fsm in enumerate(self.machines.values()):
            self.sequencer.schedule(0.0 if k == 0 else mission.arm_stagger, fsm.arm, f"arm {fsm.agent_id}")

        launch_order = [i for i in self.machines if i % 2 == 0] + [i for i in self.machines if i % 2 == 1]
        for k, agent_id in enumerate(launch_order):
            fsm = self.machines[agent_id]
            self.sequencer.schedule(
                mission.arm_settle if k == 0 else mission.takeoff_stagger,
                lambda fsm=fsm: fsm.take_off(target),
                f"takeoff {agent_id}",
            )

        self.sequencer.schedule(
            mission.takeoff_settle,
            lambda: self._set_phase(MissionPhase.AIRBORNE),
            "airborne",
        )
        return True

    def land_all(self) -> bool:
        """Abort whatever is running and land every airborne agent."""
        airborne = [fsm for fsm in self.machines.values() if fsm.state.is_airborne and not fsm.state.is_landing]
        if not airborne:
            logger.warning("No airborne agents to land")
            return False

        self.sequencer.clear()
        self._tour = None
        self._transition = None
        self._set_phase(MissionPhase.LANDING)
        logger.info(f"Landing {len(airborne)} agents")

        for k, fsm in enumerate(airborne):
            self.sequencer.schedule(
                0.0 if k == 0 else self.config.mission.land_stagger,
                fsm.land,
                f"land {fsm.agent_id}",
            )
        return True

    # ----- Formations -----

    def form_formation(
        self,
        shape,
        custom_points=None,
        altitude: Optional[float] = None,
        spacing: Optional[float] = None,
    ) -> bool:
        """Generate a formation and fly the swarm into it.

        Args:
            shape: FormationShape or its string value
            custom_points: Point set for CUSTOM formations
            altitude: Override the configured formation altitude
            spacing: Override the configured spacing

        Returns:
            True if the formation sequence was queued
        """
        shape = FormationShape.parse(shape)
        if not self._ready_for("formation"):
            return False

        formation = self.state.formations.generate_formation(
            shape,
            self.agent_count,
            altitude=altitude,
            spacing=spacing,
            custom_points=custom_points,
        )
        return self.execute_formation(formation.positions, shape)

    def execute_formation(self, positions, shape=FormationShape.CUSTOM) -> bool:
        """Fly the swarm into an explicit set of slots.

        Staging on a ring around the formation comes first, except for the
        vertical column, which assembles directly. Slots are then handed out
        in the shape's visiting order, and once everyone had time to settle
        all agents lock into formation hold.

        Returns:
            False (nothing changes) if there are fewer slots than agents
        """
        shape = FormationShape.parse(shape)
        if not self._ready_for("formation"):
            return False

        slots = as_points(positions)
        n = self.agent_count
        if len(slots) < n:
            logger.warning(
                f"Formation aborted: {len(slots)} positions for {n} agents"
            )
            return False

        formation = Formation(shape=shape, positions=slots[:n].copy())
        mission = self.config.mission
        ids = self.state.registry.ids
        order = visiting_order(shape, n)

        self.sequencer.clear()
        self._set_phase(MissionPhase.FORMING)
        logger.info(f"Forming {shape.value} formation with {n} agents")

        if shape == FormationShape.VERTICAL:
            for k, slot in enumerate(order):
                self._schedule_slot(ids[slot], formation.positions[slot], 0.0 if k == 0 else mission.vertical_stagger)
        else:
            staging = self.state.formations.circular_staging(formation.positions, n)
            for k, agent_id in enumerate(ids):
                fsm = self.machines[agent_id]
                self.sequencer.schedule(
                    0.0 if k == 0 else mission.staging_stagger,
                    lambda fsm=fsm, p=staging[k]: fsm.move_to_staging(p),
                    f"stage {agent_id}",
                )
            for k, slot in enumerate(order):
                self._schedule_slot(
                    ids[slot],
                    formation.positions[slot],
                    mission.staging_settle if k == 0 else mission.formation_stagger,
                )

        self.sequencer.schedule(
            mission.formation_settle,
            lambda: self._lock_formation(formation),
            "lock formation",
        )
        return True

    def _schedule_slot(self, agent_id: int, position: np.ndarray, delay: float) -> None:
        fsm = self.machines[agent_id]
        self.sequencer.schedule(
            delay,
            lambda: fsm.move_to_formation(position),
            f"slot {agent_id}",
        )

    def _lock_formation(self, formation: Formation) -> None:
        for fsm in self.machines.values():
            fsm.lock_formation()

        self.state.apply_formation(formation)
        quality = self.state.formations.quality(self.state.registry.positions(), formation.positions)
        logger.info(f"{formation.shape.value} formation locked (quality {quality:.1f}%)")
        self.events.emit(
            EventType.FORMATION_CHANGED,
            shape=formation.shape.value,
            agent_count=formation.agent_count,
            center=formation.center.tolist(),
            quality=quality,
        )

        self._set_phase(MissionPhase.HOLDING)
        self.sequencer.schedule(
            self.config.formation.hold_duration,
            lambda: self._set_phase(MissionPhase.AIRBORNE),
            "hold complete",
        )

    def morph_to(self, shape, duration: float = 5.0, custom_points=None) -> bool:
        """Smoothly slide every agent from the current formation to a new one.

        Requires an applied formation to start from. Targets move along a
        cosine-eased path; the new formation is locked at the end.
        """
        shape = FormationShape.parse(shape)
        if not self._ready_for("morph"):
            return False
        current = self.state.applied_formation
        if current is None or not current.fits(self.agent_count):
            logger.warning("Morph rejected: no applied formation to start from")
            return False

        target = self.state.formations.generate_formation(
            shape, self.agent_count, custom_points=custom_points
        )
        self.sequencer.clear()
        self._transition = FormationTransition(
            start_positions=current.positions,
            end_positions=target.positions,
            duration=duration,
        )
        self._transition_target = target
        self._transition_elapsed = 0.0

        for agent_id, position in zip(self.state.registry.ids, current.positions):
            self.machines[agent_id].move_to_formation(position)

        self._set_phase(MissionPhase.MORPHING)
        logger.info(f"Morphing {current.shape.value} -> {shape.value} over {duration:.1f}s")
        return True

    def _update_morph(self, dt: float) -> None:
        self._transition_elapsed += dt
        targets = self._transition.get_positions_at_time(self._transition_elapsed)
        for agent_id, target in zip(self.state.registry.ids, targets):
            self.machines[agent_id].retarget(target)

        if self._transition.is_complete(self._transition_elapsed):
            formation = self._transition_target
            self._transition = None
            self._transition_target = None
            self._lock_formation(formation)

    # ----- Navigation -----

    def start_navigation(self, waypoints: Optional[List] = None, landing_target=None) -> bool:
        """Start a waypoint tour that ends with a landing.

        Args:
            waypoints: Waypoint objects or (x, y, z) tuples; the configured
                default tour if None. A y of None means formation altitude.
            landing_target: Where to land afterwards (configured default if None)

        Returns:
            True if the tour started
        """
        if not self._ready_for("navigation"):
            return False

        mission = self.config.mission
        altitude = self.config.formation.altitude
        raw = mission.default_waypoints if waypoints is None else waypoints
        tour_points = [
            wp if isinstance(wp, Waypoint) else Waypoint.from_point(
                wp, altitude, mission.waypoint_reach_time, mission.waypoint_hold_time
            )
            for wp in raw
        ]
        if not tour_points:
            logger.warning("Navigation rejected: no waypoints")
            return False

        offsets = navigation_offsets(
            self.state.applied_formation,
            self.agent_count,
            self.config.formation.spacing,
            mission.navigation_min_spacing,
            mission.navigation_height_step,
        )
        landing = as_vec3(mission.landing_target if landing_target is None else landing_target)

        self.sequencer.clear()
        self._tour = NavigationTour(tour_points, offsets, landing)
        self.report = MissionReport(started_at=self._clock, total_waypoints=len(tour_points))
        if self.communication_lost:
            self.report.communication_lost_at = self.communication_lost_at
        self._navigation_started_at = self._clock

        self._set_phase(MissionPhase.NAVIGATING)
        logger.info(f"Navigation started: {len(tour_points)} waypoints")
        self._dispatch_waypoint()
        return True

    def _dispatch_waypoint(self) -> None:
        wp = self._tour.current_waypoint
        logger.info(f"Heading to {wp} ({self._tour.index + 1}/{len(self._tour.waypoints)})")
        for agent_id, target in zip(self.state.registry.ids, self._tour.targets()):
            self.machines[agent_id].navigate_to(target)

    def _update_navigation(self, dt: float) -> None:
        tour = self._tour
        mission = self.config.mission

        result = tour.update(
            dt,
            self.state.registry.positions(),
            mission.waypoint_tolerance,
            mission.success_threshold,
        )

        if result is not None:
            self.report.results.append(result)
            wp = tour.current_waypoint
            if result.timing_violation:
                logger.warning(
                    f"{wp}: T1 of {wp.reach_time:.1f}s exceeded with only "
                    f"{result.success_fraction:.0%} in position, continuing"
                )
                self.events.emit(
                    EventType.TIMING_VIOLATION,
                    index=result.index,
                    elapsed=result.elapsed,
                    success_fraction=result.success_fraction,
                )
            else:
                wp.mark_reached(self._clock)
                logger.info(f"{wp} reached by {result.success_fraction:.0%} of agents in {result.elapsed:.1f}s")
                self.events.emit(
                    EventType.WAYPOINT_REACHED,
                    index=result.index,
                    elapsed=result.elapsed,
                    success_fraction=result.success_fraction,
                )
            for fsm in self.machines.values():
                fsm.lock_formation()
            return

        if tour.hold_complete():
            if tour.advance():
                self._dispatch_waypoint()
            else:
                self._begin_final_approach()

    def _begin_final_approach(self) -> None:
        self._set_phase(MissionPhase.FINAL_APPROACH)
        targets = self._tour.landing_targets(self.config.formation.altitude)
        for agent_id, target in zip(self.state.registry.ids, targets):
            self.machines[agent_id].navigate_to(target)
        self.sequencer.schedule(self.config.mission.final_approach_time, self._begin_landing, "final landing")

    def _begin_landing(self) -> None:
        self._set_phase(MissionPhase.LANDING)
        ground = float(self._tour.landing_target[1])
        for agent_id, target in zip(self.state.registry.ids, self._tour.landing_targets(ground)):
            target[1] = ground
            self.machines[agent_id].fast_land(target)
        self.sequencer.schedule(self.config.mission.landing_time, self._complete_mission, "mission complete")

    def _complete_mission(self) -> None:
        self.report.finished_at = self._clock
        summary = self.report.summary()
        self._set_phase(MissionPhase.COMPLETE)
        logger.info(
            f"Mission complete: {summary['completed_waypoints']}/{summary['total_waypoints']} waypoints, "
            f"{summary['timing_violations']} timing violations, {summary['duration']:.1f}s"
        )
        self.events.emit(EventType.MISSION_COMPLETE, **summary)

    # ----- Communication loss -----

    def trigger_communication_loss(self, reason: str = "manual") -> bool:
        """Cut the link for the rest of the mission.

        Every agent switches to autonomous avoidance and the global link
        switch goes off. There is no reconnection.

        Returns:
            False if the link was already lost
        """
        if self.communication_lost:
            return False

        self.communication_lost_at = self._clock
        for fsm in self.machines.values():
            fsm.set_autonomous(True)
        if self.report is not None:
            self.report.communication_lost_at = self._clock
            self.report.communication_loss_reason = reason

        self.state.link.deactivate(reason)
        return True

    def _on_link_status(self, active: bool, reason: str) -> None:
        self.events.emit(
            EventType.COMMUNICATION_STATUS,
            active=active,
            reason=reason,
            autonomous_agents=sum(1 for a in self.state.registry if a.autonomous),
        )

    def _check_communication_timeout(self) -> None:
        after = self.config.mission.communication_loss_after
        if after is None or self.communication_lost or self._navigation_started_at is None:
            return
        if self._clock - self._navigation_started_at >= after:
            logger.warning(f"Communication lost {after:.1f}s into the mission")
            self.trigger_communication_loss("timeout")

    # ----- Control loop -----

    def tick(self, dt: float) -> Dict[int, ControlCommand]:
        """Advance the whole swarm by dt seconds.

        Returns:
            ControlCommand per agent id, in registration order
        """
        if dt < 0:
            raise ValueError(f"dt must be >= 0, got {dt}")

        self._clock += dt
        if self.physics is not None:
            self.state.registry.sync_from(self.physics)

        self._check_communication_timeout()
        self.sequencer.tick(dt)

        if self._phase == MissionPhase.NAVIGATING and self._tour is not None:
            self._update_navigation(dt)
        elif self._phase == MissionPhase.MORPHING and self._transition is not None:
            self._update_morph(dt)

        commands = {
            agent.agent_id: self.machines[agent.agent_id].update(dt)
            for agent in self.state.registry
        }

        if (
            self._phase == MissionPhase.LANDING
            and self._tour is None
            and self.sequencer.is_idle
            and not self.is_flying
        ):
            self._set_phase(MissionPhase.IDLE)

        return commands

    def restart(self) -> None:
        """Forget every agent, formation, tour and timer at once."""
        self.sequencer.clear()
        self.state.reset()
        self._clock = 0.0
        self._reset_runtime()
        logger.info("Mission controller restarted")

    # ----- Telemetry -----

    def get_statistics(self) -> dict:
        """Swarm-wide telemetry snapshot."""
        applied = self.state.applied_formation
        if applied is not None and applied.fits(self.agent_count):
            accuracy = self.state.formations.quality(self.state.registry.positions(), applied.positions)
        else:
            accuracy = 0.0

        link = self.state.link
        completed = self.report.completed_waypoints if self.report else 0
        total = self.report.total_waypoints if self.report else 0

        states: Dict[str, int] = {}
        for agent in self.state.registry:
            states[agent.state.value] = states.get(agent.state.value, 0) + 1

        return {
            "phase": self._phase.value,
            "agents": self.agent_count,
            "states": states,
            "autonomous_agents": sum(1 for a in self.state.registry if a.autonomous),
            "formation_accuracy": accuracy,
            "communication_health": link.success_rate * 100.0 if link.active else 0.0,
            "completed_waypoints": completed,
            "mission_progress": 100.0 * completed / total if total else 0.0,
            "total_mission_time": self.report.duration(self._clock) if self.report else 0.0,
            "link": link.get_stats(),
            "events": self.events.counts(),
        }

    def snapshot(self) -> List[dict]:
        return [agent.to_dict() for agent in self.state.registry]

    # ----- Helpers -----

    def _ready_for(self, what: str) -> bool:
        if self._phase not in READY_PHASES:
            logger.warning(f"Cannot start {what} during {self._phase.value}")
            return False
        if not self.machines:
            logger.warning(f"Cannot start {what}: no agents")
            return False
        return True

    def _set_phase(self, phase: MissionPhase) -> None:
        if phase == self._phase:
            return
        old = self._phase
        self._phase = phase
        logger.info(f"Mission phase: {old.value} -> {phase.value}")
        self.events.emit(EventType.PHASE_CHANGED, old=old.value, new=phase.value)
