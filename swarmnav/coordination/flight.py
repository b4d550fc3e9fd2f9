"""Per-agent flight state machine.

Turns the agent's state, its distance to target and the planner's output
into a ControlCommand each tick. The command is everything the physics
collaborator needs: a unit movement direction with a force magnitude, a
vertical thrust, and occasionally a one-shot recovery impulse.

Vertical and horizontal control are independent. Vertical thrust is a
clamped proportional controller around the state's target height;
horizontal force comes from the planner while moving, from a stiffer
position-error controller while holding formation, and from simple
station keeping while hovering.
"""

import logging
import random
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..core.agent import Agent, FlightState
from ..core.config import FlightConfig
from ..core.geometry import (
    UP,
    as_vec3,
    clamp,
    horizontal,
    normalize,
    random_in_unit_sphere,
)
from .planner import PlanResult, SafePathPlanner

logger = logging.getLogger(__name__)


@dataclass
class ControlCommand:
    """Output of one control tick for one agent.

    Attributes:
        agent_id: Agent the command is for
        state: Flight state after this tick's transitions
        direction: Unit movement direction, or zero for no movement
        force: Magnitude to apply along direction
        vertical_thrust: Lift command (hover_thrust holds altitude)
        impulse: One-shot stuck-recovery impulse, if any
        zero_velocity: Physics should zero the agent's velocity (touchdown)
    """
    agent_id: int
    state: FlightState
    direction: np.ndarray
    force: float = 0.0
    vertical_thrust: float = 0.0
    impulse: Optional[np.ndarray] = None
    zero_velocity: bool = False

    @property
    def movement_force(self) -> np.ndarray:
        return self.direction * self.force


class FlightStateMachine:
    """Finite-state controller for one agent.

    Commands return True when accepted. A command issued in the wrong
    state is logged and ignored; it never changes state.

    Example:
        fsm = FlightStateMachine(agent, planner)
        fsm.arm()
        fsm.take_off(8.0)
        command = fsm.update(dt=0.02)
    """

    def __init__(
        self,
        agent: Agent,
        planner: SafePathPlanner,
        config: Optional[FlightConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.agent = agent
        self.planner = planner
        self.config = config or FlightConfig()
        self._rng = rng or random.Random()

        self.target_height = agent.altitude
        self.last_plan: Optional[PlanResult] = None

        self._stuck_timer = 0.0
        self._stuck_anchor = agent.position.copy()
        self.recoveries = 0

    @property
    def agent_id(self) -> int:
        return self.agent.agent_id

    @property
    def state(self) -> FlightState:
        return self.agent.state

    @property
    def autonomous(self) -> bool:
        return self.agent.autonomous

    # Commands

    def arm(self) -> bool:
        if self.state != FlightState.GROUNDED:
            return self._reject("arm", "not grounded")
        self._transition(FlightState.ARMED)
        return True

    def take_off(self, height: float) -> bool:
        """Climb to height. Only accepted when armed."""
        if self.state != FlightState.ARMED:
            return self._reject("take_off", "not armed")
        self.target_height = height
        pos = self.agent.position
        self.agent.target_position = np.array([pos[0], height, pos[2]])
        self._transition(FlightState.TAKING_OFF)
        return True

    def move_to_staging(self, position) -> bool:
        if not self._can_move("move_to_staging"):
            return False
        target = as_vec3(position)
        self.agent.staging_position = target.copy()
        self._set_target(target)
        self._transition(FlightState.STAGING)
        return True

    def move_to_formation(self, position, fast: bool = False) -> bool:
        """Fly to a formation slot, optionally in fast mode."""
        if not self._can_move("move_to_formation"):
            return False
        self._set_target(as_vec3(position))
        self._transition(FlightState.FAST_FORMATION_MOVE if fast else FlightState.FORMATION_MOVE)
        return True

    def navigate_to(self, position) -> bool:
        if not self._can_move("navigate_to"):
            return False
        self._set_target(as_vec3(position))
        self._transition(FlightState.NAVIGATION_MOVE)
        return True

    def retarget(self, position) -> bool:
        """Move the current target without changing state."""
        if not self._can_move("retarget"):
            return False
        self._set_target(as_vec3(position))
        return True

    def lock_formation(self) -> bool:
        """Switch to precision hold on the current target."""
        if not self._can_move("lock_formation"):
            return False
        if self.state != FlightState.FORMATION_HOLD:
            self._transition(FlightState.FORMATION_HOLD)
        return True

    def unlock_formation(self) -> bool:
        if self.state != FlightState.FORMATION_HOLD:
            return self._reject("unlock_formation", "not holding")
        self._transition(FlightState.HOVERING)
        return True

    def land(self) -> bool:
        if not self.state.is_airborne:
            return self._reject("land", "not airborne")
        self.target_height = self.config.landing_target_height
        self._transition(FlightState.LANDING)
        return True

    def fast_land(self, target=None) -> bool:
        """Descend quickly while drifting toward target (current target if None)."""
        if not self.state.is_airborne:
            return self._reject("fast_land", "not airborne")
        if target is not None:
            self.agent.target_position = as_vec3(target)
        self.target_height = self.config.landing_target_height
        self._transition(FlightState.FAST_LANDING)
        return True

    def set_autonomous(self, enabled: bool = True) -> None:
        """Use the link-free avoidance routine instead of the networked planner."""
        if self.agent.autonomous != enabled:
            logger.info(f"Agent {self.agent_id}: autonomous mode {'on' if enabled else 'off'}")
        self.agent.autonomous = enabled

    # Control loop

    def update(self, dt: float) -> ControlCommand:
        """Advance one control tick.

        Args:
            dt: Tick duration (seconds)

        Returns:
            ControlCommand for the physics collaborator
        """
        a = self.agent
        cfg = self.config

        if not a.state.is_airborne:
            self._reset_stuck()
            return ControlCommand(agent_id=a.agent_id, state=a.state, direction=np.zeros(3))

        if a.state == FlightState.TAKING_OFF and a.altitude >= self.target_height - cfg.takeoff_tolerance:
            self._transition(FlightState.HOVERING)

        if a.state.is_landing and a.altitude <= cfg.landing_altitude:
            self._transition(FlightState.GROUNDED)
            self._reset_stuck()
            return ControlCommand(
                agent_id=a.agent_id,
                state=a.state,
                direction=np.zeros(3),
                zero_velocity=True,
            )

        direction, force = self._horizontal_control()
        thrust = self._vertical_thrust()
        impulse = self._check_stuck(dt)

        return ControlCommand(
            agent_id=a.agent_id,
            state=a.state,
            direction=direction,
            force=force,
            vertical_thrust=thrust,
            impulse=impulse,
        )

    def _vertical_thrust(self) -> float:
        cfg = self.config
        hover = cfg.hover_thrust
        state = self.state
        error = self.target_height - self.agent.altitude

        if state == FlightState.TAKING_OFF:
            return cfg.thrust_force * cfg.takeoff_boost
        if state.is_landing:
            return hover * cfg.landing_thrust_fraction
        if state == FlightState.FORMATION_HOLD:
            low, high = cfg.hold_clamp
            return clamp(hover + error * cfg.hold_gain, hover * low, hover * high)

        low, high = cfg.hover_clamp
        return clamp(hover + error * cfg.hover_gain, hover * low, hover * high)

    def _horizontal_control(self):
        cfg = self.config
        state = self.state
        d = self.agent.distance_to_target

        arrival = {
            FlightState.STAGING: cfg.staging_arrival,
            FlightState.FORMATION_MOVE: cfg.formation_arrival,
            FlightState.FAST_FORMATION_MOVE: cfg.fast_formation_arrival,
            FlightState.NAVIGATION_MOVE: cfg.navigation_arrival,
        }
        if state in arrival and d < arrival[state]:
            self._transition(FlightState.HOVERING)
            state = FlightState.HOVERING

        if state == FlightState.FAST_FORMATION_MOVE:
            return self._fast_movement(d)
        if state.is_moving:
            return self._smart_movement()
        if state == FlightState.FORMATION_HOLD:
            return self._precision_hold()
        if state == FlightState.HOVERING:
            return self._station_keeping()
        if state == FlightState.FAST_LANDING:
            error = horizontal(self.agent.target_position - self.agent.position)
            if np.linalg.norm(error) < cfg.hover_deadband:
                return np.zeros(3), 0.0
            return normalize(error), cfg.move_force * 0.5

        # Taking off and landing: vertical only
        return np.zeros(3), 0.0

    def _smart_movement(self):
        a = self.agent
        plan = self.planner.plan(a.agent_id, a.position, a.target_position, autonomous=a.autonomous)
        self.last_plan = plan
        return plan.direction, self.config.move_force * plan.force_scale

    def _fast_movement(self, d: float):
        cfg = self.config
        a = self.agent
        scale = SafePathPlanner.movement_scale(d, 1.5, 1.0, 2.5)
        force = cfg.move_force * cfg.fast_mode_multiplier * scale

        if a.autonomous:
            plan = self.planner.plan(a.agent_id, a.position, a.target_position, autonomous=True)
            self.last_plan = plan
            return plan.direction, force

        goal = normalize(a.target_position - a.position)
        avoidance = self._basic_avoidance()
        direction = normalize(goal + avoidance * cfg.fast_avoidance_blend)
        return (direction if direction.any() else goal), force

    def _basic_avoidance(self) -> np.ndarray:
        cfg = self.config
        a = self.agent
        push = np.zeros(3)
        for n in self.planner.state.registry.neighbors(a.position, cfg.basic_avoidance_radius, exclude_id=a.agent_id):
            if n.distance < cfg.basic_avoidance_margin:
                push += normalize(a.position - n.position) * (cfg.basic_avoidance_margin - n.distance)
        return push

    def _precision_hold(self):
        cfg = self.config
        error = horizontal(self.agent.target_position - self.agent.position)
        magnitude = float(np.linalg.norm(error))
        if magnitude < cfg.hold_deadband:
            return np.zeros(3), 0.0
        force = clamp(magnitude * cfg.hold_position_gain, cfg.hold_min_force, cfg.move_force * cfg.hold_max_force_fraction)
        return error / magnitude, force

    def _station_keeping(self):
        cfg = self.config
        error = horizontal(self.agent.target_position - self.agent.position)
        magnitude = float(np.linalg.norm(error))
        if magnitude < cfg.hover_deadband:
            return np.zeros(3), 0.0
        return error / magnitude, clamp(magnitude * 2.0, 0.5, cfg.move_force)

    def _check_stuck(self, dt: float) -> Optional[np.ndarray]:
        """One-shot impulse when an agent has barely moved for too long.

        Holding agents are expected to sit still, and so is a hovering agent
        already on its target.
        """
        cfg = self.config
        a = self.agent

        if a.state == FlightState.FORMATION_HOLD or (
            a.state == FlightState.HOVERING and a.distance_to_target < cfg.hover_deadband
        ):
            self._reset_stuck()
            return None

        if np.linalg.norm(a.position - self._stuck_anchor) >= cfg.stuck_threshold:
            self._reset_stuck()
            return None

        self._stuck_timer += dt
        if self._stuck_timer <= cfg.stuck_duration:
            return None

        impulse = (
            UP * cfg.thrust_force * cfg.stuck_vertical_fraction
            + horizontal(random_in_unit_sphere(self._rng)) * cfg.move_force * cfg.stuck_horizontal_fraction
        )
        self.recoveries += 1
        logger.info(f"Agent {a.agent_id}: stuck for {self._stuck_timer:.1f}s in {a.state.value}, applying recovery impulse")
        self._reset_stuck()
        return impulse

    def _reset_stuck(self) -> None:
        self._stuck_timer = 0.0
        self._stuck_anchor = self.agent.position.copy()

    # Helpers

    def _can_move(self, command: str) -> bool:
        if not self.state.is_airborne:
            return self._reject(command, "not airborne")
        if self.state.is_landing:
            return self._reject(command, "landing")
        return True

    def _set_target(self, target: np.ndarray) -> None:
        self.agent.target_position = target
        self.target_height = float(target[1])

    def _transition(self, new_state: FlightState) -> None:
        old = self.agent.state
        self.agent.state = new_state
        logger.debug(f"Agent {self.agent_id}: {old.value} -> {new_state.value}")

    def _reject(self, command: str, reason: str) -> bool:
        logger.warning(f"Agent {self.agent_id}: {command} rejected in {self.state.value} ({reason})")
        return False
