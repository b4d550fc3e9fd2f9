"""Potential-field collision avoidance for swarm agents.

Each call combines three pulls into one unit direction:

    normalize(attraction * (1 - w) + normalize(repulsion) * w
              + heuristic * heuristic_weight + clearance * clearance_gain)

where w is the avoidance weight derived from the local danger level.
Repulsion uses each neighbor's predicted position (position + velocity *
lookahead) so agents start moving apart before they close in.

Requests pass through the link simulator first. If the global link is
down, or the agent flies autonomously, the networked field is skipped
entirely and a short-range avoidance routine is used instead.
"""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set, Tuple

import numpy as np

from ..comms.link import LinkFailure
from ..core.config import PlannerConfig
from ..core.agent import NeighborInfo
from ..core.events import EventType
from ..core.geometry import (
    EPSILON,
    as_vec3,
    clamp,
    horizontal,
    horizontal_perpendicular,
    normalize,
    random_in_unit_sphere,
    vec3,
)
from .state import SwarmState

logger = logging.getLogger(__name__)

# Probe directions for the density heuristic: right, left, forward, back
PROBE_DIRECTIONS = (
    vec3(1.0, 0.0, 0.0),
    vec3(-1.0, 0.0, 0.0),
    vec3(0.0, 0.0, 1.0),
    vec3(0.0, 0.0, -1.0),
)


class PlanMode(Enum):
    """Which routine produced a direction."""
    NETWORKED = "networked"          # full potential field
    LINK_FALLBACK = "link_fallback"  # request failed, degraded + jitter
    DEGRADED = "degraded"            # global link switch is off
    AUTONOMOUS = "autonomous"        # agent flagged autonomous


@dataclass
class PlanResult:
    """Planner output for one agent and one tick."""
    direction: np.ndarray
    mode: PlanMode
    force_scale: float = 1.0
    danger_level: float = 0.0
    avoidance_weight: float = 0.0
    neighbor_count: int = 0
    link_failure: Optional[LinkFailure] = None
    threats: List[int] = field(default_factory=list)


class SafePathPlanner:
    """Safe movement directions for every agent in a swarm.

    Example:
        planner = SafePathPlanner(state)
        result = planner.plan(agent_id=0, current_pos=(0, 10, 0), target_pos=(10, 10, 0))
        force = result.direction * move_force * result.force_scale
    """

    def __init__(
        self,
        state: SwarmState,
        config: Optional[PlannerConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.state = state
        self.config = config or state.config.planner
        self.config.validate()

        if rng is not None:
            self._rng = rng
        elif state.config.random_seed is not None:
            self._rng = random.Random(state.config.random_seed)
        else:
            self._rng = random.Random()

        self._risk_pairs: Set[Tuple[int, int]] = set()

    def plan_movement(self, agent_id: int, current_pos, target_pos) -> np.ndarray:
        """The safe unit direction from current_pos toward target_pos."""
        return self.plan(agent_id, current_pos, target_pos).direction

    def plan(
        self,
        agent_id: int,
        current_pos,
        target_pos,
        autonomous: bool = False,
    ) -> PlanResult:
        """Plan one movement step.

        With the link up and no neighbor inside R_safe or the look-ahead
        corridor, the direction is exactly the attractive unit vector.

        Args:
            agent_id: Requesting agent
            current_pos: Agent position
            target_pos: Where the agent wants to go
            autonomous: Skip the link and use the degraded routine

        Returns:
            PlanResult with a unit (or zero, when already at target) direction
        """
        current = as_vec3(current_pos)
        target = as_vec3(target_pos)
        scale = self.movement_scale(float(np.linalg.norm(target - current)))

        if autonomous:
            return PlanResult(
                direction=self.degraded_direction(agent_id, current, target),
                mode=PlanMode.AUTONOMOUS,
                force_scale=scale,
            )

        if not self.state.link.active:
            return PlanResult(
                direction=self.degraded_direction(agent_id, current, target),
                mode=PlanMode.DEGRADED,
                force_scale=scale,
            )

        link = self.state.link.request(agent_id, current)
        if not link.success:
            return PlanResult(
                direction=self.fallback_direction(agent_id, current, target),
                mode=PlanMode.LINK_FALLBACK,
                force_scale=scale,
                link_failure=link.failure,
            )

        result = self._networked(agent_id, current, target)
        result.force_scale = scale
        return result

    def _networked(self, agent_id: int, current: np.ndarray, target: np.ndarray) -> PlanResult:
        cfg = self.config
        neighbors = self.state.registry.neighbors(
            current, cfg.communication_range, exclude_id=agent_id
        )
        self._track_collision_risk(agent_id, neighbors)

        threats = [n for n in neighbors if cfg.min_distance < n.distance < cfg.safety_radius]

        attractive = self.attractive_force(current, target)
        clearance = self.path_clearance(current, target, neighbors) * cfg.path_clearance_gain

        if not threats and not clearance.any():
            return PlanResult(
                direction=attractive,
                mode=PlanMode.NETWORKED,
                neighbor_count=len(neighbors),
            )

        repulsive = self.repulsive_force(current, neighbors)
        danger = self.danger_level(neighbors)
        weight = clamp(danger / cfg.danger_range, 0.0, 1.0)
        heuristic = (
            self.heuristic_bias(current, target, neighbors) if threats else np.zeros(3)
        )

        combined = (
            attractive * (1.0 - weight)
            + normalize(repulsive) * weight
            + heuristic * cfg.heuristic_weight
            + clearance
        )
        direction = normalize(combined)
        if not direction.any():
            direction = attractive

        if danger > 3.0:
            logger.warning(f"Agent {agent_id}: high danger level {danger:.2f} at {current.round(2).tolist()}")

        return PlanResult(
            direction=direction,
            mode=PlanMode.NETWORKED,
            danger_level=danger,
            avoidance_weight=weight,
            neighbor_count=len(neighbors),
            threats=[n.agent_id for n in threats],
        )

    def attractive_force(self, current_pos, target_pos) -> np.ndarray:
        """Unit vector toward the target (zero when already there)."""
        return normalize(as_vec3(target_pos) - as_vec3(current_pos))

    def repulsive_force(self, current_pos, neighbors: List[NeighborInfo]) -> np.ndarray:
        """Summed push away from the predicted positions of close neighbors.

        Only neighbors with min_distance < distance < safety_radius count;
        each contributes K * (R_safe - d) / R_safe along the direction from
        its predicted position to the agent.
        """
        cfg = self.config
        current = as_vec3(current_pos)
        force = np.zeros(3)

        for n in neighbors:
            if not cfg.min_distance < n.distance < cfg.safety_radius:
                continue
            predicted = n.position + n.velocity * cfg.lookahead_time
            away = normalize(current - predicted)
            force += away * cfg.avoidance_gain * (cfg.safety_radius - n.distance) / cfg.safety_radius

        return force

    def danger_level(self, neighbors: List[NeighborInfo]) -> float:
        """Proximity plus speed danger summed over neighbors inside R_safe."""
        cfg = self.config
        danger = 0.0
        for n in neighbors:
            if not cfg.min_distance < n.distance < cfg.safety_radius:
                continue
            proximity = (cfg.safety_radius - n.distance) / cfg.safety_radius
            speed = float(np.linalg.norm(n.velocity)) / cfg.max_expected_speed
            danger += proximity + cfg.speed_danger_weight * speed
        return danger

    def heuristic_bias(self, current_pos, target_pos, neighbors: List[NeighborInfo]) -> np.ndarray:
        """Nudge toward the least crowded cardinal direction in dense areas.

        Density is the neighbor count over density_normalizer. Above the
        threshold, each of the four horizontal directions is probed at
        probe_distance and the neighbors within probe_radius of the probe
        point are counted. Ties go to the direction best aligned with the
        goal.
        """
        cfg = self.config
        density = len(neighbors) / cfg.density_normalizer
        if density <= cfg.density_threshold:
            return np.zeros(3)

        current = as_vec3(current_pos)
        goal = self.attractive_force(current, target_pos)

        best, best_key = None, None
        for direction in PROBE_DIRECTIONS:
            probe = current + direction * cfg.probe_distance
            crowd = sum(
                1 for n in neighbors
                if np.linalg.norm(n.position - probe) < cfg.probe_radius
            )
            key = (crowd, -float(np.dot(direction, goal)))
            if best_key is None or key < best_key:
                best, best_key = direction, key

        return best * cfg.heuristic_magnitude

    def path_clearance(self, current_pos, target_pos, neighbors: List[NeighborInfo]) -> np.ndarray:
        """Sideways step around neighbors sitting on the path ahead.

        A neighbor counts when its predicted position lies ahead of the agent
        within corridor_length (and not past the target), and its lateral
        distance from the straight path is under R_safe. The step is
        horizontal, away from the neighbor's side of the path, with strength
        (R_safe - miss) / R_safe. A neighbor dead on the path is passed on
        the horizontal perpendicular of the goal direction.
        """
        cfg = self.config
        current = as_vec3(current_pos)
        to_goal = as_vec3(target_pos) - current
        goal_distance = float(np.linalg.norm(to_goal))
        if goal_distance < EPSILON:
            return np.zeros(3)

        forward = to_goal / goal_distance
        reach = min(goal_distance, cfg.corridor_length)
        side = np.zeros(3)

        for n in neighbors:
            predicted = n.position + n.velocity * cfg.lookahead_time
            rel = predicted - current
            along = float(np.dot(rel, forward))
            if along <= 0.0 or along > reach:
                continue

            lateral = rel - along * forward
            miss = float(np.linalg.norm(lateral))
            if miss >= cfg.safety_radius:
                continue

            flat = horizontal(lateral)
            if np.linalg.norm(flat) < 1e-6:
                away = horizontal_perpendicular(forward)
            else:
                away = -normalize(flat)
            side += away * (cfg.safety_radius - miss) / cfg.safety_radius

        return side

    def degraded_direction(self, agent_id: int, current_pos, target_pos) -> np.ndarray:
        """Short-range avoidance that needs no link.

        Considers only agents within degraded_query_radius and pushes away
        from those closer than degraded_safety_margin. Agents at similar
        height are also split vertically by id parity (even up, odd down).
        """
        cfg = self.config
        current = as_vec3(current_pos)
        direction = self.attractive_force(current, target_pos)
        avoidance = np.zeros(3)

        nearby = self.state.registry.neighbors(current, cfg.degraded_query_radius, exclude_id=agent_id)
        self._track_collision_risk(agent_id, nearby)

        for n in nearby:
            if not cfg.min_distance < n.distance < cfg.degraded_safety_margin:
                continue
            urgency = (cfg.degraded_safety_margin - n.distance) / cfg.degraded_safety_margin
            avoidance += normalize(current - n.position) * urgency * cfg.degraded_gain

            if abs(current[1] - n.position[1]) < cfg.degraded_vertical_separation:
                avoidance[1] += urgency if agent_id % 2 == 0 else -urgency

        result = normalize(direction + avoidance * cfg.degraded_blend)
        return result if result.any() else direction

    def fallback_direction(self, agent_id: int, current_pos, target_pos) -> np.ndarray:
        """Degraded avoidance plus horizontal jitter, used after a failed request.

        The jitter keeps agents that share a heading from moving in lockstep.
        """
        base = self.degraded_direction(agent_id, current_pos, target_pos)
        jitter = horizontal(random_in_unit_sphere(self._rng)) * self.config.fallback_jitter
        result = normalize(base + jitter)
        return result if result.any() else base

    @staticmethod
    def movement_scale(
        distance: float,
        divisor: float = 2.0,
        low: float = 0.8,
        high: float = 2.0,
    ) -> float:
        """Distance-dependent force multiplier: clamp(distance / divisor, low, high)."""
        return clamp(distance / divisor, low, high)

    def _track_collision_risk(self, agent_id: int, neighbors: List[NeighborInfo]) -> None:
        limit = self.config.safety_radius * self.config.collision_risk_fraction
        close = {n.agent_id: n.distance for n in neighbors if n.distance < limit}

        for pair in [p for p in self._risk_pairs if agent_id in p]:
            other = pair[0] if pair[1] == agent_id else pair[1]
            if other not in close:
                self._risk_pairs.discard(pair)

        for other, d in close.items():
            pair = (min(agent_id, other), max(agent_id, other))
            if pair in self._risk_pairs:
                continue
            self._risk_pairs.add(pair)
            logger.warning(f"Collision risk: agents {pair[0]} and {pair[1]} at {d:.2f}")
            self.state.events.emit(
                EventType.COLLISION_RISK,
                agents=list(pair),
                distance=d,
            )

    def reset(self) -> None:
        self._risk_pairs.clear()
