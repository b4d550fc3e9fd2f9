"""Agent records shared between the mission controller, planner and state machines."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from .geometry import as_vec3


class FlightState(Enum):
    """Flight phases of a single agent."""
    GROUNDED = "grounded"
    ARMED = "armed"
    TAKING_OFF = "taking_off"
    HOVERING = "hovering"
    STAGING = "staging"
    FORMATION_MOVE = "formation_move"
    FAST_FORMATION_MOVE = "fast_formation_move"
    NAVIGATION_MOVE = "navigation_move"
    FORMATION_HOLD = "formation_hold"
    LANDING = "landing"
    FAST_LANDING = "fast_landing"

    @property
    def is_airborne(self) -> bool:
        return self not in (FlightState.GROUNDED, FlightState.ARMED)

    @property
    def is_landing(self) -> bool:
        return self in (FlightState.LANDING, FlightState.FAST_LANDING)

    @property
    def is_moving(self) -> bool:
        return self in MOVING_STATES


MOVING_STATES = frozenset({
    FlightState.STAGING,
    FlightState.FORMATION_MOVE,
    FlightState.FAST_FORMATION_MOVE,
    FlightState.NAVIGATION_MOVE,
})


@dataclass
class Agent:
    """One swarm member.

    Position and velocity are written only by the physics collaborator
    (through the registry); the core writes targets and state.
    """
    agent_id: int
    position: np.ndarray
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    target_position: Optional[np.ndarray] = None
    staging_position: Optional[np.ndarray] = None
    state: FlightState = FlightState.GROUNDED
    autonomous: bool = False

    def __post_init__(self):
        self.position = as_vec3(self.position)
        self.velocity = as_vec3(self.velocity)
        if self.target_position is None:
            self.target_position = self.position.copy()
        else:
            self.target_position = as_vec3(self.target_position)

    @property
    def distance_to_target(self) -> float:
        return float(np.linalg.norm(self.target_position - self.position))

    @property
    def altitude(self) -> float:
        return float(self.position[1])

    def to_dict(self) -> dict:
        """Snapshot for telemetry."""
        return {
            "agent_id": self.agent_id,
            "position": self.position.tolist(),
            "velocity": self.velocity.tolist(),
            "target": self.target_position.tolist(),
            "state": self.state.value,
            "autonomous": self.autonomous,
        }


@dataclass(frozen=True)
class NeighborInfo:
    """One entry of a neighbor query, valid only for the current tick."""
    agent_id: int
    position: np.ndarray
    velocity: np.ndarray
    target_position: np.ndarray
    distance: float
