"""Point-mass stand-in for the host physics engine.

Good enough to close the loop in tests and the demo script: commands are
turned straight into velocities rather than integrated as forces.
"""

import logging
from typing import Dict, Optional

import numpy as np

from ..core.geometry import as_vec3
from ..coordination.flight import ControlCommand

logger = logging.getLogger(__name__)


class PointMassModel:
    """First-order kinematic model of every agent.

    Horizontal velocity is direction * force * force_gain. Vertical velocity
    follows thrust relative to hover: (thrust - hover) / hover * climb_rate.
    Agents cannot sink below ground_height.

    Example:
        model = PointMassModel.from_registry(controller.state.registry)
        controller.physics = model
        for _ in range(1000):
            model.apply(controller.tick(0.05), 0.05)
    """

    def __init__(
        self,
        hover_thrust: float = 10.0,
        force_gain: float = 0.5,
        climb_rate: float = 5.0,
        max_speed: float = 14.0,
        impulse_gain: float = 0.1,
        ground_height: float = 1.0,
    ):
        self.hover_thrust = hover_thrust
        self.force_gain = force_gain
        self.climb_rate = climb_rate
        self.max_speed = max_speed
        self.impulse_gain = impulse_gain
        self.ground_height = ground_height

        self._positions: Dict[int, np.ndarray] = {}
        self._velocities: Dict[int, np.ndarray] = {}

    @classmethod
    def from_registry(cls, registry, **kwargs) -> "PointMassModel":
        """Model seeded with every registered agent's current position."""
        model = cls(**kwargs)
        for agent in registry:
            model.add(agent.agent_id, agent.position)
        return model

    def add(self, agent_id: int, position) -> None:
        self._positions[agent_id] = as_vec3(position)
        self._velocities[agent_id] = np.zeros(3)

    def position(self, agent_id: int) -> Optional[np.ndarray]:
        pos = self._positions.get(agent_id)
        return None if pos is None else pos.copy()

    def velocity(self, agent_id: int) -> Optional[np.ndarray]:
        vel = self._velocities.get(agent_id)
        return None if vel is None else vel.copy()

    def apply(self, commands: Dict[int, ControlCommand], dt: float) -> None:
        """Integrate one tick of commands."""
        for agent_id, cmd in commands.items():
            if agent_id not in self._positions:
                continue

            if cmd.zero_velocity:
                velocity = np.zeros(3)
            else:
                velocity = cmd.direction * cmd.force * self.force_gain
                velocity[1] += (cmd.vertical_thrust - self.hover_thrust) / self.hover_thrust * self.climb_rate
                if cmd.impulse is not None:
                    velocity = velocity + cmd.impulse * self.impulse_gain

                speed = float(np.linalg.norm(velocity))
                if speed > self.max_speed:
                    velocity *= self.max_speed / speed

            position = self._positions[agent_id] + velocity * dt
            if position[1] < self.ground_height:
                position[1] = self.ground_height
                velocity[1] = max(0.0, velocity[1])

            self._positions[agent_id] = position
            self._velocities[agent_id] = velocity
