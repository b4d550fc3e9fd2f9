"""Agent registry: the shared roster of swarm members."""

import logging
from typing import Dict, Iterator, List, Optional

import numpy as np

from .agent import Agent, NeighborInfo
from .geometry import as_vec3

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Owns every Agent record, in registration order.

    The mission controller is the only writer; planners and state machines
    read from it. Kinematics are refreshed once per tick from the physics
    collaborator.

    Example:
        registry = AgentRegistry(max_agents=10)
        registry.register(0, (0.0, 1.0, 0.0))
        registry.register(1, (3.0, 1.0, 0.0))
        for neighbor in registry.neighbors((0.0, 1.0, 0.0), 5.0, exclude_id=0):
            print(neighbor.agent_id, neighbor.distance)
    """

    def __init__(self, max_agents: int = 50):
        if max_agents <= 0:
            raise ValueError(f"max_agents must be positive, got {max_agents}")
        self.max_agents = max_agents
        self._agents: Dict[int, Agent] = {}

    def register(self, agent_id: int, position, velocity=None) -> bool:
        """Add an agent.

        Returns:
            False if the id is taken or the registry is full
        """
        if agent_id in self._agents:
            logger.warning(f"Agent {agent_id} already registered")
            return False
        if len(self._agents) >= self.max_agents:
            logger.warning(
                f"Registry full ({self.max_agents} agents), refusing agent {agent_id}"
            )
            return False

        agent = Agent(
            agent_id=agent_id,
            position=position,
            velocity=np.zeros(3) if velocity is None else velocity,
        )
        self._agents[agent_id] = agent
        logger.debug(f"Registered agent {agent_id} at {agent.position.tolist()}")
        return True

    def unregister(self, agent_id: int) -> bool:
        if self._agents.pop(agent_id, None) is None:
            return False
        logger.debug(f"Unregistered agent {agent_id}")
        return True

    def get(self, agent_id: int) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def __contains__(self, agent_id: int) -> bool:
        return agent_id in self._agents

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)

    @property
    def ids(self) -> List[int]:
        return list(self._agents.keys())

    @property
    def is_full(self) -> bool:
        return len(self._agents) >= self.max_agents

    def update_kinematics(self, agent_id: int, position, velocity=None) -> bool:
        """Record the physics collaborator's latest position/velocity."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return False
        agent.position = as_vec3(position)
        if velocity is not None:
            agent.velocity = as_vec3(velocity)
        return True

    def sync_from(self, source) -> int:
        """Pull kinematics for every agent from a physics collaborator.

        Args:
            source: Any object with position(agent_id) and velocity(agent_id)

        Returns:
            Number of agents updated
        """
        updated = 0
        for agent_id in self._agents:
            position = source.position(agent_id)
            if position is None:
                continue
            self.update_kinematics(agent_id, position, source.velocity(agent_id))
            updated += 1
        return updated

    def positions(self) -> np.ndarray:
        """(n, 3) array of current positions in registration order."""
        if not self._agents:
            return np.zeros((0, 3))
        return np.array([a.position for a in self._agents.values()])

    def neighbors(
        self,
        reference,
        radius: float,
        exclude_id: Optional[int] = None,
    ) -> List[NeighborInfo]:
        """Agents within radius of reference, nearest first.

        Args:
            reference: Query point
            radius: Inclusive search radius
            exclude_id: Agent to leave out (usually the caller)

        Returns:
            NeighborInfo list sorted by ascending distance
        """
        ref = as_vec3(reference)
        found = []
        for agent in self._agents.values():
            if agent.agent_id == exclude_id:
                continue
            d = float(np.linalg.norm(agent.position - ref))
            if d <= radius:
                found.append(NeighborInfo(
                    agent_id=agent.agent_id,
                    position=agent.position.copy(),
                    velocity=agent.velocity.copy(),
                    target_position=agent.target_position.copy(),
                    distance=d,
                ))
        found.sort(key=lambda n: n.distance)
        return found

    def clear(self) -> None:
        self._agents.clear()
