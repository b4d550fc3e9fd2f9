"""Shared swarm state handed to every component."""

import logging
from typing import Optional

from ..comms.link import LinkSimulator
from ..core.config import SwarmConfig
from ..core.events import EventBus
from ..core.registry import AgentRegistry
from .formations import Formation, FormationGenerator

logger = logging.getLogger(__name__)


class SwarmState:
    """Agent roster, link switch and formation cache for one swarm.

    Exactly one instance exists per mission. The mission controller writes
    to it at tick boundaries; planners and state machines only read.
    """

    def __init__(self, config: Optional[SwarmConfig] = None, events: Optional[EventBus] = None):
        self.config = config or SwarmConfig()
        self.events = events or EventBus()
        self.registry = AgentRegistry(max_agents=self.config.max_agents)
        self.link = LinkSimulator(self.config.link)
        self.formations = FormationGenerator(self.config.formation)
        self.applied_formation: Optional[Formation] = None

    def apply_formation(self, formation: Formation) -> None:
        """Mark a formation as the one the swarm is flying.

        Raises:
            ValueError: If the formation does not have one slot per agent
        """
        if not formation.fits(len(self.registry)):
            raise ValueError(
                f"Formation has {formation.agent_count} slots for {len(self.registry)} agents"
            )
        self.applied_formation = formation

    def reset(self) -> None:
        """Drop every agent, formation and the link state in one step."""
        self.registry.clear()
        self.formations.clear()
        self.applied_formation = None
        self.link = LinkSimulator(self.config.link)
        self.events.clear_history()
        logger.info("Swarm state reset")
