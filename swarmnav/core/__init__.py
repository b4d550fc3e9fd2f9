"""Core swarm components."""

from .agent import Agent, FlightState, NeighborInfo
from .config import (
    FlightConfig,
    FormationConfig,
    LinkConfig,
    MissionConfig,
    PlannerConfig,
    SwarmConfig,
)
from .events import EventBus, EventType, SwarmEvent
from .registry import AgentRegistry

__all__ = [
    # Agents
    "Agent",
    "AgentRegistry",
    "FlightState",
    "NeighborInfo",
    # Configuration
    "FlightConfig",
    "FormationConfig",
    "LinkConfig",
    "MissionConfig",
    "PlannerConfig",
    "SwarmConfig",
    # Events
    "EventBus",
    "EventType",
    "SwarmEvent",
]
