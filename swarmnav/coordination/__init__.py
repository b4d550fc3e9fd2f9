"""Coordination modules for swarm behaviors.

This package provides:
- Formation generation and transforms (V, arrow, line, column, staging ring, custom)
- Potential-field collision avoidance gated by the simulated link
- Per-agent flight state machines
- Waypoint tours with partial-consensus progression
- The MissionController orchestrator driven by tick(dt)
"""

from .formations import (
    Formation,
    FormationGenerator,
    FormationShape,
    FormationTransition,
    formation_quality,
    get_formation_positions,
    morph_formation,
    rotate_formation,
    scale_formation,
    validate_formation,
    visiting_order,
)

from .state import SwarmState

from .planner import (
    PlanMode,
    PlanResult,
    SafePathPlanner,
)

from .flight import (
    ControlCommand,
    FlightStateMachine,
)

from .sequencer import StepSequencer, TimedStep

from .missions import (
    MissionReport,
    NavigationTour,
    Waypoint,
    WaypointResult,
    navigation_offsets,
    should_advance,
    success_fraction,
)

from .mission_controller import (
    MissionController,
    MissionPhase,
)

__all__ = [
    # Formations
    "Formation",
    "FormationGenerator",
    "FormationShape",
    "FormationTransition",
    "formation_quality",
    "get_formation_positions",
    "morph_formation",
    "rotate_formation",
    "scale_formation",
    "validate_formation",
    "visiting_order",
    # Shared state
    "SwarmState",
    # Planner
    "PlanMode",
    "PlanResult",
    "SafePathPlanner",
    # Flight
    "ControlCommand",
    "FlightStateMachine",
    # Sequencing
    "StepSequencer",
    "TimedStep",
    # Missions
    "MissionReport",
    "NavigationTour",
    "Waypoint",
    "WaypointResult",
    "navigation_offsets",
    "should_advance",
    "success_fraction",
    # Controller
    "MissionController",
    "MissionPhase",
]
