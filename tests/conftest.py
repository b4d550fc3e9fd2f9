"""Shared pytest configuration and fixtures for swarm tests.

This module provides:
- Custom markers for test categorization
- Shared fixtures for configs, swarm state and controllers
- Helpers that put agents into a known flight state without physics
"""

import os

import pytest

from swarmnav.coordination import FlightStateMachine, MissionController, SafePathPlanner, SwarmState
from swarmnav.core import FlightState, SwarmConfig


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Pure Python tests, no physics loop")
    config.addinivalue_line("markers", "sim: Closed-loop missions against the point-mass model")


@pytest.fixture
def num_agents() -> int:
    """Get agent count from environment."""
    return int(os.environ.get("SWARM_NUM_AGENTS", "5"))


@pytest.fixture
def config(num_agents) -> SwarmConfig:
    """Deterministic config with a lossless link."""
    return SwarmConfig.for_testing(num_agents=num_agents)


@pytest.fixture
def state(config) -> SwarmState:
    """Empty swarm state."""
    return SwarmState(config)


@pytest.fixture
def planner(state) -> SafePathPlanner:
    """Planner bound to the shared state."""
    return SafePathPlanner(state)


@pytest.fixture
def controller(config) -> MissionController:
    """Mission controller with the configured agents spawned on the ground."""
    ctrl = MissionController(config)
    ctrl.spawn()
    return ctrl


def _hover(fsm: FlightStateMachine, altitude: float = 8.0) -> None:
    fsm.arm()
    fsm.take_off(altitude)
    fsm.agent.position = fsm.agent.position.copy()
    fsm.agent.position[1] = altitude
    fsm.update(0.05)
    assert fsm.state == FlightState.HOVERING


@pytest.fixture
def make_airborne():
    """Arm, take off and hover an agent at altitude without a physics loop."""
    return _hover


def pytest_collection_modifyitems(config, items):
    """Auto-add markers based on test location."""
    for item in items:
        # Auto-mark tests in tests/unit/ with @pytest.mark.unit
        if "tests/unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Auto-mark tests in tests/simulation/ with @pytest.mark.sim
        if "tests/simulation" in str(item.fspath):
            item.add_marker(pytest.mark.sim)
