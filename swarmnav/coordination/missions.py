"""Waypoint tours for a swarm flying in formation.

The whole swarm visits each waypoint as a rigid shape: every agent targets
waypoint + its offset, with offsets captured once when the tour starts.
A waypoint counts as reached on partial consensus (a fraction of agents
within tolerance), and a soft time budget forces progression when the
consensus never comes.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..core.geometry import as_points, as_vec3
from .formations import Formation

logger = logging.getLogger(__name__)


@dataclass
class Waypoint:
    """Single waypoint in a tour.

    Attributes:
        x: X coordinate
        altitude: Height (y)
        z: Z coordinate
        reach_time: T1, seconds allowed to converge before forcing progression
        hold_time: T2, seconds to hold once the waypoint is reached
        name: Label for logs
        reached: Set once consensus is achieved
        reached_at: Mission time when consensus was achieved
    """
    x: float
    altitude: float
    z: float
    reach_time: float = 10.0
    hold_time: float = 15.0
    name: str = ""
    reached: bool = False
    reached_at: Optional[float] = None

    @classmethod
    def from_point(
        cls,
        point: Sequence[Optional[float]],
        default_altitude: float,
        reach_time: float = 10.0,
        hold_time: float = 15.0,
    ) -> "Waypoint":
        """Build from an (x, y, z) tuple; a y of None means default_altitude."""
        if len(point) != 3:
            raise ValueError(f"Waypoint needs 3 coordinates, got {len(point)}")
        x, y, z = point
        return cls(
            x=float(x),
            altitude=default_altitude if y is None else float(y),
            z=float(z),
            reach_time=reach_time,
            hold_time=hold_time,
        )

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.altitude, self.z])

    def mark_reached(self, timestamp: float) -> None:
        self.reached = True
        self.reached_at = timestamp

    def __str__(self) -> str:
        label = self.name or f"({self.x:.1f}, {self.altitude:.1f}, {self.z:.1f})"
        return f"Waypoint {label}"


@dataclass
class WaypointResult:
    """How progression past one waypoint happened."""
    index: int
    elapsed: float
    success_fraction: float
    timing_violation: bool


@dataclass
class MissionReport:
    """Telemetry summary of a navigation mission."""
    started_at: float
    total_waypoints: int = 0
    finished_at: Optional[float] = None
    results: List[WaypointResult] = field(default_factory=list)
    communication_lost_at: Optional[float] = None
    communication_loss_reason: str = ""

    @property
    def completed_waypoints(self) -> int:
        return len(self.results)

    @property
    def timing_violations(self) -> int:
        return sum(1 for r in self.results if r.timing_violation)

    @property
    def partial_success(self) -> bool:
        """At least one waypoint was passed on timeout rather than consensus."""
        return self.timing_violations > 0

    @property
    def communication_lost(self) -> bool:
        return self.communication_lost_at is not None

    @property
    def is_complete(self) -> bool:
        return self.finished_at is not None

    def duration(self, now: Optional[float] = None) -> float:
        end = self.finished_at if self.finished_at is not None else now
        return 0.0 if end is None else end - self.started_at

    def summary(self) -> dict:
        return {
            "completed_waypoints": self.completed_waypoints,
            "total_waypoints": self.total_waypoints,
            "timing_violations": self.timing_violations,
            "partial_success": self.partial_success,
            "communication_lost": self.communication_lost,
            "duration": self.duration(),
        }


def success_fraction(positions, targets, tolerance: float) -> float:
    """Fraction of agents within tolerance of their own target."""
    p = as_points(positions)
    t = as_points(targets)
    if len(p) == 0 or len(p) != len(t):
        return 0.0
    within = np.linalg.norm(p - t, axis=1) <= tolerance
    return float(np.count_nonzero(within)) / len(p)


def should_advance(
    fraction: float,
    elapsed: float,
    threshold: float,
    reach_time: float,
) -> Tuple[bool, bool]:
    """Waypoint progression rule.

    Returns:
        (advance, timing_violation): advance when the fraction meets the
        threshold or the T1 budget ran out; a violation when only the
        budget triggered it
    """
    if fraction >= threshold:
        return True, False
    if elapsed >= reach_time:
        return True, True
    return False, False


def navigation_offsets(
    formation: Optional[Formation],
    agent_count: int,
    spacing: float,
    min_spacing: float = 7.0,
    height_step: float = 0.5,
) -> np.ndarray:
    """Per-agent offsets from the tour center.

    Uses the applied formation's shape when it has one slot per agent;
    otherwise a centered line at max(spacing, min_spacing) with each agent
    height_step higher than the one before.
    """
    if formation is not None and formation.fits(agent_count):
        return formation.offsets()

    safe = max(spacing, min_spacing)
    idx = np.arange(agent_count, dtype=np.float64)
    offsets = np.zeros((agent_count, 3))
    offsets[:, 0] = (idx - (agent_count - 1) / 2.0) * safe
    offsets[:, 1] = idx * height_step
    return offsets


class NavigationTour:
    """Progress through an ordered waypoint list.

    The timer counts time toward the current waypoint; after progression it
    restarts and counts hold time.

    Example:
        tour = NavigationTour(waypoints, offsets, landing_target=(0, 1, 80))
        result = tour.update(dt, positions, tolerance=2.0, threshold=0.7)
        if tour.hold_complete():
            tour.advance()
    """

    def __init__(self, waypoints: List[Waypoint], offsets, landing_target):
        if not waypoints:
            raise ValueError("A tour needs at least one waypoint")
        self.waypoints = list(waypoints)
        self.offsets = as_points(offsets)
        self.landing_target = as_vec3(landing_target)
        self.index = 0
        self.timer = 0.0
        self.holding = False

    @property
    def current_waypoint(self) -> Optional[Waypoint]:
        if self.index < len(self.waypoints):
            return self.waypoints[self.index]
        return None

    @property
    def is_finished(self) -> bool:
        return self.index >= len(self.waypoints)

    def targets(self) -> np.ndarray:
        """Each agent's target for the current waypoint."""
        wp = self.current_waypoint
        if wp is None:
            return np.zeros((0, 3))
        return wp.position + self.offsets

    def update(self, dt: float, positions, tolerance: float, threshold: float) -> Optional[WaypointResult]:
        """Advance the timer and test the progression rule.

        Returns:
            A WaypointResult on the tick progression triggers, else None
        """
        self.timer += dt
        wp = self.current_waypoint
        if wp is None or self.holding:
            return None

        fraction = success_fraction(positions, self.targets(), tolerance)
        advance, violation = should_advance(fraction, self.timer, threshold, wp.reach_time)
        if not advance:
            return None

        result = WaypointResult(
            index=self.index,
            elapsed=self.timer,
            success_fraction=fraction,
            timing_violation=violation,
        )
        self.holding = True
        self.timer = 0.0
        return result

    def hold_complete(self) -> bool:
        wp = self.current_waypoint
        return self.holding and wp is not None and self.timer >= wp.hold_time

    def advance(self) -> bool:
        """Move to the next waypoint; False when the tour is over."""
        self.index += 1
        self.holding = False
        self.timer = 0.0
        if self.is_finished:
            logger.debug("Tour finished")
            return False
        logger.debug(f"Tour advanced to waypoint {self.index + 1}/{len(self.waypoints)}")
        return True

    def landing_targets(self, altitude: float) -> np.ndarray:
        """Targets above the landing point at altitude, keeping the shape."""
        center = np.array([self.landing_target[0], altitude, self.landing_target[2]])
        return center + self.offsets
