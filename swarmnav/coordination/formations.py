"""Formation calculations for drone swarms.

Provides generators for named formation patterns that scale to any number
of agents, plus the transforms used to move between them. Frame is
(x, y, z) with y up; formations are centered on the x=0 axis.

Available formations:
- V: Point agent at the bottom, two rising wings
- ARROW: Tip, two descending swept-back wings, and a tail
- LINE: Agents evenly spaced along the x axis
- VERTICAL: A stacked column on the y axis
- CIRCULAR_STAGING: A ring around another formation's center
- CUSTOM: Agents mapped onto an arbitrary point set
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from ..core.config import FormationConfig
from ..core.geometry import (
    UP,
    as_points,
    as_vec3,
    center_of_mass,
    rotation_matrix,
    sample_circle,
)

logger = logging.getLogger(__name__)


class FormationShape(Enum):
    """Available formation shapes."""
    V = "v"
    ARROW = "arrow"
    LINE = "line"
    VERTICAL = "vertical"
    CIRCULAR_STAGING = "circular_staging"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value) -> "FormationShape":
        """Accept a FormationShape or its (case-insensitive) string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            options = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown formation shape '{value}' (expected one of: {options})")


@dataclass
class Formation:
    """A shape plus one target position per agent.

    Positions are never patched in place; a new agent count means a new
    Formation.
    """
    shape: FormationShape
    positions: np.ndarray

    @property
    def agent_count(self) -> int:
        return len(self.positions)

    @property
    def center(self) -> np.ndarray:
        return center_of_mass(self.positions)

    def offsets(self) -> np.ndarray:
        """Positions relative to the formation center."""
        return self.positions - self.center

    def fits(self, agent_count: int) -> bool:
        return self.agent_count == agent_count


class FormationGenerator:
    """Calculates agent positions for the named formations.

    generate() is pure. generate_formation() additionally remembers the
    result as the last generated formation, which is kept for telemetry
    and quality analysis only.

    Example:
        generator = FormationGenerator()
        positions = generator.generate(FormationShape.V, agent_count=5)
        for i, (x, y, z) in enumerate(positions):
            print(f"Agent {i}: x={x:.1f}, alt={y:.1f}, z={z:.1f}")
    """

    def __init__(self, config: Optional[FormationConfig] = None):
        self.config = config or FormationConfig()
        self._last: Optional[Formation] = None

    @property
    def last_formation(self) -> Optional[Formation]:
        return self._last

    def clear(self) -> None:
        self._last = None

    def generate(
        self,
        shape,
        agent_count: int,
        altitude: Optional[float] = None,
        spacing: Optional[float] = None,
        custom_points=None,
    ) -> np.ndarray:
        """Calculate positions for N agents in the given shape.

        Args:
            shape: FormationShape or its string value
            agent_count: Number of agents
            altitude: Base altitude, defaults to the configured altitude
            spacing: Agent spacing, defaults to the configured spacing
            custom_points: Point set for CUSTOM shapes

        Returns:
            (agent_count, 3) array; empty when agent_count <= 0
        """
        shape = FormationShape.parse(shape)
        if agent_count <= 0:
            return np.zeros((0, 3))

        alt = self.config.altitude if altitude is None else altitude
        gap = self.config.spacing if spacing is None else spacing

        if shape == FormationShape.CUSTOM:
            return self.custom(custom_points if custom_points is not None else [], agent_count, alt)
        if shape == FormationShape.CIRCULAR_STAGING:
            return sample_circle(
                np.array([0.0, alt, 0.0]), self.config.staging_radius, agent_count
            )

        calculators = {
            FormationShape.V: self._v_formation,
            FormationShape.ARROW: self._arrow_formation,
            FormationShape.LINE: self._line_formation,
            FormationShape.VERTICAL: self._vertical_formation,
        }

        positions = calculators[shape](agent_count, alt, gap)
        if self.config.heading:
            positions = rotate_formation(positions, self.config.heading, UP, np.zeros(3))
        return positions

    def generate_formation(self, shape, agent_count: int, **kwargs) -> Formation:
        """generate(), wrapped in a Formation and cached as the last one."""
        shape = FormationShape.parse(shape)
        formation = Formation(shape=shape, positions=self.generate(shape, agent_count, **kwargs))
        self._last = formation
        logger.debug(f"Generated {shape.value} formation for {formation.agent_count} agents")
        return formation

    def _v_formation(self, n: int, altitude: float, spacing: float) -> np.ndarray:
        """V formation: index 0 at the bottom, left wing then right wing.

        Wing member i (1-based) sits at (-/+ spacing*i*0.8, altitude + 2.5*i, 0).
        """
        positions = np.zeros((n, 3))
        positions[0] = (0.0, altitude, 0.0)

        left = (n - 1) // 2
        right = (n - 1) - left

        for i in range(1, left + 1):
            positions[i] = (-spacing * i * 0.8, altitude + 2.5 * i, 0.0)
        for i in range(1, right + 1):
            positions[left + i] = (spacing * i * 0.8, altitude + 2.5 * i, 0.0)

        return positions

    def _arrow_formation(self, n: int, altitude: float, spacing: float) -> np.ndarray:
        """Arrow formation: tip first, tail last, swept wings in between."""
        positions = np.zeros((n, 3))
        positions[0] = (0.0, altitude + 6.0, 0.0)
        if n == 1:
            return positions

        positions[n - 1] = (0.0, altitude - 4.0, -2.0 * n)

        side = n - 2
        left = side // 2
        right = side - left

        for i in range(1, left + 1):
            s = i / (left + 1)
            positions[i] = (-spacing * i, altitude + 4.0 - 8.0 * s, -1.5 * s * n)
        for i in range(1, right + 1):
            s = i / (right + 1)
            positions[left + i] = (spacing * i, altitude + 4.0 - 8.0 * s, -1.5 * s * n)

        return positions

    def _line_formation(self, n: int, altitude: float, spacing: float) -> np.ndarray:
        """Line formation along the x axis, centered on the origin."""
        start = -((n - 1) * spacing) / 2.0
        positions = np.zeros((n, 3))
        positions[:, 0] = start + np.arange(n) * spacing
        positions[:, 1] = altitude
        return positions

    def _vertical_formation(self, n: int, altitude: float, spacing: float) -> np.ndarray:
        """Column stacked on the y axis."""
        positions = np.zeros((n, 3))
        positions[:, 1] = altitude + np.arange(n) * spacing * 0.6
        return positions

    def circular_staging(
        self,
        target_positions,
        agent_count: int,
        radius: Optional[float] = None,
    ) -> np.ndarray:
        """Ring of staging points around a target formation's center.

        Args:
            target_positions: The formation that will be assembled next
            agent_count: Number of staging points
            radius: Ring radius, defaults to the configured staging radius

        Returns:
            (agent_count, 3) array at the center's altitude
        """
        r = self.config.staging_radius if radius is None else radius
        return sample_circle(center_of_mass(target_positions), r, agent_count)

    def custom(self, points, agent_count: int, altitude: Optional[float] = None) -> np.ndarray:
        """Map agents onto an arbitrary point set.

        More agents than points: agent i takes point floor(i/(n-1) * (m-1)),
        spreading agents along the set. Otherwise agent i takes point i % m.
        The altitude always overrides the points' own y. An empty point set
        falls back to a line formation.
        """
        if agent_count <= 0:
            return np.zeros((0, 3))

        alt = self.config.altitude if altitude is None else altitude
        pts = as_points(points)
        m = len(pts)

        if m == 0:
            logger.warning("No custom points provided, generating line formation")
            return self._line_formation(agent_count, alt, self.config.spacing)

        if agent_count > m:
            indices = [
                min(int(math.floor(i / (agent_count - 1) * (m - 1))), m - 1)
                for i in range(agent_count)
            ]
        else:
            indices = [i % m for i in range(agent_count)]

        positions = pts[indices].copy()
        positions[:, 1] = alt
        return positions

    def quality(self, actual, target) -> float:
        """Quality score (0-100) of actual positions against a target formation."""
        return formation_quality(actual, target, self.config.quality_error_cap)

    def validate(self, positions, min_distance: Optional[float] = None) -> bool:
        """Check that no two positions are closer than min_distance."""
        limit = self.config.min_separation if min_distance is None else min_distance
        return validate_formation(positions, limit)


def visiting_order(shape: FormationShape, agent_count: int) -> List[int]:
    """Order in which formation slots are handed out.

    Arrow: tip, tail, then the wings. Line: center slot, then alternately
    outward. Anything else: sequential.
    """
    n = agent_count
    if n <= 0:
        return []

    if shape == FormationShape.ARROW and n > 1:
        return [0, n - 1] + list(range(1, n - 1))

    if shape == FormationShape.LINE:
        center = n // 2
        order = [center]
        for step in range(1, n):
            for idx in (center - step, center + step):
                if 0 <= idx < n:
                    order.append(idx)
        return order

    return list(range(n))


def formation_quality(actual, target, error_cap: float = 2.0) -> float:
    """Average per-agent error against target, scored 0-100.

    Each error is capped at error_cap before averaging; the score is
    100 * (1 - avg_error / error_cap). Mismatched or empty sets score 0.
    """
    a = as_points(actual)
    t = as_points(target)
    if len(a) == 0 or len(a) != len(t):
        return 0.0

    errors = np.minimum(np.linalg.norm(a - t, axis=1), error_cap)
    avg = float(errors.mean())
    return 100.0 * max(0.0, min(1.0, 1.0 - avg / error_cap))


def validate_formation(positions, min_distance: float) -> bool:
    """True if every pair of positions is at least min_distance apart."""
    pts = as_points(positions)
    for i in range(len(pts)):
        for j in range(i + 1, len(pts)):
            d = float(np.linalg.norm(pts[i] - pts[j]))
            if d < min_distance:
                logger.warning(
                    f"Formation validation failed: agents {i} and {j} too close "
                    f"({d:.2f} < {min_distance})"
                )
                return False
    return True


def scale_formation(positions, scale: float, center=None) -> np.ndarray:
    """Uniformly scale positions about center (their own center by default)."""
    pts = as_points(positions)
    c = center_of_mass(pts) if center is None else as_vec3(center)
    return c + (pts - c) * scale


def rotate_formation(positions, angle_deg: float, axis=UP, center=None) -> np.ndarray:
    """Rotate positions about an axis through center.

    Args:
        positions: (n, 3) positions
        angle_deg: Rotation angle in degrees (right-hand rule about axis)
        axis: Rotation axis, vertical by default
        center: Pivot point, the positions' center by default

    Returns:
        Rotated positions
    """
    pts = as_points(positions)
    if angle_deg == 0.0 or len(pts) == 0:
        return pts.copy()

    c = center_of_mass(pts) if center is None else as_vec3(center)
    R = rotation_matrix(axis, angle_deg)
    return (pts - c) @ R.T + c


def morph_formation(from_positions, to_positions, t: float) -> np.ndarray:
    """Linear interpolation between two same-length formations.

    t is clamped to [0, 1]. If the lengths differ there is nothing to
    interpolate and the destination is returned.
    """
    a = as_points(from_positions)
    b = as_points(to_positions)
    if len(a) != len(b):
        logger.warning("Formation morph: position counts don't match")
        return b.copy()

    t = max(0.0, min(1.0, t))
    return a + (b - a) * t


@dataclass
class FormationTransition:
    """Manages smooth transition between formations.

    Uses cosine interpolation for smooth acceleration/deceleration.

    Example:
        transition = FormationTransition(
            start_positions=generator.generate(FormationShape.LINE, 5),
            end_positions=generator.generate(FormationShape.V, 5),
            duration=5.0
        )
        positions = transition.get_positions_at_time(elapsed)
    """

    start_positions: np.ndarray
    end_positions: np.ndarray
    duration: float = 5.0

    def progress(self, t: float) -> float:
        """Eased progress in [0, 1] at time t."""
        if self.duration <= 0:
            return 1.0
        linear = min(1.0, max(0.0, t / self.duration))
        return 0.5 - 0.5 * math.cos(linear * math.pi)

    def get_positions_at_time(self, t: float) -> np.ndarray:
        """Get interpolated positions at time t.

        Args:
            t: Time since transition start (seconds)

        Returns:
            Interpolated positions for all agents
        """
        return morph_formation(self.start_positions, self.end_positions, self.progress(t))

    def is_complete(self, t: float) -> bool:
        """Check if transition is complete."""
        return t >= self.duration


def get_formation_positions(
    shape,
    agent_count: int,
    spacing: float = 5.0,
    altitude: float = 10.0,
    heading: float = 0.0,
) -> np.ndarray:
    """Convenience function for quick formation calculation.

    Example:
        positions = get_formation_positions(FormationShape.V, 5)
    """
    config = FormationConfig(spacing=spacing, altitude=altitude, heading=heading)
    return FormationGenerator(config).generate(shape, agent_count)
