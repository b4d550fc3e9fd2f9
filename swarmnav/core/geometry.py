"""Vector math shared by the formation, planner and flight modules.

Frame convention: (x, y, z) with y pointing up. Every vector is a numpy
float64 array of shape (3,); position sets are arrays of shape (n, 3).
"""

import math
import random
from typing import Iterable, Optional

import numpy as np

# Below this magnitude a vector is treated as zero and never normalized
EPSILON = 1e-9

UP = np.array([0.0, 1.0, 0.0])


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    """Build a 3D vector."""
    return np.array([x, y, z], dtype=np.float64)


def as_vec3(value) -> np.ndarray:
    """Coerce a tuple, list or array into a fresh (3,) float vector.

    Raises:
        ValueError: If value does not hold exactly three components
    """
    arr = np.array(value, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"Expected 3 components, got {arr.shape[0]}")
    return arr


def as_points(values) -> np.ndarray:
    """Coerce a sequence of 3D points into an (n, 3) float array."""
    arr = np.array(values, dtype=np.float64)
    if arr.size == 0:
        return np.zeros((0, 3))
    arr = arr.reshape(-1, 3)
    return arr


def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector in the direction of v, or the zero vector if v is ~0."""
    norm = np.linalg.norm(v)
    if norm < EPSILON:
        return np.zeros(3)
    return v / norm


def horizontal(v: np.ndarray) -> np.ndarray:
    """Copy of v with the vertical component removed."""
    flat = np.array(v, dtype=np.float64)
    flat[1] = 0.0
    return flat


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def center_of_mass(points: Iterable) -> np.ndarray:
    """Arithmetic mean of a point set; the origin for an empty set."""
    arr = as_points(points)
    if len(arr) == 0:
        return np.zeros(3)
    return arr.mean(axis=0)


def sample_circle(center: np.ndarray, radius: float, count: int) -> np.ndarray:
    """Place count points on a horizontal circle around center.

    Points are separated by 360/count degrees, starting on the +x axis and
    sweeping toward +z, all at the center's height.

    Args:
        center: Circle center
        radius: Circle radius
        count: Number of points

    Returns:
        (count, 3) array of positions
    """
    if count <= 0:
        return np.zeros((0, 3))

    center = as_vec3(center)
    step = 2.0 * math.pi / count
    angles = np.arange(count) * step

    points = np.empty((count, 3))
    points[:, 0] = center[0] + radius * np.cos(angles)
    points[:, 1] = center[1]
    points[:, 2] = center[2] + radius * np.sin(angles)
    return points


def rotation_matrix(axis: np.ndarray, angle_deg: float) -> np.ndarray:
    """Rotation matrix about an arbitrary axis (Rodrigues' formula).

    Args:
        axis: Rotation axis, need not be normalized
        angle_deg: Rotation angle in degrees, right-hand rule about axis

    Returns:
        3x3 rotation matrix

    Raises:
        ValueError: If axis is the zero vector
    """
    axis = as_vec3(axis)
    norm = np.linalg.norm(axis)
    if norm < EPSILON:
        raise ValueError("Rotation axis must be non-zero")
    kx, ky, kz = axis / norm

    theta = math.radians(angle_deg)
    c, s = math.cos(theta), math.sin(theta)

    # Cross-product matrix of the unit axis
    K = np.array(
        [
            [0.0, -kz, ky],
            [kz, 0.0, -kx],
            [-ky, kx, 0.0],
        ],
        dtype=np.float64,
    )
    return np.eye(3) + s * K + (1.0 - c) * (K @ K)


def horizontal_perpendicular(direction: np.ndarray) -> np.ndarray:
    """Unit horizontal vector perpendicular to direction.

    For direction (1, 0, 0) this is (0, 0, -1). A vertical direction has no
    unique horizontal perpendicular, so +x is returned.
    """
    perp = np.cross(UP, direction)
    perp[1] = 0.0
    if np.linalg.norm(perp) < EPSILON:
        return vec3(1.0, 0.0, 0.0)
    return normalize(perp)


def random_in_unit_sphere(rng: Optional[random.Random] = None) -> np.ndarray:
    """Uniform random point inside the unit sphere (rejection sampling)."""
    rng = rng or random.Random()
    while True:
        p = vec3(
            rng.uniform(-1.0, 1.0),
            rng.uniform(-1.0, 1.0),
            rng.uniform(-1.0, 1.0),
        )
        if np.dot(p, p) <= 1.0:
            return p
