"""Configuration management for the swarm core."""

import math
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Optional, Tuple

Point = Tuple[float, float, float]


def _check_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


@dataclass
class FormationConfig:
    """Formation geometry settings.

    Attributes:
        altitude: Base formation altitude (units above ground)
        spacing: Distance between adjacent agents
        staging_radius: Radius of the circle used before final assembly
        hold_duration: How long a finished formation is held (seconds)
        quality_error_cap: Per-agent error cap used by the quality score
        min_separation: Minimum pairwise distance accepted by validation
        heading: Rotation of generated shapes about the vertical axis (degrees)
    """
    altitude: float = 10.0
    spacing: float = 5.0
    staging_radius: float = 4.0
    hold_duration: float = 30.0
    quality_error_cap: float = 2.0
    min_separation: float = 1.0
    heading: float = 0.0

    def validate(self) -> None:
        _check_positive("spacing", self.spacing)
        _check_positive("staging_radius", self.staging_radius)
        _check_positive("quality_error_cap", self.quality_error_cap)
        if self.hold_duration < 0:
            raise ValueError(f"hold_duration must be >= 0, got {self.hold_duration}")


@dataclass
class PlannerConfig:
    """Potential-field collision avoidance settings."""

    # Neighborhood
    communication_range: float = 20.0   # neighbor query radius
    safety_radius: float = 4.0          # R_safe
    min_distance: float = 0.1           # singularity guard
    lookahead_time: float = 2.0         # seconds of neighbor velocity prediction

    # Repulsion and danger weighting
    avoidance_gain: float = 3.0         # K
    danger_range: float = 5.0           # reference range for avoidance weight
    speed_danger_weight: float = 0.3
    max_expected_speed: float = 10.0    # units/s

    # Density heuristic
    density_normalizer: float = 10.0
    density_threshold: float = 0.5
    probe_distance: float = 3.0
    probe_radius: float = 2.0
    heuristic_magnitude: float = 0.5
    heuristic_weight: float = 0.1

    # Path clearance sidestep (0 disables)
    path_clearance_gain: float = 0.3
    corridor_length: float = 8.0

    # Degraded mode (link down or autonomous)
    degraded_query_radius: float = 8.0
    degraded_safety_margin: float = 3.0
    degraded_gain: float = 3.0
    degraded_blend: float = 0.7
    degraded_vertical_separation: float = 1.5
    fallback_jitter: float = 0.2

    collision_risk_fraction: float = 0.5   # of safety_radius

    def validate(self) -> None:
        _check_positive("communication_range", self.communication_range)
        _check_positive("safety_radius", self.safety_radius)
        _check_positive("danger_range", self.danger_range)
        _check_positive("max_expected_speed", self.max_expected_speed)
        _check_positive("density_normalizer", self.density_normalizer)
        if self.degraded_safety_margin > self.degraded_query_radius:
            raise ValueError("degraded_safety_margin cannot exceed degraded_query_radius")


@dataclass
class LinkConfig:
    """Lossy control channel model.

    Attributes:
        sync_failure_probability: Chance that one synchronization round-trip fails
        packet_loss_probability: Chance that an outgoing packet is dropped
        corruption_probability: Chance that an incoming reply is corrupted
        hub_position: Optional hub location; agents beyond hub_range fail
        hub_range: Maximum hub distance when hub_position is set
        random_seed: Seed for reproducible failure sequences
    """
    sync_failure_probability: float = 0.01
    packet_loss_probability: float = 0.01
    corruption_probability: float = 0.005
    hub_position: Optional[Point] = None
    hub_range: float = 50.0
    random_seed: Optional[int] = None

    @classmethod
    def reliable(cls) -> "LinkConfig":
        """A channel that never fails."""
        return cls(
            sync_failure_probability=0.0,
            packet_loss_probability=0.0,
            corruption_probability=0.0,
        )

    def validate(self) -> None:
        _check_probability("sync_failure_probability", self.sync_failure_probability)
        _check_probability("packet_loss_probability", self.packet_loss_probability)
        _check_probability("corruption_probability", self.corruption_probability)
        _check_positive("hub_range", self.hub_range)


@dataclass
class FlightConfig:
    """Per-agent flight controller gains and thresholds."""

    # Force scales
    thrust_force: float = 12.0
    move_force: float = 10.0
    hover_thrust: float = 10.0
    fast_mode_multiplier: float = 2.0

    # Takeoff / landing
    takeoff_boost: float = 1.2
    takeoff_tolerance: float = 0.5
    landing_thrust_fraction: float = 0.3
    landing_altitude: float = 1.5
    landing_target_height: float = 1.0

    # Vertical hold controller (gain, clamp as fraction of hover thrust)
    hover_gain: float = 3.0
    hover_clamp: Tuple[float, float] = (0.7, 1.4)
    hold_gain: float = 5.0
    hold_clamp: Tuple[float, float] = (0.6, 1.8)

    # Precision hold (horizontal)
    hold_position_gain: float = 2.0
    hold_deadband: float = 0.1
    hold_min_force: float = 0.1
    hold_max_force_fraction: float = 0.5   # of move_force

    # Arrival thresholds per state
    staging_arrival: float = 2.0
    formation_arrival: float = 1.5
    fast_formation_arrival: float = 1.8
    navigation_arrival: float = 2.0
    hover_deadband: float = 1.0

    # Stuck detection
    stuck_threshold: float = 0.1
    stuck_duration: float = 3.0             # seconds
    stuck_vertical_fraction: float = 0.5    # of thrust_force
    stuck_horizontal_fraction: float = 0.3  # of move_force

    # Local avoidance used during fast moves
    basic_avoidance_radius: float = 4.0
    basic_avoidance_margin: float = 3.0
    fast_avoidance_blend: float = 0.2

    def validate(self) -> None:
        _check_positive("hover_thrust", self.hover_thrust)
        _check_positive("move_force", self.move_force)
        _check_positive("stuck_duration", self.stuck_duration)
        for name in ("hover_clamp", "hold_clamp"):
            low, high = getattr(self, name)
            if low > high:
                raise ValueError(f"{name} lower bound exceeds upper bound")


@dataclass
class MissionConfig:
    """Mission sequencing and waypoint tour settings."""

    # Takeoff sequence
    takeoff_margin: float = 2.0        # takeoff height = altitude - margin
    arm_stagger: float = 0.1
    arm_settle: float = 0.5
    takeoff_stagger: float = 0.15
    takeoff_settle: float = 3.0

    # Formation sequence
    staging_stagger: float = 0.15
    staging_settle: float = 3.0
    formation_stagger: float = 0.25
    formation_settle: float = 6.0
    vertical_stagger: float = 0.4
    land_stagger: float = 0.2

    # Waypoint tour
    waypoint_reach_time: float = 10.0   # T1
    waypoint_hold_time: float = 15.0    # T2
    waypoint_tolerance: float = 2.0
    success_threshold: float = 0.7
    navigation_min_spacing: float = 7.0
    navigation_height_step: float = 0.5
    final_approach_time: float = 4.0
    landing_time: float = 6.0

    # Seconds after navigation start; None means manual trigger only
    communication_loss_after: Optional[float] = None

    # Waypoint heights of None are replaced with the formation altitude
    default_waypoints: list = field(
        default_factory=lambda: [(30.0, None, 30.0), (-30.0, None, 60.0)]
    )
    landing_target: Point = (0.0, 1.0, 80.0)

    def validate(self) -> None:
        _check_probability("success_threshold", self.success_threshold)
        _check_positive("waypoint_tolerance", self.waypoint_tolerance)
        if self.waypoint_reach_time < 0 or self.waypoint_hold_time < 0:
            raise ValueError("Waypoint timing budgets must be >= 0")
        if self.communication_loss_after is not None and self.communication_loss_after < 0:
            raise ValueError("communication_loss_after must be >= 0")


@dataclass
class SwarmConfig:
    """Configuration for the entire swarm."""

    num_agents: int = 5
    max_agents: int = 50
    ground_height: float = 1.0
    spawn_spacing: float = 3.0
    random_seed: Optional[int] = None

    formation: FormationConfig = field(default_factory=FormationConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    link: LinkConfig = field(default_factory=LinkConfig)
    flight: FlightConfig = field(default_factory=FlightConfig)
    mission: MissionConfig = field(default_factory=MissionConfig)

    @classmethod
    def for_testing(cls, num_agents: int = 5, seed: int = 42) -> "SwarmConfig":
        """Deterministic configuration with a lossless link."""
        link = LinkConfig.reliable()
        link.random_seed = seed
        return cls(num_agents=num_agents, random_seed=seed, link=link)

    @classmethod
    def from_dict(cls, data: dict) -> "SwarmConfig":
        """Build a config from a nested dictionary.

        Unknown keys raise ValueError so typos do not silently fall back
        to defaults.

        Example:
            config = SwarmConfig.from_dict({
                "num_agents": 8,
                "formation": {"spacing": 6.0},
                "mission": {"success_threshold": 0.8},
            })
        """
        return _build(cls, data)

    def validate(self) -> None:
        """Raise ValueError if any setting is out of range."""
        if self.num_agents < 0:
            raise ValueError(f"num_agents must be >= 0, got {self.num_agents}")
        if self.num_agents > self.max_agents:
            raise ValueError(
                f"num_agents ({self.num_agents}) exceeds max_agents ({self.max_agents})"
            )
        self.formation.validate()
        self.planner.validate()
        self.link.validate()
        self.flight.validate()
        self.mission.validate()

    @property
    def takeoff_height(self) -> float:
        return self.formation.altitude - self.mission.takeoff_margin

    def spawn_positions(self, count: Optional[int] = None) -> list[Point]:
        """Ground grid positions for spawning, centered on the origin.

        Uses a roughly square grid (cols = ceil(sqrt(n))) at ground height.
        """
        n = self.num_agents if count is None else count
        if n <= 0:
            return []

        cols = math.ceil(math.sqrt(n))
        rows = math.ceil(n / cols)
        spacing = self.spawn_spacing

        positions = []
        for i in range(n):
            row, col = divmod(i, cols)
            x = (col - (cols - 1) / 2) * spacing
            z = (row - (rows - 1) / 2) * spacing
            positions.append((x, self.ground_height, z))
        return positions


def _build(cls, data: dict) -> Any:
    known = {f.name: f for f in fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            raise ValueError(f"Unknown {cls.__name__} option: {key}")
        factory = known[key].default_factory
        if isinstance(value, dict) and callable(factory):
            nested = factory()
            if is_dataclass(nested):
                value = _build(type(nested), value)
        kwargs[key] = value
    return cls(**kwargs)
