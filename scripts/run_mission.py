#!/usr/bin/env python3
"""
Headless swarm mission demo.

Spawns a swarm, takes off, assembles a formation, flies the waypoint tour
and lands, using a point-mass model in place of a physics engine. Prints
phase changes as they happen and the telemetry summary at the end.

Usage:
    # Default: 5 agents, V formation, default waypoint tour
    python scripts/run_mission.py

    # Arrow formation with 8 agents, link cut 12s into the tour
    python scripts/run_mission.py --num-agents 8 --formation arrow --comm-loss-after 12

    # Lossy link, reproducible run
    python scripts/run_mission.py --packet-loss 0.2 --seed 3
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from swarmnav.coordination import FormationShape, MissionController, MissionPhase
from swarmnav.core import EventType, SwarmConfig
from swarmnav.simulation import PointMassModel

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def run_until(controller, model, done, dt: float, limit: float) -> bool:
    """Tick the loop until done() or limit seconds of mission time pass."""
    deadline = controller.clock + limit
    while controller.clock < deadline:
        model.apply(controller.tick(dt), dt)
        if done():
            return True
    return False


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run a simulated swarm mission")
    parser.add_argument("--num-agents", type=int, default=5, help="Number of agents (default: 5)")
    parser.add_argument(
        "--formation",
        choices=[s.value for s in FormationShape if s not in (FormationShape.CUSTOM, FormationShape.CIRCULAR_STAGING)],
        default="v",
        help="Formation to assemble before the tour (default: v)",
    )
    parser.add_argument("--altitude", type=float, default=10.0, help="Formation altitude (default: 10)")
    parser.add_argument("--spacing", type=float, default=5.0, help="Agent spacing (default: 5)")
    parser.add_argument("--hold", type=float, default=5.0, help="Formation hold time in seconds (default: 5)")
    parser.add_argument("--comm-loss-after", type=float, default=None,
                        help="Cut the link this many seconds into the tour")
    parser.add_argument("--packet-loss", type=float, default=0.01, help="Packet loss probability (default: 0.01)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--dt", type=float, default=0.05, help="Control tick in seconds (default: 0.05)")
    args = parser.parse_args()

    config = SwarmConfig(num_agents=args.num_agents, random_seed=args.seed)
    config.formation.altitude = args.altitude
    config.formation.spacing = args.spacing
    config.formation.hold_duration = args.hold
    config.link.packet_loss_probability = args.packet_loss
    config.link.random_seed = args.seed
    config.mission.communication_loss_after = args.comm_loss_after

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    controller = MissionController(config)
    controller.events.subscribe(
        lambda e: print(f"[{e.timestamp:7.2f}s] {e.event_type.value}: {e.data}")
    )

    if controller.spawn() == 0:
        logger.error("No agents spawned")
        return 1

    model = PointMassModel.from_registry(controller.state.registry, ground_height=config.ground_height)
    controller.physics = model

    controller.arm_and_takeoff()
    if not run_until(controller, model, lambda: controller.phase == MissionPhase.AIRBORNE, args.dt, 30.0):
        logger.error("Takeoff did not finish")
        return 1

    controller.form_formation(args.formation)
    if not run_until(controller, model, lambda: controller.phase == MissionPhase.AIRBORNE, args.dt, 120.0):
        logger.error("Formation did not finish")
        return 1

    controller.start_navigation()
    finished = run_until(controller, model, lambda: controller.phase == MissionPhase.COMPLETE, args.dt, 600.0)

    stats = controller.get_statistics()
    print()
    print("=" * 60)
    print("MISSION SUMMARY")
    print("=" * 60)
    print(f"  Finished:            {finished}")
    print(f"  Waypoints:           {stats['completed_waypoints']}")
    print(f"  Mission progress:    {stats['mission_progress']:.0f}%")
    print(f"  Mission time:        {stats['total_mission_time']:.1f}s")
    print(f"  Communication:       {stats['communication_health']:.1f}%")
    print(f"  Autonomous agents:   {stats['autonomous_agents']}")
    print(f"  Timing violations:   {stats['events'].get(EventType.TIMING_VIOLATION.value, 0)}")
    print(f"  Collision warnings:  {stats['events'].get(EventType.COLLISION_RISK.value, 0)}")
    print(f"  Final states:        {stats['states']}")

    return 0 if finished else 1


if __name__ == "__main__":
    sys.exit(main())
