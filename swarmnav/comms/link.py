"""Simulated lossy control channel.

This is not a transport. Each request is a sequence of pass/fail draws
from a seedable generator:

1. Hub range check (only when a hub position is configured)
2. Two synchronization round-trips, each of which can fail on its own
   sync draw, on packet loss of the outgoing half, or on corruption of
   the reply

Any failed draw aborts the request. The caller is expected to fall back
to degraded avoidance; failures are values, never exceptions.
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from ..core.config import LinkConfig

logger = logging.getLogger(__name__)


class LinkFailure(Enum):
    """Why a request did not get through."""
    LINK_DOWN = "link_down"
    OUT_OF_RANGE = "out_of_range"
    SYNC_FAILURE = "sync_failure"
    PACKET_LOSS = "packet_loss"
    CORRUPTION = "corruption"


@dataclass(frozen=True)
class LinkResult:
    """Outcome of one request."""
    success: bool
    failure: Optional[LinkFailure] = None
    step: int = 0   # round-trip that failed (1 or 2), 0 otherwise

    def __bool__(self) -> bool:
        return self.success


# Two round-trips: SYN / SYN-ACK, then ACK / confirmation
SYNC_ROUND_TRIPS = 2


class LinkSimulator:
    """Per-request success/failure sampling for the swarm control channel.

    The global active switch lives here. Once deactivated, every request
    fails with LINK_DOWN; the planner checks the switch first so that no
    request is issued at all in that case.

    Example:
        link = LinkSimulator(LinkConfig(random_seed=7))
        result = link.request(agent_id=3)
        if not result:
            print(f"fallback: {result.failure.value}")
    """

    def __init__(self, config: Optional[LinkConfig] = None):
        self._config = config or LinkConfig()
        self._config.validate()
        self._active = True

        if self._config.random_seed is not None:
            self._rng = random.Random(self._config.random_seed)
        else:
            self._rng = random.Random()

        self._hub = (
            np.array(self._config.hub_position, dtype=np.float64)
            if self._config.hub_position is not None else None
        )

        # Statistics
        self._requests = 0
        self._successes = 0
        self._failures: Dict[LinkFailure, int] = {f: 0 for f in LinkFailure}

        self._on_status_change: List[Callable[[bool, str], None]] = []

    @property
    def config(self) -> LinkConfig:
        return self._config

    @property
    def active(self) -> bool:
        return self._active

    @property
    def request_count(self) -> int:
        return self._requests

    def deactivate(self, reason: str = "") -> bool:
        """Turn the global link off. There is no way back short of a restart.

        Returns:
            False if the link was already down
        """
        if not self._active:
            return False
        self._active = False
        logger.warning(f"Communication link deactivated{': ' + reason if reason else ''}")
        for callback in list(self._on_status_change):
            callback(False, reason)
        return True

    def request(self, agent_id: int, position=None) -> LinkResult:
        """Try to get a planner request through for one agent.

        Args:
            agent_id: Requesting agent
            position: Agent position, used only for the hub range check

        Returns:
            LinkResult describing success or the first failure
        """
        self._requests += 1

        if not self._active:
            return self._fail(agent_id, LinkFailure.LINK_DOWN)

        if self._hub is not None and position is not None:
            if np.linalg.norm(np.asarray(position, dtype=np.float64) - self._hub) > self._config.hub_range:
                return self._fail(agent_id, LinkFailure.OUT_OF_RANGE)

        cfg = self._config
        for step in range(1, SYNC_ROUND_TRIPS + 1):
            if self._rng.random() < cfg.sync_failure_probability:
                return self._fail(agent_id, LinkFailure.SYNC_FAILURE, step)
            if self._rng.random() < cfg.packet_loss_probability:
                return self._fail(agent_id, LinkFailure.PACKET_LOSS, step)
            if self._rng.random() < cfg.corruption_probability:
                return self._fail(agent_id, LinkFailure.CORRUPTION, step)

        self._successes += 1
        return LinkResult(success=True)

    def _fail(self, agent_id: int, failure: LinkFailure, step: int = 0) -> LinkResult:
        self._failures[failure] += 1
        logger.debug(f"Link request from agent {agent_id} failed: {failure.value} (step {step})")
        return LinkResult(success=False, failure=failure, step=step)

    @property
    def success_rate(self) -> float:
        """Fraction of requests that got through; 1.0 before any request."""
        if self._requests == 0:
            return 1.0
        return self._successes / self._requests

    def get_stats(self) -> Dict:
        """Get link statistics.

        Returns:
            Dictionary with statistics
        """
        return {
            "active": self._active,
            "requests": self._requests,
            "successes": self._successes,
            "success_rate": self.success_rate,
            "failures": {f.value: n for f, n in self._failures.items()},
        }

    def on_status_change(self, callback: Callable[[bool, str], None]) -> None:
        """Register callback for link switch changes.

        Args:
            callback: Called with (active, reason)
        """
        self._on_status_change.append(callback)
