"""Time-gated step queue driven by tick(dt).

Mission phases are lists of "wait N seconds, then do X" steps. Rather than
sleeping, the controller queues them here and the queue is advanced from
the same tick that drives the agents.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List

logger = logging.getLogger(__name__)


@dataclass
class TimedStep:
    """An action that runs delay seconds after the previous step ran."""
    delay: float
    action: Callable[[], None]
    label: str = ""


class StepSequencer:
    """FIFO of TimedSteps.

    Each step's delay counts from the moment the step before it ran, so a
    staggered launch is just a run of small delays. Steps may queue further
    steps from inside their action.

    Example:
        seq = StepSequencer()
        for i in range(3):
            seq.schedule(0.15, lambda i=i: print(f"launch {i}"))
        seq.schedule(3.0, lambda: print("all settled"), label="settle")
        seq.tick(0.5)   # launches 0-2
        seq.tick(3.0)   # all settled
    """

    def __init__(self):
        self._steps: Deque[TimedStep] = deque()
        self._elapsed = 0.0

    def schedule(self, delay: float, action: Callable[[], None], label: str = "") -> None:
        if delay < 0:
            raise ValueError(f"Step delay must be >= 0, got {delay}")
        self._steps.append(TimedStep(delay=delay, action=action, label=label))

    def tick(self, dt: float) -> int:
        """Advance time and run every step that came due.

        Returns:
            Number of steps executed
        """
        if not self._steps:
            return 0

        self._elapsed += dt
        executed = 0
        while self._steps and self._elapsed >= self._steps[0].delay:
            step = self._steps.popleft()
            self._elapsed -= step.delay
            if step.label:
                logger.debug(f"Step: {step.label}")
            step.action()
            executed += 1

        if not self._steps:
            self._elapsed = 0.0
        return executed

    def clear(self) -> None:
        self._steps.clear()
        self._elapsed = 0.0

    @property
    def is_idle(self) -> bool:
        return not self._steps

    @property
    def pending(self) -> List[str]:
        return [s.label for s in self._steps]

    @property
    def time_to_next(self) -> float:
        """Seconds until the next step runs (0 when idle)."""
        if not self._steps:
            return 0.0
        return max(0.0, self._steps[0].delay - self._elapsed)
