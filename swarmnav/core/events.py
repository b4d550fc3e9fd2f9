"""Fire-and-forget telemetry events.

Listeners are plain callables. They run synchronously inside the tick, so a
listener that raises is logged and skipped rather than allowed to break the
control loop.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Telemetry notifications emitted by the core."""
    FORMATION_CHANGED = "formation_changed"
    WAYPOINT_REACHED = "waypoint_reached"
    COLLISION_RISK = "collision_risk_detected"
    COMMUNICATION_STATUS = "communication_status_changed"
    TIMING_VIOLATION = "timing_violation"
    PHASE_CHANGED = "phase_changed"
    MISSION_COMPLETE = "mission_complete"


@dataclass
class SwarmEvent:
    """A single notification, stamped with mission time."""
    event_type: EventType
    timestamp: float
    data: dict = field(default_factory=dict)


Listener = Callable[[SwarmEvent], None]


class EventBus:
    """Synchronous event dispatcher with a bounded history.

    Example:
        bus = EventBus()
        bus.subscribe(lambda e: print(e.data), EventType.WAYPOINT_REACHED)
        bus.emit(EventType.WAYPOINT_REACHED, index=0, success_fraction=0.8)
    """

    def __init__(self, history_size: int = 500, clock: Optional[Callable[[], float]] = None):
        self._listeners: List[Tuple[Optional[EventType], Listener]] = []
        self._history: Deque[SwarmEvent] = deque(maxlen=history_size)
        self._clock = clock or (lambda: 0.0)

    def set_clock(self, clock: Callable[[], float]) -> None:
        """Use clock() as the timestamp source for new events."""
        self._clock = clock

    def subscribe(self, callback: Listener, event_type: Optional[EventType] = None) -> None:
        """Register a listener.

        Args:
            callback: Called with each matching SwarmEvent
            event_type: Only deliver this type; None delivers everything
        """
        self._listeners.append((event_type, callback))

    def unsubscribe(self, callback: Listener) -> bool:
        before = len(self._listeners)
        self._listeners = [(t, cb) for t, cb in self._listeners if cb != callback]
        return len(self._listeners) < before

    def emit(self, event_type: EventType, **data) -> SwarmEvent:
        """Record an event and deliver it to matching listeners."""
        event = SwarmEvent(event_type=event_type, timestamp=self._clock(), data=data)
        self._history.append(event)

        for wanted, callback in list(self._listeners):
            if wanted is not None and wanted != event_type:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception(f"Listener failed while handling {event_type.value}")

        return event

    def history(self, event_type: Optional[EventType] = None) -> List[SwarmEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.event_type == event_type]

    def counts(self) -> Dict[str, int]:
        """Number of recorded events per type."""
        result: Dict[str, int] = {}
        for event in self._history:
            result[event.event_type.value] = result.get(event.event_type.value, 0) + 1
        return result

    def clear_history(self) -> None:
        self._history.clear()
