"""
Engine events for the presentation layer.

The workout engine never renders anything itself. Every user-visible change
(rep counted, personal best, rest countdown, ...) is emitted as a plain
structured event on an EventBus; the WebSocket server in main.py is one
subscriber, tests are another.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    WORKOUT_STARTED = "workout_started"
    REP_COUNTED = "rep_counted"
    RANGE_UPDATED = "range_updated"
    PERSONAL_BEST_ACHIEVED = "personal_best_achieved"
    AUTO_STOP_PROGRESS = "auto_stop_progress"
    AUTO_STOP_TRIGGERED = "auto_stop_triggered"
    STOP_FAILED = "stop_failed"
    WORKOUT_COMPLETED = "workout_completed"
    PR_BANNER_STATUS = "pr_banner_status"
    PLAN_STARTED = "plan_started"
    PLAN_BLOCK_STARTED = "plan_block_started"
    REST_STARTED = "rest_started"
    REST_TICK = "rest_tick"
    REST_FINISHED = "rest_finished"
    PLAN_FINISHED = "plan_finished"


@dataclass
class EngineEvent:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "ts": self.ts, **self.payload}


Subscriber = Callable[[EngineEvent], None]


class EventBus:
    """Synchronous fan-out of engine events to subscribers."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event_type: EventType, **payload: Any) -> EngineEvent:
        event = EngineEvent(type=event_type, payload=payload)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", event_type.value)
        return event

