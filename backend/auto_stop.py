"""
Auto-stop for Just Lift sets.

With no target reps, the set ends when the user parks the handles: once a
cable with a discovered range sits within 5% of its bottom for 5 seconds the
monitor signals that the workout should be stopped.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from range_estimator import Cable, Extremum, RangeEstimator
from session import Sample

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoStopStatus:
    in_danger_zone: bool = False
    progress: float = 0.0
    triggered: bool = False
    seconds_left: int = 0

    def to_dict(self):
        return {
            "in_danger_zone": self.in_danger_zone,
            "progress": self.progress,
            "triggered": self.triggered,
            "seconds_left": self.seconds_left,
        }


IDLE = AutoStopStatus()


class AutoStopMonitor:
    """Danger-zone detector with a dwell timer, evaluated once per live sample."""

    DWELL_SECONDS = 5.0
    MIN_RANGE = 50
    ZONE_FRACTION = 0.05

    def __init__(self, ranges: RangeEstimator, clock: Optional[Callable[[], float]] = None):
        self.ranges = ranges
        self.clock = clock or time.time
        self.zone_entered_at: Optional[float] = None
        self._fired = False

    def reset(self):
        self.zone_entered_at = None
        self._fired = False

    def in_danger_zone(self, sample: Sample) -> Optional[bool]:
        """
        True/False for the zone test, or None when no cable has a usable range.

        A cable takes part only when its discovered range spans more than
        MIN_RANGE position units; any participating cable at or below
        ``bottom + range * ZONE_FRACTION`` puts the sample in the zone.
        """
        bottoms = {
            cable: self.ranges.current_estimate(cable, Extremum.BOTTOM).average for cable in Cable
        }
        if all(value is None for value in bottoms.values()):
            return None

        checked = False
        in_zone = False
        for cable in Cable:
            span = self.ranges.span(cable)
            if span is None or span <= self.MIN_RANGE:
                continue
            checked = True
            threshold = bottoms[cable] + span * self.ZONE_FRACTION
            if sample.position(cable) <= threshold:
                in_zone = True
        if not checked:
            return None
        return in_zone

    def check(self, sample: Sample) -> AutoStopStatus:
        in_zone = self.in_danger_zone(sample)
        if in_zone is None:
            return IDLE

        if not in_zone:
            if self.zone_entered_at is not None:
                logger.info("Moved out of danger zone, timer reset")
            self.reset()
            return IDLE

        now = self.clock()
        if self.zone_entered_at is None:
            self.zone_entered_at = now
            logger.info(
                "Near bottom of range, starting auto-stop timer (%ds)...",
                int(self.DWELL_SECONDS),
            )

        elapsed = now - self.zone_entered_at
        progress = min(elapsed / self.DWELL_SECONDS, 1.0)
        triggered = False
        if elapsed >= self.DWELL_SECONDS and not self._fired:
            self._fired = True
            triggered = True
            logger.info("Auto-stop triggered! Finishing workout...")
        seconds_left = int(math.ceil(max(0.0, self.DWELL_SECONDS - elapsed)))
        return AutoStopStatus(
            in_danger_zone=True,
            progress=progress,
            triggered=triggered,
            seconds_left=seconds_left,
        )
