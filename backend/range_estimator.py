"""
Rolling estimate of each cable's rep range.

The machine only tells us *when* a cable reached the top or completed a rep at
the bottom. The positions sampled at those moments are pushed into small FIFO
windows (2 samples during warmup, 3 afterwards) and averaged to discover the
top and bottom of the user's range for this set.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from events import EventBus, EventType

logger = logging.getLogger(__name__)


class Cable(str, Enum):
    A = "A"
    B = "B"


class Extremum(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"


@dataclass(frozen=True)
class Band:
    min: float
    max: float

    def to_dict(self) -> Dict[str, float]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class RangeEstimate:
    average: Optional[int] = None
    band: Optional[Band] = None

    @property
    def known(self) -> bool:
        return self.average is not None

    def to_dict(self):
        return {
            "average": self.average,
            "band": self.band.to_dict() if self.band else None,
        }


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class RollingWindow:
    """Most recent position values, oldest evicted first."""

    def __init__(self):
        self.values: List[float] = []

    def push(self, value: float, size: int):
        self.values.append(float(value))
        while len(self.values) > size:
            self.values.pop(0)

    def clear(self):
        self.values.clear()

    def __len__(self):
        return len(self.values)

    def estimate(self) -> RangeEstimate:
        if not self.values:
            return RangeEstimate()
        arr = np.asarray(self.values, dtype=float)
        return RangeEstimate(
            average=round_half_up(float(arr.mean())),
            band=Band(min=float(arr.min()), max=float(arr.max())),
        )


class RangeEstimator:
    """
    Per-cable top/bottom windows and the estimates derived from them.

    ``window_size`` is asked on every insertion, so a set that leaves warmup
    starts widening its windows from the next recorded position on.
    """

    WARMUP_WINDOW = 2
    WORKING_WINDOW = 3
    LOG_CHANGE_THRESHOLD = 5

    def __init__(
        self,
        window_size: Optional[Callable[[], int]] = None,
        bus: Optional[EventBus] = None,
    ):
        self.window_size = window_size or (lambda: self.WORKING_WINDOW)
        self.bus = bus
        self.windows: Dict[Tuple[Cable, Extremum], RollingWindow] = {
            (cable, extremum): RollingWindow() for cable in Cable for extremum in Extremum
        }
        self._estimates: Dict[Tuple[Cable, Extremum], RangeEstimate] = {
            key: RangeEstimate() for key in self.windows
        }

    def reset(self):
        for window in self.windows.values():
            window.clear()
        self._estimates = {key: RangeEstimate() for key in self.windows}

    def record_top(self, pos_a: float, pos_b: float):
        self._record(Extremum.TOP, pos_a, pos_b)

    def record_bottom(self, pos_a: float, pos_b: float):
        self._record(Extremum.BOTTOM, pos_a, pos_b)

    def current_estimate(self, cable: Cable, extremum: Extremum) -> RangeEstimate:
        return self._estimates[(Cable(cable), Extremum(extremum))]

    def span(self, cable: Cable) -> Optional[int]:
        """Top average minus bottom average, or None until both are known."""
        top = self.current_estimate(cable, Extremum.TOP).average
        bottom = self.current_estimate(cable, Extremum.BOTTOM).average
        if top is None or bottom is None:
            return None
        return top - bottom

    def window_length(self, cable: Cable, extremum: Extremum) -> int:
        return len(self.windows[(Cable(cable), Extremum(extremum))])

    def _record(self, extremum: Extremum, pos_a: float, pos_b: float):
        size = self.window_size()
        self.windows[(Cable.A, extremum)].push(pos_a, size)
        self.windows[(Cable.B, extremum)].push(pos_b, size)
        self._update()

    def _update(self):
        previous = dict(self._estimates)
        self._estimates = {key: window.estimate() for key, window in self.windows.items()}

        first = previous[(Cable.A, Extremum.BOTTOM)].average is None
        changed = any(
            old.average is not None
            and self._estimates[key].average is not None
            and abs(self._estimates[key].average - old.average) > self.LOG_CHANGE_THRESHOLD
            for key, old in previous.items()
        )
        if first or changed:
            self._report()

    def _report(self):
        summary = {}
        parts = []
        for cable in Cable:
            bottom = self.current_estimate(cable, Extremum.BOTTOM).average
            top = self.current_estimate(cable, Extremum.TOP).average
            span = self.span(cable) or 0
            summary[cable.value] = {"bottom": bottom, "top": top, "range": span}
            parts.append(
                f"{cable.value}[{bottom if bottom is not None else '?'}-"
                f"{top if top is not None else '?'}] ({span})"
            )
        logger.info("Rep range updated: %s", ", ".join(parts))
        if self.bus is not None:
            self.bus.emit(EventType.RANGE_UPDATED, ranges=summary)
