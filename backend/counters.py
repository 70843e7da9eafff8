"""
Decoding of the machine's rep notifications.

A rep notification carries little-endian u16 counters. Index 0 increments when
the cable reaches the top of its range, index 2 when a rep completes at the
bottom; index 1 is unused. The counters wrap at 0xFFFF and carry no timestamp,
so the tracker only ever reasons about the change since the last notification.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

MIN_FIELDS = 3


def counter_delta(last: int, current: int) -> int:
    """Forward distance from ``last`` to ``current`` on a 16-bit counter."""
    if current >= last:
        return current - last
    return 0xFFFF - last + current + 1


@dataclass(frozen=True)
class CounterReading:
    top: int
    complete: int


@dataclass(frozen=True)
class CounterDeltas:
    top_delta: int = 0
    complete_delta: int = 0

    # Any positive delta is one logical event; several increments inside a
    # single notification are not split into separate reps.
    @property
    def top_reached(self) -> bool:
        return self.top_delta > 0

    @property
    def rep_completed(self) -> bool:
        return self.complete_delta > 0


def decode_counters(data: bytes) -> Optional[CounterReading]:
    """Parse the top/complete counters, or None when the buffer is too short."""
    data = bytes(data)
    count = len(data) // 2
    if count < MIN_FIELDS:
        return None
    values = struct.unpack_from(f"<{count}H", data)
    return CounterReading(top=values[0], complete=values[2])


class CounterTracker:
    """
    Turns successive counter readings into deltas.

    Each counter starts unseeded (None). The first reading of a counter only
    seeds it and yields a zero delta, so reconnecting mid-set never fires a
    phantom rep. After every accepted notification both last values advance,
    whether or not an event fired.
    """

    def __init__(self):
        self.last_top: Optional[int] = None
        self.last_complete: Optional[int] = None

    def reset(self):
        self.last_top = None
        self.last_complete = None

    @property
    def seeded(self) -> bool:
        return self.last_top is not None and self.last_complete is not None

    def on_notification(self, data: bytes) -> Optional[CounterDeltas]:
        """Return the deltas for this notification, or None when it is ignored."""
        reading = decode_counters(data)
        if reading is None:
            logger.debug("Ignoring short rep notification (%d bytes)", len(data))
            return None

        top_delta = 0
        if self.last_top is not None:
            top_delta = counter_delta(self.last_top, reading.top)
        complete_delta = 0
        if self.last_complete is not None:
            complete_delta = counter_delta(self.last_complete, reading.complete)

        if top_delta:
            logger.info("TOP detected! Counter: %s -> %s", self.last_top, reading.top)
        if complete_delta:
            logger.info(
                "BOTTOM detected! Counter: %s -> %s", self.last_complete, reading.complete
            )

        self.last_top = reading.top
        self.last_complete = reading.complete
        return CounterDeltas(top_delta=top_delta, complete_delta=complete_delta)
