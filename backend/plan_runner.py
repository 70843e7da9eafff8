"""
Plan runner: sequences plan items across their sets with rest in between.

    start(items) -> run block -> (block completes) -> rest -> run block -> ...

After each completed block the cursor either moves to the next set of the same
item or to set 1 of the next item. The rest before the next block always uses
the rest time of the item that just finished. The runner never touches the
active WorkoutSession; it only starts blocks through the controller and
listens for their completion.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from devices.base import DeviceCommandError, DeviceTransport
from events import EventBus, EventType
from plan import PlanCursor, PlanItem
from session import WorkoutRecord
from timers import RestTimer, Scheduler
from workout_controller import WorkoutSessionController

logger = logging.getLogger(__name__)


class PlanRunner:
    def __init__(
        self,
        controller: WorkoutSessionController,
        device: DeviceTransport,
        scheduler: Scheduler,
        bus: Optional[EventBus] = None,
    ):
        self.controller = controller
        self.device = device
        self.scheduler = scheduler
        self.bus = bus or controller.bus
        self.items: List[PlanItem] = []
        self.active = False
        self.cursor = PlanCursor()
        self.rest: Optional[RestTimer] = None
        controller.add_completion_listener(self._on_block_complete)

    @property
    def current_item(self) -> Optional[PlanItem]:
        if 0 <= self.cursor.index < len(self.items):
            return self.items[self.cursor.index]
        return None

    async def start(self, items: List[PlanItem]) -> bool:
        """
        Start running ``items`` from the first set of the first item.

        Returns False, without touching any state, when the device is not
        connected or the plan is empty.
        """
        if not self.device.is_connected:
            logger.warning("Please connect your device before starting a plan.")
            return False
        if not items:
            logger.warning("No items in plan.")
            return False

        self._cancel_rest()
        self.items = list(items)
        self.active = True
        self.cursor = PlanCursor(index=0, set=1)
        logger.info("Starting plan with %d item(s)", len(self.items))
        self.bus.emit(EventType.PLAN_STARTED, items=[item.to_dict() for item in self.items])

        self._apply_item(self.items[0])
        await self.run_current_block()
        return True

    def _apply_item(self, item: PlanItem):
        # Mirrors the item's stop-at-top choice into the global preference.
        self.controller.stop_at_top = item.stop_at_top

    async def run_current_block(self):
        if not self.active:
            return
        item = self.current_item
        if item is None:
            self._finish()
            return

        self._apply_item(item)
        logger.info(
            "Plan item %d/%d, set %d/%d: %s",
            self.cursor.index + 1,
            len(self.items),
            self.cursor.set,
            item.sets,
            item.name or f"Untitled {item.type.title()}",
        )
        self.bus.emit(
            EventType.PLAN_BLOCK_STARTED,
            cursor=self.cursor.to_dict(),
            item=item.to_dict(),
        )

        # Per-item override, restored once the block has been launched.
        previous = self.controller.stop_at_top
        self.controller.stop_at_top = item.stop_at_top
        try:
            await self.controller.start_block(item, cursor=PlanCursor(self.cursor.index, self.cursor.set))
        except DeviceCommandError as e:
            logger.error("Failed to start plan block: %s", e)
            self._finish()
            return
        finally:
            self.controller.stop_at_top = previous

    def _on_block_complete(self, record: WorkoutRecord):
        if not self.active:
            return
        item = self.current_item
        if item is None:
            self._finish()
            return

        if self.cursor.set < item.sets:
            self.cursor.set += 1
            self._apply_item(item)
            self._begin_rest(item.rest_sec, f"Next set ({self.cursor.set}/{item.sets})", item)
            return

        self.cursor.index += 1
        self.cursor.set = 1
        next_item = self.current_item
        if next_item is None:
            self._finish()
            return
        self._apply_item(next_item)
        self._begin_rest(item.rest_sec, f"Next: {next_item.name}", next_item)

    def _begin_rest(self, seconds: float, label: str, next_item: PlanItem):
        self._cancel_rest()
        logger.info("Rest %ss, then %s", seconds, label)
        self.rest = RestTimer(
            self.scheduler,
            seconds,
            on_done=self._rest_finished,
            on_tick=self._rest_tick,
        )
        self.bus.emit(
            EventType.REST_STARTED,
            seconds=seconds,
            label=label,
            next_name=next_item.name,
            up_next=next_item.describe(),
            cursor=self.cursor.to_dict(),
        )
        self.rest.start()

    def _rest_tick(self, timer: RestTimer):
        self.bus.emit(
            EventType.REST_TICK,
            remaining_seconds=timer.remaining_seconds,
            progress=timer.progress,
        )

    def _rest_finished(self):
        timer = self.rest
        self.rest = None
        skipped = bool(timer and timer.skipped)
        if not skipped:
            logger.info("Rest finished, starting next block")
        self.bus.emit(EventType.REST_FINISHED, skipped=skipped)
        self.scheduler.spawn(self.run_current_block())

    def skip_rest(self) -> bool:
        if self.rest is None:
            return False
        self.rest.skip()
        return True

    def extend_rest(self, seconds: float = RestTimer.EXTEND_SECONDS) -> bool:
        if self.rest is None:
            return False
        self.rest.extend(seconds)
        self._rest_tick(self.rest)
        return True

    def _cancel_rest(self):
        if self.rest is not None:
            self.rest.cancel()
            self.rest = None

    def cancel(self):
        """Abandon the plan. A block already running keeps going as a standalone set."""
        if not self.active:
            return
        self._cancel_rest()
        self.active = False
        logger.info("Plan cancelled")
        self.bus.emit(EventType.PLAN_FINISHED, cancelled=True)

    def _finish(self):
        self._cancel_rest()
        self.active = False
        logger.info("Plan complete")
        self.bus.emit(EventType.PLAN_FINISHED, cancelled=False)

    def status(self) -> Dict[str, Any]:
        item = self.current_item
        return {
            "active": self.active,
            "cursor": self.cursor.to_dict(),
            "items": len(self.items),
            "current_item": item.to_dict() if item and self.active else None,
            "rest": {
                "remaining_seconds": self.rest.remaining_seconds,
                "progress": self.rest.progress,
            }
            if self.rest is not None
            else None,
        }
