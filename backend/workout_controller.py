"""
Workout session controller.

Turns device traffic into workout semantics for one block at a time:

    IDLE -> WARMUP -> WORKING -> COMPLETING -> IDLE

Rep notifications drive warmup/working rep counts and feed the range
estimator; live samples drive personal-best tracking and, in Just Lift mode,
the auto-stop monitor. A block ends at the bottom of the final rep, at the top
of the final rep (stop-at-top, which needs an explicit stop command), by
auto-stop, or by the user.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from auto_stop import AutoStopMonitor
from counters import CounterDeltas, CounterTracker
from devices.base import DeviceCommandError, DeviceTransport
from events import EventBus, EventType
from history_store import HistoryStore, SampleArchive
from plan import EchoItem, ExerciseItem, PlanCursor, PlanItem, target_reps_of
from range_estimator import Cable, Extremum, RangeEstimator
from session import (
    PRStatus,
    Sample,
    WorkoutRecord,
    WorkoutSession,
    classify_pr,
    prior_best_total_load_kg,
)
from timers import Scheduler

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    WARMUP = "warmup"
    WORKING = "working"
    COMPLETING = "completing"


CompletionListener = Callable[[WorkoutRecord], None]


class WorkoutSessionController:
    DEFAULT_WARMUP_REPS = 3

    def __init__(
        self,
        device: DeviceTransport,
        history: HistoryStore,
        archive: SampleArchive,
        scheduler: Scheduler,
        bus: Optional[EventBus] = None,
        warmup_reps: int = DEFAULT_WARMUP_REPS,
    ):
        self.device = device
        self.history = history
        self.archive = archive
        self.scheduler = scheduler
        self.bus = bus or EventBus()
        self.default_warmup_reps = warmup_reps

        # Global stop-at-top preference; read live when a top event arrives.
        self.stop_at_top = False

        self.state = SessionState.IDLE
        self.session: Optional[WorkoutSession] = None
        self.warmup_reps = 0
        self.working_reps = 0
        self.warmup_target = warmup_reps
        self.target_reps = 0
        self.just_lift = False
        self.current_sample: Optional[Sample] = None

        self.counters = CounterTracker()
        self.ranges = RangeEstimator(window_size=self.window_size, bus=self.bus)
        self.auto_stop = AutoStopMonitor(self.ranges, clock=scheduler.now)
        self._completion_listeners: List[CompletionListener] = []

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def add_completion_listener(self, listener: CompletionListener):
        self._completion_listeners.append(listener)

    @property
    def is_active(self) -> bool:
        return self.session is not None and self.state != SessionState.IDLE

    def window_size(self) -> int:
        total = self.warmup_reps + self.working_reps
        if total < self.warmup_target:
            return RangeEstimator.WARMUP_WINDOW
        return RangeEstimator.WORKING_WINDOW

    # ------------------------------------------------------------------
    # Block start
    # ------------------------------------------------------------------
    async def start_block(self, item: PlanItem, cursor: Optional[PlanCursor] = None) -> WorkoutSession:
        """
        Arm a new session for ``item`` and start it on the device.

        ``cursor`` links the session to a running plan (set name and set
        numbers); standalone blocks pass None.
        """
        if self.session is not None:
            logger.warning("Starting a new block while '%s' is active; discarding it", self.session.mode)

        if isinstance(item, ExerciseItem):
            start = self.device.start_program
        elif isinstance(item, EchoItem):
            start = self.device.start_echo
        else:
            raise TypeError(f"Unsupported plan item {item!r}")

        self._reset()
        self.warmup_target = self.default_warmup_reps
        self.target_reps = target_reps_of(item)
        self.just_lift = item.just_lift

        session = WorkoutSession(
            mode=item.mode_label,
            weight_kg=item.weight_kg,
            target_reps=self.target_reps,
            warmup_target=self.warmup_target,
            just_lift=item.just_lift,
            item_type=item.type,
            set_name=item.name if cursor is not None else None,
            set_number=cursor.set if cursor is not None else None,
            set_total=item.sets if cursor is not None else None,
            start_time=self.scheduler.now(),
        )
        session.init_personal_best(self.history.all_records())
        self.session = session
        self.state = SessionState.WARMUP if self.warmup_target > 0 else SessionState.WORKING

        self.device.add_monitor_listener(self.handle_sample)
        self.device.add_rep_listener(self.handle_notification)
        try:
            await start(item)
        except DeviceCommandError:
            logger.error("Failed to start %s", session.mode)
            self._reset()
            raise

        logger.info(
            "Started %s (%s reps, warmup %d)",
            session.mode,
            self.target_reps if self.target_reps > 0 else "open",
            self.warmup_target,
        )
        self.bus.emit(EventType.WORKOUT_STARTED, session=session.to_dict(), counters=self.rep_display())
        return session

    # ------------------------------------------------------------------
    # Device traffic
    # ------------------------------------------------------------------
    async def handle_sample(self, sample: Sample) -> None:
        self.current_sample = sample
        session = self.session
        if session is None or self.state in (SessionState.IDLE, SessionState.COMPLETING):
            return

        if session.observe_load(sample.total_load):
            self._personal_best_achieved(session)

        if self.just_lift:
            status = self.auto_stop.check(sample)
            self.bus.emit(EventType.AUTO_STOP_PROGRESS, **status.to_dict())
            if status.triggered:
                self.bus.emit(EventType.AUTO_STOP_TRIGGERED)
                await self.stop_workout()

    async def handle_notification(self, data: bytes) -> Optional[CounterDeltas]:
        if self.session is None or self.state in (SessionState.IDLE, SessionState.COMPLETING):
            return None

        deltas = self.counters.on_notification(data)
        if deltas is None:
            return None

        sample = self.current_sample
        if sample is None:
            if deltas.top_reached or deltas.rep_completed:
                logger.warning("Rep event without a live sample; dropped")
            return deltas

        if deltas.top_reached:
            await self._on_top(sample)
            if self.state in (SessionState.IDLE, SessionState.COMPLETING):
                return deltas

        if deltas.rep_completed:
            self._on_rep_complete(sample)
        return deltas

    async def _on_top(self, sample: Sample):
        self.ranges.record_top(sample.pos_a, sample.pos_b)
        if (
            self.stop_at_top
            and not self.just_lift
            and self.target_reps > 0
            and self.working_reps == self.target_reps - 1
        ):
            # The machine only ends the set at the bottom, so stop it explicitly.
            logger.info("Reached top of final rep! Auto-completing workout...")
            await self.stop_workout()

    def _on_rep_complete(self, sample: Sample):
        self.ranges.record_bottom(sample.pos_a, sample.pos_b)
        session = self.session

        if self.warmup_reps + self.working_reps + 1 <= self.warmup_target:
            self.warmup_reps += 1
            logger.info("Warmup rep %d/%d complete", self.warmup_reps, self.warmup_target)
            if self.warmup_reps == self.warmup_target and session.warmup_end_time is None:
                session.warmup_end_time = self.scheduler.now()
                self.state = SessionState.WORKING
            self._emit_rep("warmup")
            return

        self.working_reps += 1
        self.state = SessionState.WORKING
        if self.target_reps > 0:
            logger.info("Working rep %d/%d complete", self.working_reps, self.target_reps)
        else:
            logger.info("Working rep %d complete", self.working_reps)
        self._emit_rep("working")

        if (
            not self.stop_at_top
            and not self.just_lift
            and self.target_reps > 0
            and self.working_reps >= self.target_reps
        ):
            logger.info("Target reps reached! Auto-completing workout...")
            self._complete()

    def _emit_rep(self, phase: str):
        self.bus.emit(
            EventType.REP_COUNTED,
            phase=phase,
            warmup_reps=self.warmup_reps,
            working_reps=self.working_reps,
            counters=self.rep_display(),
        )

    def _personal_best_achieved(self, session: WorkoutSession):
        best = session.live_peak_total_load_kg
        if session.identity_label:
            logger.info("New personal best for %s: %.2f kg", session.identity_label, best)
        else:
            logger.info("New personal best: %.2f kg", best)
        self.bus.emit(
            EventType.PERSONAL_BEST_ACHIEVED,
            best_kg=best,
            identity_key=session.identity_key,
            identity_label=session.identity_label,
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------
    async def stop_workout(self) -> Optional[WorkoutRecord]:
        """
        Send the stop command, then complete the active session.

        If the command fails the session keeps running in its previous state
        and the DeviceCommandError propagates to the caller.
        """
        previous = self.state
        if self.session is not None:
            self.state = SessionState.COMPLETING
        try:
            await self.device.send_stop_command()
        except DeviceCommandError as exc:
            self.state = previous
            logger.error("Failed to stop workout: %s", exc)
            self.bus.emit(EventType.STOP_FAILED, error=str(exc))
            raise
        logger.info("Workout stopped")
        return self._complete()

    def _complete(self) -> Optional[WorkoutRecord]:
        session = self.session
        if session is None:
            return None
        self.state = SessionState.COMPLETING
        self.device.stop_polling()

        session.end_time = self.scheduler.now()
        movement = self.archive.samples_between(session.start_time, session.end_time)
        record = WorkoutRecord.from_session(session, self.working_reps, movement)
        try:
            self.history.append(record)
        except OSError as e:
            logger.error("Failed to save workout: %s", e)

        if movement:
            logger.info("Captured %d movement data points", len(movement))
        else:
            logger.warning("No movement data captured for this workout")

        pr = self._report_pr(record)
        self.bus.emit(
            EventType.WORKOUT_COMPLETED,
            workout={k: v for k, v in record.to_dict().items() if k != "movement_data"},
            samples=len(movement),
            pr_status=pr,
        )
        self._reset()
        logger.info("Workout completed and saved to history")

        for listener in list(self._completion_listeners):
            try:
                listener(record)
            except Exception:
                logger.exception("Completion listener failed")
        return record

    def _report_pr(self, record: WorkoutRecord) -> Optional[str]:
        identity = record.identity
        if identity is None:
            self.bus.emit(EventType.PR_BANNER_STATUS, status=None)
            return None

        current = record.total_load_peak_kg
        prior = prior_best_total_load_kg(self.history.all_records(), identity, exclude=record)
        status = classify_pr(current, prior)
        best = max(current, prior)
        if status == PRStatus.NEW:
            logger.info("New total load PR for %s: %.2f kg", identity.label, best)
        elif status == PRStatus.MATCHED:
            logger.info("Matched total load PR for %s: %.2f kg", identity.label, best)
        else:
            logger.info(
                "Total load PR for %s remains %.2f kg (current set %.2f kg)",
                identity.label,
                best,
                current,
            )
        self.bus.emit(
            EventType.PR_BANNER_STATUS,
            status=status.value,
            identity_label=identity.label,
            best_kg=best,
            current_kg=current,
            prior_best_kg=prior,
        )
        return status.value

    def _reset(self):
        self.state = SessionState.IDLE
        self.session = None
        self.current_sample = None
        self.warmup_reps = 0
        self.working_reps = 0
        self.counters.reset()
        self.ranges.reset()
        self.auto_stop.reset()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def rep_display(self) -> Dict[str, str]:
        if self.session is None:
            return {"warmup": f"-/{self.default_warmup_reps}", "working": "-/-"}
        working = (
            f"{self.working_reps}/{self.target_reps}" if self.target_reps > 0 else str(self.working_reps)
        )
        return {"warmup": f"{self.warmup_reps}/{self.warmup_target}", "working": working}

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "stop_at_top": self.stop_at_top,
            "warmup_reps": self.warmup_reps,
            "working_reps": self.working_reps,
            "counters": self.rep_display(),
            "session": self.session.to_dict() if self.session else None,
            "ranges": {
                cable.value: {
                    extremum.value: self.ranges.current_estimate(cable, extremum).to_dict()
                    for extremum in Extremum
                }
                for cable in Cable
            },
        }
