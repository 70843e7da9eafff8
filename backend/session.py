"""
Workout Session data for the cable machine engine.

A WorkoutSession is the live, mutable record of one block (one set of an
exercise or echo item). When the block completes it is frozen into a
WorkoutRecord together with the movement samples captured while it ran, and
the record is appended to history.

Personal bests are scoped by identity: the plan set name when there is one,
otherwise the mode label. Two sessions with the same identity compete for the
same total-load PR.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import math
import time

PR_EPSILON = 1e-4


@dataclass(frozen=True)
class Sample:
    """A live reading from both cables. Loads in kg, positions in device units."""

    load_a: float
    load_b: float
    pos_a: float
    pos_b: float
    timestamp: float = field(default_factory=time.time)

    @property
    def total_load(self) -> float:
        return (self.load_a or 0.0) + (self.load_b or 0.0)

    def position(self, cable) -> float:
        return self.pos_a if cable == "A" else self.pos_b

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sample":
        stamp = _timestamp(data.get("timestamp"))
        return cls(
            load_a=_number(data.get("loadA", data.get("load_a"))),
            load_b=_number(data.get("loadB", data.get("load_b"))),
            pos_a=_number(data.get("posA", data.get("pos_a"))),
            pos_b=_number(data.get("posB", data.get("pos_b"))),
            timestamp=time.time() if stamp is None else stamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "loadA": self.load_a,
            "loadB": self.load_b,
            "posA": self.pos_a,
            "posB": self.pos_b,
        }


def _number(value: Any, default: float = 0.0) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    return num if math.isfinite(num) else default


def _timestamp(value: Any) -> Optional[float]:
    """Epoch seconds from a number or an ISO-8601 string; None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        num = float(text)
        return num if math.isfinite(num) else None
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError:
        return None


def _clean_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Identity:
    key: str
    label: str


def identity_for(set_name: Optional[str], mode: Optional[str]) -> Optional[Identity]:
    """Set name wins over mode; no usable name means no PR tracking."""
    name = _clean_text(set_name)
    if name:
        return Identity(key=f"set:{name.lower()}", label=name)
    mode_name = _clean_text(mode)
    if mode_name:
        return Identity(key=f"mode:{mode_name.lower()}", label=mode_name)
    return None


@dataclass
class WorkoutSession:
    """The single active block. Owned and mutated by the session controller only."""

    mode: str
    weight_kg: float
    target_reps: int
    warmup_target: int = 3
    just_lift: bool = False
    item_type: str = "exercise"
    set_name: Optional[str] = None
    set_number: Optional[int] = None
    set_total: Optional[int] = None
    start_time: float = field(default_factory=time.time)
    warmup_end_time: Optional[float] = None
    end_time: Optional[float] = None

    identity_key: Optional[str] = None
    identity_label: Optional[str] = None
    prior_best_total_load_kg: float = 0.0
    live_peak_total_load_kg: float = 0.0
    current_personal_best_kg: float = 0.0
    celebrated_personal_best_kg: float = 0.0
    has_new_personal_best: bool = False

    @property
    def identity(self) -> Optional[Identity]:
        return identity_for(self.set_name, self.mode)

    def init_personal_best(self, history: Iterable["WorkoutRecord"]):
        """Resolve identity and seed the PR fields from matching history."""
        identity = self.identity
        if identity:
            self.identity_key = identity.key
            self.identity_label = identity.label
            self.prior_best_total_load_kg = prior_best_total_load_kg(history, identity)
        else:
            self.identity_key = None
            self.identity_label = None
            self.prior_best_total_load_kg = 0.0
        self.live_peak_total_load_kg = 0.0
        self.current_personal_best_kg = self.prior_best_total_load_kg
        self.celebrated_personal_best_kg = self.current_personal_best_kg
        self.has_new_personal_best = False

    def observe_load(self, total_load_kg: float) -> bool:
        """
        Track the live peak. Returns True exactly once per new personal best,
        i.e. when the peak beats the last celebrated value by more than epsilon.
        """
        if total_load_kg > self.live_peak_total_load_kg:
            self.live_peak_total_load_kg = total_load_kg
        self.current_personal_best_kg = max(
            self.prior_best_total_load_kg, self.live_peak_total_load_kg
        )
        if (
            self.identity_key
            and self.live_peak_total_load_kg > self.celebrated_personal_best_kg + PR_EPSILON
        ):
            self.celebrated_personal_best_kg = self.live_peak_total_load_kg
            self.has_new_personal_best = True
            return True
        return False

    @property
    def duration_seconds(self) -> Optional[float]:
        end = self.end_time or time.time()
        return end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "weight_kg": self.weight_kg,
            "target_reps": self.target_reps,
            "warmup_target": self.warmup_target,
            "just_lift": self.just_lift,
            "item_type": self.item_type,
            "set_name": self.set_name,
            "set_number": self.set_number,
            "set_total": self.set_total,
            "start_time": self.start_time,
            "warmup_end_time": self.warmup_end_time,
            "end_time": self.end_time,
            "identity_key": self.identity_key,
            "identity_label": self.identity_label,
            "prior_best_total_load_kg": self.prior_best_total_load_kg,
            "live_peak_total_load_kg": self.live_peak_total_load_kg,
            "current_personal_best_kg": self.current_personal_best_kg,
            "has_new_personal_best": self.has_new_personal_best,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class WorkoutRecord:
    """A finished session as stored in history."""

    mode: Optional[str]
    weight_kg: float
    reps: int
    timestamp: Optional[float]
    start_time: Optional[float] = None
    warmup_end_time: Optional[float] = None
    end_time: Optional[float] = None
    set_name: Optional[str] = None
    set_number: Optional[int] = None
    set_total: Optional[int] = None
    item_type: Optional[str] = None
    movement_data: List[Sample] = field(default_factory=list)
    total_load_peak_kg: float = 0.0

    @classmethod
    def from_session(
        cls, session: WorkoutSession, reps: int, movement_data: List[Sample]
    ) -> "WorkoutRecord":
        return cls(
            mode=session.mode,
            weight_kg=session.weight_kg,
            reps=reps,
            timestamp=session.end_time,
            start_time=session.start_time,
            warmup_end_time=session.warmup_end_time,
            end_time=session.end_time,
            set_name=_clean_text(session.set_name),
            set_number=session.set_number,
            set_total=session.set_total,
            item_type=session.item_type,
            movement_data=list(movement_data),
        ).with_peak()

    def with_peak(self) -> "WorkoutRecord":
        """Return a copy whose cached total-load peak is filled in."""
        if self.total_load_peak_kg > 0:
            return self
        peak = max((s.total_load for s in self.movement_data), default=0.0)
        if peak <= 0 and self.weight_kg:
            peak = max(peak, self.weight_kg * 2)
        return replace(self, total_load_peak_kg=peak)

    @property
    def history_key(self) -> Optional[float]:
        for value in (self.timestamp, self.end_time, self.start_time):
            if value is not None:
                return value
        return None

    @property
    def identity(self) -> Optional[Identity]:
        return identity_for(self.set_name, self.mode)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkoutRecord":
        """Build a record from stored JSON, tolerating missing or messy fields."""
        movement = []
        for point in data.get("movement_data") or data.get("movementData") or []:
            if not isinstance(point, dict):
                continue
            if _timestamp(point.get("timestamp")) is None:
                continue
            movement.append(Sample.from_dict(point))

        def opt_time(key, alt):
            return _timestamp(data.get(key, data.get(alt)))

        def opt_int(key, alt):
            value = data.get(key, data.get(alt))
            return None if value is None else int(_number(value))

        mode = data.get("mode")
        return cls(
            mode=mode.strip() if isinstance(mode, str) else None,
            weight_kg=_number(data.get("weight_kg", data.get("weightKg"))),
            reps=int(_number(data.get("reps"))),
            timestamp=opt_time("timestamp", "timestamp"),
            start_time=opt_time("start_time", "startTime"),
            warmup_end_time=opt_time("warmup_end_time", "warmupEndTime"),
            end_time=opt_time("end_time", "endTime"),
            set_name=_clean_text(data.get("set_name", data.get("setName"))),
            set_number=opt_int("set_number", "setNumber"),
            set_total=opt_int("set_total", "setTotal"),
            item_type=data.get("item_type", data.get("itemType")),
            movement_data=movement,
            total_load_peak_kg=_number(
                data.get("total_load_peak_kg", data.get("totalLoadPeakKg"))
            ),
        ).with_peak()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "weight_kg": self.weight_kg,
            "reps": self.reps,
            "timestamp": self.timestamp,
            "start_time": self.start_time,
            "warmup_end_time": self.warmup_end_time,
            "end_time": self.end_time,
            "set_name": self.set_name,
            "set_number": self.set_number,
            "set_total": self.set_total,
            "item_type": self.item_type,
            "total_load_peak_kg": self.total_load_peak_kg,
            "movement_data": [s.to_dict() for s in self.movement_data],
        }


def prior_best_total_load_kg(
    history: Iterable[WorkoutRecord],
    identity: Optional[Identity],
    exclude: Optional[WorkoutRecord] = None,
) -> float:
    """Best cached total-load peak among history records sharing ``identity``."""
    if identity is None:
        return 0.0
    best = 0.0
    for record in history:
        if exclude is not None and record is exclude:
            continue
        other = record.identity
        if other is None or other.key != identity.key:
            continue
        best = max(best, record.total_load_peak_kg)
    return best


class PRStatus(str, Enum):
    NEW = "new"
    MATCHED = "matched"
    BEHIND = "behind"


def classify_pr(current_peak_kg: float, prior_best_kg: float) -> PRStatus:
    if current_peak_kg > prior_best_kg + PR_EPSILON:
        return PRStatus.NEW
    if abs(current_peak_kg - prior_best_kg) <= PR_EPSILON and prior_best_kg > 0:
        return PRStatus.MATCHED
    return PRStatus.BEHIND
