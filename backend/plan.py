"""
Workout plans: an ordered list of exercise and echo blocks.

Plan items are tagged variants. ``ExerciseItem`` runs a program mode at a
fixed per-cable weight; ``EchoItem`` runs echo mode, where the machine
mirrors the user's force at a chosen level. Every consumer matches on the
concrete type rather than poking at loose fields.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from enum import IntEnum
from typing import Any, Dict, List, Union


class ProgramMode(IntEnum):
    OLD_SCHOOL = 0
    PUMP = 2
    TUT = 3
    TUT_BEAST = 4
    ECCENTRIC_ONLY = 6


PROGRAM_MODE_NAMES = {
    ProgramMode.OLD_SCHOOL: "Old School",
    ProgramMode.PUMP: "Pump",
    ProgramMode.TUT: "TUT",
    ProgramMode.TUT_BEAST: "TUT Beast",
    ProgramMode.ECCENTRIC_ONLY: "Eccentric Only",
}


class EchoLevel(IntEnum):
    HARD = 0
    HARDER = 1
    HARDEST = 2
    EPIC = 3


ECHO_LEVEL_NAMES = {
    EchoLevel.HARD: "Hard",
    EchoLevel.HARDER: "Harder",
    EchoLevel.HARDEST: "Hardest",
    EchoLevel.EPIC: "Epic",
}


def _check_range(name: str, value: float, low: float, high: float):
    if value is None or not (low <= value <= high):
        raise ValueError(f"Invalid {name} {value!r}: expected {low}..{high}")


@dataclass(frozen=True)
class ExerciseItem:
    """A program-mode block: ``sets`` sets of ``reps`` at ``per_cable_kg``."""

    name: str = "Untitled Exercise"
    mode: ProgramMode = ProgramMode.OLD_SCHOOL
    per_cable_kg: float = 10.0
    reps: int = 10
    sets: int = 3
    rest_sec: int = 60
    cables: int = 2
    just_lift: bool = False
    stop_at_top: bool = False
    progression_kg: float = 0.0

    type = "exercise"

    def __post_init__(self):
        object.__setattr__(self, "mode", ProgramMode(self.mode))
        _check_range("weight per cable (kg)", self.per_cable_kg, 0, 100)
        if not self.just_lift:
            _check_range("number of reps", self.reps, 1, 100)
        _check_range("progression (kg)", self.progression_kg, -3, 3)
        _check_range("sets", self.sets, 1, 99)
        _check_range("rest (sec)", self.rest_sec, 0, 600)
        _check_range("cables", self.cables, 1, 2)

    @property
    def target_reps(self) -> int:
        return 0 if self.just_lift else self.reps

    @property
    def mode_label(self) -> str:
        base = PROGRAM_MODE_NAMES[self.mode]
        return f"Just Lift ({base})" if self.just_lift else base

    @property
    def weight_kg(self) -> float:
        return self.per_cable_kg

    def describe(self) -> str:
        return (
            f"{PROGRAM_MODE_NAMES[self.mode]} • {self.per_cable_kg:g} kg/cable "
            f"× {self.cables} • {self.reps} reps"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mode"] = int(self.mode)
        data["type"] = self.type
        return data


@dataclass(frozen=True)
class EchoItem:
    """An echo-mode block; weight is whatever the user pushes."""

    name: str = "Echo Block"
    level: EchoLevel = EchoLevel.HARD
    eccentric_pct: int = 100
    target_reps: int = 2
    sets: int = 3
    rest_sec: int = 60
    just_lift: bool = False
    stop_at_top: bool = False

    type = "echo"

    def __post_init__(self):
        object.__setattr__(self, "level", EchoLevel(self.level))
        _check_range("eccentric percentage", self.eccentric_pct, 0, 150)
        if not self.just_lift:
            _check_range("target reps", self.target_reps, 0, 30)
        _check_range("sets", self.sets, 1, 99)
        _check_range("rest (sec)", self.rest_sec, 0, 600)

    @property
    def effective_target_reps(self) -> int:
        return 0 if self.just_lift else self.target_reps

    @property
    def mode_label(self) -> str:
        level = ECHO_LEVEL_NAMES[self.level]
        return f"Just Lift Echo {level}" if self.just_lift else f"Echo {level}"

    @property
    def weight_kg(self) -> float:
        return 0.0

    def describe(self) -> str:
        return (
            f"{ECHO_LEVEL_NAMES[self.level]} • ecc {self.eccentric_pct}% "
            f"• target {self.target_reps} reps"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = int(self.level)
        data["type"] = self.type
        return data


PlanItem = Union[ExerciseItem, EchoItem]

_CAMEL_KEYS = {
    "perCableKg": "per_cable_kg",
    "restSec": "rest_sec",
    "justLift": "just_lift",
    "stopAtTop": "stop_at_top",
    "progressionKg": "progression_kg",
    "eccentricPct": "eccentric_pct",
    "targetReps": "target_reps",
}


def item_from_dict(data: Dict[str, Any]) -> PlanItem:
    """Parse a stored or submitted plan row. Raises ValueError on bad input."""
    if not isinstance(data, dict):
        raise ValueError(f"Plan item must be an object, got {type(data).__name__}")
    fields = {_CAMEL_KEYS.get(k, k): v for k, v in data.items()}
    item_type = fields.pop("type", None)
    if item_type == "exercise":
        cls = ExerciseItem
    elif item_type == "echo":
        cls = EchoItem
    else:
        raise ValueError(f"Unknown plan item type {item_type!r}")
    known = cls.__dataclass_fields__
    kwargs = {k: v for k, v in fields.items() if k in known}
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValueError(f"Invalid {item_type} item: {exc}") from exc


def items_from_config(rows: List[Dict[str, Any]]) -> List[PlanItem]:
    return [item_from_dict(row) for row in rows]


def target_reps_of(item: PlanItem) -> int:
    if isinstance(item, ExerciseItem):
        return item.target_reps
    if isinstance(item, EchoItem):
        return item.effective_target_reps
    raise TypeError(f"Unsupported plan item {item!r}")


def default_plan() -> List[PlanItem]:
    """Starter plan: squats stopping at the top, then echo finishers."""
    return [
        replace(
            ExerciseItem(),
            name="Back Squat",
            per_cable_kg=15.0,
            reps=8,
            sets=3,
            rest_sec=90,
            stop_at_top=True,
        ),
        replace(
            EchoItem(),
            name="Echo Finishers",
            level=EchoLevel.HARDER,
            eccentric_pct=120,
            target_reps=2,
            sets=2,
            rest_sec=60,
        ),
    ]


@dataclass
class PlanCursor:
    """Position in a running plan: item index and 1-based set number."""

    index: int = 0
    set: int = 1

    def to_dict(self) -> Dict[str, int]:
        return {"index": self.index, "set": self.set}
