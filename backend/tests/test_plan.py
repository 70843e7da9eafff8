import pytest

from plan import (
    EchoItem,
    EchoLevel,
    ExerciseItem,
    ProgramMode,
    default_plan,
    item_from_dict,
    target_reps_of,
)


def test_exercise_labels():
    item = ExerciseItem(name="Row", mode=ProgramMode.TUT_BEAST, reps=12)
    assert item.mode_label == "TUT Beast"
    assert target_reps_of(item) == 12

    just_lift = ExerciseItem(mode=ProgramMode.PUMP, just_lift=True)
    assert just_lift.mode_label == "Just Lift (Pump)"
    assert target_reps_of(just_lift) == 0


def test_echo_labels():
    item = EchoItem(level=EchoLevel.EPIC, target_reps=4)
    assert item.mode_label == "Echo Epic"
    assert item.weight_kg == 0.0
    assert target_reps_of(item) == 4

    just_lift = EchoItem(level=EchoLevel.HARDER, just_lift=True)
    assert just_lift.mode_label == "Just Lift Echo Harder"
    assert target_reps_of(just_lift) == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"per_cable_kg": 101},
        {"reps": 0},
        {"progression_kg": 3.5},
        {"sets": 0},
        {"rest_sec": 601},
        {"cables": 3},
    ],
)
def test_exercise_validation(kwargs):
    with pytest.raises(ValueError):
        ExerciseItem(**kwargs)


def test_just_lift_skips_rep_validation():
    assert ExerciseItem(reps=0, just_lift=True).target_reps == 0


def test_echo_validation():
    with pytest.raises(ValueError):
        EchoItem(eccentric_pct=151)
    with pytest.raises(ValueError):
        EchoItem(level=7)


def test_item_from_camel_case_dict():
    item = item_from_dict(
        {"type": "exercise", "name": "Press", "mode": 3, "perCableKg": 22.5, "reps": 6, "stopAtTop": True}
    )
    assert isinstance(item, ExerciseItem)
    assert item.mode == ProgramMode.TUT
    assert item.per_cable_kg == 22.5
    assert item.stop_at_top

    echo = item_from_dict({"type": "echo", "level": 2, "eccentricPct": 130, "targetReps": 3})
    assert isinstance(echo, EchoItem)
    assert echo.level == EchoLevel.HARDEST


def test_item_from_dict_rejects_unknown_type():
    with pytest.raises(ValueError):
        item_from_dict({"type": "yoga"})


def test_item_dict_round_trip_keeps_type():
    item = ExerciseItem(name="Curl", mode=ProgramMode.ECCENTRIC_ONLY)
    data = item.to_dict()
    assert data["type"] == "exercise"
    assert data["mode"] == 6
    assert item_from_dict(data) == item


def test_default_plan():
    squat, finisher = default_plan()
    assert squat.name == "Back Squat"
    assert squat.stop_at_top
    assert (squat.per_cable_kg, squat.reps, squat.sets, squat.rest_sec) == (15.0, 8, 3, 90)
    assert finisher.level == EchoLevel.HARDER
    assert finisher.eccentric_pct == 120
    assert (finisher.target_reps, finisher.sets) == (2, 2)
