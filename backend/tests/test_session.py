from conftest import sample

from session import (
    PRStatus,
    Sample,
    WorkoutRecord,
    WorkoutSession,
    classify_pr,
    identity_for,
    prior_best_total_load_kg,
)


def record(mode="Old School", set_name=None, peak=0.0, weight=10.0, ts=1.0):
    return WorkoutRecord(
        mode=mode,
        weight_kg=weight,
        reps=8,
        timestamp=ts,
        set_name=set_name,
        total_load_peak_kg=peak,
    )


def test_identity_prefers_set_name():
    identity = identity_for("  Back Squat ", "Old School")
    assert identity.key == "set:back squat"
    assert identity.label == "Back Squat"


def test_identity_falls_back_to_mode():
    identity = identity_for("   ", "Echo Harder")
    assert identity.key == "mode:echo harder"
    assert identity_for(None, "") is None


def test_prior_best_only_counts_matching_identity():
    history = [
        record(set_name="Back Squat", peak=60.0),
        record(set_name="back squat", peak=72.5),
        record(set_name="Deadlift", peak=120.0),
        record(mode="Old School", peak=200.0),
    ]
    assert prior_best_total_load_kg(history, identity_for("BACK SQUAT", None)) == 72.5
    assert prior_best_total_load_kg(history, None) == 0.0


def test_classify_pr():
    assert classify_pr(60.0, 50.0) == PRStatus.NEW
    assert classify_pr(50.00005, 50.0) == PRStatus.MATCHED
    assert classify_pr(40.0, 50.0) == PRStatus.BEHIND
    assert classify_pr(0.0, 0.0) == PRStatus.BEHIND


def test_observe_load_celebrates_each_new_best_once():
    session = WorkoutSession(mode="Pump", weight_kg=20.0, target_reps=10)
    session.init_personal_best([record(mode="Pump", peak=50.0)])
    assert session.prior_best_total_load_kg == 50.0

    assert not session.observe_load(45.0)
    assert session.observe_load(55.0)
    assert not session.observe_load(55.0)
    assert not session.observe_load(55.00001)
    assert session.observe_load(58.0)
    assert session.current_personal_best_kg == 58.0
    assert session.has_new_personal_best


def test_observe_load_without_identity_never_celebrates():
    session = WorkoutSession(mode="", weight_kg=0.0, target_reps=0)
    session.init_personal_best([])
    assert not session.observe_load(100.0)
    assert session.live_peak_total_load_kg == 100.0


def test_record_peak_from_movement_data():
    session = WorkoutSession(mode="TUT", weight_kg=10.0, target_reps=8, start_time=1.0)
    session.end_time = 9.0
    movement = [sample(load_a=20, load_b=21, ts=2.0), sample(load_a=25, load_b=24, ts=3.0)]
    rec = WorkoutRecord.from_session(session, 8, movement)
    assert rec.total_load_peak_kg == 49.0
    assert rec.timestamp == 9.0
    assert rec.history_key == 9.0


def test_record_peak_falls_back_to_weight():
    rec = record(weight=12.5).with_peak()
    assert rec.total_load_peak_kg == 25.0


def test_record_from_dict_normalizes_stored_json():
    rec = WorkoutRecord.from_dict(
        {
            "mode": " Pump ",
            "weightKg": "15",
            "reps": 10,
            "startTime": 100,
            "setName": "  ",
            "movementData": [
                {"timestamp": 101, "loadA": 30, "loadB": 31, "posA": 5, "posB": 6},
                {"loadA": 99, "loadB": 99},
            ],
        }
    )
    assert rec.mode == "Pump"
    assert rec.weight_kg == 15.0
    assert rec.set_name is None
    assert rec.history_key == 100
    assert len(rec.movement_data) == 1
    assert rec.total_load_peak_kg == 61.0


def test_sample_from_bridge_dict():
    s = Sample.from_dict({"loadA": 1.5, "load_b": 2, "posA": 10, "posB": "bad", "timestamp": 5})
    assert s.total_load == 3.5
    assert s.pos_b == 0.0
    assert s.timestamp == 5.0


def test_record_from_dict_parses_iso_dates():
    rec = WorkoutRecord.from_dict(
        {
            "mode": "Pump",
            "weightKg": 5,
            "reps": 8,
            "timestamp": "2024-01-01T00:00:00Z",
            "startTime": "2024-01-01T00:00:00+00:00",
            "movementData": [
                {"timestamp": "2024-01-01T00:00:01.500Z", "loadA": 10, "loadB": 12},
            ],
        }
    )
    assert rec.timestamp == 1704067200.0
    assert rec.history_key == 1704067200.0
    assert rec.start_time == 1704067200.0
    assert rec.movement_data[0].timestamp == 1704067201.5
    assert rec.total_load_peak_kg == 22.0


def test_record_from_dict_drops_points_with_bad_timestamps():
    rec = WorkoutRecord.from_dict(
        {
            "mode": "Pump",
            "weightKg": 5,
            "timestamp": "2024-01-01T00:00:00Z",
            "movementData": [
                {"timestamp": "garbage", "loadA": 99, "loadB": 99},
                {"timestamp": None, "loadA": 99, "loadB": 99},
            ],
        }
    )
    assert rec.movement_data == []
    assert rec.total_load_peak_kg == 10.0


def test_history_key_falls_back_to_end_then_start():
    rec = WorkoutRecord.from_dict(
        {"mode": "TUT", "timestamp": "not a date", "endTime": 500, "startTime": 400}
    )
    assert rec.timestamp is None
    assert rec.history_key == 500.0

    rec = WorkoutRecord.from_dict({"mode": "TUT", "startTime": "2024-01-01T00:00:00Z"})
    assert rec.history_key == 1704067200.0
