import pytest

from events import EventType
from plan import EchoItem, EchoLevel, ExerciseItem
from plan_runner import PlanRunner


@pytest.fixture
def runner(controller, device, scheduler, bus):
    return PlanRunner(controller, device, scheduler, bus=bus)


def two_item_plan():
    return [
        ExerciseItem(name="Squat", per_cable_kg=20.0, reps=5, sets=3, rest_sec=10),
        EchoItem(name="Finisher", level=EchoLevel.HARDER, sets=1, rest_sec=20),
    ]


def started_kinds(device):
    return [c for c, _ in device.commands if c.startswith("start")]


@pytest.mark.asyncio
async def test_runs_all_sets_and_items(runner, controller, device, scheduler, recorder):
    assert await runner.start(two_item_plan())
    assert runner.cursor.to_dict() == {"index": 0, "set": 1}
    assert controller.session.set_name == "Squat"
    assert controller.session.set_number == 1

    await controller.stop_workout()
    assert runner.cursor.to_dict() == {"index": 0, "set": 2}
    rest = recorder.of(EventType.REST_STARTED)[-1]
    assert rest.payload["seconds"] == 10
    assert rest.payload["label"] == "Next set (2/3)"
    assert not controller.is_active

    await scheduler.advance(10)
    assert controller.session.set_number == 2
    await controller.stop_workout()
    await scheduler.advance(10)
    assert controller.session.set_number == 3

    await controller.stop_workout()
    assert runner.cursor.to_dict() == {"index": 1, "set": 1}
    rest = recorder.of(EventType.REST_STARTED)[-1]
    assert rest.payload["seconds"] == 10
    assert rest.payload["next_name"] == "Finisher"
    assert rest.payload["up_next"] == "Harder • ecc 100% • target 2 reps"

    await scheduler.advance(10)
    assert controller.session.mode == "Echo Harder"
    assert started_kinds(device) == ["start_program"] * 3 + ["start_echo"]

    await controller.stop_workout()
    assert not runner.active
    finished = recorder.of(EventType.PLAN_FINISHED)
    assert len(finished) == 1
    assert finished[0].payload["cancelled"] is False


@pytest.mark.asyncio
async def test_rest_ticks_each_second(runner, controller, scheduler, recorder):
    await runner.start(two_item_plan())
    await controller.stop_workout()
    await scheduler.advance(3)
    ticks = [e.payload["remaining_seconds"] for e in recorder.of(EventType.REST_TICK)]
    assert ticks == [9, 8, 7]
    assert runner.status()["rest"]["remaining_seconds"] == 7


@pytest.mark.asyncio
async def test_start_requires_connected_device(runner, device, recorder):
    device.connected = False
    assert not await runner.start(two_item_plan())
    assert device.commands == []
    assert not recorder.of(EventType.PLAN_STARTED)
    assert not runner.active


@pytest.mark.asyncio
async def test_start_rejects_empty_plan(runner, device):
    assert not await runner.start([])
    assert device.commands == []


@pytest.mark.asyncio
async def test_skip_rest_starts_next_block(runner, controller, scheduler, recorder):
    await runner.start(two_item_plan())
    await controller.stop_workout()
    assert runner.skip_rest()
    await scheduler.settle()
    assert controller.session.set_number == 2
    assert runner.rest is None
    assert recorder.of(EventType.REST_FINISHED)[-1].payload["skipped"] is True
    assert not runner.skip_rest()


@pytest.mark.asyncio
async def test_extend_rest(runner, controller, scheduler):
    await runner.start(two_item_plan())
    await controller.stop_workout()
    await scheduler.advance(5)
    assert runner.extend_rest()
    assert runner.rest.remaining_seconds == 35
    await scheduler.advance(34)
    assert not controller.is_active
    await scheduler.advance(1)
    assert controller.is_active


@pytest.mark.asyncio
async def test_cancel_during_rest(runner, controller, device, scheduler, recorder):
    await runner.start(two_item_plan())
    await controller.stop_workout()
    runner.cancel()
    assert not runner.active
    assert runner.rest is None
    await scheduler.advance(60)
    assert started_kinds(device) == ["start_program"]
    assert recorder.of(EventType.PLAN_FINISHED)[-1].payload["cancelled"] is True


@pytest.mark.asyncio
async def test_failed_block_start_ends_plan(runner, device, recorder):
    device.fail_start = True
    await runner.start(two_item_plan())
    assert not runner.active
    assert recorder.of(EventType.PLAN_FINISHED)


@pytest.mark.asyncio
async def test_item_stop_at_top_applies_to_controller(runner, controller):
    items = [ExerciseItem(name="Press", reps=5, sets=1, stop_at_top=True)]
    await runner.start(items)
    assert controller.stop_at_top is True


@pytest.mark.asyncio
async def test_standalone_completion_does_not_advance_idle_runner(runner, controller):
    await controller.start_block(ExerciseItem(reps=5))
    await controller.stop_workout()
    assert runner.cursor.to_dict() == {"index": 0, "set": 1}
    assert runner.rest is None
