import asyncio
import os
import struct
import sys

import pytest

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from devices.base import DeviceCommandError, DeviceTransport  # noqa: E402
from events import EventBus  # noqa: E402
from history_store import HistoryStore, SampleArchive  # noqa: E402
from session import Sample  # noqa: E402
from timers import Scheduler, TimerHandle  # noqa: E402
from workout_controller import WorkoutSessionController  # noqa: E402


class _ManualHandle(TimerHandle):
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Deterministic clock: timers fire only when the test advances time."""

    def __init__(self, start=1000.0):
        self.time = start
        self._timers = []
        self._tasks = []

    def now(self):
        return self.time

    def call_later(self, delay, callback):
        handle = _ManualHandle(self.time + max(0.0, delay), callback)
        self._timers.append(handle)
        return handle

    def spawn(self, coro):
        self._tasks.append(asyncio.get_running_loop().create_task(coro))

    async def settle(self):
        """Wait for every spawned task, including ones they spawn."""
        while self._tasks:
            tasks, self._tasks = self._tasks, []
            await asyncio.gather(*tasks)

    async def advance(self, seconds):
        target = self.time + seconds
        while True:
            due = [h for h in self._timers if not h.cancelled and h.when <= target + 1e-9]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._timers.remove(handle)
            self.time = max(self.time, handle.when)
            handle.callback()
            await self.settle()
        self.time = target

    @property
    def pending(self):
        return [h for h in self._timers if not h.cancelled]


class RecordingDevice(DeviceTransport):
    name = "recording"

    def __init__(self, connected=True, fail_stop=False, fail_start=False):
        super().__init__()
        self.connected = connected
        self.fail_stop = fail_stop
        self.fail_start = fail_start
        self.commands = []
        self.polling = False

    @property
    def is_connected(self):
        return self.connected

    async def start_program(self, item):
        if self.fail_start:
            raise DeviceCommandError("start failed")
        self.commands.append(("start_program", item))
        self.polling = True

    async def start_echo(self, item):
        if self.fail_start:
            raise DeviceCommandError("start failed")
        self.commands.append(("start_echo", item))
        self.polling = True

    async def send_stop_command(self):
        if self.fail_stop:
            raise DeviceCommandError("stop failed")
        self.commands.append(("stop", None))

    def stop_polling(self):
        self.polling = False


class EventRecorder:
    def __init__(self, bus):
        self.events = []
        bus.subscribe(self.events.append)

    def of(self, event_type):
        return [e for e in self.events if e.type == event_type]

    def types(self):
        return [e.type for e in self.events]


def notif(top, complete):
    """Rep notification payload: top counter first, completion counter third."""
    return struct.pack("<3H", top, 0, complete)


def sample(pos_a=0.0, pos_b=0.0, load_a=0.0, load_b=0.0, ts=0.0):
    return Sample(load_a=load_a, load_b=load_b, pos_a=pos_a, pos_b=pos_b, timestamp=ts)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def device():
    return RecordingDevice()


@pytest.fixture
def history():
    return HistoryStore()


@pytest.fixture
def archive(device):
    archive = SampleArchive()
    device.add_monitor_listener(archive.on_sample)
    return archive


@pytest.fixture
def controller(device, history, archive, scheduler, bus):
    return WorkoutSessionController(device, history, archive, scheduler, bus=bus)
