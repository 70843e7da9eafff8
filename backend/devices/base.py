"""Common interface for cable machine transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List

from session import Sample

SampleListener = Callable[[Sample], Awaitable[Any]]
RepListener = Callable[[bytes], Awaitable[Any]]


class DeviceCommandError(RuntimeError):
    """A command could not be delivered to the machine."""


class DeviceTransport(ABC):
    """
    Abstract transport. Subclasses deliver samples and notifications by calling
    ``dispatch_sample`` / ``dispatch_notification`` in arrival order.
    """

    name: str = "base"

    def __init__(self):
        self._monitor_listeners: List[SampleListener] = []
        self._rep_listeners: List[RepListener] = []

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether commands can currently reach the machine."""

    @abstractmethod
    async def start_program(self, item) -> None:
        """Start a program-mode set for an ExerciseItem."""

    @abstractmethod
    async def start_echo(self, item) -> None:
        """Start an echo-mode set for an EchoItem."""

    @abstractmethod
    async def send_stop_command(self) -> None:
        """Stop the current set. Raises DeviceCommandError on failure."""

    def stop_polling(self) -> None:
        """Stop streaming samples and notifications until the next start."""
        return None

    def add_monitor_listener(self, listener: SampleListener) -> None:
        if listener not in self._monitor_listeners:
            self._monitor_listeners.append(listener)

    def add_rep_listener(self, listener: RepListener) -> None:
        if listener not in self._rep_listeners:
            self._rep_listeners.append(listener)

    async def dispatch_sample(self, sample: Sample) -> None:
        for listener in list(self._monitor_listeners):
            await listener(sample)

    async def dispatch_notification(self, data: bytes) -> None:
        for listener in list(self._rep_listeners):
            await listener(data)

    def close(self) -> None:
        """Release resources."""
        self._monitor_listeners.clear()
        self._rep_listeners.clear()
