"""
Transport for a browser-side BLE bridge.

The browser owns the Bluetooth connection. It forwards monitor samples and raw
rep notifications over the WebSocket, and receives start/stop commands back as
JSON messages which it encodes for the machine.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from session import Sample
from .base import DeviceCommandError, DeviceTransport

CommandSender = Callable[[Dict[str, Any]], Awaitable[None]]


def decode_notification(payload: Any) -> bytes:
    """Accept a byte list, a hex string or a base64 string from the bridge."""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, list):
        return bytes(int(b) & 0xFF for b in payload)
    if isinstance(payload, str):
        text = payload.strip()
        try:
            return bytes.fromhex(text)
        except ValueError:
            return base64.b64decode(text)
    raise ValueError(f"Unsupported notification payload {type(payload).__name__}")


class WebBridgeDevice(DeviceTransport):
    name = "web_bridge"

    def __init__(self, sender: Optional[CommandSender] = None):
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self.sender = sender
        self.connected = False
        self.polling = False

    @property
    def is_connected(self) -> bool:
        return self.connected and self.sender is not None

    def attach(self, sender: CommandSender):
        self.sender = sender
        self.connected = True
        self.logger.info("BLE bridge attached")

    def detach(self):
        self.sender = None
        self.connected = False
        self.polling = False
        self.logger.info("BLE bridge detached")

    async def _send(self, message: Dict[str, Any]):
        if not self.is_connected:
            raise DeviceCommandError("Device not connected")
        try:
            await self.sender(message)
        except Exception as exc:
            raise DeviceCommandError(f"Failed to send {message.get('command')}: {exc}") from exc

    async def start_program(self, item) -> None:
        await self._send({"command": "start_program", "item": item.to_dict()})
        self.polling = True

    async def start_echo(self, item) -> None:
        await self._send({"command": "start_echo", "item": item.to_dict()})
        self.polling = True

    async def send_stop_command(self) -> None:
        await self._send({"command": "stop"})

    def stop_polling(self) -> None:
        self.polling = False

    async def push_sample(self, data: Dict[str, Any]) -> None:
        if not self.polling:
            return
        await self.dispatch_sample(Sample.from_dict(data))

    async def push_notification(self, payload: Any) -> None:
        if not self.polling:
            return
        try:
            data = decode_notification(payload)
        except ValueError as exc:
            self.logger.warning("Dropping malformed rep notification: %s", exc)
            return
        await self.dispatch_notification(data)
