"""Device transports for the cable machine.

The workout engine talks to the machine only through ``DeviceTransport``:
live samples and raw rep notifications come in through listeners, stop and
start commands go out. BLE encoding lives on the other side of this contract.
"""

from .base import DeviceCommandError, DeviceTransport
from .web_bridge import WebBridgeDevice

__all__ = ["DeviceCommandError", "DeviceTransport", "WebBridgeDevice"]
