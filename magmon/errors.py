"""Exception types raised by the sensor monitor."""
from __future__ import annotations

from typing import Optional


class MagMonitorError(Exception):
    """Base class for all monitor errors."""


class NotRegisteredError(MagMonitorError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Device is not registered: {address}")
        self.address = address


class StatusUnknownError(MagMonitorError):
    def __init__(self, address: str) -> None:
        super().__init__(f"Sensor status of {address} is not known yet")
        self.address = address


class PeripheralError(MagMonitorError):
    """A radio operation against a single peripheral failed.

    These are recovered locally by re-arming the scan; they are only logged.
    """

    step = "radio"

    def __init__(self, address: str, reason: Optional[str] = None) -> None:
        message = f"{self.step} failed for {address}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.address = address
        self.reason = reason


class ConnectFailed(PeripheralError):
    step = "connect"


class DiscoveryFailed(PeripheralError):
    step = "characteristic discovery"


class SubscribeFailed(PeripheralError):
    step = "subscribe"


__all__ = [
    "MagMonitorError",
    "NotRegisteredError",
    "StatusUnknownError",
    "PeripheralError",
    "ConnectFailed",
    "DiscoveryFailed",
    "SubscribeFailed",
]
