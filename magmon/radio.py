"""Capability set the monitor needs from the wireless stack.

The monitor never talks to bleak directly; it drives these protocols. The
bleak backend lives in :mod:`magmon.scanner` and :mod:`magmon.connector`, and
the tests drive the same protocols with in-memory fakes.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol, Sequence

POWERED_ON = "poweredOn"
POWERED_OFF = "poweredOff"
UNSUPPORTED = "unsupported"

SENSOR_SERVICE_UUID = "3c111002-c75c-50c4-1f1a-6789e2afde4e"
SENSOR_CHARACTERISTIC_UUID = "3c113000-c75c-50c4-1f1a-6789e2afde4e"

DataCallback = Callable[[bytes], None]
DisconnectCallback = Callable[[], None]
StateCallback = Callable[[str], None]
DiscoverCallback = Callable[["Peripheral"], None]


class Characteristic(Protocol):
    uuid: str

    def on_data(self, callback: DataCallback) -> None:
        """Deliver every notification payload to ``callback``."""

    async def subscribe(self) -> None:
        """Enable notifications; returns once the peripheral acknowledged."""


class Peripheral(Protocol):
    address: str

    async def connect(self) -> None:
        ...

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        """Call ``callback`` once, the next time the link drops."""

    async def discover_characteristic(
        self, service_uuid: str, characteristic_uuid: str
    ) -> Characteristic:
        ...

    async def disconnect(self) -> None:
        ...


class Radio(Protocol):
    def on_state_change(self, callback: StateCallback) -> None:
        ...

    def on_discover(self, callback: DiscoverCallback) -> None:
        ...

    async def open(self) -> None:
        """Bring the adapter up; the power state is reported via ``on_state_change``."""

    async def start_scan(
        self,
        service_uuids: Optional[Sequence[str]] = None,
        allow_duplicates: bool = True,
    ) -> None:
        ...

    async def stop_scan(self) -> None:
        ...


__all__ = [
    "Characteristic",
    "DataCallback",
    "DisconnectCallback",
    "DiscoverCallback",
    "Peripheral",
    "POWERED_OFF",
    "POWERED_ON",
    "Radio",
    "SENSOR_CHARACTERISTIC_UUID",
    "SENSOR_SERVICE_UUID",
    "StateCallback",
    "UNSUPPORTED",
]
