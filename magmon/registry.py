"""In-memory table of the sensors being monitored."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from time import monotonic
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional

from magmon.errors import NotRegisteredError, StatusUnknownError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from magmon.radio import Peripheral

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$", re.IGNORECASE)


class SensorStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    OPEN = "OPEN"
    CLOSED = "CLOSE"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"


def normalize_address(address: str) -> str:
    """Return the registry key for ``address`` (``AA:BB:..`` -> ``aabb..``)."""
    return address.strip().replace(":", "").replace("-", "").lower()


def is_valid_address(address: str) -> bool:
    return bool(_ADDRESS_RE.match(address))


@dataclass(slots=True)
class DeviceRecord:
    """Last known state of one monitored sensor."""

    address: str
    connection: Optional["Peripheral"] = None
    sensor_status: SensorStatus = SensorStatus.UNKNOWN
    subscribing: bool = False
    state: ConnectionState = ConnectionState.DISCONNECTED
    updated_at: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self.connection is not None

    def set_status(self, status: SensorStatus) -> None:
        self.sensor_status = status
        self.updated_at = monotonic()

    def release(self) -> None:
        """Forget the connection handle; the device is back to disconnected."""
        self.connection = None
        self.subscribing = False
        self.state = ConnectionState.DISCONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "status": self.sensor_status.value,
            "state": self.state.value,
            "connected": self.connected,
            "subscribing": self.subscribing,
        }


class DeviceRegistry:
    """Mapping of normalized address to :class:`DeviceRecord`."""

    def __init__(self) -> None:
        self._devices: Dict[str, DeviceRecord] = {}

    def register(self, address: str) -> DeviceRecord:
        key = normalize_address(address)
        record = DeviceRecord(address=key)
        if key in self._devices:
            logger.debug("Re-registering %s; previous state is discarded", key)
        self._devices[key] = record
        return record

    def unregister(self, address: str) -> Optional[DeviceRecord]:
        return self._devices.pop(normalize_address(address), None)

    def exists(self, address: str) -> bool:
        return normalize_address(address) in self._devices

    def get(self, address: str) -> Optional[DeviceRecord]:
        return self._devices.get(normalize_address(address))

    def latest_status(self, address: str) -> SensorStatus:
        key = normalize_address(address)
        record = self._devices.get(key)
        if record is None:
            raise NotRegisteredError(key)
        if record.sensor_status is SensorStatus.UNKNOWN:
            raise StatusUnknownError(key)
        return record.sensor_status

    def records(self) -> List[DeviceRecord]:
        return list(self._devices.values())

    def snapshot(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._devices.values()]

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and self.exists(address)

    def __iter__(self) -> Iterator[DeviceRecord]:
        return iter(self.records())

    def __len__(self) -> int:
        return len(self._devices)


__all__ = [
    "ConnectionState",
    "DeviceRecord",
    "DeviceRegistry",
    "SensorStatus",
    "is_valid_address",
    "normalize_address",
]
