"""magmon: keeps BLE door/window contact sensors connected and reports their state."""
__version__ = "0.1.0"

from magmon.errors import (
    ConnectFailed,
    DiscoveryFailed,
    MagMonitorError,
    NotRegisteredError,
    StatusUnknownError,
    SubscribeFailed,
)
from magmon.monitor import MagMonitor, build_monitor
from magmon.registry import DeviceRecord, DeviceRegistry, SensorStatus

__all__ = [
    "ConnectFailed",
    "DeviceRecord",
    "DeviceRegistry",
    "DiscoveryFailed",
    "MagMonitor",
    "MagMonitorError",
    "NotRegisteredError",
    "SensorStatus",
    "StatusUnknownError",
    "SubscribeFailed",
    "build_monitor",
    "__version__",
]
