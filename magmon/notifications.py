"""Decoding of sensor notifications and delivery to the status listener."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set, Union

from magmon.registry import DeviceRegistry, SensorStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[str, SensorStatus], Union[None, Awaitable[None]]]

_PAYLOAD_STATUS = {
    0: SensorStatus.OPEN,
    1: SensorStatus.CLOSED,
}


def decode_status(data: bytes) -> SensorStatus:
    """Map the first payload byte to a status; anything unexpected is UNKNOWN."""
    if not data:
        return SensorStatus.UNKNOWN
    return _PAYLOAD_STATUS.get(data[0], SensorStatus.UNKNOWN)


class StatusListenerSlot:
    """Holds at most one status listener.

    Listener failures are logged and dropped; they never reach the caller that
    produced the status.
    """

    def __init__(self) -> None:
        self._listener: Optional[StatusListener] = None
        self._pending: Set[asyncio.Task[None]] = set()

    @property
    def listener(self) -> Optional[StatusListener]:
        return self._listener

    def set(self, listener: Optional[StatusListener]) -> None:
        self._listener = listener

    def notify(self, address: str, status: SensorStatus) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            outcome = listener(address, status)
            if asyncio.iscoroutine(outcome):
                task = asyncio.get_running_loop().create_task(outcome)
                self._pending.add(task)
                task.add_done_callback(self._listener_finished)
        except Exception as exc:
            logger.exception("Status listener raised for %s: %s", address, exc)

    def _listener_finished(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Status listener failed: %s", exc, exc_info=exc)


class NotificationHandler:
    def __init__(self, registry: DeviceRegistry, listeners: StatusListenerSlot) -> None:
        self.registry = registry
        self.listeners = listeners

    def handle(self, address: str, data: bytes) -> None:
        record = self.registry.get(address)
        if record is None:
            logger.debug("Dropping notification for unregistered %s", address)
            return

        status = decode_status(data)
        if status is SensorStatus.UNKNOWN:
            logger.warning("Status of %s has been changed to UNKNOWN (%s)", record.address, bytes(data).hex())
        else:
            record.set_status(status)
            logger.info("Status of %s has been changed to %s", record.address, status.value)

        self.listeners.notify(record.address, status)


__all__ = [
    "NotificationHandler",
    "StatusListener",
    "StatusListenerSlot",
    "decode_status",
]
