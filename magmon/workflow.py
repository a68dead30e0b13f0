"""Connect, discover and subscribe to sensors as they are discovered."""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Optional, Set

from magmon.errors import ConnectFailed, DiscoveryFailed, PeripheralError, SubscribeFailed
from magmon.metrics import ERROR, LifecycleEvent, MetricsLogger
from magmon.notifications import NotificationHandler
from magmon.radio import (
    SENSOR_CHARACTERISTIC_UUID,
    SENSOR_SERVICE_UUID,
    Characteristic,
    Peripheral,
)
from magmon.registry import ConnectionState, DeviceRecord, DeviceRegistry, normalize_address
from magmon.scanner import AdapterController

logger = logging.getLogger(__name__)


class ConnectionWorkflow:
    """Drives one peripheral through connect -> discover -> subscribe.

    Every step, successful or not, ends with a debounced scan restart, so the
    adapter always returns to scanning and failed devices are retried when
    they are discovered again. Callbacks that arrive after the device was
    unregistered, or re-registered under a fresh record, leave the registry
    untouched.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        controller: AdapterController,
        notifications: NotificationHandler,
        *,
        service_uuid: str = SENSOR_SERVICE_UUID,
        characteristic_uuid: str = SENSOR_CHARACTERISTIC_UUID,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        self.registry = registry
        self.controller = controller
        self.notifications = notifications
        self.service_uuid = service_uuid
        self.characteristic_uuid = characteristic_uuid
        self.metrics = metrics
        self._tasks: Set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def begin(self, record: DeviceRecord, peripheral: Peripheral) -> asyncio.Task[None]:
        """Claim ``record`` for ``peripheral`` and start the workflow task."""
        record.connection = peripheral
        record.subscribing = False
        record.state = ConnectionState.CONNECTING
        self.controller.cancel_restart()
        task = asyncio.get_running_loop().create_task(self.run(record, peripheral))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(self, record: DeviceRecord, peripheral: Peripheral) -> None:
        address = record.address
        await self.controller.stop_scanning()
        if not await self._connect(address, record, peripheral):
            return
        characteristic = await self._discover(address, record, peripheral)
        if characteristic is None:
            return
        await self._subscribe(address, record, peripheral, characteristic)

    async def close(self) -> None:
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _connect(self, address: str, record: DeviceRecord, peripheral: Peripheral) -> bool:
        logger.info("Connecting to peripheral... %s", address)
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await peripheral.connect()
        except Exception as exc:
            self._report("connect", ConnectFailed(address, str(exc)), elapsed=loop.time() - started)
            if self._owns(record, peripheral):
                record.release()
            self.controller.schedule_restart()
            return False

        if not self._owns(record, peripheral):
            await self._drop_orphan(address, peripheral)
            return False

        peripheral.on_disconnect(functools.partial(self._on_disconnect, record, peripheral))
        record.state = ConnectionState.CONNECTED
        logger.info("Connected to peripheral %s", address)
        self._record(LifecycleEvent("connect", address, elapsed=loop.time() - started))
        # other registered sensors may still be waiting to be discovered
        self.controller.schedule_restart()
        return True

    async def _discover(
        self,
        address: str,
        record: DeviceRecord,
        peripheral: Peripheral,
    ) -> Optional[Characteristic]:
        logger.info("Finding characteristic on %s...", address)
        try:
            characteristic = await peripheral.discover_characteristic(
                self.service_uuid, self.characteristic_uuid
            )
        except Exception as exc:
            self._report("discover", DiscoveryFailed(address, str(exc)))
            await self._teardown(address, record, peripheral)
            self.controller.schedule_restart()
            return None

        if not self._owns(record, peripheral):
            await self._drop_orphan(address, peripheral)
            return None
        logger.info("Characteristic was found on %s", address)
        self._record(LifecycleEvent("discover", address))
        return characteristic

    async def _subscribe(
        self,
        address: str,
        record: DeviceRecord,
        peripheral: Peripheral,
        characteristic: Characteristic,
    ) -> None:
        record.state = ConnectionState.SUBSCRIBING
        # attach before enabling so the first notification is not lost
        characteristic.on_data(functools.partial(self._on_data, record, peripheral))
        try:
            await characteristic.subscribe()
        except Exception as exc:
            self._report("subscribe", SubscribeFailed(address, str(exc)))
            await self._teardown(address, record, peripheral)
            self.controller.schedule_restart()
            return

        if not self._owns(record, peripheral):
            await self._drop_orphan(address, peripheral)
            return
        record.subscribing = True
        record.state = ConnectionState.SUBSCRIBED
        logger.info("Subscribing of sensor has been started %s", address)
        self._record(LifecycleEvent("subscribe", address))
        self.controller.schedule_restart()

    def _on_data(self, record: DeviceRecord, peripheral: Peripheral, data: bytes) -> None:
        if not self._owns(record, peripheral):
            logger.debug("Dropping notification from superseded connection to %s", record.address)
            return
        self.notifications.handle(record.address, data)

    def _on_disconnect(self, record: DeviceRecord, peripheral: Peripheral) -> None:
        if self._owns(record, peripheral):
            logger.info("Disconnected from peripheral %s", record.address)
            record.release()
            self._record(LifecycleEvent("disconnect", record.address))
        else:
            logger.debug("Superseded connection to %s closed", record.address)
        self.controller.schedule_restart()

    async def _teardown(self, address: str, record: DeviceRecord, peripheral: Peripheral) -> None:
        await self._disconnect_quietly(address, peripheral)
        if self._owns(record, peripheral):
            record.release()

    async def _drop_orphan(self, address: str, peripheral: Peripheral) -> None:
        logger.info("%s is no longer monitored; dropping the connection", address)
        await self._disconnect_quietly(address, peripheral)
        self.controller.schedule_restart()

    async def _disconnect_quietly(self, address: str, peripheral: Peripheral) -> None:
        try:
            await peripheral.disconnect()
        except Exception as exc:
            logger.warning("Disconnect encountered error for %s: %s", address, exc)

    def _owns(self, record: DeviceRecord, peripheral: Peripheral) -> bool:
        return self.registry.get(record.address) is record and record.connection is peripheral

    def _report(self, event: str, error: PeripheralError, *, elapsed: Optional[float] = None) -> None:
        logger.warning("%s", error)
        self._record(LifecycleEvent(event, error.address, ERROR, elapsed=elapsed, reason=error.reason))

    def _record(self, event: LifecycleEvent) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.write(event)
        except Exception:  # pragma: no cover - logging must not break the workflow
            logger.debug("Metrics logging failed for %s", event.event, exc_info=True)


class DiscoveryMatcher:
    """Filters discovery events down to registered, idle sensors."""

    def __init__(self, registry: DeviceRegistry, workflow: ConnectionWorkflow) -> None:
        self.registry = registry
        self.workflow = workflow

    def on_discover(self, peripheral: Peripheral) -> Optional[asyncio.Task[None]]:
        address = normalize_address(peripheral.address)
        record = self.registry.get(address)
        if record is None:
            return None
        if record.connection is not None:
            return None
        return self.workflow.begin(record, peripheral)


__all__ = [
    "ConnectionWorkflow",
    "DiscoveryMatcher",
]
