"""Public entry point: keeps registered door sensors connected and tracks their state."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from magmon.config import MonitorConfig
from magmon.metrics import MetricsLogger
from magmon.notifications import NotificationHandler, StatusListener, StatusListenerSlot
from magmon.radio import Radio
from magmon.registry import ConnectionState, DeviceRecord, DeviceRegistry, SensorStatus, normalize_address
from magmon.scanner import AdapterController, BleakRadio
from magmon.workflow import ConnectionWorkflow, DiscoveryMatcher

logger = logging.getLogger(__name__)


class MagMonitor:
    """Monitor a set of magnetic contact sensors over one shared BLE radio.

    The monitor owns the registry and wires the radio's discovery events
    through :class:`DiscoveryMatcher` and :class:`ConnectionWorkflow`;
    notifications update the registry and are forwarded to the status
    listener. All state is touched from the running event loop only.
    """

    def __init__(
        self,
        radio: Radio,
        *,
        config: Optional[MonitorConfig] = None,
        registry: Optional[DeviceRegistry] = None,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        self.config = config or MonitorConfig()
        self.radio = radio
        self.registry = registry if registry is not None else DeviceRegistry()
        self.listeners = StatusListenerSlot()
        self.controller = AdapterController(
            radio,
            restart_interval=self.config.restart_interval,
            allow_duplicates=self.config.allow_duplicates,
        )
        self.notifications = NotificationHandler(self.registry, self.listeners)
        self.workflow = ConnectionWorkflow(
            self.registry,
            self.controller,
            self.notifications,
            metrics=metrics,
        )
        self.matcher = DiscoveryMatcher(self.registry, self.workflow)
        self._summary_task: Optional[asyncio.Task[None]] = None
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.radio.on_discover(self.matcher.on_discover)
        self.controller.attach()
        await self.radio.open()
        if self.config.summary_interval:
            self._summary_task = asyncio.create_task(self._summary_loop(self.config.summary_interval))

    async def close(self) -> None:
        if self._summary_task is not None:
            self._summary_task.cancel()
            await asyncio.gather(self._summary_task, return_exceptions=True)
            self._summary_task = None
        await self.workflow.close()
        await self.controller.close()
        for record in self.registry.records():
            # workflows are cancelled by now, so nothing else will drop these
            await self._release(record, force=True)
        self._started = False

    async def __aenter__(self) -> "MagMonitor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.close()

    # ------------------------------------------------------------------
    # Operations used by the HTTP layer and the CLI
    # ------------------------------------------------------------------
    async def register_device(self, address: str) -> None:
        """Start monitoring ``address``; resolves once the device is registered.

        Registering an address again resets its record. The scan restart lets
        a sensor that is already advertising be picked up.
        """
        logger.info("Registering the device... %s", normalize_address(address))
        previous = self.registry.get(address)
        self.registry.register(address)
        if previous is not None:
            await self._release(previous)
        self.controller.schedule_restart()

    async def unregister_device(self, address: str) -> None:
        logger.info("Unregister the device: %s", normalize_address(address))
        record = self.registry.unregister(address)
        if record is not None:
            await self._release(record)

    def exists_device(self, address: str) -> bool:
        return self.registry.exists(address)

    async def get_latest_status(self, address: str) -> SensorStatus:
        return self.registry.latest_status(address)

    def set_status_listener(self, listener: Optional[StatusListener]) -> None:
        self.listeners.set(listener)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------
    def snapshot(self) -> List[Dict[str, Any]]:
        return self.registry.snapshot()

    def log_devices(self) -> None:
        lines = ["----- DEVICES -----"]
        for record in self.registry.records():
            connected = "CONNECTED" if record.connected else "DISCONNECTED"
            subscribing = "SUBSCRIBING" if record.subscribing else "UNSUBSCRIBING"
            lines.append(f"{record.address} - {connected} {subscribing} ({record.sensor_status.value})")
        lines.append("----------")
        logger.info("\n".join(lines))

    async def _summary_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.log_devices()

    async def _release(self, record: DeviceRecord, *, force: bool = False) -> None:
        """Drop the connection held by a record that left the registry.

        While connect, discovery or subscribe is still running the workflow
        disconnects the peripheral itself once that step returns.
        """
        peripheral = record.connection
        state = record.state
        record.release()
        if peripheral is None:
            return
        if not force and state is not ConnectionState.SUBSCRIBED:
            return
        try:
            await peripheral.disconnect()
        except Exception as exc:
            logger.warning("Disconnect encountered error for %s: %s", record.address, exc)


def build_monitor(config: Optional[MonitorConfig] = None) -> MagMonitor:
    """Create a monitor backed by the bleak radio."""
    settings = config or MonitorConfig.from_env()
    radio = BleakRadio(adapter=settings.adapter, connect_timeout=settings.connect_timeout)
    metrics = MetricsLogger(settings.metrics_path) if settings.metrics_path else None
    return MagMonitor(radio, config=settings, metrics=metrics)


__all__ = ["MagMonitor", "build_monitor"]
