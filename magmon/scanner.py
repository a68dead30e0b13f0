"""BLE scanning for magmon: the bleak radio backend and the adapter controller."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Sequence, Set, TYPE_CHECKING, TypeAlias

from bleak import BleakScanner
from bleak.exc import BleakError

from magmon.connector import BleakPeripheral
from magmon.debounce import Debouncer
from magmon.radio import (
	POWERED_ON,
	UNSUPPORTED,
	DiscoverCallback,
	Radio,
	StateCallback,
)

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
else:  # pragma: no cover
	_BLEDevice = Any
	_AdvertisementData = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData


class BleakRadio:
	""":class:`~magmon.radio.Radio` implemented on top of :class:`bleak.BleakScanner`.

	bleak has no adapter power events, so :meth:`open` reports ``poweredOn``
	as soon as a scanner could be created for the configured adapter.
	"""

	def __init__(
		self,
		*,
		adapter: Optional[str] = None,
		connect_timeout: float = 10.0,
		scanning_mode: str = "active",
	) -> None:
		self.adapter = adapter
		self.connect_timeout = connect_timeout
		self.scanning_mode = scanning_mode
		self.state: Optional[str] = None
		self._scanner: Optional[BleakScanner] = None
		self._scanning = False
		# start and stop never interleave, so a stop issued mid-start still stops
		self._scan_lock = asyncio.Lock()
		self._state_callback: Optional[StateCallback] = None
		self._discover_callback: Optional[DiscoverCallback] = None

	def on_state_change(self, callback: StateCallback) -> None:
		self._state_callback = callback

	def on_discover(self, callback: DiscoverCallback) -> None:
		self._discover_callback = callback

	async def open(self) -> None:
		try:
			self._scanner = BleakScanner(**self._scanner_kwargs(None, True))
		except BleakError as exc:
			logger.error("Bluetooth adapter %s is unavailable: %s", self.adapter or "(default)", exc)
			self._set_state(UNSUPPORTED)
			raise
		self._set_state(POWERED_ON)

	async def start_scan(
		self,
		service_uuids: Optional[Sequence[str]] = None,
		allow_duplicates: bool = True,
	) -> None:
		async with self._scan_lock:
			if self._scanning:
				return
			scanner = BleakScanner(**self._scanner_kwargs(service_uuids, allow_duplicates))
			await scanner.start()
			self._scanner = scanner
			self._scanning = True

	async def stop_scan(self) -> None:
		async with self._scan_lock:
			if not self._scanning or self._scanner is None:
				return
			try:
				await self._scanner.stop()
			finally:
				self._scanning = False

	def _scanner_kwargs(
		self,
		service_uuids: Optional[Sequence[str]],
		allow_duplicates: bool,
	) -> Dict[str, Any]:
		kwargs: Dict[str, Any] = {
			"detection_callback": self._on_detection,
			"scanning_mode": self.scanning_mode,
			# BlueZ drops repeated advertisements unless asked not to
			"bluez": {"filters": {"DuplicateData": allow_duplicates}},
		}
		if service_uuids:
			kwargs["service_uuids"] = list(service_uuids)
		if self.adapter:
			kwargs["adapter"] = self.adapter
		return kwargs

	def _set_state(self, state: str) -> None:
		self.state = state
		if self._state_callback:
			self._state_callback(state)

	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None) -> None:
		if not self._discover_callback:
			return
		peripheral = BleakPeripheral(device, adapter=self.adapter, timeout=self.connect_timeout)
		try:
			self._discover_callback(peripheral)
		except Exception:  # pragma: no cover - diagnostic path
			logger.exception("discovery callback raised for %s", device.address)


class AdapterController:
	"""Owns the adapter's scanning lifecycle.

	Scanning is stopped before every connection attempt and re-armed through a
	single debounced restart after every device-affecting step, so bursts of
	connect/disconnect events produce one scan start.
	"""

	def __init__(
		self,
		radio: Radio,
		*,
		restart_interval: float = 1.0,
		allow_duplicates: bool = True,
	) -> None:
		self.radio = radio
		self.allow_duplicates = allow_duplicates
		self.state: Optional[str] = None
		self.scanning = False
		self._closed = False
		self._restart = Debouncer(restart_interval, self.start_scanning)
		self._scan_lock = asyncio.Lock()
		self._stops = 0
		self._tasks: Set[asyncio.Task[None]] = set()

	@property
	def powered_on(self) -> bool:
		return self.state == POWERED_ON

	@property
	def restart_pending(self) -> bool:
		return self._restart.pending

	def attach(self) -> None:
		self._closed = False
		self.radio.on_state_change(self._on_state_change)

	async def start_scanning(self) -> None:
		if not self.powered_on:
			logger.debug("Adapter is %s; scan start skipped", self.state)
			return
		stops = self._stops
		async with self._scan_lock:
			if stops != self._stops:
				logger.debug("Scan was stopped while this start waited; skipped")
				return
			logger.debug("Starting scan")
			try:
				# no service filter: sensors are matched against the registry instead
				await self.radio.start_scan(None, allow_duplicates=self.allow_duplicates)
			except Exception as exc:
				logger.warning("Starting scan failed: %s", exc)
				self.schedule_restart()
				return
			self.scanning = True

	async def stop_scanning(self) -> None:
		self._restart.cancel()
		self._stops += 1
		# waits for a scan start that is still in flight
		async with self._scan_lock:
			logger.debug("Stopping scan")
			try:
				await self.radio.stop_scan()
			except Exception as exc:
				logger.warning("Stopping scan failed: %s", exc)
			self.scanning = False

	def schedule_restart(self) -> None:
		if self._closed:
			return
		logger.debug("Scan restart in %.1fs", self._restart.delay)
		self._restart.schedule()

	def cancel_restart(self) -> bool:
		return self._restart.cancel()

	async def close(self) -> None:
		self._closed = True
		await self._restart.aclose()
		pending = list(self._tasks)
		for task in pending:
			task.cancel()
		if pending:
			await asyncio.gather(*pending, return_exceptions=True)
		if self.scanning:
			await self.stop_scanning()

	def _on_state_change(self, state: str) -> None:
		logger.info("Adapter state changed: %s", state)
		self.state = state
		if state != POWERED_ON:
			self._restart.cancel()
			self.scanning = False
			return
		task = asyncio.get_running_loop().create_task(self.start_scanning())
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)


__all__ = [
	"AdapterController",
	"BleakRadio",
]
