"""Connection helpers built on top of bleak."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, TYPE_CHECKING, TypeAlias, Union

from bleak import BleakClient

from magmon.radio import DataCallback, DisconnectCallback

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing hints
	from bleak.backends.characteristic import BleakGATTCharacteristic as _GATTCharacteristic
	from bleak.backends.device import BLEDevice as _BLEDevice
else:  # pragma: no cover - runtime fallback
	_GATTCharacteristic = Any
	_BLEDevice = Any

BLEDevice: TypeAlias = _BLEDevice
GATTCharacteristic: TypeAlias = _GATTCharacteristic


class BleakCharacteristic:
	"""Notifiable characteristic of a connected :class:`BleakPeripheral`."""

	def __init__(self, client: BleakClient, characteristic: GATTCharacteristic) -> None:
		self._client = client
		self._characteristic = characteristic
		self.uuid = str(characteristic.uuid)
		self._callbacks: List[DataCallback] = []

	def on_data(self, callback: DataCallback) -> None:
		self._callbacks.append(callback)

	async def subscribe(self) -> None:
		await self._client.start_notify(self._characteristic, self._dispatch)

	def _dispatch(self, _: Any, data: bytearray) -> None:
		payload = bytes(data)
		for callback in list(self._callbacks):
			try:
				callback(payload)
			except Exception as exc:  # pragma: no cover - consumer failure
				logger.exception("Notification callback raised for %s: %s", self.uuid, exc)


class BleakPeripheral:
	"""One discovered peripheral, connectable through :class:`bleak.BleakClient`.

	The disconnect callback is one-shot: it is dropped after it fires, and a
	new one has to be registered for the next connection.
	"""

	def __init__(
		self,
		device: Union[BLEDevice, str],
		*,
		adapter: Optional[str] = None,
		timeout: float = 10.0,
	) -> None:
		self.device = device
		self.address: str = device if isinstance(device, str) else device.address
		self.adapter = adapter
		self.timeout = timeout
		self._client: Optional[BleakClient] = None
		self._disconnect_callback: Optional[DisconnectCallback] = None
		self._loop: Optional[asyncio.AbstractEventLoop] = None

	@property
	def is_connected(self) -> bool:
		return bool(self._client is not None and self._client.is_connected)

	async def connect(self) -> None:
		kwargs: dict[str, Any] = {
			"disconnected_callback": self._handle_disconnect,
			"timeout": self.timeout,
		}
		if self.adapter:
			kwargs["adapter"] = self.adapter
		self._loop = asyncio.get_running_loop()
		client = BleakClient(self.device, **kwargs)
		connected = await client.connect()
		# older bleak releases report failure with False instead of raising
		if connected is False:
			raise ConnectionError(f"could not connect to {self.address}")
		self._client = client

	def on_disconnect(self, callback: DisconnectCallback) -> None:
		self._disconnect_callback = callback

	async def discover_characteristic(
		self,
		service_uuid: str,
		characteristic_uuid: str,
	) -> BleakCharacteristic:
		client = self._require_client()
		service = client.services.get_service(service_uuid)
		if service is None:
			raise LookupError(f"service {service_uuid} not found on {self.address}")
		characteristic = service.get_characteristic(characteristic_uuid)
		if characteristic is None:
			raise LookupError(f"characteristic {characteristic_uuid} not found on {self.address}")
		return BleakCharacteristic(client, characteristic)

	async def disconnect(self) -> None:
		client = self._client
		if client is None:
			return
		try:
			await client.disconnect()
		except Exception as exc:
			logger.warning("Disconnect encountered error for %s: %s", self.address, exc)
			# bleak does not call the disconnected callback when disconnect fails
			self._handle_disconnect(client)

	def _require_client(self) -> BleakClient:
		if self._client is None:
			raise RuntimeError(f"{self.address} is not connected")
		if not self._client.is_connected:
			raise RuntimeError(f"connection to {self.address} has dropped")
		return self._client

	def _handle_disconnect(self, _client: Any) -> None:
		callback, self._disconnect_callback = self._disconnect_callback, None
		self._client = None
		if callback is None:
			return
		if self._loop is None or self._loop.is_closed():
			callback()
			return
		# some backends report from their own thread; monitor state lives on the loop
		self._loop.call_soon_threadsafe(callback)


__all__ = [
	"BleakCharacteristic",
	"BleakPeripheral",
	"BLEDevice",
]
