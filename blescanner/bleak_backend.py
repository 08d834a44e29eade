"""Host adapter and pairing provider built on top of bleak."""
from __future__ import annotations

import logging
import platform
from typing import Any, Dict, List, Optional, TYPE_CHECKING, TypeAlias

from bleak import BleakClient, BleakScanner

from blescanner.adapter import (
	AdapterEvent,
	ConnectParameters,
	DeviceConnected,
	DeviceConnectionLost,
	DeviceDisconnected,
	DeviceDiscovered,
	EventSink,
	NotificationHandler,
)
from blescanner.config import LinkConfig
from blescanner.lifecycle import ConnectionLifecycleManager
from blescanner.log_sink import LogSink
from blescanner.models import PeripheralHandle
from blescanner.pairing import KnownDevice, PairingResult, ProtectionLevel, UnpairingResult

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing hints
	from bleak.backends.characteristic import BleakGATTCharacteristic as _BleakCharacteristic
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
	from bleak.backends.service import BleakGATTService as _BleakService
else:  # pragma: no cover - runtime aliases
	_BLEDevice = Any
	_AdvertisementData = Any
	_BleakCharacteristic = Any
	_BleakService = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData

# CoreBluetooth manages bonding itself; bleak cannot pair there.
HOST_PAIRING_SYSTEMS = frozenset({"Linux", "Windows"})

_UPDATE_PROPERTIES = frozenset({"notify", "indicate"})
_WRITE_PROPERTIES = frozenset({"write", "write-without-response"})


def handle_from_bleak(device: BLEDevice, advertisement: AdvertisementData | None = None) -> PeripheralHandle:
	name = device.name or None
	if not name and advertisement is not None:
		name = getattr(advertisement, "local_name", None) or None
	return PeripheralHandle(identifier=device.address, name=name, native=device)


def _bluez_paired(device: Any) -> Optional[bool]:
	details = getattr(device, "details", None)
	if not isinstance(details, dict):
		return None
	props = details.get("props") or {}
	if "Paired" not in props:
		return None
	return bool(props["Paired"])


class BleakGattService:
	def __init__(self, client: BleakClient, service: _BleakService) -> None:
		self.client = client
		self.service = service

	@property
	def uuid(self) -> str:
		return str(self.service.uuid)


class BleakGattCharacteristic:
	"""Characteristic bound to the client it was resolved on."""

	def __init__(self, client: BleakClient, characteristic: _BleakCharacteristic) -> None:
		self.client = client
		self.characteristic = characteristic

	@property
	def uuid(self) -> str:
		return str(self.characteristic.uuid)

	@property
	def can_update(self) -> bool:
		return bool(_UPDATE_PROPERTIES.intersection(self.characteristic.properties))

	@property
	def can_write(self) -> bool:
		return bool(_WRITE_PROPERTIES.intersection(self.characteristic.properties))

	async def start_notifications(self, handler: NotificationHandler) -> None:
		def _wrapped(_: Any, data: bytearray) -> None:
			try:
				handler(self, bytes(data))
			except Exception as exc:  # pragma: no cover - user callback failure
				logger.exception("Notification callback raised for %s: %s", self.uuid, exc)

		await self.client.start_notify(self.characteristic, _wrapped)

	async def stop_notifications(self) -> None:
		await self.client.stop_notify(self.characteristic)

	async def write(self, data: bytes) -> None:
		response = "write" in self.characteristic.properties
		await self.client.write_gatt_char(self.characteristic, data, response=response)


class BleakHostAdapter:
	"""Single-radio adapter: one scanner, one client per connected peripheral.

	A drop that follows :meth:`disconnect` is reported as
	:class:`DeviceDisconnected`; any other drop is a
	:class:`DeviceConnectionLost`.
	"""

	def __init__(
		self,
		*,
		adapter: Optional[str] = None,
		connect_timeout: float = 10.0,
		scanner_kwargs: Optional[Dict[str, Any]] = None,
	) -> None:
		self.adapter = adapter
		self.connect_timeout = connect_timeout
		self.scanner_kwargs = dict(scanner_kwargs or {})
		self._sink: Optional[EventSink] = None
		self._scanner: Optional[BleakScanner] = None
		self._clients: Dict[str, BleakClient] = {}
		self._requested_disconnects: set[str] = set()

	def set_event_sink(self, sink: Optional[EventSink]) -> None:
		self._sink = sink

	async def start_scan(self) -> None:
		if self._scanner is not None:
			return
		kwargs = dict(self.scanner_kwargs)
		if self.adapter and "adapter" not in kwargs:
			kwargs["adapter"] = self.adapter
		scanner = BleakScanner(detection_callback=self._on_detection, **kwargs)
		await scanner.start()
		self._scanner = scanner

	async def stop_scan(self) -> None:
		scanner, self._scanner = self._scanner, None
		if scanner is not None:
			await scanner.stop()

	async def connect(self, peripheral: PeripheralHandle, parameters: ConnectParameters) -> None:
		if parameters.auto_connect:
			logger.debug("auto_connect is not supported by bleak; connecting directly")
		kwargs: Dict[str, Any] = {"timeout": self.connect_timeout}
		if self.adapter:
			kwargs["adapter"] = self.adapter
		client = BleakClient(
			peripheral.native or peripheral.identifier,
			disconnected_callback=lambda _client: self._on_disconnected(peripheral),
			**kwargs,
		)
		self._requested_disconnects.discard(peripheral.identifier)
		await client.connect()
		self._clients[peripheral.identifier] = client
		self._emit(DeviceConnected(peripheral))

	async def disconnect(self, peripheral: PeripheralHandle) -> None:
		client = self._clients.get(peripheral.identifier)
		if client is None:
			return
		self._requested_disconnects.add(peripheral.identifier)
		try:
			await client.disconnect()
		except Exception:
			self._requested_disconnects.discard(peripheral.identifier)
			raise

	async def get_service(self, peripheral: PeripheralHandle, uuid: str) -> Optional[BleakGattService]:
		client = self._require_client(peripheral)
		service = client.services.get_service(uuid)
		if service is None:
			return None
		return BleakGattService(client, service)

	async def get_characteristic(self, service: BleakGattService, uuid: str) -> Optional[BleakGattCharacteristic]:
		characteristic = service.service.get_characteristic(uuid)
		if characteristic is None:
			return None
		return BleakGattCharacteristic(service.client, characteristic)

	def _require_client(self, peripheral: PeripheralHandle) -> BleakClient:
		client = self._clients.get(peripheral.identifier)
		if client is None:
			raise RuntimeError(f"{peripheral.identifier} is not connected")
		if not client.is_connected:
			raise RuntimeError(f"connection to {peripheral.identifier} has dropped")
		return client

	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None) -> None:
		self._emit(DeviceDiscovered(handle_from_bleak(device, advertisement)))

	def _on_disconnected(self, peripheral: PeripheralHandle) -> None:
		self._clients.pop(peripheral.identifier, None)
		if peripheral.identifier in self._requested_disconnects:
			self._requested_disconnects.discard(peripheral.identifier)
			self._emit(DeviceDisconnected(peripheral))
		else:
			self._emit(DeviceConnectionLost(peripheral, reason="link lost"))

	def _emit(self, event: AdapterEvent) -> None:
		sink = self._sink
		if sink is None:
			return
		try:
			sink(event)
		except Exception:  # pragma: no cover - diagnostic path
			logger.exception("adapter event sink raised for %r", event)


class BleakPairingProvider:
	"""OS bonding through bleak.

	Both BlueZ and WinRT need a live connection to pair or unpair, so each
	call opens a short-lived client. Bond state comes from the BlueZ device
	properties when available and from this process's own pair/unpair
	results otherwise.
	"""

	def __init__(
		self,
		*,
		adapter: Optional[str] = None,
		timeout: float = 10.0,
		enumeration_timeout: float = 5.0,
	) -> None:
		self.adapter = adapter
		self.timeout = timeout
		self.enumeration_timeout = enumeration_timeout
		self._bonds: Dict[str, bool] = {}

	async def is_bonded(self, native: Any) -> bool:
		address = getattr(native, "address", str(native))
		if address in self._bonds:
			return self._bonds[address]
		return bool(_bluez_paired(native))

	async def pair(self, native: Any, protection_level: ProtectionLevel) -> PairingResult:
		async with BleakClient(native, **self._client_kwargs()) as client:
			paired = await client.pair(protection_level=int(protection_level))
		# bleak >= 1.0 returns None and raises on failure
		if paired is False:
			return PairingResult.FAILED
		self._bonds[getattr(native, "address", str(native))] = True
		return PairingResult.PAIRED

	async def unpair(self, native: Any) -> UnpairingResult:
		async with BleakClient(native, **self._client_kwargs()) as client:
			unpaired = await client.unpair()
		if unpaired is False:
			return UnpairingResult.FAILED
		self._bonds[getattr(native, "address", str(native))] = False
		return UnpairingResult.UNPAIRED

	async def enumerate_known_devices(self) -> List[KnownDevice]:
		kwargs: Dict[str, Any] = {"timeout": self.enumeration_timeout}
		if self.adapter:
			kwargs["adapter"] = self.adapter
		devices = await BleakScanner.discover(**kwargs)
		return [KnownDevice(identifier=device.address, name=device.name, native=device) for device in devices]

	def _client_kwargs(self) -> Dict[str, Any]:
		kwargs: Dict[str, Any] = {"timeout": self.timeout}
		if self.adapter:
			kwargs["adapter"] = self.adapter
		return kwargs


def host_supports_pairing(system: str | None = None) -> bool:
	return (system or platform.system()) in HOST_PAIRING_SYSTEMS


def build_manager(config: LinkConfig | None = None) -> ConnectionLifecycleManager:
	"""Wire a manager to the local radio using bleak."""
	config = config or LinkConfig.from_env()
	log = LogSink(config.log_path)
	adapter = BleakHostAdapter(adapter=config.adapter, connect_timeout=config.connect_timeout)
	pairing = None
	if config.pairing_enabled and host_supports_pairing():
		pairing = BleakPairingProvider(adapter=config.adapter, timeout=config.connect_timeout)
	return ConnectionLifecycleManager(adapter, log=log, pairing=pairing, config=config)


__all__ = [
	"BleakGattCharacteristic",
	"BleakGattService",
	"BleakHostAdapter",
	"BleakPairingProvider",
	"build_manager",
	"handle_from_bleak",
	"host_supports_pairing",
]
