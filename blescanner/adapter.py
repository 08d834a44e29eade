"""Capability surface the lifecycle core expects from a BLE host adapter."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union, runtime_checkable

from blescanner.models import PeripheralHandle

SERVICE_UUID = "a7eedf2c-da8c-4cb5-a9c5-5151c78b0057"
WRITE_CHARACTERISTIC_UUID = "a7eedf2c-da90-4cb5-a9c5-5151c78b0057"
NOTIFY_CHARACTERISTIC_UUID = "a7eedf2c-da91-4cb5-a9c5-5151c78b0057"
ACTIVATION_PAYLOAD = b"\x01"


@dataclass(frozen=True)
class DeviceDiscovered:
	peripheral: PeripheralHandle


@dataclass(frozen=True)
class DeviceConnected:
	peripheral: PeripheralHandle


@dataclass(frozen=True)
class DeviceDisconnected:
	"""A disconnect the application asked the adapter for."""

	peripheral: PeripheralHandle


@dataclass(frozen=True)
class DeviceConnectionLost:
	"""An unsolicited link loss reported by the radio stack."""

	peripheral: PeripheralHandle
	reason: Optional[str] = None


AdapterEvent = Union[DeviceDiscovered, DeviceConnected, DeviceDisconnected, DeviceConnectionLost]
EventSink = Callable[[AdapterEvent], None]
NotificationHandler = Callable[["GattCharacteristic", bytes], None]


@dataclass(frozen=True)
class ConnectParameters:
	auto_connect: bool = False
	force_ble_transport: bool = True


@runtime_checkable
class GattCharacteristic(Protocol):
	@property
	def uuid(self) -> str: ...

	@property
	def can_update(self) -> bool: ...

	@property
	def can_write(self) -> bool: ...

	async def start_notifications(self, handler: NotificationHandler) -> None: ...

	async def stop_notifications(self) -> None: ...

	async def write(self, data: bytes) -> None: ...


@runtime_checkable
class GattService(Protocol):
	@property
	def uuid(self) -> str: ...


@runtime_checkable
class HostAdapter(Protocol):
	"""Radio stack seen from the central side.

	Every coroutine may raise; the lifecycle manager converts failures into
	log entries. Events are delivered to the sink installed with
	:meth:`set_event_sink`, possibly from a foreign thread.
	"""

	def set_event_sink(self, sink: Optional[EventSink]) -> None: ...

	async def start_scan(self) -> None: ...

	async def stop_scan(self) -> None: ...

	async def connect(self, peripheral: PeripheralHandle, parameters: ConnectParameters) -> None: ...

	async def disconnect(self, peripheral: PeripheralHandle) -> None: ...

	async def get_service(self, peripheral: PeripheralHandle, uuid: str) -> Optional[GattService]: ...

	async def get_characteristic(self, service: GattService, uuid: str) -> Optional[GattCharacteristic]: ...


__all__ = [
	"ACTIVATION_PAYLOAD",
	"AdapterEvent",
	"ConnectParameters",
	"DeviceConnected",
	"DeviceConnectionLost",
	"DeviceDisconnected",
	"DeviceDiscovered",
	"EventSink",
	"GattCharacteristic",
	"GattService",
	"HostAdapter",
	"NOTIFY_CHARACTERISTIC_UUID",
	"NotificationHandler",
	"SERVICE_UUID",
	"WRITE_CHARACTERISTIC_UUID",
]
