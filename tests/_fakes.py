"""In-memory stand-ins for the radio stack and the OS pairing host."""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

from blescanner.adapter import (
    ConnectParameters,
    DeviceConnected,
    DeviceConnectionLost,
    DeviceDisconnected,
    DeviceDiscovered,
    NOTIFY_CHARACTERISTIC_UUID,
    SERVICE_UUID,
    WRITE_CHARACTERISTIC_UUID,
)
from blescanner.models import PeripheralHandle
from blescanner.pairing import KnownDevice, PairingResult, UnpairingResult


class FakeCharacteristic:
    def __init__(
        self,
        uuid: str,
        *,
        can_update: bool = False,
        can_write: bool = False,
        start_error: Optional[Exception] = None,
        stop_error: Optional[Exception] = None,
        write_error: Optional[Exception] = None,
    ) -> None:
        self.uuid = uuid
        self.can_update = can_update
        self.can_write = can_write
        self.start_error = start_error
        self.stop_error = stop_error
        self.write_error = write_error
        self.notifying = False
        self.written: List[bytes] = []
        self._handler: Optional[Callable[[Any, bytes], None]] = None

    async def start_notifications(self, handler) -> None:
        await asyncio.sleep(0)
        if self.start_error is not None:
            raise self.start_error
        self._handler = handler
        self.notifying = True

    async def stop_notifications(self) -> None:
        await asyncio.sleep(0)
        self.notifying = False
        self._handler = None
        if self.stop_error is not None:
            raise self.stop_error

    async def write(self, data: bytes) -> None:
        await asyncio.sleep(0)
        if self.write_error is not None:
            raise self.write_error
        self.written.append(bytes(data))

    def push(self, data: bytes) -> None:
        assert self._handler is not None, "not subscribed"
        self._handler(self, bytes(data))


class FakeService:
    def __init__(self, uuid: str, *characteristics: FakeCharacteristic) -> None:
        self.uuid = uuid
        self.characteristics: Dict[str, FakeCharacteristic] = {c.uuid: c for c in characteristics}


def activation_service(*, with_write: bool = True, notify_can_update: bool = True) -> FakeService:
    chars = [FakeCharacteristic(NOTIFY_CHARACTERISTIC_UUID, can_update=notify_can_update)]
    if with_write:
        chars.append(FakeCharacteristic(WRITE_CHARACTERISTIC_UUID, can_write=True))
    return FakeService(SERVICE_UUID, *chars)


class FakeAdapter:
    """Scriptable adapter.

    ``connect_outcomes`` is consumed one entry per connect call: ``True``
    reports a connection, an exception instance is raised. When empty every
    connect succeeds.
    """

    def __init__(self, *, services: Optional[List[FakeService]] = None) -> None:
        self.sink = None
        self.services: Dict[str, FakeService] = {s.uuid: s for s in services or []}
        self.connect_outcomes: List[Any] = []
        self.always_fail: Optional[Exception] = None
        self.connect_delay = 0.0
        self.scan_error: Optional[Exception] = None
        self.scan_discoveries: List[PeripheralHandle] = []
        self.scan_starts = 0
        self.scan_stops = 0
        self.connect_calls: List[PeripheralHandle] = []
        self.connect_parameters: List[ConnectParameters] = []
        self.disconnect_calls: List[PeripheralHandle] = []
        self.service_lookups = 0

    def set_event_sink(self, sink) -> None:
        self.sink = sink

    def emit(self, event) -> None:
        if self.sink is not None:
            self.sink(event)

    def discover(self, handle: PeripheralHandle) -> None:
        self.emit(DeviceDiscovered(handle))

    def lose(self, handle: PeripheralHandle) -> None:
        self.emit(DeviceConnectionLost(handle, reason="test"))

    async def start_scan(self) -> None:
        await asyncio.sleep(0)
        self.scan_starts += 1
        if self.scan_error is not None:
            raise self.scan_error
        for handle in self.scan_discoveries:
            self.discover(handle)

    async def stop_scan(self) -> None:
        await asyncio.sleep(0)
        self.scan_stops += 1

    async def connect(self, peripheral: PeripheralHandle, parameters: ConnectParameters) -> None:
        await asyncio.sleep(0)
        self.connect_calls.append(peripheral)
        self.connect_parameters.append(parameters)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.always_fail is not None:
            raise self.always_fail
        outcome = self.connect_outcomes.pop(0) if self.connect_outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        self.emit(DeviceConnected(peripheral))

    async def disconnect(self, peripheral: PeripheralHandle) -> None:
        await asyncio.sleep(0)
        self.disconnect_calls.append(peripheral)
        self.emit(DeviceDisconnected(peripheral))

    async def get_service(self, peripheral: PeripheralHandle, uuid: str):
        await asyncio.sleep(0)
        self.service_lookups += 1
        return self.services.get(uuid)

    async def get_characteristic(self, service: FakeService, uuid: str):
        await asyncio.sleep(0)
        return service.characteristics.get(uuid)


class FakePairingProvider:
    def __init__(
        self,
        *,
        bonded: bool = False,
        pair_result: PairingResult = PairingResult.PAIRED,
        unpair_result: UnpairingResult = UnpairingResult.UNPAIRED,
        known: Optional[List[KnownDevice]] = None,
    ) -> None:
        self.bonded = bonded
        self.pair_result = pair_result
        self.unpair_result = unpair_result
        self.known = list(known or [])
        self.pair_error: Optional[Exception] = None
        self.unpair_error: Optional[Exception] = None
        self.pair_calls: List[Any] = []
        self.unpair_calls: List[Any] = []
        self.enumerations = 0

    async def is_bonded(self, native: Any) -> bool:
        await asyncio.sleep(0)
        return self.bonded

    async def pair(self, native: Any, protection_level) -> PairingResult:
        await asyncio.sleep(0)
        self.pair_calls.append((native, protection_level))
        if self.pair_error is not None:
            raise self.pair_error
        if self.pair_result in (PairingResult.PAIRED, PairingResult.ALREADY_PAIRED):
            self.bonded = True
        return self.pair_result

    async def unpair(self, native: Any) -> UnpairingResult:
        await asyncio.sleep(0)
        self.unpair_calls.append(native)
        if self.unpair_error is not None:
            raise self.unpair_error
        if self.unpair_result in (UnpairingResult.UNPAIRED, UnpairingResult.ALREADY_UNPAIRED):
            self.bonded = False
        return self.unpair_result

    async def enumerate_known_devices(self) -> List[KnownDevice]:
        await asyncio.sleep(0)
        self.enumerations += 1
        return list(self.known)


def make_handle(identifier: str, name: Optional[str] = None, native: Any = None) -> PeripheralHandle:
    return PeripheralHandle(identifier=identifier, name=name, native=native)
