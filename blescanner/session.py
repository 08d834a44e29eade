"""Post-connection GATT handshake: subscribe to notifications, write activation."""
from __future__ import annotations

import logging
from typing import Optional

from blescanner.adapter import (
    ACTIVATION_PAYLOAD,
    NOTIFY_CHARACTERISTIC_UUID,
    SERVICE_UUID,
    WRITE_CHARACTERISTIC_UUID,
    GattCharacteristic,
    HostAdapter,
)
from blescanner.log_sink import LogSink
from blescanner.models import PeripheralHandle

logger = logging.getLogger(__name__)


def format_notification(uuid: str, data: Optional[bytes]) -> str:
    if data is None:
        return f"Notification from {uuid}: HEX=(null) ASCII=''"
    hex_dump = "-".join(f"{byte:02X}" for byte in data)
    readable = bytes(data).decode("utf-8", errors="replace")
    return f"Notification from {uuid}: HEX={hex_dump} ASCII='{readable}'"


class ServiceSession:
    """One handshake per successful connection.

    ``run`` is meant to be wrapped in a task by the owner; ``close`` must be
    called before the peripheral is dropped so no subscription outlives the
    session.
    """

    def __init__(
        self,
        adapter: HostAdapter,
        peripheral: PeripheralHandle,
        log: LogSink,
        *,
        service_uuid: str = SERVICE_UUID,
        write_uuid: str = WRITE_CHARACTERISTIC_UUID,
        notify_uuid: str = NOTIFY_CHARACTERISTIC_UUID,
        activation_payload: bytes = ACTIVATION_PAYLOAD,
    ) -> None:
        self.adapter = adapter
        self.peripheral = peripheral
        self.service_uuid = service_uuid
        self.write_uuid = write_uuid
        self.notify_uuid = notify_uuid
        self.activation_payload = activation_payload
        self._log = log
        self._subscription: Optional[GattCharacteristic] = None
        self._activated = False

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    @property
    def activated(self) -> bool:
        return self._activated

    async def run(self) -> bool:
        """Perform the handshake; returns whether notifications are active."""
        try:
            self._log.append("Discovering target service...")
            service = await self.adapter.get_service(self.peripheral, self.service_uuid)
            if service is None:
                self._log.append("Target service not found.")
                return False
            self._log.append(f"Found target service: {service.uuid}")

            notify_char = await self.adapter.get_characteristic(service, self.notify_uuid)
            if notify_char is None:
                self._log.append("Notify characteristic not found.")
                return False
            if not notify_char.can_update:
                self._log.append("Notify characteristic not update-capable.")
                return False

            self._log.append(f"Subscribing to notify characteristic {notify_char.uuid}...")
            await notify_char.start_notifications(self._on_notification)
            self._subscription = notify_char
            self._log.append("Subscribed successfully.")

            write_char = await self.adapter.get_characteristic(service, self.write_uuid)
            if write_char is None or not write_char.can_write:
                self._log.append("Write characteristic not found or not writable.")
                return True

            self._log.append(
                f"Writing 0x{self.activation_payload.hex().upper()} to write characteristic {write_char.uuid}..."
            )
            await write_char.write(self.activation_payload)
            self._activated = True
            self._log.append("Write successful.")
        except Exception as exc:
            logger.debug("Handshake failed for %s", self.peripheral.identifier, exc_info=True)
            self._log.append(f"Discover/Subscribe/Write failed: {exc}")
        return self.subscribed

    async def close(self) -> None:
        characteristic = self._subscription
        if characteristic is None:
            return
        self._subscription = None
        try:
            await characteristic.stop_notifications()
            self._log.append("Stopped notifications.")
        except Exception as exc:
            self._log.append(f"Error stopping notifications: {exc}")

    def _on_notification(self, characteristic: GattCharacteristic, data: bytes) -> None:
        try:
            self._log.append(format_notification(characteristic.uuid, data))
        except Exception as exc:  # pragma: no cover - log sink failure
            logger.exception("Notification handling error: %s", exc)


__all__ = ["ServiceSession", "format_notification"]
