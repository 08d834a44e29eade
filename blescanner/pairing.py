"""OS-level pairing as an optional capability.

Platforms without host-managed BLE bonding simply do not inject a
:class:`PairingProvider`; the lifecycle manager then skips pairing and treats
unpairing as a no-op.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, List, Optional, Protocol, runtime_checkable

from blescanner.log_sink import LogSink
from blescanner.models import PeripheralHandle

logger = logging.getLogger(__name__)


class ProtectionLevel(IntEnum):
    # Values follow the WinRT DevicePairingProtectionLevel enumeration that
    # bleak forwards to the OS.
    DEFAULT = 0
    NONE = 1
    ENCRYPTION = 2
    ENCRYPTION_AND_AUTHENTICATION = 3


class PairingResult(Enum):
    PAIRED = "paired"
    ALREADY_PAIRED = "already_paired"
    REJECTED = "rejected"
    CANCELED = "canceled"
    FAILED = "failed"


class UnpairingResult(Enum):
    UNPAIRED = "unpaired"
    ALREADY_UNPAIRED = "already_unpaired"
    FAILED = "failed"


PAIRING_SUCCESS = frozenset({PairingResult.PAIRED, PairingResult.ALREADY_PAIRED})
UNPAIRING_SUCCESS = frozenset({UnpairingResult.UNPAIRED, UnpairingResult.ALREADY_UNPAIRED})


@dataclass(frozen=True)
class KnownDevice:
    """An entry from the host's own device enumeration."""

    identifier: str
    name: Optional[str] = None
    native: Any = field(default=None, compare=False, repr=False)


@runtime_checkable
class PairingProvider(Protocol):
    async def is_bonded(self, native: Any) -> bool: ...

    async def pair(self, native: Any, protection_level: ProtectionLevel) -> PairingResult: ...

    async def unpair(self, native: Any) -> UnpairingResult: ...

    async def enumerate_known_devices(self) -> List[KnownDevice]: ...


class PairingCoordinator:
    """Drive a :class:`PairingProvider` with "already done" treated as success."""

    def __init__(self, provider: PairingProvider, log: LogSink) -> None:
        self.provider = provider
        self._log = log

    async def ensure_paired(self, handle: PeripheralHandle) -> bool:
        """Return ``True`` when the peripheral is bonded or pairing succeeded.

        A handle without a platform reference cannot be paired through the
        host, so the step is skipped and reported as success.
        """
        native = handle.native
        if native is None:
            self._log.append("No native device reference. Skipping pairing step.")
            return True

        try:
            if await self.provider.is_bonded(native):
                self._log.append("Device already paired. Skipping pairing step.")
                return True

            result = await self.provider.pair(native, ProtectionLevel.ENCRYPTION_AND_AUTHENTICATION)
        except Exception as exc:
            logger.debug("Pairing raised for %s", handle.identifier, exc_info=True)
            self._log.append(f"Pairing failed: {exc}")
            return False

        if result in PAIRING_SUCCESS:
            self._log.append("Device paired successfully.")
            return True
        self._log.append(f"Pairing failed: {result.value}")
        return False

    async def unpair(self, handle: PeripheralHandle) -> None:
        """Remove the bond for ``handle``; never raises."""
        try:
            native = await self._resolve(handle)
            if native is None:
                self._log.append("Could not find matching device. Cannot unpair.")
                return

            if not await self.provider.is_bonded(native):
                self._log.append(f"Device {handle.display_name} was not paired.")
                return

            result = await self.provider.unpair(native)
            if result in UNPAIRING_SUCCESS:
                self._log.append(f"Device {handle.display_name} unpaired successfully.")
            else:
                self._log.append(f"Unpair failed: {result.value}")
        except Exception as exc:
            logger.debug("Unpair raised for %s", handle.identifier, exc_info=True)
            self._log.append(f"Unpair error: {exc}")

    async def _resolve(self, handle: PeripheralHandle) -> Any:
        if handle.native is not None:
            self._log.append("Using bound native device for unpairing.")
            return handle.native

        needle = handle.identifier.lower()
        for known in await self.provider.enumerate_known_devices():
            by_name = handle.name is not None and known.name == handle.name
            if by_name or needle in known.identifier.lower():
                self._log.append(f"Found device by enumeration: {known.name} ({known.identifier})")
                return known.native
        return None


__all__ = [
    "KnownDevice",
    "PAIRING_SUCCESS",
    "PairingCoordinator",
    "PairingProvider",
    "PairingResult",
    "ProtectionLevel",
    "UNPAIRING_SUCCESS",
    "UnpairingResult",
]
