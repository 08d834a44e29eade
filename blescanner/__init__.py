"""BLE central connection lifecycle: discovery, pairing, GATT handshake, recovery."""
from blescanner.config import LinkConfig
from blescanner.lifecycle import ConnectionLifecycleManager
from blescanner.log_sink import LogSink
from blescanner.models import (
	ConnectionAttemptState,
	ConnectionStatus,
	LifecycleState,
	PeripheralHandle,
)
from blescanner.registry import DeviceRegistry

__all__ = [
	"ConnectionAttemptState",
	"ConnectionLifecycleManager",
	"ConnectionStatus",
	"DeviceRegistry",
	"LifecycleState",
	"LinkConfig",
	"LogSink",
	"PeripheralHandle",
]
