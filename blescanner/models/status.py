from __future__ import annotations

from enum import Enum


class ConnectionStatus(Enum):
    """Status names emitted to observers, in a single ordered stream."""

    IDLE = "Idle"
    SCANNING = "Scanning"
    SCAN_STOPPED = "ScanStopped"
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"
    CONNECTION_LOST = "ConnectionLost"


class LifecycleState(Enum):
    """Internal state of the connection lifecycle manager."""

    IDLE = "Idle"
    SCANNING = "Scanning"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    DISCONNECTING_BY_USER = "DisconnectingByUser"
    CONNECTION_LOST = "ConnectionLost"
