"""Value types shared by the lifecycle components."""
from .peripheral import PeripheralHandle
from .status import ConnectionStatus, LifecycleState
from .attempt import DEFAULT_MAX_RETRIES, ConnectionAttemptState

__all__ = [
    "PeripheralHandle",
    "ConnectionStatus",
    "LifecycleState",
    "ConnectionAttemptState",
    "DEFAULT_MAX_RETRIES",
]
