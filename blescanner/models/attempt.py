from __future__ import annotations

from dataclasses import dataclass, replace

from .peripheral import PeripheralHandle

DEFAULT_MAX_RETRIES = 3


@dataclass(frozen=True)
class ConnectionAttemptState:
    """Retry bookkeeping for the one peripheral we are trying to reach.

    Instances are immutable; the manager swaps in a new value on every
    transition instead of bumping counters in place.
    """

    target: PeripheralHandle
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def next_retry(self) -> "ConnectionAttemptState":
        if not self.can_retry:
            raise ValueError(
                f"retry budget exhausted ({self.retry_count}/{self.max_retries})"
            )
        return replace(self, retry_count=self.retry_count + 1)
