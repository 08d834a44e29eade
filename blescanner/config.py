"""Runtime configuration for the connection lifecycle."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

from blescanner.models import DEFAULT_MAX_RETRIES

ENV_PREFIX = "BLESCANNER_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean value: {raw!r}")


def _parse_optional_float(raw: str) -> Optional[float]:
    value = raw.strip().lower()
    if value in ("", "none"):
        return None
    return float(value)


@dataclass(slots=True)
class LinkConfig:
    """Settings for :class:`~blescanner.lifecycle.ConnectionLifecycleManager`.

    ``scan_timeout`` of ``None`` scans until :meth:`stop_scan` is called.
    ``pairing_failure_consumes_retry`` selects between aborting the connect
    attempt on a pairing failure (default) and folding the failure into the
    regular retry budget.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: float = 0.0
    scan_timeout: Optional[float] = 10.0
    connect_timeout: float = 10.0
    clear_devices_on_scan: bool = True
    pairing_enabled: bool = True
    pairing_failure_consumes_retry: bool = False
    adapter: Optional[str] = None
    log_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        if self.scan_timeout is not None and self.scan_timeout <= 0:
            raise ValueError("scan_timeout must be positive when provided")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LinkConfig":
        """Build a config from ``BLESCANNER_*`` variables, e.g. ``BLESCANNER_MAX_RETRIES``."""
        env = os.environ if environ is None else environ
        parsers = {
            "max_retries": int,
            "retry_delay": float,
            "scan_timeout": _parse_optional_float,
            "connect_timeout": float,
            "clear_devices_on_scan": _parse_bool,
            "pairing_enabled": _parse_bool,
            "pairing_failure_consumes_retry": _parse_bool,
            "adapter": str,
            "log_path": str,
        }
        values: dict[str, Any] = {}
        for name, parse in parsers.items():
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            try:
                values[name] = parse(raw)
            except ValueError as exc:
                raise ValueError(f"{ENV_PREFIX}{name.upper()}: {exc}") from exc
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "LinkConfig":
        """Return a copy with every non-``None`` override applied."""
        known = {item.name for item in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"unknown config fields: {', '.join(sorted(unknown))}")
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


__all__ = ["ENV_PREFIX", "LinkConfig"]
