"""Deduplicated, insertion-ordered collection of discovered peripherals."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from blescanner.log_sink import LogSink, spawn_listener_task
from blescanner.models import PeripheralHandle

logger = logging.getLogger(__name__)

DiscoveryCallback = Callable[[PeripheralHandle], Union[None, Awaitable[None]]]
ResetCallback = Callable[[], Union[None, Awaitable[None]]]


class DeviceRegistry:
	"""Discovered peripherals keyed by identifier.

	Discovery callbacks may arrive from a backend thread while the application
	lists or clears the registry, so membership check and insert happen under
	one lock. Listeners are invoked outside the lock.
	"""

	def __init__(self, log: Optional[LogSink] = None) -> None:
		self._log = log
		self._devices: Dict[str, PeripheralHandle] = {}
		self._lock = threading.Lock()
		self._discovery_listeners: List[DiscoveryCallback] = []
		self._reset_listeners: List[ResetCallback] = []
		self._listener_tasks: Set[asyncio.Task] = set()

	def on_discovered(self, handle: PeripheralHandle) -> bool:
		with self._lock:
			if handle.identifier in self._devices:
				return False
			self._devices[handle.identifier] = handle

		if self._log is not None:
			self._log.append(f"Discovered: {handle.display_name} [{handle.identifier}]")
		for listener in list(self._discovery_listeners):
			self._dispatch(listener, handle)
		return True

	def clear(self) -> None:
		with self._lock:
			self._devices.clear()
		for listener in list(self._reset_listeners):
			self._dispatch(listener)

	def list(self) -> List[PeripheralHandle]:
		with self._lock:
			return list(self._devices.values())

	def get(self, identifier: str) -> Optional[PeripheralHandle]:
		with self._lock:
			return self._devices.get(identifier)

	def find(self, query: str) -> Optional[PeripheralHandle]:
		"""Resolve ``query`` as an identifier (case-insensitive) or an exact name."""
		lowered = query.lower()
		with self._lock:
			for handle in self._devices.values():
				if handle.identifier.lower() == lowered:
					return handle
			for handle in self._devices.values():
				if handle.name and handle.name == query:
					return handle
		return None

	def __len__(self) -> int:
		with self._lock:
			return len(self._devices)

	def __contains__(self, identifier: object) -> bool:
		with self._lock:
			return identifier in self._devices

	def add_discovery_listener(self, listener: DiscoveryCallback) -> None:
		self._discovery_listeners.append(listener)

	def remove_discovery_listener(self, listener: DiscoveryCallback) -> None:
		if listener in self._discovery_listeners:
			self._discovery_listeners.remove(listener)

	def add_reset_listener(self, listener: ResetCallback) -> None:
		self._reset_listeners.append(listener)

	def _dispatch(self, listener: Callable[..., object], *args: object) -> None:
		try:
			outcome = listener(*args)
			if asyncio.iscoroutine(outcome):
				spawn_listener_task(self._listener_tasks, outcome)
		except Exception:  # pragma: no cover - diagnostic path
			logger.exception("registry listener raised an exception")


__all__ = ["DeviceRegistry", "DiscoveryCallback", "ResetCallback"]
