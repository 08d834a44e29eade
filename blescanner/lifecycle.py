"""Connection lifecycle manager: scan, pair, connect, retry, tear down."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from blescanner.adapter import (
    AdapterEvent,
    ConnectParameters,
    DeviceConnected,
    DeviceConnectionLost,
    DeviceDisconnected,
    DeviceDiscovered,
    HostAdapter,
)
from blescanner.config import LinkConfig
from blescanner.log_sink import LogSink, spawn_listener_task
from blescanner.models import (
    ConnectionAttemptState,
    ConnectionStatus,
    LifecycleState,
    PeripheralHandle,
)
from blescanner.pairing import PairingCoordinator, PairingProvider
from blescanner.registry import DeviceRegistry, DiscoveryCallback
from blescanner.session import ServiceSession

logger = logging.getLogger(__name__)

StatusCallback = Callable[[ConnectionStatus], Union[None, Awaitable[None]]]
SessionFactory = Callable[[HostAdapter, PeripheralHandle, LogSink], ServiceSession]

CONNECT_PARAMETERS = ConnectParameters(auto_connect=False, force_ble_transport=True)


@dataclass
class _Command:
    handler: Callable[..., Awaitable[Any]]
    args: tuple
    future: asyncio.Future = field(repr=False)


@dataclass(frozen=True)
class _ScanFinished:
    generation: int
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class _Retry:
    attempt: ConnectionAttemptState


class ConnectionLifecycleManager:
    """Single-owner state machine for one peripheral connection.

    Public coroutines and adapter events are turned into messages on one
    queue and handled strictly one after another by a worker task, so the
    attempt state, the connected reference and the service session are only
    ever touched from that worker. Discovery events bypass the queue and go
    straight to the (thread-safe) registry.

    Apart from passing ``None`` to :meth:`connect`, no public operation
    raises for adapter or pairing failures; outcomes are reported through
    status listeners and the log sink.
    """

    def __init__(
        self,
        adapter: HostAdapter,
        *,
        log: Optional[LogSink] = None,
        pairing: Optional[PairingProvider] = None,
        registry: Optional[DeviceRegistry] = None,
        config: Optional[LinkConfig] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or LinkConfig()
        self.log = log or LogSink()
        self.registry = registry or DeviceRegistry(self.log)
        self._pairing: Optional[PairingCoordinator] = None
        if pairing is not None and self.config.pairing_enabled:
            self._pairing = PairingCoordinator(pairing, self.log)
        self._session_factory: SessionFactory = session_factory or ServiceSession

        self._state = LifecycleState.IDLE
        self._status = ConnectionStatus.IDLE
        self._is_scanning = False
        self._scan_generation = 0
        self._scan_task: Optional[asyncio.Task] = None
        self._attempt: Optional[ConnectionAttemptState] = None
        self._user_disconnect = False
        self._connected: Optional[PeripheralHandle] = None
        self._session: Optional[ServiceSession] = None
        self._handshake_task: Optional[asyncio.Task] = None
        self._status_listeners: List[StatusCallback] = []
        self._listener_tasks: Set[asyncio.Task] = set()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def state(self) -> LifecycleState:
        if self._state is LifecycleState.IDLE and self._is_scanning:
            return LifecycleState.SCANNING
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def is_connected(self) -> bool:
        return self._connected is not None

    @property
    def connected_device(self) -> Optional[PeripheralHandle]:
        return self._connected

    @property
    def discovered_devices(self) -> List[PeripheralHandle]:
        return self.registry.list()

    @property
    def attempt(self) -> Optional[ConnectionAttemptState]:
        return self._attempt

    @property
    def session(self) -> Optional[ServiceSession]:
        return self._session

    @property
    def handshake_task(self) -> Optional[asyncio.Task]:
        return self._handshake_task

    def add_status_listener(self, listener: StatusCallback) -> None:
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: StatusCallback) -> None:
        if listener in self._status_listeners:
            self._status_listeners.remove(listener)

    def add_discovery_listener(self, listener: DiscoveryCallback) -> None:
        self.registry.add_discovery_listener(listener)

    def remove_discovery_listener(self, listener: DiscoveryCallback) -> None:
        self.registry.remove_discovery_listener(listener)

    # ------------------------------------------------------------------
    # Lifecycle of the manager itself
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._worker is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._worker = self._loop.create_task(self._run(), name="blescanner-lifecycle")
        self.adapter.set_event_sink(self._on_adapter_event)

    async def close(self) -> None:
        """Stop the worker and release the session; does not disconnect."""
        if self._worker is None:
            return
        self.adapter.set_event_sink(None)
        for task in (self._scan_task, self._handshake_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.wait({task})
        self._scan_task = None
        self._handshake_task = None
        if self._session is not None:
            await self._session.close()
            self._session = None

        worker, self._worker = self._worker, None
        worker.cancel()
        await asyncio.wait({worker})
        queue, self._queue = self._queue, None
        while queue is not None and not queue.empty():
            message = queue.get_nowait()
            if isinstance(message, _Command) and not message.future.done():
                message.future.cancel()

    async def __aenter__(self) -> "ConnectionLifecycleManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.close()

    async def wait_idle(self) -> None:
        """Wait until every queued message and the handshake task are done."""
        if self._queue is None:
            return
        while True:
            await self._queue.join()
            task = self._handshake_task
            if task is not None and not task.done():
                await asyncio.wait({task})
                continue
            if self._queue.empty():
                return

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def start_scan(self) -> None:
        await self._submit(self._do_start_scan)

    async def stop_scan(self) -> None:
        await self._submit(self._do_stop_scan)

    async def connect(self, handle: PeripheralHandle) -> None:
        if handle is None:
            raise ValueError("handle must not be None")
        await self._submit(self._do_connect, handle)

    async def disconnect(self) -> None:
        await self._submit(self._do_disconnect)

    def clear_devices(self) -> None:
        """Forget every discovered peripheral; safe to call from any thread."""
        self.registry.clear()
        self.log.append("Device list cleared by user.")

    # ------------------------------------------------------------------
    # Message plumbing
    # ------------------------------------------------------------------
    async def _submit(self, handler: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self._worker is None:
            await self.start()
        assert self._loop is not None and self._queue is not None
        future = self._loop.create_future()
        self._queue.put_nowait(_Command(handler, args, future))
        return await future

    def _on_adapter_event(self, event: AdapterEvent) -> None:
        if isinstance(event, DeviceDiscovered):
            self.registry.on_discovered(event.peripheral)
            return
        self._post(event)

    def _post(self, message: object) -> None:
        loop, queue = self._loop, self._queue
        if loop is None or queue is None:
            logger.debug("Dropping %r; manager is not running", message)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            queue.put_nowait(message)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, message)

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            message = await queue.get()
            try:
                await self._dispatch(message)
            except Exception:
                logger.exception("Lifecycle handler failed for %r", message)
            finally:
                queue.task_done()

    async def _dispatch(self, message: object) -> None:
        if isinstance(message, _Command):
            if message.future.cancelled():
                return
            try:
                result = await message.handler(*message.args)
            except asyncio.CancelledError:
                # worker torn down mid-command; release the caller
                message.future.cancel()
                raise
            except Exception as exc:
                if not message.future.done():
                    message.future.set_exception(exc)
            else:
                if not message.future.done():
                    message.future.set_result(result)
        elif isinstance(message, DeviceConnected):
            await self._handle_connected(message.peripheral)
        elif isinstance(message, DeviceConnectionLost):
            await self._handle_connection_lost(message)
        elif isinstance(message, DeviceDisconnected):
            self._emit(ConnectionStatus.DISCONNECTED)
        elif isinstance(message, _Retry):
            await self._handle_retry(message)
        elif isinstance(message, _ScanFinished):
            await self._handle_scan_finished(message)
        else:
            logger.warning("Unhandled lifecycle message: %r", message)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------
    async def _do_start_scan(self) -> None:
        if self._is_scanning:
            return
        if self.config.clear_devices_on_scan:
            self.registry.clear()
        self.log.append("Starting scan...")
        self._is_scanning = True
        self._scan_generation += 1
        self._emit(ConnectionStatus.SCANNING)
        assert self._loop is not None
        self._scan_task = self._loop.create_task(self._scan(self._scan_generation))

    async def _scan(self, generation: int) -> None:
        try:
            await self.adapter.start_scan()
            if self.config.scan_timeout is None:
                return
            await asyncio.sleep(self.config.scan_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._post(_ScanFinished(generation, exc))
        else:
            self._post(_ScanFinished(generation))

    async def _handle_scan_finished(self, message: _ScanFinished) -> None:
        if message.generation != self._scan_generation or not self._is_scanning:
            return
        self._scan_task = None
        if message.error is not None:
            self.log.append(f"Scan failed: {message.error}")
        else:
            try:
                await self.adapter.stop_scan()
            except Exception as exc:
                self.log.append(f"Stop scan failed: {exc}")
        self._finish_scan("Scan stopped.")

    async def _do_stop_scan(self) -> None:
        if not self._is_scanning:
            return
        task, self._scan_task = self._scan_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        try:
            await self.adapter.stop_scan()
        except Exception as exc:
            self.log.append(f"Stop scan failed: {exc}")
        self._finish_scan("Scanning canceled.")

    def _finish_scan(self, message: str) -> None:
        self._is_scanning = False
        self._emit(ConnectionStatus.SCAN_STOPPED)
        self.log.append(message)

    # ------------------------------------------------------------------
    # Connecting and recovery
    # ------------------------------------------------------------------
    async def _do_connect(self, handle: PeripheralHandle) -> None:
        self._attempt = ConnectionAttemptState(target=handle, max_retries=self.config.max_retries)
        self._user_disconnect = False
        self._set_state(LifecycleState.CONNECTING)
        self.log.append(f"Connecting to {handle.display_name} [{handle.identifier}]...")
        await self._attempt_connect(handle)

    async def _attempt_connect(self, target: PeripheralHandle) -> None:
        if self._pairing is not None:
            if not await self._pairing.ensure_paired(target):
                self.log.append("Pairing failed or canceled by user.")
                if self.config.pairing_failure_consumes_retry:
                    await self._handle_attempt_failure(target)
                else:
                    self._abandon_attempt()
                return

        try:
            self.log.append("Connecting securely...")
            await self.adapter.connect(target, CONNECT_PARAMETERS)
        except Exception as exc:
            logger.debug("Connect to %s raised", target.identifier, exc_info=True)
            self.log.append(f"Connect failed: {exc}")
            await self._handle_attempt_failure(target)

    async def _handle_attempt_failure(self, target: PeripheralHandle) -> None:
        attempt = self._attempt
        if attempt is None or attempt.target != target or self._user_disconnect:
            return
        if attempt.can_retry:
            attempt = attempt.next_retry()
            self._attempt = attempt
            self.log.append(f"Retrying {attempt.retry_count}/{attempt.max_retries}...")
            self._set_state(LifecycleState.CONNECTING)
            self._post(_Retry(attempt))
            return

        self.log.append(
            f"Failed to connect after {attempt.max_retries} attempts. Unpairing device..."
        )
        if self._pairing is not None:
            await self._pairing.unpair(attempt.target)
        self._abandon_attempt()

    async def _handle_retry(self, message: _Retry) -> None:
        if self._attempt is not message.attempt:
            logger.debug("Ignoring stale retry for %s", message.attempt.target.identifier)
            return
        if self.config.retry_delay > 0:
            await asyncio.sleep(self.config.retry_delay)
        await self._attempt_connect(message.attempt.target)

    def _abandon_attempt(self) -> None:
        self._attempt = None
        self._set_state(LifecycleState.IDLE)
        self._emit(ConnectionStatus.IDLE)

    async def _handle_connected(self, peripheral: PeripheralHandle) -> None:
        self.log.append(f"Device connected: {peripheral.display_name} ({peripheral.identifier})")
        await self._discard_session()
        self._connected = peripheral
        self._set_state(LifecycleState.CONNECTED)
        self._emit(ConnectionStatus.CONNECTED)

        session = self._session_factory(self.adapter, peripheral, self.log)
        self._session = session
        assert self._loop is not None
        self._handshake_task = self._loop.create_task(session.run())

    async def _handle_connection_lost(self, event: DeviceConnectionLost) -> None:
        self._emit(ConnectionStatus.CONNECTION_LOST)
        if self._user_disconnect:
            self._user_disconnect = False
            self.log.append("Connection closed by user; not reconnecting.")
            return

        peripheral = event.peripheral
        reason = f" ({event.reason})" if event.reason else ""
        self.log.append(f"Connection lost: {peripheral.display_name}{reason}.")
        if self._connected is not None and self._connected == peripheral:
            await self._discard_session()
            self._connected = None

        attempt = self._attempt
        if attempt is None or attempt.target != peripheral:
            if self._connected is None:
                self._set_state(LifecycleState.IDLE)
            return
        self._set_state(LifecycleState.CONNECTION_LOST)
        await self._handle_attempt_failure(peripheral)

    # ------------------------------------------------------------------
    # User disconnect
    # ------------------------------------------------------------------
    async def _do_disconnect(self) -> None:
        peripheral = self._connected
        if peripheral is None:
            if self._attempt is not None:
                self.log.append(
                    f"Cancelled pending connection to {self._attempt.target.display_name}."
                )
                self._attempt = None
                self._set_state(LifecycleState.IDLE)
            return

        self._user_disconnect = True
        self._set_state(LifecycleState.DISCONNECTING_BY_USER)
        self.log.append(f"Disconnecting from {peripheral.display_name}...")

        try:
            await self._discard_session()
        except Exception as exc:
            self.log.append(f"Error releasing session: {exc}")

        try:
            await self.adapter.disconnect(peripheral)
            self.log.append(f"Disconnected from {peripheral.display_name}")
        except Exception as exc:
            self.log.append(f"Disconnect error: {exc}")

        if self._pairing is not None:
            await self._pairing.unpair(peripheral)

        self._connected = None
        self._attempt = None

        self.registry.clear()
        self.log.append("Device list cleared after disconnect.")
        self._set_state(LifecycleState.IDLE)

    async def _discard_session(self) -> None:
        task, self._handshake_task = self._handshake_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _set_state(self, new_state: LifecycleState) -> None:
        if new_state is self._state:
            return
        logger.debug("State transition: %s -> %s", self._state.value, new_state.value)
        self._state = new_state

    def _emit(self, status: ConnectionStatus) -> None:
        self._status = status
        for listener in list(self._status_listeners):
            try:
                outcome = listener(status)
                if asyncio.iscoroutine(outcome):
                    spawn_listener_task(self._listener_tasks, outcome, self._loop)
            except Exception:  # pragma: no cover - diagnostic path
                logger.exception("status listener raised an exception")


__all__ = ["ConnectionLifecycleManager", "CONNECT_PARAMETERS", "StatusCallback"]
