"""Append-only, timestamped text log shared by every lifecycle component."""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Awaitable, Callable, Coroutine, List, Optional, Set, Union

logger = logging.getLogger("blescanner.log")
_task_logger = logging.getLogger(__name__)

LogListener = Callable[[str], Union[None, Awaitable[None]]]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def format_timestamp(dt: datetime) -> str:
    # %f is microseconds; the log shows milliseconds.
    return dt.strftime(TIMESTAMP_FORMAT)[:-3]


def spawn_listener_task(
    tasks: Set[asyncio.Task],
    coro: Coroutine,
    loop: asyncio.AbstractEventLoop | None = None,
) -> asyncio.Task:
    """Schedule a coroutine listener, holding a reference until it completes."""
    task = (loop or asyncio.get_running_loop()).create_task(coro)
    tasks.add(task)
    task.add_done_callback(partial(_listener_task_done, tasks))
    return task


def _listener_task_done(tasks: Set[asyncio.Task], task: asyncio.Task) -> None:
    tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _task_logger.warning("Listener task failed: %s", exc, exc_info=exc)


class LogSink:
    """In-memory text log with change notification.

    Each entry is stored as ``[timestamp] message``. Entries are mirrored to
    the ``blescanner.log`` logger and, when ``path`` is given, appended to a
    text file without buffering so that ``tail -f`` sees them immediately.
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self._clock = clock or datetime.now
        self._lines: List[str] = []
        self._listeners: List[LogListener] = []
        self._lock = threading.Lock()
        self._listener_tasks: Set[asyncio.Task] = set()
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def text(self) -> str:
        with self._lock:
            return "".join(f"{line}\n" for line in self._lines)

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def append(self, message: str) -> str:
        line = f"[{self._timestamp()}] {message}"
        with self._lock:
            self._lines.append(line)
            if self.path is not None:
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
                    handle.flush()
        logger.info("%s", message)
        self._notify(line)
        return line

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
        self._notify("")

    def add_listener(self, listener: LogListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: LogListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def _notify(self, line: str) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                outcome = listener(line)
                if asyncio.iscoroutine(outcome):
                    spawn_listener_task(self._listener_tasks, outcome)
            except Exception:  # pragma: no cover - listener failure must not break logging
                logger.debug("Log listener raised", exc_info=True)

    def _timestamp(self) -> str:
        try:
            dt = self._clock()
        except Exception:  # pragma: no cover - guard against faulty clock
            dt = datetime.now()
        if not isinstance(dt, datetime):
            return str(dt)
        return format_timestamp(dt)


__all__ = ["LogSink", "LogListener", "format_timestamp", "spawn_listener_task"]
