"""HTTP/WebSocket control surface over the lifecycle manager."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect

from blescanner.bleak_backend import build_manager
from blescanner.lifecycle import ConnectionLifecycleManager
from blescanner.models import ConnectionStatus

logger = logging.getLogger("blescanner.api")

_manager: Optional[ConnectionLifecycleManager] = None


@contextlib.asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    global _manager
    manager = build_manager()
    await manager.start()
    _manager = manager
    try:
        yield
    finally:
        _manager = None
        await manager.close()


app = FastAPI(title="blescanner API", version="0.1.0", lifespan=lifespan)


def _require_manager() -> ConnectionLifecycleManager:
    if _manager is None:
        raise HTTPException(status_code=503, detail="lifecycle manager is not running")
    return _manager


def _status_payload(manager: ConnectionLifecycleManager) -> dict:
    attempt = manager.attempt
    device = manager.connected_device
    return {
        "state": manager.state.value,
        "status": manager.status.value,
        "scanning": manager.is_scanning,
        "connected": manager.is_connected,
        "device": device.to_dict() if device else None,
        "retry_count": attempt.retry_count if attempt else None,
        "subscribed": bool(manager.session and manager.session.subscribed),
    }


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.get("/status")
async def status():
    return _status_payload(_require_manager())


@app.get("/devices")
async def devices():
    return [handle.to_dict() for handle in _require_manager().discovered_devices]


@app.delete("/devices")
async def clear_devices():
    _require_manager().clear_devices()
    return {"status": "cleared"}


@app.post("/scan/start")
async def scan_start():
    manager = _require_manager()
    await manager.start_scan()
    return _status_payload(manager)


@app.post("/scan/stop")
async def scan_stop():
    manager = _require_manager()
    await manager.stop_scan()
    return _status_payload(manager)


@app.post("/connect")
async def connect(device: str = Query(..., description="Identifier or name of a discovered peripheral")):
    manager = _require_manager()
    handle = manager.registry.find(device)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device}")
    await manager.connect(handle)
    return _status_payload(manager)


@app.post("/disconnect")
async def disconnect():
    manager = _require_manager()
    await manager.disconnect()
    return _status_payload(manager)


@app.get("/log")
async def get_log():
    return {"text": _require_manager().log.text}


@app.delete("/log")
async def clear_log():
    _require_manager().log.clear()
    return {"status": "cleared"}


@app.websocket("/events")
async def events(ws: WebSocket):
    manager = _require_manager()
    outbox: asyncio.Queue = asyncio.Queue()
    loop = asyncio.get_running_loop()

    # log lines can be appended from a backend thread
    def _on_log(line: str) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, {"log": line})

    def _on_status(value: ConnectionStatus) -> None:
        loop.call_soon_threadsafe(outbox.put_nowait, {"status": value.value})

    async def _pump() -> None:
        while True:
            await ws.send_json(await outbox.get())

    # subscribe before the handshake completes so nothing after accept is missed
    manager.log.add_listener(_on_log)
    manager.add_status_listener(_on_status)
    await ws.accept()
    pump = asyncio.create_task(_pump())
    try:
        # inbound frames are ignored; receiving is how a client close is noticed
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        return
    finally:
        manager.log.remove_listener(_on_log)
        manager.remove_status_listener(_on_status)
        pump.cancel()
        await asyncio.wait({pump})
        if not pump.cancelled() and pump.exception() is not None:
            logger.debug("event pump stopped: %s", pump.exception())
